"""Support circle schemas."""
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.models.circle import CircleStatus, GameType
from .base import CamelFromAttributesModel, CamelModel


class CreateCircleRequest(CamelModel):
    """Create request.

    Topic, duration and capacity are checked against the caller's role by the
    circle manager so the messages can name the policy that was violated.
    """
    topic: str
    description: Optional[str] = Field(default=None, max_length=1000)
    duration: Optional[int] = None
    max_participants: Optional[int] = None
    is_private: bool = False
    anonymous_mode: bool = True
    ai_moderation: bool = True
    game_type: GameType = GameType.NONE
    scheduled_start: Optional[datetime] = None


class JoinCircleRequest(CamelModel):
    join_code: Optional[str] = None


class JoinByCodeRequest(CamelModel):
    join_code: str


class ParticipantResponse(CamelFromAttributesModel):
    user_id: str
    display_name: str
    is_muted: bool
    joined_at: datetime


class CircleResponse(CamelFromAttributesModel):
    id: str
    topic: str
    description: Optional[str] = None
    host_id: str
    host_name: str
    channel_name: str
    join_code: str
    duration: int
    max_participants: int
    current_participants: int
    is_private: bool
    anonymous_mode: bool
    ai_moderation: bool
    game_type: GameType
    status: CircleStatus
    scheduled_start: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    created_at: datetime
    participants: List[ParticipantResponse] = Field(default_factory=list)


class CircleListResponse(CamelModel):
    circles: List[CircleResponse]
    total: int
