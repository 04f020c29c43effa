"""Game session schemas."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from app.models.circle import GameType
from app.models.game_session import GameSession, GameSessionStatus
from .base import CamelFromAttributesModel, CamelModel


class CreateSessionRequest(CamelModel):
    circle_id: str = Field(..., min_length=1)
    game_type: str = Field(..., min_length=1)


class StartSessionRequest(CamelModel):
    game_data: Optional[Dict[str, Any]] = None


class AssignRolesRequest(CamelModel):
    # Omitted for a random imposter deal
    roles: Optional[Dict[str, str]] = None


class VoteRequest(CamelModel):
    target_user_id: str = Field(..., min_length=1)


class UpdatePhaseRequest(CamelModel):
    phase: str = Field(..., min_length=1, max_length=50)
    game_data: Optional[Dict[str, Any]] = None


class EndSessionRequest(CamelModel):
    results: Optional[Dict[str, Any]] = None


class GamePlayerResponse(CamelFromAttributesModel):
    user_id: str
    role: Optional[str] = None
    score: int
    is_alive: bool
    joined_at: datetime


class GameSessionResponse(CamelFromAttributesModel):
    id: str
    circle_id: str
    game_type: GameType
    status: GameSessionStatus
    round: int
    phase: str
    players: List[GamePlayerResponse] = Field(default_factory=list)
    game_data: Dict[str, Any] = Field(default_factory=dict)
    votes: Dict[str, str] = Field(default_factory=dict)
    results: Optional[Dict[str, Any]] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def for_viewer(cls, session: GameSession, viewer_id: str) -> "GameSessionResponse":
        """Hide other players' roles from everyone but the host until the game ends."""
        response = cls.model_validate(session)
        is_host = session.circle is not None and session.circle.is_host(viewer_id)
        if is_host or session.status == GameSessionStatus.ENDED:
            return response
        for player in response.players:
            if player.user_id != viewer_id:
                player.role = None
        return response


class GameSessionEnvelope(CamelModel):
    session: GameSessionResponse
    created: bool = False


class GameInfoResponse(CamelModel):
    id: str
    name: str
    description: str
    min_players: int
    max_players: int
    requires_host: bool
    estimated_minutes: int
