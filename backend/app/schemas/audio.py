"""Audio credential schemas."""
from datetime import datetime

from pydantic import Field

from .base import CamelModel


class AudioTokenRequest(CamelModel):
    channel_name: str = Field(..., min_length=1, max_length=128)
    channel_type: str = Field(..., min_length=1, max_length=32)


class AudioTokenResponse(CamelModel):
    token: str
    app_id: str
    channel_name: str
    uid: int
    auto_uid: bool
    expires_at: datetime
