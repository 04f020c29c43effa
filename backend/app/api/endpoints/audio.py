"""Audio transport credential endpoint."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_audio_issuer, get_circle_manager, get_current_principal
from app.core.auth import Principal
from app.core.database_async import get_async_db
from app.schemas.audio import AudioTokenRequest, AudioTokenResponse
from app.services.audio_tokens import AudioCredentialIssuer, issue_channel_credentials
from app.services.circle_manager import CircleManager

router = APIRouter(prefix="/audio", tags=["audio"])
logger = logging.getLogger(__name__)


@router.post("/token", response_model=AudioTokenResponse)
async def issue_token(
    request: AudioTokenRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: CircleManager = Depends(get_circle_manager),
    issuer: AudioCredentialIssuer = Depends(get_audio_issuer),
):
    """Issue a one-hour credential for a channel the caller may join."""
    credential = await issue_channel_credentials(
        db,
        principal,
        request.channel_name,
        request.channel_type,
        circle_manager=manager,
        issuer=issuer,
    )
    return AudioTokenResponse.model_validate(credential)
