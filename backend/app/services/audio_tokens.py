"""Short-lived credentials for the audio transport.

Credentials are HS256 tokens signed with AUDIO_APP_CERTIFICATE and scoped to
one channel and one numeric uid. Callers must have been authorized for the
channel before a credential is issued.
"""
import logging
from datetime import timedelta
from typing import Optional

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Principal
from app.core.clock import Clock, utcnow
from app.core.config import settings
from app.core.exceptions import AudioNotConfiguredError, ValidationFailedError

logger = logging.getLogger(__name__)

CHANNEL_TYPE_CIRCLE = "support-circle"
CHANNEL_TYPE_AI_VOICE = "ai-voice"
AI_VOICE_PREFIX = "ai-voice-"

# Publisher privileges; listeners-only channels are not used
ROLE_PUBLISHER = 1

_UID_MODULUS = 2147483647  # 2^31 - 1

# Placeholder values shipped in example env files
_PLACEHOLDERS = {"your-audio-app-id-here", "your-audio-app-certificate-here"}


def numeric_uid(user_id: str) -> int:
    """Stable positive 31-bit uid for a user id (never 0, which means auto-assign)."""
    value = 0
    for char in str(user_id):
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    # Interpret as signed 32-bit
    if value >= 0x80000000:
        value -= 0x100000000
    return (abs(value) % _UID_MODULUS) or 1


class AudioCredentialIssuer:
    """Signs per-channel audio credentials."""

    def __init__(
        self,
        app_id: Optional[str] = None,
        app_certificate: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
        clock: Clock = utcnow,
    ):
        self.app_id = settings.AUDIO_APP_ID if app_id is None else app_id
        self._certificate = settings.AUDIO_APP_CERTIFICATE if app_certificate is None else app_certificate
        self.ttl_seconds = ttl_seconds or settings.AUDIO_TOKEN_TTL_SECONDS
        self._clock = clock

    @property
    def configured(self) -> bool:
        if not self.app_id or not self._certificate:
            return False
        return self.app_id not in _PLACEHOLDERS and self._certificate not in _PLACEHOLDERS

    def issue(self, channel_name: str, uid: int = 0) -> dict:
        """Issue a credential; uid 0 lets the transport assign one."""
        if not self.configured:
            raise AudioNotConfiguredError()

        now = self._clock()
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        token = jwt.encode(
            {
                "iss": self.app_id,
                "channel": channel_name,
                "uid": uid,
                "role": ROLE_PUBLISHER,
                "iat": int(now.timestamp()),
                "exp": int(expires_at.timestamp()),
            },
            self._certificate,
            algorithm="HS256",
        )
        return {
            "token": token,
            "appId": self.app_id,
            "channelName": channel_name,
            "uid": uid,
            "autoUid": uid == 0,
            "expiresAt": expires_at,
        }

    def verify(self, token: str) -> dict:
        """Decode a credential issued by this issuer."""
        return jwt.decode(token, self._certificate, algorithms=["HS256"], issuer=self.app_id)


async def issue_channel_credentials(
    db: AsyncSession,
    principal: Principal,
    channel_name: str,
    channel_type: str,
    *,
    circle_manager,
    issuer: AudioCredentialIssuer,
) -> dict:
    """Authorize the caller for a channel, then issue its credential.

    support-circle channels need the caller to host or participate in the
    circle. ai-voice channels are personal: `ai-voice-<caller id>` only.
    """
    if not channel_name or not channel_type:
        raise ValidationFailedError("Channel name and type are required", field="channelName")

    if channel_type == CHANNEL_TYPE_CIRCLE:
        await circle_manager.authorize_channel_member(db, principal, channel_name)
        credential = issuer.issue(channel_name, numeric_uid(principal.id))
    elif channel_type == CHANNEL_TYPE_AI_VOICE:
        if channel_name != f"{AI_VOICE_PREFIX}{principal.id}":
            raise ValidationFailedError("Invalid AI voice channel name", field="channelName")
        # Auto-assigned uid avoids collisions on reconnect
        credential = issuer.issue(channel_name, 0)
    else:
        raise ValidationFailedError(f"Unsupported channel type: {channel_type}", field="channelType")

    logger.info(
        f"Issued audio credential for {channel_name} "
        f"({'auto uid' if credential['autoUid'] else 'uid ' + str(credential['uid'])}, user {principal.id})"
    )
    return credential


# Global issuer instance
audio_issuer = AudioCredentialIssuer()
