"""FastAPI dependency injection functions for authentication and services."""
import logging
from typing import Optional

import jwt
from fastapi import Cookie, Header, HTTPException

from app.core.auth import Principal, principal_from_token
from app.services.audio_tokens import AudioCredentialIssuer, audio_issuer
from app.services.circle_manager import CircleManager, circle_manager
from app.services.game_session_manager import GameSessionManager, game_session_manager

logger = logging.getLogger(__name__)


def _extract_bearer_token(authorization: str) -> Optional[str]:
    """Extract JWT token from 'Authorization: Bearer <token>' header.

    Returns:
        Token string if valid format, None otherwise.
    """
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


async def get_current_principal(
    authorization: Optional[str] = Header(None),
    user_access_token: Optional[str] = Cookie(None),
) -> Principal:
    """
    Dependency to get the authenticated caller from the identity token.

    Authorization header takes precedence over the HttpOnly cookie.

    Raises:
        HTTPException: 401 if token is missing or invalid
    """
    token = None
    if authorization:
        token = _extract_bearer_token(authorization)
        if token is None:
            raise HTTPException(
                status_code=401,
                detail="Invalid authorization header format. Expected: Bearer <token>",
                headers={"WWW-Authenticate": "Bearer"}
            )
    elif user_access_token:
        token = user_access_token

    if not token:
        raise HTTPException(
            status_code=401,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"}
        )

    try:
        return principal_from_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=401,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=401,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except ValueError as e:
        logger.error(f"Token verification unavailable: {e}")
        raise HTTPException(
            status_code=401,
            detail="Authentication failed",
            headers={"WWW-Authenticate": "Bearer"}
        )


# ==================== Services ====================
# Overridable in tests via app.dependency_overrides

def get_circle_manager() -> CircleManager:
    return circle_manager


def get_game_session_manager() -> GameSessionManager:
    return game_session_manager


def get_audio_issuer() -> AudioCredentialIssuer:
    return audio_issuer
