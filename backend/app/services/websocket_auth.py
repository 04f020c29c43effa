"""WebSocket authentication and origin validation for signaling channels."""
import logging
from typing import Optional, Tuple
from urllib.parse import urlparse

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from app.core.auth import Principal, principal_from_token
from app.core.config import settings

logger = logging.getLogger(__name__)


class WebSocketAuthError(Exception):
    """Exception for WebSocket authentication failures."""
    def __init__(self, message: str, code: int = 4001):
        self.message = message
        self.code = code
        super().__init__(message)


def extract_token(
    websocket: WebSocket,
    allow_query_token: bool = False,
) -> Tuple[Optional[str], str]:
    """Extract the identity token from a WebSocket handshake.

    Priority:
    1. Sec-WebSocket-Protocol header: ['auth', '<token>']
    2. Cookie (user_access_token)
    3. Query parameter (DEBUG only)

    Returns:
        Tuple of (token, source) where source is 'protocol', 'cookie', 'query' or 'none'
    """
    protocols = websocket.scope.get("subprotocols", [])
    if len(protocols) >= 2 and protocols[0] == "auth" and protocols[1]:
        return protocols[1], "protocol"

    token = websocket.cookies.get("user_access_token")
    if token:
        return token, "cookie"

    if allow_query_token:
        token = websocket.query_params.get("token")
        if token:
            logger.warning("Token passed via query parameter; use Sec-WebSocket-Protocol or cookies instead.")
            return token, "query"

    return None, "none"


def validate_origin(
    websocket: WebSocket,
    allowed_origins: Optional[list[str]] = None,
) -> Tuple[bool, str]:
    """Validate WebSocket connection origin.

    Same-origin requests are always allowed. Otherwise the origin must be in
    ALLOWED_WS_ORIGINS; with none configured only DEBUG accepts it.

    Returns:
        Tuple of (is_valid, origin)
    """
    if allowed_origins is None:
        allowed_origins = settings.ALLOWED_WS_ORIGINS

    origin = websocket.headers.get("origin", "")
    host = websocket.headers.get("host", "")

    # Non-browser clients send no Origin header
    if not origin:
        return True, origin

    if host and origin in (f"http://{host}", f"https://{host}"):
        return True, origin

    if allowed_origins and origin in allowed_origins:
        return True, origin

    if settings.DEBUG:
        parsed = urlparse(origin)
        if not allowed_origins or parsed.hostname in ("localhost", "127.0.0.1", "0.0.0.0"):
            logger.debug(f"Allowing origin in DEBUG mode: {origin}")
            return True, origin

    logger.warning(f"Origin validation failed: {origin} not in {allowed_origins}")
    return False, origin


def authenticate_websocket(
    websocket: WebSocket,
    allow_query_token: bool = False,
    validate_origin_header: bool = True,
) -> Principal:
    """Check origin and resolve the caller's identity.

    Raises:
        WebSocketAuthError: 4003 for a rejected origin, 4001 without a token,
            4002 for an invalid token
    """
    if validate_origin_header:
        is_valid_origin, origin = validate_origin(websocket)
        if not is_valid_origin:
            raise WebSocketAuthError(f"Invalid origin: {origin}", code=4003)

    token, source = extract_token(websocket, allow_query_token)
    if not token:
        raise WebSocketAuthError("Authentication required", code=4001)

    try:
        principal = principal_from_token(token)
    except Exception as e:
        logger.warning(f"WebSocket token verification failed: {e}")
        raise WebSocketAuthError("Invalid token", code=4002)

    logger.debug(f"WebSocket authenticated via {source}: user_id={principal.id}")
    return principal


async def close_with_error(
    websocket: WebSocket,
    code: int,
    message: str = "",
) -> None:
    """Close WebSocket with an error code and message."""
    if websocket.client_state == WebSocketState.CONNECTED:
        await websocket.close(code=code, reason=message)
    elif websocket.client_state == WebSocketState.CONNECTING:
        # Not yet accepted - just close
        await websocket.close(code=code)
