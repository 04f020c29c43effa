"""WebSocket endpoint for circle signaling."""
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.config import settings
from app.core.database_async import AsyncSessionLocal
from app.core.exceptions import AppException
from app.services.circle_manager import circle_manager
from app.services.signaling import signaling_hub
from app.services.websocket_auth import (
    WebSocketAuthError,
    authenticate_websocket,
    close_with_error,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Query tokens leak into logs and history; only allowed while debugging
ALLOW_QUERY_TOKEN = settings.DEBUG


@router.websocket("/ws/circles/{channel_name}")
async def circle_websocket(websocket: WebSocket, channel_name: str):
    """
    Signaling channel for one circle, open to its host and participants.

    Authentication methods (in order of preference):
    1. Sec-WebSocket-Protocol header: ["auth", "<jwt_token>"]
    2. Cookie: user_access_token
    3. Query string: ?token=<jwt_token> (DEBUG only)

    Message format:
    {
        "type": "connected" | "pong" | "game_state_update" | "assign_role" | ...,
        "payload": { ... }
    }
    """
    try:
        principal = authenticate_websocket(websocket, allow_query_token=ALLOW_QUERY_TOKEN)
    except WebSocketAuthError as e:
        logger.warning(f"WebSocket auth failed for {channel_name}: {e.message}")
        await close_with_error(websocket, e.code, e.message)
        return

    try:
        async with AsyncSessionLocal() as db:
            circle = await circle_manager.authorize_channel_member(db, principal, channel_name)
            circle_id = circle.id
    except AppException as e:
        logger.info(f"User {principal.id} refused on {channel_name}: {e.message}")
        await close_with_error(websocket, 4004 if e.http_status == 404 else 4003, e.message)
        return

    subprotocols = websocket.scope.get("subprotocols", [])
    accepted_subprotocol = "auth" if subprotocols and subprotocols[0] == "auth" else None
    if not await signaling_hub.connect(channel_name, principal.id, websocket, subprotocol=accepted_subprotocol):
        return

    try:
        await websocket.send_json({
            "type": "connected",
            "payload": {"circleId": circle_id, "channelName": channel_name, "userId": principal.id},
        })

        # Keep connection alive; server-originated messages only
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_json({"type": "pong", "payload": {}})

    except WebSocketDisconnect:
        logger.info(f"User {principal.id} disconnected from {channel_name}")
    except Exception as e:
        logger.error(f"WebSocket error for {principal.id} on {channel_name}: {e}", exc_info=True)
    finally:
        signaling_hub.disconnect(channel_name, principal.id, websocket)
