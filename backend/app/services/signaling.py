"""Real-time signaling hub for circle channels.

Every message is a `{"type": ..., "payload": ...}` envelope. Delivery is best
effort: the durable circle and game-session records stay authoritative, so
send failures are logged and dropped rather than raised to callers.
"""
import asyncio
import logging
from typing import TYPE_CHECKING, Dict, Optional

from fastapi import WebSocket

if TYPE_CHECKING:
    from app.storage.signal_relay import SignalRelay

logger = logging.getLogger(__name__)


class SignalingHub:
    """Manages per-user WebSocket connections keyed by circle channel name."""

    MAX_CONNECTIONS_PER_CHANNEL = 40
    MAX_TOTAL_CONNECTIONS = 1000

    def __init__(self):
        # channel_name -> user_id -> WebSocket
        self._channels: Dict[str, Dict[str, WebSocket]] = {}
        self._relay: Optional["SignalRelay"] = None

    def attach_relay(self, relay: Optional["SignalRelay"]) -> None:
        """Forward locally originated messages to other instances."""
        self._relay = relay

    async def connect(self, channel: str, user_id: str, websocket: WebSocket, subprotocol: str = None) -> bool:
        """Accept a connection; a second socket for the same user replaces the first.

        Returns:
            False if the connection was rejected for capacity reasons
        """
        members = self._channels.get(channel, {})
        existing = members.get(user_id)

        if not existing:
            total = self.get_total_connection_count()
            if total >= self.MAX_TOTAL_CONNECTIONS:
                logger.warning(f"Global connection limit reached ({total}). Rejecting {user_id} for {channel}")
                await websocket.close(code=1013, reason="Server overloaded")
                return False
            if len(members) >= self.MAX_CONNECTIONS_PER_CHANNEL:
                logger.warning(f"Per-channel connection limit reached for {channel}. Rejecting {user_id}")
                await websocket.close(code=1013, reason="Too many connections for this circle")
                return False

        await websocket.accept(subprotocol=subprotocol)
        self._channels.setdefault(channel, {})[user_id] = websocket
        logger.info(f"User {user_id} connected to {channel}. Connections: {self.get_connection_count(channel)}")

        if existing and existing is not websocket:
            try:
                await existing.close(code=1000)
            except Exception as e:
                logger.debug(f"Closing replaced socket for {user_id} failed: {e}")
        return True

    def disconnect(self, channel: str, user_id: str, websocket: Optional[WebSocket] = None) -> None:
        members = self._channels.get(channel)
        if not members:
            return
        current = members.get(user_id)
        # A stale socket must not evict the connection that replaced it
        if current is None or (websocket is not None and current is not websocket):
            return
        del members[user_id]
        if not members:
            del self._channels[channel]
        logger.info(f"User {user_id} disconnected from {channel}")

    async def _deliver(self, channel: str, user_id: str, envelope: dict) -> bool:
        ws = self._channels.get(channel, {}).get(user_id)
        if ws is None:
            return False
        try:
            await ws.send_json(envelope)
            return True
        except Exception as e:
            logger.warning(f"Failed to send {envelope.get('type')} to {user_id} on {channel}: {e}")
            try:
                await ws.close(code=1011)
            except Exception:
                pass
            self.disconnect(channel, user_id, ws)
            return False

    async def deliver_local(self, channel: str, envelope: dict, target_user_id: Optional[str] = None) -> None:
        """Send to sockets held by this instance only."""
        if target_user_id is not None:
            await self._deliver(channel, target_user_id, envelope)
            return
        user_ids = list(self._channels.get(channel, {}).keys())
        if not user_ids:
            logger.debug(f"No local connections for {channel}")
            return
        await asyncio.gather(
            *(self._deliver(channel, uid, envelope) for uid in user_ids),
            return_exceptions=True,
        )

    async def broadcast(self, channel: str, message_type: str, payload: dict) -> None:
        """Send an envelope to every subscriber of a channel."""
        envelope = {"type": message_type, "payload": payload}
        try:
            await self.deliver_local(channel, envelope)
            if self._relay is not None:
                await self._relay.publish(channel, envelope)
        except Exception as e:
            logger.error(f"Broadcast of {message_type} on {channel} failed: {e}")

    async def send_direct(self, channel: str, user_id: str, message_type: str, payload: dict) -> None:
        """Send an envelope to one participant of a channel."""
        envelope = {"type": message_type, "payload": payload}
        try:
            delivered = await self._deliver(channel, user_id, envelope)
            if not delivered and self._relay is not None:
                await self._relay.publish(channel, envelope, target_user_id=user_id)
        except Exception as e:
            logger.error(f"Direct {message_type} to {user_id} on {channel} failed: {e}")

    def get_connection_count(self, channel: str) -> int:
        return len(self._channels.get(channel, {}))

    def get_total_connection_count(self) -> int:
        # Snapshot to avoid "dictionary changed size during iteration"
        return sum(len(members) for members in list(self._channels.values()))

    def get_active_channels(self) -> list[str]:
        return [name for name, members in list(self._channels.items()) if members]


# Global signaling hub instance
signaling_hub = SignalingHub()
