"""Cross-instance signaling relay using Redis Pub/Sub.

When several server instances serve the same circles, a participant may be
connected to instance B while the state change happens on instance A.

Architecture:
    Instance A: deliver to local sockets + publish envelope to Redis channel
    Instance B: Redis subscriber → receive envelope → deliver to local sockets

Falls back to local-only delivery when Redis is not available.
"""

import asyncio
import json
import logging
import uuid
from typing import TYPE_CHECKING, Optional

from app.core.config import settings

if TYPE_CHECKING:
    from app.services.signaling import SignalingHub

logger = logging.getLogger(__name__)

# Unique instance ID to avoid processing own publications
_INSTANCE_ID = str(uuid.uuid4())[:8]

CHANNEL_PREFIX = "circles:signal:"


class SignalRelay:
    """Publishes signaling envelopes to Redis and replays remote ones locally.

    Usage:
        relay = SignalRelay(signaling_hub)
        await relay.start()  # Start subscriber loop
        signaling_hub.attach_relay(relay)

        await relay.stop()  # Shutdown
    """

    def __init__(self, hub: "SignalingHub", redis_url: Optional[str] = None):
        self._hub = hub
        self._redis_url = settings.REDIS_URL if redis_url is None else redis_url
        self._redis_client = None
        self._subscriber_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._instance_id = _INSTANCE_ID

    @property
    def enabled(self) -> bool:
        return self._redis_client is not None

    async def start(self) -> None:
        """Initialize Redis client and start subscriber loop if Redis is available."""
        redis_url = (self._redis_url or "").strip()
        if not redis_url:
            logger.info("[relay] No REDIS_URL, local-only mode")
            return
        try:
            import redis.asyncio as aioredis
            self._redis_client = aioredis.Redis.from_url(redis_url, decode_responses=True)
            await self._redis_client.ping()
            self._subscriber_task = asyncio.create_task(self._subscriber_loop())
            logger.info("[relay] Started cross-instance relay (instance=%s)", self._instance_id)
        except Exception as e:
            logger.warning("[relay] Redis unavailable, local-only mode: %s", e)
            self._redis_client = None

    async def stop(self) -> None:
        """Shutdown subscriber loop and close Redis connection."""
        self._stop_event.set()
        if self._subscriber_task:
            self._subscriber_task.cancel()
            try:
                await self._subscriber_task
            except (asyncio.CancelledError, Exception):
                pass
        if self._redis_client:
            try:
                await self._redis_client.aclose()
            except Exception:
                pass
        logger.info("[relay] Stopped")

    async def publish(self, channel: str, envelope: dict, target_user_id: Optional[str] = None) -> None:
        """Publish an envelope for other instances to deliver."""
        if not self._redis_client:
            return
        try:
            payload = json.dumps({
                "channel": channel,
                "target": target_user_id,
                "envelope": envelope,
                "source": self._instance_id,
            }, separators=(",", ":"), default=str)
            await self._redis_client.publish(f"{CHANNEL_PREFIX}{channel}", payload)
        except Exception as e:
            logger.warning("[relay] Failed to publish %s on %s: %s", envelope.get("type"), channel, e)

    async def _subscriber_loop(self) -> None:
        """Subscribe to all circle channels and handle notifications."""
        if not self._redis_client:
            return

        pubsub = self._redis_client.pubsub()
        try:
            await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
            logger.info("[relay] Subscribed to %s*", CHANNEL_PREFIX)

            while not self._stop_event.is_set():
                try:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=1.0
                    )
                    if message and message.get("type") == "pmessage":
                        await self._handle_message(message)
                    else:
                        await asyncio.sleep(0.1)
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.warning("[relay] Subscriber error: %s", e)
                    await asyncio.sleep(1.0)
        finally:
            try:
                await pubsub.punsubscribe(f"{CHANNEL_PREFIX}*")
                await pubsub.aclose()
            except Exception:
                pass

    async def _handle_message(self, message: dict) -> None:
        """Deliver an envelope published by another instance to local sockets."""
        try:
            raw = message.get("data", "")
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode("utf-8")
            payload = json.loads(raw)

            # Skip our own publications
            if payload.get("source") == self._instance_id:
                return

            channel = payload.get("channel")
            envelope = payload.get("envelope")
            if not channel or not isinstance(envelope, dict):
                return

            if not self._hub.get_connection_count(channel):
                return

            logger.debug(
                "[relay] Received %s for %s from instance %s",
                envelope.get("type"), channel, payload.get("source")
            )
            await self._hub.deliver_local(channel, envelope, target_user_id=payload.get("target"))
        except Exception as e:
            logger.warning("[relay] Failed to handle message: %s", e)


# Global instance (initialized in app startup)
signal_relay: Optional[SignalRelay] = None
