"""Shared coordination primitives.

Configuration:
    REDIS_URL=redis://localhost:6379/0 switches record locks and signaling
    fan-out to Redis so several instances can serve the same circles.
"""

import logging

from app.core.config import settings
from app.storage.distributed_lock import LocalLockManager, LockManager, RedisLockManager

logger = logging.getLogger(__name__)

__all__ = ["LockManager", "LocalLockManager", "RedisLockManager", "create_lock_manager"]


def create_lock_manager(redis_url: str = None) -> LockManager:
    """Create a lock manager based on configuration.

    Falls back to in-process locks when Redis is not configured or unreachable.
    """
    redis_url = (settings.REDIS_URL if redis_url is None else redis_url).strip()
    if not redis_url:
        return LocalLockManager()

    try:
        import redis as redis_lib
        client = redis_lib.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        if client.ping():
            logger.info("Record locks: Redis (%s)", redis_url.split("@")[-1])
            return RedisLockManager(client)
        logger.warning("Redis ping failed, falling back to in-process locks")
    except Exception as e:
        logger.warning("Failed to initialize Redis locks: %s, falling back to in-process locks", e)
    return LocalLockManager()
