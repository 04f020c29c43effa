"""Per-record locks for circle and game-session mutations.

Two interchangeable lock managers are provided:

- LocalLockManager: one asyncio.Lock per key, for single-process deployments.
- RedisLockManager: Redis SET NX EX locks that work across process instances.

Both expose get_lock(key) returning an object usable with `async with`.
"""

import asyncio
import logging
import time
import uuid
from typing import Dict, Optional, Protocol

from app.core.exceptions import StorageBusyError

logger = logging.getLogger(__name__)

# Default lock TTL; auto-releases if the holder crashes
_DEFAULT_LOCK_TTL_SECONDS = 30
# Retry interval when waiting to acquire lock
_RETRY_INTERVAL_SECONDS = 0.05
# Maximum time to wait for lock acquisition
_DEFAULT_ACQUIRE_TIMEOUT_SECONDS = 10


class LockManager(Protocol):
    """Factory of per-key async locks."""

    def get_lock(self, key: str): ...


class RedisLock:
    """Redis-based distributed lock compatible with `async with`.

    Uses SET NX EX pattern for atomic lock acquisition with automatic expiry.
    Each lock instance has a unique token to ensure only the holder can release.

    Usage:
        lock = RedisLock(redis_client, "circles:lock:circle:<id>")
        async with lock:
            # critical section
    """

    def __init__(
        self,
        redis_client,
        key: str,
        ttl: int = _DEFAULT_LOCK_TTL_SECONDS,
        acquire_timeout: float = _DEFAULT_ACQUIRE_TIMEOUT_SECONDS,
    ):
        self._client = redis_client
        self._key = key
        self._ttl = ttl
        self._acquire_timeout = acquire_timeout
        self._token: Optional[str] = None

    async def acquire(self) -> bool:
        """Attempt to acquire the lock within the timeout period.

        Returns:
            True if lock was acquired, False if timed out.
        """
        token = str(uuid.uuid4())
        deadline = time.monotonic() + self._acquire_timeout

        while time.monotonic() < deadline:
            # SET key token NX EX ttl: atomic acquire with expiry
            acquired = self._client.set(
                self._key, token, nx=True, ex=self._ttl
            )
            if acquired:
                self._token = token
                return True
            await asyncio.sleep(_RETRY_INTERVAL_SECONDS)

        logger.warning(
            "Failed to acquire lock %s within %ss", self._key, self._acquire_timeout
        )
        return False

    def release(self) -> None:
        """Release the lock if we hold it.

        Uses a Lua script to atomically check-and-delete, ensuring
        only the lock holder can release it.
        """
        if self._token is None:
            return

        lua_script = """
        if redis.call("get", KEYS[1]) == ARGV[1] then
            return redis.call("del", KEYS[1])
        else
            return 0
        end
        """
        try:
            self._client.eval(lua_script, 1, self._key, self._token)
        except Exception as e:
            logger.warning("Failed to release lock %s: %s", self._key, e)
        finally:
            self._token = None

    async def __aenter__(self):
        acquired = await self.acquire()
        if not acquired:
            logger.warning("Could not acquire lock %s within %ss", self._key, self._acquire_timeout)
            raise StorageBusyError(f"lock:{self._key}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


class RedisLockManager:
    """Factory for creating RedisLock instances with a consistent key prefix."""

    LOCK_KEY_PREFIX = "circles:lock:"

    def __init__(self, redis_client):
        self._client = redis_client

    def get_lock(
        self,
        key: str,
        ttl: int = _DEFAULT_LOCK_TTL_SECONDS,
        acquire_timeout: float = _DEFAULT_ACQUIRE_TIMEOUT_SECONDS,
    ) -> RedisLock:
        """Create a distributed lock for the specified record key."""
        return RedisLock(
            self._client,
            f"{self.LOCK_KEY_PREFIX}{key}",
            ttl=ttl,
            acquire_timeout=acquire_timeout,
        )


class _LocalLock:
    """Reference-counted asyncio.Lock owned by a LocalLockManager."""

    def __init__(self, manager: "LocalLockManager", key: str):
        self._manager = manager
        self._key = key

    async def __aenter__(self):
        lock = self._manager._checkout(self._key)
        try:
            await lock.acquire()
        except BaseException:
            self._manager._checkin(self._key)
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        lock = self._manager._locks[self._key]
        lock.release()
        self._manager._checkin(self._key)
        return False


class LocalLockManager:
    """In-process per-key locks; idle keys are discarded."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._refcounts: Dict[str, int] = {}

    def get_lock(self, key: str) -> _LocalLock:
        return _LocalLock(self, key)

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._refcounts[key] = self._refcounts.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        remaining = self._refcounts.get(key, 1) - 1
        if remaining <= 0:
            self._refcounts.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._refcounts[key] = remaining

    def active_keys(self) -> list[str]:
        return list(self._locks.keys())
