"""Tests for per-record lock managers."""
import asyncio
from unittest.mock import MagicMock, patch

import pytest

from app.core.exceptions import StorageBusyError
from app.storage import create_lock_manager
from app.storage.distributed_lock import LocalLockManager, RedisLock, RedisLockManager


class FakeRedisForLock:
    """Minimal fake Redis client that simulates SET NX EX and Lua eval."""

    def __init__(self):
        self._store: dict[str, str] = {}

    def set(self, key: str, value: str, nx: bool = False, ex: int = None):
        if nx and key in self._store:
            return None
        self._store[key] = value
        return True

    def eval(self, script: str, numkeys: int, *args):
        key, token = args[0], args[1]
        if self._store.get(key) == token:
            del self._store[key]
            return 1
        return 0


@pytest.fixture
def fake_redis():
    return FakeRedisForLock()


CIRCLE_KEY = "circles:lock:circle:c-1"


class TestRedisLock:

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, fake_redis):
        lock = RedisLock(fake_redis, CIRCLE_KEY, ttl=10)
        assert await lock.acquire() is True
        assert CIRCLE_KEY in fake_redis._store

        lock.release()
        assert CIRCLE_KEY not in fake_redis._store

    @pytest.mark.asyncio
    async def test_second_holder_times_out(self, fake_redis):
        holder = RedisLock(fake_redis, CIRCLE_KEY, ttl=10)
        waiter = RedisLock(fake_redis, CIRCLE_KEY, ttl=10, acquire_timeout=0.1)

        await holder.acquire()
        assert await waiter.acquire() is False

        holder.release()
        assert await waiter.acquire() is True
        waiter.release()

    @pytest.mark.asyncio
    async def test_only_holder_can_release(self, fake_redis):
        holder = RedisLock(fake_redis, CIRCLE_KEY, ttl=10)
        other = RedisLock(fake_redis, CIRCLE_KEY, ttl=10)

        await holder.acquire()
        other._token = "wrong-token"
        other.release()

        assert CIRCLE_KEY in fake_redis._store
        holder.release()

    def test_release_without_acquire_is_noop(self, fake_redis):
        RedisLock(fake_redis, CIRCLE_KEY, ttl=10).release()

    @pytest.mark.asyncio
    async def test_context_manager_releases_on_exception(self, fake_redis):
        lock = RedisLock(fake_redis, CIRCLE_KEY, ttl=10)
        with pytest.raises(ValueError):
            async with lock:
                assert CIRCLE_KEY in fake_redis._store
                raise ValueError("join failed")
        assert CIRCLE_KEY not in fake_redis._store

    @pytest.mark.asyncio
    async def test_context_manager_timeout_raises_storage_busy(self, fake_redis):
        holder = RedisLock(fake_redis, CIRCLE_KEY, ttl=10)
        await holder.acquire()

        with pytest.raises(StorageBusyError) as exc_info:
            async with RedisLock(fake_redis, CIRCLE_KEY, ttl=10, acquire_timeout=0.1):
                pass
        assert exc_info.value.http_status == 503
        assert exc_info.value.details == {"operation": f"lock:{CIRCLE_KEY}"}
        holder.release()

    @pytest.mark.asyncio
    async def test_redis_error_on_release_is_handled(self, fake_redis):
        lock = RedisLock(fake_redis, CIRCLE_KEY, ttl=10)
        await lock.acquire()
        lock._client = MagicMock()
        lock._client.eval.side_effect = ConnectionError("Redis down")
        lock.release()


class TestRedisLockManager:

    def test_keys_are_prefixed(self, fake_redis):
        manager = RedisLockManager(fake_redis)
        assert manager.get_lock("circle:c-1")._key == CIRCLE_KEY
        assert manager.get_lock("session:s-1")._key == "circles:lock:session:s-1"

    @pytest.mark.asyncio
    async def test_different_records_are_independent(self, fake_redis):
        manager = RedisLockManager(fake_redis)
        circle_lock = manager.get_lock("circle:c-1")
        host_lock = manager.get_lock("host:u-1")

        await circle_lock.acquire()
        assert await host_lock.acquire() is True

        circle_lock.release()
        host_lock.release()


class TestLocalLockManager:

    @pytest.mark.asyncio
    async def test_same_key_serializes(self):
        manager = LocalLockManager()
        order = []

        async def worker(name: str, delay: float):
            async with manager.get_lock("circle:c-1"):
                order.append(f"{name}-in")
                await asyncio.sleep(delay)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a", 0.05), worker("b", 0))

        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self):
        manager = LocalLockManager()
        async with manager.get_lock("circle:c-1"):
            await asyncio.wait_for(self._enter(manager, "circle:c-2"), timeout=0.5)

    @staticmethod
    async def _enter(manager, key):
        async with manager.get_lock(key):
            return True

    @pytest.mark.asyncio
    async def test_idle_keys_are_discarded(self):
        manager = LocalLockManager()
        async with manager.get_lock("session:s-1"):
            assert manager.active_keys() == ["session:s-1"]
        assert manager.active_keys() == []

    @pytest.mark.asyncio
    async def test_lock_released_on_exception(self):
        manager = LocalLockManager()
        with pytest.raises(RuntimeError):
            async with manager.get_lock("circle:c-1"):
                raise RuntimeError("boom")

        await asyncio.wait_for(self._enter(manager, "circle:c-1"), timeout=0.5)
        assert manager.active_keys() == []


class TestCreateLockManager:

    def test_empty_url_gives_local_locks(self):
        assert isinstance(create_lock_manager(""), LocalLockManager)

    def test_reachable_redis_gives_redis_locks(self, fake_redis):
        fake_redis.ping = lambda: True
        with patch("redis.Redis.from_url", return_value=fake_redis):
            manager = create_lock_manager("redis://fake:6379/0")
        assert isinstance(manager, RedisLockManager)

    def test_unreachable_redis_falls_back(self):
        client = MagicMock()
        client.ping.side_effect = ConnectionError("refused")
        with patch("redis.Redis.from_url", return_value=client):
            manager = create_lock_manager("redis://fake:6379/0")
        assert isinstance(manager, LocalLockManager)
