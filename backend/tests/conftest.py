"""Pytest configuration and fixtures for backend tests."""
import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Set test environment before importing app
os.environ["DEBUG"] = "true"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["REDIS_URL"] = ""
os.environ["CIRCLE_SWEEP_ENABLED"] = "false"
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(tempfile.gettempdir(), f'circles_test_{os.getpid()}.db')}"

from app.api.dependencies import get_audio_issuer, get_circle_manager, get_game_session_manager
from app.core.auth import Principal, UserRole, create_access_token
from app.core.database_async import create_engine_for_url, get_async_db, init_async_db
from app.main import app
from app.services.audio_tokens import AudioCredentialIssuer
from app.services.circle_manager import CircleManager
from app.services.game_session_manager import GameSessionManager
from app.services.signaling import SignalingHub
from app.storage.distributed_lock import LocalLockManager


# ============================================================================
# Time
# ============================================================================

class FakeClock:
    """Injectable clock; tests move time forward explicitly."""

    def __init__(self, start: datetime = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Fresh file-backed SQLite database per test (one connection per session)."""
    test_engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'circles.db'}")
    await init_async_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ============================================================================
# Services
# ============================================================================

@pytest.fixture
def signaling():
    """SignalingHub double; async methods become AsyncMock."""
    return MagicMock(spec=SignalingHub)


@pytest.fixture
def lock_manager() -> LocalLockManager:
    return LocalLockManager()


@pytest.fixture
def circle_mgr(lock_manager, signaling, clock) -> CircleManager:
    return CircleManager(lock_manager=lock_manager, signaling=signaling, clock=clock)


@pytest.fixture
def game_mgr(lock_manager, signaling, clock) -> GameSessionManager:
    return GameSessionManager(lock_manager=lock_manager, signaling=signaling, clock=clock)


@pytest.fixture
def audio_issuer(clock) -> AudioCredentialIssuer:
    return AudioCredentialIssuer(
        app_id="test-app-id",
        app_certificate="test-app-certificate",
        ttl_seconds=3600,
        clock=clock,
    )


# ============================================================================
# Principals
# ============================================================================

def make_principal(user_id: str, role: UserRole = UserRole.USER, name: str = None) -> Principal:
    return Principal(id=user_id, role=role, display_name=name)


@pytest.fixture
def host() -> Principal:
    return make_principal("host-1", name="Hana")


@pytest.fixture
def users():
    """Five distinct regular users."""
    return [make_principal(f"user-{i}", name=f"Member {i}") for i in range(1, 6)]


@pytest.fixture
def admin() -> Principal:
    return make_principal("admin-1", role=UserRole.ADMIN, name="Ada")


@pytest.fixture
def leader() -> Principal:
    return make_principal("leader-1", role=UserRole.COMMUNITY_LEADER, name="Lee")


def auth_headers(principal: Principal) -> dict:
    return {"Authorization": f"Bearer {create_access_token(principal)}"}


# ============================================================================
# Application Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def test_app(session_factory, circle_mgr, game_mgr, audio_issuer) -> FastAPI:
    """FastAPI app wired to the per-test database and managers."""

    async def override_get_async_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_async_db] = override_get_async_db
    app.dependency_overrides[get_circle_manager] = lambda: circle_mgr
    app.dependency_overrides[get_game_session_manager] = lambda: game_mgr
    app.dependency_overrides[get_audio_issuer] = lambda: audio_issuer
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def async_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Async test client; lifespan is not run, tables come from the engine fixture."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def principal_factory():
    return make_principal


@pytest.fixture
def headers_for():
    return auth_headers
