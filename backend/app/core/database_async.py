"""Async database connection and session management.

This module provides async database support using SQLAlchemy 2.0 async API.
Use get_async_db() for FastAPI dependency injection in async endpoints.
"""
from pathlib import Path
from typing import AsyncGenerator
import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import NullPool

from app.core.config import settings

logger = logging.getLogger(__name__)


def _ensure_sqlite_directory(url: str) -> None:
    """Create the parent directory of a file-based SQLite database."""
    if ":memory:" in url or ":///" not in url:
        return
    db_path = Path(url.split(":///", 1)[1])
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except PermissionError as e:
        logger.warning(f"Cannot create data directory {db_path.parent}: {e}")


def configure_sqlite_engine(engine: AsyncEngine) -> None:
    """Set WAL and busy timeout on every new SQLite connection."""

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        # Wait for locks instead of failing immediately
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with per-dialect pool settings."""
    if url.startswith("sqlite"):
        _ensure_sqlite_directory(url)
        # One connection per session so concurrent transactions stay isolated
        engine = create_async_engine(
            url,
            echo=echo,
            poolclass=NullPool,
            connect_args={"check_same_thread": False},
        )
        configure_sqlite_engine(engine)
        return engine
    # Default QueuePool for server databases
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


async_engine: AsyncEngine = create_engine_for_url(settings.DATABASE_URL_ASYNC, echo=settings.DEBUG)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency injection: Get async database session.

    Managers commit explicitly so that signaling side effects only run
    after a successful commit. Rollback is performed if an exception occurs.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_async_db(engine: AsyncEngine = async_engine):
    """Create tables if needed."""
    from app.models.base import Base
    import app.models  # noqa: F401  (register mappers)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")


async def close_async_db():
    """Close async database connections."""
    await async_engine.dispose()
    logger.info("Async database connections closed")


def _sanitize_db_url(url: str) -> str:
    """Sanitize database URL to hide password."""
    if "://" not in url:
        return url
    try:
        scheme, rest = url.split("://", 1)
        if "@" in rest:
            credentials, host_db = rest.split("@", 1)
            if ":" in credentials:
                user, _ = credentials.split(":", 1)
                return f"{scheme}://{user}:***@{host_db}"
        return url
    except Exception:
        return url[:20] + "***"

logger.info(f"Async database configured: {_sanitize_db_url(settings.DATABASE_URL_ASYNC)}")
