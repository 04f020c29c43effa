"""Application configuration.

Uses Pydantic BaseSettings for declarative environment variable binding.
"""
import os
import logging
from typing import Any, Optional
from pathlib import Path
from dotenv import load_dotenv

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

__all__ = ["settings", "Settings", "ENV_FILE_PATH", "ENV_FILE_LOADED"]

# Resolved .env path used at startup
ENV_FILE_PATH: Optional[Path] = None
ENV_FILE_LOADED: bool = False


def _find_env_file() -> Optional[Path]:
    """Find .env file from multiple possible locations."""
    global ENV_FILE_PATH, ENV_FILE_LOADED
    current_file = Path(__file__).resolve()
    possible_paths = [
        current_file.parent.parent.parent / '.env',
        current_file.parent.parent.parent.parent / '.env',
        Path.cwd() / '.env',
    ]

    for env_path in possible_paths:
        if env_path.exists():
            ENV_FILE_PATH = env_path
            ENV_FILE_LOADED = True
            logger.info(f"Found .env at: {env_path}")
            return env_path

    logger.warning("No .env file found - using environment variables and defaults")
    return None


_env_path = _find_env_file()
if _env_path:
    load_dotenv(dotenv_path=_env_path, override=False)


def _derive_async_database_url(url: str) -> str:
    """Derive async database URL from sync URL."""
    if "+aiosqlite" in url or "+asyncpg" in url:
        return url
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///")
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://")
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://")
    return url


def _split_csv(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    if not value:
        return []
    return [part.strip() for part in str(value).split(",") if part.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Application settings ---
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    DATA_DIR: str = "/app/data" if os.path.exists("/app") else "data"

    # --- Database configuration ---
    DATABASE_URL: Optional[str] = None  # Computed in validator if not set
    DATABASE_URL_ASYNC: str = ""

    # --- Identity tokens ---
    JWT_SECRET_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 60 * 24 * 7

    # --- HTTP / WebSocket origins ---
    CORS_ORIGINS: Any = "*"  # str from env, overwritten to list[str] by validator
    CORS_ALLOW_CREDENTIALS: bool = False
    ALLOWED_WS_ORIGINS: Any = ""  # str from env, overwritten to list[str] by validator

    # --- Cross-instance pub/sub and locks ---
    REDIS_URL: str = ""

    # --- Support circle policy ---
    CIRCLE_SWEEP_ENABLED: bool = True
    CIRCLE_SWEEP_INTERVAL_SECONDS: float = 60.0
    JOIN_CODE_MAX_ATTEMPTS: int = 10
    CIRCLE_LIST_LIMIT: int = 50
    CIRCLE_ADMIN_LIST_LIMIT: int = 500

    # --- Audio transport credentials ---
    AUDIO_APP_ID: str = ""
    AUDIO_APP_CERTIFICATE: str = ""
    AUDIO_TOKEN_TTL_SECONDS: int = 3600

    @model_validator(mode="after")
    def _finalize(self) -> "Settings":
        """Fill computed fields."""
        if not self.DATABASE_URL:
            self.DATABASE_URL = f"sqlite:///{self.DATA_DIR}/circles.db"
        self.DATABASE_URL_ASYNC = _derive_async_database_url(self.DATABASE_URL)

        origins = _split_csv(self.CORS_ORIGINS)
        self.CORS_ORIGINS = origins or ["*"]
        # Credentials cannot be combined with a wildcard origin
        if "*" in self.CORS_ORIGINS:
            self.CORS_ALLOW_CREDENTIALS = False
        self.ALLOWED_WS_ORIGINS = _split_csv(self.ALLOWED_WS_ORIGINS)
        return self

    @property
    def audio_configured(self) -> bool:
        return bool(self.AUDIO_APP_ID and self.AUDIO_APP_CERTIFICATE)

    def validate_startup(self) -> tuple[list[str], list[str]]:
        """Return (warnings, errors) for configuration that needs attention."""
        warnings: list[str] = []
        errors: list[str] = []

        if not self.JWT_SECRET_KEY:
            message = "JWT_SECRET_KEY is not configured. Authentication will fail."
            if self.DEBUG:
                warnings.append(message)
            else:
                errors.append(message)

        if not self.audio_configured:
            warnings.append(
                "AUDIO_APP_ID / AUDIO_APP_CERTIFICATE are not configured. "
                "Voice credentials will be unavailable."
            )

        if self.JOIN_CODE_MAX_ATTEMPTS < 1:
            errors.append("JOIN_CODE_MAX_ATTEMPTS must be at least 1")

        return warnings, errors


settings = Settings()
