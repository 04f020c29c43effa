"""Unit tests for settings derivation and startup validation."""
import os
from unittest.mock import patch

from app.core.config import Settings


class TestDatabaseUrls:

    @patch.dict(os.environ, {"DATA_DIR": "/tmp/circles-data"}, clear=True)
    def test_default_sqlite_url_under_data_dir(self):
        settings = Settings()
        assert settings.DATABASE_URL == "sqlite:////tmp/circles-data/circles.db"
        assert settings.DATABASE_URL_ASYNC == "sqlite+aiosqlite:////tmp/circles-data/circles.db"

    @patch.dict(os.environ, {"DATABASE_URL": "postgresql://u:p@db/circles"}, clear=True)
    def test_postgres_url_gets_async_driver(self):
        assert Settings().DATABASE_URL_ASYNC == "postgresql+asyncpg://u:p@db/circles"

    @patch.dict(os.environ, {"DATABASE_URL": "sqlite+aiosqlite:///x.db"}, clear=True)
    def test_async_url_is_kept(self):
        assert Settings().DATABASE_URL_ASYNC == "sqlite+aiosqlite:///x.db"


class TestOrigins:

    @patch.dict(os.environ, {}, clear=True)
    def test_wildcard_cors_disables_credentials(self):
        settings = Settings(CORS_ALLOW_CREDENTIALS=True)
        assert settings.CORS_ORIGINS == ["*"]
        assert settings.CORS_ALLOW_CREDENTIALS is False

    @patch.dict(os.environ, {
        "CORS_ORIGINS": "https://a.example, https://b.example",
        "CORS_ALLOW_CREDENTIALS": "true",
        "ALLOWED_WS_ORIGINS": "https://a.example",
    }, clear=True)
    def test_comma_separated_origins(self):
        settings = Settings()
        assert settings.CORS_ORIGINS == ["https://a.example", "https://b.example"]
        assert settings.CORS_ALLOW_CREDENTIALS is True
        assert settings.ALLOWED_WS_ORIGINS == ["https://a.example"]


class TestStartupValidation:

    @patch.dict(os.environ, {"DEBUG": "false"}, clear=True)
    def test_missing_jwt_secret_is_fatal_in_production(self):
        warnings, errors = Settings().validate_startup()
        assert any("JWT_SECRET_KEY" in e for e in errors)

    @patch.dict(os.environ, {"DEBUG": "true"}, clear=True)
    def test_missing_jwt_secret_only_warns_in_debug(self):
        warnings, errors = Settings().validate_startup()
        assert errors == []
        assert any("JWT_SECRET_KEY" in w for w in warnings)

    @patch.dict(os.environ, {
        "JWT_SECRET_KEY": "secret",
        "AUDIO_APP_ID": "app",
        "AUDIO_APP_CERTIFICATE": "cert",
    }, clear=True)
    def test_fully_configured(self):
        settings = Settings()
        assert settings.audio_configured is True
        assert settings.validate_startup() == ([], [])

    @patch.dict(os.environ, {"JWT_SECRET_KEY": "secret", "JOIN_CODE_MAX_ATTEMPTS": "0"}, clear=True)
    def test_join_code_attempts_must_be_positive(self):
        _, errors = Settings().validate_startup()
        assert "JOIN_CODE_MAX_ATTEMPTS must be at least 1" in errors

    @patch.dict(os.environ, {}, clear=True)
    def test_policy_defaults(self):
        settings = Settings()
        assert settings.JOIN_CODE_MAX_ATTEMPTS == 10
        assert settings.CIRCLE_SWEEP_INTERVAL_SECONDS == 60.0
        assert settings.AUDIO_TOKEN_TTL_SECONDS == 3600
        assert settings.REDIS_URL == ""
