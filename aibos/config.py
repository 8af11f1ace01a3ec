"""Application configuration for AIBOS."""

from __future__ import annotations

import os
from datetime import timedelta
from typing import Dict, Type

from dotenv import load_dotenv
from sqlalchemy.engine.url import make_url

load_dotenv()


def _engine_options_from_uri(uri: str) -> dict:
    url = make_url(uri)
    if url.get_backend_name() == "sqlite":
        return {
            "pool_pre_ping": True,
            "connect_args": {"detect_types": 0, "timeout": 30},
        }
    if url.get_backend_name() in {"postgresql", "postgres"}:
        timeout = int(os.environ.get("DB_CONNECT_TIMEOUT_SECONDS", "10"))
        return {"pool_pre_ping": True, "connect_args": {"connect_timeout": timeout}}
    return {"pool_pre_ping": True}


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class BaseConfig:
    """Base configuration loaded for all environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///instance/aibos.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = _engine_options_from_uri(SQLALCHEMY_DATABASE_URI)
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = _env_flag("SESSION_COOKIE_SECURE", "false")
    WTF_CSRF_ENABLED = _env_flag("CSRF_ENABLED", "true")

    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", SECRET_KEY)
    JWT_TOKEN_LOCATION = ["headers", "cookies"]
    # Cookie-borne tokens are checked by csrf_protected against the session token.
    JWT_COOKIE_CSRF_PROTECT = False
    JWT_COOKIE_SECURE = SESSION_COOKIE_SECURE
    JWT_COOKIE_SAMESITE = SESSION_COOKIE_SAMESITE
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=int(os.environ.get("JWT_ACCESS_MINUTES", "30")))
    JWT_REFRESH_TOKEN_EXPIRES = timedelta(days=int(os.environ.get("JWT_REFRESH_DAYS", "14")))

    RATELIMIT_DEFAULT = "200/hour"
    RATELIMIT_STORAGE_URI = os.environ.get("REDIS_URL", "memory://")
    RATELIMIT_ENABLED = _env_flag("RATELIMIT_ENABLED", "true")

    MAX_CONTENT_LENGTH = int(os.environ.get("MAX_CONTENT_LENGTH", str(2 * 1024 * 1024)))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Ledger
    DEFAULT_BASE_CURRENCY = os.environ.get("DEFAULT_BASE_CURRENCY", "USD")
    BALANCE_TOLERANCE = os.environ.get("BALANCE_TOLERANCE", "0.01")

    # Exchange rates
    FX_PRIMARY_URL = os.environ.get("FX_PRIMARY_URL", "https://api.exchangerate-api.com/v4")
    FX_FALLBACK_URL = os.environ.get("FX_FALLBACK_URL", "https://data.fixer.io/api")
    FX_FALLBACK_API_KEY = os.environ.get("FX_FALLBACK_API_KEY", "")
    FX_HTTP_TIMEOUT_SECONDS = float(os.environ.get("FX_HTTP_TIMEOUT_SECONDS", "30"))
    FX_STALE_AFTER_HOURS = int(os.environ.get("FX_STALE_AFTER_HOURS", "24"))
    FX_MAX_AGE_HOURS = int(os.environ.get("FX_MAX_AGE_HOURS", "72"))

    IDEMPOTENCY_TTL_HOURS = int(os.environ.get("IDEMPOTENCY_TTL_HOURS", "24"))
    AUDIT_LOG_PAGE_SIZE = int(os.environ.get("AUDIT_LOG_PAGE_SIZE", "50"))


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    ENV = "development"


class TestingConfig(BaseConfig):
    TESTING = True
    # File-backed SQLite so Alembic migrations and app share the same DB.
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///instance/test.db")
    SQLALCHEMY_ENGINE_OPTIONS = _engine_options_from_uri(SQLALCHEMY_DATABASE_URI)
    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = False
    FX_PRIMARY_URL = "https://primary.fx.test"
    FX_FALLBACK_URL = "https://fallback.fx.test"
    FX_FALLBACK_API_KEY = "test-key"


class ProductionConfig(BaseConfig):
    ENV = "production"
    SESSION_COOKIE_SECURE = True
    JWT_COOKIE_SECURE = True


config_by_name: Dict[str, Type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    # CI pipelines set APP_ENV=ci; map to testing defaults.
    "ci": TestingConfig,
}
