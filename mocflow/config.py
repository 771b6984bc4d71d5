"""
MOC Workflow Platform
Environment configuration for the app factory.

``create_app(name)`` loads one of the classes in ``config`` by name; the name
comes from ``APP_ENV`` when not passed explicitly.

Environment variables:
    DATABASE_URL             PostgreSQL URL (SQLite file under instance/ if unset in development)
    TEST_DATABASE_URL        database for the test suite (in-memory SQLite by default)
    SECRET_KEY               required in production
    CORS_ORIGINS             comma-separated origins, "*" outside production
    REDIS_URL                Flask-Limiter storage, "memory://" by default
    API_AUTH_ENABLED         "false" turns off API-key checks (dev/test default)
    DMOC_MAX_TEMPORARY_DAYS  longest allowed temporary DMOC, in days
    MOC_INACTIVE_ALERT_DAYS  threshold for the inactive-over-alert list filter
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_LOCAL_DB = f"sqlite:///{os.path.join(basedir, 'instance', 'mocflow_dev.db')}"
_MEMORY_DB = "sqlite:///:memory:"


def _database_url(default=None):
    """DATABASE_URL with the legacy ``postgres://`` scheme normalised for SQLAlchemy 2."""
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return default
    return raw.replace("postgres://", "postgresql://", 1)


class Config:
    """Settings shared by every environment."""

    # Throwaway key per process unless SECRET_KEY is set
    SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_hex(32))
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Workflow rules
    DMOC_MAX_TEMPORARY_DAYS = int(os.getenv("DMOC_MAX_TEMPORARY_DAYS", "90"))
    MOC_INACTIVE_ALERT_DAYS = int(os.getenv("MOC_INACTIVE_ALERT_DAYS", "60"))

    # List endpoints
    DEFAULT_PAGE_SIZE = 20
    MAX_PAGE_SIZE = 100


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_LOCAL_DB)
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "false")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _MEMORY_DB)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    API_AUTH_ENABLED = "false"
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    """Instantiated (not just read) by create_app so the checks below run at startup."""

    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        # Long-running statements are cancelled after 30s
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
