"""
MOC Workflow Platform
Flask Application Factory.

Usage:
    from mocflow import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from mocflow.auth import init_auth
from mocflow.config import config
from mocflow.middleware.logging_config import configure_logging
from mocflow.middleware.rate_limiter import init_rate_limits
from mocflow.middleware.timing import init_request_timing
from mocflow.models import db
from mocflow.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = config[config_name]
    # ProductionConfig validates required env vars in __init__
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Authentication & CSRF middleware ──────────────────────────────────
    init_auth(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from mocflow.models import approval_level as _approval_level_models  # noqa: F401
    from mocflow.models import audit as _audit_models                    # noqa: F401
    from mocflow.models import dmoc as _dmoc_models                      # noqa: F401
    from mocflow.models import lookup as _lookup_models                  # noqa: F401
    from mocflow.models import moc as _moc_models                        # noqa: F401
    from mocflow.models import sequence as _sequence_models              # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if config_name != "production":
        with app.app_context():
            db.create_all()
            app.logger.debug("db.create_all() completed")

    # ── Blueprints ───────────────────────────────────────────────────────
    from mocflow.blueprints.approval_level_bp import approval_level_bp
    from mocflow.blueprints.dmoc_bp import dmoc_bp
    from mocflow.blueprints.health_bp import health_bp
    from mocflow.blueprints.moc_bp import moc_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(approval_level_bp)
    app.register_blueprint(moc_bp)
    app.register_blueprint(dmoc_bp)

    # ── Error handlers & rate limits ─────────────────────────────────────
    register_error_handlers(app)
    init_rate_limits(app, limiter)

    logger.info("MOC workflow app created (config=%s)", config_name)
    return app
