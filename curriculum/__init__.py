"""
Curriculum lifecycle service
Flask Application Factory.

Usage:
    from curriculum import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from curriculum.config import config
from curriculum.middleware.actor_context import init_actor_context
from curriculum.middleware.logging_config import configure_logging
from curriculum.middleware.rate_limiter import init_rate_limits
from curriculum.middleware.timing import init_request_timing
from curriculum.models import db

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
    default_limits=[],  # no global limit, applied per-blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def _error(code: str, message: str, status: int):
    return {"error": {"code": code, "message": message, "details": {}}}, status


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
    app.config.from_object(config[config_name]())

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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Actor context (X-User-Id / X-Tenant-Id / X-User-Role) ────────────
    init_actor_context(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from curriculum.models import approval as _approval_models      # noqa: F401
    from curriculum.models import audit as _audit_models            # noqa: F401
    from curriculum.models import auth as _auth_models              # noqa: F401
    from curriculum.models import curriculum as _curriculum_models  # noqa: F401
    from curriculum.models import discussion as _discussion_models  # noqa: F401
    from curriculum.models import mapping as _mapping_models        # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from curriculum.blueprints.approval_bp import approval_bp
    from curriculum.blueprints.curriculum_bp import curriculum_bp
    from curriculum.blueprints.discussion_bp import discussion_bp
    from curriculum.blueprints.mapping_bp import mapping_bp
    from curriculum.blueprints.structure_bp import structure_bp

    app.register_blueprint(curriculum_bp)
    app.register_blueprint(structure_bp)
    app.register_blueprint(approval_bp)
    app.register_blueprint(mapping_bp)
    app.register_blueprint(discussion_bp)

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "curriculum-lifecycle"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return _error("NOT_FOUND", f"No route for {request.path}", 404)

    @app.errorhandler(405)
    def method_not_allowed(e):
        return _error("METHOD_NOT_ALLOWED", "Method not allowed", 405)

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return _error("UNSUPPORTED_MEDIA_TYPE", e.description, 415)

    @app.errorhandler(429)
    def rate_limited(e):
        return _error("RATE_LIMITED", f"Too many requests: {e.description}", 429)

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return _error("INTERNAL_ERROR", "Internal server error", 500)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
