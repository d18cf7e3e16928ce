"""
HR Onboarding Platform
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy.exc import OperationalError

from app.config import config
from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models import db
from app.middleware.logging_config import configure_logging
from app.middleware.timing import init_request_timing
from app.middleware.jwt_auth import init_jwt_middleware
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()


def _seed_rbac_if_empty(app):
    from app.models.auth import Role
    from app.services.permission_service import seed_default_roles

    if Role.query.first() is not None:
        return
    result = seed_default_roles()
    db.session.commit()
    app.logger.info("Seeded default RBAC catalog: %s", result)


def _register_error_handlers(app):
    """Map service exceptions to the standard JSON envelope."""
    from app.services.user_service import AuthenticationError

    @app.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @app.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        code = E.VALIDATION_REQUIRED if str(error).endswith("_required") else E.VALIDATION_INVALID
        return api_error(code, str(error), details=error.details)

    @app.errorhandler(ForbiddenError)
    def _handle_forbidden(error: ForbiddenError):
        details = {"reason": error.reason}
        if error.fields:
            details["fields"] = error.fields
        return api_error(E.FORBIDDEN, "forbidden", details=details)

    @app.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        code = E.CONFLICT_DUPLICATE if error.reason == "duplicate" else E.CONFLICT_STATE
        return api_error(code, str(error), details={"reason": error.reason, "field": error.field})

    @app.errorhandler(AuthenticationError)
    def _handle_auth(error: AuthenticationError):
        code = E.AUTH_REQUIRED if error.status_code == 401 else E.FORBIDDEN
        return api_error(code, error.message, status=error.status_code)

    @app.errorhandler(OperationalError)
    def _handle_database(error: OperationalError):
        db.session.rollback()
        logger.exception("Database operational error")
        return api_error(E.DATABASE, "Database error")

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


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
    # ProductionConfig validates its environment on instantiation
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── JWT auth middleware (sets g.jwt_user_id) ─────────────────────────
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from app.models import auth as _auth_models        # noqa: F401
    from app.models import program as _program_models  # noqa: F401
    from app.models import audit as _audit_models      # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and \
            ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        db.create_all()
        if app.config.get("AUTO_SEED_RBAC"):
            _seed_rbac_if_empty(app)

    # ── Blueprints ───────────────────────────────────────────────────────
    from app.blueprints.admin_bp import admin_bp
    from app.blueprints.audit_bp import audit_bp
    from app.blueprints.auth_bp import auth_bp
    from app.blueprints.health_bp import health_bp
    from app.blueprints.program_bp import program_bp
    from app.blueprints.task_bp import task_bp
    from app.blueprints.template_bp import template_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(program_bp)
    app.register_blueprint(template_bp)
    app.register_blueprint(task_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(audit_bp)

    _register_error_handlers(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-rbac")
    def seed_rbac_cmd():
        """Create the default roles, permissions and grants (idempotent)."""
        from app.services.permission_service import seed_default_roles
        result = seed_default_roles()
        db.session.commit()
        logger.info("RBAC seed complete: %s", result)

    return app
