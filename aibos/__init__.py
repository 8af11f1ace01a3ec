"""AIBOS application factory and bootstrap."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from flask import Flask

from aibos.config import config_by_name
from aibos.core.events.event_bus import event_bus
from aibos.core.utils.errors import DomainError
from aibos.extensions import init_extensions, jwt


def create_app(config_name: Optional[str] = None) -> Flask:
    """Create and configure the AIBOS Flask application."""
    env_name = (config_name or os.environ.get("APP_ENV") or "development").lower()
    project_root = Path(__file__).resolve().parent.parent
    instance_root = project_root / "instance"

    app = Flask(__name__, instance_path=str(instance_root), instance_relative_config=True)
    config_cls = config_by_name.get(env_name, config_by_name["development"])
    app.config.from_object(config_cls)
    instance_root.mkdir(parents=True, exist_ok=True)

    _configure_logging(app)

    # Normalize sqlite path to absolute to avoid "unable to open database file"
    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if db_uri.startswith("sqlite:///") and not db_uri.startswith("sqlite:////"):
        db_path = db_uri.replace("sqlite:///", "", 1)
        if db_path and db_path != ":memory:":
            abs_path = project_root / db_path
            abs_path.parent.mkdir(parents=True, exist_ok=True)
            app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{abs_path}"

    init_extensions(app)
    _register_blueprints(app)
    _register_error_handlers(app)
    _register_jwt_handlers(app)

    app.extensions["event_bus"] = event_bus

    @app.get("/health")
    def health():
        return {"ok": True}, 200

    @app.get("/api/v1/ping")
    def ping():
        """Lightweight endpoint for load-balancer health checks."""
        return {"pong": True}, 200

    from aibos.scripts.cli import register_commands

    register_commands(app)

    return app


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    logging.getLogger("aibos").setLevel(level)
    app.logger.setLevel(level)


def _register_blueprints(app: Flask) -> None:
    """Lazy import and register all controllers."""
    from aibos.core.audit.controllers import audit_api_bp
    from aibos.core.auth.controllers import auth_bp  # local import to avoid circulars
    from aibos.core.tenancy.controllers import tenancy_bp
    from aibos.domains.billing.controllers.bank_api import bank_api_bp
    from aibos.domains.billing.controllers.billing_api import billing_api_bp
    from aibos.domains.fx.controllers.fx_api import fx_api_bp
    from aibos.domains.ledger.controllers.account_api import account_api_bp
    from aibos.domains.ledger.controllers.journal_api import journal_api_bp
    from aibos.domains.periods.controllers.period_api import period_api_bp
    from aibos.domains.reports.controllers.report_api import report_api_bp

    app.register_blueprint(auth_bp, url_prefix="/api/v1/auth")
    for blueprint in (
        tenancy_bp,
        account_api_bp,
        journal_api_bp,
        fx_api_bp,
        period_api_bp,
        report_api_bp,
        billing_api_bp,
        bank_api_bp,
        audit_api_bp,
    ):
        app.register_blueprint(blueprint, url_prefix="/api/v1")


def _register_error_handlers(app: Flask) -> None:
    """JSON error responses."""
    from werkzeug.exceptions import HTTPException

    @app.errorhandler(DomainError)
    def _domain_error(exc: DomainError):
        return exc.to_dict(), exc.status_code

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        return {"ok": False, "error": exc.name.lower().replace(" ", "_"), "message": exc.description}, exc.code

    @app.errorhandler(Exception)
    def _generic_error(exc: Exception):
        app.logger.exception("Unhandled error: %s", exc)
        # In debug/testing, surface the exception message to speed up diagnosis
        if app.debug or app.testing:
            return {"ok": False, "error": "unexpected_error", "message": str(exc)}, 500
        return {"ok": False, "error": "unexpected_error"}, 500


def _register_jwt_handlers(app: Flask) -> None:
    """Revocation lookups and JSON bodies for token failures."""

    @jwt.token_in_blocklist_loader
    def _is_revoked(jwt_header, jwt_payload) -> bool:
        from aibos.core.auth.auth_service import is_token_revoked

        return is_token_revoked(jwt_payload.get("jti"))

    @jwt.unauthorized_loader
    def _missing_token(reason: str):
        return {"ok": False, "error": "unauthorized", "message": reason}, 401

    @jwt.invalid_token_loader
    def _invalid_token(reason: str):
        return {"ok": False, "error": "unauthorized", "message": reason}, 401

    @jwt.expired_token_loader
    def _expired_token(jwt_header, jwt_payload):
        return {"ok": False, "error": "unauthorized", "message": "Token has expired"}, 401

    @jwt.revoked_token_loader
    def _revoked_token(jwt_header, jwt_payload):
        return {"ok": False, "error": "unauthorized", "message": "Token has been revoked"}, 401
