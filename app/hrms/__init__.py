import atexit
import logging
import os

from dotenv import load_dotenv
from flask import Flask, g, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from app.hrms.audit import DatabaseAuditSink
from app.hrms.auth import load_request_id
from app.hrms.config import load_config
from app.hrms.db import Database
from app.hrms.errors import ServiceError
from app.hrms.modules.deductions.api import bp as deductions_bp
from app.hrms.routes import SERVICE_NAME, bp as routes_bp


def create_app(config_overrides: dict | None = None) -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    if config_overrides:
        app.config.update(config_overrides)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL"):
            raise RuntimeError("Database is not configured (DB_HOST/DB_NAME or DATABASE_URL) in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("JWT_SECRET") or str(app.config["JWT_SECRET"]) in ("", "change-me"):
            raise RuntimeError("JWT_SECRET must be set to a strong value in production (not default).")

    database = Database.from_config(app.config)
    database.init_app(app)
    app.extensions.setdefault("audit_sink", DatabaseAuditSink())

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                database.dispose()
                app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()
    atexit.register(database.dispose)

    CORS(
        app,
        resources={
            r"/api/*": {
                "origins": app.config.get("CORS_ORIGINS", ["*"]),
                "allow_headers": ["Content-Type", "Authorization", "X-Request-Id"],
                "methods": ["GET", "POST", "PUT", "DELETE"],
                "max_age": 3600,
            }
        },
    )

    app.register_blueprint(routes_bp)
    app.register_blueprint(deductions_bp, url_prefix="/api")

    app.before_request(load_request_id)

    @app.errorhandler(ServiceError)
    def _err_service(e: ServiceError):  # type: ignore[no-redef]
        if e.status_code >= 500:
            app.logger.error("%s (request_id=%s): %s", type(e).__name__, getattr(g, "request_id", None), e.message)
        elif e.status_code == 403:
            app.logger.warning(
                "Forbidden: %s missing_role=%s request_id=%s",
                e.message,
                getattr(g, "missing_role", None),
                getattr(g, "request_id", None),
            )
        return e.to_dict(), e.status_code

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return {
            "success": False,
            "error": "Not found",
            "message": f"Route {request.full_path.rstrip('?')} not found in {SERVICE_NAME}",
        }, 404

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return {"success": False, "error": "Method not allowed", "message": f"{request.method} {request.path}"}, 405

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return {"success": False, "error": "Request body too large"}, 413

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Flask has already logged the traceback via log_exception.
        original = getattr(e, "original_exception", None) or e
        app.logger.error("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        message = original.description if isinstance(original, HTTPException) else str(original)
        return {"success": False, "error": "Internal server error", "message": message}, 500

    logging.getLogger(__name__).info("create_app() complete; %s ready to serve", SERVICE_NAME)

    return app
