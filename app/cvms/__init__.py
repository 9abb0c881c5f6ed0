import logging
import os
import uuid

from dotenv import load_dotenv
from flask import Flask, g, request, session

from app.cvms.api import error_response
from app.cvms.config import load_config, missing_s3_settings
from app.cvms.db import init_db, teardown_db_session
from app.cvms.routes import bp as routes_bp
from app.cvms.auth import bp as auth_bp, load_current_user
from app.cvms.admin import bp as admin_bp
from app.cvms.modules.companies.admin import bp as companies_bp
from app.cvms.modules.systems.admin import bp as systems_bp
from app.cvms.modules.risks.admin import bp as risks_bp
from app.cvms.modules.rtm.admin import bp as rtm_bp
from app.cvms.modules.documents.admin import bp as documents_bp
from app.cvms.modules.templates.admin import bp as templates_bp
from app.cvms.modules.packages.admin import bp as packages_bp
from app.cvms.modules.projects.admin import bp as projects_bp
from app.cvms.modules.changes.admin import bp as changes_bp
from app.cvms.modules.dashboard.admin import bp as dashboard_bp
from app.cvms.modules.invitations.admin import bp as invitations_bp
from app.cvms.security import csrf_required, ensure_csrf_token, validate_csrf
from app.cvms.storage import StorageError
from app.cvms.tenancy import load_current_company
from app.cvms.utils import WorkflowError

_UNAUTHENTICATED_PREFIXES = ("/static/", "/health", "/healthz")


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, (level_name or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("app.cvms").setLevel(level)


def create_app(config_overrides: dict | None = None) -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    if config_overrides:
        app.config.update(config_overrides)

    _configure_logging(app.config.get("LOG_LEVEL", "INFO"))
    app.logger.setLevel(logging.getLogger("app.cvms").level)

    @app.before_request
    def _assign_request_id():
        g.request_id = uuid.uuid4().hex

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNAUTHENTICATED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if csrf_required(request) and not validate_csrf(request):
            app.logger.warning("CSRF rejected: endpoint=%s request_id=%s", request.endpoint, getattr(g, "request_id", None))
            return error_response("CSRF token missing or invalid.", 400)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage config check (no network call; log loudly on misconfiguration)
    missing_s3 = missing_s3_settings(app.config)
    if missing_s3:
        app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(companies_bp, url_prefix="/companies")
    app.register_blueprint(systems_bp, url_prefix="/systems")
    app.register_blueprint(risks_bp, url_prefix="/risks")
    app.register_blueprint(rtm_bp, url_prefix="/rtm")
    app.register_blueprint(documents_bp, url_prefix="/documents")
    app.register_blueprint(templates_bp, url_prefix="/templates")
    app.register_blueprint(packages_bp, url_prefix="/packages")
    app.register_blueprint(projects_bp, url_prefix="/projects")
    app.register_blueprint(changes_bp, url_prefix="/changes")
    app.register_blueprint(dashboard_bp, url_prefix="/dashboard")
    app.register_blueprint(invitations_bp, url_prefix="/invitations")

    def _load_user_wrapper():
        if request.path.startswith(_UNAUTHENTICATED_PREFIXES):
            g.current_user = None
            g.current_company = None
            return None
        load_current_user()
        load_current_company()
        return None

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(WorkflowError)
    def _err_workflow(e):  # type: ignore[no-redef]
        return error_response(str(e), 409)

    @app.errorhandler(StorageError)
    def _err_storage(e):  # type: ignore[no-redef]
        app.logger.error("Storage error (request_id=%s): %s", getattr(g, "request_id", None), e)
        return error_response(str(e), 404 if "not found" in str(e).lower() else 500)

    @app.errorhandler(400)
    def _err_400(e):  # type: ignore[no-redef]
        return error_response(getattr(e, "description", None) or "Bad request.", 400)

    @app.errorhandler(401)
    def _err_401(e):  # type: ignore[no-redef]
        return error_response("Authentication required.", 401)

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return {"error": "Forbidden.", "missing_permission": missing}, 403

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return error_response("Not found", 404)

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return error_response("Method not allowed.", 405)

    @app.errorhandler(409)
    def _err_409(e):  # type: ignore[no-redef]
        return error_response(getattr(e, "description", None) or "Conflict.", 409)

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = int(app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
        return error_response(f"File too large. Maximum size is {limit_mb}MB.", 413)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return error_response("Internal server error.", 500)

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
