import logging
from datetime import timedelta

from flask import Flask, g, jsonify, render_template, request, session
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect

from app.corhub.config import load_config
from app.corhub.db import ENGINE_KEY, init_db, teardown_db_session
from app.corhub.routes import bp as routes_bp
from app.corhub.auth import bp as auth_bp, load_current_user
from app.corhub.modules.document_control.admin import bp as doc_control_bp
from app.corhub.modules.document_control.api import bp as documents_api_bp
from app.corhub.modules.document_control.lifecycle import status_color, status_label
from app.corhub.rbac import user_has_permission
from app.corhub.security import ensure_csrf_token, is_csrf_exempt, validate_csrf

logger = logging.getLogger(__name__)

# Tables/columns the running code depends on; checked once at startup.
_REQUIRED_SCHEMA: dict[str, tuple[str, ...]] = {
    "companies": ("id", "name", "is_active"),
    "documents": ("company_id", "control_number", "document_type_code", "next_review_date"),
    "document_versions": ("status", "is_current", "prepared_at", "reviewed_at", "approved_at", "published_at"),
    "document_control_sequences": ("current_sequence",),
    "audit_events": ("company_id", "client_ip"),
}

_UNTRACKED_PATHS = ("/static/", "/health", "/healthz")


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    root.setLevel(level)
    app.logger.setLevel(level)


def _is_api_request() -> bool:
    return request.path.startswith("/api/")


def _check_production_settings(app: Flask) -> None:
    env = (app.config.get("ENV") or "").strip().lower()
    if env not in ("prod", "production"):
        return
    db_url = str(app.config.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL is required in production.")
    if db_url.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
    if str(app.config.get("SECRET_KEY") or "") in ("", "change-me"):
        raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")


def _missing_schema(app: Flask) -> list[str]:
    """Columns from _REQUIRED_SCHEMA absent in the live DB. An empty DB is not reported."""
    insp = sa_inspect(app.extensions[ENGINE_KEY])
    if not insp.get_table_names():
        return []
    missing: list[str] = []
    for table, columns in _REQUIRED_SCHEMA.items():
        if not insp.has_table(table):
            missing.append(f"{table} (table)")
            continue
        cols = {c["name"] for c in insp.get_columns(table)}
        missing.extend(f"{table}.{col}" for col in columns if col not in cols)
    return missing


def _register_request_hooks(app: Flask) -> None:
    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNTRACKED_PATHS):
            return None
        ensure_csrf_token()
        session.permanent = True
        if is_csrf_exempt(request) or validate_csrf(request):
            return None
        app.logger.warning("CSRF check failed (path=%s)", request.path)
        if _is_api_request():
            return jsonify({"error": "CSRF token missing or invalid."}), 400
        return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    app.before_request(load_current_user)

    @app.before_request
    def _schema_guard():
        missing = app.config.get("_schema_health_missing")
        if not missing or not getattr(g, "current_user", None):
            return None
        if _is_api_request():
            return jsonify({"error": "Database schema out of date.", "missing": missing}), 500
        if request.path.startswith("/admin"):
            return render_template("errors/schema_out_of_date.html", missing=missing), 500
        return None

    @app.after_request
    def _tag_request_id(resp):
        rid = getattr(g, "request_id", None)
        if rid:
            resp.headers["X-Request-ID"] = rid
        return resp

    app.teardown_appcontext(teardown_db_session)


def _register_error_handlers(app: Flask) -> None:
    def _error(code: int, message: str, template: str, **ctx):
        if _is_api_request():
            return jsonify({"error": message}), code
        return render_template(template, message=message, **ctx), code

    @app.errorhandler(500)
    def _err_500(e):
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return _error(500, "Internal server error.", "errors/500.html")

    @app.errorhandler(404)
    def _err_404(e):
        return _error(404, "Not found.", "errors/404.html")

    @app.errorhandler(403)
    def _err_403(e):
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return _error(403, "Forbidden.", "errors/403.html", missing_permission=missing)

    @app.errorhandler(413)
    def _err_413(e):
        return _error(413, "Request body too large.", "errors/400.html")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    _configure_logging(app)
    _check_production_settings(app)

    @app.context_processor
    def _template_globals() -> dict:
        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        return {"csrf_token": ensure_csrf_token(), "has_perm": has_perm}

    app.jinja_env.filters["status_label"] = status_label
    app.jinja_env.filters["status_color"] = status_color

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "—"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    init_db(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(doc_control_bp, url_prefix="/admin/documents")
    app.register_blueprint(documents_api_bp, url_prefix="/api/documents")

    _register_request_hooks(app)
    _register_error_handlers(app)

    try:
        missing = _missing_schema(app)
    except Exception:
        app.logger.exception("Schema health check failed")
        missing = []
    if missing:
        app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
    app.config["_schema_health_missing"] = missing

    logger.info("create_app() complete; app ready to serve")
    return app
