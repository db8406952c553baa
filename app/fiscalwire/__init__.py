import logging
import os
from datetime import timedelta

from flask import Flask, g, jsonify, request, session
from dotenv import load_dotenv

from app.fiscalwire.config import load_config
from app.fiscalwire.db import init_db, teardown_db_session
from app.fiscalwire.rate_limit import limiter, too_many_requests
from app.fiscalwire.routes import bp as routes_bp
from app.fiscalwire.auth import bp as auth_bp, load_current_user
from app.fiscalwire.modules.cms.admin import bp as cms_admin_bp
from app.fiscalwire.modules.cms.public import bp as public_api_bp
from app.fiscalwire.modules.page_builder.admin import bp as page_builder_bp
from app.fiscalwire.modules.market.api import bp as market_bp
from app.fiscalwire.modules.news_import.cron import bp as cron_bp

# Blueprints whose POSTs skip the CSRF check: login/signup have no session yet,
# cron calls are machine-to-machine and authenticated with a bearer secret.
CSRF_EXEMPT_PREFIXES = ("auth.", "cron.")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    from app.fiscalwire.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if (request.endpoint or "").startswith(CSRF_EXEMPT_PREFIXES):
                return None
            if not validate_csrf(request):
                return jsonify({"error": "CSRF token missing or invalid."}), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("CRON_SECRET"):
            app.logger.warning("CRON_SECRET is not set; cron endpoints will reject every call.")

    init_db(app)
    limiter.init_app(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(cms_admin_bp, url_prefix="/api/admin")
    app.register_blueprint(page_builder_bp, url_prefix="/api/admin/page-builder")
    app.register_blueprint(public_api_bp, url_prefix="/api")
    app.register_blueprint(market_bp, url_prefix="/api/market")
    app.register_blueprint(cron_bp, url_prefix="/api/cron")

    def _load_user_wrapper():
        if request.path.startswith(("/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    def _json_error(status: int, message: str):
        return jsonify({"error": message}), status

    @app.errorhandler(400)
    def _err_400(e):  # type: ignore[no-redef]
        return _json_error(400, getattr(e, "description", None) or "Bad request")

    @app.errorhandler(401)
    def _err_401(e):  # type: ignore[no-redef]
        return _json_error(401, "Unauthorized")

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        app.logger.warning("Forbidden: path=%s request_id=%s", request.path, getattr(g, "request_id", None))
        return _json_error(403, "Forbidden")

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return _json_error(404, "Not found")

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return _json_error(405, "Method not allowed")

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return _json_error(413, "Request body too large")

    app.register_error_handler(429, too_many_requests)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return _json_error(500, "Internal server error")

    if app.config.get("SCHEDULER_ENABLED") and env != "test":
        from app.fiscalwire.modules.news_import import scheduler

        scheduler.start(app.config)

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
