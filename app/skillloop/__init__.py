import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, render_template, request, session

from app.skillloop.config import load_config
from app.skillloop.db import init_db, teardown_db_session
from app.skillloop.routes import bp as routes_bp
from app.skillloop.auth import bp as auth_bp, load_current_user
from app.skillloop.admin import bp as admin_bp
from app.skillloop.cron import bp as cron_bp
from app.skillloop.modules.users.admin import bp as users_bp
from app.skillloop.modules.skills.admin import bp as skills_bp
from app.skillloop.modules.job_roles.admin import bp as job_roles_bp
from app.skillloop.modules.system_config.admin import bp as system_config_bp
from app.skillloop.modules.skill_matrix.admin import bp as skill_matrix_bp
from app.skillloop.modules.assessments.admin import bp as assessments_bp
from app.skillloop.modules.trainings.admin import bp as trainings_bp
from app.skillloop.modules.journeys.admin import bp as journeys_bp
from app.skillloop.modules.notifications.admin import bp as notifications_bp

_UNTRACKED_PREFIXES = ("/static/", "/health", "/healthz")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # CSRF protection (minimal)
    from app.skillloop.security import csrf_required, ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.skillloop.rbac import user_has_permission, user_has_role

        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        def has_role(key: str) -> bool:
            return user_has_role(getattr(g, "current_user", None), key)

        return {"has_perm": has_perm, "has_role": has_role}

    @app.context_processor
    def _inject_unread_count() -> dict:
        from app.skillloop.db import db_session
        from app.skillloop.modules.notifications.service import unread_count

        user = getattr(g, "current_user", None)
        if not user:
            return {"unread_notifications": 0}
        return {"unread_notifications": unread_count(db_session(), user)}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNTRACKED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if csrf_required(request) and not validate_csrf(request):
            return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

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
            app.logger.warning("CRON_SECRET is not set; /cron endpoints will refuse every call.")

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

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            from botocore.exceptions import BotoCoreError, ClientError
            from app.skillloop.storage import S3Storage, storage_from_config

            try:
                storage = storage_from_config(app.config)
                if isinstance(storage, S3Storage):
                    storage.check_bucket()
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except (BotoCoreError, ClientError) as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(cron_bp, url_prefix="/cron")
    app.register_blueprint(users_bp, url_prefix="/admin")
    app.register_blueprint(skills_bp, url_prefix="/admin")
    app.register_blueprint(job_roles_bp, url_prefix="/admin")
    app.register_blueprint(system_config_bp, url_prefix="/admin")
    app.register_blueprint(skill_matrix_bp)
    app.register_blueprint(assessments_bp, url_prefix="/assessments")
    app.register_blueprint(trainings_bp, url_prefix="/trainings")
    app.register_blueprint(journeys_bp, url_prefix="/journeys")
    app.register_blueprint(notifications_bp)

    def _load_user_wrapper():
        if request.path.startswith(_UNTRACKED_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return render_template("errors/500.html", request_id=rid), 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        from flask import flash, redirect, url_for

        flash("File too large. Maximum size is 25MB.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("routes.index")), 302

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
