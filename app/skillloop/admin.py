from datetime import date

from flask import Blueprint, current_app, flash, g, render_template, request

from app.skillloop.audit import AUDIT_PAGE_LIMIT, audit_events_query
from app.skillloop.db import db_session
from app.skillloop.models import User
from app.skillloop.rbac import permission_keys, require_permission

bp = Blueprint("admin", __name__)


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _system_status(s) -> dict:
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    cfg = current_app.config
    status = {
        "env": (cfg.get("ENV") or "development").strip().lower(),
        "db_connected": False,
        "db_error": None,
        "storage_backend": cfg.get("STORAGE_BACKEND") or "local",
        "storage_configured": True,
        "storage_error": None,
        "mail_enabled": bool(cfg.get("MAIL_ENABLED")),
        "ai_configured": bool(cfg.get("GOOGLE_API_KEY")),
        "cron_configured": bool(cfg.get("CRON_SECRET")),
    }

    # DB connectivity (lightweight)
    try:
        s.execute(text("SELECT 1"))
        status["db_connected"] = True
    except SQLAlchemyError as e:
        status["db_error"] = str(e)

    # Storage config (no network calls)
    if status["storage_backend"] == "s3":
        missing = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not cfg.get(k)]
        status["storage_configured"] = not missing
        if missing:
            status["storage_error"] = f"Missing: {', '.join(missing)}"
    return status


@bp.get("/")
@require_permission("admin.view")
def index():
    from app.skillloop.modules.assessments.models import Assessment
    from app.skillloop.modules.job_roles.models import JobRole
    from app.skillloop.modules.journeys.service import journey_statistics
    from app.skillloop.modules.skills.models import Skill
    from app.skillloop.modules.trainings.models import Training

    s = db_session()
    counts = {
        "users": s.query(User).filter(User.is_active.is_(True)).count(),
        "skills": s.query(Skill).count(),
        "job_roles": s.query(JobRole).count(),
        "trainings": s.query(Training).count(),
        "assessments": s.query(Assessment).count(),
    }
    recent_events = audit_events_query(s).limit(10).all()
    return render_template(
        "admin/index.html",
        counts=counts,
        journey_stats=journey_statistics(s),
        recent_events=recent_events,
        system_status=_system_status(s),
    )


@bp.get("/me")
@require_permission("dashboard.view")
def me():
    user = g.current_user
    return render_template("admin/me.html", user=user, role_keys=user.role_keys, perm_keys=sorted(permission_keys(user)))


@bp.get("/audit")
@require_permission("audit.view")
def audit_list():
    """
    Audit trail UI (last 200 events) with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from must be YYYY-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to must be YYYY-MM-DD", "danger")

    events = audit_events_query(
        s, action=action, actor_email=actor_email, date_from=date_from, date_to=date_to
    ).limit(AUDIT_PAGE_LIMIT).all()
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_email=actor_email,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )
