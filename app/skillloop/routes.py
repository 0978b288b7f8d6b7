from flask import Blueprint, g, redirect, render_template, url_for

from app.skillloop.db import db_session
from app.skillloop.rbac import require_permission, user_has_role

bp = Blueprint("routes", __name__)


def dashboard_endpoint(user) -> str:
    """Highest-privilege role wins."""
    if user_has_role(user, "admin"):
        return "admin.index"
    if user_has_role(user, "trainer"):
        return "routes.trainer_dashboard"
    if user_has_role(user, "manager"):
        return "routes.manager_dashboard"
    return "routes.learner_dashboard"


@bp.get("/")
def index():
    user = getattr(g, "current_user", None)
    if not user:
        return redirect(url_for("auth.login_get"))
    return redirect(url_for(dashboard_endpoint(user)))


@bp.get("/dashboard")
@require_permission("dashboard.view")
def learner_dashboard():
    from app.skillloop.modules.assessments.taking import my_assessments
    from app.skillloop.modules.journeys.engine import active_journey, calculate_phase_progress
    from app.skillloop.modules.skill_matrix.service import analyze_user_skill_gaps
    from app.skillloop.modules.trainings.models import TrainingAssignment

    s = db_session()
    user = g.current_user
    trainings = (
        s.query(TrainingAssignment)
        .filter(TrainingAssignment.user_id == user.id, TrainingAssignment.status.in_(("ASSIGNED", "IN_PROGRESS")))
        .order_by(TrainingAssignment.target_completion_date.asc())
        .all()
    )
    pending = [row for row in my_assessments(s, user) if row["assignment"].status != "COMPLETED"]
    journey = active_journey(s, user, ("IN_PROGRESS", "PAUSED"))
    return render_template(
        "dashboard/learner.html",
        gaps=analyze_user_skill_gaps(s, user),
        trainings=trainings,
        pending_assessments=pending,
        journey=journey,
        journey_progress=calculate_phase_progress(journey) if journey else None,
    )


@bp.get("/dashboard/team")
@require_permission("skill_matrix.view_team")
def manager_dashboard():
    from app.skillloop.modules.skill_matrix.service import analyze_user_skill_gaps
    from app.skillloop.modules.users.service import team_members

    s = db_session()
    team = team_members(s, g.current_user)
    rows = [(member, analyze_user_skill_gaps(s, member)) for member in team]
    return render_template("dashboard/manager.html", rows=rows)


@bp.get("/dashboard/trainer")
@require_permission("assessments.grade")
def trainer_dashboard():
    from app.skillloop.modules.assessments.taking import pending_grading
    from app.skillloop.modules.trainings.service import pending_proofs

    s = db_session()
    return render_template(
        "dashboard/trainer.html",
        grading=pending_grading(s),
        proofs=pending_proofs(s, g.current_user),
    )


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container probes. No DB access, minimal overhead.
    """
    return "ok", 200
