from __future__ import annotations

import io
from datetime import date

from flask import Blueprint, abort, flash, g, redirect, render_template, request, send_file, url_for

from app.skillloop.audit import record_event
from app.skillloop.constants import PROFICIENCY_LEVELS
from app.skillloop.db import db_session
from app.skillloop.models import User
from app.skillloop.modules.job_roles.models import JobRole
from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry
from app.skillloop.modules.skill_matrix.service import (
    GAP_CATEGORIES,
    STATUSES,
    add_user_skill,
    analyze_user_skill_gaps,
    batch_update_desired_levels,
    create_entry,
    delete_entry,
    get_user_skill_matrix,
    sync_user_skills_with_role,
    update_desired_level,
    update_skill_matrix_gaps,
)
from app.skillloop.modules.skill_matrix.tna import (
    generate_department_tna,
    generate_organization_tna,
    generate_user_tna,
    tna_csv,
)
from app.skillloop.modules.skills.models import Skill, SkillCategory
from app.skillloop.rbac import can_view_user, is_admin, require_permission, user_has_permission
from app.skillloop.utils import ServiceError, parse_int

bp = Blueprint("skill_matrix", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _load_viewable_user(user_id: int) -> User:
    s = db_session()
    target = s.get(User, user_id)
    if not target:
        abort(404)
    if not can_view_user(_current_user(), target):
        abort(403)
    return target


def _can_edit_entry(entry: SkillMatrixEntry) -> bool:
    u = _current_user()
    return entry.user_id == u.id or user_has_permission(u, "skill_matrix.manage")


def _matrix_filters() -> dict:
    return {
        "category_id": parse_int(request.args.get("category_id")),
        "status": (request.args.get("status") or "").strip() or None,
        "search": (request.args.get("q") or "").strip() or None,
        "gap_categories": [c for c in request.args.getlist("gap") if c],
    }


def _render_matrix(target: User):
    s = db_session()
    filters = _matrix_filters()
    return render_template(
        "skill_matrix/matrix.html",
        target=target,
        rows=get_user_skill_matrix(s, target, filters),
        analysis=analyze_user_skill_gaps(s, target),
        filters=filters,
        categories=s.query(SkillCategory).order_by(SkillCategory.name.asc()).all(),
        skills=s.query(Skill).order_by(Skill.name.asc()).all(),
        statuses=STATUSES,
        gap_categories=GAP_CATEGORIES,
        levels=PROFICIENCY_LEVELS,
        is_own=target.id == _current_user().id,
        can_manage=user_has_permission(_current_user(), "skill_matrix.manage"),
    )


# ---------- Matrix views ----------
@bp.get("/skill-matrix")
@require_permission("skill_matrix.view_own")
def my_matrix():
    return _render_matrix(_current_user())


@bp.get("/skill-matrix/users/<int:user_id>")
@require_permission("skill_matrix.view_own")
def user_matrix(user_id: int):
    return _render_matrix(_load_viewable_user(user_id))


@bp.get("/skill-matrix/team")
@require_permission("skill_matrix.view_team")
def team_matrix():
    s = db_session()
    u = _current_user()
    q = s.query(User).filter(User.is_active.is_(True))
    if not is_admin(u):
        q = q.filter(User.manager_id == u.id)
    team = q.order_by(User.name.asc()).all()
    summaries = [(member, analyze_user_skill_gaps(s, member)) for member in team]
    return render_template("skill_matrix/team.html", summaries=summaries)


# ---------- Personal goals and entry edits ----------
@bp.post("/skill-matrix/personal-goal")
@require_permission("skill_matrix.view_own")
def personal_goal_post():
    s = db_session()
    u = _current_user()
    payload = {
        "skill_id": parse_int(request.form.get("skill_id")),
        "skill_name": request.form.get("skill_name"),
        "category_name": request.form.get("category_name"),
        "desired_level": request.form.get("desired_level"),
        "current_level": request.form.get("current_level"),
    }
    try:
        add_user_skill(s, u, payload, u)
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("skill_matrix.my_matrix"))
    s.commit()
    flash("Skill added to your matrix.", "success")
    return redirect(url_for("skill_matrix.my_matrix"))


@bp.post("/skill-matrix/entries/<int:entry_id>/desired")
@require_permission("skill_matrix.view_own")
def entry_desired_post(entry_id: int):
    s = db_session()
    entry = s.get(SkillMatrixEntry, entry_id)
    if not entry:
        abort(404)
    if not _can_edit_entry(entry):
        abort(403)
    try:
        update_desired_level(s, entry, request.form.get("desired_level") or "", _current_user())
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("skill_matrix.user_matrix", user_id=entry.user_id))
    s.commit()
    flash("Desired level updated.", "success")
    return redirect(url_for("skill_matrix.user_matrix", user_id=entry.user_id))


@bp.post("/skill-matrix/entries/<int:entry_id>/delete")
@require_permission("skill_matrix.view_own")
def entry_delete(entry_id: int):
    s = db_session()
    entry = s.get(SkillMatrixEntry, entry_id)
    if not entry:
        abort(404)
    # Learners may only drop their own personal goals.
    owner_goal = entry.user_id == _current_user().id and entry.status == "personal_goal"
    if not owner_goal and not user_has_permission(_current_user(), "skill_matrix.manage"):
        abort(403)
    user_id = entry.user_id
    delete_entry(s, entry, _current_user())
    s.commit()
    flash("Skill removed from matrix.", "success")
    return redirect(url_for("skill_matrix.user_matrix", user_id=user_id))


@bp.post("/skill-matrix/users/<int:user_id>/entries/new")
@require_permission("skill_matrix.manage")
def entry_new_post(user_id: int):
    s = db_session()
    target = s.get(User, user_id)
    if not target:
        abort(404)
    payload = {
        "skill_id": request.form.get("skill_id"),
        "desired_level": request.form.get("desired_level"),
        "current_level": request.form.get("current_level"),
    }
    try:
        create_entry(s, target, payload, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("skill_matrix.user_matrix", user_id=user_id))
    s.commit()
    flash("Skill matrix entry created.", "success")
    return redirect(url_for("skill_matrix.user_matrix", user_id=user_id))


@bp.post("/skill-matrix/users/<int:user_id>/batch")
@require_permission("skill_matrix.manage")
def batch_desired_post(user_id: int):
    s = db_session()
    target = s.get(User, user_id)
    if not target:
        abort(404)
    updates = []
    for key, value in request.form.items():
        # Fields are named desired_<entry_id>.
        if key.startswith("desired_") and value:
            entry_id = parse_int(key.removeprefix("desired_"))
            if entry_id:
                updates.append((entry_id, value))
    if not updates:
        flash("Nothing to update.", "info")
        return redirect(url_for("skill_matrix.user_matrix", user_id=user_id))
    try:
        n = batch_update_desired_levels(s, target, updates, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("skill_matrix.user_matrix", user_id=user_id))
    s.commit()
    flash(f"Updated {n} desired level(s).", "success")
    return redirect(url_for("skill_matrix.user_matrix", user_id=user_id))


@bp.post("/skill-matrix/users/<int:user_id>/sync")
@require_permission("skill_matrix.manage")
def sync_post(user_id: int):
    s = db_session()
    target = s.get(User, user_id)
    if not target:
        abort(404)
    if not target.job_role_id:
        flash("User has no job role to sync from.", "danger")
        return redirect(url_for("skill_matrix.user_matrix", user_id=user_id))
    result = sync_user_skills_with_role(s, target, _current_user())
    s.commit()
    flash(f"Synced with role: {result['created']} added, {result['updated']} updated.", "success")
    return redirect(url_for("skill_matrix.user_matrix", user_id=user_id))


@bp.post("/skill-matrix/users/<int:user_id>/recalculate")
@require_permission("skill_matrix.view_own")
def recalculate_post(user_id: int):
    s = db_session()
    target = s.get(User, user_id)
    if not target:
        abort(404)
    u = _current_user()
    if target.id != u.id and not is_admin(u):
        abort(403)
    n = update_skill_matrix_gaps(s, target)
    s.commit()
    flash(f"Recalculated {n} skill gap(s).", "success")
    return redirect(url_for("skill_matrix.user_matrix", user_id=user_id))


# ---------- TNA ----------
@bp.get("/skill-matrix/users/<int:user_id>/tna")
@require_permission("skill_matrix.view_own")
def user_tna(user_id: int):
    s = db_session()
    target = _load_viewable_user(user_id)
    return render_template("skill_matrix/user_tna.html", tna=generate_user_tna(s, target))


def _tna_filters() -> dict:
    return {
        "department": (request.args.get("department") or "").strip() or None,
        "job_role_id": parse_int(request.args.get("job_role_id")),
    }


@bp.get("/tna")
@require_permission("tna.view")
def org_tna():
    s = db_session()
    filters = _tna_filters()
    report = generate_organization_tna(s, filters, viewer=_current_user())
    departments = sorted(d for (d,) in s.query(User.department).filter(User.department.isnot(None)).distinct().all())
    from app.skillloop.modules.trainings.models import Training

    return render_template(
        "skill_matrix/org_tna.html",
        report=report,
        filters=filters,
        departments=departments,
        job_roles=s.query(JobRole).order_by(JobRole.name.asc()).all(),
        trainings=s.query(Training).order_by(Training.topic_name.asc()).all(),
    )


@bp.get("/tna/department")
@require_permission("tna.view")
def department_tna():
    s = db_session()
    department = (request.args.get("department") or "").strip()
    if not department:
        flash("Choose a department.", "danger")
        return redirect(url_for("skill_matrix.org_tna"))
    try:
        summary = generate_department_tna(s, department, viewer=_current_user())
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("skill_matrix.org_tna"))
    return render_template("skill_matrix/department_tna.html", summary=summary)


@bp.get("/tna/export")
@require_permission("tna.export")
def tna_export():
    fmt = (request.args.get("format") or "csv").strip().lower()
    if fmt != "csv":
        return {"error": "Unsupported format. Use format=csv."}, 400
    s = db_session()
    filters = _tna_filters()
    report = generate_organization_tna(s, filters, viewer=_current_user())
    data = tna_csv(report["employee_tnas"]).encode("utf-8")
    record_event(
        s,
        actor=_current_user(),
        action="tna.export",
        entity_type="TNA",
        entity_id="export",
        metadata={"filters": filters, "row_count": len(report["employee_tnas"])},
    )
    s.commit()
    return send_file(
        io.BytesIO(data),
        mimetype="text/csv",
        as_attachment=True,
        download_name=f"tna-report-{date.today().isoformat()}.csv",
        max_age=0,
    )


@bp.post("/tna/assign-training")
@require_permission("trainings.assign")
def tna_assign_training():
    """Assign one training to the selected users straight from the TNA screen."""
    from app.skillloop.modules.trainings.models import Training
    from app.skillloop.modules.trainings.service import assign_training, assignment_payload_from_form

    s = db_session()
    training = s.get(Training, parse_int(request.form.get("training_id")) or 0)
    if not training:
        flash("Choose a training.", "danger")
        return redirect(url_for("skill_matrix.org_tna"))
    payload = assignment_payload_from_form(request.form)
    try:
        created = assign_training(s, training, payload, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("skill_matrix.org_tna"))
    s.commit()
    flash(f"Assigned '{training.topic_name}' to {len(created)} employee(s).", "success")
    return redirect(url_for("skill_matrix.org_tna"))
