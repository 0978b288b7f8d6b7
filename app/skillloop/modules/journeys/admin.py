from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.skillloop.db import db_session
from app.skillloop.models import User
from app.skillloop.modules.assessments.models import Assessment
from app.skillloop.modules.journeys.constants import JOURNEY_STATUSES, PHASE_TYPES
from app.skillloop.modules.journeys.engine import (
    active_journey,
    calculate_phase_progress,
    manually_complete_phase,
    pause_journey,
    resume_journey,
)
from app.skillloop.modules.journeys.models import Journey, JourneyPhase
from app.skillloop.modules.journeys.service import (
    add_journey_phase,
    assign_mentor_to_phase,
    create_journey,
    delete_journey_phase,
    journey_statistics,
    link_assessment,
    link_training,
    list_journeys_query,
    mentor_phases,
    remove_mentor_from_phase,
    skip_journey_phase,
    update_phase_details,
    validate_phase_payload,
)
from app.skillloop.modules.trainings.models import TrainingAssignment
from app.skillloop.rbac import require_permission, user_has_permission
from app.skillloop.utils import ServiceError, paginate, parse_datetime, parse_int

bp = Blueprint("journeys", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_journey(journey_id: int) -> Journey:
    j = db_session().get(Journey, journey_id)
    if not j:
        abort(404)
    return j


def _get_phase(phase_id: int) -> JourneyPhase:
    p = db_session().get(JourneyPhase, phase_id)
    if not p:
        abort(404)
    return p


def _back(journey_id: int):
    return redirect(url_for("journeys.journey_detail", journey_id=journey_id))


@bp.get("")
@require_permission("journeys.view")
def journeys_list():
    s = db_session()
    filters = {
        "status": (request.args.get("status") or "").strip().upper() or None,
        "employee_type": (request.args.get("employee_type") or "").strip().upper() or None,
        "search": (request.args.get("q") or "").strip() or None,
    }
    page = parse_int(request.args.get("page"), 1) or 1
    result = paginate(list_journeys_query(s, filters), page)

    def _page_url(p: int) -> str:
        return url_for(
            "journeys.journeys_list",
            status=filters["status"],
            employee_type=filters["employee_type"],
            q=filters["search"],
            page=p,
        )

    return render_template(
        "journeys/list.html",
        journeys=result["items"],
        progress={j.id: calculate_phase_progress(j) for j in result["items"]},
        pager=result,
        prev_url=_page_url(page - 1) if result["has_prev"] else None,
        next_url=_page_url(page + 1) if result["has_next"] else None,
        filters=filters,
        statuses=JOURNEY_STATUSES,
        stats=journey_statistics(s),
        users=s.query(User).filter(User.is_active.is_(True)).order_by(User.name.asc()).all(),
        can_manage=user_has_permission(_current_user(), "journeys.manage"),
    )


@bp.get("/me")
@require_permission("dashboard.view")
def my_journey():
    s = db_session()
    u = _current_user()
    journey = active_journey(s, u, ("IN_PROGRESS", "PAUSED", "COMPLETED"))
    return render_template(
        "journeys/detail.html",
        journey=journey,
        progress=calculate_phase_progress(journey) if journey else None,
        can_manage=False,
    )


@bp.get("/mentoring")
@require_permission("journeys.view")
def mentoring():
    s = db_session()
    return render_template("journeys/mentoring.html", phases=mentor_phases(s, _current_user()))


@bp.post("/new")
@require_permission("journeys.manage")
def journey_new_post():
    s = db_session()
    target = s.get(User, parse_int(request.form.get("user_id")) or 0)
    if not target:
        flash("Choose an employee.", "danger")
        return redirect(url_for("journeys.journeys_list"))
    try:
        start = parse_datetime(request.form.get("start_date"))
    except ValueError:
        flash("Start date must be YYYY-MM-DD.", "danger")
        return redirect(url_for("journeys.journeys_list"))
    employee_type = (request.form.get("employee_type") or "").strip().upper()
    try:
        journey = create_journey(s, target, employee_type, _current_user(), start=start)
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("journeys.journeys_list"))
    s.commit()
    flash(f"Journey started for {target.display_name}.", "success")
    return _back(journey.id)


@bp.get("/<int:journey_id>")
@require_permission("dashboard.view")
def journey_detail(journey_id: int):
    s = db_session()
    journey = _get_journey(journey_id)
    u = _current_user()
    if journey.user_id != u.id and not user_has_permission(u, "journeys.view"):
        abort(403)
    can_manage = user_has_permission(u, "journeys.manage")
    extra = {}
    if can_manage:
        extra = {
            "mentors": s.query(User).filter(User.is_active.is_(True), User.id != journey.user_id).order_by(User.name.asc()).all(),
            "assessments": s.query(Assessment).filter(Assessment.status == "PUBLISHED").order_by(Assessment.title.asc()).all(),
            "training_assignments": s.query(TrainingAssignment)
            .filter(TrainingAssignment.user_id == journey.user_id, TrainingAssignment.status != "CANCELLED")
            .all(),
            "phase_types": PHASE_TYPES,
        }
    return render_template(
        "journeys/detail.html",
        journey=journey,
        progress=calculate_phase_progress(journey),
        can_manage=can_manage,
        **extra,
    )


@bp.post("/<int:journey_id>/pause")
@require_permission("journeys.manage")
def journey_pause(journey_id: int):
    s = db_session()
    journey = _get_journey(journey_id)
    try:
        pause_journey(s, journey, _current_user(), (request.form.get("reason") or "").strip() or None)
    except ServiceError as e:
        flash(str(e), "danger")
        return _back(journey_id)
    s.commit()
    flash("Journey paused.", "success")
    return _back(journey_id)


@bp.post("/<int:journey_id>/resume")
@require_permission("journeys.manage")
def journey_resume(journey_id: int):
    s = db_session()
    journey = _get_journey(journey_id)
    try:
        resume_journey(s, journey, _current_user())
    except ServiceError as e:
        flash(str(e), "danger")
        return _back(journey_id)
    s.commit()
    flash("Journey resumed.", "success")
    return _back(journey_id)


def _phase_payload() -> dict:
    return {k: request.form.get(k) for k in ("title", "description", "duration_days", "phase_type", "mentor_id")}


@bp.post("/<int:journey_id>/phases/new")
@require_permission("journeys.manage")
def phase_new_post(journey_id: int):
    s = db_session()
    journey = _get_journey(journey_id)
    payload = _phase_payload()
    errors = validate_phase_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _back(journey_id)
    try:
        add_journey_phase(s, journey, payload, parse_int(request.form.get("insert_after")), _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(journey_id)
    s.commit()
    flash("Phase added.", "success")
    return _back(journey_id)


@bp.post("/phases/<int:phase_id>/edit")
@require_permission("journeys.manage")
def phase_edit_post(phase_id: int):
    s = db_session()
    phase = _get_phase(phase_id)
    payload = _phase_payload()
    errors = validate_phase_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _back(phase.journey_id)
    update_phase_details(s, phase, payload, _current_user())
    s.commit()
    flash("Phase updated.", "success")
    return _back(phase.journey_id)


@bp.post("/phases/<int:phase_id>/complete")
@require_permission("journeys.manage")
def phase_complete(phase_id: int):
    s = db_session()
    phase = _get_phase(phase_id)
    journey_id = phase.journey_id
    try:
        manually_complete_phase(s, phase, _current_user(), (request.form.get("notes") or "").strip() or None)
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(journey_id)
    s.commit()
    flash("Phase completed.", "success")
    return _back(journey_id)


@bp.post("/<int:journey_id>/phases/<int:phase_number>/skip")
@require_permission("journeys.manage")
def phase_skip(journey_id: int, phase_number: int):
    s = db_session()
    journey = _get_journey(journey_id)
    try:
        skip_journey_phase(s, journey, phase_number, (request.form.get("reason") or "").strip() or None, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(journey_id)
    s.commit()
    flash(f"Phase {phase_number} skipped.", "success")
    return _back(journey_id)


@bp.post("/phases/<int:phase_id>/delete")
@require_permission("journeys.manage")
def phase_delete(phase_id: int):
    s = db_session()
    phase = _get_phase(phase_id)
    journey_id = phase.journey_id
    try:
        delete_journey_phase(s, phase, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(journey_id)
    s.commit()
    flash("Phase deleted.", "success")
    return _back(journey_id)


@bp.post("/phases/<int:phase_id>/mentor")
@require_permission("journeys.manage")
def phase_mentor(phase_id: int):
    s = db_session()
    phase = _get_phase(phase_id)
    mentor = s.get(User, parse_int(request.form.get("mentor_id")) or 0)
    if not mentor:
        flash("Choose a mentor.", "danger")
        return _back(phase.journey_id)
    try:
        assign_mentor_to_phase(s, phase, mentor, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(phase.journey_id)
    s.commit()
    flash(f"{mentor.display_name} assigned as mentor.", "success")
    return _back(phase.journey_id)


@bp.post("/phases/<int:phase_id>/mentor/remove")
@require_permission("journeys.manage")
def phase_mentor_remove(phase_id: int):
    s = db_session()
    phase = _get_phase(phase_id)
    try:
        remove_mentor_from_phase(s, phase, _current_user())
    except ServiceError as e:
        flash(str(e), "danger")
        return _back(phase.journey_id)
    s.commit()
    flash("Mentor removed.", "success")
    return _back(phase.journey_id)


@bp.post("/phases/<int:phase_id>/link-assessment")
@require_permission("journeys.manage")
def phase_link_assessment(phase_id: int):
    s = db_session()
    phase = _get_phase(phase_id)
    assessment = s.get(Assessment, parse_int(request.form.get("assessment_id")) or 0)
    if not assessment:
        flash("Choose an assessment.", "danger")
        return _back(phase.journey_id)
    try:
        link_assessment(s, phase, assessment, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(phase.journey_id)
    s.commit()
    flash("Assessment linked.", "success")
    return _back(phase.journey_id)


@bp.post("/phases/<int:phase_id>/link-training")
@require_permission("journeys.manage")
def phase_link_training(phase_id: int):
    s = db_session()
    phase = _get_phase(phase_id)
    assignment = s.get(TrainingAssignment, parse_int(request.form.get("training_assignment_id")) or 0)
    if not assignment:
        flash("Choose a training assignment.", "danger")
        return _back(phase.journey_id)
    try:
        link_training(s, phase, assignment, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(phase.journey_id)
    s.commit()
    flash("Training linked.", "success")
    return _back(phase.journey_id)
