from __future__ import annotations

import io
from datetime import date

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, send_file, url_for

from app.skillloop.audit import record_event
from app.skillloop.db import db_session
from app.skillloop.models import User
from app.skillloop.modules.skills.models import Skill
from app.skillloop.modules.trainings.calendar import (
    all_entries,
    create_calendar_entry,
    mark_attendance,
    render_ics,
    upcoming_for_user,
    update_calendar_entry,
    validate_calendar_payload,
)
from app.skillloop.modules.trainings.models import (
    ProgressUpdate,
    ProofOfCompletion,
    Training,
    TrainingAssignment,
    TrainingCalendar,
)
from app.skillloop.modules.trainings.service import (
    ASSIGNMENT_STATUSES,
    EXTENDED_FIELDS,
    MODES,
    RATING_FIELDS,
    add_mentor_comment,
    assign_from_tna,
    assign_training,
    assignment_payload_from_form,
    bulk_assign,
    can_review,
    can_view_assignment,
    complete_training,
    create_training,
    delete_proof,
    delete_training,
    feedback_csv,
    feedback_summary,
    pending_proofs,
    progress_summary,
    record_progress,
    review_proof,
    submit_feedback,
    submit_proof,
    update_assignment_status,
    update_training,
    validate_feedback_payload,
    validate_progress_payload,
    validate_training_payload,
)
from app.skillloop.rbac import require_permission, user_has_permission
from app.skillloop.storage import StorageError, storage_from_config
from app.skillloop.utils import ServiceError, paginate, parse_date, parse_int

bp = Blueprint("trainings", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _training_payload() -> dict:
    return {k: request.form.get(k) for k in (
        "topic_name",
        "description",
        "mode",
        "duration_hours",
        "skill_id",
        "resources",
        "venue",
        "meeting_link",
        "max_participants",
    )}


def _get_assignment(assignment_id: int) -> TrainingAssignment:
    a = db_session().get(TrainingAssignment, assignment_id)
    if not a:
        abort(404)
    if not can_view_assignment(_current_user(), a):
        abort(403)
    return a


def _active_users():
    return db_session().query(User).filter(User.is_active.is_(True)).order_by(User.name.asc()).all()


# ---------- Catalog ----------
@bp.get("")
@require_permission("trainings.view")
def trainings_list():
    s = db_session()
    mode = (request.args.get("mode") or "").strip().upper()
    skill_id = parse_int(request.args.get("skill_id"))
    search = (request.args.get("q") or "").strip()
    page = parse_int(request.args.get("page"), 1) or 1

    q = s.query(Training)
    if mode:
        q = q.filter(Training.mode == mode)
    if skill_id:
        q = q.filter(Training.skill_id == skill_id)
    if search:
        q = q.filter(Training.topic_name.ilike(f"%{search}%"))
    result = paginate(q.order_by(Training.created_at.desc(), Training.id.desc()), page)

    def _page_url(p: int) -> str:
        return url_for("trainings.trainings_list", mode=mode or None, skill_id=skill_id or None, q=search or None, page=p)

    return render_template(
        "trainings/list.html",
        trainings=result["items"],
        pager=result,
        prev_url=_page_url(page - 1) if result["has_prev"] else None,
        next_url=_page_url(page + 1) if result["has_next"] else None,
        modes=MODES,
        skills=s.query(Skill).order_by(Skill.name.asc()).all(),
        mode=mode,
        skill_id=skill_id,
        search=search,
    )


@bp.get("/new")
@require_permission("trainings.create")
def training_new_get():
    s = db_session()
    return render_template("trainings/form.html", training=None, modes=MODES, skills=s.query(Skill).order_by(Skill.name.asc()).all())


@bp.post("/new")
@require_permission("trainings.create")
def training_new_post():
    s = db_session()
    payload = _training_payload()
    errors = validate_training_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("trainings.training_new_get"))
    try:
        t = create_training(s, payload, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("trainings.training_new_get"))
    s.commit()
    flash("Training created.", "success")
    return redirect(url_for("trainings.training_detail", training_id=t.id))


@bp.get("/<int:training_id>")
@require_permission("trainings.view")
def training_detail(training_id: int):
    s = db_session()
    t = s.get(Training, training_id)
    if not t:
        abort(404)
    u = _current_user()
    can_assign = user_has_permission(u, "trainings.assign")
    assignments = (
        s.query(TrainingAssignment)
        .filter(TrainingAssignment.training_id == t.id)
        .order_by(TrainingAssignment.created_at.desc())
        .all()
        if can_assign
        else []
    )
    return render_template(
        "trainings/detail.html",
        training=t,
        assignments=assignments,
        users=_active_users() if can_assign else [],
        can_assign=can_assign,
        can_edit=user_has_permission(u, "trainings.create"),
        can_delete=user_has_permission(u, "trainings.delete"),
    )


@bp.get("/<int:training_id>/edit")
@require_permission("trainings.create")
def training_edit_get(training_id: int):
    s = db_session()
    t = s.get(Training, training_id)
    if not t:
        abort(404)
    return render_template("trainings/form.html", training=t, modes=MODES, skills=s.query(Skill).order_by(Skill.name.asc()).all())


@bp.post("/<int:training_id>/edit")
@require_permission("trainings.create")
def training_edit_post(training_id: int):
    s = db_session()
    t = s.get(Training, training_id)
    if not t:
        abort(404)
    payload = _training_payload()
    errors = validate_training_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("trainings.training_edit_get", training_id=training_id))
    try:
        update_training(s, t, payload, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("trainings.training_edit_get", training_id=training_id))
    s.commit()
    flash("Training updated.", "success")
    return redirect(url_for("trainings.training_detail", training_id=training_id))


@bp.post("/<int:training_id>/delete")
@require_permission("trainings.delete")
def training_delete(training_id: int):
    s = db_session()
    t = s.get(Training, training_id)
    if not t:
        abort(404)
    try:
        delete_training(s, t, _current_user())
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("trainings.training_detail", training_id=training_id))
    s.commit()
    flash("Training deleted.", "success")
    return redirect(url_for("trainings.trainings_list"))


# ---------- Assignment ----------
@bp.post("/<int:training_id>/assign")
@require_permission("trainings.assign")
def training_assign(training_id: int):
    s = db_session()
    t = s.get(Training, training_id)
    if not t:
        abort(404)
    try:
        created = assign_training(s, t, assignment_payload_from_form(request.form), _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("trainings.training_detail", training_id=training_id))
    s.commit()
    flash(f"Assigned to {len(created)} employee(s).", "success")
    return redirect(url_for("trainings.training_detail", training_id=training_id))


@bp.get("/bulk-assign")
@require_permission("trainings.assign")
def bulk_assign_get():
    s = db_session()
    return render_template(
        "trainings/bulk_assign.html",
        trainings=s.query(Training).order_by(Training.topic_name.asc()).all(),
        users=_active_users(),
    )


@bp.post("/bulk-assign")
@require_permission("trainings.assign")
def bulk_assign_post():
    s = db_session()
    ids = [i for i in (parse_int(v) for v in request.form.getlist("training_id")) if i]
    trainings = s.query(Training).filter(Training.id.in_(ids)).all() if ids else []
    try:
        counts = bulk_assign(s, trainings, assignment_payload_from_form(request.form), _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("trainings.bulk_assign_get"))
    s.commit()
    flash(f"Created {sum(counts.values())} assignment(s) across {len(counts)} training(s).", "success")
    return redirect(url_for("trainings.trainings_list"))


@bp.post("/assign-from-tna/<int:user_id>")
@require_permission("trainings.assign")
def assign_from_tna_post(user_id: int):
    s = db_session()
    target = s.get(User, user_id)
    if not target:
        abort(404)
    try:
        created = assign_from_tna(s, target, assignment_payload_from_form(request.form), _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("skill_matrix.user_tna", user_id=user_id))
    s.commit()
    flash(f"Assigned {len(created)} training(s) to {target.display_name}.", "success")
    return redirect(url_for("skill_matrix.user_tna", user_id=user_id))


@bp.get("/my")
@require_permission("trainings.view")
def my_trainings():
    s = db_session()
    u = _current_user()
    assignments = (
        s.query(TrainingAssignment)
        .filter(TrainingAssignment.user_id == u.id)
        .order_by(TrainingAssignment.target_completion_date.asc())
        .all()
    )
    return render_template(
        "trainings/my.html",
        assignments=assignments,
        summaries={a.id: progress_summary(a) for a in assignments},
    )


@bp.get("/assignments/<int:assignment_id>")
@require_permission("trainings.view")
def assignment_detail(assignment_id: int):
    a = _get_assignment(assignment_id)
    u = _current_user()
    return render_template(
        "trainings/assignment.html",
        assignment=a,
        summary=progress_summary(a),
        is_owner=a.user_id == u.id,
        can_review=can_review(u, a),
        can_set_status=user_has_permission(u, "trainings.assign"),
        statuses=ASSIGNMENT_STATUSES,
        next_week=max((p.week_number for p in a.progress_updates), default=0) + 1,
    )


@bp.post("/assignments/<int:assignment_id>/status")
@require_permission("trainings.assign")
def assignment_status(assignment_id: int):
    s = db_session()
    a = _get_assignment(assignment_id)
    try:
        update_assignment_status(s, a, request.form.get("status"), _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("trainings.assignment_detail", assignment_id=assignment_id))
    s.commit()
    flash("Status updated.", "success")
    return redirect(url_for("trainings.assignment_detail", assignment_id=assignment_id))


@bp.post("/assignments/<int:assignment_id>/complete")
@require_permission("trainings.view")
def assignment_complete(assignment_id: int):
    s = db_session()
    a = _get_assignment(assignment_id)
    try:
        complete_training(s, a, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("trainings.assignment_detail", assignment_id=assignment_id))
    s.commit()
    flash("Training marked as completed. Please share your feedback.", "success")
    return redirect(url_for("trainings.feedback_get", assignment_id=assignment_id))


# ---------- Progress ----------
@bp.post("/assignments/<int:assignment_id>/progress")
@require_permission("trainings.view")
def progress_post(assignment_id: int):
    s = db_session()
    a = _get_assignment(assignment_id)
    payload = {k: request.form.get(k) for k in (
        "week_number",
        "completion_percentage",
        "topics_covered",
        "hours_spent",
        "challenges",
        "next_steps",
    )}
    errors = validate_progress_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("trainings.assignment_detail", assignment_id=assignment_id))
    try:
        record_progress(s, a, payload, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("trainings.assignment_detail", assignment_id=assignment_id))
    s.commit()
    flash("Progress saved.", "success")
    return redirect(url_for("trainings.assignment_detail", assignment_id=assignment_id))


@bp.post("/progress/<int:update_id>/comment")
@require_permission("trainings.review")
def progress_comment(update_id: int):
    s = db_session()
    update = s.get(ProgressUpdate, update_id)
    if not update:
        abort(404)
    try:
        add_mentor_comment(s, update, request.form.get("comment"), _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("trainings.assignment_detail", assignment_id=update.assignment_id))
    s.commit()
    flash("Comment added.", "success")
    return redirect(url_for("trainings.assignment_detail", assignment_id=update.assignment_id))


# ---------- Proofs ----------
@bp.post("/assignments/<int:assignment_id>/proofs")
@require_permission("trainings.view")
def proof_upload(assignment_id: int):
    s = db_session()
    a = _get_assignment(assignment_id)
    f = request.files.get("file")
    if not f or not f.filename:
        flash("Choose a file to upload.", "danger")
        return redirect(url_for("trainings.assignment_detail", assignment_id=assignment_id))
    try:
        submit_proof(
            s,
            a,
            f.read(),
            f.filename,
            f.mimetype or "application/octet-stream",
            _current_user(),
            description=request.form.get("description"),
        )
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("trainings.assignment_detail", assignment_id=assignment_id))
    s.commit()
    flash("Proof submitted for review.", "success")
    return redirect(url_for("trainings.assignment_detail", assignment_id=assignment_id))


def _get_proof(proof_id: int) -> ProofOfCompletion:
    proof = db_session().get(ProofOfCompletion, proof_id)
    if not proof:
        abort(404)
    return proof


@bp.get("/proofs/<int:proof_id>/download")
@require_permission("trainings.view")
def proof_download(proof_id: int):
    s = db_session()
    proof = _get_proof(proof_id)
    u = _current_user()
    if proof.assignment.user_id != u.id and not can_review(u, proof.assignment):
        abort(403)
    try:
        fobj = storage_from_config(current_app.config).open(proof.storage_key)
    except StorageError:
        current_app.logger.warning("Proof %s missing from storage (key=%s)", proof.id, proof.storage_key)
        abort(404)
    record_event(
        s,
        actor=u,
        action="training_proof.download",
        entity_type="ProofOfCompletion",
        entity_id=str(proof.id),
        metadata={"filename": proof.original_filename},
    )
    s.commit()
    return send_file(
        fobj,
        mimetype=proof.content_type,
        as_attachment=True,
        download_name=proof.original_filename,
        max_age=0,
    )


@bp.post("/proofs/<int:proof_id>/review")
@require_permission("trainings.review")
def proof_review(proof_id: int):
    s = db_session()
    proof = _get_proof(proof_id)
    assignment_id = proof.assignment_id
    try:
        review_proof(s, proof, request.form.get("status"), request.form.get("comments"), _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("trainings.assignment_detail", assignment_id=assignment_id))
    s.commit()
    flash(f"Proof {proof.status.lower()}.", "success")
    if request.form.get("next") == "reviews":
        return redirect(url_for("trainings.reviews"))
    return redirect(url_for("trainings.assignment_detail", assignment_id=assignment_id))


@bp.post("/proofs/<int:proof_id>/delete")
@require_permission("trainings.view")
def proof_delete(proof_id: int):
    s = db_session()
    proof = _get_proof(proof_id)
    assignment_id = proof.assignment_id
    try:
        delete_proof(s, proof, _current_user())
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("trainings.assignment_detail", assignment_id=assignment_id))
    s.commit()
    flash("Proof deleted.", "success")
    return redirect(url_for("trainings.assignment_detail", assignment_id=assignment_id))


@bp.get("/reviews")
@require_permission("trainings.review")
def reviews():
    s = db_session()
    return render_template("trainings/reviews.html", proofs=pending_proofs(s, _current_user()))


# ---------- Feedback ----------
@bp.get("/assignments/<int:assignment_id>/feedback")
@require_permission("trainings.view")
def feedback_get(assignment_id: int):
    a = _get_assignment(assignment_id)
    if a.user_id != _current_user().id:
        abort(403)
    return render_template(
        "trainings/feedback_form.html",
        assignment=a,
        rating_fields=RATING_FIELDS,
        extended_fields=EXTENDED_FIELDS,
    )


@bp.post("/assignments/<int:assignment_id>/feedback")
@require_permission("trainings.view")
def feedback_post(assignment_id: int):
    s = db_session()
    a = _get_assignment(assignment_id)
    payload = {k: request.form.get(k) for k in (*RATING_FIELDS, *EXTENDED_FIELDS, "comments")}
    errors = validate_feedback_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("trainings.feedback_get", assignment_id=assignment_id))
    try:
        submit_feedback(s, a, payload, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("trainings.feedback_get", assignment_id=assignment_id))
    s.commit()
    flash("Thank you for your feedback.", "success")
    return redirect(url_for("trainings.my_trainings"))


def _feedback_filters() -> dict:
    try:
        date_from = parse_date(request.args.get("date_from"))
        date_to = parse_date(request.args.get("date_to"))
    except ValueError:
        date_from = date_to = None
        flash("Dates must be YYYY-MM-DD.", "danger")
    return {
        "date_from": date_from,
        "date_to": date_to,
        "department": (request.args.get("department") or "").strip() or None,
        "mode": (request.args.get("mode") or "").strip().upper() or None,
    }


@bp.get("/feedback")
@require_permission("feedback.view")
def feedback_report():
    s = db_session()
    filters = _feedback_filters()
    departments = [d for (d,) in s.query(User.department).filter(User.department.is_not(None)).distinct().order_by(User.department)]
    return render_template(
        "trainings/feedback_report.html",
        summary=feedback_summary(s, filters),
        filters=filters,
        departments=departments,
        modes=MODES,
    )


@bp.get("/feedback/export.csv")
@require_permission("feedback.view")
def feedback_export():
    s = db_session()
    summary = feedback_summary(s, _feedback_filters())
    data = feedback_csv(summary["feedbacks"]).encode("utf-8")
    return send_file(
        io.BytesIO(data),
        mimetype="text/csv",
        as_attachment=True,
        download_name=f"feedback-report-{date.today().isoformat()}.csv",
        max_age=0,
    )


# ---------- Calendar ----------
@bp.get("/calendar")
@require_permission("calendar.view")
def calendar_view():
    s = db_session()
    u = _current_user()
    manage = user_has_permission(u, "trainings.create")
    entries = all_entries(s) if manage else upcoming_for_user(s, u)
    return render_template(
        "trainings/calendar.html",
        entries=entries,
        manage=manage,
        trainings=s.query(Training).order_by(Training.topic_name.asc()).all() if manage else [],
    )


@bp.get("/calendar/export.ics")
@require_permission("calendar.view")
def calendar_ics():
    s = db_session()
    u = _current_user()
    entries = all_entries(s) if user_has_permission(u, "trainings.create") else upcoming_for_user(s, u)
    if not entries:
        abort(404)
    return send_file(
        io.BytesIO(render_ics(entries).encode("utf-8")),
        mimetype="text/calendar",
        as_attachment=True,
        download_name="training-calendar.ics",
        max_age=0,
    )


def _calendar_payload() -> dict:
    return {k: request.form.get(k) for k in ("training_id", "training_date", "venue", "meeting_link", "max_participants")}


@bp.post("/calendar/new")
@require_permission("trainings.create")
def calendar_new_post():
    s = db_session()
    payload = _calendar_payload()
    errors = validate_calendar_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("trainings.calendar_view"))
    try:
        create_calendar_entry(s, payload, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("trainings.calendar_view"))
    s.commit()
    flash("Session scheduled.", "success")
    return redirect(url_for("trainings.calendar_view"))


@bp.get("/calendar/<int:entry_id>")
@require_permission("trainings.create")
def calendar_entry(entry_id: int):
    s = db_session()
    entry = s.get(TrainingCalendar, entry_id)
    if not entry:
        abort(404)
    assignees = (
        s.query(User)
        .join(TrainingAssignment, TrainingAssignment.user_id == User.id)
        .filter(TrainingAssignment.training_id == entry.training_id, TrainingAssignment.status != "CANCELLED")
        .order_by(User.name.asc())
        .all()
    )
    marked = {a.user_id: a.status for a in entry.attendance}
    return render_template("trainings/calendar_entry.html", entry=entry, assignees=assignees, marked=marked)


@bp.post("/calendar/<int:entry_id>/edit")
@require_permission("trainings.create")
def calendar_entry_edit(entry_id: int):
    s = db_session()
    entry = s.get(TrainingCalendar, entry_id)
    if not entry:
        abort(404)
    payload = {**_calendar_payload(), "training_id": entry.training_id}
    errors = validate_calendar_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("trainings.calendar_entry", entry_id=entry_id))
    update_calendar_entry(s, entry, payload, _current_user())
    s.commit()
    flash("Session updated.", "success")
    return redirect(url_for("trainings.calendar_entry", entry_id=entry_id))


@bp.post("/calendar/<int:entry_id>/attendance")
@require_permission("trainings.create")
def calendar_attendance(entry_id: int):
    s = db_session()
    entry = s.get(TrainingCalendar, entry_id)
    if not entry:
        abort(404)
    marker = _current_user()
    count = 0
    try:
        for key, value in request.form.items():
            if key.startswith("attendance_") and value:
                user_id = parse_int(key.removeprefix("attendance_"))
                if user_id:
                    mark_attendance(s, entry, user_id, value, marker)
                    count += 1
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("trainings.calendar_entry", entry_id=entry_id))
    s.commit()
    flash(f"Attendance saved for {count} employee(s).", "success")
    return redirect(url_for("trainings.calendar_entry", entry_id=entry_id))
