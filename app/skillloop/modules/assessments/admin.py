from __future__ import annotations

import io
import json

from flask import Blueprint, abort, flash, g, jsonify, redirect, render_template, request, send_file, url_for

from app.skillloop.db import db_session
from app.skillloop.models import User
from app.skillloop.modules.assessments.ai import generate_ai_questions
from app.skillloop.modules.assessments.models import Answer, Assessment, AssessmentAttempt, Question
from app.skillloop.modules.assessments.parsers.csv import parse_questions_csv, template_csv
from app.skillloop.modules.assessments.service import (
    ASSESSMENT_STATUSES,
    DIFFICULTY_LEVELS,
    QUESTION_TYPES,
    add_question,
    archive_assessment,
    assign_assessment,
    bulk_add_questions,
    create_assessment,
    delete_assessment,
    delete_question,
    import_questions,
    publish_assessment,
    question_bank,
    reorder_questions,
    submission_statuses,
    unassign_assessment,
    update_assessment,
    update_question,
    validate_assessment_payload,
)
from app.skillloop.modules.assessments.taking import (
    attempt_deadline,
    complete_grading,
    grade_answer,
    my_assessments,
    pending_grading,
    save_progress,
    start_attempt,
    submit_attempt,
)
from app.skillloop.modules.skills.models import Skill
from app.skillloop.rbac import require_permission, user_has_permission
from app.skillloop.utils import ServiceError, paginate, parse_datetime, parse_float, parse_int

bp = Blueprint("assessments", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_assessment(assessment_id: int) -> Assessment:
    a = db_session().get(Assessment, assessment_id)
    if not a:
        abort(404)
    return a


def _assessment_payload() -> dict:
    return {
        "title": request.form.get("title"),
        "description": request.form.get("description"),
        "skill_id": request.form.get("skill_id"),
        "total_marks": request.form.get("total_marks"),
        "passing_score": request.form.get("passing_score"),
        "duration_minutes": request.form.get("duration_minutes"),
        "is_pre_assessment": request.form.get("is_pre_assessment") == "1",
    }


def _question_payload() -> dict:
    raw_options = request.form.get("options") or ""
    return {
        "question_text": request.form.get("question_text"),
        "question_type": (request.form.get("question_type") or "").upper(),
        "options": [line.strip() for line in raw_options.splitlines() if line.strip()],
        "correct_answer": request.form.get("correct_answer"),
        "marks": request.form.get("marks"),
        "difficulty_level": request.form.get("difficulty_level"),
    }


def _answers_from_form() -> dict[int, str]:
    answers: dict[int, str] = {}
    for key, value in request.form.items():
        if key.startswith("answer_"):
            qid = parse_int(key.removeprefix("answer_"))
            if qid:
                answers[qid] = value
    return answers


# ---------- Authoring ----------
@bp.get("")
@require_permission("assessments.manage")
def assessments_list():
    s = db_session()
    status = (request.args.get("status") or "").strip().upper()
    skill_id = parse_int(request.args.get("skill_id"))
    search = (request.args.get("q") or "").strip()
    page = parse_int(request.args.get("page"), 1) or 1

    q = s.query(Assessment)
    if status:
        q = q.filter(Assessment.status == status)
    if skill_id:
        q = q.filter(Assessment.skill_id == skill_id)
    if search:
        q = q.filter(Assessment.title.ilike(f"%{search}%"))
    result = paginate(q.order_by(Assessment.updated_at.desc(), Assessment.id.desc()), page)

    def _page_url(p: int) -> str:
        return url_for("assessments.assessments_list", status=status or None, skill_id=skill_id or None, q=search or None, page=p)

    return render_template(
        "assessments/list.html",
        assessments=result["items"],
        pager=result,
        prev_url=_page_url(page - 1) if result["has_prev"] else None,
        next_url=_page_url(page + 1) if result["has_next"] else None,
        statuses=ASSESSMENT_STATUSES,
        skills=s.query(Skill).order_by(Skill.name.asc()).all(),
        status=status,
        skill_id=skill_id,
        search=search,
    )


@bp.get("/new")
@require_permission("assessments.manage")
def assessment_new_get():
    s = db_session()
    from app.skillloop.modules.system_config.service import get_config_value

    return render_template(
        "assessments/form.html",
        assessment=None,
        skills=s.query(Skill).order_by(Skill.name.asc()).all(),
        default_passing=get_config_value(s, "defaultPassingScore"),
    )


@bp.post("/new")
@require_permission("assessments.manage")
def assessment_new_post():
    s = db_session()
    payload = _assessment_payload()
    errors = validate_assessment_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("assessments.assessment_new_get"))
    try:
        a = create_assessment(s, payload, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("assessments.assessment_new_get"))
    s.commit()
    flash("Assessment created. Add questions, then publish.", "success")
    return redirect(url_for("assessments.assessment_detail", assessment_id=a.id))


@bp.get("/<int:assessment_id>")
@require_permission("assessments.manage")
def assessment_detail(assessment_id: int):
    s = db_session()
    a = _get_assessment(assessment_id)
    users = s.query(User).filter(User.is_active.is_(True)).order_by(User.name.asc()).all()
    return render_template(
        "assessments/detail.html",
        assessment=a,
        submissions=submission_statuses(s, a),
        users=users,
        question_types=QUESTION_TYPES,
        difficulty_levels=DIFFICULTY_LEVELS,
        can_assign=user_has_permission(_current_user(), "assessments.assign"),
    )


@bp.get("/<int:assessment_id>/edit")
@require_permission("assessments.manage")
def assessment_edit_get(assessment_id: int):
    s = db_session()
    a = _get_assessment(assessment_id)
    return render_template(
        "assessments/form.html",
        assessment=a,
        skills=s.query(Skill).order_by(Skill.name.asc()).all(),
        default_passing=a.passing_score,
    )


@bp.post("/<int:assessment_id>/edit")
@require_permission("assessments.manage")
def assessment_edit_post(assessment_id: int):
    s = db_session()
    a = _get_assessment(assessment_id)
    payload = _assessment_payload()
    errors = validate_assessment_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("assessments.assessment_edit_get", assessment_id=assessment_id))
    try:
        update_assessment(s, a, payload, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("assessments.assessment_edit_get", assessment_id=assessment_id))
    s.commit()
    flash("Assessment updated.", "success")
    return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))


def _lifecycle(assessment_id: int, fn, done_message: str):
    s = db_session()
    a = _get_assessment(assessment_id)
    try:
        fn(s, a, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))
    s.commit()
    flash(done_message, "success")
    return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))


@bp.post("/<int:assessment_id>/publish")
@require_permission("assessments.manage")
def assessment_publish(assessment_id: int):
    return _lifecycle(assessment_id, publish_assessment, "Assessment published.")


@bp.post("/<int:assessment_id>/archive")
@require_permission("assessments.manage")
def assessment_archive(assessment_id: int):
    return _lifecycle(assessment_id, archive_assessment, "Assessment archived.")


@bp.post("/<int:assessment_id>/delete")
@require_permission("assessments.manage")
def assessment_delete(assessment_id: int):
    s = db_session()
    a = _get_assessment(assessment_id)
    try:
        delete_assessment(s, a, _current_user())
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))
    s.commit()
    flash("Assessment deleted.", "success")
    return redirect(url_for("assessments.assessments_list"))


# ---------- Questions ----------
@bp.post("/<int:assessment_id>/questions/new")
@require_permission("assessments.manage")
def question_new_post(assessment_id: int):
    s = db_session()
    a = _get_assessment(assessment_id)
    try:
        add_question(s, a, _question_payload(), _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))
    s.commit()
    flash("Question added.", "success")
    return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))


@bp.post("/questions/<int:question_id>/edit")
@require_permission("assessments.manage")
def question_edit_post(question_id: int):
    s = db_session()
    q = s.get(Question, question_id)
    if not q:
        abort(404)
    try:
        update_question(s, q, _question_payload(), _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("assessments.assessment_detail", assessment_id=q.assessment_id))
    s.commit()
    flash("Question updated.", "success")
    return redirect(url_for("assessments.assessment_detail", assessment_id=q.assessment_id))


@bp.post("/questions/<int:question_id>/delete")
@require_permission("assessments.manage")
def question_delete(question_id: int):
    s = db_session()
    q = s.get(Question, question_id)
    if not q:
        abort(404)
    assessment_id = q.assessment_id
    try:
        delete_question(s, q, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))
    s.commit()
    flash("Question deleted.", "success")
    return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))


@bp.post("/<int:assessment_id>/questions/reorder")
@require_permission("assessments.manage")
def questions_reorder(assessment_id: int):
    s = db_session()
    a = _get_assessment(assessment_id)
    raw = request.form.get("order") or ""
    ids = [parse_int(p) for p in raw.split(",") if p.strip()]
    try:
        if None in ids:
            raise ServiceError("Question order must be a comma-separated list of ids.")
        reorder_questions(s, a, ids, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))
    s.commit()
    flash("Questions reordered.", "success")
    return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))


@bp.post("/<int:assessment_id>/questions/upload")
@require_permission("assessments.manage")
def questions_upload(assessment_id: int):
    s = db_session()
    a = _get_assessment(assessment_id)
    f = request.files.get("csv_file")
    if not f or not f.filename:
        flash("Choose a CSV file to upload.", "danger")
        return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))
    try:
        rows, errors = parse_questions_csv(f.read())
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))
    if errors:
        for err in errors[:20]:
            flash(f"Row {err.row_number}: {err.message}", "danger")
        if len(errors) > 20:
            flash(f"...and {len(errors) - 20} more error(s).", "danger")
        flash("Nothing was imported. Fix the rows above and upload again.", "danger")
        return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))
    if not rows:
        flash("The CSV contained no questions.", "danger")
        return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))
    try:
        created = bulk_add_questions(s, a, rows, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))
    s.commit()
    flash(f"Imported {len(created)} question(s).", "success")
    return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))


@bp.get("/questions/template.csv")
@require_permission("assessments.manage")
def questions_template():
    return send_file(
        io.BytesIO(template_csv().encode("utf-8")),
        mimetype="text/csv",
        as_attachment=True,
        download_name="question-upload-template.csv",
        max_age=0,
    )


@bp.get("/<int:assessment_id>/bank")
@require_permission("assessments.manage")
def question_bank_get(assessment_id: int):
    s = db_session()
    a = _get_assessment(assessment_id)
    same_skill = request.args.get("same_skill") == "1"
    search = (request.args.get("q") or "").strip()
    return render_template(
        "assessments/bank.html",
        assessment=a,
        questions=question_bank(s, a, same_skill=same_skill, search=search or None),
        same_skill=same_skill,
        search=search,
    )


@bp.post("/<int:assessment_id>/bank/import")
@require_permission("assessments.manage")
def question_bank_import(assessment_id: int):
    s = db_session()
    a = _get_assessment(assessment_id)
    ids = [i for i in (parse_int(v) for v in request.form.getlist("question_id")) if i]
    if not ids:
        flash("Select at least one question.", "danger")
        return redirect(url_for("assessments.question_bank_get", assessment_id=assessment_id))
    try:
        created = import_questions(s, a, ids, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("assessments.question_bank_get", assessment_id=assessment_id))
    s.commit()
    flash(f"Imported {len(created)} question(s).", "success")
    return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))


@bp.get("/<int:assessment_id>/ai")
@require_permission("assessments.manage")
def ai_get(assessment_id: int):
    a = _get_assessment(assessment_id)
    return render_template(
        "assessments/ai.html",
        assessment=a,
        drafts=None,
        question_types=QUESTION_TYPES,
        difficulty_levels=DIFFICULTY_LEVELS,
    )


@bp.post("/<int:assessment_id>/ai")
@require_permission("assessments.manage")
def ai_generate(assessment_id: int):
    a = _get_assessment(assessment_id)
    result = generate_ai_questions(
        topic=request.form.get("topic") or (a.skill.name if a.skill else a.title),
        count=parse_int(request.form.get("count"), 5) or 5,
        difficulty=(request.form.get("difficulty") or "INTERMEDIATE").upper(),
        question_types=request.form.getlist("question_types"),
        instructions=(request.form.get("instructions") or "").strip() or None,
    )
    if not result["success"]:
        flash(result["message"], "danger")
        return redirect(url_for("assessments.ai_get", assessment_id=assessment_id))
    flash(result["message"], "success")
    return render_template(
        "assessments/ai.html",
        assessment=a,
        drafts=result["data"],
        drafts_json=json.dumps(result["data"]),
        question_types=QUESTION_TYPES,
        difficulty_levels=DIFFICULTY_LEVELS,
    )


@bp.post("/<int:assessment_id>/ai/add")
@require_permission("assessments.manage")
def ai_add(assessment_id: int):
    """Add the reviewed drafts the author ticked."""
    s = db_session()
    a = _get_assessment(assessment_id)
    try:
        drafts = json.loads(request.form.get("drafts_json") or "[]")
    except json.JSONDecodeError:
        flash("Draft data was corrupted; generate again.", "danger")
        return redirect(url_for("assessments.ai_get", assessment_id=assessment_id))
    picked = {parse_int(v) for v in request.form.getlist("pick")}
    chosen = [d for i, d in enumerate(drafts) if i in picked]
    if not chosen:
        flash("Select at least one draft question.", "danger")
        return redirect(url_for("assessments.ai_get", assessment_id=assessment_id))
    try:
        for d in chosen:
            add_question(s, a, d, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("assessments.ai_get", assessment_id=assessment_id))
    s.commit()
    flash(f"Added {len(chosen)} AI-drafted question(s).", "success")
    return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))


# ---------- Assignment ----------
@bp.post("/<int:assessment_id>/assign")
@require_permission("assessments.assign")
def assessment_assign(assessment_id: int):
    s = db_session()
    a = _get_assessment(assessment_id)
    user_ids = [i for i in (parse_int(v) for v in request.form.getlist("user_id")) if i]
    try:
        due = parse_datetime(request.form.get("due_date"))
    except ValueError:
        flash("Due date must be YYYY-MM-DD.", "danger")
        return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))
    try:
        assigned = assign_assessment(s, a, user_ids, due, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))
    s.commit()
    flash(f"Assigned to {len(assigned)} employee(s).", "success")
    return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))


@bp.post("/<int:assessment_id>/unassign/<int:user_id>")
@require_permission("assessments.assign")
def assessment_unassign(assessment_id: int, user_id: int):
    s = db_session()
    a = _get_assessment(assessment_id)
    try:
        unassign_assessment(s, a, user_id, _current_user())
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))
    s.commit()
    flash("Assignment removed.", "success")
    return redirect(url_for("assessments.assessment_detail", assessment_id=assessment_id))


# ---------- Taking ----------
@bp.get("/my")
@require_permission("assessments.take")
def my_list():
    s = db_session()
    return render_template("assessments/my.html", items=my_assessments(s, _current_user()))


@bp.post("/<int:assessment_id>/start")
@require_permission("assessments.take")
def attempt_start(assessment_id: int):
    s = db_session()
    a = _get_assessment(assessment_id)
    try:
        attempt = start_attempt(s, a, _current_user())
    except ServiceError as e:
        s.commit()  # keep an expired attempt closed even when a new one is refused
        flash(str(e), "danger")
        return redirect(url_for("assessments.my_list"))
    s.commit()
    return redirect(url_for("assessments.attempt_take", attempt_id=attempt.id))


def _own_attempt(attempt_id: int) -> AssessmentAttempt:
    attempt = db_session().get(AssessmentAttempt, attempt_id)
    if not attempt:
        abort(404)
    if attempt.user_id != _current_user().id:
        abort(403)
    return attempt


@bp.get("/attempts/<int:attempt_id>")
@require_permission("assessments.take")
def attempt_take(attempt_id: int):
    attempt = _own_attempt(attempt_id)
    if attempt.status != "in_progress":
        return redirect(url_for("assessments.attempt_result", attempt_id=attempt_id))
    return render_template(
        "assessments/take.html",
        attempt=attempt,
        assessment=attempt.assessment,
        answers={a.question_id: a.answer_text for a in attempt.answers},
        deadline=attempt_deadline(attempt),
    )


@bp.post("/attempts/<int:attempt_id>/save")
@require_permission("assessments.take")
def attempt_save(attempt_id: int):
    s = db_session()
    attempt = _own_attempt(attempt_id)
    try:
        save_progress(s, attempt, _current_user(), _answers_from_form())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("assessments.attempt_take", attempt_id=attempt_id))
    s.commit()
    flash("Progress saved.", "success")
    return redirect(url_for("assessments.attempt_take", attempt_id=attempt_id))


@bp.post("/attempts/<int:attempt_id>/submit")
@require_permission("assessments.take")
def attempt_submit(attempt_id: int):
    s = db_session()
    attempt = _own_attempt(attempt_id)
    try:
        submit_attempt(s, attempt, _current_user(), _answers_from_form())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("assessments.attempt_take", attempt_id=attempt_id))
    s.commit()
    if attempt.status == "grading":
        flash("Submitted. Some answers need manual grading; you will see your result once graded.", "info")
    else:
        flash("Submitted.", "success")
    return redirect(url_for("assessments.attempt_result", attempt_id=attempt_id))


@bp.get("/attempts/<int:attempt_id>/result")
@require_permission("assessments.take")
def attempt_result(attempt_id: int):
    s = db_session()
    attempt = s.get(AssessmentAttempt, attempt_id)
    if not attempt:
        abort(404)
    u = _current_user()
    if attempt.user_id != u.id and not user_has_permission(u, "assessments.grade"):
        abort(403)
    return render_template("assessments/result.html", attempt=attempt, assessment=attempt.assessment)


# ---------- Grading ----------
@bp.get("/grading")
@require_permission("assessments.grade")
def grading_queue():
    s = db_session()
    return render_template("assessments/grading_queue.html", attempts=pending_grading(s))


@bp.get("/attempts/<int:attempt_id>/grade")
@require_permission("assessments.grade")
def grade_get(attempt_id: int):
    s = db_session()
    attempt = s.get(AssessmentAttempt, attempt_id)
    if not attempt:
        abort(404)
    answers = sorted(attempt.answers, key=lambda a: a.question.order_index)
    return render_template("assessments/grade.html", attempt=attempt, answers=answers)


@bp.post("/attempts/<int:attempt_id>/grade")
@require_permission("assessments.grade")
def grade_post(attempt_id: int):
    """Grade every descriptive answer from one form (marks_<answer_id>, feedback_<answer_id>)."""
    s = db_session()
    attempt = s.get(AssessmentAttempt, attempt_id)
    if not attempt:
        abort(404)
    grader = _current_user()
    try:
        for answer in attempt.answers:
            if answer.question.question_type != "DESCRIPTIVE":
                continue
            raw = request.form.get(f"marks_{answer.id}")
            if raw in (None, ""):
                continue
            marks = parse_float(raw)
            if marks is None:
                raise ServiceError("Marks must be numbers.")
            if attempt.status != "grading":
                break
            grade_answer(s, answer, marks, request.form.get(f"feedback_{answer.id}"), grader)
        if attempt.status == "grading" and request.form.get("complete") == "1":
            complete_grading(s, attempt, grader)
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("assessments.grade_get", attempt_id=attempt_id))
    s.commit()
    if attempt.status == "completed":
        flash(f"Grading complete: {attempt.percentage}% ({'passed' if attempt.passed else 'not passed'}).", "success")
        return redirect(url_for("assessments.grading_queue"))
    flash("Grades saved.", "success")
    return redirect(url_for("assessments.grade_get", attempt_id=attempt_id))


@bp.post("/api/grade-answer")
@require_permission("assessments.grade")
def api_grade_answer():
    """JSON: {answerId, marksAwarded, feedback, attemptId}."""
    s = db_session()
    data = request.get_json(silent=True) or {}
    answer = s.get(Answer, parse_int(data.get("answerId")) or 0)
    if not answer:
        return jsonify({"success": False, "message": "Answer not found"}), 404
    attempt_id = parse_int(data.get("attemptId"))
    if attempt_id and attempt_id != answer.attempt_id:
        return jsonify({"success": False, "message": "Answer does not belong to this attempt"}), 400
    marks = parse_float(data.get("marksAwarded"))
    try:
        completed = grade_answer(s, answer, marks, data.get("feedback"), _current_user())
    except ServiceError as e:
        s.rollback()
        return jsonify({"success": False, "message": str(e)}), 400
    s.commit()
    attempt = answer.attempt
    return jsonify(
        {
            "success": True,
            "message": "Answer graded",
            "attemptCompleted": completed,
            "score": attempt.score,
            "percentage": attempt.percentage,
            "passed": attempt.passed,
        }
    )
