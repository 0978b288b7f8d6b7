from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.skillloop.audit import record_event
from app.skillloop.constants import PROFICIENCY_LEVELS
from app.skillloop.utils import ServiceError, clean, parse_float, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.skillloop.models import User
    from app.skillloop.modules.assessments.models import Assessment, AssessmentAssignment, Question


QUESTION_TYPES = ("MCQ", "TRUE_FALSE", "FILL_BLANK", "DESCRIPTIVE")
ASSESSMENT_STATUSES = ("DRAFT", "PUBLISHED", "ARCHIVED")
DIFFICULTY_LEVELS = PROFICIENCY_LEVELS
QUESTION_BANK_LIMIT = 50


# ---------- Assessments ----------
def validate_assessment_payload(payload: dict) -> list[str]:
    errors = []
    if len((payload.get("title") or "").strip()) < 3:
        errors.append("Title must be at least 3 characters.")
    total = parse_int(payload.get("total_marks"))
    if total is None or total <= 0:
        errors.append("Total marks must be a positive whole number.")
    duration = parse_int(payload.get("duration_minutes"))
    if duration is None or duration <= 0:
        errors.append("Duration must be a positive number of minutes.")
    if payload.get("passing_score") not in (None, ""):
        passing = parse_float(payload.get("passing_score"))
        if passing is None or not (0 <= passing <= 100):
            errors.append("Passing score must be between 0 and 100.")
    return errors


def _require_skill(s: "Session", skill_id) -> int | None:
    from app.skillloop.modules.skills.models import Skill

    sid = parse_int(skill_id)
    if not sid:
        return None
    if not s.get(Skill, sid):
        raise ServiceError("Selected skill does not exist.")
    return sid


def create_assessment(s: "Session", payload: dict, user: "User") -> "Assessment":
    from app.skillloop.modules.assessments.models import Assessment
    from app.skillloop.modules.system_config.service import get_config_value

    passing = parse_float(payload.get("passing_score"))
    if passing is None:
        passing = float(get_config_value(s, "defaultPassingScore"))
    now = datetime.utcnow()
    a = Assessment(
        title=(payload.get("title") or "").strip(),
        description=clean(payload.get("description")),
        skill_id=_require_skill(s, payload.get("skill_id")),
        total_marks=parse_int(payload.get("total_marks")),
        passing_score=passing,
        duration_minutes=parse_int(payload.get("duration_minutes")),
        is_pre_assessment=bool(payload.get("is_pre_assessment")),
        status="DRAFT",
        created_by_user_id=user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(a)
    s.flush()
    record_event(
        s,
        actor=user,
        action="assessment.create",
        entity_type="Assessment",
        entity_id=str(a.id),
        metadata={"title": a.title, "total_marks": a.total_marks, "skill_id": a.skill_id},
    )
    return a


def update_assessment(s: "Session", a: "Assessment", payload: dict, user: "User") -> "Assessment":
    if a.status == "ARCHIVED":
        raise ServiceError("Archived assessments cannot be edited.")
    total = parse_int(payload.get("total_marks"))
    if total < a.question_marks:
        raise ServiceError(f"Total marks cannot be less than the marks already allocated to questions ({a.question_marks}).")

    changes = {}
    for field, value in (
        ("title", (payload.get("title") or "").strip()),
        ("description", clean(payload.get("description"))),
        ("skill_id", _require_skill(s, payload.get("skill_id"))),
        ("total_marks", total),
        ("passing_score", parse_float(payload.get("passing_score"), a.passing_score)),
        ("duration_minutes", parse_int(payload.get("duration_minutes"))),
        ("is_pre_assessment", bool(payload.get("is_pre_assessment"))),
    ):
        if getattr(a, field) != value:
            changes[field] = {"old": getattr(a, field), "new": value}
            setattr(a, field, value)
    a.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="assessment.edit", entity_type="Assessment", entity_id=str(a.id), metadata={"changes": changes})
    return a


def publish_assessment(s: "Session", a: "Assessment", user: "User") -> "Assessment":
    if a.status == "PUBLISHED":
        raise ServiceError("Assessment is already published.")
    if not a.questions:
        raise ServiceError("Add at least one question before publishing.")
    if a.question_marks != a.total_marks:
        raise ServiceError(
            f"Question marks ({a.question_marks}) must equal the assessment total ({a.total_marks}) before publishing."
        )
    old = a.status
    a.status = "PUBLISHED"
    a.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="assessment.publish", entity_type="Assessment", entity_id=str(a.id), metadata={"from": old})
    return a


def archive_assessment(s: "Session", a: "Assessment", user: "User") -> "Assessment":
    if a.status == "ARCHIVED":
        raise ServiceError("Assessment is already archived.")
    old = a.status
    a.status = "ARCHIVED"
    a.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="assessment.archive", entity_type="Assessment", entity_id=str(a.id), metadata={"from": old})
    return a


def delete_assessment(s: "Session", a: "Assessment", user: "User") -> None:
    if a.status != "DRAFT":
        raise ServiceError("Only draft assessments can be deleted. Archive it instead.")
    record_event(s, actor=user, action="assessment.delete", entity_type="Assessment", entity_id=str(a.id), metadata={"title": a.title})
    s.delete(a)
    s.flush()


# ---------- Questions ----------
def validate_question_payload(payload: dict) -> list[str]:
    errors = []
    text = (payload.get("question_text") or "").strip()
    qtype = (payload.get("question_type") or "").strip().upper()
    options = [str(o).strip() for o in (payload.get("options") or []) if str(o).strip()]
    correct = (payload.get("correct_answer") or "").strip()
    marks = parse_int(payload.get("marks"))
    difficulty = (payload.get("difficulty_level") or "").strip().upper()

    if not text:
        errors.append("Question text is required.")
    if qtype not in QUESTION_TYPES:
        errors.append(f"Invalid question type. Must be one of: {', '.join(QUESTION_TYPES)}")
    if marks is None or marks <= 0:
        errors.append("Marks must be a positive whole number.")
    if difficulty and difficulty not in DIFFICULTY_LEVELS:
        errors.append(f"Invalid difficulty. Must be one of: {', '.join(DIFFICULTY_LEVELS)}")
    if qtype != "DESCRIPTIVE" and not correct:
        errors.append("Correct answer is required.")
    if qtype == "MCQ":
        if len(options) < 2:
            errors.append("Multiple-choice questions need at least 2 options.")
        elif correct and correct not in options:
            errors.append("Correct answer must be one of the options.")
    if qtype == "TRUE_FALSE" and correct and correct.lower() not in ("true", "false"):
        errors.append("True/false answers must be 'true' or 'false'.")
    return errors


def normalize_question_payload(payload: dict) -> dict:
    qtype = (payload.get("question_type") or "").strip().upper()
    correct = (payload.get("correct_answer") or "").strip() or None
    if qtype == "TRUE_FALSE" and correct:
        correct = correct.lower()
    options = [str(o).strip() for o in (payload.get("options") or []) if str(o).strip()]
    if qtype == "TRUE_FALSE":
        options = ["true", "false"]
    elif qtype != "MCQ":
        options = []
    return {
        "question_text": (payload.get("question_text") or "").strip(),
        "question_type": qtype,
        "options": options or None,
        "correct_answer": correct,
        "marks": parse_int(payload.get("marks")),
        "difficulty_level": (payload.get("difficulty_level") or "").strip().upper() or None,
    }


def _check_editable(a: "Assessment") -> None:
    if a.status == "ARCHIVED":
        raise ServiceError("Archived assessments cannot be edited.")


def _check_marks_budget(a: "Assessment", adding: int, excluding: "Question | None" = None) -> None:
    used = sum(q.marks for q in a.questions if excluding is None or q.id != excluding.id)
    if used + adding > a.total_marks:
        remaining = a.total_marks - used
        raise ServiceError(f"Question marks would exceed the assessment total of {a.total_marks} ({remaining} remaining).")


def add_question(s: "Session", a: "Assessment", payload: dict, user: "User") -> "Question":
    from app.skillloop.modules.assessments.models import Question

    _check_editable(a)
    errors = validate_question_payload(payload)
    if errors:
        raise ServiceError(" ".join(errors))
    data = normalize_question_payload(payload)
    _check_marks_budget(a, data["marks"])
    q = Question(
        assessment_id=a.id,
        order_index=max((x.order_index for x in a.questions), default=0) + 1,
        **data,
    )
    a.questions.append(q)
    a.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="question.create",
        entity_type="Question",
        entity_id=str(q.id),
        metadata={"assessment_id": a.id, "type": q.question_type, "marks": q.marks},
    )
    return q


def update_question(s: "Session", q: "Question", payload: dict, user: "User") -> "Question":
    a = q.assessment
    _check_editable(a)
    errors = validate_question_payload(payload)
    if errors:
        raise ServiceError(" ".join(errors))
    data = normalize_question_payload(payload)
    _check_marks_budget(a, data["marks"], excluding=q)
    for field, value in data.items():
        setattr(q, field, value)
    a.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="question.edit", entity_type="Question", entity_id=str(q.id), metadata={"assessment_id": a.id})
    return q


def delete_question(s: "Session", q: "Question", user: "User") -> None:
    a = q.assessment
    _check_editable(a)
    removed_index = q.order_index
    record_event(s, actor=user, action="question.delete", entity_type="Question", entity_id=str(q.id), metadata={"assessment_id": a.id})
    a.questions.remove(q)
    s.flush()
    for other in a.questions:
        if other.order_index > removed_index:
            other.order_index -= 1
    s.flush()


def reorder_questions(s: "Session", a: "Assessment", ordered_ids: list[int], user: "User") -> None:
    _check_editable(a)
    by_id = {q.id: q for q in a.questions}
    if sorted(ordered_ids) != sorted(by_id):
        raise ServiceError("Question order must list every question of the assessment exactly once.")
    for i, qid in enumerate(ordered_ids, start=1):
        by_id[qid].order_index = i
    s.flush()
    record_event(s, actor=user, action="question.reorder", entity_type="Assessment", entity_id=str(a.id), metadata={"order": ordered_ids})


def bulk_add_questions(s: "Session", a: "Assessment", rows: list[dict], user: "User") -> list["Question"]:
    """Add pre-validated rows (e.g. from CSV). Refused as a whole if the batch would exceed total marks."""
    _check_editable(a)
    _check_marks_budget(a, sum(r["marks"] for r in rows))
    created = [add_question(s, a, r, user) for r in rows]
    record_event(
        s,
        actor=user,
        action="assessment.bulk_upload",
        entity_type="Assessment",
        entity_id=str(a.id),
        metadata={"count": len(created)},
    )
    return created


def question_bank(s: "Session", target: "Assessment", *, same_skill: bool = False, search: str | None = None) -> list["Question"]:
    """Questions from other assessments whose text is not already in ``target``."""
    from app.skillloop.modules.assessments.models import Assessment, Question

    existing = {q.question_text.strip().lower() for q in target.questions}
    q = s.query(Question).join(Assessment, Assessment.id == Question.assessment_id).filter(Question.assessment_id != target.id)
    if same_skill and target.skill_id:
        q = q.filter(Assessment.skill_id == target.skill_id)
    if search:
        q = q.filter(Question.question_text.ilike(f"%{search}%"))
    out = []
    for question in q.order_by(Question.created_at.desc(), Question.id.desc()):
        if question.question_text.strip().lower() in existing:
            continue
        out.append(question)
        if len(out) >= QUESTION_BANK_LIMIT:
            break
    return out


def import_questions(s: "Session", target: "Assessment", question_ids: list[int], user: "User") -> list["Question"]:
    from app.skillloop.modules.assessments.models import Question

    sources = s.query(Question).filter(Question.id.in_(question_ids)).all()
    if len(sources) != len(set(question_ids)):
        raise ServiceError("Some selected questions no longer exist.")
    rows = [
        {
            "question_text": q.question_text,
            "question_type": q.question_type,
            "options": list(q.options or []),
            "correct_answer": q.correct_answer,
            "marks": q.marks,
            "difficulty_level": q.difficulty_level,
        }
        for q in sources
    ]
    return bulk_add_questions(s, target, rows, user)


# ---------- Assignment ----------
def assign_assessment(
    s: "Session",
    a: "Assessment",
    user_ids: list[int],
    due_date: datetime | None,
    actor: "User",
) -> list["AssessmentAssignment"]:
    """Upsert one assignment per user; re-assigning refreshes assigner and due date."""
    from app.skillloop.models import User
    from app.skillloop.modules.assessments.models import AssessmentAssignment
    from app.skillloop.modules.notifications.service import notify

    if a.status != "PUBLISHED":
        raise ServiceError("Only published assessments can be assigned.")
    if not user_ids:
        raise ServiceError("Select at least one employee.")
    users = s.query(User).filter(User.id.in_(user_ids), User.is_active.is_(True)).all()
    if len(users) != len(set(user_ids)):
        raise ServiceError("Some selected employees were not found or are inactive.")

    existing = {
        x.user_id: x
        for x in s.query(AssessmentAssignment).filter(
            AssessmentAssignment.assessment_id == a.id, AssessmentAssignment.user_id.in_(user_ids)
        )
    }
    out = []
    for u in users:
        assignment = existing.get(u.id)
        if assignment is None:
            assignment = AssessmentAssignment(assessment_id=a.id, user_id=u.id, status="PENDING", assigned_at=datetime.utcnow())
            s.add(assignment)
            due_txt = f" Due {due_date:%Y-%m-%d}." if due_date else ""
            notify(
                s,
                u,
                "ASSESSMENT_ASSIGNED",
                f"New Assessment Assigned: {a.title}",
                f"You have been assigned the assessment '{a.title}'.{due_txt}",
                link="/assessments/my",
                email=True,
            )
        assignment.assigned_by_user_id = actor.id
        assignment.due_date = due_date
        out.append(assignment)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="assessment.assign",
        entity_type="Assessment",
        entity_id=str(a.id),
        metadata={"user_ids": sorted(u.id for u in users), "due_date": due_date},
    )
    return out


def unassign_assessment(s: "Session", a: "Assessment", user_id: int, actor: "User") -> None:
    from app.skillloop.modules.assessments.models import AssessmentAssignment

    assignment = s.query(AssessmentAssignment).filter_by(assessment_id=a.id, user_id=user_id).one_or_none()
    if not assignment:
        raise ServiceError("Assignment not found.")
    s.delete(assignment)
    s.flush()
    record_event(s, actor=actor, action="assessment.unassign", entity_type="Assessment", entity_id=str(a.id), metadata={"user_id": user_id})


def submission_statuses(s: "Session", a: "Assessment") -> list[dict]:
    from app.skillloop.modules.assessments.models import AssessmentAssignment, AssessmentAttempt

    rows = []
    assignments = s.query(AssessmentAssignment).filter(AssessmentAssignment.assessment_id == a.id).all()
    for assignment in assignments:
        latest = (
            s.query(AssessmentAttempt)
            .filter(AssessmentAttempt.assessment_id == a.id, AssessmentAttempt.user_id == assignment.user_id)
            .order_by(AssessmentAttempt.started_at.desc(), AssessmentAttempt.id.desc())
            .first()
        )
        if latest is None:
            status = "NOT_ATTEMPTED"
        elif latest.status == "in_progress":
            status = "IN_PROGRESS"
        elif latest.status == "grading":
            status = "NEEDS_GRADING"
        else:
            status = "COMPLETED"
        rows.append(
            {
                "assignment": assignment,
                "user": assignment.user,
                "status": status,
                "attempt": latest,
                "score": latest.score if latest else None,
                "percentage": latest.percentage if latest else None,
            }
        )
    rows.sort(key=lambda r: (r["user"].name or "").lower())
    return rows
