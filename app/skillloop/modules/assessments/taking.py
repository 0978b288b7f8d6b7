"""
Attempt lifecycle: start/resume, save, submit, grade, finalize.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from app.skillloop.audit import record_event
from app.skillloop.utils import ServiceError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.skillloop.models import User
    from app.skillloop.modules.assessments.models import Answer, Assessment, AssessmentAttempt, Question

logger = logging.getLogger(__name__)

OBJECTIVE_TYPES = ("MCQ", "TRUE_FALSE", "FILL_BLANK")


def is_answer_correct(question: "Question", answer_text: str | None) -> bool:
    given = (answer_text or "").strip()
    expected = (question.correct_answer or "").strip()
    if question.question_type == "FILL_BLANK":
        return given.lower() == expected.lower()
    if question.question_type in ("MCQ", "TRUE_FALSE"):
        return given == expected
    raise ValueError(f"{question.question_type} questions are graded manually")


def attempt_deadline(attempt: "AssessmentAttempt") -> datetime:
    return attempt.started_at + timedelta(minutes=attempt.assessment.duration_minutes)


def _is_expired(s: "Session", attempt: "AssessmentAttempt", now: datetime) -> bool:
    from app.skillloop.modules.system_config.service import get_config_value

    if not get_config_value(s, "assessmentTimerEnabled"):
        return False
    return attempt_deadline(attempt) < now


def _require_owner(attempt: "AssessmentAttempt", user: "User") -> None:
    if attempt.user_id != user.id:
        raise ServiceError("You can only work on your own attempts.")


def get_assignment(s: "Session", assessment: "Assessment", user: "User"):
    from app.skillloop.modules.assessments.models import AssessmentAssignment

    return s.query(AssessmentAssignment).filter_by(assessment_id=assessment.id, user_id=user.id).one_or_none()


def start_attempt(s: "Session", assessment: "Assessment", user: "User") -> "AssessmentAttempt":
    """Resume the open attempt or start a new one, honouring the timer and retake settings."""
    from app.skillloop.modules.assessments.models import AssessmentAttempt
    from app.skillloop.modules.system_config.service import get_config

    if assessment.status != "PUBLISHED":
        raise ServiceError("This assessment is not available.")
    if get_assignment(s, assessment, user) is None:
        raise ServiceError("This assessment has not been assigned to you.")

    now = datetime.utcnow()
    attempts = (
        s.query(AssessmentAttempt)
        .filter(AssessmentAttempt.assessment_id == assessment.id, AssessmentAttempt.user_id == user.id)
        .order_by(AssessmentAttempt.started_at.desc(), AssessmentAttempt.id.desc())
        .all()
    )
    finished = [a for a in attempts if a.status != "in_progress"]
    open_attempt = next((a for a in attempts if a.status == "in_progress"), None)

    if open_attempt is not None:
        if not _is_expired(s, open_attempt, now):
            return open_attempt
        open_attempt.status = "completed"
        open_attempt.completed_at = now
        open_attempt.score = 0
        open_attempt.percentage = 0
        open_attempt.passed = False
        record_event(
            s,
            actor=user,
            action="assessment_attempt.expire",
            entity_type="AssessmentAttempt",
            entity_id=str(open_attempt.id),
        )
    elif finished:
        cfg = get_config(s)
        if not cfg["allowRetakes"]:
            raise ServiceError("Retakes are not allowed for assessments.")
        if len(finished) > int(cfg["maxRetakeAttempts"]):
            raise ServiceError(f"You have used all {cfg['maxRetakeAttempts']} retake attempt(s).")

    attempt = AssessmentAttempt(assessment_id=assessment.id, user_id=user.id, started_at=now, status="in_progress")
    s.add(attempt)
    s.flush()
    record_event(
        s,
        actor=user,
        action="assessment_attempt.start",
        entity_type="AssessmentAttempt",
        entity_id=str(attempt.id),
        metadata={"assessment_id": assessment.id, "attempt_number": len(attempts) + 1},
    )
    return attempt


def _upsert_answers(s: "Session", attempt: "AssessmentAttempt", answers: dict[int, str]) -> None:
    from app.skillloop.modules.assessments.models import Answer

    valid_ids = {q.id for q in attempt.assessment.questions}
    unknown = set(answers) - valid_ids
    if unknown:
        raise ServiceError("Answers reference questions outside this assessment.")
    by_question = {a.question_id: a for a in attempt.answers}
    for qid, text in answers.items():
        existing = by_question.get(qid)
        if existing is None:
            attempt.answers.append(Answer(question_id=qid, answer_text=text))
        else:
            existing.answer_text = text
    s.flush()


def save_progress(s: "Session", attempt: "AssessmentAttempt", user: "User", answers: dict[int, str]) -> None:
    _require_owner(attempt, user)
    if attempt.status != "in_progress":
        raise ServiceError("This attempt has already been submitted.")
    _upsert_answers(s, attempt, answers)


def submit_attempt(
    s: "Session",
    attempt: "AssessmentAttempt",
    user: "User",
    answers: dict[int, str] | None = None,
) -> "AssessmentAttempt":
    """Auto-grade objective answers; descriptive ones send the attempt to the grading queue."""
    _require_owner(attempt, user)
    if attempt.status != "in_progress":
        raise ServiceError("This attempt has already been submitted.")
    if answers:
        _upsert_answers(s, attempt, answers)

    has_descriptive = False
    for answer in attempt.answers:
        q = answer.question
        if q.question_type in OBJECTIVE_TYPES:
            answer.is_correct = is_answer_correct(q, answer.answer_text)
            answer.marks_awarded = float(q.marks) if answer.is_correct else 0.0
        else:
            has_descriptive = True
            answer.is_correct = None
            answer.marks_awarded = None

    _rescore(attempt)
    attempt.completed_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="assessment_attempt.submit",
        entity_type="AssessmentAttempt",
        entity_id=str(attempt.id),
        metadata={"score": attempt.score, "needs_grading": has_descriptive},
    )
    if has_descriptive:
        attempt.status = "grading"
        s.flush()
        return attempt
    return finalize_attempt(s, attempt, actor=user)


def _rescore(attempt: "AssessmentAttempt") -> None:
    total = attempt.assessment.total_marks or 0
    attempt.score = sum(a.marks_awarded or 0 for a in attempt.answers)
    attempt.percentage = round(attempt.score / total * 100, 2) if total else 0.0


def grade_answer(
    s: "Session",
    answer: "Answer",
    marks: float,
    feedback: str | None,
    grader: "User",
) -> bool:
    """Grade one answer. Returns True when this completed the attempt."""
    attempt = answer.attempt
    if attempt.status != "grading":
        raise ServiceError("This attempt is not awaiting grading.")
    max_marks = answer.question.marks
    if marks is None or marks < 0 or marks > max_marks:
        raise ServiceError(f"Marks must be between 0 and {max_marks}.")
    answer.marks_awarded = float(marks)
    answer.is_correct = marks == max_marks
    answer.trainer_feedback = (feedback or "").strip() or None
    answer.graded_by_user_id = grader.id
    answer.graded_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=grader,
        action="answer.grade",
        entity_type="Answer",
        entity_id=str(answer.id),
        metadata={"attempt_id": attempt.id, "marks": marks},
    )
    if all(a.marks_awarded is not None for a in attempt.answers):
        finalize_attempt(s, attempt, actor=grader)
        return True
    return False


def complete_grading(s: "Session", attempt: "AssessmentAttempt", grader: "User") -> "AssessmentAttempt":
    if attempt.status != "grading":
        raise ServiceError("This attempt is not awaiting grading.")
    ungraded = [a for a in attempt.answers if a.marks_awarded is None]
    if ungraded:
        raise ServiceError(f"{len(ungraded)} answer(s) still need marks.")
    return finalize_attempt(s, attempt, actor=grader)


def finalize_attempt(s: "Session", attempt: "AssessmentAttempt", actor: "User") -> "AssessmentAttempt":
    """Close the attempt, complete the assignment, credit the skill and nudge the journey."""
    from app.skillloop.modules.journeys.engine import on_assessment_completed
    from app.skillloop.modules.skill_matrix.service import level_for_percentage, record_assessed_level

    a = attempt.assessment
    _rescore(attempt)
    attempt.status = "completed"
    attempt.completed_at = attempt.completed_at or datetime.utcnow()
    attempt.passed = attempt.percentage >= a.passing_score

    assignment = get_assignment(s, a, attempt.user)
    if assignment is not None:
        assignment.status = "COMPLETED"

    level = None
    if attempt.passed and a.skill_id:
        level = level_for_percentage(attempt.percentage)
        record_assessed_level(s, attempt.user, a.skill_id, level)

    s.flush()
    record_event(
        s,
        actor=actor,
        action="assessment_attempt.complete",
        entity_type="AssessmentAttempt",
        entity_id=str(attempt.id),
        metadata={"percentage": attempt.percentage, "passed": attempt.passed, "level": level},
    )
    on_assessment_completed(s, attempt.user, a)
    return attempt


def pending_grading(s: "Session") -> list["AssessmentAttempt"]:
    from app.skillloop.modules.assessments.models import AssessmentAttempt

    return (
        s.query(AssessmentAttempt)
        .filter(AssessmentAttempt.status == "grading")
        .order_by(AssessmentAttempt.completed_at.asc(), AssessmentAttempt.id.asc())
        .all()
    )


def my_assessments(s: "Session", user: "User") -> list[dict]:
    """Published assessments assigned to ``user`` with their latest attempt."""
    from app.skillloop.modules.assessments.models import Assessment, AssessmentAssignment, AssessmentAttempt

    assignments = (
        s.query(AssessmentAssignment)
        .join(Assessment, Assessment.id == AssessmentAssignment.assessment_id)
        .filter(AssessmentAssignment.user_id == user.id, Assessment.status == "PUBLISHED")
        .order_by(AssessmentAssignment.due_date.is_(None), AssessmentAssignment.due_date.asc())
        .all()
    )
    out = []
    for assignment in assignments:
        latest = (
            s.query(AssessmentAttempt)
            .filter(AssessmentAttempt.assessment_id == assignment.assessment_id, AssessmentAttempt.user_id == user.id)
            .order_by(AssessmentAttempt.started_at.desc(), AssessmentAttempt.id.desc())
            .first()
        )
        out.append({"assignment": assignment, "assessment": assignment.assessment, "latest_attempt": latest})
    return out
