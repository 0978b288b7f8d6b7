from __future__ import annotations

import csv
import io
import logging
from datetime import date, datetime
from statistics import mean
from typing import TYPE_CHECKING

from werkzeug.utils import secure_filename

from app.skillloop.audit import record_event
from app.skillloop.utils import ServiceError, clean, parse_datetime, parse_float, parse_int, round_half_up

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.skillloop.models import User
    from app.skillloop.modules.trainings.models import (
        Feedback,
        ProgressUpdate,
        ProofOfCompletion,
        Training,
        TrainingAssignment,
    )

logger = logging.getLogger(__name__)

MODES = ("ONLINE", "OFFLINE")
ASSIGNMENT_STATUSES = ("ASSIGNED", "IN_PROGRESS", "COMPLETED", "CANCELLED")
ACTIVE_STATUSES = ("ASSIGNED", "IN_PROGRESS")
PROOF_REVIEW_STATUSES = ("APPROVED", "REJECTED")
RATING_FIELDS = ("material_helpful", "interactive_engaging", "trainer_answered", "content_satisfaction")
EXTENDED_FIELDS = ("like_most", "key_learnings", "confusing_topics", "quality_rating", "competent_confident", "suggestions")


# ---------- Trainings ----------
def validate_training_payload(payload: dict) -> list[str]:
    errors = []
    topic = (payload.get("topic_name") or "").strip()
    if len(topic) < 2:
        errors.append("Topic name must be at least 2 characters.")
    mode = (payload.get("mode") or "").strip().upper()
    if mode not in MODES:
        errors.append("Mode must be ONLINE or OFFLINE.")
    if mode == "OFFLINE" and not clean(payload.get("venue")):
        errors.append("Venue is required for offline trainings.")
    if mode == "ONLINE" and not (clean(payload.get("meeting_link")) or clean(payload.get("resources"))):
        errors.append("Online trainings need a meeting link or resources.")
    raw_hours = payload.get("duration_hours")
    if raw_hours not in (None, ""):
        hours = parse_float(raw_hours)
        if hours is None or hours <= 0:
            errors.append("Duration must be a positive number of hours.")
    raw_max = payload.get("max_participants")
    if raw_max not in (None, ""):
        cap = parse_int(raw_max)
        if cap is None or cap < 1:
            errors.append("Max participants must be a positive whole number.")
    return errors


def _apply_training_fields(s: "Session", t: "Training", payload: dict) -> None:
    from app.skillloop.modules.skills.models import Skill

    skill_id = parse_int(payload.get("skill_id"))
    if skill_id and not s.get(Skill, skill_id):
        raise ServiceError("Skill not found.")
    t.topic_name = payload["topic_name"].strip()
    t.description = clean(payload.get("description"))
    t.mode = payload["mode"].strip().upper()
    t.duration_hours = parse_float(payload.get("duration_hours"))
    t.skill_id = skill_id
    t.resources = clean(payload.get("resources"))
    t.venue = clean(payload.get("venue"))
    t.meeting_link = clean(payload.get("meeting_link"))
    t.max_participants = parse_int(payload.get("max_participants"))


def create_training(s: "Session", payload: dict, user: "User") -> "Training":
    from app.skillloop.modules.system_config.service import get_config_value
    from app.skillloop.modules.trainings.models import Training

    now = datetime.utcnow()
    t = Training(created_by_user_id=user.id, created_at=now, updated_at=now)
    _apply_training_fields(s, t, payload)
    if t.duration_hours is None:
        t.duration_hours = float(get_config_value(s, "defaultTrainingDuration"))
    s.add(t)
    s.flush()
    record_event(
        s,
        actor=user,
        action="training.create",
        entity_type="Training",
        entity_id=str(t.id),
        metadata={"topic": t.topic_name, "mode": t.mode, "skill_id": t.skill_id},
    )
    return t


def update_training(s: "Session", t: "Training", payload: dict, user: "User") -> "Training":
    before = {"topic": t.topic_name, "mode": t.mode, "skill_id": t.skill_id}
    _apply_training_fields(s, t, payload)
    t.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="training.edit",
        entity_type="Training",
        entity_id=str(t.id),
        metadata={"before": before, "after": {"topic": t.topic_name, "mode": t.mode, "skill_id": t.skill_id}},
    )
    return t


def delete_training(s: "Session", t: "Training", user: "User") -> None:
    from app.skillloop.modules.trainings.models import TrainingAssignment

    count = s.query(TrainingAssignment).filter(TrainingAssignment.training_id == t.id).count()
    if count:
        raise ServiceError(f"Cannot delete training: it has {count} assignment(s).")
    record_event(s, actor=user, action="training.delete", entity_type="Training", entity_id=str(t.id), metadata={"topic": t.topic_name})
    s.delete(t)
    s.flush()


# ---------- Assignment ----------
def assignment_payload_from_form(form) -> dict:
    """Collect the assign-training form fields (user_id is a multi-select)."""
    return {
        "user_ids": [i for i in (parse_int(v) for v in form.getlist("user_id")) if i],
        "trainer_id": parse_int(form.get("trainer_id")),
        "mentor_id": parse_int(form.get("mentor_id")),
        "start_date": form.get("start_date"),
        "target_completion_date": form.get("target_completion_date"),
    }


def _payload_datetime(payload: dict, key: str, label: str) -> datetime:
    value = payload.get(key)
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    try:
        parsed = parse_datetime(value)
    except ValueError:
        raise ServiceError(f"{label} must be a date (YYYY-MM-DD).")
    if parsed is None:
        raise ServiceError(f"{label} is required.")
    return parsed


def _active_assignment_count(s: "Session", training_id: int) -> int:
    from app.skillloop.modules.trainings.models import TrainingAssignment

    return (
        s.query(TrainingAssignment)
        .filter(TrainingAssignment.training_id == training_id, TrainingAssignment.status != "CANCELLED")
        .count()
    )


def _ensure_calendar_entry(s: "Session", t: "Training", start: datetime) -> None:
    from app.skillloop.modules.trainings.models import TrainingCalendar

    exists = s.query(TrainingCalendar).filter_by(training_id=t.id, training_date=start).first()
    if exists:
        return
    s.add(
        TrainingCalendar(
            training_id=t.id,
            training_date=start,
            venue=t.venue,
            meeting_link=t.meeting_link,
            max_participants=t.max_participants,
            published_at=datetime.utcnow(),
        )
    )


def _skill_post_assessment(s: "Session", skill_id: int):
    from app.skillloop.modules.assessments.models import Assessment

    return (
        s.query(Assessment)
        .filter(
            Assessment.skill_id == skill_id,
            Assessment.status == "PUBLISHED",
            Assessment.is_pre_assessment.is_(False),
        )
        .order_by(Assessment.created_at.desc(), Assessment.id.desc())
        .first()
    )


def assign_training(s: "Session", training: "Training", payload: dict, actor: "User") -> list["TrainingAssignment"]:
    """
    Assign ``training`` to ``payload["user_ids"]``.

    Per user: the assignment row, the skill-matrix entry flipped to
    ``training_assigned``, a calendar slot on the start date, the skill's
    published assessment (due at the target date) and a notification.
    Users who already hold an active assignment of this training are skipped.
    """
    from app.skillloop.models import User
    from app.skillloop.modules.assessments.models import AssessmentAssignment
    from app.skillloop.modules.assessments.service import assign_assessment
    from app.skillloop.modules.notifications.service import notify
    from app.skillloop.modules.skill_matrix.service import mark_training_assigned
    from app.skillloop.modules.trainings.models import TrainingAssignment

    user_ids = list(dict.fromkeys(payload.get("user_ids") or []))
    if not user_ids:
        raise ServiceError("Select at least one employee.")
    start = _payload_datetime(payload, "start_date", "Start date")
    target = _payload_datetime(payload, "target_completion_date", "Target completion date")
    if target < start:
        raise ServiceError("Target completion date cannot be before the start date.")

    users = s.query(User).filter(User.id.in_(user_ids), User.is_active.is_(True)).all()
    if len(users) != len(user_ids):
        raise ServiceError("Some selected employees were not found or are inactive.")
    trainer = s.get(User, payload["trainer_id"]) if payload.get("trainer_id") else None
    mentor = s.get(User, payload["mentor_id"]) if payload.get("mentor_id") else None
    if payload.get("trainer_id") and not trainer:
        raise ServiceError("Trainer not found.")
    if payload.get("mentor_id") and not mentor:
        raise ServiceError("Mentor not found.")

    already = {
        uid
        for (uid,) in s.query(TrainingAssignment.user_id).filter(
            TrainingAssignment.training_id == training.id,
            TrainingAssignment.user_id.in_(user_ids),
            TrainingAssignment.status.in_(ACTIVE_STATUSES),
        )
    }
    to_assign = [u for u in users if u.id not in already]

    if training.mode == "OFFLINE" and training.max_participants:
        taken = _active_assignment_count(s, training.id)
        if taken + len(to_assign) > training.max_participants:
            remaining = max(0, training.max_participants - taken)
            raise ServiceError(f"Training is at capacity: {remaining} seat(s) left, {len(to_assign)} requested.")

    assessment = _skill_post_assessment(s, training.skill_id) if training.skill_id else None
    now = datetime.utcnow()
    created = []
    for u in to_assign:
        assignment = TrainingAssignment(
            training_id=training.id,
            user_id=u.id,
            trainer_id=trainer.id if trainer else None,
            mentor_id=mentor.id if mentor else None,
            assigned_by_user_id=actor.id,
            status="ASSIGNED",
            start_date=start,
            target_completion_date=target,
            created_at=now,
            updated_at=now,
        )
        s.add(assignment)
        s.flush()
        created.append(assignment)

        if training.skill_id:
            mark_training_assigned(s, u, training.skill_id)
        _ensure_calendar_entry(s, training, start)
        if assessment is not None:
            has_it = s.query(AssessmentAssignment).filter_by(assessment_id=assessment.id, user_id=u.id).first()
            if not has_it:
                assign_assessment(s, assessment, [u.id], target, actor)
        notify(
            s,
            u,
            "TRAINING_ASSIGNED",
            f"New Training Assigned: {training.topic_name}",
            f"You have been assigned '{training.topic_name}' ({training.mode.lower()}), "
            f"starting {start:%Y-%m-%d} with a target completion of {target:%Y-%m-%d}.",
            link="/trainings/my",
            email=True,
        )

    s.flush()
    record_event(
        s,
        actor=actor,
        action="training.assign",
        entity_type="Training",
        entity_id=str(training.id),
        metadata={
            "user_ids": [a.user_id for a in created],
            "skipped": sorted(already),
            "start_date": start.date().isoformat(),
            "target_completion_date": target.date().isoformat(),
        },
    )
    return created


def bulk_assign(s: "Session", trainings: list["Training"], payload: dict, actor: "User") -> dict[int, int]:
    """Assign several trainings to the same people. Returns {training_id: assignments created}."""
    if not trainings:
        raise ServiceError("Select at least one training.")
    return {t.id: len(assign_training(s, t, payload, actor)) for t in trainings}


def assign_from_tna(s: "Session", user: "User", payload: dict, actor: "User") -> list["TrainingAssignment"]:
    """Assign, for each open gap without active training, the first training that covers the skill."""
    from app.skillloop.modules.skill_matrix.service import get_training_recommendations

    created = []
    for rec in get_training_recommendations(s, user):
        if not rec["trainings"]:
            continue
        created.extend(assign_training(s, rec["trainings"][0], {**payload, "user_ids": [user.id]}, actor))
    if not created:
        raise ServiceError("No trainings cover this employee's open skill gaps.")
    return created


def update_assignment_status(s: "Session", assignment: "TrainingAssignment", status: str, actor: "User") -> None:
    from app.skillloop.modules.skill_matrix.service import update_skill_matrix_gaps

    status = (status or "").strip().upper()
    if status not in ASSIGNMENT_STATUSES:
        raise ServiceError(f"Invalid assignment status: {status}")
    if status == "COMPLETED":
        _complete(s, assignment, actor)
        return
    old = assignment.status
    assignment.status = status
    assignment.updated_at = datetime.utcnow()
    s.flush()
    update_skill_matrix_gaps(s, assignment.user)
    record_event(
        s,
        actor=actor,
        action="training_assignment.status",
        entity_type="TrainingAssignment",
        entity_id=str(assignment.id),
        metadata={"old": old, "new": status},
    )


def _complete(s: "Session", assignment: "TrainingAssignment", actor: "User", *, reach_desired: bool = False) -> None:
    from app.skillloop.modules.journeys.engine import on_training_completed
    from app.skillloop.modules.skill_matrix.service import mark_skill_completed

    if assignment.status == "COMPLETED":
        raise ServiceError("This training is already completed.")
    if assignment.status == "CANCELLED":
        raise ServiceError("This training assignment was cancelled.")
    now = datetime.utcnow()
    assignment.status = "COMPLETED"
    assignment.completion_date = now
    assignment.updated_at = now
    if assignment.training.skill_id:
        mark_skill_completed(s, assignment.user, assignment.training.skill_id, reach_desired=reach_desired)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="training_assignment.complete",
        entity_type="TrainingAssignment",
        entity_id=str(assignment.id),
        metadata={"training_id": assignment.training_id, "user_id": assignment.user_id},
    )
    on_training_completed(s, assignment.user, assignment)


def complete_training(s: "Session", assignment: "TrainingAssignment", user: "User") -> None:
    from app.skillloop.modules.notifications.service import notify_many

    if assignment.user_id != user.id:
        raise ServiceError("You can only complete your own trainings.")
    _complete(s, assignment, user)
    notify_many(
        s,
        [assignment.trainer, assignment.mentor],
        "TRAINING_COMPLETED",
        f"Training Completed: {assignment.training.topic_name}",
        f"{user.display_name} marked '{assignment.training.topic_name}' as completed.",
        link=f"/trainings/assignments/{assignment.id}",
    )


def can_review(user: "User", assignment: "TrainingAssignment") -> bool:
    from app.skillloop.rbac import is_admin

    return is_admin(user) or user.id in (assignment.trainer_id, assignment.mentor_id)


def can_view_assignment(user: "User", assignment: "TrainingAssignment") -> bool:
    from app.skillloop.rbac import user_has_permission

    return (
        assignment.user_id == user.id
        or can_review(user, assignment)
        or user_has_permission(user, "trainings.assign")
    )


# ---------- Progress ----------
def validate_progress_payload(payload: dict) -> list[str]:
    errors = []
    week = parse_int(payload.get("week_number"))
    if week is None or week < 1:
        errors.append("Week number must be 1 or more.")
    pct = parse_int(payload.get("completion_percentage"))
    if pct is None or not 0 <= pct <= 100:
        errors.append("Completion must be between 0 and 100.")
    hours = parse_float(payload.get("hours_spent"), 0.0)
    if hours is None or hours < 0:
        errors.append("Hours spent cannot be negative.")
    return errors


def record_progress(s: "Session", assignment: "TrainingAssignment", payload: dict, user: "User") -> "ProgressUpdate":
    """Upsert the learner's update for one week (online trainings only)."""
    from app.skillloop.modules.notifications.service import notify
    from app.skillloop.modules.trainings.models import ProgressUpdate

    if assignment.user_id != user.id:
        raise ServiceError("You can only update progress on your own trainings.")
    if assignment.training.mode != "ONLINE":
        raise ServiceError("Progress updates are only tracked for online trainings.")
    if assignment.status not in ACTIVE_STATUSES:
        raise ServiceError("Progress can only be updated on active trainings.")

    week = parse_int(payload.get("week_number"))
    now = datetime.utcnow()
    update = s.query(ProgressUpdate).filter_by(assignment_id=assignment.id, week_number=week).one_or_none()
    if update is None:
        update = ProgressUpdate(assignment_id=assignment.id, week_number=week, created_at=now)
        s.add(update)
    update.completion_percentage = parse_int(payload.get("completion_percentage"))
    update.topics_covered = clean(payload.get("topics_covered"))
    update.hours_spent = parse_float(payload.get("hours_spent"), 0.0)
    update.challenges = clean(payload.get("challenges"))
    update.next_steps = clean(payload.get("next_steps"))
    update.updated_at = now
    if assignment.status == "ASSIGNED":
        assignment.status = "IN_PROGRESS"
    assignment.updated_at = now
    s.flush()
    record_event(
        s,
        actor=user,
        action="training_progress.update",
        entity_type="ProgressUpdate",
        entity_id=str(update.id),
        metadata={"assignment_id": assignment.id, "week": week, "completion": update.completion_percentage},
    )
    if assignment.mentor:
        notify(
            s,
            assignment.mentor,
            "TRAINING_PROGRESS_UPDATED",
            f"Progress Update: {assignment.training.topic_name}",
            f"{user.display_name} logged week {week} at {update.completion_percentage}% complete.",
            link=f"/trainings/assignments/{assignment.id}",
        )
    return update


def add_mentor_comment(s: "Session", update: "ProgressUpdate", comment: str, actor: "User") -> None:
    from app.skillloop.modules.notifications.service import notify

    assignment = update.assignment
    if not can_review(actor, assignment):
        raise ServiceError("Only the trainer, mentor or an admin can comment on progress.")
    comment = (comment or "").strip()
    if not comment:
        raise ServiceError("Comment is required.")
    update.mentor_comments = comment
    update.mentor_commented_by_user_id = actor.id
    update.updated_at = datetime.utcnow()
    s.flush()
    record_event(s, actor=actor, action="training_progress.comment", entity_type="ProgressUpdate", entity_id=str(update.id))
    notify(
        s,
        assignment.user,
        "TRAINING_PROGRESS_UPDATED",
        f"New comment on week {update.week_number}: {assignment.training.topic_name}",
        f"{actor.display_name}: {comment}",
        link=f"/trainings/assignments/{assignment.id}",
    )


def progress_summary(assignment: "TrainingAssignment") -> dict:
    updates = assignment.progress_updates
    latest = max(updates, key=lambda u: u.week_number) if updates else None
    return {
        "latest_completion": latest.completion_percentage if latest else 0,
        "total_hours": round(sum(u.hours_spent or 0 for u in updates), 2),
        "weeks": len(updates),
        "last_update_at": max((u.updated_at for u in updates), default=None),
    }


# ---------- Proofs ----------
def submit_proof(
    s: "Session",
    assignment: "TrainingAssignment",
    file_bytes: bytes,
    filename: str,
    content_type: str,
    user: "User",
    description: str | None = None,
) -> "ProofOfCompletion":
    from flask import current_app
    from app.skillloop.modules.notifications.service import notify_many
    from app.skillloop.modules.trainings.models import ProofOfCompletion
    from app.skillloop.storage import proof_key, storage_from_config

    if assignment.user_id != user.id:
        raise ServiceError("You can only submit proof for your own trainings.")
    if assignment.status not in ACTIVE_STATUSES:
        raise ServiceError("Proof can only be submitted for active trainings.")
    if not file_bytes:
        raise ServiceError("The uploaded file is empty.")

    stored = storage_from_config(current_app.config).save(
        proof_key(assignment.id, filename), file_bytes, content_type=content_type
    )

    proof = ProofOfCompletion(
        assignment_id=assignment.id,
        storage_key=stored.key,
        original_filename=secure_filename(filename) or "proof.bin",
        content_type=content_type or "application/octet-stream",
        sha256=stored.sha256,
        size_bytes=stored.size_bytes,
        description=clean(description),
        status="PENDING",
        submitted_at=datetime.utcnow(),
    )
    s.add(proof)
    s.flush()
    record_event(
        s,
        actor=user,
        action="training_proof.submit",
        entity_type="ProofOfCompletion",
        entity_id=str(proof.id),
        metadata={"assignment_id": assignment.id, "filename": proof.original_filename, "sha256": stored.sha256},
    )
    notify_many(
        s,
        [assignment.trainer, assignment.mentor],
        "TRAINING_PROOF_SUBMITTED",
        f"Proof Submitted: {assignment.training.topic_name}",
        f"{user.display_name} submitted proof of completion for review.",
        link=f"/trainings/assignments/{assignment.id}",
        email=True,
    )
    return proof


def review_proof(s: "Session", proof: "ProofOfCompletion", status: str, comments: str | None, reviewer: "User") -> None:
    from app.skillloop.modules.notifications.service import notify

    assignment = proof.assignment
    if not can_review(reviewer, assignment):
        raise ServiceError("Only the trainer, mentor or an admin can review proofs.")
    if proof.status != "PENDING":
        raise ServiceError("This proof has already been reviewed.")
    status = (status or "").strip().upper()
    if status not in PROOF_REVIEW_STATUSES:
        raise ServiceError("Review status must be APPROVED or REJECTED.")
    comments = clean(comments)
    if status == "REJECTED" and not comments:
        raise ServiceError("Please give a reason when rejecting a proof.")

    proof.status = status
    proof.reviewer_comments = comments
    proof.reviewed_by_user_id = reviewer.id
    proof.reviewed_at = datetime.utcnow()
    record_event(
        s,
        actor=reviewer,
        action=f"training_proof.{status.lower()}",
        entity_type="ProofOfCompletion",
        entity_id=str(proof.id),
        metadata={"assignment_id": assignment.id},
    )
    topic = assignment.training.topic_name
    link = f"/trainings/assignments/{assignment.id}"
    if status == "APPROVED":
        if assignment.status != "COMPLETED":
            _complete(s, assignment, reviewer, reach_desired=True)
        notify(
            s,
            assignment.user,
            "TRAINING_COMPLETED",
            f"Training Completed: {topic}",
            f"Your proof of completion for '{topic}' was approved.",
            link=link,
            email=True,
        )
    else:
        notify(
            s,
            assignment.user,
            "TRAINING_PROOF_REJECTED",
            f"Proof Rejected: {topic}",
            f"Your proof of completion for '{topic}' was rejected: {comments}",
            link=link,
            email=True,
        )
    s.flush()


def delete_proof(s: "Session", proof: "ProofOfCompletion", user: "User") -> None:
    from flask import current_app
    from app.skillloop.storage import storage_from_config

    if proof.assignment.user_id != user.id:
        raise ServiceError("You can only delete your own proofs.")
    if proof.status != "PENDING":
        raise ServiceError("Only pending proofs can be deleted.")
    storage = storage_from_config(current_app.config)
    storage.delete(proof.storage_key)
    record_event(
        s,
        actor=user,
        action="training_proof.delete",
        entity_type="ProofOfCompletion",
        entity_id=str(proof.id),
        metadata={"filename": proof.original_filename},
    )
    s.delete(proof)
    s.flush()


def pending_proofs(s: "Session", reviewer: "User") -> list["ProofOfCompletion"]:
    from app.skillloop.modules.trainings.models import ProofOfCompletion, TrainingAssignment
    from app.skillloop.rbac import is_admin

    q = (
        s.query(ProofOfCompletion)
        .join(TrainingAssignment, TrainingAssignment.id == ProofOfCompletion.assignment_id)
        .filter(ProofOfCompletion.status == "PENDING")
    )
    if not is_admin(reviewer):
        q = q.filter((TrainingAssignment.trainer_id == reviewer.id) | (TrainingAssignment.mentor_id == reviewer.id))
    return q.order_by(ProofOfCompletion.submitted_at.asc()).all()


# ---------- Feedback ----------
def validate_feedback_payload(payload: dict) -> list[str]:
    errors = []
    for field in RATING_FIELDS:
        v = parse_int(payload.get(field))
        if v is None or not 1 <= v <= 5:
            errors.append(f"{field.replace('_', ' ').capitalize()} must be rated 1 to 5.")
    return errors


def submit_feedback(s: "Session", assignment: "TrainingAssignment", payload: dict, user: "User") -> "Feedback":
    from app.skillloop.modules.notifications.service import admins, notify_many
    from app.skillloop.modules.trainings.models import Feedback

    if assignment.user_id != user.id:
        raise ServiceError("You can only give feedback on your own trainings.")
    if assignment.status != "COMPLETED":
        raise ServiceError("Feedback can be given once the training is completed.")
    if assignment.feedback is not None:
        raise ServiceError("Feedback has already been submitted for this training.")

    ratings = {f: parse_int(payload.get(f)) for f in RATING_FIELDS}
    extended = {f: clean(payload.get(f)) for f in EXTENDED_FIELDS if clean(payload.get(f))}
    fb = Feedback(
        assignment=assignment,
        user_id=user.id,
        overall_rating=round_half_up(mean(ratings.values())),
        extended=extended or None,
        comments=clean(payload.get("comments")),
        created_at=datetime.utcnow(),
        **ratings,
    )
    s.add(fb)
    s.flush()
    record_event(
        s,
        actor=user,
        action="training_feedback.submit",
        entity_type="Feedback",
        entity_id=str(fb.id),
        metadata={"assignment_id": assignment.id, "overall": fb.overall_rating},
    )
    topic = assignment.training.topic_name
    notify_many(
        s,
        admins(s) + [assignment.trainer],
        "TRAINING_FEEDBACK",
        f"New Feedback: {topic}",
        f"{user.display_name} rated '{topic}' {fb.overall_rating}/5.",
        link="/trainings/feedback",
    )
    return fb


def _filtered_feedback(s: "Session", filters: dict):
    from app.skillloop.models import User
    from app.skillloop.modules.trainings.models import Feedback, Training, TrainingAssignment

    q = (
        s.query(Feedback)
        .join(TrainingAssignment, TrainingAssignment.id == Feedback.assignment_id)
        .join(Training, Training.id == TrainingAssignment.training_id)
        .join(User, User.id == Feedback.user_id)
    )
    if filters.get("date_from"):
        q = q.filter(Feedback.created_at >= datetime.combine(filters["date_from"], datetime.min.time()))
    if filters.get("date_to"):
        q = q.filter(Feedback.created_at <= datetime.combine(filters["date_to"], datetime.max.time()))
    if filters.get("department"):
        q = q.filter(User.department == filters["department"])
    if filters.get("mode"):
        q = q.filter(Training.mode == filters["mode"])
    return q.order_by(Feedback.created_at.desc())


def feedback_summary(s: "Session", filters: dict | None = None) -> dict:
    """
    Averages, NPS and trainer rankings.

    NPS counts overall 5 as promoter and 3 or lower as detractor.
    """
    from app.skillloop.modules.trainings.models import TrainingAssignment

    feedbacks = _filtered_feedback(s, filters or {}).all()
    n = len(feedbacks)
    if not n:
        return {
            "total_responses": 0,
            "averages": {f: 0.0 for f in (*RATING_FIELDS, "overall_rating")},
            "nps": 0,
            "response_rate": 0,
            "trainer_rankings": [],
            "feedbacks": [],
        }

    averages = {f: round(mean(getattr(fb, f) for fb in feedbacks), 1) for f in (*RATING_FIELDS, "overall_rating")}
    promoters = sum(1 for fb in feedbacks if fb.overall_rating == 5)
    detractors = sum(1 for fb in feedbacks if fb.overall_rating <= 3)
    completed = s.query(TrainingAssignment).filter(TrainingAssignment.status == "COMPLETED").count()

    by_trainer: dict[str, list[int]] = {}
    for fb in feedbacks:
        trainer = fb.assignment.trainer
        if trainer is not None:
            by_trainer.setdefault(trainer.display_name, []).append(fb.trainer_answered)
    rankings = sorted(
        ({"name": name, "average_rating": round(mean(r), 1), "responses": len(r)} for name, r in by_trainer.items()),
        key=lambda row: (-row["average_rating"], row["name"]),
    )
    return {
        "total_responses": n,
        "averages": averages,
        "nps": round_half_up((promoters - detractors) / n * 100),
        "response_rate": round_half_up(n / completed * 100) if completed else 0,
        "trainer_rankings": rankings,
        "feedbacks": feedbacks,
    }


FEEDBACK_CSV_HEADER = [
    "Date",
    "Learner",
    "Department",
    "Training",
    "Mode",
    "Trainer",
    *(f.replace("_", " ").title() for f in RATING_FIELDS),
    "Overall Rating",
    *(f.replace("_", " ").title() for f in EXTENDED_FIELDS),
]


def feedback_csv(feedbacks: list["Feedback"]) -> str:
    buf = io.StringIO()
    w = csv.writer(buf)
    w.writerow(FEEDBACK_CSV_HEADER)
    for fb in feedbacks:
        a = fb.assignment
        extended = fb.extended or {}
        w.writerow(
            [
                fb.created_at.date().isoformat(),
                fb.user.display_name,
                fb.user.department or "",
                a.training.topic_name,
                a.training.mode,
                a.trainer.display_name if a.trainer else "",
                *(getattr(fb, f) for f in RATING_FIELDS),
                fb.overall_rating,
                *(extended.get(f, "") for f in EXTENDED_FIELDS),
            ]
        )
    return buf.getvalue()
