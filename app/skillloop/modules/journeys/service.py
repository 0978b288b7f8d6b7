from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from app.skillloop.audit import record_event
from app.skillloop.modules.journeys.constants import ACTIVE_PHASE_STATUSES, PHASE_TYPES
from app.skillloop.modules.journeys.engine import active_journey, auto_advance_phase, initialize_journey, log_activity
from app.skillloop.utils import ServiceError, clean, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.skillloop.models import User
    from app.skillloop.modules.assessments.models import Assessment
    from app.skillloop.modules.journeys.models import Journey, JourneyPhase
    from app.skillloop.modules.trainings.models import TrainingAssignment


def validate_phase_payload(payload: dict) -> list[str]:
    errors = []
    title = (payload.get("title") or "").strip()
    if len(title) < 2:
        errors.append("Phase title must be at least 2 characters.")
    days = parse_int(payload.get("duration_days"))
    if days is None or days < 1:
        errors.append("Duration must be at least 1 day.")
    phase_type = (payload.get("phase_type") or "CUSTOM").strip().upper()
    if phase_type not in PHASE_TYPES:
        errors.append(f"Invalid phase type: {phase_type}")
    return errors


def create_journey(
    s: "Session",
    user: "User",
    employee_type: str,
    actor: "User",
    phases: list[dict] | None = None,
    start: datetime | None = None,
) -> "Journey":
    if active_journey(s, user, ("IN_PROGRESS", "PAUSED")):
        raise ServiceError(f"{user.display_name} already has an active journey.")
    return initialize_journey(s, user, employee_type, phases=phases, start=start, actor=actor)


def _renumber(journey: "Journey") -> None:
    for i, p in enumerate(sorted(journey.phases, key=lambda x: x.phase_number), start=1):
        p.phase_number = i


def add_journey_phase(s: "Session", journey: "Journey", payload: dict, insert_after: int | None, actor: "User") -> "JourneyPhase":
    """Insert a phase after ``insert_after`` (0 puts it first, None appends)."""
    from app.skillloop.modules.journeys.models import JourneyPhase

    if journey.employee_type != "NEW_EMPLOYEE":
        raise ServiceError("Phases can only be added to new-employee journeys.")
    if journey.status == "COMPLETED":
        raise ServiceError("This journey is already completed.")
    count = len(journey.phases)
    position = count if insert_after is None else insert_after
    if position < 0 or position > count:
        raise ServiceError(f"Insert position must be between 0 and {count}.")

    for p in journey.phases:
        if p.phase_number > position:
            p.phase_number += 1
    s.flush()

    previous = next((p for p in journey.phases if p.phase_number == position), None)
    base = previous.due_date if previous and previous.due_date else datetime.utcnow()
    days = parse_int(payload.get("duration_days"))
    phase = JourneyPhase(
        journey_id=journey.id,
        phase_number=position + 1,
        phase_type=(payload.get("phase_type") or "CUSTOM").strip().upper(),
        title=payload["title"].strip(),
        description=clean(payload.get("description")),
        duration_days=days,
        status="NOT_STARTED",
        due_date=base + timedelta(days=days),
        mentor_id=parse_int(payload.get("mentor_id")),
    )
    journey.phases.append(phase)
    s.flush()
    log_activity(s, journey, "PHASE_ADDED", f"{phase.title} Added", f"Inserted as phase {phase.phase_number}", phase_number=phase.phase_number)
    record_event(
        s,
        actor=actor,
        action="journey_phase.add",
        entity_type="JourneyPhase",
        entity_id=str(phase.id),
        metadata={"journey_id": journey.id, "phase_number": phase.phase_number, "title": phase.title},
    )
    return phase


def get_phase(journey: "Journey", phase_number: int) -> "JourneyPhase":
    phase = next((p for p in journey.phases if p.phase_number == phase_number), None)
    if phase is None:
        raise ServiceError(f"Phase {phase_number} not found.")
    return phase


def skip_journey_phase(s: "Session", journey: "Journey", phase_number: int, reason: str | None, actor: "User") -> None:
    """Mark the current phase SKIPPED and move on."""
    phase = get_phase(journey, phase_number)
    if phase.status == "COMPLETED":
        raise ServiceError("Completed phases cannot be skipped.")
    if phase.status == "SKIPPED":
        raise ServiceError("This phase is already skipped.")
    if journey.status != "IN_PROGRESS":
        raise ServiceError("Only phases of an in-progress journey can be skipped.")
    if phase.status in ACTIVE_PHASE_STATUSES:
        auto_advance_phase(s, journey, f"skip by {actor.email}", {"reason": reason} if reason else None, outcome="SKIPPED")
    else:
        phase.status = "SKIPPED"
        phase.completed_at = datetime.utcnow()
        log_activity(s, journey, "PHASE_SKIPPED", f"{phase.title} Skipped", reason, phase_number=phase.phase_number)
        s.flush()
    record_event(
        s,
        actor=actor,
        action="journey_phase.skip",
        entity_type="JourneyPhase",
        entity_id=str(phase.id),
        reason=reason,
        metadata={"journey_id": journey.id, "phase_number": phase_number},
    )


def assign_mentor_to_phase(s: "Session", phase: "JourneyPhase", mentor: "User", actor: "User") -> None:
    from app.skillloop.models import Role
    from app.skillloop.modules.notifications.service import notify

    if not mentor.is_active:
        raise ServiceError("Mentor must be an active user.")
    if mentor.id == phase.journey.user_id:
        raise ServiceError("An employee cannot mentor their own journey.")
    if "mentor" not in mentor.role_keys:
        role = s.query(Role).filter(Role.key == "mentor").one_or_none()
        if role is None:
            raise ServiceError("The mentor role is not seeded. Run scripts/init_db.py.")
        mentor.roles.append(role)
    phase.mentor_id = mentor.id
    s.flush()
    employee = phase.journey.user
    log_activity(s, phase.journey, "MENTOR_ASSIGNED", f"Mentor Assigned: {mentor.display_name}", None, phase_number=phase.phase_number)
    notify(
        s,
        mentor,
        "MENTOR_ASSIGNED",
        f"You are now mentoring {employee.display_name}",
        f"You have been assigned as mentor for phase {phase.phase_number} '{phase.title}' of {employee.display_name}'s journey.",
        link="/journeys/mentoring",
        email=True,
    )
    record_event(
        s,
        actor=actor,
        action="journey_phase.assign_mentor",
        entity_type="JourneyPhase",
        entity_id=str(phase.id),
        metadata={"mentor_id": mentor.id},
    )


def remove_mentor_from_phase(s: "Session", phase: "JourneyPhase", actor: "User") -> None:
    if phase.mentor_id is None:
        raise ServiceError("This phase has no mentor.")
    old = phase.mentor_id
    phase.mentor_id = None
    s.flush()
    record_event(s, actor=actor, action="journey_phase.remove_mentor", entity_type="JourneyPhase", entity_id=str(phase.id), metadata={"mentor_id": old})


def delete_journey_phase(s: "Session", phase: "JourneyPhase", actor: "User") -> None:
    journey = phase.journey
    if journey.employee_type != "NEW_EMPLOYEE":
        raise ServiceError("Phases can only be removed from new-employee journeys.")
    if phase.status != "NOT_STARTED":
        raise ServiceError("Only phases that have not started can be deleted.")
    number, title = phase.phase_number, phase.title
    journey.phases.remove(phase)
    s.flush()
    _renumber(journey)
    log_activity(s, journey, "PHASE_DELETED", f"{title} Deleted", f"Phase {number} removed")
    s.flush()
    record_event(s, actor=actor, action="journey_phase.delete", entity_type="Journey", entity_id=str(journey.id), metadata={"phase_number": number, "title": title})


def update_phase_details(s: "Session", phase: "JourneyPhase", payload: dict, actor: "User") -> None:
    phase.title = payload["title"].strip()
    phase.description = clean(payload.get("description"))
    days = parse_int(payload.get("duration_days"))
    changed_duration = days != phase.duration_days
    phase.duration_days = days
    if changed_duration and phase.started_at:
        phase.due_date = phase.started_at + timedelta(days=days)
    log_activity(s, phase.journey, "PHASE_UPDATED", f"{phase.title} Updated", None, phase_number=phase.phase_number)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="journey_phase.edit",
        entity_type="JourneyPhase",
        entity_id=str(phase.id),
        metadata={"title": phase.title, "duration_days": days},
    )


def link_assessment(s: "Session", phase: "JourneyPhase", assessment: "Assessment", actor: "User") -> None:
    from app.skillloop.modules.assessments.models import AssessmentAssignment
    from app.skillloop.modules.assessments.service import assign_assessment

    user_id = phase.journey.user_id
    assigned = s.query(AssessmentAssignment).filter_by(assessment_id=assessment.id, user_id=user_id).first()
    if not assigned:
        assign_assessment(s, assessment, [user_id], phase.due_date, actor)
    phase.assessment_id = assessment.id
    s.flush()
    record_event(s, actor=actor, action="journey_phase.link_assessment", entity_type="JourneyPhase", entity_id=str(phase.id), metadata={"assessment_id": assessment.id})


def link_training(s: "Session", phase: "JourneyPhase", assignment: "TrainingAssignment", actor: "User") -> None:
    if assignment.user_id != phase.journey.user_id:
        raise ServiceError("That training assignment belongs to someone else.")
    phase.training_assignment_id = assignment.id
    s.flush()
    record_event(s, actor=actor, action="journey_phase.link_training", entity_type="JourneyPhase", entity_id=str(phase.id), metadata={"training_assignment_id": assignment.id})


# ---------- Lists ----------
def list_journeys_query(s: "Session", filters: dict):
    from app.skillloop.models import User
    from app.skillloop.modules.journeys.models import Journey

    q = s.query(Journey).join(User, User.id == Journey.user_id)
    if filters.get("status"):
        q = q.filter(Journey.status == filters["status"])
    if filters.get("employee_type"):
        q = q.filter(Journey.employee_type == filters["employee_type"])
    if filters.get("search"):
        like = f"%{filters['search']}%"
        q = q.filter(User.name.ilike(like) | User.email.ilike(like))
    return q.order_by(Journey.started_at.desc(), Journey.id.desc())


def journey_statistics(s: "Session") -> dict:
    from sqlalchemy import func
    from app.skillloop.modules.journeys.models import Journey, JourneyActivity, JourneyPhase

    active_by_type = dict(
        s.query(Journey.employee_type, func.count(Journey.id)).filter(Journey.status == "IN_PROGRESS").group_by(Journey.employee_type).all()
    )
    return {
        "active": s.query(Journey).filter(Journey.status == "IN_PROGRESS").count(),
        "completed": s.query(Journey).filter(Journey.status == "COMPLETED").count(),
        "overdue_phases": s.query(JourneyPhase).filter(JourneyPhase.status == "OVERDUE").count(),
        "active_new": active_by_type.get("NEW_EMPLOYEE", 0),
        "active_existing": active_by_type.get("EXISTING_EMPLOYEE", 0),
        "recent_activities": s.query(JourneyActivity).order_by(JourneyActivity.created_at.desc(), JourneyActivity.id.desc()).limit(10).all(),
    }


def mentor_phases(s: "Session", mentor: "User") -> list["JourneyPhase"]:
    from app.skillloop.modules.journeys.models import Journey, JourneyPhase

    return (
        s.query(JourneyPhase)
        .join(Journey, Journey.id == JourneyPhase.journey_id)
        .filter(JourneyPhase.mentor_id == mentor.id, Journey.status != "COMPLETED")
        .order_by(JourneyPhase.due_date.asc())
        .all()
    )
