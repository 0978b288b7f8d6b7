"""
Journey engine: start, advance, measure and police phased journeys.

Callers own the transaction; everything here only flushes.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from app.skillloop.audit import record_event
from app.skillloop.modules.journeys.constants import ACTIVE_PHASE_STATUSES, default_phases
from app.skillloop.utils import ServiceError, round_half_up

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.skillloop.models import User
    from app.skillloop.modules.assessments.models import Assessment
    from app.skillloop.modules.journeys.models import Journey, JourneyActivity, JourneyPhase
    from app.skillloop.modules.trainings.models import TrainingAssignment

logger = logging.getLogger(__name__)


def log_activity(
    s: "Session",
    journey: "Journey",
    activity_type: str,
    title: str,
    description: str | None = None,
    *,
    phase_number: int | None = None,
    metadata: dict | None = None,
) -> "JourneyActivity":
    from app.skillloop.modules.journeys.models import JourneyActivity

    activity = JourneyActivity(
        journey_id=journey.id,
        user_id=journey.user_id,
        activity_type=activity_type,
        title=title,
        description=description,
        phase_number=phase_number,
        metadata_json=metadata,
        created_at=datetime.utcnow(),
    )
    s.add(activity)
    return activity


def chain_due_dates(durations: list[int], start: datetime) -> list[datetime]:
    """Each phase is due ``duration`` days after the previous phase's due date."""
    out = []
    current = start
    for days in durations:
        current = current + timedelta(days=days)
        out.append(current)
    return out


def active_journey(s: "Session", user: "User", statuses: tuple[str, ...] = ("IN_PROGRESS",)) -> "Journey | None":
    from app.skillloop.modules.journeys.models import Journey

    return (
        s.query(Journey)
        .filter(Journey.user_id == user.id, Journey.status.in_(statuses))
        .order_by(Journey.started_at.desc(), Journey.id.desc())
        .first()
    )


def _ordered(journey: "Journey") -> list["JourneyPhase"]:
    return sorted(journey.phases, key=lambda p: p.phase_number)


def current_phase(journey: "Journey") -> "JourneyPhase | None":
    return next((p for p in _ordered(journey) if p.status in ACTIVE_PHASE_STATUSES), None)


def initialize_journey(
    s: "Session",
    user: "User",
    employee_type: str,
    phases: list[dict] | None = None,
    start: datetime | None = None,
    actor: "User | None" = None,
) -> "Journey":
    from sqlalchemy import func
    from app.skillloop.modules.journeys.models import Journey, JourneyPhase

    if employee_type not in ("NEW_EMPLOYEE", "EXISTING_EMPLOYEE"):
        raise ServiceError(f"Invalid employee type: {employee_type}")
    configs = phases or default_phases(employee_type)
    if not configs:
        raise ServiceError("A journey needs at least one phase.")
    start = start or datetime.utcnow()
    previous_cycle = s.query(func.max(Journey.cycle_number)).filter(Journey.user_id == user.id).scalar() or 0

    journey = Journey(
        user_id=user.id,
        employee_type=employee_type,
        status="IN_PROGRESS",
        cycle_number=previous_cycle + 1,
        started_at=start,
        created_at=datetime.utcnow(),
    )
    s.add(journey)
    s.flush()

    dues = chain_due_dates([int(c["duration_days"]) for c in configs], start)
    first = None
    for i, (cfg, due) in enumerate(zip(configs, dues), start=1):
        phase = JourneyPhase(
            journey_id=journey.id,
            phase_number=i,
            phase_type=cfg.get("phase_type") or "CUSTOM",
            title=cfg["title"],
            description=cfg.get("description"),
            duration_days=int(cfg["duration_days"]),
            status="IN_PROGRESS" if i == 1 else "NOT_STARTED",
            started_at=start if i == 1 else None,
            due_date=due,
            mentor_id=cfg.get("mentor_id"),
        )
        s.add(phase)
        if i == 1:
            first = phase
    s.flush()

    user.employee_type = employee_type
    user.journey_status = "IN_PROGRESS"
    user.current_phase_id = first.id if first else None
    user.induction_start_date = start
    label = "New employee" if employee_type == "NEW_EMPLOYEE" else "Existing employee"
    log_activity(s, journey, "JOURNEY_STARTED", "Journey Started", f"{label} journey initiated (cycle {journey.cycle_number})")
    s.flush()
    s.refresh(journey)
    record_event(
        s,
        actor=actor,
        action="journey.start",
        entity_type="Journey",
        entity_id=str(journey.id),
        metadata={"user_id": user.id, "employee_type": employee_type, "cycle": journey.cycle_number},
    )
    return journey


def auto_advance_phase(
    s: "Session",
    journey: "Journey",
    triggered_by: str,
    metadata: dict | None = None,
    *,
    outcome: str = "COMPLETED",
) -> bool:
    """
    Close the current phase with ``outcome`` (COMPLETED or SKIPPED) and start the next one.
    Returns False when no phase is active.
    """
    phase = current_phase(journey)
    if phase is None:
        return False

    now = datetime.utcnow()
    phase.status = outcome
    phase.completed_at = now
    if outcome == "SKIPPED":
        log_activity(s, journey, "PHASE_SKIPPED", f"{phase.title} Skipped", f"Phase skipped by {triggered_by}", phase_number=phase.phase_number, metadata=metadata)
    else:
        log_activity(s, journey, "PHASE_AUTO_COMPLETED", f"{phase.title} Completed", f"Phase completed by {triggered_by}", phase_number=phase.phase_number, metadata=metadata)

    user = journey.user
    nxt = next((p for p in _ordered(journey) if p.phase_number > phase.phase_number and p.status == "NOT_STARTED"), None)
    if nxt is not None:
        nxt.status = "IN_PROGRESS"
        nxt.started_at = now
        user.current_phase_id = nxt.id
        log_activity(s, journey, "PHASE_STARTED", f"{nxt.title} Started", "Phase started after the previous phase closed", phase_number=nxt.phase_number)
        s.flush()
        return True

    journey.status = "COMPLETED"
    journey.completed_at = now
    user.journey_status = "COMPLETED"
    user.current_phase_id = None
    log_activity(s, journey, "JOURNEY_COMPLETED", "Journey Completed", "All phases completed")
    s.flush()
    logger.info("Journey %s for user %s completed (cycle %s)", journey.id, user.id, journey.cycle_number)
    if journey.employee_type == "EXISTING_EMPLOYEE":
        initialize_journey(s, user, "EXISTING_EMPLOYEE", start=now)
    return True


def calculate_phase_progress(journey: "Journey", now: datetime | None = None) -> dict:
    phases = _ordered(journey)
    total = len(phases)
    completed = sum(1 for p in phases if p.status == "COMPLETED")
    cur = current_phase(journey)
    result = {
        "total_phases": total,
        "completed_phases": completed,
        "current_phase": cur.phase_number if cur else 0,
        "progress_percentage": round_half_up(completed / total * 100) if total else 0,
    }
    if journey.employee_type == "NEW_EMPLOYEE" and journey.started_at and phases and phases[-1].due_date:
        now = now or datetime.utcnow()
        elapsed = (now - journey.started_at).days
        total_days = (phases[-1].due_date - journey.started_at).days
        result["days_elapsed"] = elapsed
        result["days_remaining"] = max(0, total_days - elapsed)
        result["expected_completion_date"] = phases[-1].due_date
    return result


def check_overdue_phases(s: "Session", now: datetime | None = None) -> int:
    """Flag in-progress phases past their due date and tell the employee and mentor."""
    from app.skillloop.modules.journeys.models import JourneyPhase
    from app.skillloop.modules.notifications.service import notify_many

    now = now or datetime.utcnow()
    overdue = (
        s.query(JourneyPhase)
        .filter(JourneyPhase.status == "IN_PROGRESS", JourneyPhase.due_date.is_not(None), JourneyPhase.due_date < now)
        .all()
    )
    for phase in overdue:
        phase.status = "OVERDUE"
        journey = phase.journey
        log_activity(
            s,
            journey,
            "PHASE_OVERDUE",
            f"{phase.title} Overdue",
            f"Phase became overdue on {now:%Y-%m-%d}",
            phase_number=phase.phase_number,
        )
        notify_many(
            s,
            [journey.user, phase.mentor],
            "JOURNEY_PHASE_OVERDUE",
            f"Journey Phase Overdue: {phase.title}",
            f"Phase {phase.phase_number} '{phase.title}' for {journey.user.display_name} was due on {phase.due_date:%Y-%m-%d}.",
            link=f"/journeys/{journey.id}",
            email=True,
        )
    s.flush()
    if overdue:
        logger.info("Marked %d journey phase(s) overdue", len(overdue))
    return len(overdue)


def manually_complete_phase(s: "Session", phase: "JourneyPhase", actor: "User", notes: str | None = None) -> bool:
    journey = phase.journey
    if journey.status != "IN_PROGRESS":
        raise ServiceError("Only phases of an in-progress journey can be completed.")
    if phase.status not in ACTIVE_PHASE_STATUSES:
        raise ServiceError("Only the current phase can be completed.")
    advanced = auto_advance_phase(s, journey, f"manual completion by {actor.email}", {"notes": notes} if notes else None)
    record_event(
        s,
        actor=actor,
        action="journey_phase.complete",
        entity_type="JourneyPhase",
        entity_id=str(phase.id),
        reason=notes,
        metadata={"journey_id": journey.id, "phase_number": phase.phase_number},
    )
    return advanced


def pause_journey(s: "Session", journey: "Journey", actor: "User", reason: str | None = None) -> None:
    if journey.status != "IN_PROGRESS":
        raise ServiceError("Only an in-progress journey can be paused.")
    journey.status = "PAUSED"
    journey.user.journey_status = "PAUSED"
    log_activity(s, journey, "JOURNEY_PAUSED", "Journey Paused", reason or None)
    s.flush()
    record_event(s, actor=actor, action="journey.pause", entity_type="Journey", entity_id=str(journey.id), reason=reason)


def resume_journey(s: "Session", journey: "Journey", actor: "User") -> None:
    if journey.status != "PAUSED":
        raise ServiceError("Only a paused journey can be resumed.")
    journey.status = "IN_PROGRESS"
    journey.user.journey_status = "IN_PROGRESS"
    log_activity(s, journey, "JOURNEY_RESUMED", "Journey Resumed")
    s.flush()
    record_event(s, actor=actor, action="journey.resume", entity_type="Journey", entity_id=str(journey.id))


# ---------- Event hooks ----------
def on_assessment_completed(s: "Session", user: "User", assessment: "Assessment") -> bool:
    journey = active_journey(s, user)
    phase = current_phase(journey) if journey else None
    if phase is None or phase.assessment_id != assessment.id:
        return False
    return auto_advance_phase(s, journey, "assessment completion", {"assessment_id": assessment.id})


def on_training_completed(s: "Session", user: "User", assignment: "TrainingAssignment") -> bool:
    journey = active_journey(s, user)
    phase = current_phase(journey) if journey else None
    if phase is None or phase.training_assignment_id != assignment.id:
        return False
    return auto_advance_phase(s, journey, "training completion", {"training_assignment_id": assignment.id})
