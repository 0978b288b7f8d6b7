"""
Daily reminder sweep, driven by ``GET /cron/reminders``.

Each reminder carries a ``ref`` so a second run on the same day does not repeat it.
"""
from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

ASSESSMENT_DUE_WINDOW = timedelta(days=3)
FEEDBACK_AFTER_DAYS = 7
PROGRESS_STALE_DAYS = 7


def _assessment_reminders(s: "Session", now: datetime) -> int:
    from app.skillloop.modules.assessments.models import AssessmentAssignment
    from app.skillloop.modules.notifications.service import already_sent_today, notify

    due_soon = (
        s.query(AssessmentAssignment)
        .filter(
            AssessmentAssignment.status == "PENDING",
            AssessmentAssignment.due_date.is_not(None),
            AssessmentAssignment.due_date >= now,
            AssessmentAssignment.due_date <= now + ASSESSMENT_DUE_WINDOW,
        )
        .all()
    )
    sent = 0
    for a in due_soon:
        ref = f"assessment_assignment:{a.id}"
        if not a.user.is_active or already_sent_today(s, a.user_id, "ASSESSMENT_ASSIGNED", ref, now.date()):
            continue
        notify(
            s,
            a.user,
            "ASSESSMENT_ASSIGNED",
            "Assessment Due Soon",
            f'Reminder: your assessment "{a.assessment.title}" is due on {a.due_date:%Y-%m-%d}. Please complete it soon.',
            link="/assessments/my",
            ref=ref,
            email=True,
        )
        sent += 1
    return sent


def _feedback_reminders(s: "Session", now: datetime) -> int:
    from app.skillloop.modules.notifications.service import already_sent_today, notify
    from app.skillloop.modules.trainings.models import TrainingAssignment

    day = now.date() - timedelta(days=FEEDBACK_AFTER_DAYS)
    start = datetime.combine(day, time.min)
    completed = (
        s.query(TrainingAssignment)
        .filter(
            TrainingAssignment.status == "COMPLETED",
            TrainingAssignment.completion_date >= start,
            TrainingAssignment.completion_date < start + timedelta(days=1),
        )
        .all()
    )
    sent = 0
    for a in completed:
        ref = f"training_assignment:{a.id}"
        if a.feedback is not None or already_sent_today(s, a.user_id, "FEEDBACK_PENDING", ref, now.date()):
            continue
        notify(
            s,
            a.user,
            "FEEDBACK_PENDING",
            "Training Feedback Requested",
            f'Please submit feedback for "{a.training.topic_name}", completed on {a.completion_date:%Y-%m-%d}.',
            link=f"/trainings/assignments/{a.id}/feedback",
            ref=ref,
            email=True,
        )
        sent += 1
    return sent


def _progress_reminders(s: "Session", now: datetime) -> int:
    from app.skillloop.modules.notifications.service import already_sent_today, notify
    from app.skillloop.modules.trainings.models import TrainingAssignment

    cutoff = now - timedelta(days=PROGRESS_STALE_DAYS)
    sent = 0
    for a in s.query(TrainingAssignment).filter(TrainingAssignment.status == "IN_PROGRESS").all():
        last = max((u.updated_at for u in a.progress_updates), default=a.start_date)
        if last > cutoff:
            continue
        ref = f"training_assignment:{a.id}"
        if already_sent_today(s, a.user_id, "PROGRESS_DUE", ref, now.date()):
            continue
        notify(
            s,
            a.user,
            "PROGRESS_DUE",
            "Progress Update Due",
            f'You have not logged progress on "{a.training.topic_name}" for {PROGRESS_STALE_DAYS} days or more.',
            link=f"/trainings/assignments/{a.id}",
            ref=ref,
            email=True,
        )
        sent += 1
    return sent


def send_reminders(s: "Session", now: datetime | None = None) -> dict:
    from app.skillloop.modules.system_config.service import get_config_value

    now = now or datetime.utcnow()
    if not get_config_value(s, "autoSendReminders"):
        logger.info("Reminder sweep skipped: autoSendReminders is off")
        return {"assessment": 0, "feedback": 0, "progress": 0, "total": 0, "skipped": True}
    counts = {
        "assessment": _assessment_reminders(s, now),
        "feedback": _feedback_reminders(s, now),
        "progress": _progress_reminders(s, now),
    }
    counts["total"] = sum(counts.values())
    logger.info("Reminder sweep sent %s", counts)
    return counts
