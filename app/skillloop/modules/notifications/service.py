from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING

from app.skillloop.mailer import send_email

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.skillloop.models import User
    from app.skillloop.modules.notifications.models import Notification

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = (
    "TRAINING_ASSIGNED",
    "ASSESSMENT_ASSIGNED",
    "TRAINING_PROGRESS_UPDATED",
    "TRAINING_FEEDBACK",
    "TRAINING_PROOF_SUBMITTED",
    "TRAINING_COMPLETED",
    "TRAINING_PROOF_REJECTED",
    "FEEDBACK_PENDING",
    "PROGRESS_DUE",
    "JOURNEY_PHASE_OVERDUE",
    "MENTOR_ASSIGNED",
)


def notify(
    s: "Session",
    user: "User",
    type: str,
    subject: str,
    message: str,
    *,
    link: str | None = None,
    ref: str | None = None,
    email: bool = False,
) -> "Notification":
    """
    Store an in-app notification and, when asked and enabled, email it.
    Mail problems are logged; they never fail the caller's write.
    """
    from app.skillloop.modules.notifications.models import Notification
    from app.skillloop.modules.system_config.service import get_config_value

    if type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {type}")
    n = Notification(user_id=user.id, type=type, subject=subject, message=message, link=link, ref=ref)
    s.add(n)
    s.flush()

    if email and user.email and get_config_value(s, "emailNotificationsEnabled"):
        body = message + (f"\n\n{link}" if link else "")
        ok, detail = send_email(user.email, subject, body)
        if not ok:
            logger.warning("Notification mail to %s failed (type=%s): %s", user.email, type, detail)
    return n


def notify_many(s: "Session", users, type: str, subject: str, message: str, **kwargs) -> int:
    seen: set[int] = set()
    for u in users:
        if u is None or u.id in seen:
            continue
        seen.add(u.id)
        notify(s, u, type, subject, message, **kwargs)
    return len(seen)


def already_sent_today(s: "Session", user_id: int, type: str, ref: str, today: date | None = None) -> bool:
    from app.skillloop.modules.notifications.models import Notification

    today = today or date.today()
    start = datetime.combine(today, time.min)
    return (
        s.query(Notification.id)
        .filter(
            Notification.user_id == user_id,
            Notification.type == type,
            Notification.ref == ref,
            Notification.created_at >= start,
            Notification.created_at < start + timedelta(days=1),
        )
        .first()
        is not None
    )


def unread_count(s: "Session", user: "User") -> int:
    from app.skillloop.modules.notifications.models import Notification

    return s.query(Notification).filter(Notification.user_id == user.id, Notification.is_read.is_(False)).count()


def mark_read(s: "Session", notification: "Notification") -> None:
    notification.is_read = True


def mark_all_read(s: "Session", user: "User") -> int:
    from app.skillloop.modules.notifications.models import Notification

    return (
        s.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
        .update({Notification.is_read: True}, synchronize_session=False)
    )


def admins(s: "Session") -> list["User"]:
    from app.skillloop.models import Role, User

    return s.query(User).join(User.roles).filter(Role.key == "admin", User.is_active.is_(True)).all()
