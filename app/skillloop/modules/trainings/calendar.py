"""
Training calendar: scheduled sessions, attendance and iCalendar export.
"""
from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING

from app.skillloop.audit import record_event
from app.skillloop.utils import ServiceError, clean, parse_datetime, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.skillloop.models import User
    from app.skillloop.modules.trainings.models import Attendance, TrainingCalendar

ATTENDANCE_STATUSES = ("PRESENT", "ABSENT", "LATE")
ICS_ORGANIZER = 'CN="Skill Loop Training":mailto:noreply@skillloop.com'
ICS_DEFAULT_START = time(9, 0)


def validate_calendar_payload(payload: dict) -> list[str]:
    errors = []
    if not parse_int(payload.get("training_id")):
        errors.append("Training is required.")
    try:
        if parse_datetime(payload.get("training_date")) is None:
            errors.append("Training date is required.")
    except ValueError:
        errors.append("Training date must be YYYY-MM-DD or YYYY-MM-DDTHH:MM.")
    raw_max = payload.get("max_participants")
    if raw_max not in (None, "") and (parse_int(raw_max) or 0) < 1:
        errors.append("Max participants must be a positive whole number.")
    return errors


def create_calendar_entry(s: "Session", payload: dict, user: "User") -> "TrainingCalendar":
    from app.skillloop.modules.trainings.models import Training, TrainingCalendar

    training = s.get(Training, parse_int(payload.get("training_id")) or 0)
    if not training:
        raise ServiceError("Training not found.")
    entry = TrainingCalendar(
        training_id=training.id,
        training_date=parse_datetime(payload.get("training_date")),
        venue=clean(payload.get("venue")) or training.venue,
        meeting_link=clean(payload.get("meeting_link")) or training.meeting_link,
        max_participants=parse_int(payload.get("max_participants")) or training.max_participants,
        published_at=datetime.utcnow(),
    )
    s.add(entry)
    s.flush()
    record_event(
        s,
        actor=user,
        action="training_calendar.create",
        entity_type="TrainingCalendar",
        entity_id=str(entry.id),
        metadata={"training_id": training.id, "date": entry.training_date.isoformat()},
    )
    return entry


def update_calendar_entry(s: "Session", entry: "TrainingCalendar", payload: dict, user: "User") -> "TrainingCalendar":
    old_date = entry.training_date
    entry.training_date = parse_datetime(payload.get("training_date"))
    entry.venue = clean(payload.get("venue"))
    entry.meeting_link = clean(payload.get("meeting_link"))
    entry.max_participants = parse_int(payload.get("max_participants"))
    record_event(
        s,
        actor=user,
        action="training_calendar.edit",
        entity_type="TrainingCalendar",
        entity_id=str(entry.id),
        metadata={"old_date": old_date.isoformat(), "new_date": entry.training_date.isoformat()},
    )
    return entry


def upcoming_for_user(s: "Session", user: "User", now: datetime | None = None) -> list["TrainingCalendar"]:
    """Future sessions of trainings the user is actively assigned to."""
    from app.skillloop.modules.trainings.models import TrainingAssignment, TrainingCalendar

    now = now or datetime.utcnow()
    training_ids = (
        s.query(TrainingAssignment.training_id)
        .filter(TrainingAssignment.user_id == user.id, TrainingAssignment.status.in_(("ASSIGNED", "IN_PROGRESS")))
        .scalar_subquery()
    )
    return (
        s.query(TrainingCalendar)
        .filter(TrainingCalendar.training_id.in_(training_ids), TrainingCalendar.training_date >= now)
        .order_by(TrainingCalendar.training_date.asc())
        .all()
    )


def all_entries(s: "Session", *, date_from: datetime | None = None, date_to: datetime | None = None) -> list["TrainingCalendar"]:
    from app.skillloop.modules.trainings.models import TrainingCalendar

    q = s.query(TrainingCalendar)
    if date_from:
        q = q.filter(TrainingCalendar.training_date >= date_from)
    if date_to:
        q = q.filter(TrainingCalendar.training_date <= date_to)
    return q.order_by(TrainingCalendar.training_date.asc()).all()


def mark_attendance(s: "Session", entry: "TrainingCalendar", user_id: int, status: str, marker: "User") -> "Attendance":
    from app.skillloop.modules.trainings.models import Attendance, TrainingAssignment

    status = (status or "").strip().upper()
    if status not in ATTENDANCE_STATUSES:
        raise ServiceError("Attendance must be PRESENT, ABSENT or LATE.")
    assigned = (
        s.query(TrainingAssignment)
        .filter(TrainingAssignment.training_id == entry.training_id, TrainingAssignment.user_id == user_id)
        .first()
    )
    if not assigned:
        raise ServiceError("This employee is not assigned to the training.")
    row = s.query(Attendance).filter_by(calendar_id=entry.id, user_id=user_id).one_or_none()
    if row is None:
        row = Attendance(calendar_id=entry.id, user_id=user_id)
        s.add(row)
    row.status = status
    row.marked_by_user_id = marker.id
    row.marked_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=marker,
        action="attendance.mark",
        entity_type="Attendance",
        entity_id=str(row.id),
        metadata={"calendar_id": entry.id, "user_id": user_id, "status": status},
    )
    return row


# ---------- iCalendar ----------
def _ics_escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def _ics_time(dt: datetime) -> str:
    return dt.strftime("%Y%m%dT%H%M%S")


def event_start(entry: "TrainingCalendar") -> datetime:
    """Date-only sessions (midnight) are shown at 09:00."""
    if entry.training_date.time() == time.min:
        return datetime.combine(entry.training_date.date(), ICS_DEFAULT_START)
    return entry.training_date


def render_ics(entries: list["TrainingCalendar"], now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Skill Loop//Training Calendar//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
    ]
    for entry in entries:
        t = entry.training
        start = event_start(entry)
        skill = t.skill.name if t.skill else "General"
        location = entry.venue or entry.meeting_link
        lines += [
            "BEGIN:VEVENT",
            f"UID:training-calendar-{entry.id}@skillloop",
            f"DTSTAMP:{_ics_time(now)}",
            f"DTSTART:{_ics_time(start)}",
            f"DTEND:{_ics_time(start + timedelta(hours=1))}",
            f"SUMMARY:{_ics_escape(t.topic_name)}",
            f"DESCRIPTION:{_ics_escape(f'Mode: {t.mode}. Skill: {skill}.')}",
        ]
        if location:
            lines.append(f"LOCATION:{_ics_escape(location)}")
        if entry.meeting_link:
            lines.append(f"URL:{entry.meeting_link}")
        lines += [
            f"CATEGORIES:Training,{t.mode}",
            "STATUS:CONFIRMED",
            f"ORGANIZER;{ICS_ORGANIZER}",
            "END:VEVENT",
        ]
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"
