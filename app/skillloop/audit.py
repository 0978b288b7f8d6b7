"""
Audit trail: every state-changing service call appends one AuditEvent.

Actions are named "<entity>.<verb>" (user.create, training.assign,
journey.phase_skip, config.update, ...). Events are never updated or deleted.
"""
import json
from datetime import date, datetime, time, timedelta
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Query, Session

from app.skillloop.models import AuditEvent, User

AUDIT_PAGE_LIMIT = 200


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Add an event to the session; the caller's commit persists it with the change it describes.
    Cron jobs and scripts call this outside a request, so request fields are optional.
    """
    client_ip = None
    if has_request_context():
        request_id = request_id or getattr(g, "request_id", None)
        client_ip = request.remote_addr
    event = AuditEvent(
        request_id=request_id,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=client_ip,
    )
    s.add(event)
    return event


def audit_events_query(
    s: Session,
    *,
    action: str = "",
    actor_email: str = "",
    date_from: date | None = None,
    date_to: date | None = None,
) -> Query:
    """Newest first. `date_to` is inclusive."""
    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))
    return q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())


def events_for_entity(s: Session, entity_type: str, entity_id: int | str, limit: int = 50) -> list[AuditEvent]:
    return (
        s.query(AuditEvent)
        .filter(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == str(entity_id))
        .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
        .limit(limit)
        .all()
    )
