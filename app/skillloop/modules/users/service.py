from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING

from app.skillloop.audit import record_event
from app.skillloop.constants import EMPLOYEE_TYPES
from app.skillloop.utils import ServiceError, parse_bool, parse_date, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from app.skillloop.models import User

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email or ""))


def user_payload_from_form(form) -> dict:
    return {
        "employee_no": form.get("employee_no"),
        "name": form.get("name"),
        "email": form.get("email"),
        "role_keys": form.getlist("role_keys"),
        "designation": form.get("designation"),
        "department": form.get("department"),
        "location": form.get("location"),
        "level": form.get("level"),
        "manager_id": form.get("manager_id"),
        "job_role_id": form.get("job_role_id"),
        "date_of_joining": form.get("date_of_joining"),
        "employee_type": form.get("employee_type"),
        "init_journey": form.get("init_journey"),
        "password": form.get("password"),
    }


def validate_user_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("employee_no") or "").strip():
        errors.append("Employee number is required.")
    if len((payload.get("name") or "").strip()) < 2:
        errors.append("Name must be at least 2 characters.")
    email = (payload.get("email") or "").strip().lower()
    if not email:
        errors.append("Email is required.")
    elif not is_valid_email(email):
        errors.append("Invalid email format.")
    if not [k for k in (payload.get("role_keys") or []) if k]:
        errors.append("Select at least one role.")
    if len((payload.get("designation") or "").strip()) < 2:
        errors.append("Designation must be at least 2 characters.")
    if not (payload.get("department") or "").strip():
        errors.append("Department is required.")
    if not (payload.get("location") or "").strip():
        errors.append("Location is required.")
    level = parse_int(payload.get("level"))
    if level is None or not 1 <= level <= 10:
        errors.append("Level must be between 1 and 10.")
    try:
        parse_date(payload.get("date_of_joining"))
    except ValueError:
        errors.append("Date of joining must be YYYY-MM-DD.")
    employee_type = (payload.get("employee_type") or "").strip().upper()
    if employee_type and employee_type not in EMPLOYEE_TYPES:
        errors.append(f"Invalid employee type: {employee_type}")
    password = payload.get("password") or ""
    if password and len(password) < 8:
        errors.append("Password must be at least 8 characters.")
    return errors


def _check_unique(s: "Session", email: str, employee_no: str, exclude_id: int | None = None) -> None:
    from app.skillloop.models import User

    q = s.query(User).filter(User.email == email)
    if exclude_id:
        q = q.filter(User.id != exclude_id)
    if q.first():
        raise ServiceError("Email already exists")
    q = s.query(User).filter(User.employee_no == employee_no)
    if exclude_id:
        q = q.filter(User.id != exclude_id)
    if q.first():
        raise ServiceError("Employee number already exists")


def _resolve_refs(s: "Session", payload: dict, user_id: int | None = None) -> tuple[int | None, int | None]:
    from app.skillloop.models import User
    from app.skillloop.modules.job_roles.models import JobRole

    manager_id = parse_int(payload.get("manager_id"))
    if manager_id:
        if manager_id == user_id:
            raise ServiceError("An employee cannot be their own manager.")
        if not s.get(User, manager_id):
            raise ServiceError("Manager not found.")
    job_role_id = parse_int(payload.get("job_role_id"))
    if job_role_id and not s.get(JobRole, job_role_id):
        raise ServiceError("Job role not found.")
    return manager_id or None, job_role_id or None


def _set_roles(s: "Session", user: "User", role_keys: list[str]) -> None:
    from app.skillloop.models import Role

    keys = sorted({k.strip().lower() for k in role_keys if k and k.strip()})
    roles = s.query(Role).filter(Role.key.in_(keys)).all()
    missing = set(keys) - {r.key for r in roles}
    if missing:
        raise ServiceError(f"Unknown role(s): {', '.join(sorted(missing))}")
    user.roles.clear()
    user.roles.extend(roles)


def _apply_profile(user: "User", payload: dict) -> None:
    user.employee_no = payload["employee_no"].strip()
    user.name = payload["name"].strip()
    user.email = payload["email"].strip().lower()
    user.designation = payload["designation"].strip()
    user.department = payload["department"].strip()
    user.location = payload["location"].strip()
    user.level = parse_int(payload.get("level"))
    user.date_of_joining = parse_date(payload.get("date_of_joining"))
    user.employee_type = (payload.get("employee_type") or "").strip().upper() or None


def create_user(s: "Session", payload: dict, actor: "User") -> "User":
    from werkzeug.security import generate_password_hash
    from app.skillloop.models import User
    from app.skillloop.modules.skill_matrix.service import sync_user_skills_with_role

    email = payload["email"].strip().lower()
    employee_no = payload["employee_no"].strip()
    _check_unique(s, email, employee_no)
    manager_id, job_role_id = _resolve_refs(s, payload)

    now = datetime.utcnow()
    user = User(is_active=True, created_at=now, updated_at=now, manager_id=manager_id, job_role_id=job_role_id)
    _apply_profile(user, payload)
    if payload.get("password"):
        user.password_hash = generate_password_hash(payload["password"])
    s.add(user)
    s.flush()
    _set_roles(s, user, payload.get("role_keys") or [])

    if job_role_id:
        sync_user_skills_with_role(s, user, actor)

    record_event(
        s,
        actor=actor,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email, "employee_no": user.employee_no, "roles": user.role_keys},
    )

    if parse_bool(payload.get("init_journey")) and user.employee_type:
        _try_init_journey(s, user, actor)
    s.flush()
    return user


def _try_init_journey(s: "Session", user: "User", actor: "User") -> None:
    from app.skillloop.modules.journeys.service import create_journey

    sp = s.begin_nested()
    try:
        create_journey(s, user, user.employee_type, actor)
        sp.commit()
    except ServiceError as e:
        sp.rollback()
        logger.warning("Journey initialization failed for user %s: %s", user.id, e)


def update_user(s: "Session", user: "User", payload: dict, actor: "User") -> "User":
    from werkzeug.security import generate_password_hash
    from app.skillloop.modules.skill_matrix.service import sync_user_skills_with_role

    email = payload["email"].strip().lower()
    employee_no = payload["employee_no"].strip()
    _check_unique(s, email, employee_no, exclude_id=user.id)
    manager_id, job_role_id = _resolve_refs(s, payload, user.id)

    before = {
        "email": user.email,
        "department": user.department,
        "job_role_id": user.job_role_id,
        "manager_id": user.manager_id,
        "roles": user.role_keys,
    }
    role_changed = job_role_id != user.job_role_id
    _apply_profile(user, payload)
    user.manager_id = manager_id
    user.job_role_id = job_role_id
    if payload.get("password"):
        user.password_hash = generate_password_hash(payload["password"])
    user.updated_at = datetime.utcnow()
    _set_roles(s, user, payload.get("role_keys") or [])
    s.flush()

    if role_changed and job_role_id:
        sync_user_skills_with_role(s, user, actor)

    after = {
        "email": user.email,
        "department": user.department,
        "job_role_id": user.job_role_id,
        "manager_id": user.manager_id,
        "roles": user.role_keys,
    }
    record_event(
        s,
        actor=actor,
        action="user.update",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"before": before, "after": after},
    )
    return user


def deactivate_user(s: "Session", user: "User", actor: "User") -> None:
    if user.id == actor.id:
        raise ServiceError("You cannot deactivate your own account.")
    if not user.is_active:
        raise ServiceError("This account is already inactive.")
    user.is_active = False
    user.updated_at = datetime.utcnow()
    record_event(s, actor=actor, action="user.deactivate", entity_type="User", entity_id=str(user.id), metadata={"email": user.email})


def reactivate_user(s: "Session", user: "User", actor: "User") -> None:
    if user.is_active:
        raise ServiceError("This account is already active.")
    user.is_active = True
    user.updated_at = datetime.utcnow()
    record_event(s, actor=actor, action="user.reactivate", entity_type="User", entity_id=str(user.id), metadata={"email": user.email})


def list_users_query(s: "Session", *, search: str = "", department: str = "", role_key: str = "", include_inactive: bool = False) -> "Query":
    from app.skillloop.models import Role, User

    q = s.query(User)
    if not include_inactive:
        q = q.filter(User.is_active.is_(True))
    if search:
        like = f"%{search}%"
        q = q.filter(User.name.ilike(like) | User.email.ilike(like) | User.employee_no.ilike(like) | User.designation.ilike(like))
    if department:
        q = q.filter(User.department == department)
    if role_key:
        q = q.filter(User.roles.any(Role.key == role_key))
    return q.order_by(User.name.asc(), User.id.asc())


def departments(s: "Session") -> list[str]:
    from app.skillloop.models import User

    return sorted(d for (d,) in s.query(User.department).filter(User.department.isnot(None)).distinct().all())


def team_members(s: "Session", manager: "User") -> list["User"]:
    from app.skillloop.models import User

    return (
        s.query(User)
        .filter(User.manager_id == manager.id, User.is_active.is_(True))
        .order_by(User.name.asc())
        .all()
    )
