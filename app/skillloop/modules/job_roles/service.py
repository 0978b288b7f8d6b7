from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.skillloop.audit import record_event
from app.skillloop.constants import PROFICIENCY_LEVELS
from app.skillloop.utils import ServiceError, clean, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.skillloop.models import User
    from app.skillloop.modules.job_roles.models import JobRole


ROLE_LEVELS = ("ENTRY", "MID", "SENIOR", "LEAD")
PRIORITIES = ("REQUIRED", "PREFERRED", "OPTIONAL")


def competencies_from_form(skill_ids: list[str], levels: list[str], priorities: list[str]) -> list[dict]:
    """Zip the parallel form lists into competency dicts, skipping blank rows."""
    rows = []
    for i, raw_skill in enumerate(skill_ids):
        skill_id = parse_int(raw_skill)
        if not skill_id:
            continue
        rows.append(
            {
                "skill_id": skill_id,
                "required_level": (levels[i] if i < len(levels) else "").strip().upper(),
                "priority": (priorities[i] if i < len(priorities) else "REQUIRED").strip().upper() or "REQUIRED",
            }
        )
    return rows


def validate_job_role_payload(payload: dict) -> list[str]:
    errors = []
    name = (payload.get("name") or "").strip()
    if len(name) < 2:
        errors.append("Role name must be at least 2 characters.")
    level = (payload.get("level") or "ENTRY").strip().upper()
    if level not in ROLE_LEVELS:
        errors.append(f"Invalid level. Must be one of: {', '.join(ROLE_LEVELS)}")

    competencies = payload.get("competencies") or []
    if not competencies:
        errors.append("At least one competency is required.")
    elif not any(c.get("priority") == "REQUIRED" for c in competencies):
        errors.append("At least one competency must be REQUIRED.")
    seen: set[int] = set()
    for c in competencies:
        if c.get("required_level") not in PROFICIENCY_LEVELS:
            errors.append(f"Invalid required level for skill {c.get('skill_id')}.")
        if c.get("priority") not in PRIORITIES:
            errors.append(f"Invalid priority for skill {c.get('skill_id')}.")
        if c.get("skill_id") in seen:
            errors.append("Each skill can only appear once in a role.")
        seen.add(c.get("skill_id"))
    return errors


def _check_skills_exist(s: "Session", competencies: list[dict]) -> None:
    from app.skillloop.modules.skills.models import Skill

    ids = {c["skill_id"] for c in competencies}
    found = {sid for (sid,) in s.query(Skill.id).filter(Skill.id.in_(ids)).all()}
    missing = sorted(ids - found)
    if missing:
        raise ServiceError(f"Unknown skill id(s): {', '.join(str(m) for m in missing)}")


def _check_name(s: "Session", name: str, exclude_id: int | None = None) -> None:
    from app.skillloop.modules.job_roles.models import JobRole

    q = s.query(JobRole).filter(func.lower(JobRole.name) == name.lower())
    if exclude_id:
        q = q.filter(JobRole.id != exclude_id)
    if s.query(q.exists()).scalar():
        raise ServiceError(f"Job role '{name}' already exists.")


def _replace_competencies(role: "JobRole", competencies: list[dict]) -> None:
    from app.skillloop.modules.job_roles.models import RoleCompetency

    role.competencies = [
        RoleCompetency(skill_id=c["skill_id"], required_level=c["required_level"], priority=c["priority"])
        for c in competencies
    ]


def create_job_role(s: "Session", payload: dict, user: "User") -> "JobRole":
    from app.skillloop.modules.job_roles.models import JobRole

    name = (payload.get("name") or "").strip()
    competencies = payload.get("competencies") or []
    _check_name(s, name)
    _check_skills_exist(s, competencies)

    now = datetime.utcnow()
    role = JobRole(
        name=name,
        department=clean(payload.get("department")),
        description=clean(payload.get("description")),
        level=(payload.get("level") or "ENTRY").strip().upper(),
        is_active=payload.get("is_active", True) not in (False, "0", "false"),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    _replace_competencies(role, competencies)
    s.add(role)
    s.flush()
    record_event(
        s,
        actor=user,
        action="job_role.create",
        entity_type="JobRole",
        entity_id=str(role.id),
        metadata={"name": name, "competencies": len(competencies)},
    )
    return role


def update_job_role(s: "Session", role: "JobRole", payload: dict, user: "User") -> "JobRole":
    """Update fields and replace all competencies; holders are re-synced afterwards."""
    from app.skillloop.modules.skill_matrix.service import sync_role_holders

    name = (payload.get("name") or "").strip()
    competencies = payload.get("competencies") or []
    _check_name(s, name, exclude_id=role.id)
    _check_skills_exist(s, competencies)

    old = [(c.skill_id, c.required_level, c.priority) for c in role.competencies]
    role.name = name
    role.department = clean(payload.get("department"))
    role.description = clean(payload.get("description"))
    role.level = (payload.get("level") or "ENTRY").strip().upper()
    role.is_active = payload.get("is_active", True) not in (False, "0", "false")
    role.updated_at = datetime.utcnow()
    role.competencies.clear()
    s.flush()
    _replace_competencies(role, competencies)
    s.flush()

    synced = sync_role_holders(s, role, user)
    record_event(
        s,
        actor=user,
        action="job_role.edit",
        entity_type="JobRole",
        entity_id=str(role.id),
        metadata={
            "name": name,
            "old_competencies": old,
            "new_competencies": [(c["skill_id"], c["required_level"], c["priority"]) for c in competencies],
            "holders_synced": synced,
        },
    )
    return role


def delete_job_role(s: "Session", role: "JobRole", user: "User") -> None:
    from app.skillloop.models import User as UserModel

    holders = s.query(UserModel).filter(UserModel.job_role_id == role.id).count()
    if holders:
        raise ServiceError(f"Cannot delete role '{role.name}': {holders} user(s) are assigned to it.")
    record_event(s, actor=user, action="job_role.delete", entity_type="JobRole", entity_id=str(role.id), metadata={"name": role.name})
    s.delete(role)
    s.flush()
