from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.skillloop.audit import record_event
from app.skillloop.constants import DEFAULT_CATEGORY_NAME, PROFICIENCY_LEVELS
from app.skillloop.utils import ServiceError, clean, parse_float

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.skillloop.models import User
    from app.skillloop.modules.skills.models import Skill, SkillCategory, SkillResource


RESOURCE_TYPES = ("VIDEO", "ARTICLE", "COURSE", "BOOK", "DOCUMENTATION", "OTHER")


# ---------- Categories ----------
def validate_category_payload(payload: dict) -> list[str]:
    errors = []
    name = (payload.get("name") or "").strip()
    if len(name) < 2:
        errors.append("Category name must be at least 2 characters.")
    return errors


def _category_name_taken(s: "Session", name: str, exclude_id: int | None = None) -> bool:
    from app.skillloop.modules.skills.models import SkillCategory

    q = s.query(SkillCategory).filter(func.lower(SkillCategory.name) == name.lower())
    if exclude_id:
        q = q.filter(SkillCategory.id != exclude_id)
    return s.query(q.exists()).scalar()


def create_category(s: "Session", payload: dict, user: "User") -> "SkillCategory":
    from app.skillloop.modules.skills.models import SkillCategory

    name = (payload.get("name") or "").strip()
    if _category_name_taken(s, name):
        raise ServiceError(f"Category '{name}' already exists.")
    now = datetime.utcnow()
    category = SkillCategory(
        name=name,
        description=clean(payload.get("description")),
        color_class=clean(payload.get("color_class")),
        created_at=now,
        updated_at=now,
    )
    s.add(category)
    s.flush()
    record_event(s, actor=user, action="skill_category.create", entity_type="SkillCategory", entity_id=str(category.id), metadata={"name": name})
    return category


def update_category(s: "Session", category: "SkillCategory", payload: dict, user: "User") -> "SkillCategory":
    name = (payload.get("name") or "").strip()
    if _category_name_taken(s, name, exclude_id=category.id):
        raise ServiceError(f"Category '{name}' already exists.")
    changes = {}
    if name != category.name:
        changes["name"] = {"old": category.name, "new": name}
        category.name = name
    category.description = clean(payload.get("description"))
    category.color_class = clean(payload.get("color_class"))
    category.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="skill_category.edit", entity_type="SkillCategory", entity_id=str(category.id), metadata={"changes": changes})
    return category


def delete_category(s: "Session", category: "SkillCategory", user: "User") -> None:
    from app.skillloop.modules.skills.models import Skill

    in_use = s.query(Skill).filter(Skill.category_id == category.id).count()
    if in_use:
        raise ServiceError(f"Cannot delete category: {in_use} skill(s) still use it.")
    record_event(s, actor=user, action="skill_category.delete", entity_type="SkillCategory", entity_id=str(category.id), metadata={"name": category.name})
    s.delete(category)
    s.flush()


def get_or_create_category(s: "Session", name: str | None, user: "User") -> "SkillCategory":
    """Find a category by case-insensitive name, creating it if needed. Blank means the default category."""
    from app.skillloop.modules.skills.models import SkillCategory

    name = (name or "").strip() or DEFAULT_CATEGORY_NAME
    existing = s.query(SkillCategory).filter(func.lower(SkillCategory.name) == name.lower()).one_or_none()
    if existing:
        return existing
    return create_category(s, {"name": name}, user)


# ---------- Skills ----------
def _levels_from_payload(payload: dict) -> list[str]:
    raw = payload.get("proficiency_levels")
    if raw is None:
        return list(PROFICIENCY_LEVELS)
    if isinstance(raw, str):
        raw = [p.strip() for p in raw.split(",")]
    return [p.strip().upper() for p in raw if p and p.strip()]


def validate_skill_payload(payload: dict) -> list[str]:
    errors = []
    name = (payload.get("name") or "").strip()
    if len(name) < 2:
        errors.append("Skill name must be at least 2 characters.")
    if not payload.get("category_id"):
        errors.append("Category is required.")
    bad = [lvl for lvl in _levels_from_payload(payload) if lvl not in PROFICIENCY_LEVELS]
    if bad:
        errors.append(f"Invalid proficiency level(s): {', '.join(bad)}")
    return errors


def _skill_name_taken(s: "Session", name: str, exclude_id: int | None = None) -> bool:
    from app.skillloop.modules.skills.models import Skill

    q = s.query(Skill).filter(func.lower(Skill.name) == name.lower())
    if exclude_id:
        q = q.filter(Skill.id != exclude_id)
    return s.query(q.exists()).scalar()


def _require_category(s: "Session", category_id) -> "SkillCategory":
    from app.skillloop.modules.skills.models import SkillCategory

    category = s.get(SkillCategory, int(category_id))
    if not category:
        raise ServiceError("Selected category does not exist.")
    return category


def create_skill(s: "Session", payload: dict, user: "User") -> "Skill":
    from app.skillloop.modules.skills.models import Skill

    name = (payload.get("name") or "").strip()
    if _skill_name_taken(s, name):
        raise ServiceError(f"Skill '{name}' already exists.")
    category = _require_category(s, payload.get("category_id"))
    now = datetime.utcnow()
    skill = Skill(
        name=name,
        category_id=category.id,
        description=clean(payload.get("description")),
        proficiency_levels=_levels_from_payload(payload),
        created_at=now,
        updated_at=now,
    )
    s.add(skill)
    s.flush()
    record_event(
        s,
        actor=user,
        action="skill.create",
        entity_type="Skill",
        entity_id=str(skill.id),
        metadata={"name": name, "category": category.name},
    )
    return skill


def update_skill(s: "Session", skill: "Skill", payload: dict, user: "User") -> "Skill":
    name = (payload.get("name") or "").strip()
    if _skill_name_taken(s, name, exclude_id=skill.id):
        raise ServiceError(f"Skill '{name}' already exists.")
    category = _require_category(s, payload.get("category_id"))

    changes = {}
    if name != skill.name:
        changes["name"] = {"old": skill.name, "new": name}
        skill.name = name
    if category.id != skill.category_id:
        changes["category_id"] = {"old": skill.category_id, "new": category.id}
        skill.category_id = category.id
    levels = _levels_from_payload(payload)
    if levels != (skill.proficiency_levels or []):
        changes["proficiency_levels"] = {"old": skill.proficiency_levels, "new": levels}
        skill.proficiency_levels = levels
    skill.description = clean(payload.get("description"))
    skill.updated_at = datetime.utcnow()

    record_event(s, actor=user, action="skill.edit", entity_type="Skill", entity_id=str(skill.id), metadata={"changes": changes})
    return skill


def skill_references(s: "Session", skill: "Skill") -> dict[str, int]:
    """Rows that block deleting ``skill``."""
    from app.skillloop.modules.assessments.models import Assessment
    from app.skillloop.modules.job_roles.models import RoleCompetency
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry
    from app.skillloop.modules.trainings.models import Training

    counts = {
        "role competencies": s.query(RoleCompetency).filter(RoleCompetency.skill_id == skill.id).count(),
        "skill matrix entries": s.query(SkillMatrixEntry).filter(SkillMatrixEntry.skill_id == skill.id).count(),
        "assessments": s.query(Assessment).filter(Assessment.skill_id == skill.id).count(),
        "trainings": s.query(Training).filter(Training.skill_id == skill.id).count(),
    }
    return {k: v for k, v in counts.items() if v}


def delete_skill(s: "Session", skill: "Skill", user: "User") -> None:
    refs = skill_references(s, skill)
    if refs:
        detail = ", ".join(f"{n} {label}" for label, n in refs.items())
        raise ServiceError(f"Cannot delete skill '{skill.name}': still referenced by {detail}.")
    record_event(s, actor=user, action="skill.delete", entity_type="Skill", entity_id=str(skill.id), metadata={"name": skill.name})
    s.delete(skill)
    s.flush()


# ---------- Resources ----------
def validate_resource_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("title") or "").strip():
        errors.append("Title is required.")
    url = (payload.get("url") or "").strip()
    if not url.startswith(("http://", "https://")):
        errors.append("URL must start with http:// or https://")
    rtype = (payload.get("resource_type") or "OTHER").strip().upper()
    if rtype not in RESOURCE_TYPES:
        errors.append(f"Invalid resource type. Must be one of: {', '.join(RESOURCE_TYPES)}")
    level = (payload.get("level") or "").strip().upper()
    if level and level not in PROFICIENCY_LEVELS:
        errors.append(f"Invalid level: {level}")
    rating = parse_float(payload.get("rating"), 0.0)
    if rating is None or not (0 <= rating <= 5):
        errors.append("Rating must be between 0 and 5.")
    hours = payload.get("estimated_hours")
    if hours not in (None, "") and (parse_float(hours) is None or parse_float(hours) < 0):
        errors.append("Estimated hours must be a non-negative number.")
    return errors


def _apply_resource_fields(resource: "SkillResource", payload: dict) -> None:
    resource.title = (payload.get("title") or "").strip()
    resource.url = (payload.get("url") or "").strip()
    resource.resource_type = (payload.get("resource_type") or "OTHER").strip().upper()
    resource.level = clean(payload.get("level"))
    if resource.level:
        resource.level = resource.level.upper()
    resource.rating = parse_float(payload.get("rating"), 0.0) or 0.0
    resource.is_approved = bool(payload.get("is_approved"))
    resource.estimated_hours = parse_float(payload.get("estimated_hours"))
    resource.provider = clean(payload.get("provider"))
    resource.description = clean(payload.get("description"))


def create_resource(s: "Session", skill: "Skill", payload: dict, user: "User") -> "SkillResource":
    from app.skillloop.modules.skills.models import SkillResource

    resource = SkillResource(skill_id=skill.id, created_by_user_id=user.id, created_at=datetime.utcnow())
    _apply_resource_fields(resource, payload)
    s.add(resource)
    s.flush()
    record_event(
        s,
        actor=user,
        action="skill_resource.create",
        entity_type="SkillResource",
        entity_id=str(resource.id),
        metadata={"skill_id": skill.id, "title": resource.title},
    )
    return resource


def update_resource(s: "Session", resource: "SkillResource", payload: dict, user: "User") -> "SkillResource":
    _apply_resource_fields(resource, payload)
    record_event(s, actor=user, action="skill_resource.edit", entity_type="SkillResource", entity_id=str(resource.id))
    return resource


def delete_resource(s: "Session", resource: "SkillResource", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="skill_resource.delete",
        entity_type="SkillResource",
        entity_id=str(resource.id),
        metadata={"skill_id": resource.skill_id, "title": resource.title},
    )
    s.delete(resource)
    s.flush()


def batch_create_resources(s: "Session", skill: "Skill", payloads: list[dict], user: "User") -> list["SkillResource"]:
    """All-or-nothing: any invalid item refuses the whole batch."""
    errors = []
    for i, payload in enumerate(payloads, start=1):
        errors.extend(f"Resource {i}: {e}" for e in validate_resource_payload(payload))
    if errors:
        raise ServiceError("; ".join(errors))
    return [create_resource(s, skill, p, user) for p in payloads]


def resources_for_gap(s: "Session", skill_id: int, level: str | None = None, limit: int | None = None) -> list["SkillResource"]:
    """Approved resources for a skill (optionally a target level), best rated first."""
    from app.skillloop.modules.skills.models import SkillResource

    q = s.query(SkillResource).filter(SkillResource.skill_id == skill_id, SkillResource.is_approved.is_(True))
    if level:
        q = q.filter((SkillResource.level == level) | (SkillResource.level.is_(None)))
    q = q.order_by(SkillResource.rating.desc(), SkillResource.created_at.desc(), SkillResource.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()
