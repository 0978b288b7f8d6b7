from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING

from app.skillloop.audit import record_event
from app.skillloop.constants import LEVEL_VALUES, PROFICIENCY_LEVELS
from app.skillloop.utils import ServiceError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.skillloop.models import User
    from app.skillloop.modules.job_roles.models import JobRole
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry


STATUSES = ("not_started", "gap_identified", "training_assigned", "completed", "personal_goal")
GAP_CATEGORIES = ("CRITICAL", "HIGH", "MEDIUM", "LOW", "NONE")
ACTIVE_TRAINING_STATUSES = ("ASSIGNED", "IN_PROGRESS")
_CATEGORY_RANK = {c: i for i, c in enumerate(GAP_CATEGORIES)}


# ---------- Gap arithmetic ----------
def level_value(level: str | int | None) -> int:
    """BEGINNER=1 ... EXPERT=5; unset or unknown = 0."""
    if level is None:
        return 0
    if isinstance(level, int):
        return level
    return LEVEL_VALUES.get(level.strip().upper(), 0)


def calculate_gap_percentage(desired: str | int | None, current: str | int | None) -> float:
    d = level_value(desired)
    c = level_value(current)
    if d == 0:
        return 0.0
    if c == 0:
        return 100.0
    if c >= d:
        return 0.0
    return round((d - c) / d * 100, 2)


def categorize_gap(gap: float, thresholds: dict[str, float]) -> str:
    if gap <= 0:
        return "NONE"
    if gap > thresholds["critical"]:
        return "CRITICAL"
    if gap > thresholds["high"]:
        return "HIGH"
    if gap > thresholds["medium"]:
        return "MEDIUM"
    return "LOW"


def determine_status(gap: float, has_training: bool) -> str:
    if gap == 0:
        return "completed"
    if has_training:
        return "training_assigned"
    if gap > 0:
        return "gap_identified"
    return "not_started"


def level_for_percentage(percentage: float) -> str:
    """Proficiency earned by passing an assessment with ``percentage``."""
    if percentage >= 90:
        return "EXPERT"
    if percentage >= 75:
        return "ADVANCED"
    if percentage >= 60:
        return "INTERMEDIATE"
    return "BEGINNER"


def _entry_gap(entry: "SkillMatrixEntry") -> float:
    # Personal goals carry no gap until someone records a current level.
    if entry.status == "personal_goal" and not entry.current_level:
        return 0.0
    return calculate_gap_percentage(entry.desired_level, entry.current_level)


def _skills_with_active_training(s: "Session", user_id: int) -> set[int]:
    from app.skillloop.modules.trainings.models import Training, TrainingAssignment

    rows = (
        s.query(Training.skill_id)
        .join(TrainingAssignment, TrainingAssignment.training_id == Training.id)
        .filter(TrainingAssignment.user_id == user_id, TrainingAssignment.status.in_(ACTIVE_TRAINING_STATUSES))
        .distinct()
        .all()
    )
    return {sid for (sid,) in rows if sid}


def _refresh_entry(entry: "SkillMatrixEntry", has_training: bool) -> None:
    entry.gap_percentage = _entry_gap(entry)
    if entry.status != "personal_goal":
        entry.status = determine_status(entry.gap_percentage, has_training)
    entry.updated_at = datetime.utcnow()


def _validate_level(level: str | None, *, required: bool) -> str | None:
    level = (level or "").strip().upper() or None
    if level is None:
        if required:
            raise ServiceError("Desired level is required.")
        return None
    if level not in PROFICIENCY_LEVELS:
        raise ServiceError(f"Invalid proficiency level: {level}")
    return level


# ---------- Operations ----------
def update_skill_matrix_gaps(s: "Session", user: "User") -> int:
    """Recompute gap and status for every entry of ``user``. Returns the number of entries."""
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry

    entries = s.query(SkillMatrixEntry).filter(SkillMatrixEntry.user_id == user.id).all()
    if not entries:
        return 0
    with_training = _skills_with_active_training(s, user.id)
    for entry in entries:
        _refresh_entry(entry, entry.skill_id in with_training)
    s.flush()
    return len(entries)


def get_user_skill_matrix(s: "Session", user: "User", filters: dict | None = None) -> list[dict]:
    """
    Rows for the skill-matrix table, highest gap first.

    filters: category_id, status, search (skill name), gap_categories (iterable).
    """
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry
    from app.skillloop.modules.skills.models import Skill
    from app.skillloop.modules.system_config.service import get_gap_thresholds

    filters = filters or {}
    q = s.query(SkillMatrixEntry).join(Skill, Skill.id == SkillMatrixEntry.skill_id).filter(SkillMatrixEntry.user_id == user.id)
    if filters.get("category_id"):
        q = q.filter(Skill.category_id == int(filters["category_id"]))
    if filters.get("status"):
        q = q.filter(SkillMatrixEntry.status == filters["status"])
    if filters.get("search"):
        q = q.filter(Skill.name.ilike(f"%{filters['search']}%"))
    entries = q.order_by(SkillMatrixEntry.gap_percentage.desc(), Skill.name.asc()).all()

    thresholds = get_gap_thresholds(s)
    with_training = _skills_with_active_training(s, user.id)
    wanted = {c.upper() for c in (filters.get("gap_categories") or [])}
    rows = []
    for e in entries:
        category = categorize_gap(e.gap_percentage, thresholds)
        if wanted and category not in wanted:
            continue
        rows.append(
            {
                "entry": e,
                "skill": e.skill,
                "gap_category": category,
                "has_training": e.skill_id in with_training,
            }
        )
    return rows


def create_entry(s: "Session", user: "User", payload: dict, actor: "User") -> "SkillMatrixEntry":
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry
    from app.skillloop.modules.skills.models import Skill

    skill = s.get(Skill, int(payload.get("skill_id") or 0))
    if not skill:
        raise ServiceError("Skill not found.")
    desired = _validate_level(payload.get("desired_level"), required=True)
    current = _validate_level(payload.get("current_level"), required=False)
    exists = s.query(SkillMatrixEntry).filter_by(user_id=user.id, skill_id=skill.id).first()
    if exists:
        raise ServiceError(f"'{skill.name}' is already in the skill matrix.")

    now = datetime.utcnow()
    entry = SkillMatrixEntry(
        user_id=user.id,
        skill_id=skill.id,
        desired_level=desired,
        current_level=current,
        last_assessed_at=now if current else None,
        created_at=now,
    )
    _refresh_entry(entry, skill.id in _skills_with_active_training(s, user.id))
    s.add(entry)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="skill_matrix.create",
        entity_type="SkillMatrixEntry",
        entity_id=str(entry.id),
        metadata={"user_id": user.id, "skill": skill.name, "desired": desired, "current": current},
    )
    return entry


def add_user_skill(s: "Session", user: "User", payload: dict, actor: "User") -> "SkillMatrixEntry":
    """
    Add a personal-goal skill. ``skill_id`` or ``skill_name``; an unknown name
    creates the skill in ``category_name`` (or the default category).
    """
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry
    from app.skillloop.modules.skills.models import Skill
    from app.skillloop.modules.skills.service import create_skill, get_or_create_category
    from sqlalchemy import func

    desired = _validate_level(payload.get("desired_level"), required=True)
    current = _validate_level(payload.get("current_level"), required=False)

    skill = None
    if payload.get("skill_id"):
        skill = s.get(Skill, int(payload["skill_id"]))
        if not skill:
            raise ServiceError("Skill not found.")
    else:
        name = (payload.get("skill_name") or "").strip()
        if len(name) < 2:
            raise ServiceError("Skill name must be at least 2 characters.")
        skill = s.query(Skill).filter(func.lower(Skill.name) == name.lower()).one_or_none()
        if skill is None:
            category = get_or_create_category(s, payload.get("category_name"), actor)
            skill = create_skill(s, {"name": name, "category_id": category.id}, actor)

    if s.query(SkillMatrixEntry).filter_by(user_id=user.id, skill_id=skill.id).first():
        raise ServiceError("This skill is already in your skill matrix")

    now = datetime.utcnow()
    entry = SkillMatrixEntry(
        user_id=user.id,
        skill_id=skill.id,
        desired_level=desired,
        current_level=current,
        status="personal_goal",
        last_assessed_at=now,
        created_at=now,
        updated_at=now,
    )
    entry.gap_percentage = _entry_gap(entry)
    s.add(entry)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="skill_matrix.add_personal_goal",
        entity_type="SkillMatrixEntry",
        entity_id=str(entry.id),
        metadata={"user_id": user.id, "skill": skill.name, "desired": desired},
    )
    return entry


def update_desired_level(s: "Session", entry: "SkillMatrixEntry", level: str, actor: "User") -> "SkillMatrixEntry":
    new_level = _validate_level(level, required=True)
    old_level = entry.desired_level
    entry.desired_level = new_level
    _refresh_entry(entry, entry.skill_id in _skills_with_active_training(s, entry.user_id))
    record_event(
        s,
        actor=actor,
        action="skill_matrix.update_desired",
        entity_type="SkillMatrixEntry",
        entity_id=str(entry.id),
        metadata={"old": old_level, "new": new_level},
    )
    return entry


def delete_entry(s: "Session", entry: "SkillMatrixEntry", actor: "User") -> None:
    record_event(
        s,
        actor=actor,
        action="skill_matrix.delete",
        entity_type="SkillMatrixEntry",
        entity_id=str(entry.id),
        metadata={"user_id": entry.user_id, "skill_id": entry.skill_id},
    )
    s.delete(entry)
    s.flush()


def batch_update_desired_levels(s: "Session", user: "User", updates: list[tuple[int, str]], actor: "User") -> int:
    """Apply (entry_id, level) pairs for one user; every id must belong to that user."""
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry

    entries = {
        e.id: e
        for e in s.query(SkillMatrixEntry).filter(
            SkillMatrixEntry.user_id == user.id,
            SkillMatrixEntry.id.in_([eid for eid, _ in updates]),
        )
    }
    missing = [eid for eid, _ in updates if eid not in entries]
    if missing:
        raise ServiceError(f"Skill matrix entries not found: {', '.join(str(m) for m in missing)}")
    for eid, level in updates:
        update_desired_level(s, entries[eid], level, actor)
    s.flush()
    return len(updates)


def sync_user_skills_with_role(s: "Session", user: "User", actor: "User | None" = None) -> dict[str, int]:
    """Mirror the user's job-role competencies into their matrix, then recompute gaps."""
    from app.skillloop.modules.job_roles.models import JobRole
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry

    result = {"created": 0, "updated": 0}
    if not user.job_role_id:
        return result
    role = s.get(JobRole, user.job_role_id)
    if not role:
        return result

    existing = {e.skill_id: e for e in s.query(SkillMatrixEntry).filter(SkillMatrixEntry.user_id == user.id)}
    now = datetime.utcnow()
    for comp in role.competencies:
        entry = existing.get(comp.skill_id)
        if entry is None:
            s.add(
                SkillMatrixEntry(
                    user_id=user.id,
                    skill_id=comp.skill_id,
                    desired_level=comp.required_level,
                    current_level=None,
                    gap_percentage=100.0,
                    status="gap_identified",
                    created_at=now,
                    updated_at=now,
                )
            )
            result["created"] += 1
        elif entry.desired_level != comp.required_level:
            entry.desired_level = comp.required_level
            entry.updated_at = now
            result["updated"] += 1
    s.flush()
    update_skill_matrix_gaps(s, user)
    record_event(
        s,
        actor=actor,
        action="skill_matrix.sync_role",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"job_role_id": role.id, **result},
    )
    return result


def sync_role_holders(s: "Session", role: "JobRole", actor: "User | None" = None) -> int:
    from app.skillloop.models import User as UserModel

    holders = s.query(UserModel).filter(UserModel.job_role_id == role.id, UserModel.is_active.is_(True)).all()
    for holder in holders:
        sync_user_skills_with_role(s, holder, actor)
    return len(holders)


# ---------- Hooks from assessments and trainings ----------
def record_assessed_level(s: "Session", user: "User", skill_id: int, level: str) -> "SkillMatrixEntry":
    """Upsert the matrix row after a passed assessment; a new row targets EXPERT."""
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry

    now = datetime.utcnow()
    entry = s.query(SkillMatrixEntry).filter_by(user_id=user.id, skill_id=skill_id).one_or_none()
    if entry is None:
        entry = SkillMatrixEntry(
            user_id=user.id,
            skill_id=skill_id,
            desired_level="EXPERT",
            current_level=level,
            status="completed",
            created_at=now,
        )
        s.add(entry)
    else:
        entry.current_level = level
    entry.last_assessed_at = now
    entry.updated_at = now
    s.flush()
    update_skill_matrix_gaps(s, user)
    return entry


def mark_training_assigned(s: "Session", user: "User", skill_id: int) -> "SkillMatrixEntry":
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry

    now = datetime.utcnow()
    entry = s.query(SkillMatrixEntry).filter_by(user_id=user.id, skill_id=skill_id).one_or_none()
    if entry is None:
        entry = SkillMatrixEntry(
            user_id=user.id,
            skill_id=skill_id,
            desired_level="BEGINNER",
            current_level=None,
            gap_percentage=100.0,
            created_at=now,
        )
        s.add(entry)
    entry.status = "training_assigned"
    entry.updated_at = now
    s.flush()
    return entry


def mark_skill_completed(s: "Session", user: "User", skill_id: int, *, reach_desired: bool) -> "SkillMatrixEntry | None":
    """Training finished. With ``reach_desired`` (approved proof) the current level jumps to the target."""
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry

    entry = s.query(SkillMatrixEntry).filter_by(user_id=user.id, skill_id=skill_id).one_or_none()
    if entry is None:
        return None
    now = datetime.utcnow()
    if reach_desired:
        entry.current_level = entry.desired_level
        entry.gap_percentage = 0.0
        entry.last_assessed_at = now
    entry.status = "completed"
    entry.updated_at = now
    s.flush()
    return entry


# ---------- Analysis ----------
def analyze_user_skill_gaps(s: "Session", user: "User") -> dict:
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry
    from app.skillloop.modules.system_config.service import get_gap_thresholds

    thresholds = get_gap_thresholds(s)
    entries = s.query(SkillMatrixEntry).filter(SkillMatrixEntry.user_id == user.id).all()
    counts = {"CRITICAL": 0, "HIGH": 0, "MEDIUM": 0, "LOW": 0}
    completed = 0
    by_category: dict[str, list[dict]] = defaultdict(list)
    for e in entries:
        cat = categorize_gap(e.gap_percentage, thresholds)
        if cat in counts:
            counts[cat] += 1
        if e.status == "completed":
            completed += 1
        if cat != "NONE":
            by_category[e.skill.category.name if e.skill.category else "Uncategorized"].append(
                {"entry": e, "skill": e.skill, "gap_category": cat}
            )

    total = len(entries)
    average = round(sum(e.gap_percentage for e in entries) / total, 2) if total else 0.0
    return {
        "total_skills": total,
        "critical_gaps": counts["CRITICAL"],
        "high_gaps": counts["HIGH"],
        "medium_gaps": counts["MEDIUM"],
        "low_gaps": counts["LOW"],
        "completed": completed,
        "average_gap": average,
        "gaps_by_category": dict(by_category),
    }


def get_training_recommendations(s: "Session", user: "User") -> list[dict]:
    """Trainings and approved resources for every open gap without an active training, worst first."""
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry
    from app.skillloop.modules.skills.service import resources_for_gap
    from app.skillloop.modules.system_config.service import get_gap_thresholds
    from app.skillloop.modules.trainings.models import Training

    thresholds = get_gap_thresholds(s)
    with_training = _skills_with_active_training(s, user.id)
    recs = []
    for e in s.query(SkillMatrixEntry).filter(SkillMatrixEntry.user_id == user.id).all():
        cat = categorize_gap(e.gap_percentage, thresholds)
        if cat == "NONE" or e.skill_id in with_training:
            continue
        trainings = s.query(Training).filter(Training.skill_id == e.skill_id).order_by(Training.topic_name.asc()).all()
        recs.append(
            {
                "entry": e,
                "skill": e.skill,
                "priority": cat,
                "gap_percentage": e.gap_percentage,
                "trainings": trainings,
                "resources": resources_for_gap(s, e.skill_id, limit=5),
            }
        )
    recs.sort(key=lambda r: (_CATEGORY_RANK[r["priority"]], -r["gap_percentage"]))
    return recs
