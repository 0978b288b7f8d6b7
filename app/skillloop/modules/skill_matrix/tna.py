"""
Training needs analysis (TNA) reports built from skill matrix rows.
"""
from __future__ import annotations

import csv
import io
from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING

from app.skillloop.modules.skill_matrix.service import analyze_user_skill_gaps, get_training_recommendations
from app.skillloop.rbac import is_admin, user_has_role
from app.skillloop.utils import ServiceError

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from app.skillloop.models import User


TNA_CSV_HEADER = [
    "Employee ID",
    "Name",
    "Email",
    "Department",
    "Role",
    "Total Skills",
    "Gap Score",
    "Critical Gaps",
    "High Gaps",
    "Medium Gaps",
    "Low Gaps",
    "Completed",
]


def _scope_to_viewer(q: "Query", viewer: "User | None") -> "Query":
    """Managers who are not admins only see their direct reports."""
    from app.skillloop.models import User

    if viewer is not None and not is_admin(viewer) and user_has_role(viewer, "manager"):
        q = q.filter(User.manager_id == viewer.id)
    return q


def generate_user_tna(s: "Session", user: "User") -> dict:
    analysis = analyze_user_skill_gaps(s, user)
    return {
        "user": user,
        "user_id": user.id,
        "employee_no": user.employee_no,
        "name": user.name,
        "email": user.email,
        "department": user.department,
        "role_name": user.job_role.name if user.job_role else None,
        "gaps_by_category": analysis["gaps_by_category"],
        "overall_gap_score": analysis["average_gap"],
        "critical_gaps": analysis["critical_gaps"],
        "high_gaps": analysis["high_gaps"],
        "medium_gaps": analysis["medium_gaps"],
        "low_gaps": analysis["low_gaps"],
        "completed": analysis["completed"],
        "total_skills": analysis["total_skills"],
        "recommendations": get_training_recommendations(s, user),
        "generated_at": datetime.utcnow(),
    }


def generate_department_tna(s: "Session", department: str, viewer: "User | None" = None) -> dict:
    from app.skillloop.models import User
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry
    from app.skillloop.modules.skill_matrix.service import categorize_gap
    from app.skillloop.modules.system_config.service import get_gap_thresholds

    users = _scope_to_viewer(s.query(User).filter(User.department == department), viewer).all()
    if not users:
        raise ServiceError("No users found in department")

    thresholds = get_gap_thresholds(s)
    entries = s.query(SkillMatrixEntry).filter(SkillMatrixEntry.user_id.in_([u.id for u in users])).all()
    total_gap = 0.0
    critical = 0
    per_skill: dict[int, dict] = {}
    for e in entries:
        gap = e.gap_percentage if e.gap_percentage is not None else 100.0
        total_gap += gap
        if categorize_gap(gap, thresholds) == "CRITICAL":
            critical += 1
        bucket = per_skill.setdefault(e.skill_id, {"name": e.skill.name, "count": 0, "total": 0.0})
        bucket["count"] += 1
        bucket["total"] += gap

    ranked = sorted(per_skill.values(), key=lambda b: b["total"] / b["count"], reverse=True)
    return {
        "department": department,
        "employee_count": len(users),
        "average_gap_score": round(total_gap / len(entries), 2) if entries else 0.0,
        "critical_gaps_count": critical,
        "top_gap_skills": [b["name"] for b in ranked[:5]],
    }


def generate_organization_tna(s: "Session", filters: dict | None = None, viewer: "User | None" = None) -> dict:
    """
    Organization-wide TNA.

    filters: department, job_role_id.
    """
    from app.skillloop.models import User
    from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry
    from app.skillloop.modules.system_config.service import get_gap_thresholds

    filters = filters or {}
    uq = s.query(User).filter(User.is_active.is_(True))
    if filters.get("department"):
        uq = uq.filter(User.department == filters["department"])
    if filters.get("job_role_id"):
        uq = uq.filter(User.job_role_id == int(filters["job_role_id"]))
    users = _scope_to_viewer(uq, viewer).order_by(User.name.asc()).all()
    user_ids = [u.id for u in users]

    thresholds = get_gap_thresholds(s)
    c, h, m = thresholds["critical"], thresholds["high"], thresholds["medium"]
    entries = s.query(SkillMatrixEntry).filter(SkillMatrixEntry.user_id.in_(user_ids)).all() if user_ids else []

    bands = {"critical": 0, "high": 0, "medium": 0, "low": 0}
    per_user: dict[int, list[float]] = defaultdict(list)
    per_skill: dict[int, dict] = {}
    for e in entries:
        gap = e.gap_percentage or 0.0
        per_user[e.user_id].append(gap)
        if gap > c:
            bands["critical"] += 1
        elif gap > h:
            bands["high"] += 1
        elif gap > m:
            bands["medium"] += 1
        elif gap > 0:
            bands["low"] += 1
        if gap > 0:
            bucket = per_skill.setdefault(
                e.skill_id,
                {
                    "skill_id": e.skill_id,
                    "skill_name": e.skill.name,
                    "category_name": e.skill.category.name if e.skill.category else "Unknown",
                    "users": set(),
                    "total": 0.0,
                    "count": 0,
                },
            )
            bucket["users"].add(e.user_id)
            bucket["total"] += gap
            bucket["count"] += 1

    departments: dict[str, dict] = {}
    roles: dict[int, dict] = {}
    for u in users:
        gaps = per_user.get(u.id) or []
        avg = sum(gaps) / len(gaps) if gaps else 0.0
        is_critical = avg > c
        if u.department:
            d = departments.setdefault(u.department, {"department": u.department, "count": 0, "total": 0.0, "critical": 0})
            d["count"] += 1
            d["total"] += avg
            d["critical"] += int(is_critical)
        if u.job_role_id:
            r = roles.setdefault(
                u.job_role_id,
                {"job_role_id": u.job_role_id, "name": u.job_role.name if u.job_role else "Unknown", "count": 0, "total": 0.0, "critical": 0},
            )
            r["count"] += 1
            r["total"] += avg
            r["critical"] += int(is_critical)

    def _summarize(b: dict) -> dict:
        out = {k: v for k, v in b.items() if k not in ("total", "critical", "count")}
        out["employee_count"] = b["count"]
        out["average_gap_score"] = round(b["total"] / b["count"], 2) if b["count"] else 0.0
        out["critical_gaps_count"] = b["critical"]
        return out

    top_skills = sorted(
        (
            {
                "skill_id": b["skill_id"],
                "skill_name": b["skill_name"],
                "category_name": b["category_name"],
                "employees_affected": len(b["users"]),
                "average_gap": round(b["total"] / b["count"], 2),
            }
            for b in per_skill.values()
        ),
        key=lambda x: x["average_gap"],
        reverse=True,
    )[:10]

    all_gaps = [e.gap_percentage or 0.0 for e in entries]
    return {
        "total_employees": len(users),
        "total_skills_tracked": len(entries),
        "organization_gap_score": round(sum(all_gaps) / len(all_gaps), 2) if all_gaps else 0.0,
        "critical_gaps_total": bands["critical"],
        "high_gaps_total": bands["high"],
        "medium_gaps_total": bands["medium"],
        "low_gaps_total": bands["low"],
        "department_breakdown": [_summarize(d) for d in sorted(departments.values(), key=lambda d: d["department"])],
        "role_breakdown": [_summarize(r) for r in sorted(roles.values(), key=lambda r: r["name"])],
        "top_gap_skills": top_skills,
        "employee_tnas": [generate_user_tna(s, u) for u in users],
        "generated_at": datetime.utcnow(),
    }


def tna_csv(employee_tnas: list[dict]) -> str:
    out = io.StringIO()
    w = csv.writer(out)
    w.writerow(TNA_CSV_HEADER)
    for t in employee_tnas:
        w.writerow(
            [
                t["employee_no"] or t["user_id"],
                t["name"],
                t["email"],
                t["department"] or "",
                t["role_name"] or "",
                t["total_skills"],
                t["overall_gap_score"],
                t["critical_gaps"],
                t["high_gaps"],
                t["medium_gaps"],
                t["low_gaps"],
                t["completed"],
            ]
        )
    return out.getvalue()
