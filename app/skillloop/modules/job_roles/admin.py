from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.skillloop.constants import PROFICIENCY_LEVELS
from app.skillloop.db import db_session
from app.skillloop.models import User
from app.skillloop.modules.job_roles.models import JobRole
from app.skillloop.modules.job_roles.service import (
    PRIORITIES,
    ROLE_LEVELS,
    competencies_from_form,
    create_job_role,
    delete_job_role,
    update_job_role,
    validate_job_role_payload,
)
from app.skillloop.modules.skills.models import Skill
from app.skillloop.rbac import require_permission
from app.skillloop.utils import ServiceError, paginate, parse_int

bp = Blueprint("job_roles", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    return {
        "name": request.form.get("name"),
        "department": request.form.get("department"),
        "description": request.form.get("description"),
        "level": request.form.get("level"),
        "is_active": request.form.get("is_active", "1"),
        "competencies": competencies_from_form(
            request.form.getlist("skill_id"),
            request.form.getlist("required_level"),
            request.form.getlist("priority"),
        ),
    }


def _form_context(s) -> dict:
    return {
        "skills": s.query(Skill).order_by(Skill.name.asc()).all(),
        "levels": PROFICIENCY_LEVELS,
        "role_levels": ROLE_LEVELS,
        "priorities": PRIORITIES,
    }


@bp.get("/job-roles")
@require_permission("roles.view")
def roles_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    department = (request.args.get("department") or "").strip()
    level = (request.args.get("level") or "").strip().upper()
    page = parse_int(request.args.get("page"), 1) or 1

    q = s.query(JobRole)
    if search:
        like = f"%{search}%"
        q = q.filter(JobRole.name.ilike(like) | JobRole.description.ilike(like))
    if department:
        q = q.filter(JobRole.department == department)
    if level:
        q = q.filter(JobRole.level == level)
    result = paginate(q.order_by(JobRole.name.asc()), page)

    def _page_url(p: int) -> str:
        return url_for("job_roles.roles_list", q=search or None, department=department or None, level=level or None, page=p)

    departments = sorted(d for (d,) in s.query(JobRole.department).filter(JobRole.department.isnot(None)).distinct().all())
    return render_template(
        "admin/job_roles/list.html",
        roles=result["items"],
        pager=result,
        prev_url=_page_url(page - 1) if result["has_prev"] else None,
        next_url=_page_url(page + 1) if result["has_next"] else None,
        search=search,
        department=department,
        level=level,
        departments=departments,
        role_levels=ROLE_LEVELS,
    )


@bp.get("/job-roles/new")
@require_permission("roles.manage")
def roles_new_get():
    s = db_session()
    return render_template("admin/job_roles/form.html", role=None, **_form_context(s))


@bp.post("/job-roles/new")
@require_permission("roles.manage")
def roles_new_post():
    s = db_session()
    payload = _payload()
    errors = validate_job_role_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("job_roles.roles_new_get"))
    try:
        role = create_job_role(s, payload, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("job_roles.roles_new_get"))
    s.commit()
    flash("Job role created.", "success")
    return redirect(url_for("job_roles.role_detail", role_id=role.id))


@bp.get("/job-roles/<int:role_id>")
@require_permission("roles.view")
def role_detail(role_id: int):
    s = db_session()
    role = s.get(JobRole, role_id)
    if not role:
        abort(404)
    holders = s.query(User).filter(User.job_role_id == role.id).order_by(User.name.asc()).all()
    return render_template("admin/job_roles/detail.html", role=role, holders=holders)


@bp.get("/job-roles/<int:role_id>/edit")
@require_permission("roles.manage")
def role_edit_get(role_id: int):
    s = db_session()
    role = s.get(JobRole, role_id)
    if not role:
        abort(404)
    return render_template("admin/job_roles/form.html", role=role, **_form_context(s))


@bp.post("/job-roles/<int:role_id>/edit")
@require_permission("roles.manage")
def role_edit_post(role_id: int):
    s = db_session()
    role = s.get(JobRole, role_id)
    if not role:
        abort(404)
    payload = _payload()
    errors = validate_job_role_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("job_roles.role_edit_get", role_id=role_id))
    try:
        update_job_role(s, role, payload, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("job_roles.role_edit_get", role_id=role_id))
    s.commit()
    flash("Job role updated.", "success")
    return redirect(url_for("job_roles.role_detail", role_id=role_id))


@bp.post("/job-roles/<int:role_id>/delete")
@require_permission("roles.manage")
def role_delete(role_id: int):
    s = db_session()
    role = s.get(JobRole, role_id)
    if not role:
        abort(404)
    try:
        delete_job_role(s, role, _current_user())
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("job_roles.role_detail", role_id=role_id))
    s.commit()
    flash("Job role deleted.", "success")
    return redirect(url_for("job_roles.roles_list"))
