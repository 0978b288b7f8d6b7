from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.skillloop.audit import events_for_entity
from app.skillloop.constants import EMPLOYEE_TYPES, SYSTEM_ROLE_NAMES, SYSTEM_ROLES
from app.skillloop.db import db_session
from app.skillloop.models import User
from app.skillloop.modules.job_roles.models import JobRole
from app.skillloop.modules.users.service import (
    create_user,
    deactivate_user,
    departments,
    list_users_query,
    reactivate_user,
    update_user,
    user_payload_from_form,
    validate_user_payload,
)
from app.skillloop.rbac import require_permission, user_has_permission
from app.skillloop.utils import ServiceError, paginate, parse_int

bp = Blueprint("users", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _form_context(s) -> dict:
    return {
        "role_choices": [(k, SYSTEM_ROLE_NAMES[k]) for k in SYSTEM_ROLES],
        "managers": s.query(User).filter(User.is_active.is_(True)).order_by(User.name.asc()).all(),
        "job_roles": s.query(JobRole).filter(JobRole.is_active.is_(True)).order_by(JobRole.name.asc()).all(),
        "employee_types": EMPLOYEE_TYPES,
    }


@bp.get("/users")
@require_permission("users.view")
def users_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    department = (request.args.get("department") or "").strip()
    role_key = (request.args.get("role") or "").strip().lower()
    include_inactive = request.args.get("inactive") == "1"
    page = parse_int(request.args.get("page"), 1) or 1

    q = list_users_query(s, search=search, department=department, role_key=role_key, include_inactive=include_inactive)
    result = paginate(q, page)

    def _page_url(p: int) -> str:
        return url_for(
            "users.users_list",
            q=search or None,
            department=department or None,
            role=role_key or None,
            inactive="1" if include_inactive else None,
            page=p,
        )

    return render_template(
        "admin/users/list.html",
        users=result["items"],
        pager=result,
        prev_url=_page_url(page - 1) if result["has_prev"] else None,
        next_url=_page_url(page + 1) if result["has_next"] else None,
        search=search,
        department=department,
        role_key=role_key,
        include_inactive=include_inactive,
        departments=departments(s),
        role_choices=[(k, SYSTEM_ROLE_NAMES[k]) for k in SYSTEM_ROLES],
    )


@bp.get("/users/new")
@require_permission("users.manage")
def users_new_get():
    s = db_session()
    return render_template("admin/users/form.html", account=None, **_form_context(s))


@bp.post("/users/new")
@require_permission("users.manage")
def users_new_post():
    s = db_session()
    payload = user_payload_from_form(request.form)
    errors = validate_user_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("users.users_new_get"))
    try:
        user = create_user(s, payload, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("users.users_new_get"))
    s.commit()
    flash(f"Account created for {user.email}.", "success")
    return redirect(url_for("users.user_detail", user_id=user.id))


@bp.get("/users/<int:user_id>")
@require_permission("users.view")
def user_detail(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    reports = s.query(User).filter(User.manager_id == user.id).order_by(User.name.asc()).all()
    history = events_for_entity(s, "User", user.id) if user_has_permission(g.current_user, "audit.view") else []
    return render_template("admin/users/detail.html", account=user, reports=reports, history=history)


@bp.get("/users/<int:user_id>/edit")
@require_permission("users.manage")
def user_edit_get(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    return render_template("admin/users/form.html", account=user, **_form_context(s))


@bp.post("/users/<int:user_id>/edit")
@require_permission("users.manage")
def user_edit_post(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    payload = user_payload_from_form(request.form)
    errors = validate_user_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("users.user_edit_get", user_id=user_id))
    try:
        update_user(s, user, payload, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("users.user_edit_get", user_id=user_id))
    s.commit()
    flash(f"Account updated for {user.email}.", "success")
    return redirect(url_for("users.user_detail", user_id=user_id))


@bp.post("/users/<int:user_id>/deactivate")
@require_permission("users.manage")
def user_deactivate(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    try:
        deactivate_user(s, user, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("users.user_detail", user_id=user_id))
    s.commit()
    flash(f"{user.email} deactivated.", "success")
    return redirect(url_for("users.users_list"))


@bp.post("/users/<int:user_id>/reactivate")
@require_permission("users.manage")
def user_reactivate(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    try:
        reactivate_user(s, user, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("users.user_detail", user_id=user_id))
    s.commit()
    flash(f"{user.email} reactivated.", "success")
    return redirect(url_for("users.user_detail", user_id=user_id))
