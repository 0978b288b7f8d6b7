from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.skillloop.constants import PROFICIENCY_LEVELS
from app.skillloop.db import db_session
from app.skillloop.models import User
from app.skillloop.modules.skills.models import Skill, SkillCategory, SkillResource
from app.skillloop.modules.skills.service import (
    RESOURCE_TYPES,
    batch_create_resources,
    create_category,
    create_resource,
    create_skill,
    delete_category,
    delete_resource,
    delete_skill,
    get_or_create_category,
    update_category,
    update_resource,
    update_skill,
    validate_category_payload,
    validate_resource_payload,
    validate_skill_payload,
)
from app.skillloop.rbac import require_permission
from app.skillloop.utils import ServiceError, paginate, parse_int, parse_json_list

bp = Blueprint("skills", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _skill_payload() -> dict:
    return {
        "name": request.form.get("name"),
        "category_id": request.form.get("category_id"),
        "new_category": request.form.get("new_category"),
        "description": request.form.get("description"),
        "proficiency_levels": request.form.getlist("proficiency_levels") or None,
    }


def _resource_payload() -> dict:
    return {
        "title": request.form.get("title"),
        "url": request.form.get("url"),
        "resource_type": request.form.get("resource_type"),
        "level": request.form.get("level"),
        "rating": request.form.get("rating"),
        "is_approved": request.form.get("is_approved") == "1",
        "estimated_hours": request.form.get("estimated_hours"),
        "provider": request.form.get("provider"),
        "description": request.form.get("description"),
    }


def _resolve_inline_category(s, payload: dict) -> None:
    # "New category" text box wins over the dropdown.
    new_name = (payload.get("new_category") or "").strip()
    if new_name:
        payload["category_id"] = get_or_create_category(s, new_name, _current_user()).id


# ---------- Skills ----------
@bp.get("/skills")
@require_permission("skills.view")
def skills_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    category_id = parse_int(request.args.get("category_id"))
    page = parse_int(request.args.get("page"), 1) or 1

    q = s.query(Skill)
    if search:
        like = f"%{search}%"
        q = q.filter(Skill.name.ilike(like) | Skill.description.ilike(like))
    if category_id:
        q = q.filter(Skill.category_id == category_id)
    result = paginate(q.order_by(Skill.name.asc()), page)

    def _page_url(p: int) -> str:
        return url_for("skills.skills_list", q=search or None, category_id=category_id or None, page=p)

    categories = s.query(SkillCategory).order_by(SkillCategory.name.asc()).all()
    return render_template(
        "admin/skills/list.html",
        skills=result["items"],
        pager=result,
        prev_url=_page_url(page - 1) if result["has_prev"] else None,
        next_url=_page_url(page + 1) if result["has_next"] else None,
        categories=categories,
        search=search,
        category_id=category_id,
    )


@bp.get("/skills/new")
@require_permission("skills.manage")
def skills_new_get():
    s = db_session()
    categories = s.query(SkillCategory).order_by(SkillCategory.name.asc()).all()
    return render_template("admin/skills/form.html", skill=None, categories=categories, levels=PROFICIENCY_LEVELS)


@bp.post("/skills/new")
@require_permission("skills.manage")
def skills_new_post():
    s = db_session()
    u = _current_user()
    payload = _skill_payload()
    try:
        _resolve_inline_category(s, payload)
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("skills.skills_new_get"))

    errors = validate_skill_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("skills.skills_new_get"))

    try:
        skill = create_skill(s, payload, u)
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("skills.skills_new_get"))
    s.commit()
    flash("Skill created.", "success")
    return redirect(url_for("skills.skill_detail", skill_id=skill.id))


@bp.get("/skills/<int:skill_id>")
@require_permission("skills.view")
def skill_detail(skill_id: int):
    s = db_session()
    skill = s.get(Skill, skill_id)
    if not skill:
        abort(404)
    return render_template(
        "admin/skills/detail.html",
        skill=skill,
        resource_types=RESOURCE_TYPES,
        levels=PROFICIENCY_LEVELS,
    )


@bp.get("/skills/<int:skill_id>/edit")
@require_permission("skills.manage")
def skill_edit_get(skill_id: int):
    s = db_session()
    skill = s.get(Skill, skill_id)
    if not skill:
        abort(404)
    categories = s.query(SkillCategory).order_by(SkillCategory.name.asc()).all()
    return render_template("admin/skills/form.html", skill=skill, categories=categories, levels=PROFICIENCY_LEVELS)


@bp.post("/skills/<int:skill_id>/edit")
@require_permission("skills.manage")
def skill_edit_post(skill_id: int):
    s = db_session()
    u = _current_user()
    skill = s.get(Skill, skill_id)
    if not skill:
        abort(404)
    payload = _skill_payload()
    try:
        _resolve_inline_category(s, payload)
        errors = validate_skill_payload(payload)
        if errors:
            for e in errors:
                flash(e, "danger")
            return redirect(url_for("skills.skill_edit_get", skill_id=skill_id))
        update_skill(s, skill, payload, u)
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("skills.skill_edit_get", skill_id=skill_id))
    s.commit()
    flash("Skill updated.", "success")
    return redirect(url_for("skills.skill_detail", skill_id=skill_id))


@bp.post("/skills/<int:skill_id>/delete")
@require_permission("skills.manage")
def skill_delete(skill_id: int):
    s = db_session()
    skill = s.get(Skill, skill_id)
    if not skill:
        abort(404)
    try:
        delete_skill(s, skill, _current_user())
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("skills.skill_detail", skill_id=skill_id))
    s.commit()
    flash("Skill deleted.", "success")
    return redirect(url_for("skills.skills_list"))


# ---------- Categories ----------
@bp.get("/skill-categories")
@require_permission("skills.view")
def categories_list():
    s = db_session()
    categories = s.query(SkillCategory).order_by(SkillCategory.name.asc()).all()
    return render_template("admin/skills/categories.html", categories=categories)


@bp.post("/skill-categories/new")
@require_permission("skills.manage")
def category_new_post():
    s = db_session()
    payload = {
        "name": request.form.get("name"),
        "description": request.form.get("description"),
        "color_class": request.form.get("color_class"),
    }
    errors = validate_category_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("skills.categories_list"))
    try:
        create_category(s, payload, _current_user())
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("skills.categories_list"))
    s.commit()
    flash("Category created.", "success")
    return redirect(url_for("skills.categories_list"))


@bp.post("/skill-categories/<int:category_id>/edit")
@require_permission("skills.manage")
def category_edit_post(category_id: int):
    s = db_session()
    category = s.get(SkillCategory, category_id)
    if not category:
        abort(404)
    payload = {
        "name": request.form.get("name"),
        "description": request.form.get("description"),
        "color_class": request.form.get("color_class"),
    }
    errors = validate_category_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("skills.categories_list"))
    try:
        update_category(s, category, payload, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("skills.categories_list"))
    s.commit()
    flash("Category updated.", "success")
    return redirect(url_for("skills.categories_list"))


@bp.post("/skill-categories/<int:category_id>/delete")
@require_permission("skills.manage")
def category_delete(category_id: int):
    s = db_session()
    category = s.get(SkillCategory, category_id)
    if not category:
        abort(404)
    try:
        delete_category(s, category, _current_user())
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("skills.categories_list"))
    s.commit()
    flash("Category deleted.", "success")
    return redirect(url_for("skills.categories_list"))


# ---------- Resources ----------
@bp.post("/skills/<int:skill_id>/resources/new")
@require_permission("skills.manage")
def resource_new_post(skill_id: int):
    s = db_session()
    skill = s.get(Skill, skill_id)
    if not skill:
        abort(404)
    payload = _resource_payload()
    errors = validate_resource_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("skills.skill_detail", skill_id=skill_id))
    create_resource(s, skill, payload, _current_user())
    s.commit()
    flash("Resource added.", "success")
    return redirect(url_for("skills.skill_detail", skill_id=skill_id))


@bp.post("/skill-resources/<int:resource_id>/edit")
@require_permission("skills.manage")
def resource_edit_post(resource_id: int):
    s = db_session()
    resource = s.get(SkillResource, resource_id)
    if not resource:
        abort(404)
    payload = _resource_payload()
    errors = validate_resource_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("skills.skill_detail", skill_id=resource.skill_id))
    update_resource(s, resource, payload, _current_user())
    s.commit()
    flash("Resource updated.", "success")
    return redirect(url_for("skills.skill_detail", skill_id=resource.skill_id))


@bp.post("/skill-resources/<int:resource_id>/delete")
@require_permission("skills.manage")
def resource_delete(resource_id: int):
    s = db_session()
    resource = s.get(SkillResource, resource_id)
    if not resource:
        abort(404)
    skill_id = resource.skill_id
    delete_resource(s, resource, _current_user())
    s.commit()
    flash("Resource deleted.", "success")
    return redirect(url_for("skills.skill_detail", skill_id=skill_id))


@bp.post("/skills/<int:skill_id>/resources/batch")
@require_permission("skills.manage")
def resource_batch_post(skill_id: int):
    """Paste a JSON list of resource objects (title, url, resource_type, ...)."""
    s = db_session()
    skill = s.get(Skill, skill_id)
    if not skill:
        abort(404)
    items, err = parse_json_list(request.form.get("resources_json"))
    if err or not items:
        flash(err or "Provide at least one resource.", "danger")
        return redirect(url_for("skills.skill_detail", skill_id=skill_id))
    if not all(isinstance(i, dict) for i in items):
        flash("Each resource must be a JSON object.", "danger")
        return redirect(url_for("skills.skill_detail", skill_id=skill_id))
    try:
        created = batch_create_resources(s, skill, items, _current_user())
    except ServiceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("skills.skill_detail", skill_id=skill_id))
    s.commit()
    flash(f"Added {len(created)} resource(s).", "success")
    return redirect(url_for("skills.skill_detail", skill_id=skill_id))
