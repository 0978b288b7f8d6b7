from __future__ import annotations

from flask import Blueprint, flash, g, redirect, render_template, request, url_for

from app.skillloop.db import db_session
from app.skillloop.modules.system_config.service import (
    BOOL_KEYS,
    DEFAULTS,
    DESCRIPTIONS,
    get_config,
    update_config,
    validate_config_payload,
)
from app.skillloop.rbac import require_permission

bp = Blueprint("system_config", __name__)


@bp.get("/config")
@require_permission("config.manage")
def config_get():
    s = db_session()
    return render_template(
        "admin/system_config/edit.html",
        config=get_config(s),
        keys=list(DEFAULTS.keys()),
        bool_keys=BOOL_KEYS,
        descriptions=DESCRIPTIONS,
    )


@bp.post("/config")
@require_permission("config.manage")
def config_post():
    s = db_session()
    payload: dict[str, object] = {k: request.form.get(k) for k in DEFAULTS if k not in BOOL_KEYS and k in request.form}
    # Unchecked checkboxes are absent from the form.
    for key in BOOL_KEYS:
        payload[key] = request.form.get(key) == "1"

    errors = validate_config_payload(payload, current=get_config(s))
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("system_config.config_get"))

    changes = update_config(s, payload, g.current_user)
    s.commit()
    flash(f"Settings saved ({len(changes)} changed).", "success")
    return redirect(url_for("system_config.config_get"))
