from __future__ import annotations

from flask import Blueprint, abort, g, redirect, render_template, request, url_for

from app.skillloop.db import db_session
from app.skillloop.modules.notifications.models import Notification
from app.skillloop.modules.notifications.service import mark_all_read, mark_read
from app.skillloop.rbac import require_permission
from app.skillloop.security import safe_next
from app.skillloop.utils import paginate, parse_int

bp = Blueprint("notifications", __name__)


@bp.get("/notifications")
@require_permission("dashboard.view")
def notifications_list():
    s = db_session()
    page = parse_int(request.args.get("page"), 1) or 1
    unread_only = request.args.get("unread") == "1"
    q = s.query(Notification).filter(Notification.user_id == g.current_user.id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    result = paginate(q.order_by(Notification.created_at.desc(), Notification.id.desc()), page)
    return render_template(
        "notifications/list.html",
        notifications=result["items"],
        pager=result,
        prev_url=url_for("notifications.notifications_list", page=page - 1, unread=request.args.get("unread")) if result["has_prev"] else None,
        next_url=url_for("notifications.notifications_list", page=page + 1, unread=request.args.get("unread")) if result["has_next"] else None,
        unread_only=unread_only,
    )


@bp.post("/notifications/<int:notification_id>/read")
@require_permission("dashboard.view")
def notification_read(notification_id: int):
    s = db_session()
    n = s.get(Notification, notification_id)
    if not n or n.user_id != g.current_user.id:
        abort(404)
    mark_read(s, n)
    s.commit()
    target = safe_next(n.link) if request.form.get("follow") == "1" else None
    return redirect(target or safe_next(request.form.get("next")) or url_for("notifications.notifications_list"))


@bp.post("/notifications/read-all")
@require_permission("dashboard.view")
def notifications_read_all():
    s = db_session()
    mark_all_read(s, g.current_user)
    s.commit()
    return redirect(url_for("notifications.notifications_list"))
