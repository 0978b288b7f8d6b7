"""
Role-based access: users hold system roles (admin, trainer, mentor, manager, learner)
and each role grants permission keys seeded from constants.ROLE_PERMISSIONS.
"""
from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for

from app.skillloop.models import User


def permission_keys(user: User | None) -> set[str]:
    if not user or not user.is_active:
        return set()
    return {p.key for role in user.roles for p in role.permissions}


def user_has_permission(user: User | None, permission_key: str) -> bool:
    return permission_key in permission_keys(user)


def user_has_role(user: User | None, role_key: str) -> bool:
    if not user or not user.is_active:
        return False
    return role_key in user.role_keys


def is_admin(user: User | None) -> bool:
    return user_has_role(user, "admin")


def can_view_user(viewer: User | None, target: User) -> bool:
    """
    Own data, admins, or the target's direct manager.
    Managers never see people outside their reporting line.
    """
    if not viewer or not viewer.is_active:
        return False
    if viewer.id == target.id or is_admin(viewer):
        return True
    return user_has_role(viewer, "manager") and target.manager_id == viewer.id


def _login_redirect():
    # full_path ends with "?" when there is no query string
    nxt = (request.full_path or request.path).rstrip("?")
    return redirect(url_for("auth.login_get", next=nxt))


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Signed-out visitors go to the login page with `next`; signed-in users without the key get 403."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                return _login_redirect()
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
