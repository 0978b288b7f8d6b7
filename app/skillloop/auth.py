from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, jsonify, redirect, render_template, request, session, url_for
from werkzeug.security import check_password_hash

from app.skillloop.audit import record_event
from app.skillloop.db import db_session
from app.skillloop.models import User
from app.skillloop.otp import create_and_send_otp, load_magic_token, send_magic_link, verify_otp
from app.skillloop.security import safe_next
from app.skillloop.utils import ServiceError

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    s = db_session()
    user = s.get(User, int(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


def _start_session(s, user: User, *, method: str) -> None:
    session["user_id"] = user.id
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id), metadata={"method": method})


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not user.password_hash or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        flash("Invalid credentials.", "danger")
        return redirect(url_for("auth.login_get"))

    _login_attempts[ip].clear()
    _start_session(s, user, method="password")
    s.commit()
    return redirect(safe_next(nxt) or url_for("routes.index"))


@bp.post("/otp")
def otp():
    """JSON: {"email", "action": "send"|"verify", "code"}."""
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    action = (data.get("action") or "").strip().lower()
    if not email:
        return jsonify({"success": False, "message": "Email is required"}), 400

    s = db_session()
    if action == "send":
        try:
            create_and_send_otp(s, email)
        except ServiceError as e:
            s.commit()
            return jsonify({"success": False, "message": str(e)}), 400
        s.commit()
        return jsonify({"success": True, "message": "OTP sent to your email"})

    if action == "verify":
        if not (data.get("code") or "").strip():
            return jsonify({"success": False, "message": "OTP code is required"}), 400
        try:
            user = verify_otp(s, email, data.get("code") or "")
        except ServiceError as e:
            # Attempt counters and exhausted codes must persist.
            s.commit()
            return jsonify({"success": False, "message": str(e)}), 400
        _start_session(s, user, method="otp")
        s.commit()
        return jsonify({"success": True, "message": "Signed in", "redirect": url_for("routes.index")})

    return jsonify({"success": False, "message": "Invalid action"}), 400


@bp.get("/magic-link")
def magic_link_get():
    return render_template("auth/magic_link.html")


@bp.post("/magic-link")
def magic_link_post():
    email = (request.form.get("email") or "").strip().lower()
    if not email:
        flash("Email is required.", "danger")
        return redirect(url_for("auth.magic_link_get"))
    s = db_session()
    base = current_app.config.get("APP_BASE_URL") or request.host_url.rstrip("/")
    send_magic_link(s, email, lambda token: base + url_for("auth.magic_login", token=token))
    # Same answer for known and unknown addresses.
    flash("If that address has an account, a sign-in link is on its way.", "success")
    return redirect(url_for("auth.login_get"))


@bp.get("/magic/<token>")
def magic_login(token: str):
    s = db_session()
    try:
        user = load_magic_token(s, token)
    except ServiceError as e:
        flash(str(e), "danger")
        return redirect(url_for("auth.login_get"))
    _start_session(s, user, method="magic_link")
    s.commit()
    return redirect(url_for("routes.index"))


@bp.get("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return redirect(url_for("auth.login_get"))
