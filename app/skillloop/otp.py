"""
Passwordless sign-in: mailed one-time codes and signed magic links.
"""
from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime, timedelta

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from app.skillloop.audit import record_event
from app.skillloop.mailer import send_email
from app.skillloop.models import OtpCode, Role, User
from app.skillloop.utils import ServiceError

logger = logging.getLogger(__name__)

OTP_TTL = timedelta(minutes=10)
OTP_RESEND_COOLDOWN = timedelta(seconds=60)
OTP_MAX_ATTEMPTS = 5
MAGIC_LINK_MAX_AGE = 15 * 60  # seconds
_MAGIC_LINK_SALT = "skillloop-magic-link"


def _new_code(existing: set[str]) -> str:
    while True:
        code = str(secrets.randbelow(900000) + 100000)
        if code not in existing:
            return code


def create_and_send_otp(s: Session, email: str) -> OtpCode:
    """
    Issue a fresh 6-digit code for ``email`` and mail it.
    Raises ServiceError when throttled or when the mail cannot be sent.
    """
    email = (email or "").strip().lower()
    if not email:
        raise ServiceError("Email is required")
    now = datetime.utcnow()

    s.query(OtpCode).filter(OtpCode.email == email, OtpCode.expires_at < now).delete(synchronize_session=False)

    recent = (
        s.query(OtpCode)
        .filter(
            OtpCode.email == email,
            OtpCode.used.is_(False),
            OtpCode.expires_at > now,
            OtpCode.created_at > now - OTP_RESEND_COOLDOWN,
        )
        .first()
    )
    if recent:
        raise ServiceError("Please wait before requesting another OTP")

    existing = {c for (c,) in s.query(OtpCode.code).filter(OtpCode.email == email).all()}
    otp = OtpCode(
        email=email,
        code=_new_code(existing),
        expires_at=now + OTP_TTL,
        max_attempts=OTP_MAX_ATTEMPTS,
        created_at=now,
    )
    s.add(otp)
    s.flush()

    ok, detail = send_email(
        email,
        "Your Skill Loop login code",
        f"Your one-time login code is {otp.code}.\n\nIt expires in 10 minutes. If you did not request it, ignore this email.",
    )
    if not ok:
        s.delete(otp)
        s.flush()
        logger.warning("OTP mail to %s failed: %s", email, detail)
        raise ServiceError("Failed to send OTP email. Please try again.")
    return otp


def _auto_create_user(s: Session, email: str) -> User:
    user = User(
        email=email,
        name=email.split("@", 1)[0],
        employee_no=f"EMP-{int(time.time() * 1000)}",
        designation="Employee",
        department="General",
        location="Default",
        level=1,
        is_active=True,
    )
    learner = s.query(Role).filter(Role.key == "learner").one_or_none()
    if learner:
        user.roles = [learner]
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="user.auto_create", entity_type="User", entity_id=str(user.id), metadata={"via": "otp"})
    return user


def verify_otp(s: Session, email: str, code: str) -> User:
    """
    Check ``code`` against the active code for ``email``; on success return the
    (possibly newly created) user with email_verified_at set.
    """
    email = (email or "").strip().lower()
    code = (code or "").strip()
    if not email:
        raise ServiceError("Email is required")
    if not code:
        raise ServiceError("OTP code is required")
    now = datetime.utcnow()

    active = (
        s.query(OtpCode)
        .filter(OtpCode.email == email, OtpCode.used.is_(False), OtpCode.expires_at > now)
        .order_by(OtpCode.created_at.desc(), OtpCode.id.desc())
        .first()
    )
    if not active:
        raise ServiceError("Invalid or expired OTP")
    if active.attempts >= active.max_attempts:
        s.delete(active)
        s.flush()
        raise ServiceError("Too many failed attempts. Please request a new OTP.")
    if not secrets.compare_digest(active.code, code):
        active.attempts += 1
        s.flush()
        raise ServiceError("Invalid or expired OTP")

    active.used = True
    active.used_at = now

    user = s.query(User).filter(User.email == email).one_or_none()
    if user is None:
        user = _auto_create_user(s, email)
    elif not user.is_active:
        raise ServiceError("Account is deactivated")
    user.email_verified_at = now
    s.flush()
    return user


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=_MAGIC_LINK_SALT)


def make_magic_token(email: str) -> str:
    return _serializer().dumps({"email": email.strip().lower()})


def send_magic_link(s: Session, email: str, link_for) -> bool:
    """
    Mail a sign-in link to an existing active user. Returns False for unknown
    addresses; callers respond identically either way.
    """
    email = (email or "").strip().lower()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active:
        return False
    url = link_for(make_magic_token(email))
    ok, detail = send_email(
        email,
        "Sign in to Skill Loop",
        f"Use this link to sign in (valid for 15 minutes):\n\n{url}\n",
        html=f'<p><a href="{url}">Sign in to Skill Loop</a></p><p>The link is valid for 15 minutes.</p>',
    )
    if not ok:
        logger.warning("Magic link mail to %s failed: %s", email, detail)
    return ok


def load_magic_token(s: Session, token: str) -> User:
    try:
        data = _serializer().loads(token, max_age=MAGIC_LINK_MAX_AGE)
    except SignatureExpired as e:
        raise ServiceError("This sign-in link has expired.") from e
    except BadSignature as e:
        raise ServiceError("This sign-in link is invalid.") from e
    email = (data or {}).get("email") or ""
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active:
        raise ServiceError("This sign-in link is invalid.")
    user.email_verified_at = datetime.utcnow()
    return user
