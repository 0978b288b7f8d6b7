"""
Request-level protections: session CSRF tokens, local-only redirects and the cron bearer secret.
"""
import hmac
import secrets

from flask import Request, session

CSRF_SESSION_KEY = "csrf_token"
CSRF_METHODS = ("POST", "PUT", "PATCH", "DELETE")
# Sign-in forms run before a session token exists; cron callers authenticate with a bearer secret.
CSRF_EXEMPT_BLUEPRINTS = ("auth", "cron")


def ensure_csrf_token() -> str:
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def _submitted_csrf_token(req: Request) -> str | None:
    token = req.headers.get("X-CSRF-Token") or req.form.get(CSRF_SESSION_KEY)
    if not token and req.is_json:
        body = req.get_json(silent=True)
        if isinstance(body, dict):
            token = body.get(CSRF_SESSION_KEY)
    return token


def csrf_required(req: Request) -> bool:
    return req.method in CSRF_METHODS and req.blueprint not in CSRF_EXEMPT_BLUEPRINTS


def validate_csrf(req: Request) -> bool:
    """Token from the form field, the X-CSRF-Token header or a JSON body must match the session."""
    token = _submitted_csrf_token(req)
    expected = session.get(CSRF_SESSION_KEY)
    return bool(token and expected and hmac.compare_digest(str(token), str(expected)))


def safe_next(nxt: str | None) -> str | None:
    """Local paths only, so `next=` and notification links cannot redirect off-site."""
    nxt = (nxt or "").strip()
    if nxt.startswith("/") and not nxt.startswith("//") and "\\" not in nxt:
        return nxt
    return None


def bearer_token_matches(req: Request, secret: str) -> bool:
    """An empty secret never matches."""
    if not secret:
        return False
    header = req.headers.get("Authorization") or ""
    return hmac.compare_digest(header, f"Bearer {secret}")
