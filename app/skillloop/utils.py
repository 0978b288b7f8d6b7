from __future__ import annotations

import json
import math
from datetime import date, datetime


class ServiceError(ValueError):
    """A business rule refused the operation. The message is safe to show to users."""


def round_half_up(x: float) -> int:
    """Nearest integer with .5 going up, so 4.5 -> 5 and -12.5 -> -12."""
    return math.floor(x + 0.5)


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD date string (HTML <input type="date">)."""
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    return date.fromisoformat(s)


def parse_datetime(s: str | None) -> datetime | None:
    """Parse YYYY-MM-DD or YYYY-MM-DDTHH:MM (HTML datetime-local)."""
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    if "T" in s or " " in s:
        return datetime.fromisoformat(s)
    return datetime.combine(date.fromisoformat(s), datetime.min.time())


def parse_int(s: str | int | None, default: int | None = None) -> int | None:
    if s is None or s == "":
        return default
    try:
        return int(str(s).strip())
    except ValueError:
        return default


def parse_float(s: str | float | None, default: float | None = None) -> float | None:
    if s is None or s == "":
        return default
    try:
        return float(str(s).strip())
    except ValueError:
        return default


def parse_bool(s: str | bool | None) -> bool:
    if isinstance(s, bool):
        return s
    return (s or "").strip().lower() in ("1", "true", "yes", "on")


def clean(s: str | None) -> str | None:
    """Strip a form value; empty becomes None."""
    return (s or "").strip() or None


def parse_json_list(raw: str | None) -> tuple[list | None, str | None]:
    """Parse a JSON array from form input."""
    if not raw or not raw.strip():
        return None, None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        return None, f"JSON is invalid: {e}"
    if not isinstance(value, list):
        return None, "Expected a JSON list."
    return value, None


def paginate(q, page: int, per_page: int = 50) -> dict:
    """Offset pagination over a Query; returns the slice plus the numbers the list templates render."""
    page = max(1, page)
    total = q.order_by(None).count()
    items = q.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": items,
        "page": page,
        "per_page": per_page,
        "total": total,
        "has_prev": page > 1,
        "has_next": page * per_page < total,
        "total_pages": max(1, (total + per_page - 1) // per_page),
    }
