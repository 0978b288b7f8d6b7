from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.skillloop.audit import record_event

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.skillloop.models import User


DEFAULTS: dict[str, object] = {
    "inductionDurationDays": 30,
    "autoAssignInductionTraining": True,
    "defaultPassingScore": 70,
    "allowRetakes": True,
    "maxRetakeAttempts": 3,
    "assessmentTimerEnabled": True,
    "defaultTrainingDuration": 8,
    "requireMentorApproval": False,
    "autoSendReminders": True,
    "reminderFrequencyDays": 7,
    "emailNotificationsEnabled": True,
    "criticalGapThreshold": 50,
    "highGapThreshold": 30,
    "mediumGapThreshold": 15,
}

DESCRIPTIONS = {
    "inductionDurationDays": "Length of the induction period in days",
    "autoAssignInductionTraining": "Assign induction training when a journey starts",
    "defaultPassingScore": "Passing score (%) for new assessments",
    "allowRetakes": "Allow learners to retake completed assessments",
    "maxRetakeAttempts": "Additional attempts allowed after the first",
    "assessmentTimerEnabled": "Enforce assessment duration",
    "defaultTrainingDuration": "Default training duration in hours",
    "requireMentorApproval": "Mentor approval required for completion",
    "autoSendReminders": "Send reminder notifications from the daily job",
    "reminderFrequencyDays": "Days between progress reminders",
    "emailNotificationsEnabled": "Email notifications in addition to in-app ones",
    "criticalGapThreshold": "Gap % above which a gap is CRITICAL",
    "highGapThreshold": "Gap % above which a gap is HIGH",
    "mediumGapThreshold": "Gap % above which a gap is MEDIUM",
}

BOOL_KEYS = {
    "autoAssignInductionTraining",
    "allowRetakes",
    "assessmentTimerEnabled",
    "requireMentorApproval",
    "autoSendReminders",
    "emailNotificationsEnabled",
}

# key -> (min, max); None means unbounded
RANGE_KEYS: dict[str, tuple[float | None, float | None]] = {
    "inductionDurationDays": (1, 365),
    "defaultPassingScore": (0, 100),
    "maxRetakeAttempts": (0, 10),
    "defaultTrainingDuration": (1, None),
    "reminderFrequencyDays": (1, 90),
    "criticalGapThreshold": (0, 100),
    "highGapThreshold": (0, 100),
    "mediumGapThreshold": (0, 100),
}


def _coerce(key: str, raw: object) -> object:
    """Coerce a form/JSON value to the key's type. Raises ValueError on junk."""
    if key in BOOL_KEYS:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off", ""):
            return False
        raise ValueError(f"{key} must be true or false")
    number = float(str(raw).strip())
    return int(number) if number.is_integer() else number


def coerce_config_payload(payload: dict) -> tuple[dict[str, object], list[str]]:
    """Keep known keys only, coerce types and check ranges. Returns (values, errors)."""
    values: dict[str, object] = {}
    errors: list[str] = []
    for key, raw in payload.items():
        if key not in DEFAULTS:
            continue
        try:
            value = _coerce(key, raw)
        except ValueError:
            errors.append(f"{key} must be a number." if key not in BOOL_KEYS else f"{key} must be true or false.")
            continue
        bounds = RANGE_KEYS.get(key)
        if bounds:
            lo, hi = bounds
            if (lo is not None and value < lo) or (hi is not None and value > hi):
                if hi is None:
                    errors.append(f"{key} must be at least {lo}.")
                else:
                    errors.append(f"{key} must be between {lo} and {hi}.")
                continue
        values[key] = value
    return values, errors


def validate_config_payload(payload: dict, current: dict | None = None) -> list[str]:
    values, errors = coerce_config_payload(payload)
    merged = dict(current or DEFAULTS)
    merged.update(values)
    c, h, m = merged["criticalGapThreshold"], merged["highGapThreshold"], merged["mediumGapThreshold"]
    if not (c > h > m):
        errors.append("Gap thresholds must satisfy critical > high > medium.")
    return errors


def get_config(s: "Session") -> dict[str, object]:
    """All settings, stored values over defaults."""
    from app.skillloop.modules.system_config.models import SystemConfig

    cfg = dict(DEFAULTS)
    for row in s.query(SystemConfig).all():
        if row.key in cfg and row.value is not None:
            cfg[row.key] = row.value
    return cfg


def get_config_value(s: "Session", key: str) -> object:
    from app.skillloop.modules.system_config.models import SystemConfig

    row = s.query(SystemConfig).filter(SystemConfig.key == key).one_or_none()
    if row is None or row.value is None:
        return DEFAULTS.get(key)
    return row.value


def get_gap_thresholds(s: "Session") -> dict[str, float]:
    cfg = get_config(s)
    return {
        "critical": float(cfg["criticalGapThreshold"]),
        "high": float(cfg["highGapThreshold"]),
        "medium": float(cfg["mediumGapThreshold"]),
    }


def update_config(s: "Session", payload: dict, user: "User") -> dict[str, dict]:
    """Persist validated values. Callers run validate_config_payload first."""
    from app.skillloop.modules.system_config.models import SystemConfig

    values, _errors = coerce_config_payload(payload)
    existing = {row.key: row for row in s.query(SystemConfig).all()}
    now = datetime.utcnow()
    changes: dict[str, dict] = {}
    for key, value in values.items():
        row = existing.get(key)
        if row is None:
            row = SystemConfig(key=key, description=DESCRIPTIONS.get(key))
            s.add(row)
            old = DEFAULTS[key]
        else:
            old = row.value
        if old != value:
            changes[key] = {"old": old, "new": value}
        row.value = value
        row.updated_at = now
        row.updated_by_user_id = user.id
    s.flush()
    if changes:
        record_event(s, actor=user, action="system_config.update", entity_type="SystemConfig", metadata={"changes": changes})
    return changes


def seed_defaults(s: "Session") -> int:
    """Insert missing keys with their defaults. Returns the number inserted."""
    from app.skillloop.modules.system_config.models import SystemConfig

    have = {k for (k,) in s.query(SystemConfig.key).all()}
    added = 0
    for key, value in DEFAULTS.items():
        if key in have:
            continue
        s.add(SystemConfig(key=key, value=value, description=DESCRIPTIONS.get(key)))
        added += 1
    s.flush()
    return added
