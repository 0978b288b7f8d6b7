"""
Tests for system settings: coercion, threshold ordering and the admin page.
"""
from app.skillloop.db import session_scope
from app.skillloop.models import AuditEvent, User
from app.skillloop.modules.system_config.service import (
    DEFAULTS,
    coerce_config_payload,
    get_config,
    get_gap_thresholds,
    seed_defaults,
    update_config,
    validate_config_payload,
)


class TestCoerceConfigPayload:
    """Tests for coerce_config_payload()"""

    def test_unknown_keys_dropped(self):
        values, errors = coerce_config_payload({"nope": "1", "maxRetakeAttempts": "2"})
        assert values == {"maxRetakeAttempts": 2}
        assert errors == []

    def test_booleans(self):
        values, errors = coerce_config_payload({"allowRetakes": "off", "autoSendReminders": "on"})
        assert values == {"allowRetakes": False, "autoSendReminders": True}
        assert errors == []

    def test_bad_boolean(self):
        _values, errors = coerce_config_payload({"allowRetakes": "maybe"})
        assert errors == ["allowRetakes must be true or false."]

    def test_numbers_keep_fractions(self):
        values, _errors = coerce_config_payload({"defaultTrainingDuration": "2.5", "defaultPassingScore": "80"})
        assert values == {"defaultTrainingDuration": 2.5, "defaultPassingScore": 80}

    def test_not_a_number(self):
        _values, errors = coerce_config_payload({"defaultPassingScore": "lots"})
        assert errors == ["defaultPassingScore must be a number."]

    def test_out_of_range(self):
        _values, errors = coerce_config_payload({"defaultPassingScore": "120", "defaultTrainingDuration": "0"})
        assert "defaultPassingScore must be between 0 and 100." in errors
        assert "defaultTrainingDuration must be at least 1." in errors


class TestValidateConfigPayload:
    """Tests for validate_config_payload()"""

    def test_defaults_are_valid(self):
        assert validate_config_payload({}) == []

    def test_thresholds_must_descend(self):
        errors = validate_config_payload({"highGapThreshold": "60"})
        assert errors == ["Gap thresholds must satisfy critical > high > medium."]

    def test_checked_against_current_values(self):
        current = dict(DEFAULTS, criticalGapThreshold=80, highGapThreshold=60)
        assert validate_config_payload({"mediumGapThreshold": "40"}, current) == []
        assert validate_config_payload({"mediumGapThreshold": "60"}, current)


def test_update_config_records_changes(app):
    with app.app_context(), session_scope(app) as s:
        admin = s.query(User).filter(User.email == "admin@example.com").one()
        assert seed_defaults(s) == 0  # seeded by the fixture

        changes = update_config(s, {"criticalGapThreshold": "70", "allowRetakes": "false"}, admin)
        assert changes == {
            "criticalGapThreshold": {"old": 50, "new": 70},
            "allowRetakes": {"old": True, "new": False},
        }
        assert get_gap_thresholds(s) == {"critical": 70.0, "high": 30.0, "medium": 15.0}
        assert get_config(s)["allowRetakes"] is False

        assert update_config(s, {"criticalGapThreshold": "70"}, admin) == {}
        assert s.query(AuditEvent).filter(AuditEvent.action == "system_config.update").count() == 1


def test_config_page_saves_and_refuses_bad_thresholds(app, client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    with client.session_transaction() as sess:
        sess["csrf_token"] = "t"

    r = client.post(
        "/admin/config",
        data={"csrf_token": "t", "criticalGapThreshold": "10", "highGapThreshold": "30", "mediumGapThreshold": "15"},
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"critical &gt; high &gt; medium" in r.data

    r = client.post(
        "/admin/config",
        data={"csrf_token": "t", "defaultPassingScore": "75"},
        follow_redirects=True,
    )
    assert r.status_code == 200
    with app.app_context(), session_scope(app) as s:
        assert get_config(s)["defaultPassingScore"] == 75
        assert get_gap_thresholds(s)["critical"] == 50.0


def test_config_page_requires_permission(client):
    client.post("/auth/login", data={"email": "manager@example.com", "password": "pw"})
    assert client.get("/admin/config").status_code == 403
