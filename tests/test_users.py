"""
Tests for employee accounts: validation, creation with role sync and journey start, and the admin pages.
"""
import pytest

from app.skillloop.db import session_scope
from app.skillloop.models import AuditEvent, User
from app.skillloop.modules.journeys.models import Journey
from app.skillloop.modules.users.service import validate_user_payload

VALID = {
    "employee_no": "E-100",
    "name": "Asha Rao",
    "email": "asha@example.com",
    "role_keys": ["learner"],
    "designation": "Engineer",
    "department": "Engineering",
    "location": "HQ",
    "level": "3",
}


class TestValidateUserPayload:
    """Tests for validate_user_payload()"""

    def test_valid(self):
        assert validate_user_payload(VALID) == []

    @pytest.mark.parametrize(
        "field,value,message",
        [
            ("email", "not-an-email", "Invalid email format."),
            ("role_keys", [], "Select at least one role."),
            ("level", "11", "Level must be between 1 and 10."),
            ("employee_type", "intern", "Invalid employee type: INTERN"),
            ("date_of_joining", "05/01/2026", "Date of joining must be YYYY-MM-DD."),
            ("password", "short", "Password must be at least 8 characters."),
        ],
    )
    def test_rejections(self, field, value, message):
        assert message in validate_user_payload({**VALID, field: value})


def _login(client, email="admin@example.com"):
    client.post("/auth/login", data={"email": email, "password": "pw"})
    with client.session_transaction() as sess:
        sess["csrf_token"] = "t"


def _form(**overrides):
    data = {k: v for k, v in VALID.items() if k != "role_keys"}
    data.update({"csrf_token": "t", "role_keys": "learner"})
    data.update(overrides)
    return data


def test_create_user_with_journey(app, client):
    _login(client)
    r = client.post(
        "/admin/users/new",
        data=_form(employee_type="NEW_EMPLOYEE", init_journey="1", date_of_joining="2026-05-04"),
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"asha@example.com" in r.data
    assert b"user.create" in r.data

    with session_scope(app) as s:
        user = s.query(User).filter(User.email == "asha@example.com").one()
        assert user.role_keys == ["learner"]
        assert user.journey_status == "IN_PROGRESS"
        assert s.query(Journey).filter_by(user_id=user.id).count() == 1
        assert s.query(AuditEvent).filter(AuditEvent.action == "user.create").count() == 1


def test_duplicate_email_refused(app, client):
    _login(client)
    r = client.post("/admin/users/new", data=_form(email="learner@example.com"), follow_redirects=True)
    assert b"Email already exists" in r.data
    with session_scope(app) as s:
        assert s.query(User).filter(User.employee_no == "E-100").count() == 0


def test_validation_errors_flashed(client):
    _login(client)
    r = client.post("/admin/users/new", data=_form(level="99"), follow_redirects=True)
    assert b"Level must be between 1 and 10." in r.data


def test_deactivate_and_reactivate(app, client):
    with session_scope(app) as s:
        learner_id = s.query(User).filter(User.email == "learner@example.com").one().id
        admin_id = s.query(User).filter(User.email == "admin@example.com").one().id
    _login(client)

    r = client.post(f"/admin/users/{admin_id}/deactivate", data={"csrf_token": "t"}, follow_redirects=True)
    assert b"cannot deactivate your own account" in r.data

    client.post(f"/admin/users/{learner_id}/deactivate", data={"csrf_token": "t"})
    with session_scope(app) as s:
        assert s.get(User, learner_id).is_active is False

    # Deactivated accounts cannot sign in
    other = app.test_client()
    r = other.post("/auth/login", data={"email": "learner@example.com", "password": "pw"}, follow_redirects=True)
    assert b"Invalid credentials" in r.data

    client.post(f"/admin/users/{learner_id}/reactivate", data={"csrf_token": "t"})
    with session_scope(app) as s:
        assert s.get(User, learner_id).is_active is True


def test_users_list_search(client):
    _login(client)
    r = client.get("/admin/users?q=manager")
    assert r.status_code == 200
    assert b"manager@example.com" in r.data
    assert b"learner@example.com" not in r.data


def test_manager_can_view_but_not_create(client):
    _login(client, "manager@example.com")
    assert client.get("/admin/users").status_code == 200
    assert client.get("/admin/users/new").status_code == 403
