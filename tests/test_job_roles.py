"""
Tests for job roles: competency validation, create and delete rules.
"""
import pytest

from app.skillloop.db import session_scope
from app.skillloop.models import User
from app.skillloop.modules.job_roles.models import JobRole
from app.skillloop.modules.job_roles.service import (
    competencies_from_form,
    create_job_role,
    delete_job_role,
    validate_job_role_payload,
)
from app.skillloop.modules.skills.models import SkillCategory
from app.skillloop.modules.skills.service import create_skill
from app.skillloop.utils import ServiceError


def _competency(skill_id, level="ADVANCED", priority="REQUIRED"):
    return {"skill_id": skill_id, "required_level": level, "priority": priority}


class TestValidateJobRolePayload:
    """Tests for validate_job_role_payload()"""

    def test_valid(self):
        payload = {"name": "Backend Engineer", "level": "MID", "competencies": [_competency(1), _competency(2, priority="OPTIONAL")]}
        assert validate_job_role_payload(payload) == []

    def test_needs_a_competency(self):
        assert validate_job_role_payload({"name": "Analyst", "competencies": []}) == ["At least one competency is required."]

    def test_needs_a_required_competency(self):
        payload = {"name": "Analyst", "competencies": [_competency(1, priority="PREFERRED"), _competency(2, priority="OPTIONAL")]}
        assert validate_job_role_payload(payload) == ["At least one competency must be REQUIRED."]

    def test_duplicate_skill(self):
        payload = {"name": "Analyst", "competencies": [_competency(1), _competency(1, level="EXPERT")]}
        assert validate_job_role_payload(payload) == ["Each skill can only appear once in a role."]

    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"name": "A", "competencies": [_competency(1)]}, "Role name must be at least 2 characters."),
            ({"name": "Analyst", "level": "CHIEF", "competencies": [_competency(1)]}, "Invalid level. Must be one of: ENTRY, MID, SENIOR, LEAD"),
            ({"name": "Analyst", "competencies": [_competency(1, level="GURU")]}, "Invalid required level for skill 1."),
            ({"name": "Analyst", "competencies": [_competency(1, priority="MUST")]}, "Invalid priority for skill 1."),
        ],
    )
    def test_field_errors(self, payload, expected):
        assert expected in validate_job_role_payload(payload)


def test_competencies_from_form_skips_blank_rows():
    rows = competencies_from_form(["3", "", "5"], ["advanced", "basic", "expert"], ["required", "optional"])
    assert rows == [
        {"skill_id": 3, "required_level": "ADVANCED", "priority": "REQUIRED"},
        {"skill_id": 5, "required_level": "EXPERT", "priority": "REQUIRED"},
    ]


def _admin(s):
    return s.query(User).filter(User.email == "admin@example.com").one()


def _skill(s, name):
    category = s.query(SkillCategory).filter(SkillCategory.name == "Other").one()
    return create_skill(s, {"name": name, "category_id": category.id}, _admin(s))


def test_create_rejects_duplicate_name_and_unknown_skill(app):
    with app.app_context(), session_scope(app) as s:
        admin = _admin(s)
        skill = _skill(s, "Python")
        create_job_role(s, {"name": "Data Engineer", "competencies": [_competency(skill.id)]}, admin)

        with pytest.raises(ServiceError, match="already exists"):
            create_job_role(s, {"name": "data engineer", "competencies": [_competency(skill.id)]}, admin)
        with pytest.raises(ServiceError, match="Unknown skill id"):
            create_job_role(s, {"name": "Platform Engineer", "competencies": [_competency(9999)]}, admin)


def test_delete_refused_while_users_hold_the_role(app):
    with app.app_context(), session_scope(app) as s:
        admin = _admin(s)
        role = create_job_role(s, {"name": "QA Engineer", "competencies": [_competency(_skill(s, "Testing").id)]}, admin)
        learner = s.query(User).filter(User.email == "learner@example.com").one()
        learner.job_role_id = role.id
        s.flush()

        with pytest.raises(ServiceError, match="1 user\\(s\\) are assigned"):
            delete_job_role(s, role, admin)

        learner.job_role_id = None
        s.flush()
        delete_job_role(s, role, admin)
        assert s.query(JobRole).filter(JobRole.name == "QA Engineer").count() == 0


def test_create_role_over_http_requires_a_required_competency(app, client):
    with app.app_context(), session_scope(app) as s:
        skill_id = _skill(s, "SQL").id

    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    with client.session_transaction() as sess:
        sess["csrf_token"] = "t"
    form = {"csrf_token": "t", "name": "Analyst", "level": "ENTRY", "skill_id": [str(skill_id)], "required_level": ["BASIC"]}

    r = client.post("/admin/job-roles/new", data={**form, "priority": ["OPTIONAL"]}, follow_redirects=True)
    assert b"At least one competency must be REQUIRED." in r.data
    with session_scope(app) as s:
        assert s.query(JobRole).filter(JobRole.name == "Analyst").count() == 0

    r = client.post("/admin/job-roles/new", data={**form, "priority": ["REQUIRED"]})
    assert r.status_code == 302
    with session_scope(app) as s:
        role = s.query(JobRole).filter(JobRole.name == "Analyst").one()
        assert [(c.skill_id, c.priority) for c in role.competencies] == [(skill_id, "REQUIRED")]


def test_delete_over_http_flashes_holder_count(app, client):
    with app.app_context(), session_scope(app) as s:
        admin = _admin(s)
        role = create_job_role(s, {"name": "Support Lead", "competencies": [_competency(_skill(s, "Support").id)]}, admin)
        s.query(User).filter(User.email == "learner@example.com").one().job_role_id = role.id
        role_id = role.id

    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    with client.session_transaction() as sess:
        sess["csrf_token"] = "t"
    r = client.post(f"/admin/job-roles/{role_id}/delete", data={"csrf_token": "t"}, follow_redirects=True)
    assert r.status_code == 200
    assert b"1 user(s) are assigned to it." in r.data
    with session_scope(app) as s:
        assert s.get(JobRole, role_id) is not None


def test_manager_cannot_create_roles(client):
    client.post("/auth/login", data={"email": "manager@example.com", "password": "pw"})
    assert client.get("/admin/job-roles").status_code == 200
    assert client.get("/admin/job-roles/new").status_code == 403
