"""
Tests for the skill matrix: gap arithmetic, role sync, personal goals and TNA reports.
"""
import csv
import io
from datetime import date

import pytest

from app.skillloop.db import session_scope
from app.skillloop.models import User
from app.skillloop.modules.job_roles.service import create_job_role
from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry
from app.skillloop.modules.skill_matrix.service import (
    add_user_skill,
    analyze_user_skill_gaps,
    calculate_gap_percentage,
    categorize_gap,
    create_entry,
    determine_status,
    level_for_percentage,
    level_value,
    record_assessed_level,
    sync_user_skills_with_role,
)
from app.skillloop.modules.skill_matrix.tna import (
    TNA_CSV_HEADER,
    generate_department_tna,
    generate_organization_tna,
    generate_user_tna,
)
from app.skillloop.modules.skills.models import SkillCategory
from app.skillloop.modules.skills.service import create_skill
from app.skillloop.utils import ServiceError

THRESHOLDS = {"critical": 50, "high": 30, "medium": 15}


class TestLevelValue:
    """Tests for level_value()"""

    def test_ladder(self):
        assert level_value("BEGINNER") == 1
        assert level_value("BASIC") == 2
        assert level_value("INTERMEDIATE") == 3
        assert level_value("ADVANCED") == 4
        assert level_value("EXPERT") == 5

    def test_case_and_whitespace(self):
        assert level_value(" expert ") == 5

    def test_unset_or_unknown_is_zero(self):
        assert level_value(None) == 0
        assert level_value("") == 0
        assert level_value("GURU") == 0


class TestCalculateGapPercentage:
    """Tests for calculate_gap_percentage()"""

    def test_no_desired_level_means_no_gap(self):
        assert calculate_gap_percentage(None, "EXPERT") == 0.0

    def test_unassessed_is_full_gap(self):
        assert calculate_gap_percentage("ADVANCED", None) == 100.0

    def test_met_or_exceeded(self):
        assert calculate_gap_percentage("INTERMEDIATE", "INTERMEDIATE") == 0.0
        assert calculate_gap_percentage("INTERMEDIATE", "EXPERT") == 0.0

    def test_partial_gap(self):
        assert calculate_gap_percentage("EXPERT", "BEGINNER") == 80.0
        assert calculate_gap_percentage("ADVANCED", "INTERMEDIATE") == 25.0
        assert calculate_gap_percentage("INTERMEDIATE", "BEGINNER") == 66.67


class TestCategorizeGap:
    """Tests for categorize_gap()"""

    def test_none(self):
        assert categorize_gap(0, THRESHOLDS) == "NONE"

    def test_bands(self):
        assert categorize_gap(80, THRESHOLDS) == "CRITICAL"
        assert categorize_gap(40, THRESHOLDS) == "HIGH"
        assert categorize_gap(20, THRESHOLDS) == "MEDIUM"
        assert categorize_gap(10, THRESHOLDS) == "LOW"

    def test_boundaries_fall_to_lower_band(self):
        assert categorize_gap(50, THRESHOLDS) == "HIGH"
        assert categorize_gap(30, THRESHOLDS) == "MEDIUM"
        assert categorize_gap(15, THRESHOLDS) == "LOW"


class TestDetermineStatus:
    """Tests for determine_status()"""

    def test_completed_wins(self):
        assert determine_status(0, True) == "completed"

    def test_training_assigned(self):
        assert determine_status(40, True) == "training_assigned"

    def test_gap_identified(self):
        assert determine_status(40, False) == "gap_identified"


class TestLevelForPercentage:
    """Tests for level_for_percentage()"""

    def test_bands(self):
        assert level_for_percentage(95) == "EXPERT"
        assert level_for_percentage(90) == "EXPERT"
        assert level_for_percentage(80) == "ADVANCED"
        assert level_for_percentage(60) == "INTERMEDIATE"
        assert level_for_percentage(59.9) == "BEGINNER"


def _category(s):
    return s.query(SkillCategory).filter(SkillCategory.name == "Other").one()


def _user(s, email="learner@example.com"):
    return s.query(User).filter(User.email == email).one()


def test_sync_with_role_creates_and_updates_entries(app):
    with app.app_context(), session_scope(app) as s:
        admin = _user(s, "admin@example.com")
        learner = _user(s)
        python = create_skill(s, {"name": "Python", "category_id": _category(s).id}, admin)
        sql = create_skill(s, {"name": "SQL", "category_id": _category(s).id}, admin)
        role = create_job_role(
            s,
            {
                "name": "Backend Engineer",
                "competencies": [
                    {"skill_id": python.id, "required_level": "ADVANCED", "priority": "REQUIRED"},
                    {"skill_id": sql.id, "required_level": "INTERMEDIATE", "priority": "PREFERRED"},
                ],
            },
            admin,
        )
        create_entry(s, learner, {"skill_id": sql.id, "desired_level": "BEGINNER", "current_level": "BEGINNER"}, admin)
        learner.job_role_id = role.id
        s.flush()

        result = sync_user_skills_with_role(s, learner, admin)
        assert result == {"created": 1, "updated": 1}

        entries = {e.skill_id: e for e in s.query(SkillMatrixEntry).filter_by(user_id=learner.id)}
        assert entries[python.id].gap_percentage == 100.0
        assert entries[python.id].status == "gap_identified"
        assert entries[sql.id].desired_level == "INTERMEDIATE"
        assert entries[sql.id].gap_percentage == 66.67

        # Second sync is a no-op
        assert sync_user_skills_with_role(s, learner, admin) == {"created": 0, "updated": 0}


def test_personal_goal_creates_skill_and_rejects_duplicates(app):
    with app.app_context(), session_scope(app) as s:
        learner = _user(s)
        entry = add_user_skill(s, learner, {"skill_name": "Rust", "desired_level": "INTERMEDIATE"}, learner)
        assert entry.status == "personal_goal"
        assert entry.gap_percentage == 0.0
        assert entry.skill.category.name == "Other"

        with pytest.raises(ServiceError, match="already in your skill matrix"):
            add_user_skill(s, learner, {"skill_name": "rust", "desired_level": "EXPERT"}, learner)


def test_invalid_level_rejected(app):
    with app.app_context(), session_scope(app) as s:
        admin = _user(s, "admin@example.com")
        skill = create_skill(s, {"name": "Go", "category_id": _category(s).id}, admin)
        with pytest.raises(ServiceError, match="Invalid proficiency level"):
            create_entry(s, _user(s), {"skill_id": skill.id, "desired_level": "WIZARD"}, admin)


def test_assessed_level_closes_gap_and_feeds_analysis(app):
    with app.app_context(), session_scope(app) as s:
        admin = _user(s, "admin@example.com")
        learner = _user(s)
        skill = create_skill(s, {"name": "Docker", "category_id": _category(s).id}, admin)
        other = create_skill(s, {"name": "Kubernetes", "category_id": _category(s).id}, admin)
        create_entry(s, learner, {"skill_id": skill.id, "desired_level": "ADVANCED"}, admin)
        create_entry(s, learner, {"skill_id": other.id, "desired_level": "EXPERT", "current_level": "BEGINNER"}, admin)

        entry = record_assessed_level(s, learner, skill.id, "EXPERT")
        assert entry.gap_percentage == 0.0
        assert entry.status == "completed"

        analysis = analyze_user_skill_gaps(s, learner)
        assert analysis["total_skills"] == 2
        assert analysis["completed"] == 1
        assert analysis["critical_gaps"] == 1
        assert analysis["average_gap"] == 40.0
        assert list(analysis["gaps_by_category"]) == ["Other"]

        tna = generate_user_tna(s, learner)
        assert tna["critical_gaps"] == 1


def test_my_matrix_page_lists_entries(app, client):
    with app.app_context(), session_scope(app) as s:
        admin = _user(s, "admin@example.com")
        skill = create_skill(s, {"name": "Terraform", "category_id": _category(s).id}, admin)
        create_entry(s, _user(s), {"skill_id": skill.id, "desired_level": "ADVANCED"}, admin)

    client.post("/auth/login", data={"email": "learner@example.com", "password": "pw"})
    r = client.get("/skill-matrix")
    assert r.status_code == 200
    assert b"Terraform" in r.data


def test_add_personal_goal_over_http(client):
    client.post("/auth/login", data={"email": "learner@example.com", "password": "pw"})
    with client.session_transaction() as sess:
        sess["csrf_token"] = "t"
    r = client.post(
        "/skill-matrix/personal-goal",
        data={"csrf_token": "t", "skill_name": "Public Speaking", "desired_level": "ADVANCED"},
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"Public Speaking" in r.data


def _entry_with_gap(s, user, skill, gap, admin):
    entry = create_entry(s, user, {"skill_id": skill.id, "desired_level": "EXPERT"}, admin)
    entry.gap_percentage = gap
    return entry


def _seed_org_gaps(s):
    """
    learner (Engineering, reports to manager): 15, 30, 50, 60, 0
    trainer (Engineering): 0
    manager (Sales): 80
    """
    admin = _user(s, "admin@example.com")
    learner, trainer, manager = _user(s), _user(s, "trainer@example.com"), _user(s, "manager@example.com")
    skills = {name: create_skill(s, {"name": name, "category_id": _category(s).id}, admin) for name in "ABCDE"}
    for name, gap in zip("ABCDE", (15, 30, 50, 60, 0)):
        _entry_with_gap(s, learner, skills[name], gap, admin)
    _entry_with_gap(s, trainer, skills["A"], 0, admin)
    _entry_with_gap(s, manager, skills["D"], 80, admin)
    manager.department = "Sales"
    role = create_job_role(
        s, {"name": "Analyst", "competencies": [{"skill_id": skills["A"].id, "required_level": "BASIC", "priority": "REQUIRED"}]}, admin
    )
    learner.job_role_id = role.id
    manager.job_role_id = role.id
    s.flush()
    return admin, manager


def test_organization_tna_bands_and_breakdowns(app):
    with app.app_context(), session_scope(app) as s:
        admin, _manager = _seed_org_gaps(s)
        report = generate_organization_tna(s, viewer=admin)

        assert report["total_employees"] == 4
        assert report["total_skills_tracked"] == 7
        assert report["organization_gap_score"] == 33.57
        # 50, 30 and 15 sit exactly on a threshold and fall to the band below
        assert report["critical_gaps_total"] == 2
        assert report["high_gaps_total"] == 1
        assert report["medium_gaps_total"] == 1
        assert report["low_gaps_total"] == 1

        departments = {d["department"]: d for d in report["department_breakdown"]}
        assert list(departments) == ["Engineering", "Sales"]
        assert departments["Engineering"]["employee_count"] == 3
        assert departments["Engineering"]["average_gap_score"] == 10.33
        assert departments["Engineering"]["critical_gaps_count"] == 0
        assert departments["Sales"]["average_gap_score"] == 80.0
        assert departments["Sales"]["critical_gaps_count"] == 1

        (role,) = report["role_breakdown"]
        assert role["name"] == "Analyst"
        assert role["employee_count"] == 2
        assert role["average_gap_score"] == 55.5
        assert role["critical_gaps_count"] == 1

        top = [(t["skill_name"], t["employees_affected"], t["average_gap"]) for t in report["top_gap_skills"]]
        assert top == [("D", 2, 70.0), ("C", 1, 50.0), ("B", 1, 30.0), ("A", 1, 15.0)]

        assert [t["name"] for t in report["employee_tnas"]] == ["Admin", "Learner", "Manager", "Trainer"]

        filtered = generate_organization_tna(s, {"department": "Sales"}, viewer=admin)
        assert [t["email"] for t in filtered["employee_tnas"]] == ["manager@example.com"]


def test_organization_tna_keeps_ten_worst_skills(app):
    with app.app_context(), session_scope(app) as s:
        admin, learner = _user(s, "admin@example.com"), _user(s)
        for i in range(12):
            skill = create_skill(s, {"name": f"Skill {i:02d}", "category_id": _category(s).id}, admin)
            _entry_with_gap(s, learner, skill, 5 + i, admin)
        s.flush()

        top = generate_organization_tna(s, viewer=admin)["top_gap_skills"]
        assert len(top) == 10
        assert top[0]["skill_name"] == "Skill 11"
        assert top[-1]["skill_name"] == "Skill 02"


def test_organization_tna_scoped_to_manager_reportees(app):
    with app.app_context(), session_scope(app) as s:
        _admin, manager = _seed_org_gaps(s)
        report = generate_organization_tna(s, viewer=manager)
        assert [t["email"] for t in report["employee_tnas"]] == ["learner@example.com"]
        assert report["total_skills_tracked"] == 5
        assert [t["skill_name"] for t in report["top_gap_skills"]] == ["D", "C", "B", "A"]


def test_department_tna_counts_unset_gap_as_full(app):
    with app.app_context(), session_scope(app) as s:
        admin, learner = _user(s, "admin@example.com"), _user(s)
        a = create_skill(s, {"name": "Unassessed", "category_id": _category(s).id}, admin)
        b = create_skill(s, {"name": "Partly there", "category_id": _category(s).id}, admin)
        unset = _entry_with_gap(s, learner, a, 0, admin)
        _entry_with_gap(s, learner, b, 20, admin)
        s.flush()
        unset.gap_percentage = None

        summary = generate_department_tna(s, "Engineering")
        assert summary["employee_count"] == 4
        assert summary["average_gap_score"] == 60.0
        assert summary["critical_gaps_count"] == 1
        assert summary["top_gap_skills"] == ["Unassessed", "Partly there"]
        s.refresh(unset)


def test_department_tna_errors(app):
    with app.app_context(), session_scope(app) as s:
        with pytest.raises(ServiceError, match="No users found in department"):
            generate_department_tna(s, "Nowhere")
        # the manager's only reportee is in Engineering
        summary = generate_department_tna(s, "Engineering", viewer=_user(s, "manager@example.com"))
        assert summary["employee_count"] == 1


def test_tna_csv_export(app, client):
    with app.app_context(), session_scope(app) as s:
        _seed_org_gaps(s)

    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"})
    r = client.get("/tna/export?format=csv")
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    assert f"tna-report-{date.today().isoformat()}.csv" in r.headers["Content-Disposition"]
    rows = list(csv.reader(io.StringIO(r.data.decode("utf-8"))))
    assert rows[0] == TNA_CSV_HEADER
    learner_row = next(row for row in rows[1:] if row[2] == "learner@example.com")
    assert learner_row[3:8] == ["Engineering", "Analyst", "5", "31.0", "1"]

    r = client.get("/tna/export?format=xlsx")
    assert r.status_code == 400


def test_manager_sees_reportees_only(app, client):
    with session_scope(app) as s:
        learner_id, trainer_id = _user(s).id, _user(s, "trainer@example.com").id

    client.post("/auth/login", data={"email": "manager@example.com", "password": "pw"})
    assert client.get(f"/skill-matrix/users/{learner_id}").status_code == 200
    assert client.get(f"/skill-matrix/users/{trainer_id}").status_code == 403
    assert client.get("/tna/export").status_code == 403
