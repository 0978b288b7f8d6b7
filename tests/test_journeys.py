"""
Tests for the journey engine: phase chaining, advancing, overdue checks and recycling.
"""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from app.skillloop.db import session_scope
from app.skillloop.models import User
from app.skillloop.modules.journeys.engine import (
    calculate_phase_progress,
    chain_due_dates,
    check_overdue_phases,
    current_phase,
    initialize_journey,
    manually_complete_phase,
    pause_journey,
    resume_journey,
)
from app.skillloop.modules.journeys.models import Journey
from app.skillloop.modules.journeys.service import assign_mentor_to_phase, skip_journey_phase
from app.skillloop.modules.notifications.models import Notification
from app.skillloop.utils import ServiceError

START = datetime(2026, 1, 5, 9, 0)


class TestChainDueDates:
    """Tests for chain_due_dates()"""

    def test_each_phase_due_after_previous(self):
        dues = chain_due_dates([2, 15, 3], START)
        assert dues == [
            datetime(2026, 1, 7, 9, 0),
            datetime(2026, 1, 22, 9, 0),
            datetime(2026, 1, 25, 9, 0),
        ]

    def test_empty(self):
        assert chain_due_dates([], START) == []


class TestCalculatePhaseProgress:
    """Tests for calculate_phase_progress()"""

    def _journey(self, completed, total):
        phases = [
            SimpleNamespace(phase_number=n, status="COMPLETED" if n <= completed else "NOT_STARTED", due_date=None)
            for n in range(1, total + 1)
        ]
        return SimpleNamespace(phases=phases, employee_type="EXISTING_EMPLOYEE", started_at=START)

    @pytest.mark.parametrize("completed,total,expected", [(1, 8, 13), (3, 8, 38), (1, 3, 33), (2, 3, 67), (0, 5, 0)])
    def test_percentage_rounds_half_up(self, completed, total, expected):
        assert calculate_phase_progress(self._journey(completed, total))["progress_percentage"] == expected

    def test_no_phases(self):
        assert calculate_phase_progress(self._journey(0, 0))["progress_percentage"] == 0


def _users(s):
    return {u.email.split("@")[0]: u for u in s.query(User).all()}


def test_new_employee_journey_defaults(app):
    with app.app_context(), session_scope(app) as s:
        learner = _users(s)["learner"]
        journey = initialize_journey(s, learner, "NEW_EMPLOYEE", start=START)

        phases = sorted(journey.phases, key=lambda p: p.phase_number)
        assert len(phases) == 7
        assert [p.status for p in phases[:2]] == ["IN_PROGRESS", "NOT_STARTED"]
        assert phases[0].due_date == START + timedelta(days=2)
        assert phases[-1].due_date == START + timedelta(days=45)
        assert learner.journey_status == "IN_PROGRESS"
        assert learner.current_phase_id == phases[0].id

        progress = calculate_phase_progress(journey, now=START + timedelta(days=10))
        assert progress["total_phases"] == 7
        assert progress["current_phase"] == 1
        assert progress["days_elapsed"] == 10
        assert progress["days_remaining"] == 35


def test_invalid_employee_type(app):
    with app.app_context(), session_scope(app) as s:
        with pytest.raises(ServiceError, match="Invalid employee type"):
            initialize_journey(s, _users(s)["learner"], "CONTRACTOR")


def test_manual_completion_advances_and_finishes(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        learner = users["learner"]
        phases = [{"title": "Week one", "duration_days": 5}, {"title": "Week two", "duration_days": 5}]
        journey = initialize_journey(s, learner, "NEW_EMPLOYEE", phases=phases, start=START)
        first, second = sorted(journey.phases, key=lambda p: p.phase_number)

        with pytest.raises(ServiceError, match="Only the current phase"):
            manually_complete_phase(s, second, users["admin"])

        assert manually_complete_phase(s, first, users["admin"], notes="done early") is True
        assert first.status == "COMPLETED"
        assert second.status == "IN_PROGRESS"
        assert learner.current_phase_id == second.id

        manually_complete_phase(s, second, users["admin"])
        assert journey.status == "COMPLETED"
        assert learner.journey_status == "COMPLETED"
        assert learner.current_phase_id is None
        assert calculate_phase_progress(journey)["progress_percentage"] == 100
        # New-employee journeys do not restart
        assert s.query(Journey).filter_by(user_id=learner.id).count() == 1


def test_existing_employee_journey_recycles(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        learner = users["learner"]
        journey = initialize_journey(s, learner, "EXISTING_EMPLOYEE", phases=[{"title": "Review", "duration_days": 3}], start=START)
        manually_complete_phase(s, current_phase(journey), users["admin"])

        journeys = s.query(Journey).filter_by(user_id=learner.id).order_by(Journey.cycle_number).all()
        assert [j.cycle_number for j in journeys] == [1, 2]
        assert journeys[0].status == "COMPLETED"
        assert journeys[1].status == "IN_PROGRESS"
        assert len(journeys[1].phases) == 5
        assert learner.journey_status == "IN_PROGRESS"


def test_skip_marks_phase_and_moves_on(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        journey = initialize_journey(s, users["learner"], "NEW_EMPLOYEE", start=START)
        skip_journey_phase(s, journey, 1, "Already assessed", users["admin"])
        phases = sorted(journey.phases, key=lambda p: p.phase_number)
        assert phases[0].status == "SKIPPED"
        assert phases[1].status == "IN_PROGRESS"
        with pytest.raises(ServiceError, match="already skipped"):
            skip_journey_phase(s, journey, 1, None, users["admin"])


def test_overdue_phase_flagged_once_and_still_current(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        journey = initialize_journey(s, users["learner"], "NEW_EMPLOYEE", start=START)
        first = current_phase(journey)
        assign_mentor_to_phase(s, first, users["trainer"], users["admin"])
        assert "mentor" in users["trainer"].role_keys

        now = START + timedelta(days=3)
        assert check_overdue_phases(s, now) == 1
        assert first.status == "OVERDUE"
        assert current_phase(journey) is first
        assert check_overdue_phases(s, now) == 0

        overdue_notes = s.query(Notification).filter_by(type="JOURNEY_PHASE_OVERDUE").all()
        assert {n.user_id for n in overdue_notes} == {users["learner"].id, users["trainer"].id}

        # Overdue phases can still be completed
        manually_complete_phase(s, first, users["admin"])
        assert first.status == "COMPLETED"


def test_pause_and_resume(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        learner = users["learner"]
        journey = initialize_journey(s, learner, "NEW_EMPLOYEE", start=START)
        pause_journey(s, journey, users["admin"], reason="Leave")
        assert learner.journey_status == "PAUSED"
        with pytest.raises(ServiceError):
            manually_complete_phase(s, current_phase(journey), users["admin"])
        with pytest.raises(ServiceError, match="Only an in-progress journey"):
            pause_journey(s, journey, users["admin"])
        resume_journey(s, journey, users["admin"])
        assert journey.status == "IN_PROGRESS"
        assert learner.journey_status == "IN_PROGRESS"


def test_mentor_cannot_be_the_employee(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        journey = initialize_journey(s, users["learner"], "NEW_EMPLOYEE", start=START)
        with pytest.raises(ServiceError, match="cannot mentor their own"):
            assign_mentor_to_phase(s, current_phase(journey), users["learner"], users["admin"])


def test_learner_sees_own_journey_only(app, client):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        own = initialize_journey(s, users["learner"], "NEW_EMPLOYEE", start=START).id
        other = initialize_journey(s, users["manager"], "NEW_EMPLOYEE", start=START).id

    client.post("/auth/login", data={"email": "learner@example.com", "password": "pw"})
    r = client.get("/journeys/me")
    assert r.status_code == 200
    assert b"Initial Assessment" in r.data
    assert client.get(f"/journeys/{own}").status_code == 200
    assert client.get(f"/journeys/{other}").status_code == 403
    assert client.get("/journeys").status_code == 403
