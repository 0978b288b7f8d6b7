"""
Tests for trainings: assignment, completion, proofs and storage, feedback, reminders and the calendar export.
"""
import hashlib
from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest

from app.skillloop.db import session_scope
from app.skillloop.models import User
from app.skillloop.modules.notifications.models import Notification
from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry
from app.skillloop.modules.skill_matrix.service import create_entry
from app.skillloop.modules.skills.models import SkillCategory
from app.skillloop.modules.skills.service import create_skill
from app.skillloop.modules.system_config.service import update_config
from app.skillloop.modules.trainings.calendar import event_start, render_ics
from app.skillloop.modules.trainings.models import TrainingCalendar
from app.skillloop.modules.trainings.reminders import send_reminders
from app.skillloop.modules.trainings.service import (
    assign_training,
    complete_training,
    create_training,
    delete_proof,
    feedback_summary,
    review_proof,
    submit_feedback,
    submit_proof,
    validate_feedback_payload,
    validate_training_payload,
)
from app.skillloop.storage import LocalStorage, StorageError, proof_key, storage_from_config
from app.skillloop.utils import ServiceError, round_half_up

RATINGS = {"material_helpful": "5", "interactive_engaging": "5", "trainer_answered": "4", "content_satisfaction": "5"}


class TestValidateTrainingPayload:
    """Tests for validate_training_payload()"""

    def test_offline_needs_venue(self):
        errors = validate_training_payload({"topic_name": "Safety", "mode": "OFFLINE"})
        assert errors == ["Venue is required for offline trainings."]

    def test_online_needs_link_or_resources(self):
        assert validate_training_payload({"topic_name": "Safety", "mode": "ONLINE"}) == [
            "Online trainings need a meeting link or resources."
        ]
        assert validate_training_payload({"topic_name": "Safety", "mode": "online", "resources": "slides"}) == []

    def test_bad_mode_and_numbers(self):
        errors = validate_training_payload({"topic_name": "S", "mode": "HYBRID", "duration_hours": "-1", "max_participants": "0"})
        assert "Topic name must be at least 2 characters." in errors
        assert "Mode must be ONLINE or OFFLINE." in errors
        assert "Duration must be a positive number of hours." in errors
        assert "Max participants must be a positive whole number." in errors


class TestValidateFeedbackPayload:
    """Tests for validate_feedback_payload()"""

    def test_all_ratings_required(self):
        errors = validate_feedback_payload({"material_helpful": "6", "trainer_answered": "3"})
        assert len(errors) == 3
        assert "Material helpful must be rated 1 to 5." in errors

    def test_valid(self):
        assert validate_feedback_payload(RATINGS) == []


class TestRenderIcs:
    """Tests for render_ics()"""

    def _entry(self, when, **kw):
        training = SimpleNamespace(topic_name="Intro, to; SQL", mode="ONLINE", skill=None)
        return SimpleNamespace(id=7, training=training, training_date=when, venue=None, meeting_link=kw.get("link"))

    def test_date_only_sessions_start_at_nine(self):
        entry = self._entry(datetime(2026, 3, 2))
        assert event_start(entry) == datetime(2026, 3, 2, 9, 0)

    def test_event_fields(self):
        entry = self._entry(datetime(2026, 3, 2, 14, 30), link="https://meet.example.com/x")
        ics = render_ics([entry], now=datetime(2026, 3, 1, 8, 0))
        lines = ics.split("\r\n")
        assert lines[0] == "BEGIN:VCALENDAR"
        assert "UID:training-calendar-7@skillloop" in lines
        assert "DTSTAMP:20260301T080000" in lines
        assert "DTSTART:20260302T143000" in lines
        assert "DTEND:20260302T153000" in lines
        assert "SUMMARY:Intro\\, to\\; SQL" in lines
        assert "LOCATION:https://meet.example.com/x" in lines
        assert "CATEGORIES:Training,ONLINE" in lines
        assert ics.endswith("END:VCALENDAR\r\n")

    def test_empty_calendar(self):
        assert render_ics([], now=datetime(2026, 1, 1)).count("BEGIN:VEVENT") == 0


def _users(s):
    return {u.email.split("@")[0]: u for u in s.query(User).all()}


def _skill(s, admin, name="SQL"):
    category = s.query(SkillCategory).filter(SkillCategory.name == "Other").one()
    return create_skill(s, {"name": name, "category_id": category.id}, admin)


def _dates(days=14):
    start = datetime(2026, 5, 4)
    return {"start_date": start, "target_completion_date": start + timedelta(days=days)}


def test_assign_complete_and_feedback(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        admin, trainer, learner = users["admin"], users["trainer"], users["learner"]
        skill = _skill(s, admin)
        create_entry(s, learner, {"skill_id": skill.id, "desired_level": "ADVANCED"}, admin)
        training = create_training(s, {"topic_name": "SQL Deep Dive", "mode": "ONLINE", "resources": "slides", "skill_id": skill.id}, trainer)
        assert training.duration_hours == 8.0  # system default

        created = assign_training(s, training, {"user_ids": [learner.id], "trainer_id": trainer.id, **_dates()}, trainer)
        assert len(created) == 1
        entry = s.query(SkillMatrixEntry).filter_by(user_id=learner.id, skill_id=skill.id).one()
        assert entry.status == "training_assigned"
        assert s.query(TrainingCalendar).filter_by(training_id=training.id).count() == 1
        assert s.query(Notification).filter_by(user_id=learner.id, type="TRAINING_ASSIGNED").count() == 1

        # Active assignments are not duplicated
        assert assign_training(s, training, {"user_ids": [learner.id], **_dates()}, trainer) == []

        assignment = created[0]
        with pytest.raises(ServiceError, match="once the training is completed"):
            submit_feedback(s, assignment, RATINGS, learner)
        with pytest.raises(ServiceError, match="your own trainings"):
            complete_training(s, assignment, trainer)

        complete_training(s, assignment, learner)
        assert assignment.status == "COMPLETED"
        assert entry.status == "completed"
        assert s.query(Notification).filter_by(user_id=trainer.id, type="TRAINING_COMPLETED").count() == 1

        fb = submit_feedback(s, assignment, {**RATINGS, "key_learnings": "Window functions"}, learner)
        assert fb.overall_rating == 5  # mean 4.75 rounds up
        assert fb.extended == {"key_learnings": "Window functions"}
        with pytest.raises(ServiceError, match="already been submitted"):
            submit_feedback(s, assignment, RATINGS, learner)

        summary = feedback_summary(s)
        assert summary["total_responses"] == 1
        assert summary["nps"] == 100
        assert summary["response_rate"] == 100
        assert summary["trainer_rankings"] == [{"name": trainer.display_name, "average_rating": 4.0, "responses": 1}]


class TestRoundHalfUp:
    """Tests for round_half_up()"""

    @pytest.mark.parametrize("value,expected", [(4.5, 5), (4.49, 4), (12.5, 13), (0.5, 1), (0, 0), (-12.5, -12), (-12.6, -13)])
    def test_halves_go_up(self, value, expected):
        assert round_half_up(value) == expected


def test_feedback_overall_rating_rounds_half_up(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        trainer, learner = users["trainer"], users["learner"]
        training = create_training(s, {"topic_name": "Git Basics", "mode": "ONLINE", "resources": "slides"}, trainer)
        (assignment,) = assign_training(s, training, {"user_ids": [learner.id], "trainer_id": trainer.id, **_dates()}, trainer)
        complete_training(s, assignment, learner)

        ratings = {"material_helpful": "4", "interactive_engaging": "4", "trainer_answered": "5", "content_satisfaction": "5"}
        fb = submit_feedback(s, assignment, ratings, learner)
        assert fb.overall_rating == 5

        summary = feedback_summary(s)
        assert summary["averages"]["overall_rating"] == 5.0
        assert summary["nps"] == 100


def test_assignment_dates_are_checked(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        training = create_training(s, {"topic_name": "Git", "mode": "ONLINE", "resources": "docs"}, users["trainer"])
        with pytest.raises(ServiceError, match="Start date is required"):
            assign_training(s, training, {"user_ids": [users["learner"].id]}, users["trainer"])
        bad = {"start_date": datetime(2026, 5, 4), "target_completion_date": datetime(2026, 5, 1)}
        with pytest.raises(ServiceError, match="cannot be before the start date"):
            assign_training(s, training, {"user_ids": [users["learner"].id], **bad}, users["trainer"])


def test_offline_capacity_enforced(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        training = create_training(
            s, {"topic_name": "First Aid", "mode": "OFFLINE", "venue": "Room 1", "max_participants": "1"}, users["trainer"]
        )
        assign_training(s, training, {"user_ids": [users["learner"].id], **_dates()}, users["trainer"])
        with pytest.raises(ServiceError, match="at capacity"):
            assign_training(s, training, {"user_ids": [users["manager"].id], **_dates()}, users["trainer"])


def test_feedback_reminder_after_seven_days(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        learner = users["learner"]
        training = create_training(s, {"topic_name": "Docker", "mode": "ONLINE", "resources": "docs"}, users["trainer"])
        (assignment,) = assign_training(s, training, {"user_ids": [learner.id], **_dates()}, users["trainer"])
        complete_training(s, assignment, learner)
        now = datetime.utcnow()
        assignment.completion_date = now - timedelta(days=7)
        s.flush()

        result = send_reminders(s, now)
        assert result["feedback"] == 1
        # Same-day rerun does not repeat
        assert send_reminders(s, now)["feedback"] == 0

        update_config(s, {"autoSendReminders": False}, users["admin"])
        assert send_reminders(s, now)["skipped"] is True


def test_trainer_creates_training_over_http(client):
    client.post("/auth/login", data={"email": "trainer@example.com", "password": "pw"})
    with client.session_transaction() as sess:
        sess["csrf_token"] = "t"
    r = client.post(
        "/trainings/new",
        data={"csrf_token": "t", "topic_name": "Kubernetes 101", "mode": "OFFLINE", "venue": "Lab 2"},
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"Kubernetes 101" in r.data

    # Nothing scheduled yet
    assert client.get("/trainings/calendar/export.ics").status_code == 404

    r = client.post(
        "/trainings/calendar/new",
        data={"csrf_token": "t", "training_id": "1", "training_date": "2026-06-01T10:00"},
        follow_redirects=True,
    )
    assert r.status_code == 200
    r = client.get("/trainings/calendar/export.ics")
    assert r.status_code == 200
    assert r.mimetype == "text/calendar"
    assert b"SUMMARY:Kubernetes 101" in r.data
    assert b"LOCATION:Lab 2" in r.data


def test_learner_cannot_create_training(client):
    client.post("/auth/login", data={"email": "learner@example.com", "password": "pw"})
    with client.session_transaction() as sess:
        sess["csrf_token"] = "t"
    r = client.post("/trainings/new", data={"csrf_token": "t", "topic_name": "X", "mode": "ONLINE"})
    assert r.status_code == 403


class TestLocalStorage:
    """Tests for LocalStorage"""

    def test_save_open_delete(self, tmp_path):
        storage = LocalStorage(root=tmp_path)
        stored = storage.save("proofs/1/2026-05-04/cert.pdf", b"certificate")
        assert stored.sha256 == hashlib.sha256(b"certificate").hexdigest()
        assert stored.size_bytes == 11
        with storage.open(stored.key) as f:
            assert f.read() == b"certificate"
        storage.delete(stored.key)
        assert not storage.exists(stored.key)

    def test_rejects_traversal_and_empty_files(self, tmp_path):
        storage = LocalStorage(root=tmp_path)
        with pytest.raises(StorageError):
            storage.save("proofs/../../etc/passwd", b"x")
        with pytest.raises(StorageError):
            storage.save("proofs/1/empty.txt", b"")
        with pytest.raises(StorageError):
            storage.open("proofs/1/missing.pdf")

    def test_proof_key(self):
        assert proof_key(12, "my cert (final).pdf", date(2026, 5, 4)) == "proofs/12/2026-05-04/my_cert_final.pdf"
        assert proof_key(12, "../", date(2026, 5, 4)) == "proofs/12/2026-05-04/proof.bin"


def test_proof_submit_and_approve(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        admin, trainer, learner = users["admin"], users["trainer"], users["learner"]
        skill = _skill(s, admin, "Terraform")
        create_entry(s, learner, {"skill_id": skill.id, "desired_level": "ADVANCED"}, admin)
        training = create_training(s, {"topic_name": "Terraform", "mode": "ONLINE", "resources": "docs", "skill_id": skill.id}, trainer)
        (assignment,) = assign_training(s, training, {"user_ids": [learner.id], "trainer_id": trainer.id, **_dates()}, trainer)

        with pytest.raises(ServiceError, match="empty"):
            submit_proof(s, assignment, b"", "cert.pdf", "application/pdf", learner)
        with pytest.raises(ServiceError, match="your own trainings"):
            submit_proof(s, assignment, b"pdf", "cert.pdf", "application/pdf", trainer)

        proof = submit_proof(s, assignment, b"certificate", "cert.pdf", "application/pdf", learner)
        assert proof.status == "PENDING"
        assert proof.sha256 == hashlib.sha256(b"certificate").hexdigest()
        assert storage_from_config(app.config).exists(proof.storage_key)
        assert s.query(Notification).filter_by(user_id=trainer.id, type="TRAINING_PROOF_SUBMITTED").count() == 1

        with pytest.raises(ServiceError, match="Only the trainer, mentor or an admin"):
            review_proof(s, proof, "APPROVED", None, users["manager"])
        review_proof(s, proof, "APPROVED", "Looks good", trainer)
        assert assignment.status == "COMPLETED"
        entry = s.query(SkillMatrixEntry).filter_by(user_id=learner.id, skill_id=skill.id).one()
        assert entry.current_level == "ADVANCED"
        assert entry.gap_percentage == 0
        assert entry.status == "completed"
        with pytest.raises(ServiceError, match="already been reviewed"):
            review_proof(s, proof, "REJECTED", "late", trainer)


def test_proof_reject_and_delete(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        trainer, learner = users["trainer"], users["learner"]
        training = create_training(s, {"topic_name": "Linux", "mode": "ONLINE", "resources": "docs"}, trainer)
        (assignment,) = assign_training(s, training, {"user_ids": [learner.id], "trainer_id": trainer.id, **_dates()}, trainer)

        proof = submit_proof(s, assignment, b"blurry", "photo.jpg", "image/jpeg", learner)
        with pytest.raises(ServiceError, match="give a reason"):
            review_proof(s, proof, "REJECTED", "", trainer)
        review_proof(s, proof, "REJECTED", "Unreadable scan", trainer)
        assert assignment.status == "ASSIGNED"
        assert s.query(Notification).filter_by(user_id=learner.id, type="TRAINING_PROOF_REJECTED").count() == 1
        with pytest.raises(ServiceError, match="Only pending proofs"):
            delete_proof(s, proof, learner)

        retry = submit_proof(s, assignment, b"sharp", "photo-2.jpg", "image/jpeg", learner)
        key = retry.storage_key
        delete_proof(s, retry, learner)
        assert not storage_from_config(app.config).exists(key)
