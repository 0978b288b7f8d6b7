"""
Tests for the bearer-protected cron endpoints and the notifications inbox.
"""
from datetime import datetime, timedelta

from app.skillloop.db import session_scope
from app.skillloop.models import User
from app.skillloop.modules.journeys.engine import initialize_journey
from app.skillloop.modules.notifications.models import Notification
from app.skillloop.modules.notifications.service import notify

AUTH = {"Authorization": "Bearer cron-secret"}


def test_cron_requires_bearer(client):
    for path in ("/cron/reminders", "/cron/journeys"):
        r = client.post(path)
        assert r.status_code == 401
        assert r.json == {"success": False, "message": "Unauthorized"}
        r = client.get(path, headers={"Authorization": "Bearer wrong"})
        assert r.status_code == 401


def test_cron_refuses_when_secret_unset(app, client):
    app.config["CRON_SECRET"] = ""
    assert client.post("/cron/reminders", headers={"Authorization": "Bearer "}).status_code == 401
    assert client.post("/cron/journeys", headers=AUTH).status_code == 401


def test_cron_reminders(client):
    r = client.post("/cron/reminders", headers=AUTH)
    assert r.status_code == 200
    assert r.json["success"] is True
    for key in ("assessment", "feedback", "progress", "total"):
        assert r.json[key] == 0


def test_cron_journeys_marks_overdue(app, client):
    with app.app_context(), session_scope(app) as s:
        learner = s.query(User).filter(User.email == "learner@example.com").one()
        initialize_journey(s, learner, "NEW_EMPLOYEE", start=datetime.utcnow() - timedelta(days=5))

    r = client.get("/cron/journeys", headers=AUTH)
    assert r.status_code == 200
    assert r.json == {"success": True, "overdue": 1}
    assert client.get("/cron/journeys", headers=AUTH).json["overdue"] == 0


def test_notifications_mark_read(app, client):
    with app.app_context(), session_scope(app) as s:
        learner = s.query(User).filter(User.email == "learner@example.com").one()
        first = notify(s, learner, "TRAINING_ASSIGNED", "Training assigned", "SQL Deep Dive").id
        notify(s, learner, "ASSESSMENT_ASSIGNED", "Assessment assigned", "SQL test")

    client.post("/auth/login", data={"email": "learner@example.com", "password": "pw"})
    with client.session_transaction() as sess:
        sess["csrf_token"] = "t"
    r = client.get("/notifications?unread=1")
    assert b"SQL Deep Dive" in r.data

    client.post(f"/notifications/{first}/read", data={"csrf_token": "t"})
    with session_scope(app) as s:
        assert s.get(Notification, first).is_read is True
        assert s.query(Notification).filter(Notification.is_read.is_(False)).count() == 1

    client.post("/notifications/read-all", data={"csrf_token": "t"})
    with session_scope(app) as s:
        assert s.query(Notification).filter(Notification.is_read.is_(False)).count() == 0


def test_cannot_read_someone_elses_notification(app, client):
    with app.app_context(), session_scope(app) as s:
        manager = s.query(User).filter(User.email == "manager@example.com").one()
        nid = notify(s, manager, "TRAINING_ASSIGNED", "Training assigned", "Git").id

    client.post("/auth/login", data={"email": "learner@example.com", "password": "pw"})
    with client.session_transaction() as sess:
        sess["csrf_token"] = "t"
    assert client.post(f"/notifications/{nid}/read", data={"csrf_token": "t"}).status_code == 404
