"""
Tests for passwordless sign-in: OTP codes and magic links.
"""
from datetime import datetime, timedelta

from app.skillloop.db import session_scope
from app.skillloop.mailer import MAIL_OUTBOX_LIMIT, mail_outbox, send_email
from app.skillloop.models import OtpCode, User
from app.skillloop.otp import make_magic_token


def _outbox(app):
    return mail_outbox(app)


def _send(client, email):
    return client.post("/auth/otp", json={"email": email, "action": "send"})


def _verify(client, email, code):
    return client.post("/auth/otp", json={"email": email, "action": "verify", "code": code})


def _latest_code(app, email):
    with session_scope(app) as s:
        return (
            s.query(OtpCode)
            .filter(OtpCode.email == email)
            .order_by(OtpCode.id.desc())
            .first()
        )


def test_otp_send_and_verify_existing_user(app, client):
    r = _send(client, "Learner@Example.com")
    assert r.status_code == 200
    assert r.json["success"] is True
    otp = _latest_code(app, "learner@example.com")
    assert otp.code in _outbox(app)[-1]["body"]

    r = _verify(client, "learner@example.com", otp.code)
    assert r.status_code == 200
    assert r.json["success"] is True
    assert client.get("/dashboard").status_code == 200

    with session_scope(app) as s:
        user = s.query(User).filter(User.email == "learner@example.com").one()
        assert user.email_verified_at is not None
        assert s.get(OtpCode, otp.id).used is True


def test_otp_resend_cooldown(client):
    assert _send(client, "learner@example.com").status_code == 200
    r = _send(client, "learner@example.com")
    assert r.status_code == 400
    assert r.json["message"] == "Please wait before requesting another OTP"


def test_wrong_code_counts_attempts_until_locked(app, client):
    _send(client, "learner@example.com")
    otp = _latest_code(app, "learner@example.com")
    wrong = "000000" if otp.code != "000000" else "111111"

    for _ in range(5):
        r = _verify(client, "learner@example.com", wrong)
        assert r.json["message"] == "Invalid or expired OTP"
    assert _latest_code(app, "learner@example.com").attempts == 5

    # Even the right code is refused once the attempts are used up
    r = _verify(client, "learner@example.com", otp.code)
    assert r.status_code == 400
    assert r.json["message"] == "Too many failed attempts. Please request a new OTP."
    assert _latest_code(app, "learner@example.com") is None


def test_expired_code_rejected(app, client):
    _send(client, "learner@example.com")
    otp = _latest_code(app, "learner@example.com")
    with session_scope(app) as s:
        s.get(OtpCode, otp.id).expires_at = datetime.utcnow() - timedelta(minutes=1)
    r = _verify(client, "learner@example.com", otp.code)
    assert r.status_code == 400
    assert r.json["message"] == "Invalid or expired OTP"


def test_otp_creates_learner_for_unknown_email(app, client):
    _send(client, "newhire@example.com")
    otp = _latest_code(app, "newhire@example.com")
    r = _verify(client, "newhire@example.com", otp.code)
    assert r.json["success"] is True

    with session_scope(app) as s:
        user = s.query(User).filter(User.email == "newhire@example.com").one()
        assert user.role_keys == ["learner"]
        assert user.name == "newhire"
        assert user.employee_no.startswith("EMP-")


def test_otp_requires_email_and_action(client):
    assert client.post("/auth/otp", json={"action": "send"}).status_code == 400
    r = client.post("/auth/otp", json={"email": "learner@example.com", "action": "dance"})
    assert r.status_code == 400
    assert r.json["message"] == "Invalid action"


def test_deactivated_user_cannot_use_otp(app, client):
    with session_scope(app) as s:
        s.query(User).filter(User.email == "learner@example.com").one().is_active = False
    _send(client, "learner@example.com")
    otp = _latest_code(app, "learner@example.com")
    r = _verify(client, "learner@example.com", otp.code)
    assert r.status_code == 400
    assert r.json["message"] == "Account is deactivated"


def test_magic_link_round_trip(app, client):
    r = client.post("/auth/magic-link", data={"email": "manager@example.com"}, follow_redirects=True)
    assert r.status_code == 200
    body = _outbox(app)[-1]["body"]
    assert "/auth/magic/" in body

    with app.test_request_context():
        token = make_magic_token("manager@example.com")
    r = client.get(f"/auth/magic/{token}")
    assert r.status_code == 302
    assert client.get("/dashboard").status_code == 200


def test_magic_link_unknown_email_sends_nothing(app, client):
    before = len(_outbox(app))
    r = client.post("/auth/magic-link", data={"email": "ghost@example.com"}, follow_redirects=True)
    assert r.status_code == 200
    assert len(_outbox(app)) == before


def test_tampered_magic_link_rejected(client):
    r = client.get("/auth/magic/not-a-token", follow_redirects=True)
    assert r.status_code == 200
    assert b"invalid" in r.data
    assert client.get("/dashboard").status_code == 302


def test_suppressed_mail_outbox_keeps_latest_messages(app):
    with app.app_context():
        for i in range(MAIL_OUTBOX_LIMIT + 25):
            assert send_email("learner@example.com", f"Reminder {i}", "body") == (True, "suppressed")
    outbox = _outbox(app)
    assert len(outbox) == MAIL_OUTBOX_LIMIT
    assert outbox[0]["subject"] == "Reminder 25"
    assert outbox[-1]["subject"] == f"Reminder {MAIL_OUTBOX_LIMIT + 24}"
