import pytest
from werkzeug.security import generate_password_hash

from app.skillloop import create_app
from app.skillloop.auth import _login_attempts
from app.skillloop.db import session_scope
from app.skillloop.models import Base, User
from scripts.init_db import seed_catalog

# email -> role key; every account signs in with password "pw".
SEED_USERS = {
    "admin@example.com": "admin",
    "trainer@example.com": "trainer",
    "manager@example.com": "manager",
    "learner@example.com": "learner",
}


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("MAIL_ENABLED", "false")
    monkeypatch.setenv("CRON_SECRET", "cron-secret")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "GOOGLE_API_KEY"):
        monkeypatch.delenv(k, raising=False)
    _login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        roles = seed_catalog(s)
        users = {}
        for i, (email, role_key) in enumerate(SEED_USERS.items(), start=1):
            u = User(
                email=email,
                name=role_key.capitalize(),
                employee_no=f"EMP-{i:03d}",
                password_hash=generate_password_hash("pw"),
                designation=role_key.capitalize(),
                department="Engineering",
                location="HQ",
                is_active=True,
            )
            u.roles.append(roles[role_key])
            s.add(u)
            users[role_key] = u
        s.flush()
        users["learner"].manager_id = users["manager"].id

    return app


@pytest.fixture()
def client(app):
    return app.test_client()
