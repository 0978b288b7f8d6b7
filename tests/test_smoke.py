def _login(client, email="admin@example.com"):
    return client.post("/auth/login", data={"email": email, "password": "pw"}, follow_redirects=False)


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_login_and_admin_access(client):
    # Anonymous should be sent to login
    r = client.get("/admin/")
    assert r.status_code in (302, 403)

    r = _login(client)
    assert r.status_code == 302

    r = client.get("/admin/")
    assert r.status_code == 200


def test_bad_password_rejected(client):
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "nope"}, follow_redirects=True)
    assert r.status_code == 200
    assert b"Invalid credentials" in r.data
    assert client.get("/admin/").status_code == 302


def test_index_routes_by_role(client):
    r = client.get("/")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]

    _login(client, "learner@example.com")
    r = client.get("/")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/dashboard")

    r = client.get("/dashboard")
    assert r.status_code == 200


def test_trainer_lands_on_trainer_dashboard(client):
    _login(client, "trainer@example.com")
    r = client.get("/")
    assert r.headers["Location"].endswith("/dashboard/trainer")
    assert client.get("/dashboard/trainer").status_code == 200


def test_learner_forbidden_from_admin_pages(client):
    _login(client, "learner@example.com")
    assert client.get("/admin/").status_code == 403
    assert client.get("/admin/users").status_code == 403
    assert client.get("/admin/config").status_code == 403


def test_anonymous_redirect_keeps_next(client):
    r = client.get("/skill-matrix")
    assert r.status_code == 302
    assert "next=/skill-matrix" in r.headers["Location"]


def test_post_without_csrf_token_is_rejected(client):
    _login(client)
    r = client.post("/notifications/read-all")
    assert r.status_code == 400


def test_logout_ends_session(client):
    _login(client)
    assert client.get("/admin/").status_code == 200
    client.get("/auth/logout")
    assert client.get("/admin/").status_code == 302


def test_main_pages_render_for_admin(client):
    _login(client)
    for path in (
        "/admin/me",
        "/admin/audit",
        "/admin/users",
        "/admin/skills",
        "/admin/skill-categories",
        "/admin/job-roles",
        "/admin/config",
        "/skill-matrix",
        "/tna",
        "/assessments",
        "/assessments/my",
        "/assessments/grading",
        "/trainings",
        "/trainings/my",
        "/trainings/calendar",
        "/trainings/feedback",
        "/journeys",
        "/journeys/me",
        "/notifications",
    ):
        r = client.get(path)
        assert r.status_code == 200, path
