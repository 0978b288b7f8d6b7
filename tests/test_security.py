"""
Tests for redirect targets and the cron bearer check.
"""
import pytest
from werkzeug.test import EnvironBuilder

from app.skillloop.security import bearer_token_matches, safe_next


class TestSafeNext:
    """Tests for safe_next()"""

    @pytest.mark.parametrize("nxt", ["/dashboard", "/admin/users?q=a", " /skill-matrix "])
    def test_local_paths_pass(self, nxt):
        assert safe_next(nxt) == nxt.strip()

    @pytest.mark.parametrize(
        "nxt",
        [None, "", "dashboard", "https://evil.com", "//evil.com", "/\\evil.com", "/a\\..\\\\evil.com"],
    )
    def test_off_site_targets_rejected(self, nxt):
        assert safe_next(nxt) is None


def test_login_ignores_backslash_next(client):
    r = client.post("/auth/login", data={"email": "learner@example.com", "password": "pw", "next": "/\\evil.com"})
    assert r.status_code == 302
    assert "evil.com" not in r.headers["Location"]


def test_bearer_token_matches():
    req = EnvironBuilder(headers={"Authorization": "Bearer s3cret"}).get_request()
    assert bearer_token_matches(req, "s3cret")
    assert not bearer_token_matches(req, "other")
    assert not bearer_token_matches(req, "")
