"""Integration tests for admin operations.

Tests admin-only functionality including:
- Role gate on every admin route
- User listing, lookup, role changes and deletion
- The bootstrap script that creates the first admin
"""

import importlib.util
from pathlib import Path

import pytest

from projectdesk.service.runtime import get_runtime

PASSWORD = "Aa1!aaaa"
SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "bootstrap_admin.py"


@pytest.fixture
def admin_user(signup):
    return signup("root@x.com", "root", role="admin")


@pytest.fixture
def regular_user(signup):
    return signup("a@x.com", "alice")


@pytest.fixture
def bootstrap_module():
    spec = importlib.util.spec_from_file_location("bootstrap_admin", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestAdminGate:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/api/v1/admin/users"),
            ("get", "/api/v1/admin/users/some-id"),
            ("delete", "/api/v1/admin/users/some-id"),
        ],
    )
    def test_regular_user_is_forbidden(self, client, regular_user, method, path):
        resp = getattr(client, method)(path, headers=regular_user["headers"])
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_role_change_is_forbidden_for_users(self, client, regular_user):
        resp = client.put(
            f"/api/v1/admin/users/{regular_user['id']}/role",
            json={"role": "admin"},
            headers=regular_user["headers"],
        )
        assert resp.status_code == 403

    def test_anonymous_is_unauthorized(self, client):
        assert client.get("/api/v1/admin/users").status_code == 401


class TestUserManagement:
    def test_list_users_paginates(self, client, admin_user, regular_user, signup):
        signup("b@x.com", "bob")
        resp = client.get("/api/v1/admin/users", params={"limit": 2}, headers=admin_user["headers"])
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["total"] == 3
        assert data["total_pages"] == 2
        assert len(data["items"]) == 2
        assert resp.headers["X-RateLimit-Limit"] == "60"

        search = client.get(
            "/api/v1/admin/users", params={"search": "bob"}, headers=admin_user["headers"]
        )
        assert [u["username"] for u in search.json()["data"]["items"]] == ["bob"]

    def test_limit_is_bounded(self, client, admin_user):
        resp = client.get("/api/v1/admin/users", params={"limit": 500}, headers=admin_user["headers"])
        assert resp.status_code == 422

    def test_get_user(self, client, admin_user, regular_user):
        resp = client.get(f"/api/v1/admin/users/{regular_user['id']}", headers=admin_user["headers"])
        assert resp.status_code == 200
        assert resp.json()["data"]["email"] == "a@x.com"
        missing = client.get("/api/v1/admin/users/missing", headers=admin_user["headers"])
        assert missing.status_code == 404

    def test_role_change_revokes_sessions(self, client, admin_user, regular_user):
        resp = client.put(
            f"/api/v1/admin/users/{regular_user['id']}/role",
            json={"role": "admin"},
            headers=admin_user["headers"],
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["role"] == "admin"

        stale = client.post(
            "/api/v1/auth/refresh-token", json={"refreshToken": regular_user["refresh_token"]}
        )
        assert stale.status_code == 401

    def test_unknown_role_is_rejected(self, client, admin_user, regular_user):
        resp = client.put(
            f"/api/v1/admin/users/{regular_user['id']}/role",
            json={"role": "project_admin"},
            headers=admin_user["headers"],
        )
        assert resp.status_code == 422

    def test_delete_user(self, client, admin_user, regular_user):
        resp = client.delete(f"/api/v1/admin/users/{regular_user['id']}", headers=admin_user["headers"])
        assert resp.status_code == 200
        assert get_runtime().store.get_user(regular_user["id"]) is None
        assert client.get("/api/v1/auth/me", headers=regular_user["headers"]).status_code == 401


class TestBootstrapScript:
    def test_creates_admin_that_can_log_in(self, client, bootstrap_module, capsys):
        code = bootstrap_module.main(["--email", "Boss@X.com", "--password", PASSWORD])
        assert code == 0
        assert "created" in capsys.readouterr().out

        user = get_runtime().store.get_user_by_email("boss@x.com")
        assert user.role == "admin"
        assert user.username == "boss"
        assert user.is_email_verified

        resp = client.post("/api/v1/auth/login", json={"email": "boss@x.com", "password": PASSWORD})
        assert resp.json()["data"]["user"]["role"] == "admin"

    def test_promotes_existing_user(self, bootstrap_module, regular_user):
        assert bootstrap_module.main(["--email", "a@x.com", "--password", "Bb2@bbbb"]) == 0
        assert get_runtime().store.get_user(regular_user["id"]).role == "admin"

    def test_dry_run_changes_nothing(self, bootstrap_module):
        assert bootstrap_module.main(["--email", "x@x.com", "--password", PASSWORD, "--dry-run"]) == 0
        assert get_runtime().store.get_user_by_email("x@x.com") is None

    @pytest.mark.parametrize(
        "argv",
        [
            ["--password", PASSWORD],
            ["--email", "x@x.com"],
            ["--email", "x@x.com", "--password", "weakpass"],
        ],
    )
    def test_invalid_arguments(self, bootstrap_module, monkeypatch, argv):
        for name in ("ADMIN_EMAIL", "ADMIN_USERNAME", "ADMIN_PASSWORD"):
            monkeypatch.delenv(name, raising=False)
        assert bootstrap_module.main(argv) == 1

    def test_password_rule_matches_registration(self, bootstrap_module, client, outbox, capsys):
        too_long = "Aa1!" + "a" * 130
        assert bootstrap_module.main(["--email", "x@x.com", "--password", too_long]) == 1
        assert "at most 128" in capsys.readouterr().out
        assert get_runtime().store.get_user_by_email("x@x.com") is None

        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "y@x.com", "username": "yolanda", "password": too_long},
        )
        assert resp.status_code == 422
