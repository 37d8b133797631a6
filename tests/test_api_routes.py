"""
tests/test_api_routes.py -- Integration tests for the auth, user, profile, and audit routes.

These tests exercise the full stack: FastAPI routing -> Depends() guards ->
services -> UserStore -> response model serialization -> exception handlers.
Unit testing individual route functions would miss middleware, dependency
ordering, and the error envelope -- integration tests are the right tool here.

Coverage:
  - Gate: 401 (no/bad token, WWW-Authenticate) is decided before 403 (role)
  - Login: token + public user, no-store, identical 401 for both failure causes
  - Password reset over HTTP: debug token echo, unknown email, replay, aliases
  - Admin user CRUD, conflicts, self-delete, 404s
  - Profile self-service rules
  - Audit log listing and CSV export
  - End-to-end: admin creates alice, alice logs in, is denied admin routes,
    resets her password, and logs in with the new one

Fixtures used (from conftest.py):
  - api_client: (client, admin_token, user_token)
    Seeded: testadmin / testpass123 (admin), testuser / userpass123 (user).
"""

from __future__ import annotations

import csv
import io

from fastapi.testclient import TestClient

# Seeded by the api_client fixture in conftest.py
ADMIN_PASSWORD = "testpass123"
USER_PASSWORD = "userpass123"


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _create_user(client: TestClient, admin_token: str, username: str, password: str = "secret1", role: str = "user"):
    resp = client.post(
        "/api/v1/users",
        json={
            "username": username,
            "email": f"{username}@example.com",
            "password": password,
            "name": username.title(),
            "role": role,
        },
        headers=_auth(admin_token),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def _login(client: TestClient, username: str, password: str):
    return client.post("/api/v1/auth/login", json={"username": username, "password": password})


class TestAccessControlGate:
    """401 means 'who are you?', 403 means 'not allowed' -- in that order."""

    def test_no_token_is_401_with_challenge(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_admin_route_without_token_is_401_not_403(self, api_client) -> None:
        client, _, _ = api_client
        assert client.get("/api/v1/users").status_code == 401
        assert client.get("/api/v1/audit-logs").status_code == 401

    def test_garbage_token_is_401(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/v1/auth/me", headers=_auth("not.a.jwt"))
        assert resp.status_code == 401
        assert "invalid token" in resp.json()["error"]["message"]

    def test_non_bearer_scheme_is_401(self, api_client) -> None:
        client, admin_token, _ = api_client
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"Basic {admin_token}"})
        assert resp.status_code == 401

    def test_bearer_scheme_is_case_insensitive(self, api_client) -> None:
        client, admin_token, _ = api_client
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"bearer {admin_token}"})
        assert resp.status_code == 200

    def test_regular_user_on_admin_route_is_403(self, api_client) -> None:
        client, _, user_token = api_client
        for method, path in [
            ("GET", "/api/v1/users"),
            ("POST", "/api/v1/users"),
            ("GET", "/api/v1/audit-logs"),
            ("GET", "/api/v1/audit-logs/export"),
        ]:
            resp = client.request(method, path, headers=_auth(user_token), json={})
            assert resp.status_code == 403, f"{method} {path}: {resp.status_code}"
            assert resp.json()["error"]["code"] == "forbidden"

    def test_me_returns_token_claims(self, api_client) -> None:
        client, _, user_token = api_client
        data = client.get("/api/v1/auth/me", headers=_auth(user_token)).json()
        assert data["username"] == "testuser"
        assert data["role"] == "user"
        assert data["userId"]


class TestLogin:
    def test_valid_login(self, api_client) -> None:
        client, _, _ = api_client
        resp = _login(client, "testadmin", ADMIN_PASSWORD)
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["token"]
        assert data["user"]["username"] == "testadmin"
        assert data["user"]["role"] == "admin"
        assert "createdAt" in data["user"]
        assert "password" not in str(data["user"]).lower()

    def test_token_from_login_is_accepted(self, api_client) -> None:
        client, _, _ = api_client
        token = _login(client, "testuser", USER_PASSWORD).json()["token"]
        assert client.get("/api/v1/auth/me", headers=_auth(token)).status_code == 200

    def test_unknown_user_and_wrong_password_are_identical(self, api_client) -> None:
        client, _, _ = api_client
        unknown = _login(client, "no-such-user", "whatever1")
        wrong = _login(client, "testadmin", "wrong-password")
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()
        assert unknown.json()["error"]["code"] == "invalid_credentials"
        assert wrong.headers["Cache-Control"] == "no-store"

    def test_missing_fields_are_400_with_field_messages(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/login", json={})
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert set(error["fields"]) == {"username", "password"}

    def test_logout_records_audit_entry(self, api_client) -> None:
        client, admin_token, user_token = api_client
        assert client.post("/api/v1/auth/logout", headers=_auth(user_token)).json() == {"success": True}
        logs = client.get("/api/v1/audit-logs", headers=_auth(admin_token)).json()["logs"]
        assert logs[0]["action"] == "logout"
        assert logs[0]["actorName"] == "testuser"


class TestPasswordResetRoutes:
    def test_unknown_email_looks_like_success(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/request-password-reset", json={"email": "ghost@example.com"})
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        assert resp.headers["Cache-Control"] == "no-store"

    def test_token_not_echoed_outside_debug(self, api_client, monkeypatch) -> None:
        client, _, _ = api_client
        production = client.app.state.settings.model_copy(update={"debug": False})
        monkeypatch.setattr(client.app.state, "settings", production)

        resp = client.post("/api/v1/auth/request-password-reset", json={"email": "testuser@example.com"})
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

    def test_malformed_email_is_400(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/request-password-reset", json={"email": "not-an-email"})
        assert resp.status_code == 400
        assert "email" in resp.json()["error"]["fields"]

    def test_full_reset_flow_and_replay(self, api_client) -> None:
        client, admin_token, _ = api_client
        _create_user(client, admin_token, "resetme", password="oldpass1")

        resp = client.post("/api/v1/auth/request-password-reset", json={"email": "resetme@example.com"})
        token = resp.json()["token"]  # echoed because DEBUG=true in tests
        assert client.get("/api/v1/auth/verify-reset-token", params={"token": token}).json() == {"valid": True}

        resp = client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "newpass1"})
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

        assert _login(client, "resetme", "oldpass1").status_code == 401
        assert _login(client, "resetme", "newpass1").status_code == 200

        assert client.get("/api/v1/auth/verify-reset-token", params={"token": token}).json() == {"valid": False}
        replay = client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "third123"})
        assert replay.status_code == 400
        assert replay.json()["error"]["code"] == "invalid_or_expired_token"

    def test_password_field_alias_accepted(self, api_client) -> None:
        client, admin_token, _ = api_client
        _create_user(client, admin_token, "aliasuser")
        token = client.post("/api/v1/auth/request-password-reset", json={"email": "aliasuser@example.com"}).json()[
            "token"
        ]
        resp = client.post("/api/v1/auth/reset-password", json={"token": token, "password": "aliaspass1"})
        assert resp.status_code == 200
        assert _login(client, "aliasuser", "aliaspass1").status_code == 200

    def test_second_request_supersedes_first(self, api_client) -> None:
        client, admin_token, _ = api_client
        _create_user(client, admin_token, "twice")
        first = client.post("/api/v1/auth/request-password-reset", json={"email": "twice@example.com"}).json()["token"]
        second = client.post("/api/v1/auth/request-password-reset", json={"email": "twice@example.com"}).json()[
            "token"
        ]
        assert client.get("/api/v1/auth/verify-reset-token", params={"token": first}).json()["valid"] is False
        assert client.get("/api/v1/auth/verify-reset-token", params={"token": second}).json()["valid"] is True

    def test_short_new_password_is_400(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/reset-password", json={"token": "a" * 64, "newPassword": "abc"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_unknown_token(self, api_client) -> None:
        client, _, _ = api_client
        assert client.get("/api/v1/auth/verify-reset-token", params={"token": "nope"}).json() == {"valid": False}
        assert client.get("/api/v1/auth/verify-reset-token").json() == {"valid": False}
        resp = client.post("/api/v1/auth/reset-password", json={"token": "nope", "newPassword": "newpass1"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_or_expired_token"


class TestUserAdministration:
    def test_list_users_has_no_password_fields(self, api_client) -> None:
        client, admin_token, _ = api_client
        users = client.get("/api/v1/users", headers=_auth(admin_token)).json()
        assert {"testadmin", "testuser"} <= {u["username"] for u in users}
        for u in users:
            assert set(u) == {"id", "username", "email", "name", "role", "createdAt"}

    def test_duplicate_username_is_conflict(self, api_client) -> None:
        client, admin_token, _ = api_client
        resp = client.post(
            "/api/v1/users",
            json={"username": "testuser", "email": "fresh@example.com", "password": "secret1", "name": "Dup"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "conflict"

    def test_update_user(self, api_client) -> None:
        client, admin_token, _ = api_client
        created = _create_user(client, admin_token, "patchme")
        resp = client.patch(
            f"/api/v1/users/{created['id']}", json={"name": "Patched", "role": "admin"}, headers=_auth(admin_token)
        )
        assert resp.status_code == 200
        assert resp.json()["name"] == "Patched"
        assert resp.json()["role"] == "admin"

    def test_update_unknown_user_is_404(self, api_client) -> None:
        client, admin_token, _ = api_client
        resp = client.patch("/api/v1/users/missing-id", json={"name": "X"}, headers=_auth(admin_token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_delete_user(self, api_client) -> None:
        client, admin_token, _ = api_client
        created = _create_user(client, admin_token, "deleteme")
        assert client.delete(f"/api/v1/users/{created['id']}", headers=_auth(admin_token)).status_code == 204
        assert client.delete(f"/api/v1/users/{created['id']}", headers=_auth(admin_token)).status_code == 404

    def test_cannot_delete_self(self, api_client) -> None:
        client, admin_token, _ = api_client
        me = client.get("/api/v1/auth/me", headers=_auth(admin_token)).json()
        resp = client.delete(f"/api/v1/users/{me['userId']}", headers=_auth(admin_token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"


class TestProfileRoutes:
    def test_get_profile(self, api_client) -> None:
        client, _, user_token = api_client
        data = client.get("/api/v1/profile", headers=_auth(user_token)).json()
        assert data["username"] == "testuser"
        assert data["email"] == "testuser@example.com"

    def test_profile_requires_auth(self, api_client) -> None:
        client, _, _ = api_client
        assert client.get("/api/v1/profile").status_code == 401
        assert client.patch("/api/v1/profile", json={"name": "x"}).status_code == 401

    def test_only_one_password_field_is_400(self, api_client) -> None:
        client, _, user_token = api_client
        resp = client.patch("/api/v1/profile", json={"newPassword": "another1"}, headers=_auth(user_token))
        assert resp.status_code == 400
        assert "current_password" in resp.json()["error"]["fields"]

    def test_current_password_alone_names_new_password(self, api_client) -> None:
        client, _, user_token = api_client
        resp = client.patch("/api/v1/profile", json={"currentPassword": "userpass123"}, headers=_auth(user_token))
        assert resp.status_code == 400
        assert "new_password" in resp.json()["error"]["fields"]
        assert "body" not in resp.json()["error"]["fields"]

    def test_wrong_current_password_is_400(self, api_client) -> None:
        client, _, user_token = api_client
        resp = client.patch(
            "/api/v1/profile",
            json={"currentPassword": "wrong-one", "newPassword": "another1"},
            headers=_auth(user_token),
        )
        assert resp.status_code == 400
        assert "current_password" in resp.json()["error"]["fields"]


class TestAuditRoutes:
    def test_audit_log_page_shape(self, api_client) -> None:
        client, admin_token, _ = api_client
        _login(client, "testadmin", ADMIN_PASSWORD)
        data = client.get("/api/v1/audit-logs", params={"limit": 1}, headers=_auth(admin_token)).json()
        assert data["limit"] == 1
        assert data["offset"] == 0
        assert data["total"] >= 1
        assert len(data["logs"]) == 1

    def test_limit_out_of_range_is_400(self, api_client) -> None:
        client, admin_token, _ = api_client
        resp = client.get("/api/v1/audit-logs", params={"limit": 0}, headers=_auth(admin_token))
        assert resp.status_code == 400

    def test_csv_export(self, api_client) -> None:
        client, admin_token, _ = api_client
        _login(client, "testadmin", ADMIN_PASSWORD)
        resp = client.get("/api/v1/audit-logs/export", headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert "attachment" in resp.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(resp.text)))
        assert rows[0][:2] == ["created_at", "action"]
        assert any(row[1] == "login" for row in rows[1:])


def test_unknown_route_uses_error_envelope(api_client) -> None:
    client, _, _ = api_client
    resp = client.get("/api/v1/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"


def test_alice_end_to_end(api_client) -> None:
    """Admin creates alice; alice logs in, is kept out of admin routes, resets and re-logs in."""
    client, admin_token, _ = api_client
    alice = _create_user(client, admin_token, "alice", password="secret1")
    assert alice["role"] == "user"

    login = _login(client, "alice", "secret1")
    assert login.status_code == 200
    alice_token = login.json()["token"]

    me = client.get("/api/v1/auth/me", headers=_auth(alice_token)).json()
    assert me == {"userId": alice["id"], "username": "alice", "role": "user"}
    assert client.get("/api/v1/users", headers=_auth(alice_token)).status_code == 403

    profile = client.patch(
        "/api/v1/profile",
        json={"currentPassword": "secret1", "newPassword": "secret2", "name": "Alice Liddell"},
        headers=_auth(alice_token),
    )
    assert profile.status_code == 200
    assert profile.json()["name"] == "Alice Liddell"
    assert _login(client, "alice", "secret1").status_code == 401
    assert _login(client, "alice", "secret2").status_code == 200

    token = client.post("/api/v1/auth/request-password-reset", json={"email": "alice@example.com"}).json()["token"]
    assert client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "secret3"}).status_code == 200
    assert _login(client, "alice", "secret3").status_code == 200

    logs = client.get("/api/v1/audit-logs", params={"limit": 200}, headers=_auth(admin_token)).json()["logs"]
    actions = {log["action"] for log in logs}
    assert {"create_user", "login", "profile_update", "password_change", "password_reset_complete"} <= actions
