"""Integration tests for the HTTP auth flow.

Covers login, token refresh, logout, profile, password change, admin-only
registration and the error envelope returned for each failure kind.
"""

import pytest
from fastapi.testclient import TestClient

from pantry_auth import app as app_module
from pantry_auth.service.runtime import get_runtime
from pantry_auth.storage.models import Role

PASSWORD = "Kitchen42"


@pytest.fixture
def client():
    return TestClient(app_module.app)


def _create_user(username, email, role=Role.STAFF, location_id=None, password=PASSWORD):
    runtime = get_runtime()
    return runtime.store.create_user(
        username,
        email,
        runtime.hasher.hash(password),
        role=role,
        location_id=location_id,
        first_name=username.capitalize(),
        last_name="Tester",
    )


def _login(client, identifier, password=PASSWORD):
    response = client.post("/v1/auth/login", json={"username": identifier, "password": password})
    assert response.status_code == 200, response.text
    return response.json()["data"]["tokens"]


def _bearer(tokens):
    return {"Authorization": f"Bearer {tokens['access_token']}"}


@pytest.fixture
def chef():
    return _create_user("chefanna", "anna@example.com", Role.HEAD_CHEF, "loc-1")


@pytest.fixture
def admin():
    return _create_user("boss", "boss@example.com", Role.ADMIN)


class TestLogin:
    def test_login_with_username(self, client, chef):
        response = client.post(
            "/v1/auth/login", json={"username": "chefanna", "password": PASSWORD}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["data"]["user"]["id"] == chef.id
        assert body["data"]["user"]["role"] == "head_chef"
        assert "password_hash" not in body["data"]["user"]
        tokens = body["data"]["tokens"]
        assert tokens["token_type"] == "bearer"
        assert tokens["expires_in"] == "24h"
        assert tokens["access_token"] and tokens["refresh_token"]

    def test_login_with_email(self, client, chef):
        assert _login(client, "ANNA@example.com")["access_token"]

    def test_wrong_password_is_rejected(self, client, chef):
        response = client.post(
            "/v1/auth/login", json={"username": "chefanna", "password": "Wrong1234"}
        )

        assert response.status_code == 401
        body = response.json()
        assert body["status"] == "error"
        assert body["error"]["code"] == "credentials_invalid"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_inactive_user_cannot_login(self, client, chef):
        get_runtime().store.set_user_active(chef.id, False)

        response = client.post(
            "/v1/auth/login", json={"username": "chefanna", "password": PASSWORD}
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "credentials_invalid"

    def test_malformed_body_is_a_validation_error(self, client):
        response = client.post("/v1/auth/login", json={"username": "ab"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"


class TestRefreshAndLogout:
    def test_refresh_rotates_tokens(self, client, chef):
        tokens = _login(client, "chefanna")

        response = client.post(
            "/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        assert response.status_code == 200
        rotated = response.json()["data"]["tokens"]
        assert rotated["refresh_token"] != tokens["refresh_token"]

        replay = client.post("/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "session_not_found"

    def test_refresh_with_garbage_token(self, client):
        response = client.post("/v1/auth/refresh", json={"refresh_token": "not.a.token"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "token_invalid"

    def test_refresh_with_non_ascii_token(self, client, chef):
        header, payload, _ = _login(client, "chefanna")["refresh_token"].split(".")

        response = client.post(
            "/v1/auth/refresh", json={"refresh_token": f"{header}.{payload}.ééé"}
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "token_invalid"

    def test_logout_is_idempotent(self, client, chef):
        tokens = _login(client, "chefanna")

        for _ in range(2):
            response = client.post(
                "/v1/auth/logout", json={"refresh_token": tokens["refresh_token"]}
            )
            assert response.status_code == 200
        assert client.post("/v1/auth/logout", json={}).status_code == 200

        refresh = client.post("/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refresh.json()["error"]["code"] == "session_not_found"

    def test_logout_all_revokes_every_session(self, client, chef):
        first = _login(client, "chefanna")
        second = _login(client, "chefanna")

        response = client.post("/v1/auth/logout-all", headers=_bearer(first))
        assert response.status_code == 200
        assert response.json()["data"]["revoked"] == 2

        for tokens in (first, second):
            refresh = client.post(
                "/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
            )
            assert refresh.status_code == 401


class TestProfile:
    def test_profile_requires_token(self, client):
        response = client.get("/v1/auth/profile")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "token_missing"

    def test_profile_rejects_refresh_token_as_bearer(self, client, chef):
        tokens = _login(client, "chefanna")

        response = client.get(
            "/v1/auth/profile", headers={"Authorization": f"Bearer {tokens['refresh_token']}"}
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "token_invalid"

    def test_profile_reports_active_sessions(self, client, chef):
        tokens = _login(client, "chefanna")
        _login(client, "chefanna")

        response = client.get("/v1/auth/profile", headers=_bearer(tokens))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user"]["username"] == "chefanna"
        assert data["user"]["location_id"] == "loc-1"
        assert data["active_sessions"] == 2


class TestChangePassword:
    def test_wrong_current_password(self, client, chef):
        tokens = _login(client, "chefanna")

        response = client.put(
            "/v1/auth/change-password",
            headers=_bearer(tokens),
            json={
                "current_password": "Wrong1234",
                "new_password": "Pantry2024",
                "confirm_password": "Pantry2024",
            },
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_current_password"

    def test_mismatched_confirmation(self, client, chef):
        tokens = _login(client, "chefanna")

        response = client.put(
            "/v1/auth/change-password",
            headers=_bearer(tokens),
            json={
                "current_password": PASSWORD,
                "new_password": "Pantry2024",
                "confirm_password": "Pantry2025",
            },
        )
        assert response.status_code == 422

    def test_change_password_signs_out_everywhere(self, client, chef):
        tokens = _login(client, "chefanna")

        response = client.put(
            "/v1/auth/change-password",
            headers=_bearer(tokens),
            json={
                "current_password": PASSWORD,
                "new_password": "Pantry2024",
                "confirm_password": "Pantry2024",
            },
        )
        assert response.status_code == 200
        assert response.json()["data"]["revoked"] == 1

        refresh = client.post("/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refresh.status_code == 401

        old = client.post("/v1/auth/login", json={"username": "chefanna", "password": PASSWORD})
        assert old.status_code == 401
        assert _login(client, "chefanna", "Pantry2024")["access_token"]


class TestRegister:
    def _payload(self, **overrides):
        payload = {
            "username": "newcook",
            "email": "NewCook@Example.com",
            "password": "Pantry2024",
            "confirm_password": "Pantry2024",
            "first_name": "New",
            "last_name": "Cook",
            "role": "staff",
            "location_id": "loc-2",
        }
        payload.update(overrides)
        return payload

    def test_admin_can_register_users(self, client, admin):
        tokens = _login(client, "boss")

        response = client.post("/v1/auth/register", headers=_bearer(tokens), json=self._payload())

        assert response.status_code == 201
        user = response.json()["data"]["user"]
        assert user["email"] == "newcook@example.com"
        assert user["role"] == "staff"
        assert response.headers["Location"] == f"/v1/users/{user['id']}"
        assert _login(client, "newcook", "Pantry2024")["access_token"]

    def test_non_admin_is_forbidden(self, client, chef):
        tokens = _login(client, "chefanna")

        response = client.post("/v1/auth/register", headers=_bearer(tokens), json=self._payload())

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "insufficient_permissions"
        assert "WWW-Authenticate" not in response.headers

    def test_anonymous_is_unauthorized(self, client):
        response = client.post("/v1/auth/register", json=self._payload())

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "token_missing"

    def test_duplicate_username_conflicts(self, client, admin, chef):
        tokens = _login(client, "boss")

        response = client.post(
            "/v1/auth/register",
            headers=_bearer(tokens),
            json=self._payload(username="chefanna"),
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"
        assert response.json()["error"]["details"] == {"field": "username"}

    @pytest.mark.parametrize(
        "overrides",
        [
            {"password": "weakpass", "confirm_password": "weakpass"},
            {"confirm_password": "Pantry2025"},
            {"username": "bad name"},
            {"email": "not-an-email"},
            {"role": "owner"},
        ],
    )
    def test_invalid_payloads(self, client, admin, overrides):
        tokens = _login(client, "boss")

        response = client.post(
            "/v1/auth/register", headers=_bearer(tokens), json=self._payload(**overrides)
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"


def test_request_id_is_echoed(client):
    response = client.get("/healthz", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.json()["checks"]["database"]["type"] == "memory"


def test_error_envelope_carries_request_id(client):
    response = client.get("/v1/auth/profile", headers={"X-Request-ID": "req-456"})

    assert response.status_code == 401
    assert response.json()["request_id"] == "req-456"


def test_unknown_route_uses_envelope(client):
    response = client.get("/v1/nowhere")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not_found"
