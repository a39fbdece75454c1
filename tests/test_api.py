"""
Identity Backend - HTTP API Tests

End-to-end flows through the FastAPI app: registration, availability,
login, session-bound authorization, refresh, logout and admin routes.

Run with: pytest tests/test_api.py -v
"""

import asyncio
from datetime import timedelta

from tests.conftest import auth_headers, create_active_user, login_user


PASSWORD = "SecureP@ss123"
BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _login(client, runtime, email="ana@example.com", role="client", sub_role=None):
    create_active_user(runtime, email, PASSWORD, role=role, sub_role=sub_role)
    tokens = login_user(client, email, PASSWORD)
    assert tokens is not None
    return tokens


def _admin(client, runtime, email="root@example.com"):
    tokens = _login(client, runtime, email=email, role="admin")
    return auth_headers(tokens["access_token"])


# =============================================================================
# SERVICE
# =============================================================================

class TestService:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["background"] == {
            "availability_sweep": False,
            "session_reaper": False,
            "daily_cleanup": False,
        }

    def test_security_headers_and_request_id(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"


# =============================================================================
# REGISTRATION
# =============================================================================

class TestRegistrationRoutes:

    def test_start_registration(self, client):
        response = client.post(
            "/api/v1/registration/start",
            json={"role": "client", "email": "New@Example.com", "password": PASSWORD},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["email"] == "new@example.com"
        assert body["status"] == "pending_verification"
        assert body["is_active"] is False
        assert body["title"] == "Client"

    def test_check_email(self, client):
        client.post(
            "/api/v1/registration/start",
            json={"role": "client", "email": "new@example.com", "password": PASSWORD},
        )

        response = client.get(
            "/api/v1/registration/check-email",
            params={"email": "new@example.com", "include_details": True},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["exists"] is True
        assert body["available"] is True
        assert body["user_type"] == "client"
        assert body["created_at"] is not None

    def test_check_email_invalid_format(self, client):
        response = client.get(
            "/api/v1/registration/check-email", params={"email": "not-an-email"}
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_EMAIL_FORMAT"

    def test_duplicate_active_email(self, client, runtime):
        create_active_user(runtime, "ana@example.com", PASSWORD)

        response = client.post(
            "/api/v1/registration/start",
            json={"role": "client", "email": "ana@example.com", "password": PASSWORD},
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "EMAIL_UNAVAILABLE"

    def test_invalid_role(self, client):
        response = client.post(
            "/api/v1/registration/start",
            json={"role": "superuser", "email": "x@example.com", "password": PASSWORD},
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_ROLE"

    def test_status(self, client):
        client.post(
            "/api/v1/registration/start",
            json={"role": "client", "email": "new@example.com", "password": PASSWORD},
        )

        body = client.get(
            "/api/v1/registration/status", params={"email": "new@example.com"}
        ).json()

        assert body["exists"] is True
        assert body["needs_cleanup"] is True


# =============================================================================
# LOGIN / SESSION FLOW
# =============================================================================

class TestLoginFlow:

    def test_pending_account_cannot_log_in(self, client):
        client.post(
            "/api/v1/registration/start",
            json={"role": "client", "email": "new@example.com", "password": PASSWORD},
        )

        response = client.post(
            "/api/v1/auth/login", json={"email": "new@example.com", "password": PASSWORD}
        )

        assert response.status_code == 423
        assert response.json()["error_code"] == "ACCOUNT_DISABLED"

    def test_wrong_password(self, client, runtime):
        create_active_user(runtime, "ana@example.com", PASSWORD)

        response = client.post(
            "/api/v1/auth/login",
            json={"email": "ana@example.com", "password": "WrongPassword1"},
        )

        assert response.status_code == 401
        assert response.json()["error_code"] == "INVALID_CREDENTIALS"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_full_session_lifecycle(self, client, runtime):
        create_active_user(runtime, "ana@example.com", PASSWORD)

        login = client.post(
            "/api/v1/auth/login",
            json={"email": "ANA@example.com", "password": PASSWORD},
            headers={"User-Agent": BROWSER_UA},
        )
        assert login.status_code == 200
        tokens = login.json()
        assert tokens["session_id"].startswith("SES")
        assert tokens["expires_in"] == 3600
        headers = auth_headers(tokens["access_token"])

        me = client.get("/api/v1/auth/me", headers=headers)
        assert me.status_code == 200
        assert me.json()["email"] == "ana@example.com"
        assert me.json()["title"] == "Client"

        sessions = client.get("/api/v1/auth/sessions", headers=headers).json()
        assert sessions["total"] == 1
        current = sessions["sessions"][0]
        assert current["is_current"] is True
        assert current["device"]["browser"] == "Chrome"
        assert current["activity_count"] >= 2

        refreshed = client.post(
            "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        assert refreshed.status_code == 200
        new_headers = auth_headers(refreshed.json()["access_token"])
        assert client.get("/api/v1/auth/me", headers=new_headers).status_code == 200

        logout = client.post("/api/v1/auth/logout", headers=new_headers)
        assert logout.status_code == 200
        assert logout.json()["sessions_invalidated"] == 1

        after = client.get("/api/v1/auth/me", headers=headers)
        assert after.status_code == 401
        assert after.json()["error_code"] == "TOKEN_INVALID"

        again = client.post(
            "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        assert again.status_code == 401

    def test_missing_token(self, client):
        response = client.get("/api/v1/auth/me")

        assert response.status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/api/v1/auth/me", headers=auth_headers("not.a.token"))

        assert response.status_code == 401

    def test_refresh_rejects_access_token(self, client, runtime):
        tokens = _login(client, runtime)

        response = client.post(
            "/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]}
        )

        assert response.status_code == 401

    def test_session_header_must_match_token(self, client, runtime):
        tokens = _login(client, runtime)

        response = client.get(
            "/api/v1/auth/me", headers=auth_headers(tokens["access_token"], "SESOTHER")
        )

        assert response.status_code == 401

    def test_logout_all_sessions(self, client, runtime):
        first = _login(client, runtime)
        login_user(client, "ana@example.com", PASSWORD)

        response = client.post(
            "/api/v1/auth/logout",
            json={"all_sessions": True},
            headers=auth_headers(first["access_token"]),
        )

        assert response.status_code == 200
        assert response.json()["sessions_invalidated"] == 2

    def test_history_and_stats(self, client, runtime):
        first = _login(client, runtime)
        client.post("/api/v1/auth/logout", headers=auth_headers(first["access_token"]))
        second = login_user(client, "ana@example.com", PASSWORD)
        headers = auth_headers(second["access_token"])

        history = client.get("/api/v1/auth/sessions/history", params={"limit": 5}, headers=headers)
        stats = client.get("/api/v1/auth/sessions/stats", headers=headers)

        assert history.json()["total"] == 2
        assert history.json()["sessions"][0]["id"] == second["session_id"]
        assert stats.json()["total_sessions"] == 2
        assert stats.json()["active_sessions"] == 1

    def test_cannot_end_foreign_session(self, client, runtime):
        ana = _login(client, runtime, email="ana@example.com")
        bob = _login(client, runtime, email="bob@example.com")

        response = client.delete(
            f"/api/v1/auth/sessions/{bob['session_id']}",
            headers=auth_headers(ana["access_token"]),
        )

        assert response.status_code == 404
        assert response.json()["error_code"] == "SESSION_NOT_FOUND"

    def test_end_own_session(self, client, runtime):
        first = _login(client, runtime)
        second = login_user(client, "ana@example.com", PASSWORD)

        response = client.delete(
            f"/api/v1/auth/sessions/{first['session_id']}",
            headers=auth_headers(second["access_token"]),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "offline"
        assert client.get(
            "/api/v1/auth/me", headers=auth_headers(first["access_token"])
        ).status_code == 401

    def test_end_session_with_session_header(self, client, runtime):
        first = _login(client, runtime)
        second = login_user(client, "ana@example.com", PASSWORD)

        response = client.delete(
            f"/api/v1/auth/sessions/{first['session_id']}",
            headers=auth_headers(second["access_token"], second["session_id"]),
        )

        assert response.status_code == 200
        assert response.json()["id"] == first["session_id"]
        assert response.json()["is_current"] is False
        assert client.get(
            "/api/v1/auth/me",
            headers=auth_headers(second["access_token"], second["session_id"]),
        ).status_code == 200


# =============================================================================
# ADMIN ROUTES
# =============================================================================

class TestAdminRoutes:

    def test_client_is_forbidden(self, client, runtime):
        tokens = _login(client, runtime)

        response = client.get(
            "/api/v1/registration/cache/stats", headers=auth_headers(tokens["access_token"])
        )

        assert response.status_code == 403

    def test_cache_stats_and_clear(self, client, runtime):
        headers = _admin(client, runtime)
        client.get("/api/v1/registration/check-email", params={"email": "x@example.com"})

        stats = client.get("/api/v1/registration/cache/stats", headers=headers)
        cleared = client.delete("/api/v1/registration/cache", headers=headers)

        assert stats.status_code == 200
        assert stats.json()["size"] >= 1
        assert cleared.status_code == 200
        assert runtime.availability.stats().size == 0

    def test_activate_employee(self, client, runtime):
        headers = _admin(client, runtime)
        started = client.post(
            "/api/v1/registration/start",
            json={
                "role": "employee",
                "email": "stylist@example.com",
                "password": PASSWORD,
                "sub_role": "staff",
            },
        ).json()

        response = client.post(
            "/api/v1/registration/activate",
            json={"role": "employee", "user_id": started["user_id"]},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "active"
        assert login_user(client, "stylist@example.com", PASSWORD) is not None

    def test_cleanup_one(self, client, runtime):
        headers = _admin(client, runtime)
        client.post(
            "/api/v1/registration/start",
            json={"role": "client", "email": "new@example.com", "password": PASSWORD},
        )

        response = client.post(
            "/api/v1/registration/cleanup",
            json={"email": "new@example.com", "role": "client", "step": "otp_verification"},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json() == {"cleaned": True, "message": "Client removed"}

    def test_bulk_cleanup(self, client, runtime):
        headers = _admin(client, runtime)

        response = client.post(
            "/api/v1/registration/cleanup/bulk",
            json={"stale_after_hours": 24},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json() == {
            "clients_deleted": 0,
            "employees_deleted": 0,
            "admins_deleted": 0,
        }

    def test_bulk_cleanup_uses_explicit_window(self, client, runtime):
        headers = _admin(client, runtime)
        client.post(
            "/api/v1/registration/start",
            json={"role": "client", "email": "new@example.com", "password": PASSWORD},
        )
        store = runtime.directory.store_for("client")
        record = asyncio.run(store.find_by_email("new@example.com"))
        asyncio.run(store.update_by_id(
            record.id, {"created_at": record.created_at - timedelta(hours=2)}
        ))

        response = client.post(
            "/api/v1/registration/cleanup/bulk",
            json={"stale_after_hours": 1.5},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json()["clients_deleted"] == 1

    def test_bulk_cleanup_rejects_zero_window(self, client, runtime):
        headers = _admin(client, runtime)

        response = client.post(
            "/api/v1/registration/cleanup/bulk",
            json={"stale_after_hours": 0},
            headers=headers,
        )

        assert response.status_code == 422

    def test_admin_ends_any_session(self, client, runtime):
        headers = _admin(client, runtime)
        ana = _login(client, runtime, email="ana@example.com")

        response = client.delete(
            f"/api/v1/auth/sessions/{ana['session_id']}", headers=headers
        )

        assert response.status_code == 200
        assert client.get(
            "/api/v1/auth/me", headers=auth_headers(ana["access_token"])
        ).status_code == 401

    def test_admin_stats_for_all_users(self, client, runtime):
        headers = _admin(client, runtime)
        _login(client, runtime, email="ana@example.com")

        mine = client.get("/api/v1/auth/sessions/stats", headers=headers).json()
        everyone = client.get(
            "/api/v1/auth/sessions/stats", params={"all_users": True}, headers=headers
        ).json()

        assert mine["total_sessions"] == 1
        assert everyone["total_sessions"] == 2
