from projectdesk.service.runtime import get_runtime

PASSWORD = "Aa1!aaaa"
NEW_PASSWORD = "Bb2@bbbb"


def _register(client, email="a@x.com", username="alice", password=PASSWORD, **extra):
    return client.post(
        "/api/v1/auth/register",
        json={"email": email, "username": username, "password": password, **extra},
    )


def _login(client, email="a@x.com", password=PASSWORD):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


class TestRegister:
    def test_register_returns_envelope(self, client, outbox):
        resp = _register(client, email="Alice@X.com", username="Alice_1", fullName="Alice Liddell")
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["statusCode"] == 201
        assert "error" not in body
        user = body["data"]["user"]
        assert user["email"] == "alice@x.com"
        assert user["username"] == "alice_1"
        assert user["full_name"] == "Alice Liddell"
        assert user["is_email_verified"] is False
        assert "password_hash" not in user
        assert outbox.last_token("verify", "alice@x.com")

    def test_duplicate_email_is_a_conflict(self, client, outbox):
        _register(client)
        resp = _register(client, username="alice2")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"
        assert resp.json()["error"]["details"] == {"field": "email"}

    def test_weak_password_is_rejected(self, client, outbox):
        resp = _register(client, password="password")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"
        assert outbox.sent == []

    def test_mailer_failure_rolls_back(self, client, outbox):
        outbox.ok = False
        resp = _register(client)
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "dependency_failure"
        assert get_runtime().store.get_user_by_email("a@x.com") is None

        outbox.ok = True
        assert _register(client).status_code == 201

    def test_mailer_exception_is_a_dependency_failure(self, client, monkeypatch):
        def _refuse(*args):
            raise ConnectionRefusedError("smtp down")

        monkeypatch.setattr(get_runtime().email, "send_email_verification", _refuse)
        resp = _register(client)
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "dependency_failure"
        assert get_runtime().store.get_user_by_email("a@x.com") is None

    def test_registration_can_be_disabled(self, client, outbox, monkeypatch):
        monkeypatch.setattr(get_runtime().settings, "allow_registration", False)
        resp = _register(client)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"


class TestVerification:
    def test_link_verifies_once(self, client, outbox):
        _register(client)
        token = outbox.last_token("verify")
        resp = client.get("/api/v1/auth/verify-email", params={"token": token})
        assert resp.status_code == 200
        assert resp.json()["data"]["is_email_verified"] is True

        again = client.post("/api/v1/auth/verify-email", json={"token": token})
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "validation_error"

    def test_resend_is_throttled(self, client, outbox):
        _register(client)
        resp = client.post("/api/v1/auth/resend-verification", json={"email": "a@x.com"})
        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) >= 1

    def test_resend_for_unknown_email(self, client, outbox):
        resp = client.post("/api/v1/auth/resend-verification", json={"email": "no@x.com"})
        assert resp.status_code == 404


class TestLoginAndCookies:
    def test_login_sets_hardened_cookies(self, client, outbox):
        _register(client)
        resp = _login(client)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["token_type"] == "Bearer"
        assert data["user"]["email"] == "a@x.com"

        cookies = resp.headers.get_list("set-cookie")
        assert len(cookies) == 2
        for header in cookies:
            lowered = header.lower()
            assert "httponly" in lowered
            assert "samesite=strict" in lowered
            assert "path=/" in lowered
        assert any(h.startswith("accessToken=") for h in cookies)
        assert any(h.startswith("refreshToken=") for h in cookies)

    def test_cookie_authenticates_me(self, client, outbox):
        _register(client)
        _login(client)
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        assert resp.json()["data"]["username"] == "alice"

    def test_bad_credentials(self, client, outbox):
        _register(client)
        wrong = _login(client, password="Zz9!zzzz")
        unknown = _login(client, email="b@x.com")
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json()["message"] == unknown.json()["message"]

    def test_sixth_login_is_refused(self, client, outbox):
        _register(client)
        for _ in range(5):
            assert _login(client).status_code == 200
        resp = _login(client)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "too_many_sessions"

    def test_me_requires_a_token(self, client):
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_garbage_bearer_is_token_invalid(self, client):
        resp = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_invalid"


class TestRefresh:
    def test_rotation_and_replay_over_body(self, client, signup):
        alice = signup("a@x.com", "alice")
        first = client.post("/api/v1/auth/refresh-token", json={"refreshToken": alice["refresh_token"]})
        assert first.status_code == 200
        rotated = first.json()["data"]["refresh_token"]
        assert rotated != alice["refresh_token"]
        client.cookies.clear()

        replay = client.post("/api/v1/auth/refresh-token", json={"refresh_token": alice["refresh_token"]})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "token_invalid"

        assert client.post("/api/v1/auth/refresh-token", json={"refreshToken": rotated}).status_code == 200

    def test_refresh_from_cookie(self, client, outbox):
        _register(client)
        _login(client)
        resp = client.post("/api/v1/auth/refresh-token")
        assert resp.status_code == 200
        assert client.cookies.get("refreshToken") == resp.json()["data"]["refresh_token"]

    def test_missing_refresh_token(self, client):
        resp = client.post("/api/v1/auth/refresh-token")
        assert resp.status_code == 400


class TestLogout:
    def test_logout_revokes_presented_token(self, client, signup):
        alice = signup("a@x.com", "alice")
        resp = client.post(
            "/api/v1/auth/logout",
            json={"refreshToken": alice["refresh_token"]},
            headers=alice["headers"],
        )
        assert resp.status_code == 200
        assert any(h.startswith("accessToken=") for h in resp.headers.get_list("set-cookie"))
        again = client.post("/api/v1/auth/refresh-token", json={"refreshToken": alice["refresh_token"]})
        assert again.status_code == 401

    def test_logout_all(self, client, signup):
        alice = signup("a@x.com", "alice")
        _login(client)
        client.cookies.clear()
        resp = client.post("/api/v1/auth/logout-all", headers=alice["headers"])
        assert resp.status_code == 200
        assert resp.json()["data"]["sessions_revoked"] == 2


class TestPasswords:
    def test_change_password_revokes_every_session(self, client, signup):
        alice = signup("a@x.com", "alice")
        resp = client.post(
            "/api/v1/auth/change-password",
            json={"oldPassword": PASSWORD, "newPassword": NEW_PASSWORD},
            headers=alice["headers"],
        )
        assert resp.status_code == 200
        refresh = client.post("/api/v1/auth/refresh-token", json={"refreshToken": alice["refresh_token"]})
        assert refresh.status_code == 401
        assert _login(client).status_code == 401
        assert _login(client, password=NEW_PASSWORD).status_code == 200

    def test_forgot_password_answers_the_same_for_unknown_accounts(self, client, outbox):
        _register(client)
        known = client.post("/api/v1/auth/forgot-password", json={"email": "a@x.com"})
        unknown = client.post("/api/v1/auth/forgot-password", json={"email": "z@x.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json()["message"] == unknown.json()["message"]
        assert outbox.last_token("reset", "z@x.com") is None

    def test_reset_password_once(self, client, outbox):
        _register(client)
        client.post("/api/v1/auth/forgot-password", json={"email": "a@x.com"})
        token = outbox.last_token("reset", "a@x.com")

        resp = client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": NEW_PASSWORD})
        assert resp.status_code == 200
        assert _login(client, password=NEW_PASSWORD).status_code == 200

        reuse = client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": "Cc3#cccc"})
        assert reuse.status_code == 400


class TestProfile:
    def test_update_profile_email_needs_verification(self, client, signup, outbox):
        alice = signup("a@x.com", "alice")
        resp = client.put("/api/v1/auth/me", json={"email": "new@x.com"}, headers=alice["headers"])
        assert resp.status_code == 200
        assert resp.json()["data"]["email"] == "new@x.com"
        assert resp.json()["data"]["is_email_verified"] is False
        assert outbox.last_token("verify", "new@x.com")

    def test_empty_profile_update(self, client, signup):
        alice = signup("a@x.com", "alice")
        resp = client.put("/api/v1/auth/me", json={}, headers=alice["headers"])
        assert resp.status_code == 422

    def test_deactivate_blocks_further_use(self, client, signup):
        alice = signup("a@x.com", "alice")
        assert client.put("/api/v1/auth/me/deactivate", headers=alice["headers"]).status_code == 200
        assert client.get("/api/v1/auth/me", headers=alice["headers"]).status_code == 401
        assert _login(client).status_code == 401

    def test_delete_account(self, client, signup):
        alice = signup("a@x.com", "alice")
        assert client.delete("/api/v1/auth/me", headers=alice["headers"]).status_code == 200
        assert client.get("/api/v1/auth/me", headers=alice["headers"]).status_code == 401


class TestOperationalSurface:
    def test_healthcheck(self, client):
        resp = client.get("/api/v1/healthcheck")
        assert resp.status_code == 200
        assert resp.json()["message"] == "Server is running"

    def test_healthz_reports_dependencies(self, client):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"] == {"status": "healthy", "type": "memory"}
        assert body["checks"]["redis"] == {"status": "not_configured"}

    def test_healthz_unhealthy_store(self, client, monkeypatch):
        def _down():
            raise RuntimeError("down")

        monkeypatch.setattr(get_runtime().store, "verify_connection", _down)
        resp = client.get("/healthz")
        assert resp.status_code == 503
        assert resp.json()["checks"]["database"]["status"] == "unhealthy"

    def test_request_id_and_security_headers(self, client):
        resp = client.get("/api/v1/healthcheck", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert "no-store" in resp.headers["Cache-Control"]
        assert resp.json()["request_id"] == "req-123"
