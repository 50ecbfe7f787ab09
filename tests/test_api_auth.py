"""
tests/test_api_auth.py -- Integration tests for /api/v1/auth/* through the real ASGI stack.

Coverage:
  - signup: 201 without credential fields, 409 duplicate, 422 short password
  - signin: token pair + Bearer cookie + no-store, 401 bad credentials, 429 rate limit
  - me: cookie and Authorization header both authenticate; 401 without either
  - refresh: new access token; superseded refresh token -> 404
  - signout: revoked access token no longer authenticates
  - forgot/reset password: full flow, replay rejected, malformed email 404
  - error envelope shape on domain errors
"""

from __future__ import annotations

PASSWORD = "correct horse battery"


def _signup(client, email="api@example.com", password=PASSWORD):
    return client.post("/api/v1/auth/signup", json={"email": email, "password": password})


def _signin(client, email="api@example.com", password=PASSWORD):
    return client.post("/api/v1/auth/signin", json={"email": email, "password": password})


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestSignupRoute:
    def test_signup_created(self, api_client):
        resp = _signup(api_client.client, email="New@Example.com")
        assert resp.status_code == 201
        body = resp.json()
        assert body["email"] == "new@example.com"
        assert body["role"] == "user"
        assert "password" not in body
        assert "hashed_password" not in body
        assert "refresh_token_hash" not in body

    def test_signup_duplicate_conflict(self, api_client):
        _signup(api_client.client)
        resp = _signup(api_client.client)
        assert resp.status_code == 409
        assert resp.json() == {"error": {"code": "conflict", "message": "User already exists", "detail": None}}

    def test_signup_malformed_email_rejected(self, api_client):
        resp = _signup(api_client.client, email="bob")
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "Invalid email"

        forgot = api_client.client.post("/api/v1/auth/forgot-password", json={"email": "bob"})
        assert forgot.status_code == 404

    def test_signup_short_password_rejected(self, api_client):
        resp = _signup(api_client.client, password="short")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"
        assert "short" not in resp.text


class TestSigninRoute:
    def test_signin_returns_tokens_and_cookie(self, api_client):
        _signup(api_client.client)
        resp = _signin(api_client.client)

        assert resp.status_code == 200
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["access_token"] and body["refresh_token"]
        assert resp.headers["cache-control"] == "no-store"
        set_cookie = resp.headers["set-cookie"]
        assert set_cookie.startswith(f"Bearer={body['access_token']}")
        assert "httponly" in set_cookie.lower()

    def test_signin_bad_credentials(self, api_client):
        _signup(api_client.client)
        wrong_password = _signin(api_client.client, password="wrong password")
        unknown_email = _signin(api_client.client, email="ghost@example.com")

        assert wrong_password.status_code == 401
        assert unknown_email.status_code == 401
        assert wrong_password.json() == unknown_email.json()
        assert wrong_password.json()["error"]["code"] == "bad_credentials"

    def test_signin_rate_limited(self, api_client):
        for _ in range(10):
            assert _signin(api_client.client, email="ghost@example.com").status_code == 401
        resp = _signin(api_client.client, email="ghost@example.com")
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
        assert "retry-after" in resp.headers


class TestSessionRoutes:
    def test_me_requires_auth(self, api_client):
        resp = api_client.client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_with_cookie_and_header(self, api_client):
        _signup(api_client.client)
        tokens = _signin(api_client.client).json()

        # Cookie set by signin is sent automatically.
        assert api_client.client.get("/api/v1/auth/me").json()["email"] == "api@example.com"

        api_client.client.cookies.clear()
        resp = api_client.client.get("/api/v1/auth/me", headers=_bearer(tokens["access_token"]))
        assert resp.status_code == 200
        assert resp.json()["email"] == "api@example.com"

    def test_refresh_token_is_not_an_access_token(self, api_client):
        _signup(api_client.client)
        tokens = _signin(api_client.client).json()
        api_client.client.cookies.clear()
        resp = api_client.client.get("/api/v1/auth/me", headers=_bearer(tokens["refresh_token"]))
        assert resp.status_code == 401

    def test_refresh_issues_new_access_token(self, api_client):
        _signup(api_client.client)
        first = _signin(api_client.client).json()
        second = _signin(api_client.client).json()
        api_client.client.cookies.clear()

        resp = api_client.client.post("/api/v1/auth/refresh", json={"refresh_token": second["refresh_token"]})
        assert resp.status_code == 200
        access = resp.json()["access_token"]
        assert "Bearer=" in resp.headers["set-cookie"]
        api_client.client.cookies.clear()
        assert api_client.client.get("/api/v1/auth/me", headers=_bearer(access)).status_code == 200

        stale = api_client.client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert stale.status_code == 404
        assert stale.json()["error"]["message"] == "Invalid token"

    def test_signout_revokes_access_token(self, api_client):
        _signup(api_client.client)
        tokens = _signin(api_client.client).json()
        api_client.client.cookies.clear()

        resp = api_client.client.post("/api/v1/auth/signout", headers=_bearer(tokens["access_token"]))
        assert resp.status_code == 200
        assert resp.json() == {"message": "Signed out."}

        assert api_client.client.get("/api/v1/auth/me", headers=_bearer(tokens["access_token"])).status_code == 401
        refresh = api_client.client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refresh.status_code == 404

    def test_signout_requires_auth(self, api_client):
        assert api_client.client.post("/api/v1/auth/signout").status_code == 401


class TestPasswordResetRoutes:
    def test_forgot_and_reset_flow(self, api_client):
        _signup(api_client.client)

        forgot = api_client.client.post("/api/v1/auth/forgot-password", json={"email": "API@example.com"})
        assert forgot.status_code == 200
        assert forgot.headers["cache-control"] == "no-store"
        otp = forgot.json()["otp"]

        reset_body = {"email": "api@example.com", "otp": otp, "new_password": "a whole new password"}
        reset = api_client.client.post("/api/v1/auth/reset-password", json=reset_body)
        assert reset.status_code == 200
        assert reset.json()["email"] == "api@example.com"

        assert _signin(api_client.client, password="a whole new password").status_code == 200

        replay = api_client.client.post("/api/v1/auth/reset-password", json=reset_body)
        assert replay.status_code == 404
        assert replay.json()["error"]["code"] == "not_found"

    def test_expired_otp_rejected(self, api_client):
        _signup(api_client.client)
        otp = api_client.client.post("/api/v1/auth/forgot-password", json={"email": "api@example.com"}).json()["otp"]
        api_client.clock.advance(301)

        resp = api_client.client.post(
            "/api/v1/auth/reset-password",
            json={"email": "api@example.com", "otp": otp, "new_password": "a whole new password"},
        )
        assert resp.status_code == 404

    def test_malformed_email(self, api_client):
        resp = api_client.client.post("/api/v1/auth/forgot-password", json={"email": "not-an-email"})
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "Invalid email"

    def test_unknown_user(self, api_client):
        resp = api_client.client.post("/api/v1/auth/forgot-password", json={"email": "ghost@example.com"})
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "User not found"
