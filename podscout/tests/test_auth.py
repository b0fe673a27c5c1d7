"""Tests for PKCE helpers, the Supabase client, and the domain allow-list middleware."""
from __future__ import annotations

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from podscout.auth import (
    SESSION_COOKIE,
    AuthMiddleware,
    SupabaseAuth,
    code_challenge,
    email_domain_allowed,
    is_public_path,
    safe_next,
)
from podscout.config import Settings
from podscout.errors import AuthenticationError

ALLOWED = ["keboola.com", "keboola.consulting"]


class FakeAuth:
    """Stands in for SupabaseAuth: tokens map to users."""

    def __init__(self, users: dict[str, dict]):
        self.users = users

    async def get_user(self, token: str):
        return self.users.get(token)


@pytest.fixture()
def auth_settings() -> Settings:
    return Settings(
        auth_enabled=True, allowed_email_domains=ALLOWED,
        supabase_url="https://sb.test", supabase_anon_key="anon",
    )


def _app(settings: Settings, auth) -> FastAPI:
    app = FastAPI()
    app.add_middleware(AuthMiddleware, settings=settings, auth=auth)

    @app.get("/api/ping")
    async def ping():
        return {"ok": True}

    @app.get("/dashboard")
    async def dashboard():
        return {"page": "dashboard"}

    @app.get("/login")
    async def login():
        return {"page": "login"}

    return app


@pytest.fixture()
def client(auth_settings):
    auth = FakeAuth({
        "good-token": {"email": "pavel@keboola.com"},
        "consulting-token": {"email": "Someone@Keboola.Consulting"},
        "outsider-token": {"email": "eve@gmail.com"},
    })
    with TestClient(_app(auth_settings, auth)) as c:
        yield c


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_code_challenge_known_vector(self):
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuSGDGBlIRk"

    @pytest.mark.parametrize("email,allowed", [
        ("pavel@keboola.com", True),
        ("PAVEL@KEBOOLA.COM", True),
        ("x@keboola.consulting", True),
        ("eve@gmail.com", False),
        ("eve@notkeboola.com", False),
        ("eve@keboola.com.evil.io", False),
        ("no-at-sign", False),
        (None, False),
    ])
    def test_email_domain_allowed(self, email, allowed):
        assert email_domain_allowed(email, ALLOWED) is allowed

    def test_public_paths(self):
        assert is_public_path("/login")
        assert is_public_path("/auth/callback")
        assert is_public_path("/static/app.js")
        assert is_public_path("/health")
        assert not is_public_path("/")
        assert not is_public_path("/api/podcasts")

    @pytest.mark.parametrize("value,expected", [
        ("/podcasts", "/podcasts"), ("/podcasts?status=contacted", "/podcasts?status=contacted"),
        (None, "/"), ("https://evil.io", "/"), ("//evil.io", "/"),
        ("/\\evil.example", "/"), ("/ok\\path", "/"), ("/\tevil", "/"), ("/a\r\nSet-Cookie: x=1", "/"),
    ])
    def test_safe_next(self, value, expected):
        assert safe_next(value) == expected


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class TestMiddleware:
    def test_api_without_session_is_401(self, client):
        resp = client.get("/api/ping")
        assert resp.status_code == 401
        assert resp.json()["reason"] == "unauthenticated"

    def test_browser_without_session_redirects_to_login(self, client):
        resp = client.get("/dashboard", follow_redirects=False)
        assert resp.status_code == 303
        location = urlparse(resp.headers["location"])
        assert location.path == "/login"
        assert parse_qs(location.query) == {"next": ["/dashboard"]}

    def test_invalid_token_is_unauthenticated(self, client):
        client.cookies.set(SESSION_COOKIE, "forged")
        assert client.get("/api/ping").json()["reason"] == "unauthenticated"

    def test_allowed_domain_passes(self, client):
        client.cookies.set(SESSION_COOKIE, "good-token")
        assert client.get("/api/ping").json() == {"ok": True}

    def test_domain_match_is_case_insensitive(self, client):
        client.cookies.set(SESSION_COOKIE, "consulting-token")
        assert client.get("/api/ping").status_code == 200

    def test_outside_domain_api_is_403_and_clears_cookie(self, client):
        client.cookies.set(SESSION_COOKIE, "outsider-token")
        resp = client.get("/api/ping")
        assert resp.status_code == 403
        assert resp.json()["reason"] == "unauthorized_domain"
        assert f"{SESSION_COOKIE}=" in resp.headers["set-cookie"]

    def test_outside_domain_browser_redirect(self, client):
        client.cookies.set(SESSION_COOKIE, "outsider-token")
        resp = client.get("/dashboard", follow_redirects=False)
        location = urlparse(resp.headers["location"])
        assert location.path == "/login"
        assert parse_qs(location.query) == {"error": ["unauthorized_domain"]}

    def test_public_path_needs_no_session(self, client):
        assert client.get("/login").json() == {"page": "login"}

    def test_disabled_auth_lets_everything_through(self):
        settings = Settings(auth_enabled=False)
        with TestClient(_app(settings, FakeAuth({}))) as c:
            assert c.get("/api/ping").status_code == 200


# ---------------------------------------------------------------------------
# Supabase REST client
# ---------------------------------------------------------------------------


class TestSupabaseAuth:
    def test_authorize_url(self):
        auth = SupabaseAuth("https://sb.test/", "anon")
        url = urlparse(auth.authorize_url("http://localhost/auth/callback", "challenge123"))
        assert url.netloc == "sb.test"
        assert url.path == "/auth/v1/authorize"
        params = parse_qs(url.query)
        assert params["provider"] == ["google"]
        assert params["redirect_to"] == ["http://localhost/auth/callback"]
        assert params["code_challenge"] == ["challenge123"]
        assert params["code_challenge_method"] == ["s256"]

    @pytest.mark.asyncio
    async def test_exchange_code(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"access_token": "tok", "user": {"email": "a@keboola.com"}})

        auth = SupabaseAuth("https://sb.test", "anon", transport=httpx.MockTransport(handler))
        session = await auth.exchange_code("the-code", "the-verifier")
        assert session["access_token"] == "tok"

        request = seen[0]
        assert request.url.path == "/auth/v1/token"
        assert request.url.params["grant_type"] == "pkce"
        assert request.headers["apikey"] == "anon"
        assert json.loads(request.content) == {"auth_code": "the-code", "code_verifier": "the-verifier"}

    @pytest.mark.asyncio
    async def test_exchange_code_rejected(self):
        def handler(request):
            return httpx.Response(400, json={"error_description": "Email domain not allowed"})

        auth = SupabaseAuth("https://sb.test", "anon", transport=httpx.MockTransport(handler))
        with pytest.raises(AuthenticationError, match="not allowed"):
            await auth.exchange_code("c", "v")

    @pytest.mark.asyncio
    async def test_get_user(self):
        def handler(request):
            if request.headers.get("authorization") == "Bearer good":
                return httpx.Response(200, json={"email": "a@keboola.com"})
            return httpx.Response(401, json={"msg": "invalid JWT"})

        auth = SupabaseAuth("https://sb.test", "anon", transport=httpx.MockTransport(handler))
        assert (await auth.get_user("good"))["email"] == "a@keboola.com"
        assert await auth.get_user("bad") is None

    @pytest.mark.asyncio
    async def test_get_user_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        auth = SupabaseAuth("https://sb.test", "anon", transport=httpx.MockTransport(handler))
        assert await auth.get_user("any") is None
