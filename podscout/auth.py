"""Google sign-in through Supabase Auth, plus the email-domain edge check.

The browser holds the Supabase access token in an HTTP-only cookie. Every
non-public request is checked against ``/auth/v1/user`` and the user's email
domain must be on the allow-list. Disabled entirely when auth is not
configured (local development).
"""
from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from typing import Any
from urllib.parse import quote, urlencode

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from podscout.config import Settings, get_settings
from podscout.errors import AuthenticationError, ProviderUnavailable

log = logging.getLogger(__name__)

SESSION_COOKIE = "podscout_session"
VERIFIER_COOKIE = "podscout_pkce"
NEXT_COOKIE = "podscout_next"

PUBLIC_PREFIXES = ("/login", "/auth/", "/static/", "/health")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def generate_code_verifier() -> str:
    return secrets.token_urlsafe(64)


def code_challenge(verifier: str) -> str:
    """S256 PKCE challenge: base64url(sha256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def email_domain_allowed(email: str | None, allowed_domains: list[str]) -> bool:
    if not email or "@" not in email:
        return False
    domain = email.rsplit("@", 1)[1].strip().lower()
    return domain in {d.strip().lower() for d in allowed_domains}


def is_public_path(path: str) -> bool:
    return path == "/login" or any(path.startswith(p) for p in PUBLIC_PREFIXES)


def safe_next(path: str | None) -> str:
    """Only same-site absolute paths are valid post-login targets."""
    if not path or not path.startswith("/") or path.startswith("//"):
        return "/"
    # browsers read "/\host" like "//host"
    if "\\" in path or any(ord(ch) < 32 or ord(ch) == 127 for ch in path):
        return "/"
    return path


def login_redirect(error: str | None = None, next_path: str | None = None) -> RedirectResponse:
    params = {}
    if error:
        params["error"] = error
    if next_path:
        params["next"] = next_path
    url = "/login" + (f"?{urlencode(params, quote_via=quote)}" if params else "")
    return RedirectResponse(url, status_code=303)


# ---------------------------------------------------------------------------
# Supabase Auth (GoTrue) REST client
# ---------------------------------------------------------------------------


class SupabaseAuth:
    def __init__(self, url: str, anon_key: str, *, transport: httpx.AsyncBaseTransport | None = None,
                 timeout: float = 15.0):
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> SupabaseAuth:
        return cls(settings.supabase_url, settings.supabase_anon_key)

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        headers = {"apikey": self.anon_key}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def authorize_url(self, redirect_to: str, challenge: str, provider: str = "google") -> str:
        params = {
            "provider": provider,
            "redirect_to": redirect_to,
            "code_challenge": challenge,
            "code_challenge_method": "s256",
        }
        return f"{self.url}/auth/v1/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str, verifier: str) -> dict[str, Any]:
        """Trade an authorization code for a session (``access_token``, ``user``, ...)."""
        try:
            async with self._client() as client:
                resp = await client.post(
                    f"{self.url}/auth/v1/token",
                    params={"grant_type": "pkce"},
                    headers=self._headers(),
                    json={"auth_code": code, "code_verifier": verifier},
                )
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"Auth provider unreachable: {exc}") from exc
        if not resp.is_success:
            raise AuthenticationError(_error_message(resp))
        return resp.json()

    async def get_user(self, access_token: str) -> dict[str, Any] | None:
        """Return the user for *access_token*, or None if the token is not valid."""
        try:
            async with self._client() as client:
                resp = await client.get(f"{self.url}/auth/v1/user", headers=self._headers(access_token))
        except httpx.HTTPError as exc:
            log.warning("Auth provider unreachable during session check: %s", exc)
            return None
        if not resp.is_success:
            return None
        return resp.json()

    async def sign_out(self, access_token: str) -> None:
        try:
            async with self._client() as client:
                await client.post(f"{self.url}/auth/v1/logout", headers=self._headers(access_token))
        except httpx.HTTPError as exc:
            log.warning("Sign-out request failed: %s", exc)


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {resp.status_code}"


# ---------------------------------------------------------------------------
# Edge check
# ---------------------------------------------------------------------------


class AuthMiddleware(BaseHTTPMiddleware):
    """Require a valid session from an allowed email domain on non-public paths.

    Browser routes are redirected to ``/login``; ``/api/`` routes get a JSON
    401/403 with a machine-readable ``reason``.
    """

    def __init__(self, app, settings: Settings | None = None, auth: SupabaseAuth | None = None):
        super().__init__(app)
        self._settings = settings
        self._auth = auth

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        settings = self._settings or get_settings()
        path = request.url.path
        if not settings.auth_enabled or is_public_path(path):
            return await call_next(request)

        auth = self._auth or SupabaseAuth.from_settings(settings)
        token = request.cookies.get(SESSION_COOKIE)
        user = await auth.get_user(token) if token else None
        if user is None:
            return _deny(request, "unauthenticated", 401)

        email = user.get("email")
        if not email_domain_allowed(email, settings.allowed_email_domains):
            log.warning("Rejected session for %s: domain not allowed", email)
            response = _deny(request, "unauthorized_domain", 403)
            response.delete_cookie(SESSION_COOKIE, path="/")
            return response

        request.state.user = user
        return await call_next(request)


def _deny(request: Request, reason: str, status_code: int) -> Response:
    path = request.url.path
    if path.startswith("/api/"):
        detail = "Not authenticated" if reason == "unauthenticated" else "Email domain not allowed"
        return JSONResponse({"detail": detail, "reason": reason}, status_code=status_code)
    if reason == "unauthenticated":
        return login_redirect(next_path=path)
    return login_redirect(error=reason)
