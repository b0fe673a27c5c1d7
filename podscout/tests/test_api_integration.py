"""Integration tests for the FastAPI endpoints.

Uses TestClient with an in-memory database and a mocked model client.
"""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from podscout.config import OrganizationContext, Settings, get_settings
from podscout.errors import AuthenticationError, ProviderError
from podscout.gemini import Attachment, GeminiClient
from podscout.models import Base, PodcastAnalysis


def _analysis(score=82, recommendation="YES") -> str:
    return json.dumps({
        "hostName": "Ann Host", "overallScore": score, "recommendation": recommendation,
        "audienceFitScore": 70, "pitchStrategy": {"suggestedTopics": ["Close faster"]},
        "fullAnalysis": "Good fit.",
    })


def _frames(body: str) -> list[dict]:
    return [json.loads(chunk[len("data: "):]) for chunk in body.split("\n\n") if chunk.startswith("data: ")]


@pytest.fixture()
def test_db():
    """In-memory SQLite shared across connections via StaticPool."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return engine, TestSession


@pytest.fixture()
def llm():
    client = MagicMock(spec=GeminiClient)
    client.generate = AsyncMock(return_value=_analysis())
    return client


@pytest.fixture()
def client(test_db, llm, monkeypatch):
    """FastAPI TestClient with overridden session, settings and model client."""
    monkeypatch.setenv("PODSCOUT_AUTH_ENABLED", "0")
    get_settings.cache_clear()
    _, TestSession = test_db
    from podscout.app import (
        app, db_session, get_app_settings, get_context, get_llm_client, session_factory,
    )

    def override_db_session():
        session = TestSession()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    settings = Settings(gemini_api_key="test-key", discovery_delay_seconds=0, auth_enabled=False)
    app.dependency_overrides[db_session] = override_db_session
    app.dependency_overrides[session_factory] = lambda: TestSession
    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_llm_client] = lambda: llm
    app.dependency_overrides[get_context] = lambda: OrganizationContext("Acme", "Jane Roe", "ABOUT ACME")
    with patch("podscout.app.init_db"), TestClient(app, raise_server_exceptions=True) as c:
        yield c, TestSession
    app.dependency_overrides.clear()
    get_settings.cache_clear()


@pytest.fixture()
def seeded_client(client):
    """Client with one stored podcast."""
    c, TestSession = client
    session = TestSession()
    row = PodcastAnalysis(
        podcast_name="CFO Talks", name_key="cfo talks", host_name="Ann Host",
        podcast_category="finance", overall_score=82, recommendation="YES",
        suggested_topics_json='["Close faster"]', pitch_angle="Excel hell",
        full_report_json='{"overallScore": 82}',
    )
    session.add(row)
    session.commit()
    podcast_id = row.id
    session.close()
    return c, TestSession, podcast_id


# ---------------------------------------------------------------------------
# Pages & health
# ---------------------------------------------------------------------------


class TestPages:
    def test_health(self, client):
        c, _ = client
        assert c.get("/health").json() == {"ok": True}

    def test_dashboard_and_login(self, client):
        c, _ = client
        assert "PodScout" in c.get("/").text
        assert "Sign in with Google" in c.get("/login").text


# ---------------------------------------------------------------------------
# Podcasts
# ---------------------------------------------------------------------------


class TestPodcastEndpoints:
    def test_list_empty(self, client):
        c, _ = client
        assert c.get("/api/podcasts").json() == {"items": [], "total": 0}

    def test_list_and_filter(self, seeded_client):
        c, _, podcast_id = seeded_client
        data = c.get("/api/podcasts").json()
        assert data["total"] == 1
        item = data["items"][0]
        assert item["id"] == podcast_id
        assert item["suggested_topics"] == ["Close faster"]
        assert item["full_report"] == {"overallScore": 82}
        assert c.get("/api/podcasts", params={"category": "ai_data"}).json()["total"] == 0
        assert c.get("/api/podcasts", params={"recommendation": "YES", "search": "cfo"}).json()["total"] == 1

    def test_get_podcast(self, seeded_client):
        c, _, podcast_id = seeded_client
        resp = c.get(f"/api/podcasts/{podcast_id}")
        assert resp.status_code == 200
        assert resp.json()["podcast_name"] == "CFO Talks"

    def test_get_missing_is_404(self, client):
        c, _ = client
        resp = c.get("/api/podcasts/nope")
        assert resp.status_code == 404
        assert "not found" in resp.json()["detail"]

    def test_update_status(self, seeded_client):
        c, _, podcast_id = seeded_client
        resp = c.patch(f"/api/podcasts/{podcast_id}/status", json={"status": "contacted"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "contacted"
        assert c.get("/api/podcasts", params={"status": "contacted"}).json()["total"] == 1

    def test_update_status_rejects_unknown_value(self, seeded_client):
        c, _, podcast_id = seeded_client
        assert c.patch(f"/api/podcasts/{podcast_id}/status", json={"status": "ghosted"}).status_code == 422

    def test_delete(self, seeded_client):
        c, _, podcast_id = seeded_client
        assert c.delete(f"/api/podcasts/{podcast_id}").json() == {"ok": True}
        assert c.get(f"/api/podcasts/{podcast_id}").status_code == 404

    def test_stats(self, seeded_client):
        c, _, _ = seeded_client
        stats = c.get("/api/stats").json()
        assert stats["total"] == 1
        assert stats["by_category"] == {"finance": 1}
        assert stats["by_recommendation"] == {"YES": 1}


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


class TestAnalyzeEndpoints:
    def test_analyze(self, client, llm):
        c, _ = client
        resp = c.post("/api/analyze", json={"podcast_name": "CFO Talks", "category": "finance"})
        assert resp.status_code == 200
        podcast = resp.json()["podcast"]
        assert podcast["overall_score"] == 82
        assert podcast["recommendation"] == "YES"
        assert podcast["source"] == "manual"
        assert podcast["status"] == "researched"
        llm.generate.assert_awaited_once()

    def test_script_url_not_stored(self, client):
        c, _ = client
        resp = c.post("/api/analyze", json={"podcast_name": "CFO Talks", "podcast_url": "javascript:alert(1)"})
        assert resp.status_code == 200
        assert resp.json()["podcast"]["podcast_url"] is None

    def test_dashboard_links_only_http(self, client):
        c, _ = client
        page = c.get("/").text
        assert 'href="${esc(safeUrl(p.podcast_url))}"' in page
        assert '["http:", "https:"]' in page

    def test_blank_name_is_400(self, client, llm):
        c, _ = client
        resp = c.post("/api/analyze", json={"podcast_name": "  "})
        assert resp.status_code == 400
        llm.generate.assert_not_called()

    def test_duplicate_is_409(self, seeded_client, llm):
        c, _, podcast_id = seeded_client
        resp = c.post("/api/analyze", json={"podcast_name": "cfo talks"})
        assert resp.status_code == 409
        assert resp.json()["existing_id"] == podcast_id
        llm.generate.assert_not_called()

    def test_rate_limit_maps_to_429(self, client, llm):
        c, _ = client
        llm.generate.side_effect = ProviderError(429, "quota")
        resp = c.post("/api/analyze", json={"podcast_name": "CFO Talks"})
        assert resp.status_code == 429
        assert "rate limit" in resp.json()["detail"]

    def test_oversized_media_kit_is_400(self, client, llm):
        c, _ = client
        resp = c.post("/api/analyze", json={"podcast_name": "CFO Talks", "media_kit": "A" * (21 * 1024 * 1024)})
        assert resp.status_code == 400
        assert "15MB" in resp.json()["detail"]
        llm.generate.assert_not_called()

    def test_analyze_stream(self, client):
        c, _ = client
        resp = c.post("/api/analyze/stream", json={"podcast_name": "CFO Talks"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        frames = _frames(resp.text)
        assert [f["stage"] for f in frames] == [
            "validating", "building_prompt", "invoking_model", "normalizing", "persisting", "done",
        ]
        assert frames[-1]["result"]["podcast"]["overall_score"] == 82

    def test_analyze_stream_failure_is_terminal_event(self, client, llm):
        c, _ = client
        llm.generate.side_effect = ProviderError(500, "boom")
        frames = _frames(c.post("/api/analyze/stream", json={"podcast_name": "CFO Talks"}).text)
        assert frames[-1]["stage"] == "failed"
        assert frames[-1]["status_code"] == 502
        assert "boom" in frames[-1]["error"]
        assert c.get("/api/podcasts").json()["total"] == 0

    def test_enhance(self, seeded_client, llm):
        c, _, podcast_id = seeded_client
        llm.generate.return_value = _analysis(93, "STRONG_YES")
        kit = Attachment.from_bytes(b"%PDF kit").data
        resp = c.post(f"/api/podcasts/{podcast_id}/enhance", json={"media_kit": kit, "media_kit_filename": "kit.pdf"})
        assert resp.status_code == 200
        podcast = resp.json()["podcast"]
        assert podcast["id"] == podcast_id
        assert podcast["overall_score"] == 93
        assert podcast["recommendation"] == "STRONG_YES"

    def test_enhance_without_media_kit_is_400(self, seeded_client):
        c, _, podcast_id = seeded_client
        assert c.post(f"/api/podcasts/{podcast_id}/enhance", json={}).status_code == 400

    def test_enhance_missing_podcast_is_404(self, client):
        c, _ = client
        assert c.post("/api/podcasts/nope/enhance", json={"media_kit": "abcd"}).status_code == 404


# ---------------------------------------------------------------------------
# Discovery & outreach
# ---------------------------------------------------------------------------


def _discovery_side_effect(prompt, attachment=None, **kwargs):
    if "Return JSON array" in prompt:
        return json.dumps([{"podcastName": "Alpha CFO"}, {"podcastName": "CFO Talks"}])
    return _analysis(64, "MAYBE")


class TestDiscoveryEndpoints:
    def test_discover_blocking(self, seeded_client, llm):
        c, _, _ = seeded_client
        llm.generate.side_effect = _discovery_side_effect
        resp = c.post("/api/discover", json={"category": "finance"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["discovered_count"] == 2
        assert data["saved_count"] == 1
        assert data["skipped_count"] == 1
        assert [p["status"] for p in data["podcasts"]] == ["saved", "skipped"]

    def test_discover_without_body(self, client, llm):
        c, _ = client
        llm.generate.side_effect = _discovery_side_effect
        assert c.post("/api/discover").json()["saved_count"] == 2

    def test_discover_stream(self, client, llm):
        c, _ = client
        llm.generate.side_effect = _discovery_side_effect
        resp = c.get("/api/discover/stream", params={"category": "finance"})
        frames = _frames(resp.text)
        assert frames[0]["stage"] == "discovering"
        assert frames[-1]["stage"] == "done"
        assert frames[-1]["result"]["saved_count"] == 2
        assert c.get("/api/podcasts", params={"source": "discovered"}).json()["total"] == 2

    def test_discover_stream_fatal_error(self, client, llm):
        c, _ = client
        llm.generate.side_effect = ProviderError(429, "quota")
        frames = _frames(c.get("/api/discover/stream").text)
        assert [f["stage"] for f in frames] == ["discovering", "failed"]
        assert frames[-1]["status_code"] == 429

    def test_outreach_email(self, seeded_client, llm):
        c, _, podcast_id = seeded_client
        llm.generate.return_value = "Hi Ann, ..."
        resp = c.post(f"/api/podcasts/{podcast_id}/outreach-email")
        assert resp.status_code == 200
        assert resp.json() == {"podcast_id": podcast_id, "email": "Hi Ann, ..."}


# ---------------------------------------------------------------------------
# Auth routes
# ---------------------------------------------------------------------------


class FakeSupabase:
    def __init__(self, session=None, error: str | None = None):
        self.session = session
        self.error = error
        self.signed_out: list[str] = []

    def authorize_url(self, redirect_to, challenge, provider="google"):
        return f"https://sb.test/auth/v1/authorize?redirect_to={redirect_to}&code_challenge={challenge}"

    async def exchange_code(self, code, verifier):
        if self.error:
            raise AuthenticationError(self.error)
        return self.session

    async def sign_out(self, token):
        self.signed_out.append(token)


@pytest.fixture()
def auth_client(client):
    c, _ = client
    from podscout.app import app, get_auth

    fake = FakeSupabase()
    app.dependency_overrides[get_auth] = lambda: fake
    return c, fake


def _location(resp) -> tuple[str, dict]:
    url = urlparse(resp.headers["location"])
    return url.path, parse_qs(url.query)


class TestAuthRoutes:
    def test_login_redirects_to_provider(self, auth_client):
        c, _ = auth_client
        resp = c.get("/auth/login", params={"next": "/"}, follow_redirects=False)
        assert resp.status_code == 303
        assert resp.headers["location"].startswith("https://sb.test/auth/v1/authorize")
        assert "podscout_pkce=" in resp.headers["set-cookie"]

    def test_login_discards_backslash_next_path(self, auth_client):
        c, _ = auth_client
        resp = c.get("/auth/login", params={"next": "/\\evil.example"}, follow_redirects=False)
        cookies = resp.headers.get_list("set-cookie")
        assert any(value.startswith("podscout_next=/;") for value in cookies)

    def test_callback_provider_error(self, auth_client):
        c, _ = auth_client
        resp = c.get("/auth/callback", params={"error": "access_denied", "error_description": "User cancelled"},
                     follow_redirects=False)
        assert _location(resp) == ("/login", {"error": ["User cancelled"]})

    def test_callback_without_code(self, auth_client):
        c, _ = auth_client
        resp = c.get("/auth/callback", follow_redirects=False)
        assert _location(resp) == ("/login", {"error": ["no_code"]})

    def test_callback_exchange_not_allowed(self, auth_client):
        c, fake = auth_client
        fake.error = "Signups not allowed for this instance"
        resp = c.get("/auth/callback", params={"code": "abc"}, follow_redirects=False)
        assert _location(resp) == ("/login", {"error": ["unauthorized_domain"]})

    def test_callback_wrong_domain_signs_out(self, auth_client):
        c, fake = auth_client
        fake.session = {"access_token": "tok", "user": {"email": "eve@gmail.com"}}
        resp = c.get("/auth/callback", params={"code": "abc"}, follow_redirects=False)
        assert _location(resp) == ("/login", {"error": ["unauthorized_domain"]})
        assert fake.signed_out == ["tok"]

    def test_callback_success_sets_session_cookie(self, auth_client):
        c, fake = auth_client
        fake.session = {"access_token": "tok", "expires_in": 3600, "user": {"email": "pavel@keboola.com"}}
        resp = c.get("/auth/callback", params={"code": "abc"}, follow_redirects=False)
        assert resp.status_code == 303
        assert resp.headers["location"] == "/"
        assert "podscout_session=tok" in resp.headers["set-cookie"]
        assert "httponly" in resp.headers["set-cookie"].lower()
