from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Generator

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

from podscout import services, store
from podscout.auth import (
    NEXT_COOKIE,
    SESSION_COOKIE,
    VERIFIER_COOKIE,
    AuthMiddleware,
    SupabaseAuth,
    code_challenge,
    email_domain_allowed,
    generate_code_verifier,
    login_redirect,
    safe_next,
)
from podscout.config import OrganizationContext, Settings, get_settings
from podscout.db import get_session, init_db
from podscout.errors import AuthenticationError, DuplicatePodcastError, ProviderUnavailable, ScoutError
from podscout.gemini import GeminiClient
from podscout.schemas import (
    AnalyzeRequest,
    AnalyzeResponse,
    DiscoverRequest,
    DiscoveryOut,
    EnhanceRequest,
    OutreachEmailOut,
    PodcastListResponse,
    PodcastOut,
    StatsOut,
    StatusUpdate,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="PodScout",
    version="0.1.0",
    description=(
        "Podcast research API for executive guest appearances. "
        "Analyze podcasts with Gemini, discover new candidates, and track outreach status. "
        "All endpoints return JSON. Requires a Google sign-in from an allowed domain when auth is enabled."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Podcasts", "description": "Browse, filter, and manage researched podcasts."},
        {"name": "Analysis", "description": "LLM-powered podcast analysis. Requires GEMINI_API_KEY."},
        {"name": "Discovery", "description": "Ask the model for new candidate podcasts and analyze them."},
        {"name": "Outreach", "description": "Draft pitch emails for researched podcasts."},
        {"name": "Stats", "description": "Aggregate statistics and breakdowns."},
        {"name": "Auth", "description": "Google sign-in via Supabase Auth."},
    ],
)

STATIC_DIR = Path(__file__).parent / "static"
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")
app.add_middleware(AuthMiddleware)


@app.exception_handler(ScoutError)
async def scout_error_handler(request: Request, exc: ScoutError):
    body: dict[str, Any] = {"detail": str(exc)}
    if isinstance(exc, DuplicatePodcastError):
        body["existing_id"] = exc.existing_id
    return JSONResponse(body, status_code=exc.status_code)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def session_factory() -> Callable[[], Session]:
    """Factory for sessions owned by a streaming response rather than the request."""
    return get_session


def get_app_settings() -> Settings:
    return get_settings()


def get_llm_client(settings: Settings = Depends(get_app_settings)) -> GeminiClient:
    return GeminiClient(settings)


def get_context(settings: Settings = Depends(get_app_settings)) -> OrganizationContext:
    return settings.organization_context()


def get_auth(settings: Settings = Depends(get_app_settings)) -> SupabaseAuth:
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise ProviderUnavailable("Supabase auth is not configured (SUPABASE_URL, SUPABASE_ANON_KEY)")
    return SupabaseAuth.from_settings(settings)


def _event_stream(
    make_events: Callable[[Session], AsyncIterator[services.ProgressEvent]],
    factory: Callable[[], Session],
) -> StreamingResponse:
    """SSE wrapper: one ``data:`` frame per progress event, ``failed`` on error."""
    async def stream():
        session = factory()
        progress = 0
        try:
            async for event in make_events(session):
                progress = event.progress
                yield event.sse()
        except Exception as exc:
            log.warning("Streamed operation failed: %s", exc)
            session.rollback()
            yield services.failed_event(exc, progress).sse()
        finally:
            session.close()

    return StreamingResponse(
        stream(), media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


def _page(name: str, title: str) -> HTMLResponse:
    html_path = STATIC_DIR / name
    if not html_path.exists():
        return HTMLResponse(f"<h1>{title}</h1><p>{name} not found</p>", status_code=500)
    return HTMLResponse(html_path.read_text(encoding="utf-8"))


# ---------------------------------------------------------------------------
# Routes: Pages
# ---------------------------------------------------------------------------


@app.get("/", response_class=HTMLResponse)
async def root():
    return _page("index.html", "PodScout")


@app.get("/login", response_class=HTMLResponse)
async def login_page():
    return _page("login.html", "PodScout login")


@app.get("/health")
async def health():
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Auth
# ---------------------------------------------------------------------------


@app.get("/auth/login", tags=["Auth"], summary="Start Google sign-in (OAuth with PKCE)")
async def auth_login(request: Request, next: str = "/", auth: SupabaseAuth = Depends(get_auth)):
    verifier = generate_code_verifier()
    redirect_to = str(request.url_for("auth_callback"))
    response = RedirectResponse(auth.authorize_url(redirect_to, code_challenge(verifier)), status_code=303)
    secure = request.url.scheme == "https"
    response.set_cookie(VERIFIER_COOKIE, verifier, max_age=600, httponly=True, samesite="lax", secure=secure)
    response.set_cookie(NEXT_COOKIE, safe_next(next), max_age=600, httponly=True, samesite="lax", secure=secure)
    return response


@app.get("/auth/callback", name="auth_callback", tags=["Auth"], summary="OAuth callback")
async def auth_callback(
    request: Request,
    code: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    settings: Settings = Depends(get_app_settings),
    auth: SupabaseAuth = Depends(get_auth),
):
    if error:
        log.warning("OAuth error: %s %s", error, error_description or "")
        return login_redirect(error=error_description or error)
    if not code:
        return login_redirect(error="no_code")

    try:
        session = await auth.exchange_code(code, request.cookies.get(VERIFIER_COOKIE, ""))
    except AuthenticationError as exc:
        log.warning("Code exchange failed: %s", exc)
        reason = "unauthorized_domain" if "not allowed" in str(exc) else str(exc)
        return login_redirect(error=reason)

    access_token = session.get("access_token") or ""
    email = (session.get("user") or {}).get("email")
    if not email_domain_allowed(email, settings.allowed_email_domains):
        log.warning("Unauthorized domain attempted login: %s", email)
        await auth.sign_out(access_token)
        return login_redirect(error="unauthorized_domain")

    log.info("Successful login for %s", email)
    response = RedirectResponse(safe_next(request.cookies.get(NEXT_COOKIE)), status_code=303)
    response.set_cookie(
        SESSION_COOKIE, access_token, max_age=int(session.get("expires_in") or 3600),
        httponly=True, samesite="lax", secure=request.url.scheme == "https",
    )
    response.delete_cookie(VERIFIER_COOKIE)
    response.delete_cookie(NEXT_COOKIE)
    return response


@app.post("/auth/logout", tags=["Auth"], summary="Sign out and clear the session cookie")
async def auth_logout(request: Request, settings: Settings = Depends(get_app_settings)):
    token = request.cookies.get(SESSION_COOKIE)
    if token and settings.supabase_url:
        await SupabaseAuth.from_settings(settings).sign_out(token)
    response = login_redirect()
    response.delete_cookie(SESSION_COOKIE, path="/")
    return response


# ---------------------------------------------------------------------------
# Routes: Podcasts
# ---------------------------------------------------------------------------


@app.get("/api/podcasts", response_model=PodcastListResponse,
         tags=["Podcasts"], summary="List podcasts with optional filters, newest first")
async def list_podcasts(
    category: str | None = Query(None, description="finance or ai_data"),
    source: str | None = Query(None, description="manual or discovered"),
    status: str | None = Query(None, description="researched, contacted, scheduled, completed, declined"),
    recommendation: str | None = Query(None, description="STRONG_YES, YES, MAYBE, NO, STRONG_NO"),
    search: str | None = Query(None, description="Case-insensitive match on podcast or host name"),
    session: Session = Depends(db_session),
):
    rows = store.list_podcasts(
        session, category=category, source=source, status=status,
        recommendation=recommendation, search=search,
    )
    return {"items": [services.podcast_dict(r) for r in rows], "total": len(rows)}


@app.get("/api/podcasts/{podcast_id}", response_model=PodcastOut,
         tags=["Podcasts"], summary="Get one podcast with its full report")
async def get_podcast(podcast_id: str, session: Session = Depends(db_session)):
    return services.podcast_dict(store.require_podcast(session, podcast_id))


@app.patch("/api/podcasts/{podcast_id}/status", response_model=PodcastOut,
           tags=["Podcasts"], summary="Update the outreach workflow status")
async def update_status(podcast_id: str, body: StatusUpdate, session: Session = Depends(db_session)):
    return services.podcast_dict(store.update_status(session, podcast_id, body.status))


@app.delete("/api/podcasts/{podcast_id}", tags=["Podcasts"], summary="Delete a podcast")
async def delete_podcast(podcast_id: str, session: Session = Depends(db_session)):
    store.delete_podcast(session, podcast_id)
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Analysis
# ---------------------------------------------------------------------------


@app.post("/api/analyze", response_model=AnalyzeResponse,
          tags=["Analysis"], summary="Analyze a podcast (optionally with a base64 media kit PDF)")
async def analyze(
    body: AnalyzeRequest,
    session: Session = Depends(db_session),
    client: GeminiClient = Depends(get_llm_client),
    context: OrganizationContext = Depends(get_context),
    settings: Settings = Depends(get_app_settings),
):
    return await services.analyze_podcast(
        session, body, client=client, context=context, settings=settings,
        timeout=settings.request_timeout_seconds,
    )


@app.post("/api/analyze/stream", tags=["Analysis"], summary="Analyze a podcast (SSE progress stream)")
async def analyze_stream(
    body: AnalyzeRequest,
    factory: Callable[[], Session] = Depends(session_factory),
    client: GeminiClient = Depends(get_llm_client),
    context: OrganizationContext = Depends(get_context),
    settings: Settings = Depends(get_app_settings),
):
    attachment = services.media_kit_attachment(body.media_kit, body.media_kit_filename)
    return _event_stream(
        lambda session: services.analyze_podcast_events(
            session, body, attachment=attachment, client=client, context=context, settings=settings,
        ),
        factory,
    )


@app.post("/api/podcasts/{podcast_id}/enhance", response_model=AnalyzeResponse,
          tags=["Analysis"], summary="Re-analyze a stored podcast from its media kit PDF")
async def enhance(
    podcast_id: str,
    body: EnhanceRequest,
    session: Session = Depends(db_session),
    client: GeminiClient = Depends(get_llm_client),
    context: OrganizationContext = Depends(get_context),
    settings: Settings = Depends(get_app_settings),
):
    return await services.enhance_podcast(
        session, podcast_id, body, client=client, context=context, settings=settings,
        timeout=settings.request_timeout_seconds,
    )


# ---------------------------------------------------------------------------
# Routes: Discovery (stream before blocking to keep the paths distinct)
# ---------------------------------------------------------------------------


@app.get("/api/discover/stream", tags=["Discovery"], summary="Discover and analyze podcasts (SSE progress stream)")
async def discover_stream(
    category: str | None = Query(None, description="finance or ai_data"),
    limit: int | None = Query(None, ge=1, le=20),
    factory: Callable[[], Session] = Depends(session_factory),
    client: GeminiClient = Depends(get_llm_client),
    context: OrganizationContext = Depends(get_context),
    settings: Settings = Depends(get_app_settings),
):
    return _event_stream(
        lambda session: services.discover_events(
            session, category or None, limit, client=client, context=context, settings=settings,
        ),
        factory,
    )


@app.post("/api/discover", response_model=DiscoveryOut,
          tags=["Discovery"], summary="Discover and analyze podcasts (blocking)")
async def discover(
    body: DiscoverRequest | None = None,
    session: Session = Depends(db_session),
    client: GeminiClient = Depends(get_llm_client),
    context: OrganizationContext = Depends(get_context),
    settings: Settings = Depends(get_app_settings),
):
    body = body or DiscoverRequest()
    return await services.discover_podcasts(
        session, body.category, body.limit, client=client, context=context, settings=settings,
    )


# ---------------------------------------------------------------------------
# Routes: Outreach
# ---------------------------------------------------------------------------


@app.post("/api/podcasts/{podcast_id}/outreach-email", response_model=OutreachEmailOut,
          tags=["Outreach"], summary="Draft a personalized pitch email")
async def outreach_email(
    podcast_id: str,
    session: Session = Depends(db_session),
    client: GeminiClient = Depends(get_llm_client),
    context: OrganizationContext = Depends(get_context),
    settings: Settings = Depends(get_app_settings),
):
    return await services.generate_outreach_email(
        session, podcast_id, client=client, context=context, settings=settings,
    )


# ---------------------------------------------------------------------------
# Routes: Stats
# ---------------------------------------------------------------------------


@app.get("/api/stats", response_model=StatsOut,
         tags=["Stats"], summary="Get aggregate statistics and breakdowns")
async def get_stats(session: Session = Depends(db_session)):
    return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("podscout.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
