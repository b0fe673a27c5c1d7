from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from podscout import services, store
from podscout.config import get_settings
from podscout.db import init_db, session_scope
from podscout.errors import ScoutError
from podscout.models import CATEGORY_LABELS, RECOMMENDATIONS, STATUSES
from podscout.schemas import AnalyzeRequest

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def podscout_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "PodScout",
    instructions=(
        "PodScout researches podcasts for executive guest appearances. "
        "Use these tools to list, inspect, analyze, and discover podcasts and to track outreach. "
        "Start with get_stats() for an overview, then list_podcasts() to browse, "
        "then get_podcast(id) for the full analysis."
    ),
    lifespan=podscout_lifespan,
    json_response=True,
)


def _error(exc: ScoutError) -> dict:
    log.warning("MCP tool failed: %s", exc)
    return {"error": str(exc), "status_code": exc.status_code}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("podscout://overview")
def podscout_overview() -> str:
    """Overview of PodScout: data model, workflow, and enumerations."""
    return json.dumps({
        "system": "PodScout - Podcast research for guest-appearance pitching",
        "description": (
            "PodScout asks Gemini to analyze podcasts for audience fit, contact details, and pitch "
            "strategy, stores the results, and tracks the outreach status of each podcast."
        ),
        "data_model": {
            "podcast": (
                "One researched podcast: scores (0-100), recommendation, audience, business model, "
                "contact, pitch strategy, and the full model report."
            ),
        },
        "workflow": [
            "1. get_stats() - how many podcasts exist, by recommendation and status.",
            "2. list_podcasts() - browse with filters (category, status, recommendation, source, search).",
            "3. get_podcast(id) - full analysis and report.",
            "4. analyze_podcast(name, ...) - research a new podcast.",
            "5. discover_podcasts(category) - let the model propose and analyze new candidates.",
            "6. generate_outreach_email(id) - draft a pitch email.",
            "7. update_podcast_status(id, status) - record outreach progress.",
        ],
        "categories": CATEGORY_LABELS,
        "statuses": list(STATUSES),
        "recommendations": list(reversed(RECOMMENDATIONS)),
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Podcasts
# ---------------------------------------------------------------------------


@mcp.tool()
def list_podcasts(
    category: str | None = None, source: str | None = None, status: str | None = None,
    recommendation: str | None = None, search: str | None = None, limit: int = 50,
) -> list[dict]:
    """List researched podcasts, newest first.

    Args:
        category: finance or ai_data.
        source: manual or discovered.
        status: researched, contacted, scheduled, completed, declined.
        recommendation: STRONG_YES, YES, MAYBE, NO, STRONG_NO.
        search: Case-insensitive match on podcast or host name.
        limit: Max results (default 50, max 500).
    """
    with session_scope() as session:
        rows = store.list_podcasts(
            session, category=category, source=source, status=status,
            recommendation=recommendation, search=search,
        )
        return [services.podcast_dict(r) for r in rows[:max(1, min(limit, 500))]]


@mcp.tool()
def get_podcast(podcast_id: str) -> dict:
    """Get the full analysis for a single podcast."""
    with session_scope() as session:
        podcast = store.get_podcast(session, podcast_id)
        if podcast is None:
            return {"error": f"Podcast {podcast_id} not found"}
        return services.podcast_dict(podcast)


@mcp.tool()
def update_podcast_status(podcast_id: str, status: str) -> dict:
    """Set the outreach status: researched, contacted, scheduled, completed or declined."""
    if status not in STATUSES:
        return {"error": f"Invalid status '{status}'. Use one of: {', '.join(STATUSES)}"}
    with session_scope() as session:
        try:
            return services.podcast_dict(store.update_status(session, podcast_id, status))
        except ScoutError as exc:
            return _error(exc)


@mcp.tool()
def delete_podcast(podcast_id: str) -> dict:
    """Delete a podcast and its analysis."""
    with session_scope() as session:
        try:
            store.delete_podcast(session, podcast_id)
        except ScoutError as exc:
            return _error(exc)
        return {"ok": True, "deleted_podcast_id": podcast_id}


# ---------------------------------------------------------------------------
# Tools: Analysis & Discovery
# ---------------------------------------------------------------------------


@mcp.tool()
async def analyze_podcast(
    podcast_name: str, host_name: str | None = None, podcast_url: str | None = None,
    podcast_description: str | None = None, category: str | None = None,
) -> dict:
    """Research a podcast with Gemini and save the analysis. Requires GEMINI_API_KEY."""
    if category is not None and category not in CATEGORY_LABELS:
        return {"error": f"Invalid category '{category}'. Use finance or ai_data."}
    request = AnalyzeRequest(
        podcast_name=podcast_name, host_name=host_name, podcast_url=podcast_url,
        podcast_description=podcast_description, category=category,
    )
    with session_scope() as session:
        try:
            result = await services.analyze_podcast(
                session, request, timeout=get_settings().request_timeout_seconds,
            )
        except ScoutError as exc:
            return _error(exc)
        return result["podcast"]


@mcp.tool()
async def discover_podcasts(category: str | None = None, limit: int | None = None) -> dict:
    """Ask Gemini for new candidate podcasts, then analyze and save the ones not yet known.

    Args:
        category: finance or ai_data (optional).
        limit: Number of candidates to request (default 8).
    """
    with session_scope() as session:
        try:
            return await services.discover_podcasts(session, category, limit)
        except ScoutError as exc:
            return _error(exc)


@mcp.tool()
async def generate_outreach_email(podcast_id: str) -> dict:
    """Draft a short personalized pitch email for a researched podcast."""
    with session_scope() as session:
        try:
            return await services.generate_outreach_email(session, podcast_id)
        except ScoutError as exc:
            return _error(exc)


# ---------------------------------------------------------------------------
# Tools: Stats
# ---------------------------------------------------------------------------


@mcp.tool()
def get_stats() -> dict:
    """Get summary statistics about all researched podcasts."""
    with session_scope() as session:
        return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the PodScout MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
