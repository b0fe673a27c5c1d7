"""Shared business logic for the PodScout API and MCP server.

Long-running operations are async generators of ``ProgressEvent``. The HTTP
layer streams them as SSE; the blocking wrappers drain them and return the
result carried by the terminal ``done`` event. Errors propagate out of the
generators unchanged.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import Counter
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from podscout import store
from podscout.config import OrganizationContext, Settings, get_settings
from podscout.errors import DuplicatePodcastError, OperationTimeout, ScoutError, ValidationError
from podscout.gemini import (
    ANALYSIS_TEMPERATURE,
    CREATIVE_TEMPERATURE,
    EMAIL_MAX_OUTPUT_TOKENS,
    Attachment,
    GeminiClient,
    check_attachment_size,
)
from podscout.models import CATEGORIES, PodcastAnalysis
from podscout.normalizer import parse_analysis, parse_discovery, record_fields
from podscout.prompts import (
    build_analysis_prompt,
    build_discovery_prompt,
    build_media_kit_prompt,
    build_outreach_email_prompt,
)
from podscout.schemas import AnalyzeRequest, EnhanceRequest, PodcastInput
from podscout.utils import json_parse

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

PODCAST_FIELDS = (
    "id", "podcast_name", "host_name", "podcast_url", "podcast_category",
    "audience_description", "audience_size", "audience_fit_score",
    "is_paid", "estimated_cost",
    "contact_name", "contact_email", "contact_linkedin", "contact_method",
    "overall_score", "recommendation",
    "value_proposition", "pitch_angle", "matched_story", "full_analysis",
    "source", "status",
)

BUDGET_EXHAUSTED = "discovery time budget exhausted"

# ---------------------------------------------------------------------------
# Progress events
# ---------------------------------------------------------------------------


@dataclass
class ProgressEvent:
    stage: str
    message: str
    progress: int
    detail: dict[str, Any] = field(default_factory=dict)
    result: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"stage": self.stage, "message": self.message, "progress": self.progress}
        data.update(self.detail)
        if self.result is not None:
            data["result"] = self.result
        return data

    def sse(self) -> str:
        return f"data: {json.dumps(self.to_dict(), default=str)}\n\n"


def failed_event(exc: Exception, progress: int = 0) -> ProgressEvent:
    detail: dict[str, Any] = {"error": str(exc)}
    if isinstance(exc, ScoutError):
        detail["status_code"] = exc.status_code
    return ProgressEvent("failed", f"Failed: {exc}", progress, detail)


async def drain(events: AsyncIterator[ProgressEvent], timeout: float | None = None) -> dict[str, Any]:
    """Consume *events* and return the terminal result, bounded by *timeout* seconds."""
    async def _run() -> dict[str, Any]:
        result: dict[str, Any] = {}
        async for event in events:
            if event.result is not None:
                result = event.result
        return result

    if not timeout:
        return await _run()
    try:
        return await asyncio.wait_for(_run(), timeout)
    except asyncio.TimeoutError as exc:
        raise OperationTimeout(f"Operation exceeded its {timeout:g}s budget") from exc


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def podcast_dict(podcast: PodcastAnalysis) -> dict[str, Any]:
    data = {f: getattr(podcast, f) for f in PODCAST_FIELDS}
    data["created_at"] = podcast.created_at.isoformat() if podcast.created_at else None
    data["updated_at"] = podcast.updated_at.isoformat() if podcast.updated_at else None
    data["suggested_topics"] = json_parse(podcast.suggested_topics_json, [])
    data["full_report"] = json_parse(podcast.full_report_json, {})
    return data


def media_kit_attachment(media_kit: str | None, filename: str | None = None) -> Attachment | None:
    """Wrap a base64 media kit (optionally a ``data:`` URL) as a PDF attachment."""
    if not media_kit or not media_kit.strip():
        return None
    data = media_kit.strip()
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    return Attachment(data=data, filename=filename)


def _resolve(client: GeminiClient | None, context: OrganizationContext | None, settings: Settings | None):
    settings = settings or get_settings()
    return client or GeminiClient(settings), context or settings.organization_context(), settings


# ---------------------------------------------------------------------------
# Analyze
# ---------------------------------------------------------------------------


async def analyze_podcast_events(
    session: Session,
    subject: PodcastInput,
    *,
    attachment: Attachment | None = None,
    source: str = "manual",
    candidate: dict[str, Any] | None = None,
    client: GeminiClient | None = None,
    context: OrganizationContext | None = None,
    settings: Settings | None = None,
) -> AsyncIterator[ProgressEvent]:
    """Analyze one podcast and insert it as a new row."""
    yield ProgressEvent("validating", "Validating input...", 0)
    name = " ".join((subject.podcast_name or "").split())
    if not name:
        raise ValidationError("Podcast name is required")
    subject = subject.model_copy(update={"podcast_name": name})

    existing = store.find_by_name(session, name)
    if existing is not None:
        raise DuplicatePodcastError(name, existing.id)

    client, context, settings = _resolve(client, context, settings)

    if attachment is not None:
        check_attachment_size(attachment)
        yield ProgressEvent(
            "uploading", f"Attaching media kit ({attachment.estimated_size // 1024} KB)...", 5,
            {"filename": attachment.filename},
        )

    yield ProgressEvent("building_prompt", f"Preparing analysis of {name}...", 10)
    if attachment is not None:
        prompt = build_media_kit_prompt(subject, context)
    else:
        prompt = build_analysis_prompt(subject, context)

    yield ProgressEvent("invoking_model", f"Waiting for the model to research {name}...", 20)
    raw_text = await client.generate(prompt, attachment, temperature=ANALYSIS_TEMPERATURE)

    yield ProgressEvent("normalizing", "Reading the analysis...", 75)
    analysis = parse_analysis(raw_text, name)

    yield ProgressEvent("persisting", "Saving to database...", 85)
    row = store.insert_podcast(session, {
        "podcast_name": name,
        "source": source,
        "status": "researched",
        **record_fields(analysis, subject, candidate),
    })
    log.info("Analyzed %s: score=%s recommendation=%s", name, row.overall_score, row.recommendation)

    yield ProgressEvent(
        "done", f"Analysis complete: {name}", 100,
        {"podcast_id": row.id},
        result={"podcast": podcast_dict(row), "analysis": analysis},
    )


async def analyze_podcast(
    session: Session,
    request: AnalyzeRequest,
    *,
    client: GeminiClient | None = None,
    context: OrganizationContext | None = None,
    settings: Settings | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    """Blocking manual analysis; returns ``{"podcast": ..., "analysis": ...}``."""
    events = analyze_podcast_events(
        session, request,
        attachment=media_kit_attachment(request.media_kit, request.media_kit_filename),
        client=client, context=context, settings=settings,
    )
    return await drain(events, timeout)


# ---------------------------------------------------------------------------
# Enhance (media kit for an existing podcast)
# ---------------------------------------------------------------------------


async def enhance_podcast_events(
    session: Session,
    podcast_id: str | None,
    request: EnhanceRequest,
    *,
    client: GeminiClient | None = None,
    context: OrganizationContext | None = None,
    settings: Settings | None = None,
) -> AsyncIterator[ProgressEvent]:
    """Re-analyze a stored podcast from its media kit, overwriting its columns.

    Status and source are never touched. Request subject fields override the
    stored ones for the prompt only.
    """
    yield ProgressEvent("validating", "Validating input...", 0)
    attachment = media_kit_attachment(request.media_kit, request.media_kit_filename)
    if not podcast_id or attachment is None:
        raise ValidationError("Podcast ID and media kit are required")
    row = store.require_podcast(session, podcast_id)
    subject = PodcastInput(
        podcast_name=(request.podcast_name or "").strip() or row.podcast_name,
        host_name=request.host_name or row.host_name,
        podcast_url=request.podcast_url or row.podcast_url,
        category=request.category or row.podcast_category,
    )
    client, context, settings = _resolve(client, context, settings)

    check_attachment_size(attachment)
    yield ProgressEvent(
        "uploading", f"Attaching media kit ({attachment.estimated_size // 1024} KB)...", 5,
        {"filename": attachment.filename},
    )

    yield ProgressEvent("building_prompt", f"Preparing media kit analysis of {subject.podcast_name}...", 10)
    prompt = build_media_kit_prompt(subject, context)

    yield ProgressEvent("invoking_model", "Waiting for the model to read the media kit...", 20)
    raw_text = await client.generate(prompt, attachment, temperature=ANALYSIS_TEMPERATURE)

    yield ProgressEvent("normalizing", "Reading the analysis...", 75)
    analysis = parse_analysis(raw_text, row.podcast_name)

    yield ProgressEvent("persisting", "Updating database...", 85)
    fields = record_fields(analysis, subject)
    # URL and category only change when the caller supplied them
    if not request.podcast_url:
        fields.pop("podcast_url")
    if not request.category:
        fields.pop("podcast_category")
    updates = {k: v for k, v in fields.items() if v is not None}
    row = store.update_podcast(session, podcast_id, updates)
    log.info("Enhanced %s from media kit %s", row.podcast_name, attachment.filename or "")

    yield ProgressEvent(
        "done", f"Enhanced: {row.podcast_name}", 100,
        {"podcast_id": row.id},
        result={"podcast": podcast_dict(row), "analysis": analysis},
    )


async def enhance_podcast(
    session: Session,
    podcast_id: str | None,
    request: EnhanceRequest,
    *,
    client: GeminiClient | None = None,
    context: OrganizationContext | None = None,
    settings: Settings | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    events = enhance_podcast_events(
        session, podcast_id, request, client=client, context=context, settings=settings,
    )
    return await drain(events, timeout)


# ---------------------------------------------------------------------------
# Discover
# ---------------------------------------------------------------------------


def _candidate_subject(candidate: dict[str, Any], category: str | None) -> PodcastInput:
    cand_category = candidate.get("category")
    if cand_category not in CATEGORIES:
        cand_category = category

    def _opt(key: str) -> str | None:
        value = candidate.get(key)
        if not isinstance(value, str):
            return None
        return value.strip() or None

    return PodcastInput(
        podcast_name=candidate["podcastName"],
        podcast_url=_opt("podcastUrl"),
        host_name=_opt("hostName"),
        podcast_description=_opt("audienceDescription"),
        category=cand_category,
    )


async def discover_events(
    session: Session,
    category: str | None = None,
    limit: int | None = None,
    *,
    client: GeminiClient | None = None,
    context: OrganizationContext | None = None,
    settings: Settings | None = None,
) -> AsyncIterator[ProgressEvent]:
    """Ask the model for candidates, then analyze each new one sequentially.

    A failure of the discovery call itself ends the batch; failures of single
    candidates are recorded as ``error`` outcomes and the loop moves on.
    """
    client, context, settings = _resolve(client, context, settings)
    limit = limit or settings.discovery_limit
    deadline = time.monotonic() + settings.discovery_budget_seconds
    label = {"finance": "Finance", "ai_data": "AI/Data"}.get(category or "", "all")

    yield ProgressEvent("discovering", f"Searching for {label} podcasts...", 0)
    raw_text = await client.generate(
        build_discovery_prompt(category, limit, context), temperature=CREATIVE_TEMPERATURE,
    )
    candidates = parse_discovery(raw_text)[:limit]
    total = len(candidates)
    yield ProgressEvent(
        "discovered", f"Found {total} potential podcasts", 10, {"discovered": total},
    )

    outcomes: list[dict[str, Any]] = []
    analyzed = saved = skipped = 0

    for idx, candidate in enumerate(candidates):
        name = candidate["podcastName"]
        progress = 10 + round(idx / total * 85)
        position = {"current": idx + 1, "total": total, "podcast_name": name}

        existing = store.find_by_name(session, name)
        if existing is not None:
            skipped += 1
            outcomes.append({
                "name": name, "status": "skipped", "id": existing.id,
                "score": existing.overall_score, "recommendation": existing.recommendation,
                "reason": "Already in database",
            })
            yield ProgressEvent("skipped", f"Skipped {name}: already in database", progress, position)
            continue

        if time.monotonic() >= deadline:
            outcomes.append({"name": name, "status": "error", "reason": BUDGET_EXHAUSTED})
            yield ProgressEvent("error", f"Error analyzing {name}: {BUDGET_EXHAUSTED}", progress,
                                {**position, "error": BUDGET_EXHAUSTED})
            continue

        yield ProgressEvent("analyzing", f"Analyzing {idx + 1}/{total}: {name}", progress, position)
        subject = _candidate_subject(candidate, category)
        try:
            row = None
            async for event in analyze_podcast_events(
                session, subject, source="discovered", candidate=candidate,
                client=client, context=context, settings=settings,
            ):
                if event.stage == "normalizing":
                    analyzed += 1
                if event.result is not None:
                    row = event.result["podcast"]
        except DuplicatePodcastError as exc:
            # lost a race with another creator of the same name
            skipped += 1
            outcomes.append({"name": name, "status": "skipped", "id": exc.existing_id,
                             "reason": "Already in database"})
            yield ProgressEvent("skipped", f"Skipped {name}: already in database", progress, position)
        except Exception as exc:
            log.warning("Discovery analysis failed for %s: %s", name, exc)
            session.rollback()
            outcomes.append({"name": name, "status": "error", "reason": str(exc)})
            yield ProgressEvent("error", f"Error analyzing {name}: {exc}", progress,
                                {**position, "error": str(exc)})
        else:
            saved += 1
            outcomes.append({
                "name": name, "status": "saved", "id": row["id"],
                "score": row["overall_score"], "recommendation": row["recommendation"],
            })
            yield ProgressEvent(
                "saved", f"Saved: {name} (Score: {row['overall_score']})", progress,
                {**position, "score": row["overall_score"], "recommendation": row["recommendation"]},
            )

        await asyncio.sleep(settings.discovery_delay_seconds)

    result = {
        "discovered_count": total,
        "analyzed_count": analyzed,
        "saved_count": saved,
        "skipped_count": skipped,
        "podcasts": outcomes,
    }
    log.info("Discovery (%s) done: %d found, %d saved, %d skipped", label, total, saved, skipped)
    message = f"Scan complete! Saved {saved} new podcasts" if total else "No new podcasts found"
    yield ProgressEvent("done", message, 100, result=result)


async def discover_podcasts(
    session: Session,
    category: str | None = None,
    limit: int | None = None,
    *,
    client: GeminiClient | None = None,
    context: OrganizationContext | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    return await drain(discover_events(
        session, category, limit, client=client, context=context, settings=settings,
    ))


# ---------------------------------------------------------------------------
# Outreach email
# ---------------------------------------------------------------------------


async def generate_outreach_email(
    session: Session,
    podcast_id: str,
    *,
    client: GeminiClient | None = None,
    context: OrganizationContext | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    podcast = store.require_podcast(session, podcast_id)
    client, context, settings = _resolve(client, context, settings)
    prompt = build_outreach_email_prompt(
        podcast.podcast_name,
        podcast.host_name,
        podcast.pitch_angle,
        json_parse(podcast.suggested_topics_json, []),
        podcast.value_proposition,
        context,
    )
    email = await client.generate(
        prompt, temperature=CREATIVE_TEMPERATURE,
        max_output_tokens=EMAIL_MAX_OUTPUT_TOKENS, json_output=False,
    )
    return {"podcast_id": podcast.id, "email": email}


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def compute_stats(session: Session) -> dict[str, Any]:
    podcasts = session.execute(select(PodcastAnalysis)).scalars().all()
    by_category: Counter[str] = Counter()
    by_status: Counter[str] = Counter()
    by_recommendation: Counter[str] = Counter()
    by_source: Counter[str] = Counter()
    for p in podcasts:
        by_category[p.podcast_category or "uncategorized"] += 1
        by_status[p.status] += 1
        by_recommendation[p.recommendation or "unscored"] += 1
        by_source[p.source] += 1
    return {
        "total": len(podcasts),
        "by_category": dict(by_category),
        "by_status": dict(by_status),
        "by_recommendation": dict(by_recommendation),
        "by_source": dict(by_source),
    }
