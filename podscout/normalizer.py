"""Turn raw model text into analysis dicts and table columns.

The single-subject path never fails: unparseable output is replaced by a
fallback record that keeps the raw text in ``fullAnalysis``. The discovery
path returns an empty list for anything that is not a JSON array.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from podscout.models import NEUTRAL_RECOMMENDATION, RECOMMENDATIONS
from podscout.schemas import PodcastInput
from podscout.utils import http_url, strip_code_fences

log = logging.getLogger(__name__)

NEUTRAL_SCORE = 50

_MISSING = object()


def _loads(raw_text: str | None) -> Any:
    try:
        return json.loads(strip_code_fences(raw_text or ""))
    except (json.JSONDecodeError, TypeError):
        return _MISSING


def fallback_analysis(raw_text: str, podcast_name: str) -> dict[str, Any]:
    """Deterministic placeholder used when the model output is not a JSON object."""
    return {
        "podcastName": podcast_name,
        "hostName": None,
        "overallScore": NEUTRAL_SCORE,
        "recommendation": NEUTRAL_RECOMMENDATION,
        "audienceFitScore": NEUTRAL_SCORE,
        "audienceAnalysis": {
            "description": "",
            "estimatedSize": "",
            "primaryListeners": [],
            "industryFocus": [],
            "seniorityLevel": "",
            "companyTypes": "",
        },
        "businessModel": {
            "isPaid": None,
            "estimatedCost": None,
            "sponsorshipOptions": [],
            "pastSponsors": [],
        },
        "contactInfo": {
            "contactName": None,
            "contactEmail": None,
            "linkedinUrl": None,
            "bestContactMethod": None,
            "outreachTips": [],
        },
        "pitchStrategy": {
            "suggestedTopics": [],
            "valueProposition": "",
            "pitchAngle": "",
            "matchedStory": "",
            "talkingPoints": [],
            "avoidTopics": [],
        },
        "risks": [],
        "fullAnalysis": raw_text,
    }


def parse_analysis(raw_text: str, podcast_name: str) -> dict[str, Any]:
    """Parse a single-subject analysis, substituting the fallback on failure.

    The caller's podcast name always wins over whatever the model echoed.
    """
    parsed = _loads(raw_text)
    if not isinstance(parsed, dict):
        log.warning("Unparseable analysis for %s, using fallback: %s", podcast_name, (raw_text or "")[:200])
        return fallback_analysis(raw_text, podcast_name)
    return {**parsed, "podcastName": podcast_name}


def parse_discovery(raw_text: str) -> list[dict[str, Any]]:
    """Parse a discovery batch; anything but a JSON array yields ``[]``."""
    parsed = _loads(raw_text)
    if not isinstance(parsed, list):
        log.warning("Discovery response is not a JSON array: %s", (raw_text or "")[:200])
        return []
    candidates = []
    for entry in parsed:
        if not isinstance(entry, dict):
            continue
        name = entry.get("podcastName")
        if not isinstance(name, str) or not name.strip():
            continue
        candidates.append({**entry, "podcastName": name.strip()})
    return candidates


def clamp_score(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return None
    return max(0, min(100, score))


def normalize_recommendation(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    rec = value.strip().upper().replace(" ", "_").replace("-", "_")
    return rec if rec in RECOMMENDATIONS else None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    return value.strip() or None


def _section(analysis: dict[str, Any], key: str) -> dict[str, Any]:
    value = analysis.get(key)
    return value if isinstance(value, dict) else {}


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def record_fields(
    analysis: dict[str, Any], subject: PodcastInput, candidate: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Denormalize an analysis dict into ``podcast_analyses`` column values.

    *candidate* is the discovery entry for discovered subjects; its audience
    and paid-flag fields fill gaps the analysis left.
    """
    candidate = candidate or {}
    audience = _section(analysis, "audienceAnalysis")
    business = _section(analysis, "businessModel")
    contact = _section(analysis, "contactInfo")
    pitch = _section(analysis, "pitchStrategy")

    is_paid = business.get("isPaid")
    if not isinstance(is_paid, bool):
        is_paid = candidate.get("isPaid") if isinstance(candidate.get("isPaid"), bool) else None
    full_analysis = analysis.get("fullAnalysis")

    return {
        "host_name": _text(analysis.get("hostName")) or _text(subject.host_name),
        "podcast_url": http_url(subject.podcast_url),
        "podcast_category": subject.category,
        "audience_description": (
            _text(audience.get("description"))
            or _text(candidate.get("audienceDescription"))
            or _text(subject.podcast_description)
        ),
        "audience_size": _text(audience.get("estimatedSize")) or _text(candidate.get("audienceSize")),
        "audience_fit_score": clamp_score(analysis.get("audienceFitScore")),
        "is_paid": is_paid,
        "estimated_cost": _text(business.get("estimatedCost")),
        "contact_name": _text(contact.get("contactName")),
        "contact_email": _text(contact.get("contactEmail")),
        "contact_linkedin": http_url(_text(contact.get("linkedinUrl"))),
        "contact_method": _text(contact.get("bestContactMethod")),
        "overall_score": clamp_score(analysis.get("overallScore")),
        "recommendation": normalize_recommendation(analysis.get("recommendation")),
        "suggested_topics_json": json.dumps(_string_list(pitch.get("suggestedTopics"))),
        "value_proposition": _text(pitch.get("valueProposition")),
        "pitch_angle": _text(pitch.get("pitchAngle")),
        "matched_story": _text(pitch.get("matchedStory")),
        # kept verbatim: for a fallback record this is the raw model output
        "full_analysis": full_analysis if isinstance(full_analysis, str) and full_analysis.strip() else None,
        "full_report_json": json.dumps(analysis, default=str),
    }
