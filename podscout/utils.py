"""Shared utility functions used across PodScout modules."""
from __future__ import annotations

import json
import re
from typing import Any

_MISSING = object()

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block (```json ... ```) if present."""
    stripped = text.strip()
    m = _FENCE_RE.match(stripped)
    return m.group(1) if m else stripped


def name_key(name: str) -> str:
    """Case-insensitive natural key for a podcast name."""
    return " ".join(name.split()).casefold()


def http_url(value: str | None) -> str | None:
    """Return *value* if it is an http(s) URL, else None."""
    if not value:
        return None
    url = value.strip()
    scheme = url.split(":", 1)[0].lower() if ":" in url else ""
    return url if scheme in ("http", "https") else None
