"""Async client for the Gemini ``generateContent`` REST endpoint.

One request carries an ordered list of parts: an optional inline attachment
(base64 + media type) followed by the prompt text. The API key travels as the
``key`` query parameter. Failures map onto the errors in ``podscout.errors``;
nothing is retried here.
"""
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from podscout.config import Settings, get_settings
from podscout.errors import AttachmentTooLarge, EmptyProviderResponse, ProviderError, ProviderUnavailable

log = logging.getLogger(__name__)

MAX_ATTACHMENT_BYTES = 15 * 1024 * 1024

ANALYSIS_TEMPERATURE = 0.3
CREATIVE_TEMPERATURE = 0.7
DEFAULT_MAX_OUTPUT_TOKENS = 4096
EMAIL_MAX_OUTPUT_TOKENS = 1024


@dataclass(frozen=True)
class Attachment:
    """A binary document sent inline with a prompt, kept base64-encoded."""
    data: str
    mime_type: str = "application/pdf"
    filename: str | None = None

    @classmethod
    def from_bytes(cls, raw: bytes, mime_type: str = "application/pdf", filename: str | None = None) -> Attachment:
        return cls(base64.b64encode(raw).decode("ascii"), mime_type, filename)

    @property
    def estimated_size(self) -> int:
        """Decoded size estimate; base64 is ~33% larger than the payload."""
        return int(len(self.data) * 0.75)


def check_attachment_size(attachment: Attachment, limit: int = MAX_ATTACHMENT_BYTES) -> None:
    size = attachment.estimated_size
    if size > limit:
        raise AttachmentTooLarge(size, limit)


def extract_text(payload: dict[str, Any]) -> str:
    """Join the text parts of the first candidate; empty string if there are none."""
    candidates = payload.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
    return "".join(texts)


class GeminiClient:
    """Send prompts (optionally with a document) to Gemini and return raw text."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        api_key: str | None = None,
        model: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.url = f"{settings.gemini_api_base.rstrip('/')}/{self.model}:generateContent"
        self.timeout = settings.request_timeout_seconds
        self._transport = transport

    def build_request(
        self,
        prompt: str,
        attachment: Attachment | None = None,
        *,
        temperature: float = ANALYSIS_TEMPERATURE,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        json_output: bool = True,
    ) -> dict[str, Any]:
        parts: list[dict[str, Any]] = []
        if attachment is not None:
            parts.append({"inlineData": {"mimeType": attachment.mime_type, "data": attachment.data}})
        parts.append({"text": prompt})
        config: dict[str, Any] = {"temperature": temperature, "maxOutputTokens": max_output_tokens}
        if json_output:
            config["responseMimeType"] = "application/json"
        return {"contents": [{"parts": parts}], "generationConfig": config}

    async def generate(
        self,
        prompt: str,
        attachment: Attachment | None = None,
        *,
        temperature: float = ANALYSIS_TEMPERATURE,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        json_output: bool = True,
    ) -> str:
        """Invoke the model and return its raw text output.

        Raises:
            AttachmentTooLarge: before any network I/O, if the attachment exceeds 15 MB.
            ProviderUnavailable: missing API key or transport failure.
            ProviderError: non-2xx status from the provider.
            EmptyProviderResponse: a 2xx response without extractable text.
        """
        if attachment is not None:
            check_attachment_size(attachment)
        if not self.api_key:
            raise ProviderUnavailable("GEMINI_API_KEY not configured")

        body = self.build_request(
            prompt, attachment,
            temperature=temperature, max_output_tokens=max_output_tokens, json_output=json_output,
        )
        if attachment is not None:
            log.info("Sending %dKB base64 attachment to %s", len(attachment.data) // 1024, self.model)

        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport) as client:
                resp = await client.post(self.url, params={"key": self.api_key}, json=body)
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"Gemini request failed: {exc}") from exc

        if not resp.is_success:
            log.warning("Gemini API error %s: %s", resp.status_code, resp.text[:500])
            raise ProviderError(resp.status_code, resp.text)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise EmptyProviderResponse("Gemini returned a non-JSON envelope") from exc

        text = extract_text(payload) if isinstance(payload, dict) else ""
        if not text.strip():
            log.warning("No text in Gemini response: %s", str(payload)[:500])
            raise EmptyProviderResponse()
        return text
