"""Error taxonomy shared by the orchestrators, the API and the MCP server.

Every error carries the HTTP status the API answers with. None of them is
retried automatically; the operator re-initiates the action.
"""
from __future__ import annotations

_BODY_PREVIEW = 200


class ScoutError(Exception):
    status_code = 500


class ValidationError(ScoutError):
    """Required input is missing or malformed."""
    status_code = 400


class NotFoundError(ScoutError):
    status_code = 404


class DuplicatePodcastError(ScoutError):
    """A podcast with the same (case-insensitive) name already exists."""
    status_code = 409

    def __init__(self, name: str, existing_id: str | None = None):
        super().__init__(f"Podcast '{name}' is already in the database")
        self.name = name
        self.existing_id = existing_id


class AttachmentTooLarge(ScoutError):
    status_code = 400

    def __init__(self, estimated_bytes: int, limit_bytes: int):
        limit_mb = limit_bytes // (1024 * 1024)
        super().__init__(f"Media kit PDF is too large. Please use a file under {limit_mb}MB.")
        self.estimated_bytes = estimated_bytes
        self.limit_bytes = limit_bytes


class ProviderUnavailable(ScoutError):
    """The model provider could not be reached (or is not configured)."""
    status_code = 503


class ProviderError(ScoutError):
    """The model provider answered with a non-success HTTP status."""
    status_code = 502

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = (body or "")[:_BODY_PREVIEW]
        if status == 413:
            message = "Media kit PDF is too large for analysis. Try a smaller file."
            self.status_code = 400
        elif status == 429:
            message = "API rate limit exceeded. Please wait a moment and try again."
            self.status_code = 429
        else:
            message = f"AI analysis failed: {self.body}"
        super().__init__(message)


class EmptyProviderResponse(ScoutError):
    status_code = 502

    def __init__(self, message: str = "No response from AI. The model returned no text."):
        super().__init__(message)


class PersistenceError(ScoutError):
    status_code = 500


class OperationTimeout(ScoutError):
    status_code = 504


class AuthenticationError(ScoutError):
    """The auth provider rejected a code exchange or session."""
    status_code = 401
