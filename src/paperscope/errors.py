"""Error taxonomy for analysis and persistence failures.

Every failure that reaches a paper record is one of the classes below, so the
grid can show a short classified message instead of a raw traceback string.
"""

from __future__ import annotations

import json
import re

import httpx


class PaperScopeError(Exception):
    """Base class for classified failures."""

    kind = "unclassified"
    short_message = "Analysis failed"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.short_message)
        self.detail = detail


class CredentialMissing(PaperScopeError):
    kind = "credential_missing"
    short_message = "API key missing or rejected"


class NetworkUnreachable(PaperScopeError):
    kind = "network_unreachable"
    short_message = "Network unreachable"


class FetchFailed(NetworkUnreachable):
    """The stored PDF could not be downloaded for analysis."""

    kind = "fetch_failed"
    short_message = "Could not download the stored PDF"


class RequestTimeout(PaperScopeError):
    kind = "timeout"
    short_message = "Request timed out"


class MalformedResponse(PaperScopeError):
    kind = "malformed_response"
    short_message = "Model returned unusable output"


class RateLimited(PaperScopeError):
    kind = "rate_limited"
    short_message = "Rate limited, retry later"


class UpstreamUnavailable(PaperScopeError):
    kind = "upstream_unavailable"
    short_message = "Model service unavailable"


class ContentRejected(PaperScopeError):
    kind = "content_rejected"
    short_message = "Rejected by content safety filter"


class StorageWriteFailed(PaperScopeError):
    kind = "storage_write_failed"
    short_message = "Backend storage failed"


class Unclassified(PaperScopeError):
    kind = "unclassified"
    short_message = "Analysis failed"


_SAFETY_RE = re.compile(r"safety|blocked|content[ _-]?policy|prohibited", re.IGNORECASE)


def error_for_status(status: int, body: str = "") -> PaperScopeError:
    """Map an HTTP error status (and body text) to a classified error."""
    detail = f"HTTP {status}: {body[:200]}" if body else f"HTTP {status}"
    if status in (401, 403):
        return CredentialMissing(detail)
    if status in (408, 504):
        return RequestTimeout(detail)
    if status == 429:
        return RateLimited(detail)
    if status in (500, 502, 503):
        return UpstreamUnavailable(detail)
    if status == 400 and _SAFETY_RE.search(body):
        return ContentRejected(detail)
    return Unclassified(detail)


def classify_exception(exc: BaseException) -> PaperScopeError:
    """Map any exception into the taxonomy, keeping already-classified ones."""
    if isinstance(exc, PaperScopeError):
        return exc
    if isinstance(exc, httpx.TimeoutException | TimeoutError):
        return RequestTimeout(str(exc))
    if isinstance(exc, httpx.HTTPStatusError):
        return error_for_status(exc.response.status_code, exc.response.text)
    if isinstance(exc, httpx.TransportError | ConnectionError):
        return NetworkUnreachable(str(exc))
    if isinstance(exc, json.JSONDecodeError):
        return MalformedResponse(str(exc))
    return Unclassified(str(exc))


def describe_error(exc: BaseException) -> str:
    """Short user-facing message for a failed analysis."""
    classified = classify_exception(exc)
    if classified.detail and classified.detail != classified.short_message:
        return f"{classified.short_message}: {classified.detail[:160]}"
    return classified.short_message


__all__ = [
    "ContentRejected",
    "CredentialMissing",
    "FetchFailed",
    "MalformedResponse",
    "NetworkUnreachable",
    "PaperScopeError",
    "RateLimited",
    "RequestTimeout",
    "StorageWriteFailed",
    "Unclassified",
    "UpstreamUnavailable",
    "classify_exception",
    "describe_error",
    "error_for_status",
]
