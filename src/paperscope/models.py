"""Data models and constants for the PaperScope workspace."""

from __future__ import annotations

import base64
import binascii
import re
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any, Literal

# Application identity: single source of truth for platformdirs config paths
CONFIG_APP_NAME = "paperscope"

# Per-paper analysis lifecycle
AnalysisStatus = Literal["idle", "analyzing", "success", "error"]
ANALYSIS_STATUSES: tuple[str, ...] = ("idle", "analyzing", "success", "error")

# Backend persistence state, independent of the analysis lifecycle
SyncStatus = Literal["unset", "saving", "saved", "error"]
SYNC_STATUSES: tuple[str, ...] = ("unset", "saving", "saved", "error")

# Concurrency and polling defaults
DEFAULT_MAX_PARALLEL = 2
MAX_PARALLEL_LIMIT = 8
HEALTH_INTERVAL_SECONDS = 30.0
HEALTH_TIMEOUT_SECONDS = 2.0

# Upper bound for managed-mode calls (the SDK path has no timeout of its own)
MANAGED_TIMEOUT_SECONDS = 600

DEFAULT_BACKEND_URL = "http://127.0.0.1:8080"
DEFAULT_MODEL = "gemini-3-flash-preview"
DEFAULT_EXTERNAL_BASE_URL = "https://api.openai.com/v1"
PDF_MIME_TYPE = "application/pdf"

# Pseudo-tabs of the tag filter
TAG_FILTER_ALL = "All"
TAG_FILTER_UNCATEGORIZED = "Uncategorized"

# Canonical analysis fields, in grid/detail display order
ANALYSIS_FIELDS: tuple[str, ...] = (
    "type",
    "title",
    "publication",
    "problem",
    "solution_idea",
    "contribution",
    "method",
    "model_architecture",
    "borrowable_ideas",
    "critique",
    "future_work",
    "mind_map",
)
ANALYSIS_FIELD_LABELS: dict[str, str] = {
    "type": "Type",
    "title": "Title",
    "publication": "Venue",
    "problem": "Problem",
    "solution_idea": "Solution",
    "contribution": "Contribution",
    "method": "Method",
    "model_architecture": "Model Arch",
    "borrowable_ideas": "Key Ideas",
    "critique": "Critique",
    "future_work": "Future Work",
    "mind_map": "Mind Map",
}

_TAG_SPLIT_RE = re.compile(r"[,，]")
_DATA_URI_RE = re.compile(r"^data:([^;,]*);base64,")


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """Structured summary extracted from one paper."""

    type: str = ""
    title: str = ""
    publication: str = ""
    problem: str = ""
    solution_idea: str = ""
    contribution: str = ""
    method: str = ""
    model_architecture: str = ""
    borrowable_ideas: str = ""
    critique: str = ""
    future_work: str = ""
    mind_map: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str) -> str:
        """Return a canonical field by name, or "" for unknown names."""
        if key in ANALYSIS_FIELDS:
            return getattr(self, key)
        return ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {name: getattr(self, name) for name in ANALYSIS_FIELDS}
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalysisResult:
        """Build from an already-canonical mapping (wire format, not raw LLM output)."""
        values = {name: str(data.get(name) or "") for name in ANALYSIS_FIELDS}
        extra = {k: v for k, v in data.items() if k not in ANALYSIS_FIELDS}
        return cls(**values, extra=extra)


@dataclass(frozen=True, slots=True)
class ComparisonRow:
    """One paper's line in a comparison table."""

    title: str = ""
    method: str = ""
    framework: str = ""
    main_ideas: str = ""


@dataclass(frozen=True, slots=True)
class ComparisonResult:
    """Model output comparing two or more analyzed papers."""

    summary: str
    papers: list[ComparisonRow] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class LLMSettings:
    """Model settings selecting managed or external (OpenAI-compatible) mode."""

    use_external: bool = False
    base_url: str = DEFAULT_EXTERNAL_BASE_URL
    api_key: str = ""
    model: str = DEFAULT_MODEL
    temperature: float = 0.0
    max_context_window: int = 300000
    timeout: int = 600  # seconds, external mode
    language: str = "Simplified Chinese"


@dataclass(frozen=True, slots=True)
class UploadedFile:
    """A file picked by the user, before it becomes a record."""

    name: str
    data: bytes


@dataclass(frozen=True, slots=True)
class PaperRecord:
    """Full client-side state for one uploaded paper.

    Records are immutable; every mutation produces a new record that
    replaces the previous one in the store.
    """

    id: str
    content: bytes | str
    file_name: str
    file_size: int
    upload_time: int  # epoch milliseconds
    analysis_status: AnalysisStatus = "idle"
    sync_status: SyncStatus = "unset"
    analysis: AnalysisResult | None = None
    error_message: str | None = None
    tags: tuple[str, ...] = ()
    annotations: tuple[str, ...] = ()

    @property
    def has_local_bytes(self) -> bool:
        return isinstance(self.content, bytes)

    @property
    def display_title(self) -> str:
        if self.analysis is not None and self.analysis.title:
            return self.analysis.title
        return self.file_name

    def with_status(self, status: AnalysisStatus) -> PaperRecord:
        """Move to ``idle`` or ``analyzing``, clearing result and error."""
        return replace(self, analysis_status=status, analysis=None, error_message=None)

    def with_analysis(self, analysis: AnalysisResult) -> PaperRecord:
        return replace(self, analysis_status="success", analysis=analysis, error_message=None)

    def with_error(self, message: str) -> PaperRecord:
        return replace(self, analysis_status="error", analysis=None, error_message=message)

    def with_tags(self, tags: Iterable[str]) -> PaperRecord:
        return replace(self, tags=normalize_tags(tags))


@dataclass(slots=True)
class UserConfig:
    """Persisted client preferences."""

    backend_url: str = DEFAULT_BACKEND_URL
    max_parallel: int = DEFAULT_MAX_PARALLEL
    health_interval_seconds: float = HEALTH_INTERVAL_SECONDS
    llm: LLMSettings = field(default_factory=LLMSettings)
    version: int = 1


def normalize_tags(tags: Iterable[str]) -> tuple[str, ...]:
    """Strip, drop empties and dedupe (case-sensitive, first occurrence wins)."""
    cleaned = (t.strip() for t in tags if isinstance(t, str))
    return tuple(dict.fromkeys(t for t in cleaned if t))


def parse_tag_input(text: str) -> tuple[str, ...]:
    """Parse comma-separated tag input (ASCII or full-width commas)."""
    return normalize_tags(_TAG_SPLIT_RE.split(text))


def decode_data_uri(uri: str) -> tuple[str, bytes]:
    """Split a base64 data URI into its MIME type and decoded bytes.

    Raises ValueError for anything that is not a base64 data URI.
    """
    match = _DATA_URI_RE.match(uri)
    if match is None:
        raise ValueError("not a base64 data URI")
    try:
        data = base64.b64decode(uri[match.end() :], validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid base64 payload: {e}") from e
    return match.group(1) or "application/octet-stream", data


def describe_data_uri(uri: str) -> tuple[str, int]:
    """MIME type and approximate decoded size of a data URI, without decoding it."""
    match = _DATA_URI_RE.match(uri)
    if match is None:
        return "unknown", 0
    payload = uri[match.end() :].rstrip("=")
    return match.group(1) or "application/octet-stream", len(payload) * 3 // 4


__all__ = [
    "ANALYSIS_FIELDS",
    "ANALYSIS_FIELD_LABELS",
    "ANALYSIS_STATUSES",
    "CONFIG_APP_NAME",
    "DEFAULT_BACKEND_URL",
    "DEFAULT_EXTERNAL_BASE_URL",
    "DEFAULT_MAX_PARALLEL",
    "DEFAULT_MODEL",
    "HEALTH_INTERVAL_SECONDS",
    "HEALTH_TIMEOUT_SECONDS",
    "MANAGED_TIMEOUT_SECONDS",
    "MAX_PARALLEL_LIMIT",
    "PDF_MIME_TYPE",
    "SYNC_STATUSES",
    "TAG_FILTER_ALL",
    "TAG_FILTER_UNCATEGORIZED",
    "AnalysisResult",
    "AnalysisStatus",
    "ComparisonResult",
    "ComparisonRow",
    "LLMSettings",
    "PaperRecord",
    "SyncStatus",
    "UploadedFile",
    "UserConfig",
    "decode_data_uri",
    "describe_data_uri",
    "normalize_tags",
    "parse_tag_input",
]
