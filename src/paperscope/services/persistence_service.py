"""Persistence bridge: HTTP client for the paper metadata/PDF backend.

Reads raise classified errors so callers can tell "backend down" from "bad
data"; ``delete_paper``, ``get_health`` and the banner/credential helpers
never raise and degrade to False / None instead.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from paperscope.config import safe_get
from paperscope.errors import (
    FetchFailed,
    NetworkUnreachable,
    RequestTimeout,
    StorageWriteFailed,
)
from paperscope.llm_providers import to_data_uri
from paperscope.models import (
    ANALYSIS_STATUSES,
    HEALTH_TIMEOUT_SECONDS,
    AnalysisResult,
    PaperRecord,
    normalize_tags,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/api"
PAPERS_PATH = f"{API_PREFIX}/papers"
HEALTH_PATH = f"{API_PREFIX}/health"
BANNER_PATH = f"{API_PREFIX}/config/banner"
ENV_CONFIG_PATH = f"{API_PREFIX}/config/env"
FILES_PATH = f"{API_PREFIX}/files"
REQUEST_TIMEOUT = 30  # seconds, metadata calls
UPLOAD_TIMEOUT = 120  # seconds, saves that carry PDF bytes


def file_reference(paper_id: str) -> str:
    """Server-relative path a stored PDF is served from."""
    return f"{FILES_PATH}/{paper_id}.pdf"


# ============================================================================
# Wire codec
# ============================================================================


def record_to_wire(record: PaperRecord, *, reference: str | None = None) -> dict[str, Any]:
    """Serialize a record for ``POST /api/papers``.

    Bytes content travels as a base64 data URI in ``fileData``; a string
    reference (or ``reference`` when the bytes were already uploaded) travels
    as ``fileUrl`` so the server keeps its stored file.
    """
    payload: dict[str, Any] = {
        "id": record.id,
        "fileName": record.file_name,
        "fileSize": record.file_size,
        "uploadTime": record.upload_time,
        "status": record.analysis_status,
        "analysis": record.analysis.to_dict() if record.analysis is not None else None,
        "errorMessage": record.error_message,
        "tags": list(record.tags),
        "screenshots": list(record.annotations),
    }
    if reference is not None:
        payload["fileUrl"] = reference
    elif isinstance(record.content, bytes):
        payload["fileData"] = to_data_uri(record.content)
    else:
        payload["fileUrl"] = record.content
    return payload


def record_from_wire(data: Any) -> PaperRecord | None:
    """Deserialize one stored paper; returns None when it has no usable id."""
    if not isinstance(data, dict):
        return None
    paper_id = safe_get(data, "id", "", str)
    if not paper_id:
        return None

    status = safe_get(data, "status", "idle", str)
    if status not in ANALYSIS_STATUSES or status == "analyzing":
        # An analysis in flight when the record was saved did not survive the reload
        status = "idle"

    analysis: AnalysisResult | None = None
    raw_analysis = data.get("analysis")
    if status == "success":
        if isinstance(raw_analysis, dict) and raw_analysis.get("title"):
            analysis = AnalysisResult.from_dict(raw_analysis)
        else:
            status = "idle"

    error_message: str | None = None
    if status == "error":
        error_message = safe_get(data, "errorMessage", "", str) or "Analysis failed"

    raw_tags = safe_get(data, "tags", [], list)
    raw_shots = safe_get(data, "screenshots", [], list)
    return PaperRecord(
        id=paper_id,
        content=safe_get(data, "fileUrl", "", str) or file_reference(paper_id),
        file_name=safe_get(data, "fileName", "", str) or f"{paper_id}.pdf",
        file_size=safe_get(data, "fileSize", 0, int),
        upload_time=safe_get(data, "uploadTime", 0, int),
        analysis_status=status,
        sync_status="saved",
        analysis=analysis,
        error_message=error_message,
        tags=normalize_tags(raw_tags),
        annotations=tuple(s for s in raw_shots if isinstance(s, str)),
    )


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body)[:200]
    return str(body)[:200]


# ============================================================================
# Bridge
# ============================================================================


class PersistenceBridge:
    """Async client for the papers backend, keyed by paper id."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def list_papers(self) -> list[PaperRecord]:
        """Fetch every stored paper; malformed entries are skipped."""
        try:
            response = await self._client.get(PAPERS_PATH, timeout=REQUEST_TIMEOUT)
        except httpx.TimeoutException as e:
            raise RequestTimeout(str(e)) from e
        except httpx.HTTPError as e:
            raise NetworkUnreachable(str(e)) from e
        if response.status_code != 200:
            raise StorageWriteFailed(f"HTTP {response.status_code}: {_error_text(response)}")
        try:
            payload = response.json()
        except ValueError as e:
            raise StorageWriteFailed("papers endpoint returned invalid JSON") from e
        if not isinstance(payload, list):
            raise StorageWriteFailed("papers endpoint returned a non-list payload")

        records: list[PaperRecord] = []
        for item in payload:
            record = record_from_wire(item)
            if record is None:
                logger.warning("Skipping malformed stored paper entry")
                continue
            records.append(record)
        return records

    async def save_paper(self, record: PaperRecord, *, reference: str | None = None) -> str | None:
        """Upsert a record; returns the server's file reference for it."""
        payload = record_to_wire(record, reference=reference)
        timeout = UPLOAD_TIMEOUT if "fileData" in payload else REQUEST_TIMEOUT
        try:
            response = await self._client.post(PAPERS_PATH, json=payload, timeout=timeout)
        except httpx.TimeoutException as e:
            raise RequestTimeout(str(e)) from e
        except httpx.HTTPError as e:
            raise NetworkUnreachable(str(e)) from e
        if response.status_code >= 400:
            raise StorageWriteFailed(f"HTTP {response.status_code}: {_error_text(response)}")
        try:
            body = response.json()
        except ValueError:
            body = {}
        file_url = body.get("fileUrl") if isinstance(body, dict) else None
        if isinstance(file_url, str) and file_url:
            return file_url
        return file_reference(record.id)

    async def delete_paper(self, paper_id: str) -> bool:
        """Best-effort remote delete. Never raises."""
        try:
            response = await self._client.delete(
                f"{PAPERS_PATH}/{paper_id}", timeout=REQUEST_TIMEOUT
            )
        except httpx.HTTPError:
            logger.warning("Remote delete of %s failed", paper_id, exc_info=True)
            return False
        if response.status_code >= 400:
            logger.warning("Remote delete of %s returned %d", paper_id, response.status_code)
            return False
        return True

    async def get_health(self) -> bool:
        """Single fast request with a short timeout. Never raises."""
        try:
            response = await self._client.get(HEALTH_PATH, timeout=HEALTH_TIMEOUT_SECONDS)
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def get_banner(self) -> str | None:
        try:
            response = await self._client.get(BANNER_PATH, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError):
            logger.warning("Could not load banner config", exc_info=True)
            return None
        banner = body.get("banner") if isinstance(body, dict) else None
        return banner if isinstance(banner, str) and banner else None

    async def set_banner(self, banner: str) -> bool:
        try:
            response = await self._client.post(
                BANNER_PATH, json={"banner": banner}, timeout=UPLOAD_TIMEOUT
            )
        except httpx.HTTPError:
            logger.warning("Could not save banner config", exc_info=True)
            return False
        return response.status_code < 400

    async def get_managed_credential(self) -> str | None:
        """Fetch the server-supplied key for managed mode, or None."""
        try:
            response = await self._client.get(ENV_CONFIG_PATH, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError):
            logger.warning("Could not fetch managed credential from backend", exc_info=True)
            return None
        api_key = body.get("apiKey") if isinstance(body, dict) else None
        return api_key if isinstance(api_key, str) and api_key else None

    async def fetch_file(self, reference: str) -> bytes:
        """Download a stored PDF by its server reference."""
        try:
            response = await self._client.get(
                reference, timeout=UPLOAD_TIMEOUT, follow_redirects=True
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise FetchFailed(f"{reference}: {e}") from e
        return response.content


__all__ = [
    "API_PREFIX",
    "PersistenceBridge",
    "file_reference",
    "record_from_wire",
    "record_to_wire",
]
