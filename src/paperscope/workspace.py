"""Workspace: the per-session coordinator that wires store, queue, sync and health."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import time
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from pathlib import Path

from paperscope.analysis_queue import AnalysisQueue, AnalysisTask
from paperscope.errors import StorageWriteFailed, describe_error
from paperscope.health import HealthMonitor
from paperscope.llm_providers import LLMProvider, resolve_provider, to_data_uri
from paperscope.models import (
    ANALYSIS_FIELDS,
    DEFAULT_MAX_PARALLEL,
    HEALTH_INTERVAL_SECONDS,
    ComparisonResult,
    LLMSettings,
    PaperRecord,
    UploadedFile,
    decode_data_uri,
    normalize_tags,
)
from paperscope.services.analysis_service import AnalysisClient
from paperscope.services.persistence_service import PersistenceBridge
from paperscope.store import PaperStore
from paperscope.sync import SyncCoordinator

logger = logging.getLogger(__name__)

PDF_SUFFIX = ".pdf"


def _new_paper_id() -> str:
    return str(uuid.uuid4())


def _now_ms() -> int:
    return int(time.time() * 1000)


class Workspace:
    """One session's papers and the machinery that analyzes and persists them.

    Constructed once and passed by reference; holds every piece of mutable
    session state (records, queue bookkeeping, in-flight writes, the cached
    managed-mode credential).
    """

    def __init__(
        self,
        *,
        bridge: PersistenceBridge,
        settings: LLMSettings | None = None,
        max_parallel: int = DEFAULT_MAX_PARALLEL,
        health_interval: float = HEALTH_INTERVAL_SECONDS,
        analysis_client: AnalysisClient | None = None,
        id_factory: Callable[[], str] = _new_paper_id,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._bridge = bridge
        self._settings = settings or LLMSettings()
        self._id_factory = id_factory
        self._clock = clock
        self._credential: str | None = None
        self._credential_task: asyncio.Task[str | None] | None = None

        self.store = PaperStore()
        self.health = HealthMonitor(bridge.get_health, interval=health_interval)
        self.sync = SyncCoordinator(self.store, bridge, self.health)
        self.queue = AnalysisQueue(self._run_analysis, max_parallel=max_parallel)
        self.analysis = analysis_client or AnalysisClient(
            provider_factory=self._provider_for,
            fetch_file=bridge.fetch_file,
        )
        self.health.subscribe(self._on_health_changed)

    @property
    def settings(self) -> LLMSettings:
        return self._settings

    @property
    def bridge(self) -> PersistenceBridge:
        return self._bridge

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, *, poll: bool = True) -> None:
        """Check the backend, load stored papers when reachable, start polling."""
        if await self.health.check():
            await self.load_papers()
        if poll:
            self.health.start()

    async def close(self) -> None:
        await self.health.stop()
        await self.queue.close()
        await self.sync.close()

    async def load_papers(self) -> int:
        """Merge stored papers into the store; local records win on conflict."""
        try:
            records = await self._bridge.list_papers()
        except Exception as e:
            logger.warning("Could not load stored papers: %s", e)
            return 0
        loaded = 0
        for record in records:
            if record.id in self.store:
                continue
            self.store.add(record)
            loaded += 1
        logger.info("Loaded %d stored papers", loaded)
        return loaded

    async def join(self) -> None:
        """Wait until analysis and sync are both quiescent."""
        while True:
            await self.queue.join()
            await self.sync.join()
            if not len(self.queue):
                return

    def _on_health_changed(self, healthy: bool) -> None:
        if not healthy:
            return
        # Retry records whose last save failed while the backend was down
        for record in self.store.all():
            if record.sync_status == "error":
                self.sync.sync_paper(record)

    async def recheck_health(self) -> bool:
        return await self.health.check()

    # ------------------------------------------------------------------
    # Managed-mode credential (fetched once per session, single-flight)
    # ------------------------------------------------------------------

    async def managed_credential(self) -> str | None:
        if self._credential:
            return self._credential
        if self._credential_task is None or self._credential_task.done():
            self._credential_task = asyncio.create_task(self._bridge.get_managed_credential())
        credential = await asyncio.shield(self._credential_task)
        if credential:
            self._credential = credential
        return credential

    async def _provider_for(self, settings: LLMSettings) -> LLMProvider:
        api_key = None if settings.use_external else await self.managed_credential()
        return resolve_provider(settings, http_client=self._bridge.client, managed_api_key=api_key)

    def update_settings(self, settings: LLMSettings) -> None:
        """Use new model settings for future analyses (running ones keep theirs)."""
        self._settings = settings

    # ------------------------------------------------------------------
    # Uploads and analysis
    # ------------------------------------------------------------------

    async def upload(
        self, files: Sequence[UploadedFile], tags: Iterable[str] = ()
    ) -> list[PaperRecord]:
        """Create records for new files, persist and queue them.

        Rejected before any papers call when the backend is unreachable.
        """
        if not files:
            return []
        if not await self.health.ensure_healthy():
            raise StorageWriteFailed("backend unavailable; upload rejected")

        initial_tags = normalize_tags(tags)
        created: list[PaperRecord] = []
        for upload in files:
            record = PaperRecord(
                id=self._id_factory(),
                content=upload.data,
                file_name=upload.name,
                file_size=len(upload.data),
                upload_time=self._clock(),
                tags=initial_tags,
            )
            self.store.add(record)
            self.sync.sync_paper(record)
            created.append(record)
        for record in created:
            self._enqueue(record)
        return created

    async def upload_paths(
        self, paths: Iterable[Path], tags: Iterable[str] = ()
    ) -> list[PaperRecord]:
        """Read PDFs from disk and upload them; non-PDF paths are rejected."""
        files: list[UploadedFile] = []
        for path in paths:
            if path.suffix.lower() != PDF_SUFFIX:
                raise ValueError(f"not a PDF file: {path}")
            data = await asyncio.to_thread(path.read_bytes)
            files.append(UploadedFile(name=path.name, data=data))
        return await self.upload(files, tags)

    def _enqueue(self, record: PaperRecord) -> bool:
        return self.queue.enqueue(
            AnalysisTask(paper_id=record.id, content=record.content, settings=self._settings)
        )

    def retry(self, paper_id: str) -> bool:
        """Re-queue a paper from ``idle`` with its current content."""
        record = self.store.get(paper_id)
        if record is None or self.queue.is_pending(paper_id):
            return False
        updated = self.store.update(paper_id, lambda r: r.with_status("idle"))
        if updated is None:
            return False
        self.sync.sync_paper(updated)
        return self._enqueue(updated)

    async def _run_analysis(self, task: AnalysisTask) -> None:
        started = self.store.update(task.paper_id, lambda r: r.with_status("analyzing"))
        if started is None:
            return
        self.sync.sync_paper(started)
        try:
            result = await self.analysis.analyze(task.content, task.settings)
        except Exception as e:
            logger.warning("Analysis of %s failed: %s", task.paper_id, e)
            message = describe_error(e)
            finished = self.store.update(task.paper_id, lambda r: r.with_error(message))
        else:
            finished = self.store.update(task.paper_id, lambda r: r.with_analysis(result))
        if finished is None:
            logger.debug("Discarding analysis result for deleted paper %s", task.paper_id)
            return
        self.sync.sync_paper(finished)

    # ------------------------------------------------------------------
    # User edits
    # ------------------------------------------------------------------

    def _mutate(self, paper_id: str, fn: Callable[[PaperRecord], PaperRecord]) -> PaperRecord:
        updated = self.store.update(paper_id, fn)
        if updated is None:
            raise KeyError(paper_id)
        self.sync.sync_paper(updated)
        return updated

    def set_tags(self, paper_id: str, tags: Iterable[str]) -> PaperRecord:
        return self._mutate(paper_id, lambda r: r.with_tags(tags))

    def update_analysis_field(self, paper_id: str, field: str, text: str) -> PaperRecord:
        """Overwrite one field of a finished analysis with user-edited text."""
        if field not in ANALYSIS_FIELDS:
            raise ValueError(f"unknown analysis field: {field}")
        if field == "title" and not text.strip():
            raise ValueError("title cannot be empty")

        def _edit(record: PaperRecord) -> PaperRecord:
            if record.analysis_status != "success" or record.analysis is None:
                raise ValueError(f"paper {paper_id} has no analysis to edit")
            return replace(record, analysis=replace(record.analysis, **{field: text}))

        return self._mutate(paper_id, _edit)

    def add_annotation(self, paper_id: str, data_uri: str) -> PaperRecord:
        return self._mutate(
            paper_id, lambda r: replace(r, annotations=(*r.annotations, data_uri))
        )

    async def add_annotation_file(self, paper_id: str, path: Path) -> PaperRecord:
        """Attach an image file as a screenshot annotation."""
        mime_type, _ = mimetypes.guess_type(path.name)
        if not mime_type or not mime_type.startswith("image/"):
            raise ValueError(f"not an image file: {path}")
        data = await asyncio.to_thread(path.read_bytes)
        return self.add_annotation(paper_id, to_data_uri(data, mime_type))

    def remove_annotation(self, paper_id: str, index: int) -> PaperRecord:
        def _remove(record: PaperRecord) -> PaperRecord:
            if not 0 <= index < len(record.annotations):
                raise IndexError(index)
            kept = record.annotations[:index] + record.annotations[index + 1 :]
            return replace(record, annotations=kept)

        return self._mutate(paper_id, _remove)

    async def export_annotation(self, paper_id: str, index: int, directory: Path) -> Path:
        """Write one screenshot to ``directory`` so an image viewer can open it."""
        record = self.store.get(paper_id)
        if record is None:
            raise KeyError(paper_id)
        if not 0 <= index < len(record.annotations):
            raise IndexError(index)
        mime_type, data = decode_data_uri(record.annotations[index])
        suffix = mimetypes.guess_extension(mime_type) or ".img"
        path = directory / f"{paper_id}-{index + 1}{suffix}"
        directory.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)
        return path

    async def delete(self, paper_id: str) -> bool:
        """Remove a paper everywhere; the remote delete is best effort."""
        if self.store.remove(paper_id) is None:
            return False
        self.queue.remove(paper_id)
        await self.sync.discard(paper_id)
        await self._bridge.delete_paper(paper_id)
        return True

    async def compare(self, paper_ids: Sequence[str]) -> ComparisonResult:
        """Compare analyzed papers (not routed through the analysis queue)."""
        records = [r for pid in paper_ids if (r := self.store.get(pid)) is not None]
        return await self.analysis.compare(records, self._settings)


__all__ = [
    "Workspace",
]
