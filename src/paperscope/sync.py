"""Sync coordinator: serialized, coalescing persistence writes per paper id."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Protocol

from paperscope.errors import PaperScopeError
from paperscope.health import HealthMonitor
from paperscope.models import PaperRecord
from paperscope.store import PaperStore

logger = logging.getLogger(__name__)


class PaperWriter(Protocol):
    """The slice of the persistence bridge the coordinator needs."""

    async def save_paper(
        self, record: PaperRecord, *, reference: str | None = None
    ) -> str | None: ...


class SyncCoordinator:
    """Persist records without racing writes for the same id.

    ``sync_paper`` only records the newest value; one drain task per id sends
    values one at a time, so the backend sees a suffix of the mutation
    sequence in order (intermediate values may be skipped). Each value carries
    a per-id sequence number, and a write that finishes after a newer value
    was recorded leaves ``sync_status`` to the newer write.
    """

    def __init__(self, store: PaperStore, writer: PaperWriter, health: HealthMonitor) -> None:
        self._store = store
        self._writer = writer
        self._health = health
        self._pending: dict[str, tuple[int, PaperRecord]] = {}
        self._latest_seq: dict[str, int] = {}
        self._in_flight: dict[str, asyncio.Event] = {}
        self._drains: set[asyncio.Task[None]] = set()
        self._references: dict[str, str] = {}
        self._discarded: set[str] = set()

    def is_in_flight(self, paper_id: str) -> bool:
        return paper_id in self._in_flight

    def has_pending(self, paper_id: str) -> bool:
        return paper_id in self._pending

    def sync_paper(self, record: PaperRecord) -> None:
        """Record ``record`` as the value to persist next for its id."""
        paper_id = record.id
        if paper_id in self._discarded or paper_id not in self._store:
            return
        seq = self._latest_seq.get(paper_id, 0) + 1
        self._latest_seq[paper_id] = seq
        self._pending[paper_id] = (seq, record)
        if paper_id in self._in_flight:
            return
        self._start_drain(paper_id)

    def _start_drain(self, paper_id: str) -> None:
        self._in_flight[paper_id] = asyncio.Event()
        task = asyncio.create_task(self._drain(paper_id))
        self._drains.add(task)
        task.add_done_callback(self._drains.discard)

    async def _drain(self, paper_id: str) -> None:
        try:
            while True:
                entry = self._pending.pop(paper_id, None)
                if entry is None:
                    break
                seq, record = entry
                await self._write(paper_id, seq, record)
        finally:
            done = self._in_flight.pop(paper_id, None)
            if done is not None:
                done.set()
        # A value recorded between the last pop and the marker clearing
        if paper_id in self._pending and paper_id not in self._discarded:
            self._start_drain(paper_id)

    def _is_latest(self, paper_id: str, seq: int) -> bool:
        return self._latest_seq.get(paper_id) == seq and paper_id not in self._pending

    async def _write(self, paper_id: str, seq: int, record: PaperRecord) -> None:
        healthy = await self._health.ensure_healthy()
        if paper_id in self._discarded:
            return
        if not healthy:
            logger.info("Backend unreachable, not saving %s", paper_id)
            self._store.set_sync_status(paper_id, "error")
            return

        self._store.set_sync_status(paper_id, "saving")
        try:
            reference = await self._writer.save_paper(
                record, reference=self._references.get(paper_id)
            )
        except PaperScopeError as e:
            logger.warning("Saving %s failed: %s", paper_id, e)
            if self._is_latest(paper_id, seq):
                self._store.set_sync_status(paper_id, "error")
            return
        except Exception:
            logger.error("Unexpected failure saving %s", paper_id, exc_info=True)
            if self._is_latest(paper_id, seq):
                self._store.set_sync_status(paper_id, "error")
            return

        if reference and isinstance(record.content, bytes):
            self._references[paper_id] = reference
            self._store.update(paper_id, lambda r: _swap_content(r, record.content, reference))
        if self._is_latest(paper_id, seq):
            self._store.set_sync_status(paper_id, "saved")

    async def discard(self, paper_id: str) -> None:
        """Forget an id: drop its pending value and wait out any in-flight write.

        The id stays tombstoned only while its drain is alive; afterwards
        records missing from the store are never written.
        """
        self._discarded.add(paper_id)
        self._pending.pop(paper_id, None)
        try:
            done = self._in_flight.get(paper_id)
            if done is not None:
                await done.wait()
        finally:
            self._discarded.discard(paper_id)
            self._latest_seq.pop(paper_id, None)
            self._references.pop(paper_id, None)

    async def join(self) -> None:
        """Wait until no drain is running."""
        while self._drains:
            await asyncio.gather(*list(self._drains), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._drains):
            task.cancel()
        await asyncio.gather(*list(self._drains), return_exceptions=True)
        self._pending.clear()


def _swap_content(current: PaperRecord, uploaded: bytes | str, reference: str) -> PaperRecord:
    """Replace uploaded bytes with their server reference, if still the same bytes."""
    if isinstance(current.content, bytes) and current.content == uploaded:
        return replace(current, content=reference)
    return current


__all__ = [
    "PaperWriter",
    "SyncCoordinator",
]
