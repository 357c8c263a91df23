"""Paper state store: the single shared mapping from paper id to its record."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from dataclasses import replace

from paperscope.models import (
    TAG_FILTER_ALL,
    TAG_FILTER_UNCATEGORIZED,
    PaperRecord,
    SyncStatus,
)

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


class PaperStore:
    """Insertion-ordered id → PaperRecord mapping.

    Every write replaces the whole record (read-modify-write through
    ``update``), never a partial patch, so interleaved mutations of unrelated
    fields cannot lose each other. Writes to ids that are no longer present
    are silently dropped, which is how results for deleted papers are
    discarded.
    """

    def __init__(self) -> None:
        self._records: dict[str, PaperRecord] = {}
        self._listeners: list[ChangeListener] = []

    def __contains__(self, paper_id: object) -> bool:
        return paper_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[PaperRecord]:
        return iter(list(self._records.values()))

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, paper_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(paper_id)
            except Exception:
                logger.warning("Store listener failed for %s", paper_id, exc_info=True)

    def get(self, paper_id: str) -> PaperRecord | None:
        return self._records.get(paper_id)

    def all(self) -> list[PaperRecord]:
        return list(self._records.values())

    def ids(self) -> list[str]:
        return list(self._records)

    def add(self, record: PaperRecord) -> PaperRecord:
        """Insert or replace a record."""
        self._records[record.id] = record
        self._notify(record.id)
        return record

    def update(
        self, paper_id: str, fn: Callable[[PaperRecord], PaperRecord]
    ) -> PaperRecord | None:
        """Replace a record with ``fn(current)``; returns None if the id is gone."""
        current = self._records.get(paper_id)
        if current is None:
            return None
        updated = fn(current)
        if updated.id != paper_id:
            raise ValueError(f"update for {paper_id!r} returned record {updated.id!r}")
        self._records[paper_id] = updated
        self._notify(paper_id)
        return updated

    def set_sync_status(self, paper_id: str, status: SyncStatus) -> PaperRecord | None:
        current = self._records.get(paper_id)
        if current is None or current.sync_status == status:
            return current
        return self.update(paper_id, lambda r: replace(r, sync_status=status))

    def remove(self, paper_id: str) -> PaperRecord | None:
        record = self._records.pop(paper_id, None)
        if record is not None:
            self._notify(paper_id)
        return record

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def all_tags(self) -> list[str]:
        """Sorted unique tags across all records."""
        return sorted({tag for record in self._records.values() for tag in record.tags})

    def filter_by_tag(self, tag: str) -> list[PaperRecord]:
        """Records visible under a tag tab (``All`` / ``Uncategorized`` are pseudo-tabs)."""
        if tag == TAG_FILTER_ALL:
            return self.all()
        if tag == TAG_FILTER_UNCATEGORIZED:
            return [r for r in self._records.values() if not r.tags]
        return [r for r in self._records.values() if tag in r.tags]

    def count_for_tag(self, tag: str) -> int:
        return len(self.filter_by_tag(tag))


__all__ = [
    "ChangeListener",
    "PaperStore",
]
