"""Shared test fixtures for PaperScope tests."""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

import pytest

from paperscope.errors import StorageWriteFailed
from paperscope.models import (
    AnalysisResult,
    ComparisonResult,
    ComparisonRow,
    LLMSettings,
    PaperRecord,
)
from paperscope.workspace import Workspace


def _analysis(**overrides: Any) -> AnalysisResult:
    values: dict[str, Any] = {
        "type": "LLM",
        "title": "Attention Is All You Need",
        "publication": "NeurIPS 2017",
        "problem": "Recurrent models are slow to train.",
        "solution_idea": "Use attention only.",
        "method": "Transformer encoder-decoder.",
    }
    values.update(overrides)
    return AnalysisResult(**values)


# ── Fakes ────────────────────────────────────────────────────────────────────


class FakeBridge:
    """In-memory stand-in for PersistenceBridge with call recording."""

    def __init__(self) -> None:
        self.healthy = True
        self.papers: list[PaperRecord] = []
        self.credential: str | None = "managed-key"
        self.banner = ""
        self.files: dict[str, bytes] = {}
        self.client: Any = None

        self.saved: list[PaperRecord] = []
        self.save_references: list[str | None] = []
        self.save_attempts = 0
        self.fail_saves = 0
        self.save_gate: asyncio.Event | None = None
        self.deleted: list[str] = []
        self.health_calls = 0
        self.list_calls = 0
        self.credential_calls = 0
        self._active_saves: dict[str, int] = {}
        self.max_concurrent_saves_per_id = 0

    @property
    def papers_calls(self) -> int:
        """Every call that touches the papers endpoint."""
        return self.list_calls + self.save_attempts + len(self.deleted)

    def saved_for(self, paper_id: str) -> list[PaperRecord]:
        return [r for r in self.saved if r.id == paper_id]

    async def get_health(self) -> bool:
        self.health_calls += 1
        return self.healthy

    async def list_papers(self) -> list[PaperRecord]:
        self.list_calls += 1
        return list(self.papers)

    async def save_paper(self, record: PaperRecord, *, reference: str | None = None) -> str:
        self.save_attempts += 1
        active = self._active_saves.get(record.id, 0) + 1
        self._active_saves[record.id] = active
        self.max_concurrent_saves_per_id = max(self.max_concurrent_saves_per_id, active)
        try:
            if self.save_gate is not None:
                await self.save_gate.wait()
            else:
                await asyncio.sleep(0)
            if self.fail_saves:
                self.fail_saves -= 1
                raise StorageWriteFailed("HTTP 500: disk full")
            self.saved.append(record)
            self.save_references.append(reference)
            return f"/api/files/{record.id}.pdf"
        finally:
            self._active_saves[record.id] -= 1

    async def delete_paper(self, paper_id: str) -> bool:
        self.deleted.append(paper_id)
        return True

    async def get_banner(self) -> str | None:
        return self.banner or None

    async def set_banner(self, banner: str) -> bool:
        self.banner = banner
        return True

    async def get_managed_credential(self) -> str | None:
        self.credential_calls += 1
        await asyncio.sleep(0)
        return self.credential

    async def fetch_file(self, reference: str) -> bytes:
        return self.files[reference]


class FakeAnalyzer:
    """Stand-in for AnalysisClient; ``gate`` holds every analysis until set."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.gate.set()
        self.calls: list[bytes | str] = []
        self.settings_seen: list[LLMSettings] = []
        self.failures: dict[bytes | str, Exception] = {}
        self.active = 0
        self.max_active = 0
        self.compare_calls: list[list[str]] = []

    def block(self) -> None:
        self.gate.clear()

    def release(self) -> None:
        self.gate.set()

    async def analyze(self, content: bytes | str, settings: LLMSettings) -> AnalysisResult:
        self.calls.append(content)
        self.settings_seen.append(settings)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await self.gate.wait()
            if content in self.failures:
                raise self.failures[content]
            name = content.decode() if isinstance(content, bytes) else content
            return _analysis(title=f"Title of {name}")
        finally:
            self.active -= 1

    async def compare(self, records: list[PaperRecord], settings: LLMSettings) -> ComparisonResult:
        self.compare_calls.append([r.id for r in records])
        rows = [ComparisonRow(title=r.display_title) for r in records]
        return ComparisonResult(summary="They differ in method.", papers=rows)


# ── Factories ────────────────────────────────────────────────────────────────


@pytest.fixture
def make_analysis():
    """Factory fixture for AnalysisResult with a populated title and problem."""
    return _analysis


@pytest.fixture
def make_record():
    """Factory fixture for PaperRecord instances with sensible defaults."""

    def _make(paper_id: str = "p1", **overrides: Any) -> PaperRecord:
        values: dict[str, Any] = {
            "id": paper_id,
            "content": f"%PDF-1.4 {paper_id}".encode(),
            "file_name": f"{paper_id}.pdf",
            "file_size": 16,
            "upload_time": 1_700_000_000_000,
        }
        values.update(overrides)
        return PaperRecord(**values)

    return _make


@pytest.fixture
def fake_bridge() -> FakeBridge:
    return FakeBridge()


@pytest.fixture
def fake_analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def make_workspace(fake_bridge: FakeBridge, fake_analyzer: FakeAnalyzer):
    """Factory fixture for a Workspace wired to the fakes, with predictable ids."""

    def _make(**kwargs: Any) -> Workspace:
        counter = itertools.count(1)
        kwargs.setdefault("bridge", fake_bridge)
        kwargs.setdefault("analysis_client", fake_analyzer)
        kwargs.setdefault("id_factory", lambda: f"paper-{next(counter)}")
        kwargs.setdefault("clock", lambda: 1_700_000_000_000)
        return Workspace(**kwargs)

    return _make
