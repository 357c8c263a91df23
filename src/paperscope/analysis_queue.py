"""Bounded-concurrency FIFO queue for paper analysis tasks."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from paperscope.models import DEFAULT_MAX_PARALLEL, LLMSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AnalysisTask:
    """One queued analysis: which paper, what to send, with which settings."""

    paper_id: str
    content: bytes | str
    settings: LLMSettings


TaskRunner = Callable[[AnalysisTask], Awaitable[None]]


class AnalysisQueue:
    """Run at most ``max_parallel`` analyses at once, in FIFO dispatch order.

    An id is de-duplicated from the moment it is enqueued until its run
    finishes, so enqueuing the same paper twice before it completes runs it
    once. Runner failures are logged and never stop the dispatch loop.
    Must be used from inside a running event loop.
    """

    def __init__(self, runner: TaskRunner, max_parallel: int = DEFAULT_MAX_PARALLEL) -> None:
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be >= 1, got {max_parallel}")
        self._runner = runner
        self._max_parallel = max_parallel
        self._backlog: deque[AnalysisTask] = deque()
        self._queued_ids: set[str] = set()
        self._running: dict[str, asyncio.Task[None]] = {}
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def max_parallel(self) -> int:
        return self._max_parallel

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def running_ids(self) -> list[str]:
        return list(self._running)

    @property
    def backlog_ids(self) -> list[str]:
        return [task.paper_id for task in self._backlog]

    def __len__(self) -> int:
        """Backlog plus running tasks."""
        return len(self._backlog) + len(self._running)

    def is_pending(self, paper_id: str) -> bool:
        """True while the id is waiting in the backlog or running."""
        return paper_id in self._queued_ids

    def enqueue(self, task: AnalysisTask) -> bool:
        """Add a task unless its id is already queued or running."""
        if task.paper_id in self._queued_ids:
            logger.debug("Analysis for %s already pending, ignoring enqueue", task.paper_id)
            return False
        self._queued_ids.add(task.paper_id)
        self._backlog.append(task)
        self._idle.clear()
        self._dispatch()
        return True

    def remove(self, paper_id: str) -> bool:
        """Drop a not-yet-started task; running tasks are left to finish."""
        for task in self._backlog:
            if task.paper_id == paper_id:
                self._backlog.remove(task)
                self._queued_ids.discard(paper_id)
                self._update_idle()
                return True
        return False

    def _dispatch(self) -> None:
        while len(self._running) < self._max_parallel and self._backlog:
            task = self._backlog.popleft()
            logger.debug(
                "Dispatching analysis for %s (%d/%d slots)",
                task.paper_id,
                len(self._running) + 1,
                self._max_parallel,
            )
            self._running[task.paper_id] = asyncio.create_task(self._run(task))

    async def _run(self, task: AnalysisTask) -> None:
        try:
            await self._runner(task)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.error("Analysis task for %s failed", task.paper_id, exc_info=True)
        finally:
            self._running.pop(task.paper_id, None)
            self._queued_ids.discard(task.paper_id)
            self._dispatch()
            self._update_idle()

    def _update_idle(self) -> None:
        if not self._backlog and not self._running:
            self._idle.set()

    async def join(self) -> None:
        """Wait until the backlog is empty and nothing is running."""
        await self._idle.wait()

    async def close(self) -> None:
        """Drop the backlog and cancel running tasks."""
        self._backlog.clear()
        tasks = list(self._running.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._queued_ids.clear()
        self._running.clear()
        self._idle.set()


__all__ = [
    "AnalysisQueue",
    "AnalysisTask",
    "TaskRunner",
]
