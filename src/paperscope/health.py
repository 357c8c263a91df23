"""Backend reachability monitor: periodic and on-demand health checks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from paperscope.models import HEALTH_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

HealthCheck = Callable[[], Awaitable[bool]]
HealthListener = Callable[[bool], None]


class HealthMonitor:
    """Cache one reachability boolean for the backend.

    The value starts unhealthy until the first check. Check failures only flip
    the cached value; they are never raised to callers.
    """

    def __init__(self, checker: HealthCheck, interval: float = HEALTH_INTERVAL_SECONDS) -> None:
        self._checker = checker
        self._interval = interval
        self._healthy = False
        self._checked = False
        self._listeners: list[HealthListener] = []
        self._poll_task: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[bool] | None = None

    @property
    def healthy(self) -> bool:
        return self._healthy

    @property
    def checked(self) -> bool:
        """Whether at least one check has completed."""
        return self._checked

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def subscribe(self, listener: HealthListener) -> None:
        self._listeners.append(listener)

    def _set(self, healthy: bool) -> None:
        changed = healthy != self._healthy or not self._checked
        self._healthy = healthy
        self._checked = True
        if not changed:
            return
        logger.info("Backend health changed: %s", "reachable" if healthy else "unreachable")
        for listener in list(self._listeners):
            try:
                listener(healthy)
            except Exception:
                logger.warning("Health listener failed", exc_info=True)

    async def _check_once(self) -> bool:
        try:
            healthy = bool(await self._checker())
        except Exception:
            logger.debug("Health check raised", exc_info=True)
            healthy = False
        self._set(healthy)
        return healthy

    async def check(self) -> bool:
        """Check now; concurrent callers share one in-flight request."""
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._check_once())
        return await asyncio.shield(self._inflight)

    async def ensure_healthy(self) -> bool:
        """Return the cached value, re-checking when it is unhealthy."""
        if self._healthy:
            return True
        return await self.check()

    def start(self) -> None:
        """Start periodic polling (first check runs immediately)."""
        if self.running:
            return
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def _poll_loop(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self._interval)

    async def stop(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


__all__ = [
    "HealthListener",
    "HealthMonitor",
    "HealthCheck",
]
