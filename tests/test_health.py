"""Tests for the backend health monitor."""

from __future__ import annotations

import asyncio

from paperscope.health import HealthMonitor


class FakeHealthCheck:
    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.calls = 0
        self.gate: asyncio.Event | None = None
        self.raise_error = False

    async def __call__(self) -> bool:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.raise_error:
            raise OSError("socket closed")
        return self.result


class TestHealthMonitor:
    async def test_starts_unhealthy_and_unchecked(self):
        monitor = HealthMonitor(FakeHealthCheck())
        assert monitor.healthy is False
        assert monitor.checked is False

    async def test_check_updates_cache(self):
        checker = FakeHealthCheck(True)
        monitor = HealthMonitor(checker)
        assert await monitor.check() is True
        assert monitor.healthy is True
        assert monitor.checked is True

    async def test_check_exception_means_unhealthy(self):
        checker = FakeHealthCheck(True)
        checker.raise_error = True
        monitor = HealthMonitor(checker)
        assert await monitor.check() is False
        assert monitor.checked is True

    async def test_concurrent_checks_share_one_request(self):
        checker = FakeHealthCheck(True)
        checker.gate = asyncio.Event()
        monitor = HealthMonitor(checker)

        waiters = [asyncio.create_task(monitor.check()) for _ in range(3)]
        await asyncio.sleep(0)
        checker.gate.set()
        results = await asyncio.gather(*waiters)

        assert results == [True, True, True]
        assert checker.calls == 1

    async def test_ensure_healthy_uses_cache(self):
        checker = FakeHealthCheck(True)
        monitor = HealthMonitor(checker)
        await monitor.check()
        assert await monitor.ensure_healthy() is True
        assert checker.calls == 1

    async def test_ensure_healthy_rechecks_when_down(self):
        checker = FakeHealthCheck(False)
        monitor = HealthMonitor(checker)
        await monitor.check()
        checker.result = True
        assert await monitor.ensure_healthy() is True
        assert checker.calls == 2

    async def test_listeners_fire_on_change_only(self):
        checker = FakeHealthCheck(True)
        monitor = HealthMonitor(checker)
        events: list[bool] = []
        monitor.subscribe(events.append)

        await monitor.check()
        await monitor.check()
        checker.result = False
        await monitor.check()

        assert events == [True, False]

    async def test_first_unhealthy_result_is_reported(self):
        monitor = HealthMonitor(FakeHealthCheck(False))
        events: list[bool] = []
        monitor.subscribe(events.append)
        await monitor.check()
        assert events == [False]

    async def test_polling_start_stop(self):
        checker = FakeHealthCheck(True)
        monitor = HealthMonitor(checker, interval=0.01)
        monitor.start()
        monitor.start()
        assert monitor.running
        await asyncio.sleep(0.05)
        await monitor.stop()
        assert not monitor.running
        assert checker.calls >= 2
