"""
Tests for the multi-bridge scan rotation.
"""

import asyncio
import pytest

from bridgeswap.errors import DataUnavailable
from bridgeswap.engine.opportunity_scanner import OpportunityScanner
from bridgeswap.engine.scan_scheduler import ScanScheduler

USER = "user-1"


class FailingScanner:
    """Scanner whose price source is down."""

    def __init__(self):
        self.calls = 0

    async def scan_opportunities(self, user_id, bridge_asset=None, amount=None):
        self.calls += 1
        raise DataUnavailable("price feed unreachable")


@pytest.fixture
def scheduler(cache, ledger, config, settings):
    scanner = OpportunityScanner(cache, ledger, config=config)
    return ScanScheduler(scanner, USER, bridges=["x", "y"], interval_seconds=0.01, config=config)


class TestRotation:
    @pytest.mark.asyncio
    async def test_ticks_rotate_through_bridges(self, scheduler):
        assert scheduler.next_bridge == "X"

        first = await scheduler.tick()
        assert first.bridge == "X"
        assert scheduler.next_bridge == "Y"
        assert scheduler.cycle_number == 0

        second = await scheduler.tick()
        assert second.bridge == "Y"
        assert scheduler.next_bridge == "X"
        assert scheduler.cycle_number == 1

    @pytest.mark.asyncio
    async def test_best_result_across_bridges(self, scheduler):
        await scheduler.tick()
        await scheduler.tick()

        best = scheduler.best_result()
        assert best.bridge == "X"
        assert scheduler.best_opportunity().path.id == "A:P->B:Q@X"
        # Y has no markets cached, so every path was skipped
        assert scheduler.results["Y"].result.opportunities == []
        assert len(scheduler.results["Y"].result.skipped) == 4

    @pytest.mark.asyncio
    async def test_status(self, scheduler):
        await scheduler.tick()
        status = scheduler.status()

        assert status["current_cycle"] == 1
        assert status["next_bridge"] == "Y"
        assert status["best_bridge"] == "X"
        assert status["bridge_results"]["X"]["best_path"] == "A:P->B:Q@X"

    @pytest.mark.asyncio
    async def test_failed_scan_is_recorded(self, config):
        scanner = FailingScanner()
        scheduler = ScanScheduler(scanner, USER, bridges=["X"], interval_seconds=0.01, config=config)

        scan = await scheduler.tick()

        assert not scan.result.success
        assert "unreachable" in scan.result.message
        assert scheduler.best_result() is None

    def test_requires_bridges(self, config):
        with pytest.raises(ValueError):
            ScanScheduler(FailingScanner(), USER, bridges=[], interval_seconds=1, config=config)


class TestRun:
    @pytest.mark.asyncio
    async def test_run_stops_after_max_ticks(self, scheduler):
        await scheduler.run(asyncio.Event(), max_ticks=3)

        assert scheduler.cycle_number == 1
        assert scheduler.next_bridge == "Y"
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_run_returns_when_stopped(self, config):
        scanner = FailingScanner()
        scheduler = ScanScheduler(scanner, USER, bridges=["X"], interval_seconds=0.01, config=config)
        stop = asyncio.Event()
        stop.set()

        await scheduler.run(stop)

        assert scanner.calls == 0

    @pytest.mark.asyncio
    async def test_stop_event_interrupts_wait(self, config):
        scanner = FailingScanner()
        scheduler = ScanScheduler(scanner, USER, bridges=["X"], interval_seconds=60, config=config)
        stop = asyncio.Event()

        async def stop_soon():
            await asyncio.sleep(0.05)
            stop.set()

        await asyncio.wait_for(asyncio.gather(scheduler.run(stop), stop_soon()), timeout=5)

        assert scanner.calls == 1
