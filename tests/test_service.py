"""
Tests for the SwapService facade.
"""

import pytest

from bridgeswap.errors import OrderRejected, SwapError, ValidationError
from bridgeswap.models import ExecutionStatus, Side
from bridgeswap.service import SwapService

USER = "user-1"


@pytest.fixture
def service(cache, registry, ledger, config, settings):
    return SwapService(cache, registry, ledger, config)


class TestSettings:
    def test_update_settings(self, service):
        updated = service.update_settings(USER, threshold_percent=1.5, selected_currencies=["p", "q", "r"])

        assert updated.threshold_percent == 1.5
        assert service.get_settings(USER).selected_currencies == ["P", "Q", "R"]

    def test_out_of_range_rejected(self, service):
        with pytest.raises(ValidationError):
            service.update_settings(USER, max_concurrent_trades=6)
        assert service.get_settings(USER).max_concurrent_trades == 2


class TestPaths:
    def test_statistics_per_bridge(self, service):
        stats = service.path_statistics(USER)

        assert list(stats) == ["X"]
        assert stats["X"]["total_paths"] == 4

    def test_statistics_auto(self, service):
        stats = service.path_statistics(USER, bridge_asset="AUTO")
        assert list(stats) == ["XRP", "XLM", "TRX", "LTC"]

    def test_list_paths(self, service):
        assert len(service.list_paths(USER)) == 4

    def test_validate_path(self, service):
        assert service.validate_path(USER, "A:P->B:Q@X").valid

        other_bridge = service.validate_path(USER, "A:P->B:Q@XRP")
        assert not other_bridge.valid
        assert any("not enabled" in reason for reason in other_bridge.reasons)

        assert not service.validate_path(USER, "garbage").valid

    def test_resolve_path(self, service):
        path = service.resolve_path(USER, "B:Q->A:P@X")
        assert [h.side for h in path.hops] == [Side.BUY, Side.SELL]

        with pytest.raises(ValidationError):
            service.resolve_path(USER, "A:P->C:Q@X")


class TestOperations:
    @pytest.mark.asyncio
    async def test_scan(self, service):
        result = await service.scan(USER)
        assert result.best.path.id == "A:P->B:Q@X"

    @pytest.mark.asyncio
    async def test_assess_risk_uses_cached_quotes(self, service):
        assessment = await service.assess_risk(USER, "A:P->B:Q@X")

        assert assessment.can_proceed
        assert assessment.max_safe_amount == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_recommended_amount(self, service):
        sizing = await service.recommended_amount(USER, "A", "P")
        assert sizing.recommended_amount == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_execute_by_id(self, service):
        outcome = await service.execute(USER, "A:P->B:Q@X", 100.0, execution_id="swap-1")

        assert outcome.success
        assert service.get_execution("swap-1").status == ExecutionStatus.COMPLETED
        assert [e.id for e in service.history(USER)] == ["swap-1"]
        assert service.daily_limit_status(USER).daily_count == 1

    @pytest.mark.asyncio
    async def test_unwind_plan(self, service, exchange_b):
        exchange_b.fail_pairs["X/Q"] = OrderRejected("halted", exchange="B")
        await service.execute(USER, "A:P->B:Q@X", 100.0, execution_id="swap-2")

        plan = service.unwind_plan("swap-2")

        assert [(h.exchange, h.pair, h.side) for h in plan] == [("A", "X/P", Side.SELL)]

    def test_unwind_unknown_execution(self, service):
        with pytest.raises(SwapError):
            service.unwind_plan("missing")

    def test_find_all_routes(self, service):
        routes = service.find_all_routes("A", "P", "B", "Q", "X")
        assert [r.id for r in routes] == ["A:P->B:Q@X"]
