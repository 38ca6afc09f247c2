"""
Tests for opportunity scanning and profit calculation.
"""

import pytest
from datetime import datetime, timedelta

from bridgeswap.errors import DataUnavailable, ValidationError
from bridgeswap.models import Opportunity, PriceQuote, Side, SwapPath
from bridgeswap.prices import PriceCache
from bridgeswap.engine.path_generator import build_path
from bridgeswap.engine.opportunity_scanner import (
    OpportunityScanner, apply_fill, rank_opportunities,
)

USER = "user-1"


def quote(exchange, pair, bid, ask):
    return PriceQuote(exchange=exchange, pair=pair, bid=bid, ask=ask, last=(bid + ask) / 2)


@pytest.fixture
def quotes():
    return {
        "a": {"X/P": quote("A", "X/P", 9.99, 10.0)},
        "b": {"X/Q": quote("B", "X/Q", 12.0, 12.01)},
    }


@pytest.fixture
def scanner(cache, ledger, config):
    return OpportunityScanner(cache, ledger, config=config)


class TestEffectiveRate:
    """Tests for OpportunityScanner.calculate_effective_rate."""

    def test_buy_then_sell_with_fees(self, scanner, quotes):
        """100 P -> 10 X -> 9.99 X -> 119.88 Q -> 119.76 Q."""
        path = build_path("A", "P", "B", "Q", "X")
        result = scanner.calculate_effective_rate("P", "Q", path.hops, 100.0, quotes)

        assert result.final_amount == pytest.approx(119.76012)
        assert result.effective_rate == pytest.approx(1.1976012)
        trading_fees = [f for f in result.fees if f.kind == "trading"]
        assert len(trading_fees) == 2
        assert trading_fees[0].asset == "X"
        assert trading_fees[0].amount == pytest.approx(0.01)

    def test_higher_fee_lowers_output(self, scanner, quotes, config):
        path = build_path("A", "P", "B", "Q", "X")
        baseline = scanner.calculate_effective_rate("P", "Q", path.hops, 100.0, quotes)

        config.fees.exchange_fees = "A:0.5,B:0.1"
        higher = scanner.calculate_effective_rate("P", "Q", path.hops, 100.0, quotes)

        assert higher.final_amount < baseline.final_amount

    def test_unknown_exchange_uses_default_fee(self, scanner):
        quotes = {
            "c": {"X/P": quote("C", "X/P", 9.99, 10.0)},
            "d": {"X/Q": quote("D", "X/Q", 12.0, 12.01)},
        }
        path = build_path("C", "P", "D", "Q", "X")
        result = scanner.calculate_effective_rate("P", "Q", path.hops, 100.0, quotes)

        # 0.2% default on both hops
        assert result.final_amount == pytest.approx(100 / 10 * 0.998 * 12 * 0.998)

    def test_withdrawal_fee_between_exchanges(self, scanner):
        quotes = {
            "a": {"XRP/P": quote("A", "XRP/P", 9.99, 10.0)},
            "b": {"XRP/Q": quote("B", "XRP/Q", 12.0, 12.01)},
        }
        path = build_path("A", "P", "B", "Q", "XRP")
        result = scanner.calculate_effective_rate("P", "Q", path.hops, 100.0, quotes)

        assert result.final_amount == pytest.approx((9.99 - 0.1) * 12 * 0.999)
        withdrawal = [f for f in result.fees if f.kind == "withdrawal"]
        assert withdrawal[0].asset == "XRP"
        assert withdrawal[0].amount == pytest.approx(0.1)

    def test_missing_quote_raises(self, scanner, quotes):
        del quotes["b"]["X/Q"]
        path = build_path("A", "P", "B", "Q", "X")

        with pytest.raises(DataUnavailable) as exc_info:
            scanner.calculate_effective_rate("P", "Q", path.hops, 100.0, quotes)
        assert exc_info.value.pair == "X/Q"

    def test_non_positive_amount_rejected(self, scanner, quotes):
        path = build_path("A", "P", "B", "Q", "X")
        with pytest.raises(ValidationError):
            scanner.calculate_effective_rate("P", "Q", path.hops, 0, quotes)

    def test_broken_chain_rejected(self, scanner, quotes):
        path = build_path("A", "P", "B", "Q", "X")
        with pytest.raises(ValidationError):
            scanner.calculate_effective_rate("R", "Q", path.hops, 100.0, quotes)

    def test_apply_fill(self):
        received, fee = apply_fill(Side.SELL, 10.0, 12.0, 0.1)
        assert received == pytest.approx(119.88)
        assert fee == pytest.approx(0.12)


class TestScanOpportunities:
    """Tests for OpportunityScanner.scan_opportunities."""

    @pytest.mark.asyncio
    async def test_ranks_by_profit(self, scanner, settings):
        result = await scanner.scan_opportunities(USER)

        assert result.success
        assert result.scanned_paths == 4
        assert result.total_possible_paths == 4
        assert [o.path.id for o in result.opportunities] == [
            "A:P->B:Q@X",
            "B:P->A:Q@X",
            "A:Q->B:P@X",
            "B:Q->A:P@X",
        ]
        profits = [o.profit_percent for o in result.opportunities]
        assert profits == sorted(profits, reverse=True)

    @pytest.mark.asyncio
    async def test_best_opportunity_economics(self, scanner, settings):
        result = await scanner.scan_opportunities(USER)
        best = result.best

        assert best.initial_amount == 100.0
        assert best.final_amount == pytest.approx(119.76012)
        assert best.profit_percent == pytest.approx(19.76012)
        assert best.is_profitable
        assert best.is_actionable

    @pytest.mark.asyncio
    async def test_threshold_controls_actionable(self, scanner, settings, ledger):
        settings.threshold_percent = 10.0
        ledger.save_settings(USER, settings)

        result = await scanner.scan_opportunities(USER)

        second = result.opportunities[1]
        assert second.is_profitable
        assert not second.is_actionable
        assert [o.path.id for o in result.actionable] == ["A:P->B:Q@X"]

    @pytest.mark.asyncio
    async def test_missing_quote_skips_only_affected_paths(self, scanner, settings, cache):
        cache.clear("B")
        cache.update("B", "X/P", bid=10.5, ask=10.51)

        result = await scanner.scan_opportunities(USER)

        skipped_ids = {path_id for path_id, _ in result.skipped}
        assert skipped_ids == {"A:P->B:Q@X", "B:Q->A:P@X"}
        assert result.scanned_paths == 2
        assert all("X/Q" in reason for _, reason in result.skipped)

    @pytest.mark.asyncio
    async def test_stale_quotes_are_missing(self, ledger, settings, config):
        cache = PriceCache(max_age_seconds=60)
        old = datetime.utcnow() - timedelta(seconds=120)
        cache.update("A", "X/P", bid=9.99, ask=10.0, observed_at=old)
        cache.update("A", "X/Q", bid=11.0, ask=11.01, observed_at=old)
        cache.update("B", "X/P", bid=10.5, ask=10.51, observed_at=old)
        cache.update("B", "X/Q", bid=12.0, ask=12.01, observed_at=old)
        scanner = OpportunityScanner(cache, ledger, config=config)

        result = await scanner.scan_opportunities(USER)

        assert result.success
        assert result.opportunities == []
        assert len(result.skipped) == 4

    @pytest.mark.asyncio
    async def test_explicit_amount(self, scanner, settings):
        result = await scanner.scan_opportunities(USER, amount=1000.0)
        assert result.best.final_amount == pytest.approx(1197.6012)

    @pytest.mark.asyncio
    async def test_no_paths_is_success(self, scanner, ledger, settings):
        settings.selected_exchanges = ["A"]
        ledger.save_settings(USER, settings)

        result = await scanner.scan_opportunities(USER)

        assert result.success
        assert result.opportunities == []
        assert result.best is None

    @pytest.mark.asyncio
    async def test_auto_scans_every_configured_bridge(self, scanner, settings):
        result = await scanner.scan_opportunities(USER, bridge_asset="AUTO")

        assert result.bridge_assets == ["XRP", "XLM", "TRX", "LTC"]
        assert result.total_possible_paths == 16
        # No XRP/XLM/TRX/LTC markets are cached
        assert len(result.skipped) == 16


class TestRanking:
    def _opportunity(self, path: SwapPath, profit_percent: float) -> Opportunity:
        return Opportunity(
            path=path,
            initial_amount=100.0,
            final_amount=100.0 + profit_percent,
            effective_rate=1 + profit_percent / 100,
            profit_amount=profit_percent,
            profit_percent=profit_percent,
        )

    def test_ties_prefer_fewer_hops_then_lexical_id(self):
        two_hops_b = self._opportunity(build_path("B", "P", "A", "Q", "X"), 1.0)
        two_hops_a = self._opportunity(build_path("A", "P", "B", "Q", "X"), 1.0 + 1e-10)
        one_hop = self._opportunity(build_path("C", "P", "D", "X", "X"), 1.0)

        ranked = rank_opportunities([two_hops_b, two_hops_a, one_hop])

        assert [o.path.id for o in ranked] == [
            "C:P->D:X@X",
            "A:P->B:Q@X",
            "B:P->A:Q@X",
        ]

    def test_profit_beyond_tolerance_wins(self):
        low = self._opportunity(build_path("A", "P", "B", "Q", "X"), 1.0)
        high = self._opportunity(build_path("B", "P", "A", "Q", "X"), 1.001)

        assert rank_opportunities([low, high])[0] is high


class TestFindAllRoutes:
    def test_auto_uses_every_bridge(self, scanner):
        routes = scanner.find_all_routes("A", "P", "B", "Q")
        assert [r.bridge_asset for r in routes] == ["XRP", "XLM", "TRX", "LTC"]

    def test_preferred_bridge_only(self, scanner):
        routes = scanner.find_all_routes("A", "p", "B", "q", bridge_preference="xrp")
        assert [r.id for r in routes] == ["A:P->B:Q@XRP"]

    def test_same_exchange_rejected(self, scanner):
        with pytest.raises(ValidationError):
            scanner.find_all_routes("A", "P", "a", "Q")
