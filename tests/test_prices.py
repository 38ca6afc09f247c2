"""
Tests for the price cache.
"""

import json
import pytest
from datetime import datetime, timedelta

from bridgeswap.prices import PriceCache, find_quote, pair_variants


class TestPriceCache:
    @pytest.mark.asyncio
    async def test_fresh_quotes_returned(self, cache):
        quotes = await cache.get_prices("a")

        assert set(quotes) == {"X/P", "X/Q"}
        assert quotes["X/P"].ask == 10.0
        assert quotes["X/P"].last == pytest.approx(9.995)

    @pytest.mark.asyncio
    async def test_stale_quotes_dropped(self):
        cache = PriceCache(max_age_seconds=30)
        cache.update("A", "X/P", bid=1.0, ask=1.1, observed_at=datetime.utcnow() - timedelta(seconds=31))

        assert await cache.get_prices("A") == {}
        assert "X/P" in cache.snapshot("A")

    @pytest.mark.asyncio
    async def test_non_positive_prices_dropped(self):
        cache = PriceCache()
        cache.update("A", "X/P", bid=0, ask=1.1)

        assert await cache.get_prices("A") == {}

    @pytest.mark.asyncio
    async def test_unknown_exchange_is_empty(self, cache):
        assert await cache.get_prices("nowhere") == {}

    @pytest.mark.asyncio
    async def test_clear(self, cache):
        cache.clear("A")
        assert await cache.get_prices("A") == {}
        assert await cache.get_prices("B") != {}

        cache.clear()
        assert await cache.get_prices("B") == {}

    @pytest.mark.asyncio
    async def test_load_json(self, tmp_path):
        fixture = tmp_path / "prices.json"
        fixture.write_text(json.dumps({
            "VALR": {
                "XRP/ZAR": {"bid": 9.99, "ask": 10.0, "volume": 5000},
                "XRP/USDT": 0.52,
            },
        }))
        cache = PriceCache()

        assert cache.load_json(fixture) == 2

        quotes = await cache.get_prices("valr")
        assert quotes["XRP/ZAR"].volume == 5000
        assert quotes["XRP/USDT"].bid < 0.52 < quotes["XRP/USDT"].ask
        assert quotes["XRP/USDT"].last == 0.52


class TestQuoteLookup:
    def test_variants(self):
        assert pair_variants("XRP/ZAR") == ["XRP/ZAR", "XRPZAR", "XRP-ZAR", "XRP_ZAR"]

    def test_find_quote_any_spelling(self):
        cache = PriceCache()
        quote = cache.update("A", "XRPZAR", bid=9.99, ask=10.0)

        assert find_quote(cache.snapshot("A"), "XRP/ZAR") is quote
        assert find_quote(cache.snapshot("A"), "XRP/USDT") is None
