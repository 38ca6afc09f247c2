"""
Latest bid/ask/last per exchange per pair.

The engine only reads prices through `PriceSource.get_prices`. `PriceCache` is
the in-memory implementation fed by whatever market data collector runs
alongside the engine (and by JSON fixtures in paper mode).
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Optional, Union

from bridgeswap.models import PriceQuote, split_pair
from bridgeswap.logger import get_logger


logger = get_logger("prices")


def pair_variants(pair: str) -> list:
    """Spellings a venue may use for BASE/QUOTE."""
    base, quote = split_pair(pair)
    return [
        f"{base}/{quote}",
        f"{base}{quote}",
        f"{base}-{quote}",
        f"{base}_{quote}",
    ]


def find_quote(quotes: Dict[str, PriceQuote], pair: str) -> Optional[PriceQuote]:
    """Look a pair up under any of its common spellings."""
    for variant in pair_variants(pair):
        quote = quotes.get(variant) or quotes.get(variant.upper())
        if quote is not None:
            return quote
    return None


class PriceSource(ABC):
    """Read-only view of cached prices."""

    @abstractmethod
    async def get_prices(self, exchange: str) -> Dict[str, PriceQuote]:
        """
        Get the fresh quotes for an exchange.

        Returns:
            Mapping of pair -> quote; empty if nothing fresh is cached
        """
        pass


class PriceCache(PriceSource):
    """In-memory price cache with a freshness window."""

    def __init__(self, max_age_seconds: float = 60.0):
        self.max_age = timedelta(seconds=max_age_seconds)
        self._prices: Dict[str, Dict[str, PriceQuote]] = {}

    def update(
        self,
        exchange: str,
        pair: str,
        bid: float,
        ask: float,
        last: Optional[float] = None,
        volume: Optional[float] = None,
        observed_at: Optional[datetime] = None,
    ) -> PriceQuote:
        """Store the latest quote for a pair."""
        quote = PriceQuote(
            exchange=exchange,
            pair=pair.upper(),
            bid=float(bid),
            ask=float(ask),
            last=float(last if last is not None else (bid + ask) / 2),
            observed_at=observed_at or datetime.utcnow(),
            volume=volume,
        )
        self._prices.setdefault(exchange.lower(), {})[quote.pair] = quote
        return quote

    def clear(self, exchange: Optional[str] = None) -> None:
        if exchange is None:
            self._prices.clear()
        else:
            self._prices.pop(exchange.lower(), None)

    def snapshot(self, exchange: str) -> Dict[str, PriceQuote]:
        """All cached quotes for an exchange, stale ones included."""
        return dict(self._prices.get(exchange.lower(), {}))

    async def get_prices(self, exchange: str) -> Dict[str, PriceQuote]:
        now = datetime.utcnow()
        fresh = {}
        for pair, quote in self._prices.get(exchange.lower(), {}).items():
            if quote.bid <= 0 or quote.ask <= 0:
                continue
            if now - quote.observed_at > self.max_age:
                continue
            fresh[pair] = quote
        return fresh

    def load_json(self, source: Union[str, Path, dict]) -> int:
        """
        Load quotes from {"exchange": {"PAIR": {"bid": .., "ask": .., "last": ..}}}.

        A bare number is treated as a last price with a 0.05% spread either side.

        Returns:
            Number of quotes loaded
        """
        if isinstance(source, dict):
            data = source
        else:
            data = json.loads(Path(source).read_text())

        count = 0
        for exchange, pairs in data.items():
            for pair, value in pairs.items():
                if isinstance(value, (int, float)):
                    self.update(exchange, pair, bid=value * 0.9995, ask=value * 1.0005, last=value)
                else:
                    self.update(
                        exchange,
                        pair,
                        bid=value["bid"],
                        ask=value["ask"],
                        last=value.get("last"),
                        volume=value.get("volume"),
                    )
                count += 1

        logger.info(f"Loaded {count} quotes", exchanges=len(data))
        return count
