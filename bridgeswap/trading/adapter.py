"""
Exchange adapter capability interface.

The engine only talks to venues through this interface. Amounts passed to
`place_order` are in the asset being spent: the quote asset for a BUY, the
base asset for a SELL. Fills are always reported in base units.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterator, List

from bridgeswap.errors import ExchangeError, ValidationError
from bridgeswap.models import OrderResult, Side, TransferResult
from bridgeswap.logger import get_logger


logger = get_logger("adapters")


class ExchangeAdapter(ABC):
    """Abstract base class for exchange adapters."""

    # Adapters that can withdraw the bridge asset to another venue
    supports_transfers: bool = False

    def __init__(self, name: str):
        self.name = name
        self._is_connected = False

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    async def connect(self) -> None:
        """Open any sessions the adapter needs."""
        self._is_connected = True

    async def disconnect(self) -> None:
        """Close sessions opened by `connect`."""
        self._is_connected = False

    @abstractmethod
    async def fetch_balance(self, asset: str) -> float:
        """
        Get the available balance of an asset.

        Raises:
            ExchangeError: the venue could not be queried
        """
        pass

    @abstractmethod
    async def place_order(
        self,
        pair: str,
        side: Side,
        amount: float,
        order_type: str = "market",
    ) -> OrderResult:
        """
        Submit an order.

        Args:
            pair: BASE/QUOTE market
            side: BUY spends the quote, SELL spends the base
            amount: Quantity of the asset being spent
            order_type: "market" or "limit"

        Returns:
            The order as acknowledged; may not be filled yet
        """
        pass

    @abstractmethod
    async def get_order(self, pair: str, order_id: str) -> OrderResult:
        """Get the current state of a submitted order."""
        pass

    async def withdraw(
        self,
        asset: str,
        amount: float,
        destination_exchange: str,
    ) -> TransferResult:
        """Withdraw an asset to another venue's deposit address."""
        raise ExchangeError(f"{self.name} does not support withdrawals", exchange=self.name)

    async def get_deposit_balance(self, asset: str) -> float:
        """Balance used to detect an incoming deposit."""
        return await self.fetch_balance(asset)

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()


class AdapterRegistry:
    """Adapters keyed by exchange name, matched case-insensitively."""

    def __init__(self):
        self._adapters: Dict[str, ExchangeAdapter] = {}

    def register(self, adapter: ExchangeAdapter) -> ExchangeAdapter:
        key = adapter.name.lower()
        if key in self._adapters:
            logger.warning(f"Replacing adapter for {adapter.name}")
        self._adapters[key] = adapter
        return adapter

    def get(self, exchange: str) -> ExchangeAdapter:
        """
        Get the adapter for an exchange.

        Raises:
            ValidationError: no adapter is registered
        """
        adapter = self._adapters.get(exchange.lower())
        if adapter is None:
            raise ValidationError([f"no adapter registered for exchange {exchange}"])
        return adapter

    def __contains__(self, exchange: str) -> bool:
        return exchange.lower() in self._adapters

    def __iter__(self) -> Iterator[ExchangeAdapter]:
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)

    @property
    def names(self) -> List[str]:
        return [adapter.name for adapter in self._adapters.values()]

    async def connect_all(self) -> None:
        for adapter in self._adapters.values():
            await adapter.connect()

    async def disconnect_all(self) -> None:
        for adapter in self._adapters.values():
            await adapter.disconnect()
