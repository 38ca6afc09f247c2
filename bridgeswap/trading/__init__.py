"""Exchange adapters."""

from bridgeswap.trading.adapter import AdapterRegistry, ExchangeAdapter

__all__ = ["AdapterRegistry", "ExchangeAdapter"]
