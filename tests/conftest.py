"""
Pytest configuration and shared fixtures.
"""

import os
import pytest
from pathlib import Path

# Set test environment
os.environ["PAPER_TRADING"] = "true"
os.environ["DEBUG_MODE"] = "true"
os.environ["DATABASE_PATH"] = "./test_data/swaps.db"
os.environ["EXCHANGE_FEES"] = "A:0.1,B:0.1"
os.environ["DEFAULT_FEE_PERCENT"] = "0.2"
os.environ["WITHDRAWAL_FEES"] = "XRP:0.1,XLM:0.01,TRX:1.0,LTC:0.001"
os.environ["BRIDGE_ASSETS"] = "XRP,XLM,TRX,LTC"
os.environ["ORDER_POLL_INTERVAL_MS"] = "10"
os.environ["DEPOSIT_POLL_INTERVAL_SECONDS"] = "0.01"

from bridgeswap.config import BotConfig, SwapSettings  # noqa: E402
from bridgeswap.database import SqlSwapLedger  # noqa: E402
from bridgeswap.prices import PriceCache  # noqa: E402
from bridgeswap.trading.adapter import AdapterRegistry  # noqa: E402
from bridgeswap.trading.paper_adapter import PaperExchangeAdapter  # noqa: E402


USER = "user-1"


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment."""
    # Create test data directory
    test_dir = Path("./test_data")
    test_dir.mkdir(exist_ok=True)

    yield

    # Cleanup
    import shutil
    if test_dir.exists():
        shutil.rmtree(test_dir)


@pytest.fixture
def config():
    """A fresh configuration read from the test environment."""
    return BotConfig()


@pytest.fixture
def ledger(tmp_path, config):
    """Ledger on a throwaway SQLite file."""
    return SqlSwapLedger(f"sqlite:///{tmp_path / 'swaps.db'}", config=config)


@pytest.fixture
def settings(ledger):
    """Two exchanges, two currencies, bridge X."""
    return ledger.save_settings(USER, SwapSettings(
        selected_exchanges=["A", "B"],
        selected_currencies=["P", "Q"],
        preferred_bridge="X",
        threshold_percent=0.5,
        max_trade_amount=100.0,
        max_concurrent_trades=2,
        daily_swap_limit=10,
    ))


@pytest.fixture
def cache():
    """
    Quotes where buying X with P on A and selling X for Q on B pays:
    100 P -> 10 X (less 0.1%) -> 119.88 Q (less 0.1%) = 119.76 Q.
    """
    cache = PriceCache(max_age_seconds=60)
    cache.update("A", "X/P", bid=9.99, ask=10.0)
    cache.update("A", "X/Q", bid=11.0, ask=11.01)
    cache.update("B", "X/P", bid=10.5, ask=10.51)
    cache.update("B", "X/Q", bid=12.0, ask=12.01)
    return cache


@pytest.fixture
def exchange_a(cache):
    return PaperExchangeAdapter("A", cache, balances={"P": 1000.0, "Q": 1000.0}, fee_percent=0.1)


@pytest.fixture
def exchange_b(cache):
    return PaperExchangeAdapter(
        "B", cache, balances={"X": 100.0, "P": 1000.0, "Q": 1000.0}, fee_percent=0.1
    )


@pytest.fixture
def registry(exchange_a, exchange_b):
    registry = AdapterRegistry()
    registry.register(exchange_a)
    registry.register(exchange_b)
    return registry
