"""
Paper trading adapter.
Simulates fills against cached quotes and in-memory balances.
"""

import asyncio
import itertools
from typing import Dict, Optional, Set

from bridgeswap.config import get_config
from bridgeswap.errors import ExchangeError, OrderRejected
from bridgeswap.models import OrderResult, OrderStatus, Side, TransferResult, split_pair
from bridgeswap.prices import PriceSource, find_quote
from bridgeswap.trading.adapter import ExchangeAdapter
from bridgeswap.engine.opportunity_scanner import apply_fill, quoted_base_amount
from bridgeswap.logger import get_logger


logger = get_logger("paper")

_order_ids = itertools.count(1)


class PaperExchangeAdapter(ExchangeAdapter):
    """
    Fills market orders immediately at the cached ask (BUY) or bid (SELL).

    Failure injection for tests and drills:
    - `fail_pairs` maps a pair to the exception raised when it is traded
    - `stuck_pairs` orders are accepted but never leave SUBMITTED
    - `gate`, when set, holds every order until the event fires
    """

    def __init__(
        self,
        name: str,
        price_source: PriceSource,
        balances: Optional[Dict[str, float]] = None,
        fee_percent: Optional[float] = None,
        supports_transfers: bool = False,
        withdrawal_fee: Optional[float] = None,
    ):
        super().__init__(name)
        self.price_source = price_source
        self.balances: Dict[str, float] = {
            asset.upper(): float(amount) for asset, amount in (balances or {}).items()
        }
        config = get_config()
        self.fee_percent = config.fees.fee_percent(name) if fee_percent is None else fee_percent
        self.supports_transfers = supports_transfers
        self._withdrawal_fee = withdrawal_fee

        self.fail_pairs: Dict[str, Exception] = {}
        self.stuck_pairs: Set[str] = set()
        self.gate: Optional[asyncio.Event] = None

        self.peers: Dict[str, "PaperExchangeAdapter"] = {}
        self._orders: Dict[str, OrderResult] = {}
        self.orders_placed = 0

    def link(self, other: "PaperExchangeAdapter") -> None:
        """Allow withdrawals between two paper venues in both directions."""
        self.peers[other.name.lower()] = other
        other.peers[self.name.lower()] = self

    def credit(self, asset: str, amount: float) -> None:
        asset = asset.upper()
        self.balances[asset] = self.balances.get(asset, 0.0) + amount

    async def fetch_balance(self, asset: str) -> float:
        return self.balances.get(asset.upper(), 0.0)

    async def place_order(
        self,
        pair: str,
        side: Side,
        amount: float,
        order_type: str = "market",
    ) -> OrderResult:
        if self.gate is not None:
            await self.gate.wait()

        pair = pair.upper()
        self.orders_placed += 1

        if pair in self.fail_pairs:
            raise self.fail_pairs[pair]

        if amount <= 0:
            raise OrderRejected(f"order amount must be positive, got {amount}", exchange=self.name)

        base, quote_asset = split_pair(pair)
        spent_asset = quote_asset if side == Side.BUY else base
        received_asset = base if side == Side.BUY else quote_asset

        available = self.balances.get(spent_asset, 0.0)
        if available < amount:
            raise OrderRejected(
                f"insufficient {spent_asset} balance: {available} < {amount}",
                exchange=self.name,
            )

        quote = find_quote(await self.price_source.get_prices(self.name), pair)
        if quote is None:
            raise OrderRejected(f"no market for {pair}", exchange=self.name)

        order_id = f"paper_{self.name.lower()}_{next(_order_ids)}"

        if pair in self.stuck_pairs:
            order = OrderResult(order_id=order_id, status=OrderStatus.SUBMITTED)
            self._orders[order_id] = order
            return order

        base_amount, price = quoted_base_amount(side, amount, quote)
        received, fee = apply_fill(side, base_amount, price, self.fee_percent)

        self.balances[spent_asset] = available - amount
        self.credit(received_asset, received)

        order = OrderResult(
            order_id=order_id,
            status=OrderStatus.FILLED,
            filled_amount=base_amount,
            filled_price=price,
            fee=fee,
        )
        self._orders[order_id] = order

        logger.info(
            "📝 Paper order filled",
            exchange=self.name,
            order_id=order_id,
            pair=pair,
            side=side.value,
            amount=amount,
            price=price,
        )
        return order

    async def get_order(self, pair: str, order_id: str) -> OrderResult:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderRejected(f"unknown order {order_id}", exchange=self.name)
        return order

    async def withdraw(
        self,
        asset: str,
        amount: float,
        destination_exchange: str,
    ) -> TransferResult:
        if not self.supports_transfers:
            return await super().withdraw(asset, amount, destination_exchange)

        asset = asset.upper()
        destination = self.peers.get(destination_exchange.lower())
        if destination is None:
            raise ExchangeError(
                f"no route from {self.name} to {destination_exchange}",
                exchange=self.name,
            )

        available = self.balances.get(asset, 0.0)
        if available < amount:
            raise OrderRejected(
                f"insufficient {asset} balance for withdrawal: {available} < {amount}",
                exchange=self.name,
            )

        fee = self._withdrawal_fee
        if fee is None:
            fee = get_config().fees.withdrawal_fee(asset)

        self.balances[asset] = available - amount
        destination.credit(asset, max(0.0, amount - fee))

        transfer_id = f"paper_wd_{next(_order_ids)}"
        logger.info(
            "📝 Paper withdrawal sent",
            source=self.name,
            destination=destination.name,
            asset=asset,
            amount=amount,
            fee=fee,
        )
        return TransferResult(transfer_id=transfer_id, amount_sent=amount, fee=fee)
