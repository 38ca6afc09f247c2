"""
Risk-bounded trade sizing and path risk assessment.
"""

from typing import List, Optional

from bridgeswap.config import BotConfig, get_config
from bridgeswap.database import SwapLedger
from bridgeswap.errors import DataUnavailable, ExchangeError, LimitExceeded, ValidationError
from bridgeswap.models import LimitStatus, RiskAssessment, RiskWarning, Side, SwapPath, TradeAmount
from bridgeswap.prices import find_quote
from bridgeswap.trading.adapter import AdapterRegistry
from bridgeswap.engine.opportunity_scanner import QuoteBook
from bridgeswap.logger import get_logger


logger = get_logger("risk")


class RiskCalculator:
    """
    Sizes trades from live balances and user policy.

    The limit checks here are advisory. The ledger enforces the concurrency
    and daily caps when an execution is recorded.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        ledger: SwapLedger,
        config: Optional[BotConfig] = None,
    ):
        self.registry = registry
        self.ledger = ledger
        self.config = config or get_config()

    async def _fetch_balance(self, exchange: str, asset: str) -> float:
        adapter = self.registry.get(exchange)
        try:
            return await adapter.fetch_balance(asset)
        except ExchangeError as e:
            raise DataUnavailable(
                f"balance of {asset} on {exchange} unavailable: {e}",
                exchange=exchange,
            ) from e

    async def calculate_trade_amount(self, user_id: str, exchange: str, asset: str) -> TradeAmount:
        """
        Recommend a trade size for one balance.

        recommended = min(balance less reserve, balance * max_balance_percentage,
        max_trade_amount), never negative. `max_trade_amount` is in units of
        `asset`.

        Raises:
            DataUnavailable: the balance could not be read
        """
        settings = self.ledger.get_settings(user_id)
        balance = await self._fetch_balance(exchange, asset)

        if balance <= 0:
            return TradeAmount(
                exchange=exchange,
                asset=asset,
                available_balance=max(0.0, balance),
                recommended_amount=0.0,
                max_by_limit=settings.max_trade_amount,
                constraint="balance",
                reason=f"No {asset} available on {exchange}",
            )

        reserve = balance * settings.min_balance_reserve_percent / 100.0
        max_by_balance = balance - reserve
        max_by_percentage = balance * settings.max_balance_percentage / 100.0
        max_by_limit = settings.max_trade_amount

        candidates = [
            ("reserve", max_by_balance),
            ("percentage", max_by_percentage),
            ("limit", max_by_limit),
        ]
        constraint, recommended = min(candidates, key=lambda c: c[1])
        recommended = max(0.0, recommended)

        reason = None
        if recommended == 0:
            reason = f"{constraint} constraint leaves nothing to trade"

        logger.debug(
            "Trade amount calculated",
            exchange=exchange,
            asset=asset,
            balance=balance,
            recommended=recommended,
            constraint=constraint,
        )

        return TradeAmount(
            exchange=exchange,
            asset=asset,
            available_balance=balance,
            recommended_amount=recommended,
            reserve_amount=reserve,
            max_by_balance=max_by_balance,
            max_by_percentage=max_by_percentage,
            max_by_limit=max_by_limit,
            constraint=constraint,
            reason=reason,
        )

    async def validate_trade_amount(
        self,
        user_id: str,
        exchange: str,
        asset: str,
        amount: float,
    ) -> TradeAmount:
        """
        Check a requested amount against the recommendation.

        Raises:
            ValidationError: amount is not positive
            LimitExceeded: amount is above the recommended size
        """
        if amount <= 0:
            raise ValidationError([f"amount must be positive, got {amount}"])

        sizing = await self.calculate_trade_amount(user_id, exchange, asset)
        if amount > sizing.recommended_amount:
            raise LimitExceeded("balance", amount, sizing.recommended_amount)
        return sizing

    def can_execute_swap(self, user_id: str) -> LimitStatus:
        """Advisory daily and concurrency check."""
        settings = self.ledger.get_settings(user_id)
        daily_count = self.ledger.count_today(user_id)
        active_count = self.ledger.count_active(user_id)

        status = LimitStatus(
            can_execute=False,
            daily_count=daily_count,
            max_daily=settings.daily_swap_limit,
            remaining=max(0, settings.daily_swap_limit - daily_count),
            active_count=active_count,
            max_concurrent=settings.max_concurrent_trades,
        )
        status.can_execute = status.daily_ok and status.concurrency_ok
        return status

    async def assess_swap_risk(
        self,
        user_id: str,
        path: SwapPath,
        prices: QuoteBook,
    ) -> RiskAssessment:
        """
        Assess a path before execution.

        Warnings never raise; any high-severity warning clears `can_proceed`.

        Raises:
            ValidationError: the path's hops do not chain
        """
        errors = path.chain_errors()
        if errors:
            raise ValidationError(errors)

        warnings: List[RiskWarning] = []

        try:
            sizing = await self.calculate_trade_amount(
                user_id, path.source_exchange, path.source_asset
            )
            max_safe_amount = sizing.recommended_amount
            reserve_amount = sizing.reserve_amount
            if not sizing.can_trade:
                warnings.append(RiskWarning(
                    type="insufficient_balance",
                    severity="high",
                    message=sizing.reason or f"No {path.source_asset} available to trade",
                ))
        except DataUnavailable as e:
            max_safe_amount = 0.0
            reserve_amount = 0.0
            warnings.append(RiskWarning(
                type="insufficient_balance",
                severity="high",
                message=str(e),
            ))

        warnings.extend(self._quote_warnings(path, prices, max_safe_amount))

        daily = self.can_execute_swap(user_id)
        if not daily.daily_ok:
            warnings.append(RiskWarning(
                type="daily_limit_reached",
                severity="high",
                message=f"Daily swap limit reached ({daily.daily_count}/{daily.max_daily})",
            ))
        if not daily.concurrency_ok:
            warnings.append(RiskWarning(
                type="concurrent_limit_reached",
                severity="high",
                message=(
                    f"Maximum concurrent swaps running "
                    f"({daily.active_count}/{daily.max_concurrent})"
                ),
            ))

        return RiskAssessment(
            path=path,
            max_safe_amount=max_safe_amount,
            reserve_amount=reserve_amount,
            concurrent_trade_count=daily.active_count,
            daily=daily,
            can_proceed=not any(w.severity == "high" for w in warnings),
            warnings=warnings,
        )

    def _quote_warnings(
        self,
        path: SwapPath,
        prices: QuoteBook,
        amount: float,
    ) -> List[RiskWarning]:
        """Missing, stale and thin quotes along the path, plus destination rounding."""
        risk = self.config.risk
        warnings: List[RiskWarning] = []
        running = amount

        for hop in path.hops:
            quote = find_quote(prices.get(hop.exchange.lower(), {}), hop.pair)
            if quote is None:
                warnings.append(RiskWarning(
                    type="missing_quote",
                    severity="high",
                    message=f"No price for {hop.pair} on {hop.exchange}",
                ))
                running = 0.0
                continue

            age = quote.age_seconds()
            if age > risk.quote_freshness_seconds:
                warnings.append(RiskWarning(
                    type="stale_quote",
                    severity="medium",
                    message=f"{hop.pair} on {hop.exchange} is {age:.0f}s old",
                ))

            if hop.side == Side.BUY:
                base_needed = running / quote.ask if quote.ask else 0.0
                running = base_needed
            else:
                base_needed = running
                running = running * quote.bid

            if quote.volume is not None and base_needed > quote.volume * risk.thin_volume_ratio:
                warnings.append(RiskWarning(
                    type="thin_volume",
                    severity="medium",
                    message=(
                        f"{hop.pair} on {hop.exchange} needs {base_needed:.6f} "
                        f"of {quote.volume:.6f} quoted"
                    ),
                ))

        if running > 0:
            step = 10 ** -risk.rounding_precision
            if step / running * 100.0 > risk.rounding_tolerance_percent:
                warnings.append(RiskWarning(
                    type="rounding_risk",
                    severity="low",
                    message=(
                        f"{running:.8f} {path.dest_asset} settles to "
                        f"{risk.rounding_precision} decimals"
                    ),
                ))

        return warnings
