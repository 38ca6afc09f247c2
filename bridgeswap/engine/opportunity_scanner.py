"""
Opportunity scanning.
Attaches live economics to every generated path and ranks the results.
"""

import asyncio
from functools import cmp_to_key
from typing import Dict, List, Optional, Sequence, Tuple

from bridgeswap.config import AUTO_BRIDGE, BotConfig, SwapSettings, get_config
from bridgeswap.errors import DataUnavailable, ValidationError
from bridgeswap.models import (
    FeeCharge, Hop, Opportunity, PriceQuote, RateResult, ScanResult,
    Selection, Side, SwapPath,
)
from bridgeswap.prices import PriceSource, find_quote
from bridgeswap.engine.path_generator import PathGenerator, build_path, total_possible_paths
from bridgeswap.logger import get_logger, swap_logger


logger = get_logger("scanner")

# Profit percents closer than this rank as equal
PROFIT_TIE_TOLERANCE = 1e-8

QuoteBook = Dict[str, Dict[str, PriceQuote]]


def apply_fill(side: Side, base_amount: float, price: float, fee_percent: float) -> Tuple[float, float]:
    """
    Convert a filled base amount into the asset received, net of the trading fee.

    BUY receives the base itself; SELL receives base * price of the quote.

    Returns:
        (amount received, fee charged in the received asset)
    """
    gross = base_amount if side == Side.BUY else base_amount * price
    fee = gross * fee_percent / 100.0
    return gross - fee, fee


def quoted_base_amount(side: Side, amount: float, quote: PriceQuote) -> Tuple[float, float]:
    """Base units a hop moves for `amount` of its input, and the price used."""
    if side == Side.BUY:
        return amount / quote.ask, quote.ask
    return amount, quote.bid


def rank_key(a: Opportunity, b: Opportunity) -> int:
    """Higher profit first; ties go to fewer hops, then the lexically smaller path id."""
    diff = a.profit_percent - b.profit_percent
    if abs(diff) > PROFIT_TIE_TOLERANCE:
        return -1 if diff > 0 else 1
    hop_diff = len(a.path.hops) - len(b.path.hops)
    if hop_diff:
        return hop_diff
    if a.path.id == b.path.id:
        return 0
    return -1 if a.path.id < b.path.id else 1


def rank_opportunities(opportunities: List[Opportunity]) -> List[Opportunity]:
    return sorted(opportunities, key=cmp_to_key(rank_key))


def selection_for(settings: SwapSettings, bridge_asset: str) -> Selection:
    return Selection(
        exchanges=settings.selected_exchanges,
        currencies=settings.selected_currencies,
        bridge_asset=bridge_asset,
        allowed_pairs=settings.allowed_pairs,
    )


class OpportunityScanner:
    """
    Scans every generated path against cached prices.

    A path with a missing quote is skipped and reported; it never aborts the
    rest of the scan.
    """

    def __init__(
        self,
        price_source: PriceSource,
        ledger,
        generator: Optional[PathGenerator] = None,
        config: Optional[BotConfig] = None,
    ):
        self.price_source = price_source
        self.ledger = ledger
        self.generator = generator or PathGenerator()
        self.config = config or get_config()

        self._scans_run = 0
        self._opportunities_found = 0

    def fee_percent(self, exchange: str) -> float:
        return self.config.fees.fee_percent(exchange)

    def withdrawal_fee(self, asset: str) -> float:
        return self.config.fees.withdrawal_fee(asset)

    def calculate_effective_rate(
        self,
        source_asset: str,
        dest_asset: str,
        hops: Sequence[Hop],
        amount: float,
        quotes: QuoteBook,
    ) -> RateResult:
        """
        Walk the hops converting the running amount at quoted prices.

        Buys use the ask, sells the bid, and each hop pays its exchange's fee.
        Moving between exchanges pays the flat withdrawal fee of the asset moved.

        Raises:
            ValidationError: amount <= 0 or a broken hop chain
            DataUnavailable: a hop has no quote
        """
        reasons = []
        if amount <= 0:
            reasons.append(f"amount must be positive, got {amount}")
        if not hops:
            reasons.append("path has no hops")
        else:
            if hops[0].from_asset != source_asset:
                reasons.append(f"first hop spends {hops[0].from_asset}, expected {source_asset}")
            if hops[-1].to_asset != dest_asset:
                reasons.append(f"last hop yields {hops[-1].to_asset}, expected {dest_asset}")
        if reasons:
            raise ValidationError(reasons)

        running = float(amount)
        fees: List[FeeCharge] = []

        for index, hop in enumerate(hops):
            if index > 0 and hops[index - 1].exchange.lower() != hop.exchange.lower():
                moved = hops[index - 1].to_asset
                withdrawal = self.withdrawal_fee(moved)
                if withdrawal:
                    fees.append(FeeCharge(
                        step=index,
                        kind="withdrawal",
                        exchange=hops[index - 1].exchange,
                        asset=moved,
                        amount=withdrawal,
                    ))
                running -= withdrawal
                if running <= 0:
                    return RateResult(effective_rate=0.0, final_amount=0.0, fees=fees)

            quote = find_quote(quotes.get(hop.exchange.lower(), {}), hop.pair)
            if quote is None:
                raise DataUnavailable(
                    f"no quote for {hop.pair} on {hop.exchange}",
                    exchange=hop.exchange,
                    pair=hop.pair,
                )

            base_amount, price = quoted_base_amount(hop.side, running, quote)
            running, fee = apply_fill(hop.side, base_amount, price, self.fee_percent(hop.exchange))
            fees.append(FeeCharge(
                step=index + 1,
                kind="trading",
                exchange=hop.exchange,
                asset=hop.to_asset,
                amount=fee,
            ))

        return RateResult(
            effective_rate=running / amount,
            final_amount=running,
            fees=fees,
        )

    def evaluate_path(
        self,
        path: SwapPath,
        amount: float,
        quotes: QuoteBook,
        threshold_percent: float = 0.0,
    ) -> Opportunity:
        """Price one path. Raises DataUnavailable when a quote is missing."""
        rate = self.calculate_effective_rate(
            path.source_asset, path.dest_asset, path.hops, amount, quotes
        )
        profit_amount = rate.final_amount - amount
        profit_percent = profit_amount / amount * 100.0
        return Opportunity(
            path=path,
            initial_amount=amount,
            final_amount=rate.final_amount,
            effective_rate=rate.effective_rate,
            profit_amount=profit_amount,
            profit_percent=profit_percent,
            fees=rate.fees,
            is_profitable=profit_percent > 0,
            is_actionable=profit_percent > 0 and profit_percent >= threshold_percent,
        )

    def resolve_bridges(self, preference: Optional[str]) -> List[str]:
        """AUTO expands to every configured bridge; anything else is used as given."""
        if not preference or preference.upper() == AUTO_BRIDGE:
            return self.config.bridge.assets
        return [preference.upper()]

    async def fetch_quotes(self, exchanges: Sequence[str]) -> QuoteBook:
        """Read every exchange's cached quotes concurrently."""
        results = await asyncio.gather(
            *(self.price_source.get_prices(exchange) for exchange in exchanges),
            return_exceptions=True,
        )

        book: QuoteBook = {}
        for exchange, result in zip(exchanges, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Price lookup failed",
                    exchange=exchange,
                    error=str(result),
                )
                book[exchange.lower()] = {}
                continue
            if not result:
                logger.warning(f"No cached prices available for {exchange}")
            book[exchange.lower()] = result
        return book

    async def scan_opportunities(
        self,
        user_id: str,
        bridge_asset: Optional[str] = None,
        amount: Optional[float] = None,
    ) -> ScanResult:
        """
        Scan all of a user's paths and rank them by profit.

        Args:
            user_id: User whose selection and thresholds apply
            bridge_asset: Bridge override; defaults to the user's preferred bridge
            amount: Notional in source asset units; defaults to max_trade_amount

        Returns:
            ScanResult with opportunities sorted best first
        """
        settings: SwapSettings = self.ledger.get_settings(user_id)
        bridges = self.resolve_bridges(bridge_asset or settings.preferred_bridge)
        amount = settings.max_trade_amount if amount is None else amount

        if amount <= 0:
            raise ValidationError([f"amount must be positive, got {amount}"])

        paths: List[SwapPath] = []
        total_possible = 0
        for bridge in bridges:
            selection = selection_for(settings, bridge)
            paths.extend(self.generator.generate_all_paths(selection))
            total_possible += total_possible_paths(
                len(selection.exchanges), len(selection.tradable_assets)
            )

        self._scans_run += 1

        if not paths:
            logger.warning("No tradable paths for user", user_id=user_id, bridges=bridges)
            return ScanResult(
                success=True,
                total_possible_paths=total_possible,
                bridge_assets=bridges,
                message="No exchanges or currencies overlap for the selected bridges",
            )

        quotes = await self.fetch_quotes(settings.selected_exchanges)

        opportunities: List[Opportunity] = []
        skipped: List[Tuple[str, str]] = []
        for path in paths:
            try:
                opportunity = self.evaluate_path(path, amount, quotes, settings.threshold_percent)
            except DataUnavailable as e:
                skipped.append((path.id, str(e)))
                continue
            opportunities.append(opportunity)

        ranked = rank_opportunities(opportunities)
        result = ScanResult(
            success=True,
            opportunities=ranked,
            scanned_paths=len(ranked),
            total_possible_paths=total_possible,
            skipped=skipped,
            bridge_assets=bridges,
        )

        if not ranked:
            result.message = "No paths could be priced (missing price data)"
            logger.warning(
                "No paths could be calculated",
                user_id=user_id,
                skipped=len(skipped),
            )
            return result

        for opportunity in ranked:
            if not opportunity.is_profitable:
                break
            self._opportunities_found += 1
            swap_logger.log_opportunity_detected(
                path_id=opportunity.path.id,
                profit_percent=opportunity.profit_percent,
                initial_amount=opportunity.initial_amount,
                final_amount=opportunity.final_amount,
                actionable=opportunity.is_actionable,
            )

        best = result.best
        logger.info(
            "Scan complete",
            user_id=user_id,
            scanned=result.scanned_paths,
            skipped=len(skipped),
            best_path=best.path.id,
            best_profit=f"{best.profit_percent:.4f}%",
            meets_threshold=best.is_actionable,
        )
        return result

    def find_all_routes(
        self,
        source_exchange: str,
        source_asset: str,
        dest_exchange: str,
        dest_asset: str,
        bridge_preference: str = AUTO_BRIDGE,
    ) -> List[SwapPath]:
        """Every configured bridge connecting the two endpoints, or only the preferred one."""
        reasons = []
        if source_exchange.lower() == dest_exchange.lower():
            reasons.append("source and destination exchange are the same")
        if source_asset.upper() == dest_asset.upper():
            reasons.append("source and destination asset are the same")
        if reasons:
            raise ValidationError(reasons)

        return [
            build_path(
                source_exchange,
                source_asset.upper(),
                dest_exchange,
                dest_asset.upper(),
                bridge,
            )
            for bridge in self.resolve_bridges(bridge_preference)
        ]

    @property
    def metrics(self) -> dict:
        """Get scanner metrics."""
        return {
            "scans_run": self._scans_run,
            "opportunities_found": self._opportunities_found,
        }
