"""
Swap service facade.
Wires the engine components together behind the operations callers use.
"""

from typing import Any, Dict, List, Optional, Union

from bridgeswap.config import AUTO_BRIDGE, BotConfig, SwapSettings, get_config
from bridgeswap.database import SwapLedger, get_ledger
from bridgeswap.errors import SwapError, ValidationError
from bridgeswap.models import (
    ExecutionOutcome, ExecutionStatus, Hop, LimitStatus, PathValidation, RiskAssessment,
    ScanResult, SwapExecution, SwapPath, TradeAmount, parse_path_id,
)
from bridgeswap.prices import PriceSource
from bridgeswap.trading.adapter import AdapterRegistry
from bridgeswap.engine.path_generator import PathGenerator, build_path
from bridgeswap.engine.opportunity_scanner import OpportunityScanner, QuoteBook, selection_for
from bridgeswap.engine.risk_calculator import RiskCalculator
from bridgeswap.engine.execution_engine import ExecutionEngine, unwind_hops
from bridgeswap.logger import get_logger


logger = get_logger("service")


class SwapService:
    """Entry point for scanning, sizing and executing swaps."""

    def __init__(
        self,
        price_source: PriceSource,
        registry: AdapterRegistry,
        ledger: Optional[SwapLedger] = None,
        config: Optional[BotConfig] = None,
    ):
        self.config = config or get_config()
        self.price_source = price_source
        self.registry = registry
        self.ledger = ledger or get_ledger()

        self.generator = PathGenerator()
        self.scanner = OpportunityScanner(price_source, self.ledger, self.generator, self.config)
        self.risk = RiskCalculator(registry, self.ledger, self.config)
        self.engine = ExecutionEngine(registry, self.ledger, self.risk, self.config)

    # Settings

    def get_settings(self, user_id: str) -> SwapSettings:
        return self.ledger.get_settings(user_id)

    def update_settings(self, user_id: str, **changes: Any) -> SwapSettings:
        """
        Apply changes to a user's settings.

        Raises:
            ValidationError: a value is outside its allowed range
        """
        current = self.ledger.get_settings(user_id)
        data = current.model_dump()
        data.update(changes)
        try:
            settings = SwapSettings.model_validate(data)
        except ValueError as e:
            # pydantic's ValidationError subclasses ValueError
            raise ValidationError([str(e)]) from e
        return self.ledger.save_settings(user_id, settings)

    # Paths

    def _bridges_for(self, settings: SwapSettings, bridge_asset: Optional[str]) -> List[str]:
        return self.scanner.resolve_bridges(bridge_asset or settings.preferred_bridge)

    def path_statistics(self, user_id: str, bridge_asset: Optional[str] = None) -> Dict[str, dict]:
        """Path counts per bridge for the user's selection."""
        settings = self.ledger.get_settings(user_id)
        return {
            bridge: self.generator.get_path_statistics(selection_for(settings, bridge))
            for bridge in self._bridges_for(settings, bridge_asset)
        }

    def list_paths(self, user_id: str, bridge_asset: Optional[str] = None) -> List[SwapPath]:
        settings = self.ledger.get_settings(user_id)
        paths: List[SwapPath] = []
        for bridge in self._bridges_for(settings, bridge_asset):
            paths.extend(self.generator.generate_all_paths(selection_for(settings, bridge)))
        return paths

    def validate_path(self, user_id: str, path_id: str) -> PathValidation:
        """Check a path id against the user's current selection and bridge preference."""
        parts = parse_path_id(path_id)
        if parts is None:
            return PathValidation(valid=False, reasons=[f"malformed path id: {path_id}"])

        settings = self.ledger.get_settings(user_id)
        bridge = parts[4]
        validation = self.generator.validate_path(selection_for(settings, bridge), path_id)
        if bridge not in self._bridges_for(settings, None):
            validation.valid = False
            validation.reasons.append(f"bridge {bridge} is not enabled")
        return validation

    def resolve_path(self, user_id: str, path: Union[SwapPath, str]) -> SwapPath:
        """
        Turn a path id into a path, validated against the user's selection.

        Raises:
            ValidationError: the id is malformed or no longer selectable
        """
        if isinstance(path, SwapPath):
            return path
        validation = self.validate_path(user_id, path)
        if not validation.valid:
            raise ValidationError(validation.reasons)
        source_exchange, source_asset, dest_exchange, dest_asset, bridge = parse_path_id(path)
        return build_path(source_exchange, source_asset, dest_exchange, dest_asset, bridge)

    def find_all_routes(
        self,
        source_exchange: str,
        source_asset: str,
        dest_exchange: str,
        dest_asset: str,
        bridge_preference: str = AUTO_BRIDGE,
    ) -> List[SwapPath]:
        return self.scanner.find_all_routes(
            source_exchange, source_asset, dest_exchange, dest_asset, bridge_preference
        )

    # Scanning and risk

    async def scan(
        self,
        user_id: str,
        bridge_asset: Optional[str] = None,
        amount: Optional[float] = None,
    ) -> ScanResult:
        return await self.scanner.scan_opportunities(user_id, bridge_asset, amount)

    async def assess_risk(
        self,
        user_id: str,
        path: Union[SwapPath, str],
        prices: Optional[QuoteBook] = None,
    ) -> RiskAssessment:
        """Assess a path; prices default to the cached quotes of its exchanges."""
        path = self.resolve_path(user_id, path)
        if prices is None:
            exchanges = list(dict.fromkeys(hop.exchange for hop in path.hops))
            prices = await self.scanner.fetch_quotes(exchanges)
        return await self.risk.assess_swap_risk(user_id, path, prices)

    async def recommended_amount(self, user_id: str, exchange: str, asset: str) -> TradeAmount:
        return await self.risk.calculate_trade_amount(user_id, exchange, asset)

    def daily_limit_status(self, user_id: str) -> LimitStatus:
        return self.risk.can_execute_swap(user_id)

    # Execution

    async def execute(
        self,
        user_id: str,
        path: Union[SwapPath, str],
        amount: float,
        execution_id: Optional[str] = None,
    ) -> ExecutionOutcome:
        path = self.resolve_path(user_id, path)
        return await self.engine.execute_path(user_id, path, amount, execution_id=execution_id)

    def get_execution(self, execution_id: str) -> Optional[SwapExecution]:
        return self.ledger.get(execution_id)

    def history(
        self,
        user_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        limit: int = 50,
    ) -> List[SwapExecution]:
        return self.ledger.list_executions(user_id=user_id, status=status, limit=limit)

    def unwind_plan(self, execution_id: str) -> List[Hop]:
        """Reverse hops for a partially failed execution."""
        execution = self.ledger.get(execution_id)
        if execution is None:
            raise SwapError(f"unknown execution {execution_id}")
        return unwind_hops(execution)
