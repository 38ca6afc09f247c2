"""Path generation, scanning, risk and execution."""

from bridgeswap.engine.path_generator import PathGenerator
from bridgeswap.engine.opportunity_scanner import OpportunityScanner
from bridgeswap.engine.risk_calculator import RiskCalculator
from bridgeswap.engine.execution_engine import ExecutionEngine, unwind_hops
from bridgeswap.engine.scan_scheduler import ScanScheduler

__all__ = [
    "PathGenerator",
    "OpportunityScanner",
    "RiskCalculator",
    "ExecutionEngine",
    "unwind_hops",
    "ScanScheduler",
]
