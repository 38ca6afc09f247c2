"""
Multi-bridge scan rotation.
Each tick scans one bridge asset; a full cycle covers every configured bridge.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from bridgeswap.config import BotConfig, get_config
from bridgeswap.errors import SwapError
from bridgeswap.models import Opportunity, ScanResult
from bridgeswap.engine.opportunity_scanner import OpportunityScanner
from bridgeswap.logger import get_logger


logger = get_logger("scheduler")


@dataclass
class BridgeScan:
    """Latest scan for one bridge."""
    bridge: str
    result: ScanResult
    scanned_at: datetime
    duration_seconds: float


class ScanScheduler:
    """
    Rotates opportunity scans across bridge assets.

    Nothing runs in the background on its own: the caller drives `tick()`
    directly or awaits `run()` until its stop event fires.
    """

    def __init__(
        self,
        scanner: OpportunityScanner,
        user_id: str,
        bridges: Optional[List[str]] = None,
        interval_seconds: Optional[float] = None,
        config: Optional[BotConfig] = None,
    ):
        self.scanner = scanner
        self.user_id = user_id
        self.config = config or get_config()
        self.bridges = [b.upper() for b in (bridges or self.config.bridge.assets)]
        if not self.bridges:
            raise ValueError("At least one bridge asset is required")

        if interval_seconds is None:
            interval_seconds = scanner.ledger.get_settings(user_id).scan_interval_seconds
        self.interval_seconds = interval_seconds

        self._index = 0
        self.cycle_number = 0
        self.results: Dict[str, BridgeScan] = {}
        self._is_running = False

    @property
    def next_bridge(self) -> str:
        return self.bridges[self._index]

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def tick(self) -> BridgeScan:
        """Scan the next bridge in the rotation and store its result."""
        bridge = self.next_bridge
        logger.info(
            f"Starting scan {self._index + 1}/{len(self.bridges)}",
            bridge=bridge,
            cycle=self.cycle_number + 1,
        )

        started = datetime.utcnow()
        try:
            result = await self.scanner.scan_opportunities(self.user_id, bridge_asset=bridge)
        except SwapError as e:
            logger.error(f"{bridge} scan failed", error=str(e))
            result = ScanResult(success=False, bridge_assets=[bridge], message=str(e))

        finished = datetime.utcnow()
        scan = BridgeScan(
            bridge=bridge,
            result=result,
            scanned_at=finished,
            duration_seconds=(finished - started).total_seconds(),
        )
        self.results[bridge] = scan

        self._index = (self._index + 1) % len(self.bridges)
        if self._index == 0:
            self.cycle_number += 1
            self._log_cycle_complete()

        return scan

    def best_result(self) -> Optional[BridgeScan]:
        """The bridge whose latest scan holds the most profitable opportunity."""
        best: Optional[BridgeScan] = None
        for scan in self.results.values():
            top = scan.result.best
            if not scan.result.success or top is None:
                continue
            if best is None or top.profit_percent > best.result.best.profit_percent:
                best = scan
        return best

    def best_opportunity(self) -> Optional[Opportunity]:
        best = self.best_result()
        return best.result.best if best else None

    def _log_cycle_complete(self) -> None:
        best = self.best_result()
        if best is None:
            logger.warning(
                f"Cycle #{self.cycle_number} complete, no opportunities across any bridge"
            )
            return
        top = best.result.best
        logger.info(
            f"🏆 Cycle #{self.cycle_number} complete, best {top.profit_percent:+.4f}% via {best.bridge}",
            path_id=top.path.id,
            profit_amount=top.profit_amount,
            actionable=top.is_actionable,
        )

    async def run(self, stop_event: asyncio.Event, max_ticks: Optional[int] = None) -> None:
        """Tick every interval until `stop_event` is set or `max_ticks` is reached."""
        self._is_running = True
        ticks = 0
        logger.info(
            "Scan rotation started",
            bridges=self.bridges,
            interval=f"{self.interval_seconds}s",
        )
        try:
            while not stop_event.is_set():
                await self.tick()
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._is_running = False
            logger.info("Scan rotation stopped", ticks=ticks, cycles=self.cycle_number)

    def status(self) -> dict:
        """Rotation state for display."""
        best = self.best_result()
        return {
            "is_running": self._is_running,
            "current_cycle": self.cycle_number + 1,
            "next_bridge": self.next_bridge,
            "bridges_scanned": len(self.results),
            "best_bridge": best.bridge if best else None,
            "best_profit_percent": best.result.best.profit_percent if best else None,
            "bridge_results": {
                bridge: {
                    "success": scan.result.success,
                    "scanned_paths": scan.result.scanned_paths,
                    "best_path": scan.result.best.path.id if scan.result.best else None,
                    "best_profit_percent": (
                        scan.result.best.profit_percent if scan.result.best else None
                    ),
                    "scanned_at": scan.scanned_at.isoformat(),
                    "duration_seconds": scan.duration_seconds,
                }
                for bridge, scan in self.results.items()
            },
        }
