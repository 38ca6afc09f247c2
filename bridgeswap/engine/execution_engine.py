"""
Execution engine.
Carries out a swap path as an ordered sequence of exchange operations.
"""

import asyncio
import time
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Set

from bridgeswap.config import BotConfig, get_config
from bridgeswap.database import SwapLedger
from bridgeswap.errors import (
    DataUnavailable, ExchangeError, ExecutionStepFailure, LimitExceeded, ValidationError,
)
from bridgeswap.models import (
    ExecutionOutcome, ExecutionStatus, Hop, OrderResult, OrderStatus, Side, StepResult,
    StrandedFunds, SwapExecution, SwapPath,
)
from bridgeswap.trading.adapter import AdapterRegistry, ExchangeAdapter
from bridgeswap.engine.opportunity_scanner import apply_fill
from bridgeswap.engine.risk_calculator import RiskCalculator
from bridgeswap.logger import get_logger, swap_logger


logger = get_logger("execution")


_FAILED_ORDER_STATUSES = (OrderStatus.CANCELLED, OrderStatus.FAILED)


def unwind_hops(execution: SwapExecution) -> List[Hop]:
    """
    Hops that reverse the completed trades of a partially failed execution.

    Returned for an operator to review; never executed automatically.
    """
    if execution.status != ExecutionStatus.PARTIALLY_FAILED:
        return []

    reverse = []
    for step in reversed(execution.step_results):
        if step.kind != "hop" or not step.succeeded:
            continue
        reverse.append(Hop(
            exchange=step.exchange,
            from_asset=step.to_asset,
            to_asset=step.from_asset,
            side=Side.SELL if step.side == Side.BUY.value else Side.BUY,
        ))
    return reverse


class ExecutionEngine:
    """
    Runs swap paths through the pending -> executing -> terminal state machine.

    Flow:
    1. Validate the request before any external call
    2. Advisory limit check, then the ledger's authoritative insert
    3. Hops strictly in order, each bounded by the hop timeout
    4. A failure after the first step strands funds for manual unwind
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        ledger: SwapLedger,
        risk: Optional[RiskCalculator] = None,
        config: Optional[BotConfig] = None,
    ):
        self.registry = registry
        self.ledger = ledger
        self.config = config or get_config()
        self.risk = risk or RiskCalculator(registry, ledger, self.config)

        self._in_flight: Set[str] = set()

        # Execution metrics
        self._total_executions = 0
        self._completed = 0
        self._failed = 0
        self._partially_failed = 0

    def _validate(self, path: SwapPath, amount: float) -> None:
        reasons = []
        if amount is None or amount <= 0:
            reasons.append(f"amount must be positive, got {amount}")
        reasons.extend(path.chain_errors())
        if path.source_exchange.lower() == path.dest_exchange.lower():
            reasons.append("source and destination exchange are the same")
        if path.source_asset == path.dest_asset:
            reasons.append("source and destination asset are the same")
        for exchange in {hop.exchange for hop in path.hops}:
            if exchange not in self.registry:
                reasons.append(f"no adapter registered for exchange {exchange}")
        if reasons:
            raise ValidationError(reasons)

    async def execute_path(
        self,
        user_id: str,
        path: SwapPath,
        amount: float,
        execution_id: Optional[str] = None,
    ) -> ExecutionOutcome:
        """
        Execute a path for a user.

        Args:
            user_id: Owner of the execution and its limits
            path: Path to run
            amount: Amount of the source asset to spend
            execution_id: Caller-chosen id; resubmitting it is idempotent

        Returns:
            ExecutionOutcome with the persisted record

        Raises:
            ValidationError: bad request, nothing recorded
            LimitExceeded: daily, concurrency or balance-policy cap, nothing recorded
            DataUnavailable: the source balance could not be read
        """
        if execution_id is not None:
            stored = self.ledger.get(execution_id)
            if stored is not None:
                if stored.user_id != user_id:
                    raise ValidationError([
                        f"execution {execution_id} belongs to another user"
                    ])
                if stored.status != ExecutionStatus.PENDING or execution_id in self._in_flight:
                    logger.info(
                        "Execution already submitted",
                        execution_id=execution_id,
                        status=stored.status.value,
                    )
                    return ExecutionOutcome(
                        success=stored.status == ExecutionStatus.COMPLETED,
                        execution=stored,
                    )
                # Recorded but never started; it already passed the caps
                logger.warning("Resuming pending execution", execution_id=execution_id)
                return await self._start(stored)

        self._validate(path, amount)

        settings = self.ledger.get_settings(user_id)
        limits = self.risk.can_execute_swap(user_id)
        if not limits.daily_ok:
            raise LimitExceeded("daily", limits.daily_count, limits.max_daily)
        if not limits.concurrency_ok:
            raise LimitExceeded("concurrent", limits.active_count, limits.max_concurrent)

        # Reserve floor, balance percentage and per-trade cap
        await self.risk.validate_trade_amount(
            user_id, path.source_exchange, path.source_asset, amount
        )

        execution = SwapExecution(
            id=execution_id or uuid.uuid4().hex,
            user_id=user_id,
            path=path,
            amount=amount,
        )
        execution, created = self.ledger.create_pending(
            execution,
            max_concurrent=settings.max_concurrent_trades,
            max_daily=settings.daily_swap_limit,
        )
        if not created and (
            execution.status != ExecutionStatus.PENDING or execution.id in self._in_flight
        ):
            return ExecutionOutcome(
                success=execution.status == ExecutionStatus.COMPLETED,
                execution=execution,
            )
        return await self._start(execution)

    async def _start(self, execution: SwapExecution) -> ExecutionOutcome:
        self._total_executions += 1
        self._in_flight.add(execution.id)
        try:
            await self._run(execution)
        finally:
            self._in_flight.discard(execution.id)

        return ExecutionOutcome(
            success=execution.status == ExecutionStatus.COMPLETED,
            execution=execution,
        )

    async def _run(self, execution: SwapExecution) -> None:
        path = execution.path
        running = execution.amount
        held_exchange = path.source_exchange
        held_asset = path.source_asset
        step_index = 0

        logger.info(
            "Executing swap path",
            execution_id=execution.id,
            path_id=path.id,
            amount=execution.amount,
        )

        try:
            for i, hop in enumerate(path.hops):
                if i > 0 and path.hops[i - 1].exchange.lower() != hop.exchange.lower():
                    step_index += 1
                    step = await self._run_transfer(
                        execution, step_index, path.hops[i - 1].exchange, hop.exchange,
                        held_asset, running,
                    )
                    if not step.succeeded:
                        self._finish_failed(
                            execution, f"step {step.index} failed: {step.error}",
                            held_exchange, held_asset, running,
                        )
                        return
                    running = step.received_amount
                    held_exchange = hop.exchange

                step_index += 1
                if execution.status == ExecutionStatus.PENDING:
                    execution.status = ExecutionStatus.EXECUTING
                    self.ledger.update_status(execution)

                step = await self._run_hop_step(execution, step_index, hop, running)
                if not step.succeeded:
                    self._finish_failed(
                        execution, f"step {step.index} failed: {step.error}",
                        held_exchange, held_asset, running,
                    )
                    return

                running = step.received_amount
                held_exchange = hop.exchange
                held_asset = hop.to_asset
        except Exception as e:
            logger.exception("Unexpected error during execution", execution_id=execution.id)
            for step in execution.step_results:
                if step.status == "pending":
                    step.status = "failed"
                    step.error = str(e)
                    step.error_kind = "internal"
                    step.completed_at = datetime.utcnow()
            self._finish_failed(
                execution, f"unexpected error: {e}", held_exchange, held_asset, running,
            )
            return

        execution.status = ExecutionStatus.COMPLETED
        execution.final_amount = running
        execution.profit = running - execution.amount
        execution.profit_percent = execution.profit / execution.amount * 100.0
        execution.completed_at = datetime.utcnow()
        self.ledger.update_status(execution)
        self._completed += 1
        self._log_finished(execution)

    def _finish_failed(
        self,
        execution: SwapExecution,
        error: str,
        held_exchange: str,
        held_asset: str,
        held_amount: float,
    ) -> None:
        # A partial fill converts funds even though its step failed
        moved = any(s.succeeded or s.filled_amount > 0 for s in execution.step_results)

        last = execution.step_results[-1] if execution.step_results else None
        if last is not None and last.kind == "hop" and not last.succeeded and last.filled_amount > 0:
            held_exchange = last.exchange
            held_asset = last.to_asset
            held_amount, unconverted = self._partial_holding(last)
            if unconverted > 0:
                error = f"{error}; {unconverted} {last.from_asset} left unconverted on {last.exchange}"

        execution.error_message = error
        execution.completed_at = datetime.utcnow()
        execution.final_amount = 0.0

        if not moved:
            execution.status = ExecutionStatus.FAILED
            execution.profit = 0.0
            execution.profit_percent = 0.0
            self._failed += 1
        else:
            execution.status = ExecutionStatus.PARTIALLY_FAILED
            execution.profit = -execution.amount
            execution.profit_percent = -100.0
            execution.stranded = StrandedFunds(
                exchange=held_exchange,
                asset=held_asset,
                amount=held_amount,
            )
            self._partially_failed += 1
            logger.error(
                "⚠️ Funds stranded mid-path, manual unwind required",
                execution_id=execution.id,
                exchange=held_exchange,
                asset=held_asset,
                amount=held_amount,
            )

        self.ledger.update_status(execution)
        self._log_finished(execution)

    def _log_finished(self, execution: SwapExecution) -> None:
        swap_logger.log_execution_finished(
            execution_id=execution.id,
            path_id=execution.path.id,
            status=execution.status.value,
            amount=execution.amount,
            final_amount=execution.final_amount,
            profit=execution.profit,
            profit_percent=execution.profit_percent,
        )

    async def _run_hop_step(
        self,
        execution: SwapExecution,
        index: int,
        hop: Hop,
        amount: float,
    ) -> StepResult:
        """Run one hop and record its outcome; failures are captured, not raised."""
        step = StepResult(
            index=index,
            kind="hop",
            exchange=hop.exchange,
            from_asset=hop.from_asset,
            to_asset=hop.to_asset,
            requested_amount=amount,
            pair=hop.pair,
            side=hop.side.value,
            started_at=datetime.utcnow(),
        )
        execution.step_results.append(step)

        swap_logger.log_hop_submitted(
            execution_id=execution.id,
            step=index,
            exchange=hop.exchange,
            pair=hop.pair,
            side=hop.side.value,
            requested_amount=amount,
        )

        start = time.perf_counter()
        timeout = self.config.execution.hop_timeout_seconds
        try:
            order = await asyncio.wait_for(self._place_and_confirm(step, hop, amount), timeout)
        except asyncio.TimeoutError:
            self._mark_step_failed(execution, step, f"hop not confirmed within {timeout}s", "timeout")
            return step
        except ExchangeError as e:
            self._mark_step_failed(execution, step, str(e), e.kind)
            return step
        except ExecutionStepFailure as e:
            self._mark_step_failed(execution, step, str(e), e.kind)
            return step
        except DataUnavailable as e:
            self._mark_step_failed(execution, step, str(e), "data_unavailable")
            return step
        except Exception as e:
            logger.exception("Unexpected error executing hop", execution_id=execution.id, step=index)
            self._mark_step_failed(execution, step, str(e), "internal")
            return step

        step.filled_amount = order.filled_amount
        step.filled_price = order.filled_price
        step.received_amount, step.fee = self._received_from_fill(hop, order)
        step.status = "success"
        step.completed_at = datetime.utcnow()

        swap_logger.log_hop_filled(
            execution_id=execution.id,
            step=index,
            exchange=hop.exchange,
            pair=hop.pair,
            side=hop.side.value,
            requested_amount=amount,
            filled_amount=order.filled_amount,
            filled_price=order.filled_price,
            order_id=order.order_id,
            latency_ms=(time.perf_counter() - start) * 1000,
        )
        self.ledger.update_status(execution)
        return step

    def _received_from_fill(self, hop: Hop, order: OrderResult):
        fee_percent = self.config.fees.fee_percent(hop.exchange)
        received, fee = apply_fill(hop.side, order.filled_amount, order.filled_price, fee_percent)
        if order.fee is not None:
            # Venue-reported fee replaces the estimate
            received = received + fee - order.fee
            fee = order.fee
        return received, fee

    def _partial_holding(self, step: StepResult):
        """(received, unconverted input) for a hop that filled only in part."""
        side = Side(step.side)
        fee_percent = self.config.fees.fee_percent(step.exchange)
        received, _ = apply_fill(side, step.filled_amount, step.filled_price, fee_percent)
        spent = step.filled_amount * step.filled_price if side == Side.BUY else step.filled_amount
        return received, max(0.0, step.requested_amount - spent)

    def _mark_step_failed(
        self,
        execution: SwapExecution,
        step: StepResult,
        error: str,
        kind: str,
    ) -> None:
        step.status = "failed"
        step.error = error
        step.error_kind = kind
        step.completed_at = datetime.utcnow()
        swap_logger.log_hop_failed(
            execution_id=execution.id,
            step=step.index,
            exchange=step.exchange,
            pair=step.pair or "",
            side=step.side or "",
            requested_amount=step.requested_amount,
            error=error,
            error_kind=kind,
        )

    async def _place_and_confirm(self, step: StepResult, hop: Hop, amount: float) -> OrderResult:
        """Submit the order, then poll until it fills."""
        adapter = self.registry.get(hop.exchange)
        order = await adapter.place_order(
            hop.pair,
            hop.side,
            amount,
            order_type=self.config.execution.order_type,
        )
        step.order_id = order.order_id

        poll_interval = self.config.execution.order_poll_interval_ms / 1000.0
        while True:
            step.filled_amount = order.filled_amount
            step.filled_price = order.filled_price
            if order.status == OrderStatus.FILLED:
                break
            if order.status in _FAILED_ORDER_STATUSES:
                raise ExecutionStepFailure(
                    f"order {order.order_id} {order.status.value}",
                    step_index=step.index,
                )
            await asyncio.sleep(poll_interval)
            order = await adapter.get_order(hop.pair, order.order_id)

        if order.filled_amount <= 0:
            raise ExecutionStepFailure(
                f"order {order.order_id} reported filled with no quantity",
                step_index=step.index,
            )
        return order

    async def _run_transfer(
        self,
        execution: SwapExecution,
        index: int,
        source_exchange: str,
        dest_exchange: str,
        asset: str,
        amount: float,
    ) -> StepResult:
        """Move the bridge asset between venues, or account for it in inventory mode."""
        step = StepResult(
            index=index,
            kind="transfer",
            exchange=source_exchange,
            from_asset=asset,
            to_asset=asset,
            requested_amount=amount,
            started_at=datetime.utcnow(),
        )
        execution.step_results.append(step)

        source = self.registry.get(source_exchange)
        if not source.supports_transfers:
            # Inventory mode: destination already holds the bridge
            fee = self.config.fees.withdrawal_fee(asset)
            step.fee = fee
            step.received_amount = amount - fee
            step.completed_at = datetime.utcnow()
            if step.received_amount <= 0:
                step.status = "failed"
                step.error = f"withdrawal fee {fee} {asset} exceeds transfer amount {amount}"
                step.error_kind = "rejected"
                return step
            step.status = "success"
            self.ledger.update_status(execution)
            return step

        destination = self.registry.get(dest_exchange)
        timeout = self.config.execution.deposit_timeout_seconds
        try:
            received = await asyncio.wait_for(
                self._withdraw_and_wait(step, source, destination, asset, amount),
                timeout,
            )
        except asyncio.TimeoutError:
            step.status = "failed"
            step.error = f"deposit not detected on {dest_exchange} within {timeout}s"
            step.error_kind = "timeout"
            step.completed_at = datetime.utcnow()
            logger.error("Deposit timeout", execution_id=execution.id, asset=asset, amount=amount)
            return step
        except ExchangeError as e:
            step.status = "failed"
            step.error = str(e)
            step.error_kind = e.kind
            step.completed_at = datetime.utcnow()
            logger.error("Withdrawal failed", execution_id=execution.id, error=str(e))
            return step
        except Exception as e:
            logger.exception("Unexpected error moving bridge asset", execution_id=execution.id)
            step.status = "failed"
            step.error = str(e)
            step.error_kind = "internal"
            step.completed_at = datetime.utcnow()
            return step

        step.received_amount = received
        step.status = "success"
        step.completed_at = datetime.utcnow()
        self.ledger.update_status(execution)
        return step

    async def _withdraw_and_wait(
        self,
        step: StepResult,
        source: ExchangeAdapter,
        destination: ExchangeAdapter,
        asset: str,
        amount: float,
    ) -> float:
        """Withdraw, then poll the destination until enough of the deposit arrives."""
        baseline = await destination.get_deposit_balance(asset)
        transfer = await source.withdraw(asset, amount, destination.name)
        step.order_id = transfer.transfer_id
        step.fee = transfer.fee

        logger.info(
            "Bridge withdrawal sent, waiting for deposit",
            source=source.name,
            destination=destination.name,
            asset=asset,
            amount=transfer.amount_sent,
        )

        execution_config = self.config.execution
        target = transfer.amount_sent * execution_config.deposit_arrival_ratio
        while True:
            arrived = await destination.get_deposit_balance(asset) - baseline
            if arrived >= target:
                return arrived
            await asyncio.sleep(execution_config.deposit_poll_interval_seconds)

    @property
    def metrics(self) -> Dict[str, int]:
        """Get execution metrics."""
        return {
            "total_executions": self._total_executions,
            "completed": self._completed,
            "failed": self._failed,
            "partially_failed": self._partially_failed,
            "in_flight": len(self._in_flight),
        }
