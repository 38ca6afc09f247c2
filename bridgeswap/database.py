"""
Persistence for swap executions and per-user swap settings.
Uses SQLite through SQLAlchemy.
"""

import json
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import Column, DateTime, Float, String, Text, create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from bridgeswap.config import BotConfig, SwapSettings, get_config
from bridgeswap.errors import LimitExceeded, SwapError
from bridgeswap.models import (
    ACTIVE_STATUSES, ExecutionStatus, StepResult, StrandedFunds, SwapExecution, SwapPath,
)
from bridgeswap.logger import get_logger


logger = get_logger("database")

Base = declarative_base()


class SwapExecutionTable(Base):
    """SQLAlchemy model for swap executions."""

    __tablename__ = "swap_executions"

    id = Column(String, primary_key=True)
    user_id = Column(String, index=True)

    path_id = Column(String, index=True)
    path_json = Column(Text)
    source_exchange = Column(String)
    source_asset = Column(String)
    bridge_asset = Column(String)
    dest_exchange = Column(String)
    dest_asset = Column(String)

    amount = Column(Float)
    status = Column(String, index=True)
    final_amount = Column(Float, default=0.0)
    profit = Column(Float, default=0.0)
    profit_percent = Column(Float, default=0.0)

    started_at = Column(DateTime, index=True)
    completed_at = Column(DateTime, nullable=True)

    step_results_json = Column(Text, default="[]")
    error_message = Column(Text, nullable=True)
    stranded_json = Column(Text, nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow)


class SwapSettingsTable(Base):
    """Per-user swap policy and selection."""

    __tablename__ = "swap_settings"

    user_id = Column(String, primary_key=True)
    settings_json = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)


def start_of_utc_day(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.utcnow()
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _row_to_execution(row: SwapExecutionTable) -> SwapExecution:
    stranded = json.loads(row.stranded_json) if row.stranded_json else None
    return SwapExecution(
        id=row.id,
        user_id=row.user_id,
        path=SwapPath.from_dict(json.loads(row.path_json)),
        amount=row.amount,
        status=ExecutionStatus(row.status),
        final_amount=row.final_amount or 0.0,
        profit=row.profit or 0.0,
        profit_percent=row.profit_percent or 0.0,
        started_at=row.started_at,
        completed_at=row.completed_at,
        step_results=[StepResult.from_dict(s) for s in json.loads(row.step_results_json or "[]")],
        error_message=row.error_message,
        stranded=StrandedFunds(**stranded) if stranded else None,
    )


def _apply_execution(row: SwapExecutionTable, execution: SwapExecution) -> None:
    row.status = execution.status.value
    row.final_amount = execution.final_amount
    row.profit = execution.profit
    row.profit_percent = execution.profit_percent
    row.completed_at = execution.completed_at
    row.step_results_json = json.dumps([s.to_dict() for s in execution.step_results])
    row.error_message = execution.error_message
    row.stranded_json = json.dumps(asdict(execution.stranded)) if execution.stranded else None
    row.updated_at = datetime.utcnow()


class SwapLedger(ABC):
    """Storage for execution records, counters and settings."""

    @abstractmethod
    def create_pending(
        self,
        execution: SwapExecution,
        max_concurrent: int,
        max_daily: int,
    ) -> Tuple[SwapExecution, bool]:
        """
        Insert a pending execution if the caps allow it.

        Returns:
            (stored record, created). An existing record with the same id is
            returned unchanged with created=False.

        Raises:
            LimitExceeded: the insert would exceed the concurrency or daily cap
        """
        pass

    @abstractmethod
    def update_status(self, execution: SwapExecution) -> None:
        """Persist the execution's status and results."""
        pass

    @abstractmethod
    def get(self, execution_id: str) -> Optional[SwapExecution]:
        pass

    @abstractmethod
    def count_active(self, user_id: str) -> int:
        """Executions still pending or executing."""
        pass

    @abstractmethod
    def count_today(self, user_id: str) -> int:
        """Executions started since 00:00 UTC, whatever their outcome."""
        pass

    @abstractmethod
    def list_executions(
        self,
        user_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        limit: int = 50,
    ) -> List[SwapExecution]:
        pass

    @abstractmethod
    def get_settings(self, user_id: str) -> SwapSettings:
        """Get a user's settings, creating them from config defaults."""
        pass

    @abstractmethod
    def save_settings(self, user_id: str, settings: SwapSettings) -> SwapSettings:
        pass


class SqlSwapLedger(SwapLedger):
    """
    SQLite-backed ledger.

    Every transaction opens with BEGIN IMMEDIATE so the cap check and insert
    in `create_pending` hold the write lock together across processes. The
    in-process lock serializes threads sharing this instance.
    """

    def __init__(self, db_url: Optional[str] = None, config: Optional[BotConfig] = None):
        self.config = config or get_config()

        if db_url is None:
            db_path = self.config.database.database_path
            # Ensure directory exists
            db_path.parent.mkdir(parents=True, exist_ok=True)
            db_url = f"sqlite:///{db_path}"
        self.db_url = db_url

        if db_url in ("sqlite://", "sqlite:///:memory:"):
            self.engine = create_engine(
                db_url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(db_url, echo=False)

        self._install_immediate_transactions()

        self.Session = sessionmaker(bind=self.engine)
        self._lock = threading.Lock()

        Base.metadata.create_all(self.engine)

        logger.info(f"Swap ledger initialized at {db_url}")

    def _install_immediate_transactions(self) -> None:
        # Take over transaction control from pysqlite so BEGIN is ours
        @event.listens_for(self.engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(self.engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    def create_pending(
        self,
        execution: SwapExecution,
        max_concurrent: int,
        max_daily: int,
    ) -> Tuple[SwapExecution, bool]:
        with self._lock, self.Session() as session:
            existing = session.get(SwapExecutionTable, execution.id)
            if existing is not None:
                return _row_to_execution(existing), False

            active = session.query(SwapExecutionTable).filter(
                SwapExecutionTable.user_id == execution.user_id,
                SwapExecutionTable.status.in_([s.value for s in ACTIVE_STATUSES]),
            ).count()
            if active >= max_concurrent:
                raise LimitExceeded("concurrent", active, max_concurrent)

            today = session.query(SwapExecutionTable).filter(
                SwapExecutionTable.user_id == execution.user_id,
                SwapExecutionTable.started_at >= start_of_utc_day(),
            ).count()
            if today >= max_daily:
                raise LimitExceeded("daily", today, max_daily)

            path = execution.path
            row = SwapExecutionTable(
                id=execution.id,
                user_id=execution.user_id,
                path_id=path.id,
                path_json=json.dumps(path.to_dict()),
                source_exchange=path.source_exchange,
                source_asset=path.source_asset,
                bridge_asset=path.bridge_asset,
                dest_exchange=path.dest_exchange,
                dest_asset=path.dest_asset,
                amount=execution.amount,
                started_at=execution.started_at,
            )
            _apply_execution(row, execution)
            session.add(row)
            session.commit()

            logger.debug(f"Execution recorded: {execution.id}", path_id=path.id)
            return execution, True

    def update_status(self, execution: SwapExecution) -> None:
        with self._lock, self.Session() as session:
            row = session.get(SwapExecutionTable, execution.id)
            if row is None:
                raise SwapError(f"execution {execution.id} was never recorded")
            if ExecutionStatus(row.status).is_terminal and row.status != execution.status.value:
                raise SwapError(
                    f"execution {execution.id} is already {row.status}; "
                    f"refusing to move it to {execution.status.value}"
                )
            _apply_execution(row, execution)
            session.commit()

    def get(self, execution_id: str) -> Optional[SwapExecution]:
        with self.Session() as session:
            row = session.get(SwapExecutionTable, execution_id)
            return _row_to_execution(row) if row else None

    def count_active(self, user_id: str) -> int:
        with self.Session() as session:
            return session.query(SwapExecutionTable).filter(
                SwapExecutionTable.user_id == user_id,
                SwapExecutionTable.status.in_([s.value for s in ACTIVE_STATUSES]),
            ).count()

    def count_today(self, user_id: str) -> int:
        with self.Session() as session:
            return session.query(SwapExecutionTable).filter(
                SwapExecutionTable.user_id == user_id,
                SwapExecutionTable.started_at >= start_of_utc_day(),
            ).count()

    def list_executions(
        self,
        user_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        limit: int = 50,
    ) -> List[SwapExecution]:
        """Most recent executions first."""
        with self.Session() as session:
            query = session.query(SwapExecutionTable)

            if user_id:
                query = query.filter(SwapExecutionTable.user_id == user_id)
            if status:
                query = query.filter(SwapExecutionTable.status == status.value)

            query = query.order_by(SwapExecutionTable.started_at.desc()).limit(limit)
            return [_row_to_execution(row) for row in query.all()]

    def get_settings(self, user_id: str) -> SwapSettings:
        with self._lock, self.Session() as session:
            row = session.get(SwapSettingsTable, user_id)
            if row is not None:
                return SwapSettings.model_validate_json(row.settings_json)

            settings = self.config.default_swap_settings()
            session.add(SwapSettingsTable(
                user_id=user_id,
                settings_json=settings.model_dump_json(),
            ))
            session.commit()
            logger.info(f"Created default swap settings for {user_id}")
            return settings

    def save_settings(self, user_id: str, settings: SwapSettings) -> SwapSettings:
        # Re-validate so partially built models cannot be stored
        settings = SwapSettings.model_validate(settings.model_dump())
        with self._lock, self.Session() as session:
            row = session.get(SwapSettingsTable, user_id)
            if row is None:
                row = SwapSettingsTable(user_id=user_id)
                session.add(row)
            row.settings_json = settings.model_dump_json()
            row.updated_at = datetime.utcnow()
            session.commit()
        return settings

    def get_performance_summary(self, user_id: Optional[str] = None) -> dict:
        """Get overall execution summary."""
        with self.Session() as session:
            query = session.query(SwapExecutionTable)
            if user_id:
                query = query.filter(SwapExecutionTable.user_id == user_id)
            rows = query.all()

            if not rows:
                return {
                    "total_executions": 0,
                    "total_profit": 0.0,
                    "success_rate": 0.0,
                }

            completed = [r for r in rows if r.status == ExecutionStatus.COMPLETED.value]
            failed = [r for r in rows if r.status == ExecutionStatus.FAILED.value]
            partial = [r for r in rows if r.status == ExecutionStatus.PARTIALLY_FAILED.value]
            finished = len(completed) + len(failed) + len(partial)
            total_profit = sum(r.profit or 0.0 for r in rows)

            return {
                "total_executions": len(rows),
                "completed": len(completed),
                "failed": len(failed),
                "partially_failed": len(partial),
                "active": len(rows) - finished,
                "success_rate": len(completed) / finished if finished else 0.0,
                "total_profit": total_profit,
                "total_volume": sum(r.amount or 0.0 for r in rows),
            }


# Global ledger instance
_ledger: Optional[SqlSwapLedger] = None


def get_ledger() -> SqlSwapLedger:
    """Get or create the global ledger instance."""
    global _ledger
    if _ledger is None:
        _ledger = SqlSwapLedger()
    return _ledger
