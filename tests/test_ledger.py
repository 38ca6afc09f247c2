"""
Tests for the SQLite execution ledger.
"""

import threading
import pytest
from datetime import datetime, timedelta

from bridgeswap.config import SwapSettings
from bridgeswap.database import SqlSwapLedger, start_of_utc_day
from bridgeswap.errors import LimitExceeded, SwapError
from bridgeswap.models import ExecutionStatus, StepResult, StrandedFunds, SwapExecution
from bridgeswap.engine.path_generator import build_path

USER = "user-1"


def execution(execution_id, status=ExecutionStatus.PENDING, started_at=None, user_id=USER):
    return SwapExecution(
        id=execution_id,
        user_id=user_id,
        path=build_path("A", "P", "B", "Q", "X"),
        amount=100.0,
        status=status,
        started_at=started_at or datetime.utcnow(),
    )


class TestExecutions:
    """Tests for recording and updating executions."""

    def test_round_trip(self, ledger):
        record = execution("e1")
        stored, created = ledger.create_pending(record, max_concurrent=2, max_daily=10)

        assert created
        loaded = ledger.get("e1")
        assert loaded.status == ExecutionStatus.PENDING
        assert loaded.path.id == "A:P->B:Q@X"
        assert loaded.path.hops == record.path.hops
        assert loaded.amount == 100.0

    def test_update_persists_results(self, ledger):
        record = execution("e1")
        ledger.create_pending(record, max_concurrent=2, max_daily=10)

        record.status = ExecutionStatus.PARTIALLY_FAILED
        record.profit = -100.0
        record.profit_percent = -100.0
        record.completed_at = datetime.utcnow()
        record.error_message = "step 3 failed: market closed"
        record.stranded = StrandedFunds(exchange="B", asset="X", amount=9.99)
        record.step_results.append(StepResult(
            index=1, kind="hop", exchange="A", from_asset="P", to_asset="X",
            requested_amount=100.0, pair="X/P", side="buy", status="success",
            received_amount=9.99,
        ))
        ledger.update_status(record)

        loaded = ledger.get("e1")
        assert loaded.status == ExecutionStatus.PARTIALLY_FAILED
        assert loaded.stranded == StrandedFunds(exchange="B", asset="X", amount=9.99)
        assert loaded.step_results[0].received_amount == pytest.approx(9.99)
        assert loaded.step_results[0].succeeded
        assert loaded.error_message == "step 3 failed: market closed"

    def test_terminal_status_is_final(self, ledger):
        record = execution("e1")
        ledger.create_pending(record, max_concurrent=2, max_daily=10)
        record.status = ExecutionStatus.COMPLETED
        ledger.update_status(record)

        record.status = ExecutionStatus.EXECUTING
        with pytest.raises(SwapError):
            ledger.update_status(record)
        assert ledger.get("e1").status == ExecutionStatus.COMPLETED

    def test_update_unknown_execution(self, ledger):
        with pytest.raises(SwapError):
            ledger.update_status(execution("missing"))

    def test_duplicate_id_returns_existing(self, ledger):
        ledger.create_pending(execution("e1"), max_concurrent=2, max_daily=10)

        stored, created = ledger.create_pending(
            execution("e1", ExecutionStatus.COMPLETED), max_concurrent=2, max_daily=10
        )

        assert not created
        assert stored.status == ExecutionStatus.PENDING
        assert len(ledger.list_executions(USER)) == 1

    def test_get_missing(self, ledger):
        assert ledger.get("nope") is None


class TestCounters:
    """Tests for the counters that back the caps."""

    def test_counts(self, ledger):
        ledger.create_pending(execution("e1"), max_concurrent=5, max_daily=10)
        ledger.create_pending(execution("e2", ExecutionStatus.EXECUTING), max_concurrent=5, max_daily=10)
        ledger.create_pending(execution("e3", ExecutionStatus.FAILED), max_concurrent=5, max_daily=10)
        yesterday = datetime.utcnow() - timedelta(days=1)
        ledger.create_pending(
            execution("e4", ExecutionStatus.COMPLETED, started_at=yesterday),
            max_concurrent=5,
            max_daily=10,
        )
        ledger.create_pending(execution("e5", user_id="other"), max_concurrent=5, max_daily=10)

        assert ledger.count_active(USER) == 2
        assert ledger.count_today(USER) == 3

    def test_concurrent_cap(self, ledger):
        ledger.create_pending(execution("e1"), max_concurrent=1, max_daily=10)

        with pytest.raises(LimitExceeded) as exc_info:
            ledger.create_pending(execution("e2"), max_concurrent=1, max_daily=10)

        assert exc_info.value.to_dict() == {
            "limit": "concurrent",
            "current": 1,
            "maximum": 1,
            "remaining": 0,
        }
        assert ledger.get("e2") is None

    def test_daily_cap(self, ledger):
        ledger.create_pending(execution("e1", ExecutionStatus.COMPLETED), max_concurrent=2, max_daily=1)

        with pytest.raises(LimitExceeded) as exc_info:
            ledger.create_pending(execution("e2"), max_concurrent=2, max_daily=1)

        assert exc_info.value.limit == "daily"
        assert exc_info.value.to_dict()["dailyCount"] == 1

    def test_list_filters_and_orders(self, ledger):
        earlier = datetime.utcnow() - timedelta(minutes=5)
        ledger.create_pending(
            execution("old", ExecutionStatus.COMPLETED, started_at=earlier),
            max_concurrent=5,
            max_daily=10,
        )
        ledger.create_pending(execution("new", ExecutionStatus.FAILED), max_concurrent=5, max_daily=10)

        assert [e.id for e in ledger.list_executions(USER)] == ["new", "old"]
        assert [e.id for e in ledger.list_executions(USER, ExecutionStatus.COMPLETED)] == ["old"]
        assert len(ledger.list_executions(USER, limit=1)) == 1

    def test_start_of_utc_day(self):
        now = datetime(2024, 3, 5, 17, 42, 9)
        assert start_of_utc_day(now) == datetime(2024, 3, 5)


class TestSettings:
    """Tests for per-user settings storage."""

    def test_defaults_created_on_first_read(self, ledger):
        settings = ledger.get_settings("new-user")

        assert settings.preferred_bridge == "AUTO"
        assert settings.max_concurrent_trades == 2
        assert settings.daily_swap_limit == 10
        assert ledger.get_settings("new-user") == settings

    def test_save_and_load(self, ledger):
        settings = SwapSettings(selected_exchanges=["A", "B"], selected_currencies=["zar", "usdt"])
        ledger.save_settings(USER, settings)

        loaded = ledger.get_settings(USER)
        assert loaded.selected_currencies == ["ZAR", "USDT"]
        assert loaded.selected_exchanges == ["A", "B"]

    def test_save_revalidates(self, ledger):
        settings = SwapSettings()
        settings.max_concurrent_trades = 9

        with pytest.raises(ValueError):
            ledger.save_settings(USER, settings)


class TestSummary:
    def test_empty(self, ledger):
        assert ledger.get_performance_summary(USER)["total_executions"] == 0

    def test_summary(self, ledger):
        done = execution("e1", ExecutionStatus.COMPLETED)
        done.profit = 19.76
        failed = execution("e2", ExecutionStatus.FAILED)
        ledger.create_pending(done, max_concurrent=5, max_daily=10)
        ledger.create_pending(failed, max_concurrent=5, max_daily=10)
        ledger.create_pending(execution("e3"), max_concurrent=5, max_daily=10)

        summary = ledger.get_performance_summary(USER)

        assert summary["total_executions"] == 3
        assert summary["completed"] == 1
        assert summary["failed"] == 1
        assert summary["active"] == 1
        assert summary["success_rate"] == pytest.approx(0.5)
        assert summary["total_profit"] == pytest.approx(19.76)
        assert summary["total_volume"] == pytest.approx(300.0)


class TestInMemory:
    def test_memory_url(self, config):
        ledger = SqlSwapLedger("sqlite://", config=config)
        ledger.create_pending(execution("e1"), max_concurrent=1, max_daily=1)
        assert ledger.count_active(USER) == 1


class TestConcurrentInserts:
    """Separate ledgers on one SQLite file racing for the same slots."""

    def test_cap_holds_across_connections(self, tmp_path, config):
        url = f"sqlite:///{tmp_path / 'shared.db'}"
        ledgers = [SqlSwapLedger(url, config=config) for _ in range(8)]
        barrier = threading.Barrier(len(ledgers))
        results = []
        results_lock = threading.Lock()

        def submit(index, ledger):
            barrier.wait()
            try:
                ledger.create_pending(execution(f"e{index}"), max_concurrent=2, max_daily=100)
                outcome = "ok"
            except LimitExceeded:
                outcome = "limit"
            with results_lock:
                results.append(outcome)

        threads = [
            threading.Thread(target=submit, args=(i, ledger))
            for i, ledger in enumerate(ledgers)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert sorted(results) == ["limit"] * 6 + ["ok"] * 2
        assert ledgers[0].count_active(USER) == 2
        assert len(ledgers[0].list_executions(USER)) == 2
