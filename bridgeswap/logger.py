"""
Structured logging configuration for the swap engine.
Uses structlog for rich, structured logging output.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler

from bridgeswap.config import get_config


# Rich console for pretty output
console = Console()


def add_timestamp(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO timestamp to log events."""
    event_dict["timestamp"] = datetime.utcnow().isoformat()
    return event_dict


def add_component(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Ensure component is present in log events."""
    if "component" not in event_dict:
        event_dict["component"] = "main"
    return event_dict


def setup_logging() -> None:
    """Configure structured logging for the application."""
    config = get_config()
    log_level = getattr(logging, config.monitoring.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=console,
                rich_tracebacks=True,
                show_time=True,
                show_path=False,
            )
        ],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    processors = [
        structlog.stdlib.filter_by_level,
        add_timestamp,
        add_component,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.development.debug_mode:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance bound to a specific component."""
    return structlog.get_logger().bind(component=component)


class SwapLogger:
    """Audit logger for swap opportunities and executions."""

    def __init__(self):
        self.logger = get_logger("swaps")

    def log_opportunity_detected(
        self,
        path_id: str,
        profit_percent: float,
        initial_amount: float,
        final_amount: float,
        actionable: bool,
    ) -> None:
        """Log a profitable path found during a scan."""
        self.logger.info(
            "opportunity_detected",
            path_id=path_id,
            profit_percent=f"{profit_percent:.4f}%",
            initial_amount=initial_amount,
            final_amount=final_amount,
            actionable=actionable,
        )

    def log_hop_submitted(
        self,
        execution_id: str,
        step: int,
        exchange: str,
        pair: str,
        side: str,
        requested_amount: float,
    ) -> None:
        """Log order submission for one hop."""
        self.logger.info(
            "hop_submitted",
            execution_id=execution_id,
            step=step,
            exchange=exchange,
            pair=pair,
            side=side,
            requested_amount=requested_amount,
        )

    def log_hop_filled(
        self,
        execution_id: str,
        step: int,
        exchange: str,
        pair: str,
        side: str,
        requested_amount: float,
        filled_amount: float,
        filled_price: float,
        order_id: Optional[str],
        latency_ms: float,
    ) -> None:
        """Log a confirmed fill for one hop."""
        self.logger.info(
            "hop_filled",
            execution_id=execution_id,
            step=step,
            exchange=exchange,
            pair=pair,
            side=side,
            requested_amount=requested_amount,
            filled_amount=filled_amount,
            filled_price=filled_price,
            order_id=order_id,
            latency_ms=f"{latency_ms:.1f}",
        )

    def log_hop_failed(
        self,
        execution_id: str,
        step: int,
        exchange: str,
        pair: str,
        side: str,
        requested_amount: float,
        error: str,
        error_kind: str,
    ) -> None:
        """Log a hop that did not fill."""
        self.logger.warning(
            "hop_failed",
            execution_id=execution_id,
            step=step,
            exchange=exchange,
            pair=pair,
            side=side,
            requested_amount=requested_amount,
            error=error,
            error_kind=error_kind,
        )

    def log_execution_finished(
        self,
        execution_id: str,
        path_id: str,
        status: str,
        amount: float,
        final_amount: float,
        profit: float,
        profit_percent: float,
    ) -> None:
        """Log the terminal state of an execution."""
        emoji = "🟢" if status == "completed" and profit >= 0 else "🔴"
        self.logger.info(
            f"{emoji} execution_finished",
            execution_id=execution_id,
            path_id=path_id,
            status=status,
            amount=amount,
            final_amount=final_amount,
            profit=profit,
            profit_percent=f"{profit_percent:+.4f}%",
        )


# Global logger instance
swap_logger = SwapLogger()
