"""
Exception hierarchy for the swap engine.
"""

from typing import List, Optional


class SwapError(Exception):
    """Base class for all swap engine errors."""
    pass


class DataUnavailable(SwapError):
    """A required quote or balance is missing or stale."""

    def __init__(self, message: str, exchange: Optional[str] = None, pair: Optional[str] = None):
        super().__init__(message)
        self.exchange = exchange
        self.pair = pair


class ValidationError(SwapError):
    """Input rejected before any external call."""

    def __init__(self, reasons: List[str]):
        super().__init__("; ".join(reasons))
        self.reasons = list(reasons)


class LimitExceeded(SwapError):
    """A daily, concurrency or balance-policy cap refused the request."""

    def __init__(self, limit: str, current: float, maximum: float):
        self.limit = limit
        self.current = current
        self.maximum = maximum
        self.remaining = max(0, maximum - current)
        super().__init__(f"{limit} limit reached ({current}/{maximum})")

    def to_dict(self) -> dict:
        if self.limit == "daily":
            return {
                "limit": self.limit,
                "dailyCount": self.current,
                "maxDaily": self.maximum,
                "remaining": self.remaining,
            }
        return {
            "limit": self.limit,
            "current": self.current,
            "maximum": self.maximum,
            "remaining": self.remaining,
        }


class ExecutionStepFailure(SwapError):
    """One step of an execution failed."""

    def __init__(self, message: str, step_index: int, kind: str = "rejected"):
        super().__init__(message)
        self.step_index = step_index
        self.kind = kind


class ExchangeError(SwapError):
    """Base class for failures reported by an exchange adapter."""

    kind = "exchange"

    def __init__(self, message: str, exchange: Optional[str] = None):
        super().__init__(message)
        self.exchange = exchange


class ConnectivityError(ExchangeError):
    """The exchange could not be reached."""

    kind = "connectivity"


class AuthError(ExchangeError):
    """The exchange rejected our credentials."""

    kind = "auth"


class OrderRejected(ExchangeError):
    """The exchange refused or cancelled an order."""

    kind = "rejected"
