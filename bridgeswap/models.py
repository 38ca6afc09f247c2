"""
Data models for the swap engine.
Defines all core data structures used throughout the system.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Side(Enum):
    """Trading side, relative to the base (bridge) asset of the pair."""
    BUY = "buy"
    SELL = "sell"


class OrderStatus(Enum):
    """Status of an exchange order."""
    PENDING = "pending"
    SUBMITTED = "submitted"
    FILLED = "filled"
    PARTIALLY_FILLED = "partially_filled"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ExecutionStatus(Enum):
    """Lifecycle of a swap execution."""
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIALLY_FAILED = "partially_failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.PARTIALLY_FAILED,
})

ACTIVE_STATUSES = frozenset({ExecutionStatus.PENDING, ExecutionStatus.EXECUTING})


def make_pair(base: str, quote: str) -> str:
    return f"{base}/{quote}"


def split_pair(pair: str) -> Tuple[str, str]:
    base, _, quote = pair.partition("/")
    return base, quote


@dataclass(frozen=True)
class Hop:
    """One buy or sell on a single exchange."""
    exchange: str
    from_asset: str
    to_asset: str
    side: Side

    @property
    def pair(self) -> str:
        # BUY spends the quote to get the base; SELL spends the base
        if self.side == Side.BUY:
            return make_pair(self.to_asset, self.from_asset)
        return make_pair(self.from_asset, self.to_asset)

    def to_dict(self) -> dict:
        return {
            "exchange": self.exchange,
            "from_asset": self.from_asset,
            "to_asset": self.to_asset,
            "side": self.side.value,
            "pair": self.pair,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Hop":
        return cls(
            exchange=data["exchange"],
            from_asset=data["from_asset"],
            to_asset=data["to_asset"],
            side=Side(data["side"]),
        )


def make_path_id(
    source_exchange: str,
    source_asset: str,
    dest_exchange: str,
    dest_asset: str,
    bridge_asset: str,
) -> str:
    return f"{source_exchange}:{source_asset}->{dest_exchange}:{dest_asset}@{bridge_asset}"


def parse_path_id(path_id: str) -> Optional[Tuple[str, str, str, str, str]]:
    """Split a path id into (source_exchange, source_asset, dest_exchange, dest_asset, bridge)."""
    route, sep, bridge = path_id.rpartition("@")
    if not sep:
        return None
    source, sep, dest = route.partition("->")
    if not sep:
        return None
    source_exchange, sep_a, source_asset = source.rpartition(":")
    dest_exchange, sep_b, dest_asset = dest.rpartition(":")
    if not (sep_a and sep_b):
        return None
    parts = (source_exchange, source_asset, dest_exchange, dest_asset, bridge)
    if not all(parts):
        return None
    return parts


@dataclass
class SwapPath:
    """An ordered route from a source asset/exchange to a destination asset/exchange."""
    source_exchange: str
    source_asset: str
    bridge_asset: str
    dest_exchange: str
    dest_asset: str
    hops: List[Hop] = field(default_factory=list)

    @property
    def id(self) -> str:
        return make_path_id(
            self.source_exchange,
            self.source_asset,
            self.dest_exchange,
            self.dest_asset,
            self.bridge_asset,
        )

    @property
    def description(self) -> str:
        return (
            f"{self.source_asset} on {self.source_exchange} → "
            f"{self.dest_asset} on {self.dest_exchange} via {self.bridge_asset}"
        )

    def chain_errors(self) -> List[str]:
        """Return every broken link in the hop chain."""
        errors = []
        if not self.hops:
            return ["path has no hops"]
        if self.hops[0].from_asset != self.source_asset:
            errors.append(
                f"first hop spends {self.hops[0].from_asset}, expected {self.source_asset}"
            )
        if self.hops[-1].to_asset != self.dest_asset:
            errors.append(
                f"last hop yields {self.hops[-1].to_asset}, expected {self.dest_asset}"
            )
        for i in range(1, len(self.hops)):
            if self.hops[i].from_asset != self.hops[i - 1].to_asset:
                errors.append(
                    f"hop {i + 1} spends {self.hops[i].from_asset} "
                    f"but hop {i} yields {self.hops[i - 1].to_asset}"
                )
        if self.hops[0].exchange.lower() != self.source_exchange.lower():
            errors.append(f"first hop runs on {self.hops[0].exchange}, expected {self.source_exchange}")
        if self.hops[-1].exchange.lower() != self.dest_exchange.lower():
            errors.append(f"last hop runs on {self.hops[-1].exchange}, expected {self.dest_exchange}")
        return errors

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_exchange": self.source_exchange,
            "source_asset": self.source_asset,
            "bridge_asset": self.bridge_asset,
            "dest_exchange": self.dest_exchange,
            "dest_asset": self.dest_asset,
            "hops": [hop.to_dict() for hop in self.hops],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SwapPath":
        return cls(
            source_exchange=data["source_exchange"],
            source_asset=data["source_asset"],
            bridge_asset=data["bridge_asset"],
            dest_exchange=data["dest_exchange"],
            dest_asset=data["dest_asset"],
            hops=[Hop.from_dict(h) for h in data.get("hops", [])],
        )


@dataclass
class Selection:
    """The exchanges and currencies a user has ticked, plus the bridge in use."""
    exchanges: List[str]
    currencies: List[str]
    bridge_asset: str
    # When set, the bridge itself may be a source or destination asset
    bridge_endpoints: bool = False
    allowed_pairs: List[str] = field(default_factory=list)

    @property
    def tradable_assets(self) -> List[str]:
        if self.bridge_endpoints:
            assets = list(self.currencies)
            if self.bridge_asset not in assets:
                assets.append(self.bridge_asset)
            return assets
        return [c for c in self.currencies if c != self.bridge_asset]

    def has_exchange(self, exchange: str) -> bool:
        return exchange.lower() in {e.lower() for e in self.exchanges}


@dataclass
class PathFilters:
    """Optional equality filters over generated paths."""
    source_exchange: Optional[str] = None
    dest_exchange: Optional[str] = None
    source_asset: Optional[str] = None
    dest_asset: Optional[str] = None
    bridge_asset: Optional[str] = None


@dataclass
class PathValidation:
    valid: bool
    reasons: List[str] = field(default_factory=list)


@dataclass
class PriceQuote:
    """Top-of-book quote for one pair on one exchange."""
    exchange: str
    pair: str
    bid: float
    ask: float
    last: float
    observed_at: datetime = field(default_factory=datetime.utcnow)
    # Quoted size available at the top of the book, in base units
    volume: Optional[float] = None

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.utcnow()
        return (now - self.observed_at).total_seconds()


@dataclass
class FeeCharge:
    """A fee deducted while walking a path."""
    step: int
    kind: str  # "trading" or "withdrawal"
    exchange: str
    asset: str
    amount: float


@dataclass
class RateResult:
    effective_rate: float
    final_amount: float
    fees: List[FeeCharge] = field(default_factory=list)


@dataclass
class Opportunity:
    """A path with live economics attached."""
    path: SwapPath
    initial_amount: float
    final_amount: float
    effective_rate: float
    profit_amount: float
    profit_percent: float
    fees: List[FeeCharge] = field(default_factory=list)
    is_profitable: bool = False
    is_actionable: bool = False
    detected_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ScanResult:
    success: bool
    opportunities: List[Opportunity] = field(default_factory=list)
    scanned_paths: int = 0
    total_possible_paths: int = 0
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    bridge_assets: List[str] = field(default_factory=list)
    message: str = ""

    @property
    def best(self) -> Optional[Opportunity]:
        return self.opportunities[0] if self.opportunities else None

    @property
    def actionable(self) -> List[Opportunity]:
        return [o for o in self.opportunities if o.is_actionable]


@dataclass
class TradeAmount:
    """Sizing recommendation for one exchange/asset balance."""
    exchange: str
    asset: str
    available_balance: float
    recommended_amount: float
    reserve_amount: float = 0.0
    max_by_balance: float = 0.0
    max_by_percentage: float = 0.0
    max_by_limit: float = 0.0
    constraint: str = "none"
    reason: Optional[str] = None

    @property
    def can_trade(self) -> bool:
        return self.recommended_amount > 0


@dataclass
class LimitStatus:
    can_execute: bool
    daily_count: int
    max_daily: int
    remaining: int
    active_count: int = 0
    max_concurrent: int = 0

    @property
    def daily_ok(self) -> bool:
        return self.daily_count < self.max_daily

    @property
    def concurrency_ok(self) -> bool:
        return self.active_count < self.max_concurrent


@dataclass
class RiskWarning:
    type: str
    severity: str
    message: str


@dataclass
class RiskAssessment:
    """Computed fresh per request; never persisted."""
    path: SwapPath
    max_safe_amount: float
    reserve_amount: float
    concurrent_trade_count: int
    daily: Optional[LimitStatus] = None
    can_proceed: bool = False
    warnings: List[RiskWarning] = field(default_factory=list)


@dataclass
class OrderResult:
    """What an adapter reports for a placed order."""
    order_id: str
    status: OrderStatus
    filled_amount: float = 0.0  # base units
    filled_price: float = 0.0  # quote per base
    fee: Optional[float] = None  # in the received asset, when the venue reports it


@dataclass
class TransferResult:
    transfer_id: str
    amount_sent: float
    fee: float = 0.0


@dataclass
class StepResult:
    """Audit record of one hop or transfer."""
    index: int
    kind: str  # "hop" or "transfer"
    exchange: str
    from_asset: str
    to_asset: str
    requested_amount: float
    pair: Optional[str] = None
    side: Optional[str] = None
    status: str = "pending"
    filled_amount: float = 0.0
    filled_price: float = 0.0
    received_amount: float = 0.0
    fee: float = 0.0
    order_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.__dict__)
        for key in ("started_at", "completed_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepResult":
        data = dict(data)
        for key in ("started_at", "completed_at"):
            if data.get(key):
                data[key] = datetime.fromisoformat(data[key])
        return cls(**data)


@dataclass
class StrandedFunds:
    """Where funds sit after a partial failure."""
    exchange: str
    asset: str
    amount: float


@dataclass
class SwapExecution:
    """Auditable record of one path execution."""
    id: str
    user_id: str
    path: SwapPath
    amount: float
    status: ExecutionStatus = ExecutionStatus.PENDING
    final_amount: float = 0.0
    profit: float = 0.0
    profit_percent: float = 0.0
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    step_results: List[StepResult] = field(default_factory=list)
    error_message: Optional[str] = None
    stranded: Optional[StrandedFunds] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


@dataclass
class ExecutionOutcome:
    success: bool
    execution: SwapExecution
