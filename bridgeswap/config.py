"""
Configuration management for the bridge-asset currency swap engine.
Uses Pydantic for validation and type safety.
"""

from pathlib import Path
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


AUTO_BRIDGE = "AUTO"


def _parse_symbol_list(raw: str) -> List[str]:
    return [item.strip().upper() for item in raw.split(",") if item.strip()]


def _parse_rate_table(raw: str) -> Dict[str, float]:
    """Parse "KEY:VALUE,KEY:VALUE" into a dict."""
    table: Dict[str, float] = {}
    for item in raw.split(","):
        if not item.strip():
            continue
        key, _, value = item.partition(":")
        if not value:
            raise ValueError(f"Malformed rate entry: {item!r}")
        table[key.strip()] = float(value)
    return table


class BridgeConfig(BaseSettings):
    """Bridge assets available for routing."""

    # Assets transferable across every participating venue
    bridge_assets: str = Field("XRP,XLM,TRX,LTC", alias="BRIDGE_ASSETS")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def assets(self) -> List[str]:
        return _parse_symbol_list(self.bridge_assets)


class FeeConfig(BaseSettings):
    """Estimated fee table (percent per hop, flat withdrawal fee per bridge)."""

    # Used when an exchange has no entry in the table
    default_fee_percent: float = Field(0.2, alias="DEFAULT_FEE_PERCENT")

    # e.g. "VALR:0.1,LUNO:0.1,KRAKEN:0.26"
    exchange_fees: str = Field("", alias="EXCHANGE_FEES")

    # Flat fee in bridge units charged on withdrawal
    withdrawal_fees: str = Field(
        "XRP:0.1,XLM:0.01,TRX:1.0,LTC:0.001", alias="WITHDRAWAL_FEES"
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("default_fee_percent")
    @classmethod
    def validate_fee(cls, v: float) -> float:
        if not 0.0 <= v < 100.0:
            raise ValueError("Fee percent must be between 0 and 100")
        return v

    def fee_percent(self, exchange: str) -> float:
        """Taker fee percent for an exchange, conservative default if unknown."""
        table = {k.lower(): v for k, v in _parse_rate_table(self.exchange_fees).items()}
        return table.get(exchange.lower(), self.default_fee_percent)

    def withdrawal_fee(self, asset: str) -> float:
        table = {k.upper(): v for k, v in _parse_rate_table(self.withdrawal_fees).items()}
        return table.get(asset.upper(), 0.0)


class RiskConfig(BaseSettings):
    """Thresholds for non-fatal risk warnings."""

    quote_freshness_seconds: float = Field(60.0, alias="QUOTE_FRESHNESS_SECONDS")
    # Warn when a hop needs more than this fraction of the quoted top-of-book volume
    thin_volume_ratio: float = Field(0.5, alias="THIN_VOLUME_RATIO")
    # Decimal places the destination asset settles in
    rounding_precision: int = Field(2, alias="ROUNDING_PRECISION")
    # Warn when one rounding step exceeds this percent of the destination amount
    rounding_tolerance_percent: float = Field(0.1, alias="ROUNDING_TOLERANCE_PERCENT")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class ExecutionConfig(BaseSettings):
    """Order execution configuration."""

    hop_timeout_seconds: float = Field(30.0, alias="HOP_TIMEOUT_SECONDS")
    order_poll_interval_ms: int = Field(500, alias="ORDER_POLL_INTERVAL_MS")
    deposit_timeout_seconds: float = Field(600.0, alias="DEPOSIT_TIMEOUT_SECONDS")
    deposit_poll_interval_seconds: float = Field(5.0, alias="DEPOSIT_POLL_INTERVAL_SECONDS")
    # Fraction of a withdrawal that must arrive before the deposit counts
    deposit_arrival_ratio: float = Field(0.95, alias="DEPOSIT_ARRIVAL_RATIO")
    order_type: str = Field("market", alias="ORDER_TYPE")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("order_type")
    @classmethod
    def validate_order_type(cls, v: str) -> str:
        if v not in ("market", "limit"):
            raise ValueError("Order type must be 'market' or 'limit'")
        return v


class SwapDefaultsConfig(BaseSettings):
    """Defaults applied to users without stored swap settings."""

    selected_exchanges: str = Field("", alias="SELECTED_EXCHANGES")
    selected_currencies: str = Field("", alias="SELECTED_CURRENCIES")
    preferred_bridge: str = Field(AUTO_BRIDGE, alias="PREFERRED_BRIDGE")

    max_concurrent_trades: int = Field(2, alias="MAX_CONCURRENT_TRADES")
    max_balance_percentage: float = Field(10.0, alias="MAX_BALANCE_PERCENTAGE")
    min_balance_reserve_percent: float = Field(5.0, alias="MIN_BALANCE_RESERVE_PERCENT")
    scan_interval_seconds: int = Field(60, alias="SCAN_INTERVAL_SECONDS")
    threshold_percent: float = Field(0.5, alias="THRESHOLD_PERCENT")
    max_trade_amount: float = Field(5000.0, alias="MAX_TRADE_AMOUNT")
    daily_swap_limit: int = Field(10, alias="DAILY_SWAP_LIMIT")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class SwapSettings(BaseModel):
    """Per-user swap policy. Read-only input to the engine."""

    selected_exchanges: List[str] = Field(default_factory=list)
    selected_currencies: List[str] = Field(default_factory=list)
    preferred_bridge: str = AUTO_BRIDGE
    # "ZAR-USDT" style entries, either direction; empty means unrestricted
    allowed_pairs: List[str] = Field(default_factory=list)

    max_concurrent_trades: int = Field(2, ge=1, le=5)
    max_balance_percentage: float = Field(10.0, ge=0.0, le=50.0)
    min_balance_reserve_percent: float = Field(5.0, ge=0.0, le=20.0)
    scan_interval_seconds: int = Field(60, ge=30, le=300)
    threshold_percent: float = Field(0.5, ge=0.0)
    max_trade_amount: float = Field(5000.0, gt=0.0)
    daily_swap_limit: int = Field(10, ge=1)

    @field_validator("selected_currencies", "preferred_bridge", mode="before")
    @classmethod
    def upper_symbols(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return [str(item).strip().upper() for item in v]

    @classmethod
    def from_defaults(cls, defaults: SwapDefaultsConfig) -> "SwapSettings":
        return cls(
            selected_exchanges=[
                e.strip() for e in defaults.selected_exchanges.split(",") if e.strip()
            ],
            selected_currencies=_parse_symbol_list(defaults.selected_currencies),
            preferred_bridge=defaults.preferred_bridge,
            max_concurrent_trades=defaults.max_concurrent_trades,
            max_balance_percentage=defaults.max_balance_percentage,
            min_balance_reserve_percent=defaults.min_balance_reserve_percent,
            scan_interval_seconds=defaults.scan_interval_seconds,
            threshold_percent=defaults.threshold_percent,
            max_trade_amount=defaults.max_trade_amount,
            daily_swap_limit=defaults.daily_swap_limit,
        )


class MonitoringConfig(BaseSettings):
    """Logging configuration."""

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    database_path: Path = Field(Path("./data/swaps.db"), alias="DATABASE_PATH")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class DevelopmentConfig(BaseSettings):
    """Development and testing configuration."""

    paper_trading: bool = Field(True, alias="PAPER_TRADING")
    debug_mode: bool = Field(False, alias="DEBUG_MODE")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class BotConfig:
    """Master configuration class that aggregates all config sections."""

    def __init__(self):
        self.bridge = BridgeConfig()
        self.fees = FeeConfig()
        self.risk = RiskConfig()
        self.execution = ExecutionConfig()
        self.swap_defaults = SwapDefaultsConfig()
        self.monitoring = MonitoringConfig()
        self.database = DatabaseConfig()
        self.development = DevelopmentConfig()

    @property
    def is_paper_trading(self) -> bool:
        return self.development.paper_trading

    @property
    def is_debug(self) -> bool:
        return self.development.debug_mode

    def default_swap_settings(self) -> SwapSettings:
        return SwapSettings.from_defaults(self.swap_defaults)


# Global config instance
_config: Optional[BotConfig] = None


def get_config() -> BotConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = BotConfig()
    return _config


def reload_config() -> BotConfig:
    """Force reload configuration from environment."""
    global _config
    _config = BotConfig()
    return _config
