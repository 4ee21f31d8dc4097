"""Configuration loader for the trader process.

Supports YAML format with environment variable interpolation. All values are
fixed at process start; there is no hot reload.
"""
import os
from dataclasses import asdict, dataclass, field, fields
from decimal import Decimal
from pathlib import Path

import yaml


@dataclass
class ExchangeConfig:
    """Bitget futures endpoints and instrument settings."""
    base_url: str = "https://api.bitget.com"
    public_ws_url: str = "wss://ws.bitget.com/v2/ws/public"
    private_ws_url: str = "wss://ws.bitget.com/v2/ws/private"
    symbol: str = "BTCUSDT"
    product_type: str = "USDT-FUTURES"
    margin_coin: str = "USDT"
    margin_mode: str = "crossed"
    price_precision: int = 1
    timeout: int = 10
    max_backoff_seconds: float = 60.0


@dataclass
class StrategyConfig:
    """Moving-average crossover parameters."""
    timeframe: str = "1m"
    short_period: int = 50
    long_period: int = 200
    leverage: int = 10
    order_qty: Decimal = Decimal('0.001')
    tp_pct: Decimal = Decimal('0.02')  # take profit 2% in the position's favour
    sl_pct: Decimal = Decimal('-0.01')  # signed: negative is against the position
    min_change_pct: Decimal = Decimal('0.002')
    taker_fee: Decimal = Decimal('0.0006')
    interval_seconds: float = 10.0


@dataclass
class StreamConfig:
    """WebSocket keep-alive and reconnect timing."""
    ping_interval_seconds: float = 30.0
    reconnect_delay_seconds: float = 1.0


@dataclass
class RateLimitConfig:
    """Rate-limit policy settings."""
    orders_per_second: int = 10
    default_per_second: int = 20


@dataclass
class LoggingConfig:
    log_file: str = "trader.log"
    log_level: str = "INFO"


_DECIMAL_FIELDS = {"order_qty", "tp_pct", "sl_pct", "min_change_pct", "taker_fee"}


@dataclass
class TraderConfig:
    """Complete trader configuration."""
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Reject parameter combinations the strategy cannot run with.

        Raises:
            ValueError: Describing the first problem found
        """
        s = self.strategy
        if s.short_period <= 0 or s.long_period <= 0:
            raise ValueError("MA periods must be positive")
        if s.short_period >= s.long_period:
            raise ValueError("short_period must be smaller than long_period")
        if s.leverage <= 0:
            raise ValueError("leverage must be positive")
        if s.order_qty <= 0:
            raise ValueError("order_qty must be positive")
        if s.tp_pct <= 0:
            raise ValueError("tp_pct must be positive")
        if s.sl_pct >= 0:
            raise ValueError("sl_pct must be negative (adverse move)")
        if s.min_change_pct < 0:
            raise ValueError("min_change_pct must not be negative")
        if s.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

    @classmethod
    def from_yaml(cls, config_path: str) -> "TraderConfig":
        """Load configuration from YAML file with env var interpolation.

        Args:
            config_path: Path to YAML config file

        Returns:
            Validated TraderConfig instance

        Example YAML:
            exchange:
              symbol: BTCUSDT
            strategy:
              leverage: 10
              short_period: 50
              long_period: 200
            logging:
              log_file: "${LOG_DIR}/trader.log"
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with config_file.open("r") as f:
            raw = f.read()

        # ${VAR_NAME}
        for key, value in os.environ.items():
            raw = raw.replace(f"${{{key}}}", value)

        data = yaml.safe_load(raw) or {}

        config = cls(
            exchange=_build(ExchangeConfig, data.get("exchange")),
            strategy=_build(StrategyConfig, data.get("strategy")),
            stream=_build(StreamConfig, data.get("stream")),
            rate_limit=_build(RateLimitConfig, data.get("rate_limit")),
            logging=_build(LoggingConfig, data.get("logging")),
        )
        config.validate()
        return config

    def to_yaml(self, output_path: str) -> None:
        """Save configuration to YAML file."""
        data = asdict(self)
        for key in _DECIMAL_FIELDS:
            data["strategy"][key] = str(data["strategy"][key])

        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with output_file.open("w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def _build(section_cls, values):
    values = values or {}
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown {section_cls.__name__} keys: {sorted(unknown)}")
    return section_cls(**{
        k: Decimal(str(v)) if k in _DECIMAL_FIELDS else v
        for k, v in values.items()
    })
