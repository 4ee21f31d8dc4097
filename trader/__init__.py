"""
Bitget Futures MA-Crossover Trader.

A long-running trading process for one Bitget USDT-margined futures symbol:
- Rolling buffer of candle closes with short/long simple moving averages
- Crossover decisions with a minimum-move volatility filter
- At most one position; close-then-open reversal with exchange-side TP/SL
- Public (ticker + candles) and private (positions) WebSocket streams that
  keep themselves connected and re-authenticate after every reconnect
- Signed async REST gateway with per-endpoint rate limiting
- Structured logging via loguru
- Configuration-driven (YAML)

Core Modules:
    signals: Close buffer, moving averages, crossover Signal
    position: Position side tracking (confirmed vs provisional) and TP/SL maths
    state: Shared market state and per-tick snapshots
    ws_client: Reconnecting WebSocket connection manager
    feeds: Market and position stream handlers
    execution: Order gateway interface and in-memory gateway
    bitget_adapter: Bitget REST integration
    rate_limit_policy: API rate limiting
    strategy: Periodic crossover evaluation
    runner: Process wiring and shutdown
    config: Configuration loading and validation
    secrets: Credential management

Example:
    >>> import asyncio
    >>> from trader.config import TraderConfig
    >>> from trader.runner import TraderRunner
    >>> from trader.secrets import load_credentials
    >>>
    >>> config = TraderConfig.from_yaml("config.yaml")
    >>> runner = TraderRunner(config, load_credentials())
    >>> asyncio.run(runner.start())
"""

__version__ = "0.1.0"
__all__ = [
    "signals",
    "position",
    "state",
    "ws_client",
    "feeds",
    "execution",
    "bitget_adapter",
    "rate_limit_policy",
    "strategy",
    "runner",
    "config",
    "secrets",
]
