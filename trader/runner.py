"""Process wiring: startup seed, the two streams, the strategy loop and shutdown.

Runs three long-lived tasks on one event loop:
1. Public stream (MarketFeed) feeding closes and the latest price
2. Private stream (PositionFeed) feeding the confirmed position
3. StrategyLoop acting on both
"""
import asyncio
from typing import Optional

from .bitget_adapter import BitgetAdapter
from .config import TraderConfig
from .execution import OrderGateway
from .feeds import MarketFeed, PositionFeed
from .logging_setup import logger
from .rate_limit_policy import RateLimitManager
from .secrets import BitgetCredentials
from .signals import to_decimal
from .state import MarketState
from .strategy import StrategyLoop
from .ws_client import ConnectionManager, Connector


class TraderRunner:
    """Own every long-lived resource of the trader and release them in order on stop."""

    def __init__(
        self,
        config: TraderConfig,
        credentials: BitgetCredentials,
        gateway: Optional[OrderGateway] = None,
        connector: Optional[Connector] = None,
    ):
        self.config = config
        self.credentials = credentials
        ex, strat, stream = config.exchange, config.strategy, config.stream

        self.gateway = gateway or BitgetAdapter.from_credentials(
            credentials,
            base_url=ex.base_url,
            product_type=ex.product_type,
            margin_coin=ex.margin_coin,
            margin_mode=ex.margin_mode,
            price_precision=ex.price_precision,
            timeout=ex.timeout,
            max_backoff_seconds=ex.max_backoff_seconds,
            rate_limiter=RateLimitManager.from_config(
                config.rate_limit.orders_per_second, config.rate_limit.default_per_second
            ),
        )
        self.state = MarketState(long_period=strat.long_period)
        self.market_feed = MarketFeed(self.state, ex.symbol, strat.timeframe, ex.product_type)
        self.position_feed = PositionFeed(self.state, credentials, ex.symbol, ex.product_type)
        self.public_conn = ConnectionManager(
            ex.public_ws_url,
            name="public",
            ping_interval=stream.ping_interval_seconds,
            reconnect_delay=stream.reconnect_delay_seconds,
            connector=connector,
        )
        self.private_conn = ConnectionManager(
            ex.private_ws_url,
            name="private",
            ping_interval=stream.ping_interval_seconds,
            reconnect_delay=stream.reconnect_delay_seconds,
            connector=connector,
        )
        self.strategy = StrategyLoop(self.state, self.gateway, strat, ex.symbol)
        self._stop_event = asyncio.Event()

    async def stop(self) -> None:
        """Signal the runner to stop."""
        self._stop_event.set()

    async def start(self) -> None:
        """Start everything and block until ``stop()`` is called."""
        ex, strat = self.config.exchange, self.config.strategy
        logger.info(
            f"Starting trader: {ex.symbol} x{strat.leverage}, MA {strat.short_period}/{strat.long_period} "
            f"on {strat.timeframe}"
        )
        if hasattr(self.gateway, "__aenter__"):
            await self.gateway.__aenter__()
        try:
            await self.prepare()
            await self.public_conn.start(self.market_feed)
            await self.private_conn.start(self.position_feed)
            await self.strategy.run(self._stop_event)
        finally:
            await self.public_conn.stop()
            await self.private_conn.stop()
            if hasattr(self.gateway, "__aexit__"):
                await self.gateway.__aexit__(None, None, None)
            logger.info("Trader stopped")

    async def prepare(self) -> None:
        """Exchange setup and history seed. Failures are logged and the trader carries on.

        Without history the strategy simply waits until enough live candles arrive.
        """
        ex, strat = self.config.exchange, self.config.strategy
        try:
            await self.gateway.set_leverage(ex.symbol, strat.leverage)
        except Exception as e:
            logger.error(f"Could not set leverage; continuing with exchange setting: {e}")

        await self.seed_history()

        try:
            price = await self.gateway.get_ticker(ex.symbol)
            if price is not None:
                self.state.update_price(price)
        except Exception as e:
            logger.warning(f"Initial ticker fetch failed: {e}")

        try:
            account = await self.gateway.get_account(ex.symbol)
            logger.info(
                f"Account {account.get('marginCoin', ex.margin_coin)}: "
                f"available={account.get('available')} equity={account.get('accountEquity')}"
            )
        except Exception as e:
            logger.warning(f"Account query failed: {e}")

    async def seed_history(self) -> int:
        """Seed the buffer with finished candles; the newest row is still forming."""
        ex, strat = self.config.exchange, self.config.strategy
        try:
            rows = await self.gateway.fetch_candles(ex.symbol, strat.timeframe, strat.long_period + 1)
        except Exception as e:
            logger.error(f"Historical candle fetch failed; waiting for live candles: {e}")
            return 0
        if not rows:
            logger.warning("No historical candles returned")
            return 0

        *finished, forming = rows
        seeded = 0
        for row in finished:
            try:
                self.state.buffer.record_close(row[4])
                seeded += 1
            except (IndexError, ValueError):
                logger.warning(f"Skipping malformed history row: {row!r}")
        try:
            self.market_feed.seed_pending(int(forming[0]), to_decimal(forming[4]))
        except (IndexError, TypeError, ValueError):
            logger.warning(f"Ignoring malformed forming candle: {forming!r}")
        logger.info(f"Seeded {seeded} closes ({len(self.state.buffer)}/{strat.long_period})")
        return seeded
