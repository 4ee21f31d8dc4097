"""Offline demo of the crossover engine.

Shows:
1. Structured logging
2. Feeding candle pushes through MarketFeed into the shared state
3. StrategyLoop ticks against an in-memory gateway
4. A confirmed position push overriding the strategy's provisional view

No network access or credentials are needed.
"""
import asyncio
import math
import sys
from decimal import Decimal
from pathlib import Path

# Add parent directory to path so we can import the trader package
sys.path.insert(0, str(Path(__file__).parent.parent))

from trader.config import StrategyConfig
from trader.execution import InMemoryGateway
from trader.feeds import MarketFeed, PositionFeed
from trader.logging_setup import logger, setup_logging
from trader.secrets import BitgetCredentials
from trader.state import MarketState
from trader.strategy import StrategyLoop

SYMBOL = "BTCUSDT"
CANDLE_MS = 60_000


def synthetic_closes(n: int):
    """A slow sine wave around 30000 so the MAs cross a few times."""
    for i in range(n):
        yield Decimal(str(round(30000 + 600 * math.sin(i / 40) + 150 * math.sin(i / 3), 1)))


async def main():
    setup_logging(log_file="", level="INFO", enable_console=True)
    logger.info("=== Crossover Engine Demo ===")

    config = StrategyConfig(short_period=10, long_period=40, min_change_pct=Decimal("0.001"))
    state = MarketState(long_period=config.long_period)
    gateway = InMemoryGateway()
    market = MarketFeed(state, SYMBOL, config.timeframe)
    positions = PositionFeed(state, BitgetCredentials("demo", "demo", "demo"), SYMBOL)
    strategy = StrategyLoop(state, gateway, config, SYMBOL)

    for i, close in enumerate(synthetic_closes(400)):
        await market.on_message({
            "action": "update",
            "arg": {"channel": market.candle_channel, "instId": SYMBOL},
            "data": [[str(i * CANDLE_MS), str(close), str(close), str(close), str(close), "1"]],
        })
        market.on_ticker([{"lastPr": str(close)}])
        await strategy.tick()

    logger.info(f"Orders sent: {len(gateway.orders)}, TP/SL placed: {len(gateway.tpsl)}")
    for call in gateway.order_calls():
        logger.info(f"  {call[0]}: {call[2]}")

    logger.info(f"Strategy believes: {state.position}")
    positions.on_positions([])
    logger.info(f"After exchange push: {state.position}")


if __name__ == "__main__":
    asyncio.run(main())
