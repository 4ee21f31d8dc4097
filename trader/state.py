"""Shared market state owned by the runner and passed to feeds and strategy.

All writers run on the same asyncio event loop and none of them awaits while
mutating, so each handler observes and leaves the state consistent. The
strategy reads through ``snapshot()`` to get one coherent view per tick.
"""
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .logging_setup import logger
from .position import PositionSide, PositionSource, PositionTracker
from .signals import SignalBuffer, to_decimal


@dataclass(frozen=True)
class MarketSnapshot:
    buffer: SignalBuffer
    latest_price: Decimal
    position_side: PositionSide
    position_source: PositionSource
    last_ticker_at: Optional[float]


class MarketState:
    """Price history, latest traded price and position belief for one symbol."""

    def __init__(self, long_period: int):
        self.buffer = SignalBuffer(long_period)
        self.latest_price = Decimal(0)
        self.position = PositionTracker()
        self.last_ticker_at: Optional[float] = None

    def update_price(self, price) -> None:
        """Store the last traded price. Unparseable input degrades to 0, which blocks trading."""
        try:
            self.latest_price = to_decimal(price)
        except ValueError:
            logger.debug(f"Unparseable ticker price {price!r}; treating as 0")
            self.latest_price = Decimal(0)
        self.last_ticker_at = time.time()

    def snapshot(self) -> MarketSnapshot:
        return MarketSnapshot(
            buffer=self.buffer.copy(),
            latest_price=self.latest_price,
            position_side=self.position.side,
            position_source=self.position.source,
            last_ticker_at=self.last_ticker_at,
        )
