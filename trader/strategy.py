"""Periodic moving-average crossover evaluation and order sequencing.

Every ``interval_seconds`` the loop takes one snapshot of the shared market
state and decides whether the held position disagrees with the crossover:

    short MA > long MA and not long  -> close short (if short), open long, TP/SL
    short MA < long MA and not short -> close long (if long), open short, TP/SL
    otherwise                        -> nothing

Within a tick the gateway calls are strictly sequential. Ticks never overlap:
if the previous tick is still waiting on the exchange when the timer fires,
the new tick is skipped.
"""
import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from .config import StrategyConfig
from .execution import OrderAction, OrderGateway
from .logging_setup import logger
from .position import PositionSide, compute_tpsl
from .signals import Signal
from .state import MarketSnapshot, MarketState


@dataclass
class TickResult:
    """What one evaluation saw and did."""
    signal: Optional[Signal] = None
    target: Optional[PositionSide] = None
    actions: List[str] = field(default_factory=list)
    expected_return: Optional[Decimal] = None
    error: Optional[BaseException] = None


class StrategyLoop:
    def __init__(self, state: MarketState, gateway: OrderGateway, config: StrategyConfig, symbol: str):
        self.state = state
        self.gateway = gateway
        self.config = config
        self.symbol = symbol
        self._in_progress = False
        self._current: Optional[asyncio.Task] = None
        self.ticks_skipped = 0

    def evaluate(self, snapshot: MarketSnapshot) -> Optional[Signal]:
        """Compute the signal, or None when the data or volatility guards fail."""
        buf = snapshot.buffer
        if len(buf) < self.config.long_period or snapshot.latest_price == 0:
            return None

        change = buf.price_delta()
        if change is None:
            return None
        signal = Signal(
            short_ma=buf.moving_average(self.config.short_period),
            long_ma=buf.moving_average(self.config.long_period),
            price_change_pct=change,
        )
        if abs(change) < self.config.min_change_pct:
            logger.debug(f"Change {change:.5f} below filter {self.config.min_change_pct}; no decision")
            return None
        return signal

    @staticmethod
    def decide(signal: Signal, current: PositionSide) -> Optional[PositionSide]:
        """Side to move into, or None when already aligned or the MAs are equal."""
        direction = signal.direction
        if direction is None or direction is current:
            return None
        return direction

    def expected_return(self, signal: Signal) -> Decimal:
        """Fee-adjusted return estimate of the last move at the configured leverage."""
        return signal.price_change_pct * Decimal(self.config.leverage) - 2 * self.config.taker_fee

    async def tick(self) -> Optional[TickResult]:
        """Run one evaluation. Returns None when skipped because another tick is running."""
        if self._in_progress:
            self.ticks_skipped += 1
            logger.warning("Previous strategy tick still running; skipping this one")
            return None

        self._in_progress = True
        result = TickResult()
        try:
            await self._evaluate_and_act(result)
        except Exception as e:
            result.error = e
            logger.exception(f"Strategy tick failed after {result.actions or 'no actions'}")
        finally:
            self._in_progress = False
        return result

    async def _evaluate_and_act(self, result: TickResult) -> None:
        snapshot = self.state.snapshot()
        signal = self.evaluate(snapshot)
        if signal is None:
            return
        result.signal = signal

        current = snapshot.position_side
        target = self.decide(signal, current)
        result.target = target
        if target is not None:
            logger.info(
                f"Crossover: short MA {signal.short_ma:.2f} vs long MA {signal.long_ma:.2f}, "
                f"change {signal.price_change_pct:.4%}; {current.value} -> {target.value}"
            )
            await self._move_to(target, current, snapshot.latest_price, result)

        if self.state.position.is_open:
            result.expected_return = self.expected_return(signal)
            logger.info(
                f"Holding {self.state.position.side.value}: expected return after fees "
                f"{result.expected_return:.4%}"
            )

    async def _move_to(self, target: PositionSide, current: PositionSide, entry_price: Decimal, result: TickResult) -> None:
        qty = self.config.order_qty
        if current is target.opposite:
            close = OrderAction.close(current)
            await self.gateway.place_order(self.symbol, close, qty)
            result.actions.append(close.value)
            self.state.position.assume(PositionSide.NONE)

        open_ = OrderAction.open(target)
        await self.gateway.place_order(self.symbol, open_, qty)
        result.actions.append(open_.value)
        self.state.position.assume(target)

        take_profit, stop_loss = compute_tpsl(entry_price, target, self.config.tp_pct, self.config.sl_pct)
        await self.gateway.place_tpsl(self.symbol, target.hold_side, entry_price, take_profit, stop_loss)
        result.actions.append("tpsl")

    async def run(self, stop_event: asyncio.Event) -> None:
        """Fire a tick every interval until ``stop_event`` is set.

        Each tick runs as its own task; the period is independent of tick duration.
        """
        loop = asyncio.get_running_loop()
        logger.info(f"Strategy loop started ({self.config.interval_seconds}s interval)")
        try:
            while not stop_event.is_set():
                if self._current is None or self._current.done():
                    self._current = loop.create_task(self.tick())
                else:
                    self.ticks_skipped += 1
                    logger.warning("Previous strategy tick still running; skipping this one")
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.config.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            if self._current is not None and not self._current.done():
                self._current.cancel()
                await asyncio.gather(self._current, return_exceptions=True)
            logger.info("Strategy loop stopped")
