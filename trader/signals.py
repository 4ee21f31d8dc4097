"""
Rolling close-price buffer and moving-average crossover signal.

SignalBuffer keeps the most recent ``long_period`` candle closes in FIFO order
and derives the two simple moving averages and the last close-to-close change
that the strategy loop needs on every evaluation.

The moving average returns ``Decimal(0)`` when the buffer holds
fewer samples than requested. Callers check ``is_full`` before trusting it.

Examples:
    >>> buf = SignalBuffer(long_period=3)
    >>> for p in ("10", "11", "12", "13"):
    ...     buf.record_close(p)
    >>> buf.closes()
    [Decimal('11'), Decimal('12'), Decimal('13')]
    >>> buf.moving_average(2)
    Decimal('12.5')
"""

from collections import deque
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Deque, Iterable, List, Optional, Union

from .position import PositionSide

Number = Union[Decimal, float, int, str]


def to_decimal(value: Number) -> Decimal:
    """Convert a price-like value to a finite Decimal.

    Raises:
        ValueError: If the value cannot be parsed or is NaN/Infinity
    """
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            d = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise ValueError(f"Not a number: {value!r}")
    if not d.is_finite():
        raise ValueError(f"Non-finite price: {value!r}")
    return d


class SignalBuffer:
    """Bounded window of closing prices.

    Invariants:
        - len(buffer) <= long_period
        - contents are always a suffix of the recorded sequence
    """

    def __init__(self, long_period: int):
        if long_period <= 0:
            raise ValueError("long_period must be positive")
        self.long_period = long_period
        self._closes: Deque[Decimal] = deque(maxlen=long_period)

    def __len__(self) -> int:
        return len(self._closes)

    @property
    def is_full(self) -> bool:
        return len(self._closes) >= self.long_period

    @property
    def last(self) -> Optional[Decimal]:
        return self._closes[-1] if self._closes else None

    def closes(self) -> List[Decimal]:
        return list(self._closes)

    def copy(self) -> "SignalBuffer":
        clone = SignalBuffer(self.long_period)
        clone._closes.extend(self._closes)
        return clone

    def record_close(self, price: Number) -> None:
        """Append a close, evicting the oldest one when full.

        Raises:
            ValueError: For unparseable or non-finite prices; the buffer is left untouched
        """
        self._closes.append(to_decimal(price))

    def seed(self, prices: Iterable[Number]) -> int:
        """Record a batch of historical closes in order. Returns how many were recorded."""
        count = 0
        for price in prices:
            self.record_close(price)
            count += 1
        return count

    def moving_average(self, period: int) -> Decimal:
        """Arithmetic mean of the last ``period`` closes, or ``Decimal(0)`` if not enough data."""
        if period <= 0:
            raise ValueError("period must be positive")
        if len(self._closes) < period:
            return Decimal(0)
        window = list(self._closes)[-period:]
        return sum(window, Decimal(0)) / Decimal(period)

    def price_delta(self) -> Optional[Decimal]:
        """Fractional change between the last two closes, or None without two usable closes."""
        if len(self._closes) < 2:
            return None
        previous = self._closes[-2]
        if previous == 0:
            return None
        return (self._closes[-1] - previous) / previous


@dataclass(frozen=True)
class Signal:
    """One evaluation of the crossover inputs. Derived fresh each tick, never stored."""

    short_ma: Decimal
    long_ma: Decimal
    price_change_pct: Decimal

    @property
    def direction(self) -> Optional[PositionSide]:
        """LONG when the short MA is strictly above the long MA, SHORT when strictly below."""
        if self.short_ma > self.long_ma:
            return PositionSide.LONG
        if self.short_ma < self.long_ma:
            return PositionSide.SHORT
        return None
