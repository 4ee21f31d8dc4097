"""
Position belief tracking and TP/SL price maths.

The engine never holds more than one position on its symbol. PositionTracker
stores which side that position is believed to be on, together with where the
belief came from:

- CONFIRMED: pushed by the private positions channel (ground truth)
- PROVISIONAL: written by the strategy loop right after an order was
  acknowledged, so the next tick does not re-send the same order before the
  exchange push arrives

Writes are last-write-wins; a confirmed push always replaces whatever the
strategy assumed.

Examples:
    >>> from decimal import Decimal
    >>> tracker = PositionTracker()
    >>> tracker.assume(PositionSide.LONG)
    >>> tracker.source
    <PositionSource.PROVISIONAL: 'provisional'>
    >>> tracker.confirm(PositionSide.from_hold_side(None))
    >>> tracker.side
    <PositionSide.NONE: 'none'>
    >>> compute_tpsl(Decimal("100"), PositionSide.SHORT, Decimal("0.02"), Decimal("-0.01"))
    (Decimal('98.00'), Decimal('101.00'))
"""

import time
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple


class PositionSide(Enum):
    """Side of the single position held on the traded symbol."""

    NONE = "none"
    LONG = "long"
    SHORT = "short"

    @classmethod
    def from_hold_side(cls, hold_side: Optional[str]) -> "PositionSide":
        """Map the exchange ``holdSide`` field; absent or unknown values mean flat."""
        if not hold_side:
            return cls.NONE
        try:
            side = cls(str(hold_side).lower())
        except ValueError:
            return cls.NONE
        return side

    @property
    def sign(self) -> int:
        if self is PositionSide.LONG:
            return 1
        if self is PositionSide.SHORT:
            return -1
        return 0

    @property
    def opposite(self) -> "PositionSide":
        if self is PositionSide.LONG:
            return PositionSide.SHORT
        if self is PositionSide.SHORT:
            return PositionSide.LONG
        return PositionSide.NONE

    @property
    def hold_side(self) -> str:
        """Exchange ``holdSide`` string for a held side."""
        if self is PositionSide.NONE:
            raise ValueError("Flat position has no holdSide")
        return self.value


class PositionSource(Enum):
    CONFIRMED = "confirmed"
    PROVISIONAL = "provisional"


class PositionTracker:
    """Current position belief with its provenance.

    Attributes:
        side: Believed side (NONE until something is known)
        source: Who wrote the current value
        updated_at: Unix time of the last write (None before the first)
    """

    def __init__(self, side: PositionSide = PositionSide.NONE):
        self.side = side
        self.source = PositionSource.CONFIRMED
        self.updated_at: Optional[float] = None

    def confirm(self, side: PositionSide) -> None:
        """Record the exchange-reported side, overwriting any provisional value."""
        self._write(side, PositionSource.CONFIRMED)

    def assume(self, side: PositionSide) -> None:
        """Record a side the strategy expects after an acknowledged order."""
        self._write(side, PositionSource.PROVISIONAL)

    def _write(self, side: PositionSide, source: PositionSource) -> None:
        self.side = side
        self.source = source
        self.updated_at = time.time()

    @property
    def is_open(self) -> bool:
        return self.side is not PositionSide.NONE

    def __repr__(self) -> str:
        return f"PositionTracker(side={self.side.value}, source={self.source.value})"


def compute_tpsl(
    entry_price: Decimal, side: PositionSide, tp_pct: Decimal, sl_pct: Decimal
) -> Tuple[Decimal, Decimal]:
    """Compute take-profit and stop-loss trigger prices for a fresh entry.

    take_profit = entry * (1 + sign * tp_pct)
    stop_loss   = entry * (1 + sign * sl_pct)

    ``sl_pct`` is signed: a negative value places the stop on the adverse side.

    Returns:
        Tuple of (take_profit, stop_loss)

    Raises:
        ValueError: If side is NONE
    """
    if side is PositionSide.NONE:
        raise ValueError("Cannot place TP/SL without a position side")
    sign = Decimal(side.sign)
    take_profit = entry_price * (Decimal(1) + sign * tp_pct)
    stop_loss = entry_price * (Decimal(1) + sign * sl_pct)
    return take_profit, stop_loss
