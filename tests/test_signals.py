from decimal import Decimal

import pytest

from trader.position import PositionSide
from trader.signals import Signal, SignalBuffer


def test_buffer_never_exceeds_long_period_and_keeps_fifo_suffix():
    buf = SignalBuffer(long_period=5)
    recorded = []
    for i in range(1, 13):
        buf.record_close(i)
        recorded.append(Decimal(i))
        assert len(buf) <= 5
        assert buf.closes() == recorded[-5:]


def test_moving_average_sentinel_when_not_enough_samples():
    buf = SignalBuffer(long_period=10)
    for p in ("1", "2", "3"):
        buf.record_close(p)
    assert buf.moving_average(4) == Decimal(0)
    assert buf.moving_average(3) == Decimal(2)


def test_moving_average_of_constant_sequence_is_the_constant():
    buf = SignalBuffer(long_period=200)
    for _ in range(200):
        buf.record_close(Decimal("100.0"))
    assert buf.moving_average(50) == Decimal("100.0")
    assert buf.moving_average(200) == Decimal("100.0")


def test_moving_average_uses_last_period_samples():
    buf = SignalBuffer(long_period=4)
    buf.seed(["10", "20", "30", "40", "50"])
    assert buf.moving_average(2) == Decimal("45")
    assert buf.moving_average(4) == Decimal("35")


def test_moving_average_rejects_non_positive_period():
    buf = SignalBuffer(long_period=3)
    with pytest.raises(ValueError):
        buf.moving_average(0)


@pytest.mark.parametrize("bad", ["nan", "inf", "-Infinity", "abc", None])
def test_record_close_rejects_non_finite_without_touching_buffer(bad):
    buf = SignalBuffer(long_period=3)
    buf.record_close("1")
    with pytest.raises(ValueError):
        buf.record_close(bad)
    assert buf.closes() == [Decimal("1")]


def test_price_delta():
    buf = SignalBuffer(long_period=3)
    assert buf.price_delta() is None
    buf.record_close("100")
    assert buf.price_delta() is None
    buf.record_close("101")
    assert buf.price_delta() == Decimal("0.01")


def test_price_delta_none_when_previous_is_zero():
    buf = SignalBuffer(long_period=3)
    buf.seed(["0", "5"])
    assert buf.price_delta() is None


def test_copy_is_independent():
    buf = SignalBuffer(long_period=3)
    buf.seed(["1", "2"])
    clone = buf.copy()
    buf.record_close("3")
    assert clone.closes() == [Decimal("1"), Decimal("2")]
    assert clone.long_period == 3


def test_signal_direction():
    up = Signal(short_ma=Decimal("2"), long_ma=Decimal("1"), price_change_pct=Decimal("0.01"))
    down = Signal(short_ma=Decimal("1"), long_ma=Decimal("2"), price_change_pct=Decimal("0.01"))
    flat = Signal(short_ma=Decimal("1"), long_ma=Decimal("1"), price_change_pct=Decimal("0.01"))
    assert up.direction is PositionSide.LONG
    assert down.direction is PositionSide.SHORT
    assert flat.direction is None
