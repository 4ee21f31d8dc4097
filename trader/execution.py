"""
Order gateway interface used by the strategy loop.

The strategy only ever asks for four things: set leverage, open/close a
market position, attach exchange-side TP/SL triggers, and read market data
for the startup seed. Concrete gateways implement those as coroutines.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from .position import PositionSide


class OrderAction(Enum):
    """Market order intent in hedge mode."""

    OPEN_LONG = "open_long"
    OPEN_SHORT = "open_short"
    CLOSE_LONG = "close_long"
    CLOSE_SHORT = "close_short"

    @classmethod
    def open(cls, side: PositionSide) -> "OrderAction":
        if side is PositionSide.LONG:
            return cls.OPEN_LONG
        if side is PositionSide.SHORT:
            return cls.OPEN_SHORT
        raise ValueError("Cannot open a flat position")

    @classmethod
    def close(cls, side: PositionSide) -> "OrderAction":
        if side is PositionSide.LONG:
            return cls.CLOSE_LONG
        if side is PositionSide.SHORT:
            return cls.CLOSE_SHORT
        raise ValueError("Cannot close a flat position")

    @property
    def position_side(self) -> PositionSide:
        return PositionSide.LONG if self.value.endswith("long") else PositionSide.SHORT

    @property
    def is_open(self) -> bool:
        return self.value.startswith("open")


class OrderGateway(ABC):
    """Abstract async exchange gateway.

    All prices and quantities are Decimal. Failures raise; callers decide
    whether they are fatal.
    """

    @abstractmethod
    async def set_leverage(self, symbol: str, leverage: int) -> None:
        pass

    @abstractmethod
    async def place_order(self, symbol: str, action: OrderAction, qty: Decimal) -> str:
        """Place a market order and return the exchange order ID."""
        pass

    @abstractmethod
    async def place_tpsl(
        self,
        symbol: str,
        hold_side: str,
        entry_price: Decimal,
        take_profit: Decimal,
        stop_loss: Decimal,
    ) -> None:
        """Attach take-profit and stop-loss triggers to the held position.

        Args:
            symbol: Instrument, e.g. BTCUSDT
            hold_side: "long" or "short"
            entry_price: Price the triggers were derived from
            take_profit: Take-profit trigger price
            stop_loss: Stop-loss trigger price
        """
        pass

    @abstractmethod
    async def fetch_candles(self, symbol: str, granularity: str, limit: int) -> List[List[str]]:
        """Return candle rows ``[start_ms, open, high, low, close, ...]`` oldest first."""
        pass

    @abstractmethod
    async def get_ticker(self, symbol: str) -> Optional[Decimal]:
        """Return the last traded price, or None if unavailable."""
        pass

    @abstractmethod
    async def get_account(self, symbol: str) -> Dict[str, Any]:
        pass


class InMemoryGateway(OrderGateway):
    """A gateway used for tests and the offline demo that records calls in order.

    Filled orders move ``positions[symbol]``: an open sets the action's side,
    a close flattens it.

    Set ``fail_on`` to a set of call names (``"set_leverage"``, ``"place_tpsl"``,
    or an OrderAction value such as ``"close_short"``) to make those calls raise.
    """

    def __init__(self, candles: Optional[List[List[str]]] = None, ticker: Optional[Decimal] = None):
        self.calls: List[tuple] = []
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.tpsl: List[Dict[str, Any]] = []
        self.leverage: Dict[str, int] = {}
        self.candles = candles or []
        self.ticker = ticker
        self.fail_on: Set[str] = set()
        self.positions: Dict[str, PositionSide] = {}
        self.next_id = 1

    def _gen_id(self) -> str:
        oid = f"m{self.next_id}"
        self.next_id += 1
        return oid

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise RuntimeError(f"simulated {name} failure")

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        self.calls.append(("set_leverage", symbol, leverage))
        self._maybe_fail("set_leverage")
        self.leverage[symbol] = leverage

    async def place_order(self, symbol: str, action: OrderAction, qty: Decimal) -> str:
        self.calls.append(("place_order", symbol, action, qty))
        self._maybe_fail(action.value)
        oid = self._gen_id()
        self.orders[oid] = {"symbol": symbol, "action": action, "qty": str(qty), "state": "filled"}
        self.positions[symbol] = action.position_side if action.is_open else PositionSide.NONE
        return oid

    async def place_tpsl(self, symbol, hold_side, entry_price, take_profit, stop_loss) -> None:
        self.calls.append(("place_tpsl", symbol, hold_side, entry_price, take_profit, stop_loss))
        self._maybe_fail("place_tpsl")
        self.tpsl.append({
            "symbol": symbol,
            "hold_side": hold_side,
            "entry_price": entry_price,
            "take_profit": take_profit,
            "stop_loss": stop_loss,
        })

    async def fetch_candles(self, symbol: str, granularity: str, limit: int) -> List[List[str]]:
        self.calls.append(("fetch_candles", symbol, granularity, limit))
        self._maybe_fail("fetch_candles")
        return self.candles[-limit:]

    async def get_ticker(self, symbol: str) -> Optional[Decimal]:
        self.calls.append(("get_ticker", symbol))
        self._maybe_fail("get_ticker")
        return self.ticker

    async def get_account(self, symbol: str) -> Dict[str, Any]:
        self.calls.append(("get_account", symbol))
        self._maybe_fail("get_account")
        return {"marginCoin": "USDT", "available": "1000", "accountEquity": "1000"}

    def order_calls(self) -> List[tuple]:
        """Only the calls that reach the exchange's trading endpoints."""
        return [c for c in self.calls if c[0] in ("place_order", "place_tpsl")]
