"""Stream handlers that turn Bitget WebSocket pushes into MarketState updates.

MarketFeed runs on the public stream (ticker + candles), PositionFeed on the
private stream (login + positions). Each is attached to its own
ConnectionManager and is re-driven from ``on_open`` after every reconnect.
"""
import time
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .bitget_adapter import sign_message
from .logging_setup import logger
from .position import PositionSide
from .secrets import BitgetCredentials
from .signals import to_decimal
from .state import MarketState
from .ws_client import ConnectionManager, StreamHandler

DEFAULT_PRODUCT_TYPE = "USDT-FUTURES"
LOGIN_VERIFY_PATH = "/user/verify"


def subscribe_request(channels: Iterable[Dict[str, str]]) -> Dict[str, Any]:
    return {"op": "subscribe", "args": list(channels)}


def _channel_of(message: Dict[str, Any]) -> Optional[str]:
    arg = message.get("arg")
    if isinstance(arg, dict):
        return arg.get("channel")
    return None


class MarketFeed(StreamHandler):
    """Public ticker and candle subscription for one instrument.

    The candle channel re-sends the still-forming candle on every trade. Only
    the final close of each candle belongs in the buffer, so the feed holds the
    newest row per start time and records it once a later candle starts.
    The buffer therefore fills one close per finished candle, and after a cold
    start the first decision waits for ``long_period`` finished candles.
    """

    def __init__(self, state: MarketState, symbol: str, timeframe: str = "1m", product_type: str = DEFAULT_PRODUCT_TYPE):
        self.state = state
        self.symbol = symbol
        self.timeframe = timeframe
        self.product_type = product_type
        self.candle_channel = f"candle{timeframe}"
        self._pending: Optional[Tuple[int, Decimal]] = None

    def channels(self) -> List[Dict[str, str]]:
        return [
            {"instType": self.product_type, "channel": "ticker", "instId": self.symbol},
            {"instType": self.product_type, "channel": self.candle_channel, "instId": self.symbol},
        ]

    def seed_pending(self, start_ts: int, close: Decimal) -> None:
        """Continue from the in-progress candle returned by the REST history call."""
        self._pending = (start_ts, close)

    async def on_open(self, conn: ConnectionManager) -> None:
        await conn.send_json(subscribe_request(self.channels()))
        logger.info(f"Subscribed to ticker and {self.candle_channel} for {self.symbol}")

    async def on_message(self, message: Dict[str, Any]) -> None:
        event = message.get("event")
        if event == "error":
            logger.error(f"Market stream error: {message.get('code')} {message.get('msg')}")
            return
        if event:
            logger.debug(f"Market stream event: {message}")
            return

        channel = _channel_of(message)
        data = message.get("data") or []
        if channel == "ticker":
            self.on_ticker(data)
        elif channel == self.candle_channel:
            self.on_candles(data)

    def on_ticker(self, data: List[Dict[str, Any]]) -> None:
        last = None
        if data and isinstance(data[0], dict):
            last = data[0].get("lastPr")
        self.state.update_price(last if last is not None else 0)

    def on_candles(self, rows: List[List[Any]]) -> None:
        parsed = []
        for row in rows:
            try:
                parsed.append((int(row[0]), to_decimal(row[4])))
            except (IndexError, TypeError, ValueError):
                logger.warning(f"Skipping malformed candle row: {row!r}")
        for start_ts, close in sorted(parsed, key=lambda r: r[0]):
            self._advance(start_ts, close)

    def _advance(self, start_ts: int, close: Decimal) -> None:
        if self._pending is None:
            self._pending = (start_ts, close)
            return
        pending_ts, pending_close = self._pending
        if start_ts > pending_ts:
            self.state.buffer.record_close(pending_close)
            logger.debug(f"Candle {pending_ts} closed at {pending_close} ({len(self.state.buffer)} closes)")
            self._pending = (start_ts, close)
        elif start_ts == pending_ts:
            self._pending = (start_ts, close)


class PositionFeed(StreamHandler):
    """Private positions subscription; the exchange's view always wins."""

    def __init__(
        self,
        state: MarketState,
        credentials: BitgetCredentials,
        symbol: str,
        product_type: str = DEFAULT_PRODUCT_TYPE,
    ):
        self.state = state
        self.credentials = credentials
        self.symbol = symbol
        self.product_type = product_type
        self.logged_in = False
        self._conn: Optional[ConnectionManager] = None

    def login_request(self, timestamp: Optional[str] = None) -> Dict[str, Any]:
        ts = timestamp or str(int(time.time()))
        sign = sign_message(self.credentials.api_secret, ts + "GET" + LOGIN_VERIFY_PATH)
        return {
            "op": "login",
            "args": [
                {
                    "apiKey": self.credentials.api_key,
                    "passphrase": self.credentials.passphrase,
                    "timestamp": ts,
                    "sign": sign,
                }
            ],
        }

    async def on_open(self, conn: ConnectionManager) -> None:
        self._conn = conn
        self.logged_in = False
        await conn.send_json(self.login_request())
        logger.info("Login request sent on private stream")

    async def on_close(self) -> None:
        self.logged_in = False

    async def on_message(self, message: Dict[str, Any]) -> None:
        event = message.get("event")
        if event == "login":
            await self._on_login(message)
            return
        if event == "error":
            logger.error(f"Private stream error: {message.get('code')} {message.get('msg')}")
            return
        if event == "subscribe":
            logger.info(f"Subscribed to {_channel_of(message)}")
            return
        if _channel_of(message) == "positions" and "data" in message:
            self.on_positions(message.get("data") or [])

    async def _on_login(self, message: Dict[str, Any]) -> None:
        if str(message.get("code", "0")) != "0":
            logger.error(f"Login rejected: {message.get('code')} {message.get('msg')}")
            return
        self.logged_in = True
        logger.info("Private stream login succeeded")
        channel = {"instType": self.product_type, "channel": "positions", "instId": "default"}
        await self._conn.send_json(subscribe_request([channel]))

    def on_positions(self, rows: List[Dict[str, Any]]) -> None:
        side = PositionSide.NONE
        for row in rows:
            if not isinstance(row, dict) or row.get("instId", self.symbol) != self.symbol:
                continue
            try:
                total = to_decimal(row.get("total", "1"))
            except ValueError:
                total = Decimal(1)
            if total == 0:
                continue
            side = PositionSide.from_hold_side(row.get("holdSide"))
            break
        previous = self.state.position.side
        self.state.position.confirm(side)
        if side is not previous:
            logger.info(f"Position update: {previous.value} -> {side.value} (confirmed)")
