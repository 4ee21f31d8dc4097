import base64
import hashlib
import hmac
import json
from decimal import Decimal

import pytest

from trader.feeds import MarketFeed, PositionFeed
from trader.position import PositionSide, PositionSource
from trader.secrets import BitgetCredentials
from trader.state import MarketState
from trader.ws_client import ConnectionManager

CREDS = BitgetCredentials(api_key="key", api_secret="secret", passphrase="pass")


def candle_msg(*rows, channel="candle1m"):
    return {
        "action": "update",
        "arg": {"instType": "USDT-FUTURES", "channel": channel, "instId": "BTCUSDT"},
        "data": [list(r) for r in rows],
    }


def row(ts, close):
    return [str(ts), "0", "0", "0", str(close), "1"]


class SendRecorder:
    def __init__(self):
        self.sent = []

    async def send_json(self, payload):
        self.sent.append(payload)


@pytest.mark.asyncio
async def test_market_feed_subscribes_ticker_and_candles():
    feed = MarketFeed(MarketState(long_period=5), "BTCUSDT", "5m")
    conn = SendRecorder()
    await feed.on_open(conn)
    assert conn.sent == [{
        "op": "subscribe",
        "args": [
            {"instType": "USDT-FUTURES", "channel": "ticker", "instId": "BTCUSDT"},
            {"instType": "USDT-FUTURES", "channel": "candle5m", "instId": "BTCUSDT"},
        ],
    }]


@pytest.mark.asyncio
async def test_ticker_updates_latest_price():
    state = MarketState(long_period=5)
    feed = MarketFeed(state, "BTCUSDT")
    await feed.on_message({"arg": {"channel": "ticker"}, "data": [{"instId": "BTCUSDT", "lastPr": "27123.4"}]})
    assert state.latest_price == Decimal("27123.4")


@pytest.mark.asyncio
async def test_ticker_without_price_degrades_to_zero():
    state = MarketState(long_period=5)
    state.update_price("100")
    feed = MarketFeed(state, "BTCUSDT")
    await feed.on_message({"arg": {"channel": "ticker"}, "data": [{"instId": "BTCUSDT"}]})
    assert state.latest_price == Decimal(0)


@pytest.mark.asyncio
async def test_candle_updates_record_one_close_per_finished_candle():
    state = MarketState(long_period=10)
    feed = MarketFeed(state, "BTCUSDT")

    await feed.on_message(candle_msg(row(60_000, 100)))
    await feed.on_message(candle_msg(row(60_000, 101)))
    await feed.on_message(candle_msg(row(60_000, 102)))
    assert len(state.buffer) == 0

    await feed.on_message(candle_msg(row(120_000, 103)))
    assert state.buffer.closes() == [Decimal("102")]

    await feed.on_message(candle_msg(row(180_000, 104)))
    assert state.buffer.closes() == [Decimal("102"), Decimal("103")]


@pytest.mark.asyncio
async def test_cold_start_fills_only_after_long_period_finished_candles():
    state = MarketState(long_period=3)
    feed = MarketFeed(state, "BTCUSDT")

    await feed.on_message(candle_msg(row(60_000, 100)))
    assert state.buffer.closes() == []

    for minute in (2, 3):
        await feed.on_message(candle_msg(row(minute * 60_000, 100 + minute)))
    assert not state.buffer.is_full

    await feed.on_message(candle_msg(row(240_000, 110)))
    assert state.buffer.is_full
    assert state.buffer.closes() == [Decimal("100"), Decimal("102"), Decimal("103")]


@pytest.mark.asyncio
async def test_candle_snapshot_records_history_in_order_and_ignores_stale_rows():
    state = MarketState(long_period=10)
    feed = MarketFeed(state, "BTCUSDT")
    await feed.on_message(candle_msg(row(180_000, 3), row(60_000, 1), row(120_000, 2)))
    assert state.buffer.closes() == [Decimal("1"), Decimal("2")]

    await feed.on_message(candle_msg(row(60_000, 99)))
    assert state.buffer.closes() == [Decimal("1"), Decimal("2")]


@pytest.mark.asyncio
async def test_seed_pending_continues_from_rest_history():
    state = MarketState(long_period=10)
    feed = MarketFeed(state, "BTCUSDT")
    feed.seed_pending(120_000, Decimal("50"))

    await feed.on_message(candle_msg(row(60_000, 1), row(120_000, 51)))
    assert len(state.buffer) == 0
    await feed.on_message(candle_msg(row(180_000, 52)))
    assert state.buffer.closes() == [Decimal("51")]


@pytest.mark.asyncio
async def test_malformed_candle_rows_are_skipped():
    state = MarketState(long_period=10)
    feed = MarketFeed(state, "BTCUSDT")
    await feed.on_message(candle_msg(["x"], row(60_000, "nan"), row(60_000, 5), row(120_000, 6)))
    assert state.buffer.closes() == [Decimal("5")]


def test_login_request_signature():
    feed = PositionFeed(MarketState(long_period=5), CREDS, "BTCUSDT")
    req = feed.login_request(timestamp="1700000000")
    expected = base64.b64encode(
        hmac.new(b"secret", b"1700000000GET/user/verify", hashlib.sha256).digest()
    ).decode()
    assert req == {
        "op": "login",
        "args": [{"apiKey": "key", "passphrase": "pass", "timestamp": "1700000000", "sign": expected}],
    }


@pytest.mark.asyncio
async def test_position_feed_subscribes_only_after_login_ack():
    feed = PositionFeed(MarketState(long_period=5), CREDS, "BTCUSDT")
    conn = SendRecorder()
    await feed.on_open(conn)
    assert [m["op"] for m in conn.sent] == ["login"]
    assert not feed.logged_in

    await feed.on_message({"event": "login", "code": 0})
    assert feed.logged_in
    assert conn.sent[1] == {
        "op": "subscribe",
        "args": [{"instType": "USDT-FUTURES", "channel": "positions", "instId": "default"}],
    }


@pytest.mark.asyncio
async def test_rejected_login_does_not_subscribe():
    feed = PositionFeed(MarketState(long_period=5), CREDS, "BTCUSDT")
    conn = SendRecorder()
    await feed.on_open(conn)
    await feed.on_message({"event": "error", "code": 30005, "msg": "bad sign"})
    await feed.on_message({"event": "login", "code": 30005})
    assert len(conn.sent) == 1
    assert not feed.logged_in


@pytest.mark.asyncio
async def test_close_resets_login():
    feed = PositionFeed(MarketState(long_period=5), CREDS, "BTCUSDT")
    await feed.on_open(SendRecorder())
    await feed.on_message({"event": "login", "code": "0"})
    await feed.on_close()
    assert not feed.logged_in


@pytest.mark.asyncio
async def test_position_push_confirms_hold_side():
    state = MarketState(long_period=5)
    feed = PositionFeed(state, CREDS, "BTCUSDT")
    await feed.on_message({
        "action": "snapshot",
        "arg": {"channel": "positions", "instId": "default"},
        "data": [
            {"instId": "ETHUSDT", "holdSide": "long", "total": "1"},
            {"instId": "BTCUSDT", "holdSide": "short", "total": "0.001"},
        ],
    })
    assert state.position.side is PositionSide.SHORT
    assert state.position.source is PositionSource.CONFIRMED


@pytest.mark.asyncio
async def test_empty_position_push_overrides_provisional_long():
    state = MarketState(long_period=5)
    state.position.assume(PositionSide.LONG)
    feed = PositionFeed(state, CREDS, "BTCUSDT")
    await feed.on_message({"action": "snapshot", "arg": {"channel": "positions"}, "data": []})
    assert state.position.side is PositionSide.NONE
    assert state.position.source is PositionSource.CONFIRMED


@pytest.mark.asyncio
async def test_zero_size_position_counts_as_flat():
    state = MarketState(long_period=5)
    feed = PositionFeed(state, CREDS, "BTCUSDT")
    feed.on_positions([{"instId": "BTCUSDT", "holdSide": "long", "total": "0"}])
    assert state.position.side is PositionSide.NONE


@pytest.mark.asyncio
async def test_position_feed_over_connection_manager(fake_ws, fake_connector, eventually):
    ws = fake_ws()
    state = MarketState(long_period=5)
    state.position.assume(PositionSide.LONG)
    feed = PositionFeed(state, CREDS, "BTCUSDT")

    async with ConnectionManager("wss://private", connector=fake_connector([ws])) as conn:
        await conn.start(feed)
        await eventually(lambda: len(ws.sent) == 1)
        ws.push(json.dumps({"event": "login", "code": 0}))
        await eventually(lambda: len(ws.sent) == 2)
        ws.push(json.dumps({"arg": {"channel": "positions"}, "data": []}))
        await eventually(lambda: state.position.source is PositionSource.CONFIRMED)

    assert json.loads(ws.sent[1])["args"][0]["channel"] == "positions"
    assert state.position.side is PositionSide.NONE
