import asyncio
from types import SimpleNamespace

import pytest
from aiohttp import WSMsgType


class FakeWebSocket:
    """Stands in for aiohttp's ClientWebSocketResponse.

    Yields the queued text frames, then either ends (peer closed) or stays
    open until ``close()`` is called or ``drop()`` simulates a transport close.
    Each ``ping`` sent is answered with ``pong`` unless ``auto_pong`` is off.
    """

    def __init__(self, messages=(), hold_open=True, auto_pong=True):
        self.sent = []
        self.auto_pong = auto_pong
        self.closed = False
        self._messages = list(messages)
        self._hold_open = hold_open
        self._ended = asyncio.Event()
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send_str(self, data):
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(data)
        if data == "ping" and self.auto_pong:
            self._inbox.put_nowait("pong")

    async def close(self):
        self.closed = True
        self._ended.set()

    def push(self, text):
        self._inbox.put_nowait(text)

    def drop(self):
        self._ended.set()

    def exception(self):
        return None

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for text in self._messages:
            yield SimpleNamespace(type=WSMsgType.TEXT, data=text)
        if not self._hold_open:
            return
        while not self._ended.is_set():
            getter = asyncio.ensure_future(self._inbox.get())
            ender = asyncio.ensure_future(self._ended.wait())
            try:
                done, _ = await asyncio.wait({getter, ender}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                getter.cancel()
                ender.cancel()
            if getter in done:
                yield SimpleNamespace(type=WSMsgType.TEXT, data=getter.result())

    @property
    def pings(self):
        return [s for s in self.sent if s == "ping"]


class FakeConnector:
    """Hands out FakeWebSockets in order; records every connect attempt."""

    def __init__(self, sockets=None, fail_first=0):
        self.sockets = list(sockets or [])
        self.created = []
        self.urls = []
        self.fail_first = fail_first

    async def __call__(self, url):
        self.urls.append(url)
        if self.fail_first > 0:
            self.fail_first -= 1
            raise OSError("connection refused")
        ws = self.sockets.pop(0) if self.sockets else FakeWebSocket()
        self.created.append(ws)
        return ws


async def wait_for(predicate, timeout=1.0, interval=0.005):
    """Poll until predicate() is truthy or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def fake_ws():
    return FakeWebSocket


@pytest.fixture
def fake_connector():
    return FakeConnector


@pytest.fixture
def eventually():
    return wait_for
