"""Persistent WebSocket connection with keep-alive and automatic reconnect.

One ConnectionManager owns one logical stream (public market data or the
private account stream). A single supervisor task walks the connection through

    DISCONNECTED -> CONNECTING -> OPEN -> RECONNECTING -> CONNECTING -> ...

and any state moves to CLOSED on ``stop()``. Because the supervisor handles
sessions strictly one after another, there is never more than one live socket
or keep-alive task per manager: the previous keep-alive task is cancelled and
awaited before the next connect attempt starts.

Messages are JSON text frames. The literal ``pong`` reply to our ``ping`` is
consumed here and never reaches the handler. A session that sees no ``pong``
for two ping intervals is treated as dead and replaced.
"""
import asyncio
import json
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import ClientSession, WSMsgType

from .logging_setup import logger

PING_MESSAGE = "ping"
PONG_MESSAGE = "pong"

Connector = Callable[[str], Awaitable[Any]]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


_TRANSITIONS = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING, ConnectionState.CLOSED},
    ConnectionState.CONNECTING: {ConnectionState.OPEN, ConnectionState.RECONNECTING, ConnectionState.CLOSED},
    ConnectionState.OPEN: {ConnectionState.RECONNECTING, ConnectionState.CLOSED},
    ConnectionState.RECONNECTING: {ConnectionState.CONNECTING, ConnectionState.CLOSED},
    ConnectionState.CLOSED: set(),
}


class StreamHandler:
    """Callbacks a stream consumer implements. All are optional."""

    async def on_open(self, conn: "ConnectionManager") -> None:
        """Called once per session right after the socket opens (send subscribe/login here)."""

    async def on_message(self, message: Dict[str, Any]) -> None:
        """Called for every decoded JSON message."""

    async def on_close(self) -> None:
        """Called after a session ends, before the reconnect delay."""


class ConnectionManager:
    """Keep one WebSocket stream connected forever.

    Reconnects use a fixed delay with no growth and no retry limit.

    Usage:
        async with ConnectionManager(url, name="public") as conn:
            await conn.start(handler)
            ...
    """

    def __init__(
        self,
        url: str,
        *,
        name: str = "stream",
        ping_interval: float = 30.0,
        reconnect_delay: float = 1.0,
        connector: Optional[Connector] = None,
    ):
        self.url = url
        self.name = name
        self.ping_interval = ping_interval
        self.reconnect_delay = reconnect_delay
        self._connector = connector
        self._session: Optional[ClientSession] = None
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None
        self.state = ConnectionState.DISCONNECTED
        self.sessions_opened = 0
        self.last_pong_at: Optional[float] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def _transition(self, new_state: ConnectionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"[{self.name}] illegal transition {self.state.value} -> {new_state.value}")
        logger.debug(f"[{self.name}] {self.state.value} -> {new_state.value}")
        self.state = new_state

    async def start(self, handler: StreamHandler) -> None:
        """Start the supervisor task. Returns immediately."""
        if self.state is ConnectionState.CLOSED:
            raise RuntimeError(f"[{self.name}] cannot start after stop")
        if self._task is not None:
            raise RuntimeError(f"[{self.name}] already started")
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._supervise(handler))

    async def stop(self) -> None:
        """Stop reconnecting, cancel timers and close the socket. Safe to call twice."""
        if self.state is ConnectionState.CLOSED:
            return
        self._transition(ConnectionState.CLOSED)
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        await self._teardown_session()
        if self._session:
            await self._session.close()
            self._session = None
        logger.info(f"[{self.name}] stopped")

    async def send_json(self, payload: Dict[str, Any]) -> None:
        if self.state is not ConnectionState.OPEN or self._ws is None:
            raise ConnectionError(f"[{self.name}] cannot send while {self.state.value}")
        await self._ws.send_str(json.dumps(payload))

    async def _open_socket(self):
        if self._connector is not None:
            return await self._connector(self.url)
        if self._session is None or self._session.closed:
            self._session = ClientSession()
        return await self._session.ws_connect(self.url, heartbeat=None)

    async def _supervise(self, handler: StreamHandler) -> None:
        while True:
            self._transition(ConnectionState.CONNECTING)
            try:
                self._ws = await self._open_socket()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[{self.name}] connect to {self.url} failed: {e}")
            else:
                self._transition(ConnectionState.OPEN)
                self.sessions_opened += 1
                logger.info(f"[{self.name}] connected to {self.url} (session {self.sessions_opened})")
                try:
                    await self._run_session(handler)
                    logger.warning(f"[{self.name}] connection closed by peer")
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"[{self.name}] transport error: {e}")
                finally:
                    await self._teardown_session()
                try:
                    await handler.on_close()
                except Exception:
                    logger.exception(f"[{self.name}] on_close handler failed")

            self._transition(ConnectionState.RECONNECTING)
            logger.info(f"[{self.name}] reconnecting in {self.reconnect_delay:.1f}s")
            await asyncio.sleep(self.reconnect_delay)

    async def _run_session(self, handler: StreamHandler) -> None:
        """Read until the socket closes or the keep-alive gives up, whichever is first."""
        ws = self._ws
        loop = asyncio.get_running_loop()
        await handler.on_open(self)
        self._ping_task = loop.create_task(self._keepalive(ws))
        reader = loop.create_task(self._read(handler, ws))
        try:
            done, _ = await asyncio.wait({reader, self._ping_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not reader.done():
                reader.cancel()
                await asyncio.gather(reader, return_exceptions=True)
        if reader in done:
            reader.result()
        else:
            self._ping_task.result()

    async def _read(self, handler: StreamHandler, ws) -> None:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                await self._dispatch(handler, msg.data)
            elif msg.type == WSMsgType.BINARY:
                continue
            elif msg.type == WSMsgType.ERROR:
                raise ConnectionError(f"websocket error: {ws.exception()}")
            elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                break

    async def _dispatch(self, handler: StreamHandler, raw: str) -> None:
        if raw == PONG_MESSAGE:
            self.last_pong_at = time.time()
            return
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning(f"[{self.name}] dropping malformed message: {raw[:200]!r}")
            return
        try:
            await handler.on_message(message)
        except Exception:
            logger.exception(f"[{self.name}] message handler failed")

    async def _keepalive(self, ws) -> None:
        """Ping every interval; raise once no pong has arrived for two intervals."""
        started = time.time()
        while True:
            await asyncio.sleep(self.ping_interval)
            last_seen = max(self.last_pong_at or started, started)
            silent_for = time.time() - last_seen
            if silent_for > 2 * self.ping_interval:
                raise ConnectionError(f"no pong for {silent_for:.1f}s")
            await ws.send_str(PING_MESSAGE)

    async def _teardown_session(self) -> None:
        ping_task, self._ping_task = self._ping_task, None
        if ping_task:
            ping_task.cancel()
            await asyncio.gather(ping_task, return_exceptions=True)
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"[{self.name}] error closing socket: {e}")
