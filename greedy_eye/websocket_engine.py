# greedy_eye/websocket_engine.py
import asyncio
import itertools
import logging
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

import aiohttp

from .config import EngineConfig
from .errors import TransportError
from .jrpc import QuoteResponse, decode_quote_response, encode_quote_request


class ConnectionState(Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RESETTING = "RESETTING"
    CLOSED = "CLOSED"


class QuoteTransport:
    """
    One bidirectional JSON-RPC websocket to the quoting venue.

    The first `send` connects. Any I/O failure surfaces as `TransportError`
    tagged with the connection generation; the owner calls `reset` with that
    generation, so a broken connection is torn down exactly once even when
    both the writer and the reader notice it.
    Request ids come from one process-wide counter and are never reused.
    """
    def __init__(self, config: EngineConfig, logger: logging.Logger,
                 session: Optional[aiohttp.ClientSession] = None):
        self.url = config.url
        self.scale = config.wire_scale
        # Sec-WebSocket-Version: 13 is always sent by aiohttp; compress=15
        # negotiates permessage-deflate.
        self.headers = {
            "Origin": config.origin,
            "User-Agent": config.user_agent,
        }
        self.logger = logger
        self.state = ConnectionState.DISCONNECTED
        self.reconnects = 0

        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._generation = 0
        self._ids = itertools.count(1)
        self._send_lock = asyncio.Lock()
        self._connected = asyncio.Event()

    @property
    def generation(self) -> int:
        return self._generation

    async def connect(self) -> int:
        if self.state is ConnectionState.CONNECTED:
            return self._generation
        if self.state is ConnectionState.CLOSED:
            raise TransportError("transport is closed", self._generation)

        self.state = ConnectionState.CONNECTING
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            ws = await self._session.ws_connect(self.url, headers=self.headers, compress=15)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self.state = ConnectionState.DISCONNECTED
            raise TransportError(f"can't connect to {self.url}: {e}", self._generation) from e

        self._ws = ws
        self._generation += 1
        if self._generation > 1:
            self.reconnects += 1
        self.state = ConnectionState.CONNECTED
        self._connected.set()
        self.logger.info(f"🔌 CONNECTED to {self.url} (generation {self._generation})")
        return self._generation

    async def send(self, address_from: str, address_to: str, amount: Decimal,
                   before_write: Optional[Callable[[int], None]] = None) -> int:
        """
        Write one quote request and return its id.
        `before_write(req_id)` runs once the connection is up and before the
        frame leaves, so the caller can register the id before a reply can arrive.
        """
        async with self._send_lock:
            await self.connect()
            ws, generation = self._ws, self._generation
            req_id = next(self._ids)
            frame = encode_quote_request(req_id, address_from, address_to, amount, self.scale)
            if before_write is not None:
                before_write(req_id)
            if ws.closed:
                raise TransportError(f"can't send request {req_id}: connection closed", generation)
            try:
                await ws.send_str(frame)
            except (aiohttp.ClientError, OSError) as e:
                raise TransportError(f"can't send request {req_id}: {e}", generation) from e
            return req_id

    async def recv(self) -> QuoteResponse:
        """
        Block until the next quote response.
        Waits while disconnected; raises `BadResponseError` for frames that
        don't decode and `TransportError` when the connection drops.
        """
        while True:
            await self._connected.wait()
            ws, generation = self._ws, self._generation
            try:
                msg = await ws.receive()
            except (aiohttp.ClientError, OSError) as e:
                raise TransportError(f"can't read response: {e}", generation) from e

            if msg.type == aiohttp.WSMsgType.TEXT:
                return decode_quote_response(msg.data, self.scale)
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING,
                            aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                reason = ws.exception() or msg.type.name
                raise TransportError(f"connection lost: {reason}", generation)
            self.logger.debug(f"Ignoring {msg.type.name} frame")

    async def reset(self, generation: int, on_reset: Optional[Callable[[], None]] = None) -> bool:
        """
        Tear down connection `generation` if it is still the live one.
        `on_reset` runs before control returns to the event loop, i.e. before
        any other coroutine can send on a new connection.
        """
        if self.state is not ConnectionState.CONNECTED or generation != self._generation:
            return False

        self.state = ConnectionState.RESETTING
        self._connected.clear()
        ws, self._ws = self._ws, None
        if on_reset is not None:
            on_reset()
        self.state = ConnectionState.DISCONNECTED
        self.logger.warning(f"♻️ RESET connection generation {generation}")

        await ws.close()
        return True

    async def close(self):
        self.state = ConnectionState.CLOSED
        self._connected.clear()
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
