# paperdesk/exchanges/base.py
import asyncio
import dataclasses
import json
import logging
import math
from typing import Callable, Iterable, List, Optional

import aiohttp
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

from paperdesk.config import config
from paperdesk.datastructures import (
    CHANNELS, Candle, ConnectionMetrics, ConnectionState, Instrument, OrderBook, Ticker, Trade,
)
from paperdesk.errors import ExchangeAPIError, ExchangeConnectionError
from paperdesk.utils import now_ms

# Errors websockets.connect can raise while opening a socket
CONNECT_ERRORS = (OSError, WebSocketException, asyncio.TimeoutError)


class StreamingAdapter:
    """
    Base class for every exchange adapter.

    Owns the streaming socket lifecycle:
        disconnected -> connecting -> connected -> (closed|errored)
                     -> reconnecting -> connecting -> ...
    - Reconnects with exponential backoff after an unexpected close.
    - Keeps the desired (symbol, channel) set across reconnects and replays it
      on every successful connect.
    - Delivers normalized events to the registered callbacks in registration order.

    Subclasses provide `ws_url`, a `normalizer`, a symbol `mapper`,
    `build_subscription()` and the REST methods.
    """
    name = 'base'
    ws_url: str = ''

    def __init__(
        self,
        ws_connect: Callable = None,
        max_reconnect_attempts: int = None,
        reconnect_base_delay: float = None,
        reconnect_max_delay: float = None,
        heartbeat_interval: float = None,
        ping_interval: float = None,
    ):
        self._ws_connect = ws_connect or websockets.connect
        self.max_reconnect_attempts = config.MAX_RECONNECT_ATTEMPTS if max_reconnect_attempts is None else max_reconnect_attempts
        self.reconnect_base_delay = config.RECONNECT_BASE_DELAY if reconnect_base_delay is None else reconnect_base_delay
        self.reconnect_max_delay = config.RECONNECT_MAX_DELAY if reconnect_max_delay is None else reconnect_max_delay
        self.heartbeat_interval = config.HEARTBEAT_INTERVAL if heartbeat_interval is None else heartbeat_interval
        self.ping_interval = config.WS_PING_INTERVAL if ping_interval is None else ping_interval

        self.state = ConnectionState.DISCONNECTED
        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._reconnect_attempts = 0
        self._is_reconnecting = False
        # Bumped by disconnect(); a connect that resumes under a newer generation is stale
        self._generation = 0

        # Desired streaming state, retained across reconnects
        self._subscriptions: set = set()

        self._ticker_callbacks: List[Callable[[Ticker], None]] = []
        self._order_book_callbacks: List[Callable[[OrderBook], None]] = []
        self._trade_callbacks: List[Callable[[Trade], None]] = []

        self.metrics = ConnectionMetrics(last_heartbeat=now_ms())

    # --- Lifecycle ---

    async def connect(self):
        """
        Opens the socket and returns once the handshake has completed.

        A failure on a first attempt raises ExchangeConnectionError to the
        caller. Failures inside the reconnect loop are logged and retried there.
        """
        if self.is_connected():
            return
        generation = self._generation
        self.state = ConnectionState.CONNECTING
        try:
            ws = await self._ws_connect(self.ws_url, ping_interval=self.ping_interval)
        except CONNECT_ERRORS as e:
            if generation != self._generation:
                logging.info(f"[{self.name}] Connect attempt failed after disconnect: {e}")
                return
            self.state = ConnectionState.ERRORED
            logging.error(f"[{self.name}] WebSocket error: {e}")
            raise ExchangeConnectionError(self.name, str(e)) from e

        if generation != self._generation:
            logging.info(f"[{self.name}] Disconnected while connecting. Closing the new socket.")
            await self._close_socket(ws)
            return

        self._ws = ws
        self._reconnect_attempts = 0
        self._is_reconnecting = False
        self.state = ConnectionState.CONNECTED
        self._start_heartbeat()
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        logging.info(f"[{self.name}] Connected to {self.ws_url}")
        await self._replay_subscriptions()

    async def disconnect(self):
        """
        User-initiated close. Cancels pending reconnects, invalidates any connect
        still waiting on the handshake and does not count as an attempt.
        """
        self._generation += 1
        self._is_reconnecting = False
        self._reconnect_attempts = 0
        self._cancel_task(self._reconnect_task)
        self._reconnect_task = None
        self._stop_heartbeat()
        self._cancel_task(self._reader_task)
        self._reader_task = None

        ws, self._ws = self._ws, None
        self.state = ConnectionState.DISCONNECTED
        if ws is not None:
            await self._close_socket(ws)
        logging.info(f"[{self.name}] Disconnected.")

    @staticmethod
    async def _close_socket(ws):
        try:
            await ws.close()
        except ConnectionClosed:
            pass

    def is_connected(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    def get_metrics(self) -> ConnectionMetrics:
        return dataclasses.replace(self.metrics)

    @property
    def subscriptions(self) -> set:
        return set(self._subscriptions)

    async def _read_loop(self, ws):
        try:
            async for raw in ws:
                self.handle_message(raw)
        except ConnectionClosed as e:
            logging.warning(f"[{self.name}] Connection closed: {e}")
        self._handle_close(ws)

    def _handle_close(self, ws):
        if ws is not self._ws:
            return
        self._stop_heartbeat()
        self._ws = None
        self._reader_task = None
        self.state = ConnectionState.CLOSED
        if not self._is_reconnecting and self._reconnect_attempts < self.max_reconnect_attempts:
            self._reconnect_task = asyncio.create_task(self._reconnect_loop())
        elif not self._is_reconnecting:
            self.state = ConnectionState.DISCONNECTED

    # --- Reconnect ---

    def reconnect_delay(self, attempt: int) -> float:
        """Seconds to wait before `attempt` (1-based): base * 2^(attempt-1), capped."""
        return min(self.reconnect_base_delay * (2 ** (attempt - 1)), self.reconnect_max_delay)

    async def _reconnect_loop(self):
        self._is_reconnecting = True
        self.state = ConnectionState.RECONNECTING
        while self._reconnect_attempts < self.max_reconnect_attempts:
            self._reconnect_attempts += 1
            self.metrics.reconnects += 1
            delay = self.reconnect_delay(self._reconnect_attempts)
            logging.warning(
                f"[{self.name}] Reconnecting in {delay:.2f}s "
                f"(attempt {self._reconnect_attempts}/{self.max_reconnect_attempts})"
            )
            await asyncio.sleep(delay)
            try:
                await self.connect()
            except ExchangeConnectionError as e:
                logging.error(f"[{self.name}] Reconnect attempt failed: {e.reason}")
                self.state = ConnectionState.RECONNECTING
                continue
            self._reconnect_task = None
            return

        self._is_reconnecting = False
        self._reconnect_task = None
        self.state = ConnectionState.DISCONNECTED
        logging.error(f"[{self.name}] Giving up after {self.max_reconnect_attempts} reconnect attempts.")

    async def _replay_subscriptions(self):
        if not self._subscriptions:
            return
        pairs = sorted(self._subscriptions)
        logging.info(f"[{self.name}] Replaying {len(pairs)} symbol/channel pairs.")
        await self._send_subscription('subscribe', pairs)

    # --- Heartbeat ---

    def _start_heartbeat(self):
        self._stop_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    def _stop_heartbeat(self):
        self._cancel_task(self._heartbeat_task)
        self._heartbeat_task = None

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if self.is_connected():
                self.metrics.last_heartbeat = now_ms()

    @staticmethod
    def _cancel_task(task: Optional[asyncio.Task]):
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    # --- Subscriptions ---

    async def subscribe(self, symbols: Iterable[str], channels: Iterable[str]):
        """Records the pairs even while disconnected; only sends when the socket is open."""
        pairs = self._pairs(symbols, channels)
        self._subscriptions.update(pairs)
        if not self.is_connected() or not pairs:
            return
        await self._send_subscription('subscribe', pairs)

    async def unsubscribe(self, symbols: Iterable[str], channels: Iterable[str]):
        pairs = self._pairs(symbols, channels)
        self._subscriptions.difference_update(pairs)
        if not self.is_connected() or not pairs:
            return
        await self._send_subscription('unsubscribe', pairs)

    @staticmethod
    def _pairs(symbols, channels) -> list:
        # 'candles' is part of the channel vocabulary but has no streaming counterpart
        channels = [c for c in channels if c in CHANNELS]
        return [(symbol, channel) for symbol in symbols for channel in channels]

    async def _send_subscription(self, op: str, pairs: list):
        for message in self.build_subscription(op, pairs):
            await self._send(message)
        logging.info(f"[{self.name}] {op.capitalize()}d: {pairs}")

    async def _send(self, message: dict):
        ws = self._ws
        if ws is None:
            return
        try:
            await ws.send(json.dumps(message))
        except ConnectionClosed as e:
            logging.warning(f"[{self.name}] Could not send {message}: {e}")

    def build_subscription(self, op: str, pairs: list) -> List[dict]:
        """Wire messages for subscribing ('subscribe') or unsubscribing pairs."""
        raise NotImplementedError

    # --- Inbound messages ---

    def on_ticker(self, callback: Callable[[Ticker], None]):
        self._ticker_callbacks.append(callback)

    def on_order_book(self, callback: Callable[[OrderBook], None]):
        self._order_book_callbacks.append(callback)

    def on_trade(self, callback: Callable[[Trade], None]):
        self._trade_callbacks.append(callback)

    def handle_message(self, raw):
        """Decodes, normalizes and dispatches one raw socket message."""
        self.metrics.messages_received += 1
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            logging.error(f"[{self.name}] Error decoding message: {e}")
            return

        now = now_ms()
        event_time = self.normalizer.event_time(message)
        if event_time is not None and math.isfinite(event_time) and event_time > 0:
            self.metrics.latency = max(0, now - event_time)
        self.metrics.last_heartbeat = now

        try:
            events = self.normalizer.normalize(message)
            if not events:
                logging.debug(f"[{self.name}] Ignoring message: {str(message)[:200]}")
                return
            for event in events:
                self._dispatch(event)
        except Exception:
            logging.error(f"[{self.name}] Error handling message: {str(message)[:200]}", exc_info=True)

    def _dispatch(self, event):
        if isinstance(event, Ticker):
            callbacks = self._ticker_callbacks
        elif isinstance(event, OrderBook):
            callbacks = self._order_book_callbacks
        elif isinstance(event, Trade):
            callbacks = self._trade_callbacks
        else:
            return
        for callback in list(callbacks):
            callback(event)

    # --- REST ---

    async def _get_json(self, url: str, params: dict = None):
        async with aiohttp.ClientSession() as session:
            return await self._fetch_json(session, url, params)

    async def _fetch_json(self, session: aiohttp.ClientSession, url: str, params: dict = None):
        try:
            async with session.get(url, params=params) as response:
                if response.status != 200:
                    raise ExchangeAPIError(self.name, response.reason or str(response.status), response.status)
                return await response.json()
        except aiohttp.ClientError as e:
            raise ExchangeAPIError(self.name, str(e)) from e
        except asyncio.TimeoutError as e:
            raise ExchangeAPIError(self.name, f"request to {url} timed out") from e

    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        raise NotImplementedError

    async def get_instruments(self) -> List[Instrument]:
        raise NotImplementedError

    async def get_ticker(self, symbol: str) -> Ticker:
        raise NotImplementedError

    def symbol_to_exchange(self, canonical: str) -> str:
        return self.mapper.to_exchange(canonical)

    def symbol_from_exchange(self, native: str) -> str:
        return self.mapper.from_exchange(native)
