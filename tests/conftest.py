import asyncio
import json

import pytest
from websockets.protocol import State

from paperdesk.datastructures import ConnectionMetrics, ConnectionState
from paperdesk.errors import ExchangeConnectionError
from paperdesk.market_data import MarketDataCache
from paperdesk.paper_engine import PaperTradingEngine

_CLOSE = object()


class FakeSocket:
    """Stands in for a websockets client connection."""

    def __init__(self):
        self.sent = []
        self.state = State.OPEN
        self._inbox = asyncio.Queue()

    async def send(self, data):
        self.sent.append(json.loads(data))

    def feed(self, message):
        self._inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self):
        """Server-side close."""
        self.state = State.CLOSED
        self._inbox.put_nowait(_CLOSE)

    async def close(self):
        self.state = State.CLOSED
        self._inbox.put_nowait(_CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """
    Replaces websockets.connect; `fail_calls` lists 1-based call numbers that fail.
    When `gate` is set to an asyncio.Event, every handshake waits on it.
    """

    def __init__(self, fail_calls=()):
        self.fail_calls = set(fail_calls)
        self.gate = None
        self.calls = 0
        self.urls = []
        self.sockets = []

    async def __call__(self, url, **kwargs):
        self.calls += 1
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.calls in self.fail_calls:
            raise OSError("connection refused")
        ws = FakeSocket()
        self.sockets.append(ws)
        return ws


class FakeAdapter:
    """Minimal adapter for pool tests; connect can be held open with `gate`."""

    name = 'fake'

    def __init__(self, fail=False):
        self.gate = asyncio.Event()
        self.gate.set()
        self.fail = fail
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.state = ConnectionState.DISCONNECTED
        self.ticker_callbacks = []
        self.order_book_callbacks = []
        self.trade_callbacks = []

    async def connect(self):
        self.connect_calls += 1
        self.state = ConnectionState.CONNECTING
        await self.gate.wait()
        if self.fail:
            self.state = ConnectionState.ERRORED
            raise ExchangeConnectionError(self.name, "refused")
        self.state = ConnectionState.CONNECTED

    async def disconnect(self):
        self.disconnect_calls += 1
        self.state = ConnectionState.DISCONNECTED

    def is_connected(self):
        return self.state is ConnectionState.CONNECTED

    def on_ticker(self, callback):
        self.ticker_callbacks.append(callback)

    def on_order_book(self, callback):
        self.order_book_callbacks.append(callback)

    def on_trade(self, callback):
        self.trade_callbacks.append(callback)

    def get_metrics(self):
        return ConnectionMetrics()


async def eventually(predicate, timeout=2.0):
    """Polls `predicate` until it holds or `timeout` seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


class Clock:
    def __init__(self, start=1_000):
        self.now = start

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def engine(clock):
    return PaperTradingEngine(is_paper_mode=True, clock=clock)


@pytest.fixture
def cache():
    return MarketDataCache(trades_limit=100)
