import asyncio

import pytest
from websockets.protocol import State

from paperdesk.datastructures import ConnectionState
from paperdesk.errors import ExchangeConnectionError
from paperdesk.exchanges import BinanceAdapter
from paperdesk.utils import now_ms

from tests.conftest import FakeConnector, eventually


def make_adapter(connector, **kwargs):
    kwargs.setdefault('reconnect_base_delay', 0.01)
    kwargs.setdefault('heartbeat_interval', 60)
    return BinanceAdapter(ws_connect=connector, **kwargs)


@pytest.mark.asyncio
async def test_connect_opens_socket():
    connector = FakeConnector()
    adapter = make_adapter(connector)

    await adapter.connect()

    assert adapter.is_connected()
    assert adapter.state is ConnectionState.CONNECTED
    assert connector.urls == [BinanceAdapter.ws_url]
    await adapter.disconnect()
    assert not adapter.is_connected()
    assert adapter.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_first_connect_failure_propagates():
    connector = FakeConnector(fail_calls=[1])
    adapter = make_adapter(connector)

    with pytest.raises(ExchangeConnectionError):
        await adapter.connect()
    assert adapter.state is ConnectionState.ERRORED
    assert adapter.get_metrics().reconnects == 0


@pytest.mark.asyncio
async def test_subscribe_while_disconnected_is_recorded_and_sent_on_connect():
    connector = FakeConnector()
    adapter = make_adapter(connector)

    await adapter.subscribe(['BTC-USDT'], ['ticker'])
    assert adapter.subscriptions == {('BTC-USDT', 'ticker')}

    await adapter.connect()
    [message] = connector.sockets[0].sent
    assert message['method'] == 'SUBSCRIBE'
    assert message['params'] == ['btcusdt@ticker']
    await adapter.disconnect()


@pytest.mark.asyncio
async def test_subscribe_and_unsubscribe_send_wire_messages():
    connector = FakeConnector()
    adapter = make_adapter(connector)
    await adapter.connect()

    await adapter.subscribe(['BTC-USDT', 'ETH-USDT'], ['ticker', 'orderbook', 'trades', 'candles'])
    await adapter.unsubscribe(['ETH-USDT'], ['orderbook'])

    subscribe, unsubscribe = connector.sockets[0].sent
    assert subscribe['params'] == [
        'btcusdt@ticker', 'btcusdt@depth20@100ms', 'btcusdt@trade',
        'ethusdt@ticker', 'ethusdt@depth20@100ms', 'ethusdt@trade',
    ]
    assert unsubscribe == {'method': 'UNSUBSCRIBE', 'params': ['ethusdt@depth20@100ms'], 'id': unsubscribe['id']}
    assert ('ETH-USDT', 'orderbook') not in adapter.subscriptions
    assert ('ETH-USDT', 'ticker') in adapter.subscriptions
    await adapter.disconnect()


@pytest.mark.asyncio
async def test_reconnect_resubscribes_exactly_once():
    connector = FakeConnector()
    adapter = make_adapter(connector)
    await adapter.connect()
    await adapter.subscribe(['BTC-USDT', 'ETH-USDT'], ['ticker', 'trades'])

    connector.sockets[0].drop()
    await eventually(lambda: adapter.is_connected() and len(connector.sockets) == 2)

    second = connector.sockets[1]
    assert len(second.sent) == 1
    assert sorted(second.sent[0]['params']) == [
        'btcusdt@ticker', 'btcusdt@trade', 'ethusdt@ticker', 'ethusdt@trade',
    ]
    assert adapter.get_metrics().reconnects == 1
    assert adapter.subscriptions == {
        ('BTC-USDT', 'ticker'), ('BTC-USDT', 'trades'),
        ('ETH-USDT', 'ticker'), ('ETH-USDT', 'trades'),
    }
    await adapter.disconnect()


@pytest.mark.asyncio
async def test_failed_reconnect_attempts_are_retried():
    connector = FakeConnector(fail_calls=[2, 3])
    adapter = make_adapter(connector)
    await adapter.connect()
    await adapter.subscribe(['BTC-USDT'], ['ticker'])

    connector.sockets[0].drop()
    await eventually(lambda: adapter.is_connected() and connector.calls == 4)

    assert adapter.get_metrics().reconnects == 3
    assert len(connector.sockets[1].sent) == 1
    await adapter.disconnect()


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    connector = FakeConnector(fail_calls=[2, 3])
    adapter = make_adapter(connector, max_reconnect_attempts=2)
    await adapter.connect()

    connector.sockets[0].drop()
    await eventually(lambda: adapter.state is ConnectionState.DISCONNECTED)

    assert connector.calls == 3
    assert adapter.get_metrics().reconnects == 2
    await asyncio.sleep(0.05)
    assert connector.calls == 3

    # an explicit connect starts over
    await adapter.connect()
    assert adapter.is_connected()
    await adapter.disconnect()


@pytest.mark.asyncio
async def test_disconnect_cancels_pending_reconnect():
    connector = FakeConnector()
    adapter = make_adapter(connector, reconnect_base_delay=0.05)
    await adapter.connect()

    connector.sockets[0].drop()
    await eventually(lambda: adapter.state is ConnectionState.RECONNECTING)
    await adapter.disconnect()
    await asyncio.sleep(0.1)

    assert connector.calls == 1
    assert adapter.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_disconnect_during_handshake_discards_the_socket():
    connector = FakeConnector()
    connector.gate = asyncio.Event()
    adapter = make_adapter(connector)
    await adapter.subscribe(['BTC-USDT'], ['ticker'])

    connecting = asyncio.ensure_future(adapter.connect())
    await eventually(lambda: connector.calls == 1)
    await adapter.disconnect()
    connector.gate.set()
    await connecting

    assert not adapter.is_connected()
    assert adapter.state is ConnectionState.DISCONNECTED
    [ws] = connector.sockets
    assert ws.state is State.CLOSED
    assert ws.sent == []

    await adapter.connect()
    assert adapter.is_connected()
    assert len(connector.sockets[1].sent) == 1
    await adapter.disconnect()


@pytest.mark.asyncio
async def test_failed_handshake_after_disconnect_is_not_raised():
    connector = FakeConnector(fail_calls=[1])
    connector.gate = asyncio.Event()
    adapter = make_adapter(connector)

    connecting = asyncio.ensure_future(adapter.connect())
    await eventually(lambda: connector.calls == 1)
    await adapter.disconnect()
    connector.gate.set()
    await connecting

    assert adapter.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_user_disconnect_does_not_trigger_reconnect():
    connector = FakeConnector()
    adapter = make_adapter(connector)
    await adapter.connect()
    await adapter.disconnect()
    await asyncio.sleep(0.05)

    assert connector.calls == 1
    assert adapter.get_metrics().reconnects == 0


def test_backoff_doubles_and_caps():
    adapter = BinanceAdapter(reconnect_base_delay=1.0, reconnect_max_delay=30.0)
    delays = [adapter.reconnect_delay(n) for n in range(1, 8)]
    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


@pytest.mark.asyncio
async def test_metrics_track_messages_and_latency():
    connector = FakeConnector()
    adapter = make_adapter(connector)
    await adapter.connect()
    ws = connector.sockets[0]

    ws.feed({'stream': 'btcusdt@trade', 'data': {
        'e': 'trade', 'E': now_ms() - 50, 's': 'BTCUSDT', 'p': '1', 'q': '1', 'm': False, 'T': 1,
    }})
    await eventually(lambda: adapter.get_metrics().messages_received == 1)
    assert 50 <= adapter.get_metrics().latency < 5_000

    # clock skew never yields a negative latency
    ws.feed({'stream': 'btcusdt@trade', 'data': {
        'e': 'trade', 'E': now_ms() + 60_000, 's': 'BTCUSDT', 'p': '1', 'q': '1', 'm': False, 'T': 1,
    }})
    await eventually(lambda: adapter.get_metrics().messages_received == 2)
    assert adapter.get_metrics().latency == 0

    ws.feed('not json')
    await eventually(lambda: adapter.get_metrics().messages_received == 3)
    assert adapter.is_connected()
    await adapter.disconnect()


@pytest.mark.asyncio
async def test_heartbeat_marks_liveness():
    connector = FakeConnector()
    adapter = make_adapter(connector, heartbeat_interval=0.01)
    await adapter.connect()
    adapter.metrics.last_heartbeat = 0

    await eventually(lambda: adapter.get_metrics().last_heartbeat > 0)
    await adapter.disconnect()


@pytest.mark.asyncio
async def test_get_metrics_returns_a_copy():
    adapter = make_adapter(FakeConnector())
    adapter.get_metrics().messages_received = 42
    assert adapter.get_metrics().messages_received == 0
