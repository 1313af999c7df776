import math

from paperdesk.data_handler import MarketDataHandler
from paperdesk.datastructures import Order
from paperdesk.exchanges import BinanceAdapter


def ticker_message(last):
    return ('{"stream": "btcusdt@ticker", "data": {"e": "24hrTicker", "E": 1, "s": "BTCUSDT", '
            f'"c": "{last}", "P": "0", "v": "1", "h": "1", "l": "1", "b": "1", "a": "1"}}}}')


def attached(cache, engine):
    adapter = BinanceAdapter()
    MarketDataHandler(cache, engine).attach(adapter)
    return adapter


def test_ticker_updates_cache_and_fills_paper_order(cache, engine):
    adapter = attached(cache, engine)
    engine.add_order(Order(id='o-1', symbol='BTC-USDT', side='buy', type='limit', quantity=1, price=100))

    adapter.handle_message(ticker_message(99.5))

    assert cache.get_ticker('BTC-USDT').last == 99.5
    assert engine.get_order('o-1').status == 'filled'
    [position] = engine.positions
    assert position.entry_price == 100
    assert position.current_price == 99.5


def test_malformed_price_is_cached_but_not_traded(cache, engine):
    adapter = attached(cache, engine)
    engine.add_order(Order(id='o-1', symbol='BTC-USDT', side='buy', type='market', quantity=1))

    adapter.handle_message(ticker_message('abc'))

    assert math.isnan(cache.get_ticker('BTC-USDT').last)
    assert engine.get_order('o-1').status == 'pending'

    adapter.handle_message(ticker_message(50))
    assert engine.get_order('o-1').status == 'filled'


def test_trades_and_books_reach_the_cache(cache, engine):
    adapter = attached(cache, engine)
    adapter.handle_message('{"data": {"e": "trade", "s": "BTCUSDT", "p": "10", "q": "2", "m": false, "T": 3}}')
    adapter.handle_message('{"stream": "btcusdt@depth20@100ms", "data": {"lastUpdateId": 1, '
                           '"bids": [["9", "1"]], "asks": [["11", "1"]]}}')

    [trade] = cache.get_recent_trades('BTC-USDT')
    assert (trade.price, trade.side) == (10, 'buy')
    assert cache.get_order_book('BTC-USDT').asks[0].price == 11
