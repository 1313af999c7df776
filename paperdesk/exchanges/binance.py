# paperdesk/exchanges/binance.py
import itertools
import logging
from typing import List

from paperdesk.candles import BINANCE_INTERVALS, resolve_interval
from paperdesk.datastructures import Candle, Instrument, OrderBook, OrderBookLevel, Ticker, Trade
from paperdesk.exchanges.base import StreamingAdapter
from paperdesk.symbols import ConcatSymbolMapper
from paperdesk.utils import now_ms, parse_decimal

STREAM_SUFFIX = {
    'ticker': '@ticker',
    'orderbook': '@depth20@100ms',
    'trades': '@trade',
}


def _levels(raw_levels) -> tuple:
    return tuple(OrderBookLevel(parse_decimal(p), parse_decimal(q)) for p, q in raw_levels)


class BinanceNormalizer:
    """
    Binance combined-stream payloads -> canonical events.

    Messages arrive wrapped as {"stream": "btcusdt@trade", "data": {...}}.
    Handles `24hrTicker`, `trade`, `depthUpdate` and the partial-depth
    payload of `<sym>@depth20@100ms` (which carries no event type or symbol,
    so the symbol is taken from the stream name). Depth payloads are full
    top-of-book snapshots and replace the previous book.
    """
    def __init__(self, mapper: ConcatSymbolMapper):
        self.mapper = mapper

    @staticmethod
    def _payload(message):
        if not isinstance(message, dict):
            return None
        data = message.get('data', message)
        return data if isinstance(data, dict) else None

    def event_time(self, message):
        data = self._payload(message)
        if data is None or 'E' not in data:
            return None
        return parse_decimal(data['E'])

    def normalize(self, message) -> list:
        data = self._payload(message)
        if data is None:
            return []
        event_type = data.get('e')
        if event_type == '24hrTicker':
            return [self.ticker(data)]
        if event_type == 'trade':
            return [self.trade(data)]
        if event_type == 'depthUpdate':
            return [self.order_book(data['s'], data['b'], data['a'], data.get('E'))]
        stream = message.get('stream', '')
        if 'lastUpdateId' in data and '@depth' in stream:
            native = stream.split('@', 1)[0]
            return [self.order_book(native, data['bids'], data['asks'], None)]
        return []

    def ticker(self, data: dict) -> Ticker:
        return Ticker(
            symbol=self.mapper.from_exchange(data['s']),
            last=parse_decimal(data.get('c')),
            change_24h=parse_decimal(data.get('P')),
            volume_24h=parse_decimal(data.get('v')),
            high_24h=parse_decimal(data.get('h')),
            low_24h=parse_decimal(data.get('l')),
            bid=parse_decimal(data.get('b')),
            ask=parse_decimal(data.get('a')),
            timestamp=data.get('E') or now_ms(),
        )

    def order_book(self, native: str, bids, asks, event_time) -> OrderBook:
        return OrderBook(
            symbol=self.mapper.from_exchange(native),
            bids=_levels(bids),
            asks=_levels(asks),
            timestamp=event_time or now_ms(),
        )

    def trade(self, data: dict) -> Trade:
        return Trade(
            symbol=self.mapper.from_exchange(data['s']),
            price=parse_decimal(data.get('p')),
            quantity=parse_decimal(data.get('q')),
            # m = buyer is the maker, so the aggressor sold
            side='sell' if data.get('m') else 'buy',
            timestamp=data.get('T') or now_ms(),
        )


# --- REST payload parsing ---

def parse_klines(rows) -> List[Candle]:
    return [
        Candle(
            timestamp=row[0],
            open=parse_decimal(row[1]),
            high=parse_decimal(row[2]),
            low=parse_decimal(row[3]),
            close=parse_decimal(row[4]),
            volume=parse_decimal(row[5]),
        )
        for row in rows
    ]


def parse_exchange_info(data: dict, mapper: ConcatSymbolMapper) -> List[Instrument]:
    instruments = []
    for s in data.get('symbols', []):
        if s.get('status') != 'TRADING':
            continue
        filters = {f.get('filterType'): f for f in s.get('filters', [])}
        lot_size = filters.get('LOT_SIZE', {})
        price_filter = filters.get('PRICE_FILTER', {})
        instruments.append(Instrument(
            symbol=mapper.from_exchange(s['symbol']),
            base_asset=s.get('baseAsset'),
            quote_asset=s.get('quoteAsset'),
            type='spot',
            min_quantity=parse_decimal(lot_size.get('minQty', '0')),
            max_quantity=parse_decimal(lot_size.get('maxQty', '0')),
            quantity_step=parse_decimal(lot_size.get('stepSize', '0')),
            min_price=parse_decimal(price_filter.get('minPrice', '0')),
            max_price=parse_decimal(price_filter.get('maxPrice', '0')),
            price_step=parse_decimal(price_filter.get('tickSize', '0')),
        ))
    return instruments


def parse_rest_ticker(data: dict, mapper: ConcatSymbolMapper) -> Ticker:
    return Ticker(
        symbol=mapper.from_exchange(data['symbol']),
        last=parse_decimal(data.get('lastPrice')),
        change_24h=parse_decimal(data.get('priceChangePercent')),
        volume_24h=parse_decimal(data.get('volume')),
        high_24h=parse_decimal(data.get('highPrice')),
        low_24h=parse_decimal(data.get('lowPrice')),
        bid=parse_decimal(data.get('bidPrice')),
        ask=parse_decimal(data.get('askPrice')),
        timestamp=data.get('closeTime') or now_ms(),
    )


class BinanceAdapter(StreamingAdapter):
    name = 'binance'
    ws_url = 'wss://stream.binance.com:9443/stream'
    rest_url = 'https://api.binance.com/api/v3'

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.mapper = ConcatSymbolMapper()
        self.normalizer = BinanceNormalizer(self.mapper)
        self._request_ids = itertools.count(1)

    def stream_name(self, symbol: str, channel: str) -> str:
        return f"{self.mapper.to_exchange(symbol).lower()}{STREAM_SUFFIX[channel]}"

    def build_subscription(self, op: str, pairs: list) -> List[dict]:
        streams = [self.stream_name(symbol, channel) for symbol, channel in pairs]
        if not streams:
            return []
        return [{'method': op.upper(), 'params': streams, 'id': next(self._request_ids)}]

    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        params = {
            'symbol': self.mapper.to_exchange(symbol),
            'interval': resolve_interval(BINANCE_INTERVALS, interval),
            'limit': limit,
        }
        rows = await self._get_json(f"{self.rest_url}/klines", params)
        return parse_klines(rows)

    async def get_instruments(self) -> List[Instrument]:
        data = await self._get_json(f"{self.rest_url}/exchangeInfo")
        instruments = parse_exchange_info(data, self.mapper)
        logging.info(f"[{self.name}] Fetched {len(instruments)} tradable instruments.")
        return instruments

    async def get_ticker(self, symbol: str) -> Ticker:
        data = await self._get_json(f"{self.rest_url}/ticker/24hr", {'symbol': self.mapper.to_exchange(symbol)})
        return parse_rest_ticker(data, self.mapper)
