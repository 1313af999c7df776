# paperdesk/exchanges/bybit.py
import asyncio
import logging
from typing import Dict, List

# Import the synchronous HTTP client from pybit
from pybit.exceptions import FailedRequestError, InvalidRequestError
from pybit.unified_trading import HTTP

from paperdesk.candles import BYBIT_INTERVALS, resolve_interval
from paperdesk.config import config
from paperdesk.datastructures import Candle, Instrument, Ticker, Trade
from paperdesk.errors import ExchangeAPIError
from paperdesk.exchanges.base import StreamingAdapter
from paperdesk.order_book import LocalOrderBook
from paperdesk.symbols import ConcatSymbolMapper
from paperdesk.utils import now_ms, parse_decimal

TOPIC_PREFIX = {
    'ticker': 'tickers',
    'orderbook': 'orderbook.50',
    'trades': 'publicTrade',
}
# Bybit caps the number of args in one subscribe request on spot
MAX_ARGS_PER_REQUEST = 10


class BybitNormalizer:
    """
    Bybit v5 public stream messages -> canonical events.

    Tickers on derivative categories arrive as partial deltas, so the last
    known fields per symbol are merged before building a Ticker. Order books
    follow snapshot/delta semantics; one `publicTrade` message may carry
    several trades.
    """
    def __init__(self, mapper: ConcatSymbolMapper):
        self.mapper = mapper
        self.books: Dict[str, LocalOrderBook] = {}
        self._ticker_fields: Dict[str, dict] = {}

    def event_time(self, message):
        if not isinstance(message, dict) or 'ts' not in message:
            return None
        return parse_decimal(message['ts'])

    def normalize(self, message) -> list:
        if not isinstance(message, dict):
            return []
        topic = message.get('topic', '')
        data = message.get('data')
        if data is None:
            return []
        if topic.startswith('tickers.'):
            return [self.ticker(data, message.get('ts'))]
        if topic.startswith('orderbook.'):
            book = self.order_book(message.get('type'), data, message.get('ts'))
            return [book] if book is not None else []
        if topic.startswith('publicTrade.'):
            return [self.trade(item) for item in data]
        return []

    def ticker(self, data: dict, ts) -> Ticker:
        fields = self._ticker_fields.setdefault(data['symbol'], {})
        fields.update(data)
        return Ticker(
            symbol=self.mapper.from_exchange(data['symbol']),
            last=parse_decimal(fields.get('lastPrice')),
            change_24h=parse_decimal(fields.get('price24hPcnt')) * 100,
            volume_24h=parse_decimal(fields.get('volume24h')),
            high_24h=parse_decimal(fields.get('highPrice24h')),
            low_24h=parse_decimal(fields.get('lowPrice24h')),
            bid=parse_decimal(fields.get('bid1Price')),
            ask=parse_decimal(fields.get('ask1Price')),
            timestamp=ts or now_ms(),
        )

    def order_book(self, kind: str, data: dict, ts):
        symbol = self.mapper.from_exchange(data['s'])
        if kind == 'snapshot':
            book = LocalOrderBook(symbol)
            book.apply_snapshot(
                [(parse_decimal(p), parse_decimal(q)) for p, q in data.get('b', [])],
                [(parse_decimal(p), parse_decimal(q)) for p, q in data.get('a', [])],
                ts or now_ms(),
            )
            self.books[symbol] = book
            return book.snapshot()

        book = self.books.get(symbol)
        if book is None:
            return None
        for p, q in data.get('b', []):
            book.apply_delta(True, parse_decimal(p), parse_decimal(q))
        for p, q in data.get('a', []):
            book.apply_delta(False, parse_decimal(p), parse_decimal(q))
        book.timestamp = ts or now_ms()
        return book.snapshot()

    def trade(self, item: dict) -> Trade:
        return Trade(
            symbol=self.mapper.from_exchange(item['s']),
            price=parse_decimal(item.get('p')),
            quantity=parse_decimal(item.get('v')),
            side='buy' if item.get('S') == 'Buy' else 'sell',
            timestamp=item.get('T') or now_ms(),
        )

    def reset(self):
        self.books.clear()
        self._ticker_fields.clear()


# --- REST payload parsing ---

def _result_list(response: dict) -> list:
    if not response or response.get('retCode') != 0:
        raise ExchangeAPIError('bybit', (response or {}).get('retMsg', 'empty response'))
    return response['result']['list']


def parse_klines(response: dict) -> List[Candle]:
    """Bybit returns [start, open, high, low, close, volume, turnover], newest first."""
    rows = _result_list(response)
    candles = [
        Candle(
            timestamp=int(row[0]),
            open=parse_decimal(row[1]),
            high=parse_decimal(row[2]),
            low=parse_decimal(row[3]),
            close=parse_decimal(row[4]),
            volume=parse_decimal(row[5]),
        )
        for row in rows
    ]
    candles.sort(key=lambda c: c.timestamp)
    return candles


def parse_instruments(response: dict, mapper: ConcatSymbolMapper, category: str) -> List[Instrument]:
    market_type = 'spot' if category == 'spot' else 'perpetual'
    instruments = []
    for item in _result_list(response):
        if item.get('status') != 'Trading':
            continue
        lot = item.get('lotSizeFilter', {})
        price_filter = item.get('priceFilter', {})
        instruments.append(Instrument(
            symbol=mapper.from_exchange(item['symbol']),
            base_asset=item.get('baseCoin'),
            quote_asset=item.get('quoteCoin'),
            type=market_type,
            min_quantity=parse_decimal(lot.get('minOrderQty', '0')),
            max_quantity=parse_decimal(lot.get('maxOrderQty', '0')),
            quantity_step=parse_decimal(lot.get('qtyStep') or lot.get('basePrecision') or '0'),
            min_price=parse_decimal(price_filter.get('minPrice', '0')),
            max_price=parse_decimal(price_filter.get('maxPrice', '0')),
            price_step=parse_decimal(price_filter.get('tickSize', '0')),
        ))
    return instruments


def parse_rest_ticker(response: dict, mapper: ConcatSymbolMapper) -> Ticker:
    rows = _result_list(response)
    if not rows:
        raise ExchangeAPIError('bybit', 'symbol not found')
    data = rows[0]
    return Ticker(
        symbol=mapper.from_exchange(data['symbol']),
        last=parse_decimal(data.get('lastPrice')),
        change_24h=parse_decimal(data.get('price24hPcnt')) * 100,
        volume_24h=parse_decimal(data.get('volume24h')),
        high_24h=parse_decimal(data.get('highPrice24h')),
        low_24h=parse_decimal(data.get('lowPrice24h')),
        bid=parse_decimal(data.get('bid1Price')),
        ask=parse_decimal(data.get('ask1Price')),
        timestamp=response.get('time') or now_ms(),
    )


class BybitAdapter(StreamingAdapter):
    name = 'bybit'

    def __init__(self, category: str = None, testnet: bool = None, http_session: HTTP = None, **kwargs):
        super().__init__(**kwargs)
        self.category = category or config.BYBIT_CATEGORY
        testnet = config.BYBIT_TESTNET if testnet is None else testnet
        host = 'stream-testnet.bybit.com' if testnet else 'stream.bybit.com'
        self.ws_url = f"wss://{host}/v5/public/{self.category}"
        self.mapper = ConcatSymbolMapper()
        self.normalizer = BybitNormalizer(self.mapper)
        # Public market endpoints need no credentials
        self.pybit_session = http_session or HTTP(testnet=testnet)

    async def connect(self):
        if not self.is_connected():
            self.normalizer.reset()
        await super().connect()

    def build_subscription(self, op: str, pairs: list) -> List[dict]:
        topics = [f"{TOPIC_PREFIX[channel]}.{self.mapper.to_exchange(symbol)}" for symbol, channel in pairs]
        return [
            {'op': op, 'args': topics[i:i + MAX_ARGS_PER_REQUEST]}
            for i in range(0, len(topics), MAX_ARGS_PER_REQUEST)
        ]

    async def _call(self, method, **params) -> dict:
        """Runs a synchronous pybit call in the default executor."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, lambda: method(**params))
        except (InvalidRequestError, FailedRequestError) as e:
            raise ExchangeAPIError(self.name, str(e)) from e

    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        response = await self._call(
            self.pybit_session.get_kline,
            category=self.category,
            symbol=self.mapper.to_exchange(symbol),
            interval=resolve_interval(BYBIT_INTERVALS, interval),
            limit=limit,
        )
        return parse_klines(response)

    async def get_instruments(self) -> List[Instrument]:
        response = await self._call(self.pybit_session.get_instruments_info, category=self.category)
        instruments = parse_instruments(response, self.mapper, self.category)
        logging.info(f"[{self.name}] Fetched {len(instruments)} tradable symbols for category {self.category}.")
        return instruments

    async def get_ticker(self, symbol: str) -> Ticker:
        response = await self._call(
            self.pybit_session.get_tickers,
            category=self.category,
            symbol=self.mapper.to_exchange(symbol),
        )
        return parse_rest_ticker(response, self.mapper)
