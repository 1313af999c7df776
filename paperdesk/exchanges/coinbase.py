# paperdesk/exchanges/coinbase.py
import asyncio
import logging
from typing import Dict, List

import aiohttp

from paperdesk.candles import COINBASE_GRANULARITY, resolve_interval
from paperdesk.datastructures import Candle, Instrument, Ticker, Trade
from paperdesk.exchanges.base import StreamingAdapter
from paperdesk.order_book import LocalOrderBook
from paperdesk.symbols import DashSymbolMapper
from paperdesk.utils import NAN, now_ms, parse_decimal, parse_iso_ms

CHANNEL_NAMES = {
    'ticker': 'ticker',
    'orderbook': 'level2',
    'trades': 'matches',
}


def _change_percent(last: float, open_: float) -> float:
    if not open_:
        return NAN
    return (last - open_) / open_ * 100


def _parsed_levels(raw_levels):
    return [(parse_decimal(p), parse_decimal(q)) for p, q, *_ in raw_levels]


class CoinbaseNormalizer:
    """
    Coinbase Exchange feed messages -> canonical events.

    `snapshot` seeds a local book per product and `l2update` applies deltas to
    it; every book event carries an immutable snapshot of the local book.
    Updates for a product without a snapshot are dropped.
    """
    def __init__(self, mapper: DashSymbolMapper):
        self.mapper = mapper
        self.books: Dict[str, LocalOrderBook] = {}

    def event_time(self, message):
        if not isinstance(message, dict) or 'time' not in message:
            return None
        return parse_iso_ms(message['time'])

    def normalize(self, message) -> list:
        if not isinstance(message, dict):
            return []
        kind = message.get('type')
        if kind == 'ticker':
            return [self.ticker(message)]
        if kind == 'snapshot':
            return [self.snapshot(message)]
        if kind == 'l2update':
            book = self.l2update(message)
            return [book] if book is not None else []
        if kind == 'match':
            return [self.match(message)]
        return []

    def ticker(self, message: dict) -> Ticker:
        last = parse_decimal(message.get('price'))
        return Ticker(
            symbol=self.mapper.from_exchange(message['product_id']),
            last=last,
            change_24h=_change_percent(last, parse_decimal(message.get('open_24h'))),
            volume_24h=parse_decimal(message.get('volume_24h')),
            high_24h=parse_decimal(message.get('high_24h')),
            low_24h=parse_decimal(message.get('low_24h')),
            bid=parse_decimal(message.get('best_bid')),
            ask=parse_decimal(message.get('best_ask')),
            timestamp=parse_iso_ms(message.get('time')),
        )

    def snapshot(self, message: dict):
        symbol = self.mapper.from_exchange(message['product_id'])
        book = LocalOrderBook(symbol)
        book.apply_snapshot(
            _parsed_levels(message.get('bids', [])),
            _parsed_levels(message.get('asks', [])),
            now_ms(),
        )
        self.books[symbol] = book
        return book.snapshot()

    def l2update(self, message: dict):
        symbol = self.mapper.from_exchange(message['product_id'])
        book = self.books.get(symbol)
        if book is None:
            return None
        for side, price, size in message.get('changes', []):
            book.apply_delta(side == 'buy', parse_decimal(price), parse_decimal(size))
        book.timestamp = parse_iso_ms(message.get('time'))
        return book.snapshot()

    def match(self, message: dict) -> Trade:
        return Trade(
            symbol=self.mapper.from_exchange(message['product_id']),
            price=parse_decimal(message.get('price')),
            quantity=parse_decimal(message.get('size')),
            side=message.get('side'),
            timestamp=parse_iso_ms(message.get('time')),
        )

    def reset(self):
        self.books.clear()


# --- REST payload parsing ---

def parse_candles(rows) -> List[Candle]:
    """Coinbase rows are [time, low, high, open, close, volume], newest first."""
    candles = [
        Candle(
            timestamp=row[0] * 1000,
            open=row[3],
            high=row[2],
            low=row[1],
            close=row[4],
            volume=row[5],
        )
        for row in rows
    ]
    candles.reverse()
    return candles


def parse_products(products, mapper: DashSymbolMapper) -> List[Instrument]:
    return [
        Instrument(
            symbol=mapper.from_exchange(p['id']),
            base_asset=p.get('base_currency'),
            quote_asset=p.get('quote_currency'),
            type='spot',
            min_quantity=parse_decimal(p.get('base_min_size') or '0'),
            max_quantity=parse_decimal(p.get('base_max_size') or '0'),
            quantity_step=parse_decimal(p.get('base_increment') or '0'),
            min_price=0.0,
            max_price=0.0,
            price_step=parse_decimal(p.get('quote_increment') or '0'),
        )
        for p in products
        if p.get('status') == 'online'
    ]


def parse_rest_ticker(product_id: str, ticker: dict, stats: dict, mapper: DashSymbolMapper) -> Ticker:
    last = parse_decimal(ticker.get('price'))
    return Ticker(
        symbol=mapper.from_exchange(product_id),
        last=last,
        change_24h=_change_percent(last, parse_decimal(stats.get('open'))),
        volume_24h=parse_decimal(stats.get('volume')),
        high_24h=parse_decimal(stats.get('high')),
        low_24h=parse_decimal(stats.get('low')),
        bid=parse_decimal(ticker.get('bid')),
        ask=parse_decimal(ticker.get('ask')),
        timestamp=parse_iso_ms(ticker.get('time')),
    )


class CoinbaseAdapter(StreamingAdapter):
    name = 'coinbase'
    ws_url = 'wss://ws-feed.exchange.coinbase.com'
    rest_url = 'https://api.exchange.coinbase.com'

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.mapper = DashSymbolMapper()
        self.normalizer = CoinbaseNormalizer(self.mapper)

    async def connect(self):
        # Books are rebuilt from the snapshot sent after (re)subscribing
        if not self.is_connected():
            self.normalizer.reset()
        await super().connect()

    def build_subscription(self, op: str, pairs: list) -> List[dict]:
        product_ids: Dict[str, list] = {}
        for symbol, channel in pairs:
            ids = product_ids.setdefault(CHANNEL_NAMES[channel], [])
            native = self.mapper.to_exchange(symbol)
            if native not in ids:
                ids.append(native)
        if not product_ids:
            return []
        return [{
            'type': op,
            'channels': [{'name': name, 'product_ids': ids} for name, ids in product_ids.items()],
        }]

    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        product_id = self.mapper.to_exchange(symbol)
        granularity = resolve_interval(COINBASE_GRANULARITY, interval)
        end = now_ms() // 1000
        start = end - granularity * limit
        rows = await self._get_json(
            f"{self.rest_url}/products/{product_id}/candles",
            {'start': start, 'end': end, 'granularity': granularity},
        )
        return parse_candles(rows)

    async def get_instruments(self) -> List[Instrument]:
        products = await self._get_json(f"{self.rest_url}/products")
        instruments = parse_products(products, self.mapper)
        logging.info(f"[{self.name}] Fetched {len(instruments)} online products.")
        return instruments

    async def get_ticker(self, symbol: str) -> Ticker:
        product_id = self.mapper.to_exchange(symbol)
        async with aiohttp.ClientSession() as session:
            ticker, stats = await asyncio.gather(
                self._fetch_json(session, f"{self.rest_url}/products/{product_id}/ticker"),
                self._fetch_json(session, f"{self.rest_url}/products/{product_id}/stats"),
            )
        return parse_rest_ticker(product_id, ticker, stats, self.mapper)
