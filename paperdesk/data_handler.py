# paperdesk/data_handler.py
import logging

from paperdesk.datastructures import OrderBook, Ticker, Trade
from paperdesk.errors import InvalidArgumentError
from paperdesk.exchanges.base import StreamingAdapter
from paperdesk.market_data import MarketDataCache
from paperdesk.paper_engine import PaperTradingEngine


class MarketDataHandler:
    """
    Routes normalized events from an adapter into the market data cache and
    forwards every ticker's last price to the paper trading engine.
    """
    def __init__(self, cache: MarketDataCache, engine: PaperTradingEngine):
        self.cache = cache
        self.engine = engine

    def attach(self, adapter: StreamingAdapter):
        """Registers the handler's callbacks on `adapter`. Call once per adapter."""
        logging.info(f"DATA HANDLER: Attaching to {adapter.name}")
        adapter.on_ticker(self.handle_ticker)
        adapter.on_order_book(self.handle_order_book)
        adapter.on_trade(self.handle_trade)

    def handle_ticker(self, ticker: Ticker):
        self.cache.set_ticker(ticker)
        try:
            self.engine.process_tick(ticker.symbol, ticker.last)
        except InvalidArgumentError as e:
            # Malformed numeric fields arrive as NaN; the cache keeps them, the engine does not
            logging.warning(f"[{ticker.symbol}] Dropped tick for paper engine: {e}")

    def handle_order_book(self, order_book: OrderBook):
        self.cache.set_order_book(order_book)

    def handle_trade(self, trade: Trade):
        self.cache.add_trade(trade)
