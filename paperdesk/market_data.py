# paperdesk/market_data.py
import logging
from typing import Dict, List, Optional, Set

from paperdesk.config import config
from paperdesk.datastructures import Instrument, OrderBook, Ticker, Trade


class MarketDataCache:
    """
    Latest-value store for one exchange's market data, keyed by canonical symbol.

    Writes are last-write-wins by arrival order; embedded timestamps are not
    compared, so a late out-of-order message can overwrite a newer one.
    """
    def __init__(self, trades_limit: int = None):
        self.trades_limit = config.RECENT_TRADES_LIMIT if trades_limit is None else trades_limit
        self._tickers: Dict[str, Ticker] = {}
        self._order_books: Dict[str, OrderBook] = {}
        self._recent_trades: Dict[str, List[Trade]] = {}
        self._instruments: List[Instrument] = []
        self._selected_symbols: Set[str] = set()

    # --- Writers ---

    def set_ticker(self, ticker: Ticker):
        self._tickers[ticker.symbol] = ticker

    def set_order_book(self, order_book: OrderBook):
        self._order_books[order_book.symbol] = order_book

    def add_trade(self, trade: Trade):
        """Prepends `trade` and keeps only the newest `trades_limit` for its symbol."""
        existing = self._recent_trades.get(trade.symbol, [])
        self._recent_trades[trade.symbol] = ([trade] + existing)[:self.trades_limit]

    def set_instruments(self, instruments: List[Instrument]):
        self._instruments = list(instruments)

    def add_selected_symbol(self, symbol: str):
        self._selected_symbols.add(symbol)

    def remove_selected_symbol(self, symbol: str):
        self._selected_symbols.discard(symbol)

    def clear_selected_symbols(self):
        self._selected_symbols = set()

    def reset(self):
        """Drops everything; used when switching exchanges."""
        logging.info("MARKET DATA: Resetting cache.")
        self._tickers = {}
        self._order_books = {}
        self._recent_trades = {}
        self._instruments = []
        self._selected_symbols = set()

    # --- Readers ---

    def get_ticker(self, symbol: str) -> Optional[Ticker]:
        return self._tickers.get(symbol)

    def get_order_book(self, symbol: str) -> Optional[OrderBook]:
        return self._order_books.get(symbol)

    def get_recent_trades(self, symbol: str) -> List[Trade]:
        return list(self._recent_trades.get(symbol, []))

    @property
    def tickers(self) -> Dict[str, Ticker]:
        return dict(self._tickers)

    @property
    def instruments(self) -> List[Instrument]:
        return list(self._instruments)

    @property
    def selected_symbols(self) -> Set[str]:
        return set(self._selected_symbols)
