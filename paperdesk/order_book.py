# paperdesk/order_book.py
import bisect
import logging
import math
from typing import Iterable, List, Tuple

from paperdesk.datastructures import OrderBook, OrderBookLevel


class BookSide:
    """
    One side of a book, kept sorted by price.

    Bids are stored descending and asks ascending. Levels live in two parallel
    lists: a sort key per level (the negated price for bids) and the level
    itself, so every lookup is a binary search on the keys.
    """
    def __init__(self, descending: bool):
        self.descending = descending
        self._keys: List[float] = []
        self._levels: List[OrderBookLevel] = []

    def _key(self, price: float) -> float:
        return -price if self.descending else price

    def _index(self, price: float) -> int:
        key = self._key(price)
        i = bisect.bisect_left(self._keys, key)
        if i < len(self._keys) and self._keys[i] == key:
            return i
        return -1

    def upsert(self, price: float, quantity: float):
        """
        Overwrites the quantity at an existing price or inserts a new level in order.

        Non-finite prices cannot be ordered and leave the side unchanged. The
        quantity is stored as given, NaN included.
        """
        if not math.isfinite(price):
            logging.debug(f"Skipping book level with non-finite price {price!r}")
            return
        key = self._key(price)
        i = bisect.bisect_left(self._keys, key)
        if i < len(self._keys) and self._keys[i] == key:
            self._levels[i] = OrderBookLevel(price, quantity)
        else:
            self._keys.insert(i, key)
            self._levels.insert(i, OrderBookLevel(price, quantity))

    def remove(self, price: float) -> bool:
        i = self._index(price)
        if i == -1:
            return False
        del self._keys[i]
        del self._levels[i]
        return True

    def apply(self, price: float, quantity: float):
        """Applies one delta: an exact zero quantity removes the level."""
        if not math.isfinite(price):
            logging.debug(f"Skipping book delta with non-finite price {price!r}")
            return
        if quantity == 0:
            self.remove(price)
        else:
            self.upsert(price, quantity)

    def replace(self, levels: Iterable[Tuple[float, float]]):
        self._keys, self._levels = [], []
        for price, quantity in levels:
            self.upsert(price, quantity)

    def levels(self) -> Tuple[OrderBookLevel, ...]:
        return tuple(self._levels)

    def __len__(self):
        return len(self._levels)


class LocalOrderBook:
    """Mutable book for exchanges that stream incremental updates."""
    def __init__(self, symbol: str):
        self.symbol = symbol
        self.bids = BookSide(descending=True)
        self.asks = BookSide(descending=False)
        self.timestamp = 0.0

    def apply_snapshot(self, bids, asks, timestamp: float):
        self.bids.replace(bids)
        self.asks.replace(asks)
        self.timestamp = timestamp

    def apply_delta(self, is_bid: bool, price: float, size: float):
        book_side = self.bids if is_bid else self.asks
        book_side.apply(price, size)

    def snapshot(self) -> OrderBook:
        return OrderBook(
            symbol=self.symbol,
            bids=self.bids.levels(),
            asks=self.asks.levels(),
            timestamp=self.timestamp,
        )
