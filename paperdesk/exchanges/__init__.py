# paperdesk/exchanges/__init__.py
from typing import Callable, Dict, List

from paperdesk.errors import UnknownExchangeError
from paperdesk.exchanges.base import StreamingAdapter
from paperdesk.exchanges.binance import BinanceAdapter
from paperdesk.exchanges.bybit import BybitAdapter
from paperdesk.exchanges.coinbase import CoinbaseAdapter

ADAPTERS: Dict[str, Callable[..., StreamingAdapter]] = {
    'binance': BinanceAdapter,
    'coinbase': CoinbaseAdapter,
    'bybit': BybitAdapter,
}


def get_exchange_adapter(name: str, **kwargs) -> StreamingAdapter:
    """Creates a fresh adapter for `name` (case-insensitive)."""
    factory = ADAPTERS.get(name.lower())
    if factory is None:
        raise UnknownExchangeError(name)
    return factory(**kwargs)


def get_available_exchanges() -> List[str]:
    return list(ADAPTERS)


__all__ = [
    'BinanceAdapter', 'BybitAdapter', 'CoinbaseAdapter', 'StreamingAdapter',
    'get_exchange_adapter', 'get_available_exchanges',
]
