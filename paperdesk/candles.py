# paperdesk/candles.py
from typing import List

import pandas as pd

from paperdesk.datastructures import Candle

DEFAULT_INTERVAL = '1h'

# Canonical interval token -> exchange-native granularity
BINANCE_INTERVALS = {
    '1m': '1m', '5m': '5m', '15m': '15m', '30m': '30m',
    '1h': '1h', '4h': '4h', '6h': '6h', '1d': '1d', '1w': '1w',
}
COINBASE_GRANULARITY = { # seconds
    '1m': 60, '5m': 300, '15m': 900,
    '1h': 3600, '6h': 21600, '1d': 86400,
}
BYBIT_INTERVALS = {
    '1m': '1', '5m': '5', '15m': '15', '30m': '30',
    '1h': '60', '4h': '240', '6h': '360', '1d': 'D', '1w': 'W',
}


def resolve_interval(table: dict, interval: str):
    """Maps a canonical token through `table`; unknown tokens fall back to the 1-hour bucket."""
    return table.get(interval, table[DEFAULT_INTERVAL])


def candles_to_frame(candles: List[Candle]) -> pd.DataFrame:
    """OHLCV frame indexed by UTC timestamp, ascending."""
    df = pd.DataFrame(
        [(c.timestamp, c.open, c.high, c.low, c.close, c.volume) for c in candles],
        columns=['timestamp', 'open', 'high', 'low', 'close', 'volume'],
    )
    df['timestamp'] = pd.to_datetime(df['timestamp'], unit='ms', utc=True)
    df = df.set_index('timestamp').sort_index()
    for col in ['open', 'high', 'low', 'close', 'volume']:
        df[col] = pd.to_numeric(df[col])
    return df
