# paperdesk/symbols.py
"""
Canonical <-> exchange-native symbol translation.

Canonical symbols are always `BASE-QUOTE` (e.g. `BTC-USDT`). Native forms
never leave the adapter layer.
"""

# Longest suffixes first so that e.g. FDUSD wins over USD.
DEFAULT_QUOTES = (
    'FDUSD', 'USDT', 'USDC', 'BUSD', 'TUSD', 'DAI',
    'USD', 'EUR', 'GBP', 'TRY', 'BRL', 'JPY',
    'BTC', 'ETH', 'BNB',
)


class ConcatSymbolMapper:
    """
    Exchanges that glue base and quote together (`BTCUSDT`).

    Decoding is a suffix match against a list of known quote assets. A native
    symbol whose quote is not in the list comes back unchanged, and a base
    that itself ends in a known quote (e.g. a `XBTC` base) may split at the
    wrong place. Both cases are inherent to the native format.
    """
    def __init__(self, quotes=DEFAULT_QUOTES):
        self.quotes = tuple(sorted(quotes, key=len, reverse=True))

    def to_exchange(self, canonical: str) -> str:
        return canonical.replace('-', '')

    def from_exchange(self, native: str) -> str:
        native = native.upper()
        for quote in self.quotes:
            if native.endswith(quote) and len(native) > len(quote):
                return f"{native[:-len(quote)]}-{quote}"
        return native


class DashSymbolMapper:
    """Exchanges whose native ids already are `BASE-QUOTE` (Coinbase)."""

    def to_exchange(self, canonical: str) -> str:
        return canonical

    def from_exchange(self, native: str) -> str:
        return native
