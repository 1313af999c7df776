# paperdesk/config.py
import os
from dotenv import load_dotenv
import logging

# Load environment variables from a .env file for local development
load_dotenv()


def _as_list(value: str) -> list:
    return [item.strip() for item in value.split(',') if item.strip()]


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Main configuration class loading settings from environment variables."""
    # --- Exchange Selection ---
    EXCHANGE = os.getenv('EXCHANGE', 'binance').lower()
    SYMBOLS = _as_list(os.getenv('SYMBOLS', 'BTC-USDT'))
    CHANNELS = _as_list(os.getenv('CHANNELS', 'ticker,orderbook,trades'))

    # --- Connection Manager ---
    MAX_RECONNECT_ATTEMPTS = int(os.getenv('MAX_RECONNECT_ATTEMPTS', 10))
    RECONNECT_BASE_DELAY = float(os.getenv('RECONNECT_BASE_DELAY', 1.0)) # seconds
    RECONNECT_MAX_DELAY = float(os.getenv('RECONNECT_MAX_DELAY', 30.0)) # seconds
    HEARTBEAT_INTERVAL = float(os.getenv('HEARTBEAT_INTERVAL', 30.0))
    WS_PING_INTERVAL = float(os.getenv('WS_PING_INTERVAL', 20.0))

    # --- Connection Pool ---
    POOL_GRACE_DELAY = float(os.getenv('POOL_GRACE_DELAY', 0.25))

    # --- Market Data ---
    RECENT_TRADES_LIMIT = int(os.getenv('RECENT_TRADES_LIMIT', 100))
    METRICS_LOG_INTERVAL = float(os.getenv('METRICS_LOG_INTERVAL', 5.0))

    # --- Paper Trading ---
    PAPER_MODE = _as_bool(os.getenv('PAPER_MODE', 'true'))

    # --- Bybit ---
    BYBIT_TESTNET = _as_bool(os.getenv('BYBIT_TESTNET', 'false'))
    BYBIT_CATEGORY = os.getenv('BYBIT_CATEGORY', 'spot')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

    # --- Validation ---
    if EXCHANGE not in ('binance', 'coinbase', 'bybit'):
        logging.warning(f"EXCHANGE '{EXCHANGE}' is not a supported exchange.")

config = Config()
