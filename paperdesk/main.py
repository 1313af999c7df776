# paperdesk/main.py
import asyncio
import logging
import signal
from typing import Set

from paperdesk.candles import candles_to_frame
from paperdesk.config import config
from paperdesk.connection_pool import ConnectionPool
from paperdesk.data_handler import MarketDataHandler
from paperdesk.errors import ExchangeAPIError, ExchangeConnectionError
from paperdesk.exchanges.base import StreamingAdapter
from paperdesk.logger import setup_logging
from paperdesk.market_data import MarketDataCache
from paperdesk.paper_engine import PaperTradingEngine

running_tasks: Set[asyncio.Task] = set()


def handle_shutdown(sig):
    logging.info(f"Received shutdown signal {sig.name}. Stopping...")
    for task in running_tasks:
        task.cancel()


async def log_candle_summary(adapter: StreamingAdapter, symbol: str):
    """Fetches recent hourly candles once so the log shows where the market is."""
    try:
        candles = await adapter.get_candles(symbol, '1h', 24)
    except ExchangeAPIError as e:
        logging.error(f"[{symbol}] Could not fetch candles: {e}")
        return
    if not candles:
        logging.warning(f"[{symbol}] No candles returned.")
        return
    df = candles_to_frame(candles)
    logging.info(
        f"[{symbol}] 24h range {df['low'].min():.8g} - {df['high'].max():.8g}, "
        f"last close {df['close'].iloc[-1]:.8g}, volume {df['volume'].sum():.8g}"
    )


async def log_metrics(adapter: StreamingAdapter, engine: PaperTradingEngine):
    while True:
        await asyncio.sleep(config.METRICS_LOG_INTERVAL)
        if not adapter.is_connected():
            logging.warning(f"[{adapter.name}] Not connected (state: {adapter.state.value}).")
            continue
        m = adapter.get_metrics()
        logging.info(
            f"[{adapter.name}] messages={m.messages_received} latency={m.latency:.0f}ms "
            f"reconnects={m.reconnects} open_positions={len(engine.positions)}"
        )


async def main():
    setup_logging()
    logging.info(f"Initializing paperdesk on {config.EXCHANGE} for {config.SYMBOLS}...")

    cache = MarketDataCache()
    engine = PaperTradingEngine()
    handler = MarketDataHandler(cache, engine)
    pool = ConnectionPool(on_create=handler.attach)

    try:
        async with pool.connection(config.EXCHANGE) as adapter:
            for symbol in config.SYMBOLS:
                cache.add_selected_symbol(symbol)
                await log_candle_summary(adapter, symbol)
            await adapter.subscribe(config.SYMBOLS, config.CHANNELS)

            task = asyncio.create_task(log_metrics(adapter, engine))
            running_tasks.add(task)
            task.add_done_callback(running_tasks.discard)
            try:
                await asyncio.gather(task)
            except asyncio.CancelledError:
                logging.info("Main task group cancelled. Shutting down.")
    except ExchangeConnectionError as e:
        logging.critical(f"Could not connect: {e}")
    finally:
        await pool.close()


def run():
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_shutdown, sig)
    try:
        loop.run_until_complete(main())
    finally:
        logging.info("Shutdown complete.")
        loop.close()


if __name__ == "__main__":
    run()
