# paperdesk/connection_pool.py
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional

from paperdesk.config import config
from paperdesk.datastructures import ConnectionState
from paperdesk.errors import ExchangeConnectionError
from paperdesk.exchanges import get_exchange_adapter
from paperdesk.exchanges.base import StreamingAdapter


class _PoolEntry:
    def __init__(self, adapter: StreamingAdapter):
        self.adapter = adapter
        self.subscribers = 0
        self.connect_task: Optional[asyncio.Task] = None
        self.cleanup_task: Optional[asyncio.Task] = None


class ExchangeLease:
    """
    One consumer's claim on a pooled exchange connection.

    `released` doubles as the cancellation marker: a consumer that detaches
    while the shared connect is still running gets None from
    `wait_connected()` instead of the adapter.
    """
    def __init__(self, pool: 'ConnectionPool', name: str, entry: _PoolEntry):
        self._pool = pool
        self._entry = entry
        self.name = name
        self.released = False

    @property
    def adapter(self) -> StreamingAdapter:
        return self._entry.adapter

    async def wait_connected(self) -> Optional[StreamingAdapter]:
        """Awaits the shared connect. Raises ExchangeConnectionError if it failed."""
        task = self._entry.connect_task
        if task is not None:
            # Shielded so one consumer's cancellation never aborts the shared connect
            await asyncio.shield(task)
        if self.released:
            return None
        return self._entry.adapter

    def release(self):
        if self.released:
            return
        self.released = True
        self._pool._release(self.name, self._entry)


class ConnectionPool:
    """
    Shares one adapter per exchange between any number of consumers.

    - Concurrent leases on the same exchange collapse into one in-flight connect.
    - The socket is closed only after the last lease is released and
      `grace_delay` seconds pass without a new lease.
    - `on_create` is called once for every newly created adapter, which is the
      place to register event callbacks.
    """
    def __init__(
        self,
        factory: Callable[[str], StreamingAdapter] = get_exchange_adapter,
        grace_delay: float = None,
        on_create: Callable[[StreamingAdapter], None] = None,
    ):
        self._factory = factory
        self.grace_delay = config.POOL_GRACE_DELAY if grace_delay is None else grace_delay
        self._on_create = on_create
        self._entries: Dict[str, _PoolEntry] = {}

    def lease(self, name: str) -> ExchangeLease:
        name = name.lower()
        entry = self._entries.get(name)
        if entry is None:
            adapter = self._factory(name)
            entry = _PoolEntry(adapter)
            self._entries[name] = entry
            logging.info(f"POOL: Created adapter for {name}.")
            if self._on_create is not None:
                self._on_create(adapter)

        if entry.cleanup_task is not None:
            entry.cleanup_task.cancel()
            entry.cleanup_task = None

        entry.subscribers += 1
        if self._needs_connect(entry):
            entry.connect_task = asyncio.create_task(self._connect(name, entry))
        return ExchangeLease(self, name, entry)

    @staticmethod
    def _needs_connect(entry: _PoolEntry) -> bool:
        adapter = entry.adapter
        if adapter.is_connected() or adapter.state is ConnectionState.RECONNECTING:
            return False
        return entry.connect_task is None or entry.connect_task.done()

    async def _connect(self, name: str, entry: _PoolEntry):
        logging.info(f"POOL: Connecting to {name}...")
        await entry.adapter.connect()

    @asynccontextmanager
    async def connection(self, name: str):
        lease = self.lease(name)
        try:
            yield await lease.wait_connected()
        finally:
            lease.release()

    def _release(self, name: str, entry: _PoolEntry):
        entry.subscribers -= 1
        if entry.subscribers > 0:
            return
        entry.cleanup_task = asyncio.create_task(self._teardown_later(name, entry))

    async def _teardown_later(self, name: str, entry: _PoolEntry):
        await asyncio.sleep(self.grace_delay)
        if entry.subscribers > 0 or self._entries.get(name) is not entry:
            return
        del self._entries[name]
        entry.cleanup_task = None
        await self._teardown(name, entry)

    async def _teardown(self, name: str, entry: _PoolEntry):
        task = entry.connect_task
        if task is not None and not task.done():
            # Let an in-flight connect finish so its socket can be closed
            try:
                await task
            except ExchangeConnectionError as e:
                logging.info(f"POOL: Pending connect to {name} failed during teardown: {e}")
        logging.info(f"POOL: Last consumer of {name} detached. Disconnecting.")
        await entry.adapter.disconnect()

    def get(self, name: str) -> Optional[StreamingAdapter]:
        entry = self._entries.get(name.lower())
        return entry.adapter if entry else None

    def subscriber_count(self, name: str) -> int:
        entry = self._entries.get(name.lower())
        return entry.subscribers if entry else 0

    async def close(self):
        """Disconnects every adapter immediately, ignoring grace delays."""
        entries, self._entries = self._entries, {}
        for name, entry in entries.items():
            if entry.cleanup_task is not None:
                entry.cleanup_task.cancel()
            await self._teardown(name, entry)
