# paperdesk/datastructures.py
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Optional, Tuple

Channel = Literal['ticker', 'orderbook', 'trades', 'candles']
CHANNELS: Tuple[str, ...] = ('ticker', 'orderbook', 'trades')

OrderSide = Literal['buy', 'sell']
OrderType = Literal['market', 'limit']
OrderStatus = Literal['pending', 'filled', 'cancelled']
PositionSide = Literal['long', 'short']
CloseReason = Literal['manual', 'stop', 'take-profit']
MarketType = Literal['spot', 'perpetual', 'future']


class ConnectionState(str, Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    CLOSED = 'closed'
    ERRORED = 'errored'
    RECONNECTING = 'reconnecting'


# --- Market data ---

@dataclass(frozen=True)
class Ticker:
    """Latest 24h summary for a symbol. Replaced wholesale on every update."""
    symbol: str
    last: float
    change_24h: float
    volume_24h: float
    high_24h: float
    low_24h: float
    bid: float
    ask: float
    timestamp: float

@dataclass(frozen=True)
class OrderBookLevel:
    price: float
    quantity: float

@dataclass(frozen=True)
class OrderBook:
    """Immutable book snapshot. Bids descend, asks ascend."""
    symbol: str
    bids: Tuple[OrderBookLevel, ...]
    asks: Tuple[OrderBookLevel, ...]
    timestamp: float

@dataclass(frozen=True)
class Trade:
    symbol: str
    price: float
    quantity: float
    side: OrderSide # aggressor side
    timestamp: float

@dataclass(frozen=True)
class Candle:
    timestamp: float
    open: float
    high: float
    low: float
    close: float
    volume: float

@dataclass(frozen=True)
class Instrument:
    symbol: str
    base_asset: str
    quote_asset: str
    type: MarketType
    min_quantity: float
    max_quantity: float
    quantity_step: float
    min_price: float
    max_price: float
    price_step: float

@dataclass
class ConnectionMetrics:
    latency: float = 0.0 # ms, one-way
    reconnects: int = 0
    messages_received: int = 0
    last_heartbeat: float = 0.0


# --- Paper trading ---

@dataclass
class Order:
    """A paper order. Status moves pending -> filled or pending -> cancelled only."""
    id: str
    symbol: str
    side: OrderSide
    type: OrderType
    quantity: float
    price: Optional[float] = None # Required for LIMIT orders
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    leverage: Optional[float] = None
    status: OrderStatus = 'pending'
    filled_quantity: float = 0.0
    average_fill_price: float = 0.0
    is_paper: bool = True
    created_at: float = 0.0
    filled_at: Optional[float] = None

@dataclass
class Position:
    id: str
    symbol: str
    side: PositionSide
    quantity: float
    entry_price: float
    current_price: float
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0
    realized_pnl: float = 0.0
    leverage: float = 1.0
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    is_paper: bool = True
    opened_at: float = 0.0

@dataclass(frozen=True)
class ClosedPosition:
    id: str
    symbol: str
    side: PositionSide
    quantity: float
    entry_price: float
    exit_price: float
    realized_pnl: float
    opened_at: float
    closed_at: float
    is_paper: bool
    leverage: float
    stop_loss: Optional[float]
    take_profit: Optional[float]
    close_reason: CloseReason = 'manual'

