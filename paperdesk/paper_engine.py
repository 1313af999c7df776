# paperdesk/paper_engine.py
import dataclasses
import logging
import math
import uuid
from typing import Callable, Dict, List, NamedTuple, Optional

from paperdesk.config import config
from paperdesk.datastructures import ClosedPosition, Order, Position
from paperdesk.errors import InvalidArgumentError
from paperdesk.utils import is_positive_number, now_ms

ORDER_SIDES = ('buy', 'sell')
ORDER_TYPES = ('market', 'limit')
CLOSE_REASONS = ('manual', 'stop', 'take-profit')


class PositionKey(NamedTuple):
    """At most one aggregated position exists per key."""
    symbol: str
    side: str
    is_paper: bool


def position_id(symbol: str, side: str, is_paper: bool) -> str:
    return f"{symbol}:{side}:{'paper' if is_paper else 'live'}"


def _pnl(side: str, entry_price: float, exit_price: float, quantity: float) -> float:
    if side == 'long':
        return (exit_price - entry_price) * quantity
    return (entry_price - exit_price) * quantity


def _require_positive(name: str, value):
    if not is_positive_number(value):
        raise InvalidArgumentError(f"{name} must be a finite number > 0, got {value!r}")


def _require_optional_positive(name: str, value):
    if value is not None:
        _require_positive(name, value)


class PaperTradingEngine:
    """
    Simulated order matching and position tracking, driven by price ticks.

    `process_tick(symbol, price)` runs three phases for the ticked symbol:
      1. Fill pending orders (market always, limit once the price has crossed).
      2. Mark open positions to market.
      3. Auto-close positions whose stop-loss or take-profit was hit
         (stop-loss is checked first and wins when both trigger).

    Buy fills extend the long slot and sell fills the short slot of a
    (symbol, paper/live) pair; opposite sides are never netted.

    Business-rule non-events (closing an unknown position, cancelling a
    non-pending order) are ignored. Malformed numeric input raises
    InvalidArgumentError before anything is mutated.
    """
    def __init__(self, is_paper_mode: bool = None, clock: Callable[[], float] = now_ms):
        self.is_paper_mode = config.PAPER_MODE if is_paper_mode is None else is_paper_mode
        self.live_trading_enabled = False
        self._clock = clock
        self._orders: List[Order] = []
        self._positions: Dict[PositionKey, Position] = {}
        self._closed_positions: List[ClosedPosition] = []

    # --- Settings ---

    def set_paper_mode(self, is_paper: bool):
        self.is_paper_mode = is_paper

    def set_live_trading_enabled(self, enabled: bool):
        self.live_trading_enabled = enabled

    # --- Orders ---

    def submit_order(
        self,
        symbol: str,
        side: str,
        order_type: str,
        quantity: float,
        price: float = None,
        stop_loss: float = None,
        take_profit: float = None,
        leverage: float = None,
        is_paper: bool = None,
        last_price: float = None,
        order_id: str = None,
    ) -> Order:
        """
        Creates a pending order and, when `last_price` is known, ticks the
        symbol right away so market orders (and crossed limits) fill at once.
        """
        if last_price is not None:
            _require_positive('last_price', last_price)
        order = Order(
            id=order_id or uuid.uuid4().hex,
            symbol=symbol,
            side=side,
            type=order_type,
            quantity=quantity,
            price=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            leverage=leverage,
            is_paper=self.is_paper_mode if is_paper is None else is_paper,
            created_at=self._clock(),
        )
        self.add_order(order)
        if last_price is not None:
            self.process_tick(symbol, last_price)
        return self.get_order(order.id)

    def add_order(self, order: Order) -> Order:
        self._validate_order(order)
        order = dataclasses.replace(order)
        self._orders.append(order)
        logging.info(
            f"[{order.symbol}] Accepted {order.side} {order.type} order {order.id}: "
            f"qty={order.quantity} price={order.price}"
        )
        return dataclasses.replace(order)

    def _validate_order(self, order: Order):
        if not isinstance(order.symbol, str) or not order.symbol:
            raise InvalidArgumentError(f"symbol must be a non-empty string, got {order.symbol!r}")
        if order.side not in ORDER_SIDES:
            raise InvalidArgumentError(f"side must be one of {ORDER_SIDES}, got {order.side!r}")
        if order.type not in ORDER_TYPES:
            raise InvalidArgumentError(f"type must be one of {ORDER_TYPES}, got {order.type!r}")
        if order.status != 'pending':
            raise InvalidArgumentError(f"new orders must be pending, got {order.status!r}")
        _require_positive('quantity', order.quantity)
        if order.type == 'limit':
            _require_positive('limit price', order.price)
        else:
            _require_optional_positive('price', order.price)
        _require_optional_positive('stop_loss', order.stop_loss)
        _require_optional_positive('take_profit', order.take_profit)
        if order.leverage is not None and not (
            isinstance(order.leverage, (int, float)) and math.isfinite(order.leverage) and order.leverage >= 1
        ):
            raise InvalidArgumentError(f"leverage must be a finite number >= 1, got {order.leverage!r}")
        if any(existing.id == order.id for existing in self._orders):
            raise InvalidArgumentError(f"duplicate order id {order.id!r}")

    def cancel_order(self, order_id: str):
        """Cancels a pending order. Unknown or already terminal orders are left alone."""
        for order in self._orders:
            if order.id == order_id:
                if order.status == 'pending':
                    order.status = 'cancelled'
                    logging.info(f"[{order.symbol}] Cancelled order {order_id}.")
                return

    # --- Tick processing ---

    def process_tick(self, symbol: str, price: float):
        _require_positive('tick price', price)
        now = self._clock()

        # Phase 1: order matching
        for order in self._orders:
            if order.status != 'pending' or order.symbol != symbol:
                continue
            fill_price = self._fill_price(order, price)
            if fill_price is None:
                continue
            order.status = 'filled'
            order.filled_quantity = order.quantity
            order.average_fill_price = fill_price
            order.filled_at = now
            logging.info(f"[{symbol}] Filled {order.side} {order.type} order {order.id}: {order.quantity} @ {fill_price}")
            self._apply_fill(order, fill_price, now)

        for key in [k for k in self._positions if k.symbol == symbol]:
            position = self._positions[key]
            # Phase 2: mark-to-market
            self._mark(position, price)
            # Phase 3: auto-close, stop before take-profit
            reason = self._exit_reason(position, price)
            if reason is not None:
                self._close(key, price, reason, now)

    @staticmethod
    def _fill_price(order: Order, price: float) -> Optional[float]:
        if order.type == 'market':
            return price
        if order.side == 'buy' and price <= order.price:
            return order.price
        if order.side == 'sell' and price >= order.price:
            return order.price
        return None

    def _apply_fill(self, order: Order, fill_price: float, now: float):
        side = 'long' if order.side == 'buy' else 'short'
        key = PositionKey(order.symbol, side, order.is_paper)
        position = self._positions.get(key)

        if position is None:
            self._positions[key] = Position(
                id=position_id(*key),
                symbol=order.symbol,
                side=side,
                quantity=order.quantity,
                entry_price=fill_price,
                current_price=fill_price,
                leverage=order.leverage or 1.0,
                stop_loss=order.stop_loss,
                take_profit=order.take_profit,
                is_paper=order.is_paper,
                opened_at=now,
            )
            logging.info(f"[{order.symbol}] Opened {side} position: {order.quantity} @ {fill_price}")
            return

        total_quantity = position.quantity + order.quantity
        position.entry_price = (
            position.entry_price * position.quantity + fill_price * order.quantity
        ) / total_quantity
        position.quantity = total_quantity
        if order.stop_loss is not None:
            position.stop_loss = order.stop_loss
        if order.take_profit is not None:
            position.take_profit = order.take_profit
        if order.leverage is not None:
            position.leverage = order.leverage
        position.opened_at = min(position.opened_at, now)
        logging.info(
            f"[{order.symbol}] Added to {side} position: size {position.quantity}, "
            f"avg entry {position.entry_price:.8g}"
        )

    @staticmethod
    def _mark(position: Position, price: float):
        position.current_price = price
        position.unrealized_pnl = _pnl(position.side, position.entry_price, price, position.quantity)
        cost = position.entry_price * position.quantity
        position.unrealized_pnl_percent = position.unrealized_pnl / cost * 100 if cost else 0.0

    @staticmethod
    def _exit_reason(position: Position, price: float) -> Optional[str]:
        long = position.side == 'long'
        if position.stop_loss is not None:
            if (long and price <= position.stop_loss) or (not long and price >= position.stop_loss):
                return 'stop'
        if position.take_profit is not None:
            if (long and price >= position.take_profit) or (not long and price <= position.take_profit):
                return 'take-profit'
        return None

    # --- Closing ---

    def close_position(self, position_id: str, exit_price: float, reason: str = 'manual') -> Optional[ClosedPosition]:
        """Closes the whole position at `exit_price`. Unknown ids are ignored and return None."""
        _require_positive('exit_price', exit_price)
        if reason not in CLOSE_REASONS:
            raise InvalidArgumentError(f"reason must be one of {CLOSE_REASONS}, got {reason!r}")
        for key, position in self._positions.items():
            if position.id == position_id:
                return self._close(key, exit_price, reason, self._clock())
        return None

    def _close(self, key: PositionKey, exit_price: float, reason: str, now: float) -> ClosedPosition:
        position = self._positions.pop(key)
        realized = position.realized_pnl + _pnl(position.side, position.entry_price, exit_price, position.quantity)
        closed = ClosedPosition(
            id=uuid.uuid4().hex,
            symbol=position.symbol,
            side=position.side,
            quantity=position.quantity,
            entry_price=position.entry_price,
            exit_price=exit_price,
            realized_pnl=realized,
            opened_at=position.opened_at,
            closed_at=now,
            is_paper=position.is_paper,
            leverage=position.leverage,
            stop_loss=position.stop_loss,
            take_profit=position.take_profit,
            close_reason=reason,
        )
        self._closed_positions.append(closed)
        logging.info(
            f"[{position.symbol}] Closed {position.side} position ({reason}) @ {exit_price}. "
            f"Realized PnL: {realized:.2f}"
        )
        return closed

    # --- Read access (copies; the engine owns the live objects) ---

    @property
    def orders(self) -> List[Order]:
        return [dataclasses.replace(o) for o in self._orders]

    @property
    def pending_orders(self) -> List[Order]:
        return [dataclasses.replace(o) for o in self._orders if o.status == 'pending']

    @property
    def positions(self) -> List[Position]:
        return [dataclasses.replace(p) for p in self._positions.values()]

    @property
    def closed_positions(self) -> List[ClosedPosition]:
        return list(self._closed_positions)

    def get_order(self, order_id: str) -> Optional[Order]:
        for order in self._orders:
            if order.id == order_id:
                return dataclasses.replace(order)
        return None

    def get_position(self, position_id: str) -> Optional[Position]:
        for position in self._positions.values():
            if position.id == position_id:
                return dataclasses.replace(position)
        return None
