"""
Profit Locking Module
=====================
Paper position lifecycle and multi-condition exit management.

Every position is opened with one profit-lock method (chosen from the
signal's strategy) and then re-evaluated on each price tick:

1. Mark-to-market: PnL, peak PnL, drawdown from peak
2. Time held and edge decay exp(-rate * hours)
3. Trailing-stop ratchet (never loosens)
4. Exit checks, OR-combined: trailing stop, take profit, time limit,
   edge decay, max drawdown while losing

``exit_position`` is the single removal path. It runs at most once per
position and fans the closed record out to the registered callbacks.
"""

import math
import numpy as np
from collections import deque
from dataclasses import dataclass, fields, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, Dict, List, Mapping, Optional, Union
import logging
import threading

from ..config import (
    DEFAULT_PROFIT_LOCK_METHOD,
    DEFAULT_STRATEGY_METHODS,
    ProfitLockConfig,
    ProfitLockMethod,
    TradingConfig,
    build_profit_lock_configs,
)
from ..alpha.strategies import SignalAction, TradingSignal
from ..persistence.clamping import MAX_DRAWDOWN_CLAMP, clamp_position

logger = logging.getLogger(__name__)


class PositionSide(Enum):
    LONG = "long"
    SHORT = "short"


def format_time_held(seconds: float) -> str:
    """Display string: '{h}h {m}m' or '{m}m'."""
    minutes = int(max(seconds, 0) // 60)
    hours = minutes // 60
    return f"{hours}h {minutes % 60}m" if hours > 0 else f"{minutes}m"


@dataclass
class Position:
    """Open paper position. Mutated on every tick while live."""
    id: str
    symbol: str
    side: PositionSide
    size: float
    entry_price: float
    current_price: float
    trailing_stop_price: float
    take_profit_price: float
    profit_lock_method: ProfitLockMethod
    entry_time: datetime
    atr_value: float
    original_signal: TradingSignal
    lock_config: ProfitLockConfig
    unrealized_pnl: float = 0.0
    unrealized_pnl_pct: float = 0.0
    edge_decay_score: float = 1.0
    max_drawdown_from_peak: float = 0.0
    peak_pnl: float = 0.0
    time_held: str = "0m"
    time_held_minutes: float = 0.0

    @property
    def is_long(self) -> bool:
        return self.side == PositionSide.LONG

    @property
    def signal_id(self) -> Optional[str]:
        return self.original_signal.signal_id

    @property
    def notional(self) -> float:
        return self.entry_price * self.size

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'symbol': self.symbol,
            'side': self.side.value,
            'size': self.size,
            'entry_price': self.entry_price,
            'current_price': self.current_price,
            'unrealized_pnl': self.unrealized_pnl,
            'unrealized_pnl_pct': self.unrealized_pnl_pct,
            'trailing_stop_price': self.trailing_stop_price,
            'take_profit_price': self.take_profit_price,
            'profit_lock_method': self.profit_lock_method.value,
            'time_held': self.time_held,
            'entry_time': self.entry_time.isoformat(),
            'edge_decay_score': self.edge_decay_score,
            'max_drawdown_from_peak': self.max_drawdown_from_peak,
            'peak_pnl': self.peak_pnl,
            'atr_value': self.atr_value,
            'strategy': self.original_signal.strategy,
            'signal_id': self.signal_id
        }


@dataclass(frozen=True)
class ClosedPosition:
    """Final state of a position at exit. Never mutated."""
    id: str
    symbol: str
    side: PositionSide
    size: float
    entry_price: float
    current_price: float
    trailing_stop_price: float
    take_profit_price: float
    profit_lock_method: ProfitLockMethod
    entry_time: datetime
    atr_value: float
    original_signal: TradingSignal
    lock_config: ProfitLockConfig
    unrealized_pnl: float
    unrealized_pnl_pct: float
    edge_decay_score: float
    max_drawdown_from_peak: float
    peak_pnl: float
    time_held: str
    time_held_minutes: float
    exit_time: datetime
    exit_price: float
    exit_reason: str
    realized_pnl: float

    @classmethod
    def from_position(cls, position: Position, exit_time: datetime, reason: str) -> 'ClosedPosition':
        values = {f.name: getattr(position, f.name) for f in fields(Position)}
        return cls(
            **values,
            exit_time=exit_time,
            exit_price=position.current_price,
            exit_reason=reason,
            realized_pnl=position.unrealized_pnl
        )

    @property
    def is_win(self) -> bool:
        return self.realized_pnl > 0

    @property
    def strategy(self) -> str:
        return self.original_signal.strategy

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'symbol': self.symbol,
            'side': self.side.value,
            'size': self.size,
            'entry_price': self.entry_price,
            'exit_price': self.exit_price,
            'realized_pnl': self.realized_pnl,
            'realized_pnl_pct': self.unrealized_pnl_pct,
            'profit_lock_method': self.profit_lock_method.value,
            'strategy': self.strategy,
            'entry_time': self.entry_time.isoformat(),
            'exit_time': self.exit_time.isoformat(),
            'time_held': self.time_held,
            'exit_reason': self.exit_reason
        }


ExitCallback = Callable[[ClosedPosition, str], None]


class PositionSizer:
    """Position sizing algorithms."""

    @staticmethod
    def fixed_fractional(capital: float, risk_pct: float, entry_price: float,
                         stop_loss_price: float) -> float:
        """
        Fixed Fractional position sizing.

        Risk a fixed percentage of capital per trade. Crypto sizes are
        fractional, so nothing is rounded.
        """
        if entry_price <= 0 or stop_loss_price <= 0:
            return 0.0

        risk_per_unit = abs(entry_price - stop_loss_price)
        if risk_per_unit <= 0:
            return 0.0

        return max(capital * risk_pct / risk_per_unit, 0.0)

    @staticmethod
    def confidence_scaled(capital: float, risk_pct: float, entry_price: float,
                          stop_loss_price: float, confidence: float) -> float:
        """
        Fixed fractional size scaled by signal confidence.

        Notional is capped at the available capital.
        """
        quantity = PositionSizer.fixed_fractional(capital, risk_pct, entry_price, stop_loss_price)
        quantity *= min(max(confidence, 0.0), 1.0)
        if entry_price > 0:
            quantity = min(quantity, capital / entry_price)
        return quantity


class ProfitLockingEngine:
    """
    Owns the live position set and evaluates exits every tick.

    The position set, price history and closed history are guarded by one
    lock. Persistence submits and exit callbacks always run after the lock
    is released.
    """

    def __init__(self, config: Optional[TradingConfig] = None, sink=None,
                 clock: Callable[[], datetime] = datetime.now,
                 strategy_methods: Optional[Mapping[str, ProfitLockMethod]] = None,
                 profit_lock_configs: Optional[Mapping[ProfitLockMethod, ProfitLockConfig]] = None):
        self.config = config or TradingConfig()
        self.sink = sink
        self.clock = clock
        self.strategy_methods = (strategy_methods if strategy_methods is not None
                                 else DEFAULT_STRATEGY_METHODS)

        self._fixed_lock_configs = profit_lock_configs is not None
        self.profit_lock_configs = profit_lock_configs or build_profit_lock_configs(self.config)

        self._positions: Dict[str, Position] = {}
        self._closed: Deque[ClosedPosition] = deque(maxlen=self.config.closed_history_cap)
        self._price_history: Dict[str, Deque[float]] = {}
        self._exit_callbacks: List[ExitCallback] = []

        self.lock = threading.RLock()

        logger.info(f"ProfitLockingEngine initialized with max {self.config.max_positions} positions")

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    def select_profit_lock_method(self, signal: TradingSignal) -> ProfitLockMethod:
        return self.strategy_methods.get(signal.strategy, DEFAULT_PROFIT_LOCK_METHOD)

    def initial_stop_price(self, price: float, side: PositionSide) -> float:
        """Entry stop a fixed percentage away from the entry price."""
        distance = price * self.config.stop_loss_percent
        return price - distance if side == PositionSide.LONG else price + distance

    @staticmethod
    def take_profit_price(price: float, side: PositionSide, atr: float,
                          lock_config: ProfitLockConfig) -> float:
        distance = atr * lock_config.atr_multiplier * 2
        return price + distance if side == PositionSide.LONG else price - distance

    def calculate_atr(self, symbol: str, fallback_price: float) -> float:
        """
        ATR proxy: mean absolute tick-to-tick move over the lookback.

        Falls back to a fixed fraction of the latest known price while the
        lookback is not yet filled.
        """
        history = self._price_history.get(symbol)
        period = self.config.atr_period
        if not history or len(history) < max(period, 2):
            base = history[-1] if history else fallback_price
            return base * self.config.atr_fallback_percent

        recent = np.asarray(list(history)[-period:], dtype=float)
        return float(np.abs(np.diff(recent)).mean())

    def _new_position_id(self, symbol: str, now: datetime) -> str:
        base = f"{symbol}_{int(now.timestamp() * 1000)}"
        position_id, n = base, 1
        while position_id in self._positions:
            position_id = f"{base}_{n}"
            n += 1
        return position_id

    def add_position(self, signal: TradingSignal, size: float) -> Optional[str]:
        """
        Open a position from a signal.

        Returns the new position id, or None when the signal is not
        directional, the size is not positive or a position cap is reached.
        """
        if not signal.is_directional:
            logger.warning(f"Ignoring {signal.action.value} signal for {signal.symbol}")
            return None
        if size <= 0 or signal.price <= 0:
            logger.warning(f"Rejecting position for {signal.symbol}: size {size}, price {signal.price}")
            return None

        now = self.clock()
        with self.lock:
            if len(self._positions) >= self.config.max_positions:
                logger.info(f"Maximum positions reached ({self.config.max_positions}), "
                            f"rejecting new position")
                return None

            per_symbol = sum(1 for p in self._positions.values() if p.symbol == signal.symbol)
            if per_symbol >= self.config.max_positions_per_symbol:
                logger.info(f"Maximum positions for {signal.symbol} reached "
                            f"({self.config.max_positions_per_symbol}), rejecting new position")
                return None

            side = PositionSide.LONG if signal.action == SignalAction.BUY else PositionSide.SHORT
            method = self.select_profit_lock_method(signal)
            lock_config = self.profit_lock_configs[method]
            atr = self.calculate_atr(signal.symbol, signal.price)

            position = Position(
                id=self._new_position_id(signal.symbol, now),
                symbol=signal.symbol,
                side=side,
                size=size,
                entry_price=signal.price,
                current_price=signal.price,
                trailing_stop_price=self.initial_stop_price(signal.price, side),
                take_profit_price=self.take_profit_price(signal.price, side, atr, lock_config),
                profit_lock_method=method,
                entry_time=now,
                atr_value=atr,
                original_signal=signal,
                lock_config=lock_config
            )
            self._positions[position.id] = position
            open_count = len(self._positions)
            snapshot = clamp_position(position)

        logger.info(f"Opened {side.value} {position.id} size {size:.6f} @ {signal.price:.4f} "
                    f"using {method.value} ({open_count}/{self.config.max_positions})")

        if self.sink is not None:
            self.sink.submit('save_position', snapshot, signal.signal_id)

        return position.id

    # ------------------------------------------------------------------
    # Per-tick update
    # ------------------------------------------------------------------

    def _record_price(self, symbol: str, price: float):
        history = self._price_history.get(symbol)
        if history is None:
            history = deque(maxlen=self.config.atr_period * 5)
            self._price_history[symbol] = history
        history.append(price)

    def update_positions(self, current_prices: Mapping[str, float]) -> List[ClosedPosition]:
        """
        Mark every live position with a fresh price and close the ones whose
        exit conditions fire. Returns the positions closed on this tick.
        """
        now = self.clock()
        updated: List[Position] = []
        exits: List[tuple] = []

        with self.lock:
            prices = {symbol: float(price) for symbol, price in current_prices.items()
                      if price is not None and math.isfinite(price) and price > 0}
            for symbol, price in prices.items():
                self._record_price(symbol, price)

            for position in self._positions.values():
                price = prices.get(position.symbol)
                if price is None:
                    continue
                self._mark_position(position, price, now)
                updated.append(clamp_position(position))

                reasons = self.check_exit_conditions(position, now)
                if reasons:
                    exits.append((position.id, ", ".join(reasons)))

        if self.sink is not None:
            for snapshot in updated:
                self.sink.submit('update_position', snapshot)

        closed = []
        for position_id, reason in exits:
            record = self.exit_position(position_id, reason)
            if record is not None:
                closed.append(record)
        return closed

    def _mark_position(self, position: Position, price: float, now: datetime):
        position.current_price = price

        price_diff = price - position.entry_price
        position.unrealized_pnl = price_diff * position.size if position.is_long else -price_diff * position.size
        notional = position.notional
        position.unrealized_pnl_pct = position.unrealized_pnl / notional * 100 if notional > 0 else 0.0

        if position.unrealized_pnl > position.peak_pnl:
            position.peak_pnl = position.unrealized_pnl

        drawdown = ((position.peak_pnl - position.unrealized_pnl) / position.peak_pnl
                    if position.peak_pnl > 0 else 0.0)
        drawdown = min(max(drawdown, 0.0), MAX_DRAWDOWN_CLAMP)
        position.max_drawdown_from_peak = max(position.max_drawdown_from_peak, drawdown)

        elapsed = (now - position.entry_time).total_seconds()
        position.time_held = format_time_held(elapsed)
        position.time_held_minutes = elapsed / 60
        position.edge_decay_score = self.calculate_edge_decay(position, now)

        self._update_trailing_stop(position)

    def calculate_edge_decay(self, position: Position, now: Optional[datetime] = None) -> float:
        now = now or self.clock()
        hours = max((now - position.entry_time).total_seconds(), 0) / 3600
        return math.exp(-self.config.edge_decay_rate * hours)

    def _update_trailing_stop(self, position: Position):
        trailing = position.lock_config.trailing_percent
        if position.is_long:
            new_stop = position.current_price * (1 - trailing)
            if new_stop > position.trailing_stop_price:
                position.trailing_stop_price = new_stop
        else:
            new_stop = position.current_price * (1 + trailing)
            if new_stop < position.trailing_stop_price:
                position.trailing_stop_price = new_stop

    # ------------------------------------------------------------------
    # Exit conditions
    # ------------------------------------------------------------------

    @staticmethod
    def is_trailing_stop_triggered(position) -> bool:
        if position.is_long:
            return position.current_price <= position.trailing_stop_price
        return position.current_price >= position.trailing_stop_price

    @staticmethod
    def is_take_profit_triggered(position) -> bool:
        if position.is_long:
            return position.current_price >= position.take_profit_price
        return position.current_price <= position.take_profit_price

    def is_time_based_exit_triggered(self, position, lock_config: ProfitLockConfig,
                                     now: Optional[datetime] = None) -> bool:
        if lock_config.time_based_exit_minutes <= 0:
            return False
        now = now or self.clock()
        minutes = (now - position.entry_time).total_seconds() / 60
        return minutes >= lock_config.time_based_exit_minutes

    def check_exit_conditions(self, position: Position, now: Optional[datetime] = None) -> List[str]:
        """Reasons the position should close now; empty while it should stay open."""
        now = now or self.clock()
        age = (now - position.entry_time).total_seconds()
        if age < self.config.min_position_age_seconds:
            logger.debug(f"{position.id} too new ({age:.1f}s), skipping exit checks")
            return []

        lock_config = position.lock_config
        reasons = []

        if self.is_trailing_stop_triggered(position):
            reasons.append('Trailing stop triggered')

        if self.is_take_profit_triggered(position):
            reasons.append('Take profit reached')

        if self.is_time_based_exit_triggered(position, lock_config, now):
            reasons.append('Time-based exit')

        if (position.edge_decay_score < lock_config.edge_decay_threshold
                and age > self.config.edge_decay_grace_seconds):
            reasons.append('Edge decay threshold reached')

        # Drawdown only closes losers
        if (position.max_drawdown_from_peak > lock_config.max_drawdown_percent
                and position.unrealized_pnl < 0):
            reasons.append('Maximum drawdown exceeded')

        if reasons:
            logger.debug(f"{position.id} exit conditions: {', '.join(reasons)}")
        return reasons

    def apply_profit_envelope_guard(self, position: Position) -> bool:
        """Trailing stop, weak edge (< 0.3) or any drawdown above 5%."""
        return (self.is_trailing_stop_triggered(position)
                or position.edge_decay_score < 0.3
                or position.max_drawdown_from_peak > 0.05)

    def apply_scalping_hybrid_lock(self, position: Position, now: Optional[datetime] = None) -> bool:
        """Time limit of the time-based method, take profit or a quick 1% gain."""
        time_config = self.profit_lock_configs[ProfitLockMethod.TIME_BASED_STOP]
        return (self.is_time_based_exit_triggered(position, time_config, now)
                or self.is_take_profit_triggered(position)
                or position.unrealized_pnl_pct > 1.0)

    # ------------------------------------------------------------------
    # Exit
    # ------------------------------------------------------------------

    def exit_position(self, position: Union[Position, str], reason: str) -> Optional[ClosedPosition]:
        """
        Close a live position.

        Only the first call for a given position has any effect; later calls
        return None. The closed record is persisted and passed to every
        exit callback.
        """
        position_id = position.id if isinstance(position, Position) else position
        now = self.clock()

        with self.lock:
            live = self._positions.pop(position_id, None)
            if live is None:
                logger.debug(f"Position {position_id} already closed")
                return None
            closed = ClosedPosition.from_position(live, now, reason)
            self._closed.append(closed)

        logger.info(f"Exiting position {closed.id}: {reason} | "
                    f"PnL {closed.realized_pnl:.2f} ({closed.unrealized_pnl_pct:.2f}%)")

        if self.sink is not None:
            self.sink.submit('close_position', clamp_position(closed), reason)

        for callback in list(self._exit_callbacks):
            try:
                callback(closed, reason)
            except Exception as e:
                logger.error(f"Exit callback error: {e}")

        return closed

    def on_position_exit(self, callback: ExitCallback):
        """Register callback for position exits."""
        self._exit_callbacks.append(callback)

    def remove_position(self, position_id: str) -> bool:
        """Drop a position without closing it or notifying callbacks."""
        with self.lock:
            removed = self._positions.pop(position_id, None)
        if removed is not None:
            logger.info(f"Removed position {position_id}")
        return removed is not None

    # ------------------------------------------------------------------
    # Queries and configuration
    # ------------------------------------------------------------------

    def get_positions(self) -> List[Position]:
        with self.lock:
            return [replace(p) for p in self._positions.values()]

    def get_position(self, position_id: str) -> Optional[Position]:
        with self.lock:
            position = self._positions.get(position_id)
            return replace(position) if position else None

    def get_closed_positions(self, limit: Optional[int] = None) -> List[ClosedPosition]:
        with self.lock:
            closed = list(self._closed)
        return closed[-limit:] if limit else closed

    def get_position_limits(self) -> dict:
        with self.lock:
            current = len(self._positions)
        return {
            'current': current,
            'max': self.config.max_positions,
            'available': self.config.max_positions - current
        }

    def update_config(self, **changes) -> TradingConfig:
        """
        Replace configuration fields. Open positions keep the profit-lock
        tuning they were opened with; the rebuilt table applies to new ones.
        """
        with self.lock:
            self.config = replace(self.config, **changes)
            if not self._fixed_lock_configs:
                self.profit_lock_configs = build_profit_lock_configs(self.config)
            if self._closed.maxlen != self.config.closed_history_cap:
                self._closed = deque(self._closed, maxlen=self.config.closed_history_cap)
        logger.info(f"Updated trading config: {changes}")
        return self.get_config()

    def get_config(self) -> TradingConfig:
        with self.lock:
            return replace(self.config)
