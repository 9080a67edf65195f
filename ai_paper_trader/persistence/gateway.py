"""
Persistence Gateway Module
==========================
Interface to the durable store for signals, positions, strategy
performance and market features, plus two reference implementations.

The engines never call a gateway directly on the tick path; writes go
through ``PersistenceSink`` which isolates failures. Values handed to a
gateway have already been clamped by the caller.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional
import json
import logging
import os
import threading
import uuid

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def signal_record(signal, features, regime, signal_id: str) -> dict:
    """Row for the trading_signals table."""
    return {
        'id': signal_id,
        'symbol': signal.symbol,
        'action': signal.action.value,
        'confidence': signal.confidence,
        'strategy': signal.strategy,
        'price': signal.price,
        'reasoning': signal.reasoning,
        'features': features.to_dict(),
        'market_regime': regime.to_dict(),
        'timestamp': _iso(signal.timestamp),
    }


def position_record(position, signal_id: Optional[str] = None) -> dict:
    """Row for the trading_positions table."""
    return {
        'position_id': position.id,
        'symbol': position.symbol,
        'side': position.side.value,
        'size': position.size,
        'entry_price': position.entry_price,
        'current_price': position.current_price,
        'unrealized_pnl': position.unrealized_pnl,
        'unrealized_pnl_pct': position.unrealized_pnl_pct,
        'trailing_stop_price': position.trailing_stop_price,
        'take_profit_price': position.take_profit_price,
        'profit_lock_method': position.profit_lock_method.value,
        'time_held_minutes': position.time_held_minutes,
        'entry_time': _iso(position.entry_time),
        'edge_decay_score': position.edge_decay_score,
        'max_drawdown_from_peak': position.max_drawdown_from_peak,
        'peak_pnl': position.peak_pnl,
        'atr_value': position.atr_value,
        'original_signal_id': signal_id,
        'status': 'open',
    }


class PersistenceGateway(ABC):
    """Abstract durable store used by the engines."""

    @abstractmethod
    def save_signal(self, signal, features, regime) -> Optional[str]:
        """Store an accepted signal and return its id, or None on failure."""
        pass

    @abstractmethod
    def save_position(self, position, signal_id: Optional[str] = None):
        """Insert a newly opened position."""
        pass

    @abstractmethod
    def update_position(self, position):
        """Update the live fields of an open position."""
        pass

    @abstractmethod
    def close_position(self, position, reason: str):
        """Mark a position closed with its exit details."""
        pass

    @abstractmethod
    def update_strategy_performance(self, strategy_id: str, name: str, wins: int, trials: int,
                                    total_pnl: float, alpha: float, beta: float,
                                    history: List[float]):
        """Upsert aggregated bandit statistics for one strategy."""
        pass

    @abstractmethod
    def save_market_features(self, symbol: str, features, regime):
        """Store one feature/regime observation."""
        pass

    def get_recent_signals(self, limit: int = 50) -> List[dict]:
        return []

    def get_open_positions(self) -> List[dict]:
        return []

    def get_strategy_performance(self) -> List[dict]:
        return []


class InMemoryGateway(PersistenceGateway):
    """Gateway keeping every table in process memory."""

    def __init__(self):
        self.signals: Dict[str, dict] = {}
        self.positions: Dict[str, dict] = {}
        self.strategy_performance: Dict[str, dict] = {}
        self.market_features: List[dict] = []
        self.lock = threading.Lock()

    def save_signal(self, signal, features, regime) -> Optional[str]:
        signal_id = str(uuid.uuid4())
        record = signal_record(signal, features, regime, signal_id)
        with self.lock:
            self.signals[signal_id] = record
        self._write('trading_signals', 'insert', record)
        return signal_id

    def save_position(self, position, signal_id: Optional[str] = None):
        record = position_record(position, signal_id)
        with self.lock:
            self.positions[position.id] = record
        self._write('trading_positions', 'insert', record)

    def update_position(self, position):
        changes = {
            'position_id': position.id,
            'current_price': position.current_price,
            'unrealized_pnl': position.unrealized_pnl,
            'unrealized_pnl_pct': position.unrealized_pnl_pct,
            'trailing_stop_price': position.trailing_stop_price,
            'take_profit_price': position.take_profit_price,
            'time_held_minutes': position.time_held_minutes,
            'edge_decay_score': position.edge_decay_score,
            'max_drawdown_from_peak': position.max_drawdown_from_peak,
            'peak_pnl': position.peak_pnl,
        }
        with self.lock:
            record = self.positions.get(position.id)
            if record is None or record.get('status') != 'open':
                return
            record.update(changes)
        self._write('trading_positions', 'update', changes)

    def close_position(self, position, reason: str):
        changes = {
            'position_id': position.id,
            'status': 'closed',
            'exit_time': _iso(position.exit_time),
            'exit_price': position.exit_price,
            'exit_reason': reason,
            'realized_pnl': position.realized_pnl,
        }
        with self.lock:
            record = self.positions.setdefault(position.id, position_record(position))
            record.update(changes)
        self._write('trading_positions', 'update', changes)

    def update_strategy_performance(self, strategy_id: str, name: str, wins: int, trials: int,
                                    total_pnl: float, alpha: float, beta: float,
                                    history: List[float]):
        record = {
            'strategy_id': strategy_id,
            'strategy_name': name,
            'wins': wins,
            'trials': trials,
            'total_pnl': total_pnl,
            'win_rate': wins / trials if trials > 0 else 0,
            'alpha': alpha,
            'beta': beta,
            'performance_history': list(history),
            'last_updated': datetime.now().isoformat(),
        }
        with self.lock:
            self.strategy_performance[strategy_id] = record
        self._write('strategy_performance', 'upsert', record)

    def save_market_features(self, symbol: str, features, regime):
        record = {
            'symbol': symbol,
            **features.to_dict(),
            'regime_type': regime.type.value,
            'regime_confidence': regime.confidence,
        }
        with self.lock:
            self.market_features.append(record)
        self._write('market_features', 'insert', record)

    def get_recent_signals(self, limit: int = 50) -> List[dict]:
        with self.lock:
            records = list(self.signals.values())
        records.sort(key=lambda r: r['timestamp'] or '', reverse=True)
        return records[:limit]

    def get_open_positions(self) -> List[dict]:
        with self.lock:
            return [dict(r) for r in self.positions.values() if r.get('status') == 'open']

    def get_strategy_performance(self) -> List[dict]:
        with self.lock:
            return [dict(r) for r in self.strategy_performance.values()]

    def _write(self, table: str, op: str, record: dict):
        """Hook for durable subclasses."""


class JsonLinesGateway(InMemoryGateway):
    """
    Append-only JSON-lines gateway.

    Every write is appended to ``path`` as ``{"table", "op", "record"}``;
    an existing file is replayed on construction so read-back queries see
    earlier sessions.
    """

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._file_lock = threading.Lock()
        if os.path.exists(path):
            self._replay()

    def _replay(self):
        loaded = 0
        with open(self.path, 'r') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping corrupt line in {self.path}: {e}")
                    continue
                self._apply(entry['table'], entry['op'], entry['record'])
                loaded += 1
        logger.info(f"Replayed {loaded} persisted records from {self.path}")

    def _apply(self, table: str, op: str, record: dict):
        if table == 'trading_signals':
            self.signals[record['id']] = record
        elif table == 'trading_positions':
            if op == 'insert':
                self.positions[record['position_id']] = record
            else:
                self.positions.setdefault(record['position_id'], {}).update(record)
        elif table == 'strategy_performance':
            self.strategy_performance[record['strategy_id']] = record
        elif table == 'market_features':
            self.market_features.append(record)

    def _write(self, table: str, op: str, record: dict):
        line = json.dumps({'table': table, 'op': op, 'record': record}, default=str)
        with self._file_lock:
            with open(self.path, 'a') as f:
                f.write(line + '\n')
