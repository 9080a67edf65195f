"""
Performance Monitoring Module
=============================
Closed-trade analytics for the paper account.

The realised equity curve starts at the initial paper capital and moves by
each closed position's realised PnL, in exit order.
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List
import logging
import threading

logger = logging.getLogger(__name__)


@dataclass
class PerformanceMetrics:
    """Closed-trade performance metrics."""
    # Returns
    realized_pnl: float = 0.0
    total_return_pct: float = 0.0
    current_equity: float = 0.0

    # Drawdown on the realised equity curve (<= 0)
    max_drawdown: float = 0.0

    # Win/Loss
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0

    # Holding
    avg_holding_minutes: float = 0.0

    # Breakdown
    exits_by_reason: Dict[str, int] = field(default_factory=dict)
    pnl_by_strategy: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'realized_pnl': self.realized_pnl,
            'total_return_pct': self.total_return_pct,
            'current_equity': self.current_equity,
            'max_drawdown': self.max_drawdown,
            'total_trades': self.total_trades,
            'winning_trades': self.winning_trades,
            'losing_trades': self.losing_trades,
            'win_rate': self.win_rate,
            'avg_win': self.avg_win,
            'avg_loss': self.avg_loss,
            'profit_factor': self.profit_factor,
            'avg_holding_minutes': self.avg_holding_minutes,
            'exits_by_reason': dict(self.exits_by_reason),
            'pnl_by_strategy': dict(self.pnl_by_strategy)
        }


class PerformanceTracker:
    """Tracks and calculates trading performance metrics."""

    def __init__(self, initial_capital: float = 10000.0):
        self.initial_capital = initial_capital
        self.trades: List[Dict] = []
        self.lock = threading.Lock()

    def record_trade(self, closed):
        """Record a closed position."""
        trade = {
            'position_id': closed.id,
            'symbol': closed.symbol,
            'side': closed.side.value,
            'strategy': closed.original_signal.strategy,
            'size': closed.size,
            'entry_price': closed.entry_price,
            'exit_price': closed.exit_price,
            'pnl': closed.realized_pnl,
            'pnl_pct': closed.unrealized_pnl_pct,
            'holding_minutes': closed.time_held_minutes,
            'exit_reason': closed.exit_reason,
            'exit_time': closed.exit_time
        }
        with self.lock:
            self.trades.append(trade)

        logger.debug(f"Recorded trade {closed.id}: {closed.realized_pnl:.2f}")

    def get_trades(self) -> pd.DataFrame:
        with self.lock:
            return pd.DataFrame(list(self.trades))

    @property
    def realized_pnl(self) -> float:
        with self.lock:
            return float(sum(t['pnl'] for t in self.trades))

    def get_metrics(self) -> PerformanceMetrics:
        """Calculate performance metrics over all recorded trades."""
        metrics = PerformanceMetrics(current_equity=self.initial_capital)

        trades = self.get_trades()
        if trades.empty:
            return metrics

        pnl = trades['pnl']
        wins = pnl[pnl > 0]
        losses = pnl[pnl < 0]

        metrics.realized_pnl = float(pnl.sum())
        metrics.current_equity = self.initial_capital + metrics.realized_pnl
        if self.initial_capital > 0:
            metrics.total_return_pct = metrics.realized_pnl / self.initial_capital

        metrics.total_trades = len(trades)
        metrics.winning_trades = len(wins)
        metrics.losing_trades = len(losses)
        metrics.win_rate = len(wins) / len(trades)

        if not wins.empty:
            metrics.avg_win = float(wins.mean())
        if not losses.empty:
            metrics.avg_loss = float(abs(losses.mean()))

        total_losses = abs(losses.sum())
        if total_losses > 0:
            metrics.profit_factor = float(wins.sum() / total_losses)

        metrics.max_drawdown = self._calculate_max_drawdown(pnl)
        metrics.avg_holding_minutes = float(trades['holding_minutes'].mean())

        # Composite reasons count once per condition
        reasons = trades['exit_reason'].str.split(', ').explode()
        metrics.exits_by_reason = {k: int(v) for k, v in reasons.value_counts().items()}
        metrics.pnl_by_strategy = {k: float(v) for k, v in trades.groupby('strategy')['pnl'].sum().items()}

        return metrics

    def _calculate_max_drawdown(self, pnl: pd.Series) -> float:
        """Maximum drawdown of the realised equity curve, as a negative fraction."""
        equity = self.initial_capital + pnl.cumsum()
        equity = pd.concat([pd.Series([self.initial_capital]), equity], ignore_index=True)
        peak = equity.cummax()
        drawdown = np.where(peak > 0, (equity - peak) / peak, 0.0)
        return float(drawdown.min())

    def get_equity_series(self) -> pd.Series:
        """Realised equity indexed by exit time."""
        trades = self.get_trades()
        if trades.empty:
            return pd.Series(dtype=float)
        return pd.Series(
            (self.initial_capital + trades['pnl'].cumsum()).values,
            index=pd.DatetimeIndex(trades['exit_time'])
        )
