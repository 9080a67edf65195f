"""
Strategy Orchestrator Module
============================
Contextual Thompson Sampling over the strategy registry.

Per evaluation:
1. Rate limits (per-symbol cooldown, signals per trailing window)
2. One Beta draw per arm, scaled by the regime context multiplier
3. Epsilon-greedy override with a uniformly random arm
4. Execute the chosen heuristic and apply the confidence threshold
5. Persist the accepted signal; only signals with a stored id are emitted

Closed trades feed back through ``update_reward``.
"""

import pandas as pd
from collections import deque
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Mapping, Optional
import logging
import threading
import uuid

from ..config import ContextRule, DEFAULT_CONTEXT_RULES, OrchestratorConfig
from ..features.feature_engine import FeatureSet, MarketRegime
from ..persistence.clamping import (
    clamp_feature, clamp_features, clamp_money, clamp_regime, clamp_series, clamp_signal
)
from .bandit import BanditArm, RandomSource
from .strategies import Strategy, TradingSignal, build_strategies

logger = logging.getLogger(__name__)


class StrategyOrchestrator:
    """
    Bandit arbitration between the trading heuristics.

    Arm state is read and written under one lock, so a selection never
    observes an arm halfway through a reward update.
    """

    def __init__(self, config: Optional[OrchestratorConfig] = None, sink=None,
                 rng: Optional[RandomSource] = None,
                 clock: Callable[[], datetime] = datetime.now,
                 context_rules: Optional[Mapping[str, ContextRule]] = None,
                 strategies: Optional[Dict[str, Strategy]] = None):
        self.config = config or OrchestratorConfig()
        self.sink = sink
        self.rng = rng or RandomSource(self.config.random_seed)
        self.clock = clock
        self.context_rules = context_rules if context_rules is not None else DEFAULT_CONTEXT_RULES

        self.strategies = strategies or build_strategies(self.config.performance_history_cap)
        self.arms: Dict[str, BanditArm] = {sid: BanditArm(sid) for sid in self.strategies}

        self.recent_signals: Deque[TradingSignal] = deque(maxlen=self.config.recent_signals_cap)
        self._last_signal_time: Dict[str, datetime] = {}

        self.lock = threading.RLock()

        logger.info(f"StrategyOrchestrator initialized with {len(self.strategies)} strategies "
                    f"(exploration {self.config.exploration_rate:.2%}, "
                    f"min confidence {self.config.min_confidence_threshold:.2%})")

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def context_adjustment(self, strategy_id: str, features: FeatureSet,
                           regime: MarketRegime) -> float:
        """Regime multiplier applied to an arm's Beta sample."""
        rule = self.context_rules.get(strategy_id)
        if rule is None:
            return 1.0

        if rule.regime is not None:
            matched = regime.type.value == rule.regime
        elif rule.feature is not None:
            value = getattr(features, rule.feature)
            if rule.use_abs:
                value = abs(value)
            matched = value > rule.threshold
        else:
            return rule.otherwise

        return rule.match if matched else rule.otherwise

    def select_strategy(self, features: FeatureSet, regime: MarketRegime) -> str:
        """Pick a strategy id by contextual Thompson Sampling."""
        with self.lock:
            samples = [
                (strategy_id, arm.sample(self.rng) * self.context_adjustment(strategy_id, features, regime))
                for strategy_id, arm in self.arms.items()
            ]

            if self.rng.uniform() < self.config.exploration_rate:
                strategy_id = self.rng.choice([sid for sid, _ in samples])
                logger.debug(f"Exploring with random strategy {strategy_id}")
                return strategy_id

        strategy_id, best = max(samples, key=lambda item: item[1])
        logger.debug(f"Selected {strategy_id} (adjusted sample {best:.3f})")
        return strategy_id

    # ------------------------------------------------------------------
    # Signal generation
    # ------------------------------------------------------------------

    def _rate_limited(self, symbol: str, now: datetime) -> bool:
        last = self._last_signal_time.get(symbol)
        if last is not None:
            elapsed = (now - last).total_seconds()
            if elapsed < self.config.signal_cooldown_seconds:
                remaining = self.config.signal_cooldown_seconds - elapsed
                logger.debug(f"Signal cooldown active for {symbol} ({remaining:.0f}s remaining)")
                return True

        window_start = now - timedelta(seconds=self.config.signal_window_seconds)
        recent = sum(1 for s in self.recent_signals
                     if s.symbol == symbol and s.timestamp > window_start)
        if recent >= self.config.max_signals_per_symbol:
            logger.debug(f"Too many recent signals for {symbol} "
                         f"({recent}/{self.config.max_signals_per_symbol})")
            return True

        return False

    def generate_signal(self, symbol: str, price: float, features: FeatureSet,
                        regime: MarketRegime) -> Optional[TradingSignal]:
        """
        Run one evaluation for a symbol.

        Returns the accepted signal carrying its persisted id, or None when
        rate-limited, below the confidence threshold or not stored.
        """
        now = self.clock()
        with self.lock:
            if self._rate_limited(symbol, now):
                return None

        strategy_id = self.select_strategy(features, regime)
        signal = self.strategies[strategy_id].evaluate(symbol, price, features, regime, now)

        if not signal.is_directional or signal.confidence < self.config.min_confidence_threshold:
            if signal.is_directional:
                logger.debug(f"Signal rejected - low confidence: {signal.strategy} "
                             f"{signal.action.value} {symbol} ({signal.confidence:.1%} < "
                             f"{self.config.min_confidence_threshold:.1%})")
            return None

        if self.sink is not None:
            signal_id = self.sink.request('save_signal', clamp_signal(signal),
                                          clamp_features(features), clamp_regime(regime))
        else:
            signal_id = str(uuid.uuid4())

        if not signal_id:
            logger.error(f"Failed to save signal for {symbol}, discarding")
            return None

        signal = signal.with_id(signal_id)
        with self.lock:
            self.recent_signals.append(signal)
            self._last_signal_time[symbol] = now

        logger.info(f"Signal: {signal.strategy} {signal.action.value} {symbol} "
                    f"@ {price:.4f} ({signal.confidence:.1%})")
        return signal

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def update_reward(self, signal: TradingSignal, profit: float):
        """Apply a binary reward (profit > 0) to the signal's strategy."""
        with self.lock:
            arm = self.arms.get(signal.strategy)
            strategy = self.strategies.get(signal.strategy)
            if arm is None or strategy is None:
                logger.warning(f"Reward for unknown strategy {signal.strategy} ignored")
                return

            arm.record(profit > 0)
            strategy.performance.append(profit)

            wins, trials, alpha, beta = arm.wins, arm.trials, arm.alpha, arm.beta
            history = list(strategy.performance)

        logger.info(f"Updated {signal.strategy}: wins={wins}, trials={trials}, profit={profit:.4f}")

        if self.sink is not None:
            self.sink.submit(
                'update_strategy_performance',
                signal.strategy, strategy.name, wins, trials,
                clamp_money(sum(history)),
                clamp_feature(alpha), clamp_feature(beta),
                clamp_series(history)
            )

    def restore_arm(self, strategy_id: str, wins: int, trials: int, alpha: float, beta: float,
                    history: Optional[List[float]] = None) -> bool:
        """Reload persisted arm state. Returns False for unknown strategies."""
        with self.lock:
            if strategy_id not in self.arms:
                logger.warning(f"Cannot restore unknown strategy {strategy_id}")
                return False
            self.arms[strategy_id] = BanditArm(strategy_id, wins=wins, trials=trials,
                                               alpha=alpha, beta=beta)
            if history is not None:
                performance = self.strategies[strategy_id].performance
                performance.clear()
                performance.extend(history)

        logger.info(f"Restored {strategy_id}: wins={wins}, trials={trials}")
        return True

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_arm(self, strategy_id: str) -> Optional[BanditArm]:
        with self.lock:
            arm = self.arms.get(strategy_id)
            return replace(arm) if arm else None

    def get_strategy_performance(self) -> Dict[str, dict]:
        with self.lock:
            return {
                strategy_id: {
                    'wins': arm.wins,
                    'trials': arm.trials,
                    'win_rate': arm.win_rate
                }
                for strategy_id, arm in self.arms.items()
            }

    def get_recent_signals(self, limit: int = 10) -> List[TradingSignal]:
        with self.lock:
            signals = list(self.recent_signals)
        return signals[-limit:] if limit > 0 else []

    def get_signal_stats(self) -> dict:
        """Summary of the recent-signals buffer."""
        with self.lock:
            signals = list(self.recent_signals)

        if not signals:
            return {
                'total_signals': 0,
                'signals_last_24h': 0,
                'average_confidence': 0.0,
                'top_strategies': []
            }

        df = pd.DataFrame([{
            'strategy': s.strategy,
            'confidence': s.confidence,
            'timestamp': s.timestamp
        } for s in signals])

        cutoff = self.clock() - timedelta(hours=24)
        by_strategy = (
            df.groupby('strategy', sort=False)['confidence']
            .agg(['count', 'mean'])
            .sort_values('count', ascending=False, kind='stable')
            .head(5)
        )

        return {
            'total_signals': len(df),
            'signals_last_24h': int((df['timestamp'] > cutoff).sum()),
            'average_confidence': float(df['confidence'].mean()),
            'top_strategies': [
                {'strategy': name, 'count': int(row['count']), 'avg_confidence': float(row['mean'])}
                for name, row in by_strategy.iterrows()
            ]
        }

    def update_config(self, **changes) -> OrchestratorConfig:
        """Replace configuration fields; invalid values raise ValueError."""
        with self.lock:
            self.config = replace(self.config, **changes)
            if self.recent_signals.maxlen != self.config.recent_signals_cap:
                self.recent_signals = deque(self.recent_signals, maxlen=self.config.recent_signals_cap)
        logger.info(f"Updated orchestrator config: {changes}")
        return self.get_config()

    def get_config(self) -> OrchestratorConfig:
        with self.lock:
            return replace(self.config)
