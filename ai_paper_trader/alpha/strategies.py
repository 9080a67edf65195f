"""
Strategy Heuristics Module
==========================
The eight trading heuristics the bandit arbitrates between.

Each strategy reads only the current feature snapshot and regime and
returns a directional signal. A strategy that does not fire returns a
HOLD signal with zero confidence, which the confidence threshold filters
out downstream.
"""

from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Deque, Dict, List, Optional
from enum import Enum
import logging

from ..features.feature_engine import FeatureSet, MarketRegime, RegimeType

logger = logging.getLogger(__name__)


class SignalAction(Enum):
    """Directional signal actions."""
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


@dataclass(frozen=True)
class TradingSignal:
    """Signal emitted by a strategy. Immutable once emitted."""
    symbol: str
    action: SignalAction
    confidence: float  # 0 to 1
    strategy: str
    price: float
    timestamp: datetime
    reasoning: str = ""
    signal_id: Optional[str] = None

    @property
    def is_directional(self) -> bool:
        return self.action != SignalAction.HOLD

    def with_id(self, signal_id: str) -> 'TradingSignal':
        return replace(self, signal_id=signal_id)

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'action': self.action.value,
            'confidence': self.confidence,
            'strategy': self.strategy,
            'price': self.price,
            'timestamp': self.timestamp.isoformat(),
            'reasoning': self.reasoning,
            'signal_id': self.signal_id
        }


class Strategy(ABC):
    """Abstract base class for strategy heuristics."""

    strategy_id: str = ""
    name: str = ""

    def __init__(self, weight: float = 1.0, history_cap: int = 50):
        self.weight = weight
        self.performance: Deque[float] = deque(maxlen=history_cap)

    @abstractmethod
    def evaluate(self, symbol: str, price: float, features: FeatureSet,
                 regime: MarketRegime, timestamp: datetime) -> TradingSignal:
        """Produce a signal from the current snapshot."""
        pass

    def _create_signal(self, symbol: str, price: float, timestamp: datetime,
                       action: SignalAction = SignalAction.HOLD,
                       confidence: float = 0.0, reasoning: str = "") -> TradingSignal:
        """Helper to create a signal with clamped confidence."""
        return TradingSignal(
            symbol=symbol,
            action=action,
            confidence=min(max(confidence, 0), 1),  # Clamp to [0, 1]
            strategy=self.strategy_id,
            price=price,
            timestamp=timestamp,
            reasoning=reasoning
        )

    @staticmethod
    def _direction(value: float) -> SignalAction:
        return SignalAction.BUY if value > 0 else SignalAction.SELL

    def to_dict(self) -> dict:
        return {
            'id': self.strategy_id,
            'name': self.name,
            'weight': self.weight,
            'performance': list(self.performance)
        }


class TrendFollowingStrategy(Strategy):
    """Follows the normalised OLS slope."""

    strategy_id = "trend_following"
    name = "Trend Following"

    def evaluate(self, symbol, price, features, regime, timestamp):
        strength = abs(features.trend)
        if strength <= 0.005:
            return self._create_signal(symbol, price, timestamp)

        direction = 'upward' if features.trend > 0 else 'downward'
        return self._create_signal(
            symbol, price, timestamp,
            action=self._direction(features.trend),
            confidence=min(strength * 15, 0.95),
            reasoning=f"Trend detected: {direction} ({features.trend * 100:.3f}%)"
        )


class SwingTradingStrategy(Strategy):
    """
    Swing Trading

    Only trades ranging markets with moderate volatility, leaning long
    only on a clearly negative trend.
    """

    strategy_id = "swing_trading"
    name = "Swing Trading"

    def evaluate(self, symbol, price, features, regime, timestamp):
        if regime.type != RegimeType.RANGING or not 0.2 < features.volatility < 0.6:
            return self._create_signal(symbol, price, timestamp)
        if abs(features.mean_reversion) <= 0.3:
            return self._create_signal(symbol, price, timestamp)

        action = SignalAction.BUY if features.trend < -0.1 else SignalAction.SELL
        return self._create_signal(
            symbol, price, timestamp,
            action=action,
            confidence=features.mean_reversion * regime.confidence,
            reasoning="Swing trade in ranging market"
        )


class MomentumStrategy(Strategy):
    """Short-horizon price momentum."""

    strategy_id = "momentum"
    name = "Momentum"

    def evaluate(self, symbol, price, features, regime, timestamp):
        strength = abs(features.momentum)
        if strength <= 0.002:
            return self._create_signal(symbol, price, timestamp)

        return self._create_signal(
            symbol, price, timestamp,
            action=self._direction(features.momentum),
            confidence=min(strength * 25, 0.9),
            reasoning=f"Momentum signal: {features.momentum * 100:.3f}%"
        )


class MeanReversionStrategy(Strategy):
    """Contrarian entry when price has stretched away from its mean."""

    strategy_id = "mean_reversion"
    name = "Mean Reversion"

    def evaluate(self, symbol, price, features, regime, timestamp):
        if features.mean_reversion <= 0.4 or features.volatility <= 0.3:
            return self._create_signal(symbol, price, timestamp)

        action = SignalAction.BUY if features.trend < 0 else SignalAction.SELL
        return self._create_signal(
            symbol, price, timestamp,
            action=action,
            confidence=features.mean_reversion,
            reasoning=f"Mean reversion opportunity - price deviated {features.mean_reversion * 100:.1f}%"
        )


class BreakoutStrategy(Strategy):
    """High-volatility, liquid moves with strong momentum."""

    strategy_id = "breakout"
    name = "Breakout"

    def evaluate(self, symbol, price, features, regime, timestamp):
        if features.volatility <= 0.6 or features.liquidity <= 0.5:
            return self._create_signal(symbol, price, timestamp)
        if abs(features.momentum) <= 0.03:
            return self._create_signal(symbol, price, timestamp)

        return self._create_signal(
            symbol, price, timestamp,
            action=self._direction(features.momentum),
            confidence=min(features.volatility + features.momentum, 1),
            reasoning=f"Breakout detected with high volatility ({features.volatility * 100:.1f}%)"
        )


class ScalpingStrategy(Strategy):
    """Order-flow imbalance in liquid, quiet books."""

    strategy_id = "scalping"
    name = "Scalping"

    def evaluate(self, symbol, price, features, regime, timestamp):
        if features.liquidity <= 0.7 or features.volatility >= 0.4:
            return self._create_signal(symbol, price, timestamp)
        if abs(features.ofi) <= 0.3:
            return self._create_signal(symbol, price, timestamp)

        return self._create_signal(
            symbol, price, timestamp,
            action=self._direction(features.ofi),
            confidence=abs(features.ofi),
            reasoning=f"Order flow imbalance: {features.ofi * 100:.1f}%"
        )


class StatisticalArbitrageStrategy(Strategy):
    """Divergence from a strongly correlated reference pair."""

    strategy_id = "statistical_arbitrage"
    name = "Statistical Arbitrage"

    def evaluate(self, symbol, price, features, regime, timestamp):
        if abs(features.correlation) <= 0.7 or features.mean_reversion <= 0.5:
            return self._create_signal(symbol, price, timestamp)

        divergence = features.correlation * features.trend
        action = SignalAction.BUY if divergence < 0 else SignalAction.SELL
        return self._create_signal(
            symbol, price, timestamp,
            action=action,
            confidence=min(abs(features.correlation) + features.mean_reversion, 1) * 0.8,
            reasoning="Statistical arbitrage - correlation divergence"
        )


class ContextualBanditsStrategy(Strategy):
    """
    Contextual Bandits

    Meta-strategy: fixed linear blend of trend, momentum, OFI, mean
    reversion and VPIN, scaled by regime confidence.
    """

    strategy_id = "contextual_bandits"
    name = "Contextual Bandits"

    WEIGHTS = {
        'trend': 0.3,
        'momentum': 0.2,
        'ofi': 0.2,
        'mean_reversion': -0.1,
        'vpin': 0.2
    }

    def evaluate(self, symbol, price, features, regime, timestamp):
        combined = sum(getattr(features, name) * weight for name, weight in self.WEIGHTS.items())
        if abs(combined) <= 0.3:
            return self._create_signal(symbol, price, timestamp)

        return self._create_signal(
            symbol, price, timestamp,
            action=self._direction(combined),
            confidence=min(abs(combined) * regime.confidence, 1),
            reasoning=f"Multi-factor signal: {combined:.3f}"
        )


STRATEGY_CLASSES = (
    TrendFollowingStrategy,
    SwingTradingStrategy,
    MomentumStrategy,
    MeanReversionStrategy,
    BreakoutStrategy,
    ScalpingStrategy,
    StatisticalArbitrageStrategy,
    ContextualBanditsStrategy,
)


def build_strategies(history_cap: int = 50) -> Dict[str, Strategy]:
    """Instantiate the registry with equal weights, keyed by strategy id."""
    weight = 1.0 / len(STRATEGY_CLASSES)
    return {cls.strategy_id: cls(weight=weight, history_cap=history_cap)
            for cls in STRATEGY_CLASSES}


def strategy_ids() -> List[str]:
    return [cls.strategy_id for cls in STRATEGY_CLASSES]
