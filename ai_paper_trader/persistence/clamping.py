"""
Numeric clamping applied before values cross the persistence boundary.

Bounds mirror the fixed-precision columns of the trading schema:
DECIMAL(20,8) for prices, sizes and PnL, DECIMAL(8,4) for percentages
and DECIMAL(10,6) for features and Beta parameters.
"""

import math
from dataclasses import replace
from typing import Iterable, List

MONEY_LIMIT = 999_999_999_999.9998
PERCENT_LIMIT = 9_999.9999
FEATURE_LIMIT = 9_999.999999

MAX_DRAWDOWN_CLAMP = 5.0


def clamp(value: float, low: float, high: float) -> float:
    """Clamp to [low, high]; NaN and infinities collapse to 0 before clamping."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        value = 0.0
    return min(max(value, low), high)


def clamp_money(value: float) -> float:
    return clamp(value, -MONEY_LIMIT, MONEY_LIMIT)


def clamp_percent(value: float) -> float:
    return clamp(value, -PERCENT_LIMIT, PERCENT_LIMIT)


def clamp_feature(value: float) -> float:
    return clamp(value, -FEATURE_LIMIT, FEATURE_LIMIT)


def clamp_confidence(value: float) -> float:
    return clamp(value, 0.0, 1.0)


def clamp_drawdown(value: float) -> float:
    return clamp(value, 0.0, MAX_DRAWDOWN_CLAMP)


def clamp_series(values: Iterable[float]) -> List[float]:
    return [clamp_money(v) for v in values]


def clamp_signal(signal):
    """Copy of a TradingSignal safe for storage."""
    return replace(
        signal,
        confidence=clamp_confidence(signal.confidence),
        price=clamp_money(signal.price)
    )


def clamp_features(features):
    """Copy of a FeatureSet safe for storage."""
    return replace(
        features,
        vvix=clamp_feature(features.vvix),
        ofi=clamp_feature(features.ofi),
        vpin=clamp_feature(features.vpin),
        correlation=clamp_feature(features.correlation),
        liquidity=clamp_feature(features.liquidity),
        volatility=clamp_feature(features.volatility),
        momentum=clamp_feature(features.momentum),
        mean_reversion=clamp_feature(features.mean_reversion),
        trend=clamp_feature(features.trend)
    )


def clamp_regime(regime):
    """Copy of a MarketRegime safe for storage."""
    return replace(
        regime,
        confidence=clamp_confidence(regime.confidence),
        features=clamp_features(regime.features)
    )


def clamp_position(position):
    """
    Copy of an open or closed position safe for storage.

    Works for both ``Position`` and ``ClosedPosition``; the closed record
    additionally carries ``exit_price`` and ``realized_pnl``.
    """
    changes = dict(
        size=clamp_money(position.size),
        entry_price=clamp_money(position.entry_price),
        current_price=clamp_money(position.current_price),
        unrealized_pnl=clamp_money(position.unrealized_pnl),
        unrealized_pnl_pct=clamp_percent(position.unrealized_pnl_pct),
        trailing_stop_price=clamp_money(position.trailing_stop_price),
        take_profit_price=clamp_money(position.take_profit_price),
        edge_decay_score=clamp(position.edge_decay_score, 0.0, 1.0),
        max_drawdown_from_peak=clamp_drawdown(position.max_drawdown_from_peak),
        peak_pnl=clamp_money(position.peak_pnl),
        atr_value=clamp_money(position.atr_value),
        original_signal=clamp_signal(position.original_signal)
    )
    if hasattr(position, 'realized_pnl'):
        changes['realized_pnl'] = clamp_money(position.realized_pnl)
        changes['exit_price'] = clamp_money(position.exit_price)
    return replace(position, **changes)
