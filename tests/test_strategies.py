"""Tests for the eight strategy heuristics."""

from __future__ import annotations

import pytest

from ai_paper_trader.alpha import (
    BreakoutStrategy,
    ContextualBanditsStrategy,
    MeanReversionStrategy,
    MomentumStrategy,
    ScalpingStrategy,
    SignalAction,
    StatisticalArbitrageStrategy,
    SwingTradingStrategy,
    TrendFollowingStrategy,
    build_strategies,
)
from ai_paper_trader.features import RegimeType


@pytest.fixture
def evaluate(clock, make_features, make_regime):
    """Run a strategy against features/regime built from keyword overrides."""

    def _evaluate(strategy, regime_type=RegimeType.STABLE, regime_confidence=0.5, **features):
        fs = make_features(**features)
        regime = make_regime(regime_type, regime_confidence, features=fs)
        return strategy.evaluate("ETHUSDT", 2000.0, fs, regime, clock())

    return _evaluate


def assert_hold(signal):
    assert signal.action == SignalAction.HOLD
    assert signal.confidence == 0


def test_registry_has_eight_equal_weight_strategies():
    strategies = build_strategies()
    assert len(strategies) == 8
    assert all(s.weight == pytest.approx(1 / 8) for s in strategies.values())
    assert set(strategies) == {
        "trend_following", "swing_trading", "momentum", "mean_reversion",
        "breakout", "scalping", "statistical_arbitrage", "contextual_bandits",
    }


def test_performance_history_cap():
    strategy = build_strategies(history_cap=3)["momentum"]
    strategy.performance.extend([1, 2, 3, 4])
    assert list(strategy.performance) == [2, 3, 4]


class TestTrendFollowing:

    def test_fires_with_capped_confidence(self, evaluate):
        signal = evaluate(TrendFollowingStrategy(), trend=0.02)
        assert signal.action == SignalAction.BUY
        assert signal.confidence == pytest.approx(0.3)
        assert signal.strategy == "trend_following"
        assert signal.price == 2000.0

        strong = evaluate(TrendFollowingStrategy(), trend=-0.5)
        assert strong.action == SignalAction.SELL
        assert strong.confidence == 0.95

    def test_below_threshold_holds(self, evaluate):
        assert_hold(evaluate(TrendFollowingStrategy(), trend=0.005))


class TestMomentum:

    def test_fires(self, evaluate):
        signal = evaluate(MomentumStrategy(), momentum=-0.01)
        assert signal.action == SignalAction.SELL
        assert signal.confidence == pytest.approx(0.25)
        assert evaluate(MomentumStrategy(), momentum=0.1).confidence == 0.9

    def test_holds(self, evaluate):
        assert_hold(evaluate(MomentumStrategy(), momentum=0.002))


class TestMeanReversion:

    def test_contrarian_direction(self, evaluate):
        down = evaluate(MeanReversionStrategy(), mean_reversion=0.5, volatility=0.4, trend=-0.01)
        assert down.action == SignalAction.BUY
        assert down.confidence == 0.5

        up = evaluate(MeanReversionStrategy(), mean_reversion=0.5, volatility=0.4, trend=0.01)
        assert up.action == SignalAction.SELL

    def test_needs_volatility(self, evaluate):
        assert_hold(evaluate(MeanReversionStrategy(), mean_reversion=0.9, volatility=0.3))


class TestBreakout:

    def test_fires(self, evaluate):
        signal = evaluate(BreakoutStrategy(), volatility=0.65, liquidity=0.6, momentum=0.05)
        assert signal.action == SignalAction.BUY
        assert signal.confidence == pytest.approx(0.7)

    def test_requires_all_conditions(self, evaluate):
        assert_hold(evaluate(BreakoutStrategy(), volatility=0.65, liquidity=0.4, momentum=0.05))
        assert_hold(evaluate(BreakoutStrategy(), volatility=0.65, liquidity=0.6, momentum=0.03))


class TestScalping:

    def test_fires_on_order_flow(self, evaluate):
        signal = evaluate(ScalpingStrategy(), liquidity=0.8, volatility=0.1, ofi=-0.6)
        assert signal.action == SignalAction.SELL
        assert signal.confidence == pytest.approx(0.6)

    def test_holds_in_volatile_book(self, evaluate):
        assert_hold(evaluate(ScalpingStrategy(), liquidity=0.8, volatility=0.4, ofi=0.9))


class TestSwingTrading:

    def test_requires_ranging_regime(self, evaluate):
        kwargs = dict(volatility=0.3, mean_reversion=0.8, trend=-0.2)
        assert_hold(evaluate(SwingTradingStrategy(), RegimeType.STABLE, **kwargs))

        signal = evaluate(SwingTradingStrategy(), RegimeType.RANGING, 0.8, **kwargs)
        assert signal.action == SignalAction.BUY
        assert signal.confidence == pytest.approx(0.64)

    def test_sells_without_strong_downtrend(self, evaluate):
        signal = evaluate(SwingTradingStrategy(), RegimeType.RANGING, 0.8,
                          volatility=0.3, mean_reversion=0.8, trend=0.0)
        assert signal.action == SignalAction.SELL


class TestStatisticalArbitrage:

    def test_direction_from_correlation_and_trend(self, evaluate):
        signal = evaluate(StatisticalArbitrageStrategy(), correlation=0.9, mean_reversion=0.6, trend=-0.01)
        assert signal.action == SignalAction.BUY
        assert signal.confidence == pytest.approx(0.8)

        signal = evaluate(StatisticalArbitrageStrategy(), correlation=-0.8, mean_reversion=0.6, trend=-0.01)
        assert signal.action == SignalAction.SELL

    def test_holds_when_uncorrelated(self, evaluate):
        assert_hold(evaluate(StatisticalArbitrageStrategy(), correlation=0.5, mean_reversion=0.9))


class TestContextualBandits:

    def test_combined_signal(self, evaluate):
        signal = evaluate(ContextualBanditsStrategy(), RegimeType.STABLE, 0.5,
                          trend=1.0, momentum=0.5, vpin=0.5)
        # 0.3 + 0.1 + 0.1
        assert signal.action == SignalAction.BUY
        assert signal.confidence == pytest.approx(0.25)

    def test_weak_combination_holds(self, evaluate):
        assert_hold(evaluate(ContextualBanditsStrategy(), trend=0.5, mean_reversion=1.0))
