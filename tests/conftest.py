"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from ai_paper_trader.alpha import RandomSource, SignalAction, TradingSignal
from ai_paper_trader.data import OrderBookSnapshot, TickerUpdate
from ai_paper_trader.features import FeatureSet, MarketRegime, RegimeType
from ai_paper_trader.persistence import InMemoryGateway, PersistenceSink


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs):
        self.now += timedelta(seconds=seconds, **kwargs)


class FailingGateway(InMemoryGateway):
    """Gateway whose every write raises."""

    def save_signal(self, signal, features, regime):
        raise ConnectionError("database unavailable")

    def save_position(self, position, signal_id=None):
        raise ConnectionError("database unavailable")

    def update_position(self, position):
        raise ConnectionError("database unavailable")

    def close_position(self, position, reason):
        raise ConnectionError("database unavailable")

    def update_strategy_performance(self, *args):
        raise ConnectionError("database unavailable")

    def save_market_features(self, symbol, features, regime):
        raise ConnectionError("database unavailable")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> RandomSource:
    return RandomSource(seed=42)


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture
def sink(gateway):
    """Inline sink so writes are visible immediately."""
    s = PersistenceSink(gateway, synchronous=True)
    yield s
    s.close()


@pytest.fixture
def failing_sink():
    s = PersistenceSink(FailingGateway(), synchronous=True)
    yield s
    s.close()


@pytest.fixture
def make_features(clock):
    """Factory for FeatureSets; every feature defaults to 0."""

    def _make(symbol: str = "ETHUSDT", **overrides) -> FeatureSet:
        values = dict(
            vvix=0.0, ofi=0.0, vpin=0.0, correlation=0.0, liquidity=0.0,
            volatility=0.0, momentum=0.0, mean_reversion=0.0, trend=0.0,
        )
        values.update(overrides)
        return FeatureSet(symbol=symbol, timestamp=clock(), **values)

    return _make


@pytest.fixture
def make_regime(make_features):
    def _make(regime_type: RegimeType = RegimeType.STABLE, confidence: float = 0.5,
              features: FeatureSet | None = None, **feature_overrides) -> MarketRegime:
        return MarketRegime(
            type=regime_type,
            confidence=confidence,
            features=features or make_features(**feature_overrides),
        )

    return _make


@pytest.fixture
def make_signal(clock):
    def _make(symbol: str = "ETHUSDT", action: SignalAction = SignalAction.BUY,
              confidence: float = 0.8, strategy: str = "trend_following",
              price: float = 100.0, signal_id: str | None = "sig-1") -> TradingSignal:
        return TradingSignal(
            symbol=symbol,
            action=action,
            confidence=confidence,
            strategy=strategy,
            price=price,
            timestamp=clock(),
            reasoning="test",
            signal_id=signal_id,
        )

    return _make


def ticker(symbol: str, price: float, volume: float = 1.0) -> TickerUpdate:
    return TickerUpdate(symbol=symbol, price=price, volume=volume)


def book(symbol: str, bids, asks) -> OrderBookSnapshot:
    return OrderBookSnapshot(symbol=symbol, bids=tuple(bids), asks=tuple(asks))


@pytest.fixture
def make_ticker():
    return ticker


@pytest.fixture
def make_book():
    return book
