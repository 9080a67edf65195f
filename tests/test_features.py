"""Tests for the rolling feature engine and regime detection."""

from __future__ import annotations

import math

import pytest

from ai_paper_trader.config import FeatureConfig
from ai_paper_trader.data import MarketData
from ai_paper_trader.features import (
    FeatureEngine,
    MicrostructureFeatures,
    RegimeType,
    StatisticalFeatures,
)


def feed_prices(engine: FeatureEngine, symbol: str, prices, make_ticker, volume: float = 1.0):
    for price in prices:
        engine.update_data(make_ticker(symbol, price, volume))


class TestHistoryBuffers:

    def test_extract_returns_none_below_min_samples(self, clock, make_ticker):
        engine = FeatureEngine(clock=clock)
        for i in range(9):
            engine.update_data(make_ticker("BTCUSDT", 100 + i))
            assert engine.extract_features("BTCUSDT") is None

        engine.update_data(make_ticker("BTCUSDT", 110))
        assert engine.extract_features("BTCUSDT") is not None

    def test_unknown_symbol_returns_none(self):
        engine = FeatureEngine()
        assert engine.extract_features("DOGEUSDT") is None
        assert engine.detect_regime("DOGEUSDT") is None

    def test_buffer_evicts_oldest_in_order(self, make_ticker, make_book):
        engine = FeatureEngine(FeatureConfig(max_history_length=5, min_samples=3))
        feed_prices(engine, "BTCUSDT", [1, 2, 3, 4, 5, 6, 7, 8], make_ticker)
        for i in range(7):
            engine.update_data(make_book("BTCUSDT", [(100 + i, 1)], [(101 + i, 1)]))

        history = engine.get_history("BTCUSDT")
        assert history["prices"] == [4, 5, 6, 7, 8]
        assert len(history["volumes"]) == 5
        assert [b.best_bid for b in history["order_books"]] == [102, 103, 104, 105, 106]

    def test_market_data_frame_updates_all_buffers(self, make_ticker, make_book):
        engine = FeatureEngine()
        frame = MarketData(
            tickers={"BTCUSDT": make_ticker("BTCUSDT", 100), "ETHUSDT": make_ticker("ETHUSDT", 10)},
            order_books={"BTCUSDT": make_book("BTCUSDT", [(99, 1)], [(101, 1)])},
        )
        engine.update_data(frame)

        assert engine.get_history("BTCUSDT")["prices"] == [100]
        assert len(engine.get_history("BTCUSDT")["order_books"]) == 1
        assert engine.get_history("ETHUSDT")["order_books"] == []

    def test_update_rejects_unknown_payload(self):
        engine = FeatureEngine()
        with pytest.raises(TypeError):
            engine.update_data({"symbol": "BTCUSDT", "price": 1})

    def test_supported_symbols_and_cleanup(self, make_ticker):
        engine = FeatureEngine()
        feed_prices(engine, "BTCUSDT", [100] * 10, make_ticker)
        feed_prices(engine, "ETHUSDT", [10] * 4, make_ticker)

        assert engine.get_supported_symbols() == ["BTCUSDT"]

        removed = engine.cleanup_old_symbols(["BTCUSDT"])
        assert removed == ["ETHUSDT"]
        assert engine.get_history("ETHUSDT") is None

        # Idempotent
        assert engine.cleanup_old_symbols(["BTCUSDT"]) == []
        assert engine.get_history("BTCUSDT") is not None


class TestFeatureValues:

    def test_flat_prices_have_zero_volatility_and_trend(self, make_ticker):
        engine = FeatureEngine()
        feed_prices(engine, "BTCUSDT", [50000.0] * 10, make_ticker)

        features = engine.extract_features("BTCUSDT")
        assert features.volatility == 0
        assert features.trend == 0
        assert features.momentum == 0
        assert features.mean_reversion == 0

    def test_all_features_finite(self, make_ticker, make_book):
        engine = FeatureEngine()
        prices = [100, 0, 105, 98, 1e12, 101, 99, 100, 102, 97, 103, 100] * 2
        feed_prices(engine, "ETHUSDT", prices, make_ticker)
        engine.update_data(make_book("ETHUSDT", [(99, 5)], [(101, 5)]))
        engine.update_data(make_book("ETHUSDT", [(99, 0)], [(101, 10)]))

        features = engine.extract_features("ETHUSDT")
        for name, value in features.to_dict().items():
            if name != "timestamp":
                assert math.isfinite(value), name

    def test_correlation_with_reference(self, make_ticker):
        engine = FeatureEngine()
        base = [100 + (i % 3) * 2 + i for i in range(25)]
        feed_prices(engine, "BTCUSDT", base, make_ticker)
        feed_prices(engine, "ETHUSDT", [p * 2 for p in base], make_ticker)

        assert engine.extract_features("ETHUSDT").correlation == pytest.approx(1.0)
        # The reference pair is never correlated with itself
        assert engine.extract_features("BTCUSDT").correlation == 0

    def test_correlation_needs_twenty_samples(self, make_ticker):
        engine = FeatureEngine()
        base = [100 + (i % 3) * 2 + i for i in range(15)]
        feed_prices(engine, "BTCUSDT", base, make_ticker)
        feed_prices(engine, "ETHUSDT", base, make_ticker)
        assert engine.extract_features("ETHUSDT").correlation == 0


class TestStatisticalFeatures:

    def test_returns_skip_non_positive_previous(self):
        r = StatisticalFeatures.returns([100, 110, 0, 50])
        assert list(r) == pytest.approx([0.1, -1.0])

    def test_momentum(self):
        assert StatisticalFeatures.momentum([1, 1, 2, 2]) == pytest.approx(1.0)
        assert StatisticalFeatures.momentum([1, 2, 3]) == 0

    def test_mean_reversion(self):
        prices = [10, 10, 11]
        mean = sum(prices) / 3
        expected = abs(11 - mean) / mean * 2
        assert StatisticalFeatures.mean_reversion(prices) == pytest.approx(expected)
        assert StatisticalFeatures.mean_reversion([100, 100, 300]) == 1.0
        assert StatisticalFeatures.mean_reversion([1, 2]) == 0

    def test_trend_of_linear_series(self):
        prices = [float(i + 1) for i in range(10)]
        # slope 1 over an average of 5.5
        assert StatisticalFeatures.trend(prices) == pytest.approx(1 / 5.5)

    def test_trend_uses_last_twenty(self):
        prices = [1000.0] * 30 + [float(i + 1) for i in range(20)]
        assert StatisticalFeatures.trend(prices) == pytest.approx(1 / 10.5)

    def test_vol_of_vol_threshold(self):
        assert StatisticalFeatures.vol_of_vol([100, 101] * 9) == 0

    def test_vol_of_vol_constant_windows(self):
        # Alternating prices give identical window volatilities
        assert StatisticalFeatures.vol_of_vol([100, 110] * 15) == pytest.approx(0.0, abs=1e-9)

    def test_vol_of_vol_positive_for_changing_volatility(self):
        prices = [100.0] * 15 + [100, 120, 90, 130, 80, 140, 70, 150, 60, 160]
        assert StatisticalFeatures.vol_of_vol(prices) > 0


class TestMicrostructureFeatures:

    def test_order_flow_imbalance(self, make_book):
        previous = make_book("BTCUSDT", [(100, 10)], [(101, 10)])
        latest = make_book("BTCUSDT", [(100, 30)], [(101, 20)])
        ofi = MicrostructureFeatures.order_flow_imbalance([previous, latest])
        assert ofi == pytest.approx((20 - 10) / (20 + 10 + 1e-8))

    def test_order_flow_imbalance_needs_two_books(self, make_book):
        assert MicrostructureFeatures.order_flow_imbalance([make_book("X", [(1, 1)], [(2, 1)])]) == 0

    def test_vpin(self):
        prices = [100, 101] * 10
        volumes = [1.0] * 20
        # 10 up-ticks, 9 down-ticks
        assert MicrostructureFeatures.vpin(prices, volumes) == pytest.approx(1 / 19)

    def test_vpin_zero_volume(self):
        assert MicrostructureFeatures.vpin([100, 101] * 10, [0.0] * 20) == 0

    def test_liquidity(self, make_book):
        snapshot = make_book("BTCUSDT", [(99, 300)], [(101, 200)])
        spread_score = 1 / (1 + 2 / 100)
        assert MicrostructureFeatures.liquidity([snapshot]) == pytest.approx((spread_score + 0.5) / 2)

    def test_liquidity_depth_capped_and_top_levels_only(self, make_book):
        bids = [(100 - i, 100) for i in range(15)]
        asks = [(101 + i, 100) for i in range(15)]
        snapshot = make_book("BTCUSDT", bids, asks)
        spread_score = 1 / (1 + 1 / 100.5)
        # 20 levels x 100 = 2000, capped at 1
        assert MicrostructureFeatures.liquidity([snapshot]) == pytest.approx((spread_score + 1) / 2)

    def test_liquidity_empty_book(self, make_book):
        assert MicrostructureFeatures.liquidity([]) == 0
        assert MicrostructureFeatures.liquidity([make_book("X", [], [])]) == 0


class TestRegimeDetection:

    def test_stable_regime_default_confidence(self, make_ticker):
        engine = FeatureEngine()
        feed_prices(engine, "BTCUSDT", [100] * 12, make_ticker)

        regime = engine.detect_regime("BTCUSDT")
        assert regime.type == RegimeType.STABLE
        assert regime.confidence == 0.5

    def test_volatile_regime(self, make_ticker):
        engine = FeatureEngine()
        feed_prices(engine, "BTCUSDT", [100, 300] * 5, make_ticker)

        regime = engine.detect_regime("BTCUSDT")
        assert regime.type == RegimeType.VOLATILE
        assert regime.confidence == regime.features.volatility

    def test_ranging_regime(self, make_ticker):
        engine = FeatureEngine()
        feed_prices(engine, "BTCUSDT", [100] * 19 + [200], make_ticker)

        regime = engine.detect_regime("BTCUSDT")
        assert regime.type == RegimeType.RANGING
        assert regime.confidence == 1.0

    def test_trending_regime(self, make_ticker):
        engine = FeatureEngine(FeatureConfig(trend_window=2))
        feed_prices(engine, "BTCUSDT", [100] * 9 + [200], make_ticker)

        regime = engine.detect_regime("BTCUSDT")
        assert regime.type == RegimeType.TRENDING
        assert regime.confidence == pytest.approx(100 / 150)

    def test_regime_is_persisted(self, make_ticker, sink, gateway):
        engine = FeatureEngine(sink=sink)
        feed_prices(engine, "BTCUSDT", [100] * 10, make_ticker)

        engine.detect_regime("BTCUSDT")
        assert len(gateway.market_features) == 1
        assert gateway.market_features[0]["regime_type"] == "stable"

    def test_persistence_failure_does_not_affect_regime(self, make_ticker, failing_sink):
        engine = FeatureEngine(sink=failing_sink)
        feed_prices(engine, "BTCUSDT", [100] * 10, make_ticker)

        regime = engine.detect_regime("BTCUSDT")
        assert regime is not None
        assert regime.type == RegimeType.STABLE
        assert failing_sink.failed == 1
