"""Tests for configuration records and market-data decoding."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from ai_paper_trader.config import (
    DEFAULT_CONTEXT_RULES,
    DEFAULT_STRATEGY_METHODS,
    FeatureConfig,
    OrchestratorConfig,
    PersistenceBackend,
    PersistenceConfig,
    ProfitLockMethod,
    SystemConfig,
    TradingConfig,
)
from ai_paper_trader.data import MarketData, OrderBookSnapshot


class TestSystemConfig:

    def test_save_load_round_trip(self, tmp_path):
        config = SystemConfig(
            initial_equity=25000.0,
            symbols=["BTCUSDT", "ETHUSDT"],
            orchestrator=OrchestratorConfig(exploration_rate=0.1, random_seed=9),
            persistence=PersistenceConfig(backend=PersistenceBackend.JSONL, path="trades.jsonl"),
        )
        path = str(tmp_path / "nested" / "config.json")
        config.save(path)

        with open(path) as f:
            assert json.load(f)['persistence']['backend'] == "jsonl"

        loaded = SystemConfig.load(path)
        assert loaded == config

    def test_missing_and_unknown_keys(self):
        config = SystemConfig.from_dict({
            'trading': {'max_positions': 10, 'leverage': 20},
            'dashboard': {'port': 5000},
        })
        assert config.trading.max_positions == 10
        assert config.trading.max_positions_per_symbol == 3
        assert config.features == FeatureConfig()
        assert config.symbols == []

    def test_backend_string_coerced(self):
        assert PersistenceConfig(backend="jsonl").backend == PersistenceBackend.JSONL
        with pytest.raises(ValueError):
            PersistenceConfig(backend="postgres")

    @pytest.mark.parametrize("factory", [
        lambda: OrchestratorConfig(exploration_rate=-0.1),
        lambda: OrchestratorConfig(min_confidence_threshold=2),
        lambda: OrchestratorConfig(signal_cooldown_seconds=-1),
        lambda: TradingConfig(max_positions=0),
        lambda: TradingConfig(stop_loss_percent=1.5),
        lambda: TradingConfig(closed_history_cap=0),
        lambda: FeatureConfig(min_samples=0),
        lambda: PersistenceConfig(queue_size=0),
    ])
    def test_invalid_values_rejected(self, factory):
        with pytest.raises(ValueError):
            factory()


class TestDefaultTables:

    def test_every_strategy_has_a_method_and_rule(self):
        assert set(DEFAULT_STRATEGY_METHODS) == set(DEFAULT_CONTEXT_RULES)
        assert DEFAULT_STRATEGY_METHODS['scalping'] == ProfitLockMethod.PARTIAL_PROFIT_SCALING
        assert DEFAULT_STRATEGY_METHODS['statistical_arbitrage'] == ProfitLockMethod.EDGE_DECAY_EXIT

    def test_tables_are_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_STRATEGY_METHODS['scalping'] = ProfitLockMethod.FIXED_TAKE_PROFIT


class TestMarketDataDecoding:

    def test_frame_from_keyed_mappings(self):
        frame = MarketData.from_dict({
            'timestamp': 1735732800000,
            'tickers': {'BTCUSDT': {'price': '50000.5', 'volume': 3, 'change24h': -1.2}},
            'orderBooks': {'BTCUSDT': {'bids': [['49999', '1.5']], 'asks': [['50001', '2']]}},
        })
        assert frame.timestamp == datetime(2025, 1, 1, 12, 0)
        assert frame.prices == {'BTCUSDT': 50000.5}
        assert frame.tickers['BTCUSDT'].change_24h == -1.2

        book = frame.order_books['BTCUSDT']
        assert book.best_bid == 49999.0
        assert book.best_ask == 50001.0
        assert book.bid_volume() == 1.5

    def test_frame_from_record_lists(self):
        frame = MarketData.from_dict({
            'tickers': [{'symbol': 'ETHUSDT', 'price': 2000}, {'symbol': 'BAD'}],
            'order_books': [{'symbol': 'ETHUSDT', 'bids': [], 'asks': [[2001, 1]]}],
        })
        assert list(frame.tickers) == ['ETHUSDT']
        assert frame.order_books['ETHUSDT'].best_bid == 0.0

    def test_aware_timestamps_become_utc(self):
        frame = MarketData.from_dict({'timestamp': '2025-01-01T14:00:00+02:00'})
        assert frame.timestamp == datetime(2025, 1, 1, 12, 0)
        assert frame.timestamp.tzinfo is None

    def test_missing_timestamp_uses_utc(self):
        before = datetime.now(timezone.utc).replace(tzinfo=None)
        frame = MarketData.from_dict({'tickers': {'BTCUSDT': {'price': 50000}}})
        after = datetime.now(timezone.utc).replace(tzinfo=None)

        assert frame.timestamp.tzinfo is None
        assert before - timedelta(seconds=1) <= frame.timestamp <= after + timedelta(seconds=1)
        assert before - timedelta(seconds=1) <= frame.tickers['BTCUSDT'].timestamp <= after + timedelta(seconds=1)

    def test_volume_over_top_levels(self):
        book = OrderBookSnapshot("X", bids=((10, 1), (9, 2), (8, 4)), asks=())
        assert book.bid_volume(2) == 3
        assert book.ask_volume() == 0
