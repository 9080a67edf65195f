"""
Feature Engineering Module
==========================
Rolling-window statistics and market-regime classification over the
streaming ticker and order-book feed.

Each symbol keeps three bounded FIFO buffers (prices, volumes, order-book
snapshots). Features are recomputed from those buffers on every call;
nothing derived is cached.
"""

import math
import numpy as np
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence
import logging
import threading

from ..config import FeatureConfig
from ..data import MarketData, TickerUpdate, OrderBookSnapshot
from ..persistence.clamping import clamp_features, clamp_regime

logger = logging.getLogger(__name__)

OFI_EPSILON = 1e-8


class RegimeType(Enum):
    """Coarse market regimes."""
    TRENDING = "trending"
    RANGING = "ranging"
    VOLATILE = "volatile"
    STABLE = "stable"


@dataclass(frozen=True)
class FeatureSet:
    """Per-symbol feature snapshot."""
    symbol: str
    vvix: float
    ofi: float
    vpin: float
    correlation: float
    liquidity: float
    volatility: float
    momentum: float
    mean_reversion: float
    trend: float
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            'vvix': self.vvix,
            'ofi': self.ofi,
            'vpin': self.vpin,
            'correlation': self.correlation,
            'liquidity': self.liquidity,
            'volatility': self.volatility,
            'momentum': self.momentum,
            'mean_reversion': self.mean_reversion,
            'trend': self.trend,
            'timestamp': self.timestamp.isoformat()
        }


@dataclass(frozen=True)
class MarketRegime:
    """Regime label with the features that produced it."""
    type: RegimeType
    confidence: float
    features: FeatureSet

    def to_dict(self) -> dict:
        return {
            'type': self.type.value,
            'confidence': self.confidence,
            'features': self.features.to_dict()
        }


@dataclass
class SymbolHistory:
    """Bounded FIFO buffers for one symbol."""
    max_length: int
    prices: Deque[float] = field(init=False)
    volumes: Deque[float] = field(init=False)
    order_books: Deque[OrderBookSnapshot] = field(init=False)

    def __post_init__(self):
        self.prices = deque(maxlen=self.max_length)
        self.volumes = deque(maxlen=self.max_length)
        self.order_books = deque(maxlen=self.max_length)


def _finite(value: float) -> float:
    value = float(value)
    return value if math.isfinite(value) else 0.0


class StatisticalFeatures:
    """Price-series statistics."""

    @staticmethod
    def returns(prices: Sequence[float]) -> np.ndarray:
        """Simple returns, skipping steps whose previous price is not positive."""
        p = np.asarray(prices, dtype=float)
        if len(p) < 2:
            return np.empty(0)
        prev, cur = p[:-1], p[1:]
        mask = prev > 0
        return (cur[mask] - prev[mask]) / prev[mask]

    @staticmethod
    def std(values: Sequence[float]) -> float:
        """Population standard deviation, 0 for an empty series."""
        values = np.asarray(values, dtype=float)
        return float(np.std(values)) if len(values) > 0 else 0.0

    @staticmethod
    def volatility(prices: Sequence[float]) -> float:
        if len(prices) < 2:
            return 0.0
        return StatisticalFeatures.std(StatisticalFeatures.returns(prices))

    @staticmethod
    def vol_of_vol(prices: Sequence[float], window: int = 10, min_samples: int = 20) -> float:
        """
        Volatility of volatility.

        Standard deviation of the rolling ``window``-return standard
        deviations. Windows end one step before the latest return.
        """
        if len(prices) < min_samples:
            return 0.0
        r = StatisticalFeatures.returns(prices)
        if len(r) <= window:
            return 0.0
        windows = np.lib.stride_tricks.sliding_window_view(r[:-1], window)
        return StatisticalFeatures.std(windows.std(axis=1))

    @staticmethod
    def pearson(x: Sequence[float], y: Sequence[float]) -> float:
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        if len(x) != len(y) or len(x) == 0:
            return 0.0
        n = len(x)
        numerator = n * np.sum(x * y) - np.sum(x) * np.sum(y)
        denominator = math.sqrt(
            max((n * np.sum(x * x) - np.sum(x) ** 2) * (n * np.sum(y * y) - np.sum(y) ** 2), 0.0)
        )
        return float(numerator / denominator) if denominator != 0 else 0.0

    @staticmethod
    def momentum(prices: Sequence[float]) -> float:
        """Mean of the last two prices against the mean of the two before."""
        if len(prices) < 4:
            return 0.0
        p = np.asarray(prices, dtype=float)
        recent_avg = p[-2:].mean()
        older_avg = p[-4:-2].mean()
        return float((recent_avg - older_avg) / older_avg) if older_avg > 0 else 0.0

    @staticmethod
    def mean_reversion(prices: Sequence[float]) -> float:
        """Distance of the latest price from the buffer mean, scaled into [0, 1]."""
        if len(prices) < 3:
            return 0.0
        p = np.asarray(prices, dtype=float)
        mean = p.mean()
        if mean <= 0:
            return 0.0
        deviation = abs(p[-1] - mean) / mean
        return float(min(deviation * 2, 1.0))

    @staticmethod
    def trend(prices: Sequence[float], window: int = 20, min_samples: int = 10) -> float:
        """OLS slope of price against index, normalised by the window average."""
        if len(prices) < min_samples:
            return 0.0
        y = np.asarray(prices, dtype=float)[-window:]
        n = len(y)
        x = np.arange(n, dtype=float)

        sum_x = x.sum()
        sum_y = y.sum()
        sum_xy = (x * y).sum()
        sum_xx = (x * x).sum()

        denominator = n * sum_xx - sum_x * sum_x
        if denominator == 0:
            return 0.0
        slope = (n * sum_xy - sum_x * sum_y) / denominator
        avg_price = sum_y / n
        return float(slope / avg_price) if avg_price > 0 else 0.0


class MicrostructureFeatures:
    """Order-flow and order-book features."""

    @staticmethod
    def order_flow_imbalance(order_books: Sequence[OrderBookSnapshot]) -> float:
        if len(order_books) < 2:
            return 0.0
        latest, previous = order_books[-1], order_books[-2]

        bid_flow = latest.bid_volume() - previous.bid_volume()
        ask_flow = latest.ask_volume() - previous.ask_volume()

        return (bid_flow - ask_flow) / (bid_flow + ask_flow + OFI_EPSILON)

    @staticmethod
    def vpin(prices: Sequence[float], volumes: Sequence[float], min_samples: int = 20) -> float:
        """Share of volume on the dominant side, classified by tick direction."""
        if len(prices) < min_samples or len(volumes) < min_samples:
            return 0.0
        n = min(len(prices), len(volumes))
        p = np.asarray(prices, dtype=float)[:n]
        v = np.asarray(volumes, dtype=float)[:n]

        up_tick = np.diff(p) > 0
        buy_volume = v[1:][up_tick].sum()
        sell_volume = v[1:][~up_tick].sum()

        total_volume = buy_volume + sell_volume
        return float(abs(buy_volume - sell_volume) / total_volume) if total_volume > 0 else 0.0

    @staticmethod
    def liquidity(order_books: Sequence[OrderBookSnapshot], levels: int = 10,
                  depth_normalizer: float = 1000.0) -> float:
        """Average of a spread score and a top-of-book depth score."""
        if not order_books:
            return 0.0
        latest = order_books[-1]

        best_bid = latest.best_bid
        best_ask = latest.best_ask
        spread = best_ask - best_bid
        mid_price = (best_bid + best_ask) / 2

        total_depth = latest.bid_volume(levels) + latest.ask_volume(levels)

        spread_score = 1 / (1 + spread / mid_price) if mid_price > 0 else 0.0
        depth_score = min(total_depth / depth_normalizer, 1.0)

        return (spread_score + depth_score) / 2


class FeatureEngine:
    """
    Main feature engineering class.

    Owns the per-symbol history buffers, derives the nine-feature snapshot
    and labels the market regime. Regime observations are forwarded to the
    persistence sink without waiting on it.
    """

    def __init__(self, config: Optional[FeatureConfig] = None, sink=None,
                 clock: Callable[[], datetime] = datetime.now):
        self.config = config or FeatureConfig()
        self.sink = sink
        self.clock = clock

        self.statistical = StatisticalFeatures()
        self.microstructure = MicrostructureFeatures()

        self._history: Dict[str, SymbolHistory] = {}
        self.lock = threading.Lock()

        logger.info(f"FeatureEngine initialized (history cap {self.config.max_history_length})")

    def _ensure_history(self, symbol: str) -> SymbolHistory:
        history = self._history.get(symbol)
        if history is None:
            history = SymbolHistory(self.config.max_history_length)
            self._history[symbol] = history
            logger.debug(f"Tracking new symbol {symbol}")
        return history

    def update_data(self, update):
        """
        Append a feed update to the relevant buffers.

        Accepts a whole ``MarketData`` frame, a single ``TickerUpdate`` or a
        single ``OrderBookSnapshot``. Unknown symbols are tracked on sight.
        """
        if isinstance(update, MarketData):
            tickers: Iterable[TickerUpdate] = update.tickers.values()
            books: Iterable[OrderBookSnapshot] = update.order_books.values()
        elif isinstance(update, TickerUpdate):
            tickers, books = (update,), ()
        elif isinstance(update, OrderBookSnapshot):
            tickers, books = (), (update,)
        else:
            raise TypeError(f"Unsupported market data update: {type(update).__name__}")

        with self.lock:
            for ticker in tickers:
                history = self._ensure_history(ticker.symbol)
                history.prices.append(ticker.price)
                history.volumes.append(ticker.volume)
            for book in books:
                self._ensure_history(book.symbol).order_books.append(book)

    def extract_features(self, symbol: str) -> Optional[FeatureSet]:
        """
        Compute the feature snapshot for a symbol.

        Returns None until at least ``min_samples`` prices have been seen.
        """
        reference = self.config.reference_symbol
        with self.lock:
            history = self._history.get(symbol)
            if history is None or len(history.prices) < self.config.min_samples:
                count = len(history.prices) if history else 0
                logger.debug(f"{symbol} needs more data: {count}/{self.config.min_samples} prices")
                return None

            prices = list(history.prices)
            volumes = list(history.volumes)
            order_books = list(history.order_books)
            ref_history = self._history.get(reference)
            ref_prices = list(ref_history.prices) if ref_history else []

        cfg = self.config
        stats = self.statistical
        micro = self.microstructure

        return FeatureSet(
            symbol=symbol,
            vvix=_finite(stats.vol_of_vol(prices, cfg.vvix_window, cfg.microstructure_min_samples)),
            ofi=_finite(micro.order_flow_imbalance(order_books)),
            vpin=_finite(micro.vpin(prices, volumes, cfg.microstructure_min_samples)),
            correlation=_finite(self._correlation(symbol, prices, ref_prices)),
            liquidity=_finite(micro.liquidity(order_books, cfg.depth_levels, cfg.depth_normalizer)),
            volatility=_finite(stats.volatility(prices)),
            momentum=_finite(stats.momentum(prices)),
            mean_reversion=_finite(stats.mean_reversion(prices)),
            trend=_finite(stats.trend(prices, cfg.trend_window, cfg.min_samples)),
            timestamp=self.clock()
        )

    def _correlation(self, symbol: str, prices: List[float], ref_prices: List[float]) -> float:
        """Return correlation against the reference pair; 0 for the pair itself."""
        window = self.config.correlation_window
        if symbol == self.config.reference_symbol:
            return 0.0
        if len(prices) < window or len(ref_prices) < window:
            return 0.0

        length = min(len(prices), len(ref_prices), window)
        return self.statistical.pearson(
            self.statistical.returns(prices[-length:]),
            self.statistical.returns(ref_prices[-length:])
        )

    def detect_regime(self, symbol: str) -> Optional[MarketRegime]:
        """
        Classify the current regime for a symbol.

        Decision list, first match wins: volatile, trending, ranging, stable.
        """
        features = self.extract_features(symbol)
        if features is None:
            return None

        if features.volatility > 0.7:
            regime_type, confidence = RegimeType.VOLATILE, features.volatility
        elif abs(features.trend) > 0.6:
            regime_type, confidence = RegimeType.TRENDING, abs(features.trend)
        elif features.mean_reversion > 0.6:
            regime_type, confidence = RegimeType.RANGING, features.mean_reversion
        else:
            regime_type, confidence = RegimeType.STABLE, 0.5

        regime = MarketRegime(type=regime_type, confidence=confidence, features=features)
        logger.debug(f"{symbol} regime: {regime_type.value} (conf: {confidence:.2f})")

        if self.sink is not None:
            self.sink.submit('save_market_features', symbol,
                             clamp_features(features), clamp_regime(regime))

        return regime

    def get_supported_symbols(self) -> List[str]:
        """Symbols with enough price history for feature extraction."""
        with self.lock:
            return [symbol for symbol, history in self._history.items()
                    if len(history.prices) >= self.config.min_samples]

    def get_history(self, symbol: str) -> Optional[dict]:
        """Read-only copy of a symbol's buffers."""
        with self.lock:
            history = self._history.get(symbol)
            if history is None:
                return None
            return {
                'prices': list(history.prices),
                'volumes': list(history.volumes),
                'order_books': list(history.order_books)
            }

    def cleanup_old_symbols(self, active_symbols: Iterable[str]) -> List[str]:
        """Drop buffers for every symbol not in ``active_symbols``."""
        active = set(active_symbols)
        with self.lock:
            stale = [symbol for symbol in self._history if symbol not in active]
            for symbol in stale:
                del self._history[symbol]

        if stale:
            logger.info(f"Cleaned up data for {len(stale)} inactive symbols")
        return stale
