"""
AI Paper Trading Engine
=======================

Simulated crypto signal generation and position management on top of a
live ticker / order-book feed.

PRINCIPLES:
- Features are recomputed from bounded rolling windows on every tick
- Strategy choice is learned online by Thompson Sampling
- Every position carries its own exit method and is re-checked each tick
- Persistence is best-effort and never blocks or breaks the tick path
- Paper trading only: no order ever reaches an exchange

PIPELINE:
    ┌──────────────┐
    │ MARKET DATA  │  ← tickers, order books (external feed)
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ FEATURE ENG. │  ← vvix, ofi, vpin, correlation, liquidity, trend...
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ ORCHESTRATOR │  ← Thompson Sampling over 8 strategies
    └────┬─────────┘
         ↓
    ┌──────────────┐
    │ PROFIT LOCK  │  ← trailing stop, take profit, decay, drawdown
    └────┬─────────┘
         ↓  (reward)
    ┌──────────────┐
    │ MONITORING   │  ← closed-trade performance
    └──────────────┘

USAGE:
    # Replay recorded frames
    python -m ai_paper_trader.orchestrator --replay frames.jsonl --seed 7

    # Programmatic usage
    from ai_paper_trader import TradingSystem, SystemConfig, MarketData

    system = TradingSystem(SystemConfig())
    system.process(MarketData.from_dict(frame))
    print(system.get_status())

MODULES:
    - data: Feed frame normalisation (tickers, order books)
    - features: Rolling statistics and regime detection
    - alpha: Strategy heuristics and the bandit orchestrator
    - risk: Position lifecycle, exits and sizing
    - persistence: Gateways, background sink, numeric clamping
    - monitoring: Performance tracking
"""

from .config import SystemConfig, ProfitLockMethod, ProfitLockConfig
from .orchestrator import TradingSystem, FeedClock, main
from .data import MarketData, TickerUpdate, OrderBookSnapshot
from .features import FeatureEngine, FeatureSet, MarketRegime, RegimeType
from .alpha import StrategyOrchestrator, TradingSignal, SignalAction, RandomSource, BanditArm
from .risk import ProfitLockingEngine, Position, ClosedPosition, PositionSide, PositionSizer
from .persistence import PersistenceGateway, InMemoryGateway, JsonLinesGateway, PersistenceSink
from .monitoring import PerformanceTracker, PerformanceMetrics

__version__ = "1.0.0"
__all__ = [
    # Main
    'TradingSystem',
    'SystemConfig',
    'FeedClock',
    'main',

    # Data
    'MarketData',
    'TickerUpdate',
    'OrderBookSnapshot',

    # Features
    'FeatureEngine',
    'FeatureSet',
    'MarketRegime',
    'RegimeType',

    # Alpha
    'StrategyOrchestrator',
    'TradingSignal',
    'SignalAction',
    'RandomSource',
    'BanditArm',

    # Risk
    'ProfitLockingEngine',
    'ProfitLockMethod',
    'ProfitLockConfig',
    'Position',
    'ClosedPosition',
    'PositionSide',
    'PositionSizer',

    # Persistence
    'PersistenceGateway',
    'InMemoryGateway',
    'JsonLinesGateway',
    'PersistenceSink',

    # Monitoring
    'PerformanceTracker',
    'PerformanceMetrics'
]
