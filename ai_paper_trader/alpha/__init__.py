"""
Alpha Models Module
==================
"""
from .bandit import BanditArm, RandomSource
from .strategies import (
    SignalAction,
    TradingSignal,
    Strategy,
    TrendFollowingStrategy,
    SwingTradingStrategy,
    MomentumStrategy,
    MeanReversionStrategy,
    BreakoutStrategy,
    ScalpingStrategy,
    StatisticalArbitrageStrategy,
    ContextualBanditsStrategy,
    build_strategies
)
from .orchestrator import StrategyOrchestrator

__all__ = [
    'BanditArm',
    'RandomSource',
    'SignalAction',
    'TradingSignal',
    'Strategy',
    'TrendFollowingStrategy',
    'SwingTradingStrategy',
    'MomentumStrategy',
    'MeanReversionStrategy',
    'BreakoutStrategy',
    'ScalpingStrategy',
    'StatisticalArbitrageStrategy',
    'ContextualBanditsStrategy',
    'build_strategies',
    'StrategyOrchestrator'
]
