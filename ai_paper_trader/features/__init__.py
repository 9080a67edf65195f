"""
Feature Engineering Module
==========================
"""
from .feature_engine import (
    FeatureEngine,
    FeatureSet,
    MarketRegime,
    RegimeType,
    StatisticalFeatures,
    MicrostructureFeatures
)

__all__ = [
    'FeatureEngine',
    'FeatureSet',
    'MarketRegime',
    'RegimeType',
    'StatisticalFeatures',
    'MicrostructureFeatures'
]
