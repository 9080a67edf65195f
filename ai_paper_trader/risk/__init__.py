"""
Risk Engine Module
==================
"""
from .profit_locking import (
    ProfitLockingEngine,
    Position,
    ClosedPosition,
    PositionSide,
    PositionSizer,
    format_time_held
)

__all__ = [
    'ProfitLockingEngine',
    'Position',
    'ClosedPosition',
    'PositionSide',
    'PositionSizer',
    'format_time_held'
]
