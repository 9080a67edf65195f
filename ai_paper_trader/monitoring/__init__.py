"""
Monitoring Module
=================
"""
from .performance import PerformanceTracker, PerformanceMetrics

__all__ = [
    'PerformanceTracker',
    'PerformanceMetrics'
]
