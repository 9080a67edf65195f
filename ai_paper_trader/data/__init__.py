"""
Data Module
===========
"""
from .market_data import MarketData, TickerUpdate, OrderBookSnapshot, utc_now

__all__ = ['MarketData', 'TickerUpdate', 'OrderBookSnapshot', 'utc_now']
