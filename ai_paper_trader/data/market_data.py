"""
Market Data Module
==================
Normalised ticker updates and order-book snapshots delivered by the
market-data feed. The feed itself (websocket plumbing, reconnects) lives
outside this package; frames arrive here already decoded.
"""

import pandas as pd
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

# [price, size]
BookLevel = Tuple[float, float]


def utc_now() -> datetime:
    """Current time as naive UTC, the time base of every decoded frame."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _parse_timestamp(value) -> datetime:
    """Accept epoch milliseconds, ISO strings or datetimes; aware values become naive UTC."""
    if value is None:
        return utc_now()
    if isinstance(value, (int, float)):
        ts = pd.to_datetime(value, unit='ms')
    else:
        ts = pd.Timestamp(value)
    if ts.tzinfo is not None:
        ts = ts.tz_convert('UTC').tz_localize(None)
    return ts.to_pydatetime()


def _parse_levels(levels) -> List[BookLevel]:
    return [(float(price), float(size)) for price, size in (levels or [])]


@dataclass(frozen=True)
class TickerUpdate:
    """Latest trade price and volume for one symbol."""
    symbol: str
    price: float
    volume: float
    change_24h: float = 0.0
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def from_dict(cls, data: dict) -> 'TickerUpdate':
        return cls(
            symbol=data['symbol'],
            price=float(data['price']),
            volume=float(data.get('volume', 0.0)),
            change_24h=float(data.get('change24h', data.get('change_24h', 0.0))),
            timestamp=_parse_timestamp(data.get('timestamp'))
        )


@dataclass(frozen=True)
class OrderBookSnapshot:
    """Top-of-book levels for one symbol, best price first on each side."""
    symbol: str
    bids: Tuple[BookLevel, ...]
    asks: Tuple[BookLevel, ...]
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def best_bid(self) -> float:
        return self.bids[0][0] if self.bids else 0.0

    @property
    def best_ask(self) -> float:
        return self.asks[0][0] if self.asks else 0.0

    def bid_volume(self, levels: Optional[int] = None) -> float:
        """Total bid size, optionally over the top ``levels`` only."""
        return sum(size for _, size in self.bids[:levels])

    def ask_volume(self, levels: Optional[int] = None) -> float:
        """Total ask size, optionally over the top ``levels`` only."""
        return sum(size for _, size in self.asks[:levels])

    @classmethod
    def from_dict(cls, data: dict) -> 'OrderBookSnapshot':
        return cls(
            symbol=data['symbol'],
            bids=tuple(_parse_levels(data.get('bids'))),
            asks=tuple(_parse_levels(data.get('asks'))),
            timestamp=_parse_timestamp(data.get('timestamp'))
        )


@dataclass
class MarketData:
    """One feed frame: tickers and order books keyed by symbol."""
    tickers: Dict[str, TickerUpdate] = field(default_factory=dict)
    order_books: Dict[str, OrderBookSnapshot] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def prices(self) -> Dict[str, float]:
        """Latest price per symbol in this frame."""
        return {symbol: ticker.price for symbol, ticker in self.tickers.items()}

    @classmethod
    def from_dict(cls, data: dict) -> 'MarketData':
        """
        Build a frame from a decoded feed message.

        ``tickers`` and ``orderBooks`` may be given either as mappings keyed
        by symbol or as lists of records carrying their own ``symbol``.
        """
        tickers = {}
        raw_tickers = data.get('tickers') or {}
        if isinstance(raw_tickers, dict):
            raw_tickers = [{'symbol': symbol, **record} for symbol, record in raw_tickers.items()]
        for record in raw_tickers:
            try:
                ticker = TickerUpdate.from_dict(record)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed ticker {record!r}: {e}")
                continue
            tickers[ticker.symbol] = ticker

        order_books = {}
        raw_books = data.get('orderBooks', data.get('order_books')) or {}
        if isinstance(raw_books, dict):
            raw_books = [{'symbol': symbol, **record} for symbol, record in raw_books.items()]
        for record in raw_books:
            try:
                book = OrderBookSnapshot.from_dict(record)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed order book {record!r}: {e}")
                continue
            order_books[book.symbol] = book

        return cls(
            tickers=tickers,
            order_books=order_books,
            timestamp=_parse_timestamp(data.get('timestamp'))
        )
