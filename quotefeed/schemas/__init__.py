"""
Schemas
Pydantic models for market data and the real-time event stream.
"""

from .market import (
    BatchQuoteResult, ChartResult, MarketStatus, PopularStock, PriceBar, Quote,
    SearchResult, SymbolMatch, SymbolQuoteResult,
)
from .realtime import ConnectionSnapshot, ConnectionState, EventType, RealtimeEvent

__all__ = [
    "BatchQuoteResult",
    "ChartResult",
    "MarketStatus",
    "PopularStock",
    "PriceBar",
    "Quote",
    "SearchResult",
    "SymbolMatch",
    "SymbolQuoteResult",
    "ConnectionSnapshot",
    "ConnectionState",
    "EventType",
    "RealtimeEvent",
]
