"""
Quote Source Protocol
Defines what the real-time manager needs from a market data backend.
"""

from typing import List, Protocol
from abc import abstractmethod

from quotefeed.schemas.market import BatchQuoteResult, MarketStatus


class QuoteSource(Protocol):
    """Protocol for batch quote access plus a lightweight probe."""

    @abstractmethod
    async def get_market_status(self) -> MarketStatus:
        """Probe the data source; raises on connectivity failure."""
        ...

    @abstractmethod
    async def get_multiple_quotes(self, symbols: List[str]) -> BatchQuoteResult:
        """Fetch quotes for several symbols with per-symbol success/failure."""
        ...
