"""
Market data schemas using Pydantic for validation and serialization.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys for browser clients."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Quote(CamelModel):
    """Latest quote for a symbol."""
    symbol: str
    open: float
    high: float
    low: float
    price: float
    volume: int
    latest_trading_day: str
    previous_close: float
    change: float
    change_percent: float       # Percent, e.g. 1.25 for +1.25%
    # Derived by MarketDataService
    is_gainer: Optional[bool] = None
    is_loser: Optional[bool] = None
    formatted_price: Optional[str] = None
    formatted_change: Optional[str] = None
    formatted_volume: Optional[str] = None


class SymbolMatch(CamelModel):
    """Single symbol search match."""
    symbol: str
    name: str
    type: str = "Equity"
    region: str = "Canada"
    market_open: Optional[str] = None
    market_close: Optional[str] = None
    timezone: Optional[str] = None
    currency: str = "CAD"
    match_score: float = 0.0


class PriceBar(CamelModel):
    """OHLCV bar; time is epoch seconds."""
    time: float
    open: float
    high: float
    low: float
    close: float
    volume: int


class PopularStock(CamelModel):
    symbol: str
    name: str


class MarketStatus(CamelModel):
    """TSX session status."""
    is_open: bool
    status: str                 # "Open" | "Pre-Market" | "After Hours" | "Closed (Weekend)"
    provider_status: Optional[str] = None


class SymbolQuoteResult(CamelModel):
    """Per-symbol outcome inside a batch fetch."""
    success: bool
    data: Optional[Quote] = None
    error: Optional[str] = None


class SearchResult(CamelModel):
    success: bool
    data: List[SymbolMatch] = Field(default_factory=list)
    error: Optional[str] = None


class ChartResult(CamelModel):
    success: bool
    data: List[PriceBar] = Field(default_factory=list)
    error: Optional[str] = None


class BatchQuoteResult(CamelModel):
    """Outcome of a multi-symbol fetch; success only when every symbol succeeded."""
    success: bool
    data: Dict[str, SymbolQuoteResult] = Field(default_factory=dict)
    error: Optional[str] = None
    message: Optional[str] = None

    @property
    def succeeded(self) -> Dict[str, Quote]:
        """Quotes of the symbols that were retrieved."""
        return {
            symbol: result.data
            for symbol, result in self.data.items()
            if result.success and result.data is not None
        }
