"""
Market Data Service
High-level market data access on top of the Alpha Vantage client: input
validation, derived quote fields, batch quotes with per-symbol isolation,
chart periods, TSX session status and display formatting.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from quotefeed.config import settings
from quotefeed.schemas.market import (
    BatchQuoteResult, ChartResult, MarketStatus, PopularStock, PriceBar,
    SearchResult, SymbolMatch, SymbolQuoteResult
)
from quotefeed.services.stock_api import StockApiClient

logger = logging.getLogger("market_data")

TSX_TZ = ZoneInfo("America/Toronto")
TSX_OPEN_MINUTE = 9 * 60 + 30
TSX_CLOSE_MINUTE = 16 * 60

DAY_S = 24 * 60 * 60
PERIOD_CUTOFF_S: Dict[str, Optional[int]] = {
    "5D": 5 * DAY_S,
    "1M": 30 * DAY_S,
    "3M": 90 * DAY_S,
    "6M": 180 * DAY_S,
    "1Y": 365 * DAY_S,
    "MAX": None,
}


def format_currency(value, currency: str = "CAD") -> str:
    """Format a price the way en-CA renders dollars, e.g. $1,234.50."""
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value != value:
        return "$0.00"
    prefix = "-" if value < 0 else ""
    symbol = "$" if currency in ("CAD", "USD") else f"{currency} "
    return f"{prefix}{symbol}{abs(value):,.2f}"


def format_number(value) -> str:
    """Compact large numbers: 1.2B, 3.4M, 5.6K."""
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value != value:
        return "0"
    if value >= 1_000_000_000:
        return f"{value / 1_000_000_000:.1f}B"
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return f"{value:,}"


def format_percentage(value) -> str:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value != value:
        return "0.00%"
    sign = "+" if value >= 0 else ""
    return f"{sign}{value:.2f}%"


def tsx_session_status(now: datetime) -> MarketStatus:
    """TSX is open Monday-Friday 9:30 AM - 4:00 PM Toronto time."""
    local = now.astimezone(TSX_TZ)
    minute_of_day = local.hour * 60 + local.minute

    if local.weekday() >= 5:
        return MarketStatus(is_open=False, status="Closed (Weekend)")
    if TSX_OPEN_MINUTE <= minute_of_day < TSX_CLOSE_MINUTE:
        return MarketStatus(is_open=True, status="Open")
    if minute_of_day < TSX_OPEN_MINUTE:
        return MarketStatus(is_open=False, status="Pre-Market")
    return MarketStatus(is_open=False, status="After Hours")


class MarketDataService:
    """Quote cache/formatter used by the real-time manager and the routes."""

    def __init__(
        self,
        api: Optional[StockApiClient] = None,
        *,
        batch_request_delay_s: Optional[float] = None,
        now_fn: Callable[[], datetime] = lambda: datetime.now(TSX_TZ)
    ):
        self.api = api or StockApiClient()
        self.batch_request_delay_s = (
            settings.BATCH_REQUEST_DELAY_S if batch_request_delay_s is None else batch_request_delay_s
        )
        self._now = now_fn

    async def search_stocks(self, query: str) -> SearchResult:
        query = (query or "").strip()
        if not query:
            return SearchResult(success=False, error="Search query must be at least 1 character")

        result = await self.api.search_stocks(query)

        # Short queries are usually tickers; surface popular TSX names first
        if len(query) <= 2:
            needle = query.lower()
            popular = [
                SymbolMatch(symbol=stock.symbol, name=stock.name, match_score=0.9)
                for stock in self.get_popular_stocks()
                if needle in stock.symbol.lower() or needle in stock.name.lower()
            ]
            if popular:
                result.data = popular + result.data

        return result

    async def get_stock_quote(self, symbol: str) -> SymbolQuoteResult:
        if not symbol or not symbol.strip():
            return SymbolQuoteResult(success=False, error="Symbol is required")

        result = await self.api.get_quote(symbol)
        if result.success and result.data:
            quote = result.data
            quote.is_gainer = quote.change > 0
            quote.is_loser = quote.change < 0
            quote.formatted_change = format_currency(quote.change)
            quote.formatted_price = format_currency(quote.price)
            quote.formatted_volume = format_number(quote.volume)
        return result

    async def get_multiple_quotes(self, symbols: List[str]) -> BatchQuoteResult:
        """
        Fetch quotes one symbol at a time.

        A failing symbol never fails the others; its error is recorded in its
        own entry and in the joined batch error message.
        """
        if not symbols:
            return BatchQuoteResult(success=False, error="Symbols array is required")

        results: Dict[str, SymbolQuoteResult] = {}
        errors: List[str] = []

        for index, symbol in enumerate(symbols):
            try:
                quote = await self.get_stock_quote(symbol)
                results[symbol] = quote
                if not quote.success:
                    errors.append(f"{symbol}: {quote.error}")
            except Exception as e:
                errors.append(f"{symbol}: {e}")
                results[symbol] = SymbolQuoteResult(success=False, error=str(e))

            if self.batch_request_delay_s > 0 and index < len(symbols) - 1:
                await asyncio.sleep(self.batch_request_delay_s)

        return BatchQuoteResult(
            success=not errors,
            data=results,
            error="; ".join(errors) if errors else None
        )

    async def get_chart_data(self, symbol: str, period: str = "1D", interval: str = "5min") -> ChartResult:
        if not symbol:
            return ChartResult(success=False, error="Symbol is required")

        if period == "1D":
            return await self.api.get_intraday_data(symbol, interval)
        if period in PERIOD_CUTOFF_S:
            result = await self.api.get_daily_data(symbol, "full")
            if result.success:
                result.data = self.filter_data_by_period(result.data, period)
            return result
        return await self.api.get_intraday_data(symbol, "5min")

    @staticmethod
    def filter_data_by_period(
        data: List[PriceBar],
        period: str,
        now_s: Optional[float] = None
    ) -> List[PriceBar]:
        if not data:
            return data
        if now_s is None:
            now_s = time.time()

        window = PERIOD_CUTOFF_S.get(period, DAY_S)
        if window is None:
            return data
        cutoff = now_s - window
        return [bar for bar in data if bar.time >= cutoff]

    async def get_market_status(self, fresh: bool = True) -> MarketStatus:
        """
        Probe the provider and report the TSX session.

        Raises whatever the provider probe raises; the real-time manager
        relies on that to detect connectivity loss, so it always probes
        fresh.
        """
        payload = await self.api.get_market_status(fresh=fresh)
        status = tsx_session_status(self._now())

        for market in payload.get("markets") or []:
            if market.get("region") == "Canada" or "Toronto" in (market.get("primary_exchanges") or ""):
                status.provider_status = market.get("current_status")
                break

        return status

    def get_popular_stocks(self) -> List[PopularStock]:
        return self.api.get_popular_tsx_stocks()

    format_currency = staticmethod(format_currency)
    format_number = staticmethod(format_number)
    format_percentage = staticmethod(format_percentage)

    async def aclose(self) -> None:
        self.api.clear_cache()
        await self.api.aclose()
