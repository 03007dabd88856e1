"""
Alpha Vantage REST client for Toronto Stock Exchange (TSX) data.
Responses are cached per request signature and calls are spaced to respect
the provider's free-tier rate limit.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from quotefeed.config import settings
from quotefeed.errors import (
    ApiError, ConfigurationError, NetworkError, RateLimitError
)
from quotefeed.schemas.market import (
    ChartResult, PopularStock, PriceBar, Quote, SearchResult, SymbolMatch, SymbolQuoteResult
)
from quotefeed.util.cache import TTLCache
from quotefeed.util.ratelimit import RequestSpacer

logger = logging.getLogger("stock_api")

CACHE_DURATION_MS = 5 * 60 * 1000
SEARCH_CACHE_MS = 10 * 60 * 1000
QUOTE_CACHE_MS = 1 * 60 * 1000
INTRADAY_CACHE_MS = 5 * 60 * 1000
DAILY_CACHE_MS = 15 * 60 * 1000
MARKET_STATUS_CACHE_MS = 1 * 60 * 1000

CANADIAN_SUFFIXES = (".TO", ".V", ".CN")

POPULAR_TSX_STOCKS = [
    ("SHOP.TO", "Shopify Inc."),
    ("RY.TO", "Royal Bank of Canada"),
    ("TD.TO", "The Toronto-Dominion Bank"),
    ("BMO.TO", "Bank of Montreal"),
    ("BNS.TO", "The Bank of Nova Scotia"),
    ("CNR.TO", "Canadian National Railway Company"),
    ("CP.TO", "Canadian Pacific Kansas City Limited"),
    ("ENB.TO", "Enbridge Inc."),
    ("TRP.TO", "TC Energy Corporation"),
    ("WCN.TO", "Waste Connections, Inc."),
    ("CNQ.TO", "Canadian Natural Resources Limited"),
    ("SU.TO", "Suncor Energy Inc."),
    ("IMO.TO", "Imperial Oil Limited"),
    ("CVE.TO", "Cenovus Energy Inc."),
    ("ATD.TO", "Alimentation Couche-Tard Inc."),
]


def _to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    return float(str(value).replace("%", "").strip())


def _to_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    return int(float(value))


def _epoch_seconds(stamp: str) -> float:
    return datetime.fromisoformat(stamp).timestamp()


class StockApiClient:
    """Cached, rate-limited Alpha Vantage client."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[TTLCache] = None,
        spacer: Optional[RequestSpacer] = None,
        timeout_s: Optional[float] = None
    ):
        self.api_key = settings.ALPHA_VANTAGE_API_KEY if api_key is None else api_key
        self.base_url = base_url or settings.ALPHA_VANTAGE_BASE_URL
        self.timeout_s = timeout_s if timeout_s is not None else settings.API_TIMEOUT_S
        self.cache = cache or TTLCache(max_entries=settings.QUOTE_CACHE_MAX_ENTRIES)
        self.spacer = spacer or RequestSpacer(settings.API_RATE_LIMIT_DELAY_S, name="alpha_vantage")
        self._client = client
        self._owns_client = client is None
        self.request_count = 0

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client if we created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def make_api_call(
        self,
        params: Dict[str, str],
        cache_key: str,
        cache_ttl_ms: int = CACHE_DURATION_MS,
        *,
        use_cache: bool = True,
        spaced: bool = True
    ) -> Dict[str, Any]:
        """
        Generic API call with caching.

        use_cache=False always hits the provider (the response is still
        stored); spaced=False skips the request spacer queue.

        Raises:
            ConfigurationError: API key missing
            NetworkError: transport failure or non-2xx response
            ApiError: provider returned an error payload
            RateLimitError: provider throttled the call
        """
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        if not self.api_key:
            raise ConfigurationError(
                "Alpha Vantage API key not configured. Please set ALPHA_VANTAGE_API_KEY environment variable."
            )

        if spaced:
            await self.spacer.wait()

        query = dict(params)
        query["apikey"] = self.api_key
        self.request_count += 1

        try:
            response = await self._get_client().get(self.base_url, params=query)
        except httpx.TimeoutException as e:
            raise NetworkError(f"API request timed out: {type(e).__name__}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"API network error: {type(e).__name__}") from e

        if not response.is_success:
            raise NetworkError(
                f"API request failed: {response.status_code} {response.reason_phrase}",
                details={"status_code": response.status_code}
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ApiError("API returned invalid JSON") from e

        if not isinstance(data, dict):
            raise ApiError("API returned unexpected payload")
        if data.get("Error Message"):
            raise ApiError(f"API Error: {data['Error Message']}")
        if data.get("Information") or data.get("Note"):
            raise RateLimitError(f"API Rate Limit: {data.get('Information') or data.get('Note')}")

        self.cache.set(cache_key, data, cache_ttl_ms)
        return data

    async def search_stocks(self, query: str) -> SearchResult:
        """Search for Canadian listings (TSX, TSXV, CSE)."""
        try:
            data = await self.make_api_call(
                {"function": "SYMBOL_SEARCH", "keywords": query},
                f"search_{query}",
                SEARCH_CACHE_MS
            )

            matches = []
            for stock in data.get("bestMatches") or []:
                symbol = stock.get("1. symbol", "")
                if stock.get("4. region") != "Canada" and not any(s in symbol for s in CANADIAN_SUFFIXES):
                    continue
                matches.append(SymbolMatch(
                    symbol=symbol,
                    name=stock.get("2. name", ""),
                    type=stock.get("3. type", "Equity"),
                    region=stock.get("4. region", "Canada"),
                    market_open=stock.get("5. marketOpen"),
                    market_close=stock.get("6. marketClose"),
                    timezone=stock.get("7. timezone"),
                    currency=stock.get("8. currency", "CAD"),
                    match_score=_to_float(stock.get("9. matchScore"))
                ))

            matches.sort(key=lambda m: m.match_score, reverse=True)
            return SearchResult(success=True, data=matches)
        except Exception as e:
            logger.error(f"[stock_api] Stock search error: {e}")
            return SearchResult(success=False, error=str(e))

    async def get_quote(self, symbol: str) -> SymbolQuoteResult:
        """Get the latest quote for a stock."""
        try:
            formatted = self.format_tsx_symbol(symbol)
            data = await self.make_api_call(
                {"function": "GLOBAL_QUOTE", "symbol": formatted},
                f"quote_{formatted}",
                QUOTE_CACHE_MS
            )

            quote = data.get("Global Quote")
            if not quote:
                raise ApiError("No quote data available")

            return SymbolQuoteResult(success=True, data=Quote(
                symbol=quote["01. symbol"],
                open=_to_float(quote.get("02. open")),
                high=_to_float(quote.get("03. high")),
                low=_to_float(quote.get("04. low")),
                price=_to_float(quote.get("05. price")),
                volume=_to_int(quote.get("06. volume")),
                latest_trading_day=quote.get("07. latest trading day", ""),
                previous_close=_to_float(quote.get("08. previous close")),
                change=_to_float(quote.get("09. change")),
                change_percent=_to_float(quote.get("10. change percent"))
            ))
        except Exception as e:
            logger.error(f"[stock_api] Quote fetch error for {symbol}: {e}")
            return SymbolQuoteResult(success=False, error=str(e))

    async def get_intraday_data(self, symbol: str, interval: str = "5min") -> ChartResult:
        """Get intraday bars for charts."""
        try:
            formatted = self.format_tsx_symbol(symbol)
            data = await self.make_api_call(
                {
                    "function": "TIME_SERIES_INTRADAY",
                    "symbol": formatted,
                    "interval": interval,
                    "outputsize": "compact"
                },
                f"intraday_{formatted}_{interval}",
                INTRADAY_CACHE_MS
            )

            series = data.get(f"Time Series ({interval})")
            if not series:
                raise ApiError("No intraday data available")

            return ChartResult(success=True, data=self._to_bars(series))
        except Exception as e:
            logger.error(f"[stock_api] Intraday data fetch error for {symbol}: {e}")
            return ChartResult(success=False, error=str(e))

    async def get_daily_data(self, symbol: str, output_size: str = "compact") -> ChartResult:
        """Get daily historical bars."""
        try:
            formatted = self.format_tsx_symbol(symbol)
            data = await self.make_api_call(
                {
                    "function": "TIME_SERIES_DAILY",
                    "symbol": formatted,
                    "outputsize": output_size
                },
                f"daily_{formatted}_{output_size}",
                DAILY_CACHE_MS
            )

            series = data.get("Time Series (Daily)")
            if not series:
                raise ApiError("No daily data available")

            return ChartResult(success=True, data=self._to_bars(series))
        except Exception as e:
            logger.error(f"[stock_api] Daily data fetch error for {symbol}: {e}")
            return ChartResult(success=False, error=str(e))

    async def get_market_status(self, fresh: bool = True) -> Dict[str, Any]:
        """
        Lightweight provider probe (MARKET_STATUS endpoint).

        Unlike the data calls this raises, since callers use it to decide
        whether the provider is reachable. A fresh probe always sends a
        request and does not queue behind data calls on the spacer; pass
        fresh=False to read through the cache.
        """
        return await self.make_api_call(
            {"function": "MARKET_STATUS"},
            "market_status",
            MARKET_STATUS_CACHE_MS,
            use_cache=not fresh,
            spaced=not fresh
        )

    @staticmethod
    def _to_bars(series: Dict[str, Dict[str, str]]) -> List[PriceBar]:
        bars = [
            PriceBar(
                time=_epoch_seconds(stamp),
                open=_to_float(values.get("1. open")),
                high=_to_float(values.get("2. high")),
                low=_to_float(values.get("3. low")),
                close=_to_float(values.get("4. close")),
                volume=_to_int(values.get("5. volume"))
            )
            for stamp, values in series.items()
        ]
        bars.sort(key=lambda bar: bar.time)
        return bars

    @staticmethod
    def format_tsx_symbol(symbol: str) -> str:
        """Assume TSX when the symbol carries no exchange suffix."""
        symbol = symbol.strip().upper()
        if "." not in symbol and ":" not in symbol:
            return f"{symbol}.TO"
        return symbol

    @staticmethod
    def get_popular_tsx_stocks() -> List[PopularStock]:
        return [PopularStock(symbol=symbol, name=name) for symbol, name in POPULAR_TSX_STOCKS]

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_cache_size(self) -> int:
        return len(self.cache)
