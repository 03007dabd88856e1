"""
Stock API Client Tests
Alpha Vantage payload mapping, caching and error taxonomy over
httpx.MockTransport.
"""

import asyncio

import httpx
import pytest

from quotefeed.errors import ApiError, ConfigurationError, NetworkError, RateLimitError
from quotefeed.services.stock_api import StockApiClient
from quotefeed.util.cache import TTLCache
from quotefeed.util.ratelimit import RequestSpacer

GLOBAL_QUOTE = {
    "Global Quote": {
        "01. symbol": "SHOP.TO",
        "02. open": "101.5000",
        "03. high": "104.2500",
        "04. low": "100.1000",
        "05. price": "103.9000",
        "06. volume": "2154300",
        "07. latest trading day": "2024-03-15",
        "08. previous close": "101.0000",
        "09. change": "2.9000",
        "10. change percent": "2.8713%",
    }
}

SEARCH = {
    "bestMatches": [
        {"1. symbol": "SHOP", "2. name": "Shopify Inc", "4. region": "United States", "9. matchScore": "0.9"},
        {"1. symbol": "SHOP.TRT", "2. name": "Shopify Inc", "4. region": "Toronto", "9. matchScore": "0.7"},
        {"1. symbol": "SHOP.TO", "2. name": "Shopify Inc", "4. region": "Canada", "9. matchScore": "0.8"},
        {"1. symbol": "SHP.V", "2. name": "Shopper Corp", "4. region": "Canada", "9. matchScore": "0.95"},
    ]
}

MARKET_STATUS = {
    "markets": [
        {"region": "Canada", "primary_exchanges": "Toronto, Toronto Ventures", "current_status": "open"},
    ]
}


def _client(handler, api_key="test-key", spacer=None, **kwargs):
    transport = httpx.MockTransport(handler)
    return StockApiClient(
        api_key=api_key,
        base_url="https://av.test/query",
        client=httpx.AsyncClient(transport=transport),
        cache=TTLCache(max_entries=16),
        spacer=spacer or RequestSpacer(0),
        **kwargs
    )


def _json(payload, status=200):
    def handler(request):
        return httpx.Response(status, json=payload)
    return handler


@pytest.mark.asyncio
class TestStockApiClient:

    async def test_quote_mapping(self):
        seen = []

        def handler(request):
            seen.append(request.url)
            return httpx.Response(200, json=GLOBAL_QUOTE)

        api = _client(handler)
        result = await api.get_quote("shop")

        assert result.success is True
        quote = result.data
        assert quote.symbol == "SHOP.TO"
        assert quote.price == pytest.approx(103.9)
        assert quote.volume == 2154300
        assert quote.change_percent == pytest.approx(2.8713)
        assert seen[0].params["symbol"] == "SHOP.TO"
        assert seen[0].params["function"] == "GLOBAL_QUOTE"
        assert seen[0].params["apikey"] == "test-key"
        await api.aclose()

    async def test_quote_is_cached(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=GLOBAL_QUOTE)

        api = _client(handler)
        await api.get_quote("SHOP.TO")
        await api.get_quote("shop.to")

        assert len(calls) == 1
        assert api.request_count == 1
        assert api.get_cache_size() == 1

        api.clear_cache()
        await api.get_quote("SHOP.TO")
        assert len(calls) == 2

    async def test_missing_key_raises_configuration_error(self):
        api = _client(_json(GLOBAL_QUOTE), api_key="")

        with pytest.raises(ConfigurationError, match="not configured"):
            await api.make_api_call({"function": "GLOBAL_QUOTE"}, "k")

        result = await api.get_quote("SHOP.TO")
        assert result.success is False
        assert "ALPHA_VANTAGE_API_KEY" in result.error
        assert api.request_count == 0

    async def test_http_failure_is_network_error(self):
        api = _client(_json({}, status=503))

        with pytest.raises(NetworkError, match="API request failed: 503"):
            await api.get_market_status()

    async def test_transport_failure_is_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        api = _client(handler)
        with pytest.raises(NetworkError, match="API network error"):
            await api.get_market_status()

    async def test_timeout_is_network_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        api = _client(handler)
        with pytest.raises(NetworkError, match="timed out"):
            await api.get_market_status()

    async def test_market_status_always_reaches_provider(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] > 1:
                raise httpx.ConnectError("provider down", request=request)
            return httpx.Response(200, json=MARKET_STATUS)

        api = _client(handler)
        assert await api.get_market_status() == MARKET_STATUS

        with pytest.raises(NetworkError):
            await api.get_market_status()
        assert calls["n"] == 2

        # Cached readers still see the last good payload
        assert await api.get_market_status(fresh=False) == MARKET_STATUS
        assert calls["n"] == 2

    async def test_market_status_does_not_queue_behind_spaced_calls(self):
        gate = asyncio.Event()

        async def _held_sleep(seconds):
            await gate.wait()

        spacer = RequestSpacer(12, sleep=_held_sleep)
        await spacer.wait()

        def handler(request):
            if request.url.params["function"] == "MARKET_STATUS":
                return httpx.Response(200, json=MARKET_STATUS)
            return httpx.Response(200, json=GLOBAL_QUOTE)

        api = _client(handler, spacer=spacer)
        queued = asyncio.create_task(api.get_quote("SHOP.TO"))
        await asyncio.sleep(0.01)
        assert not queued.done()

        status = await asyncio.wait_for(api.get_market_status(), 0.5)
        assert status == MARKET_STATUS
        assert spacer.calls == 1

        gate.set()
        assert (await queued).success is True
        await api.aclose()

    async def test_provider_error_message(self):
        api = _client(_json({"Error Message": "Invalid API call."}))

        with pytest.raises(ApiError, match="API Error: Invalid API call."):
            await api.make_api_call({"function": "GLOBAL_QUOTE"}, "k")

    async def test_rate_limit_note(self):
        api = _client(_json({"Note": "Thank you for using Alpha Vantage! 5 calls per minute."}))

        with pytest.raises(RateLimitError, match="API Rate Limit"):
            await api.make_api_call({"function": "GLOBAL_QUOTE"}, "k")
        assert api.get_cache_size() == 0

    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>oops</html>")

        api = _client(handler)
        with pytest.raises(ApiError, match="invalid JSON"):
            await api.make_api_call({"function": "GLOBAL_QUOTE"}, "k")

    async def test_empty_quote_is_failed_result(self):
        api = _client(_json({"Global Quote": {}}))
        result = await api.get_quote("XYZ")

        assert result.success is False
        assert result.error == "No quote data available"

    async def test_search_keeps_canadian_listings_by_score(self):
        api = _client(_json(SEARCH))
        result = await api.search_stocks("shop")

        assert result.success is True
        assert [m.symbol for m in result.data] == ["SHP.V", "SHOP.TO"]

    async def test_daily_bars_sorted_ascending(self):
        payload = {
            "Time Series (Daily)": {
                "2024-03-15": {"1. open": "3", "2. high": "4", "3. low": "2", "4. close": "3.5", "5. volume": "10"},
                "2024-03-13": {"1. open": "1", "2. high": "2", "3. low": "1", "4. close": "1.5", "5. volume": "30"},
                "2024-03-14": {"1. open": "2", "2. high": "3", "3. low": "1", "4. close": "2.5", "5. volume": "20"},
            }
        }
        api = _client(_json(payload))
        result = await api.get_daily_data("RY", "full")

        assert result.success is True
        assert [bar.close for bar in result.data] == [1.5, 2.5, 3.5]
        assert result.data[0].time < result.data[-1].time

    async def test_intraday_missing_series(self):
        api = _client(_json({"Meta Data": {}}))
        result = await api.get_intraday_data("RY", "5min")

        assert result.success is False
        assert result.error == "No intraday data available"


class TestSymbolHelpers:

    @pytest.mark.parametrize("raw, expected", [
        ("shop", "SHOP.TO"),
        (" ry ", "RY.TO"),
        ("SHP.V", "SHP.V"),
        ("TSX:RY", "TSX:RY"),
    ])
    def test_format_tsx_symbol(self, raw, expected):
        assert StockApiClient.format_tsx_symbol(raw) == expected

    def test_popular_stocks(self):
        stocks = StockApiClient.get_popular_tsx_stocks()
        assert len(stocks) == 15
        assert stocks[0].symbol == "SHOP.TO"
        assert all(stock.symbol.endswith(".TO") for stock in stocks)

