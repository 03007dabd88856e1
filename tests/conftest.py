"""
Pytest configuration.
Fake quote source, manual network signal, fast timer cadence and teardown.
"""

import asyncio
import random
from typing import Callable, Iterable, List, Optional
from unittest.mock import AsyncMock

import pytest

from quotefeed.schemas.market import BatchQuoteResult, MarketStatus, Quote, SymbolQuoteResult
from quotefeed.schemas.realtime import BaseEvent
from quotefeed.services.network_status import ManualNetworkStatus
from quotefeed.services.realtime import RealTimeDataService, RealtimeConfig

RNG_SEED = 1337


def make_quote(symbol: str, price: float = 100.0, change: float = 1.5) -> Quote:
    return Quote(
        symbol=symbol,
        open=price - 1,
        high=price + 2,
        low=price - 2,
        price=price,
        volume=1_340_000,
        latest_trading_day="2024-03-15",
        previous_close=price - change,
        change=change,
        change_percent=round(change / (price - change) * 100, 4),
    )


def make_batch(symbols: Iterable[str], failing: Iterable[str] = ()) -> BatchQuoteResult:
    failing = set(failing)
    data = {}
    errors = []
    for symbol in symbols:
        if symbol in failing:
            data[symbol] = SymbolQuoteResult(success=False, error="No quote data available")
            errors.append(f"{symbol}: No quote data available")
        else:
            data[symbol] = SymbolQuoteResult(success=True, data=make_quote(symbol))
    return BatchQuoteResult(success=not errors, data=data, error="; ".join(errors) or None)


class FakeQuoteSource:
    """QuoteSource double; both calls are AsyncMocks so tests can re-script them."""

    def __init__(self):
        self.failing: set = set()
        self.get_market_status = AsyncMock(return_value=MarketStatus(is_open=True, status="Open"))
        self.get_multiple_quotes = AsyncMock(side_effect=self._quotes)

    async def _quotes(self, symbols: List[str]) -> BatchQuoteResult:
        return make_batch(symbols, self.failing)


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self):
        self.events: List[BaseEvent] = []

    def __call__(self, event: BaseEvent) -> None:
        self.events.append(event)

    def types(self) -> List[str]:
        return [event.type for event in self.events]

    def of(self, event_type: str) -> List[BaseEvent]:
        return [event for event in self.events if event.type == event_type]

    def count(self, event_type: str) -> int:
        return len(self.of(event_type))


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, step: float = 0.005) -> None:
    """Yield to the loop until predicate() holds; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail(f"condition not met within {timeout}s")
        await asyncio.sleep(step)


@pytest.fixture
def seeded_random():
    """Provide seeded random number generator."""
    return random.Random(RNG_SEED)


@pytest.fixture
def quote_source() -> FakeQuoteSource:
    return FakeQuoteSource()


@pytest.fixture
def network() -> ManualNetworkStatus:
    return ManualNetworkStatus(online=True)


@pytest.fixture
def fast_config() -> RealtimeConfig:
    """Millisecond cadence so timer behaviour is observable in tests."""
    return RealtimeConfig(
        update_interval_s=0.05,
        heartbeat_interval_s=0.05,
        max_reconnect_attempts=5,
        reconnect_base_delay_s=0.001,
        reconnect_schedule_delay_s=0.001,
        online_reconnect_delay_s=0.001,
        probe_timeout_s=0.5,
    )


@pytest.fixture
async def make_service(quote_source, network, fast_config):
    """Factory for managers with an attached recorder; all are closed on teardown."""
    created: List[RealTimeDataService] = []

    def _make(config: Optional[RealtimeConfig] = None, **overrides):
        config = config or fast_config
        for key, value in overrides.items():
            setattr(config, key, value)
        service = RealTimeDataService(quote_source, network, config)
        recorder = EventRecorder()
        service.bus.on_any(recorder)
        created.append(service)
        return service, recorder

    yield _make

    for service in created:
        await service.aclose()


@pytest.fixture
def watchlist_path(tmp_path) -> str:
    return str(tmp_path / "state" / "watchlist.json")
