"""
Utility Tests
TTL cache, request spacing and the periodic/delayed task helpers.
"""

import asyncio

import pytest

from conftest import wait_until
from quotefeed.util.async_tools import AsyncTimeoutError, PeriodicTask, call_later, cancel_task, timeout
from quotefeed.util.cache import TTLCache
from quotefeed.util.ratelimit import RequestSpacer


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.slept = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)
        self.now += seconds


@pytest.mark.deterministic
class TestTTLCache:

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = TTLCache(max_entries=4, clock=clock)
        cache.set("quote_RY.TO", {"price": 1}, ttl_ms=60_000)

        assert cache.get("quote_RY.TO") == {"price": 1}
        clock.advance(59.9)
        assert "quote_RY.TO" in cache
        clock.advance(0.2)
        assert cache.get("quote_RY.TO") is None
        assert len(cache) == 0

    def test_size_bound_evicts_oldest(self):
        clock = FakeClock()
        cache = TTLCache(max_entries=2, clock=clock)
        cache.set("a", 1, 60_000)
        cache.set("b", 2, 60_000)
        cache.set("c", 3, 60_000)

        assert len(cache) == 2
        assert cache.get("a") is None
        assert cache.get("c") == 3

    def test_expired_entries_evicted_before_live_ones(self):
        clock = FakeClock()
        cache = TTLCache(max_entries=2, clock=clock)
        cache.set("live", 1, 600_000)
        cache.set("short", 2, 1_000)
        clock.advance(2)
        cache.set("new", 3, 600_000)

        assert cache.get("live") == 1
        assert cache.get("new") == 3

    def test_stats(self):
        clock = FakeClock()
        cache = TTLCache(max_entries=4, clock=clock)
        cache.set("a", 1, 1_000)
        cache.get("a")
        cache.get("missing")

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["valid_entries"] == 1

        cache.clear()
        assert len(cache) == 0

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            TTLCache(max_entries=0)


@pytest.mark.asyncio
@pytest.mark.deterministic
class TestRequestSpacer:

    async def test_first_call_is_free_then_spaced(self):
        clock = FakeClock()
        spacer = RequestSpacer(12.0, clock=clock, sleep=clock.sleep)

        assert await spacer.wait() == 0.0
        clock.advance(5)
        assert await spacer.wait() == pytest.approx(7.0)
        clock.advance(20)
        assert await spacer.wait() == 0.0

        stats = spacer.get_stats()
        assert stats.calls == 3
        assert stats.total_wait_s == pytest.approx(7.0)

        spacer.reset_stats()
        assert spacer.get_stats().calls == 0

    async def test_concurrent_callers_are_serialised(self):
        clock = FakeClock()
        spacer = RequestSpacer(1.0, clock=clock, sleep=clock.sleep)

        waits = await asyncio.gather(*(spacer.wait() for _ in range(3)))

        assert sorted(waits) == [0.0, 1.0, 1.0]
        assert clock.slept == [1.0, 1.0]


@pytest.mark.asyncio
class TestAsyncTools:

    async def test_timeout_raises(self):
        with pytest.raises(AsyncTimeoutError):
            await timeout(asyncio.sleep(1), 0.01)

    async def test_timeout_is_a_timeout_error(self):
        assert issubclass(AsyncTimeoutError, TimeoutError)
        assert await timeout(asyncio.sleep(0, result="ok"), 1) == "ok"

    async def test_periodic_runs_immediately_and_repeats(self):
        calls = []

        async def _tick():
            calls.append(asyncio.get_running_loop().time())

        task = PeriodicTask(_tick, 0.01, name="test_tick")
        task.start()
        await wait_until(lambda: len(calls) >= 3)
        task.stop()
        await asyncio.sleep(0.03)
        count = len(calls)
        await asyncio.sleep(0.03)

        assert len(calls) == count
        assert not task.running

    async def test_periodic_delayed_first_tick(self):
        calls = []

        async def _tick():
            calls.append(1)

        task = PeriodicTask(_tick, 0.05, name="test_delayed", run_immediately=False)
        task.start()
        await asyncio.sleep(0.01)
        assert calls == []
        await wait_until(lambda: calls == [1])
        task.stop()

    async def test_periodic_survives_failing_tick(self, caplog):
        calls = []

        async def _tick():
            calls.append(1)
            raise RuntimeError("tick failed")

        task = PeriodicTask(_tick, 0.01, name="test_failing")
        task.start()
        await wait_until(lambda: len(calls) >= 2)
        task.stop()

        assert "tick failed" in caplog.text

    async def test_periodic_drops_overdue_ticks(self):
        active = 0
        peak = 0

        async def _slow():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.03)
            active -= 1

        task = PeriodicTask(_slow, 0.01, name="test_slow")
        task.start()
        await wait_until(lambda: task.ticks >= 2)
        task.stop()

        assert peak == 1
        assert task.dropped_ticks >= 2

    async def test_stop_cancels_in_flight_call(self):
        cancelled = asyncio.Event()

        async def _hang():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        task = PeriodicTask(_hang, 1, name="test_hang")
        task.start()
        await asyncio.sleep(0.01)
        task.stop()

        await asyncio.wait_for(cancelled.wait(), 1)

    def test_interval_must_be_positive(self):
        async def _noop():
            pass

        with pytest.raises(ValueError):
            PeriodicTask(_noop, 0, name="bad")

    async def test_call_later_and_cancel(self):
        fired = []

        async def _fire():
            fired.append(1)

        call_later(0.005, _fire, name="test_fire")
        cancelled = call_later(0.005, _fire, name="test_cancel")
        cancel_task(cancelled)

        await wait_until(lambda: fired == [1])
        await asyncio.sleep(0.02)
        assert fired == [1]
        assert cancelled.cancelled()

    async def test_call_later_logs_failures(self, caplog):
        async def _boom():
            raise RuntimeError("delayed failure")

        task = call_later(0, _boom, name="test_boom")
        await task

        assert "delayed failure" in caplog.text
