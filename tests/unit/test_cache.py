"""Tests for the result cache and single-flight de-duplication."""

import asyncio

import pytest

from prospect.cache import ResultCache, SingleFlight
from prospect.observability.metrics import METRICS
from prospect.protocols import FetchMethod, FetchResult

from tests.helpers import metric_delta


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_result(url="https://example.test/"):
    return FetchResult(url=url, method=FetchMethod.STATIC, status_code=200, content="<p>hi</p>")


@pytest.mark.unit
class TestResultCache:
    def test_hit_before_expiry(self):
        clock = FakeClock()
        cache = ResultCache(60.0, clock=clock)
        result = make_result()
        cache.put("k", result)
        clock.advance(59.9)
        assert cache.get("k") is result
        assert "k" in cache

    def test_lazy_eviction_on_lookup(self):
        clock = FakeClock()
        cache = ResultCache(60.0, clock=clock)
        cache.put("k", make_result())
        clock.advance(60.0)

        assert len(cache) == 1
        assert "k" not in cache
        with metric_delta(METRICS["cache_events_total"], event="expired"):
            assert cache.get("k") is None
        assert len(cache) == 0
        assert cache.stats()["expired"] == 1

    def test_miss_counts(self):
        cache = ResultCache(60.0)
        with metric_delta(METRICS["cache_events_total"], event="miss"):
            assert cache.get("absent") is None
        assert cache.stats()["misses"] == 1

    def test_per_entry_ttl_and_non_positive_ttl(self):
        clock = FakeClock()
        cache = ResultCache(60.0, clock=clock)
        cache.put("short", make_result(), ttl=1.0)
        cache.put("never", make_result(), ttl=0)
        clock.advance(2.0)
        assert cache.get("short") is None
        assert "never" not in cache

    def test_invalidate_and_clear(self):
        cache = ResultCache(60.0)
        cache.put("a", make_result())
        cache.put("b", make_result())
        assert cache.invalidate("a")
        assert not cache.invalidate("a")
        cache.clear()
        assert len(cache) == 0

    def test_hit_ratio(self):
        cache = ResultCache(60.0)
        cache.put("a", make_result())
        cache.get("a")
        cache.get("b")
        assert cache.stats()["hit_ratio"] == 0.5

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValueError):
            ResultCache(0)


@pytest.mark.unit
class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_execution(self):
        flights: SingleFlight[str] = SingleFlight()
        calls = 0
        gate = asyncio.Event()

        async def factory():
            nonlocal calls
            calls += 1
            await gate.wait()
            return "value"

        tasks = [asyncio.create_task(flights.do("k", factory)) for _ in range(5)]
        await asyncio.sleep(0)
        assert flights.in_flight("k")
        gate.set()
        results = await asyncio.gather(*tasks)

        assert results == ["value"] * 5
        assert calls == 1
        assert not flights.in_flight("k")

    @pytest.mark.asyncio
    async def test_error_reaches_every_waiter(self):
        flights: SingleFlight[str] = SingleFlight()
        gate = asyncio.Event()

        async def factory():
            await gate.wait()
            raise RuntimeError("boom")

        tasks = [asyncio.create_task(flights.do("k", factory)) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(r, RuntimeError) for r in results)
        assert len(flights) == 0

    @pytest.mark.asyncio
    async def test_key_released_after_settle(self):
        flights: SingleFlight[int] = SingleFlight()
        counter = 0

        async def factory():
            nonlocal counter
            counter += 1
            return counter

        assert await flights.do("k", factory) == 1
        assert await flights.do("k", factory) == 2

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_flight(self):
        flights: SingleFlight[str] = SingleFlight()
        gate = asyncio.Event()

        async def factory():
            await gate.wait()
            return "done"

        leader = asyncio.create_task(flights.do("k", factory))
        await asyncio.sleep(0)
        follower = asyncio.create_task(flights.do("k", factory))
        await asyncio.sleep(0)
        follower.cancel()
        with pytest.raises(asyncio.CancelledError):
            await follower

        gate.set()
        assert await leader == "done"
