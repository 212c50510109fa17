"""
Cache System Tests - TTL, eviction, in-flight de-duplication

WHY THESE TESTS EXIST:
Every component of the resolution layer (mapping, bulk, validation, search)
owns a TTLCache. If expiry or eviction is wrong, stale metadata is served or
upstream catalogs get hammered.
"""
import asyncio

import pytest

from core.cache_interface import CacheSweeper, InFlightRequests, TTLCache


# ============================================================================
# TTLCache
# ============================================================================
class TestTTLCache:

    def test_set_and_get(self, clock):
        cache = TTLCache("test", ttl_seconds=60, clock=clock)
        cache.set("a", {"name": "Brotato"})
        assert cache.get("a") == {"name": "Brotato"}
        assert cache.get("missing") is None

    def test_expired_entry_is_absent_while_still_stored(self, clock):
        """An entry read after its TTL is a miss even though the map still holds it."""
        cache = TTLCache("test", ttl_seconds=60, clock=clock)
        cache.set("a", 1)

        clock.advance(61)
        assert cache.size() == 1
        assert cache.get_entry("a") is not None
        assert cache.has_key("a") is False

        assert cache.get("a") is None
        assert cache.size() == 0

    def test_entry_valid_until_ttl(self, clock):
        cache = TTLCache("test", ttl_seconds=60, clock=clock)
        cache.set("a", 1)
        clock.advance(60)
        assert cache.get("a") == 1

    def test_per_entry_ttl_override(self, clock):
        cache = TTLCache("test", ttl_seconds=60, clock=clock)
        cache.set("short", 1, ttl_seconds=5)
        clock.advance(10)
        assert cache.get("short") is None

    def test_oldest_insertion_evicted_when_full(self, clock):
        cache = TTLCache("test", ttl_seconds=60, max_size=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)

        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3
        assert cache.get_stats().evictions == 1

    def test_reinsert_moves_entry_to_newest(self, clock):
        cache = TTLCache("test", ttl_seconds=60, max_size=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        cache.set("c", 3)

        assert cache.get("a") == 10
        assert cache.get("b") is None

    def test_cleanup_expired(self, clock):
        cache = TTLCache("test", ttl_seconds=60, clock=clock)
        cache.set("old", 1)
        clock.advance(30)
        cache.set("new", 2)
        clock.advance(40)

        assert cache.cleanup_expired() == 1
        assert cache.size() == 1
        assert cache.get("new") == 2

    def test_values_skip_expired(self, clock):
        cache = TTLCache("test", ttl_seconds=60, clock=clock)
        cache.set("old", 1)
        clock.advance(50)
        cache.set("new", 2)
        clock.advance(20)
        assert list(cache.values()) == [2]
        assert list(cache.items()) == [("new", 2)]

    def test_stats_hit_rate(self, clock):
        cache = TTLCache("test", ttl_seconds=60, clock=clock)
        cache.set("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("b")
        cache.get("c")

        stats = cache.get_stats()
        assert stats.cache_hits == 2
        assert stats.cache_misses == 2
        assert stats.hit_rate == 50.0
        assert stats.total_keys == 1

    def test_clear(self, clock):
        cache = TTLCache("test", ttl_seconds=60, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.clear() == 2
        assert len(cache) == 0
        assert cache.get_stats().cache_hits == 0

    def test_delete(self, clock):
        cache = TTLCache("test", ttl_seconds=60, clock=clock)
        cache.set("a", 1)
        assert cache.delete("a") is True
        assert cache.delete("a") is False

    def test_no_ttl_never_expires(self, clock):
        cache = TTLCache("test", ttl_seconds=None, clock=clock)
        cache.set("a", 1)
        clock.advance(10 ** 9)
        assert cache.get("a") == 1


# ============================================================================
# InFlightRequests
# ============================================================================
class TestInFlightRequests:

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_computation(self):
        inflight = InFlightRequests()
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "result"

        results = await asyncio.gather(
            inflight.run("key", compute),
            inflight.run("key", compute),
            inflight.run("key", compute),
        )

        assert results == ["result", "result", "result"]
        assert calls == 1
        assert inflight.pending_count() == 0

    @pytest.mark.asyncio
    async def test_different_keys_run_separately(self):
        inflight = InFlightRequests()
        calls = []

        async def compute(value):
            calls.append(value)
            await asyncio.sleep(0)
            return value

        results = await asyncio.gather(
            inflight.run("a", lambda: compute("a")),
            inflight.run("b", lambda: compute("b")),
        )
        assert results == ["a", "b"]
        assert sorted(calls) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_exception_propagates_to_every_waiter(self):
        inflight = InFlightRequests()

        async def boom():
            await asyncio.sleep(0.01)
            raise RuntimeError("upstream down")

        results = await asyncio.gather(
            inflight.run("key", boom),
            inflight.run("key", boom),
            return_exceptions=True,
        )
        assert all(isinstance(r, RuntimeError) for r in results)
        assert "key" not in inflight

    @pytest.mark.asyncio
    async def test_sequential_calls_recompute(self):
        inflight = InFlightRequests()
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            return calls

        assert await inflight.run("key", compute) == 1
        assert await inflight.run("key", compute) == 2


# ============================================================================
# CacheSweeper
# ============================================================================
class TestCacheSweeper:

    def test_sweep_reports_per_cache(self, clock):
        a = TTLCache("a", ttl_seconds=10, clock=clock)
        b = TTLCache("b", ttl_seconds=100, clock=clock)
        a.set("x", 1)
        b.set("y", 2)
        clock.advance(20)

        sweeper = CacheSweeper([a, b], interval_seconds=60)
        assert sweeper.sweep() == {"a": 1, "b": 0}
        assert a.size() == 0
        assert b.size() == 1

    @pytest.mark.asyncio
    async def test_periodic_sweep_runs_in_background(self, clock):
        cache = TTLCache("a", ttl_seconds=10, clock=clock)
        cache.set("x", 1)
        clock.advance(20)

        sweeper = CacheSweeper([cache], interval_seconds=0.01)
        sweeper.start()
        assert sweeper.is_running()
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert not sweeper.is_running()
        assert cache.size() == 0
