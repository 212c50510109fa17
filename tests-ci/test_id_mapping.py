"""
Tests for backends/id_mapping.py - RAWG <-> IGDB ID translation.

Covers: manual overrides (no network), fuzzy matching with the 70/20/10
weighting and the strict 0.7 threshold, mapping cache TTL, batch resolution
and in-flight de-duplication.
"""
import asyncio

import pytest

from backends.id_mapping import GameIdMapper
from core.cache_interface import TTLCache
from core.errors import CatalogError
from fakes import make_record


def make_mapper(igdb, rawg, clock, config=None, **kwargs):
    cache = TTLCache("id_mapping", ttl_seconds=24 * 3600, clock=clock)
    return GameIdMapper(igdb, rawg, config or {}, cache=cache, **kwargs)


# ============================================================================
# Manual overrides
# ============================================================================
class TestManualOverrides:

    @pytest.mark.asyncio
    async def test_override_bypasses_search(self, igdb, rawg, clock):
        """rawg:2454 (DOOM 2016) is in the manual table: no catalog call at all."""
        mapper = make_mapper(igdb, rawg, clock)

        assert await mapper.resolve(2454, "rawg") == "igdb:1020"
        assert await mapper.resolve_id("rawg_2454") == "igdb:1020"

        assert rawg.get_calls == []
        assert igdb.search_calls == []

    @pytest.mark.asyncio
    async def test_override_works_in_reverse(self, igdb, rawg, clock):
        mapper = make_mapper(igdb, rawg, clock)
        assert await mapper.resolve(1020, "igdb") == "rawg:2454"
        assert igdb.get_calls == []

    @pytest.mark.asyncio
    async def test_configured_overrides(self, igdb, rawg, clock):
        config = {"mapping": {"manual_overrides": {"rawg:3498": "igdb:1020", "bogus": "igdb:1"}}}
        mapper = make_mapper(igdb, rawg, clock, config=config)

        assert await mapper.resolve(3498, "rawg") == "igdb:1020"
        assert mapper.get_manual_mapping("rawg:2454") == "igdb:1020"
        assert mapper.get_manual_mapping("nope") is None


# ============================================================================
# Fuzzy resolution
# ============================================================================
class TestFuzzyResolution:

    @pytest.mark.asyncio
    async def test_best_candidate_accepted_and_cached(self, igdb, rawg, clock):
        rawg.add(make_record("rawg", 3328, "The Witcher 3: Wild Hunt", year=2015, platforms=["PC"]))
        igdb.add(make_record("igdb", 1942, "The Witcher 3: Wild Hunt", year=2015, platforms=["PC (Microsoft Windows)"]))
        igdb.add(make_record("igdb", 22439, "The Witcher 3: Wild Hunt - Blood and Wine", year=2016))
        mapper = make_mapper(igdb, rawg, clock)

        assert await mapper.resolve(3328, "rawg") == "igdb:1942"
        assert igdb.search_calls == [("The Witcher 3: Wild Hunt", 1, 10)]

        # Second call served from cache
        assert await mapper.resolve("3328", "rawg") == "igdb:1942"
        assert len(rawg.get_calls) == 1
        assert len(igdb.search_calls) == 1

        stats = mapper.get_cache_stats()
        assert stats["size"] == 1
        assert stats["mappings"][0]["to_id"] == "igdb:1942"
        assert stats["mappings"][0]["confidence"] == 1.0

    @pytest.mark.asyncio
    async def test_no_candidate_above_threshold_returns_none(self, igdb, rawg, clock):
        rawg.add(make_record("rawg", 1, "Celeste", year=2018))
        igdb.search_results = [make_record("igdb", 9, "Hollow Knight", year=2017)]
        mapper = make_mapper(igdb, rawg, clock)

        assert await mapper.resolve(1, "rawg") is None
        assert mapper.get_cache_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_threshold_is_strict(self, igdb, rawg, clock):
        """Same name but no year/platform data scores exactly 0.7: rejected."""
        rawg.add(make_record("rawg", 1, "Celeste"))
        igdb.add(make_record("igdb", 2, "Celeste"))
        mapper = make_mapper(igdb, rawg, clock)

        assert await mapper.resolve(1, "rawg") is None

    @pytest.mark.asyncio
    async def test_source_game_missing_returns_none(self, igdb, rawg, clock):
        mapper = make_mapper(igdb, rawg, clock)
        assert await mapper.resolve(404, "rawg") is None
        assert igdb.search_calls == []

    @pytest.mark.asyncio
    async def test_catalog_error_never_raises(self, igdb, rawg, clock):
        rawg.get_error = CatalogError("rawg", "boom", 500)
        mapper = make_mapper(igdb, rawg, clock)
        assert await mapper.resolve(7, "rawg") is None

    @pytest.mark.asyncio
    async def test_unexpected_error_never_raises(self, igdb, rawg, clock):
        rawg.add(make_record("rawg", 1, "Celeste", year=2018))
        igdb.search_error = RuntimeError("unexpected")
        mapper = make_mapper(igdb, rawg, clock)
        assert await mapper.resolve(1, "rawg") is None

    @pytest.mark.asyncio
    async def test_invalid_native_id_returns_none(self, igdb, rawg, clock):
        mapper = make_mapper(igdb, rawg, clock)
        assert await mapper.resolve("abc", "rawg") is None
        assert await mapper.resolve(5, "steam") is None
        assert await mapper.resolve_id("garbage") is None

    @pytest.mark.asyncio
    async def test_mapping_refreshed_after_ttl(self, igdb, rawg, clock):
        rawg.add(make_record("rawg", 1, "Celeste", year=2018, platforms=["PC"]))
        igdb.add(make_record("igdb", 2, "Celeste", year=2018, platforms=["PC"]))
        mapper = make_mapper(igdb, rawg, clock)

        assert await mapper.resolve(1, "rawg") == "igdb:2"
        clock.advance(24 * 3600 + 1)
        assert await mapper.resolve(1, "rawg") == "igdb:2"
        assert len(rawg.get_calls) == 2

    @pytest.mark.asyncio
    async def test_igdb_to_rawg_direction(self, igdb, rawg, clock):
        igdb.add(make_record("igdb", 2, "Celeste", year=2018, platforms=["PC"]))
        rawg.add(make_record("rawg", 1, "Celeste", year=2018, platforms=["PC"]))
        mapper = make_mapper(igdb, rawg, clock)

        assert await mapper.resolve(2, "igdb") == "rawg:1"

    @pytest.mark.asyncio
    async def test_custom_scorer(self, igdb, rawg, clock):
        rawg.add(make_record("rawg", 1, "Celeste"))
        igdb.add(make_record("igdb", 2, "Celeste"))
        mapper = make_mapper(igdb, rawg, clock, scorer=lambda source, candidate: 0.95)

        assert await mapper.resolve(1, "rawg") == "igdb:2"

    @pytest.mark.asyncio
    async def test_concurrent_resolves_share_upstream_call(self, igdb, rawg, clock):
        rawg.add(make_record("rawg", 1, "Celeste", year=2018, platforms=["PC"]))
        igdb.add(make_record("igdb", 2, "Celeste", year=2018, platforms=["PC"]))
        mapper = make_mapper(igdb, rawg, clock)

        results = await asyncio.gather(*(mapper.resolve(1, "rawg") for _ in range(5)))

        assert results == ["igdb:2"] * 5
        assert len(rawg.get_calls) == 1


# ============================================================================
# Batch + helpers
# ============================================================================
class TestBatchResolution:

    @pytest.mark.asyncio
    async def test_resolve_many_skips_failures(self, igdb, rawg, clock):
        rawg.add(make_record("rawg", 1, "Celeste", year=2018, platforms=["PC"]))
        igdb.add(make_record("igdb", 2, "Celeste", year=2018, platforms=["PC"]))
        mapper = make_mapper(igdb, rawg, clock)

        resolved = await mapper.resolve_many([1, 2454, 404, "abc", 1], "rawg")

        assert resolved == {"1": "igdb:2", "2454": "igdb:1020"}

    @pytest.mark.asyncio
    async def test_to_igdb_id(self, igdb, rawg, clock):
        mapper = make_mapper(igdb, rawg, clock)

        assert await mapper.to_igdb_id("igdb_72") == "igdb:72"
        assert await mapper.to_igdb_id("rawg:2454") == "igdb:1020"
        assert await mapper.to_igdb_id("rawg:404") == "rawg:404"
        assert await mapper.to_igdb_id("junk") == "junk"

    def test_injected_empty_cache_is_used(self, igdb, rawg, clock):
        cache = TTLCache("id_mapping", ttl_seconds=60, clock=clock)
        mapper = GameIdMapper(igdb, rawg, {}, cache=cache)
        assert mapper.cache is cache

    @pytest.mark.asyncio
    async def test_clear_cache(self, igdb, rawg, clock):
        rawg.add(make_record("rawg", 1, "Celeste", year=2018, platforms=["PC"]))
        igdb.add(make_record("igdb", 2, "Celeste", year=2018, platforms=["PC"]))
        mapper = make_mapper(igdb, rawg, clock)
        await mapper.resolve(1, "rawg")

        assert mapper.clear_cache() == 1
        assert mapper.get_cache_stats()["size"] == 0
