"""
Tests for backends/game_service.py - wiring of the resolution layer.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from backends.game_service import GameMetadataService
from backends.providers.igdb import IGDBProvider
from backends.providers.rawg import RAWGProvider
from fakes import make_record


@pytest.fixture
def service(igdb, rawg, mock_config):
    igdb.add(make_record("igdb", 1020, "DOOM", year=2016, platforms=["PC"], rating=4.3))
    rawg.add(make_record("rawg", 42, "Portal 2", year=2011, platforms=["PC"], rating=4.6))
    client = MagicMock()
    client.aclose = AsyncMock()
    return GameMetadataService(mock_config, http_client=client, igdb=igdb, rawg=rawg)


class TestGameMetadataService:

    @pytest.mark.asyncio
    async def test_shortcuts_reach_components(self, service, igdb, rawg):
        result = await service.search("doom")
        assert result.games[0].id == "igdb:1020"

        records = await service.fetch_many(["igdb:1020", "rawg:404"])
        assert records["rawg:404"].fallback_reason == "not_found"

        assert (await service.validate("rawg:42")).is_valid is True
        assert await service.resolve(2454, "rawg") == "igdb:1020"

        enhanced = await service.enhance(["rawg:42"])
        assert enhanced["rawg:42"].name == "Portal 2"

        popular = await service.get_games_by_category("popular")
        assert [game.id for game in popular.games] == ["igdb:1020"]

    @pytest.mark.asyncio
    async def test_config_merged_over_defaults(self, service):
        assert service.config["apis"]["rawg_key"] == "test_rawg_key_mock"
        assert service.config["mapping"]["confidence_threshold"] == 0.7
        assert service.validator.schedule_retries is False

    @pytest.mark.asyncio
    async def test_each_component_owns_its_cache(self, service):
        names = [cache.name for cache in service.sweeper.caches]
        assert names == ["id_mapping", "bulk_games", "validation", "search", "game_details"]

    @pytest.mark.asyncio
    async def test_perform_maintenance_report(self, service):
        await service.fetch_many(["igdb:1020"])

        report = service.perform_maintenance()

        assert set(report) == {"cleaned", "validation", "bulk_cache", "api_health"}
        assert set(report["cleaned"]) == {"id_mapping", "bulk_games", "validation", "search", "game_details"}
        assert report["bulk_cache"]["size"] == 1
        assert set(report["api_health"]) == {"igdb", "rawg"}

    @pytest.mark.asyncio
    async def test_maintenance_loop_start_stop(self, service):
        service.start_maintenance()
        assert service.sweeper.is_running() is True

        await service.stop_maintenance()
        assert service.sweeper.is_running() is False

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self, service):
        await service.close()
        service.http_client.aclose.assert_not_awaited()


class TestServiceDefaults:

    @pytest.mark.asyncio
    async def test_builds_real_providers_and_owns_client(self, mock_config):
        async with GameMetadataService(mock_config) as service:
            assert isinstance(service.igdb, IGDBProvider)
            assert isinstance(service.rawg, RAWGProvider)
            assert service.igdb.proxy_url == "http://proxy.test/api/igdb"
            assert service.rawg.is_available() is True

        assert service.http_client.is_closed is True

    @pytest.mark.asyncio
    async def test_rawg_unavailable_without_key(self):
        async with GameMetadataService({"apis": {"rawg_key": ""}}) as service:
            assert service.rawg.is_available() is False
