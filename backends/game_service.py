"""
GameMetadataService - assemblage de la couche de résolution à partir de la config.

Possède le client httpx partagé, les providers IGDB/RAWG et un cache par
composant (mapping, bulk, validation, recherche, détails).
"""

import logging
from typing import Any, Dict, Iterable, Optional

import httpx

from backends.bulk_fetcher import BulkGameFetcher
from backends.id_mapping import GameIdMapper
from backends.preferences import PreferenceStore
from backends.providers.base import GameProvider, GameRecord, SearchResult
from backends.providers.igdb import IGDBProvider
from backends.providers.rawg import RAWGProvider
from backends.unified_search import UnifiedGameSearch
from backends.validation import GameValidator, ValidationOutcome
from core.cache_interface import CacheSweeper
from core.config import DEFAULT_CONFIG, merge_config
from core.rate_limiter import SlidingWindowRateLimiter


class GameMetadataService:
    """Façade : recherche, bulk, validation et mapping d'IDs."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        preferences: Optional[PreferenceStore] = None,
        igdb: Optional[GameProvider] = None,
        rawg: Optional[GameProvider] = None,
    ):
        self.config = merge_config(DEFAULT_CONFIG, config)
        self.logger = logging.getLogger(__name__)

        apis_config = self.config.get("apis", {})
        bulk_config = self.config.get("bulk", {})

        self._owns_client = http_client is None
        api_timeout = apis_config.get("timeout", 10.0)
        self.http_client = http_client or httpx.AsyncClient(timeout=api_timeout)

        self.igdb = igdb or IGDBProvider(
            self.http_client,
            proxy_url=apis_config.get("igdb_proxy_url", ""),
            rate_limiter=SlidingWindowRateLimiter("igdb", **apis_config.get("igdb_rate_limit", {})),
            max_concurrency=bulk_config.get("max_concurrency", 4),
            max_batch_size=bulk_config.get("max_batch_size", 500),
        )
        self.rawg = rawg or RAWGProvider(
            self.http_client,
            api_key=apis_config.get("rawg_key", ""),
            base_url=apis_config.get("rawg_base_url", "https://api.rawg.io/api"),
            rate_limiter=SlidingWindowRateLimiter("rawg", **apis_config.get("rawg_rate_limit", {})),
            max_concurrency=bulk_config.get("max_concurrency", 4),
        )

        self.id_mapper = GameIdMapper(self.igdb, self.rawg, self.config)
        self.bulk_fetcher = BulkGameFetcher(self.igdb, self.rawg, self.config)
        self.validator = GameValidator(self.igdb, self.rawg, self.bulk_fetcher, self.config)
        self.unified_search = UnifiedGameSearch(self.igdb, self.rawg, self.config, preferences=preferences)

        self.sweeper = CacheSweeper(
            [
                self.id_mapper.cache,
                self.bulk_fetcher.cache,
                self.validator.cache,
                self.unified_search.cache,
                self.unified_search.details_cache,
            ],
            interval_seconds=self.config.get("cache", {}).get("sweep_interval_seconds", 300),
        )

        self.logger.info(
            f"🎮 GameMetadataService initialisé - IGDB: {'✅' if self.igdb.is_available() else '❌'}, "
            f"RAWG: {'✅' if self.rawg.is_available() else '❌'}"
        )

    async def __aenter__(self) -> "GameMetadataService":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # Raccourcis vers les composants
    async def search(self, query: str, page: int = 1, page_size: Optional[int] = None, strategy: Optional[str] = None) -> SearchResult:
        return await self.unified_search.search(query, page=page, page_size=page_size, strategy=strategy)

    async def get_games_by_category(self, category, page: int = 1, page_size: Optional[int] = None, source: Optional[str] = None) -> SearchResult:
        return await self.unified_search.get_games_by_category(category, page=page, page_size=page_size, source=source)

    async def fetch_many(self, ids: Iterable) -> Dict[str, GameRecord]:
        return await self.bulk_fetcher.fetch_many(ids)

    async def enhance(self, ids: Iterable) -> Dict[str, GameRecord]:
        return await self.validator.enhance(ids)

    async def validate(self, game_id) -> ValidationOutcome:
        return await self.validator.validate(game_id)

    async def resolve(self, native_id, from_source) -> Optional[str]:
        return await self.id_mapper.resolve(native_id, from_source)

    def start_maintenance(self):
        """Lance le sweep périodique des caches (boucle asyncio requise)."""
        self.sweeper.start()

    async def stop_maintenance(self):
        await self.sweeper.stop()

    def perform_maintenance(self) -> Dict[str, Any]:
        """Un passage de maintenance immédiat + statistiques."""
        cleaned = self.sweeper.sweep()
        report = {
            "cleaned": cleaned,
            "validation": self.validator.get_stats(),
            "bulk_cache": self.bulk_fetcher.get_cache_stats(),
            "api_health": self.unified_search.get_api_health(),
        }
        self.logger.info(f"🧹 Maintenance: {sum(cleaned.values())} entrées expirées supprimées")
        return report

    async def close(self):
        """Arrête les tâches de fond et ferme le client HTTP."""
        await self.sweeper.stop()
        await self.validator.close()
        if self._owns_client:
            await self.http_client.aclose()
