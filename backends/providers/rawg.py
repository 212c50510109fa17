#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
RAWG Provider

Recherche et détails de jeux via RAWG API (REST, clé API en query string).
RAWG n'a pas d'endpoint de récupération groupée : get_games() retombe sur des
appels détail à concurrence bornée (implémentation de GameProvider).
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import httpx

from backends.game_ids import Source
from backends.providers.base import GameCategory, GameProvider, GameRecord, SearchResult
from core.errors import CatalogError
from core.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


def parse_release_date(released: Optional[str]) -> Optional[int]:
    """'YYYY-MM-DD' -> timestamp unix (minuit UTC)."""
    if not released:
        return None
    try:
        dt = datetime.strptime(released[:10], "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        logger.debug(f"RAWG: unparsable release date '{released}'")
        return None
    return int(dt.timestamp())


def category_params(category: GameCategory, today: date) -> dict:
    """Filtres RAWG /games d'une liste éditoriale (hors pagination)."""
    params = {"exclude_additions": "true", "exclude_parents": "true"}
    six_months_ago = (today - timedelta(days=182)).isoformat()

    if category is GameCategory.POPULAR:
        five_years_ago = today.replace(year=today.year - 5, day=1).isoformat()
        params.update(ordering="-rating,-ratings_count", metacritic="75,100", dates=f"{five_years_ago},{today.isoformat()}")
    elif category is GameCategory.TRENDING:
        params.update(ordering="-rating,-ratings_count", metacritic="70,100", dates=f"{six_months_ago},{today.isoformat()}")
    elif category is GameCategory.UPCOMING:
        two_years_ahead = today.replace(year=today.year + 2, day=1).isoformat()
        params.update(ordering="-added", dates=f"{today.isoformat()},{two_years_ahead}")
    else:
        params.update(ordering="-released,-rating", dates=f"{six_months_ago},{today.isoformat()}")
    return params


class RAWGProvider(GameProvider):
    """Provider pour RAWG API."""

    source = Source.RAWG

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        base_url: str = "https://api.rawg.io/api",
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        max_concurrency: int = 4,
    ):
        """
        Initialise le provider RAWG.

        Args:
            http_client: Client HTTP partagé
            api_key: Clé API RAWG
            base_url: Racine de l'API
            rate_limiter: Limiteur de requêtes
            max_concurrency: Appels détail simultanés max dans get_games()
        """
        super().__init__(http_client, rate_limiter, max_concurrency)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def is_available(self) -> bool:
        """RAWG nécessite une clé API."""
        return bool(self.api_key)

    async def _get(self, path: str, params: dict) -> httpx.Response:
        if not self.api_key:
            raise CatalogError(self.name, "API key not configured")

        return await self._send(
            lambda: self.http_client.get(f"{self.base_url}{path}", params={"key": self.api_key, **params}),
            f"RAWG {path}",
        )

    async def search(self, query: str, page: int = 1, page_size: int = 20) -> SearchResult:
        """
        Recherche paginée dans RAWG.

        Args:
            query: Requête de recherche
            page: Page (1-based)
            page_size: Résultats par page

        Returns:
            SearchResult normalisé (sources=["rawg"])
        """
        result = await self._list_games(
            {"search": query, "search_precise": "true", "exclude_additions": "true"}, page, page_size
        )
        logger.debug(f"RAWG returned {len(result.games)} games for '{query}' (page {page})")
        return result

    async def get_category(self, category: GameCategory, page: int = 1, page_size: int = 20) -> SearchResult:
        params = category_params(GameCategory(category), datetime.now(timezone.utc).date())
        result = await self._list_games(params, page, page_size)
        logger.debug(f"RAWG {GameCategory(category).value}: {len(result.games)} games (page {page})")
        return result

    async def _list_games(self, params: dict, page: int, page_size: int) -> SearchResult:
        resp = await self._get("/games", {**params, "page": page, "page_size": page_size})
        if resp.status_code != 200:
            raise CatalogError(self.name, f"/games failed: HTTP {resp.status_code}", resp.status_code)

        data = self._json(resp, "RAWG /games")
        if not isinstance(data, dict):
            raise CatalogError(self.name, f"unexpected search payload: {type(data).__name__}")
        records = [self.parse_game(game) for game in data.get("results") or [] if isinstance(game, dict) and game.get("id")]

        return SearchResult(
            games=records,
            total=data.get("count", len(records)),
            page=page,
            page_size=page_size,
            has_next_page=bool(data.get("next")),
            has_previous_page=bool(data.get("previous")) or page > 1,
            sources=[self.name],
        )

    async def get_game(self, native_id: int) -> Optional[GameRecord]:
        resp = await self._get(f"/games/{int(native_id)}", {})

        if resp.status_code == 404:
            logger.info(f"RAWG: No game found for ID {native_id}")
            return None
        if resp.status_code != 200:
            raise CatalogError(self.name, f"details failed for {native_id}: HTTP {resp.status_code}", resp.status_code)

        data = self._json(resp, f"RAWG /games/{native_id}")
        if not isinstance(data, dict) or not data.get("id"):
            raise CatalogError(self.name, f"unexpected details payload for {native_id}: {type(data).__name__}")
        return self.parse_game(data)

    def parse_game(self, game: dict) -> GameRecord:
        """Parse réponse RAWG vers GameRecord."""

        platforms = [p["platform"]["name"] for p in game.get("platforms") or [] if (p.get("platform") or {}).get("name")]
        genres = [g["name"] for g in game.get("genres") or [] if g.get("name")]

        developers = [d["name"] for d in game.get("developers") or [] if d.get("name")]
        publishers = [p["name"] for p in game.get("publishers") or [] if p.get("name")]

        rating = game.get("rating")
        summary = game.get("description_raw")

        return GameRecord(
            id=self.canonical_id(game["id"]),
            name=game.get("name") or "Unknown",
            source=self.name,
            source_id=str(game["id"]),
            cover_url=game.get("background_image"),
            genres=genres,
            platforms=platforms,
            rating=round(rating, 1) if rating else None,
            release_timestamp=parse_release_date(game.get("released")),
            summary=summary[:500] if summary else None,
            developer=developers[0] if developers else None,
            publisher=publishers[0] if publishers else None,
        )
