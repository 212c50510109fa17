#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
IGDB Provider

Recherche et récupération de jeux via IGDB (Internet Game Database), à travers
le proxy same-origin : POST {"endpoint": ..., "query": ...} avec une requête
au format IGDB (fields / where / sort / limit / offset).
"""

import asyncio
import logging
import time
from typing import Iterable, List, Optional, Tuple

import httpx

from backends.game_ids import Source
from backends.providers.base import GameCategory, GameProvider, GameRecord, SearchResult
from core.errors import CatalogError
from core.rate_limiter import SlidingWindowRateLimiter, bounded_gather

logger = logging.getLogger(__name__)

GAME_FIELDS = (
    "name, cover.url, cover.image_id, genres.name, platforms.name, "
    "involved_companies.company.name, involved_companies.developer, "
    "involved_companies.publisher, first_release_date, total_rating, summary"
)
IMAGE_BASE_URL = "https://images.igdb.com/igdb/image/upload"


def normalize_cover_url(cover: Optional[dict]) -> Optional[str]:
    """URL de cover en https et en taille t_cover_big."""
    if not cover:
        return None

    url = cover.get("url")
    if url:
        if url.startswith("//"):
            url = f"https:{url}"
        return url.replace("t_thumb", "t_cover_big")

    image_id = cover.get("image_id")
    if image_id:
        return f"{IMAGE_BASE_URL}/t_cover_big/{image_id}.jpg"
    return None


def escape_query(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


DAY = 24 * 3600


def category_clauses(category: GameCategory, now: int) -> Tuple[str, str]:
    """
    Clauses `where` et `sort` IGDB d'une liste éditoriale.

    Args:
        category: Liste demandée
        now: Timestamp unix de référence

    Returns:
        (where, sort)
    """
    if category is GameCategory.POPULAR:
        return "where rating != null & rating > 75 & cover != null;", "sort total_rating_count desc;"
    if category is GameCategory.TRENDING:
        where = (
            f"where first_release_date >= {now - 180 * DAY} & first_release_date <= {now} "
            f"& cover != null & total_rating_count > 10;"
        )
        return where, "sort total_rating_count desc;"
    if category is GameCategory.UPCOMING:
        where = (
            f"where cover != null & first_release_date > {now} "
            f"& first_release_date <= {now + 90 * DAY} & hypes > 0;"
        )
        return where, "sort first_release_date asc;"
    # RECENT
    where = f"where cover != null & first_release_date >= {now - 180 * DAY} & first_release_date <= {now};"
    return where, "sort first_release_date desc;"


class IGDBProvider(GameProvider):
    """Provider pour IGDB (via proxy)."""

    source = Source.IGDB

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        proxy_url: str,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        max_concurrency: int = 4,
        max_batch_size: int = 500,
    ):
        """
        Initialise le provider IGDB.

        Args:
            http_client: Client HTTP partagé
            proxy_url: Endpoint du proxy IGDB
            rate_limiter: Limiteur de requêtes (IGDB: 4 req/s)
            max_concurrency: Concurrence max pour les lots découpés
            max_batch_size: Nombre max d'IDs par requête `where id = (...)`
        """
        super().__init__(http_client, rate_limiter, max_concurrency)
        self.proxy_url = proxy_url
        self.max_batch_size = max_batch_size

    def is_available(self) -> bool:
        """IGDB nécessite l'URL du proxy."""
        return bool(self.proxy_url)

    async def _query(self, endpoint: str, query: str):
        if not self.proxy_url:
            raise CatalogError(self.name, "proxy URL not configured")

        resp = await self._send(
            lambda: self.http_client.post(self.proxy_url, json={"endpoint": endpoint, "query": query}),
            f"IGDB {endpoint}",
        )
        if resp.status_code != 200:
            raise CatalogError(self.name, f"proxy error on {endpoint}: HTTP {resp.status_code}", resp.status_code)
        return self._json(resp, f"IGDB {endpoint}")

    async def search(self, query: str, page: int = 1, page_size: int = 20) -> SearchResult:
        """
        Recherche par nom (contient, insensible à la casse), jeux avec cover
        uniquement, triés par popularité.

        Args:
            query: Requête de recherche
            page: Page (1-based)
            page_size: Résultats par page

        Returns:
            SearchResult normalisé (sources=["igdb"])
        """
        where = f'where cover != null & name ~ *"{escape_query(query)}"*;'
        result = await self._paged_query(where, "sort total_rating_count desc;", page, page_size)

        logger.debug(f"IGDB returned {len(result.games)}/{result.total} games for '{query}' (page {page})")
        return result

    async def get_category(self, category: GameCategory, page: int = 1, page_size: int = 20) -> SearchResult:
        where, sort = category_clauses(GameCategory(category), int(time.time()))
        result = await self._paged_query(where, sort, page, page_size)

        logger.debug(f"IGDB {GameCategory(category).value}: {len(result.games)} games (page {page})")
        return result

    async def _paged_query(self, where: str, sort: str, page: int, page_size: int) -> SearchResult:
        offset = (page - 1) * page_size
        games_query = f"fields {GAME_FIELDS}; {where} {sort} limit {page_size}; offset {offset};"

        games, count = await asyncio.gather(
            self._query("games", games_query),
            self._query("games/count", where),
        )
        if not isinstance(games, list):
            raise CatalogError(self.name, f"unexpected search payload: {type(games).__name__}")

        records = [self.parse_game(game) for game in games if isinstance(game, dict) and game.get("id")]
        total = count.get("count", len(records)) if isinstance(count, dict) else len(records)

        return SearchResult(
            games=records,
            total=total,
            page=page,
            page_size=page_size,
            has_next_page=page * page_size < total,
            has_previous_page=page > 1,
            sources=[self.name],
        )

    async def get_game(self, native_id: int) -> Optional[GameRecord]:
        games = await self._query("games", f"fields {GAME_FIELDS}; where id = {int(native_id)}; limit 1;")
        if not isinstance(games, list):
            raise CatalogError(self.name, f"unexpected details payload: {type(games).__name__}")
        if not games:
            logger.info(f"IGDB: No game found for ID {native_id}")
            return None
        if not isinstance(games[0], dict) or not games[0].get("id"):
            raise CatalogError(self.name, f"unexpected details payload for {native_id}")
        return self.parse_game(games[0])

    async def get_games(self, native_ids: Iterable[int]) -> List[GameRecord]:
        """
        Récupération groupée : une requête `where id = (...)` par lot de
        max_batch_size IDs. Échec global si un lot échoue.
        """
        ids = list(dict.fromkeys(int(native_id) for native_id in native_ids))
        if not ids:
            return []

        chunks = [ids[i:i + self.max_batch_size] for i in range(0, len(ids), self.max_batch_size)]
        batches = await bounded_gather((self._get_batch(chunk) for chunk in chunks), limit=self.max_concurrency)
        return [record for batch in batches for record in batch]

    async def _get_batch(self, ids: List[int]) -> List[GameRecord]:
        id_list = ",".join(str(native_id) for native_id in ids)
        games = await self._query("games", f"fields {GAME_FIELDS}; where id = ({id_list}); limit {len(ids)};")
        if not isinstance(games, list):
            raise CatalogError(self.name, f"unexpected batch payload: {type(games).__name__}")

        logger.debug(f"IGDB batch: {len(games)}/{len(ids)} games returned")
        return [self.parse_game(game) for game in games if isinstance(game, dict) and game.get("id")]

    def parse_game(self, game: dict) -> GameRecord:
        """Parse réponse IGDB vers GameRecord."""

        developer = None
        publisher = None
        for company_data in game.get("involved_companies") or []:
            company_name = (company_data.get("company") or {}).get("name")
            if not company_name:
                continue
            if company_data.get("developer") and developer is None:
                developer = company_name
            if company_data.get("publisher") and publisher is None:
                publisher = company_name

        # Rating (normalize 0-100 to 0-5)
        rating = game.get("total_rating")
        rating_normalized = round(rating / 20.0, 1) if rating else None

        release_date = game.get("first_release_date")
        summary = game.get("summary")

        return GameRecord(
            id=self.canonical_id(game["id"]),
            name=game.get("name") or "Unknown",
            source=self.name,
            source_id=str(game["id"]),
            cover_url=normalize_cover_url(game.get("cover")),
            genres=[g.get("name", "") for g in game.get("genres") or [] if g.get("name")],
            platforms=[p.get("name", "") for p in game.get("platforms") or [] if p.get("name")],
            rating=rating_normalized,
            release_timestamp=int(release_date) if release_date else None,
            summary=summary[:500] if summary else None,
            developer=developer,
            publisher=publisher,
        )
