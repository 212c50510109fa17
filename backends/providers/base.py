#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Base commune des providers de catalogues de jeux.

Chaque provider normalise la forme native de son catalogue en GameRecord
avant que quoi que ce soit d'autre n'y touche.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional, Union

import httpx

from backends.game_ids import CanonicalGameId, Source
from core.errors import CatalogError
from core.rate_limiter import SlidingWindowRateLimiter, bounded_gather

logger = logging.getLogger(__name__)

# Raisons de fallback
NOT_FOUND = "not_found"
API_ERROR = "api_error"
INVALID_ID = "invalid_id"

MISSING_DATA_GENRE = "Game Data Missing"
MISSING_DATA_COMPANY = "Data unavailable"


class GameCategory(str, Enum):
    """Listes éditoriales proposées par les deux catalogues."""

    POPULAR = "popular"
    TRENDING = "trending"
    UPCOMING = "upcoming"
    RECENT = "recent"


@dataclass
class GameRecord:
    """Record de jeu normalisé, quelle que soit la source."""

    id: str
    name: str
    source: str
    source_id: Optional[str] = None
    cover_url: Optional[str] = None
    genres: List[str] = None
    platforms: List[str] = None
    rating: Optional[float] = None  # normalisé 0-5
    release_timestamp: Optional[int] = None  # unix, secondes
    summary: Optional[str] = None
    developer: Optional[str] = None
    publisher: Optional[str] = None
    is_fallback: bool = False
    fallback_reason: Optional[str] = None
    is_validated: bool = False
    validation_reason: Optional[str] = None

    def __post_init__(self):
        if self.genres is None:
            self.genres = []
        if self.platforms is None:
            self.platforms = []

    @property
    def release_year(self) -> Optional[int]:
        if self.release_timestamp is None:
            return None
        return datetime.fromtimestamp(self.release_timestamp, tz=timezone.utc).year

    @property
    def is_low_confidence(self) -> bool:
        """Record douteux : fallback ou données manquantes signalées par le catalogue."""
        return (
            self.is_fallback
            or MISSING_DATA_GENRE in self.genres
            or self.developer == MISSING_DATA_COMPANY
        )


@dataclass
class SearchResult:
    """Page de résultats (d'un catalogue ou fusionnée)."""

    games: List[GameRecord]
    total: int
    page: int
    page_size: int
    has_next_page: bool
    has_previous_page: bool
    sources: List[str] = None
    cache_hit: bool = False

    def __post_init__(self):
        if self.sources is None:
            self.sources = []

    @classmethod
    def empty(cls, page: int = 1, page_size: int = 20) -> "SearchResult":
        return cls(
            games=[],
            total=0,
            page=page,
            page_size=page_size,
            has_next_page=False,
            has_previous_page=page > 1,
        )


def make_fallback_record(game_id: Union[CanonicalGameId, str], reason: str) -> GameRecord:
    """
    Record de remplacement clairement marqué (is_fallback=True).

    Args:
        game_id: ID demandé (canonique, ou brut s'il est invalide)
        reason: NOT_FOUND, API_ERROR ou INVALID_ID
    """
    if isinstance(game_id, CanonicalGameId):
        record_id, source, native = str(game_id), game_id.source.value, str(game_id.native_id)
    else:
        record_id, source, native = str(game_id), "unknown", str(game_id)

    if reason == API_ERROR:
        name = f"Game {native} (Unavailable)"
        company = "Unavailable"
        genres = ["Unavailable"]
    else:
        name = f"Unknown Game (ID: {native})"
        company = MISSING_DATA_COMPANY
        genres = [MISSING_DATA_GENRE]

    return GameRecord(
        id=record_id,
        name=name,
        source=source,
        source_id=native,
        genres=genres,
        developer=company,
        publisher=company,
        is_fallback=True,
        fallback_reason=reason,
    )


class GameProvider(ABC):
    """Interface commune IGDB / RAWG."""

    source: Source

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        max_concurrency: int = 4,
    ):
        self.http_client = http_client
        self.rate_limiter = rate_limiter
        self.max_concurrency = max_concurrency

    @property
    def name(self) -> str:
        return self.source.value

    def is_available(self) -> bool:
        return True

    def canonical_id(self, native_id) -> str:
        return str(CanonicalGameId.of(self.source, native_id))

    async def _throttle(self):
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

    @abstractmethod
    async def search(self, query: str, page: int = 1, page_size: int = 20) -> SearchResult:
        """
        Recherche paginée par nom.

        Raises:
            CatalogError: échec upstream
        """

    @abstractmethod
    async def get_game(self, native_id: int) -> Optional[GameRecord]:
        """
        Détails d'un jeu par ID natif.

        Returns:
            GameRecord, ou None si le jeu n'existe pas upstream

        Raises:
            CatalogError: échec upstream
        """

    @abstractmethod
    async def get_category(self, category: GameCategory, page: int = 1, page_size: int = 20) -> SearchResult:
        """
        Page d'une liste éditoriale (populaires, tendances, à venir, récents).

        Raises:
            CatalogError: échec upstream
        """

    async def get_games(self, native_ids: Iterable[int]) -> List[GameRecord]:
        """
        Plusieurs jeux par ID natif. Les IDs absents upstream sont omis.

        Implémentation par défaut : un appel détail par ID, concurrence bornée,
        échec global si un seul appel échoue.
        """
        results = await bounded_gather(
            (self.get_game(native_id) for native_id in native_ids),
            limit=self.max_concurrency,
        )
        return [record for record in results if record is not None]

    async def ping(self) -> bool:
        """Test de connectivité (recherche minimale)."""
        try:
            await self.search("test", page=1, page_size=1)
            return True
        except CatalogError as e:
            logger.warning(f"⚠️ {self.name} ping failed: {e}")
            return False

    async def _send(self, coro_factory, what: str) -> httpx.Response:
        """Exécute une requête HTTP (après throttle) en convertissant les erreurs transport."""
        await self._throttle()
        try:
            return await coro_factory()
        except httpx.HTTPError as e:
            raise CatalogError(self.name, f"{what} failed: {e!r}") from e
        except asyncio.TimeoutError as e:
            raise CatalogError(self.name, f"{what} timed out") from e

    def _json(self, resp: httpx.Response, what: str):
        try:
            return resp.json()
        except ValueError as e:
            raise CatalogError(self.name, f"{what}: invalid JSON body", resp.status_code) from e
