"""
Recherche unifiée IGDB + RAWG.

Stratégies :
- igdb_first / rawg_first : une source, puis l'autre EN ENTIER si elle échoue
  (pas de fusion : la source qui répond gagne)
- combined / parallel / smart : les deux sources en parallèle (page_size/2
  chacune), échecs tolérés, puis fusion + déduplication inter-sources

AllSourcesUnavailable n'est levée que si les deux sources échouent.

Listes éditoriales (popular / trending / upcoming / recent) : une source
choisie selon la liste et la santé des APIs, ou les deux fusionnées (hybrid).
"""

import asyncio
import dataclasses
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from backends.game_ids import CanonicalGameId, Source, is_native_digits
from backends.preferences import PreferenceStore, SearchPreferences
from backends.providers.base import GameCategory, GameProvider, GameRecord, SearchResult
from core.cache_interface import InFlightRequests, TTLCache
from core.errors import AllSourcesUnavailable, CatalogError, InvalidGameId
from core.similarity import string_similarity

LOGGER = logging.getLogger(__name__)


class SearchStrategy(str, Enum):
    IGDB_FIRST = "igdb_first"
    RAWG_FIRST = "rawg_first"
    COMBINED = "combined"
    PARALLEL = "parallel"
    SMART = "smart"


# IGDB a les meilleurs indicateurs de popularité et de dates
CATEGORY_SOURCES = {category: Source.IGDB for category in GameCategory}

HYBRID_SOURCE = "hybrid"


@dataclass
class ApiHealth:
    healthy: bool = True
    failures: int = 0
    last_failure: Optional[float] = None
    last_success: Optional[float] = None
    avg_response_time: float = 0.0


def _by_rating(games: List[GameRecord]) -> List[GameRecord]:
    return sorted(games, key=lambda game: game.rating or 0.0, reverse=True)


def _unique_by_id(games: List[GameRecord], seen: Set[str]) -> List[GameRecord]:
    unique = []
    for game in games:
        if game.id in seen:
            continue
        seen.add(game.id)
        unique.append(game)
    return unique


def _union(first: List[str], second: List[str]) -> List[str]:
    merged = list(first)
    seen = {item.lower() for item in first}
    for item in second:
        if item.lower() not in seen:
            seen.add(item.lower())
            merged.append(item)
    return merged


def find_matching_games(
    preferred: List[GameRecord], other: List[GameRecord], threshold: float = 0.8
) -> List[Tuple[GameRecord, GameRecord, float]]:
    """
    Apparie les jeux des deux listes par similarité de nom (> threshold).

    Appariement glouton dans l'ordre de `preferred` : chaque jeu prend le
    meilleur candidat encore libre de `other`.
    """
    matches = []
    used: Set[int] = set()
    for game in preferred:
        best_index, best_score = None, threshold
        for index, candidate in enumerate(other):
            if index in used:
                continue
            score = string_similarity(game.name, candidate.name)
            if score > best_score:
                best_index, best_score = index, score
        if best_index is not None:
            used.add(best_index)
            matches.append((game, other[best_index], best_score))
    return matches


def hybrid_record(preferred: GameRecord, other: GameRecord) -> GameRecord:
    """
    Fusionne deux records du même jeu venant de catalogues différents.

    - Identité (id, source_id, nom) de `preferred`
    - Résumé le plus long des deux
    - Plateformes et genres réunis (sans doublon, insensible à la casse)
    - Autres champs : ceux de `preferred`, complétés par `other`
    """
    summary = preferred.summary
    if len(other.summary or "") > len(summary or ""):
        summary = other.summary

    return dataclasses.replace(
        preferred,
        source=HYBRID_SOURCE,
        cover_url=preferred.cover_url or other.cover_url,
        genres=_union(preferred.genres, other.genres),
        platforms=_union(preferred.platforms, other.platforms),
        rating=preferred.rating or other.rating,
        release_timestamp=preferred.release_timestamp or other.release_timestamp,
        summary=summary,
        developer=preferred.developer or other.developer,
        publisher=preferred.publisher or other.publisher,
    )


def merge_results(
    primary: Optional[SearchResult],
    secondary: Optional[SearchResult],
    duplicate_threshold: float = 0.85,
    hybrid: bool = False,
    match_threshold: float = 0.8,
) -> SearchResult:
    """
    Fusionne deux pages de résultats.

    - Résultats de la source prioritaire ajoutés d'abord (dédupliqués par id)
    - Un résultat de la seconde source est écarté si son nom ressemble à plus
      de duplicate_threshold à un résultat déjà retenu
    - Ordre final : groupe prioritaire puis second groupe, chacun trié par
      rating décroissant
    - total = max des deux totaux (approximation)

    En mode hybrid (les deux pages présentes), les jeux appariés par nom
    (> match_threshold) sont fusionnés en un seul record (voir hybrid_record)
    placé en tête ; les non-appariés suivent, prioritaires puis seconds.

    Args:
        primary: Page de la source prioritaire (None si elle a échoué)
        secondary: Page de l'autre source (None si elle a échoué)
        duplicate_threshold: Seuil de similarité de nom
        hybrid: Active la fusion champ par champ des jeux appariés
        match_threshold: Seuil d'appariement du mode hybrid

    Returns:
        SearchResult fusionné
    """
    present = [result for result in (primary, secondary) if result is not None]
    if not present:
        raise ValueError("merge_results needs at least one result")

    sources: List[str] = []
    for result in present:
        sources.extend(source for source in result.sources if source not in sources)

    if hybrid and primary is not None and secondary is not None:
        seen: Set[str] = set()
        kept_primary = _unique_by_id(primary.games, seen)
        kept_secondary = _unique_by_id(secondary.games, seen)

        matches = find_matching_games(kept_primary, kept_secondary, match_threshold)
        fused = [hybrid_record(game, other) for game, other, _ in matches]
        matched = {game.id for game, _, _ in matches} | {other.id for _, other, _ in matches}

        LOGGER.debug(f"🔀 Hybrid merge: {len(fused)} jeux fusionnés")
        games = (
            _by_rating(fused)
            + _by_rating([game for game in kept_primary if game.id not in matched])
            + _by_rating([game for game in kept_secondary if game.id not in matched])
        )
        sources.insert(0, HYBRID_SOURCE)
    else:
        seen = set()
        kept_primary = _unique_by_id(primary.games if primary else [], seen)

        kept_secondary: List[GameRecord] = []
        dropped = 0
        for game in secondary.games if secondary else []:
            if game.id in seen:
                continue
            if any(
                string_similarity(game.name, other.name) > duplicate_threshold
                for other in kept_primary + kept_secondary
            ):
                dropped += 1
                continue
            seen.add(game.id)
            kept_secondary.append(game)

        if dropped:
            LOGGER.debug(f"🔀 Merge: {dropped} doublons inter-sources écartés")
        games = _by_rating(kept_primary) + _by_rating(kept_secondary)

    first = present[0]
    return SearchResult(
        games=games,
        total=max(result.total for result in present),
        page=first.page,
        page_size=first.page_size,
        has_next_page=any(result.has_next_page for result in present),
        has_previous_page=any(result.has_previous_page for result in present),
        sources=sources,
    )


class UnifiedGameSearch:
    """Point d'entrée de la recherche multi-catalogues."""

    def __init__(
        self,
        igdb: GameProvider,
        rawg: GameProvider,
        config: Optional[Dict[str, Any]] = None,
        preferences: Optional[PreferenceStore] = None,
        cache: Optional[TTLCache] = None,
        details_cache: Optional[TTLCache] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        config = config or {}
        search_config = config.get("search", {})
        cache_config = config.get("cache", {})
        preload_config = config.get("preload", {})

        self.providers: Dict[Source, GameProvider] = {Source.IGDB: igdb, Source.RAWG: rawg}
        self.preferences = preferences
        self.duplicate_threshold = search_config.get("duplicate_threshold", 0.85)
        self.hybrid_match_threshold = search_config.get("hybrid_match_threshold", 0.8)
        self.default_page_size = search_config.get("default_page_size", 20)
        self.min_query_length = search_config.get("min_query_length", 2)
        self.health_window = search_config.get("health_window_seconds", 300)
        self.preload_batch_size = preload_config.get("batch_size", 5)
        self.preload_stagger = preload_config.get("stagger", 0.1)

        self.cache = cache if cache is not None else TTLCache(
            "search",
            ttl_seconds=cache_config.get("search_ttl_minutes", 5) * 60,
            max_size=cache_config.get("search_max_entries", 100),
        )
        self.details_cache = details_cache if details_cache is not None else TTLCache(
            "game_details",
            ttl_seconds=cache_config.get("details_ttl_minutes", 10) * 60,
        )
        self._inflight = InFlightRequests("search")
        self._clock = clock
        self._health: Dict[Source, ApiHealth] = {source: ApiHealth() for source in Source}

    # ------------------------------------------------------------------
    # Recherche
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        page: int = 1,
        page_size: Optional[int] = None,
        strategy: Optional[str] = None,
        use_cache: Optional[bool] = None,
    ) -> SearchResult:
        """
        Recherche un jeu dans les deux catalogues.

        Args:
            query: Texte libre (>= 2 caractères, sinon résultat vide)
            page: Page (1-based)
            page_size: Résultats par page
            strategy: SearchStrategy ou sa valeur ; sinon préférence utilisateur
            use_cache: Force l'usage (ou non) du cache ; sinon préférence

        Returns:
            SearchResult (cache_hit=True s'il vient du cache)

        Raises:
            AllSourcesUnavailable: les deux catalogues ont échoué
        """
        page_size = page_size or self.default_page_size
        query = (query or "").strip()
        if len(query) < self.min_query_length:
            return SearchResult.empty(page, page_size)

        prefs = await self._load_preferences()
        resolved = self._resolve_strategy(strategy, prefs)
        cache_enabled = prefs.cache_enabled if use_cache is None else use_cache

        if not cache_enabled:
            return await self._execute(query, page, page_size, resolved, prefs)

        key = f"search:{query}:{page}:{page_size}:{resolved.value}"
        cached = self.cache.get(key)
        if cached is not None:
            LOGGER.debug(f"💾 Search cache hit: {key}")
            return dataclasses.replace(cached, games=list(cached.games), sources=list(cached.sources), cache_hit=True)

        result = await self._inflight.run(
            key, lambda: self._execute_and_cache(key, query, page, page_size, resolved, prefs)
        )
        # un exemplaire par appelant, l'appel en vol étant partagé
        return dataclasses.replace(result, games=list(result.games), sources=list(result.sources))

    async def _execute_and_cache(
        self,
        key: str,
        query: str,
        page: int,
        page_size: int,
        strategy: SearchStrategy,
        prefs: SearchPreferences,
    ) -> SearchResult:
        result = await self._execute(query, page, page_size, strategy, prefs)
        self.cache.set(key, dataclasses.replace(result, games=list(result.games), sources=list(result.sources)))
        return result

    async def _execute(
        self,
        query: str,
        page: int,
        page_size: int,
        strategy: SearchStrategy,
        prefs: SearchPreferences,
    ) -> SearchResult:
        LOGGER.info(f"🔍 Search '{query}' (page {page}, strategy {strategy.value})")

        if strategy is SearchStrategy.IGDB_FIRST:
            return await self._search_source_first(Source.IGDB, query, page, page_size, prefs.fallback_enabled)
        if strategy is SearchStrategy.RAWG_FIRST:
            return await self._search_source_first(Source.RAWG, query, page, page_size, prefs.fallback_enabled)

        return await self._search_combined(self._primary_source(prefs), query, page, page_size)

    async def _search_source_first(
        self, first: Source, query: str, page: int, page_size: int, fallback_enabled: bool
    ) -> SearchResult:
        return await self._with_fallback(
            first,
            query,
            lambda source: self._call_source(source, query, page, page_size),
            fallback_enabled,
        )

    async def _with_fallback(
        self,
        first: Source,
        what: str,
        call: Callable[[Source], Awaitable[SearchResult]],
        fallback_enabled: bool,
    ) -> SearchResult:
        try:
            return await call(first)
        except Exception as first_error:
            if not fallback_enabled:
                raise AllSourcesUnavailable(what, {first.value: first_error}) from first_error
            LOGGER.warning(f"⚠️ {first.value} failed for '{what}', falling back to {first.other.value}: {first_error}")

            try:
                return await call(first.other)
            except Exception as second_error:
                LOGGER.error(f"❌ Both sources failed for '{what}'")
                raise AllSourcesUnavailable(
                    what, {first.value: first_error, first.other.value: second_error}
                ) from second_error

    async def _search_combined(self, primary: Source, query: str, page: int, page_size: int) -> SearchResult:
        half = math.ceil(page_size / 2)
        order = (primary, primary.other)

        outcomes = await asyncio.gather(
            *(self._call_source(source, query, page, half) for source in order),
            return_exceptions=True,
        )
        results = self._collect(order, outcomes, query)

        merged = merge_results(results.get(order[0]), results.get(order[1]), self.duplicate_threshold)
        return dataclasses.replace(merged, page=page, page_size=page_size)

    def _collect(self, order: Sequence[Source], outcomes: Sequence[Any], what: str) -> Dict[Source, SearchResult]:
        """Résultats des sources qui ont répondu ; AllSourcesUnavailable si aucune."""
        results: Dict[Source, SearchResult] = {}
        errors: Dict[str, Exception] = {}
        for source, outcome in zip(order, outcomes):
            if isinstance(outcome, BaseException):
                LOGGER.warning(f"⚠️ {source.value} failed for '{what}', continuing with the other source: {outcome}")
                errors[source.value] = outcome
            else:
                results[source] = outcome

        if not results:
            LOGGER.error(f"❌ Both sources failed for '{what}'")
            raise AllSourcesUnavailable(what, errors)
        return results

    async def _call_source(self, source: Source, query: str, page: int, page_size: int) -> SearchResult:
        return await self._timed(source, lambda: self.providers[source].search(query, page=page, page_size=page_size))

    async def _call_category(self, source: Source, category: GameCategory, page: int, page_size: int) -> SearchResult:
        return await self._timed(
            source, lambda: self.providers[source].get_category(category, page=page, page_size=page_size)
        )

    async def _timed(self, source: Source, call: Callable[[], Awaitable[SearchResult]]) -> SearchResult:
        start = self._clock()
        try:
            result = await call()
        except Exception:
            self._record_failure(source)
            raise
        self._record_success(source, self._clock() - start)
        return result

    # ------------------------------------------------------------------
    # Listes éditoriales
    # ------------------------------------------------------------------

    async def get_games_by_category(
        self,
        category,
        page: int = 1,
        page_size: Optional[int] = None,
        source: Optional[str] = None,
    ) -> SearchResult:
        """
        Page d'une liste éditoriale (popular, trending, upcoming, recent).

        Args:
            category: GameCategory ou sa valeur
            page: Page (1-based)
            page_size: Jeux par page
            source: igdb, rawg, auto / smart (source la plus adaptée à la
                liste, selon la santé des APIs) ou hybrid (les deux catalogues
                fusionnés) ; sinon préférence utilisateur

        Returns:
            SearchResult

        Raises:
            ValueError: catégorie ou source inconnue
            AllSourcesUnavailable: aucune source n'a répondu
        """
        category = GameCategory(category)
        page_size = page_size or self.default_page_size
        prefs = await self._load_preferences()
        target = source or prefs.preferred_source

        LOGGER.info(f"📋 Category {category.value} (page {page}, source {target})")
        if target == HYBRID_SOURCE:
            return await self._category_hybrid(category, page, page_size)

        if target in ("auto", "smart"):
            first = self._healthiest(CATEGORY_SOURCES[category])
        else:
            first = Source(target)

        return await self._with_fallback(
            first,
            category.value,
            lambda catalog: self._call_category(catalog, category, page, page_size),
            prefs.fallback_enabled,
        )

    async def _category_hybrid(self, category: GameCategory, page: int, page_size: int) -> SearchResult:
        order = (Source.IGDB, Source.RAWG)
        sizes = {Source.IGDB: math.ceil(page_size * 0.7), Source.RAWG: math.ceil(page_size * 0.5)}

        outcomes = await asyncio.gather(
            *(self._call_category(source, category, page, sizes[source]) for source in order),
            return_exceptions=True,
        )
        results = self._collect(order, outcomes, category.value)

        merged = merge_results(
            results.get(Source.IGDB),
            results.get(Source.RAWG),
            self.duplicate_threshold,
            hybrid=True,
            match_threshold=self.hybrid_match_threshold,
        )
        return dataclasses.replace(merged, games=merged.games[:page_size], page=page, page_size=page_size)

    # ------------------------------------------------------------------
    # Santé des APIs / préférences
    # ------------------------------------------------------------------

    def _record_success(self, source: Source, elapsed: float):
        health = self._health[source]
        # récupération progressive : un succès efface un seul échec
        health.failures = max(0, health.failures - 1)
        health.healthy = health.failures < 3
        health.last_success = self._clock()
        health.avg_response_time = (
            elapsed if not health.avg_response_time else (health.avg_response_time + elapsed) / 2
        )

    def _record_failure(self, source: Source):
        health = self._health[source]
        health.failures += 1
        health.last_failure = self._clock()
        if health.failures >= 3:
            health.healthy = False

    def _failed_recently(self, source: Source) -> bool:
        health = self._health[source]
        if health.last_failure is None:
            return False
        if health.last_success is not None and health.last_success > health.last_failure:
            return False
        return self._clock() - health.last_failure < self.health_window

    def _primary_source(self, prefs: SearchPreferences) -> Source:
        if prefs.preferred_source in (Source.IGDB.value, Source.RAWG.value):
            return Source(prefs.preferred_source)
        return self._healthiest(Source.IGDB)

    def _healthiest(self, preferred: Source) -> Source:
        """`preferred`, sauf s'il vient d'échouer et que l'autre source va bien."""
        if self._failed_recently(preferred) and not self._failed_recently(preferred.other):
            LOGGER.info(f"🔄 {preferred.value} en échec récent, {preferred.other.value} passe en source prioritaire")
            return preferred.other
        return preferred

    def _resolve_strategy(self, strategy: Optional[str], prefs: SearchPreferences) -> SearchStrategy:
        if strategy is not None:
            return SearchStrategy(strategy)
        try:
            return SearchStrategy(prefs.search_strategy)
        except ValueError:
            LOGGER.warning(f"⚠️ Stratégie inconnue '{prefs.search_strategy}', utilisation de smart")
            return SearchStrategy.SMART

    async def _load_preferences(self) -> SearchPreferences:
        if self.preferences is None:
            return SearchPreferences()
        return await self.preferences.load()

    def get_api_health(self) -> Dict[str, Dict[str, Any]]:
        return {source.value: dataclasses.asdict(health) for source, health in self._health.items()}

    async def test_connectivity(self) -> Dict[str, bool]:
        igdb_ok, rawg_ok = await asyncio.gather(
            self.providers[Source.IGDB].ping(),
            self.providers[Source.RAWG].ping(),
        )
        LOGGER.info(f"🔌 Connectivity: IGDB={'✅' if igdb_ok else '❌'} RAWG={'✅' if rawg_ok else '❌'}")
        return {Source.IGDB.value: igdb_ok, Source.RAWG.value: rawg_ok}

    # ------------------------------------------------------------------
    # Détails / préchargement
    # ------------------------------------------------------------------

    async def get_game_details(self, game_id) -> Optional[GameRecord]:
        """
        Détails d'un jeu.

        Un ID canonique interroge sa source ; un ID numérique nu essaie IGDB
        puis RAWG (si fallback_enabled).

        Returns:
            GameRecord, ou None si introuvable / ID invalide

        Raises:
            AllSourcesUnavailable: toutes les sources interrogées ont échoué
        """
        raw = str(game_id).strip()
        cached = self.details_cache.get(raw)
        if cached is not None:
            return cached

        if is_native_digits(raw):
            prefs = await self._load_preferences()
            native_id = int(raw)
            sources = [Source.IGDB, Source.RAWG] if prefs.fallback_enabled else [Source.IGDB]
        else:
            try:
                cid = CanonicalGameId.parse(raw)
            except InvalidGameId as e:
                LOGGER.warning(f"⚠️ Détails impossibles, ID invalide: {e}")
                return None
            cached = self.details_cache.get(str(cid))
            if cached is not None:
                return cached
            native_id = cid.native_id
            sources = [cid.source]

        errors: Dict[str, Exception] = {}
        for source in sources:
            try:
                record = await self.providers[source].get_game(native_id)
            except CatalogError as e:
                LOGGER.warning(f"⚠️ {source.value} details failed for {raw}: {e}")
                errors[source.value] = e
                continue

            if record is not None:
                self.details_cache.set(raw, record)
                self.details_cache.set(record.id, record)
                return record

        if len(errors) == len(sources):
            raise AllSourcesUnavailable(raw, errors)
        return None

    def get_cached_details(self, game_id) -> Optional[GameRecord]:
        return self.details_cache.get(str(game_id).strip())

    async def preload_details(self, ids: Iterable) -> int:
        """
        Précharge les détails en arrière-plan : paquets de preload_batch_size,
        chaque paquet décalé de preload_stagger secondes. Échecs ignorés.

        Returns:
            Nombre de jeux effectivement chargés
        """
        pending = [
            game_id
            for game_id in dict.fromkeys(str(game_id).strip() for game_id in ids)
            if not self.details_cache.has_key(game_id)
        ]
        batches = [
            pending[i:i + self.preload_batch_size] for i in range(0, len(pending), self.preload_batch_size)
        ]

        async def _run_batch(index: int, batch: List[str]) -> int:
            if index:
                await asyncio.sleep(index * self.preload_stagger)
            outcomes = await asyncio.gather(
                *(self.get_game_details(game_id) for game_id in batch), return_exceptions=True
            )
            loaded = 0
            for game_id, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    LOGGER.debug(f"Preload {game_id} failed: {outcome}")
                elif outcome is not None:
                    loaded += 1
            return loaded

        counts = await asyncio.gather(*(_run_batch(index, batch) for index, batch in enumerate(batches)))
        if pending:
            LOGGER.info(f"📦 Preload: {sum(counts)}/{len(pending)} games chargés")
        return sum(counts)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "search": dataclasses.asdict(self.cache.get_stats()),
            "details": dataclasses.asdict(self.details_cache.get_stats()),
        }

    def clear_cache(self) -> int:
        return self.cache.clear() + self.details_cache.clear()
