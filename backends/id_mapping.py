"""
Mapping d'IDs entre catalogues (RAWG <-> IGDB).

Ordre de résolution :
1. Table de correspondances manuelles (fait autorité, aucun appel réseau)
2. Cache de mapping (TTL 24h)
3. Recherche floue : record d'origine -> recherche par nom dans le catalogue
   cible (top 10) -> meilleur candidat selon le scorer, accepté seulement si
   son score dépasse strictement le seuil de confiance (0.7)

resolve() ne lève jamais : pas de correspondance sûre = None.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from backends.game_ids import CanonicalGameId, Source
from backends.providers.base import GameProvider, GameRecord
from core.cache_interface import InFlightRequests, TTLCache
from core.errors import CatalogError, InvalidGameId
from core.rate_limiter import bounded_gather
from core.similarity import Scorer, score_candidate

LOGGER = logging.getLogger(__name__)

DEFAULT_MANUAL_OVERRIDES: Dict[str, str] = {
    # DOOM series
    "rawg:2454": "igdb:1020",  # DOOM (2016)
    "rawg:11": "igdb:1942",  # DOOM II: Hell on Earth
    "rawg:13": "igdb:72",  # DOOM
    "rawg:23014": "igdb:472",  # DOOM 3
    "rawg:612": "igdb:71",  # DOOM 3: BFG Edition
}


@dataclass
class IdMapping:
    from_id: str
    to_id: str
    game_name: str
    confidence: float
    last_updated: float


class GameIdMapper:
    """Traduit un ID natif d'un catalogue vers l'ID canonique équivalent de l'autre."""

    def __init__(
        self,
        igdb: GameProvider,
        rawg: GameProvider,
        config: Optional[Dict[str, Any]] = None,
        cache: Optional[TTLCache] = None,
        scorer: Scorer = score_candidate,
    ):
        config = config or {}
        mapping_config = config.get("mapping", {})
        cache_config = config.get("cache", {})

        self.providers: Dict[Source, GameProvider] = {Source.IGDB: igdb, Source.RAWG: rawg}
        self.scorer = scorer
        self.confidence_threshold = mapping_config.get("confidence_threshold", 0.7)
        self.candidate_limit = mapping_config.get("candidate_limit", 10)
        self.max_concurrency = mapping_config.get("max_concurrency", 5)

        self.cache = cache if cache is not None else TTLCache(
            "id_mapping",
            ttl_seconds=cache_config.get("mapping_ttl_hours", 24) * 3600,
        )
        self._inflight = InFlightRequests("id_mapping")
        self._overrides = self._build_overrides(mapping_config.get("manual_overrides") or {})

    @staticmethod
    def _build_overrides(extra: Dict[str, str]) -> Dict[str, str]:
        """Table manuelle normalisée (ids canoniques), consultable dans les deux sens."""
        forward: Dict[str, str] = {}
        for from_id, to_id in {**DEFAULT_MANUAL_OVERRIDES, **extra}.items():
            try:
                forward[str(CanonicalGameId.parse(from_id))] = str(CanonicalGameId.parse(to_id))
            except InvalidGameId as e:
                LOGGER.warning(f"⚠️ Mapping manuel ignoré ({from_id} -> {to_id}): {e}")

        overrides = dict(forward)
        for from_id, to_id in forward.items():
            overrides.setdefault(to_id, from_id)
        return overrides

    def get_manual_mapping(self, game_id: str) -> Optional[str]:
        try:
            return self._overrides.get(str(CanonicalGameId.parse(game_id)))
        except InvalidGameId:
            return None

    async def resolve(self, native_id, from_source) -> Optional[str]:
        """
        Résout un ID natif vers l'ID canonique de l'autre catalogue.

        Args:
            native_id: ID natif dans le catalogue d'origine
            from_source: Source d'origine ("igdb" / "rawg" ou Source)

        Returns:
            ID canonique dans le catalogue cible, ou None sans correspondance sûre
        """
        try:
            source_id = CanonicalGameId.of(from_source, native_id)
        except InvalidGameId as e:
            LOGGER.warning(f"⚠️ Mapping impossible, ID invalide: {e}")
            return None

        key = str(source_id)

        override = self._overrides.get(key)
        if override:
            LOGGER.debug(f"📌 Mapping manuel: {key} -> {override}")
            return override

        cached = self.cache.get(key)
        if cached is not None:
            LOGGER.debug(f"✅ Mapping en cache: {key} -> {cached.to_id}")
            return cached.to_id

        try:
            mapping = await self._inflight.run(key, lambda: self._resolve_remote(source_id))
        except CatalogError as e:
            LOGGER.warning(f"⚠️ Mapping {key} impossible (catalogue indisponible): {e}")
            return None
        except Exception as e:
            LOGGER.error(f"❌ Erreur mapping {key}: {e}", exc_info=True)
            return None

        return mapping.to_id if mapping else None

    async def resolve_id(self, game_id) -> Optional[str]:
        """resolve() à partir d'un ID canonique ("rawg:2454")."""
        try:
            parsed = CanonicalGameId.parse(game_id)
        except InvalidGameId as e:
            LOGGER.warning(f"⚠️ Mapping impossible, ID invalide: {e}")
            return None
        return await self.resolve(parsed.native_id, parsed.source)

    async def _resolve_remote(self, source_id: CanonicalGameId) -> Optional[IdMapping]:
        key = str(source_id)
        origin = self.providers[source_id.source]
        target = self.providers[source_id.source.other]

        LOGGER.info(f"🔄 Mapping {key} -> {target.name}")
        record = await origin.get_game(source_id.native_id)
        if record is None:
            LOGGER.warning(f"❌ {origin.name} game not found: {key}")
            return None

        year = record.release_year or "unknown date"
        LOGGER.debug(f"🔍 {origin.name} game found: \"{record.name}\" ({year})")

        page = await target.search(record.name, page=1, page_size=self.candidate_limit)
        if not page.games:
            LOGGER.warning(f"❌ No {target.name} matches found for: {record.name}")
            return None

        best = self.find_best_match(record, page.games)
        if best is None:
            LOGGER.warning(f"❌ No confident {target.name} match for: {record.name}")
            return None

        candidate, score = best
        mapping = IdMapping(
            from_id=key,
            to_id=candidate.id,
            game_name=record.name,
            confidence=round(score, 3),
            last_updated=time.time(),
        )
        self.cache.set(key, mapping)
        LOGGER.info(f"✅ Best {target.name} match: \"{candidate.name}\" -> {candidate.id} (score {score:.2f})")
        return mapping

    def find_best_match(
        self, record: GameRecord, candidates: List[GameRecord]
    ) -> Optional[Tuple[GameRecord, float]]:
        """
        Meilleur candidat et son score, ou None si aucun ne dépasse le seuil.

        Args:
            record: Record d'origine
            candidates: Candidats du catalogue cible
        """
        best: Optional[Tuple[GameRecord, float]] = None
        for candidate in candidates:
            score = self.scorer(record, candidate)
            if best is None or score > best[1]:
                best = (candidate, score)

        if best is not None and best[1] > self.confidence_threshold:
            return best
        return None

    async def resolve_many(self, native_ids: Iterable, from_source) -> Dict[str, str]:
        """
        Résolution par lot, concurrence bornée.

        Les échecs individuels et les IDs sans correspondance sont journalisés
        et omis du résultat.

        Returns:
            {id natif: id canonique cible}
        """
        ids = list(dict.fromkeys(str(native_id) for native_id in native_ids))
        results = await bounded_gather(
            (self.resolve(native_id, from_source) for native_id in ids),
            limit=self.max_concurrency,
            return_exceptions=True,
        )

        resolved: Dict[str, str] = {}
        for native_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                LOGGER.warning(f"⚠️ Mapping {from_source}:{native_id} failed: {result}")
                continue
            if result is None:
                LOGGER.info(f"⏭️ Mapping {from_source}:{native_id} skipped (no match)")
                continue
            resolved[native_id] = result

        LOGGER.info(f"📊 Batch mapping: {len(resolved)}/{len(ids)} résolus")
        return resolved

    async def to_igdb_id(self, game_id: str) -> str:
        """
        ID IGDB pour n'importe quel ID de jeu (RAWG mappé si possible).

        Retourne l'ID tel quel s'il est déjà IGDB, invalide ou sans correspondance.
        """
        try:
            parsed = CanonicalGameId.parse(game_id)
        except InvalidGameId:
            return game_id

        if parsed.source is Source.IGDB:
            return str(parsed)

        resolved = await self.resolve(parsed.native_id, parsed.source)
        return resolved or str(parsed)

    def get_cache_stats(self) -> Dict[str, Any]:
        stats = self.cache.get_stats()
        return {
            "size": stats.total_keys,
            "hit_rate": stats.hit_rate,
            "manual_overrides": len(self._overrides),
            "mappings": [
                {
                    "from_id": mapping.from_id,
                    "to_id": mapping.to_id,
                    "game_name": mapping.game_name,
                    "confidence": mapping.confidence,
                }
                for mapping in self.cache.values()
            ],
        }

    def clear_cache(self) -> int:
        return self.cache.clear()
