"""
Récupération groupée des métadonnées de jeux.

Garantie : fetch_many(ids) retourne exactement une entrée par ID demandé,
même quand le catalogue en omet (placeholder "not found") ou échoue
(placeholder "unavailable"). Les IDs invalides ne partent jamais upstream.

Le cache (TTL 15 min) est indexé sur la liste TRIÉE des IDs canoniques :
fetch_many([a, b]) et fetch_many([b, a]) tombent sur la même entrée.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from backends.game_ids import CanonicalGameId, Source
from backends.providers.base import (
    API_ERROR,
    INVALID_ID,
    NOT_FOUND,
    GameProvider,
    GameRecord,
    make_fallback_record,
)
from core.cache_interface import InFlightRequests, TTLCache
from core.errors import InvalidGameId
from core.rate_limiter import bounded_gather

LOGGER = logging.getLogger(__name__)


def bulk_cache_key(ids: Iterable[CanonicalGameId]) -> str:
    ordered = sorted(set(ids), key=lambda cid: (cid.source.value, cid.native_id))
    return "bulk:" + ",".join(str(cid) for cid in ordered)


class BulkGameFetcher:
    """Récupère N jeux en un minimum d'appels upstream."""

    def __init__(
        self,
        igdb: GameProvider,
        rawg: GameProvider,
        config: Optional[Dict[str, Any]] = None,
        cache: Optional[TTLCache] = None,
    ):
        config = config or {}
        bulk_config = config.get("bulk", {})
        cache_config = config.get("cache", {})

        self.providers: Dict[Source, GameProvider] = {Source.IGDB: igdb, Source.RAWG: rawg}
        self.max_batch_size = bulk_config.get("max_batch_size", 500)
        self.max_concurrency = bulk_config.get("max_concurrency", 4)
        self.max_plausible_id = config.get("validation", {}).get("max_plausible_id", 10_000_000)

        self.cache = cache if cache is not None else TTLCache(
            "bulk_games",
            ttl_seconds=cache_config.get("bulk_ttl_minutes", 15) * 60,
        )
        self._inflight = InFlightRequests("bulk_games")

    def parse_id(self, game_id) -> CanonicalGameId:
        """Parse + vérification de plage. Lève InvalidGameId."""
        return CanonicalGameId.parse(game_id, self.max_plausible_id)

    async def fetch_many(self, ids: Iterable) -> Dict[str, GameRecord]:
        """
        Récupère plusieurs jeux.

        Args:
            ids: IDs canoniques ("igdb:1020", "rawg_2454", CanonicalGameId...)

        Returns:
            {id demandé (tel que fourni, en str): GameRecord réel ou fallback}
        """
        requested = list(dict.fromkeys(str(game_id) for game_id in ids))
        if not requested:
            return {}

        results: Dict[str, GameRecord] = {}
        parsed: Dict[str, CanonicalGameId] = {}
        for raw in requested:
            try:
                parsed[raw] = self.parse_id(raw)
            except InvalidGameId as e:
                LOGGER.warning(f"⚠️ Bulk: ID invalide ignoré: {e}")
                results[raw] = make_fallback_record(raw, INVALID_ID)

        if parsed:
            key = bulk_cache_key(parsed.values())
            records = self.cache.get(key)
            if records is not None:
                LOGGER.debug(f"💾 Bulk cache hit ({len(parsed)} games)")
            else:
                wanted = set(parsed.values())
                records = await self._inflight.run(key, lambda: self._fetch_and_cache(key, wanted))

            for raw, cid in parsed.items():
                results[raw] = records[str(cid)]

        return {raw: results[raw] for raw in requested}

    async def _fetch_and_cache(self, key: str, ids: set) -> Dict[str, GameRecord]:
        chunks = self._build_chunks(ids)
        LOGGER.info(f"🔍 Bulk fetch: {len(ids)} games en {len(chunks)} requête(s)")

        outcomes = await bounded_gather(
            (self.providers[source].get_games(native_ids) for source, native_ids in chunks),
            limit=self.max_concurrency,
            return_exceptions=True,
        )

        records: Dict[str, GameRecord] = {}
        failed = False
        missing = 0
        for (source, native_ids), outcome in zip(chunks, outcomes):
            if isinstance(outcome, BaseException):
                failed = True
                LOGGER.error(
                    f"❌ Bulk fetch {source.value} failed for {len(native_ids)} games: {outcome}",
                    exc_info=outcome,
                )
                for native_id in native_ids:
                    cid = CanonicalGameId(source, native_id)
                    records[str(cid)] = make_fallback_record(cid, API_ERROR)
                continue

            found = {record.id: record for record in outcome}
            for native_id in native_ids:
                cid = CanonicalGameId(source, native_id)
                record = found.get(str(cid))
                if record is None:
                    missing += 1
                    record = make_fallback_record(cid, NOT_FOUND)
                records[str(cid)] = record

        if missing:
            LOGGER.warning(f"⚠️ Bulk fetch: {missing} games absents upstream (placeholders)")

        if not failed:
            self.cache.set(key, records)
        return records

    def _build_chunks(self, ids: set) -> List[Tuple[Source, List[int]]]:
        chunks: List[Tuple[Source, List[int]]] = []
        for source in Source:
            native_ids = sorted(cid.native_id for cid in ids if cid.source is source)
            for i in range(0, len(native_ids), self.max_batch_size):
                chunks.append((source, native_ids[i:i + self.max_batch_size]))
        return chunks

    def cleanup_cache(self) -> int:
        """Sweep périodique des entrées expirées."""
        return self.cache.cleanup_expired()

    def get_cache_stats(self) -> Dict[str, Any]:
        stats = self.cache.get_stats()
        return {
            "size": stats.total_keys,
            "expired": stats.expired_keys,
            "hits": stats.cache_hits,
            "misses": stats.cache_misses,
            "hit_rate": stats.hit_rate,
        }

    def clear_cache(self) -> int:
        return self.cache.clear()
