"""Cache commun à tous les composants de résolution (mapping, bulk, validation, recherche).

Chaque composant reçoit sa propre instance de TTLCache : aucune donnée n'est
partagée entre composants. L'expiration est paresseuse (une entrée lue après
son TTL est traitée comme absente puis supprimée) et un CacheSweeper peut en
plus purger périodiquement les entrées expirées.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import Any, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry:
    """Entrée de cache standardisée."""

    key: str
    value: Any
    timestamp: float
    ttl_seconds: float | None = None

    def is_expired(self, now: float) -> bool:
        if self.ttl_seconds is None:
            return False
        return (now - self.timestamp) > self.ttl_seconds


@dataclass
class CacheStats:
    """Statistiques de cache standardisées."""

    name: str
    total_keys: int
    expired_keys: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    evictions: int = 0
    hit_rate: float = 0.0
    max_size: int | None = None
    ttl_seconds: float | None = None


class TTLCache:
    """
    Map clé -> CacheEntry avec TTL paresseux et taille optionnellement bornée.

    Quand max_size est dépassé, l'entrée insérée le plus anciennement est
    évincée (l'ordre d'insertion du dict sert de file).
    """

    def __init__(
        self,
        name: str,
        ttl_seconds: float | None,
        max_size: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Any | None:
        """
        Récupère une valeur du cache.

        Args:
            key: Clé de recherche

        Returns:
            La valeur, ou None si absente ou expirée
        """
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._misses += 1
            LOGGER.debug(f"⌛ [{self.name}] Entrée expirée: {key}")
            return None

        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """
        Stocke une valeur dans le cache.

        Args:
            key: Clé de stockage
            value: Données à stocker
            ttl_seconds: TTL spécifique (sinon celui du cache)
        """
        # Réinsertion = entrée la plus récente
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            timestamp=self._clock(),
            ttl_seconds=self.ttl_seconds if ttl_seconds is None else ttl_seconds,
        )

        if self.max_size is not None:
            while len(self._entries) > self.max_size:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                self._evictions += 1
                LOGGER.debug(f"🗑️ [{self.name}] Éviction de la plus ancienne entrée: {oldest}")

    def get_entry(self, key: str) -> CacheEntry | None:
        """Entrée brute, sans vérification de TTL ni comptage hit/miss."""
        return self._entries.get(key)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def has_key(self, key: str) -> bool:
        """Vérifie si une clé existe (et n'est pas expirée)."""
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def values(self) -> Iterator[Any]:
        """Itère sur les valeurs encore valides."""
        now = self._clock()
        for entry in list(self._entries.values()):
            if not entry.is_expired(now):
                yield entry.value

    def items(self) -> Iterator[tuple[str, Any]]:
        now = self._clock()
        for entry in list(self._entries.values()):
            if not entry.is_expired(now):
                yield entry.key, entry.value

    def clear(self) -> int:
        """
        Vide le cache.

        Returns:
            Nombre d'entrées supprimées
        """
        count = len(self._entries)
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        LOGGER.info(f"🧹 [{self.name}] Cache vidé ({count} entrées)")
        return count

    def cleanup_expired(self) -> int:
        """
        Nettoie les entrées expirées.

        Returns:
            Nombre d'entrées supprimées
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]

        if expired:
            LOGGER.debug(f"🧹 [{self.name}] {len(expired)} entrées expirées supprimées")
        return len(expired)

    def get_stats(self) -> CacheStats:
        now = self._clock()
        lookups = self._hits + self._misses
        return CacheStats(
            name=self.name,
            total_keys=len(self._entries),
            expired_keys=sum(1 for entry in self._entries.values() if entry.is_expired(now)),
            cache_hits=self._hits,
            cache_misses=self._misses,
            evictions=self._evictions,
            hit_rate=(self._hits / lookups * 100) if lookups else 0.0,
            max_size=self.max_size,
            ttl_seconds=self.ttl_seconds,
        )

    def size(self) -> int:
        """Nombre d'entrées physiquement présentes (expirées incluses)."""
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class InFlightRequests:
    """
    Déduplication des appels en cours : clé -> future partagée.

    Deux appelants concurrents sur la même clé attendent la même tâche au lieu
    de lancer deux appels upstream (cache stampede).
    """

    def __init__(self, name: str = "inflight"):
        self.name = name
        self._pending: dict[str, asyncio.Future] = {}

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._pending.get(key)
        if task is not None:
            LOGGER.debug(f"🔗 [{self.name}] Appel déjà en cours, partage: {key}")
        else:
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))

        # shield: l'annulation d'un appelant n'annule pas la tâche partagée
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Future) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]

    def pending_count(self) -> int:
        return len(self._pending)

    def __contains__(self, key: str) -> bool:
        return key in self._pending


class CacheSweeper:
    """Purge périodique des entrées expirées de plusieurs caches."""

    def __init__(self, caches: list[TTLCache], interval_seconds: float = 300.0):
        self.caches = caches
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    def sweep(self) -> dict[str, int]:
        """Un passage de nettoyage. Retourne {nom_du_cache: entrées supprimées}."""
        removed = {cache.name: cache.cleanup_expired() for cache in self.caches}
        total = sum(removed.values())
        if total:
            LOGGER.info(f"🧹 Sweep caches: {total} entrées expirées supprimées {removed}")
        return removed

    def start(self) -> None:
        if self.is_running():
            return
        self._task = asyncio.create_task(self._run())
        LOGGER.info(f"🔄 CacheSweeper démarré (intervalle {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        LOGGER.info("⏹️ CacheSweeper arrêté")

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.sweep()
            except Exception as e:
                LOGGER.error(f"❌ Erreur sweep caches: {e}", exc_info=True)
