"""
RateLimiter - Protection contre les quotas des catalogues

- IGDB: 4 requêtes / seconde (limite officielle)
- RAWG: pas de limite stricte documentée, on reste poli

Fenêtre glissante par limiter + fan-out borné (bounded_gather) pour ne jamais
lâcher N appels simultanés sur un catalogue.
"""
import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Iterable, List

LOGGER = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Rate limiter async avec fenetre glissante."""

    def __init__(
        self,
        name: str,
        max_calls: int = 4,
        period: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.max_calls = max_calls
        self.period = period
        self._clock = clock
        self._history: Deque[float] = deque()
        self._lock = asyncio.Lock()

        LOGGER.info(f"RateLimiter [{name}] init: {max_calls} requêtes / {period}s")

    def _purge(self, now: float):
        while self._history and (now - self._history[0]) >= self.period:
            self._history.popleft()

    def can_send(self) -> bool:
        """Verifie si une requête peut partir immédiatement (sans la consommer)."""
        self._purge(self._clock())
        return len(self._history) < self.max_calls

    async def acquire(self):
        """Attend qu'une place se libère dans la fenêtre puis la consomme."""
        async with self._lock:
            while True:
                now = self._clock()
                self._purge(now)
                if len(self._history) < self.max_calls:
                    self._history.append(now)
                    return

                wait = self.period - (now - self._history[0])
                LOGGER.debug(f"⏳ Rate limit [{self.name}] atteint, attente {wait:.3f}s")
                await asyncio.sleep(max(wait, 0.001))

    def get_stats(self) -> dict:
        self._purge(self._clock())
        return {
            "name": self.name,
            "max_calls": self.max_calls,
            "period": self.period,
            "in_window": len(self._history),
        }


async def bounded_gather(
    coros: Iterable[Awaitable[Any]],
    limit: int,
    return_exceptions: bool = False,
) -> List[Any]:
    """
    asyncio.gather avec au plus `limit` coroutines actives en même temps.

    Args:
        coros: Coroutines à exécuter
        limit: Concurrence max (>= 1)
        return_exceptions: Même sémantique que asyncio.gather

    Returns:
        Résultats dans l'ordre des coroutines
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _run(coro: Awaitable[Any]) -> Any:
        async with semaphore:
            return await coro

    return await asyncio.gather(*(_run(c) for c in coros), return_exceptions=return_exceptions)
