"""
Validation & enrichissement des jeux.

Machine à états par ID :
    Unvalidated -> Validating -> {Valid, NotFound, ApiError}

- Valid, NotFound et InvalidId sont terminaux (cache 24h, plus aucun appel
  réseau pour cet ID pendant le TTL).
- ApiError est provisoire tant que retry_count < max_retries (3) : un retry est
  planifié avec un délai linéaire (base * retry_count) et le prochain
  validate() retente aussi. À max_retries, l'échec devient terminal jusqu'à
  expiration du TTL.

enhance() enveloppe BulkGameFetcher et remplace les records douteux par
leur version validée.
"""

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from backends.bulk_fetcher import BulkGameFetcher
from backends.game_ids import CanonicalGameId, Source
from backends.providers.base import GameProvider, GameRecord
from core.cache_interface import InFlightRequests, TTLCache
from core.errors import CatalogError, InvalidGameId

LOGGER = logging.getLogger(__name__)


class ValidationReason(str, Enum):
    NOT_FOUND = "not_found"
    API_ERROR = "api_error"
    INVALID_ID = "invalid_id"


@dataclass
class ValidationOutcome:
    game_id: str
    is_valid: bool
    reason: Optional[ValidationReason] = None
    alternative_data: Optional[GameRecord] = None
    last_validated: float = 0.0
    retry_count: int = 0


class GameValidator:
    """Vérifie l'existence des jeux upstream et met les résultats en cache."""

    def __init__(
        self,
        igdb: GameProvider,
        rawg: GameProvider,
        bulk_fetcher: BulkGameFetcher,
        config: Optional[Dict[str, Any]] = None,
        cache: Optional[TTLCache] = None,
    ):
        config = config or {}
        validation_config = config.get("validation", {})
        cache_config = config.get("cache", {})

        self.providers: Dict[Source, GameProvider] = {Source.IGDB: igdb, Source.RAWG: rawg}
        self.bulk_fetcher = bulk_fetcher
        self.max_retries = validation_config.get("max_retries", 3)
        self.retry_base_delay = validation_config.get("retry_base_delay", 1.0)
        self.schedule_retries = validation_config.get("schedule_retries", True)
        self.chunk_size = validation_config.get("chunk_size", 10)
        self.chunk_delay = validation_config.get("chunk_delay", 0.2)
        self.max_plausible_id = validation_config.get("max_plausible_id", 10_000_000)

        self.cache = cache if cache is not None else TTLCache(
            "validation",
            ttl_seconds=cache_config.get("validation_ttl_hours", 24) * 3600,
        )
        self._inflight = InFlightRequests("validation")
        # retries encore en attente du délai (au plus un par ID)
        self._scheduled_retries: Dict[str, asyncio.Task] = {}
        # tous les retries vivants, en attente ou en cours
        self._retry_tasks: Set[asyncio.Task] = set()
        self._closed = False

    def _is_terminal(self, outcome: ValidationOutcome) -> bool:
        if outcome.reason is ValidationReason.API_ERROR:
            return outcome.retry_count >= self.max_retries
        return True

    async def validate(self, game_id) -> ValidationOutcome:
        """
        Valide un jeu.

        Args:
            game_id: ID canonique ("rawg:42", "igdb_1020" ou CanonicalGameId)

        Returns:
            ValidationOutcome (jamais d'exception pour un échec upstream)
        """
        try:
            cid = CanonicalGameId.parse(game_id, self.max_plausible_id)
        except InvalidGameId as e:
            return self._invalid_outcome(str(game_id), e)

        key = str(cid)
        cached = self.cache.get(key)
        if cached is not None:
            if self._is_terminal(cached):
                LOGGER.debug(f"💾 Validation en cache: {key} (valid={cached.is_valid})")
                return cached
            LOGGER.debug(f"🔄 Validation provisoire pour {key} (retry {cached.retry_count}/{self.max_retries})")

        previous_retries = cached.retry_count if cached is not None else 0
        return await self._inflight.run(key, lambda: self._validate_remote(cid, previous_retries))

    def _invalid_outcome(self, raw: str, error: InvalidGameId) -> ValidationOutcome:
        cached = self.cache.get(raw)
        if cached is not None:
            return cached

        LOGGER.warning(f"⚠️ ID invalide, pas de validation upstream: {error}")
        outcome = ValidationOutcome(
            game_id=raw,
            is_valid=False,
            reason=ValidationReason.INVALID_ID,
            last_validated=time.time(),
        )
        self.cache.set(raw, outcome)
        return outcome

    async def _validate_remote(self, cid: CanonicalGameId, previous_retries: int) -> ValidationOutcome:
        key = str(cid)
        provider = self.providers[cid.source]

        try:
            record = await provider.get_game(cid.native_id)
        except CatalogError as e:
            retry_count = previous_retries + 1
            outcome = ValidationOutcome(
                game_id=key,
                is_valid=False,
                reason=ValidationReason.API_ERROR,
                last_validated=time.time(),
                retry_count=retry_count,
            )
            self.cache.set(key, outcome)

            if retry_count < self.max_retries:
                LOGGER.warning(f"⚠️ Validation {key} failed ({retry_count}/{self.max_retries}): {e}")
                self._schedule_retry(cid, retry_count)
            else:
                LOGGER.error(f"❌ Validation {key} abandonnée après {retry_count} échecs: {e}")
            return outcome

        if record is None:
            LOGGER.info(f"❌ Game not found upstream: {key}")
            outcome = ValidationOutcome(
                game_id=key,
                is_valid=False,
                reason=ValidationReason.NOT_FOUND,
                last_validated=time.time(),
            )
        else:
            LOGGER.debug(f"✅ Game validated: {key} ({record.name})")
            outcome = ValidationOutcome(
                game_id=key,
                is_valid=True,
                alternative_data=record,
                last_validated=time.time(),
            )

        self.cache.set(key, outcome)
        return outcome

    def _schedule_retry(self, cid: CanonicalGameId, retry_count: int):
        if not self.schedule_retries or self._closed:
            return

        key = str(cid)
        if key in self._scheduled_retries:
            return

        delay = self.retry_base_delay * retry_count
        task = asyncio.create_task(self._retry_after(cid, delay))
        self._scheduled_retries[key] = task
        self._retry_tasks.add(task)
        task.add_done_callback(lambda t, k=key: self._forget_retry(k, t))
        LOGGER.info(f"🔄 Retry {key} planifié dans {delay:.1f}s")

    def _forget_retry(self, key: str, task: asyncio.Task):
        self._retry_tasks.discard(task)
        if self._scheduled_retries.get(key) is task:
            del self._scheduled_retries[key]

    async def _retry_after(self, cid: CanonicalGameId, delay: float):
        await asyncio.sleep(delay)
        # Le délai est écoulé : un nouvel échec pourra planifier le retry suivant
        key = str(cid)
        if self._scheduled_retries.get(key) is asyncio.current_task():
            del self._scheduled_retries[key]
        try:
            await self.validate(cid)
        except Exception as e:
            LOGGER.error(f"❌ Erreur retry validation {cid}: {e}", exc_info=True)

    async def validate_many(self, ids: Iterable) -> Dict[str, ValidationOutcome]:
        """
        Valide par paquets (chunk_size, pause chunk_delay entre paquets).

        Les échecs individuels sont tolérés.

        Returns:
            {id demandé: ValidationOutcome}
        """
        requested = list(dict.fromkeys(str(game_id) for game_id in ids))
        results: Dict[str, ValidationOutcome] = {}

        for start in range(0, len(requested), self.chunk_size):
            if start and self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)

            chunk = requested[start:start + self.chunk_size]
            outcomes = await asyncio.gather(*(self.validate(game_id) for game_id in chunk), return_exceptions=True)

            for game_id, outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    LOGGER.error(f"❌ Validation {game_id} crashed: {outcome}", exc_info=outcome)
                    outcome = ValidationOutcome(
                        game_id=game_id,
                        is_valid=False,
                        reason=ValidationReason.API_ERROR,
                        last_validated=time.time(),
                    )
                results[game_id] = outcome

        return results

    async def enhance(self, ids: Iterable) -> Dict[str, GameRecord]:
        """
        Bulk fetch + validation des records douteux.

        Un record douteux (fallback, "Game Data Missing", "Data unavailable")
        est remplacé par la version validée quand elle existe ; sinon le
        fallback est conservé avec sa raison de validation.
        """
        records = await self.bulk_fetcher.fetch_many(ids)
        flagged = [game_id for game_id, record in records.items() if record.is_low_confidence]
        if not flagged:
            return records

        LOGGER.info(f"🔍 Enhance: {len(flagged)}/{len(records)} records douteux à valider")
        outcomes = await self.validate_many(flagged)

        enhanced = dict(records)
        replaced = 0
        for game_id in flagged:
            outcome = outcomes[game_id]
            if outcome.is_valid and outcome.alternative_data is not None:
                enhanced[game_id] = dataclasses.replace(outcome.alternative_data, is_validated=True)
                replaced += 1
            else:
                reason = outcome.reason.value if outcome.reason else None
                enhanced[game_id] = dataclasses.replace(records[game_id], validation_reason=reason)

        LOGGER.info(f"✅ Enhance: {replaced} records remplacés par des données validées")
        return enhanced

    async def get_problematic_games(self, ids: Iterable) -> List[str]:
        """IDs dont le record bulk est douteux."""
        records = await self.bulk_fetcher.fetch_many(ids)
        return [game_id for game_id, record in records.items() if record.is_low_confidence]

    async def validate_all(self, ids: Iterable, batch_size: int = 50, batch_delay: float = 0.5) -> Dict[str, int]:
        """
        Validation de masse (maintenance/admin).

        Returns:
            {"validated", "failed", "invalid", "errors"}
        """
        requested = list(dict.fromkeys(str(game_id) for game_id in ids))
        summary = {"validated": 0, "failed": 0, "invalid": 0, "errors": 0}

        for start in range(0, len(requested), batch_size):
            if start and batch_delay:
                await asyncio.sleep(batch_delay)

            outcomes = await self.validate_many(requested[start:start + batch_size])
            for outcome in outcomes.values():
                if outcome.is_valid:
                    summary["validated"] += 1
                    continue
                summary["failed"] += 1
                if outcome.reason is ValidationReason.API_ERROR:
                    summary["errors"] += 1
                else:
                    summary["invalid"] += 1

        LOGGER.info(f"📊 Validation de masse terminée: {summary}")
        return summary

    def get_cached_outcome(self, game_id) -> Optional[ValidationOutcome]:
        try:
            key = str(CanonicalGameId.parse(game_id))
        except InvalidGameId:
            key = str(game_id)
        return self.cache.get(key)

    def get_invalid_game_ids(self) -> List[str]:
        """IDs confirmés absents ou invalides."""
        return [
            outcome.game_id
            for outcome in self.cache.values()
            if outcome.reason in (ValidationReason.NOT_FOUND, ValidationReason.INVALID_ID)
        ]

    def get_stats(self) -> Dict[str, Any]:
        outcomes = list(self.cache.values())
        cache_stats = self.cache.get_stats()
        return {
            "total": len(outcomes),
            "valid": sum(1 for outcome in outcomes if outcome.is_valid),
            "invalid": sum(
                1
                for outcome in outcomes
                if outcome.reason in (ValidationReason.NOT_FOUND, ValidationReason.INVALID_ID)
            ),
            "api_errors": sum(1 for outcome in outcomes if outcome.reason is ValidationReason.API_ERROR),
            "cache_hit_rate": round(cache_stats.hit_rate, 1),
        }

    def cleanup_cache(self) -> int:
        return self.cache.cleanup_expired()

    def pending_retries(self) -> int:
        return sum(1 for task in self._retry_tasks if not task.done())

    async def close(self):
        """Annule les retries en attente ou en cours ; plus aucun retry planifié ensuite."""
        self._closed = True
        tasks = list(self._retry_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._retry_tasks.clear()
        self._scheduled_retries.clear()
