"""
Préférences de recherche par utilisateur.

Stockage en plusieurs niveaux, chacun optionnel, dans l'ordre :
    profil distant -> cookie (si consentement "fonctionnel") -> fichier local
Lecture : le premier niveau qui répond gagne, sinon valeurs par défaut.
Écriture : tous les niveaux, indépendamment (un échec distant ne bloque pas
l'écriture locale) ; le résultat de chaque niveau est retourné.
"""

import asyncio
import json
import logging
import os
import pathlib
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields
from typing import Any, Awaitable, Callable, Dict, List, MutableMapping, Optional, Union

LOGGER = logging.getLogger(__name__)

PREFERENCES_KEY = "gameSearchPreferences"
PROFILE_FIELD = "search_preferences"


@dataclass
class SearchPreferences:
    preferred_source: str = "auto"  # auto | igdb | rawg | hybrid (listes éditoriales)
    search_strategy: str = "smart"
    cache_enabled: bool = True
    fallback_enabled: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], base: Optional["SearchPreferences"] = None) -> "SearchPreferences":
        """Valeurs de data par-dessus base (défauts si None). Clés inconnues ignorées."""
        values = asdict(base or cls())
        known = {f.name for f in fields(cls)}
        values.update({key: value for key, value in (data or {}).items() if key in known})
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PreferenceBackend(ABC):
    """Un niveau de stockage des préférences."""

    name: str = "backend"

    @abstractmethod
    async def read(self) -> Optional[Dict[str, Any]]:
        """Préférences stockées, ou None si ce niveau n'a rien."""

    @abstractmethod
    async def write(self, preferences: Dict[str, Any]) -> bool:
        """Écrit les préférences. False si le niveau a été ignoré."""


class ProfilePreferenceBackend(PreferenceBackend):
    """Champ settings.search_preferences du profil utilisateur distant."""

    name = "profile"

    def __init__(
        self,
        load_settings: Callable[[], Awaitable[Optional[Dict[str, Any]]]],
        save_settings: Callable[[Dict[str, Any]], Awaitable[None]],
    ):
        self.load_settings = load_settings
        self.save_settings = save_settings

    async def read(self) -> Optional[Dict[str, Any]]:
        settings = await self.load_settings()
        if not settings:
            return None
        preferences = settings.get(PROFILE_FIELD)
        return preferences if isinstance(preferences, dict) else None

    async def write(self, preferences: Dict[str, Any]) -> bool:
        settings = await self.load_settings() or {}
        current = settings.get(PROFILE_FIELD) if isinstance(settings.get(PROFILE_FIELD), dict) else {}
        await self.save_settings({**settings, PROFILE_FIELD: {**current, **preferences}})
        return True


class CookiePreferenceBackend(PreferenceBackend):
    """Blob JSON dans un cookie, seulement avec le consentement "fonctionnel"."""

    name = "cookie"

    def __init__(self, jar: MutableMapping[str, str], has_consent: Callable[[], bool]):
        self.jar = jar
        self.has_consent = has_consent

    async def read(self) -> Optional[Dict[str, Any]]:
        if not self.has_consent():
            return None

        raw = self.jar.get(PREFERENCES_KEY)
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            LOGGER.warning("⚠️ Cookie de préférences illisible, ignoré")
            return None
        return data if isinstance(data, dict) else None

    async def write(self, preferences: Dict[str, Any]) -> bool:
        if not self.has_consent():
            LOGGER.debug("🍪 Pas de consentement fonctionnel, cookie non écrit")
            return False
        self.jar[PREFERENCES_KEY] = json.dumps(preferences)
        return True


class JsonFilePreferenceBackend(PreferenceBackend):
    """Fichier JSON local (fallback), {PREFERENCES_KEY: {...}}."""

    name = "local"

    def __init__(self, path: Union[str, pathlib.Path]):
        self.path = pathlib.Path(path)

    def _load_file(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    async def read(self) -> Optional[Dict[str, Any]]:
        preferences = self._load_file().get(PREFERENCES_KEY)
        return preferences if isinstance(preferences, dict) else None

    async def write(self, preferences: Dict[str, Any]) -> bool:
        try:
            data = self._load_file()
        except ValueError:
            LOGGER.warning(f"⚠️ Fichier de préférences corrompu, réécrit: {self.path}")
            data = {}
        data[PREFERENCES_KEY] = preferences

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.path)
        return True


class PreferenceStore:
    """Lecture en cascade / écriture en éventail sur une liste ordonnée de niveaux."""

    def __init__(self, backends: List[PreferenceBackend], defaults: Optional[SearchPreferences] = None):
        self.backends = backends
        self.defaults = defaults or SearchPreferences()

    async def load(self) -> SearchPreferences:
        for backend in self.backends:
            try:
                data = await backend.read()
            except Exception as e:
                LOGGER.warning(f"⚠️ Lecture préférences [{backend.name}] impossible: {e}")
                continue

            if data:
                LOGGER.debug(f"⚙️ Préférences chargées depuis [{backend.name}]")
                return SearchPreferences.from_dict(data, base=self.defaults)

        return SearchPreferences.from_dict(None, base=self.defaults)

    async def save(self, changes: Union[Dict[str, Any], SearchPreferences]) -> Dict[str, bool]:
        """
        Fusionne changes avec les préférences actuelles et écrit partout.

        Returns:
            {nom du niveau: écrit ou non}
        """
        if isinstance(changes, SearchPreferences):
            changes = changes.to_dict()

        current = await self.load()
        merged = SearchPreferences.from_dict(changes, base=current).to_dict()

        outcomes = await asyncio.gather(
            *(backend.write(merged) for backend in self.backends),
            return_exceptions=True,
        )

        results: Dict[str, bool] = {}
        for backend, outcome in zip(self.backends, outcomes):
            if isinstance(outcome, BaseException):
                LOGGER.warning(f"⚠️ Écriture préférences [{backend.name}] échouée: {outcome}")
                results[backend.name] = False
            else:
                results[backend.name] = bool(outcome)

        LOGGER.info(f"💾 Préférences sauvegardées: {results}")
        return results
