"""
Erreurs de la couche de résolution des métadonnées de jeux.

Seule AllSourcesUnavailable remonte jusqu'aux appelants de la recherche ;
tout le reste est dégradé en fallback (record synthétique ou None).
"""


class GameMetadataError(Exception):
    """Base de toutes les erreurs de la couche."""


class CatalogError(GameMetadataError):
    """Échec transitoire d'un catalogue (HTTP non-2xx, timeout, JSON invalide)."""

    def __init__(self, source: str, message: str, status_code: int | None = None):
        self.source = source
        self.status_code = status_code
        super().__init__(f"[{source}] {message}")


class InvalidGameId(GameMetadataError, ValueError):
    """ID mal formé ou hors de la plage plausible. Jamais retenté."""

    def __init__(self, game_id: object, message: str = "invalid game id"):
        self.game_id = game_id
        super().__init__(f"{message}: {game_id!r}")


class AllSourcesUnavailable(GameMetadataError):
    """Les deux catalogues ont échoué pour une même recherche."""

    def __init__(self, query: str, errors: dict[str, Exception] | None = None):
        self.query = query
        self.errors = errors or {}
        details = ", ".join(f"{name}: {err}" for name, err in self.errors.items())
        super().__init__(f"All search services are unavailable for '{query}' ({details})")
