"""
Backends - Catalogues de jeux, résolution d'IDs et caches
"""

from .game_service import GameMetadataService

__all__ = ["GameMetadataService"]
