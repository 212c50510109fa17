#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Game Providers - Catalogues upstream

Chaque provider implémente l'interface GameProvider pour :
- Recherche paginée (search)
- Détails par ID natif (get_game)
- Récupération groupée (get_games)
"""

from backends.providers.base import GameProvider, GameRecord, SearchResult, make_fallback_record
from backends.providers.igdb import IGDBProvider
from backends.providers.rawg import RAWGProvider

__all__ = [
    'GameProvider',
    'GameRecord',
    'SearchResult',
    'make_fallback_record',
    'IGDBProvider',
    'RAWGProvider',
]
