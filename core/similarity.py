"""
Similarité de chaînes et de records de jeux.

Utilisé par le mapping d'IDs (acceptation > 0.7) et par la fusion des
résultats de recherche (doublon inter-sources > 0.85).

Pondération du score de mapping (score_candidate):
    70% similarité du nom (distance de Levenshtein normalisée)
    20% proximité de l'année de sortie (0 an: 0.2, 1 an: 0.1, 2 ans: 0.05)
    10% recouvrement des plateformes (au moins une en commun)
"""

from typing import Any, Callable, Iterable, Optional

from rapidfuzz.distance import Levenshtein

NAME_WEIGHT = 0.7
YEAR_WEIGHTS = {0: 0.2, 1: 0.1, 2: 0.05}
PLATFORM_WEIGHT = 0.1

# (record source, candidat) -> score 0..1
Scorer = Callable[[Any, Any], float]


def string_similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Similarité 0..1 = (longueur max - distance d'édition) / longueur max.

    Comparaison insensible à la casse, espaces de bord ignorés.
    """
    left = (a or "").strip().lower()
    right = (b or "").strip().lower()

    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.0

    return Levenshtein.normalized_similarity(left, right)


def year_proximity_score(year_a: Optional[int], year_b: Optional[int]) -> float:
    """0.2 même année, 0.1 à un an près, 0.05 à deux ans, sinon 0."""
    if year_a is None or year_b is None:
        return 0.0
    return YEAR_WEIGHTS.get(abs(year_a - year_b), 0.0)


def platforms_overlap(platforms_a: Iterable[str], platforms_b: Iterable[str]) -> bool:
    """Au moins une plateforme commune (inclusion de sous-chaîne dans un sens ou l'autre)."""
    left = [p.lower() for p in platforms_a if p]
    right = [p.lower() for p in platforms_b if p]
    return any(a in b or b in a for a in left for b in right)


def score_candidate(source: Any, candidate: Any) -> float:
    """
    Score de confiance 0..1 d'un candidat du catalogue cible.

    Args:
        source: Record d'origine (name, release_year, platforms)
        candidate: Record candidat (mêmes attributs)

    Returns:
        Score pondéré, plafonné à 1.0
    """
    score = NAME_WEIGHT * string_similarity(source.name, candidate.name)
    score += year_proximity_score(source.release_year, candidate.release_year)
    if platforms_overlap(source.platforms or [], candidate.platforms or []):
        score += PLATFORM_WEIGHT
    return min(score, 1.0)
