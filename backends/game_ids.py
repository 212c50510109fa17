"""
IDs canoniques des jeux : "<source>:<id natif>" (ex: igdb:1020, rawg:2454).

Les IDs natifs n'ont de sens que dans leur catalogue ; tout ce qui sort de la
couche de résolution porte un ID canonique. Les anciennes formes igdb_1020 /
rawg_2454 sont acceptées en entrée.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from core.errors import InvalidGameId

_CANONICAL_RE = re.compile(r"^\s*(?P<source>[a-zA-Z]+)[:_](?P<native>\S+?)\s*$")


class Source(str, Enum):
    """Catalogues upstream."""

    IGDB = "igdb"
    RAWG = "rawg"

    @property
    def other(self) -> "Source":
        return Source.RAWG if self is Source.IGDB else Source.IGDB


@dataclass(frozen=True)
class CanonicalGameId:
    source: Source
    native_id: int

    def __str__(self) -> str:
        return f"{self.source.value}:{self.native_id}"

    @classmethod
    def parse(
        cls,
        value: Union[str, "CanonicalGameId"],
        max_native_id: Optional[int] = None,
    ) -> "CanonicalGameId":
        """
        Parse un ID canonique.

        Args:
            value: "igdb:1020", "rawg_2454" ou un CanonicalGameId
            max_native_id: Borne haute plausible (None = pas de borne)

        Raises:
            InvalidGameId: source inconnue, ID non numérique, <= 0 ou hors plage
        """
        if isinstance(value, CanonicalGameId):
            check_native_id(value.native_id, value, max_native_id)
            return value

        if not isinstance(value, str):
            raise InvalidGameId(value, "game id must be a string")

        match = _CANONICAL_RE.match(value)
        if not match:
            raise InvalidGameId(value, "missing source prefix")

        try:
            source = Source(match.group("source").lower())
        except ValueError:
            raise InvalidGameId(value, "unknown source") from None

        native = match.group("native")
        if not is_native_digits(native):
            raise InvalidGameId(value, "non-numeric native id")

        native_id = int(native)
        check_native_id(native_id, value, max_native_id)
        return cls(source, native_id)

    @classmethod
    def of(cls, source: Union[Source, str], native_id: Union[int, str]) -> "CanonicalGameId":
        """Construit un ID depuis une source et un ID natif (int ou str numérique)."""
        try:
            source = Source(source)
        except ValueError:
            raise InvalidGameId(f"{source}:{native_id}", "unknown source") from None

        if isinstance(native_id, str):
            if not is_native_digits(native_id.strip()):
                raise InvalidGameId(f"{source.value}:{native_id}", "non-numeric native id")
            native_id = int(native_id)

        check_native_id(native_id, f"{source.value}:{native_id}", None)
        return cls(source, native_id)


def is_native_digits(text: str) -> bool:
    """Chiffres ASCII uniquement (str.isdigit accepte aussi "²", "٣"...)."""
    return text.isascii() and text.isdigit()


def check_native_id(native_id: int, raw: object, max_native_id: Optional[int]):
    if native_id <= 0:
        raise InvalidGameId(raw, "native id must be positive")
    if max_native_id is not None and native_id > max_native_id:
        raise InvalidGameId(raw, f"native id above plausible maximum {max_native_id}")
