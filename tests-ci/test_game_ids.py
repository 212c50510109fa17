"""
Tests for backends/game_ids.py - canonical IDs.
"""
import pytest

from backends.game_ids import CanonicalGameId, Source
from core.errors import InvalidGameId


class TestCanonicalGameIdParse:

    @pytest.mark.parametrize("raw,source,native", [
        ("igdb:1020", Source.IGDB, 1020),
        ("rawg:2454", Source.RAWG, 2454),
        ("igdb_1020", Source.IGDB, 1020),
        ("rawg_2454", Source.RAWG, 2454),
        ("RAWG:42", Source.RAWG, 42),
        ("  igdb:7  ", Source.IGDB, 7),
    ])
    def test_accepted_forms(self, raw, source, native):
        parsed = CanonicalGameId.parse(raw)
        assert parsed.source is source
        assert parsed.native_id == native

    def test_str_is_canonical(self):
        assert str(CanonicalGameId.parse("rawg_2454")) == "rawg:2454"

    @pytest.mark.parametrize("raw", [
        "1020",
        "steam:1020",
        "igdb:abc",
        "igdb:0",
        "igdb:-5",
        "igdb:",
        "igdb:²",
        "rawg_٣٤",
        "",
    ])
    def test_rejected_forms(self, raw):
        with pytest.raises(InvalidGameId):
            CanonicalGameId.parse(raw)

    def test_non_string_rejected(self):
        with pytest.raises(InvalidGameId):
            CanonicalGameId.parse(1020)

    def test_plausible_maximum(self):
        assert CanonicalGameId.parse("rawg:500", max_native_id=500).native_id == 500
        with pytest.raises(InvalidGameId):
            CanonicalGameId.parse("rawg:501", max_native_id=500)

    def test_invalid_game_id_is_value_error(self):
        with pytest.raises(ValueError):
            CanonicalGameId.parse("nope")

    def test_parse_existing_instance(self):
        cid = CanonicalGameId(Source.IGDB, 12)
        assert CanonicalGameId.parse(cid) is cid


class TestCanonicalGameIdOf:

    def test_from_source_string_and_int(self):
        assert str(CanonicalGameId.of("igdb", 1942)) == "igdb:1942"

    def test_from_enum_and_numeric_string(self):
        assert str(CanonicalGameId.of(Source.RAWG, "11")) == "rawg:11"

    def test_rejects_bad_values(self):
        with pytest.raises(InvalidGameId):
            CanonicalGameId.of("gog", 1)
        with pytest.raises(InvalidGameId):
            CanonicalGameId.of("rawg", "x1")
        with pytest.raises(InvalidGameId):
            CanonicalGameId.of("igdb", "²")
        with pytest.raises(InvalidGameId):
            CanonicalGameId.of("rawg", 0)

    def test_equality_and_hash(self):
        assert CanonicalGameId.parse("igdb_5") == CanonicalGameId.parse("igdb:5")
        assert len({CanonicalGameId.parse("igdb_5"), CanonicalGameId.parse("igdb:5")}) == 1


def test_source_other():
    assert Source.IGDB.other is Source.RAWG
    assert Source.RAWG.other is Source.IGDB
