"""
Tests for core/similarity.py - the thresholds used elsewhere (0.7 mapping,
0.85 merge) depend on these exact values.
"""
import pytest

from core.similarity import platforms_overlap, score_candidate, string_similarity, year_proximity_score
from fakes import make_record


class TestStringSimilarity:

    def test_identical_names(self):
        assert string_similarity("DOOM", "DOOM") == 1.0

    def test_case_insensitive(self):
        assert string_similarity("The Witcher 3", "the witcher 3") == 1.0

    def test_normalized_edit_distance(self):
        # kitten -> sitting: distance 3, longest 7
        assert string_similarity("kitten", "sitting") == pytest.approx(4 / 7)

    def test_empty_strings(self):
        assert string_similarity("", "") == 1.0
        assert string_similarity("Zelda", "") == 0.0
        assert string_similarity(None, "Zelda") == 0.0

    def test_completely_different(self):
        assert string_similarity("abc", "xyz") == 0.0


class TestYearAndPlatforms:

    @pytest.mark.parametrize("a,b,expected", [
        (2016, 2016, 0.2),
        (2016, 2017, 0.1),
        (2016, 2014, 0.05),
        (2016, 2010, 0.0),
        (None, 2016, 0.0),
    ])
    def test_year_proximity(self, a, b, expected):
        assert year_proximity_score(a, b) == expected

    def test_platform_substring_overlap(self):
        assert platforms_overlap(["PC"], ["PC (Microsoft Windows)", "Xbox One"]) is True
        assert platforms_overlap(["PlayStation 4"], ["playstation 4"]) is True

    def test_platform_no_overlap(self):
        assert platforms_overlap(["Nintendo Switch"], ["Xbox One"]) is False
        assert platforms_overlap([], ["PC"]) is False


class TestScoreCandidate:

    def test_perfect_match_capped_at_one(self):
        a = make_record("rawg", 1, "DOOM", year=2016, platforms=["PC"])
        b = make_record("igdb", 2, "DOOM", year=2016, platforms=["PC (Microsoft Windows)"])
        assert score_candidate(a, b) == pytest.approx(1.0)

    def test_name_only_is_exactly_seventy_percent(self):
        a = make_record("rawg", 1, "DOOM")
        b = make_record("igdb", 2, "DOOM")
        assert score_candidate(a, b) == pytest.approx(0.7)

    def test_weighting(self):
        a = make_record("rawg", 1, "DOOM", year=2016, platforms=["PC"])
        b = make_record("igdb", 2, "DOOM", year=2017, platforms=["Xbox One"])
        assert score_candidate(a, b) == pytest.approx(0.7 + 0.1)
