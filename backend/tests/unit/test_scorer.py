"""Tests for similarity, match scoring and confidence mapping."""

from __future__ import annotations

import pytest

from mangamatch.core.matching.scorer import (
    confidence,
    confidence_from_score,
    contains_complete_title,
    match_score,
    title_type_priority,
    word_match_score,
    word_order_similarity,
)
from mangamatch.core.matching.similarity import (
    enhanced_normalize,
    enhanced_similarity,
    meaningful_words,
    round_half_up,
)


class TestEnhancedSimilarity:
    """Test the blended title similarity."""

    def test_identical_titles(self):
        assert enhanced_similarity("Berserk", "Berserk") == 100

    def test_equal_after_normalization(self):
        assert enhanced_similarity("Berserk", "berserk") == 100
        assert enhanced_similarity("Berserk [Scan]", "Berserk") == 100

    def test_empty_titles(self):
        assert enhanced_similarity("", "Berserk") == 0
        assert enhanced_similarity("Berserk", "") == 0

    def test_unrelated_titles_score_low(self):
        assert enhanced_similarity("Pluto", "Qwxz") == 0

    def test_full_width_folding(self):
        assert enhanced_normalize("\uff22\uff45\uff52\uff53\uff45\uff52\uff4b") == "berserk"

    def test_meaningful_words_drop_stop_words(self):
        assert meaningful_words("The Girl of the Manga") == ["girl"]


class TestWordHelpers:
    """Test word-level scoring helpers."""

    def test_word_order_identical(self):
        assert word_order_similarity(["solo", "leveling"], ["solo", "leveling"]) == pytest.approx(
            1.0
        )

    def test_word_order_reversed(self):
        assert word_order_similarity(["a", "b"], ["b", "a"]) == pytest.approx(0.6)

    def test_word_order_no_common_words(self):
        assert word_order_similarity(["a"], ["b"]) == 0.0
        assert word_order_similarity([], ["b"]) == 0.0

    def test_contains_complete_title(self):
        assert contains_complete_title("one piece party", "one piece") == pytest.approx(0.6)
        assert contains_complete_title("naruto", "bleach") == 0.0

    def test_word_match_score(self):
        assert word_match_score(["solo", "leveling"], ["solo", "leveling"]) == pytest.approx(0.9)
        assert word_match_score(["naruto"], ["bleach"]) == -1


class TestMatchScore:
    """Test the 0-1 match score."""

    def test_exact_title(self, make_entry):
        entry = make_entry(1, english="Vinland Saga")
        assert match_score(entry, "Vinland Saga") == 1.0

    def test_article_only_difference(self, make_entry):
        entry = make_entry(1, english="Promised Neverland")
        assert match_score(entry, "The Promised Neverland") == pytest.approx(0.97)

    def test_unrelated_title(self, make_entry):
        entry = make_entry(1, english="Pluto")
        assert match_score(entry, "Qwxz") == 0.0

    def test_empty_search_title(self, make_entry):
        entry = make_entry(1, english="Pluto")
        assert match_score(entry, "") == 0.0
        assert match_score(entry, "   ") == 0.0

    def test_entry_without_titles(self, make_entry):
        assert match_score(make_entry(1), "Pluto") == 0.0

    @pytest.mark.parametrize(
        ("title", "search"),
        [
            ("Kaguya-sama: Love is War", "Kaguya sama wa Kokurasetai"),
            ("Attack on Titan", "Attack on Titan Season 2"),
            ("Solo Leveling", "Solo Leveling: Ragnarok"),
            ("Dr. Stone", "Doctor Stone"),
            ("One Punch-Man", "Onepunch Man"),
        ],
    )
    def test_score_bounds(self, make_entry, title, search):
        score = match_score(make_entry(1, english=title), search)
        assert 0.0 <= score <= 1.0
        assert 0 <= confidence(search, make_entry(1, english=title)) <= 99

    def test_better_title_scores_higher(self, make_entry):
        exact = make_entry(1, english="Blue Lock")
        other = make_entry(2, english="Blue Period")
        assert match_score(exact, "Blue Lock") > match_score(other, "Blue Lock")


class TestConfidence:
    """Test the score to confidence mapping."""

    def test_boundaries(self):
        assert confidence_from_score(0.0) == 0
        assert confidence_from_score(-0.5) == 0
        assert confidence_from_score(0.001) == 1
        assert confidence_from_score(0.97) == 99
        assert confidence_from_score(1.0) == 99

    def test_monotonic(self):
        values = [confidence_from_score(i / 100) for i in range(101)]
        assert values == sorted(values)

    def test_halves_round_up(self):
        assert [round_half_up(v) for v in (0.5, 2.5, 50.5, 64.5)] == [1, 3, 51, 65]
        assert round_half_up(2.49) == 2
        assert round_half_up(99.0) == 99

    def test_exact_title_confidence(self, make_entry):
        assert confidence("Vinland Saga", make_entry(1, english="Vinland Saga")) == 99


class TestTitleTypePriority:
    """Test which title type ranks a candidate."""

    def test_english_title(self, make_entry):
        entry = make_entry(1, english="Solo Leveling", romaji="Na Honjaman Level Up")
        assert title_type_priority(entry, "Solo Leveling") == 100

    def test_romaji_title(self, make_entry):
        entry = make_entry(1, english="Solo Leveling", romaji="Na Honjaman Level Up")
        assert title_type_priority(entry, "Na Honjaman Level Up") == 90

    def test_synonym_title(self, make_entry):
        assert title_type_priority(make_entry(1, synonyms=["Berserk"]), "Berserk") == 70

    def test_no_titles(self, make_entry):
        assert title_type_priority(make_entry(1), "Berserk") == 0
