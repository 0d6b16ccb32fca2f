"""Enhanced string similarity tuned for manga titles.

Blends several signals on an aggressively normalized form of both titles:
exact/containment, longest common substring, word overlap, character-level
similarity and a fuzzy word-by-word overlap.
"""

from __future__ import annotations

import math
import re
import unicodedata
from dataclasses import dataclass
from difflib import SequenceMatcher

from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein


@dataclass(frozen=True)
class SimilarityWeights:
    """Weights of the blended similarity signals."""

    exact: float = 0.5
    substring: float = 0.15
    word_overlap: float = 0.1
    character: float = 0.2
    semantic: float = 0.05
    length_ratio_threshold: float = 0.7


DEFAULT_WEIGHTS = SimilarityWeights()


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up."""
    return math.floor(value + 0.5)

_ABBREVIATIONS = [
    ("vs", "versus"),
    ("&", "and"),
    ("w/", "with"),
    ("wo", "without"),
    ("no", "of"),
    ("wa", "the"),
    ("ga", ""),
    ("ni", "to"),
    ("o", ""),
    ("de", "in"),
    ("kara", "from"),
    ("made", "until"),
    ("re:", "re"),
    ("∞", "infinity"),
    ("♡", "love"),
    ("★", "star"),
    ("☆", "star"),
]
_ABBREVIATION_PATTERNS = [
    (re.compile(rf"\b{re.escape(abbrev)}\b", re.IGNORECASE), expansion)
    for abbrev, expansion in _ABBREVIATIONS
]

_IGNORABLE_PATTERNS = [
    re.compile(r"^\[.*?\]\s*", re.IGNORECASE),
    re.compile(r"\s*\[.*?\]$", re.IGNORECASE),
    re.compile(r"^\(.*?\)\s*", re.IGNORECASE),
    re.compile(r"\s*\(.*?\)$", re.IGNORECASE),
    re.compile(r"\s*-\s*raw$", re.IGNORECASE),
    re.compile(r"\s*raw$", re.IGNORECASE),
    re.compile(r"\s*scan$", re.IGNORECASE),
    re.compile(r"\s*manga$", re.IGNORECASE),
    re.compile(r"\s*comic$", re.IGNORECASE),
    re.compile(r"\s*doujin(shi)?$", re.IGNORECASE),
    re.compile(r"\s*anthology$", re.IGNORECASE),
    re.compile(r"\s*collection$", re.IGNORECASE),
    re.compile(r"\s*vol\.\s*\d+", re.IGNORECASE),
    re.compile(r"\s*volume\s*\d+", re.IGNORECASE),
    re.compile(r"\s*ch\.\s*\d+", re.IGNORECASE),
    re.compile(r"\s*chapter\s*\d+", re.IGNORECASE),
    re.compile(r"\s*oneshot$", re.IGNORECASE),
    re.compile(r"\s*one[-\s]shot$", re.IGNORECASE),
]

_PUNCTUATION_MAP = str.maketrans(
    {
        "\u2019": "'",
        "\u2013": "-",
        "\u2014": "-",
        "\u2026": "...",
        "\u00d7": "x",
        "\u300c": '"',
        "\u300d": '"',
        "\u300e": '"',
        "\u300f": '"',
    }
)
# Full-width ASCII block (！ .. ～) to half-width
_FULL_WIDTH_MAP = {code: code - 0xFEE0 for code in range(0xFF01, 0xFF5F)}

_STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "wa", "no", "ga", "wo", "ni", "de", "kara", "made", "da",
        "desu", "des", "manga", "comic", "doujin", "doujinshi", "anthology",
        "collection",
    }
)


def _strip_ignorable(text: str) -> str:
    for pattern in _IGNORABLE_PATTERNS:
        text = pattern.sub("", text)
    return text


def enhanced_normalize(text: str) -> str:
    """Aggressively normalize a title for character-level comparison.

    Removes tags and suffixes such as "[Scan]" or "Vol. 3", folds full-width
    characters and diacritics, expands common abbreviations and removes all
    punctuation and whitespace.
    """
    if not text:
        return ""

    normalized = _strip_ignorable(text.strip())
    normalized = unicodedata.normalize("NFD", normalized)
    normalized = normalized.translate(_FULL_WIDTH_MAP)
    normalized = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    normalized = normalized.translate(_PUNCTUATION_MAP)

    for pattern, expansion in _ABBREVIATION_PATTERNS:
        normalized = pattern.sub(expansion, normalized)

    normalized = re.sub(r"[^\w\s\-']", " ", normalized)
    normalized = normalized.replace("-", "")
    normalized = re.sub(r"\s+", "", normalized)
    return normalized.lower().strip()


def meaningful_words(text: str) -> list[str]:
    """Split a title into words, dropping stop words and single letters."""
    normalized = _strip_ignorable(text.strip().lower())
    normalized = re.sub(r"[^\w\s]", " ", normalized)
    return [word for word in normalized.split() if len(word) > 1 and word not in _STOP_WORDS]


def _containment(norm1: str, norm2: str) -> float:
    if norm1 == norm2:
        return 1.0
    if norm1 in norm2 or norm2 in norm1:
        return min(len(norm1), len(norm2)) / max(len(norm1), len(norm2))
    return 0.0


def _longest_common_substring(norm1: str, norm2: str) -> float:
    if not norm1 or not norm2:
        return 0.0
    matcher = SequenceMatcher(None, norm1, norm2, autojunk=False)
    match = matcher.find_longest_match(0, len(norm1), 0, len(norm2))
    return match.size / max(len(norm1), len(norm2))


def _word_overlap(words1: list[str], words2: list[str]) -> float:
    if not words1 and not words2:
        return 1.0
    if not words1 or not words2:
        return 0.0
    set1, set2 = set(words1), set(words2)
    return len(set1 & set2) / len(set1 | set2)


def _character_similarity(norm1: str, norm2: str) -> float:
    if not norm1 and not norm2:
        return 1.0
    if not norm1 or not norm2:
        return 0.0
    indel = fuzz.ratio(norm1, norm2) / 100
    levenshtein = Levenshtein.normalized_similarity(norm1, norm2)
    return (indel + levenshtein) / 2


def _semantic_similarity(words1: list[str], words2: list[str]) -> float:
    if not words1 and not words2:
        return 1.0
    if not words1 or not words2:
        return 0.0

    score = 0.0
    for word1 in words1:
        best = 0.0
        for word2 in words2:
            if word1 == word2:
                best = 1.0
                break
            # Only near-identical spellings count as the same word
            similarity = fuzz.ratio(word1, word2) / 100
            if similarity > 0.8:
                best = max(best, similarity)
        score += best
    return score / len(words1)


def enhanced_similarity(
    str1: str,
    str2: str,
    weights: SimilarityWeights = DEFAULT_WEIGHTS,
) -> int:
    """Calculate the blended similarity between two titles.

    Args:
        str1: First title
        str2: Second title
        weights: Signal weights

    Returns:
        Similarity percentage between 0 and 100
    """
    if not str1 or not str2:
        return 0
    if str1 == str2:
        return 100

    norm1 = enhanced_normalize(str1)
    norm2 = enhanced_normalize(str2)

    if norm1 == norm2:
        return 100
    if not norm1 or not norm2:
        return 0

    length_ratio = min(len(norm1), len(norm2)) / max(len(norm1), len(norm2))
    if length_ratio < weights.length_ratio_threshold:
        # Penalize very different lengths without ruling the pair out
        return round_half_up(fuzz.ratio(norm1, norm2) / 100 * length_ratio * 100)

    words1 = meaningful_words(str1)
    words2 = meaningful_words(str2)

    total_weight = (
        weights.exact
        + weights.substring
        + weights.word_overlap
        + weights.character
        + weights.semantic
    )
    weighted = (
        _containment(norm1, norm2) * weights.exact
        + _longest_common_substring(norm1, norm2) * weights.substring
        + _word_overlap(words1, words2) * weights.word_overlap
        + _character_similarity(norm1, norm2) * weights.character
        + _semantic_similarity(words1, words2) * weights.semantic
    ) / total_weight

    return round_half_up(weighted * 100)
