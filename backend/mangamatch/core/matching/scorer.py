"""Match scoring between a reading-list title and a catalog entry.

Scores are computed in three stages, each of which can settle the result:

1. Direct matches - exact or substantial containment of normalized titles.
2. Word matching - aligned word ratio and enhanced similarity.
3. Layered per-title approaches - partial inclusion, word similarity,
   complete containment, similarity, season numbering and word subsets.

The 0-1 score is then mapped to a 0-100 confidence.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from typing import TYPE_CHECKING

import structlog

from mangamatch.core.matching.normalizer import (
    collect_titles,
    differs_only_by_articles,
    normalize,
    process_title,
    remove_punctuation,
    season_pattern,
)
from mangamatch.core.matching.similarity import enhanced_similarity, round_half_up

if TYPE_CHECKING:
    from mangamatch.core.matching.models import CatalogEntry

logger = structlog.get_logger("mangamatch.matching.scorer")

NO_MATCH = -1.0
EARLY_RETURN_SCORE = 0.95

# Trailing "@publisher" tags and bracketed suffixes such as "(Official)"
_TITLE_SUFFIX = re.compile(r"@\w+$|[@(（][^)）]*[)）]$")

TITLE_TYPE_PRIORITY = {
    "english": 100,
    "romaji": 90,
    "native": 80,
    "synonym": 70,
}


def word_order_similarity(words1: list[str], words2: list[str]) -> float:
    """Score how well two word sequences preserve relative order.

    Blends the longest common subsequence (50%), positional agreement (30%)
    and word coverage (20%).
    """
    if not words1 or not words2:
        return 0.0

    common = [word for word in words1 if word in words2]
    if not common:
        return 0.0

    max_length = max(len(words1), len(words2))
    lcs_score = _lcs_length(words1, words2) / max_length

    position_score = 0.0
    for i in range(min(len(words1), len(words2))):
        if words1[i] == words2[i]:
            position_score += 1
        elif words1[i] in words2:
            distance = abs(i - words2.index(words1[i]))
            position_score += max(0.0, 1 - distance / max_length)
    position_score /= max_length

    coverage = len(common) / max_length
    return lcs_score * 0.5 + position_score * 0.3 + coverage * 0.2


def _lcs_length(words1: list[str], words2: list[str]) -> int:
    previous = [0] * (len(words2) + 1)
    for word1 in words1:
        current = [0] * (len(words2) + 1)
        for j, word2 in enumerate(words2, start=1):
            if word1 == word2:
                current[j] = previous[j - 1] + 1
            else:
                current[j] = max(current[j - 1], previous[j])
        previous = current
    return previous[-1]


def contains_complete_title(normalized_title: str, normalized_search: str) -> float:
    """Return the share of the title covered by the search term, 0 if not contained."""
    if normalized_search and normalized_search in normalized_title:
        return len(normalized_search) / len(normalized_title)
    return 0.0


def word_match_score(title_words: list[str], search_words: list[str]) -> float:
    """Score aligned words between a title and a search term.

    Words of two letters or fewer are ignored. An exact word counts 1, a shared
    prefix of at least four letters counts 0.5.

    Returns:
        Score above 0.75 when at least 75% of words align, otherwise -1
    """
    matching = 0.0
    for word in title_words:
        if len(word) <= 2:
            continue
        if word in search_words:
            matching += 1
            continue
        for search_word in search_words:
            if (word.startswith(search_word) or search_word.startswith(word)) and min(
                len(word), len(search_word)
            ) >= 4:
                matching += 0.5
                break

    ratio = matching / max(2, min(len(title_words), len(search_words)))
    if ratio >= 0.75:
        return 0.75 + (ratio - 0.75) * 0.6
    return NO_MATCH


def _words_in_order(title: str, search: str) -> bool:
    title_words = remove_punctuation(title).lower().split()
    search_words = remove_punctuation(search).lower().split()

    if not search_words:
        return False
    if len(search_words) == 1:
        return search_words[0] in title_words
    if not all(word in title_words for word in search_words):
        return False

    indexes = [title_words.index(word) for word in search_words]
    same_order = all(indexes[i] > indexes[i - 1] for i in range(1, len(indexes)))
    adjacent = sum(1 for i in range(1, len(indexes)) if indexes[i] - indexes[i - 1] == 1)
    return same_order or adjacent / (len(search_words) - 1) >= 0.5


def _direct_match(
    normalized_titles: list[str],
    normalized_search: str,
    source_title: str,
    entry: CatalogEntry,
) -> float:
    primary = entry.title.english or entry.title.romaji or ""
    for text in normalized_titles:
        if text == normalized_search:
            return 1.0
        if normalized_search in text and len(normalized_search) > 6:
            return 0.97 if differs_only_by_articles(source_title, primary) else 0.85
        if text and text in normalized_search and len(text) > 6:
            return 0.97 if differs_only_by_articles(source_title, primary) else 0.8
    return NO_MATCH


def _word_match(normalized_titles: list[str], normalized_search: str) -> float:
    best = NO_MATCH
    search_words = normalized_search.split()
    threshold = 0.6 if len(normalized_search) < 10 else 0.5

    for text in normalized_titles:
        score = word_match_score(text.split(), search_words)
        if score > 0.9:
            return score
        best = max(best, score)

        similarity = enhanced_similarity(text, normalized_search) / 100
        if similarity > threshold:
            best = max(best, max(0.6, similarity * 0.95))
    return best


def _title_scores(
    title: str,
    normalized_search: str,
    source_title: str,
) -> Iterator[float]:
    """Yield the layered approach scores for one title, cheapest first."""
    processed = process_title(title)
    normalized_title = normalize(processed)
    title_words = normalized_title.split()
    search_words = normalized_search.split()

    # Exact, optionally after dropping a trailing suffix tag
    if normalized_title == normalized_search:
        yield 1.0
    elif normalize(_TITLE_SUFFIX.sub("", title.strip())) == normalized_search:
        yield 0.95

    # Partial inclusion
    if normalized_search in normalized_title and len(normalized_search) > 6:
        yield 0.85

    # Word similarity ratio
    total = max(len(title_words), len(search_words))
    matching = sum(1 for word in title_words if word in search_words and len(word) > 1)
    ratio = matching / total if total else 0.0
    if ratio >= 0.75:
        yield 0.8 + (ratio - 0.75) * 0.8

    # Complete containment
    coverage = contains_complete_title(normalized_title, normalized_search)
    if coverage > 0:
        yield 0.85 + coverage * 0.1

    similarity = enhanced_similarity(normalized_title, normalized_search) / 100
    if similarity > (0.6 if len(normalized_search) < 10 else 0.45):
        yield max(0.8, similarity)

    yield season_pattern(normalized_title, normalized_search)

    # Subset of words in order
    if _words_in_order(processed, source_title):
        length_diff = abs(len(processed) - len(source_title)) / max(
            len(processed), len(source_title)
        )
        important_words = [word for word in search_words if len(word) > 2]
        matched = sum(1 for word in important_words if word in normalized_title)
        word_coverage = matched / len(important_words) if important_words else 0.0
        order = word_order_similarity(title_words, search_words)
        yield 0.5 + (1 - length_diff) * 0.1 + word_coverage * 0.1 + order * 0.1


def _layered_match(
    titles: list[str],
    normalized_search: str,
    source_title: str,
) -> float:
    best = NO_MATCH
    for title in titles:
        for score in _title_scores(title, normalized_search, source_title):
            if score > 0:
                best = max(best, score)
                if score >= EARLY_RETURN_SCORE:
                    return score
    return best


def match_score(entry: CatalogEntry, source_title: str) -> float:
    """Calculate how well a catalog entry matches a reading-list title.

    Args:
        entry: Catalog entry to score
        source_title: Title from the reading list

    Returns:
        Score between 0.0 and 1.0 (0.0 = no usable signal)
    """
    if not source_title or not source_title.strip():
        logger.warning("Empty search title provided", catalog_id=entry.id)
        return 0.0

    normalized_search = normalize(source_title)
    titles = [title for title, _ in collect_titles(entry)]
    if not normalized_search or not titles:
        return 0.0

    normalized_titles = [normalize(title) for title in titles]

    score = _direct_match(normalized_titles, normalized_search, source_title, entry)
    if score <= 0:
        score = _word_match(normalized_titles, normalized_search)
    if score <= 0:
        score = _layered_match(titles, normalized_search, source_title)

    return min(1.0, max(0.0, score))


def confidence_from_score(score: float) -> int:
    """Map a 0-1 match score to a 0-100 confidence.

    The mapping is monotonic and piecewise linear, compressing the top of the
    range so near-misses never report certainty.
    """
    if score <= 0:
        return 0
    if score >= 0.97:
        return 99
    if score >= 0.94:
        return round_half_up(90 + (score - 0.94) * 125)
    if score >= 0.87:
        return round_half_up(80 + (score - 0.87) * 143)
    if score >= 0.75:
        return round_half_up(65 + (score - 0.75) * 125)
    if score >= 0.6:
        return round_half_up(50 + (score - 0.6) * 100)
    if score >= 0.4:
        return round_half_up(30 + (score - 0.4) * 100)
    if score >= 0.2:
        return round_half_up(15 + (score - 0.2) * 75)
    return max(1, round_half_up(score * 75))


def confidence(source_title: str, entry: CatalogEntry) -> int:
    """Calculate the confidence percentage for a candidate."""
    score = match_score(entry, source_title)
    result = confidence_from_score(score)
    logger.debug(
        "Calculated confidence",
        title=source_title[:50],
        catalog_id=entry.id,
        score=round(score, 3),
        confidence=result,
    )
    return result


def title_type_priority(entry: CatalogEntry, source_title: str) -> int:
    """Rank which kind of title matched best, for ordering equal confidences.

    Returns:
        100 (english), 90 (romaji), 80 (native), 70 (synonym) or 0 without titles
    """
    titles = collect_titles(entry)
    if not titles:
        return 0

    normalized_search = normalize(source_title)
    best_type = "synonym"
    best_similarity = 0

    for title, source in titles:
        similarity = enhanced_similarity(normalize(title), normalized_search)
        if similarity > best_similarity:
            best_similarity = similarity
            best_type = "synonym" if source.startswith("synonym") else source

    return TITLE_TYPE_PRIORITY[best_type]
