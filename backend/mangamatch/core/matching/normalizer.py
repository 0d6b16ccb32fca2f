"""Title normalization for matching reading-list titles against catalog titles."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mangamatch.core.matching.models import CatalogEntry

# Cyrillic letters that are routinely used as look-alikes for Latin letters in
# scanlation titles, plus the multi-letter transliterations.
_TRANSLITERATION = {
    "о": "o",
    "а": "a",
    "е": "e",
    "с": "c",
    "р": "p",
    "к": "k",
    "м": "m",
    "н": "n",
    "т": "t",
    "х": "x",
    "в": "v",
    "у": "u",
    "і": "i",
    "ј": "j",
    "ё": "yo",
    "ю": "yu",
    "я": "ya",
    "ж": "zh",
    "ч": "ch",
    "ш": "sh",
    "щ": "shch",
    "ц": "ts",
    "ы": "y",
    "э": "e",
    "ь": "",
    "ъ": "",
}
_TRANSLITERATION_TABLE = str.maketrans(
    {
        **_TRANSLITERATION,
        **{k.upper(): v.capitalize() for k, v in _TRANSLITERATION.items()},
    }
)

ARTICLES = frozenset({"a", "an", "the"})

_PARENTHETICAL = re.compile(r"\s*\([^()]*\)\s*")
_DASHES = re.compile(r"[-‐-―_]")
_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^\w]+")

_SEASON_PATTERNS = [
    re.compile(r"season\s+(\d+)", re.IGNORECASE),
    re.compile(r"\bs(\d+)(?:\s|$)", re.IGNORECASE),
    re.compile(r"saison\s+(\d+)", re.IGNORECASE),
    re.compile(r"part\s+(\d+)", re.IGNORECASE),
    re.compile(r"partie\s+(\d+)", re.IGNORECASE),
    re.compile(r"vol\.\s*(\d+)", re.IGNORECASE),
    re.compile(r"volume\s+(\d+)", re.IGNORECASE),
    re.compile(r"tome\s+(\d+)", re.IGNORECASE),
    re.compile(r"\b(?:season|part|tome|vol\.?|volume)?\s*([IVX]+)\b", re.IGNORECASE),
    re.compile(r"arc\s+(\d+)", re.IGNORECASE),
    re.compile(r"cour\s+(\d+)", re.IGNORECASE),
]

SEASON_MATCH_SCORE = 0.95
NO_PATTERN = -1.0


def transliterate(text: str) -> str:
    """Replace Cyrillic look-alike letters with their Latin skeleton.

    Args:
        text: Text to transliterate

    Returns:
        Text with look-alike letters replaced (case is preserved)
    """
    return text.translate(_TRANSLITERATION_TABLE)


def remove_punctuation(text: str) -> str:
    """Remove every character that is neither a word character nor whitespace."""
    return _PUNCTUATION.sub("", text)


def process_title(title: str) -> str:
    """Clean a title for display-level comparison.

    Strips parenthetical asides, normalizes smart quotes and turns dashes and
    underscores into spaces. Case and punctuation are preserved.
    """
    text = _PARENTHETICAL.sub(" ", title)
    text = (
        text.replace("‘", "'")
        .replace("’", "'")
        .replace("“", '"')
        .replace("”", '"')
    )
    text = _DASHES.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def normalize(title: str | None) -> str:
    """Produce the canonical comparable form of a title.

    The result is lower-case, free of parenthetical asides and punctuation,
    uses single spaces, and has Cyrillic look-alikes transliterated. The
    function is idempotent.

    Args:
        title: Title to normalize

    Returns:
        Canonical title string ("" for empty input)
    """
    if not title:
        return ""
    text = transliterate(title.lower())
    text = _PARENTHETICAL.sub(" ", text)
    text = _DASHES.sub(" ", text)
    text = remove_punctuation(text)
    return _WHITESPACE.sub(" ", text).strip()


def simplify_key(title: str) -> str:
    """Collapse a title to lower-case words separated by single spaces."""
    return _WHITESPACE.sub(" ", _NON_WORD.sub(" ", title)).strip().lower()


def differs_only_by_articles(title1: str, title2: str) -> bool:
    """Check whether two titles differ only by the articles a/an/the.

    Titles with the same number of words are never considered an article-only
    difference.

    Args:
        title1: First title
        title2: Second title

    Returns:
        True if removing articles makes the word sequences identical
    """
    words1 = normalize(title1).split()
    words2 = normalize(title2).split()

    if len(words1) == len(words2):
        return False

    stripped1 = [w for w in words1 if w not in ARTICLES]
    stripped2 = [w for w in words2 if w not in ARTICLES]
    return stripped1 == stripped2


def _strip_season_tokens(title: str) -> str:
    for pattern in _SEASON_PATTERNS:
        title = pattern.sub("", title).strip()
    return remove_punctuation(title.lower()).strip()


def season_pattern(title1: str, title2: str) -> float:
    """Detect "same series, different season/part/volume" title pairs.

    Args:
        title1: Source title
        title2: Catalog title

    Returns:
        0.95 if either title carries season-like numbering and the titles are
        identical once it is removed, otherwise -1
    """
    has_pattern = any(
        pattern.search(title1) or pattern.search(title2) for pattern in _SEASON_PATTERNS
    )
    if not has_pattern:
        return NO_PATTERN

    stripped1 = _WHITESPACE.sub(" ", _strip_season_tokens(title1))
    stripped2 = _WHITESPACE.sub(" ", _strip_season_tokens(title2))
    if stripped1 == stripped2:
        return SEASON_MATCH_SCORE
    return NO_PATTERN


def is_one_shot(entry: CatalogEntry) -> bool:
    """Check if a catalog entry is a one-shot."""
    return (
        entry.format == "ONE_SHOT"
        or entry.chapters == 1
        or (entry.chapters is None and entry.volumes == 1)
    )


def collect_titles(entry: CatalogEntry) -> list[tuple[str, str]]:
    """Collect all titles of a catalog entry with their source label.

    Returns:
        List of (title, source) pairs ordered english, romaji, native, synonyms.
        Source is "english", "romaji", "native" or "synonym_<n>".
    """
    titles: list[tuple[str, str]] = []
    if entry.title.english:
        titles.append((entry.title.english, "english"))
    if entry.title.romaji:
        titles.append((entry.title.romaji, "romaji"))
    if entry.title.native:
        titles.append((entry.title.native, "native"))
    for index, synonym in enumerate(entry.synonyms):
        if synonym:
            titles.append((synonym, f"synonym_{index}"))
    return titles
