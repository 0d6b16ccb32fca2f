"""Content filters, user-defined rules and inclusion thresholds."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from mangamatch.core.matching.config import MatchingConfig, get_matching_config
from mangamatch.core.matching.models import EXCLUDED_FORMATS
from mangamatch.core.matching.normalizer import collect_titles, is_one_shot, normalize
from mangamatch.core.matching.similarity import enhanced_similarity

if TYPE_CHECKING:
    from mangamatch.core.matching.models import (
        CatalogEntry,
        CustomRule,
        CustomRules,
        MatchOptions,
        SourceEntry,
    )

logger = structlog.get_logger("mangamatch.matching.filtering")


@dataclass
class RuleMatchInfo:
    """First matching skip and accept rule for a candidate, if any."""

    skip_rule: CustomRule | None = None
    accept_rule: CustomRule | None = None


def _rule_titles(entry: CatalogEntry, source_entry: SourceEntry) -> list[str]:
    titles = [title for title, _ in collect_titles(entry)]
    titles.append(source_entry.title)
    titles.extend(title for title in source_entry.alternative_titles if title)
    return titles


def _rule_matches(rule: CustomRule, titles: list[str]) -> bool:
    flags = 0 if rule.case_sensitive else re.IGNORECASE
    try:
        pattern = re.compile(rule.pattern, flags)
    except re.error as e:
        logger.error(
            "Invalid custom rule pattern",
            rule_id=rule.id,
            description=rule.description,
            error=str(e),
        )
        return False
    return any(pattern.search(title) for title in titles)


def _first_matching_rule(rules: list[CustomRule], titles: list[str]) -> CustomRule | None:
    for rule in rules:
        if rule.enabled and _rule_matches(rule, titles):
            return rule
    return None


def find_skip_rule(
    entry: CatalogEntry,
    source_entry: SourceEntry,
    rules: CustomRules,
    is_manual_search: bool = False,
) -> CustomRule | None:
    """Find the first enabled skip rule matching a candidate.

    Skip rules never apply to manual searches.

    Args:
        entry: Candidate catalog entry
        source_entry: Reading-list entry being matched
        rules: User rules
        is_manual_search: Whether the user is searching interactively

    Returns:
        Matching skip rule or None
    """
    if is_manual_search or not rules.skip_rules:
        return None
    rule = _first_matching_rule(rules.skip_rules, _rule_titles(entry, source_entry))
    if rule:
        logger.debug(
            "Skipping candidate due to custom rule",
            catalog_id=entry.id,
            title=entry.display_title,
            rule=rule.description,
        )
    return rule


def find_accept_rule(
    entry: CatalogEntry,
    source_entry: SourceEntry,
    rules: CustomRules,
) -> CustomRule | None:
    """Find the first enabled accept rule matching a candidate."""
    if not rules.accept_rules:
        return None
    return _first_matching_rule(rules.accept_rules, _rule_titles(entry, source_entry))


def rule_match_info(
    entry: CatalogEntry,
    source_entry: SourceEntry,
    rules: CustomRules,
) -> RuleMatchInfo:
    """Report which skip and accept rules match a candidate."""
    return RuleMatchInfo(
        skip_rule=find_skip_rule(entry, source_entry, rules),
        accept_rule=find_accept_rule(entry, source_entry, rules),
    )


def apply_system_filters(
    entries: list[CatalogEntry],
    options: MatchOptions,
    source_entry: SourceEntry | None = None,
) -> list[CatalogEntry]:
    """Remove candidates excluded by content settings and skip rules.

    Order: novel formats, one-shots (if ignored), adult content (if ignored),
    then custom skip rules when a source entry is given.

    Args:
        entries: Candidates to filter
        options: Filter toggles and user rules
        source_entry: Reading-list entry, enables skip rules

    Returns:
        Filtered candidates in their original order
    """
    filtered = [entry for entry in entries if entry.format not in EXCLUDED_FORMATS]

    if options.ignore_one_shots:
        before = len(filtered)
        filtered = [entry for entry in filtered if not is_one_shot(entry)]
        if before > len(filtered):
            logger.debug("Filtered one-shots", removed=before - len(filtered))

    if options.ignore_adult_content:
        before = len(filtered)
        filtered = [entry for entry in filtered if not entry.is_adult]
        if before > len(filtered):
            logger.debug("Filtered adult content", removed=before - len(filtered))

    if source_entry is not None:
        before = len(filtered)
        filtered = [
            entry
            for entry in filtered
            if find_skip_rule(entry, source_entry, options.custom_rules, options.is_manual_search)
            is None
        ]
        if before > len(filtered):
            logger.debug(
                "Filtered by custom skip rules",
                title=source_entry.title[:50],
                removed=before - len(filtered),
            )

    return filtered


def accept_floor(exact: bool, config: MatchingConfig | None = None) -> float:
    """Confidence floor (0-100) granted to accept-rule matches."""
    config = config or get_matching_config()
    return config.accept_floor_exact if exact else config.accept_floor_regular


def has_exact_title(entry: CatalogEntry, source_title: str) -> bool:
    """Check whether the romaji or English title equals the source title, ignoring case."""
    wanted = source_title.lower()
    return any(
        title is not None and title.lower() == wanted
        for title in (entry.title.romaji, entry.title.english)
    )


def apply_confidence_floor(
    confidence: float,
    entry: CatalogEntry,
    source_entry: SourceEntry | None,
    rules: CustomRules,
    exact: bool = False,
    config: MatchingConfig | None = None,
) -> float:
    """Raise the confidence of accept-rule matches to the configured floor.

    Skip rules take precedence: a candidate matched by both keeps its
    confidence. This is the single place the floor is applied, both for
    cached search results and for compiled batch results.

    Args:
        confidence: Computed confidence (0-100)
        entry: Candidate catalog entry
        source_entry: Reading-list entry (no floor without one)
        rules: User rules
        exact: Use the exact-match floor instead of the regular one
        config: Matching configuration

    Returns:
        Confidence, possibly raised to the floor
    """
    if source_entry is None or not rules.accept_rules:
        return confidence
    info = rule_match_info(entry, source_entry, rules)
    if info.accept_rule is None or info.skip_rule is not None:
        return confidence
    return max(confidence, accept_floor(exact, config))


def is_exact_match(
    entry: CatalogEntry,
    source_title: str,
    config: MatchingConfig | None = None,
) -> bool:
    """Check whether any title of the entry is effectively the search title.

    True when a normalized title equals the normalized search, is highly
    similar to it, or contains every word of a multi-word search.
    """
    config = config or get_matching_config()
    normalized_search = normalize(source_title)
    search_words = [word for word in source_title.lower().split() if len(word) > 1]

    for title, _ in collect_titles(entry):
        normalized_title = normalize(title)
        if (
            normalized_title == normalized_search
            or enhanced_similarity(normalized_title, normalized_search)
            > config.exact_similarity_threshold
        ):
            return True

        title_lower = title.lower()
        if len(search_words) >= 2 and all(word in title_lower for word in search_words):
            return True
    return False


def should_include_exact(
    entry: CatalogEntry,
    score: float,
    source_title: str,
    results_count: int,
    source_entry: SourceEntry | None = None,
    rules: CustomRules | None = None,
    config: MatchingConfig | None = None,
) -> tuple[bool, float]:
    """Decide whether a candidate survives exact-mode ranking.

    Args:
        entry: Candidate catalog entry
        score: Match score (0-1)
        source_title: Search title
        results_count: Number of raw results in the search
        source_entry: Reading-list entry (enables accept rules)
        rules: User rules
        config: Matching configuration

    Returns:
        Tuple of (include, ranking score)
    """
    config = config or get_matching_config()
    if source_entry is not None and rules is not None:
        if find_accept_rule(entry, source_entry, rules):
            return True, max(score, accept_floor(True, config) / 100)

    good_match = is_exact_match(entry, source_title, config)
    if (
        score > config.exact_inclusion_score
        or good_match
        or results_count <= config.small_result_set_size
    ):
        if good_match:
            return True, max(score, accept_floor(False, config) / 100)
        return True, score
    return False, score


def should_include_regular(
    entry: CatalogEntry,
    score: float,
    results_count: int,
    source_entry: SourceEntry | None = None,
    rules: CustomRules | None = None,
    config: MatchingConfig | None = None,
) -> tuple[bool, float]:
    """Decide whether a candidate survives regular-mode ranking.

    Returns:
        Tuple of (include, ranking score)
    """
    config = config or get_matching_config()
    if source_entry is not None and rules is not None:
        if find_accept_rule(entry, source_entry, rules):
            return True, max(score, accept_floor(False, config) / 100)

    if score > config.regular_inclusion_score or results_count <= config.small_result_set_size:
        return True, score
    return False, score


def is_ignored_entry(entry: CatalogEntry, options: MatchOptions) -> bool:
    """Check whether a catalog entry is excluded from automatic matching.

    An entry is ignored when any of its titles equals (case-insensitively)
    one of ``options.ignored_titles``. Manual searches ignore nothing.
    """
    if options.is_manual_search or not options.ignored_titles:
        return False
    ignored = {title.lower() for title in options.ignored_titles}
    return any(title.lower() in ignored for title, _ in collect_titles(entry))
