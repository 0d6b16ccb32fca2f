"""Title matching for reading-list entries against the manga catalog.

This module provides title normalization, similarity scoring, content
filtering with user rules, and the review actions applied to match results.
"""

from .config import DEFAULT_CONFIG, MatchingConfig, get_matching_config, reload_matching_config
from .filtering import (
    apply_confidence_floor,
    apply_system_filters,
    find_accept_rule,
    find_skip_rule,
    is_exact_match,
    should_include_exact,
    should_include_regular,
)
from .models import (
    CatalogEntry,
    CatalogTitle,
    CustomRule,
    CustomRules,
    MatchCandidate,
    MatchOptions,
    MatchResult,
    SearchResponse,
    SourceEntry,
    SourceInfo,
)
from .normalizer import normalize, season_pattern
from .review import (
    Accept,
    Batch,
    ManualSelect,
    Reject,
    Reset,
    SelectAlternative,
    Single,
    apply_review_action,
)
from .scorer import confidence, confidence_from_score, match_score, title_type_priority
from .similarity import enhanced_similarity

__all__ = [
    "MatchingConfig",
    "DEFAULT_CONFIG",
    "get_matching_config",
    "reload_matching_config",
    "apply_confidence_floor",
    "apply_system_filters",
    "find_accept_rule",
    "find_skip_rule",
    "is_exact_match",
    "should_include_exact",
    "should_include_regular",
    "CatalogEntry",
    "CatalogTitle",
    "CustomRule",
    "CustomRules",
    "MatchCandidate",
    "MatchOptions",
    "MatchResult",
    "SearchResponse",
    "SourceEntry",
    "SourceInfo",
    "normalize",
    "season_pattern",
    "Accept",
    "Batch",
    "ManualSelect",
    "Reject",
    "Reset",
    "SelectAlternative",
    "Single",
    "apply_review_action",
    "confidence",
    "confidence_from_score",
    "match_score",
    "title_type_priority",
    "enhanced_similarity",
]
