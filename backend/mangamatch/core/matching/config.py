"""Matching configuration - thresholds, batch sizes and delay tuning."""

from __future__ import annotations

import json
from dataclasses import dataclass, fields

import structlog

logger = structlog.get_logger("mangamatch.matching.config")


@dataclass
class MatchingConfig:
    """Configuration for catalog matching.

    This class centralizes the tuning values of the search and batch
    pipeline so they can be adjusted from settings.json without code changes.
    """

    # Confidence floors applied to accept-rule matches (0-100 scale)
    accept_floor_exact: float = 85.0
    accept_floor_regular: float = 75.0

    # Inclusion thresholds (0-1 match score)
    exact_inclusion_score: float = 0.6
    regular_inclusion_score: float = 0.15
    small_result_set_size: int = 2  # Always include when this few results came back
    exact_mode_min_results: int = 3  # Exact mode needs more results than this
    exact_similarity_threshold: float = 88.0  # Enhanced similarity for "exact" matches
    single_match_score: float = 0.7  # Top score that auto-matches in exact mode

    # Disposition for single matches
    auto_match_confidence: float = 75.0
    auto_match_lead: float = 20.0
    exact_match_confidence: float = 95.0
    max_matches: int = 5

    # Fallback when filtering removes everything
    raw_fallback_size: int = 3
    alternative_source_limit: int = 1

    # Batch sizes
    known_id_batch_size: int = 25  # Catalog id_in limit per request
    uncached_batch_size: int = 15
    batch_per_page: int = 10
    compile_cancel_interval: int = 10

    # Adaptive delay between uncached groups (seconds)
    batch_delay_base: float = 1.0
    batch_delay_min: float = 0.5
    batch_delay_max: float = 10.0
    budget_low_threshold: int = 5  # Remaining requests in window
    budget_medium_threshold: int = 12
    budget_low_multiplier: float = 3.0
    budget_medium_multiplier: float = 1.5


# Default config instance
DEFAULT_CONFIG = MatchingConfig()

# Cached config instance (loaded from settings file)
_cached_config: MatchingConfig | None = None


def get_matching_config() -> MatchingConfig:
    """Get the current matching configuration.

    Loads the ``matching`` section of settings.json if available, otherwise
    returns defaults. Unknown keys in the file are ignored.

    Returns:
        MatchingConfig instance with current settings
    """
    global _cached_config

    if _cached_config is not None:
        return _cached_config

    from mangamatch.core.config import get_settings_file_path

    settings_file = get_settings_file_path()
    if settings_file.exists():
        try:
            with settings_file.open("r") as f:
                matching_settings = json.load(f).get("matching")
        except (OSError, ValueError) as e:
            logger.warning("Failed to read matching settings", error=str(e))
            matching_settings = None

        if isinstance(matching_settings, dict):
            known = {f.name for f in fields(MatchingConfig)}
            _cached_config = MatchingConfig(
                **{k: v for k, v in matching_settings.items() if k in known}
            )
            return _cached_config

    _cached_config = DEFAULT_CONFIG
    return _cached_config


def reload_matching_config() -> MatchingConfig:
    """Reload matching configuration from settings file.

    Call this after updating settings to ensure new values are used.
    """
    global _cached_config
    _cached_config = None
    return get_matching_config()
