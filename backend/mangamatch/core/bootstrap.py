"""Wiring of the shared matching services from application settings."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from mangamatch.core.config import get_settings
from mangamatch.core.logging import setup_logging
from mangamatch.core.matching.config import get_matching_config
from mangamatch.core.persistence import JsonFilePersistence
from mangamatch.core.search.batch import BatchMatcher
from mangamatch.core.search.cache import MatchCache
from mangamatch.core.search.client import create_catalog_client
from mangamatch.core.search.rate_limit import RateLimiter
from mangamatch.core.search.service import MatchSearchService
from mangamatch.core.search.sources import ComickSource, MangaDexSource

logger = structlog.get_logger("mangamatch.bootstrap")


@dataclass
class MatchingServices:
    """Process-wide matching services sharing one cache and permit pool."""

    cache: MatchCache
    rate_limiter: RateLimiter
    search: MatchSearchService
    batch: BatchMatcher


def bootstrap_matching(configure_logging: bool = True) -> MatchingServices:
    """Build the matching services once at application start.

    Loads the persisted cache snapshot so earlier searches are reused.

    Args:
        configure_logging: Whether to set up logging from settings first

    Returns:
        Wired services
    """
    settings = get_settings()
    if configure_logging:
        setup_logging(debug=settings.is_debug, logs_dir=settings.logs_dir)

    persistence = JsonFilePersistence(settings.cache_dir, settings.results_dir)
    cache = MatchCache(ttl_seconds=settings.cache_ttl_seconds, persistence=persistence)
    merged = cache.sync_from_persisted()

    rate_limiter = RateLimiter(
        requests_per_minute=settings.requests_per_minute,
        safety_delay=settings.safety_delay_seconds,
    )
    catalog = create_catalog_client(rate_limiter)
    search = MatchSearchService(
        catalog,
        cache,
        rate_limiter,
        alternative_sources=[ComickSource(catalog), MangaDexSource(catalog)],
        config=get_matching_config(),
    )
    batch = BatchMatcher(search, persistence=persistence)

    logger.info(
        "Matching services ready",
        cached_records=merged,
        requests_per_minute=settings.requests_per_minute,
        data_dir=str(settings.data_dir),
    )
    return MatchingServices(cache=cache, rate_limiter=rate_limiter, search=search, batch=batch)
