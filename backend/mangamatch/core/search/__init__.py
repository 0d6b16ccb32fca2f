"""Search module for matching reading-list entries against the catalog."""

from mangamatch.core.search.batch import BatchMatcher, compute_batch_delay
from mangamatch.core.search.cache import CacheClearStats, MatchCache
from mangamatch.core.search.cancellation import (
    CancellationToken,
    MatchingCancelledError,
    ProgressSink,
)
from mangamatch.core.search.client import AniListClient, CatalogClient, CatalogResponseError
from mangamatch.core.search.rate_limit import RateLimiter
from mangamatch.core.search.service import MatchSearchService
from mangamatch.core.search.sources import (
    AlternativeSource,
    ComickSource,
    MangaDexSource,
    merge_source_results,
)

__all__ = [
    "AlternativeSource",
    "AniListClient",
    "BatchMatcher",
    "CacheClearStats",
    "CancellationToken",
    "CatalogClient",
    "CatalogResponseError",
    "ComickSource",
    "MangaDexSource",
    "MatchCache",
    "MatchSearchService",
    "MatchingCancelledError",
    "ProgressSink",
    "RateLimiter",
    "compute_batch_delay",
    "merge_source_results",
]
