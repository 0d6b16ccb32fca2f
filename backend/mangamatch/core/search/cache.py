"""In-memory search result cache with optional persisted snapshot."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from mangamatch.core.matching.models import EXCLUDED_FORMATS, CacheRecord, CatalogEntry
from mangamatch.core.matching.normalizer import simplify_key

if TYPE_CHECKING:
    from mangamatch.core.persistence import Persistence

KEY_LENGTH = 30
DEFAULT_TTL_SECONDS = 24 * 60 * 60


@dataclass
class CacheClearStats:
    """Outcome of clearing cache entries for a set of titles."""

    cleared: int = 0
    not_found: int = 0
    remaining: int = 0


@dataclass
class CacheStats:
    """Snapshot of cache occupancy."""

    size: int = 0
    valid: int = 0
    expired: int = 0


class MatchCache:
    """Maps normalized title keys to ranked catalog entries.

    One instance is shared by the single-title and batch orchestrators.
    Writes are last-writer-wins; records older than the TTL are treated as
    misses but kept until overwritten or cleared.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        persistence: Persistence | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize match cache.

        Args:
            ttl_seconds: Record lifetime in seconds
            persistence: Storage for the cache snapshot (None = memory only)
            clock: Time source returning epoch seconds
        """
        self.ttl_seconds = ttl_seconds
        self.persistence = persistence
        self._clock = clock
        self._records: dict[str, CacheRecord] = {}
        self.logger = structlog.get_logger("mangamatch.search.cache")

    @staticmethod
    def key(title: str) -> str:
        """Build the cache key for a title."""
        return simplify_key(title)[:KEY_LENGTH]

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: str) -> bool:
        return key in self._records

    def is_valid(self, key: str) -> bool:
        """Check if a record exists and is younger than the TTL."""
        record = self._records.get(key)
        if record is None:
            return False
        return self._clock() - record.timestamp < self.ttl_seconds

    def get(self, key: str) -> CacheRecord | None:
        """Get a record regardless of age."""
        return self._records.get(key)

    def set(
        self,
        key: str,
        entries: list[CatalogEntry],
        timestamp: float | None = None,
    ) -> None:
        """Store ranked entries for a key, replacing any previous record."""
        self._records[key] = CacheRecord(
            entries=list(entries),
            timestamp=self._clock() if timestamp is None else timestamp,
        )
        self.logger.debug("Cached results", key=key, count=len(entries))

    def delete(self, key: str) -> bool:
        """Remove a record.

        Returns:
            True if a record was removed
        """
        return self._records.pop(key, None) is not None

    def clear(self) -> None:
        self._records.clear()

    def sync_from_persisted(self) -> int:
        """Merge the persisted snapshot into the live cache.

        A persisted record only replaces a live one when it is newer. Novel
        formats are dropped from merged records.

        Returns:
            Number of records merged
        """
        if self.persistence is None:
            return 0

        merged = 0
        for key, record in self.persistence.load_cache_snapshot().items():
            live = self._records.get(key)
            if live is not None and live.timestamp >= record.timestamp:
                continue
            self._records[key] = CacheRecord(
                entries=[e for e in record.entries if e.format not in EXCLUDED_FORMATS],
                timestamp=record.timestamp,
            )
            merged += 1

        if merged:
            self.logger.info("Merged persisted cache records", merged=merged, size=len(self))
        return merged

    def save(self) -> None:
        """Write the live cache to persistence. Failures are logged."""
        if self.persistence is None:
            return
        try:
            self.persistence.save_cache_snapshot(dict(self._records))
        except OSError as e:
            self.logger.warning("Failed to persist cache", error=str(e))

    def clear_for_titles(self, titles: Iterable[str]) -> CacheClearStats:
        """Remove the records of specific titles and persist the result.

        Args:
            titles: Source titles whose cached searches should be dropped

        Returns:
            Counts of cleared, missing and remaining records
        """
        stats = CacheClearStats()
        for title in titles:
            if self.delete(self.key(title)):
                stats.cleared += 1
            else:
                stats.not_found += 1
        stats.remaining = len(self)
        if stats.cleared:
            self.save()
        self.logger.info(
            "Cleared cache for titles",
            cleared=stats.cleared,
            not_found=stats.not_found,
            remaining=stats.remaining,
        )
        return stats

    def stats(self) -> CacheStats:
        """Count valid and expired records."""
        valid = sum(1 for key in self._records if self.is_valid(key))
        return CacheStats(size=len(self), valid=valid, expired=len(self) - valid)
