"""Batch matching of a whole reading list.

A run goes through four phases:

1. Categorize - entries with a valid cached search resolve immediately,
   entries with a known catalog ID are queued for ID lookup, the rest are
   queued for title search.
2. Known IDs - IDs are fetched in groups; misses fall back to title search.
3. Uncached - titles are searched in groups with one aliased request per
   group. Titles without hits are searched one at a time with the full
   single-title search, including the alternative catalogs.
4. Compile - one MatchResult per entry, in input order.

Cancellation at any point returns the results of the entries resolved so far.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from mangamatch.core.matching.config import MatchingConfig
from mangamatch.core.matching.filtering import apply_system_filters
from mangamatch.core.matching.models import (
    CatalogEntry,
    MatchOptions,
    MatchResult,
    SourceEntry,
    SourceInfo,
)
from mangamatch.core.search.cancellation import (
    CancellationToken,
    MatchingCancelledError,
    ProgressSink,
    check_cancelled,
)
from mangamatch.core.search.service import build_candidates, rank_results, use_exact_mode

if TYPE_CHECKING:
    from mangamatch.core.persistence import Persistence
    from mangamatch.core.search.service import MatchSearchService

logger = structlog.get_logger("mangamatch.search.batch")


def batch_alias(index: int) -> str:
    """GraphQL alias of the entry at ``index`` in an aliased batch query."""
    return f"manga_{index}"


def compute_batch_delay(
    requests_in_group: int,
    requests_per_minute: int,
    remaining_budget: int | None,
    config: MatchingConfig,
) -> float:
    """Compute the pause between two uncached groups.

    The base delay spreads the group's requests over the per-minute budget.
    A low remaining budget in the current window stretches it.

    Args:
        requests_in_group: Requests the finished group issued
        requests_per_minute: Catalog rate limit
        remaining_budget: Permits left in the current window, if known
        config: Matching configuration with the delay constants

    Returns:
        Delay in seconds, clamped to the configured range
    """
    delay = config.batch_delay_base * 60.0 / requests_per_minute * max(1, requests_in_group)
    if remaining_budget is not None:
        if remaining_budget <= config.budget_low_threshold:
            delay *= config.budget_low_multiplier
        elif remaining_budget <= config.budget_medium_threshold:
            delay *= config.budget_medium_multiplier
    return min(max(delay, config.batch_delay_min), config.batch_delay_max)


@dataclass
class BatchJob:
    """Running state of one batch run."""

    entries: list[SourceEntry]
    results: dict[int, list[CatalogEntry]] = field(default_factory=dict)
    provenance: dict[int, dict[int, SourceInfo]] = field(default_factory=dict)

    def store(
        self,
        index: int,
        entries: list[CatalogEntry],
        provenance: dict[int, SourceInfo] | None = None,
    ) -> None:
        self.results[index] = entries
        self.provenance[index] = provenance or {}

    def is_resolved(self, index: int) -> bool:
        return index in self.results


class BatchMatcher:
    """Matches a whole reading list against the catalog."""

    def __init__(
        self,
        service: MatchSearchService,
        persistence: Persistence | None = None,
        config: MatchingConfig | None = None,
    ) -> None:
        """Initialize batch matcher.

        Args:
            service: Single-title search service (shares its cache, client and permits)
            persistence: Storage for results and unprocessed entries
            config: Matching configuration (defaults to the service's)
        """
        self.service = service
        self.cache = service.cache
        self.catalog = service.catalog
        self.rate_limiter = service.rate_limiter
        self.persistence = persistence
        self.config = config or service.config
        self.logger = structlog.get_logger("mangamatch.search.batch")

    def _categorize(
        self,
        job: BatchJob,
        options: MatchOptions,
        progress: ProgressSink,
    ) -> tuple[list[int], list[int]]:
        known: list[int] = []
        uncached: list[int] = []

        for index, entry in enumerate(job.entries):
            if options.bypass_cache:
                uncached.append(index)
                continue
            if entry.catalog_id is not None:
                known.append(index)
                continue

            key = self.cache.key(entry.title)
            record = self.cache.get(key)
            if record is not None and self.cache.is_valid(key):
                job.store(index, record.entries)
                progress.report(index, entry.title)
            else:
                uncached.append(index)

        self.logger.info(
            "Categorized entries",
            total=len(job.entries),
            cached=len(job.results),
            known_ids=len(known),
            uncached=len(uncached),
        )
        return known, uncached

    async def _process_known_ids(
        self,
        job: BatchJob,
        known: list[int],
        uncached: list[int],
        token: str | None,
        progress: ProgressSink,
        cancel: CancellationToken,
    ) -> None:
        size = self.config.known_id_batch_size
        for start in range(0, len(known), size):
            check_cancelled(cancel, "known ID lookup")
            group = known[start : start + size]
            ids = sorted({job.entries[i].catalog_id for i in group if job.entries[i].catalog_id})

            try:
                found = await self.service.fetch_id_group(ids, token, cancel)
            except MatchingCancelledError:
                raise
            except Exception as e:
                self.logger.error("Known ID group failed", ids=len(ids), error=str(e))
                found = []

            by_id = {entry.id: entry for entry in found}
            for index in group:
                source = job.entries[index]
                entry = by_id.get(source.catalog_id) if source.catalog_id else None
                if entry is None:
                    uncached.append(index)
                    continue
                job.store(index, [entry])
                self.cache.set(self.cache.key(source.title), [entry])
                progress.report(index, source.title)

        if known:
            self.logger.info(
                "Known ID lookup complete",
                requested=len(known),
                rerouted=len([i for i in known if not job.is_resolved(i)]),
            )

    async def _fallback_search(
        self,
        job: BatchJob,
        misses: list[int],
        token: str | None,
        options: MatchOptions,
        progress: ProgressSink,
        cancel: CancellationToken,
    ) -> None:
        # One search in flight at a time
        for index in misses:
            check_cancelled(cancel, "fallback search")
            source = job.entries[index]
            try:
                response = await self.service.search_title(
                    source.title, token, options, cancel, source_entry=source
                )
            except MatchingCancelledError:
                raise
            except Exception as e:
                self.logger.warning("Fallback search failed", title=source.title[:50], error=str(e))
                job.store(index, [])
            else:
                job.store(
                    index,
                    [match.entry for match in response.matches],
                    {
                        match.entry.id: match.source_info
                        for match in response.matches
                        if match.source_info is not None
                    },
                )
            progress.report(index, source.title)
            check_cancelled(cancel, "fallback search")

    async def _process_group(
        self,
        job: BatchJob,
        group: list[int],
        token: str | None,
        options: MatchOptions,
        progress: ProgressSink,
        cancel: CancellationToken,
    ) -> int:
        """Search one group of titles.

        Returns:
            Number of remote requests the group issued
        """
        await self.rate_limiter.acquire(cancel)
        queries = {batch_alias(index): job.entries[index].title for index in group}
        found = await self.catalog.search_batched(
            queries, self.config.batch_per_page, token, cancel
        )

        misses: list[int] = []
        for index in group:
            check_cancelled(cancel, "batch results")
            source = job.entries[index]
            hits = found.get(batch_alias(index)) or []
            if not hits:
                misses.append(index)
                continue

            exact_mode = use_exact_mode(options, len(hits), self.config)
            ranked = rank_results(hits, source.title, exact_mode, options, source, self.config)
            if not options.bypass_cache:
                self.cache.set(self.cache.key(source.title), ranked)
            job.store(index, ranked)
            progress.report(index, source.title)

        self.logger.debug("Batch group searched", size=len(group), misses=len(misses))
        await self._fallback_search(job, misses, token, options, progress, cancel)
        return 1 + len(misses)

    async def _process_uncached(
        self,
        job: BatchJob,
        uncached: list[int],
        token: str | None,
        options: MatchOptions,
        progress: ProgressSink,
        cancel: CancellationToken,
    ) -> None:
        # Entries may have been cached by a concurrent search since categorization
        queue: list[int] = []
        for index in uncached:
            source = job.entries[index]
            key = self.cache.key(source.title)
            record = self.cache.get(key)
            if not options.bypass_cache and record is not None and self.cache.is_valid(key):
                job.store(index, record.entries)
                progress.report(index, source.title)
            else:
                queue.append(index)

        if not queue:
            return

        size = self.config.uncached_batch_size
        groups = [queue[start : start + size] for start in range(0, len(queue), size)]
        self.logger.info("Searching uncached entries", entries=len(queue), groups=len(groups))

        for number, group in enumerate(groups, start=1):
            check_cancelled(cancel, "batch group")
            try:
                requests = await self._process_group(job, group, token, options, progress, cancel)
            except MatchingCancelledError:
                raise
            except Exception as e:
                self.logger.error(
                    "Batch group failed, continuing with next group",
                    group=number,
                    groups=len(groups),
                    error=str(e),
                )
                for index in group:
                    if not job.is_resolved(index):
                        job.store(index, [])
                        progress.report(index, job.entries[index].title)
                requests = 1

            if number < len(groups):
                delay = compute_batch_delay(
                    requests,
                    self.rate_limiter.requests_per_minute,
                    self.rate_limiter.remaining_budget(),
                    self.config,
                )
                self.logger.debug("Waiting between batch groups", delay_seconds=round(delay, 2))
                await asyncio.sleep(delay)

    def _build_result(self, job: BatchJob, index: int, options: MatchOptions) -> MatchResult:
        source = job.entries[index]
        entries = apply_system_filters(job.results.get(index, []), options, source)
        candidates = build_candidates(
            entries,
            source.title,
            options,
            source,
            job.provenance.get(index),
            self.config,
        )
        return MatchResult(
            source_entry=source,
            candidates=candidates,
            selected_match=candidates[0].entry if candidates else None,
            status="pending",
        )

    def _compile(
        self,
        job: BatchJob,
        options: MatchOptions,
        progress: ProgressSink,
        cancel: CancellationToken,
    ) -> list[MatchResult]:
        results = []
        for index, source in enumerate(job.entries):
            if index % self.config.compile_cancel_interval == 0:
                check_cancelled(cancel, "compile")
            results.append(self._build_result(job, index, options))
            progress.report(index, source.title)
        return results

    def _partial_results(self, job: BatchJob, options: MatchOptions) -> list[MatchResult]:
        return [
            self._build_result(job, index, options)
            for index in range(len(job.entries))
            if job.is_resolved(index)
        ]

    def _save_run(self, job: BatchJob, results: list[MatchResult]) -> None:
        self.cache.save()
        if self.persistence is None:
            return
        try:
            self.persistence.save_match_results(results)
            self.persistence.save_pending_entries(
                [entry for i, entry in enumerate(job.entries) if not job.is_resolved(i)]
            )
        except OSError as e:
            self.logger.error("Failed to persist batch results", error=str(e))

    async def match_batch(
        self,
        entries: list[SourceEntry],
        token: str | None = None,
        options: MatchOptions | None = None,
        progress: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[MatchResult]:
        """Match every entry of a reading list.

        Args:
            entries: Reading-list entries
            token: Catalog access token
            options: Search options (defaults if None)
            progress: Progress sink, reported at most once per entry
            cancel: Cancellation token

        Returns:
            One result per entry in input order, or the results of the entries
            resolved before cancellation
        """
        options = options or MatchOptions()
        progress = progress or ProgressSink(total=len(entries))
        if not progress.total:
            progress.total = len(entries)
        cancel = cancel or CancellationToken()
        job = BatchJob(entries=list(entries))
        # Pick up records other processes persisted since startup
        self.cache.sync_from_persisted()

        self.logger.info("Starting batch match", entries=len(entries), bypass=options.bypass_cache)
        try:
            known, uncached = self._categorize(job, options, progress)
            await self._process_known_ids(job, known, uncached, token, progress, cancel)
            await self._process_uncached(job, uncached, token, options, progress, cancel)
            results = self._compile(job, options, progress, cancel)
        except MatchingCancelledError as e:
            results = self._partial_results(job, options)
            self.logger.info(
                "Batch match cancelled, returning partial results",
                reason=str(e),
                resolved=len(results),
                total=len(entries),
            )
            self._save_run(job, results)
            return results

        self.logger.info(
            "Batch match complete",
            entries=len(results),
            with_candidates=sum(1 for r in results if r.candidates),
        )
        self._save_run(job, results)
        return results
