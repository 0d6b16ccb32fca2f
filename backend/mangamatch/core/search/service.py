"""Single-title search orchestration against the primary catalog."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from mangamatch.core.matching.config import MatchingConfig, get_matching_config
from mangamatch.core.matching.filtering import (
    apply_confidence_floor,
    apply_system_filters,
    has_exact_title,
    is_ignored_entry,
    should_include_exact,
    should_include_regular,
)
from mangamatch.core.matching.models import (
    EXCLUDED_FORMATS,
    CatalogEntry,
    MatchCandidate,
    MatchOptions,
    MatchResult,
    PageInfo,
    SearchResponse,
    SourceEntry,
    SourceInfo,
)
from mangamatch.core.matching.scorer import confidence, match_score, title_type_priority
from mangamatch.core.search.cancellation import (
    CancellationToken,
    MatchingCancelledError,
    check_cancelled,
)
from mangamatch.core.search.sources import SourceMatch, merge_source_results

if TYPE_CHECKING:
    from mangamatch.core.search.cache import CacheClearStats, MatchCache
    from mangamatch.core.search.client import CatalogClient
    from mangamatch.core.search.rate_limit import RateLimiter
    from mangamatch.core.search.sources import AlternativeSource

logger = structlog.get_logger("mangamatch.search.service")

# Ranking score given to the single best guess kept when nothing passes the thresholds
BEST_GUESS_SCORE = 0.1


def without_novels(entries: Iterable[CatalogEntry]) -> list[CatalogEntry]:
    return [entry for entry in entries if entry.format not in EXCLUDED_FORMATS]


def use_exact_mode(options: MatchOptions, result_count: int, config: MatchingConfig) -> bool:
    """Exact inclusion rules only apply to larger automatic result sets."""
    if not options.exact_matching_only:
        return False
    if options.bypass_cache and result_count > 0:
        return False
    return result_count > config.exact_mode_min_results


def rank_results(
    entries: list[CatalogEntry],
    title: str,
    exact_mode: bool,
    options: MatchOptions,
    source_entry: SourceEntry | None = None,
    config: MatchingConfig | None = None,
) -> list[CatalogEntry]:
    """Score, filter by inclusion thresholds and order raw catalog results.

    Novels and ignored entries are skipped. When nothing passes the thresholds
    the first raw result is kept as a low-confidence best guess.

    Args:
        entries: Raw catalog results
        title: Search title
        exact_mode: Use the strict inclusion rules
        options: Search options (rules, manual flag)
        source_entry: Reading-list entry, enables accept rules
        config: Matching configuration

    Returns:
        Entries ordered by ranking score, best first
    """
    config = config or get_matching_config()
    scored: list[tuple[CatalogEntry, float]] = []

    for entry in entries:
        if entry.format in EXCLUDED_FORMATS:
            continue
        if is_ignored_entry(entry, options):
            logger.debug("Skipping ignored title", catalog_id=entry.id)
            continue

        score = match_score(entry, title)
        if exact_mode:
            include, adjusted = should_include_exact(
                entry, score, title, len(entries), source_entry, options.custom_rules, config
            )
        else:
            include, adjusted = should_include_regular(
                entry, score, len(entries), source_entry, options.custom_rules, config
            )
        if include:
            scored.append((entry, adjusted))

    scored.sort(key=lambda item: item[1], reverse=True)

    if not scored and entries:
        logger.debug("No result passed the thresholds, keeping best guess", title=title[:50])
        scored.append((entries[0], BEST_GUESS_SCORE))

    return [entry for entry, _ in scored]


def build_candidates(
    entries: list[CatalogEntry],
    title: str,
    options: MatchOptions,
    source_entry: SourceEntry | None = None,
    provenance: dict[int, SourceInfo] | None = None,
    config: MatchingConfig | None = None,
) -> list[MatchCandidate]:
    """Compute final confidences and order candidates.

    Accept-rule matches get the exact floor when their romaji or English title
    equals the source title, the regular floor otherwise. Sorted by confidence
    descending, then by title type priority descending.
    """
    provenance = provenance or {}
    ranked = []
    for entry in entries:
        value = apply_confidence_floor(
            confidence(title, entry),
            entry,
            source_entry,
            options.custom_rules,
            exact=source_entry is not None and has_exact_title(entry, source_entry.title),
            config=config,
        )
        candidate = MatchCandidate(
            entry=entry, confidence=value, source_info=provenance.get(entry.id)
        )
        ranked.append((candidate, title_type_priority(entry, title)))

    ranked.sort(key=lambda item: (item[0].confidence, item[1]), reverse=True)
    return [candidate for candidate, _ in ranked]


def entry_confidence(source_entry: SourceEntry, entry: CatalogEntry) -> float:
    """Best confidence over the source title and its alternative titles."""
    titles = [source_entry.title, *source_entry.alternative_titles]
    return max(confidence(title, entry) for title in titles if title)


def find_best_matches(
    source_entry: SourceEntry,
    entries: list[CatalogEntry],
    config: MatchingConfig | None = None,
    provenance: dict[int, SourceInfo] | None = None,
) -> MatchResult:
    """Pick the disposition of a source entry from its candidate entries.

    The result is matched when the best candidate is an exact match, or when it
    reaches the confidence threshold and leads the runner-up clearly.
    Otherwise it stays pending for review.
    """
    config = config or get_matching_config()
    provenance = provenance or {}

    scored = sorted(
        ((entry, entry_confidence(source_entry, entry)) for entry in entries),
        key=lambda item: item[1],
        reverse=True,
    )
    top = [(entry, value) for entry, value in scored[: config.max_matches] if value > 0]
    candidates = [
        MatchCandidate(entry=entry, confidence=value, source_info=provenance.get(entry.id))
        for entry, value in top
    ]
    now = datetime.now(timezone.utc)

    if not top:
        return MatchResult(source_entry=source_entry, status="pending", match_date=now)

    best_entry, best = top[0]
    clear_lead = len(top) == 1 or best - top[1][1] > config.auto_match_lead
    if best >= config.exact_match_confidence or (
        best >= config.auto_match_confidence and clear_lead
    ):
        return MatchResult(
            source_entry=source_entry,
            candidates=candidates,
            selected_match=best_entry,
            status="matched",
            match_date=now,
        )

    return MatchResult(
        source_entry=source_entry,
        candidates=candidates,
        status="pending",
        match_date=now,
    )


class MatchSearchService:
    """Searches the catalog for one title at a time.

    Handles the cache lookup, the rate-limited pagination loop, ranking,
    content filtering and the alternative catalog fallback.
    """

    def __init__(
        self,
        catalog: CatalogClient,
        cache: MatchCache,
        rate_limiter: RateLimiter,
        alternative_sources: list[AlternativeSource] | None = None,
        config: MatchingConfig | None = None,
    ) -> None:
        """Initialize search service.

        Args:
            catalog: Primary catalog client
            cache: Shared search result cache
            rate_limiter: Shared permit pool
            alternative_sources: Fallback catalogs, queried in order
            config: Matching configuration (loaded from settings if None)
        """
        self.catalog = catalog
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.alternative_sources = alternative_sources or []
        self.config = config or get_matching_config()
        self.logger = structlog.get_logger("mangamatch.search.service")

    def _from_cache(
        self,
        title: str,
        key: str,
        options: MatchOptions,
        source_entry: SourceEntry | None,
    ) -> SearchResponse | None:
        if not self.cache.is_valid(key):
            return None
        record = self.cache.get(key)
        if record is None:
            return None

        # Filters and rules may have changed since the record was written
        entries = apply_system_filters(record.entries, options, source_entry)
        self.logger.debug("Using cached results", title=title[:50], count=len(entries))
        return SearchResponse(
            matches=build_candidates(entries, title, options, source_entry, config=self.config)
        )

    async def _fetch_pages(
        self,
        title: str,
        token: str | None,
        options: MatchOptions,
        cancel: CancellationToken | None,
        page: int | None,
    ) -> tuple[list[CatalogEntry], PageInfo | None]:
        results: list[CatalogEntry] = []
        current_page = page or 1
        last_page_info: PageInfo | None = None

        self.logger.info(
            "Searching catalog", title=title[:50], bypass_cache=options.bypass_cache
        )
        while len(results) < options.max_search_results:
            check_cancelled(cancel, "pagination")
            search_page = await self.catalog.search_by_title(
                title, current_page, options.search_per_page, token, cancel
            )
            check_cancelled(cancel, "pagination")

            if search_page is None:
                self.logger.warning("Invalid search result", title=title[:50], page=current_page)
                break
            if search_page.page_info is None:
                self.logger.warning(
                    "Search result missing page info", title=title[:50], page=current_page
                )
                break

            results.extend(search_page.items)
            last_page_info = search_page.page_info
            self.logger.debug(
                "Fetched search page",
                title=title[:50],
                page=current_page,
                count=len(search_page.items),
            )

            if page is not None or not (
                last_page_info.has_next_page
                and current_page < last_page_info.last_page
                and len(results) < options.max_search_results
            ):
                break

            current_page += 1
            await self.rate_limiter.acquire(cancel)

        return results, last_page_info

    async def _search_alternatives(
        self,
        title: str,
        token: str | None,
        options: MatchOptions,
        cancel: CancellationToken | None,
    ) -> list[SourceMatch]:
        enabled = {
            "comick": options.enable_comick_search,
            "mangadex": options.enable_mangadex_search,
        }
        groups: list[list[SourceMatch]] = []

        for source in self.alternative_sources:
            if not token or not enabled.get(source.name, False):
                continue
            check_cancelled(cancel, f"{source.name} fallback")

            self.logger.info("Trying alternative source", source=source.name, title=title[:50])
            try:
                matches = await source.search_and_convert(
                    title, token, self.config.alternative_source_limit, cancel
                )
            except MatchingCancelledError:
                raise
            except Exception as e:
                self.logger.warning(
                    "Alternative source failed", source=source.name, title=title[:50], error=str(e)
                )
                continue

            if not options.bypass_cache:
                kept = {e.id for e in apply_system_filters([m.entry for m in matches], options)}
                matches = [m for m in matches if m.entry.id in kept]
            groups.append(matches)

        return merge_source_results(*groups)

    async def search_title(
        self,
        title: str,
        token: str | None = None,
        options: MatchOptions | None = None,
        cancel: CancellationToken | None = None,
        page: int | None = None,
        source_entry: SourceEntry | None = None,
    ) -> SearchResponse:
        """Search the catalog for a title.

        Args:
            title: Title to search for
            token: Catalog access token
            options: Search options (defaults if None)
            cancel: Optional cancellation token
            page: Fetch only this page instead of paginating
            source_entry: Reading-list entry, enables custom rules

        Returns:
            Ranked candidates and the last page info

        Raises:
            CatalogResponseError: If the catalog response is malformed
            httpx.HTTPError: For transport errors
            MatchingCancelledError: If cancelled
        """
        options = options or MatchOptions()
        key = self.cache.key(title)

        if options.bypass_cache:
            if self.cache.delete(key):
                self.logger.info("Removed cached results for fresh search", title=title[:50])
                self.cache.save()
        else:
            cached = self._from_cache(title, key, options, source_entry)
            if cached is not None:
                return cached

        await self.rate_limiter.acquire(cancel)
        raw, page_info = await self._fetch_pages(title, token, options, cancel, page)

        exact_mode = use_exact_mode(options, len(raw), self.config)
        ranked = rank_results(raw, title, exact_mode, options, source_entry, self.config)

        if not options.bypass_cache:
            self.cache.set(key, ranked)
            self.cache.save()

        if options.bypass_cache:
            filtered = without_novels(ranked)
        else:
            filtered = apply_system_filters(ranked, options, source_entry)
        if not filtered and raw:
            self.logger.info("No result passed filtering, using raw results", title=title[:50])
            filtered = without_novels(raw[: self.config.raw_fallback_size])

        provenance: dict[int, SourceInfo] = {}
        if not filtered:
            fallback = await self._search_alternatives(title, token, options, cancel)
            filtered = [match.entry for match in fallback]
            provenance = {match.entry.id: match.source_info for match in fallback}

        matches = build_candidates(
            filtered, title, options, source_entry, provenance, self.config
        )
        self.logger.info(
            "Search complete",
            title=title[:50],
            raw=len(raw),
            matches=len(matches),
            via_alternative=bool(provenance),
        )
        return SearchResponse(matches=matches, page_info=page_info)

    async def match_single(
        self,
        source_entry: SourceEntry,
        token: str | None = None,
        options: MatchOptions | None = None,
        cancel: CancellationToken | None = None,
    ) -> MatchResult:
        """Search for one reading-list entry and decide its disposition."""
        options = options or MatchOptions()
        response = await self.search_title(
            source_entry.title, token, options, cancel, source_entry=source_entry
        )
        provenance = {
            m.entry.id: m.source_info for m in response.matches if m.source_info is not None
        }

        if options.exact_matching_only and response.matches:
            top = response.matches[0]
            score = match_score(top.entry, source_entry.title)
            if score > self.config.single_match_score:
                return MatchResult(
                    source_entry=source_entry,
                    candidates=[
                        MatchCandidate(
                            entry=top.entry, confidence=score * 100, source_info=top.source_info
                        )
                    ],
                    selected_match=top.entry,
                    status="matched",
                    match_date=datetime.now(timezone.utc),
                )

        return find_best_matches(
            source_entry, [m.entry for m in response.matches], self.config, provenance
        )

    async def preload(
        self,
        titles: list[str],
        token: str | None = None,
        options: MatchOptions | None = None,
        cancel: CancellationToken | None = None,
    ) -> None:
        """Warm the cache for titles without a valid cached search.

        Titles are searched one at a time in groups of ``options.batch_size``.
        A failing title is logged and does not stop the others.
        """
        options = options or MatchOptions()
        pending = [title for title in titles if not self.cache.is_valid(self.cache.key(title))]
        if not pending:
            self.logger.debug("All titles already cached", count=len(titles))
            return

        self.logger.info(
            "Preloading searches", titles=len(pending), cached=len(titles) - len(pending)
        )
        for start in range(0, len(pending), options.batch_size):
            check_cancelled(cancel, "preload")
            group = pending[start : start + options.batch_size]
            for title in group:
                try:
                    await self.search_title(title, token, options, cancel)
                except MatchingCancelledError:
                    raise
                except Exception as e:
                    self.logger.warning("Preload failed", title=title[:50], error=str(e))
            self.logger.debug("Preloaded group", done=start + len(group), total=len(pending))

    async def fetch_id_group(
        self,
        ids: list[int],
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[CatalogEntry]:
        """Fetch one group of IDs using a single permit."""
        await self.rate_limiter.acquire(cancel)
        return await self.catalog.fetch_by_ids(ids, token, cancel)

    async def fetch_by_ids(
        self,
        ids: list[int],
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[CatalogEntry]:
        """Fetch catalog entries by ID in groups sized to the per-request limit."""
        size = self.config.known_id_batch_size
        entries: list[CatalogEntry] = []
        for start in range(0, len(ids), size):
            check_cancelled(cancel, "ID lookup")
            entries.extend(await self.fetch_id_group(ids[start : start + size], token, cancel))
        return entries

    def clear_cache_for_titles(self, titles: Iterable[str]) -> CacheClearStats:
        return self.cache.clear_for_titles(titles)
