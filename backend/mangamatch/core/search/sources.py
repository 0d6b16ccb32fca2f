"""Alternative catalogs used as a fallback when the primary search finds nothing.

Each alternative catalog is searched for the title, the primary catalog IDs
linked from its records are collected, and the primary entries are fetched
by ID. Every converted entry carries the provenance of the record it came from.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from mangamatch.core.matching.models import CatalogEntry, SourceInfo
from mangamatch.core.search.cancellation import CancellationToken, check_cancelled

if TYPE_CHECKING:
    from mangamatch.core.matching.models import AlternativeSourceName
    from mangamatch.core.search.client import CatalogClient

USER_AGENT = "MangaMatch/0.1"


@dataclass
class SourceRecord:
    """A record found in an alternative catalog."""

    source_id: str
    title: str
    slug: str = ""
    catalog_id: int | None = None


@dataclass
class SourceMatch:
    """A primary catalog entry reached through an alternative catalog."""

    entry: CatalogEntry
    source_info: SourceInfo


def parse_catalog_link(value: Any) -> int | None:
    """Parse a linked primary catalog ID ("12345" or 12345)."""
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


class AlternativeSource(ABC):
    """Abstract base class for alternative catalog adapters."""

    def __init__(
        self,
        name: AlternativeSourceName,
        catalog: CatalogClient,
        base_url: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize alternative source.

        Args:
            name: Source name recorded in provenance
            catalog: Primary catalog client used to fetch linked entries
            base_url: API base URL of the alternative catalog
            timeout: Request timeout in seconds
            transport: Custom httpx transport (used in tests)
        """
        self.name = name
        self.catalog = catalog
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.logger = structlog.get_logger(f"mangamatch.sources.{name}")

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(
                f"{self.base_url}{path}",
                params=params,
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            )
            response.raise_for_status()
            return response.json()

    @abstractmethod
    async def search(self, query: str, limit: int = 1) -> list[SourceRecord]:
        """Search the alternative catalog.

        Returns:
            Records with their linked primary catalog ID when known
        """

    async def search_and_convert(
        self,
        title: str,
        token: str | None,
        limit: int = 1,
        cancel: CancellationToken | None = None,
    ) -> list[SourceMatch]:
        """Search this source and return the linked primary catalog entries.

        Args:
            title: Title to search for
            token: Access token for the primary catalog
            limit: Maximum records to take from this source
            cancel: Optional cancellation token

        Returns:
            Primary catalog entries annotated with provenance
        """
        records = await self.search(title, limit)
        linked = {r.catalog_id: r for r in records if r.catalog_id is not None}
        if not linked:
            self.logger.debug("No linked catalog entries", title=title[:50])
            return []

        check_cancelled(cancel, f"{self.name} fallback")
        entries = await self.catalog.fetch_by_ids(list(linked), token, cancel)

        matches = []
        for entry in entries:
            record = linked.get(entry.id)
            if record is None:
                continue
            matches.append(
                SourceMatch(
                    entry=entry,
                    source_info=SourceInfo(
                        source=self.name,
                        title=record.title,
                        slug=record.slug,
                        source_id=record.source_id,
                        found_via_alternative_search=True,
                    ),
                )
            )
        self.logger.info("Converted alternative results", title=title[:50], count=len(matches))
        return matches


class ComickSource(AlternativeSource):
    """Comick adapter. Catalog links come from the comic detail endpoint."""

    def __init__(
        self,
        catalog: CatalogClient,
        base_url: str = "https://api.comick.fun",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__("comick", catalog, base_url, timeout, transport)

    async def search(self, query: str, limit: int = 1) -> list[SourceRecord]:
        results = await self._get_json("/v1.0/search", {"q": query, "limit": limit, "t": "false"})
        if not isinstance(results, list):
            return []

        records = []
        for item in results[:limit]:
            slug = item.get("slug") or ""
            if not slug:
                continue
            detail = await self._get_json(f"/comic/{slug}")
            links = (detail.get("comic") or {}).get("links") or {}
            records.append(
                SourceRecord(
                    source_id=str(item.get("hid") or item.get("id") or slug),
                    title=item.get("title") or slug,
                    slug=slug,
                    catalog_id=parse_catalog_link(links.get("al")),
                )
            )
        return records


class MangaDexSource(AlternativeSource):
    """MangaDex adapter. Catalog links are part of the search results."""

    def __init__(
        self,
        catalog: CatalogClient,
        base_url: str = "https://api.mangadex.org",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__("mangadex", catalog, base_url, timeout, transport)

    async def search(self, query: str, limit: int = 1) -> list[SourceRecord]:
        payload = await self._get_json(
            "/manga",
            {
                "title": query,
                "limit": limit,
                "contentRating[]": ["safe", "suggestive", "erotica"],
                "order[relevance]": "desc",
            },
        )
        records = []
        for item in (payload or {}).get("data") or []:
            attributes = item.get("attributes") or {}
            titles = attributes.get("title") or {}
            title = titles.get("en") or next(iter(titles.values()), "")
            records.append(
                SourceRecord(
                    source_id=str(item.get("id", "")),
                    title=title,
                    slug=str(item.get("id", "")),
                    catalog_id=parse_catalog_link((attributes.get("links") or {}).get("al")),
                )
            )
        return records


def merge_source_results(*groups: list[SourceMatch]) -> list[SourceMatch]:
    """Concatenate fallback results, keeping the first occurrence of each catalog ID."""
    seen: set[int] = set()
    merged = []
    for group in groups:
        for match in group:
            if match.entry.id in seen:
                continue
            seen.add(match.entry.id)
            merged.append(match)
    return merged
