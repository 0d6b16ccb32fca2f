"""Catalog client interface and the AniList GraphQL implementation."""

from __future__ import annotations

import asyncio
import json
import random
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from mangamatch.core.matching.models import CatalogEntry, CatalogTitle, PageInfo, SearchPage
from mangamatch.core.search.cancellation import CancellationToken, check_cancelled

if TYPE_CHECKING:
    from mangamatch.core.search.rate_limit import RateLimiter

logger = structlog.get_logger("mangamatch.search.client")

MAX_IDS_PER_REQUEST = 50

MEDIA_FIELDS = """
      id
      title {
        romaji
        english
        native
      }
      synonyms
      format
      status
      chapters
      volumes
      countryOfOrigin
      genres
      coverImage {
        large
        medium
      }
      isAdult
"""

PAGE_INFO_FIELDS = """
    pageInfo {
      total
      currentPage
      lastPage
      hasNextPage
      perPage
    }
"""

SEARCH_MANGA_QUERY = f"""
query ($search: String, $page: Int, $perPage: Int) {{
  Page(page: $page, perPage: $perPage) {{
{PAGE_INFO_FIELDS}
    media(type: MANGA, search: $search, format_not_in: [NOVEL]) {{
{MEDIA_FIELDS}
    }}
  }}
}}
"""

MANGA_BY_IDS_QUERY = f"""
query ($ids: [Int]) {{
  Page(perPage: {MAX_IDS_PER_REQUEST}) {{
{PAGE_INFO_FIELDS}
    media(id_in: $ids, type: MANGA, format_not_in: [NOVEL]) {{
{MEDIA_FIELDS}
    }}
  }}
}}
"""


class CatalogResponseError(ValueError):
    """Raised when the catalog returns a response of unexpected shape."""


class CatalogClient(ABC):
    """Abstract base class for remote catalog clients."""

    def __init__(self, name: str) -> None:
        """Initialize catalog client.

        Args:
            name: Name of the catalog (for logging)
        """
        self.name = name
        self.logger = structlog.get_logger(f"mangamatch.catalog.{name.lower()}")

    @abstractmethod
    async def search_by_title(
        self,
        query: str,
        page: int = 1,
        per_page: int = 50,
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> SearchPage | None:
        """Search the catalog for one title.

        Args:
            query: Title to search for
            page: Page number (1-based)
            per_page: Items per page
            token: Optional access token
            cancel: Optional cancellation token

        Returns:
            One page of results, or None when the response has no page container
        """

    @abstractmethod
    async def search_batched(
        self,
        queries: dict[str, str],
        per_page: int = 10,
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> dict[str, list[CatalogEntry]]:
        """Search several titles in one request.

        Args:
            queries: Mapping of alias to title
            per_page: Items per title
            token: Optional access token
            cancel: Optional cancellation token

        Returns:
            Mapping of alias to entries (empty list when nothing was found)
        """

    @abstractmethod
    async def fetch_by_ids(
        self,
        ids: list[int],
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[CatalogEntry]:
        """Fetch catalog entries by ID (unknown IDs are omitted)."""


def parse_media(raw: dict[str, Any]) -> CatalogEntry:
    """Convert a raw AniList media object into a CatalogEntry.

    Raises:
        CatalogResponseError: If the object has no usable ID
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("id"), int):
        raise CatalogResponseError(f"Media object without an id: {raw!r:.200}")

    title = raw.get("title") or {}
    cover = raw.get("coverImage") or {}
    return CatalogEntry(
        id=raw["id"],
        title=CatalogTitle(
            romaji=title.get("romaji"),
            english=title.get("english"),
            native=title.get("native"),
        ),
        synonyms=[s for s in raw.get("synonyms") or [] if s],
        format=raw.get("format"),
        status=raw.get("status"),
        chapters=raw.get("chapters"),
        volumes=raw.get("volumes"),
        is_adult=bool(raw.get("isAdult")),
        cover_image=cover.get("large") or cover.get("medium"),
        genres=raw.get("genres") or [],
        country_of_origin=raw.get("countryOfOrigin"),
    )


def parse_page_info(raw: dict[str, Any] | None) -> PageInfo | None:
    if not isinstance(raw, dict):
        return None
    return PageInfo(
        total=raw.get("total") or 0,
        current_page=raw.get("currentPage") or 1,
        last_page=raw.get("lastPage") or 1,
        has_next_page=bool(raw.get("hasNextPage")),
        per_page=raw.get("perPage") or 0,
    )


def build_batched_query(queries: dict[str, str], per_page: int) -> str:
    """Build one GraphQL document with an aliased Page per title."""
    parts = []
    for alias, title in queries.items():
        # JSON string literals are valid GraphQL string literals
        parts.append(
            f"""
  {alias}: Page(page: 1, perPage: {per_page}) {{
{PAGE_INFO_FIELDS}
    media(type: MANGA, search: {json.dumps(title)}, format_not_in: [NOVEL]) {{
{MEDIA_FIELDS}
    }}
  }}"""
        )
    return "query BatchSearchManga {" + "".join(parts) + "\n}\n"


class AniListClient(CatalogClient):
    """AniList GraphQL client with retry logic.

    Features:
    - Exponential backoff retry on rate limit errors (HTTP 420, 429)
    - Retry on network errors
    - Strict response shape validation
    """

    def __init__(
        self,
        api_url: str = "https://graphql.anilist.co",
        timeout: float = 15.0,
        max_retries: int = 3,
        rate_limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize AniList client.

        Args:
            api_url: GraphQL endpoint
            timeout: Request timeout in seconds
            max_retries: Maximum number of retries on rate limit and network errors
            rate_limiter: Permit pool re-acquired before each retry
            transport: Custom httpx transport (used in tests)
        """
        super().__init__("AniList")
        self.api_url = api_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.rate_limiter = rate_limiter
        self._transport = transport

    def _headers(self, token: str | None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _retry_wait(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            return float(retry_after)
        base_wait = 2**attempt
        # Jitter keeps concurrent clients from retrying in lockstep
        return base_wait + random.uniform(0, base_wait * 0.5)

    async def _request(
        self,
        query: str,
        variables: dict[str, Any],
        token: str | None,
        cancel: CancellationToken | None,
    ) -> dict[str, Any]:
        """Execute a GraphQL request and return its ``data`` object.

        Raises:
            httpx.HTTPStatusError: For HTTP errors (after retries)
            httpx.RequestError: For network errors (after retries)
            CatalogResponseError: For GraphQL errors or a missing data object
            MatchingCancelledError: If cancelled between attempts
        """
        last_exception: Exception | None = None
        for attempt in range(self.max_retries + 1):
            check_cancelled(cancel, "catalog request")
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self._transport
                ) as client:
                    response = await client.post(
                        self.api_url,
                        json={"query": query, "variables": variables},
                        headers=self._headers(token),
                    )
                    response.raise_for_status()
                    payload = response.json()
                    break

            except httpx.HTTPStatusError as e:
                last_exception = e
                if e.response.status_code in (420, 429) and attempt < self.max_retries:
                    wait_time = self._retry_wait(e.response, attempt)
                    self.logger.warning(
                        "Rate limited by catalog, retrying",
                        status_code=e.response.status_code,
                        attempt=attempt + 1,
                        wait_seconds=round(wait_time, 2),
                    )
                    await asyncio.sleep(wait_time)
                    if self.rate_limiter is not None:
                        await self.rate_limiter.acquire(cancel)
                    continue
                raise

            except httpx.RequestError as e:
                last_exception = e
                if attempt < self.max_retries:
                    wait_time = 2**attempt
                    self.logger.warning(
                        "Network error, retrying",
                        error=str(e),
                        attempt=attempt + 1,
                        wait_seconds=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                    continue
                raise
        else:
            if last_exception:
                raise last_exception
            raise RuntimeError("Unexpected error in catalog client")

        if not isinstance(payload, dict):
            raise CatalogResponseError("Catalog response is not a JSON object")
        if payload.get("errors"):
            messages = [e.get("message", "") for e in payload["errors"] if isinstance(e, dict)]
            raise CatalogResponseError(f"Catalog returned errors: {'; '.join(messages)}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise CatalogResponseError("Catalog response is missing the data object")
        return data

    def _parse_media_list(self, raw: Any) -> list[CatalogEntry]:
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise CatalogResponseError("Catalog media list is not a list")
        return [parse_media(item) for item in raw]

    async def search_by_title(
        self,
        query: str,
        page: int = 1,
        per_page: int = 50,
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> SearchPage | None:
        self.logger.debug("Searching catalog", query=query[:50], page=page, per_page=per_page)
        data = await self._request(
            SEARCH_MANGA_QUERY,
            {"search": query, "page": page, "perPage": per_page},
            token,
            cancel,
        )
        page_data = data.get("Page")
        if not isinstance(page_data, dict):
            self.logger.warning("Search response has no page container", query=query[:50])
            return None
        return SearchPage(
            items=self._parse_media_list(page_data.get("media")),
            page_info=parse_page_info(page_data.get("pageInfo")),
        )

    async def search_batched(
        self,
        queries: dict[str, str],
        per_page: int = 10,
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> dict[str, list[CatalogEntry]]:
        if not queries:
            return {}

        self.logger.info("Batch searching catalog", queries=len(queries))
        data = await self._request(build_batched_query(queries, per_page), {}, token, cancel)

        results: dict[str, list[CatalogEntry]] = {}
        for alias in queries:
            alias_data = data.get(alias)
            media = alias_data.get("media") if isinstance(alias_data, dict) else None
            results[alias] = self._parse_media_list(media)

        self.logger.info(
            "Batch search complete",
            queries=len(queries),
            total_results=sum(len(entries) for entries in results.values()),
        )
        return results

    async def fetch_by_ids(
        self,
        ids: list[int],
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[CatalogEntry]:
        if not ids:
            return []
        if len(ids) > MAX_IDS_PER_REQUEST:
            raise ValueError(f"At most {MAX_IDS_PER_REQUEST} IDs per request, got {len(ids)}")

        data = await self._request(MANGA_BY_IDS_QUERY, {"ids": ids}, token, cancel)
        page_data = data.get("Page")
        if not isinstance(page_data, dict):
            raise CatalogResponseError("ID lookup response has no page container")
        entries = self._parse_media_list(page_data.get("media"))
        self.logger.debug("Fetched entries by ID", requested=len(ids), found=len(entries))
        return entries


def create_catalog_client(rate_limiter: RateLimiter | None = None) -> AniListClient:
    """Create an AniList client from application settings."""
    from mangamatch.core.config import get_settings

    settings = get_settings()
    return AniListClient(
        api_url=settings.anilist_api_url,
        timeout=settings.http_timeout,
        max_retries=settings.max_retries,
        rate_limiter=rate_limiter,
    )
