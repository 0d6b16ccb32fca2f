"""Shared fixtures for matching and search unit tests."""

from __future__ import annotations

import math
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from mangamatch.core.config import get_settings
from mangamatch.core.matching import config as matching_config
from mangamatch.core.matching.config import MatchingConfig
from mangamatch.core.matching.models import (
    CatalogEntry,
    CatalogTitle,
    PageInfo,
    SearchPage,
    SourceEntry,
)
from mangamatch.core.search.cache import MatchCache
from mangamatch.core.search.cancellation import CancellationToken
from mangamatch.core.search.client import CatalogClient, CatalogResponseError
from mangamatch.core.search.rate_limit import RateLimiter
from mangamatch.core.search.service import MatchSearchService


class FakeCatalog(CatalogClient):
    """In-memory catalog that records every call."""

    def __init__(self) -> None:
        super().__init__("Fake")
        self.results: dict[str, list[CatalogEntry]] = {}
        self.by_id: dict[int, CatalogEntry] = {}
        self.failing_titles: set[str] = set()
        self.without_page_info: set[str] = set()
        self.fail_batched = False
        self.fail_ids = False
        self.on_batched: Callable[[], None] | None = None

        self.search_calls: list[tuple[str, int]] = []
        self.batched_calls: list[dict[str, str]] = []
        self.id_calls: list[list[int]] = []

    async def search_by_title(
        self,
        query: str,
        page: int = 1,
        per_page: int = 50,
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> SearchPage | None:
        self.search_calls.append((query, page))
        if query in self.failing_titles:
            raise CatalogResponseError(f"Malformed response for {query}")

        items = self.results.get(query, [])
        if query in self.without_page_info:
            return SearchPage(items=items)

        last_page = max(1, math.ceil(len(items) / per_page))
        start = (page - 1) * per_page
        return SearchPage(
            items=items[start : start + per_page],
            page_info=PageInfo(
                total=len(items),
                current_page=page,
                last_page=last_page,
                has_next_page=page < last_page,
                per_page=per_page,
            ),
        )

    async def search_batched(
        self,
        queries: dict[str, str],
        per_page: int = 10,
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> dict[str, list[CatalogEntry]]:
        self.batched_calls.append(dict(queries))
        if self.on_batched is not None:
            self.on_batched()
        if self.fail_batched:
            raise CatalogResponseError("Batch query failed")
        return {alias: self.results.get(title, [])[:per_page] for alias, title in queries.items()}

    async def fetch_by_ids(
        self,
        ids: list[int],
        token: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[CatalogEntry]:
        self.id_calls.append(list(ids))
        if self.fail_ids:
            raise CatalogResponseError("ID lookup failed")
        return [self.by_id[i] for i in ids if i in self.by_id]


@pytest.fixture(autouse=True)
def isolated_data_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[Path]:
    """Point settings at a temporary data directory for every test."""
    data_dir = tmp_path / "data"
    monkeypatch.setenv("MANGAMATCH_DATA_DIR", str(data_dir))
    monkeypatch.setattr(matching_config, "_cached_config", None)
    get_settings.cache_clear()
    yield data_dir
    get_settings.cache_clear()


@pytest.fixture
def make_entry() -> Callable[..., CatalogEntry]:
    """Factory for catalog entries (format defaults to MANGA)."""

    def _make(
        entry_id: int,
        english: str | None = None,
        romaji: str | None = None,
        native: str | None = None,
        synonyms: list[str] | None = None,
        **kwargs,
    ) -> CatalogEntry:
        kwargs.setdefault("format", "MANGA")
        return CatalogEntry(
            id=entry_id,
            title=CatalogTitle(english=english, romaji=romaji, native=native),
            synonyms=synonyms or [],
            **kwargs,
        )

    return _make


@pytest.fixture
def make_source() -> Callable[..., SourceEntry]:
    """Factory for reading-list entries."""

    def _make(entry_id: int, title: str, **kwargs) -> SourceEntry:
        return SourceEntry(id=entry_id, title=title, **kwargs)

    return _make


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def rate_limiter() -> RateLimiter:
    """Permit pool fast enough not to slow tests down."""
    return RateLimiter(requests_per_minute=100_000, safety_delay=0.0)


@pytest.fixture
def cache() -> MatchCache:
    return MatchCache()


@pytest.fixture
def service(
    catalog: FakeCatalog,
    cache: MatchCache,
    rate_limiter: RateLimiter,
) -> MatchSearchService:
    return MatchSearchService(catalog, cache, rate_limiter, config=MatchingConfig())
