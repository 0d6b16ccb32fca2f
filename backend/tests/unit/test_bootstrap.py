"""Tests for bootstrap logic."""

from __future__ import annotations

import time

import pytest

from mangamatch.core.bootstrap import bootstrap_matching
from mangamatch.core.matching.models import CacheRecord, CatalogEntry, CatalogTitle
from mangamatch.core.persistence import JsonFilePersistence


def test_bootstrap_wires_shared_services() -> None:
    """Test that search and batch share one cache and one permit pool."""
    services = bootstrap_matching(configure_logging=False)

    assert services.search.cache is services.cache
    assert services.search.rate_limiter is services.rate_limiter
    assert services.batch.service is services.search
    assert services.batch.cache is services.cache
    assert [s.name for s in services.search.alternative_sources] == ["comick", "mangadex"]


def test_bootstrap_uses_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that the permit pool and cache follow settings."""
    monkeypatch.setenv("MANGAMATCH_REQUESTS_PER_MINUTE", "10")
    monkeypatch.setenv("MANGAMATCH_CACHE_TTL_HOURS", "2")

    services = bootstrap_matching(configure_logging=False)

    assert services.rate_limiter.requests_per_minute == 10
    assert services.cache.ttl_seconds == 7200


def test_bootstrap_loads_persisted_cache() -> None:
    """Test that searches cached by an earlier run are reused."""
    entry = CatalogEntry(id=1, title=CatalogTitle(english="Berserk"), format="MANGA")
    JsonFilePersistence().save_cache_snapshot(
        {"berserk": CacheRecord(entries=[entry], timestamp=time.time())}
    )

    services = bootstrap_matching(configure_logging=False)

    assert services.cache.is_valid("berserk")
    assert services.batch.persistence is not None
