"""Tests for single-title search orchestration."""

from __future__ import annotations

import httpx
import pytest

from mangamatch.core.matching.config import MatchingConfig
from mangamatch.core.matching.models import CustomRule, CustomRules, MatchOptions
from mangamatch.core.search.cancellation import CancellationToken, MatchingCancelledError
from mangamatch.core.search.client import CatalogResponseError
from mangamatch.core.search.service import build_candidates, find_best_matches, use_exact_mode
from mangamatch.core.search.sources import AlternativeSource, SourceRecord


class StubSource(AlternativeSource):
    """Alternative source returning fixed records."""

    def __init__(self, name, catalog, records=None, error=None) -> None:
        super().__init__(name, catalog, base_url="https://stub.test")
        self.records = records or []
        self.error = error
        self.queries: list[str] = []

    async def search(self, query: str, limit: int = 1) -> list[SourceRecord]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self.records


@pytest.fixture
def both_sources() -> MatchOptions:
    return MatchOptions(enable_comick_search=True, enable_mangadex_search=True)


@pytest.fixture
def linked_sources(catalog, make_entry, service) -> tuple[StubSource, StubSource]:
    """Comick links entry 7, MangaDex links entries 7 and 8."""
    catalog.by_id[7] = make_entry(7, "Solo Leveling")
    catalog.by_id[8] = make_entry(8, "Solo Leveling: Ragnarok")
    comick = StubSource(
        "comick", catalog, [SourceRecord("c7", "Solo Leveling", "solo-leveling", 7)]
    )
    mangadex = StubSource(
        "mangadex",
        catalog,
        [
            SourceRecord("m7", "Solo Leveling", "m7", 7),
            SourceRecord("m8", "Solo Leveling: Ragnarok", "m8", 8),
        ],
    )
    service.alternative_sources = [comick, mangadex]
    return comick, mangadex


class TestCache:
    """Test cache use by single-title searches."""

    @pytest.mark.asyncio
    async def test_second_search_uses_cache(self, service, catalog, make_entry):
        catalog.results["Berserk"] = [make_entry(1, "Berserk")]

        first = await service.search_title("Berserk")
        second = await service.search_title("Berserk")

        assert len(catalog.search_calls) == 1
        assert [m.entry.id for m in first.matches] == [1]
        assert [m.entry.id for m in second.matches] == [1]
        assert second.matches[0].confidence == 99

    @pytest.mark.asyncio
    async def test_bypass_never_reads_or_writes_cache(self, service, catalog, cache, make_entry):
        cache.set(cache.key("Berserk"), [make_entry(99, "Stale")])
        catalog.results["Berserk"] = [make_entry(1, "Berserk")]

        response = await service.search_title("Berserk", options=MatchOptions(bypass_cache=True))

        assert catalog.search_calls == [("Berserk", 1)]
        assert [m.entry.id for m in response.matches] == [1]
        assert cache.key("Berserk") not in cache

    @pytest.mark.asyncio
    async def test_cached_results_are_filtered_again(self, service, catalog, make_entry):
        catalog.results["Berserk"] = [
            make_entry(1, "Berserk", is_adult=True),
            make_entry(2, "Berserk"),
        ]
        await service.search_title("Berserk")

        response = await service.search_title(
            "Berserk", options=MatchOptions(ignore_adult_content=True)
        )

        assert len(catalog.search_calls) == 1
        assert [m.entry.id for m in response.matches] == [2]

    @pytest.mark.asyncio
    async def test_clear_cache_for_titles(self, service, catalog, make_entry):
        catalog.results["Berserk"] = [make_entry(1, "Berserk")]
        await service.search_title("Berserk")

        stats = service.clear_cache_for_titles(["Berserk"])
        await service.search_title("Berserk")

        assert stats.cleared == 1
        assert len(catalog.search_calls) == 2


class TestPagination:
    """Test the page loop."""

    @pytest.fixture
    def many_results(self, catalog, make_entry):
        catalog.results["Generic Title"] = [
            make_entry(i, f"Generic Title {i}") for i in range(1, 121)
        ]

    @pytest.mark.asyncio
    async def test_stops_at_result_cap(self, service, catalog, many_results):
        await service.search_title("Generic Title")
        assert catalog.search_calls == [("Generic Title", 1)]

    @pytest.mark.asyncio
    async def test_follows_next_pages(self, service, catalog, many_results):
        response = await service.search_title(
            "Generic Title", options=MatchOptions(max_search_results=500)
        )
        assert [page for _, page in catalog.search_calls] == [1, 2, 3]
        assert response.page_info.current_page == 3
        assert response.page_info.has_next_page is False

    @pytest.mark.asyncio
    async def test_explicit_page(self, service, catalog, many_results):
        await service.search_title(
            "Generic Title", options=MatchOptions(max_search_results=500), page=2
        )
        assert catalog.search_calls == [("Generic Title", 2)]

    @pytest.mark.asyncio
    async def test_missing_page_info_stops(self, service, catalog, make_entry):
        catalog.results["Berserk"] = [make_entry(1, "Berserk")]
        catalog.without_page_info.add("Berserk")

        response = await service.search_title("Berserk")

        assert response.matches == []
        assert len(catalog.search_calls) == 1

    @pytest.mark.asyncio
    async def test_client_errors_propagate(self, service, catalog):
        catalog.failing_titles.add("Broken")
        with pytest.raises(CatalogResponseError):
            await service.search_title("Broken")

    @pytest.mark.asyncio
    async def test_cancelled_search(self, service, catalog):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(MatchingCancelledError):
            await service.search_title("Berserk", cancel=token)
        assert catalog.search_calls == []


class TestFiltering:
    """Test result filtering and the raw fallback."""

    @pytest.mark.asyncio
    async def test_novels_never_returned(self, service, catalog, make_entry):
        catalog.results["Overlord"] = [
            make_entry(1, "Overlord", format="NOVEL"),
            make_entry(2, "Overlord"),
        ]
        response = await service.search_title("Overlord")
        assert [m.entry.id for m in response.matches] == [2]

    @pytest.mark.asyncio
    async def test_raw_fallback_when_filters_remove_everything(
        self, service, catalog, make_entry
    ):
        catalog.results["Short Story"] = [
            make_entry(i, f"Short Story {i}", format="ONE_SHOT") for i in range(1, 6)
        ]
        response = await service.search_title(
            "Short Story", options=MatchOptions(ignore_one_shots=True)
        )
        assert {m.entry.id for m in response.matches} == {1, 2, 3}

    @pytest.mark.asyncio
    async def test_accept_rule_floor(self, service, catalog, make_entry, make_source):
        catalog.results["Qwxz"] = [make_entry(1, "Pluto")]
        options = MatchOptions(
            custom_rules=CustomRules(accept_rules=[CustomRule(id="r1", pattern="pluto")])
        )

        response = await service.search_title(
            "Qwxz", options=options, source_entry=make_source(1, "Qwxz")
        )

        assert response.matches[0].confidence == 75

    @pytest.mark.asyncio
    async def test_exact_mode_keeps_regular_floor_for_other_titles(
        self, service, catalog, make_entry, make_source
    ):
        catalog.results["Qwxz"] = [make_entry(1, "Pluto")]
        options = MatchOptions(
            exact_matching_only=True,
            custom_rules=CustomRules(accept_rules=[CustomRule(id="r1", pattern="pluto")]),
        )

        response = await service.search_title(
            "Qwxz", options=options, source_entry=make_source(1, "Qwxz")
        )

        assert response.matches[0].confidence == 75

    def test_exact_title_gets_exact_floor(self, make_entry, make_source):
        options = MatchOptions(
            custom_rules=CustomRules(accept_rules=[CustomRule(id="r1", pattern="pluto")])
        )
        entries = [make_entry(1, "Pluto"), make_entry(2, "Pluto Kiss")]

        candidates = build_candidates(
            entries, "Qwxz", options, make_source(1, "PLUTO"), config=MatchingConfig()
        )

        assert [(c.entry.id, c.confidence) for c in candidates] == [(1, 85), (2, 75)]


class TestAlternativeSources:
    """Test the alternative catalog fallback."""

    @pytest.mark.asyncio
    async def test_merged_with_provenance(self, service, linked_sources, both_sources):
        response = await service.search_title("Solo Leveling", token="tok", options=both_sources)

        sources = {m.entry.id: m.source_info.source for m in response.matches}
        assert sources == {7: "comick", 8: "mangadex"}
        assert all(m.source_info.found_via_alternative_search for m in response.matches)

    @pytest.mark.asyncio
    async def test_requires_token(self, service, linked_sources, both_sources):
        comick, mangadex = linked_sources
        response = await service.search_title("Solo Leveling", options=both_sources)
        assert response.matches == []
        assert comick.queries == mangadex.queries == []

    @pytest.mark.asyncio
    async def test_only_enabled_sources(self, service, linked_sources):
        comick, mangadex = linked_sources
        response = await service.search_title(
            "Solo Leveling", token="tok", options=MatchOptions(enable_comick_search=True)
        )
        assert [m.entry.id for m in response.matches] == [7]
        assert mangadex.queries == []

    @pytest.mark.asyncio
    async def test_not_used_when_primary_has_results(
        self, service, catalog, linked_sources, both_sources, make_entry
    ):
        comick, _ = linked_sources
        catalog.results["Solo Leveling"] = [make_entry(1, "Solo Leveling")]

        response = await service.search_title("Solo Leveling", token="tok", options=both_sources)

        assert [m.entry.id for m in response.matches] == [1]
        assert response.matches[0].source_info is None
        assert comick.queries == []

    @pytest.mark.asyncio
    async def test_failing_source_is_skipped(self, service, linked_sources, both_sources):
        comick, _ = linked_sources
        comick.error = httpx.ConnectError("comick is down")

        response = await service.search_title("Solo Leveling", token="tok", options=both_sources)

        assert {m.entry.id for m in response.matches} == {7, 8}
        assert {m.source_info.source for m in response.matches} == {"mangadex"}

    @pytest.mark.asyncio
    async def test_cancellation_in_source_propagates(
        self, service, linked_sources, both_sources
    ):
        comick, _ = linked_sources
        comick.error = MatchingCancelledError("stopped")
        with pytest.raises(MatchingCancelledError):
            await service.search_title("Solo Leveling", token="tok", options=both_sources)


class TestMatchSingle:
    """Test single-entry disposition."""

    @pytest.mark.asyncio
    async def test_exact_mode_auto_match(self, service, catalog, make_entry, make_source):
        catalog.results["Vinland Saga"] = [make_entry(1, "Vinland Saga")]

        result = await service.match_single(
            make_source(1, "Vinland Saga"), options=MatchOptions(exact_matching_only=True)
        )

        assert result.status == "matched"
        assert result.selected_match.id == 1
        assert [c.confidence for c in result.candidates] == [100]

    @pytest.mark.asyncio
    async def test_regular_exact_title(self, service, catalog, make_entry, make_source):
        catalog.results["Vinland Saga"] = [make_entry(1, "Vinland Saga")]
        result = await service.match_single(make_source(1, "Vinland Saga"))
        assert result.status == "matched"
        assert result.selected_match.id == 1

    @pytest.mark.asyncio
    async def test_no_usable_candidate(self, service, catalog, make_entry, make_source):
        catalog.results["Qwxz"] = [
            make_entry(1, "Pluto"),
            make_entry(2, "Monster"),
            make_entry(3, "Berserk"),
        ]
        result = await service.match_single(make_source(1, "Qwxz"))
        assert result.status == "pending"
        assert result.selected_match is None


class TestFindBestMatches:
    """Test disposition rules."""

    def test_alternative_titles_count(self, make_entry, make_source):
        source = make_source(1, "Shingeki no Kyojin", alternative_titles=["Attack on Titan"])
        result = find_best_matches(source, [make_entry(1, "Attack on Titan")], MatchingConfig())
        assert result.status == "matched"
        assert result.candidates[0].confidence == 99

    def test_no_entries(self, make_source):
        result = find_best_matches(make_source(1, "Berserk"), [], MatchingConfig())
        assert result.status == "pending"
        assert result.candidates == []

    def test_needs_clear_lead(self, make_entry, make_source):
        config = MatchingConfig(exact_match_confidence=100.0)
        source = make_source(1, "Berserk")

        tied = find_best_matches(
            source, [make_entry(1, "Berserk"), make_entry(2, "Berserk")], config
        )
        alone = find_best_matches(source, [make_entry(1, "Berserk")], config)

        assert tied.status == "pending"
        assert tied.selected_match is None
        assert len(tied.candidates) == 2
        assert alone.status == "matched"

    def test_max_matches(self, make_entry, make_source):
        entries = [make_entry(i, "Berserk") for i in range(1, 9)]
        result = find_best_matches(make_source(1, "Berserk"), entries, MatchingConfig())
        assert len(result.candidates) == 5


class TestBulkHelpers:
    """Test preload and ID lookups."""

    @pytest.mark.asyncio
    async def test_preload_ignores_failures(self, service, catalog, cache, make_entry):
        catalog.results["Berserk"] = [make_entry(1, "Berserk")]
        catalog.failing_titles.add("Broken")

        await service.preload(["Berserk", "Broken"])
        assert cache.is_valid(cache.key("Berserk"))

        await service.preload(["Berserk"])
        assert [title for title, _ in catalog.search_calls].count("Berserk") == 1

    @pytest.mark.asyncio
    async def test_preload_searches_in_order(self, service, catalog, make_entry):
        catalog.results["Monster"] = [make_entry(2, "Monster")]
        catalog.failing_titles.add("Broken")

        await service.preload(["Monster", "Broken", "Vagabond"], options=MatchOptions(batch_size=2))

        assert catalog.search_calls == [("Monster", 1), ("Broken", 1), ("Vagabond", 1)]

    @pytest.mark.asyncio
    async def test_preload_cancelled(self, service, catalog):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(MatchingCancelledError):
            await service.preload(["Berserk"], cancel=token)
        assert catalog.search_calls == []

    @pytest.mark.asyncio
    async def test_fetch_by_ids_in_groups(self, service, catalog, make_entry):
        for i in range(1, 61):
            catalog.by_id[i] = make_entry(i, f"Title {i}")

        entries = await service.fetch_by_ids(list(range(1, 61)))

        assert len(entries) == 60
        assert [len(call) for call in catalog.id_calls] == [25, 25, 10]


def test_use_exact_mode() -> None:
    """Test when exact inclusion rules apply."""
    config = MatchingConfig()
    assert not use_exact_mode(MatchOptions(), 10, config)
    assert use_exact_mode(MatchOptions(exact_matching_only=True), 4, config)
    assert not use_exact_mode(MatchOptions(exact_matching_only=True), 3, config)
    assert not use_exact_mode(MatchOptions(exact_matching_only=True, bypass_cache=True), 10, config)
