"""Pydantic models for source entries, catalog entries and match results."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

SourceStatus = Literal["reading", "completed", "on_hold", "dropped", "plan_to_read"]
MatchStatus = Literal["pending", "matched", "manual", "skipped"]
AlternativeSourceName = Literal["comick", "mangadex"]

# Formats that are never offered as manga candidates
EXCLUDED_FORMATS = frozenset({"NOVEL", "LIGHT_NOVEL"})


class SourceEntry(BaseModel):
    """One entry of the user's imported reading list."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Entry ID in the reading-list export")
    title: str = Field(..., description="Title as written in the reading list")
    status: SourceStatus = Field(default="reading", description="Reading state")
    score: float = Field(default=0.0, description="User score")
    url: str | None = Field(default=None, description="Entry URL in the reading-list service")
    chapters_read: int = Field(default=0, ge=0, description="Chapters read")
    volumes_read: int | None = Field(default=None, ge=0, description="Volumes read")
    total_chapters: int | None = Field(default=None, description="Known chapter count")
    total_volumes: int | None = Field(default=None, description="Known volume count")
    alternative_titles: list[str] = Field(
        default_factory=list, description="Alternative titles from the export"
    )
    catalog_id: int | None = Field(
        default=None, description="Known catalog ID (enables direct ID lookup)"
    )
    notes: str | None = Field(default=None, description="Free-form notes")
    created_at: datetime | None = Field(default=None, description="Creation timestamp")
    updated_at: datetime | None = Field(default=None, description="Last update timestamp")
    last_read_at: datetime | None = Field(default=None, description="Last read timestamp")


class CatalogTitle(BaseModel):
    """Multilingual title of a catalog entry."""

    model_config = ConfigDict(frozen=True)

    romaji: str | None = Field(default=None, description="Romanized title")
    english: str | None = Field(default=None, description="English title")
    native: str | None = Field(default=None, description="Title in the original script")


class CatalogEntry(BaseModel):
    """Read-only snapshot of a remote catalog record."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Catalog ID")
    title: CatalogTitle = Field(default_factory=CatalogTitle, description="Titles")
    synonyms: list[str] = Field(default_factory=list, description="Synonym titles")
    format: str | None = Field(default=None, description="Format (MANGA, ONE_SHOT, NOVEL, ...)")
    status: str | None = Field(default=None, description="Publication status")
    chapters: int | None = Field(default=None, description="Chapter count")
    volumes: int | None = Field(default=None, description="Volume count")
    is_adult: bool = Field(default=False, description="Adult content flag")
    cover_image: str | None = Field(default=None, description="Cover image URL")
    genres: list[str] = Field(default_factory=list, description="Genres")
    country_of_origin: str | None = Field(default=None, description="Country code")

    @property
    def display_title(self) -> str:
        """Best available title for logging and display."""
        return self.title.english or self.title.romaji or self.title.native or str(self.id)


class SourceInfo(BaseModel):
    """Provenance of a candidate found through an alternative catalog."""

    source: AlternativeSourceName = Field(..., description="Alternative catalog name")
    title: str = Field(..., description="Title in the alternative catalog")
    slug: str = Field(default="", description="Slug in the alternative catalog")
    source_id: str = Field(..., description="ID in the alternative catalog")
    found_via_alternative_search: bool = Field(
        default=True, description="True if the primary catalog returned nothing"
    )


class MatchCandidate(BaseModel):
    """A catalog entry paired with its confidence for one source entry."""

    entry: CatalogEntry = Field(..., description="Candidate catalog entry")
    confidence: float = Field(..., ge=0, le=100, description="Confidence percentage")
    source_info: SourceInfo | None = Field(
        default=None, description="Provenance when found via an alternative catalog"
    )


class MatchResult(BaseModel):
    """Durable unit of work: a source entry and its ranked candidates."""

    source_entry: SourceEntry = Field(..., description="Entry being matched")
    candidates: list[MatchCandidate] = Field(
        default_factory=list, description="Candidates, best first"
    )
    selected_match: CatalogEntry | None = Field(default=None, description="Chosen entry")
    status: MatchStatus = Field(default="pending", description="Disposition")
    match_date: datetime | None = Field(default=None, description="Last disposition change")

    @model_validator(mode="after")
    def _selected_match_required(self) -> MatchResult:
        if self.status in ("matched", "manual") and self.selected_match is None:
            raise ValueError(f"selected_match is required when status is {self.status}")
        return self


class PageInfo(BaseModel):
    """Pagination block of a catalog search page."""

    total: int = Field(default=0, description="Total results")
    current_page: int = Field(default=1, description="Current page")
    last_page: int = Field(default=1, description="Last page")
    has_next_page: bool = Field(default=False, description="More pages available")
    per_page: int = Field(default=50, description="Results per page")


class SearchPage(BaseModel):
    """One validated page returned by the catalog client."""

    items: list[CatalogEntry] = Field(default_factory=list, description="Page items")
    page_info: PageInfo | None = Field(default=None, description="Pagination info")


class SearchResponse(BaseModel):
    """Ranked result of a single-title search."""

    matches: list[MatchCandidate] = Field(default_factory=list, description="Ranked candidates")
    page_info: PageInfo | None = Field(default=None, description="Last page info")


class CacheRecord(BaseModel):
    """Cached ranked entries for one normalized title."""

    entries: list[CatalogEntry] = Field(default_factory=list, description="Ranked entries")
    timestamp: float = Field(..., description="Fetch time (epoch seconds)")


class CustomRule(BaseModel):
    """User-defined regex rule applied to candidate titles."""

    id: str = Field(..., description="Rule ID")
    pattern: str = Field(..., description="Regular expression")
    description: str = Field(default="", description="Human-readable description")
    enabled: bool = Field(default=True, description="Whether the rule is active")
    case_sensitive: bool = Field(default=False, description="Case-sensitive matching")


class CustomRules(BaseModel):
    """Skip and accept rule lists."""

    skip_rules: list[CustomRule] = Field(default_factory=list, description="Exclusion rules")
    accept_rules: list[CustomRule] = Field(default_factory=list, description="Acceptance rules")


class MatchOptions(BaseModel):
    """Per-call search and filter configuration."""

    bypass_cache: bool = Field(default=False, description="Force a fresh remote search")
    exact_matching_only: bool = Field(default=False, description="Use strict inclusion rules")
    is_manual_search: bool = Field(
        default=False, description="Interactive search (skip rules do not apply)"
    )
    search_per_page: int = Field(default=50, ge=1, le=50, description="Items per page")
    max_search_results: int = Field(default=50, ge=1, description="Cap on accumulated items")
    batch_size: int = Field(default=10, ge=1, description="Titles per preload group")
    ignore_one_shots: bool = Field(default=False, description="Drop one-shot entries")
    ignore_adult_content: bool = Field(default=False, description="Drop adult entries")
    enable_comick_search: bool = Field(default=False, description="Use Comick fallback")
    enable_mangadex_search: bool = Field(default=False, description="Use MangaDex fallback")
    custom_rules: CustomRules = Field(default_factory=CustomRules, description="User rules")
    ignored_titles: set[str] = Field(
        default_factory=set, description="Catalog titles never offered by automatic matching"
    )
