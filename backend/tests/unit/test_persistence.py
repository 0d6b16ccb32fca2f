"""Tests for JSON file persistence."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from mangamatch.core.config import get_settings
from mangamatch.core.matching.models import (
    CacheRecord,
    MatchCandidate,
    MatchResult,
    SourceInfo,
)
from mangamatch.core.persistence import JsonFilePersistence


@pytest.fixture
def persistence(tmp_path: Path) -> JsonFilePersistence:
    return JsonFilePersistence(tmp_path / "cache", tmp_path / "results")


def test_default_directories_come_from_settings() -> None:
    """Test that files live in the configured data directories."""
    persistence = JsonFilePersistence()
    settings = get_settings()
    assert persistence.cache_file.parent == settings.cache_dir
    assert persistence.results_file.parent == settings.results_dir


def test_missing_files_load_empty(persistence: JsonFilePersistence) -> None:
    """Test loading before anything was saved."""
    assert persistence.load_cache_snapshot() == {}
    assert persistence.load_match_results() == []
    assert persistence.load_pending_entries() == []


def test_match_results_keep_provenance(persistence, make_entry, make_source) -> None:
    """Test that saved results keep candidates, selection and provenance."""
    entry = make_entry(7, "Solo Leveling")
    result = MatchResult(
        source_entry=make_source(1, "Solo Leveling", catalog_id=7),
        candidates=[
            MatchCandidate(
                entry=entry,
                confidence=99,
                source_info=SourceInfo(source="comick", title="Solo Leveling", source_id="abc"),
            )
        ],
        selected_match=entry,
        status="matched",
    )

    persistence.save_match_results([result])
    loaded = persistence.load_match_results()

    assert loaded == [result]
    assert loaded[0].candidates[0].source_info.source == "comick"


def test_pending_entries_cleared_by_empty_save(persistence, make_source) -> None:
    """Test that saving no pending entries removes the file."""
    persistence.save_pending_entries([make_source(1, "Berserk"), make_source(2, "Monster")])
    assert [e.id for e in persistence.load_pending_entries()] == [1, 2]

    persistence.save_pending_entries([])
    assert not persistence.pending_file.exists()
    assert persistence.load_pending_entries() == []


def test_corrupted_files_load_empty(persistence: JsonFilePersistence) -> None:
    """Test that unreadable files are treated as missing."""
    persistence.cache_file.parent.mkdir(parents=True, exist_ok=True)
    persistence.results_file.parent.mkdir(parents=True, exist_ok=True)
    persistence.cache_file.write_text("{not json")
    persistence.results_file.write_text(json.dumps([{"unexpected": True}]))

    assert persistence.load_cache_snapshot() == {}
    assert persistence.load_match_results() == []


def test_invalid_cache_records_are_dropped(persistence, make_entry) -> None:
    """Test that one bad record does not discard the whole snapshot."""
    persistence.save_cache_snapshot(
        {"berserk": CacheRecord(entries=[make_entry(1, "Berserk")], timestamp=100)}
    )
    data = json.loads(persistence.cache_file.read_text())
    data["broken"] = {"entries": "nope"}
    persistence.cache_file.write_text(json.dumps(data))

    records = persistence.load_cache_snapshot()
    assert set(records) == {"berserk"}


def test_write_leaves_no_temporary_file(persistence, make_entry) -> None:
    """Test that the temporary file is renamed into place."""
    persistence.save_cache_snapshot(
        {"berserk": CacheRecord(entries=[make_entry(1, "Berserk")], timestamp=100)}
    )
    assert persistence.cache_file.exists()
    assert list(persistence.cache_file.parent.glob("*.tmp")) == []
