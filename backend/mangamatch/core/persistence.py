"""Persistence of the search cache snapshot, match results and pending entries."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import structlog
from pydantic import TypeAdapter

from mangamatch.core.config import get_settings
from mangamatch.core.matching.models import CacheRecord, MatchResult, SourceEntry

logger = structlog.get_logger("mangamatch.persistence")

_CACHE_SNAPSHOT = TypeAdapter(dict[str, CacheRecord])
_MATCH_RESULTS = TypeAdapter(list[MatchResult])
_SOURCE_ENTRIES = TypeAdapter(list[SourceEntry])


class Persistence(ABC):
    """Abstract storage for state that outlives a matching run."""

    @abstractmethod
    def load_cache_snapshot(self) -> dict[str, CacheRecord]:
        """Load the persisted search cache (empty if none)."""

    @abstractmethod
    def save_cache_snapshot(self, records: dict[str, CacheRecord]) -> None:
        """Replace the persisted search cache."""

    @abstractmethod
    def load_match_results(self) -> list[MatchResult]:
        """Load saved match results (empty if none)."""

    @abstractmethod
    def save_match_results(self, results: list[MatchResult]) -> None:
        """Replace saved match results."""

    @abstractmethod
    def load_pending_entries(self) -> list[SourceEntry]:
        """Load entries left unprocessed by an interrupted run."""

    @abstractmethod
    def save_pending_entries(self, entries: list[SourceEntry]) -> None:
        """Replace the pending entries (an empty list clears them)."""


class JsonFilePersistence(Persistence):
    """Persistence backed by JSON files in the data directory."""

    def __init__(self, cache_dir: Path | None = None, results_dir: Path | None = None) -> None:
        """Initialize JSON file persistence.

        Args:
            cache_dir: Directory for the cache snapshot (default: settings.cache_dir)
            results_dir: Directory for results and pending entries
                (default: settings.results_dir)
        """
        if cache_dir is None or results_dir is None:
            settings = get_settings()
            cache_dir = cache_dir or settings.cache_dir
            results_dir = results_dir or settings.results_dir
        self.cache_file = cache_dir / "search_cache.json"
        self.results_file = results_dir / "match_results.json"
        self.pending_file = results_dir / "pending_entries.json"

    def _read(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Failed to read persisted file", path=str(path), error=str(e))
            return None

    def _write(self, path: Path, payload: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write then rename so readers never see a partial file
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            tmp_path.write_bytes(payload)
            tmp_path.replace(path)
        except OSError as e:
            logger.error(
                "Failed to write persisted file",
                path=str(path),
                error=str(e),
                exc_info=True,
            )
            raise

    def load_cache_snapshot(self) -> dict[str, CacheRecord]:
        data = self._read(self.cache_file)
        if not isinstance(data, dict):
            return {}
        records: dict[str, CacheRecord] = {}
        for key, value in data.items():
            try:
                records[key] = CacheRecord.model_validate(value)
            except ValueError as e:
                logger.warning("Dropping invalid cache record", key=key, error=str(e))
        return records

    def save_cache_snapshot(self, records: dict[str, CacheRecord]) -> None:
        self._write(self.cache_file, _CACHE_SNAPSHOT.dump_json(records))
        logger.debug("Saved cache snapshot", path=str(self.cache_file), records=len(records))

    def load_match_results(self) -> list[MatchResult]:
        data = self._read(self.results_file)
        if data is None:
            return []
        try:
            return _MATCH_RESULTS.validate_python(data)
        except ValueError as e:
            logger.warning("Failed to load match results", error=str(e))
            return []

    def save_match_results(self, results: list[MatchResult]) -> None:
        self._write(self.results_file, _MATCH_RESULTS.dump_json(results))
        logger.info("Saved match results", path=str(self.results_file), count=len(results))

    def load_pending_entries(self) -> list[SourceEntry]:
        data = self._read(self.pending_file)
        if data is None:
            return []
        try:
            return _SOURCE_ENTRIES.validate_python(data)
        except ValueError as e:
            logger.warning("Failed to load pending entries", error=str(e))
            return []

    def save_pending_entries(self, entries: list[SourceEntry]) -> None:
        if not entries:
            self.pending_file.unlink(missing_ok=True)
            return
        self._write(self.pending_file, _SOURCE_ENTRIES.dump_json(entries))
        logger.info("Saved pending entries", path=str(self.pending_file), count=len(entries))
