"""Review actions applied to match results by the user.

A review action targets either one result (``Single``) or several results at
once (``Batch``). Results are located in the working list by source entry ID,
and updated copies replace them in place.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog

from mangamatch.core.matching.models import CatalogEntry, MatchResult

logger = structlog.get_logger("mangamatch.matching.review")


@dataclass(frozen=True)
class Single:
    """Review target holding one result."""

    result: MatchResult


@dataclass(frozen=True)
class Batch:
    """Review target holding several results."""

    results: list[MatchResult]


ReviewTarget = Single | Batch


@dataclass(frozen=True)
class Accept:
    """Accept the top candidate."""


@dataclass(frozen=True)
class Reject:
    """Skip the entry."""


@dataclass(frozen=True)
class Reset:
    """Return the entry to pending review."""


@dataclass(frozen=True)
class SelectAlternative:
    """Promote the candidate at ``index`` to the front."""

    index: int
    auto_accept: bool = False


@dataclass(frozen=True)
class ManualSelect:
    """Select a catalog entry picked by the user."""

    entry: CatalogEntry


ReviewAction = Accept | Reject | Reset | SelectAlternative | ManualSelect


def _updated(result: MatchResult, **changes: Any) -> MatchResult:
    values = dict(result)
    values.update(changes)
    values["match_date"] = datetime.now(timezone.utc)
    return MatchResult(**values)


def _first_candidate(result: MatchResult) -> CatalogEntry | None:
    return result.candidates[0].entry if result.candidates else None


def _accept(result: MatchResult) -> MatchResult:
    first = _first_candidate(result)
    if first is None:
        raise ValueError(f"No candidate to accept for '{result.source_entry.title}'")
    return _updated(result, status="matched", selected_match=first)


def _select_alternative(result: MatchResult, action: SelectAlternative) -> MatchResult:
    if not 0 <= action.index < len(result.candidates):
        raise ValueError(
            f"Alternative {action.index} does not exist for '{result.source_entry.title}'"
        )
    candidates = list(result.candidates)
    chosen = candidates.pop(action.index)
    candidates.insert(0, chosen)
    return _updated(
        result,
        candidates=candidates,
        selected_match=chosen.entry,
        status="matched" if action.auto_accept else result.status,
    )


def _manual_select(result: MatchResult, action: ManualSelect) -> MatchResult:
    existing = any(candidate.entry.id == action.entry.id for candidate in result.candidates)
    return _updated(
        result,
        selected_match=action.entry,
        status="matched" if existing else "manual",
    )


def review_result(result: MatchResult, action: ReviewAction) -> MatchResult:
    """Apply one review action to one result.

    Args:
        result: Result to update
        action: Review action

    Returns:
        Updated copy of the result

    Raises:
        ValueError: If the action cannot apply (no candidate, bad index)
    """
    if isinstance(action, Accept):
        return _accept(result)
    if isinstance(action, Reject):
        return _updated(result, status="skipped", selected_match=None)
    if isinstance(action, Reset):
        return _updated(result, status="pending", selected_match=_first_candidate(result))
    if isinstance(action, SelectAlternative):
        return _select_alternative(result, action)
    if isinstance(action, ManualSelect):
        return _manual_select(result, action)
    raise TypeError(f"Unknown review action: {type(action).__name__}")


def apply_review_action(
    results: list[MatchResult],
    target: ReviewTarget,
    action: ReviewAction,
) -> list[MatchResult]:
    """Apply a review action to the targeted results.

    Args:
        results: Current working list of results
        target: Single result or batch of results to update
        action: Review action

    Returns:
        New list with the targeted results replaced by their updated copies
    """
    if isinstance(target, Single):
        targets = [target.result]
    elif isinstance(target, Batch):
        targets = target.results
    else:
        raise TypeError(f"Unknown review target: {type(target).__name__}")

    positions = {result.source_entry.id: i for i, result in enumerate(results)}
    updated = list(results)
    for result in targets:
        position = positions.get(result.source_entry.id)
        if position is None:
            logger.warning(
                "Review target not found",
                source_id=result.source_entry.id,
                title=result.source_entry.title[:50],
            )
            continue
        updated[position] = review_result(updated[position], action)

    logger.info(
        "Applied review action",
        action=type(action).__name__,
        target=type(target).__name__,
        count=len(targets),
    )
    return updated
