"""Cooperative cancellation and progress reporting for matching runs."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

logger = structlog.get_logger("mangamatch.search.cancellation")


class MatchingCancelledError(Exception):
    """Raised when a matching run is cancelled by the user."""


class CancellationToken:
    """Cancellation signal checked at every suspension point.

    Combines an optional caller-supplied predicate with an abort handle that
    can be triggered from anywhere (for example a UI "stop" button).
    """

    def __init__(self, should_cancel: Callable[[], bool] | None = None) -> None:
        """Initialize cancellation token.

        Args:
            should_cancel: Optional predicate polled on every check
        """
        self._should_cancel = should_cancel
        self._abort = asyncio.Event()

    def cancel(self) -> None:
        """Trigger the abort handle."""
        if not self._abort.is_set():
            logger.info("Cancellation requested")
        self._abort.set()

    @property
    def is_cancelled(self) -> bool:
        """True once the abort handle fired or the predicate returns True."""
        if self._abort.is_set():
            return True
        return bool(self._should_cancel and self._should_cancel())

    def raise_if_cancelled(self, where: str = "") -> None:
        """Raise MatchingCancelledError if cancellation was requested.

        Args:
            where: Label of the checkpoint, used in the error message
        """
        if self.is_cancelled:
            raise MatchingCancelledError(
                f"Matching cancelled{f' during {where}' if where else ''}"
            )


def check_cancelled(cancel: CancellationToken | None, where: str = "") -> None:
    """Raise if an optional token has been cancelled."""
    if cancel is not None:
        cancel.raise_if_cancelled(where)


class ProgressSink:
    """Reports per-entry progress, at most once per entry index."""

    def __init__(
        self,
        callback: Callable[[int, int, str | None], None] | None = None,
        total: int = 0,
    ) -> None:
        """Initialize progress sink.

        Args:
            callback: Called with (completed, total, current title)
            total: Number of entries in the run
        """
        self._callback = callback
        self.total = total
        self._reported: set[int] = set()

    @property
    def completed(self) -> int:
        """Number of distinct indices reported so far."""
        return len(self._reported)

    def was_reported(self, index: int) -> bool:
        return index in self._reported

    def report(self, index: int, title: str | None = None) -> bool:
        """Report that the entry at ``index`` is resolved.

        Returns:
            True if this is the first report for the index
        """
        if index in self._reported:
            return False
        self._reported.add(index)
        if self._callback is not None:
            self._callback(self.completed, self.total, title)
        return True
