"""Shared rate-limit permit pool for catalog requests."""

from __future__ import annotations

import asyncio
import time
from collections import deque

import structlog

from mangamatch.core.search.cancellation import CancellationToken, check_cancelled

logger = structlog.get_logger("mangamatch.search.rate_limit")

# How often a paused acquire re-checks cancellation
PAUSE_POLL_SECONDS = 0.25


class RateLimiter:
    """Sliding-window rate limiter shared by every catalog request.

    Features:
    - At most ``requests_per_minute`` permits in any 60 second window
    - Minimum spacing of ``60 / requests_per_minute`` plus a safety delay
    - Manual pause/resume (acquire blocks while paused)
    - Cancellation checked before waiting and before granting a permit
    """

    def __init__(
        self,
        requests_per_minute: int = 28,
        safety_delay: float = 0.05,
        period: float = 60.0,
    ) -> None:
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum permits per period
            safety_delay: Extra seconds added to the minimum spacing
            period: Window length in seconds
        """
        self.requests_per_minute = requests_per_minute
        self.safety_delay = safety_delay
        self.period = period
        self.min_spacing = period / requests_per_minute + safety_delay

        self._request_times: deque[float] = deque()
        self._lock = asyncio.Lock()
        self._resumed = asyncio.Event()
        self._resumed.set()

    @property
    def is_paused(self) -> bool:
        return not self._resumed.is_set()

    def pause(self) -> None:
        """Stop granting permits until resume() is called."""
        if not self.is_paused:
            logger.info("Rate limiter paused")
        self._resumed.clear()

    def resume(self) -> None:
        if self.is_paused:
            logger.info("Rate limiter resumed")
        self._resumed.set()

    def _prune(self, now: float) -> None:
        while self._request_times and self._request_times[0] <= now - self.period:
            self._request_times.popleft()

    def remaining_budget(self) -> int:
        """Estimate how many permits are left in the current window."""
        self._prune(time.time())
        return max(0, self.requests_per_minute - len(self._request_times))

    async def _wait_while_paused(self, cancel: CancellationToken | None) -> None:
        while self.is_paused:
            check_cancelled(cancel, "rate limit pause")
            try:
                await asyncio.wait_for(self._resumed.wait(), timeout=PAUSE_POLL_SECONDS)
            except asyncio.TimeoutError:
                continue

    async def acquire(self, cancel: CancellationToken | None = None) -> None:
        """Wait until a request may be sent.

        Args:
            cancel: Optional cancellation token

        Raises:
            MatchingCancelledError: If cancelled while waiting
        """
        check_cancelled(cancel, "rate limit wait")
        await self._wait_while_paused(cancel)

        async with self._lock:
            now = time.time()
            self._prune(now)

            if len(self._request_times) >= self.requests_per_minute:
                # At the limit - wait until the oldest request leaves the window
                wait_time = self._request_times[0] + self.period - now
                if wait_time > 0:
                    logger.debug(
                        "Rate limit reached, waiting",
                        wait_seconds=round(wait_time, 3),
                        current_count=len(self._request_times),
                    )
                    await asyncio.sleep(wait_time)
                    now = time.time()
                    self._prune(now)

            if self._request_times:
                time_since_last = now - self._request_times[-1]
                if time_since_last < self.min_spacing:
                    delay = self.min_spacing - time_since_last
                    logger.debug("Spacing out requests", delay_seconds=round(delay, 3))
                    await asyncio.sleep(delay)
                    now = time.time()

            check_cancelled(cancel, "rate limit wait")
            self._request_times.append(now)
