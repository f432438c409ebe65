"""
Client-side rate limiting for the GitLab REST API.

Each GitLabClient owns one RateLimiter. The limiter enforces a minimum
spacing between calls and a rolling per-minute call budget, and also
honours the RateLimit-* headers GitLab returns.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class RateLimitInfo:
    """Rate limit information reported by the server."""
    limit: int | None = None
    remaining: int | None = None
    reset_at: datetime | None = None

    @property
    def is_exhausted(self) -> bool:
        """Check if the server-side budget is exhausted."""
        if self.remaining is not None:
            return self.remaining <= 0
        return False

    @property
    def seconds_until_reset(self) -> float | None:
        """Get seconds until the server-side budget resets."""
        if self.reset_at:
            delta = self.reset_at - datetime.now(timezone.utc)
            return max(0.0, delta.total_seconds())
        return None


class RateLimiter:
    """
    Sequential call throttle.

    Features:
    - Minimum spacing between consecutive calls
    - Rolling one-minute window; sleeps until the window resets once
      the call count reaches ``throttle_threshold`` of the budget
    - Waits for server reset when RateLimit-Remaining hits zero

    The counters are lock-protected so several worker threads can share
    one limiter and one global budget.
    """

    WINDOW_SECONDS = 60.0

    def __init__(
        self,
        min_interval: float = 0.2,
        calls_per_minute: int = 600,
        throttle_threshold: float = 0.9,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize rate limiter.

        Args:
            min_interval: Minimum seconds between two calls
            calls_per_minute: Call budget per rolling minute
            throttle_threshold: Fraction of the budget at which to wait for the window reset
            clock: Monotonic clock (injectable for tests)
            sleep: Sleep function (injectable for tests)
        """
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        if calls_per_minute <= 0:
            raise ValueError("calls_per_minute must be > 0")
        if not 0.0 < throttle_threshold <= 1.0:
            raise ValueError("throttle_threshold must be in (0, 1]")

        self.min_interval = min_interval
        self.calls_per_minute = calls_per_minute
        self.throttle_threshold = throttle_threshold
        self._clock = clock
        self._sleep = sleep

        self.lock = Lock()
        self.info = RateLimitInfo()
        self.last_call_at: float | None = None
        self.window_started_at = clock()
        self.window_calls = 0
        self.total_calls = 0
        self.total_wait_seconds = 0.0

    @property
    def window_limit(self) -> int:
        """Number of calls allowed before waiting for the window to reset."""
        return max(1, int(self.calls_per_minute * self.throttle_threshold))

    def _wait(self, seconds: float) -> None:
        if seconds <= 0:
            return
        self.total_wait_seconds += seconds
        self._sleep(seconds)

    def acquire(self) -> None:
        """
        Block until the next call may be issued, then record it.

        Waits when:
        - the server reported an exhausted budget (until its reset time)
        - the rolling window is at the throttle threshold (until it resets)
        - the previous call was less than ``min_interval`` ago
        """
        with self.lock:
            if self.info.is_exhausted:
                wait_time = self.info.seconds_until_reset
                if wait_time:
                    logger.warning(f"Server rate limit exhausted, waiting {wait_time:.0f}s until reset")
                    self._wait(wait_time + 1)
                self.info.remaining = None

            now = self._clock()
            if now - self.window_started_at >= self.WINDOW_SECONDS:
                self.window_started_at = now
                self.window_calls = 0

            if self.window_calls >= self.window_limit:
                wait_time = self.WINDOW_SECONDS - (now - self.window_started_at)
                logger.info(
                    f"Call budget at {self.window_calls}/{self.calls_per_minute} per minute, "
                    f"waiting {wait_time:.1f}s for window reset"
                )
                self._wait(wait_time)
                self.window_started_at = self._clock()
                self.window_calls = 0

            if self.last_call_at is not None:
                elapsed = self._clock() - self.last_call_at
                if elapsed < self.min_interval:
                    self._wait(self.min_interval - elapsed)

            self.last_call_at = self._clock()
            self.window_calls += 1
            self.total_calls += 1

    def reset(self) -> None:
        """Start a fresh window, e.g. after a 429 back-off."""
        with self.lock:
            self.window_started_at = self._clock()
            self.window_calls = 0
            self.info = RateLimitInfo()

    def update_from_headers(self, headers: dict[str, str]) -> None:
        """
        Update server-side rate limit info from GitLab response headers.

        Args:
            headers: HTTP response headers
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        with self.lock:
            try:
                if "ratelimit-limit" in lowered:
                    self.info.limit = int(lowered["ratelimit-limit"])
                if "ratelimit-remaining" in lowered:
                    self.info.remaining = int(lowered["ratelimit-remaining"])
                if "ratelimit-reset" in lowered:
                    self.info.reset_at = datetime.fromtimestamp(
                        int(lowered["ratelimit-reset"]), tz=timezone.utc
                    )
            except (TypeError, ValueError):
                logger.debug("Ignoring malformed RateLimit headers")

    def get_status(self) -> dict[str, Any]:
        """Get current limiter status."""
        with self.lock:
            return {
                "min_interval": self.min_interval,
                "calls_per_minute": self.calls_per_minute,
                "window_calls": self.window_calls,
                "total_calls": self.total_calls,
                "total_wait_seconds": round(self.total_wait_seconds, 3),
                "server_limit": self.info.limit,
                "server_remaining": self.info.remaining,
            }
