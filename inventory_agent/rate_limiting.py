"""
Rate limiting for the GitLab API.

Tracks the RateLimit-* headers GitLab returns on every response and
throttles outgoing requests before the instance starts refusing them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Mapping

from requests.structures import CaseInsensitiveDict

logger = logging.getLogger(__name__)


@dataclass
class RateLimitInfo:
    """Rate limit information for an API."""
    limit: int | None = None
    remaining: int | None = None
    reset_at: datetime | None = None

    @property
    def is_exhausted(self) -> bool:
        """Check if rate limit is exhausted."""
        if self.remaining is not None:
            return self.remaining <= 0
        return False

    @property
    def seconds_until_reset(self) -> float | None:
        """Get seconds until rate limit resets."""
        if self.reset_at:
            delta = self.reset_at - datetime.now(timezone.utc)
            return max(0, delta.total_seconds())
        return None

    @property
    def usage_percent(self) -> float:
        """Get rate limit usage as a fraction (0.0 to 1.0)."""
        if self.limit and self.remaining is not None:
            used = self.limit - self.remaining
            return used / self.limit
        return 0.0


class RateLimiter:
    """
    Adaptive rate limiter shared by every request of one client.

    Features:
    - Tracks rate limit state from response headers
    - Waits for the reset time once the budget is exhausted
    - Predictive throttling once usage passes ``throttle_threshold``
    - Minimum spacing between consecutive requests
    """

    def __init__(
        self,
        name: str,
        default_limit: int = 2000,
        throttle_threshold: float = 0.8,
        min_interval: float = 0.05,
    ):
        """
        Initialize rate limiter.

        Args:
            name: Name of this rate limiter (for logging)
            default_limit: Assumed requests per window until headers say otherwise
            throttle_threshold: Start throttling at this usage fraction (0.0-1.0)
            min_interval: Minimum seconds between two requests
        """
        self.name = name
        self.throttle_threshold = throttle_threshold
        self.min_interval = min_interval

        self.lock = Lock()
        self.info = RateLimitInfo(limit=default_limit, remaining=default_limit)
        self.last_request_time = 0.0
        self.request_count = 0
        self.throttle_delay = 0.0

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        """
        Update rate limit info from GitLab response headers.

        Args:
            headers: HTTP response headers
        """
        headers = CaseInsensitiveDict(headers)
        with self.lock:
            limit = _as_int(headers.get("RateLimit-Limit"))
            remaining = _as_int(headers.get("RateLimit-Remaining"))
            reset = _as_int(headers.get("RateLimit-Reset"))

            if limit is not None:
                self.info.limit = limit
            if remaining is not None:
                self.info.remaining = remaining
            if reset is not None:
                self.info.reset_at = datetime.fromtimestamp(reset, tz=timezone.utc)

            self._update_throttle_delay()

    def _update_throttle_delay(self) -> None:
        """Calculate adaptive throttle delay based on rate limit usage."""
        usage = self.info.usage_percent

        if usage >= self.throttle_threshold and self.throttle_threshold < 1.0:
            excess = (usage - self.throttle_threshold) / (1.0 - self.throttle_threshold)
            self.throttle_delay = excess * 2.0
            logger.debug(
                f"{self.name}: rate limit at {usage:.1%}, throttling with {self.throttle_delay:.2f}s delay"
            )
        else:
            self.throttle_delay = 0.0

    def wait_if_needed(self) -> None:
        """
        Block until the next request may be sent.

        Waits for the reset time when the budget is exhausted, applies the
        adaptive throttle delay, and keeps requests ``min_interval`` apart.
        """
        with self.lock:
            if self.info.is_exhausted:
                wait_time = self.info.seconds_until_reset
                if wait_time and wait_time > 0:
                    logger.warning(
                        f"{self.name}: rate limit exhausted, waiting {wait_time:.0f}s until reset"
                    )
                    time.sleep(wait_time + 1)
                self.info.remaining = self.info.limit

            if self.throttle_delay > 0:
                time.sleep(self.throttle_delay)

            since_last = time.monotonic() - self.last_request_time
            if since_last < self.min_interval:
                time.sleep(self.min_interval - since_last)

            self.last_request_time = time.monotonic()
            self.request_count += 1

    def get_status(self) -> dict[str, Any]:
        """Get current rate limit status."""
        with self.lock:
            return {
                "name": self.name,
                "limit": self.info.limit,
                "remaining": self.info.remaining,
                "usage_percent": self.info.usage_percent,
                "reset_at": self.info.reset_at.isoformat() if self.info.reset_at else None,
                "throttle_delay": self.throttle_delay,
                "request_count": self.request_count,
            }


def _as_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
