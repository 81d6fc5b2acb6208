"""Tests for the header-driven rate limiter."""

import time
from unittest.mock import patch

from inventory_agent.rate_limiting import RateLimiter


def test_reads_gitlab_headers_any_case():
    limiter = RateLimiter("test", min_interval=0)

    limiter.update_from_headers({"ratelimit-limit": "600", "RateLimit-Remaining": "590"})

    status = limiter.get_status()
    assert status["limit"] == 600
    assert status["remaining"] == 590
    assert limiter.throttle_delay == 0.0


def test_throttles_near_the_limit():
    limiter = RateLimiter("test", throttle_threshold=0.8, min_interval=0)

    limiter.update_from_headers({"RateLimit-Limit": "100", "RateLimit-Remaining": "10"})

    assert 0 < limiter.throttle_delay <= 2.0


def test_garbage_headers_are_ignored():
    limiter = RateLimiter("test", default_limit=50, min_interval=0)

    limiter.update_from_headers({"RateLimit-Limit": "unknown"})

    assert limiter.info.limit == 50


@patch("inventory_agent.rate_limiting.time.sleep")
def test_waits_for_reset_when_exhausted(mock_sleep):
    limiter = RateLimiter("test", min_interval=0)
    reset = int(time.time()) + 30
    limiter.update_from_headers({
        "RateLimit-Limit": "100",
        "RateLimit-Remaining": "0",
        "RateLimit-Reset": str(reset),
    })

    limiter.wait_if_needed()

    waited = mock_sleep.call_args_list[0][0][0]
    assert 20 < waited <= 32
    assert limiter.info.remaining == 100


@patch("inventory_agent.rate_limiting.time.sleep")
def test_no_wait_with_budget_left(mock_sleep):
    limiter = RateLimiter("test", min_interval=0)

    limiter.wait_if_needed()

    mock_sleep.assert_not_called()
    assert limiter.request_count == 1
