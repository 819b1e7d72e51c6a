"""Unit tests for fgm.api.rate_limit.RateLimiter."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from fgm.api.rate_limit import RateLimiter


def _limiter(**kwargs) -> RateLimiter:
    kwargs.setdefault("random_fn", lambda: 0.0)
    return RateLimiter(**kwargs)


def _response(status: int = 200, **headers: str) -> httpx.Response:
    return httpx.Response(status, headers=headers)


# ======================================================================
# Header parsing
# ======================================================================


class TestParseHeaders:
    def test_reads_remaining_and_retry_after(self) -> None:
        limiter = _limiter()
        info = limiter.parse_headers(
            _response(429, **{"X-RateLimit-Remaining": "3", "Retry-After": "7"})
        )
        assert info.remaining == 3
        assert info.retry_after == 7
        assert info.is_rate_limited is True
        assert limiter.remaining == 3
        assert limiter.retry_after == 7

    def test_missing_headers(self) -> None:
        info = _limiter().parse_headers(_response(200))
        assert info.remaining is None
        assert info.retry_after is None
        assert info.is_rate_limited is False

    def test_malformed_headers_are_ignored(self) -> None:
        info = _limiter().parse_headers(
            _response(200, **{"X-RateLimit-Remaining": "lots", "Retry-After": "-4"})
        )
        assert info.remaining is None
        assert info.retry_after is None

    def test_later_response_clears_state(self) -> None:
        limiter = _limiter()
        limiter.parse_headers(_response(429, **{"Retry-After": "7"}))
        limiter.parse_headers(_response(200))
        assert limiter.retry_after is None


class TestClassification:
    def test_429_is_rate_limited(self) -> None:
        assert RateLimiter.is_rate_limit_response(_response(429)) is True

    @pytest.mark.parametrize("status", [200, 404, 500, 503])
    def test_other_statuses_are_not(self, status: int) -> None:
        assert RateLimiter.is_rate_limit_response(_response(status)) is False

    def test_error_message_heuristic(self) -> None:
        assert RateLimiter.is_rate_limit_error("Rate Limit exceeded") is True
        assert RateLimiter.is_rate_limit_error("not found") is False


# ======================================================================
# Throttling
# ======================================================================


class TestThrottle:
    def test_no_throttle_without_header(self) -> None:
        limiter = _limiter()
        assert limiter.should_throttle() is False
        assert limiter.proactive_delay_seconds() == 0.0

    def test_throttle_below_threshold(self) -> None:
        limiter = _limiter()
        limiter.parse_headers(_response(200, **{"X-RateLimit-Remaining": "9"}))
        assert limiter.should_throttle() is True
        assert limiter.proactive_delay_seconds() == 0.5

    def test_no_throttle_at_threshold(self) -> None:
        limiter = _limiter()
        limiter.parse_headers(_response(200, **{"X-RateLimit-Remaining": "10"}))
        assert limiter.should_throttle() is False

    @pytest.mark.asyncio
    async def test_proactive_delay_sleeps_when_throttled(self) -> None:
        limiter = _limiter()
        limiter.parse_headers(_response(200, **{"X-RateLimit-Remaining": "0"}))
        with patch("fgm.api.rate_limit.asyncio.sleep", new=AsyncMock()) as sleep:
            await limiter.proactive_delay()
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_proactive_delay_noop_otherwise(self) -> None:
        with patch("fgm.api.rate_limit.asyncio.sleep", new=AsyncMock()) as sleep:
            await _limiter().proactive_delay()
        sleep.assert_not_awaited()


# ======================================================================
# Backoff
# ======================================================================


class TestBackoff:
    def test_exponential_without_jitter(self) -> None:
        limiter = _limiter(max_retries=5, base_delay_ms=1000)
        delays = [limiter.next_retry_delay() for _ in range(3)]
        assert delays == [1.0, 2.0, 4.0]

    def test_jitter_bounds(self) -> None:
        low = _limiter(random_fn=lambda: 0.0)
        high = _limiter(random_fn=lambda: 0.999999)
        assert low.calculate_delay() == pytest.approx(1.0)
        assert 1.0 <= high.calculate_delay() < 1.25

    def test_real_jitter_stays_in_range(self) -> None:
        limiter = RateLimiter(base_delay_ms=1000)
        for _ in range(50):
            assert 1.0 <= limiter.calculate_delay() <= 1.25

    def test_capped_at_max_delay(self) -> None:
        limiter = _limiter(max_retries=20, base_delay_ms=1000, max_delay_ms=5000)
        for _ in range(10):
            limiter.next_retry_delay()
        assert limiter.calculate_delay() == 5.0

    def test_jitter_applies_after_cap(self) -> None:
        limiter = _limiter(
            max_retries=20, base_delay_ms=1000, max_delay_ms=5000, random_fn=lambda: 1.0
        )
        for _ in range(10):
            limiter.next_retry_delay()
        assert limiter.calculate_delay() == pytest.approx(6.25)

    def test_retry_after_overrides_backoff(self) -> None:
        limiter = _limiter(base_delay_ms=1000)
        limiter.next_retry_delay()
        limiter.next_retry_delay()
        limiter.parse_headers(_response(429, **{"Retry-After": "30"}))
        assert limiter.calculate_delay() == 30.0

    def test_exhaustion_returns_none_and_keeps_count(self) -> None:
        limiter = _limiter(max_retries=2)
        assert limiter.next_retry_delay() is not None
        assert limiter.next_retry_delay() is not None
        assert limiter.next_retry_delay() is None
        assert limiter.retry_count == 2

    def test_zero_retries(self) -> None:
        assert _limiter(max_retries=0).next_retry_delay() is None

    def test_reset_restarts_sequence(self) -> None:
        limiter = _limiter(base_delay_ms=1000)
        limiter.next_retry_delay()
        limiter.next_retry_delay()
        limiter.reset()
        assert limiter.retry_count == 0
        assert limiter.next_retry_delay() == 1.0

    def test_with_config(self) -> None:
        limiter = RateLimiter.with_config(max_retries=7, base_delay_ms=10, max_delay_ms=20)
        assert limiter.max_retries == 7
        assert limiter.calculate_delay() <= 0.025

    def test_defaults(self) -> None:
        limiter = RateLimiter()
        assert limiter.max_retries == 5
        assert limiter.retry_count == 0
        assert limiter.remaining is None


class TestWaitAndRetry:
    @pytest.mark.asyncio
    async def test_sleeps_and_counts(self) -> None:
        limiter = _limiter(max_retries=2, base_delay_ms=1000)
        with patch("fgm.api.rate_limit.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await limiter.wait_and_retry() is True
            assert await limiter.wait_and_retry() is True
            assert await limiter.wait_and_retry() is False
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]
        assert limiter.retry_count == 2
