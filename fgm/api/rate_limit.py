"""Rate limiting and retry policy for the Figma API.

:class:`RateLimiter` is a small state holder plus delay policy: it remembers
what the server last said about our quota (``X-RateLimit-Remaining``,
``Retry-After``) and how many times in a row we have been told to back off,
and computes how long to wait next.  The retry loop itself lives in
:meth:`fgm.api.client.FigmaClient.execute_request`, which is the only
caller that mutates a shared limiter and does so under its own lock.

Backoff is exponential with jitter::

    delay = min(base_delay * 2 ** retry_count, max_delay)
    delay += uniform(0, 0.25) * delay

unless the server sent ``Retry-After``, in which case that value is used
verbatim.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Callable

import httpx

from fgm.utils.logging import get_logger

_logger = get_logger(__name__)

_REMAINING_HEADER = "X-RateLimit-Remaining"
_RETRY_AFTER_HEADER = "Retry-After"
_TOO_MANY_REQUESTS = 429

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY_MS = 1000       # 1 second
DEFAULT_MAX_DELAY_MS = 120_000     # 2 minutes
THROTTLE_THRESHOLD = 10            # remaining requests below which we slow down
PROACTIVE_DELAY_MS = 500
JITTER_FRACTION = 0.25


@dataclass(frozen=True)
class RateLimitInfo:
    """What one response told us about rate limiting."""

    # Remaining requests before the limit, if the server reported it.
    remaining: int | None
    # Seconds to wait before retrying, if the server reported it.
    retry_after: int | None
    is_rate_limited: bool


def _parse_int_header(response: httpx.Response, name: str) -> int | None:
    raw = response.headers.get(name)
    if raw is None:
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        return None
    return value if value >= 0 else None


class RateLimiter:
    """Per-client rate-limit state and backoff policy.

    Not safe for unsynchronized concurrent mutation; share one instance
    behind a lock (the client does).

    Parameters
    ----------
    max_retries:
        Consecutive 429 responses tolerated before giving up.
    base_delay_ms:
        Delay before the first retry, in milliseconds.
    max_delay_ms:
        Cap on the exponential delay (before jitter), in milliseconds.
    random_fn:
        Source of uniform floats in ``[0, 1)`` for jitter.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
        random_fn: Callable[[], float] = random.random,
    ) -> None:
        self._max_retries = max_retries
        self._base_delay_ms = base_delay_ms
        self._max_delay_ms = max_delay_ms
        self._random = random_fn
        self._retry_count = 0
        self._remaining: int | None = None
        self._retry_after: int | None = None

    @classmethod
    def with_config(
        cls, max_retries: int, base_delay_ms: int, max_delay_ms: int
    ) -> RateLimiter:
        return cls(
            max_retries=max_retries,
            base_delay_ms=base_delay_ms,
            max_delay_ms=max_delay_ms,
        )

    # -- State -----------------------------------------------------------------

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def remaining(self) -> int | None:
        return self._remaining

    @property
    def retry_after(self) -> int | None:
        return self._retry_after

    def parse_headers(self, response: httpx.Response) -> RateLimitInfo:
        """Record the quota headers of *response* and classify it.

        Missing or malformed headers simply clear the corresponding state;
        not every response carries them.
        """
        self._remaining = _parse_int_header(response, _REMAINING_HEADER)
        self._retry_after = _parse_int_header(response, _RETRY_AFTER_HEADER)
        return RateLimitInfo(
            remaining=self._remaining,
            retry_after=self._retry_after,
            is_rate_limited=self.is_rate_limit_response(response),
        )

    def reset(self) -> None:
        """Forget the failure streak after a non-rate-limited response."""
        self._retry_count = 0
        self._retry_after = None

    # -- Policy ----------------------------------------------------------------

    def should_throttle(self) -> bool:
        """``True`` when the server says we are close to the limit."""
        return self._remaining is not None and self._remaining < THROTTLE_THRESHOLD

    def proactive_delay_seconds(self) -> float:
        """Pause to take before the next request (``0.0`` when not throttling)."""
        return PROACTIVE_DELAY_MS / 1000 if self.should_throttle() else 0.0

    def calculate_delay(self) -> float:
        """Seconds to wait before the next retry.

        ``Retry-After`` from the server wins outright.  Otherwise
        ``min(base * 2**retry_count, max)`` plus up to 25% jitter.
        """
        if self._retry_after is not None:
            return float(self._retry_after)

        exp_delay_ms = self._base_delay_ms * (2 ** self._retry_count)
        capped_ms = min(exp_delay_ms, self._max_delay_ms)
        jitter_ms = self._random() * JITTER_FRACTION * capped_ms
        return (capped_ms + jitter_ms) / 1000

    def next_retry_delay(self) -> float | None:
        """Reserve the next retry and return how long to wait before it.

        Returns ``None`` (and leaves state untouched) once ``max_retries``
        has been reached.  Does not sleep, so it can run under a lock.
        """
        if self._retry_count >= self._max_retries:
            return None
        delay = self.calculate_delay()
        self._retry_count += 1
        return delay

    # -- Suspending helpers ----------------------------------------------------

    async def proactive_delay(self) -> None:
        delay = self.proactive_delay_seconds()
        if delay:
            await asyncio.sleep(delay)

    async def wait_and_retry(self) -> bool:
        """Sleep for the backoff delay and count the retry.

        Returns ``False`` without sleeping when retries are exhausted.
        """
        if self._retry_count >= self._max_retries:
            return False
        delay = self.calculate_delay()
        _logger.warning(
            "rate_limited",
            wait_s=round(delay, 2),
            attempt=self._retry_count + 1,
            max_retries=self._max_retries,
        )
        await asyncio.sleep(delay)
        self._retry_count += 1
        return True

    # -- Classification --------------------------------------------------------

    @staticmethod
    def is_rate_limit_response(response: httpx.Response) -> bool:
        return response.status_code == _TOO_MANY_REQUESTS

    @staticmethod
    def is_rate_limit_error(error_msg: str) -> bool:
        """Heuristic for error messages from layers that lost the status code."""
        return "rate limit" in error_msg.lower()
