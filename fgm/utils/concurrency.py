"""Bounded fan-out helpers for batch API work.

Batch commands (image export, cache warm-up) issue many requests against a
single :class:`~fgm.api.client.FigmaClient`.  The client's rate limiter
already backs off on 429 responses; these helpers additionally cap how many
requests are in flight at once so a large batch does not burn through the
server's quota in one burst.

Two patterns are exposed:

1. **throttled_gather** -- ``asyncio.gather`` with every awaitable wrapped in
   a semaphore acquire/release.

2. **parallel_fetch** -- fan out one fetch function over many argument dicts,
   log failures, and return the successful results in input order.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from fgm.utils.logging import get_logger

_T = TypeVar("_T")

DEFAULT_CONCURRENCY = 4

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    return_exceptions: bool = True,
    limit: int = DEFAULT_CONCURRENCY,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with at most ``limit`` in flight.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional semaphore to share a limit across several gathers.  When
        omitted a fresh one of size ``limit`` is created for this call.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.
    limit:
        Concurrency cap used when no semaphore is given.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        semaphore = asyncio.Semaphore(max(1, limit))

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


async def parallel_fetch(
    fetch_fn: Callable[..., Awaitable[Any]],
    calls: list[dict[str, Any]],
    logger: structlog.BoundLogger | None = None,
    error_msg: str = "fetch_failed",
    limit: int = DEFAULT_CONCURRENCY,
) -> list[tuple[dict[str, Any], Any]]:
    """Execute ``fetch_fn(**call)`` for every call with bounded concurrency.

    Failures are logged and dropped; partial results are still returned.

    Returns
    -------
    list[tuple[dict, Any]]
        ``(call, result)`` pairs for the calls that succeeded, in input order.
    """
    if logger is None:
        logger = _logger

    coros = [fetch_fn(**c) for c in calls]
    raw_results = await throttled_gather(coros, return_exceptions=True, limit=limit)

    succeeded: list[tuple[dict[str, Any], Any]] = []
    for idx, result in enumerate(raw_results):
        if isinstance(result, BaseException):
            logger.warning(error_msg, call=calls[idx], error=str(result))
        else:
            succeeded.append((calls[idx], result))

    return succeeded
