"""Mini README: Bounded retry with exponential backoff for ledger reads.

Structure:
    * fetch_with_retry - await a zero-argument coroutine factory, retrying
      ``LedgerUnavailableError`` failures a limited number of times.

Only backend availability failures are retried. Validation problems and
cancellations propagate immediately so a timed-out recomputation really
stops.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from ..errors import LedgerUnavailableError, TransientFetchError
from ..logging_utils import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")


async def fetch_with_retry(
    fetch: Callable[[], Awaitable[T]],
    *,
    context: str,
    max_retries: int = 2,
    retry_delay: float = 0.5,
) -> T:
    """Run ``fetch`` until it succeeds or ``max_retries`` retries are spent."""

    attempts = max_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            return await fetch()
        except LedgerUnavailableError as error:
            if attempt == attempts:
                LOGGER.error("Fetching %s failed after %s attempt(s): %s", context, attempt, error)
                raise TransientFetchError(context, attempt, error) from error
            delay = retry_delay * (2 ** (attempt - 1))
            LOGGER.warning(
                "Fetching %s failed (attempt %s/%s), retrying in %.2fs: %s",
                context,
                attempt,
                attempts,
                delay,
                error,
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover
