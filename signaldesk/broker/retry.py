"""Exponential-backoff retry for connection reads."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from signaldesk.errors import DataUnavailableError

logger = logging.getLogger("signaldesk.retry")

T = TypeVar("T")

# Retry settings
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds; doubles each attempt


async def fetch_with_retry(
    fetch: Callable[[], Awaitable[T]],
    what: str = "market data",
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_DELAY,
) -> T:
    """Await *fetch* up to *max_retries* times with exponential backoff.

    The wait before the next attempt is ``base_delay * 2 ** attempt``.
    After the last failed attempt a ``DataUnavailableError`` is raised,
    chained to the final underlying exception.
    """
    last_exc: Optional[Exception] = None

    for attempt in range(max_retries):
        try:
            return await fetch()
        except Exception as exc:
            last_exc = exc
            if attempt == max_retries - 1:
                break
            delay = base_delay * (2 ** attempt)
            logger.warning(
                "Fetching %s failed (%s) — retry %d/%d in %.1fs",
                what, exc, attempt + 1, max_retries, delay,
            )
            await asyncio.sleep(delay)

    raise DataUnavailableError(
        f"Failed to fetch {what} after {max_retries} attempts: {last_exc}"
    ) from last_exc
