"""
Async retry utilities with exponential backoff.

Provides retry_with_backoff for resilient HTTP calls across all source adapters.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

import httpx

from scholar_search.exceptions import SourceRateLimited, SourceResponseError

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = (429, 503, 504)


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _backoff(attempt: int, base_delay: float, max_delay: float,
             exponential_base: float, jitter: bool) -> float:
    delay = min(base_delay * (exponential_base ** attempt), max_delay)
    if jitter:
        delay = delay * (0.5 + random.random())
    return delay


async def retry_with_backoff(
    func: Callable[[], Awaitable[httpx.Response]],
    source_id: str = "http",
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retry_on: tuple = RETRY_STATUS_CODES,
) -> httpx.Response:
    """
    Execute an async request with exponential backoff retry.

    Args:
        func: Async function to execute (should return httpx.Response)
        source_id: Adapter id used in raised errors and log lines
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        jitter: Add random jitter to prevent thundering herd
        retry_on: HTTP status codes to retry on

    Returns:
        The successful (2xx/3xx) response

    Raises:
        SourceRateLimited: 429 persisted through every retry
        SourceResponseError: any other error status, or transport failures
            that persisted through every retry
    """
    for attempt in range(max_retries + 1):
        try:
            response = await func()
        except httpx.HTTPError as e:
            if attempt < max_retries:
                delay = _backoff(attempt, base_delay, max_delay, exponential_base, jitter)
                logger.warning(
                    f"{source_id}: request error: {e}, retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{max_retries})"
                )
                await asyncio.sleep(delay)
                continue
            raise SourceResponseError(source_id, f"request failed: {e}") from e

        status = response.status_code
        if status in retry_on:
            retry_after = _retry_after(response)
            if attempt < max_retries:
                delay = _backoff(attempt, base_delay, max_delay, exponential_base, jitter)
                if retry_after:
                    delay = max(delay, retry_after)
                logger.warning(
                    f"{source_id}: request failed with {status}, "
                    f"retrying in {delay:.1f}s (attempt {attempt + 1}/{max_retries})"
                )
                await asyncio.sleep(delay)
                continue
            if status == 429:
                raise SourceRateLimited(source_id, retry_after)
            raise SourceResponseError(source_id, f"HTTP {status}", status_code=status)

        if status >= 400:
            # 4xx other than 429 will not improve on retry
            raise SourceResponseError(source_id, f"HTTP {status}", status_code=status)

        return response

    raise RuntimeError("Unexpected retry loop exit")
