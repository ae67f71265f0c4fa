"""
Rate-limit aware request helper for the Shopify Admin API.
Batches are throttled: every attempt waits first (500 ms, then 1000 * 2**retries ms after a 429).
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

logger = logging.getLogger(__name__)

FIRST_ATTEMPT_DELAY = 0.5  # seconds
RETRY_BACKOFF_BASE = 1.0  # seconds
DEFAULT_MAX_RETRIES = 3
RATE_LIMITED = 429

Sleep = Callable[[float], Awaitable[Any]]


def backoff_delay(retries: int) -> float:
    """Delay before an attempt, given how many 429 retries already happened."""
    if retries <= 0:
        return FIRST_ATTEMPT_DELAY
    return RETRY_BACKOFF_BASE * (2 ** retries)


@dataclass
class RetryResult:
    response: Optional[httpx.Response]
    retries: int = 0

    @property
    def ok(self) -> bool:
        return self.response is not None and self.response.is_success

    @property
    def rate_limited(self) -> bool:
        return self.response is not None and self.response.status_code == RATE_LIMITED


async def request_with_backoff(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    sleep: Sleep = asyncio.sleep,
    on_rate_limited: Optional[Callable[[int, int], None]] = None,
    **kwargs: Any,
) -> RetryResult:
    """
    Perform a request, retrying only on HTTP 429, at most max_retries times.
    Any other status is returned as-is on the first attempt; transport errors propagate.
    on_rate_limited(retry, max_retries) is called for every 429 that will be retried.
    """
    retries = 0
    while True:
        await sleep(backoff_delay(retries))
        resp = await client.request(method, url, **kwargs)
        if resp.status_code != RATE_LIMITED:
            return RetryResult(response=resp, retries=retries)
        retries += 1
        if retries > max_retries:
            logger.warning("HTTP %s %s still rate limited after %s retries", method, url, max_retries)
            return RetryResult(response=resp, retries=max_retries)
        logger.info("HTTP %s %s rate limited, retry %s/%s", method, url, retries, max_retries)
        if on_rate_limited:
            on_rate_limited(retries, max_retries)


async def get_with_backoff(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: Optional[dict] = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    sleep: Sleep = asyncio.sleep,
    on_rate_limited: Optional[Callable[[int, int], None]] = None,
) -> RetryResult:
    """GET with the 429 backoff policy."""
    return await request_with_backoff(
        client, "GET", url, params=params, max_retries=max_retries, sleep=sleep, on_rate_limited=on_rate_limited
    )
