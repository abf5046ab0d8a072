"""
Fetch helpers with timeout and bounded exponential-backoff retry.

Only 5xx responses, timeouts and network errors are retried; 4xx responses
are returned to the caller immediately.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from ..exceptions import FetchTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
DEFAULT_MAX_RETRIES = 3
BASE_BACKOFF_SECONDS = 0.1


def is_retryable_status(status_code: int) -> bool:
    return 500 <= status_code < 600


def backoff_delay(attempt: int) -> float:
    """Delay before the retry that follows ``attempt`` (0-based): 100ms, 200ms, 400ms..."""
    return BASE_BACKOFF_SECONDS * (2 ** attempt)


async def fetch_with_timeout(
    url: str,
    method: str = "GET",
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_TIMEOUT,
    **request_kwargs: Any,
) -> httpx.Response:
    """
    Single request that is cancelled after ``timeout`` seconds.

    Raises asyncio.TimeoutError when the deadline passes.
    """
    if client is not None:
        return await asyncio.wait_for(client.request(method, url, **request_kwargs), timeout)

    async with httpx.AsyncClient() as owned_client:
        return await asyncio.wait_for(
            owned_client.request(method, url, **request_kwargs), timeout
        )


async def fetch_with_retry(
    url: str,
    method: str = "GET",
    *,
    client: Optional[httpx.AsyncClient] = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    timeout: float = DEFAULT_TIMEOUT,
    retry_on_5xx: bool = True,
    retry_on_timeout: bool = True,
    **request_kwargs: Any,
) -> httpx.Response:
    """
    Make an HTTP request with timeout and retry.

    Args:
        url: Request URL
        method: HTTP method
        client: Optional shared client; a temporary one is created otherwise
        max_retries: Total number of attempts
        timeout: Per-attempt timeout in seconds
        retry_on_5xx: Retry when the server answers 5xx
        retry_on_timeout: Retry on timeouts and network errors

    Returns:
        The first non-5xx response, or the last 5xx response once attempts
        are exhausted.

    Raises:
        FetchTimeoutError: every attempt timed out or failed at the network level
    """
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")

    if client is None:
        async with httpx.AsyncClient() as owned_client:
            return await fetch_with_retry(
                url,
                method,
                client=owned_client,
                max_retries=max_retries,
                timeout=timeout,
                retry_on_5xx=retry_on_5xx,
                retry_on_timeout=retry_on_timeout,
                **request_kwargs,
            )

    last_error: Optional[BaseException] = None
    last_response: Optional[httpx.Response] = None

    for attempt in range(max_retries):
        is_last_attempt = attempt == max_retries - 1
        try:
            response = await fetch_with_timeout(
                url, method, client=client, timeout=timeout, **request_kwargs
            )
        except (asyncio.TimeoutError, httpx.TimeoutException, httpx.TransportError) as e:
            last_error = e
            logger.warning(
                f"{method} {url} failed on attempt {attempt + 1}/{max_retries}: {type(e).__name__}"
            )
            if not retry_on_timeout or is_last_attempt:
                break
            await asyncio.sleep(backoff_delay(attempt))
            continue

        if is_retryable_status(response.status_code) and retry_on_5xx:
            last_response = response
            if is_last_attempt:
                logger.warning(
                    f"{method} {url} still returning {response.status_code} after {max_retries} attempts"
                )
                return response
            logger.debug(
                f"{method} {url} returned {response.status_code}, retrying (attempt {attempt + 1}/{max_retries})"
            )
            await asyncio.sleep(backoff_delay(attempt))
            continue

        return response

    if last_response is not None and last_error is None:
        return last_response

    raise FetchTimeoutError(url, attempt + 1) from last_error
