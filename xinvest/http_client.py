"""Shared async HTTP client with semaphore control and bounded retries."""

import asyncio
import logging
import random
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

# Default concurrency cap when a caller does not bring its own semaphore
HTTP_SEMAPHORE = asyncio.Semaphore(10)

# Global HTTP client (for connection pooling)
_http_client: Optional[httpx.AsyncClient] = None


def create_http_client(timeout: float = 30) -> httpx.AsyncClient:
    """Build a pooled client with the limits used across the service."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
    )


def get_http_client(timeout: float = 30) -> httpx.AsyncClient:
    """Get or create global HTTP client."""
    global _http_client
    if _http_client is None:
        _http_client = create_http_client(timeout)
    return _http_client


async def close_http_client() -> None:
    """Close global HTTP client."""
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


def _backoff(attempt: int, factor: float) -> float:
    return factor * (2 ** attempt) + random.uniform(0, 0.2)


async def _request(
    method: str,
    url: str,
    *,
    client: Optional[httpx.AsyncClient],
    semaphore: Optional[asyncio.Semaphore],
    retries: int,
    backoff_factor: float,
    **kwargs: Any,
) -> httpx.Response:
    """
    Issue a request, retrying 429/5xx responses and connect/timeout errors.

    Client errors (4xx other than 429) are raised immediately via
    ``raise_for_status``; the last transport error is re-raised once the
    attempts are exhausted.
    """
    client = client or get_http_client()
    semaphore = semaphore or HTTP_SEMAPHORE
    attempts = max(1, retries)
    last_exception: Optional[Exception] = None

    async with semaphore:
        for attempt in range(attempts):
            is_last = attempt == attempts - 1
            try:
                logger.debug("HTTP %s attempt %d/%d: %s", method, attempt + 1, attempts, url)
                response = await client.request(method, url, **kwargs)

                if response.status_code == 429 and not is_last:
                    try:
                        wait_time = float(response.headers.get("Retry-After", "1"))
                    except ValueError:
                        wait_time = 1.0
                    logger.warning("Rate limited (429) on %s. Retrying after %.1f seconds...", url, wait_time)
                    await asyncio.sleep(wait_time)
                    continue

                if response.status_code >= 500 and not is_last:
                    wait_time = _backoff(attempt, backoff_factor)
                    logger.warning(
                        "Server error (%d) on %s. Retrying in %.2f seconds...",
                        response.status_code,
                        url,
                        wait_time,
                    )
                    await asyncio.sleep(wait_time)
                    continue

                response.raise_for_status()
                logger.debug("HTTP %s success: %s", method, url)
                return response

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_exception = exc
                if is_last:
                    logger.error("HTTP %s failed after %d attempts: %s", method, attempts, exc)
                    break
                wait_time = _backoff(attempt, backoff_factor)
                logger.warning(
                    "HTTP %s error on attempt %d: %s. Retrying in %.2f seconds...",
                    method,
                    attempt + 1,
                    exc,
                    wait_time,
                )
                await asyncio.sleep(wait_time)

    if last_exception:
        raise last_exception
    raise httpx.NetworkError(f"HTTP {method} failed: max retries exceeded")


async def http_get(
    url: str,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = 30,
    retries: int = 3,
    backoff_factor: float = 0.5,
    client: Optional[httpx.AsyncClient] = None,
    semaphore: Optional[asyncio.Semaphore] = None,
) -> httpx.Response:
    """
    GET request with semaphore + exponential backoff retry.

    Args:
        url: URL to fetch
        params: Query parameters
        headers: Custom headers
        timeout: Request timeout in seconds
        retries: Total number of attempts
        backoff_factor: Base delay for exponential backoff
        client: Client to use instead of the shared global one
        semaphore: Concurrency guard to use instead of the module default

    Returns:
        httpx.Response object

    Raises:
        httpx.HTTPError on persistent failure
    """
    return await _request(
        "GET",
        url,
        client=client,
        semaphore=semaphore,
        retries=retries,
        backoff_factor=backoff_factor,
        params=params,
        headers=headers,
        timeout=timeout,
        follow_redirects=True,
    )


async def http_post(
    url: str,
    json: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = 30,
    retries: int = 3,
    backoff_factor: float = 0.5,
    client: Optional[httpx.AsyncClient] = None,
    semaphore: Optional[asyncio.Semaphore] = None,
) -> httpx.Response:
    """POST request with semaphore + exponential backoff retry (see ``http_get``)."""
    return await _request(
        "POST",
        url,
        client=client,
        semaphore=semaphore,
        retries=retries,
        backoff_factor=backoff_factor,
        json=json,
        headers=headers,
        timeout=timeout,
    )
