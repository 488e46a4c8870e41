"""HTTP helpers that compose httpx with the retry and classification layer."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import httpx

from hearing_ingest.utils.classify import is_retryable
from hearing_ingest.utils.errors import HttpStatusError
from hearing_ingest.utils.retry import (
    DEFAULT_BASE_DELAY,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_DELAY,
    with_backoff,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36"
)


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


async def fetch_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    acceptable_status: Callable[[int], bool] = is_success,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    **request_kwargs: Any,
) -> httpx.Response:
    """Send an HTTP request, retrying transient failures.

    5xx responses, the retryable 4xx set (408, 425, 429, 499) and
    network-level errors are retried; any other non-acceptable status
    fails immediately.

    Args:
        client: Shared httpx.AsyncClient.
        method: HTTP method (e.g., "GET", "HEAD").
        url: Destination URL.
        acceptable_status: Predicate for statuses treated as success.
        max_attempts: Total attempts including the first.
        base_delay: Delay in seconds before the first retry.
        max_delay: Upper bound on the pre-jitter delay.
        **request_kwargs: Passed through to client.request().

    Returns:
        The first response whose status is acceptable.

    Raises:
        HttpStatusError: Non-acceptable status after retries (or at once
            when the status is fatal).
        httpx.TransportError: Network failure after retries.
    """
    request_kwargs.setdefault("timeout", DEFAULT_TIMEOUT)

    async def send() -> httpx.Response:
        response = await client.request(method, url, **request_kwargs)
        if not acceptable_status(response.status_code):
            raise HttpStatusError(
                f"{method} {url} failed with status {response.status_code}",
                status_code=response.status_code,
                url=url,
            )
        return response

    send.__name__ = f"{method} {url}"
    return await with_backoff(
        send,
        max_attempts=max_attempts,
        base_delay=base_delay,
        max_delay=max_delay,
        should_retry=is_retryable,
    )
