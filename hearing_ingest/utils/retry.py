"""Retry utility with capped exponential backoff and jitter.

with_backoff() drives an async operation; retry_with_backoff() is the
decorator form. Attempts are counted from 1 and include the first call.
The delay before retry n is min(base_delay * 2^(n-1), max_delay) plus up
to 100ms of jitter.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY = 0.5
DEFAULT_MAX_DELAY = 10.0
MAX_JITTER = 0.1


def compute_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Pre-jitter delay in seconds after the given (1-based) failed attempt."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


async def with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    should_retry: Callable[[Exception], bool] | None = None,
) -> T:
    """Invoke an async operation, retrying failures with exponential backoff.

    Args:
        operation: Zero-argument callable returning an awaitable.
        max_attempts: Total attempts including the first (default 5).
        base_delay: Delay in seconds before the first retry (default 0.5).
        max_delay: Upper bound on the pre-jitter delay (default 10.0).
        should_retry: Optional predicate; when it returns False the error is
            re-raised immediately. If None, every exception is retried.

    Returns:
        The operation's result.

    Raises:
        The last exception, unchanged, once attempts are exhausted or
        should_retry rejects it.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= max_attempts:
                raise
            if should_retry is not None and not should_retry(exc):
                raise
            delay = compute_delay(attempt, base_delay, max_delay)
            delay += random.uniform(0, MAX_JITTER)
            logger.warning(
                "Retry %d/%d for %s after %.2fs: %s",
                attempt,
                max_attempts - 1,
                getattr(operation, "__name__", "operation"),
                delay,
                exc,
            )
            await asyncio.sleep(delay)
            attempt += 1


def retry_with_backoff(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    should_retry: Callable[[Exception], bool] | None = None,
) -> Callable:
    """Decorator for retrying async functions with exponential backoff.

    Args:
        max_attempts: Total attempts including the first call.
        base_delay: Delay in seconds before the first retry.
        max_delay: Upper bound on the pre-jitter delay.
        should_retry: Optional predicate selecting retryable exceptions.

    Returns:
        Decorator that wraps an async function with retry logic.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            async def attempt_call() -> Any:
                return await func(*args, **kwargs)

            attempt_call.__name__ = func.__name__
            return await with_backoff(
                attempt_call,
                max_attempts=max_attempts,
                base_delay=base_delay,
                max_delay=max_delay,
                should_retry=should_retry,
            )

        return wrapper

    return decorator
