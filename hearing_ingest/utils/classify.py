"""Retryable vs fatal error classification.

Every outbound call (HTTP probes, yt-dlp, S3, the transcription provider)
funnels its failures through classify() so the pipeline decides in one
place whether an item is worth another attempt.

Classification order:
    1. Status code from structured fields, else "status NNN" in the text.
    2. With a code: 408/425/429/499 and all 5xx are retryable, other 4xx fatal.
    3. Known fatal yt-dlp output ("HTTP Error 404" and friends).
    4. Known transient network failures (httpx and botocore transport
       errors included) are retryable.
    5. Anything else is fatal.
"""

from __future__ import annotations

import asyncio
import enum
import re
from collections.abc import Mapping
from typing import Any

import httpx
from botocore.exceptions import ConnectionError as BotoConnectionError
from botocore.exceptions import HTTPClientError

RETRYABLE_CLIENT_STATUSES = frozenset({408, 425, 429, 499})

_STATUS_PATTERN = re.compile(r"status (\d+)", re.IGNORECASE)

_FATAL_PATTERNS = (
    re.compile(r"HTTP Error (400|401|403|404|410)\b", re.IGNORECASE),
)

_TRANSIENT_SUBSTRINGS = (
    "econnreset",
    "connection reset",
    "etimedout",
    "timed out",
    "timeout",
    "eai_again",
    "temporary failure in name resolution",
    "econnrefused",
    "connection refused",
    "fetch failed",
    "socket hang up",
    "network is unreachable",
)


class FailureKind(enum.Enum):
    """Outcome of classifying a failure."""

    RETRYABLE = "retryable"
    FATAL = "fatal"


def _coerce_status(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def extract_status_code(error: Any) -> int | None:
    """Pull an HTTP status code out of an error, if it carries one.

    Looks at structured fields first (``status_code``, ``status``, an httpx
    ``response`` or a botocore ``ResponseMetadata``), then falls back to a
    ``status NNN`` pattern in the error text.
    """
    if isinstance(error, Mapping):
        for key in ("status_code", "status"):
            code = _coerce_status(error.get(key))
            if code is not None:
                return code
        return None

    for attr in ("status_code", "status"):
        code = _coerce_status(getattr(error, attr, None))
        if code is not None:
            return code

    response = getattr(error, "response", None)
    if isinstance(response, httpx.Response):
        return response.status_code
    if isinstance(response, Mapping):
        metadata = response.get("ResponseMetadata", {})
        code = _coerce_status(metadata.get("HTTPStatusCode"))
        if code is not None:
            return code

    match = _STATUS_PATTERN.search(str(error))
    if match:
        return int(match.group(1))
    return None


def classify_status(status_code: int) -> FailureKind:
    """Classify a bare HTTP status code."""
    if status_code in RETRYABLE_CLIENT_STATUSES or 500 <= status_code < 600:
        return FailureKind.RETRYABLE
    return FailureKind.FATAL


def _cause_chain(error: Any, max_depth: int = 5) -> list[Any]:
    # Wrapped errors keep the original failure on __cause__
    chain = [error]
    cause = getattr(error, "__cause__", None)
    while cause is not None and len(chain) <= max_depth:
        chain.append(cause)
        cause = getattr(cause, "__cause__", None)
    return chain


def classify(error: Any) -> FailureKind:
    """Decide whether a failure is transient (retryable) or fatal."""
    chain = _cause_chain(error)

    for link in chain:
        status_code = extract_status_code(link)
        if status_code is not None:
            return classify_status(status_code)

    transient_types = (
        httpx.TransportError,
        asyncio.TimeoutError,
        ConnectionError,
        BotoConnectionError,
        HTTPClientError,
    )
    if any(isinstance(link, transient_types) for link in chain):
        return FailureKind.RETRYABLE

    text = " | ".join(str(link) for link in chain)
    for pattern in _FATAL_PATTERNS:
        if pattern.search(text):
            return FailureKind.FATAL

    lowered = text.lower()
    if any(fragment in lowered for fragment in _TRANSIENT_SUBSTRINGS):
        return FailureKind.RETRYABLE

    return FailureKind.FATAL


def is_retryable(error: Any) -> bool:
    """Return True when another attempt at the failed operation may succeed."""
    return classify(error) is FailureKind.RETRYABLE
