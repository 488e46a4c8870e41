"""Deepgram prerecorded transcription over the REST API.

Deepgram fetches the media itself from the URL we pass, so no bytes flow
through this process.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from hearing_ingest.transcription.interface import (
    TranscriptionProvider,
    TranscriptionResult,
)
from hearing_ingest.utils.errors import HttpStatusError, TranscriptionError
from hearing_ingest.utils.http import fetch_with_retry

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.deepgram.com/v1"
DEFAULT_MODEL = "nova-3"
DEFAULT_LANGUAGE = "en"
# Hour-long hearings take minutes to transcribe synchronously
TRANSCRIBE_TIMEOUT = httpx.Timeout(900.0, connect=10.0)


class DeepgramProvider(TranscriptionProvider):
    """Deepgram nova transcription with smart formatting and punctuation.

    Args:
        api_key: Deepgram API key.
        model: Deepgram model name (default "nova-3").
        base_url: API base URL (default production endpoint).
        http_client: Optional shared client; one is created if omitted.
    """

    name = "deepgram"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Token {self._api_key}"}

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def transcribe(self, media_url: str) -> TranscriptionResult:
        """Transcribe a remote media URL.

        Raises:
            TranscriptionError: On an HTTP failure (status_code set when the
                API answered) or an unparseable response.
        """
        params = {
            "model": self._model,
            "smart_format": "true",
            "punctuate": "true",
        }
        try:
            response = await fetch_with_retry(
                self._client,
                "POST",
                f"{self._base_url}/listen",
                params=params,
                headers=self._headers(),
                json={"url": media_url},
                timeout=TRANSCRIBE_TIMEOUT,
            )
        except HttpStatusError as exc:
            raise TranscriptionError(
                f"Deepgram request failed: {exc}",
                provider=self.name,
                status_code=exc.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise TranscriptionError(
                f"Deepgram request failed: {exc}", provider=self.name
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise TranscriptionError(
                "Deepgram returned a non-JSON response", provider=self.name
            ) from exc

        result = _parse_payload(payload)
        logger.info(
            "Deepgram transcription finished: %d characters, language %s",
            len(result.text),
            result.language,
        )
        return result

    async def check_health(self) -> None:
        """List projects to confirm the key is accepted.

        Raises:
            TranscriptionError: If the API is unreachable or rejects the key.
        """
        try:
            await fetch_with_retry(
                self._client,
                "GET",
                f"{self._base_url}/projects",
                headers=self._headers(),
                max_attempts=1,
            )
        except HttpStatusError as exc:
            raise TranscriptionError(
                f"Deepgram health check failed: {exc}",
                provider=self.name,
                status_code=exc.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise TranscriptionError(
                f"Deepgram health check failed: {exc}", provider=self.name
            ) from exc


def _parse_payload(payload: Any) -> TranscriptionResult:
    """Pull transcript text and detected language out of a listen response."""
    if not isinstance(payload, dict):
        raise TranscriptionError(
            "Deepgram response is not a JSON object", provider="deepgram"
        )
    channels = (payload.get("results") or {}).get("channels") or [{}]
    alternatives = channels[0].get("alternatives") or [{}]
    text = alternatives[0].get("transcript") or ""
    metadata = payload.get("metadata") or {}
    language = (
        channels[0].get("detected_language")
        or metadata.get("detected_language")
        or DEFAULT_LANGUAGE
    )
    return TranscriptionResult(text=text, language=language, raw_payload=payload)
