"""Abstract transcription provider interface.

Concrete implementations (e.g., Deepgram) subclass TranscriptionProvider.
Providers transcribe media by URL; the pipeline hands them a presigned
link to the stored object.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class TranscriptionResult:
    """Transcript text plus the provider's full response."""

    text: str
    language: str
    raw_payload: Any


class TranscriptionProvider(ABC):
    """Abstract base class for transcription providers.

    Subclasses must implement transcribe() and check_health().
    """

    name: str = ""

    @abstractmethod
    async def transcribe(self, media_url: str) -> TranscriptionResult:
        """Transcribe the media reachable at media_url.

        Args:
            media_url: URL the provider can fetch (typically presigned).

        Returns:
            TranscriptionResult with text, detected language and raw payload.
        """

    @abstractmethod
    async def check_health(self) -> None:
        """Raise if the provider is unreachable or rejects our credentials."""

    async def close(self) -> None:
        """Release any held connections."""
