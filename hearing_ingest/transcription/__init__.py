"""Transcription providers."""

from hearing_ingest.transcription.interface import (
    TranscriptionProvider,
    TranscriptionResult,
)
from hearing_ingest.transcription.registry import get_transcription_provider

__all__ = [
    "TranscriptionProvider",
    "TranscriptionResult",
    "get_transcription_provider",
]
