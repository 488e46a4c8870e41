"""Custom exception hierarchy for the ingestion pipeline.

All exceptions inherit from IngestError, enabling targeted handling
at pipeline boundaries while preserving specific failure context.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base exception for all ingestion pipeline errors."""

    def __init__(
        self,
        message: str,
        item_id: str | None = None,
        stage: str | None = None,
    ) -> None:
        self.item_id = item_id
        self.stage = stage
        super().__init__(message)

    def __str__(self) -> str:
        prefix = ""
        if self.item_id:
            prefix += f"[item={self.item_id}] "
        if self.stage:
            prefix += f"[stage={self.stage}] "
        return f"{prefix}{super().__str__()}"


class ConfigurationError(IngestError):
    """Raised for missing environment or an unresolvable discovery provider."""


class DependencyError(IngestError):
    """Raised when a downstream dependency fails its readiness probe."""

    def __init__(
        self, message: str, dependency: str, critical: bool = True
    ) -> None:
        self.dependency = dependency
        self.critical = critical
        super().__init__(message)


class HttpStatusError(IngestError):
    """Raised when an HTTP response carries a non-acceptable status."""

    def __init__(self, message: str, status_code: int, url: str = "") -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class FetchProcessError(IngestError):
    """Raised when the external yt-dlp process fails or yields unusable output."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        bytes_received: int = 0,
    ) -> None:
        self.exit_code = exit_code
        self.bytes_received = bytes_received
        super().__init__(message)


class TransferError(IngestError):
    """Raised when streaming a source into blob storage fails."""

    def __init__(self, message: str, key: str | None = None) -> None:
        self.key = key
        super().__init__(message, stage="transfer")


class StorageError(IngestError):
    """Raised when storage operations (S3 or the relational store) fail."""

    def __init__(
        self,
        message: str,
        item_id: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, item_id)


class TranscriptionError(IngestError):
    """Raised when the transcription provider fails."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(message, stage="transcription")


class DiscoveryError(IngestError):
    """Raised when a discovery provider fails at runtime."""

    def __init__(
        self,
        message: str,
        region: str | None = None,
        branch: str | None = None,
    ) -> None:
        self.region = region
        self.branch = branch
        super().__init__(message, stage="discovery")


class ItemProcessingError(IngestError):
    """A per-item stage failure, always chained to its original cause."""
