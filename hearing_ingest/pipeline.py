"""Two-stage per-item processing: transfer, then transcription.

Each stage claims the item with a conditional status update, does its
work, and finalizes with another conditional update. Failures never
escape a stage: they are classified, recorded on the item, and returned
as a StageResult so the orchestrator can count them without inspecting
exceptions.

Transitions:
    transfer:       pending|failed -> downloading -> downloaded
    transcription:  downloaded|failed -> transcribing -> completed
    on failure:     active -> failed (retryable, retry_count + 1)
                    active -> permanent_failure (fatal)
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass

from hearing_ingest.observability.metrics import StageTimer
from hearing_ingest.storage.blob_client import BlobClient, build_object_key
from hearing_ingest.storage.schema import (
    IN_PROGRESS_STATUSES,
    TRANSFERRED_STATUSES,
    ItemStatus,
)
from hearing_ingest.storage.transcripts import TranscriptStore
from hearing_ingest.storage.work_items import WorkItem, WorkItemStore
from hearing_ingest.transcription.interface import TranscriptionProvider
from hearing_ingest.transfer.streamer import MediaTransfer
from hearing_ingest.utils.classify import FailureKind, classify
from hearing_ingest.utils.errors import ItemProcessingError, StorageError

logger = logging.getLogger(__name__)

TRANSFER_STAGE = "transfer"
TRANSCRIPTION_STAGE = "transcription"

MAX_ERROR_LENGTH = 2000


class StageOutcome(enum.Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StageResult:
    """What happened to one item in one stage."""

    stage: str
    outcome: StageOutcome
    item: WorkItem | None = None
    message: str = ""
    failure_kind: FailureKind | None = None
    error: ItemProcessingError | None = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome is StageOutcome.OK


class ItemPipeline:
    """Runs the transfer and transcription stages for one item at a time.

    Args:
        work_items: Work-item store.
        transcripts: Transcript store.
        blob_client: Destination bucket (keys and presigned URLs).
        transfer: Streaming transfer into the bucket.
        transcription_provider: Provider used for new transcripts.
        retry_ceiling: Items at or above this retry_count are never claimed.
        presigned_url_ttl: Lifetime of the URL handed to the provider.
    """

    def __init__(
        self,
        work_items: WorkItemStore,
        transcripts: TranscriptStore,
        blob_client: BlobClient,
        transfer: MediaTransfer,
        transcription_provider: TranscriptionProvider,
        retry_ceiling: int = 5,
        presigned_url_ttl: int = 21600,
    ) -> None:
        self.work_items = work_items
        self.transcripts = transcripts
        self.blob_client = blob_client
        self.transfer = transfer
        self.transcription_provider = transcription_provider
        self.retry_ceiling = retry_ceiling
        self.presigned_url_ttl = presigned_url_ttl

    async def process(self, item_id: uuid.UUID) -> StageResult:
        """Run both stages; returns the transfer result if it did not succeed."""
        transfer_result = await self.transfer_stage(item_id)
        if not transfer_result.ok:
            return transfer_result
        return await self.transcription_stage(item_id)

    def _not_claimed(self, item_id: uuid.UUID, stage: str) -> StageResult:
        current = self.work_items.get(item_id)
        if current is None:
            logger.warning(
                "Item %s no longer exists, skipping",
                item_id,
                extra={"item_id": str(item_id), "stage": stage},
            )
            return StageResult(stage, StageOutcome.SKIPPED, message="item not found")
        return StageResult(
            stage,
            StageOutcome.SKIPPED,
            item=current,
            message=(
                f"not claimable (currently {current.status}, "
                f"{current.retry_count} retries)"
            ),
        )

    async def transfer_stage(self, item_id: uuid.UUID) -> StageResult:
        timer = StageTimer(TRANSFER_STAGE)
        with timer:
            result = await self._transfer(item_id)
        result.duration_seconds = timer.duration_seconds
        return result

    async def _transfer(self, item_id: uuid.UUID) -> StageResult:
        claimed = self.work_items.claim(
            item_id,
            ItemStatus.DOWNLOADING,
            [ItemStatus.PENDING, ItemStatus.FAILED],
            self.retry_ceiling,
        )
        if claimed is None:
            current = self.work_items.get(item_id)
            if (
                current is not None
                and current.storage_locator
                and ItemStatus(current.status) in TRANSFERRED_STATUSES
            ):
                return StageResult(
                    TRANSFER_STAGE,
                    StageOutcome.OK,
                    item=current,
                    message="already transferred",
                )
            return self._not_claimed(item_id, TRANSFER_STAGE)

        try:
            source_url = claimed.direct_media_url or claimed.source_page_url
            if not source_url:
                raise ValueError("Item has neither a media URL nor a page URL")
            key = build_object_key(
                claimed.region,
                claimed.source_branch,
                claimed.scheduled_date,
                claimed.slug,
            )
            locator = await self.transfer.transfer(source_url, key, claimed.source_branch)
        except Exception as exc:
            return self.handle_failure(claimed, TRANSFER_STAGE, exc)

        finalized = self.work_items.finalize(
            claimed.id,
            ItemStatus.DOWNLOADED,
            [ItemStatus.DOWNLOADING],
            storage_locator=locator,
            clear_error=True,
        )
        if finalized is None:
            # Reset by stuck-item recovery mid-transfer; the object is reused next run
            return self._not_claimed(item_id, TRANSFER_STAGE)
        logger.info(
            "Transferred %s",
            claimed.slug,
            extra={"item_id": str(claimed.id), "stage": TRANSFER_STAGE},
        )
        return StageResult(TRANSFER_STAGE, StageOutcome.OK, item=finalized)

    async def transcription_stage(self, item_id: uuid.UUID) -> StageResult:
        timer = StageTimer(TRANSCRIPTION_STAGE)
        with timer:
            result = await self._transcribe(item_id)
        result.duration_seconds = timer.duration_seconds
        return result

    def _already_completed(self, item_id: uuid.UUID) -> StageResult:
        current = self.work_items.get(item_id)
        if current is not None and current.status == ItemStatus.COMPLETED.value:
            return StageResult(
                TRANSCRIPTION_STAGE,
                StageOutcome.OK,
                item=current,
                message="already completed",
            )
        return self._not_claimed(item_id, TRANSCRIPTION_STAGE)

    async def _transcribe(self, item_id: uuid.UUID) -> StageResult:
        if self.transcripts.has_text(item_id):
            finalized = self.work_items.finalize(
                item_id,
                ItemStatus.COMPLETED,
                [ItemStatus.DOWNLOADED],
                clear_error=True,
            )
            if finalized is not None:
                return StageResult(
                    TRANSCRIPTION_STAGE,
                    StageOutcome.OK,
                    item=finalized,
                    message="transcript already present",
                )
            current = self.work_items.get(item_id)
            if current is None or current.status != ItemStatus.FAILED.value:
                return self._already_completed(item_id)

        claimed = self.work_items.claim(
            item_id,
            ItemStatus.TRANSCRIBING,
            [ItemStatus.DOWNLOADED, ItemStatus.FAILED],
            self.retry_ceiling,
        )
        if claimed is None:
            return self._already_completed(item_id)

        if not claimed.storage_locator:
            error = StorageError(
                "Claimed for transcription without a storage locator",
                item_id=str(claimed.id),
                operation="transcription_claim",
            )
            return self.handle_failure(
                claimed, TRANSCRIPTION_STAGE, error, kind=FailureKind.RETRYABLE
            )

        provider = self.transcription_provider
        try:
            key = self.blob_client.key_from_locator(claimed.storage_locator)
            media_url = self.blob_client.presigned_url(key, self.presigned_url_ttl)
            transcription = await provider.transcribe(media_url)
            self.transcripts.upsert(
                claimed.id,
                provider=provider.name,
                language=transcription.language,
                text=transcription.text,
                raw_payload=transcription.raw_payload,
            )
        except Exception as exc:
            return self.handle_failure(claimed, TRANSCRIPTION_STAGE, exc)

        finalized = self.work_items.finalize(
            claimed.id,
            ItemStatus.COMPLETED,
            [ItemStatus.TRANSCRIBING],
            clear_error=True,
        )
        if finalized is None:
            return self._not_claimed(item_id, TRANSCRIPTION_STAGE)
        logger.info(
            "Transcribed %s (%d characters)",
            claimed.slug,
            len(transcription.text),
            extra={"item_id": str(claimed.id), "stage": TRANSCRIPTION_STAGE},
        )
        return StageResult(TRANSCRIPTION_STAGE, StageOutcome.OK, item=finalized)

    def handle_failure(
        self,
        item: WorkItem,
        stage: str,
        error: Exception,
        kind: FailureKind | None = None,
    ) -> StageResult:
        """Record a stage failure on the item and describe it.

        Retryable failures move the item to failed and count a retry;
        fatal ones move it to permanent_failure. Either way the update only
        applies while the item is still in an active status.

        Args:
            item: The claimed item.
            stage: Stage name.
            error: The original exception.
            kind: Overrides classification when the caller already knows.

        Returns:
            A FAILED StageResult carrying an ItemProcessingError chained to
            error.
        """
        kind = kind or classify(error)
        wrapped = ItemProcessingError(
            f"{stage} failed: {error}", item_id=str(item.id), stage=stage
        )
        wrapped.__cause__ = error
        last_error = str(wrapped)[:MAX_ERROR_LENGTH]

        if kind is FailureKind.RETRYABLE:
            updated = self.work_items.finalize(
                item.id,
                ItemStatus.FAILED,
                IN_PROGRESS_STATUSES,
                last_error=last_error,
                increment_retry=True,
            )
        else:
            updated = self.work_items.finalize(
                item.id,
                ItemStatus.PERMANENT_FAILURE,
                IN_PROGRESS_STATUSES,
                last_error=last_error,
            )

        log = logger.warning if kind is FailureKind.RETRYABLE else logger.error
        log(
            "Item %s failed (%s): %s",
            item.slug,
            kind.value,
            error,
            exc_info=error,
            extra={"item_id": str(item.id), "stage": stage, "error": str(error)},
        )
        return StageResult(
            stage,
            StageOutcome.FAILED,
            item=updated or item,
            message=str(error),
            failure_kind=kind,
            error=wrapped,
        )
