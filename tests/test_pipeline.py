"""Tests for hearing_ingest.pipeline.ItemPipeline on a SQLite store."""

from unittest.mock import MagicMock

import pytest
from conftest import make_record
from fakes import BUCKET_BASE, FakeProvider, FakeTransfer
from sqlalchemy import update

from hearing_ingest.pipeline import ItemPipeline, StageOutcome
from hearing_ingest.storage.schema import work_items as work_items_table
from hearing_ingest.utils.classify import FailureKind
from hearing_ingest.utils.errors import (
    ItemProcessingError,
    StorageError,
    TranscriptionError,
    TransferError,
)

KEY = "videos/MI/house/2025/12/mi-house-hagri-121125-2025-12-11.mp4"


def _force(engine, item_id, **values):
    with engine.begin() as conn:
        conn.execute(
            update(work_items_table).where(work_items_table.c.id == item_id).values(**values)
        )


@pytest.fixture
def blob_client():
    blob = MagicMock()
    blob.key_from_locator.side_effect = lambda locator: locator.removeprefix(BUCKET_BASE)
    blob.presigned_url.return_value = "https://signed.example.com/media"
    return blob


def _pipeline(work_items, transcripts, blob_client, transfer=None, provider=None):
    return ItemPipeline(
        work_items,
        transcripts,
        blob_client,
        transfer or FakeTransfer(),
        provider or FakeProvider(),
        retry_ceiling=5,
        presigned_url_ttl=600,
    )


class TestHappyPath:
    async def test_item_completed_end_to_end(self, work_items, transcripts, blob_client):
        item = work_items.upsert_discovered(make_record(), "MI", "house")
        transfer, provider = FakeTransfer(), FakeProvider()
        pipeline = _pipeline(work_items, transcripts, blob_client, transfer, provider)

        result = await pipeline.process(item.id)

        assert result.outcome is StageOutcome.OK
        assert result.stage == "transcription"
        stored = work_items.get(item.id)
        assert stored.status == "completed"
        assert stored.storage_locator == BUCKET_BASE + KEY
        assert stored.last_error is None
        assert transfer.calls == [(item.direct_media_url, KEY, "house")]
        assert provider.urls == ["https://signed.example.com/media"]
        blob_client.presigned_url.assert_called_once_with(KEY, 600)
        transcript = transcripts.get_for_item(item.id)
        assert transcript.text == "The committee will come to order."
        assert transcript.provider == "fake"

        again = await pipeline.process(item.id)

        assert again.ok
        assert len(transfer.calls) == 1
        assert len(provider.urls) == 1

    async def test_page_url_used_without_media_url(self, work_items, transcripts, blob_client):
        item = work_items.upsert_discovered(make_record(direct_media_url=None), "MI", "house")
        transfer = FakeTransfer()

        await _pipeline(work_items, transcripts, blob_client, transfer).transfer_stage(item.id)

        assert transfer.calls[0][0] == item.source_page_url

    async def test_empty_transcript_still_completes(self, work_items, transcripts, blob_client):
        item = work_items.upsert_discovered(make_record(), "MI", "house")
        pipeline = _pipeline(work_items, transcripts, blob_client, provider=FakeProvider(text=""))

        result = await pipeline.process(item.id)

        assert result.ok
        assert transcripts.get_for_item(item.id).text == ""


class TestIdempotency:
    async def test_transferred_item_not_downloaded_again(
        self, engine, work_items, transcripts, blob_client
    ):
        item = work_items.upsert_discovered(make_record(), "MI", "house")
        _force(engine, item.id, status="downloaded", storage_locator=BUCKET_BASE + KEY)
        transfer = FakeTransfer()
        pipeline = _pipeline(work_items, transcripts, blob_client, transfer)

        transfer_result = await pipeline.transfer_stage(item.id)
        result = await pipeline.transcription_stage(item.id)

        assert transfer_result.outcome is StageOutcome.OK
        assert transfer_result.message == "already transferred"
        assert transfer.calls == []
        assert result.ok
        assert work_items.get(item.id).status == "completed"

    async def test_existing_transcript_short_circuits(
        self, engine, work_items, transcripts, blob_client
    ):
        item = work_items.upsert_discovered(make_record(), "MI", "house")
        _force(engine, item.id, status="downloaded", storage_locator=BUCKET_BASE + KEY)
        transcripts.upsert(item.id, "deepgram", "en", "already here", {})
        provider = FakeProvider()

        result = await _pipeline(
            work_items, transcripts, blob_client, provider=provider
        ).transcription_stage(item.id)

        assert result.ok
        assert result.message == "transcript already present"
        assert provider.urls == []
        assert work_items.get(item.id).status == "completed"

    async def test_completed_item_reports_ok(self, engine, work_items, transcripts, blob_client):
        item = work_items.upsert_discovered(make_record(), "MI", "house")
        _force(engine, item.id, status="completed", storage_locator=BUCKET_BASE + KEY)
        transfer, provider = FakeTransfer(), FakeProvider()

        result = await _pipeline(
            work_items, transcripts, blob_client, transfer, provider
        ).process(item.id)

        assert result.ok
        assert transfer.calls == []
        assert provider.urls == []

    async def test_retry_exhausted_item_skipped(self, engine, work_items, transcripts, blob_client):
        item = work_items.upsert_discovered(make_record(), "MI", "house")
        _force(engine, item.id, status="failed", retry_count=5)
        transfer = FakeTransfer()

        result = await _pipeline(work_items, transcripts, blob_client, transfer).process(item.id)

        assert result.outcome is StageOutcome.SKIPPED
        assert "5 retries" in result.message
        assert transfer.calls == []


class TestFailures:
    async def test_retryable_transfer_failure(self, work_items, transcripts, blob_client):
        item = work_items.upsert_discovered(make_record(), "MI", "house")
        transfer = FakeTransfer(
            TransferError(f"Transfer to {KEY} failed: yt-dlp produced no output: timed out after 120s")
        )

        result = await _pipeline(work_items, transcripts, blob_client, transfer).process(item.id)

        assert result.outcome is StageOutcome.FAILED
        assert result.failure_kind is FailureKind.RETRYABLE
        assert result.stage == "transfer"
        stored = work_items.get(item.id)
        assert stored.status == "failed"
        assert stored.retry_count == 1
        assert stored.storage_locator is None
        assert "transfer failed" in stored.last_error

    async def test_fatal_transfer_failure(self, work_items, transcripts, blob_client):
        item = work_items.upsert_discovered(make_record(), "MI", "house")
        transfer = FakeTransfer(TransferError("yt-dlp failed (exit code 1): HTTP Error 404: Not Found"))

        result = await _pipeline(work_items, transcripts, blob_client, transfer).process(item.id)

        assert result.failure_kind is FailureKind.FATAL
        stored = work_items.get(item.id)
        assert stored.status == "permanent_failure"
        assert stored.retry_count == 0

    async def test_failure_chained_to_cause(self, work_items, transcripts, blob_client):
        item = work_items.upsert_discovered(make_record(), "MI", "house")
        cause = TransferError("socket hang up")

        result = await _pipeline(
            work_items, transcripts, blob_client, FakeTransfer(cause)
        ).process(item.id)

        assert isinstance(result.error, ItemProcessingError)
        assert result.error.__cause__ is cause
        assert result.error.stage == "transfer"

    async def test_item_without_urls_is_fatal(self, work_items, transcripts, blob_client):
        record = make_record(direct_media_url=None, source_page_url=None)
        item = work_items.upsert_discovered(record, "MI", "house")

        result = await _pipeline(work_items, transcripts, blob_client).process(item.id)

        assert result.failure_kind is FailureKind.FATAL
        assert work_items.get(item.id).status == "permanent_failure"

    async def test_retryable_transcription_failure(self, work_items, transcripts, blob_client):
        item = work_items.upsert_discovered(make_record(), "MI", "house")
        provider = FakeProvider(error=TranscriptionError("overloaded", status_code=503))

        result = await _pipeline(
            work_items, transcripts, blob_client, provider=provider
        ).process(item.id)

        assert result.stage == "transcription"
        assert result.failure_kind is FailureKind.RETRYABLE
        stored = work_items.get(item.id)
        assert stored.status == "failed"
        assert stored.retry_count == 1
        assert stored.storage_locator is None
        assert transcripts.get_for_item(item.id) is None

    async def test_failed_transcription_recovers_next_pass(
        self, work_items, transcripts, blob_client
    ):
        item = work_items.upsert_discovered(make_record(), "MI", "house")
        provider = FakeProvider(error=TranscriptionError("overloaded", status_code=503))
        transfer = FakeTransfer()
        pipeline = _pipeline(work_items, transcripts, blob_client, transfer, provider)
        await pipeline.process(item.id)

        provider.error = None
        result = await pipeline.process(item.id)

        assert result.ok
        stored = work_items.get(item.id)
        assert stored.status == "completed"
        assert stored.retry_count == 1
        assert len(transfer.calls) == 2

    async def test_fatal_transcription_failure(self, work_items, transcripts, blob_client):
        item = work_items.upsert_discovered(make_record(), "MI", "house")
        provider = FakeProvider(error=TranscriptionError("bad request", status_code=400))

        result = await _pipeline(
            work_items, transcripts, blob_client, provider=provider
        ).process(item.id)

        assert result.failure_kind is FailureKind.FATAL
        assert work_items.get(item.id).status == "permanent_failure"

    async def test_missing_locator_at_transcription_is_retryable(
        self, engine, work_items, transcripts, blob_client
    ):
        item = work_items.upsert_discovered(make_record(), "MI", "house")
        _force(engine, item.id, status="downloaded")

        result = await _pipeline(work_items, transcripts, blob_client).transcription_stage(item.id)

        assert result.failure_kind is FailureKind.RETRYABLE
        assert isinstance(result.error.__cause__, StorageError)
        stored = work_items.get(item.id)
        assert stored.status == "failed"
        assert stored.retry_count == 1

    async def test_last_error_truncated(self, work_items, transcripts, blob_client):
        item = work_items.upsert_discovered(make_record(), "MI", "house")
        transfer = FakeTransfer(TransferError("timed out " + "x" * 5000))

        await _pipeline(work_items, transcripts, blob_client, transfer).process(item.id)

        assert len(work_items.get(item.id).last_error) == 2000

    async def test_unknown_item_skipped(self, work_items, transcripts, blob_client):
        import uuid

        result = await _pipeline(work_items, transcripts, blob_client).process(uuid.uuid4())

        assert result.outcome is StageOutcome.SKIPPED
        assert result.message == "item not found"
