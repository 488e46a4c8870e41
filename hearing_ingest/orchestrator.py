"""Scheduled run orchestration for one (region, source) pair.

run_scheduled_job() performs: readiness -> JobRun start -> stuck-item
recovery -> discovery -> queue selection -> sequential item processing ->
JobRun finalization -> run metrics line.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

import httpx
from sqlalchemy import Engine

from hearing_ingest.config import Settings
from hearing_ingest.discovery.registry import get_discovery_provider
from hearing_ingest.health import check_readiness
from hearing_ingest.observability.metrics import RunMetrics, StageTimer, log_run_metrics
from hearing_ingest.observability.reporter import RunReporter
from hearing_ingest.pipeline import ItemPipeline, StageOutcome
from hearing_ingest.storage import db
from hearing_ingest.storage.blob_client import BlobClient
from hearing_ingest.storage.job_runs import JobRunStore
from hearing_ingest.storage.transcripts import TranscriptStore
from hearing_ingest.storage.work_items import WorkItemStore
from hearing_ingest.transcription.interface import TranscriptionProvider
from hearing_ingest.transcription.registry import get_transcription_provider
from hearing_ingest.transfer.streamer import MediaTransfer
from hearing_ingest.utils.errors import StorageError
from hearing_ingest.utils.http import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """Everything a run needs, built once per process."""

    settings: Settings
    engine: Engine
    http_client: httpx.AsyncClient
    blob_client: BlobClient
    work_items: WorkItemStore
    transcripts: TranscriptStore
    job_runs: JobRunStore
    transcription_provider: TranscriptionProvider
    pipeline: ItemPipeline

    async def aclose(self) -> None:
        """Close HTTP clients and dispose the store engine."""
        try:
            await self.transcription_provider.close()
            await self.http_client.aclose()
        finally:
            db.dispose(self.engine)


def build_context(settings: Settings) -> PipelineContext:
    engine = db.create_store_engine(settings.database_url)
    http_client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
    blob_client = BlobClient(
        bucket=settings.s3_bucket,
        region=settings.aws_region,
        endpoint_url=settings.s3_endpoint_url,
    )
    work_items = WorkItemStore(engine)
    transcripts = TranscriptStore(engine)
    provider = get_transcription_provider(
        settings.transcription_provider,
        api_key=settings.deepgram_api_key,
        model=settings.deepgram_model,
        http_client=http_client,
    )
    transfer = MediaTransfer(
        blob_client,
        http_client,
        yt_dlp_binary=settings.yt_dlp_binary,
        part_size=settings.part_size_bytes,
        min_bytes=settings.min_media_bytes,
        ready_timeout=settings.ready_timeout_seconds,
    )
    pipeline = ItemPipeline(
        work_items,
        transcripts,
        blob_client,
        transfer,
        provider,
        retry_ceiling=settings.retry_ceiling,
        presigned_url_ttl=settings.presigned_url_ttl_seconds,
    )
    return PipelineContext(
        settings=settings,
        engine=engine,
        http_client=http_client,
        blob_client=blob_client,
        work_items=work_items,
        transcripts=transcripts,
        job_runs=JobRunStore(engine),
        transcription_provider=provider,
        pipeline=pipeline,
    )


async def run_scheduled_job(
    context: PipelineContext,
    region: str,
    source_branch: str,
    days_back: int = 7,
) -> RunMetrics:
    """Execute one scheduled run.

    Per-item failures are recorded and counted; they never stop the run.
    Failures outside the item loop mark the JobRun failed and propagate.

    Args:
        context: Shared clients and stores.
        region: Region code (e.g., "MI").
        source_branch: Source branch (e.g., "house").
        days_back: Discovery look-back window in days.

    Returns:
        RunMetrics for the finished run.

    Raises:
        ConfigurationError: No discovery provider for the pair (no JobRun
            is created).
        DependencyError: A critical dependency is down (no JobRun is
            created).
    """
    settings = context.settings
    wall_start = time.monotonic()
    discovery = get_discovery_provider(
        region, source_branch, http_client=context.http_client
    )

    try:
        warnings = await check_readiness(
            context.engine,
            context.blob_client,
            context.transcription_provider,
            settings.yt_dlp_binary,
        )

        reporter = RunReporter(context.job_runs, region, source_branch)
        reporter.start_run(settings.executor_name)
        for warning in warnings:
            reporter.log("WARN", warning)

        stage_durations: dict[str, float] = {}
        stuck_reset = 0
        queue_size = 0
        try:
            with StageTimer("recovery") as timer:
                stuck_reset = context.work_items.reset_stuck(
                    region, source_branch, settings.stuck_hours_threshold
                )
            stage_durations["recovery"] = timer.duration_seconds
            reporter.log("INFO", f"Recovered {stuck_reset} stuck items")

            with StageTimer("discovery") as timer:
                records = await discovery.fetch_recent(days_back)
                for record in records:
                    try:
                        context.work_items.upsert_discovered(record, region, source_branch)
                    except StorageError as exc:
                        reporter.log("WARN", f"Could not save {record.external_id}: {exc}")
            stage_durations["discovery"] = timer.duration_seconds
            reporter.increment_discovered(len(records))
            reporter.log("INFO", f"Discovered {len(records)} items")

            queue = context.work_items.find_unfinished(
                region, source_branch, settings.retry_ceiling, settings.queue_limit
            )
            queue_size = len(queue)
            reporter.log("INFO", f"Queue size: {queue_size}")

            with StageTimer("processing") as timer:
                for item in queue:
                    await _process_item(context.pipeline, reporter, item)
            stage_durations["processing"] = timer.duration_seconds
        except (Exception, asyncio.CancelledError) as exc:
            description = str(exc) or type(exc).__name__
            reporter.log("ERROR", f"Run failed: {description}")
            try:
                reporter.finish_run(exc)
            except StorageError:
                logger.error(
                    "Could not record failure of run %s",
                    reporter.run_id,
                    exc_info=True,
                    extra={"region": region, "source": source_branch},
                )
            log_run_metrics(
                _build_metrics(
                    reporter,
                    settings,
                    stuck_reset,
                    queue_size,
                    stage_durations,
                    wall_start,
                    error_message=description,
                )
            )
            raise

        reporter.finish_run()
        metrics = _build_metrics(
            reporter, settings, stuck_reset, queue_size, stage_durations, wall_start
        )
        log_run_metrics(metrics)
        return metrics
    finally:
        await discovery.close()


async def _process_item(pipeline: ItemPipeline, reporter: RunReporter, item) -> None:
    try:
        result = await pipeline.process(item.id)
    except Exception as exc:
        logger.error(
            "Unexpected error processing %s",
            item.slug,
            exc_info=True,
            extra={"item_id": str(item.id)},
        )
        reporter.increment_failed()
        reporter.log("ERROR", f"{item.slug}: unexpected error: {exc}")
        return

    if result.outcome is StageOutcome.OK:
        reporter.increment_processed()
        reporter.log("INFO", f"{item.slug}: completed")
    elif result.outcome is StageOutcome.SKIPPED:
        reporter.increment_skipped()
        reporter.log("INFO", f"{item.slug}: skipped at {result.stage} ({result.message})")
    else:
        reporter.increment_failed()
        reporter.log(
            "ERROR",
            f"{item.slug}: {result.failure_kind.value} failure at {result.stage}: "
            f"{result.message}",
        )


def _build_metrics(
    reporter: RunReporter,
    settings: Settings,
    stuck_reset: int,
    queue_size: int,
    stage_durations: dict[str, float],
    wall_start: float,
    error_message: str | None = None,
) -> RunMetrics:
    return RunMetrics(
        run_id=str(reporter.run_id),
        region=reporter.region,
        source=reporter.source_branch,
        executor=settings.executor_name,
        status=reporter.status.value if reporter.status else "unknown",
        items_discovered=reporter.counts.discovered,
        items_processed=reporter.counts.processed,
        items_failed=reporter.counts.failed,
        items_skipped=reporter.skipped,
        stuck_items_reset=stuck_reset,
        queue_size=queue_size,
        wall_time_seconds=time.monotonic() - wall_start,
        stage_durations=stage_durations,
        error_message=error_message,
    )
