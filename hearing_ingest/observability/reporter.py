"""Per-run telemetry: JobRun row, persisted log lines and live counters."""

from __future__ import annotations

import logging
import uuid

from hearing_ingest.storage.job_runs import JobRunStore, RunCounts
from hearing_ingest.storage.schema import RunStatus
from hearing_ingest.utils.errors import StorageError

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}


class RunReporter:
    """Records one orchestrator run.

    Counters are written through to the JobRun row as they change so a
    long run can be watched from the database; finish_run() writes the
    final status exactly once.
    """

    def __init__(self, store: JobRunStore, region: str, source_branch: str) -> None:
        self.store = store
        self.region = region
        self.source_branch = source_branch
        self.run_id: uuid.UUID | None = None
        self.counts = RunCounts()
        self.skipped = 0
        self.status: RunStatus | None = None

    def _extra(self) -> dict[str, str | None]:
        return {
            "run_id": str(self.run_id) if self.run_id else None,
            "region": self.region,
            "source": self.source_branch,
        }

    def start_run(self, executor: str) -> uuid.UUID:
        self.run_id = self.store.create_run(self.region, self.source_branch, executor)
        self.log("INFO", f"Job started for {self.region}/{self.source_branch} by {executor}")
        return self.run_id

    def log(self, level: str, message: str) -> None:
        """Log a run message and persist it as a JobLogEntry.

        A failed insert is logged and otherwise ignored; losing one audit
        line must not fail the run.
        """
        logger.log(_LOG_LEVELS[level], message, extra=self._extra())
        if self.run_id is None:
            return
        try:
            self.store.insert_log(self.run_id, level, message)
        except StorageError:
            logger.warning("Could not persist run log line", exc_info=True, extra=self._extra())

    def _flush_counts(self) -> None:
        if self.run_id is not None:
            self.store.update_counts(self.run_id, self.counts)

    def increment_discovered(self, count: int = 1) -> None:
        self.counts.discovered += count
        self._flush_counts()

    def increment_processed(self) -> None:
        self.counts.processed += 1
        self._flush_counts()

    def increment_failed(self) -> None:
        self.counts.failed += 1
        self._flush_counts()

    def increment_skipped(self) -> None:
        self.skipped += 1

    def finish_run(self, error: BaseException | None = None) -> RunStatus:
        """Close the JobRun.

        Status is failed when error is given, completed_with_errors when any
        item failed, completed otherwise.
        """
        if error is not None:
            status = RunStatus.FAILED
            summary = str(error) or type(error).__name__
        elif self.counts.failed > 0:
            status = RunStatus.COMPLETED_WITH_ERRORS
            summary = None
        else:
            status = RunStatus.COMPLETED
            summary = None
        self.status = status
        if self.run_id is not None:
            self.store.finalize_run(self.run_id, status, self.counts, summary)
        logger.info(
            "Run finished with status %s (%d discovered, %d processed, %d failed)",
            status.value,
            self.counts.discovered,
            self.counts.processed,
            self.counts.failed,
            extra=self._extra(),
        )
        return status
