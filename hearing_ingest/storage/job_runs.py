"""JobRun / JobLogEntry persistence and run summary queries."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import Engine, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from hearing_ingest.storage.db import utcnow
from hearing_ingest.storage.schema import RunStatus, job_log_entries, job_runs
from hearing_ingest.utils.errors import StorageError

logger = logging.getLogger(__name__)

LOG_LEVELS = ("INFO", "WARN", "ERROR")


@dataclass
class RunCounts:
    discovered: int = 0
    processed: int = 0
    failed: int = 0


@dataclass
class RunSummary:
    region: str
    source_branch: str
    status: str
    found: int
    ok: int
    fail: int
    duration: timedelta | None
    error_summary: str | None


@dataclass
class DailyStats:
    region: str
    source_branch: str
    run_date: date
    runs_count: int
    total_found: int
    total_success: int
    total_failures: int

    @property
    def success_rate_pct(self) -> float | None:
        """Share of attempted items that succeeded, or None if none were attempted."""
        attempted = self.total_success + self.total_failures
        if attempted == 0:
            return None
        return round(self.total_success / attempted * 100, 1)


def _as_date(value: date | str) -> date:
    # SQLite's DATE() returns text
    if isinstance(value, str):
        return date.fromisoformat(value)
    if isinstance(value, datetime):
        return value.date()
    return value


class JobRunStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def _execute(self, stmt, operation: str) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageError(f"{operation} failed: {exc}", operation=operation) from exc

    def _fetch_all(self, stmt, operation: str) -> list:
        try:
            with self.engine.connect() as conn:
                return conn.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise StorageError(f"{operation} failed: {exc}", operation=operation) from exc

    def create_run(self, region: str, source_branch: str, executor: str) -> uuid.UUID:
        """Record a new run in the running state and return its id."""
        run_id = uuid.uuid4()
        self._execute(
            insert(job_runs).values(
                id=run_id,
                region=region,
                source_branch=source_branch,
                executor=executor,
                start_time=utcnow(),
                status=RunStatus.RUNNING.value,
                items_discovered=0,
                items_processed=0,
                items_failed=0,
            ),
            "create_run",
        )
        return run_id

    def insert_log(self, run_id: uuid.UUID, level: str, message: str) -> None:
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level '{level}', expected one of {LOG_LEVELS}")
        self._execute(
            insert(job_log_entries).values(
                run_id=run_id, level=level, message=message, created_at=utcnow()
            ),
            "insert_log",
        )

    def update_counts(self, run_id: uuid.UUID, counts: RunCounts) -> None:
        self._execute(
            update(job_runs)
            .where(job_runs.c.id == run_id)
            .values(
                items_discovered=counts.discovered,
                items_processed=counts.processed,
                items_failed=counts.failed,
            ),
            "update_counts",
        )

    def finalize_run(
        self,
        run_id: uuid.UUID,
        status: RunStatus | str,
        counts: RunCounts,
        error_summary: str | None = None,
    ) -> None:
        """Close a run: end time, final status, final counters."""
        self._execute(
            update(job_runs)
            .where(job_runs.c.id == run_id)
            .values(
                end_time=utcnow(),
                status=RunStatus(status).value,
                items_discovered=counts.discovered,
                items_processed=counts.processed,
                items_failed=counts.failed,
                error_summary=error_summary,
            ),
            "finalize_run",
        )

    def get_run_summary(self, run_id: uuid.UUID) -> RunSummary | None:
        rows = self._fetch_all(
            select(job_runs).where(job_runs.c.id == run_id), "get_run_summary"
        )
        if not rows:
            return None
        row = rows[0]
        duration = None
        if row.end_time is not None:
            duration = row.end_time - row.start_time
        return RunSummary(
            region=row.region,
            source_branch=row.source_branch,
            status=row.status,
            found=row.items_discovered,
            ok=row.items_processed,
            fail=row.items_failed,
            duration=duration,
            error_summary=row.error_summary,
        )

    def get_logs(self, run_id: uuid.UUID) -> list[tuple[str, str]]:
        rows = self._fetch_all(
            select(job_log_entries.c.level, job_log_entries.c.message)
            .where(job_log_entries.c.run_id == run_id)
            .order_by(job_log_entries.c.id),
            "get_logs",
        )
        return [(row.level, row.message) for row in rows]

    def daily_summary(self, days: int) -> list[DailyStats]:
        """Per-day run totals grouped by region and branch, newest day first.

        Args:
            days: Look-back window in days from now.
        """
        run_date = func.date(job_runs.c.start_time).label("run_date")
        stmt = (
            select(
                job_runs.c.region,
                job_runs.c.source_branch,
                run_date,
                func.count(job_runs.c.id).label("runs_count"),
                func.coalesce(func.sum(job_runs.c.items_discovered), 0).label("total_found"),
                func.coalesce(func.sum(job_runs.c.items_processed), 0).label("total_success"),
                func.coalesce(func.sum(job_runs.c.items_failed), 0).label("total_failures"),
            )
            .where(job_runs.c.start_time > utcnow() - timedelta(days=days))
            .group_by(job_runs.c.region, job_runs.c.source_branch, run_date)
            .order_by(run_date.desc(), job_runs.c.region, job_runs.c.source_branch)
        )
        rows = self._fetch_all(stmt, "daily_summary")
        return [
            DailyStats(
                region=row.region,
                source_branch=row.source_branch,
                run_date=_as_date(row.run_date),
                runs_count=int(row.runs_count),
                total_found=int(row.total_found),
                total_success=int(row.total_success),
                total_failures=int(row.total_failures),
            )
            for row in rows
        ]
