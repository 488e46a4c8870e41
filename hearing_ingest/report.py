"""Run summary report.

Usage:
    hearing-ingest-report [--days=7]
    hearing-ingest-report abandoned --region=MI --source=senate
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from typing import TextIO

from hearing_ingest.config import load_settings
from hearing_ingest.observability.logger import setup_logging
from hearing_ingest.storage import db
from hearing_ingest.storage.job_runs import DailyStats, JobRunStore
from hearing_ingest.storage.work_items import WorkItem, WorkItemStore
from hearing_ingest.utils.errors import IngestError

logger = logging.getLogger(__name__)

HEALTHY_RATE = 100.0
DEGRADED_RATE = 80.0


def health_marker(stats: DailyStats) -> str:
    """OK at 100%, WARN at 80% or more, FAIL below. No work counts as 100%."""
    rate = stats.success_rate_pct
    if rate is None or rate >= HEALTHY_RATE:
        return "OK"
    if rate >= DEGRADED_RATE:
        return "WARN"
    return "FAIL"


def _render_table(headers: Sequence[str], rows: Sequence[Sequence[object]]) -> str:
    cells = [[str(value) for value in row] for row in rows]
    widths = [
        max(len(headers[i]), *(len(row[i]) for row in cells)) if cells else len(headers[i])
        for i in range(len(headers))
    ]
    lines = [
        "  ".join(header.ljust(width) for header, width in zip(headers, widths)),
        "  ".join("-" * width for width in widths),
    ]
    lines += ["  ".join(cell.ljust(width) for cell, width in zip(row, widths)) for row in cells]
    return "\n".join(lines)


def format_daily_summary(stats: Sequence[DailyStats], days: int) -> str:
    if not stats:
        return f"No job data found for the last {days} days"
    rows = []
    for entry in stats:
        rate = entry.success_rate_pct
        rows.append(
            (
                health_marker(entry),
                entry.region,
                entry.source_branch,
                entry.run_date.isoformat(),
                entry.runs_count,
                entry.total_found,
                entry.total_success + entry.total_failures,
                entry.total_success,
                entry.total_failures,
                "100.0%" if rate is None else f"{rate:.1f}%",
            )
        )
    table = _render_table(
        ("", "Region", "Source", "Date", "Runs", "Found", "To Do", "Done", "Fail", "Success %"),
        rows,
    )
    return (
        f"=== Run summary (last {days} days) ===\n{table}\n"
        "Legend: OK 100% | WARN >=80% | FAIL <80%"
    )


def format_abandoned(items: Sequence[WorkItem], region: str, source_branch: str) -> str:
    if not items:
        return f"No abandoned items for {region}/{source_branch}"
    rows = [
        (
            item.slug,
            item.status,
            item.retry_count,
            item.updated_at.strftime("%Y-%m-%d %H:%M"),
            (item.last_error or "")[:80],
        )
        for item in items
    ]
    table = _render_table(("Slug", "Status", "Retries", "Updated", "Last error"), rows)
    return f"=== Abandoned items: {region}/{source_branch} ({len(items)}) ===\n{table}"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="hearing-ingest-report", description="Summarize recent ingestion runs."
    )
    parser.add_argument("--days", type=int, default=7, help="Look-back window (default 7)")
    subparsers = parser.add_subparsers(dest="command")
    abandoned = subparsers.add_parser(
        "abandoned", help="List items automation has given up on"
    )
    abandoned.add_argument("--region", default="MI")
    abandoned.add_argument("--source", default="senate")
    args = parser.parse_args(argv)
    if args.days < 1:
        parser.error("--days must be a positive integer")
    return args


def main(argv: list[str] | None = None, out: TextIO | None = None) -> None:
    args = parse_args(argv)
    out = out or sys.stdout
    engine = None
    try:
        settings = load_settings()
        setup_logging(settings.log_level)
        engine = db.create_store_engine(settings.database_url)
        if args.command == "abandoned":
            items = WorkItemStore(engine).find_abandoned(
                args.region, args.source, settings.retry_ceiling
            )
            print(format_abandoned(items, args.region, args.source), file=out)
        else:
            stats = JobRunStore(engine).daily_summary(args.days)
            print(format_daily_summary(stats, args.days), file=out)
    except IngestError as exc:
        print(f"Command failed: {exc}", file=sys.stderr)
        sys.exit(1)
    finally:
        if engine is not None:
            db.dispose(engine)


if __name__ == "__main__":
    main()
