"""Table definitions for the work-item store.

Mirrors alembic/versions/0001_initial_schema.py. The metadata is also used
directly (create_all) for SQLite-backed tests.
"""

from __future__ import annotations

import enum

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB


class ItemStatus(str, enum.Enum):
    QUEUED = "queued"  # legacy value, accepted by the constraint but never produced
    PENDING = "pending"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    TRANSCRIBING = "transcribing"
    COMPLETED = "completed"
    FAILED = "failed"
    PERMANENT_FAILURE = "permanent_failure"


class RunStatus(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


TERMINAL_STATUSES = (ItemStatus.COMPLETED, ItemStatus.PERMANENT_FAILURE)
IN_PROGRESS_STATUSES = (ItemStatus.DOWNLOADING, ItemStatus.TRANSCRIBING)
TRANSFERRED_STATUSES = (
    ItemStatus.DOWNLOADED,
    ItemStatus.TRANSCRIBING,
    ItemStatus.COMPLETED,
)


def _in_list(column: str, values: list[str]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


metadata = MetaData()

work_items = Table(
    "work_items",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("region", String(15), nullable=False),
    Column("source_branch", String(30), nullable=False),
    Column("external_id", Text, nullable=False),
    Column("slug", Text, nullable=False),
    Column("title", Text),
    Column("scheduled_date", DateTime(timezone=True)),
    Column("source_page_url", Text),
    Column("direct_media_url", Text),
    Column("storage_locator", Text),
    Column("status", String(20), nullable=False, default=ItemStatus.PENDING.value),
    Column("retry_count", Integer, nullable=False, default=0),
    Column("last_error", Text),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint(
        _in_list("status", [s.value for s in ItemStatus]),
        name="work_items_valid_status",
    ),
    UniqueConstraint(
        "region", "source_branch", "external_id", name="work_items_identity_uq"
    ),
    UniqueConstraint("slug", name="work_items_slug_uq"),
    Index("work_items_region_branch_status_idx", "region", "source_branch", "status"),
)

transcripts = Table(
    "transcripts",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column(
        "work_item_id",
        Uuid,
        ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("provider", Text),
    Column("language", Text),
    Column("text", Text),
    Column("raw_payload", JSON().with_variant(JSONB(), "postgresql")),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("work_item_id", name="transcripts_work_item_uq"),
)

job_runs = Table(
    "job_runs",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("region", String(15), nullable=False),
    Column("source_branch", String(30), nullable=False),
    Column("executor", String(100), nullable=False),
    Column("start_time", DateTime(timezone=True), nullable=False),
    Column("end_time", DateTime(timezone=True)),
    Column("status", String(30), nullable=False, default=RunStatus.RUNNING.value),
    Column("items_discovered", Integer, nullable=False, default=0),
    Column("items_processed", Integer, nullable=False, default=0),
    Column("items_failed", Integer, nullable=False, default=0),
    Column("error_summary", Text),
    CheckConstraint(
        _in_list("status", [s.value for s in RunStatus]),
        name="job_runs_valid_status",
    ),
    Index("job_runs_start_time_idx", "start_time"),
)

job_log_entries = Table(
    "job_log_entries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "run_id",
        Uuid,
        ForeignKey("job_runs.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("level", String(10), nullable=False),
    Column("message", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)
