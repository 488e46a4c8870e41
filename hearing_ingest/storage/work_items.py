"""Durable work-item state machine.

Every status change is a single conditional UPDATE (``WHERE id = :id AND
status IN (...)``) so concurrent runs against the same database never
process one item twice. A claim that matches no row returns None; callers
branch on that, it is not an error.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Engine, select, update
from sqlalchemy.exc import SQLAlchemyError

from hearing_ingest.storage.db import dialect_insert, utcnow
from hearing_ingest.storage.schema import (
    IN_PROGRESS_STATUSES,
    TERMINAL_STATUSES,
    ItemStatus,
    work_items,
)
from hearing_ingest.utils.errors import StorageError

logger = logging.getLogger(__name__)

# A stored object may only be referenced once the transfer has succeeded
_LOCATOR_CLEARING_STATUSES = (
    ItemStatus.DOWNLOADING,
    ItemStatus.FAILED,
    ItemStatus.PERMANENT_FAILURE,
)

_DESCRIPTIVE_FIELDS = (
    "slug",
    "title",
    "scheduled_date",
    "source_page_url",
    "direct_media_url",
)


@dataclass
class WorkItem:
    """One discovered media recording and its pipeline state."""

    id: uuid.UUID
    region: str
    source_branch: str
    external_id: str
    slug: str
    title: str | None
    scheduled_date: datetime | None
    source_page_url: str | None
    direct_media_url: str | None
    storage_locator: str | None
    status: str
    retry_count: int
    last_error: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Any) -> WorkItem:
        return cls(**dict(row._mapping))


def _status_values(statuses: Iterable[ItemStatus | str]) -> list[str]:
    return [ItemStatus(status).value for status in statuses]


class WorkItemStore:
    """Conditional-transition access to the work_items table."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def upsert_discovered(self, record: Any, region: str, source_branch: str) -> WorkItem:
        """Insert a discovered record as pending, or refresh its metadata.

        When the (region, source_branch, external_id) identity already
        exists only the descriptive fields change. Pipeline fields are left
        alone, updated_at included, so rediscovery never hides a stuck item
        from reset_stuck().

        Args:
            record: A DiscoveredRecord (or anything with the same attributes).
            region: Region code (e.g., "MI").
            source_branch: Source branch (e.g., "senate").

        Returns:
            The stored WorkItem.

        Raises:
            StorageError: If the write fails (e.g., the slug collides with a
                different item).
        """
        now = utcnow()
        descriptive = {field: getattr(record, field) for field in _DESCRIPTIVE_FIELDS}
        insert = dialect_insert(self.engine)
        stmt = insert(work_items).values(
            id=uuid.uuid4(),
            region=region,
            source_branch=source_branch,
            external_id=record.external_id,
            status=ItemStatus.PENDING.value,
            retry_count=0,
            created_at=now,
            updated_at=now,
            **descriptive,
        )
        refreshed = {field: stmt.excluded[field] for field in _DESCRIPTIVE_FIELDS}
        stmt = stmt.on_conflict_do_update(
            index_elements=["region", "source_branch", "external_id"],
            set_=refreshed,
        ).returning(*work_items.c)

        try:
            with self.engine.begin() as conn:
                row = conn.execute(stmt).one()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"Failed to upsert discovered item '{record.external_id}': {exc}",
                operation="upsert_discovered",
            ) from exc
        return WorkItem.from_row(row)

    def _transition(
        self,
        item_id: uuid.UUID,
        allowed_statuses: Iterable[ItemStatus | str],
        values: dict[str, Any],
        retry_ceiling: int | None,
        operation: str,
    ) -> WorkItem | None:
        conditions = [
            work_items.c.id == item_id,
            work_items.c.status.in_(_status_values(allowed_statuses)),
        ]
        if retry_ceiling is not None:
            conditions.append(work_items.c.retry_count < retry_ceiling)

        stmt = (
            update(work_items)
            .where(*conditions)
            .values(**values, updated_at=utcnow())
            .returning(*work_items.c)
        )
        try:
            with self.engine.begin() as conn:
                row = conn.execute(stmt).first()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"{operation} failed: {exc}",
                item_id=str(item_id),
                operation=operation,
            ) from exc
        return WorkItem.from_row(row) if row is not None else None

    def claim(
        self,
        item_id: uuid.UUID,
        target_status: ItemStatus | str,
        allowed_statuses: Iterable[ItemStatus | str],
        retry_ceiling: int,
    ) -> WorkItem | None:
        """Atomically move an item into target_status if it is claimable.

        Returns:
            The updated WorkItem, or None when the item is missing, in a
            status outside allowed_statuses, or at the retry ceiling.
        """
        target = ItemStatus(target_status)
        values: dict[str, Any] = {"status": target.value}
        if target in _LOCATOR_CLEARING_STATUSES:
            values["storage_locator"] = None
        return self._transition(item_id, allowed_statuses, values, retry_ceiling, "claim")

    def finalize(
        self,
        item_id: uuid.UUID,
        target_status: ItemStatus | str,
        allowed_statuses: Iterable[ItemStatus | str],
        *,
        storage_locator: str | None = None,
        last_error: str | None = None,
        clear_error: bool = False,
        increment_retry: bool = False,
    ) -> WorkItem | None:
        """Complete a stage or record a failure with one conditional update.

        Args:
            item_id: Work item id.
            target_status: Status to move to.
            allowed_statuses: Statuses the item must currently be in.
            storage_locator: Locator to record (only kept for transferred
                statuses; failure statuses always clear it).
            last_error: Error text to record.
            clear_error: Reset last_error to NULL (ignored when last_error
                is given).
            increment_retry: Add exactly one to retry_count.

        Returns:
            The updated WorkItem, or None if the condition did not match.
        """
        target = ItemStatus(target_status)
        values: dict[str, Any] = {"status": target.value}
        if target in _LOCATOR_CLEARING_STATUSES:
            values["storage_locator"] = None
        elif storage_locator is not None:
            values["storage_locator"] = storage_locator
        if last_error is not None:
            values["last_error"] = last_error
        elif clear_error:
            values["last_error"] = None
        if increment_retry:
            values["retry_count"] = work_items.c.retry_count + 1
        return self._transition(item_id, allowed_statuses, values, None, "finalize")

    def get(self, item_id: uuid.UUID) -> WorkItem | None:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(work_items).where(work_items.c.id == item_id)
                ).first()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"get failed: {exc}", item_id=str(item_id), operation="get"
            ) from exc
        return WorkItem.from_row(row) if row is not None else None

    def find_unfinished(
        self,
        region: str,
        source_branch: str,
        retry_ceiling: int,
        limit: int = 1000,
    ) -> list[WorkItem]:
        """Items still eligible for automated processing, oldest first."""
        stmt = (
            select(work_items)
            .where(
                work_items.c.region == region,
                work_items.c.source_branch == source_branch,
                work_items.c.status.not_in(_status_values(TERMINAL_STATUSES)),
                work_items.c.retry_count < retry_ceiling,
            )
            .order_by(work_items.c.scheduled_date.asc(), work_items.c.created_at.asc())
            .limit(limit)
        )
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"find_unfinished failed: {exc}", operation="find_unfinished"
            ) from exc
        return [WorkItem.from_row(row) for row in rows]

    def reset_stuck(
        self, region: str, source_branch: str, hours_threshold: float
    ) -> int:
        """Move in-progress items abandoned by a crashed run back to failed.

        Returns:
            Number of items reset.
        """
        cutoff = utcnow() - timedelta(hours=hours_threshold)
        stmt = (
            update(work_items)
            .where(
                work_items.c.region == region,
                work_items.c.source_branch == source_branch,
                work_items.c.status.in_(_status_values(IN_PROGRESS_STATUSES)),
                work_items.c.updated_at < cutoff,
            )
            .values(
                status=ItemStatus.FAILED.value,
                storage_locator=None,
                last_error=(
                    f"Reset by stuck-item recovery: no progress for over "
                    f"{hours_threshold:g} hours"
                ),
                updated_at=utcnow(),
            )
        )
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageError(
                f"reset_stuck failed: {exc}", operation="reset_stuck"
            ) from exc
        if result.rowcount:
            logger.info(
                "Reset %d stuck items",
                result.rowcount,
                extra={"region": region, "source": source_branch},
            )
        return result.rowcount

    def reset_retry_count(self, item_id: uuid.UUID) -> WorkItem | None:
        """Manual escape hatch: make a retry-exhausted item claimable again."""
        return self._transition(
            item_id,
            list(ItemStatus),
            {"retry_count": 0},
            None,
            "reset_retry_count",
        )

    def mark_permanent_failure(self, item_id: uuid.UUID, reason: str) -> WorkItem | None:
        """Manual escape hatch: take an item out of automation for good."""
        return self._transition(
            item_id,
            list(ItemStatus),
            {
                "status": ItemStatus.PERMANENT_FAILURE.value,
                "storage_locator": None,
                "last_error": reason,
            },
            None,
            "mark_permanent_failure",
        )

    def find_abandoned(
        self, region: str, source_branch: str, retry_ceiling: int
    ) -> list[WorkItem]:
        """Items automation will no longer touch: permanent failures and
        retry-exhausted items, most recently updated first."""
        stmt = (
            select(work_items)
            .where(
                work_items.c.region == region,
                work_items.c.source_branch == source_branch,
                (work_items.c.status == ItemStatus.PERMANENT_FAILURE.value)
                | (
                    (work_items.c.retry_count >= retry_ceiling)
                    & (work_items.c.status != ItemStatus.COMPLETED.value)
                ),
            )
            .order_by(work_items.c.updated_at.desc())
        )
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"find_abandoned failed: {exc}", operation="find_abandoned"
            ) from exc
        return [WorkItem.from_row(row) for row in rows]

