"""Transcript persistence: at most one transcript per work item."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.exc import SQLAlchemyError

from hearing_ingest.storage.db import dialect_insert, utcnow
from hearing_ingest.storage.schema import transcripts
from hearing_ingest.utils.errors import StorageError

logger = logging.getLogger(__name__)


@dataclass
class Transcript:
    id: uuid.UUID
    work_item_id: uuid.UUID
    provider: str | None
    language: str | None
    text: str | None
    raw_payload: Any
    created_at: datetime


class TranscriptStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def upsert(
        self,
        work_item_id: uuid.UUID,
        provider: str,
        language: str | None,
        text: str,
        raw_payload: Any,
    ) -> Transcript:
        """Store a transcript, overwriting any earlier one for the item.

        Raises:
            StorageError: If the write fails.
        """
        insert = dialect_insert(self.engine)
        stmt = insert(transcripts).values(
            id=uuid.uuid4(),
            work_item_id=work_item_id,
            provider=provider,
            language=language,
            text=text,
            raw_payload=raw_payload,
            created_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["work_item_id"],
            set_={
                "provider": stmt.excluded.provider,
                "language": stmt.excluded.language,
                "text": stmt.excluded.text,
                "raw_payload": stmt.excluded.raw_payload,
                "created_at": stmt.excluded.created_at,
            },
        ).returning(*transcripts.c)
        try:
            with self.engine.begin() as conn:
                row = conn.execute(stmt).one()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"Failed to store transcript: {exc}",
                item_id=str(work_item_id),
                operation="upsert_transcript",
            ) from exc
        return Transcript(**dict(row._mapping))

    def get_for_item(self, work_item_id: uuid.UUID) -> Transcript | None:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(transcripts).where(transcripts.c.work_item_id == work_item_id)
                ).first()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"Failed to load transcript: {exc}",
                item_id=str(work_item_id),
                operation="get_transcript",
            ) from exc
        return Transcript(**dict(row._mapping)) if row is not None else None

    def has_text(self, work_item_id: uuid.UUID) -> bool:
        """True when the item already has a non-empty transcript."""
        transcript = self.get_for_item(work_item_id)
        return bool(transcript and transcript.text and transcript.text.strip())
