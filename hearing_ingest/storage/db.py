"""Engine construction and connectivity probes for the relational store."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import Engine, create_engine, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from hearing_ingest.storage.schema import job_log_entries, job_runs, transcripts, work_items
from hearing_ingest.utils.errors import StorageError

logger = logging.getLogger(__name__)

REQUIRED_TABLES = (work_items, transcripts, job_runs, job_log_entries)


def utcnow() -> datetime:
    return datetime.now(UTC)


def dialect_insert(engine: Engine):
    """The dialect insert() that supports ON CONFLICT DO UPDATE."""
    if engine.dialect.name == "postgresql":
        return postgresql.insert
    if engine.dialect.name == "sqlite":
        return sqlite.insert
    raise StorageError(
        f"Unsupported database dialect: {engine.dialect.name}", operation="upsert"
    )


def create_store_engine(database_url: str, **kwargs: object) -> Engine:
    """Create the shared SQLAlchemy engine (pre-ping keeps stale pool slots out)."""
    kwargs.setdefault("pool_pre_ping", True)
    return create_engine(database_url, **kwargs)


def ping(engine: Engine) -> None:
    """Raise StorageError if the database cannot answer SELECT 1."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        raise StorageError(f"Database unreachable: {exc}", operation="ping") from exc


def check_schema(engine: Engine) -> None:
    """Raise StorageError if any pipeline table is missing."""
    try:
        with engine.connect() as conn:
            for table in REQUIRED_TABLES:
                conn.execute(select(table).limit(1))
    except SQLAlchemyError as exc:
        raise StorageError(
            "Database connected, but the schema is missing. "
            f"Did you run 'alembic upgrade head'? ({exc})",
            operation="check_schema",
        ) from exc


def dispose(engine: Engine) -> None:
    """Close all pooled connections."""
    engine.dispose()
    logger.info("Store connections closed")
