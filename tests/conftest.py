"""Shared fixtures: a file-backed SQLite store with the full schema."""

from datetime import UTC, datetime

import pytest

from hearing_ingest.discovery.interface import DiscoveredRecord
from hearing_ingest.storage import db
from hearing_ingest.storage.job_runs import JobRunStore
from hearing_ingest.storage.schema import metadata
from hearing_ingest.storage.transcripts import TranscriptStore
from hearing_ingest.storage.work_items import WorkItemStore


@pytest.fixture
def engine(tmp_path):
    engine = db.create_store_engine(f"sqlite:///{tmp_path / 'ingest.db'}")
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def work_items(engine):
    return WorkItemStore(engine)


@pytest.fixture
def transcripts(engine):
    return TranscriptStore(engine)


@pytest.fixture
def job_runs(engine):
    return JobRunStore(engine)


def make_record(external_id: str = "HAGRI-121125.mp4", **overrides) -> DiscoveredRecord:
    """A DiscoveredRecord with sensible defaults, applying any overrides."""
    fields = {
        "external_id": external_id,
        "slug": f"mi-house-{external_id.lower().replace('.mp4', '')}-2025-12-11",
        "title": external_id.replace(".mp4", ""),
        "scheduled_date": datetime(2025, 12, 11, tzinfo=UTC),
        "source_page_url": f"https://house.mi.gov/VideoArchivePlayer?video={external_id}",
        "direct_media_url": f"https://www.house.mi.gov/ArchiveVideoFiles/{external_id}",
    }
    fields.update(overrides)
    return DiscoveredRecord(**fields)
