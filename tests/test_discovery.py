"""Tests for discovery providers and the provider registry."""

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from hearing_ingest.discovery import DISCOVERY_PROVIDERS, generate_slug, get_discovery_provider
from hearing_ingest.discovery.michigan import (
    HOUSE_ARCHIVE_URL,
    SENATE_API_URL,
    MichiganHouseProvider,
    MichiganSenateProvider,
    parse_house_date,
)
from hearing_ingest.utils.errors import ConfigurationError, DiscoveryError


def _house_text(name: str, when: datetime) -> str:
    return f"{name} - {when:%A, %B} {when.day}, {when.year}"


def _senate_entry(video_id: str, when: datetime, filename: str | None = None) -> dict:
    entry = {"_id": video_id, "date": when.isoformat()}
    if filename:
        entry["metadata"] = {"filename": filename}
    return entry


@pytest.fixture
async def http_client():
    async with httpx.AsyncClient() as client:
        yield client


class TestGenerateSlug:
    def test_basic_slug(self):
        slug = generate_slug(
            "MI", "house", "Agriculture Committee", datetime(2025, 12, 23, tzinfo=UTC)
        )
        assert slug == "mi-house-agriculture-committee-2025-12-23"

    def test_strips_accents_and_punctuation(self):
        slug = generate_slug("MI", "senate", "Économie & Budget!", datetime(2025, 1, 2))
        assert slug == "mi-senate-economie-budget-2025-01-02"

    def test_collapses_hyphens(self):
        slug = generate_slug("MI", "house", "HAGRI--121125", datetime(2025, 12, 11))
        assert slug == "mi-house-hagri-121125-2025-12-11"


class TestRegistry:
    def test_michigan_pairs_registered(self):
        assert DISCOVERY_PROVIDERS[("MI", "house")] is MichiganHouseProvider
        assert DISCOVERY_PROVIDERS[("MI", "senate")] is MichiganSenateProvider

    def test_unknown_pair_lists_available(self):
        with pytest.raises(ConfigurationError) as exc_info:
            get_discovery_provider("OH", "house")
        assert "Available: MI/house, MI/senate" in str(exc_info.value)

    def test_provider_without_fetch_recent_rejected(self):
        class Broken:
            pass

        with pytest.raises(ConfigurationError, match="no callable fetch_recent"):
            get_discovery_provider("XX", "house", registry={("XX", "house"): Broken})

    async def test_kwargs_passed_to_provider(self, http_client):
        provider = get_discovery_provider("MI", "senate", http_client=http_client)
        assert isinstance(provider, MichiganSenateProvider)
        await provider.close()
        assert not http_client.is_closed


class TestParseHouseDate:
    def test_parses_link_text(self):
        assert parse_house_date("Agriculture - Thursday, December 11, 2025") == datetime(
            2025, 12, 11, tzinfo=UTC
        )

    def test_case_insensitive_month(self):
        assert parse_house_date("september 3, 2025") == datetime(2025, 9, 3, tzinfo=UTC)

    def test_no_date(self):
        assert parse_house_date("House Session") is None

    def test_invalid_day(self):
        assert parse_house_date("February 30, 2025") is None


ARCHIVE_HTML = """
<html><body>
  <div class="collapse">
    <a href="/VideoArchivePlayer?video=HAGRI-121125.mp4">Agriculture - Thursday, December 11, 2025</a>
    <a href="/VideoArchivePlayer?video=HAGRI-121125.mp4">Agriculture - Thursday, December 11, 2025</a>
    <a href="/VideoArchivePlayer?video=HAPPRO-120225.mp4">Appropriations - Tuesday, December 2, 2025</a>
    <a href="/VideoArchivePlayer?video=HSESS-110425.mp4">House Session - Tuesday, November 4, 2025</a>
    <a href="/VideoArchivePlayer?video=NODATE.mp4">Special Event</a>
    <a href="/Other?video=X.mp4">Agriculture - Thursday, December 11, 2025</a>
  </div>
</body></html>
"""


class TestMichiganHouse:
    def test_parse_archive_filters_and_dedupes(self):
        provider = MichiganHouseProvider()
        records = provider.parse_archive(ARCHIVE_HTML, datetime(2025, 12, 1, tzinfo=UTC))

        assert [r.external_id for r in records] == ["HAGRI-121125.mp4", "HAPPRO-120225.mp4"]
        first = records[0]
        assert first.title == "HAGRI-121125"
        assert first.slug == "mi-house-hagri-121125-2025-12-11"
        assert first.scheduled_date == datetime(2025, 12, 11, tzinfo=UTC)
        assert first.source_page_url == (
            "https://house.mi.gov/VideoArchivePlayer?video=HAGRI-121125.mp4"
        )
        assert first.direct_media_url == (
            "https://www.house.mi.gov/ArchiveVideoFiles/HAGRI-121125.mp4"
        )

    async def test_fetch_recent(self, httpx_mock, http_client):
        yesterday = datetime.now(UTC) - timedelta(days=1)
        html = (
            f'<a href="/VideoArchivePlayer?video=HTAX-1.mp4">{_house_text("Tax", yesterday)}</a>'
            f'<a href="/VideoArchivePlayer?video=HOLD-1.mp4">'
            f'{_house_text("Old", yesterday - timedelta(days=30))}</a>'
        )
        httpx_mock.add_response(url=HOUSE_ARCHIVE_URL, method="GET", text=html)

        records = await MichiganHouseProvider(http_client).fetch_recent(7)

        assert [r.external_id for r in records] == ["HTAX-1.mp4"]

    async def test_empty_page_is_discovery_error(self, httpx_mock, http_client):
        httpx_mock.add_response(url=HOUSE_ARCHIVE_URL, method="GET", text="   ")

        with pytest.raises(DiscoveryError, match="Empty HTML"):
            await MichiganHouseProvider(http_client).fetch_recent(7)

    async def test_http_failure_is_discovery_error(self, httpx_mock, http_client):
        httpx_mock.add_response(url=HOUSE_ARCHIVE_URL, method="GET", status_code=403)

        with pytest.raises(DiscoveryError) as exc_info:
            await MichiganHouseProvider(http_client).fetch_recent(7)

        assert exc_info.value.region == "MI"
        assert exc_info.value.branch == "house"


class TestMichiganSenate:
    async def test_pages_until_cutoff(self, httpx_mock, http_client):
        now = datetime.now(UTC)
        httpx_mock.add_response(
            url=SENATE_API_URL,
            method="POST",
            json={
                "allFiles": [
                    _senate_entry("65f0aaaaaaaaaaaaaa000001", now - timedelta(hours=3), "Session.mp4"),
                    _senate_entry("65f0aaaaaaaaaaaaaa000002", now - timedelta(days=2)),
                ]
            },
        )
        httpx_mock.add_response(
            url=SENATE_API_URL,
            method="POST",
            json={
                "allFiles": [
                    _senate_entry("65f0aaaaaaaaaaaaaa000003", now - timedelta(days=5), "Tax.mp4"),
                    _senate_entry("65f0aaaaaaaaaaaaaa000004", now - timedelta(days=40), "Old.mp4"),
                    _senate_entry("65f0aaaaaaaaaaaaaa000005", now - timedelta(days=41), "Older.mp4"),
                ]
            },
        )

        records = await MichiganSenateProvider(http_client).fetch_recent(7)

        assert [r.external_id for r in records] == [
            "65f0aaaaaaaaaaaaaa000001",
            "65f0aaaaaaaaaaaaaa000002",
            "65f0aaaaaaaaaaaaaa000003",
        ]
        assert records[0].title == "Session"
        assert records[1].title == "Senate 000002"
        assert records[0].direct_media_url.endswith("/65f0aaaaaaaaaaaaaa000001/Default/HLS/out.m3u8")
        assert records[0].source_page_url == (
            "https://cloud.castus.tv/vod/misenate/video/65f0aaaaaaaaaaaaaa000001"
        )

        requests = httpx_mock.get_requests()
        assert len(requests) == 2
        assert json.loads(requests[0].content)["page"] == 1
        assert json.loads(requests[1].content)["page"] == 2
        assert json.loads(requests[0].content)["results"] == 50
        assert requests[0].headers["Origin"] == "https://cloud.castus.tv"

    async def test_failed_page_skipped(self, httpx_mock, http_client):
        now = datetime.now(UTC)
        httpx_mock.add_response(url=SENATE_API_URL, method="POST", status_code=404)
        httpx_mock.add_response(
            url=SENATE_API_URL,
            method="POST",
            json={"allFiles": [_senate_entry("65f0bbbbbbbbbbbbbb000001", now, "A.mp4")]},
        )
        httpx_mock.add_response(url=SENATE_API_URL, method="POST", json={"allFiles": []})

        records = await MichiganSenateProvider(http_client).fetch_recent(7)

        assert [r.title for r in records] == ["A"]

    async def test_no_readable_page_raises(self, httpx_mock, http_client):
        httpx_mock.add_response(url=SENATE_API_URL, method="POST", status_code=404)
        httpx_mock.add_response(url=SENATE_API_URL, method="POST", status_code=404)

        with pytest.raises(DiscoveryError, match="Senate listing unavailable"):
            await MichiganSenateProvider(http_client).fetch_recent(7)
