"""Michigan Legislature discovery providers.

House: scrapes the HTML video archive (every archived session is linked
from one page, collapsed sections included).
Senate: pages through the Castus cloud API newest-first until the cutoff.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from bs4 import BeautifulSoup

from hearing_ingest.discovery.interface import (
    DiscoveredRecord,
    DiscoveryProvider,
    generate_slug,
)
from hearing_ingest.utils.errors import DiscoveryError, IngestError
from hearing_ingest.utils.http import BROWSER_USER_AGENT, fetch_with_retry

logger = logging.getLogger(__name__)

HOUSE_ARCHIVE_URL = "https://house.mi.gov/VideoArchive"
HOUSE_SITE_URL = "https://house.mi.gov"
HOUSE_MEDIA_URL = "https://www.house.mi.gov/ArchiveVideoFiles/{video}"

SENATE_API_URL = "https://tf4pr3wftk.execute-api.us-west-2.amazonaws.com/default/api/all"
SENATE_ACCOUNT_ID = "61b3adc8124d7d000891ca5c"
SENATE_PAGE_URL = "https://cloud.castus.tv/vod/misenate/video/{id}"
SENATE_MEDIA_URL = "https://dlttx48mxf9m3.cloudfront.net/outputs/{id}/Default/HLS/out.m3u8"
SENATE_RESULTS_PER_PAGE = 50
SENATE_MAX_PAGES = 20
SENATE_MAX_CONSECUTIVE_FAILURES = 2

_MONTHS = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)
_HOUSE_DATE = re.compile(
    r"\b(" + "|".join(_MONTHS) + r")[a-z]*\s+(\d{1,2}),\s+(\d{4})", re.IGNORECASE
)
_VIDEO_PARAM = re.compile(r"video=([^&\s]+)")


def _cutoff(days_back: int) -> datetime:
    return datetime.now(UTC) - timedelta(days=days_back)


def parse_house_date(text: str) -> datetime | None:
    """Parse "Agriculture - Thursday, December 11, 2025" style link text."""
    match = _HOUSE_DATE.search(text)
    if not match:
        return None
    month_name, day, year = match.groups()
    try:
        return datetime(
            int(year), _MONTHS.index(month_name.lower()) + 1, int(day), tzinfo=UTC
        )
    except ValueError:
        return None


def _parse_iso(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class _HttpProvider(DiscoveryProvider):
    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class MichiganHouseProvider(_HttpProvider):
    region = "MI"
    branch = "house"

    async def fetch_recent(self, days_back: int) -> list[DiscoveredRecord]:
        cutoff = _cutoff(days_back)
        try:
            response = await fetch_with_retry(
                self._client,
                "GET",
                HOUSE_ARCHIVE_URL,
                headers={"User-Agent": BROWSER_USER_AGENT},
                follow_redirects=True,
                base_delay=0.5,
                max_delay=8.0,
            )
        except (IngestError, httpx.HTTPError) as exc:
            raise DiscoveryError(
                f"Failed to fetch House archive: {exc}",
                region=self.region,
                branch=self.branch,
            ) from exc

        html = response.text
        if not html.strip():
            raise DiscoveryError(
                "Empty HTML response from House archive",
                region=self.region,
                branch=self.branch,
            )

        records = self.parse_archive(html, cutoff)
        logger.info(
            "Found %d recent House videos",
            len(records),
            extra={"region": self.region, "source": self.branch},
        )
        return records

    def parse_archive(self, html: str, cutoff: datetime) -> list[DiscoveredRecord]:
        soup = BeautifulSoup(html, "html.parser")
        records: list[DiscoveredRecord] = []
        seen: set[str] = set()
        for link in soup.select('a[href*="/VideoArchivePlayer?video="]'):
            href = link.get("href")
            text = link.get_text(" ", strip=True)
            if not href or not text:
                continue
            date = parse_house_date(text)
            if date is None or date < cutoff:
                continue
            match = _VIDEO_PARAM.search(href)
            if not match:
                continue
            video = match.group(1)
            if video in seen:
                continue
            seen.add(video)
            title = video.replace(".mp4", "")
            records.append(
                DiscoveredRecord(
                    external_id=video,
                    slug=generate_slug(self.region, self.branch, title, date),
                    title=title,
                    scheduled_date=date,
                    source_page_url=f"{HOUSE_SITE_URL}{href}",
                    direct_media_url=HOUSE_MEDIA_URL.format(video=video),
                )
            )
        return records


class MichiganSenateProvider(_HttpProvider):
    region = "MI"
    branch = "senate"

    async def fetch_recent(self, days_back: int) -> list[DiscoveredRecord]:
        """Page through the Castus listing, newest first, until the cutoff.

        A page that fails is skipped; two consecutive failures end the
        scan. If not a single page could be read, DiscoveryError is raised.
        """
        cutoff = _cutoff(days_back)
        records: list[DiscoveredRecord] = []
        consecutive_failures = 0
        pages_read = 0
        last_error: Exception | None = None

        for page in range(1, SENATE_MAX_PAGES + 1):
            if consecutive_failures >= SENATE_MAX_CONSECUTIVE_FAILURES:
                break
            try:
                files = await self._fetch_page(page)
            except (IngestError, httpx.HTTPError, ValueError) as exc:
                consecutive_failures += 1
                last_error = exc
                logger.warning("Senate page %d failed: %s", page, exc)
                continue

            consecutive_failures = 0
            pages_read += 1
            reached_cutoff = False
            for entry in files:
                date = _parse_iso(entry.get("date") or entry.get("original_date"))
                if date is None:
                    continue
                if date < cutoff:
                    reached_cutoff = True
                    break
                record = self._to_record(entry, date)
                if record is not None:
                    records.append(record)
            if reached_cutoff or not files:
                break

        if pages_read == 0 and last_error is not None:
            raise DiscoveryError(
                f"Senate listing unavailable: {last_error}",
                region=self.region,
                branch=self.branch,
            ) from last_error

        logger.info(
            "Found %d recent Senate videos",
            len(records),
            extra={"region": self.region, "source": self.branch},
        )
        return records

    async def _fetch_page(self, page: int) -> list[dict[str, Any]]:
        response = await fetch_with_retry(
            self._client,
            "POST",
            SENATE_API_URL,
            headers={
                "Content-Type": "application/json;charset=UTF-8",
                "Origin": "https://cloud.castus.tv",
                "Referer": "https://cloud.castus.tv/",
                "User-Agent": BROWSER_USER_AGENT,
            },
            json={
                "_id": SENATE_ACCOUNT_ID,
                "page": page,
                "results": SENATE_RESULTS_PER_PAGE,
            },
        )
        body = response.json()
        files = body.get("allFiles") if isinstance(body, dict) else None
        return [entry for entry in files or [] if isinstance(entry, dict)]

    def _to_record(self, entry: dict[str, Any], date: datetime) -> DiscoveredRecord | None:
        video_id = entry.get("_id")
        if not video_id:
            return None
        metadata = entry.get("metadata") or {}
        title = (metadata.get("filename") or f"Senate {video_id[-6:]}").replace(".mp4", "")
        return DiscoveredRecord(
            external_id=video_id,
            slug=generate_slug(self.region, self.branch, title, date),
            title=title,
            scheduled_date=date,
            source_page_url=SENATE_PAGE_URL.format(id=video_id),
            direct_media_url=SENATE_MEDIA_URL.format(id=video_id),
        )
