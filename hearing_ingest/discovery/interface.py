"""Discovery provider interface and shared helpers."""

from __future__ import annotations

import re
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


@dataclass
class DiscoveredRecord:
    """One recording listed by a source site.

    external_id is the source's own identifier (a filename or API id) and,
    with region and branch, identifies the work item.
    """

    external_id: str
    slug: str
    title: str
    scheduled_date: datetime
    source_page_url: str
    direct_media_url: str


class DiscoveryProvider(ABC):
    """Turns one (region, branch) source listing into DiscoveredRecords."""

    region: str = ""
    branch: str = ""

    @abstractmethod
    async def fetch_recent(self, days_back: int) -> list[DiscoveredRecord]:
        """List recordings dated within the last days_back days.

        Raises:
            DiscoveryError: If the source cannot be read at all.
        """

    async def close(self) -> None:
        """Release any held connections."""


_NON_SLUG_CHARS = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_HYPHEN_RUNS = re.compile(r"-+")


def generate_slug(region: str, branch: str, title: str, date: datetime) -> str:
    """URL-friendly unique name, e.g. "mi-house-agriculture-committee-2025-12-23"."""
    decomposed = unicodedata.normalize("NFD", title.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    clean = _NON_SLUG_CHARS.sub("", stripped).strip()
    clean = _HYPHEN_RUNS.sub("-", _WHITESPACE.sub("-", clean))
    return f"{region.lower()}-{branch.lower()}-{clean}-{date:%Y-%m-%d}"
