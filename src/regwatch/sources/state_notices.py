"""State health department and licensing board RSS/Atom feeds."""

from __future__ import annotations

import logging
import re
from typing import Any

import feedparser
import httpx

from ..config import StateFeed
from ..models import EventFlags, NormalizedEvent
from ..scoring import TAG_STATE_HEALTH_DEPARTMENT, TAG_STATE_PROFESSIONAL_BOARD
from ..time_utils import to_iso
from .base import Identity, SourceAdapter, clean

logger = logging.getLogger(__name__)

KIND_TAGS = {
    "health_department": TAG_STATE_HEALTH_DEPARTMENT,
    "professional_board": TAG_STATE_PROFESSIONAL_BOARD,
}

MANDATE_KEYWORDS = (
    "must",
    "required",
    "requirement",
    "mandatory",
    "deadline",
    "compliance",
    "renewal",
    "registration",
    "effective",
)
RADIATION_KEYWORDS = ("radiation", "radiologic", "x-ray", "dosimetry", "shielding", "radiation safety officer")
HIGH_IMPACT_KEYWORDS = ("urgent", "immediate", "emergency", "suspension", "recall")

# Checked in order; the first modality whose keywords appear wins.
MODALITY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("MRI", ("mri", "magnetic resonance")),
    ("CT", ("ct", "computed tomography", "ct scanner")),
    ("Nuclear Medicine", ("nuclear medicine", "pet", "spect", "radiopharmaceutical", "isotope")),
    ("Mammography", ("mammography", "mammogram", "mqsa", "tomosynthesis")),
    ("Fluoroscopy", ("fluoroscopy", "fluoro", "c-arm", "angiography")),
    ("X-Ray", ("x-ray", "xray", "radiograph", "digital radiography")),
    ("Ultrasound", ("ultrasound", "sonography", "doppler")),
)

REGION_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Bay Area", ("san francisco", "oakland", "san jose", "san mateo", "alameda", "contra costa", "marin", "santa clara")),
    ("Greater LA", ("los angeles", "orange county", "long beach", "pasadena", "ventura", "riverside", "san bernardino")),
    ("San Diego", ("san diego",)),
    ("Sacramento", ("sacramento",)),
    ("Central Valley", ("fresno", "stockton", "modesto", "visalia", "bakersfield", "merced", "kern")),
    ("Central Coast", ("monterey", "santa cruz", "san luis obispo", "santa barbara")),
)
DEFAULT_REGION = "Statewide"


def _has_word(text: str, keyword: str) -> bool:
    return re.search(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])", text) is not None


def classify_modality(text: str) -> str | None:
    lowered = text.casefold()
    for modality, keywords in MODALITY_KEYWORDS:
        if any(_has_word(lowered, k) for k in keywords):
            return modality
    return None


def classify_region(text: str) -> str:
    lowered = text.casefold()
    for region, places in REGION_KEYWORDS:
        if any(_has_word(lowered, p) for p in places):
            return region
    return DEFAULT_REGION


def keyword_flags(text: str) -> EventFlags:
    lowered = text.casefold()
    return EventFlags(
        state_mandate=any(_has_word(lowered, k) for k in MANDATE_KEYWORDS),
        radiation_safety=any(_has_word(lowered, k) for k in RADIATION_KEYWORDS),
    )


class StateNoticesAdapter(SourceAdapter):
    name = "state_notices"
    source_label = "State"

    def _feeds(self) -> list[StateFeed]:
        return list(self.config.state_feeds)

    async def fetch(self, client: httpx.AsyncClient) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        errors: list[Exception] = []
        feeds = self._feeds()
        for feed in feeds:
            try:
                body = await self.get_text(client, feed.url)
            except Exception as exc:
                logger.warning("%s: feed %s failed: %s", self.name, feed.name, exc)
                errors.append(exc)
                continue
            parsed = feedparser.parse(body)
            if getattr(parsed, "bozo", False) and not parsed.entries:
                exc = ValueError(f"{feed.name}: {getattr(parsed, 'bozo_exception', 'feed parse error')}")
                logger.warning("%s: %s", self.name, exc)
                errors.append(exc)
                continue
            for entry in parsed.entries[: self.config.fetch_limit]:
                records.append(
                    {
                        "feed": feed.name,
                        "kind": feed.kind,
                        "state": feed.state,
                        "id": clean(entry.get("id") or entry.get("link") or entry.get("title")),
                        "title": clean(entry.get("title")),
                        "summary": clean(entry.get("summary") or entry.get("description")),
                        "link": clean(entry.get("link")),
                        "published": clean(entry.get("published") or entry.get("updated")),
                    }
                )
        if feeds and len(errors) == len(feeds):
            raise errors[-1]
        return records

    def identity(self, raw: dict[str, Any]) -> Identity:
        return (raw["feed"], raw["title"], raw["kind"], raw["summary"])

    def to_event(self, raw: dict[str, Any]) -> NormalizedEvent:
        text = f"{raw['title']} {raw['summary']}"
        lowered = text.casefold()
        return NormalizedEvent(
            source_id=raw["id"],
            source=raw["feed"],
            title=raw["title"],
            description=raw["summary"],
            source_tags={KIND_TAGS[raw["kind"]]},
            flags=keyword_flags(text),
            modality=classify_modality(text),
            region=classify_region(text),
            impact="High" if any(_has_word(lowered, k) for k in HIGH_IMPACT_KEYWORDS) else None,
            manufacturer=raw["feed"],
            classification=raw["kind"],
            state=raw["state"],
            status="Published",
            link=raw["link"] or None,
            source_date=to_iso(raw["published"] or None),
            raw=raw,
        )
