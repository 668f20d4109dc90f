"""Federal Register rules and proposed rules touching medical imaging."""

from __future__ import annotations

from typing import Any

import httpx

from ..models import NormalizedEvent, ScoringResult
from ..scoring import TAG_REGULATORY_NOTICE, with_penalty
from ..time_utils import to_iso
from .base import Identity, SourceAdapter, clean

FEDERAL_REGISTER_URL = "https://www.federalregister.gov/api/v1/articles.json"
SEARCH_TERM = "radiology OR medical imaging OR diagnostic imaging OR mammography"
DOCUMENT_TYPES = ("RULE", "PRORULE")
NOTICE_PENALTY = 15


class RegulatoryNoticesAdapter(SourceAdapter):
    name = "regulatory_notices"
    source_label = "Federal Register"

    def default_url(self) -> str:
        return FEDERAL_REGISTER_URL

    async def fetch(self, client: httpx.AsyncClient) -> list[dict[str, Any]]:
        params: list[tuple[str, Any]] = [
            ("conditions[term]", SEARCH_TERM),
            *[("conditions[type][]", t) for t in DOCUMENT_TYPES],
            ("per_page", min(self.config.fetch_limit, 100)),
            ("order", "newest"),
        ]
        payload = await self.get_json(client, self.base_url, params)
        results = payload.get("results") if isinstance(payload, dict) else None
        return [r for r in results or [] if isinstance(r, dict)]

    @staticmethod
    def _agencies(raw: dict[str, Any]) -> str:
        agencies = raw.get("agencies") or []
        names = [clean(a.get("name") or a.get("raw_name")) for a in agencies if isinstance(a, dict)]
        return ", ".join(n for n in names if n)

    def identity(self, raw: dict[str, Any]) -> Identity:
        return (
            self._agencies(raw),
            clean(raw.get("title")),
            clean(raw.get("type")),
            clean(raw.get("action") or raw.get("abstract")),
        )

    def to_event(self, raw: dict[str, Any]) -> NormalizedEvent:
        agencies, title, doc_type, _ = self.identity(raw)
        abstract = clean(raw.get("abstract"))
        return NormalizedEvent(
            source_id=clean(raw.get("document_number")),
            source=self.source_label,
            title=title,
            description=abstract,
            source_tags={TAG_REGULATORY_NOTICE},
            manufacturer=agencies or None,
            classification=doc_type or None,
            reason=clean(raw.get("action")) or abstract or None,
            status="Published",
            link=clean(raw.get("html_url")) or None,
            source_date=to_iso(clean(raw.get("publication_date")) or None),
            raw=raw,
        )

    def adjust_score(self, event: NormalizedEvent, result: ScoringResult) -> ScoringResult:
        return with_penalty(result, NOTICE_PENALTY)
