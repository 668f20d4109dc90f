"""Compliance deadlines from MQSA notices and CMS rules in the Federal Register.

Each article is reduced to its nearest compliance date (the effective date,
else the comment deadline). Articles whose date is more than 30 days past
or more than a year away are dropped, and the score of the rest is set by
how soon the deadline falls.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any

import httpx

from ..models import NormalizedEvent, ScoringResult
from ..scoring import TAG_CMS_RULE_DEADLINE, TAG_MQSA_DEADLINE
from ..time_utils import parse_source_datetime
from .base import Identity, SourceAdapter, clean
from .regulatory_notices import FEDERAL_REGISTER_URL

MQSA = "mqsa"
CMS_RULE = "cms_rule"

QUERIES: tuple[tuple[str, list[tuple[str, Any]]], ...] = (
    (
        MQSA,
        [
            ("conditions[term]", "MQSA OR mammography OR audit OR deadline OR compliance"),
            ("conditions[type][]", "RULE"),
            ("conditions[type][]", "NOTICE"),
            ("per_page", 30),
        ],
    ),
    (
        CMS_RULE,
        [
            ("conditions[agencies][]", "centers-for-medicare-medicaid-services"),
            ("conditions[term]", "radiology OR imaging OR deadline"),
            ("conditions[type][]", "RULE"),
            ("per_page", 20),
        ],
    ),
)

LABELS = {MQSA: "MQSA Deadline", CMS_RULE: "CMS Deadline"}
TAGS = {MQSA: TAG_MQSA_DEADLINE, CMS_RULE: TAG_CMS_RULE_DEADLINE}

OLDEST_DAYS = -30
FURTHEST_DAYS = 365

# (days remaining at most, score), checked in order.
URGENCY_STEPS: tuple[tuple[int, int], ...] = ((7, 90), (30, 80), (90, 70))
DEFAULT_URGENCY = 50


def days_until(deadline: datetime, now: datetime) -> int:
    """Whole days to ``deadline``, rounded up; negative once it has passed."""
    return math.ceil((deadline - now) / timedelta(days=1))


def urgency_score(days: int) -> int:
    for limit, score in URGENCY_STEPS:
        if days <= limit:
            return score
    return DEFAULT_URGENCY


class AuditDeadlinesAdapter(SourceAdapter):
    name = "audit_deadlines"
    source_label = "Federal Register Deadlines"

    def default_url(self) -> str:
        return FEDERAL_REGISTER_URL

    async def fetch(self, client: httpx.AsyncClient) -> list[dict[str, Any]]:
        now = self.clock()
        records: list[dict[str, Any]] = []
        for kind, params in QUERIES:
            payload = await self.get_json(client, self.base_url, params)
            results = payload.get("results") if isinstance(payload, dict) else None
            for article in results or []:
                if not isinstance(article, dict):
                    continue
                deadline = parse_source_datetime(article.get("effective_on") or article.get("comments_close_on"))
                if deadline is None:
                    continue
                days = days_until(deadline, now)
                if OLDEST_DAYS <= days <= FURTHEST_DAYS:
                    records.append(
                        {
                            **article,
                            "deadline_kind": kind,
                            "deadline_date": deadline.isoformat(),
                            "days_remaining": days,
                        }
                    )
        return records

    @staticmethod
    def _agency(raw: dict[str, Any]) -> str:
        for agency in raw.get("agencies") or []:
            if isinstance(agency, dict):
                name = clean(agency.get("name") or agency.get("raw_name"))
                if name:
                    return name
        return "Federal Agency"

    def identity(self, raw: dict[str, Any]) -> Identity:
        return (self._agency(raw), clean(raw.get("title")), "Deadline", clean(raw.get("deadline_date")))

    def needs_normalization(self, event: NormalizedEvent) -> bool:
        return False

    def to_event(self, raw: dict[str, Any]) -> NormalizedEvent:
        agency, title, _, deadline_iso = self.identity(raw)
        kind = raw.get("deadline_kind", MQSA)
        days = int(raw["days_remaining"])
        deadline = datetime.fromisoformat(deadline_iso)
        reason = f"Compliance deadline: {deadline:%a %b %d %Y}"
        document = clean(raw.get("document_number"))
        return NormalizedEvent(
            source_id=f"deadline-{document}" if document else "",
            source=LABELS.get(kind, self.source_label),
            title=f"Deadline: {title}",
            description=clean(raw.get("abstract")) or reason,
            source_tags={TAGS.get(kind, TAG_MQSA_DEADLINE)},
            manufacturer=agency,
            classification="Deadline",
            reason=reason,
            status="Upcoming" if days > 0 else "Overdue",
            link=clean(raw.get("html_url")) or None,
            source_date=deadline_iso,
            raw=raw,
        )

    def adjust_score(self, event: NormalizedEvent, result: ScoringResult) -> ScoringResult:
        days = int(event.raw["days_remaining"])
        return ScoringResult(
            score=urgency_score(days),
            reasons=[f"Deadline in {days} days", *result.reasons],
        )
