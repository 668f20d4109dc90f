"""Alert planning and the JSON alert contract printed after pipeline runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

from .models import ScoredEvent

ALERT_CATEGORIES = frozenset({"Urgent", "Informational"})
SMS_CATEGORIES = frozenset({"Urgent"})


@dataclass(frozen=True)
class Subscriber:
    email: str | None = None
    phone: str | None = None
    categories: frozenset[str] = ALERT_CATEGORIES


@dataclass
class AlertPlan:
    email: list[str] = field(default_factory=list)
    sms: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.email and not self.sms


def plan_alerts(event: ScoredEvent, subscribers: Iterable[Subscriber], *, sms_enabled: bool = True) -> AlertPlan:
    """Decide who hears about ``event``.

    Only Urgent and Informational events alert at all, and SMS goes out for
    Urgent events only, whatever the subscriber asked for.
    """
    plan = AlertPlan()
    if event.category not in ALERT_CATEGORIES:
        return plan
    for sub in subscribers:
        if event.category not in sub.categories:
            continue
        if sub.email and sub.email not in plan.email:
            plan.email.append(sub.email)
        if sms_enabled and sub.phone and event.category in SMS_CATEGORIES and sub.phone not in plan.sms:
            plan.sms.append(sub.phone)
    return plan


def subscribers_from_lists(emails: Iterable[str], phones: Iterable[str]) -> list[Subscriber]:
    return [Subscriber(email=e) for e in emails] + [Subscriber(phone=p, categories=SMS_CATEGORIES) for p in phones]


def build_alert_contract(events: list[ScoredEvent], interval_minutes: int | None = None) -> dict:
    contract = {
        "urgent_alerts": [_event_payload(e) for e in events if e.category == "Urgent"],
        "informational_updates": [_event_payload(e) for e in events if e.category == "Informational"],
        "digest_items": [_event_payload(e) for e in events if e.category == "Digest"],
        "suppressed_count": sum(1 for e in events if e.category == "Suppressed"),
        "source_log": [
            {
                "source": e.source,
                "source_id": e.source_id,
                "link": e.link,
                "source_date": e.source_date,
            }
            for e in events
        ],
    }
    if interval_minutes:
        contract["next_check_time"] = (datetime.now(timezone.utc) + timedelta(minutes=interval_minutes)).isoformat()
    return contract


def _event_payload(event: ScoredEvent) -> dict:
    payload = {
        "id": getattr(event, "id", None),
        "source": event.source,
        "source_id": event.source_id,
        "category": event.category,
        "score": event.score,
        "reasons": list(event.reasons),
        "title": event.title,
        "summary": event.summary,
        "manufacturer": event.manufacturer,
        "model": event.model,
        "link": event.link,
        "source_date": event.source_date,
    }
    if event.delta is not None:
        payload["delta"] = event.delta.model_dump()
    return payload
