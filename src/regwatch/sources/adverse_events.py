"""MAUDE adverse-event reports aggregated into per-device signals."""

from __future__ import annotations

import re
from collections import Counter
from typing import Any

import httpx

from ..models import EntityMatch, EventFlags, NormalizedEvent, ScoringResult
from ..scoring import TAG_ADVERSE_EVENT, with_cap
from ..time_utils import to_iso
from .base import Identity, clean
from .openfda import OpenFDAAdapter

SIGNAL_SCORE_CAP = 70
UNKNOWN = "Unknown"


def _device(report: dict[str, Any]) -> dict[str, Any]:
    devices = report.get("device") or []
    if isinstance(devices, list) and devices and isinstance(devices[0], dict):
        return devices[0]
    return devices if isinstance(devices, dict) else {}


class AdverseEventsAdapter(OpenFDAAdapter):
    """Emits one signal per manufacturer and model with enough reports.

    Raw records handed to the pipeline are the aggregated signals, not the
    individual reports.
    """

    name = "adverse_events"
    source_label = "MAUDE"
    endpoint = "/device/event.json"
    date_field = "date_received"
    lookback_days = 90
    extra_search = (
        "(device.generic_name:imaging OR device.generic_name:contrast OR "
        "device.generic_name:mri OR device.generic_name:ct OR device.generic_name:xray)"
    )

    async def fetch(self, client: httpx.AsyncClient) -> list[dict[str, Any]]:
        reports = await super().fetch(client)
        counts: Counter[tuple[str, str]] = Counter()
        event_types: dict[tuple[str, str], Counter[str]] = {}
        latest: dict[tuple[str, str], str] = {}
        for report in reports:
            device = _device(report)
            key = (
                clean(device.get("manufacturer_d_name") or device.get("manufacturer_name")) or UNKNOWN,
                clean(device.get("model_number") or device.get("brand_name")) or UNKNOWN,
            )
            counts[key] += 1
            event_types.setdefault(key, Counter())[clean(report.get("event_type")) or UNKNOWN] += 1
            received = clean(report.get("date_received"))
            if received > latest.get(key, ""):
                latest[key] = received
        threshold = self.config.adverse_event_min_reports
        return [
            {
                "manufacturer": manufacturer,
                "model": model,
                "count": count,
                "event_types": dict(event_types[(manufacturer, model)]),
                "latest_report": latest.get((manufacturer, model)) or None,
            }
            for (manufacturer, model), count in sorted(counts.items())
            if count >= threshold
        ]

    def identity(self, raw: dict[str, Any]) -> Identity:
        return (raw["manufacturer"], raw["model"], "Signal", "adverse event reports")

    def needs_normalization(self, event: NormalizedEvent) -> bool:
        return False

    def to_event(self, raw: dict[str, Any]) -> NormalizedEvent:
        manufacturer, model, count = raw["manufacturer"], raw["model"], int(raw["count"])
        slug = re.sub(r"[^a-zA-Z0-9]", "", f"{manufacturer}{model}")
        return NormalizedEvent(
            source_id=f"maude-pattern-{slug}",
            source=self.source_label,
            title=f"MAUDE Signal: {count} reports for {manufacturer} {model}",
            description=f"{count} adverse event reports detected",
            source_tags={TAG_ADVERSE_EVENT},
            flags=EventFlags(adverse_event_signal=True),
            match=EntityMatch(exact_model=True),
            manufacturer=manufacturer,
            model=model,
            classification="Signal",
            reason=f"{count} adverse event reports detected",
            status="Pattern Detected",
            source_date=to_iso(raw.get("latest_report")),
            raw=raw,
        )

    def adjust_score(self, event: NormalizedEvent, result: ScoringResult) -> ScoringResult:
        return with_cap(result, SIGNAL_SCORE_CAP)
