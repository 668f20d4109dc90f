"""openFDA device enforcement (recall) reports."""

from __future__ import annotations

from typing import Any

from ..models import EventFlags, NormalizedEvent
from ..scoring import TAG_DEVICE_ENFORCEMENT
from ..time_utils import to_iso
from .base import Identity, clean
from .openfda import OpenFDAAdapter, match_watchlist

TITLE_CHARS = 200


class DeviceEnforcementAdapter(OpenFDAAdapter):
    name = "device_enforcement"
    source_label = "openFDA"
    endpoint = "/device/enforcement.json"

    def identity(self, raw: dict[str, Any]) -> Identity:
        return (
            clean(raw.get("recalling_firm") or raw.get("firm_name")),
            clean(raw.get("product_description")),
            clean(raw.get("classification") or raw.get("product_class")),
            clean(raw.get("reason_for_recall")),
        )

    def to_event(self, raw: dict[str, Any]) -> NormalizedEvent:
        firm, product, classification, reason = self.identity(raw)
        match, model = match_watchlist(
            self.config.device_watchlist,
            firm,
            f"{product} {clean(raw.get('code_info'))}",
        )
        return NormalizedEvent(
            source_id=clean(raw.get("recall_number") or raw.get("event_id") or raw.get("res_event_number")),
            source=self.source_label,
            title=product[:TITLE_CHARS],
            description=reason,
            source_tags={TAG_DEVICE_ENFORCEMENT},
            flags=EventFlags(),
            match=match,
            manufacturer=firm or None,
            model=model,
            classification=classification or None,
            reason=reason or None,
            state=clean(raw.get("state")) or None,
            status=clean(raw.get("status")) or None,
            link=None,
            source_date=to_iso(clean(raw.get("report_date")) or None),
            raw=raw,
        )
