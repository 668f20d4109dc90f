"""Physician fee schedule rate changes, detected by diffing rate snapshots."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..models import Delta, NormalizedEvent
from ..scoring import TAG_PAYMENT_CHANGE
from ..time_utils import to_iso
from .base import Identity, SourceAdapter, clean

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "payment_schedule:rates"
ISSUER = "CMS"
CHANGE_REASON = "Medicare PFS rate adjustment"

# Reference national rates used when no rates endpoint is configured.
REFERENCE_RATES: dict[str, float] = {
    "70553": 296.65,
    "70552": 245.32,
    "70551": 189.87,
    "70450": 156.43,
    "70460": 198.76,
    "70470": 234.21,
    "72148": 312.45,
    "72149": 389.12,
    "72158": 445.67,
    "73721": 278.90,
    "73722": 334.55,
}


def parse_rates(payload: Any) -> dict[str, float]:
    """Accept ``{code: rate}``, ``{"rates": {...}}`` or a list of ``{code, rate}`` rows."""
    if isinstance(payload, dict) and isinstance(payload.get("rates"), (dict, list)):
        payload = payload["rates"]
    rows: list[tuple[Any, Any]]
    if isinstance(payload, dict):
        rows = list(payload.items())
    elif isinstance(payload, list):
        rows = [
            (row.get("code") or row.get("cpt_code"), row.get("rate") or row.get("amount"))
            for row in payload
            if isinstance(row, dict)
        ]
    else:
        raise ValueError(f"Unsupported rates payload: {type(payload).__name__}")
    rates: dict[str, float] = {}
    for code, rate in rows:
        try:
            rates[clean(code)] = float(rate)
        except (TypeError, ValueError):
            logger.warning("Skipping malformed rate for code %r: %r", code, rate)
    return {code: rate for code, rate in rates.items() if code}


class PaymentScheduleAdapter(SourceAdapter):
    name = "payment_schedule"
    source_label = "CMS"
    detect_patterns = False

    def __init__(self, config, **kwargs) -> None:
        super().__init__(config, **kwargs)
        self._previous: dict[str, float] = {}
        self._current: dict[str, float] | None = None
        self._effective_date: str | None = None

    def default_url(self) -> str:
        return self.config.payment_rates_url or ""

    def prepare(self, store: Any) -> None:
        snapshot = store.load_snapshot(SNAPSHOT_KEY) if store is not None else None
        self._previous = dict((snapshot or {}).get("rates") or {})
        self._current = None

    async def fetch(self, client: httpx.AsyncClient) -> list[dict[str, Any]]:
        self._effective_date = None
        if self.base_url:
            payload = await self.get_json(client, self.base_url)
            if isinstance(payload, dict):
                self._effective_date = clean(payload.get("effective_date")) or None
            current = parse_rates(payload)
        else:
            current = dict(REFERENCE_RATES)
        self._current = current
        changes: list[dict[str, Any]] = []
        for code, new_rate in sorted(current.items()):
            old_rate = self._previous.get(code)
            if old_rate is not None and old_rate != new_rate:
                changes.append(
                    {"code": code, "old": float(old_rate), "new": new_rate, "effective_date": self._effective_date}
                )
        logger.info("%s: %d codes, %d changed", self.name, len(current), len(changes))
        return changes

    def commit(self, store: Any) -> None:
        if self._current is None:
            return
        store.save_snapshot(
            SNAPSHOT_KEY,
            {"rates": self._current, "updated_at": self.clock().isoformat(), "codes": sorted(self._current)},
        )
        self._previous = dict(self._current)

    def identity(self, raw: dict[str, Any]) -> Identity:
        return (ISSUER, f"CPT {raw['code']}", f"{raw['old']:.2f}->{raw['new']:.2f}", CHANGE_REASON)

    def needs_normalization(self, event: NormalizedEvent) -> bool:
        return False

    def to_event(self, raw: dict[str, Any]) -> NormalizedEvent:
        code, old, new = raw["code"], raw["old"], raw["new"]
        return NormalizedEvent(
            source_id=f"cms-pfs-{code}-{new:.2f}",
            source=self.source_label,
            title=f"CPT Code {code} Reimbursement Rate Update",
            description=f"Medicare rate for CPT {code} changed from ${old:.2f} to ${new:.2f}",
            source_tags={TAG_PAYMENT_CHANGE},
            delta=Delta(old=old, new=new),
            manufacturer=ISSUER,
            reason=CHANGE_REASON,
            status="Active",
            codes=[code],
            source_date=to_iso(raw.get("effective_date")),
            raw=raw,
        )
