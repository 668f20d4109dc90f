"""Signature-based duplicate suppression over a rolling time window."""

from __future__ import annotations

import hashlib
import threading
from datetime import datetime, timedelta
from typing import Dict

from .time_utils import Clock, parse_source_datetime, utc_now

DEFAULT_WINDOW_DAYS = 14


def normalize_text(value: str | None) -> str:
    return " ".join((value or "").casefold().split())


def compute_signature(organization: str | None, subject: str | None, classification: str | None, reason: str | None) -> str:
    canonical = "|".join(
        normalize_text(part) for part in (organization, subject, classification, reason)
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


class SignatureWindow:
    """Maps signature -> last time the fact was committed.

    ``is_duplicate`` only reads; ``record`` is called by the pipeline once an
    event is committed, so preview runs leave the window untouched.
    """

    def __init__(self, window_days: int = DEFAULT_WINDOW_DAYS, clock: Clock = utc_now) -> None:
        self.window = timedelta(days=window_days)
        self._clock = clock
        self._seen: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def __contains__(self, signature: str) -> bool:
        with self._lock:
            return signature in self._seen

    def is_duplicate(self, signature: str, now: datetime | None = None) -> bool:
        current = now or self._clock()
        with self._lock:
            last_seen = self._seen.get(signature)
        if last_seen is None:
            return False
        return current - last_seen <= self.window

    def record(self, signature: str, now: datetime | None = None) -> None:
        with self._lock:
            self._seen[signature] = now or self._clock()

    def prune(self, now: datetime | None = None) -> int:
        current = now or self._clock()
        with self._lock:
            expired = [sig for sig, ts in self._seen.items() if current - ts > self.window]
            for sig in expired:
                del self._seen[sig]
        return len(expired)

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "window_days": self.window.days,
                "signatures": {sig: ts.isoformat() for sig, ts in self._seen.items()},
            }

    @classmethod
    def from_dict(cls, payload: dict | None, clock: Clock = utc_now, window_days: int | None = None) -> "SignatureWindow":
        payload = payload or {}
        days = window_days or int(payload.get("window_days", DEFAULT_WINDOW_DAYS) or DEFAULT_WINDOW_DAYS)
        window = cls(window_days=days, clock=clock)
        for sig, raw_ts in (payload.get("signatures") or {}).items():
            ts = parse_source_datetime(raw_ts)
            if ts is not None:
                window._seen[str(sig)] = ts
        return window
