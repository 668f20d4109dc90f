"""Per-source run health: last success, last error, rolling 24h errors."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Protocol

from .models import SourceStatus
from .time_utils import Clock, utc_now

logger = logging.getLogger(__name__)

ERROR_WINDOW = timedelta(hours=24)
DIGEST_SOURCE = "digest"


class StatusStore(Protocol):
    def upsert_status(self, source: str, **fields: object) -> dict: ...

    def list_status(self) -> list[dict]: ...


@dataclass
class _SourceState:
    last_success: datetime | None = None
    last_error: datetime | None = None
    last_digest_sent: datetime | None = None
    error_times: list[datetime] = field(default_factory=list)


class StatusTracker:
    """Records outcomes of source runs.

    Error counts are derived at read time from the list of error
    timestamps, so entries older than 24 hours simply stop counting.
    ``degraded`` is never stored; it is computed from the live count.
    """

    def __init__(self, store: StatusStore | None = None, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[str, _SourceState] = {}
        if store is not None:
            for row in store.list_status():
                self._states[str(row["source"])] = _SourceState(
                    last_success=row.get("last_success"),
                    last_error=row.get("last_error"),
                    last_digest_sent=row.get("last_digest_sent"),
                    error_times=list(row.get("error_times") or []),
                )

    def _state(self, source: str) -> _SourceState:
        return self._states.setdefault(source, _SourceState())

    def _recent_errors(self, state: _SourceState, now: datetime) -> list[datetime]:
        return [ts for ts in state.error_times if now - ts <= ERROR_WINDOW]

    def _write_through(self, source: str, state: _SourceState) -> None:
        if self._store is None:
            return
        self._store.upsert_status(
            source,
            last_success=state.last_success,
            last_error=state.last_error,
            last_digest_sent=state.last_digest_sent,
            error_times=list(state.error_times),
        )

    def record_success(self, source: str) -> SourceStatus:
        now = self._clock()
        with self._lock:
            state = self._state(source)
            state.last_success = now
            self._write_through(source, state)
            return self._to_status(source, state, now)

    def record_failure(self, source: str) -> SourceStatus:
        now = self._clock()
        with self._lock:
            state = self._state(source)
            state.last_error = now
            # Drop expired timestamps on write so the list stays bounded.
            state.error_times = [*self._recent_errors(state, now), now]
            self._write_through(source, state)
            status = self._to_status(source, state, now)
        logger.warning("Source %s failed (%d errors in 24h)", source, status.error_count_24h)
        return status

    def mark_digest_sent(self) -> SourceStatus:
        now = self._clock()
        with self._lock:
            state = self._state(DIGEST_SOURCE)
            state.last_digest_sent = now
            state.last_success = now
            self._write_through(DIGEST_SOURCE, state)
            return self._to_status(DIGEST_SOURCE, state, now)

    def get(self, source: str) -> SourceStatus:
        now = self._clock()
        with self._lock:
            state = self._states.get(source)
            if state is None:
                return SourceStatus(source=source)
            return self._to_status(source, state, now)

    def snapshot(self, known_sources: Iterable[str] = ()) -> list[SourceStatus]:
        now = self._clock()
        with self._lock:
            names = list(dict.fromkeys([*known_sources, *self._states]))
            result: list[SourceStatus] = []
            for name in names:
                state = self._states.get(name)
                result.append(SourceStatus(source=name) if state is None else self._to_status(name, state, now))
            return result

    def _to_status(self, source: str, state: _SourceState, now: datetime) -> SourceStatus:
        errors = len(self._recent_errors(state, now))
        if errors > 0:
            health = "degraded"
        elif state.last_success is not None:
            health = "healthy"
        else:
            health = "unknown"
        return SourceStatus(
            source=source,
            last_success=state.last_success,
            last_error=state.last_error,
            error_count_24h=errors,
            last_digest_sent=state.last_digest_sent,
            health=health,
        )


def aggregate_status(statuses: list[SourceStatus], ai_usage: dict | None = None, clock: Clock = utc_now) -> dict:
    """Shape used by the status surface: per-source maps plus digest info."""
    payload: dict = {
        "last_success": {},
        "last_error": {},
        "error_counts_24h": {},
        "health": {},
        "degraded_sources": [],
        "last_digest_sent": None,
        "timestamp": clock().isoformat(),
    }
    for status in statuses:
        if status.source == DIGEST_SOURCE:
            payload["last_digest_sent"] = status.last_digest_sent.isoformat() if status.last_digest_sent else None
            continue
        payload["last_success"][status.source] = status.last_success.isoformat() if status.last_success else None
        payload["last_error"][status.source] = status.last_error.isoformat() if status.last_error else None
        payload["error_counts_24h"][status.source] = status.error_count_24h
        payload["health"][status.source] = status.health
        if status.health == "degraded":
            payload["degraded_sources"].append(status.source)
    if ai_usage is not None:
        payload["ai_usage"] = ai_usage
    return payload
