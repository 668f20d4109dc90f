"""Daily quota gate in front of the AI summarizer."""

from __future__ import annotations

import logging
import threading
from datetime import date
from zoneinfo import ZoneInfo

from .time_utils import Clock, utc_now

logger = logging.getLogger(__name__)

DEFAULT_DAILY_LIMIT = 200


class SummarizationGate:
    """Process-wide counter of summarizer calls for the current calendar day.

    The counter resets lazily: the first access after midnight (in ``tz``)
    starts a fresh day. ``try_consume`` is the only writer.
    """

    def __init__(self, daily_limit: int = DEFAULT_DAILY_LIMIT, tz: str = "UTC", clock: Clock = utc_now) -> None:
        if daily_limit < 0:
            raise ValueError("daily_limit must be >= 0")
        self.daily_limit = daily_limit
        self._zone = ZoneInfo(tz)
        self._clock = clock
        self._lock = threading.Lock()
        self._day = self._today()
        self._used = 0

    def _today(self) -> date:
        return self._clock().astimezone(self._zone).date()

    def _roll_over(self) -> None:
        today = self._today()
        if today != self._day:
            logger.info("AI usage counter reset for %s (previous day used %d)", today, self._used)
            self._day = today
            self._used = 0

    def try_consume(self) -> bool:
        with self._lock:
            self._roll_over()
            if self._used >= self.daily_limit:
                return False
            self._used += 1
            return True

    @property
    def used(self) -> int:
        with self._lock:
            self._roll_over()
            return self._used

    @property
    def remaining(self) -> int:
        with self._lock:
            self._roll_over()
            return max(self.daily_limit - self._used, 0)

    def usage(self) -> dict:
        with self._lock:
            self._roll_over()
            return {
                "date": self._day.isoformat(),
                "used": self._used,
                "limit": self.daily_limit,
                "remaining": max(self.daily_limit - self._used, 0),
            }

    def to_dict(self) -> dict:
        with self._lock:
            return {"date": self._day.isoformat(), "used": self._used}

    def restore(self, payload: dict | None) -> None:
        """Load a persisted counter; a snapshot from another day is ignored."""
        if not payload:
            return
        try:
            day = date.fromisoformat(str(payload.get("date", "")))
            used = int(payload.get("used", 0) or 0)
        except ValueError:
            logger.warning("Ignoring malformed AI usage snapshot: %r", payload)
            return
        with self._lock:
            self._roll_over()
            if day == self._day:
                self._used = max(self._used, used)
