"""AI collaborators: record normalization, pattern detection and summaries.

All three talk to an ``LLMProvider``. Their failure modes differ:

- ``AINormalizer`` fails closed and raises ``NormalizationError``; the
  pipeline then keeps the partial record it already had.
- ``PatternDetector`` never raises; a failed call yields all-false flags
  with confidence 0.
- ``Summarizer`` never raises; a failed call yields the truncated title.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from .errors import NormalizationError
from .llm_provider import LLMProvider, get_provider
from .llm_utils import truncate
from .models import EntityMatch, EventFlags, NormalizedEvent

logger = logging.getLogger(__name__)

NORMALIZED_FIELDS = (
    "title",
    "description",
    "manufacturer",
    "model",
    "classification",
    "reason",
    "state",
    "status",
)

_NULLABLE_STRING = {"type": ["string", "null"]}

NORMALIZE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": [*NORMALIZED_FIELDS, "codes", "delta"],
    "properties": {
        **{name: _NULLABLE_STRING for name in NORMALIZED_FIELDS},
        "codes": {"type": ["array", "null"], "items": {"type": "string"}},
        "delta": {
            "type": ["object", "null"],
            "additionalProperties": False,
            "required": ["old", "new"],
            "properties": {"old": {"type": "number"}, "new": {"type": "number"}},
        },
    },
}

PATTERN_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["flags", "match", "confidence"],
    "properties": {
        "flags": {
            "type": "object",
            "additionalProperties": False,
            "required": list(EventFlags.model_fields),
            "properties": {name: {"type": "boolean"} for name in EventFlags.model_fields},
        },
        "match": {
            "type": "object",
            "additionalProperties": False,
            "required": list(EntityMatch.model_fields),
            "properties": {name: {"type": "boolean"} for name in EntityMatch.model_fields},
        },
        "confidence": {"type": "number"},
    },
}

NORMALIZE_INSTRUCTIONS = (
    "You are a data normalization expert for regulatory intelligence. "
    "Given one raw record, return a single JSON object with the requested fields. "
    "Never invent values; use null when a field is unknown. "
    "For payment schedule data populate delta with the old and new amounts."
)

PATTERN_INSTRUCTIONS = (
    "Analyze this regulatory event and report which signals it carries. "
    "Look for adverse-event references, official manufacturer communications, "
    "state mandates, radiation safety requirements and specific device model mentions. "
    "confidence is a number between 0 and 100."
)

SUMMARY_INSTRUCTIONS = (
    "You are an expert medical regulatory analyst. Create clear, actionable "
    "1-2 sentence summaries for radiology clinic staff. Focus on immediate "
    "impact and required actions."
)


@dataclass
class PatternResult:
    flags: EventFlags = field(default_factory=EventFlags)
    match: EntityMatch = field(default_factory=EntityMatch)
    confidence: float = 0.0


class AINormalizer:
    def __init__(self, provider: LLMProvider | None = None, *, timeout: float = 30.0) -> None:
        self._provider = provider
        self.timeout = timeout

    @property
    def provider(self) -> LLMProvider:
        return self._provider or get_provider()

    async def normalize(self, raw: dict[str, Any], source: str) -> dict[str, Any]:
        result = await self.provider.complete(
            system=NORMALIZE_INSTRUCTIONS,
            user=json.dumps({"source": source, "record": raw}, default=str)[:12000],
            json_schema=NORMALIZE_SCHEMA,
            schema_name="normalized_event",
            timeout=self.timeout,
        )
        if not isinstance(result, dict):
            raise NormalizationError(f"No usable normalization for {source} record")
        cleaned = {k: v for k, v in result.items() if v not in (None, "", [])}
        delta = cleaned.get("delta")
        if delta is not None and not (
            isinstance(delta, dict) and isinstance(delta.get("old"), (int, float)) and isinstance(delta.get("new"), (int, float))
        ):
            raise NormalizationError(f"Malformed delta in {source} normalization: {delta!r}")
        return cleaned


class PatternDetector:
    def __init__(self, provider: LLMProvider | None = None, *, timeout: float = 30.0) -> None:
        self._provider = provider
        self.timeout = timeout

    @property
    def provider(self) -> LLMProvider:
        return self._provider or get_provider()

    async def detect(self, event: NormalizedEvent) -> PatternResult:
        payload = event.model_dump(
            mode="json",
            include={"source", "title", "description", "manufacturer", "model", "classification", "reason"},
        )
        try:
            result = await self.provider.complete(
                system=PATTERN_INSTRUCTIONS,
                user=json.dumps(payload),
                json_schema=PATTERN_SCHEMA,
                schema_name="pattern_detection",
                timeout=self.timeout,
            )
            if not isinstance(result, dict):
                return PatternResult()
            return PatternResult(
                flags=EventFlags.model_validate(result.get("flags") or {}),
                match=EntityMatch.model_validate(result.get("match") or {}),
                confidence=float(result.get("confidence") or 0.0),
            )
        except Exception as exc:
            logger.warning("Pattern detection failed for %s: %s", event.source_id, exc)
            return PatternResult()


class Summarizer:
    """Produces short clinic-ready summaries, spaced by ``spacing_seconds``."""

    def __init__(
        self,
        provider: LLMProvider | None = None,
        *,
        fallback_chars: int = 100,
        spacing_seconds: float = 1.0,
        timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self.fallback_chars = fallback_chars
        self.spacing_seconds = spacing_seconds
        self.timeout = timeout
        self._sleep = sleep
        self._monotonic = monotonic
        self._last_call: float | None = None
        self._throttle_lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None

    @property
    def provider(self) -> LLMProvider:
        return self._provider or get_provider()

    def fallback(self, event: NormalizedEvent) -> str:
        return truncate(event.title, self.fallback_chars)

    def _lock(self) -> asyncio.Lock:
        # asyncio locks bind to the loop they first wait on; each asyncio.run
        # tick gets its own.
        loop = asyncio.get_running_loop()
        if self._throttle_lock is None or self._lock_loop is not loop:
            self._throttle_lock = asyncio.Lock()
            self._lock_loop = loop
        return self._throttle_lock

    async def _throttle(self) -> None:
        async with self._lock():
            if self._last_call is not None:
                wait = self.spacing_seconds - (self._monotonic() - self._last_call)
                if wait > 0:
                    await self._sleep(wait)
            self._last_call = self._monotonic()

    async def summarize(self, event: NormalizedEvent) -> str:
        prompt = (
            "Summarize this regulatory event for a radiology clinic:\n\n"
            f"Title: {event.title}\n"
            f"Source: {event.source}\n"
            f"Device: {event.model or 'N/A'}\n"
            f"Manufacturer: {event.manufacturer or 'N/A'}\n"
            f"Reason: {event.reason or 'N/A'}\n"
            f"Classification: {event.classification or 'N/A'}\n"
        )
        try:
            await self._throttle()
            result = await self.provider.complete(
                system=SUMMARY_INSTRUCTIONS,
                user=prompt,
                timeout=self.timeout,
            )
        except Exception as exc:
            logger.warning("Summarization failed for %s: %s", event.source_id, exc)
            return self.fallback(event)
        if not isinstance(result, str) or not result.strip():
            return self.fallback(event)
        return result.strip()

    async def batch_summarize(self, events: Iterable[NormalizedEvent]) -> list[tuple[str, str]]:
        """Summaries in input order as ``(source_id, summary)`` pairs."""
        return [(event.source_id, await self.summarize(event)) for event in events]
