"""Per-source orchestration: fetch, dedupe, score, summarize, persist."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol

import httpx

from .ai import AINormalizer, PatternDetector, Summarizer
from .config import PipelineConfig
from .dedupe import SignatureWindow, compute_signature
from .errors import SourceRunError, UnknownSourceError
from .models import Delta, NormalizedEvent, PersistedEvent, PipelineRunResult, ScoredEvent
from .quota import SummarizationGate
from .scoring import categorize, score_event, should_summarize
from .sources import SourceAdapter, build_adapters
from .status import StatusTracker
from .time_utils import Clock, utc_now

logger = logging.getLogger(__name__)

WINDOW_SNAPSHOT_KEY = "dedupe:signatures"
AI_USAGE_SNAPSHOT_KEY = "ai_usage"
NOTIFY_CATEGORIES = {"Urgent", "Informational"}
USER_AGENT = "regwatch/0.1 (+regulatory event monitor)"

TEXT_FIELDS = ("title", "description", "manufacturer", "model", "classification", "reason", "state", "status")


class Notifier(Protocol):
    async def notify(self, event: PersistedEvent) -> Any: ...


@dataclass
class AICollaborators:
    normalizer: AINormalizer | None = None
    detector: PatternDetector | None = None
    summarizer: Summarizer | None = None


def apply_normalized(event: NormalizedEvent, fields: Mapping[str, Any]) -> NormalizedEvent:
    """Fill fields the adapter left empty; values the adapter set win."""
    update: dict[str, Any] = {}
    for name in TEXT_FIELDS:
        value = fields.get(name)
        if isinstance(value, str) and value.strip() and not getattr(event, name):
            update[name] = value.strip()
    codes = fields.get("codes")
    if codes and not event.codes:
        update["codes"] = [str(c) for c in codes]
    delta = fields.get("delta")
    if delta and event.delta is None:
        update["delta"] = Delta(old=delta["old"], new=delta["new"])
    return event.model_copy(update=update) if update else event


class Pipeline:
    """Runs source adapters against shared dedupe, quota and status state.

    The window, the gate and the tracker are owned by the caller and may be
    shared by several pipelines. Runs of the same source are serialized;
    different sources may run concurrently.
    """

    def __init__(
        self,
        adapters: Mapping[str, SourceAdapter],
        store: Any,
        *,
        config: PipelineConfig | None = None,
        window: SignatureWindow | None = None,
        gate: SummarizationGate | None = None,
        tracker: StatusTracker | None = None,
        ai: AICollaborators | None = None,
        notifier: Notifier | None = None,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
        persist_window: bool = True,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config or PipelineConfig()
        self.adapters = dict(adapters)
        self.store = store
        self.window = window or SignatureWindow(self.config.dedupe_window_days, clock=clock)
        self.gate = gate or SummarizationGate(self.config.daily_summary_limit, self.config.timezone, clock=clock)
        self.tracker = tracker or StatusTracker(store, clock=clock)
        self.ai = ai or AICollaborators()
        self.notifier = notifier
        self.persist_window = persist_window
        self._client_factory = client_factory or self._default_client
        self._clock = clock
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._locks_loop: asyncio.AbstractEventLoop | None = None

    def _source_lock(self, name: str) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._locks_loop is not loop:
            self._locks = defaultdict(asyncio.Lock)
            self._locks_loop = loop
        return self._locks[name]

    def _default_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.request_timeout_seconds,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )

    async def run_source(self, name: str, dry_run: bool = False) -> PipelineRunResult:
        adapter = self.adapters.get(name)
        if adapter is None:
            raise UnknownSourceError(name)
        async with self._source_lock(name):
            try:
                result = await self._run(adapter, dry_run)
            except Exception as exc:
                logger.error("Source %s run failed: %s", name, exc)
                if not dry_run:
                    self.tracker.record_failure(name)
                raise SourceRunError(name) from exc
            if not dry_run:
                self.tracker.record_success(name)
        logger.info(
            "Source %s: fetched=%d duplicates=%d events=%d summarized=%d dry_run=%s",
            name,
            result.fetched_count,
            result.duplicate_count,
            result.count,
            result.summarized_count,
            dry_run,
        )
        return result

    async def run_all(self, dry_run: bool = False) -> dict[str, PipelineRunResult | BaseException]:
        """Run every adapter concurrently; failures are returned, not raised."""
        names = list(self.adapters)
        outcomes = await asyncio.gather(
            *(self.run_source(name, dry_run) for name in names),
            return_exceptions=True,
        )
        return dict(zip(names, outcomes))

    async def _run(self, adapter: SourceAdapter, dry_run: bool) -> PipelineRunResult:
        fetched_at = self._clock()
        adapter.prepare(self.store)
        async with self._client_factory() as client:
            raw_records = await adapter.fetch(client)

        events: list[ScoredEvent] = []
        seen: set[str] = set()
        duplicates = 0
        summarized = 0
        try:
            for raw in raw_records:
                signature = compute_signature(*adapter.identity(raw))
                if signature in seen or self.window.is_duplicate(signature):
                    duplicates += 1
                    continue
                seen.add(signature)

                event = await self._normalize(adapter, raw, signature)
                result = adapter.adjust_score(
                    event,
                    score_event(
                        event,
                        critical_modalities=self.config.critical_modalities,
                        major_regions=self.config.major_regions,
                    ),
                )
                category = categorize(result.score)
                scored = ScoredEvent(
                    **event.model_dump(),
                    score=result.score,
                    reasons=result.reasons,
                    category=category,
                )

                if not dry_run and should_summarize(category) and self.ai.summarizer is not None:
                    if self.gate.try_consume():
                        scored.summary = await self.ai.summarizer.summarize(scored)
                        summarized += 1
                    else:
                        logger.info("Daily summary limit reached; %s stored without summary", scored.source_id)

                if dry_run:
                    events.append(scored)
                    continue

                persisted = self.store.append(scored)
                self.window.record(signature)
                events.append(persisted)
                await self._notify(persisted)
        finally:
            # Events already persisted keep their signatures even if a later one fails.
            if not dry_run:
                self.save_state()

        if not dry_run:
            adapter.commit(self.store)

        return PipelineRunResult(
            source=adapter.name,
            dry_run=dry_run,
            fetched_at=fetched_at,
            fetched_count=len(raw_records),
            duplicate_count=duplicates,
            summarized_count=summarized,
            events=events,
        )

    async def _normalize(self, adapter: SourceAdapter, raw: dict[str, Any], signature: str) -> NormalizedEvent:
        event = adapter.to_event(raw)
        if not event.source_id:
            event = event.model_copy(update={"source_id": signature})

        normalizer = self.ai.normalizer
        if normalizer is not None and adapter.needs_normalization(event):
            try:
                fields = await normalizer.normalize(raw, adapter.source_label)
            except Exception as exc:
                logger.warning("Normalization failed for %s/%s, keeping raw fields: %s", adapter.name, event.source_id, exc)
            else:
                event = apply_normalized(event, fields)

        detector = self.ai.detector
        if detector is not None and adapter.detect_patterns:
            patterns = await detector.detect(event)
            event = event.model_copy(
                update={
                    "flags": event.flags.merged(patterns.flags),
                    "match": event.match.merged(patterns.match),
                }
            )
        return event

    async def _notify(self, event: PersistedEvent) -> None:
        if self.notifier is None or event.category not in NOTIFY_CATEGORIES:
            return
        try:
            await self.notifier.notify(event)
        except Exception as exc:
            logger.warning("Notification for %s failed: %s", event.id, exc)

    def save_state(self) -> None:
        """Persist the signature window and today's AI usage counter."""
        if self.persist_window:
            self.window.prune()
            self.store.save_snapshot(WINDOW_SNAPSHOT_KEY, self.window.to_dict())
        self.store.save_snapshot(AI_USAGE_SNAPSHOT_KEY, self.gate.to_dict())


def build_pipeline(
    config: PipelineConfig,
    store: Any,
    *,
    ai: AICollaborators | None = None,
    notifier: Notifier | None = None,
    persist_window: bool = True,
    clock: Clock = utc_now,
    **adapter_kwargs: Any,
) -> Pipeline:
    """Wire a pipeline with state restored from ``store`` snapshots."""
    if persist_window:
        window = SignatureWindow.from_dict(
            store.load_snapshot(WINDOW_SNAPSHOT_KEY),
            clock=clock,
            window_days=config.dedupe_window_days,
        )
    else:
        window = SignatureWindow(config.dedupe_window_days, clock=clock)
    gate = SummarizationGate(config.daily_summary_limit, config.timezone, clock=clock)
    gate.restore(store.load_snapshot(AI_USAGE_SNAPSHOT_KEY))
    return Pipeline(
        build_adapters(config, clock=clock, **adapter_kwargs),
        store,
        config=config,
        window=window,
        gate=gate,
        tracker=StatusTracker(store, clock=clock),
        ai=ai,
        notifier=notifier,
        persist_window=persist_window,
        clock=clock,
    )
