import asyncio
from pathlib import Path
from typing import Any

import httpx
import pytest
from conftest import FakeClock, RecordingSleep, ScriptedProvider

from regwatch.ai import AINormalizer, PatternDetector, Summarizer
from regwatch.config import PipelineConfig
from regwatch.database import EventStore
from regwatch.errors import SourceRunError, UnknownSourceError
from regwatch.models import Delta, EntityMatch, EventFlags, NormalizedEvent
from regwatch.pipeline import (
    AI_USAGE_SNAPSHOT_KEY,
    WINDOW_SNAPSHOT_KEY,
    AICollaborators,
    Pipeline,
    apply_normalized,
    build_pipeline,
)
from regwatch.quota import SummarizationGate
from regwatch.sources import RegulatoryNoticesAdapter
from regwatch.sources.base import SourceAdapter


class FakeAdapter(SourceAdapter):
    name = "fake"
    source_label = "Fake"

    def __init__(self, records: list[dict[str, Any]], error: Exception | None = None, name: str = "fake") -> None:
        super().__init__(PipelineConfig())
        self.name = name
        self.records = records
        self.error = error
        self.prepared = 0
        self.commits = 0

    async def fetch(self, client: httpx.AsyncClient) -> list[dict[str, Any]]:
        if self.error is not None:
            raise self.error
        return list(self.records)

    def identity(self, raw: dict[str, Any]) -> tuple[str, str, str, str]:
        return (raw.get("org", "Acme"), raw.get("title", ""), raw.get("class", "Class II"), raw.get("reason", ""))

    def to_event(self, raw: dict[str, Any]) -> NormalizedEvent:
        return NormalizedEvent(
            source_id=raw.get("id", ""),
            source=self.source_label,
            title=raw.get("title", ""),
            description=raw.get("description", ""),
            source_tags=set(raw.get("tags", ["openfda:enforcement"])),
            flags=EventFlags(**raw.get("flags", {})),
            match=EntityMatch(**raw.get("match", {})),
            delta=Delta(**raw["delta"]) if "delta" in raw else None,
            raw=raw,
        )

    def prepare(self, store: Any) -> None:
        self.prepared += 1

    def commit(self, store: Any) -> None:
        self.commits += 1


class RecordingNotifier:
    def __init__(self, error: Exception | None = None) -> None:
        self.events: list[Any] = []
        self.error = error

    async def notify(self, event: Any) -> None:
        self.events.append(event)
        if self.error is not None:
            raise self.error


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))


RECALL = {
    "id": "Z-1",
    "title": "MAGNETOM Vida recall",
    "description": "Coil overheating",
    "reason": "Coil overheating",
    "match": {"exact_model": True},
}
PAYMENT = {
    "id": "cms-70553",
    "org": "CMS",
    "title": "CPT 70553 rate update",
    "description": "Rate changed",
    "tags": ["cms:pfs_change"],
    "delta": {"old": 100.0, "new": 160.0},
}
LOW = {"id": "Z-9", "title": "Labeling typo", "description": "Minor", "tags": []}


def _pipeline(
    tmp_path: Path,
    clock: FakeClock,
    adapters: list[SourceAdapter],
    *,
    summaries: tuple[Any, ...] = (),
    daily_limit: int = 10,
    **kwargs: Any,
) -> Pipeline:
    ai = kwargs.pop("ai", None) or AICollaborators(
        summarizer=Summarizer(ScriptedProvider(*summaries), spacing_seconds=0, sleep=RecordingSleep())
    )
    return Pipeline(
        {a.name: a for a in adapters},
        EventStore(tmp_path / "regwatch.db"),
        gate=SummarizationGate(daily_limit, clock=clock),
        ai=ai,
        client_factory=_client,
        clock=clock,
        **kwargs,
    )


def test_recall_with_exact_match_is_informational(tmp_path: Path, clock: FakeClock) -> None:
    pipeline = _pipeline(tmp_path, clock, [FakeAdapter([RECALL])], summaries=("Check affected coils.",))
    result = asyncio.run(pipeline.run_source("fake"))

    assert result.count == 1
    event = result.events[0]
    assert (event.score, event.category) == (80, "Informational")
    assert event.reasons == ["FDA enforcement action", "Exact device match"]
    assert event.summary == "Check affected coils."
    assert result.summarized_count == 1
    assert pipeline.store.get(event.id).summary == "Check affected coils."
    assert pipeline.tracker.get("fake").health == "healthy"


def test_large_payment_change_is_urgent(tmp_path: Path, clock: FakeClock) -> None:
    notifier = RecordingNotifier()
    pipeline = _pipeline(tmp_path, clock, [FakeAdapter([PAYMENT, LOW])], summaries=("Rate up.",), notifier=notifier)
    result = asyncio.run(pipeline.run_source("fake"))

    urgent, low = result.events
    assert (urgent.score, urgent.category) == (85, "Urgent")
    assert (low.score, low.category) == (0, "Suppressed")
    assert low.summary is None
    assert [e.source_id for e in notifier.events] == ["cms-70553"]


def test_regulatory_notice_adjusted_to_informational(
    tmp_path: Path, clock: FakeClock, fake_sleep: RecordingSleep
) -> None:
    article = {
        "document_number": "2025-04321",
        "title": "Radiation protection for fluoroscopy",
        "type": "Rule",
        "abstract": "Sets new dose limits.",
        "agencies": [{"name": "Food and Drug Administration"}],
    }
    detector = PatternDetector(
        ScriptedProvider(
            {
                "flags": {
                    "manufacturer_notice": True,
                    "adverse_event_signal": True,
                    "state_mandate": False,
                    "radiation_safety": True,
                },
                "match": {"exact_model": True, "fuzzy_model": True},
                "confidence": 90,
            }
        )
    )
    adapter = RegulatoryNoticesAdapter(PipelineConfig(), sleep=fake_sleep)
    pipeline = Pipeline(
        {adapter.name: adapter},
        EventStore(tmp_path / "regwatch.db"),
        ai=AICollaborators(detector=detector),
        client_factory=lambda: httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"results": [article]}))
        ),
        clock=clock,
    )
    result = asyncio.run(pipeline.run_source("regulatory_notices"))
    event = result.events[0]
    assert event.score == 75
    assert event.category == "Informational"


def test_dry_run_is_idempotent_and_changes_nothing(tmp_path: Path, clock: FakeClock) -> None:
    adapter = FakeAdapter([RECALL, PAYMENT])
    provider = ScriptedProvider("never used")
    pipeline = _pipeline(
        tmp_path,
        clock,
        [adapter],
        ai=AICollaborators(summarizer=Summarizer(provider, spacing_seconds=0)),
        notifier=RecordingNotifier(),
    )

    first = asyncio.run(pipeline.run_source("fake", dry_run=True))
    second = asyncio.run(pipeline.run_source("fake", dry_run=True))

    assert first.dry_run
    assert [(e.source_id, e.score, e.category) for e in first.events] == [
        (e.source_id, e.score, e.category) for e in second.events
    ]
    assert all(e.summary is None for e in first.events)
    assert provider.calls == []
    assert pipeline.notifier.events == []
    assert len(pipeline.window) == 0
    assert pipeline.gate.used == 0
    assert pipeline.store.count() == 0
    assert pipeline.store.load_snapshot(WINDOW_SNAPSHOT_KEY) is None
    assert pipeline.tracker.get("fake").health == "unknown"
    assert adapter.prepared == 2
    assert adapter.commits == 0


def test_committed_events_are_suppressed_on_rerun(tmp_path: Path, clock: FakeClock) -> None:
    adapter = FakeAdapter([RECALL])
    pipeline = _pipeline(tmp_path, clock, [adapter], summaries=("a",))

    assert asyncio.run(pipeline.run_source("fake")).count == 1
    clock.advance(days=3)
    rerun = asyncio.run(pipeline.run_source("fake"))
    assert rerun.count == 0
    assert rerun.duplicate_count == 1
    assert pipeline.store.count() == 1
    assert adapter.commits == 2

    # Outside the window the same fact is new again.
    clock.advance(days=12)
    assert asyncio.run(pipeline.run_source("fake")).count == 1


def test_duplicates_within_one_run(tmp_path: Path, clock: FakeClock) -> None:
    twin = dict(RECALL, id="Z-2", title="  magnetom VIDA   recall ")
    pipeline = _pipeline(tmp_path, clock, [FakeAdapter([RECALL, twin])], summaries=("a", "b"))

    preview = asyncio.run(pipeline.run_source("fake", dry_run=True))
    assert (preview.count, preview.duplicate_count) == (1, 1)
    result = asyncio.run(pipeline.run_source("fake"))
    assert (result.count, result.duplicate_count) == (1, 1)
    assert result.events[0].source_id == "Z-1"


def test_exhausted_quota_keeps_category(tmp_path: Path, clock: FakeClock) -> None:
    records = [dict(RECALL, id=f"Z-{n}", title=f"Recall {n}") for n in range(3)]
    pipeline = _pipeline(tmp_path, clock, [FakeAdapter(records)], summaries=("first",), daily_limit=1)
    result = asyncio.run(pipeline.run_source("fake"))

    assert [e.summary for e in result.events] == ["first", None, None]
    assert {e.category for e in result.events} == {"Informational"}
    assert result.summarized_count == 1
    assert pipeline.store.load_snapshot(AI_USAGE_SNAPSHOT_KEY) == {"date": "2025-03-10", "used": 1}


def test_failed_summary_falls_back_to_title(tmp_path: Path, clock: FakeClock) -> None:
    title = "Recall " + "x" * 200
    pipeline = _pipeline(tmp_path, clock, [FakeAdapter([dict(RECALL, title=title)])], summaries=(RuntimeError("boom"),))
    event = asyncio.run(pipeline.run_source("fake")).events[0]
    assert event.summary == title[:100] + "..."
    assert pipeline.gate.used == 1


def test_source_failure_is_wrapped_and_recorded(tmp_path: Path, clock: FakeClock) -> None:
    adapter = FakeAdapter([], error=httpx.ConnectError("refused"))
    pipeline = _pipeline(tmp_path, clock, [adapter])

    with pytest.raises(SourceRunError) as excinfo:
        asyncio.run(pipeline.run_source("fake", dry_run=True))
    assert pipeline.tracker.get("fake").health == "unknown"

    with pytest.raises(SourceRunError) as excinfo:
        asyncio.run(pipeline.run_source("fake"))
    assert excinfo.value.source == "fake"
    assert "fake" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)
    status = pipeline.tracker.get("fake")
    assert status.health == "degraded"
    assert status.error_count_24h == 1
    assert adapter.commits == 0


def test_unknown_source(tmp_path: Path, clock: FakeClock) -> None:
    pipeline = _pipeline(tmp_path, clock, [FakeAdapter([])])
    with pytest.raises(UnknownSourceError):
        asyncio.run(pipeline.run_source("nope"))


def test_run_all_isolates_failures(tmp_path: Path, clock: FakeClock) -> None:
    good = FakeAdapter([RECALL], name="good")
    bad = FakeAdapter([], error=RuntimeError("down"), name="bad")
    pipeline = _pipeline(tmp_path, clock, [good, bad], summaries=("a",))
    outcomes = asyncio.run(pipeline.run_all())

    assert outcomes["good"].count == 1
    assert isinstance(outcomes["bad"], SourceRunError)
    assert pipeline.tracker.get("good").health == "healthy"
    assert pipeline.tracker.get("bad").error_count_24h == 1


def test_normalizer_fills_missing_fields_and_failure_is_tolerated(tmp_path: Path, clock: FakeClock) -> None:
    sparse = {"id": "Z-7", "org": "Acme", "reason": "Label mixup"}
    second = {"id": "Z-8", "org": "Other", "reason": "Power fault"}
    provider = ScriptedProvider(
        {"title": "Acme infusion pump recall", "description": "Label mixup", "model": None},
        RuntimeError("llm down"),
    )
    ai = AICollaborators(normalizer=AINormalizer(provider))
    pipeline = _pipeline(tmp_path, clock, [FakeAdapter([sparse, second])], ai=ai)
    result = asyncio.run(pipeline.run_source("fake", dry_run=True))

    filled, kept = result.events
    assert filled.title == "Acme infusion pump recall"
    assert filled.model is None
    assert kept.title == ""
    assert kept.score == 60


def test_apply_normalized_keeps_adapter_values() -> None:
    event = NormalizedEvent(source_id="1", source="Fake", title="Original")
    updated = apply_normalized(
        event,
        {"title": "Replaced?", "reason": " Overheating ", "codes": [70553], "delta": {"old": 1, "new": 2}},
    )
    assert updated.title == "Original"
    assert updated.reason == "Overheating"
    assert updated.codes == ["70553"]
    assert updated.delta == Delta(old=1, new=2)


def test_failing_notifier_does_not_fail_run(tmp_path: Path, clock: FakeClock) -> None:
    notifier = RecordingNotifier(error=httpx.ConnectError("smtp down"))
    pipeline = _pipeline(tmp_path, clock, [FakeAdapter([PAYMENT])], summaries=("s",), notifier=notifier)
    result = asyncio.run(pipeline.run_source("fake"))
    assert result.count == 1
    assert len(notifier.events) == 1
    assert pipeline.store.count() == 1


def test_build_pipeline_restores_window_and_usage(tmp_path: Path, clock: FakeClock) -> None:
    store = EventStore(tmp_path / "regwatch.db")
    config = PipelineConfig(enabled_sources=["payment_schedule"])
    pipeline = build_pipeline(config, store, clock=clock)
    pipeline.window.record("abc123")
    assert pipeline.gate.try_consume()
    pipeline.save_state()

    restored = build_pipeline(config, store, clock=clock)
    assert "abc123" in restored.window
    assert restored.gate.used == 1
    assert list(restored.adapters) == ["payment_schedule"]

    fresh = build_pipeline(config, store, clock=clock, persist_window=False)
    assert len(fresh.window) == 0


class SlowAdapter(FakeAdapter):
    async def fetch(self, client: httpx.AsyncClient) -> list[dict[str, Any]]:
        await asyncio.sleep(0.01)
        return await super().fetch(client)


def test_same_source_runs_across_event_loops(tmp_path: Path, clock: FakeClock) -> None:
    pipeline = _pipeline(tmp_path, clock, [SlowAdapter([LOW])])

    async def tick() -> list[Any]:
        return list(await asyncio.gather(pipeline.run_source("fake"), pipeline.run_source("fake")))

    for _ in range(3):
        outcomes = asyncio.run(tick())
        assert [o.source for o in outcomes] == ["fake", "fake"]
    assert pipeline.store.count() == 1
    assert pipeline.tracker.get("fake").health == "healthy"


class FailingSecondAppend(EventStore):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.appends = 0

    def append(self, event: Any) -> Any:
        self.appends += 1
        if self.appends == 2:
            raise RuntimeError("disk full")
        return super().append(event)


def test_partial_run_keeps_signatures_of_persisted_events(tmp_path: Path, clock: FakeClock) -> None:
    second = dict(RECALL, id="Z-2", title="Second recall")
    store = FailingSecondAppend(tmp_path / "regwatch.db", clock=clock)
    adapter = FakeAdapter([RECALL, second])
    pipeline = Pipeline(
        {"fake": adapter},
        store,
        ai=AICollaborators(),
        client_factory=_client,
        clock=clock,
    )

    with pytest.raises(SourceRunError):
        asyncio.run(pipeline.run_source("fake"))
    assert store.count() == 1
    assert adapter.commits == 0
    assert store.load_snapshot(WINDOW_SNAPSHOT_KEY) is not None

    # A fresh process restores the window and only emits the missing event.
    restored = build_pipeline(PipelineConfig(enabled_sources=[]), EventStore(tmp_path / "regwatch.db"), clock=clock)
    rerun = Pipeline(
        {"fake": FakeAdapter([RECALL, second])},
        restored.store,
        window=restored.window,
        ai=AICollaborators(),
        client_factory=_client,
        clock=clock,
    )
    result = asyncio.run(rerun.run_source("fake"))
    assert [e.source_id for e in result.events] == ["Z-2"]
    assert result.duplicate_count == 1
