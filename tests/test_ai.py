import asyncio

import pytest
from conftest import RecordingSleep, ScriptedProvider

from regwatch.ai import AINormalizer, PatternDetector, Summarizer
from regwatch.errors import NormalizationError
from regwatch.models import NormalizedEvent


def _event(title: str = "MAGNETOM Vida recall") -> NormalizedEvent:
    return NormalizedEvent(
        source_id="Z-1",
        source="openFDA",
        title=title,
        manufacturer="Siemens",
        reason="Coil overheating",
    )


def test_normalizer_drops_empty_values() -> None:
    provider = ScriptedProvider(
        {"title": "Pump recall", "description": "", "model": None, "codes": [], "delta": {"old": 1, "new": 2.5}}
    )
    fields = asyncio.run(AINormalizer(provider).normalize({"x": 1}, "CMS"))
    assert fields == {"title": "Pump recall", "delta": {"old": 1, "new": 2.5}}
    call = provider.calls[0]
    assert call["schema_name"] == "normalized_event"
    assert '"source": "CMS"' in call["user"]


@pytest.mark.parametrize(
    "response",
    [None, "plain text", {"delta": {"old": "one", "new": 2}}],
)
def test_normalizer_fails_closed(response: object) -> None:
    with pytest.raises(NormalizationError):
        asyncio.run(AINormalizer(ScriptedProvider(response)).normalize({}, "openFDA"))


def test_pattern_detector_parses_flags() -> None:
    provider = ScriptedProvider(
        {
            "flags": {"manufacturer_notice": True, "radiation_safety": False},
            "match": {"exact_model": True},
            "confidence": 82,
        }
    )
    result = asyncio.run(PatternDetector(provider).detect(_event()))
    assert result.flags.manufacturer_notice
    assert not result.flags.state_mandate
    assert result.match.exact_model
    assert result.confidence == 82.0


def test_pattern_detector_never_raises() -> None:
    result = asyncio.run(PatternDetector(ScriptedProvider(RuntimeError("down"))).detect(_event()))
    assert result.confidence == 0.0
    assert not any(result.flags.model_dump().values())
    assert not result.match.exact_model


def test_summarizer_uses_provider_text() -> None:
    provider = ScriptedProvider("  Inspect coils before next scan.  ")
    summary = asyncio.run(Summarizer(provider).summarize(_event()))
    assert summary == "Inspect coils before next scan."
    assert "Manufacturer: Siemens" in provider.calls[0]["user"]
    assert "json_schema" not in provider.calls[0]


def test_summarizer_falls_back_to_truncated_title() -> None:
    long_title = "Recall of " + "y" * 150
    summarizer = Summarizer(ScriptedProvider(RuntimeError("timeout"), ""), fallback_chars=100, spacing_seconds=0)
    assert asyncio.run(summarizer.summarize(_event(long_title))) == long_title[:100] + "..."
    assert asyncio.run(summarizer.summarize(_event("Short title"))) == "Short title"


def test_batch_summaries_are_spaced() -> None:
    sleep = RecordingSleep()
    ticks = iter([0.0, 0.25, 1.0, 2.5, 2.5])
    summarizer = Summarizer(
        ScriptedProvider("one", "two", "three"),
        spacing_seconds=1.0,
        sleep=sleep,
        monotonic=lambda: next(ticks),
    )
    events = [_event(f"Recall {n}").model_copy(update={"source_id": f"Z-{n}"}) for n in range(3)]
    pairs = asyncio.run(summarizer.batch_summarize(events))

    assert pairs == [("Z-0", "one"), ("Z-1", "two"), ("Z-2", "three")]
    assert sleep.delays == pytest.approx([0.75])


def test_summarizer_survives_repeated_event_loops() -> None:
    provider = ScriptedProvider(*["real summary"] * 6)
    summarizer = Summarizer(provider, spacing_seconds=0.05)
    first = _event("First recall").model_copy(update={"source_id": "Z-1"})
    second = _event("Second recall").model_copy(update={"source_id": "Z-2"})

    async def tick() -> list[str]:
        return list(await asyncio.gather(summarizer.summarize(first), summarizer.summarize(second)))

    # The scheduler drives every tick through its own asyncio.run.
    for _ in range(3):
        assert asyncio.run(tick()) == ["real summary", "real summary"]
    assert len(provider.calls) == 6
