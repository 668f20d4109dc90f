import pytest

from regwatch.models import Delta, EntityMatch, EventFlags, NormalizedEvent, ScoringResult
from regwatch.scoring import (
    TAG_DEVICE_ENFORCEMENT,
    TAG_PAYMENT_CHANGE,
    TAG_REGULATORY_NOTICE,
    TAG_STATE_HEALTH_DEPARTMENT,
    TAG_STATE_PROFESSIONAL_BOARD,
    categorize,
    score_event,
    should_summarize,
    with_bonus,
    with_cap,
    with_penalty,
)


def _event(**kwargs) -> NormalizedEvent:
    return NormalizedEvent(source_id="x-1", source="test", title="t", **kwargs)


def test_device_enforcement_with_manufacturer_notice_scores_80() -> None:
    result = score_event(
        _event(source_tags={TAG_DEVICE_ENFORCEMENT}, flags=EventFlags(manufacturer_notice=True))
    )
    assert result.score == 80
    assert result.reasons == ["FDA enforcement action", "Manufacturer notice present"]
    assert categorize(result.score) == "Informational"
    assert should_summarize(categorize(result.score))


def test_payment_change_with_large_delta_is_urgent() -> None:
    result = score_event(_event(source_tags={TAG_PAYMENT_CHANGE}, delta=Delta(old=100, new=160)))
    assert result.score == 85
    assert result.reasons == ["Official payment change", "Significant financial impact"]
    assert categorize(result.score) == "Urgent"


def test_delta_of_exactly_fifty_is_not_significant() -> None:
    result = score_event(_event(source_tags={TAG_PAYMENT_CHANGE}, delta=Delta(old=200, new=150)))
    assert result.score == 70


def test_all_rules_fire_in_table_order() -> None:
    event = _event(
        source_tags={
            TAG_STATE_PROFESSIONAL_BOARD,
            TAG_DEVICE_ENFORCEMENT,
            TAG_STATE_HEALTH_DEPARTMENT,
            TAG_PAYMENT_CHANGE,
        },
        flags=EventFlags(
            manufacturer_notice=True,
            adverse_event_signal=True,
            state_mandate=True,
            radiation_safety=True,
        ),
        match=EntityMatch(exact_model=True, fuzzy_model=True),
        modality="MRI",
        region="Bay Area",
        delta=Delta(old=10, new=100),
        impact="High",
    )
    result = score_event(event)
    assert result.reasons == [
        "FDA enforcement action",
        "Official payment change",
        "State health department alert",
        "State regulatory board requirement",
        "Manufacturer notice present",
        "Adverse-event signal detected",
        "State mandate",
        "Safety requirement",
        "Exact device match",
        "Fuzzy device match",
        "Critical modality: MRI",
        "Major market: Bay Area",
        "Significant financial impact",
        "High impact",
    ]
    assert result.score == 60 + 70 + 65 + 70 + 20 + 10 + 25 + 30 + 20 + 10 + 15 + 5 + 15 + 10


def test_non_critical_modality_and_minor_region_add_nothing() -> None:
    result = score_event(_event(modality="Ultrasound", region="Statewide", impact="Low"))
    assert result == ScoringResult(score=0, reasons=[])


def test_unknown_tag_scores_zero() -> None:
    assert score_event(_event(source_tags={TAG_REGULATORY_NOTICE})).score == 0


def test_custom_critical_modalities() -> None:
    result = score_event(_event(modality="Ultrasound"), critical_modalities=["Ultrasound"])
    assert result.reasons == ["Critical modality: Ultrasound"]


@pytest.mark.parametrize(
    "score, category",
    [(0, "Suppressed"), (49, "Suppressed"), (50, "Digest"), (74, "Digest"), (75, "Informational"), (84, "Informational"), (85, "Urgent"), (140, "Urgent")],
)
def test_category_boundaries(score: int, category: str) -> None:
    assert categorize(score) == category


def test_should_summarize_only_top_tiers() -> None:
    assert should_summarize("Urgent")
    assert should_summarize("Informational")
    assert not should_summarize("Digest")
    assert not should_summarize("Suppressed")


def test_adjustments() -> None:
    base = ScoringResult(score=90, reasons=["a"])
    assert with_penalty(base, 15).score == 75
    assert with_penalty(ScoringResult(score=10), 15).score == 0
    assert with_cap(base, 70).score == 70
    assert with_cap(ScoringResult(score=40), 70).score == 40
    bonus = with_bonus(base, 20, "High-risk substance: contrast")
    assert bonus.score == 110
    assert bonus.reasons == ["a", "High-risk substance: contrast"]
    assert base.reasons == ["a"]
