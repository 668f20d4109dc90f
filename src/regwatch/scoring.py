"""Deterministic scoring and tier categorization.

Everything here is pure: no I/O, no clock, no shared state. Rules are
evaluated in a fixed order and every rule that applies adds its points and
appends its reason, so ``reasons`` is an audit trail of the score.
"""

from __future__ import annotations

from typing import Iterable

from .config import DEFAULT_CRITICAL_MODALITIES, DEFAULT_MAJOR_REGIONS
from .models import Category, NormalizedEvent, ScoringResult

TAG_DEVICE_ENFORCEMENT = "openfda:enforcement"
TAG_DRUG_ENFORCEMENT = "openfda:drug_enforcement"
TAG_DRUG_SHORTAGE = "fda:drug_shortage"
TAG_PAYMENT_CHANGE = "cms:pfs_change"
TAG_REGULATORY_NOTICE = "fedreg:rule"
TAG_ADVERSE_EVENT = "maude:signal"
TAG_STATE_HEALTH_DEPARTMENT = "state:health_department"
TAG_STATE_PROFESSIONAL_BOARD = "state:professional_board"
TAG_MQSA_DEADLINE = "mqsa:deadline"
TAG_CMS_RULE_DEADLINE = "cms_rule:deadline"

SOURCE_RULES: tuple[tuple[str, int, str], ...] = (
    (TAG_DEVICE_ENFORCEMENT, 60, "FDA enforcement action"),
    (TAG_PAYMENT_CHANGE, 70, "Official payment change"),
    (TAG_STATE_HEALTH_DEPARTMENT, 65, "State health department alert"),
    (TAG_STATE_PROFESSIONAL_BOARD, 70, "State regulatory board requirement"),
)

FLAG_RULES: tuple[tuple[str, int, str], ...] = (
    ("manufacturer_notice", 20, "Manufacturer notice present"),
    ("adverse_event_signal", 10, "Adverse-event signal detected"),
    ("state_mandate", 25, "State mandate"),
    ("radiation_safety", 30, "Safety requirement"),
)

MATCH_RULES: tuple[tuple[str, int, str], ...] = (
    ("exact_model", 20, "Exact device match"),
    ("fuzzy_model", 10, "Fuzzy device match"),
)

CRITICAL_MODALITY_POINTS = 15
MAJOR_REGION_POINTS = 5
FINANCIAL_IMPACT_POINTS = 15
FINANCIAL_IMPACT_THRESHOLD = 50
HIGH_IMPACT_POINTS = 10

URGENT_THRESHOLD = 85
INFORMATIONAL_THRESHOLD = 75
DIGEST_THRESHOLD = 50


def score_event(
    event: NormalizedEvent,
    *,
    critical_modalities: Iterable[str] = DEFAULT_CRITICAL_MODALITIES,
    major_regions: Iterable[str] = DEFAULT_MAJOR_REGIONS,
) -> ScoringResult:
    score = 0
    reasons: list[str] = []

    for tag, points, reason in SOURCE_RULES:
        if tag in event.source_tags:
            score += points
            reasons.append(reason)

    for flag, points, reason in FLAG_RULES:
        if getattr(event.flags, flag):
            score += points
            reasons.append(reason)

    for field, points, reason in MATCH_RULES:
        if getattr(event.match, field):
            score += points
            reasons.append(reason)

    if event.modality and event.modality in set(critical_modalities):
        score += CRITICAL_MODALITY_POINTS
        reasons.append(f"Critical modality: {event.modality}")

    if event.region and event.region in set(major_regions):
        score += MAJOR_REGION_POINTS
        reasons.append(f"Major market: {event.region}")

    if event.delta is not None and abs(event.delta.new - event.delta.old) > FINANCIAL_IMPACT_THRESHOLD:
        score += FINANCIAL_IMPACT_POINTS
        reasons.append("Significant financial impact")

    if event.impact == "High":
        score += HIGH_IMPACT_POINTS
        reasons.append("High impact")

    return ScoringResult(score=score, reasons=reasons)


def categorize(score: int) -> Category:
    if score >= URGENT_THRESHOLD:
        return "Urgent"
    if score >= INFORMATIONAL_THRESHOLD:
        return "Informational"
    if score >= DIGEST_THRESHOLD:
        return "Digest"
    return "Suppressed"


def should_summarize(category: str) -> bool:
    return category in {"Urgent", "Informational"}


# Source-specific adjustments, applied by adapters after ``score_event``.


def with_penalty(result: ScoringResult, points: int) -> ScoringResult:
    return ScoringResult(score=max(result.score - points, 0), reasons=list(result.reasons))


def with_cap(result: ScoringResult, ceiling: int) -> ScoringResult:
    return ScoringResult(score=min(result.score, ceiling), reasons=list(result.reasons))


def with_bonus(result: ScoringResult, points: int, reason: str) -> ScoringResult:
    return ScoringResult(score=result.score + points, reasons=[*result.reasons, reason])
