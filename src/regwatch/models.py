"""Pydantic models for normalized, scored, and persisted events."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal

from pydantic import BaseModel, ConfigDict, Field

Category = Literal["Urgent", "Informational", "Digest", "Suppressed"]
Health = Literal["unknown", "healthy", "degraded"]


class EventFlags(BaseModel):
    model_config = ConfigDict(extra="ignore")

    manufacturer_notice: bool = False
    adverse_event_signal: bool = False
    state_mandate: bool = False
    radiation_safety: bool = False

    def merged(self, other: "EventFlags") -> "EventFlags":
        return EventFlags(
            **{name: getattr(self, name) or getattr(other, name) for name in EventFlags.model_fields}
        )


class EntityMatch(BaseModel):
    model_config = ConfigDict(extra="ignore")

    exact_model: bool = False
    fuzzy_model: bool = False

    def merged(self, other: "EntityMatch") -> "EntityMatch":
        return EntityMatch(
            exact_model=self.exact_model or other.exact_model,
            fuzzy_model=self.fuzzy_model or other.fuzzy_model,
        )


class Delta(BaseModel):
    old: float
    new: float


class NormalizedEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source_id: str
    source: str
    title: str = ""
    description: str = ""
    source_tags: set[str] = Field(default_factory=set)
    flags: EventFlags = Field(default_factory=EventFlags)
    match: EntityMatch = Field(default_factory=EntityMatch)
    delta: Delta | None = None
    modality: str | None = None
    region: str | None = None
    impact: str | None = None

    manufacturer: str | None = None
    model: str | None = None
    classification: str | None = None
    reason: str | None = None
    state: str | None = None
    status: str | None = None
    codes: List[str] = Field(default_factory=list)
    link: str | None = None
    source_date: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)


class ScoringResult(BaseModel):
    score: int
    reasons: List[str] = Field(default_factory=list)


class ScoredEvent(NormalizedEvent):
    score: int
    reasons: List[str] = Field(default_factory=list)
    category: Category
    summary: str | None = None


class PersistedEvent(ScoredEvent):
    id: str
    archived_at: datetime


class FeedbackIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    event_id: str = Field(min_length=1)
    helpful: bool


class Feedback(FeedbackIn):
    id: str
    created_at: datetime


class SourceStatus(BaseModel):
    source: str
    last_success: datetime | None = None
    last_error: datetime | None = None
    error_count_24h: int = 0
    last_digest_sent: datetime | None = None
    health: Health = "unknown"


class PipelineRunResult(BaseModel):
    source: str
    dry_run: bool
    fetched_at: datetime
    fetched_count: int = 0
    duplicate_count: int = 0
    summarized_count: int = 0
    events: List[ScoredEvent] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.events)
