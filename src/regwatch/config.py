"""Pipeline configuration schema and validation using pydantic."""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

KNOWN_SOURCES = (
    "device_enforcement",
    "drug_enforcement",
    "payment_schedule",
    "regulatory_notices",
    "adverse_events",
    "state_notices",
    "audit_deadlines",
)

DEFAULT_HIGH_RISK_KEYWORDS = ["contrast", "anesthetic", "gadolinium"]
DEFAULT_CRITICAL_MODALITIES = ["CT", "MRI", "Nuclear Medicine", "Mammography"]
DEFAULT_MAJOR_REGIONS = ["Bay Area", "Greater LA", "San Diego"]


class StateFeed(BaseModel):
    name: str
    url: str
    kind: Literal["health_department", "professional_board"] = "health_department"
    state: str = "CA"


class DeviceWatch(BaseModel):
    manufacturer: str = ""
    model: str


def _default_state_feeds() -> list[StateFeed]:
    return [
        StateFeed(
            name="CDPH News Releases",
            url="https://www.cdph.ca.gov/Programs/OPA/Pages/New-Release-2025.aspx?rss=1",
            kind="health_department",
        ),
        StateFeed(
            name="CDPH Radiologic Health Branch",
            url="https://www.cdph.ca.gov/Programs/CEH/DRSEM/Pages/RHB.aspx?rss=1",
            kind="professional_board",
        ),
    ]


class PipelineConfig(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    enabled_sources: List[str] = Field(default_factory=lambda: list(KNOWN_SOURCES))
    dedupe_window_days: int = Field(default=14, ge=1, le=365)
    daily_summary_limit: int = Field(default=200, ge=0)
    timezone: str = "UTC"

    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay_seconds: float = Field(default=0.2, ge=0)
    retry_cap_delay_seconds: float = Field(default=2.0, ge=0)
    request_timeout_seconds: float = Field(default=20.0, gt=0)
    summarizer_spacing_seconds: float = Field(default=1.0, ge=0)
    summary_fallback_chars: int = Field(default=100, ge=10)

    fetch_limit: int = Field(default=50, ge=1, le=1000)
    retention_limit: int = Field(default=5000, ge=1)
    adverse_event_min_reports: int = Field(default=3, ge=1)

    high_risk_drug_keywords: List[str] = Field(default_factory=lambda: list(DEFAULT_HIGH_RISK_KEYWORDS))
    critical_modalities: List[str] = Field(default_factory=lambda: list(DEFAULT_CRITICAL_MODALITIES))
    major_regions: List[str] = Field(default_factory=lambda: list(DEFAULT_MAJOR_REGIONS))
    device_watchlist: List[DeviceWatch] = Field(default_factory=list)

    state_feeds: List[StateFeed] = Field(default_factory=_default_state_feeds)
    payment_rates_url: str | None = None

    @field_validator("enabled_sources")
    @classmethod
    def validate_sources(cls, value: List[str]) -> List[str]:
        cleaned: list[str] = []
        for name in (v.strip().lower() for v in value):
            if not name:
                continue
            if name not in KNOWN_SOURCES:
                raise ValueError(f"Unknown source: {name}")
            if name not in cleaned:
                cleaned.append(name)
        return cleaned

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("high_risk_drug_keywords")
    @classmethod
    def lowercase_keywords(cls, value: List[str]) -> List[str]:
        return [k.strip().lower() for k in value if k.strip()]


def default_config_path() -> Path:
    return Path.cwd() / "config" / "regwatch.json"


def load_pipeline_config(path: Path | None = None) -> PipelineConfig:
    config_path = path or default_config_path()
    if not config_path.exists():
        return PipelineConfig()
    payload = json.loads(config_path.read_text(encoding="utf-8"))
    return PipelineConfig.model_validate(payload)
