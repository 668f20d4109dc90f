"""Common adapter interface shared by every upstream source."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

import httpx

from ..config import PipelineConfig
from ..models import NormalizedEvent, ScoringResult
from ..retry import fetch_json, with_retry
from ..time_utils import Clock, utc_now

Identity = tuple[str, str, str, str]


def clean(value: Any) -> str:
    """Collapse a raw upstream value to a stripped string, ``""`` for nulls."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(clean(v) for v in value if clean(v))
    return " ".join(str(value).split())


class SourceAdapter(ABC):
    """One upstream feed.

    Adapters map raw records to ``NormalizedEvent`` and apply their
    source-specific score adjustment. They never write to the signature
    window, the usage counter or the status table; snapshot-diff sources
    read in ``prepare`` and write in ``commit``, which the pipeline only
    calls on committed runs.
    """

    name: str = ""
    source_label: str = ""
    detect_patterns: bool = True

    def __init__(
        self,
        config: PipelineConfig,
        *,
        base_url: str | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config
        self.base_url = base_url or self.default_url()
        self._sleep = sleep
        self.clock = clock

    def default_url(self) -> str:
        return ""

    async def get_json(self, client: httpx.AsyncClient, url: str, params: Any = None) -> Any:
        return await fetch_json(
            client,
            "GET",
            url,
            params=params,
            max_attempts=self.config.retry_max_attempts,
            base_delay=self.config.retry_base_delay_seconds,
            cap_delay=self.config.retry_cap_delay_seconds,
            sleep=self._sleep,
        )

    async def get_text(self, client: httpx.AsyncClient, url: str) -> str:
        async def _once() -> str:
            response = await client.get(url)
            response.raise_for_status()
            return response.text

        return await with_retry(
            _once,
            self.config.retry_max_attempts,
            base_delay=self.config.retry_base_delay_seconds,
            cap_delay=self.config.retry_cap_delay_seconds,
            sleep=self._sleep,
        )

    @abstractmethod
    async def fetch(self, client: httpx.AsyncClient) -> list[dict[str, Any]]:
        """Pull raw records from the upstream."""

    @abstractmethod
    def identity(self, raw: dict[str, Any]) -> Identity:
        """Issuing organization, subject, classification and reason of ``raw``."""

    @abstractmethod
    def to_event(self, raw: dict[str, Any]) -> NormalizedEvent:
        """Map ``raw`` to the common event shape without network access."""

    def needs_normalization(self, event: NormalizedEvent) -> bool:
        return not event.title.strip() or not event.description.strip()

    def adjust_score(self, event: NormalizedEvent, result: ScoringResult) -> ScoringResult:
        return result

    def prepare(self, store: Any) -> None:
        """Load any snapshot the next ``fetch`` compares against."""

    def commit(self, store: Any) -> None:
        """Persist state produced by the last ``fetch``."""
