"""Shared openFDA query plumbing and device watchlist matching."""

from __future__ import annotations

import logging
import re
from datetime import timedelta
from typing import Any, Iterable

import httpx

from ..config import DeviceWatch
from ..dedupe import normalize_text
from ..models import EntityMatch
from ..settings import get_openfda_api_key
from .base import SourceAdapter

logger = logging.getLogger(__name__)

OPENFDA_BASE_URL = "https://api.fda.gov"


class OpenFDAAdapter(SourceAdapter):
    endpoint: str = ""
    date_field: str = "report_date"
    lookback_days: int = 365
    extra_search: str = ""

    def default_url(self) -> str:
        return f"{OPENFDA_BASE_URL}{self.endpoint}"

    def with_api_key(self, params: dict[str, Any]) -> dict[str, Any]:
        api_key = get_openfda_api_key()
        if api_key:
            params["api_key"] = api_key
        return params

    def query_params(self) -> dict[str, Any]:
        end = self.clock()
        start = end - timedelta(days=self.lookback_days)
        search = f"{self.date_field}:[{start:%Y%m%d} TO {end:%Y%m%d}]"
        if self.extra_search:
            search = f"{search} AND {self.extra_search}"
        return self.with_api_key(
            {
                "search": search,
                "sort": f"{self.date_field}:desc",
                "limit": self.config.fetch_limit,
            }
        )

    async def search(self, client: httpx.AsyncClient, url: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            payload = await self.get_json(client, url, params)
        except httpx.HTTPStatusError as exc:
            # openFDA answers an empty result set with 404 NOT_FOUND.
            if exc.response.status_code == 404:
                logger.info("%s: no records for %s", self.name, url)
                return []
            raise
        results = payload.get("results") if isinstance(payload, dict) else None
        return [r for r in results or [] if isinstance(r, dict)]

    async def fetch(self, client: httpx.AsyncClient) -> list[dict[str, Any]]:
        return await self.search(client, self.base_url, self.query_params())


def _compact(text: str) -> str:
    return re.sub(r"[^a-z0-9]", "", text.casefold())


def match_watchlist(watchlist: Iterable[DeviceWatch], firm: str, text: str) -> tuple[EntityMatch, str | None]:
    """Match a record against configured devices.

    Exact: the model appears as a whole word and the manufacturer (when
    configured) is the recalling firm. Fuzzy: the model appears once
    punctuation and spacing are ignored.
    """
    firm_norm = normalize_text(firm)
    haystack = normalize_text(text)
    compact = _compact(text)
    fuzzy_hit: str | None = None
    for watch in watchlist:
        model = normalize_text(watch.model)
        if not model:
            continue
        maker_ok = not watch.manufacturer or normalize_text(watch.manufacturer) in firm_norm
        if not maker_ok:
            continue
        if re.search(rf"(?<![a-z0-9]){re.escape(model)}(?![a-z0-9])", haystack):
            return EntityMatch(exact_model=True), watch.model
        if fuzzy_hit is None and _compact(model) and _compact(model) in compact:
            fuzzy_hit = watch.model
    if fuzzy_hit is not None:
        return EntityMatch(fuzzy_model=True), fuzzy_hit
    return EntityMatch(), None
