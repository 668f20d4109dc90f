"""openFDA drug enforcement reports and drug supply records for imaging agents."""

from __future__ import annotations

from typing import Any

import httpx

from ..models import NormalizedEvent, ScoringResult
from ..scoring import TAG_DRUG_ENFORCEMENT, TAG_DRUG_SHORTAGE, with_bonus
from ..time_utils import to_iso
from .base import Identity, clean
from .openfda import OPENFDA_BASE_URL, OpenFDAAdapter

HIGH_RISK_BONUS = 20
TITLE_CHARS = 200

SHORTAGE_URL = f"{OPENFDA_BASE_URL}/drug/drugsfda.json"
SHORTAGE_INGREDIENTS = ("contrast", "gadolinium", "iodine")
SHORTAGE_LIMIT = 20

RECALL = "recall"
SHORTAGE = "shortage"


def _first_product(raw: dict[str, Any]) -> dict[str, Any]:
    products = raw.get("products") or []
    if isinstance(products, list) and products and isinstance(products[0], dict):
        return products[0]
    return {}


def _ingredients(product: dict[str, Any]) -> str:
    items = product.get("active_ingredients") or []
    return ", ".join(clean(i.get("name")) for i in items if isinstance(i, dict) and clean(i.get("name")))


def _latest_submission(raw: dict[str, Any]) -> str | None:
    dates = [
        clean(s.get("submission_status_date"))
        for s in raw.get("submissions") or []
        if isinstance(s, dict) and s.get("submission_status_date")
    ]
    return max(dates) if dates else None


class DrugEnforcementAdapter(OpenFDAAdapter):
    """Drug recalls plus supply records for contrast and iodinated agents.

    Both feeds come back as one batch; each record carries ``record_type``
    so identity and mapping can tell them apart.
    """

    name = "drug_enforcement"
    source_label = "openFDA Drug"
    endpoint = "/drug/enforcement.json"

    def __init__(self, config, *, shortage_url: str | None = None, **kwargs) -> None:
        super().__init__(config, **kwargs)
        self.shortage_url = shortage_url or SHORTAGE_URL

    @property
    def extra_search(self) -> str:  # type: ignore[override]
        terms = " OR ".join(f"product_description:{k}" for k in self.config.high_risk_drug_keywords if " " not in k)
        return f"({terms})" if terms else ""

    def shortage_params(self) -> dict[str, Any]:
        search = " OR ".join(f"products.active_ingredients.name:{term}" for term in SHORTAGE_INGREDIENTS)
        return self.with_api_key({"search": search, "limit": SHORTAGE_LIMIT})

    async def fetch(self, client: httpx.AsyncClient) -> list[dict[str, Any]]:
        recalls = await super().fetch(client)
        shortages = await self.search(client, self.shortage_url, self.shortage_params())
        return [
            *({**r, "record_type": RECALL} for r in recalls),
            *({**s, "record_type": SHORTAGE} for s in shortages),
        ]

    def identity(self, raw: dict[str, Any]) -> Identity:
        if raw.get("record_type") == SHORTAGE:
            product = _first_product(raw)
            return (
                clean(raw.get("sponsor_name")),
                clean(product.get("brand_name")) or _ingredients(product),
                "Shortage",
                clean(product.get("marketing_status")),
            )
        return (
            clean(raw.get("recalling_firm")),
            clean(raw.get("product_description")),
            clean(raw.get("classification")),
            clean(raw.get("reason_for_recall")),
        )

    def to_event(self, raw: dict[str, Any]) -> NormalizedEvent:
        if raw.get("record_type") == SHORTAGE:
            return self._shortage_event(raw)
        firm, product, classification, reason = self.identity(raw)
        return NormalizedEvent(
            source_id=clean(raw.get("recall_number") or raw.get("event_id")),
            source=self.source_label,
            title=product[:TITLE_CHARS],
            description=reason,
            source_tags={TAG_DRUG_ENFORCEMENT},
            manufacturer=firm or None,
            classification=classification or None,
            reason=reason or None,
            state=clean(raw.get("state")) or None,
            status=clean(raw.get("status")) or None,
            source_date=to_iso(clean(raw.get("report_date")) or None),
            raw=raw,
        )

    def _shortage_event(self, raw: dict[str, Any]) -> NormalizedEvent:
        sponsor, brand, classification, marketing = self.identity(raw)
        ingredients = _ingredients(_first_product(raw))
        title = f"Drug shortage: {brand}"
        if ingredients and ingredients != brand:
            title = f"{title} ({ingredients})"
        application = clean(raw.get("application_number"))
        return NormalizedEvent(
            source_id=f"shortage-{application}" if application else "",
            source=self.source_label,
            title=title[:TITLE_CHARS],
            description=f"Marketing status: {marketing}" if marketing else "",
            source_tags={TAG_DRUG_SHORTAGE},
            manufacturer=sponsor or None,
            classification=classification,
            status=marketing or None,
            source_date=to_iso(_latest_submission(raw)),
            raw=raw,
        )

    def matched_keyword(self, title: str) -> str | None:
        lowered = title.casefold()
        for keyword in self.config.high_risk_drug_keywords:
            if keyword in lowered:
                return keyword
        return None

    def adjust_score(self, event: NormalizedEvent, result: ScoringResult) -> ScoringResult:
        keyword = self.matched_keyword(event.title)
        if keyword is None:
            return result
        return with_bonus(result, HIGH_RISK_BONUS, f"High-risk substance: {keyword}")
