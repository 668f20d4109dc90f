"""LLM provider abstraction layer.

Every AI call in the pipeline (normalization, pattern detection,
summarization) goes through ``get_provider()`` so the vendor endpoint can
be swapped without touching call sites.

Providers
---------
- **OpenAIResponsesProvider**: default, OpenAI ``/v1/responses`` API.

Selection is driven by the ``LLM_PROVIDER`` environment variable
(default ``"openai_responses"``).

Usage
-----
::

    provider = get_provider()
    result = await provider.complete(
        system="You extract regulatory facts.",
        user=json.dumps(record),
        json_schema={"type": "object", ...},
        schema_name="normalized_event",
    )
    # dict when a schema was given, str otherwise, None on failure
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any

import httpx

from .llm_utils import extract_json_object, extract_responses_text

_log = logging.getLogger(__name__)


class LLMProvider(ABC):
    """Abstract base for LLM completions."""

    @abstractmethod
    async def complete(
        self,
        *,
        system: str,
        user: str,
        json_schema: dict[str, Any] | None = None,
        schema_name: str = "response",
        timeout: float = 45.0,
        model: str | None = None,
    ) -> dict[str, Any] | str | None:
        """Run a completion.

        Returns a ``dict`` when ``json_schema`` is set and the output
        parses, a ``str`` for free-form text, and ``None`` on any failure.
        """

    @abstractmethod
    def name(self) -> str:
        """Human-readable provider name."""

    @property
    def available(self) -> bool:
        return True


class OpenAIResponsesProvider(LLMProvider):
    """Provider backed by OpenAI ``/v1/responses``."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        from .settings import get_openai_api_key, get_openai_base_url, get_openai_model

        self._api_key = api_key if api_key is not None else get_openai_api_key()
        self._model = model or get_openai_model()
        self._base_url = (base_url or get_openai_base_url()).rstrip("/")
        self._endpoint = f"{self._base_url}/v1/responses"
        self._transport = transport

    def name(self) -> str:
        return f"openai_responses ({self._model})"

    @property
    def available(self) -> bool:
        return bool(self._api_key)

    async def complete(
        self,
        *,
        system: str,
        user: str,
        json_schema: dict[str, Any] | None = None,
        schema_name: str = "response",
        timeout: float = 45.0,
        model: str | None = None,
    ) -> dict[str, Any] | str | None:
        if not self._api_key:
            _log.warning("No OpenAI API key configured, skipping LLM call")
            return None

        body: dict[str, Any] = {
            "model": model or self._model,
            "input": [
                {"role": "system", "content": [{"type": "input_text", "text": system}]},
                {"role": "user", "content": [{"type": "input_text", "text": user}]},
            ],
        }
        if json_schema is not None:
            body["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": json_schema,
                    "strict": True,
                }
            }

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                r = await client.post(
                    self._endpoint,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                    json=body,
                )
                r.raise_for_status()
                data = r.json()
        except (httpx.HTTPError, ValueError) as exc:
            _log.warning("LLM call failed: %s", exc)
            return None

        text = extract_responses_text(data)
        if not text:
            return None
        if json_schema is None:
            return text
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            return extract_json_object(text)
        return parsed if isinstance(parsed, dict) else None


_PROVIDERS: dict[str, type[LLMProvider]] = {
    "openai_responses": OpenAIResponsesProvider,
}

_provider_instance: LLMProvider | None = None


def get_provider(
    *,
    provider_name: str | None = None,
    reset: bool = False,
    **kwargs: Any,
) -> LLMProvider:
    """Return the configured LLM provider singleton.

    ``reset=True`` forces re-creation, which tests use to swap providers.
    Extra keyword arguments go to the provider constructor.
    """
    global _provider_instance

    if _provider_instance is not None and not reset:
        return _provider_instance

    name = provider_name or os.environ.get("LLM_PROVIDER", "openai_responses")
    cls = _PROVIDERS.get(name)
    if cls is None:
        raise ValueError(
            f"Unknown LLM provider {name!r}. "
            f"Available: {', '.join(sorted(_PROVIDERS))}"
        )

    _provider_instance = cls(**kwargs)
    _log.info("LLM provider initialised: %s", _provider_instance.name())
    return _provider_instance


def register_provider(name: str, cls: type[LLMProvider]) -> None:
    """Register a custom LLM provider class under ``name``."""
    _PROVIDERS[name] = cls
    _log.info("Registered LLM provider: %s -> %s", name, cls.__name__)
