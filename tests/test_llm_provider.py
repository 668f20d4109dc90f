"""Tests for the LLM provider layer."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import patch

import httpx
import pytest

from regwatch.llm_provider import (
    LLMProvider,
    OpenAIResponsesProvider,
    get_provider,
    register_provider,
)
from regwatch.llm_utils import extract_json_object, extract_responses_text, truncate


# ── Provider singleton / registry ────────────────────────────────────


def test_get_provider_returns_openai_default():
    with patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
        p = get_provider(reset=True)
        assert isinstance(p, OpenAIResponsesProvider)
        assert p.available
        assert "openai" in p.name()


def test_get_provider_singleton():
    with patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
        p1 = get_provider(reset=True)
        p2 = get_provider()
        assert p1 is p2


def test_get_provider_unknown_raises():
    with pytest.raises(ValueError, match="Unknown LLM provider"):
        get_provider(provider_name="nonexistent_provider", reset=True)


def test_register_custom_provider():
    class DummyProvider(LLMProvider):
        def name(self) -> str:
            return "dummy"

        async def complete(self, **kwargs: Any) -> None:
            return None

    register_provider("dummy", DummyProvider)
    p = get_provider(provider_name="dummy", reset=True)
    assert p.name() == "dummy"


# ── Response helpers ─────────────────────────────────────────────────


def test_extract_responses_text():
    assert extract_responses_text({"output_text": "hello world"}) == "hello world"
    blocks = {"output": [{"content": [{"type": "output_text", "text": "  block text  "}]}]}
    assert extract_responses_text(blocks) == "block text"
    assert extract_responses_text({}) == ""


def test_extract_json_object():
    assert extract_json_object('{"a": 1}') == {"a": 1}
    assert extract_json_object('```json\n{"b": 2}\n```') == {"b": 2}
    assert extract_json_object('some text {"c": 3} more') == {"c": 3}
    assert extract_json_object("no json here") is None
    assert extract_json_object("[1, 2]") is None


def test_truncate():
    assert truncate("short", 10) == "short"
    assert truncate("x" * 12, 10) == "x" * 10 + "..."


# ── OpenAIResponsesProvider ──────────────────────────────────────────


def _provider(handler, api_key: str = "test-key") -> OpenAIResponsesProvider:
    return OpenAIResponsesProvider(
        api_key=api_key,
        model="gpt-test",
        base_url="https://llm.example.org",
        transport=httpx.MockTransport(handler),
    )


def test_openai_provider_no_key_returns_none():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    provider = _provider(handler, api_key="")
    assert not provider.available
    assert asyncio.run(provider.complete(system="hello", user="world")) is None


def test_openai_provider_complete_json():
    seen: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        assert request.headers["Authorization"] == "Bearer test-key"
        assert request.url.path == "/v1/responses"
        return httpx.Response(200, json={"output_text": json.dumps({"result": "ok"})})

    result = asyncio.run(
        _provider(handler).complete(
            system="test",
            user="test",
            json_schema={"type": "object", "properties": {"result": {"type": "string"}}},
            schema_name="test_schema",
        )
    )
    assert result == {"result": "ok"}
    body = seen[0]
    assert body["model"] == "gpt-test"
    assert body["text"]["format"]["name"] == "test_schema"
    assert body["text"]["format"]["strict"] is True


def test_openai_provider_complete_freeform():
    def handler(request: httpx.Request) -> httpx.Response:
        assert "text" not in json.loads(request.content)
        return httpx.Response(200, json={"output_text": "Hello world"})

    assert asyncio.run(_provider(handler).complete(system="test", user="test")) == "Hello world"


def test_openai_provider_embedded_json_is_recovered():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"output_text": 'Here you go: {"title": "Recall"}'})

    result = asyncio.run(_provider(handler).complete(system="s", user="u", json_schema={"type": "object"}))
    assert result == {"title": "Recall"}


def test_openai_provider_http_error_returns_none():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": "rate limited"})

    assert asyncio.run(_provider(handler).complete(system="s", user="u")) is None
