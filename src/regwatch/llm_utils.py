"""Helpers for decoding OpenAI Responses-API payloads."""

from __future__ import annotations

import json
import re
from typing import Any


def extract_responses_text(payload: dict[str, Any]) -> str:
    """Extract text from OpenAI Responses API output.

    Handles both the top-level ``output_text`` shorthand and the full
    ``output[].content[]`` structure.
    """
    output_text = payload.get("output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text

    chunks: list[str] = []
    for out in payload.get("output", []) or []:
        for content in out.get("content", []) or []:
            if content.get("type") in {"output_text", "text"}:
                text = content.get("text")
                if isinstance(text, str) and text.strip():
                    chunks.append(text.strip())
    return "\n\n".join(chunks)


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Parse a JSON object from text that may be wrapped in markdown fences."""
    if not text:
        return None
    raw = text.strip()
    if raw.startswith("```"):
        raw = re.sub(r"^```(?:json)?", "", raw, flags=re.IGNORECASE).strip()
        raw = re.sub(r"```$", "", raw).strip()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", raw, flags=re.DOTALL)
        if not match:
            return None
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut with ``...``."""
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
