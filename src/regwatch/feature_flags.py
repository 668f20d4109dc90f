"""Centralized feature-flag loader for pipeline behavior."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_FEATURE_FLAGS: dict[str, Any] = {
    "ai_normalization_enabled": True,
    "pattern_detection_enabled": True,
    "summarization_enabled": True,
    "notifications_enabled": False,
    "sms_enabled": False,
    "persist_signature_window": True,
}


def default_feature_flags_path() -> Path:
    return Path.cwd() / "config" / "feature_flags.json"


def _coerce_flag_value(key: str, value: Any) -> Any:
    default = DEFAULT_FEATURE_FLAGS.get(key)
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raw = str(value).strip().lower()
        return raw in {"1", "true", "yes", "on"}
    return value


def load_feature_flags(path: Path | None = None) -> dict[str, Any]:
    flags = dict(DEFAULT_FEATURE_FLAGS)
    candidate = path or default_feature_flags_path()
    if candidate.exists():
        try:
            payload = json.loads(candidate.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring malformed feature flag file %s: %s", candidate, exc)
            payload = {}
        if isinstance(payload, dict):
            for key in DEFAULT_FEATURE_FLAGS:
                if key in payload:
                    flags[key] = _coerce_flag_value(key, payload[key])

    # Env override: REGWATCH_FLAG_<FLAG_NAME_UPPER>
    for key in DEFAULT_FEATURE_FLAGS:
        raw = os.getenv(f"REGWATCH_FLAG_{key.upper()}", "").strip()
        if raw:
            flags[key] = _coerce_flag_value(key, raw)

    return flags

