"""Environment and runtime settings."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


def load_environment() -> None:
    load_dotenv(override=False)


def get_db_path() -> Path:
    raw = os.getenv("REGWATCH_DB_PATH", "").strip()
    if raw:
        return Path(raw)
    return Path.home() / ".regwatch" / "regwatch.db"


def get_log_level() -> str:
    return os.getenv("REGWATCH_LOG_LEVEL", "INFO").strip().upper() or "INFO"


def get_openfda_api_key() -> str:
    return os.getenv("OPENFDA_API_KEY", "").strip()


def get_openai_api_key() -> str:
    return os.getenv("OPENAI_API_KEY", "").strip()


def get_openai_model() -> str:
    return os.getenv("OPENAI_MODEL", "gpt-4.1-mini").strip()


def get_openai_base_url() -> str:
    return os.getenv("OPENAI_BASE_URL", "https://api.openai.com").strip()


def get_brevo_api_key() -> str:
    return os.getenv("BREVO_API_KEY", "").strip()


def get_alert_sender() -> tuple[str, str]:
    email = os.getenv("REGWATCH_SENDER_EMAIL", "alerts@regwatch.local").strip()
    name = os.getenv("REGWATCH_SENDER_NAME", "Regwatch Alerts").strip()
    return email, name


def get_twilio_credentials() -> tuple[str, str, str]:
    return (
        os.getenv("TWILIO_ACCOUNT_SID", "").strip(),
        os.getenv("TWILIO_AUTH_TOKEN", "").strip(),
        os.getenv("TWILIO_FROM_NUMBER", "").strip(),
    )


def get_recipients(kind: str) -> list[str]:
    """Comma-separated recipients from ``REGWATCH_<KIND>_RECIPIENTS``."""
    raw = os.getenv(f"REGWATCH_{kind.upper()}_RECIPIENTS", "")
    return [r.strip() for r in raw.split(",") if r.strip()]
