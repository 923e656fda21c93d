from __future__ import annotations

import os
from dataclasses import dataclass

SUBMIT_HISTORY_LATEST = "latest"
SUBMIT_HISTORY_FULL = "full"
SUBMIT_HISTORY_POLICIES = {SUBMIT_HISTORY_LATEST, SUBMIT_HISTORY_FULL}

REQUIRED_SECRETS = ("OPENAI_API_KEY", "ASSISTANT_ID", "INVITE_CODE")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class AppConfig:
    app_name: str
    app_version: str
    environment: str
    openai_api_key: str
    openai_base_url: str
    assistant_id: str
    invite_code: str
    submit_history: str
    probe_timeout_seconds: float
    session_cookie_name: str
    session_max_age_seconds: int

    @property
    def secure_cookies(self) -> bool:
        return self.environment == "production"


@dataclass(frozen=True)
class ChatClientConfig:
    api_url: str
    request_timeout_seconds: float
    poll_max_attempts: int
    poll_initial_delay_seconds: float
    poll_delay_step_seconds: float
    poll_max_delay_seconds: float
    poll_transient_retry_seconds: float


def _read_optional_env(name: str) -> str | None:
    value = os.getenv(name)
    if not value:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _read_int_env(name: str, default: int) -> int:
    value = _read_optional_env(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_float_env(name: str, default: float) -> float:
    value = _read_optional_env(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_choice_env(name: str, default: str, choices: set[str]) -> str:
    value = _read_optional_env(name)
    if value is None:
        return default
    normalized = value.lower()
    return normalized if normalized in choices else default


def _require_secrets() -> dict[str, str]:
    resolved = {name: _read_optional_env(name) for name in REQUIRED_SECRETS}
    missing = [name for name, value in resolved.items() if value is None]
    if missing:
        raise ConfigError(
            "Missing required configuration: " + ", ".join(sorted(missing))
        )
    return {name: str(value) for name, value in resolved.items()}


def load_app_config() -> AppConfig:
    secrets = _require_secrets()
    return AppConfig(
        app_name=os.getenv("APP_NAME", "Compass Assistant"),
        app_version=os.getenv("APP_VERSION", "0.1.0"),
        environment=os.getenv("APP_ENV", "development").strip().lower()
        or "development",
        openai_api_key=secrets["OPENAI_API_KEY"],
        openai_base_url=(
            _read_optional_env("OPENAI_BASE_URL") or "https://api.openai.com/v1"
        ).rstrip("/"),
        assistant_id=secrets["ASSISTANT_ID"],
        invite_code=secrets["INVITE_CODE"],
        submit_history=_read_choice_env(
            "SUBMIT_HISTORY", SUBMIT_HISTORY_LATEST, SUBMIT_HISTORY_POLICIES
        ),
        probe_timeout_seconds=_read_float_env("PROBE_TIMEOUT_SECONDS", default=20.0),
        session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "compass_session").strip()
        or "compass_session",
        session_max_age_seconds=_read_int_env(
            "SESSION_MAX_AGE_SECONDS", default=60 * 60 * 24 * 7
        ),
    )


def load_chat_client_config() -> ChatClientConfig:
    return ChatClientConfig(
        api_url=(
            _read_optional_env("COMPASS_API_URL") or "http://localhost:8000"
        ).rstrip("/"),
        request_timeout_seconds=_read_float_env("PROBE_TIMEOUT_SECONDS", default=20.0),
        poll_max_attempts=_read_int_env("POLL_MAX_ATTEMPTS", default=120),
        poll_initial_delay_seconds=_read_float_env(
            "POLL_INITIAL_DELAY_SECONDS", default=2.5
        ),
        poll_delay_step_seconds=_read_float_env(
            "POLL_DELAY_STEP_SECONDS", default=0.5
        ),
        poll_max_delay_seconds=_read_float_env("POLL_MAX_DELAY_SECONDS", default=5.0),
        poll_transient_retry_seconds=_read_float_env(
            "POLL_TRANSIENT_RETRY_SECONDS", default=5.0
        ),
    )
