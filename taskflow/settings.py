from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


DEFAULT_PROVIDER = "openai"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_TOKENS = 4000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"
DEFAULT_USER_ID = "local"

ALLOWED_PROVIDERS = {"openai", "openrouter", "ollama"}
ALLOWED_START_POLICIES = {"first", "all"}
ALLOWED_JOIN_POLICIES = {"all", "first"}


@dataclass(slots=True)
class AppSettings:
    provider: str = DEFAULT_PROVIDER
    openai_api_key: str | None = None
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    openrouter_api_key: str | None = None
    openrouter_base_url: str = DEFAULT_OPENROUTER_BASE_URL
    ollama_base_url: str = DEFAULT_OLLAMA_BASE_URL
    default_model: str = DEFAULT_MODEL
    default_max_tokens: int = DEFAULT_MAX_TOKENS
    default_temperature: float = DEFAULT_TEMPERATURE
    llm_request_timeout_seconds: int = 90
    llm_retry_attempts: int = 3
    llm_retry_backoff_seconds: float = 1.5
    node_timeout_seconds: float | None = None
    persistence_retry_attempts: int = 3
    persistence_retry_backoff_seconds: float = 0.25
    sqlite_path: Path = Path("data/taskflow.db")
    default_user_id: str = DEFAULT_USER_ID
    start_policy: str = "first"
    join_policy: str = "all"
    inject_context: bool = True

    @property
    def api_key(self) -> str | None:
        if self.provider == "openrouter":
            return self.openrouter_api_key
        if self.provider == "openai":
            return self.openai_api_key
        return None

    @property
    def base_url(self) -> str:
        if self.provider == "openrouter":
            return self.openrouter_base_url
        if self.provider == "ollama":
            return self.ollama_base_url
        return self.openai_base_url



def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default



def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_optional_float(name: str) -> float | None:
    value = os.getenv(name)
    if not value:
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if not value:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_choice(name: str, default: str, allowed: set[str]) -> str:
    value = (os.getenv(name) or "").strip().lower()
    if value in allowed:
        return value
    return default



def load_settings() -> AppSettings:
    load_dotenv()

    sqlite_path = Path(os.getenv("TASKFLOW_SQLITE_PATH", "data/taskflow.db")).expanduser()

    settings = AppSettings(
        provider=_get_choice("TASKFLOW_PROVIDER", DEFAULT_PROVIDER, ALLOWED_PROVIDERS),
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_base_url=os.getenv("OPENAI_BASE_URL", DEFAULT_OPENAI_BASE_URL),
        openrouter_api_key=os.getenv("OPENROUTER_API_KEY") or None,
        openrouter_base_url=os.getenv("OPENROUTER_BASE_URL", DEFAULT_OPENROUTER_BASE_URL),
        ollama_base_url=os.getenv("OLLAMA_BASE_URL", DEFAULT_OLLAMA_BASE_URL),
        default_model=os.getenv("DEFAULT_MODEL", DEFAULT_MODEL),
        default_max_tokens=_get_int("MAX_TOKENS", DEFAULT_MAX_TOKENS),
        default_temperature=_get_float("DEFAULT_TEMPERATURE", DEFAULT_TEMPERATURE),
        llm_request_timeout_seconds=_get_int("LLM_REQUEST_TIMEOUT_SECONDS", 90),
        llm_retry_attempts=_get_int("LLM_RETRY_ATTEMPTS", 3),
        llm_retry_backoff_seconds=_get_float("LLM_RETRY_BACKOFF_SECONDS", 1.5),
        node_timeout_seconds=_get_optional_float("NODE_TIMEOUT_SECONDS"),
        persistence_retry_attempts=_get_int("PERSISTENCE_RETRY_ATTEMPTS", 3),
        persistence_retry_backoff_seconds=_get_float("PERSISTENCE_RETRY_BACKOFF_SECONDS", 0.25),
        sqlite_path=sqlite_path,
        default_user_id=os.getenv("TASKFLOW_USER_ID", DEFAULT_USER_ID),
        start_policy=_get_choice("TASKFLOW_START_POLICY", "first", ALLOWED_START_POLICIES),
        join_policy=_get_choice("TASKFLOW_JOIN_POLICY", "all", ALLOWED_JOIN_POLICIES),
        inject_context=_get_bool("TASKFLOW_INJECT_CONTEXT", True),
    )

    settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return settings
