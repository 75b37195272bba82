from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .env import get_env

DEFAULT_TIMEZONE = "UTC"
DEFAULT_LLM_MODEL = "openai/gpt-4o-mini"
DEFAULT_LLM_BASE_URL = "https://openrouter.ai/api/v1"


@dataclass(frozen=True)
class ChatSettings:
    row_limit: int = 50
    detail_rows: int = 5


@dataclass(frozen=True)
class LlmSettings:
    model: str = DEFAULT_LLM_MODEL
    base_url: str = DEFAULT_LLM_BASE_URL
    timeout_seconds: float = 20.0
    max_tokens: int = 1200
    temperature: float = 0.25


@dataclass(frozen=True)
class AppConfig:
    display_timezone: str = DEFAULT_TIMEZONE
    dashboard_window_days: int = 14
    store_timeout_seconds: float = 5.0
    chat: ChatSettings = field(default_factory=ChatSettings)
    llm: LlmSettings = field(default_factory=LlmSettings)

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.display_timezone)


def _config_path() -> Path | None:
    """Resolve the TOML configuration file, if present."""
    env_override = get_env("CONFIG")
    if env_override:
        path = Path(env_override).expanduser()
        return path if path.exists() else None

    default_path = Path("config/perflab.toml")
    if default_path.exists():
        return default_path
    return None


def _load_toml(path: Path) -> Mapping[str, Any]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _coerce_timezone(raw: Any) -> str:
    if not isinstance(raw, str) or not raw.strip():
        return DEFAULT_TIMEZONE
    candidate = raw.strip()
    try:
        ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        return DEFAULT_TIMEZONE
    return candidate


def _coerce_positive(raw: Any, fallback: float, *, integer: bool = False) -> Any:
    if raw is None or isinstance(raw, bool):
        return fallback
    try:
        value = int(raw) if integer else float(raw)
    except (TypeError, ValueError):
        return fallback
    return value if value > 0 else fallback


def _coerce_chat(raw: Mapping[str, Any] | None) -> ChatSettings:
    base = ChatSettings()
    if not raw:
        return base
    return ChatSettings(
        row_limit=_coerce_positive(raw.get("row_limit"), base.row_limit, integer=True),
        detail_rows=_coerce_positive(raw.get("detail_rows"), base.detail_rows, integer=True),
    )


def _coerce_llm(raw: Mapping[str, Any] | None) -> LlmSettings:
    base = LlmSettings()
    if not raw:
        return base
    model = raw.get("model")
    base_url = raw.get("base_url")
    try:
        temperature = float(raw.get("temperature", base.temperature))
    except (TypeError, ValueError):
        temperature = base.temperature
    return LlmSettings(
        model=model.strip() if isinstance(model, str) and model.strip() else base.model,
        base_url=base_url.strip() if isinstance(base_url, str) and base_url.strip() else base.base_url,
        timeout_seconds=_coerce_positive(raw.get("timeout_seconds"), base.timeout_seconds),
        max_tokens=_coerce_positive(raw.get("max_tokens"), base.max_tokens, integer=True),
        temperature=temperature,
    )


def _build_config(raw: Mapping[str, Any]) -> AppConfig:
    base = AppConfig()
    chat_section = raw.get("chat")
    llm_section = raw.get("llm")
    return AppConfig(
        display_timezone=_coerce_timezone(raw.get("display_timezone")),
        dashboard_window_days=_coerce_positive(
            raw.get("dashboard_window_days"), base.dashboard_window_days, integer=True
        ),
        store_timeout_seconds=_coerce_positive(raw.get("store_timeout_seconds"), base.store_timeout_seconds),
        chat=_coerce_chat(chat_section if isinstance(chat_section, Mapping) else None),
        llm=_coerce_llm(llm_section if isinstance(llm_section, Mapping) else None),
    )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load configuration once, falling back to built-in defaults."""
    path = _config_path()
    if not path:
        return AppConfig()
    data = _load_toml(path)
    return _build_config(data)


def llm_api_key() -> str | None:
    key = get_env("LLM_API_KEY", allow_bare=True)
    return key.strip() if key and key.strip() else None


def log_level(default: str = "WARNING") -> str:
    """
    Resolve `PERFLAB_LOG_LEVEL` (or bare `LOG_LEVEL`) to a logging level name.

    Names are case-insensitive; unknown values fall back to ``default``.
    """
    raw = (get_env("LOG_LEVEL", allow_bare=True) or "").strip().upper()
    if raw and isinstance(logging.getLevelName(raw), int):
        return raw
    return default


def as_dict() -> dict[str, Any]:
    """Return the effective configuration for debug/CLI display."""
    config = get_config()
    return {
        "display_timezone": config.display_timezone,
        "dashboard_window_days": config.dashboard_window_days,
        "store_timeout_seconds": config.store_timeout_seconds,
        "chat": {
            "row_limit": config.chat.row_limit,
            "detail_rows": config.chat.detail_rows,
        },
        "llm": {
            "model": config.llm.model,
            "base_url": config.llm.base_url,
            "timeout_seconds": config.llm.timeout_seconds,
            "enabled": llm_api_key() is not None,
        },
        "source": str(_config_path() or "defaults"),
    }
