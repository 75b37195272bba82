from __future__ import annotations

import os

PRIMARY_PREFIX = "PERFLAB_"


def get_env(name: str, default: str | None = None, *, allow_bare: bool = False) -> str | None:
    """
    Resolve configuration environment variables.

    Looks up ``PERFLAB_<name>`` first. When ``allow_bare`` is set the unprefixed
    name is accepted too, which keeps deployments that export e.g. ``LLM_API_KEY``
    working without renaming.
    """
    value = os.getenv(f"{PRIMARY_PREFIX}{name}")
    if value is not None:
        return value
    if allow_bare:
        value = os.getenv(name)
        if value is not None:
            return value
    return default


def get_flag(name: str, default: bool = False) -> bool:
    """Interpret ``PERFLAB_<name>`` as a boolean switch."""
    raw = get_env(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}
