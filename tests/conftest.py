from __future__ import annotations

import pytest

from perflab.config import get_config


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for name in (
        "PERFLAB_CONFIG",
        "PERFLAB_DEMO",
        "PERFLAB_DB_FILE",
        "PERFLAB_LLM_API_KEY",
        "LLM_API_KEY",
        "PERFLAB_ENV",
        "PERFLAB_LOG_LEVEL",
        "LOG_LEVEL",
        "PERFLAB_HOST",
        "PERFLAB_PORT",
        "PORT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PERFLAB_DATA_DIR", str(tmp_path / "data"))
    get_config.cache_clear()
    yield
    get_config.cache_clear()
