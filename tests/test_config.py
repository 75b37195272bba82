from __future__ import annotations

from zoneinfo import ZoneInfo

from perflab.config import AppConfig, as_dict, get_config, log_level
from perflab.env import get_env, get_flag


def test_defaults_without_config_file() -> None:
    config = get_config()
    assert config == AppConfig()
    assert config.tzinfo == ZoneInfo("UTC")
    assert as_dict()["source"] == "defaults"
    assert as_dict()["llm"]["enabled"] is False


def test_config_file_overrides_and_coerces(monkeypatch, tmp_path) -> None:
    path = tmp_path / "perflab.toml"
    path.write_text(
        "\n".join(
            [
                'display_timezone = "America/Argentina/Buenos_Aires"',
                "dashboard_window_days = 7",
                "store_timeout_seconds = -1",
                "",
                "[chat]",
                "row_limit = 20",
                "",
                "[llm]",
                'model = "anthropic/claude-3-haiku"',
                'temperature = "warm"',
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("PERFLAB_CONFIG", str(path))
    get_config.cache_clear()

    config = get_config()
    assert config.display_timezone == "America/Argentina/Buenos_Aires"
    assert config.dashboard_window_days == 7
    assert config.store_timeout_seconds == 5.0
    assert config.chat.row_limit == 20
    assert config.chat.detail_rows == 5
    assert config.llm.model == "anthropic/claude-3-haiku"
    assert config.llm.temperature == 0.25
    assert as_dict()["source"] == str(path)


def test_unknown_timezone_falls_back_to_utc(monkeypatch, tmp_path) -> None:
    path = tmp_path / "perflab.toml"
    path.write_text('display_timezone = "Mars/Olympus"\n', encoding="utf-8")
    monkeypatch.setenv("PERFLAB_CONFIG", str(path))
    get_config.cache_clear()
    assert get_config().display_timezone == "UTC"


def test_env_lookup_prefers_prefixed_names(monkeypatch) -> None:
    monkeypatch.setenv("LLM_API_KEY", "bare")
    assert get_env("LLM_API_KEY") is None
    assert get_env("LLM_API_KEY", allow_bare=True) == "bare"
    monkeypatch.setenv("PERFLAB_LLM_API_KEY", "prefixed")
    assert get_env("LLM_API_KEY", allow_bare=True) == "prefixed"

    assert get_flag("DEMO") is False
    monkeypatch.setenv("PERFLAB_DEMO", "yes")
    assert get_flag("DEMO") is True


def test_log_level_is_case_insensitive(monkeypatch) -> None:
    assert log_level("INFO") == "INFO"
    monkeypatch.setenv("LOG_LEVEL", "debug")
    assert log_level("INFO") == "DEBUG"
    monkeypatch.setenv("PERFLAB_LOG_LEVEL", "Error")
    assert log_level("INFO") == "ERROR"
    monkeypatch.setenv("PERFLAB_LOG_LEVEL", "chatty")
    assert log_level("WARNING") == "WARNING"


def test_webapp_bind_address_reads_prefixed_port(monkeypatch) -> None:
    from perflab.webapp.__main__ import bind_address

    assert bind_address() == ("0.0.0.0", 5001)
    monkeypatch.setenv("PORT", "9000")
    assert bind_address() == ("0.0.0.0", 9000)
    monkeypatch.setenv("PERFLAB_PORT", "8080")
    monkeypatch.setenv("PERFLAB_HOST", "127.0.0.1")
    assert bind_address() == ("127.0.0.1", 8080)
    monkeypatch.setenv("PERFLAB_PORT", "eighty")
    assert bind_address() == ("127.0.0.1", 5001)
