from __future__ import annotations

import json

from typer.testing import CliRunner

from perflab.cli import app


def test_cli_smoke(tmp_path, monkeypatch):
    runner = CliRunner()
    db_path = tmp_path / "perflab.db"
    monkeypatch.setenv("PERFLAB_DB_FILE", str(db_path))

    seed_result = runner.invoke(app, ["seed", "--anchor", "2026-02-02"])
    assert seed_result.exit_code == 0, seed_result.stdout
    assert f"Seeded {db_path}" in seed_result.stdout
    assert "athletes: 15 rows" in seed_result.stdout

    again = runner.invoke(app, ["seed", "--anchor", "2026-02-02"])
    assert again.exit_code == 2

    forced = runner.invoke(app, ["seed", "--anchor", "2026-02-02", "--force"])
    assert forced.exit_code == 0, forced.stdout

    alerts_result = runner.invoke(app, ["alerts", "--now", "2026-02-02", "--json"])
    assert alerts_result.exit_code == 0, alerts_result.stdout
    alerts = json.loads(alerts_result.stdout)
    assert alerts[0]["severity"] == "critical"
    assert {"injury", "jump"} <= {alert["metric_family"] for alert in alerts}

    dashboard_result = runner.invoke(app, ["dashboard", "--now", "2026-02-02", "--days", "7"])
    assert dashboard_result.exit_code == 0, dashboard_result.stdout
    assert "Window: last 7 days" in dashboard_result.stdout
    assert "Top distance:" in dashboard_result.stdout

    ask_result = runner.invoke(app, ["ask", "CMJ de Osores", "--now", "2026-02-02", "--no-rewrite"])
    assert ask_result.exit_code == 0, ask_result.stdout
    assert "ATHLETE: Mauro Osores" in ask_result.stdout
    assert "Sources: jump_metrics (since 2026-01-26)" in ask_result.stdout

    profile_result = runner.invoke(app, ["profile", "osores", "--now", "2026-02-02", "--json"])
    assert profile_result.exit_code == 0, profile_result.stdout
    assert json.loads(profile_result.stdout)["kpis"]["cmj_tests"] == 2


def test_cli_demo_mode_needs_no_database(tmp_path, monkeypatch):
    runner = CliRunner()
    monkeypatch.setenv("PERFLAB_DB_FILE", str(tmp_path / "missing.db"))

    result = runner.invoke(app, ["--demo", "ask", "lista de jugadores"])
    assert result.exit_code == 0, result.stdout
    assert "Total: 15 athletes" in result.stdout
    assert not (tmp_path / "missing.db").exists()


def test_cli_rejects_bad_input(monkeypatch):
    runner = CliRunner()
    monkeypatch.setenv("PERFLAB_ENV", "production")

    blocked = runner.invoke(app, ["seed"])
    assert blocked.exit_code == 3

    bad_now = runner.invoke(app, ["--demo", "alerts", "--now", "someday"])
    assert bad_now.exit_code == 2

    unknown = runner.invoke(app, ["--demo", "profile", "Maradona"])
    assert unknown.exit_code == 2


def test_cli_config_shows_defaults():
    result = CliRunner().invoke(app, ["config"])
    assert result.exit_code == 0, result.stdout
    assert "Config source: defaults" in result.stdout
    assert "LLM rewrite: disabled (no API key)" in result.stdout


def test_cli_log_commands_record_validated_samples(tmp_path, monkeypatch):
    runner = CliRunner()
    monkeypatch.setenv("PERFLAB_DB_FILE", str(tmp_path / "perflab.db"))
    assert runner.invoke(app, ["seed", "--anchor", "2026-02-02"]).exit_code == 0

    gps = runner.invoke(
        app,
        ["log-gps", "--athlete", "mp-031", "--session", "ms-12", "--distance", "10450", "--max-speed", "31.2",
         "--at", "2026-02-01T20:00"],
    )
    assert gps.exit_code == 0, gps.stdout
    assert "Recorded gps sample" in gps.stdout

    jump = runner.invoke(
        app, ["log-jump", "--athlete", "mp-006", "--test", "cmj", "--height", "41.5", "--at", "2026-02-01T12:00"]
    )
    assert jump.exit_code == 0, jump.stdout

    strength = runner.invoke(
        app, ["log-strength", "-a", "mp-006", "-e", "Squat", "--sets", "4", "--reps", "5", "--load", "120"]
    )
    assert strength.exit_code == 0, strength.stdout

    profile_result = runner.invoke(app, ["profile", "mp-006", "--now", "2026-02-02", "--json"])
    assert json.loads(profile_result.stdout)["kpis"]["cmj_tests"] == 3


def test_cli_log_commands_reject_out_of_range_values(tmp_path, monkeypatch):
    runner = CliRunner()
    monkeypatch.setenv("PERFLAB_DB_FILE", str(tmp_path / "perflab.db"))
    assert runner.invoke(app, ["seed", "--anchor", "2026-02-02"]).exit_code == 0

    too_far = runner.invoke(app, ["log-gps", "-a", "mp-031", "-s", "ms-12", "--distance", "16000"])
    assert too_far.exit_code == 2

    too_high = runner.invoke(app, ["log-jump", "-a", "mp-006", "--height", "120"])
    assert too_high.exit_code == 2

    bad_rpe = runner.invoke(app, ["log-strength", "-a", "mp-006", "-e", "Squat", "--rpe", "12"])
    assert bad_rpe.exit_code == 2

    unknown_athlete = runner.invoke(app, ["log-jump", "-a", "nobody", "--height", "40"])
    assert unknown_athlete.exit_code == 2
