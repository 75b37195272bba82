from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Optional

import typer

from .alerts import run_alert_pass
from .config import as_dict as config_as_dict, get_config, log_level
from .demo import build_demo_tables
from .env import get_env
from .models import Alert, MetricFamily, Severity, ValidationError
from .services import (
    build_adapter,
    build_athlete_profile,
    build_dashboard,
    build_router,
    open_store,
    record_sample,
    resolve_now,
)
from .store import COLLECTIONS, SqliteStore

app = typer.Typer(help="Performance alerts, trends and data questions for a squad.")

LOGGER = logging.getLogger(__name__)


def _fail(message: str, *, code: int = 1) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _store(ctx: typer.Context):
    demo = bool((ctx.obj or {}).get("demo"))
    return open_store(demo=demo or None)


def _adapter(ctx: typer.Context):
    return build_adapter(_store(ctx))


def _now(value: Optional[str]):
    try:
        return resolve_now(value)
    except ValidationError as exc:
        _fail(str(exc), code=2)


def _echo_alert(alert: Alert) -> None:
    colour = typer.colors.RED if alert.severity is Severity.CRITICAL else typer.colors.YELLOW
    typer.secho(
        f"[{alert.severity.value.upper()}] {alert.athlete_name} ({alert.metric_family.value}): {alert.message}",
        fg=colour,
    )


@app.callback()
def main_callback(
    ctx: typer.Context,
    demo: bool = typer.Option(
        False,
        "--demo",
        help="Use the in-memory demo dataset instead of the SQLite store (or set PERFLAB_DEMO=1).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else log_level("WARNING"))
    ctx.obj = {"demo": demo}


@app.command()
def seed(
    db: Optional[Path] = typer.Option(
        None,
        "--db",
        help="SQLite file to seed (defaults to PERFLAB_DB_FILE or data/perflab.db).",
    ),
    anchor: Optional[str] = typer.Option(
        None,
        "--anchor",
        help="Day after the last demo session, YYYY-MM-DD (defaults to today).",
    ),
    force: bool = typer.Option(False, "--force", help="Replace an existing database file."),
    allow_production: bool = typer.Option(
        False,
        "--allow-production",
        help="Permit seeding when PERFLAB_ENV=production.",
    ),
) -> None:
    """
    Load the demo roster and two microcycles of metrics into the SQLite store.
    """
    env_name = (get_env("ENV") or "development").lower()
    if env_name == "production" and not allow_production:
        _fail(
            "Seeding is disabled when PERFLAB_ENV=production. "
            "Pass --allow-production to override intentionally.",
            code=3,
        )
    try:
        anchor_day = date.fromisoformat(anchor) if anchor else None
    except ValueError:
        _fail(f"Invalid --anchor {anchor!r}; expected YYYY-MM-DD.", code=2)

    store = SqliteStore(db, timeout=get_config().store_timeout_seconds)
    if store.path.exists() and store.query("athletes", limit=1):
        if not force:
            _fail(f"{store.path} already holds data. Re-run with --force to replace it.", code=2)
        store.path.unlink()
        store = SqliteStore(store.path, timeout=store.timeout)

    tables = build_demo_tables(anchor_day)
    counts = {collection: store.insert(collection, tables[collection]) for collection in COLLECTIONS}
    typer.echo(f"Seeded {store.path}")
    for collection, count in counts.items():
        typer.echo(f" • {collection}: {count} rows")


@app.command()
def dashboard(
    ctx: typer.Context,
    days: Optional[int] = typer.Option(
        None, "--days", "-d", min=1, help="Window for KPIs and trends (defaults to dashboard_window_days)."
    ),
    now: Optional[str] = typer.Option(None, "--now", help="Reference time (ISO-8601, defaults to now)."),
    as_json: bool = typer.Option(False, "--json", help="Print the full snapshot as JSON."),
) -> None:
    """
    Team KPIs, top distance, trends and alerts for the window.
    """
    snapshot = build_dashboard(_adapter(ctx), _now(now), window_days=days or get_config().dashboard_window_days)
    if as_json:
        _echo_json(snapshot.to_dict())
        return

    kpis = snapshot.kpis.to_dict()
    typer.echo(f"Window: last {snapshot.window_days} days (until {snapshot.generated_at.isoformat()})")
    typer.echo(
        f"Avg distance {kpis['avg_distance_m']} m · avg max speed {kpis['avg_max_speed_kmh']} km/h · "
        f"avg CMJ {kpis['avg_jump_cm']} cm"
    )
    if snapshot.top_distance:
        typer.echo("Top distance:")
        for rank, entry in enumerate(snapshot.top_distance, start=1):
            typer.echo(f"  {rank}. {entry.athlete_name}: {entry.total_distance_m:.0f} m")
    if snapshot.daily_trend:
        typer.echo("Daily trend:")
        for point in snapshot.daily_trend:
            typer.echo(
                f"  {point.day.isoformat()}: {point.avg_distance_km} km, load {point.avg_player_load}, "
                f"Vmax {point.max_speed_kmh} km/h"
            )
    typer.echo(f"Alerts: {len(snapshot.alerts)}")
    for alert in snapshot.alerts:
        _echo_alert(alert)


@app.command()
def alerts(
    ctx: typer.Context,
    now: Optional[str] = typer.Option(None, "--now", help="Reference time (ISO-8601, defaults to now)."),
    as_json: bool = typer.Option(False, "--json", help="Print alerts as JSON."),
) -> None:
    """
    Run the alert rules over the last 14 days.
    """
    results = run_alert_pass(_adapter(ctx), _now(now))
    if as_json:
        _echo_json([alert.to_dict() for alert in results])
        return
    if not results:
        typer.echo("No alerts.")
        return
    for alert in results:
        _echo_alert(alert)


@app.command()
def ask(
    ctx: typer.Context,
    question: str = typer.Argument(..., help="Question about load, jumps, strength or the roster."),
    now: Optional[str] = typer.Option(None, "--now", help="Reference time (ISO-8601, defaults to now)."),
    rewrite: bool = typer.Option(True, "--rewrite/--no-rewrite", help="Allow the configured LLM to rephrase."),
    as_json: bool = typer.Option(False, "--json", help="Print the answer as JSON."),
) -> None:
    """
    Answer a free-text question from the stored metrics.
    """
    adapter = _adapter(ctx)
    router = build_router(adapter)
    if not rewrite:
        router.rewriter = None
    try:
        answer = router.answer(question, _now(now))
    except ValidationError as exc:
        _fail(str(exc), code=2)

    if as_json:
        _echo_json(answer.to_dict())
        return
    typer.echo(answer.text)
    if answer.cited_collections:
        typer.secho("Sources: " + ", ".join(answer.cited_collections), fg=typer.colors.BLUE)


@app.command()
def profile(
    ctx: typer.Context,
    athlete: str = typer.Argument(..., help="Athlete id or name fragment."),
    days: Optional[int] = typer.Option(None, "--days", "-d", min=1, help="Limit to the last N days."),
    now: Optional[str] = typer.Option(None, "--now", help="Reference time (ISO-8601, defaults to now)."),
    as_json: bool = typer.Option(False, "--json", help="Print the profile as JSON."),
) -> None:
    """
    Per-athlete GPS, CMJ and strength history with alerts.
    """
    adapter = _adapter(ctx)
    match = adapter.resolve_athlete(athlete)
    if match is None:
        _fail(f"No athlete matches {athlete!r}.", code=2)
    result = build_athlete_profile(adapter, match.id, _now(now), window_days=days)
    if result is None:
        _fail(f"No athlete matches {athlete!r}.", code=2)

    if as_json:
        _echo_json(result.to_dict())
        return
    payload = result.to_dict()
    kpis = payload["kpis"]
    typer.echo(f"{match.display_name} [{match.status.value}] {match.position or ''}".rstrip())
    typer.echo(
        f"GPS sessions {kpis['gps_sessions']} · avg distance {kpis['avg_distance_m']} m · "
        f"CMJ tests {kpis['cmj_tests']} · strength records {kpis['strength_records']}"
    )
    for row in result.cmj_series:
        typer.echo(f"  CMJ {row['date']}: {row['jump_height_cm']} cm")
    for alert in result.alerts:
        _echo_alert(alert)


def _record(ctx: typer.Context, family: MetricFamily, payload: dict[str, Any]) -> None:
    try:
        sample = record_sample(_store(ctx), family, payload)
    except ValidationError as exc:
        _fail(str(exc), code=2)
    typer.secho(
        f"Recorded {family.value} sample {sample.id} for {sample.athlete_id} at {sample.recorded_at.isoformat()}",
        fg=typer.colors.GREEN,
    )


_ATHLETE_OPTION = typer.Option(..., "--athlete", "-a", help="Athlete id as stored in the roster.")
_RECORDED_AT_OPTION = typer.Option(None, "--at", help="Recording time (ISO-8601, defaults to now).")


@app.command("log-gps")
def log_gps(
    ctx: typer.Context,
    athlete: str = _ATHLETE_OPTION,
    session: str = typer.Option(..., "--session", "-s", help="Training session id."),
    distance: float = typer.Option(..., "--distance", help="Total distance in metres (0-15000)."),
    high_speed: Optional[float] = typer.Option(None, "--high-speed", help="High-speed distance in metres (0-5000)."),
    sprint: Optional[float] = typer.Option(None, "--sprint", help="Sprint distance in metres (0-3000)."),
    max_speed: Optional[float] = typer.Option(None, "--max-speed", help="Top speed in km/h (0-45)."),
    player_load: Optional[float] = typer.Option(None, "--player-load", help="Player load in AU (0-5000)."),
    accels: Optional[int] = typer.Option(None, "--accels", help="Acceleration count (0-200)."),
    decels: Optional[int] = typer.Option(None, "--decels", help="Deceleration count (0-200)."),
    recorded_at: Optional[str] = _RECORDED_AT_OPTION,
) -> None:
    """
    Record one GPS / external load sample.

    Example:
        perflab log-gps --athlete mp-031 --session ms-12 --distance 10450 --max-speed 31.2
    """
    _record(
        ctx,
        MetricFamily.GPS,
        {
            "athlete_id": athlete,
            "session_id": session,
            "total_distance_m": distance,
            "high_speed_distance_m": high_speed,
            "sprint_distance_m": sprint,
            "max_speed_kmh": max_speed,
            "player_load": player_load,
            "accel_count": accels,
            "decel_count": decels,
            "recorded_at": recorded_at,
        },
    )


@app.command("log-jump")
def log_jump(
    ctx: typer.Context,
    athlete: str = _ATHLETE_OPTION,
    test_type: str = typer.Option("CMJ", "--test", "-t", help="Jump test: CMJ, SJ, DJ or other."),
    height: float = typer.Option(..., "--height", help="Jump height in cm (0-100)."),
    rsi: Optional[float] = typer.Option(None, "--rsi", help="Reactive strength index (0-5)."),
    peak_power: Optional[float] = typer.Option(None, "--peak-power", help="Peak power in W (0-5000)."),
    asymmetry: Optional[float] = typer.Option(None, "--asymmetry", help="Asymmetry in % (0-50)."),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Training session id."),
    recorded_at: Optional[str] = _RECORDED_AT_OPTION,
) -> None:
    """
    Record one jump test.
    """
    _record(
        ctx,
        MetricFamily.JUMP,
        {
            "athlete_id": athlete,
            "session_id": session,
            "test_type": test_type,
            "jump_height_cm": height,
            "rsi": rsi,
            "peak_power_w": peak_power,
            "asymmetry_pct": asymmetry,
            "recorded_at": recorded_at,
        },
    )


@app.command("log-strength")
def log_strength(
    ctx: typer.Context,
    athlete: str = _ATHLETE_OPTION,
    exercise: str = typer.Option(..., "--exercise", "-e", help="Exercise name (e.g. 'Squat')."),
    sets: Optional[int] = typer.Option(None, "--sets", help="Set count (0-50)."),
    reps: Optional[int] = typer.Option(None, "--reps", help="Repetitions per set (0-100)."),
    load: Optional[float] = typer.Option(None, "--load", help="Load in kg (0-500)."),
    rpe: Optional[float] = typer.Option(None, "--rpe", help="Rate of perceived exertion (0-10)."),
    estimated_1rm: Optional[float] = typer.Option(None, "--estimated-1rm", help="Estimated one-rep max in kg (0-600)."),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Training session id."),
    recorded_at: Optional[str] = _RECORDED_AT_OPTION,
) -> None:
    """
    Record one strength exercise entry.
    """
    _record(
        ctx,
        MetricFamily.STRENGTH,
        {
            "athlete_id": athlete,
            "session_id": session,
            "exercise_name": exercise,
            "set_count": sets,
            "reps": reps,
            "load_kg": load,
            "rpe": rpe,
            "estimated_1rm": estimated_1rm,
            "recorded_at": recorded_at,
        },
    )


@app.command("config")
def config_show() -> None:
    """
    Show the effective configuration.
    """
    config = config_as_dict()
    typer.echo(f"Config source: {config.get('source')}")
    typer.echo(f"Display timezone: {config['display_timezone']}")
    typer.echo(f"Dashboard window: {config['dashboard_window_days']} days")
    typer.echo(f"Store timeout: {config['store_timeout_seconds']}s")
    chat = config["chat"]
    typer.echo(f"Chat: row_limit={chat['row_limit']}, detail_rows={chat['detail_rows']}")
    llm = config["llm"]
    state = "enabled" if llm["enabled"] else "disabled (no API key)"
    typer.echo(f"LLM rewrite: {state}, model={llm['model']}, base_url={llm['base_url']}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
