from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from .adapter import MetricBundle, MetricStoreAdapter
from .aggregation import (
    AthleteRollup,
    CmjTrendPoint,
    DailyTrendPoint,
    RosterSummary,
    SessionLoad,
    SpeedTrendPoint,
    TeamKpis,
    TopNEntry,
    athlete_rollups,
    cmj_trend,
    daily_trend,
    load_by_session,
    roster_summary,
    speed_trend,
    team_kpis,
    top_by_distance,
)
from .alerts import ALERT_SPAN_DAYS, detect_alerts
from .chat import QueryRouter, TextRewriter
from .config import AppConfig, get_config
from .demo import demo_store
from .env import get_flag
from .models import (
    Alert,
    Athlete,
    JumpTest,
    MetricFamily,
    Sample,
    TimeWindow,
    ValidationError,
    gps_from_input,
    jump_from_input,
    parse_timestamp,
    sample_to_row,
    strength_from_input,
)
from .rewrite import build_rewriter
from .store import SqliteStore, Store

LOGGER = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class DashboardSnapshot:
    generated_at: datetime
    window_days: int
    kpis: TeamKpis
    alerts: list[Alert]
    top_distance: list[TopNEntry]
    load_by_session: list[SessionLoad]
    daily_trend: list[DailyTrendPoint]
    cmj_trend: list[CmjTrendPoint]
    speed_trend: list[SpeedTrendPoint]
    athletes: list[AthleteRollup]
    roster: RosterSummary

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": self.generated_at.isoformat(),
            "window_days": self.window_days,
            "kpis": self.kpis.to_dict(),
            "alerts": [alert.to_dict() for alert in self.alerts],
            "top_distance": [entry.to_dict() for entry in self.top_distance],
            "load_by_session": [entry.to_dict() for entry in self.load_by_session],
            "daily_trend": [point.to_dict() for point in self.daily_trend],
            "cmj_trend": [point.to_dict() for point in self.cmj_trend],
            "speed_trend": [point.to_dict() for point in self.speed_trend],
            "athletes": [rollup.to_dict() for rollup in self.athletes],
            "roster": self.roster.to_dict(),
        }


@dataclass(frozen=True)
class AthleteProfile:
    athlete: Athlete
    gps_sessions: int
    avg_distance_m: float
    cmj_tests: int
    strength_records: int
    gps_series: list[dict[str, Any]] = field(default_factory=list)
    cmj_series: list[dict[str, Any]] = field(default_factory=list)
    strength_table: list[dict[str, Any]] = field(default_factory=list)
    alerts: list[Alert] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "athlete": self.athlete.to_dict(),
            "kpis": {
                "gps_sessions": self.gps_sessions,
                "avg_distance_m": round(self.avg_distance_m),
                "cmj_tests": self.cmj_tests,
                "strength_records": self.strength_records,
            },
            "gps_series": list(self.gps_series),
            "cmj_series": list(self.cmj_series),
            "strength_table": list(self.strength_table),
            "alerts": [alert.to_dict() for alert in self.alerts],
        }


def resolve_now(value: str | datetime | None) -> datetime:
    """Parse a caller supplied reference time; defaults to the current UTC time."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return datetime.now(timezone.utc)
    moment = parse_timestamp(value)
    if moment is None:
        raise ValidationError(f"Invalid timestamp {value!r}; expected ISO-8601 (YYYY-MM-DD[THH:MM]).")
    return moment


def open_store(*, demo: bool | None = None, path: Path | str | None = None, config: AppConfig | None = None) -> Store:
    """Demo store when requested (or ``PERFLAB_DEMO`` is set), otherwise the SQLite store."""
    use_demo = get_flag("DEMO") if demo is None else demo
    if use_demo:
        LOGGER.info("Using in-memory demo store")
        return demo_store()
    settings = config or get_config()
    return SqliteStore(path, timeout=settings.store_timeout_seconds)


def build_adapter(store: Store, config: AppConfig | None = None) -> MetricStoreAdapter:
    settings = config or get_config()
    return MetricStoreAdapter(store, timeout=settings.store_timeout_seconds)


def build_router(
    adapter: MetricStoreAdapter,
    config: AppConfig | None = None,
    rewriter: TextRewriter | None = None,
) -> QueryRouter:
    settings = config or get_config()
    return QueryRouter(
        adapter,
        rewriter if rewriter is not None else build_rewriter(settings),
        row_limit=settings.chat.row_limit,
        detail_rows=settings.chat.detail_rows,
    )


_VALIDATORS: dict[MetricFamily, Callable[..., Sample]] = {
    MetricFamily.GPS: gps_from_input,
    MetricFamily.JUMP: jump_from_input,
    MetricFamily.STRENGTH: strength_from_input,
}


def record_sample(
    store: Store,
    family: MetricFamily | str,
    payload: Mapping[str, Any],
    now: datetime | None = None,
) -> Sample:
    """
    Validate one manually entered sample and insert it.

    The athlete, and the session when one is given, must already exist.
    Input problems raise `ValidationError`; store failures propagate.
    """
    try:
        family = MetricFamily(family)
    except ValueError:
        raise ValidationError(f"Unknown metric family {family!r}; expected gps, jump or strength.") from None
    sample = _VALIDATORS[family](payload, now)
    if not store.query("athletes", filters={"id": sample.athlete_id}, limit=1):
        raise ValidationError(f"Unknown athlete {sample.athlete_id!r}.")
    if sample.session_id and not store.query("training_sessions", filters={"id": sample.session_id}, limit=1):
        raise ValidationError(f"Unknown session {sample.session_id!r}.")
    store.insert(family.collection, [sample_to_row(sample)])
    LOGGER.info("Recorded %s sample %s for %s", family.value, sample.id, sample.athlete_id)
    return sample


def _within(bundle: MetricBundle, window: TimeWindow) -> MetricBundle:
    return MetricBundle(
        window=window,
        athletes=bundle.athletes,
        sessions=bundle.sessions,
        gps=[s for s in bundle.gps if window.contains(s.recorded_at)],
        jumps=[s for s in bundle.jumps if window.contains(s.recorded_at)],
        strength=[s for s in bundle.strength if window.contains(s.recorded_at)],
    )


def build_dashboard(
    adapter: MetricStoreAdapter,
    now: datetime,
    window_days: int = 14,
    tz: tzinfo | None = None,
) -> DashboardSnapshot:
    """
    Fetch once, then compute every dashboard rollup and the alert list.

    The fetch always covers the alert span so alerts stay comparable when the
    dashboard window is shorter than two weeks.
    """
    if window_days <= 0:
        raise ValidationError("window_days must be positive.")
    zone = tz or get_config().tzinfo
    fetch_window = TimeWindow.last_days(now, max(window_days, ALERT_SPAN_DAYS))
    bundle = adapter.fetch_bundle(fetch_window)
    view = _within(bundle, TimeWindow.last_days(now, window_days))
    alerts = detect_alerts(bundle.athletes, bundle.gps, bundle.jumps, bundle.strength, fetch_window.until)
    LOGGER.info(
        "Dashboard pass: %d athletes, %d gps, %d jumps, %d alerts",
        len(bundle.athletes),
        len(view.gps),
        len(view.jumps),
        len(alerts),
    )
    return DashboardSnapshot(
        generated_at=fetch_window.until,
        window_days=window_days,
        kpis=team_kpis(view.gps, view.jumps),
        alerts=alerts,
        top_distance=top_by_distance(view.gps, bundle.athletes),
        load_by_session=load_by_session(view.gps),
        daily_trend=daily_trend(view.gps, zone),
        cmj_trend=cmj_trend(view.jumps, zone),
        speed_trend=speed_trend(view.gps),
        athletes=athlete_rollups(view.gps, bundle.athletes),
        roster=roster_summary(bundle.athletes),
    )


def build_athlete_profile(
    adapter: MetricStoreAdapter,
    athlete_id: str,
    now: datetime,
    window_days: Optional[int] = None,
) -> AthleteProfile | None:
    """Per-athlete view; the full history unless ``window_days`` is given."""
    end = parse_timestamp(now)
    if end is None:
        raise ValidationError(f"now must be a datetime; received {now!r}.")
    window = TimeWindow.last_days(end, window_days) if window_days else TimeWindow(_EPOCH, end)
    bundle = adapter.fetch_bundle(window, athlete_filter=athlete_id)
    athlete = next((a for a in bundle.athletes if a.id == athlete_id), None)
    if athlete is None:
        return None

    gps = [s for s in bundle.gps if s.athlete_id == athlete.id]
    jumps = [s for s in bundle.jumps if s.athlete_id == athlete.id]
    strength = [s for s in bundle.strength if s.athlete_id == athlete.id]
    cmj = [s for s in jumps if s.test_type is JumpTest.CMJ]
    kpis = team_kpis(gps, [])
    return AthleteProfile(
        athlete=athlete,
        gps_sessions=len(gps),
        avg_distance_m=kpis.avg_distance_m,
        cmj_tests=len(cmj),
        strength_records=len(strength),
        gps_series=[
            {
                "label": s.session_name or s.recorded_at.date().isoformat(),
                "total_distance_m": s.total_distance_m or 0.0,
                "max_speed_kmh": s.max_speed_kmh or 0.0,
            }
            for s in gps
        ],
        cmj_series=[
            {"date": s.recorded_at.date().isoformat(), "jump_height_cm": s.jump_height_cm}
            for s in cmj
        ],
        strength_table=[
            {
                "date": s.recorded_at.date().isoformat(),
                "exercise_name": s.exercise_name,
                "set_count": s.set_count,
                "reps": s.reps,
                "load_kg": s.load_kg,
                "rpe": s.rpe,
                "estimated_1rm": s.estimated_1rm,
            }
            for s in strength
        ],
        alerts=detect_alerts([athlete], gps, jumps, strength, end),
    )
