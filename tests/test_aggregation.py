from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from perflab.aggregation import (
    NO_DATE_LABEL,
    NO_SESSION_LABEL,
    athlete_rollups,
    cmj_trend,
    daily_trend,
    load_by_session,
    roster_summary,
    speed_trend,
    team_kpis,
    top_by_distance,
)
from perflab.models import Athlete, AthleteStatus, GpsSample, JumpSample, JumpTest, Provenance

BASE = datetime(2026, 1, 20, 10, 0, tzinfo=timezone.utc)


def gps(athlete_id, distance, *, day=0, speed=None, load=None, session=None, session_date=None, at=None):
    return GpsSample(
        id=f"{athlete_id}-{day}",
        athlete_id=athlete_id,
        recorded_at=at or BASE + timedelta(days=day),
        session_id=session,
        source=Provenance.MANUAL,
        total_distance_m=distance,
        max_speed_kmh=speed,
        player_load=load,
        session_name=session,
        session_date=session_date,
    )


def jump(athlete_id, height, *, day=0, test=JumpTest.CMJ):
    return JumpSample(
        id=f"{athlete_id}-j{day}",
        athlete_id=athlete_id,
        recorded_at=BASE + timedelta(days=day),
        session_id=None,
        source=Provenance.MANUAL,
        test_type=test,
        jump_height_cm=height,
    )


def test_team_kpis_are_zero_for_empty_input() -> None:
    kpis = team_kpis([], [])
    assert kpis.avg_distance_m == 0
    assert kpis.avg_max_speed_kmh == 0
    assert kpis.avg_jump_cm == 0


def test_team_kpis_coalesce_missing_values_and_use_cmj_only() -> None:
    kpis = team_kpis(
        [gps("a1", 9000, speed=30.0), gps("a2", None, speed=None)],
        [jump("a1", 40.0), jump("a2", 30.0), jump("a1", 99.0, test=JumpTest.SJ)],
    )
    assert kpis.avg_distance_m == pytest.approx(4500)
    assert kpis.avg_max_speed_kmh == pytest.approx(15.0)
    assert kpis.avg_jump_cm == pytest.approx(35.0)
    assert kpis.jump_samples == 2
    assert kpis.to_dict()["avg_distance_m"] == 4500


def test_top_by_distance_limits_and_keeps_first_seen_on_ties() -> None:
    samples = [gps(f"a{i}", 1000) for i in range(7)] + [gps("a6", 500, day=1)]
    top = top_by_distance(samples, [Athlete(id="a6", first_name="Ana", last_name="Paz")])
    assert len(top) == 5
    assert top[0].athlete_id == "a6"
    assert top[0].athlete_name == "Ana Paz"
    assert [entry.athlete_id for entry in top[1:]] == ["a0", "a1", "a2", "a3"]
    assert top[1].athlete_name == "a0"


def test_load_by_session_groups_unlabelled_samples() -> None:
    loads = load_by_session([gps("a1", 1000, session="MD-1"), gps("a2", 500), gps("a3", 250, session="MD-1")])
    assert [(entry.label, entry.total_distance_m) for entry in loads] == [("MD-1", 1250), (NO_SESSION_LABEL, 500)]


def test_daily_trend_buckets_in_display_timezone() -> None:
    late = datetime(2026, 1, 21, 2, 0, tzinfo=timezone.utc)
    samples = [
        gps("a1", 9000, at=late, speed=30.0, load=400),
        gps("a2", 11000, at=late + timedelta(minutes=30), speed=32.0, load=None),
    ]
    utc = daily_trend(samples)
    assert [point.day for point in utc] == [date(2026, 1, 21)]
    local = daily_trend(samples, ZoneInfo("America/Argentina/Buenos_Aires"))
    assert [point.day for point in local] == [date(2026, 1, 20)]
    point = local[0]
    assert point.avg_distance_km == 10.0
    assert point.avg_player_load == 400
    assert point.max_speed_kmh == 32.0


def test_daily_trend_keeps_last_seven_days() -> None:
    samples = [gps("a1", 1000 * (day + 1), day=day) for day in range(10)]
    points = daily_trend(samples)
    assert len(points) == 7
    assert points[0].day == date(2026, 1, 23)
    assert points[-1].avg_distance_km == 10.0


def test_cmj_trend_averages_per_day() -> None:
    points = cmj_trend([jump("a1", 40.0), jump("a2", 38.0), jump("a1", 41.0, day=1), jump("a1", 20.0, test=JumpTest.DJ)])
    assert [(p.day, p.avg_height_cm) for p in points] == [(date(2026, 1, 20), 39.0), (date(2026, 1, 21), 41.0)]


def test_speed_trend_places_undated_bucket_first() -> None:
    samples = [
        gps("a1", 1000, speed=30.0, session_date=date(2026, 1, 21)),
        gps("a2", 1000, speed=28.0, session_date=date(2026, 1, 21)),
        gps("a3", 1000, speed=31.0),
        gps("a1", 1000, speed=None, session_date=date(2026, 1, 20)),
    ]
    points = speed_trend(samples)
    assert [p.label for p in points] == [NO_DATE_LABEL, "2026-01-20", "2026-01-21"]
    assert points[1].max_speed_kmh == 0.0
    assert (points[2].max_speed_kmh, points[2].avg_speed_kmh) == (30.0, 29.0)


def test_athlete_rollups_order_by_total_distance() -> None:
    rollups = athlete_rollups([gps("a1", 1000, load=300), gps("a2", 5000), gps("a1", 2000, day=1, load=500)])
    assert [r.athlete_id for r in rollups] == ["a2", "a1"]
    assert rollups[1].sessions == 2
    assert rollups[1].avg_distance_m == pytest.approx(1500)
    assert rollups[1].avg_player_load == pytest.approx(400)


def test_roster_summary_counts_statuses_and_positions() -> None:
    summary = roster_summary(
        [
            Athlete(id="a1", first_name="Juan", last_name="Jaime", position="Portero"),
            Athlete(id="a2", first_name="Mauro", last_name="Osores", position="Defensor", status=AthleteStatus.INJURED),
            Athlete(id="a3", first_name="Ana", last_name="Paz"),
        ]
    )
    assert summary.total == 3
    assert summary.by_status["injured"] == 1
    assert summary.by_status["rehab"] == 0
    assert list(summary.by_position) == ["Portero", "Defensor", "Unassigned"]
    assert summary.special == [("Mauro Osores", "injured")]


def test_aggregations_are_idempotent() -> None:
    samples = [gps("a1", 9000, speed=30.0, load=400), gps("a2", 8000, day=1, speed=29.0)]
    assert daily_trend(samples) == daily_trend(samples)
    assert top_by_distance(samples) == top_by_distance(samples)
    assert team_kpis(samples, []) == team_kpis(samples, [])
