from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, tzinfo
from datetime import timezone as dt_timezone
from typing import Any, Iterable, Sequence

import pandas as pd

from .models import Athlete, AthleteStatus, GpsSample, JumpSample, JumpTest

NO_SESSION_LABEL = "no session"
NO_DATE_LABEL = "no date"
TREND_BUCKETS = 7
TOP_N = 5
POSITION_ORDER = ("Portero", "Defensor", "Medio", "Delantero")


def _value(number: float | None) -> float:
    """Null-coalescing read used by sums and team means."""
    if number is None:
        return 0.0
    number = float(number)
    return number if math.isfinite(number) else 0.0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _finite(value: Any) -> float:
    if value is None or pd.isna(value):
        return 0.0
    return float(value)


def _names(athletes: Iterable[Athlete]) -> dict[str, str]:
    return {athlete.id: athlete.display_name for athlete in athletes}


@dataclass(frozen=True)
class TeamKpis:
    avg_distance_m: float
    avg_max_speed_kmh: float
    avg_jump_cm: float
    gps_samples: int = 0
    jump_samples: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "avg_distance_m": round(self.avg_distance_m),
            "avg_max_speed_kmh": round(self.avg_max_speed_kmh, 1),
            "avg_jump_cm": round(self.avg_jump_cm, 1),
            "gps_samples": self.gps_samples,
            "jump_samples": self.jump_samples,
        }


@dataclass(frozen=True)
class TopNEntry:
    athlete_id: str
    athlete_name: str
    total_distance_m: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "athlete_id": self.athlete_id,
            "athlete_name": self.athlete_name,
            "total_distance_m": round(self.total_distance_m),
        }


@dataclass(frozen=True)
class SessionLoad:
    label: str
    total_distance_m: float

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "total_distance_m": round(self.total_distance_m)}


@dataclass(frozen=True)
class DailyTrendPoint:
    day: date
    avg_distance_km: float
    avg_player_load: int
    max_speed_kmh: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day.isoformat(),
            "avg_distance_km": self.avg_distance_km,
            "avg_player_load": self.avg_player_load,
            "max_speed_kmh": self.max_speed_kmh,
        }


@dataclass(frozen=True)
class CmjTrendPoint:
    day: date
    avg_height_cm: float

    def to_dict(self) -> dict[str, Any]:
        return {"day": self.day.isoformat(), "avg_height_cm": self.avg_height_cm}


@dataclass(frozen=True)
class SpeedTrendPoint:
    label: str
    max_speed_kmh: float
    avg_speed_kmh: float

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "max_speed_kmh": self.max_speed_kmh, "avg_speed_kmh": self.avg_speed_kmh}


@dataclass(frozen=True)
class AthleteRollup:
    athlete_id: str
    athlete_name: str
    sessions: int
    total_distance_m: float
    avg_distance_m: float
    max_speed_kmh: float
    avg_player_load: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "athlete_id": self.athlete_id,
            "athlete_name": self.athlete_name,
            "sessions": self.sessions,
            "total_distance_m": round(self.total_distance_m),
            "avg_distance_m": round(self.avg_distance_m),
            "max_speed_kmh": round(self.max_speed_kmh, 1),
            "avg_player_load": round(self.avg_player_load),
        }


@dataclass(frozen=True)
class RosterSummary:
    total: int
    by_status: dict[str, int]
    by_position: dict[str, list[str]]
    special: list[tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_status": dict(self.by_status),
            "by_position": {key: list(value) for key, value in self.by_position.items()},
            "special": [{"athlete_name": name, "status": status} for name, status in self.special],
        }


def team_kpis(gps: Sequence[GpsSample], jumps: Sequence[JumpSample]) -> TeamKpis:
    """
    Team means over the fetched window.

    Missing values count as zero; averages of an empty set are 0, never NaN.
    Only CMJ tests feed the jump average.
    """
    cmj = [sample for sample in jumps if sample.test_type is JumpTest.CMJ]
    return TeamKpis(
        avg_distance_m=_mean([_value(sample.total_distance_m) for sample in gps]),
        avg_max_speed_kmh=_mean([_value(sample.max_speed_kmh) for sample in gps]),
        avg_jump_cm=_mean([_value(sample.jump_height_cm) for sample in cmj]),
        gps_samples=len(gps),
        jump_samples=len(cmj),
    )


def top_by_distance(
    gps: Sequence[GpsSample],
    athletes: Iterable[Athlete] = (),
    limit: int = TOP_N,
) -> list[TopNEntry]:
    """Athletes ranked by accumulated distance; ties keep first-seen order."""
    names = _names(athletes)
    totals: dict[str, float] = {}
    for sample in gps:
        totals[sample.athlete_id] = totals.get(sample.athlete_id, 0.0) + _value(sample.total_distance_m)
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [
        TopNEntry(athlete_id=athlete_id, athlete_name=names.get(athlete_id, athlete_id), total_distance_m=total)
        for athlete_id, total in ranked[:limit]
    ]


def load_by_session(gps: Sequence[GpsSample]) -> list[SessionLoad]:
    totals: dict[str, float] = {}
    for sample in gps:
        label = sample.session_name or NO_SESSION_LABEL
        totals[label] = totals.get(label, 0.0) + _value(sample.total_distance_m)
    return [SessionLoad(label=label, total_distance_m=total) for label, total in totals.items()]


def _gps_frame(gps: Sequence[GpsSample], tz: tzinfo) -> pd.DataFrame:
    records = [
        {
            "day": sample.recorded_at.astimezone(tz).date(),
            "total_distance_m": sample.total_distance_m,
            "player_load": sample.player_load,
            "max_speed_kmh": sample.max_speed_kmh,
        }
        for sample in gps
    ]
    frame = pd.DataFrame.from_records(
        records, columns=["day", "total_distance_m", "player_load", "max_speed_kmh"]
    )
    for column in ("total_distance_m", "player_load", "max_speed_kmh"):
        frame[column] = pd.to_numeric(frame[column], errors="coerce")
    return frame


def daily_trend(gps: Sequence[GpsSample], tz: tzinfo | None = None) -> list[DailyTrendPoint]:
    """
    Per-day team series in the display timezone, most recent seven days.

    Missing values are left out of that day's mean/max rather than counted as zero.
    """
    if not gps:
        return []
    frame = _gps_frame(gps, tz or dt_timezone.utc)
    grouped = frame.groupby("day", sort=True).agg(
        distance=("total_distance_m", "mean"),
        load=("player_load", "mean"),
        speed=("max_speed_kmh", "max"),
    )
    points = [
        DailyTrendPoint(
            day=day,
            avg_distance_km=round(_finite(row["distance"]) / 1000, 1),
            avg_player_load=int(round(_finite(row["load"]))),
            max_speed_kmh=round(_finite(row["speed"]), 1),
        )
        for day, row in grouped.iterrows()
    ]
    return points[-TREND_BUCKETS:]


def cmj_trend(jumps: Sequence[JumpSample], tz: tzinfo | None = None) -> list[CmjTrendPoint]:
    zone = tz or dt_timezone.utc
    records = [
        {"day": sample.recorded_at.astimezone(zone).date(), "height": sample.jump_height_cm}
        for sample in jumps
        if sample.test_type is JumpTest.CMJ
    ]
    if not records:
        return []
    frame = pd.DataFrame.from_records(records, columns=["day", "height"])
    frame["height"] = pd.to_numeric(frame["height"], errors="coerce")
    grouped = frame.groupby("day", sort=True)["height"].mean()
    points = [CmjTrendPoint(day=day, avg_height_cm=round(_finite(value), 1)) for day, value in grouped.items()]
    return points[-TREND_BUCKETS:]


def speed_trend(gps: Sequence[GpsSample]) -> list[SpeedTrendPoint]:
    """
    Max and mean top speed per session date, most recent seven buckets.

    Samples without session metadata share one undated bucket that sorts before
    every dated one.
    """
    buckets: dict[str, list[float]] = {}
    dated: dict[str, date] = {}
    for sample in gps:
        if sample.session_date is not None:
            label = sample.session_date.isoformat()
            dated[label] = sample.session_date
        else:
            label = NO_DATE_LABEL
        speeds = buckets.setdefault(label, [])
        if sample.max_speed_kmh is not None:
            speeds.append(float(sample.max_speed_kmh))

    ordered = sorted(buckets, key=lambda label: (label in dated, dated.get(label, date.min)))
    points = [
        SpeedTrendPoint(
            label=label,
            max_speed_kmh=round(max(buckets[label]), 1) if buckets[label] else 0.0,
            avg_speed_kmh=round(_mean(buckets[label]), 1),
        )
        for label in ordered
    ]
    return points[-TREND_BUCKETS:]


def athlete_rollups(gps: Sequence[GpsSample], athletes: Iterable[Athlete] = ()) -> list[AthleteRollup]:
    """Per-athlete GPS totals ordered by total distance (descending, stable)."""
    names = _names(athletes)
    grouped: dict[str, list[GpsSample]] = {}
    for sample in gps:
        grouped.setdefault(sample.athlete_id, []).append(sample)

    rollups = []
    for athlete_id, samples in grouped.items():
        total = sum(_value(sample.total_distance_m) for sample in samples)
        speeds = [float(sample.max_speed_kmh) for sample in samples if sample.max_speed_kmh is not None]
        loads = [float(sample.player_load) for sample in samples if sample.player_load is not None]
        rollups.append(
            AthleteRollup(
                athlete_id=athlete_id,
                athlete_name=names.get(athlete_id, athlete_id),
                sessions=len(samples),
                total_distance_m=total,
                avg_distance_m=total / len(samples),
                max_speed_kmh=max(speeds) if speeds else 0.0,
                avg_player_load=_mean(loads),
            )
        )
    rollups.sort(key=lambda rollup: rollup.total_distance_m, reverse=True)
    return rollups


def roster_summary(athletes: Sequence[Athlete]) -> RosterSummary:
    by_status = {status.value: 0 for status in AthleteStatus}
    by_position: dict[str, list[str]] = {position: [] for position in POSITION_ORDER}
    special: list[tuple[str, str]] = []
    for athlete in athletes:
        by_status[athlete.status.value] += 1
        position = athlete.position or "Unassigned"
        by_position.setdefault(position, []).append(athlete.display_name)
        if athlete.status is not AthleteStatus.ACTIVE:
            special.append((athlete.display_name, athlete.status.value))
    return RosterSummary(
        total=len(athletes),
        by_status=by_status,
        by_position={key: names for key, names in by_position.items() if names},
        special=special,
    )
