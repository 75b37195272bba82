from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from .store import MemoryStore

# Reference calendar for the demo microcycles; dates are shifted so the day after
# the last session lands on the requested anchor.
_REFERENCE_END = date(2026, 2, 2)

DEMO_ATHLETES: list[dict[str, Any]] = [
    {"id": "mp-001", "club_code": "SMT-001", "first_name": "Juan", "last_name": "Jaime", "position": "Portero", "height_cm": 178, "weight_kg": 73, "status": "active"},
    {"id": "mp-004", "club_code": "SMT-004", "first_name": "Juan", "last_name": "Orellana", "position": "Defensor", "height_cm": 193, "weight_kg": 72, "status": "active"},
    {"id": "mp-005", "club_code": "SMT-005", "first_name": "Federico", "last_name": "Murillo", "position": "Defensor", "height_cm": 178, "weight_kg": 68, "status": "active"},
    {"id": "mp-006", "club_code": "SMT-006", "first_name": "Mauro", "last_name": "Osores", "position": "Defensor", "height_cm": 191, "weight_kg": 81, "status": "injured"},
    {"id": "mp-007", "club_code": "SMT-007", "first_name": "Franco", "last_name": "Quiroz", "position": "Defensor", "height_cm": 175, "weight_kg": 73, "status": "active"},
    {"id": "mp-010", "club_code": "SMT-010", "first_name": "Hernán", "last_name": "Zuliani", "position": "Defensor", "height_cm": 178, "weight_kg": 82, "status": "active"},
    {"id": "mp-013", "club_code": "SMT-013", "first_name": "Nicolás", "last_name": "Castro", "position": "Medio", "height_cm": 183, "weight_kg": 78, "status": "active"},
    {"id": "mp-015", "club_code": "SMT-015", "first_name": "Juan", "last_name": "Cuevas", "position": "Medio", "height_cm": 163, "weight_kg": 66, "status": "active"},
    {"id": "mp-017", "club_code": "SMT-017", "first_name": "Gonzalo", "last_name": "Gutiérrez", "position": "Medio", "height_cm": 188, "weight_kg": 74, "status": "active"},
    {"id": "mp-021", "club_code": "SMT-021", "first_name": "Jesús", "last_name": "Soraire", "position": "Medio", "height_cm": 175, "weight_kg": 73, "status": "rehab"},
    {"id": "mp-030", "club_code": "SMT-030", "first_name": "Gabriel", "last_name": "Hachen", "position": "Delantero", "height_cm": 168, "weight_kg": 66, "status": "active"},
    {"id": "mp-031", "club_code": "SMT-031", "first_name": "Matias", "last_name": "Garcia", "position": "Delantero", "height_cm": 175, "weight_kg": 71, "status": "active"},
    {"id": "mp-032", "club_code": "SMT-032", "first_name": "Gonzalo", "last_name": "Rodríguez", "position": "Delantero", "height_cm": 178, "weight_kg": 77, "status": "active"},
    {"id": "mp-034", "club_code": "SMT-034", "first_name": "Juan Cruz", "last_name": "Esquivel", "position": "Delantero", "height_cm": 173, "weight_kg": 78, "status": "active"},
    {"id": "mp-037", "club_code": "SMT-037", "first_name": "Aaron", "last_name": "Spetale", "position": "Delantero", "height_cm": 188, "weight_kg": 83, "status": "inactive"},
]

# (id, reference date, name, microcycle, type, notes)
_SESSIONS: list[tuple[str, date, str, str, str, str | None]] = [
    ("ms-01", date(2026, 1, 20), "MD-4 AM", "Semana 1 – Fecha 15", "campo", None),
    ("ms-02", date(2026, 1, 21), "MD-3 AM", "Semana 1 – Fecha 15", "campo", "Trabajo de posesión"),
    ("ms-03", date(2026, 1, 22), "MD-3 PM", "Semana 1 – Fecha 15", "gimnasio", None),
    ("ms-04", date(2026, 1, 23), "MD-2 AM", "Semana 1 – Fecha 15", "campo", "Estrategias de partido"),
    ("ms-05", date(2026, 1, 24), "MD-1", "Semana 1 – Fecha 15", "campo", "Activación"),
    ("ms-06", date(2026, 1, 25), "MD+0", "Semana 1 – Fecha 15", "campo", "Partido vs Tucumán"),
    ("ms-07", date(2026, 1, 27), "MD-4 AM", "Semana 2 – Fecha 16", "campo", "Recuperación activa"),
    ("ms-08", date(2026, 1, 28), "MD-3 AM", "Semana 2 – Fecha 16", "campo", None),
    ("ms-09", date(2026, 1, 29), "MD-3 PM", "Semana 2 – Fecha 16", "gimnasio", None),
    ("ms-10", date(2026, 1, 30), "MD-2 AM", "Semana 2 – Fecha 16", "campo", None),
    ("ms-11", date(2026, 1, 31), "MD-1", "Semana 2 – Fecha 16", "campo", "Activación"),
    ("ms-12", date(2026, 2, 1), "MD+0", "Semana 2 – Fecha 16", "campo", "Partido vs Boca Unidos"),
]

_OUTFIELD_IDS = ["mp-004", "mp-005", "mp-006", "mp-007", "mp-013", "mp-015", "mp-017", "mp-021", "mp-030", "mp-031", "mp-032", "mp-034"]
_FIELD_SESSIONS = ["ms-01", "ms-02", "ms-04", "ms-05", "ms-06", "ms-07", "ms-08", "ms-10", "ms-11", "ms-12"]
_RECOVERY_SESSIONS = {"ms-07"}
_MATCH_SESSIONS = {"ms-06", "ms-12"}
_JUMP_IDS = ["mp-004", "mp-005", "mp-006", "mp-007", "mp-013", "mp-017", "mp-030", "mp-034"]
_JUMP_SESSIONS = ["ms-05", "ms-11"]
_STRENGTH_IDS = ["mp-004", "mp-006", "mp-007", "mp-013", "mp-030"]
_GYM_SESSIONS = ["ms-03", "ms-09"]
_EXERCISES = [("Squat", 100), ("Bench Press", 75), ("Hip Thrust", 115)]


def seeded(seed: int) -> float:
    """Deterministic value in ``[0, 1)`` derived from ``seed``."""
    x = math.sin(seed) * 10000
    return x - math.floor(x)


def _round1(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def _stamp(day: date, hour: int, minute: int = 0) -> str:
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc).isoformat()


def build_demo_tables(anchor: date | None = None) -> dict[str, list[dict[str, Any]]]:
    """
    Build the demo roster, sessions and metric rows.

    Two microcycles of field, gym and jump sessions end the day before ``anchor``
    (today in UTC by default), so the prior and recent alert windows both hold data.
    """
    anchor = anchor or datetime.now(timezone.utc).date()
    shift = anchor - _REFERENCE_END
    session_days = {sid: ref + shift for sid, ref, *_ in _SESSIONS}

    sessions = [
        {
            "id": sid,
            "session_date": session_days[sid].isoformat(),
            "session_name": name,
            "microcycle_label": microcycle,
            "session_type": kind,
            "notes": notes,
        }
        for sid, _, name, microcycle, kind, notes in _SESSIONS
    ]

    gps: list[dict[str, Any]] = []
    idx = 0
    for pi, athlete_id in enumerate(_OUTFIELD_IDS):
        base_distance = 9500 + pi * 200
        for si, sid in enumerate(_FIELD_SESSIONS):
            idx += 1
            is_match = sid in _MATCH_SESSIONS
            multiplier = 0.78 if sid in _RECOVERY_SESSIONS else 1.12 if is_match else 1.0
            distance = _round1(base_distance * multiplier + (seeded(idx) - 0.5) * 1600)
            gps.append(
                {
                    "id": f"gps-{idx:03d}",
                    "athlete_id": athlete_id,
                    "session_id": sid,
                    "total_distance_m": distance,
                    "high_speed_distance_m": _round1(distance * 0.14),
                    "sprint_distance_m": _round1(distance * 0.04),
                    "max_speed_kmh": _round1(27 + seeded(idx + 500) * 5),
                    "player_load": _round1(350 + seeded(idx + 1000) * 200),
                    "accel_count": round(12 + seeded(idx + 1500) * 16),
                    "decel_count": round(10 + seeded(idx + 2000) * 14),
                    "source": "csv" if si > 4 else "manual",
                    "recorded_at": _stamp(session_days[sid], 18 if is_match else 10, 30),
                }
            )

    jumps: list[dict[str, Any]] = []
    idx = 0
    for pi, athlete_id in enumerate(_JUMP_IDS):
        base_height = 40 + pi * 0.8
        for si, sid in enumerate(_JUMP_SESSIONS):
            idx += 1
            # Osores drops sharply on the second test and trips the CMJ warning.
            drop = -9.5 if (pi == 2 and si == 1) else (seeded(idx + 3000) - 0.5) * 2
            jumps.append(
                {
                    "id": f"jmp-{idx:02d}",
                    "athlete_id": athlete_id,
                    "session_id": sid,
                    "test_type": "CMJ",
                    "jump_height_cm": _round1(base_height + drop),
                    "rsi": None,
                    "peak_power_w": round(2500 + seeded(idx + 4000) * 800),
                    "asymmetry_pct": _round1(seeded(idx + 5000) * 6),
                    "source": "manual",
                    "recorded_at": _stamp(session_days[sid], 11),
                }
            )

    strength: list[dict[str, Any]] = []
    idx = 0
    for pi, athlete_id in enumerate(_STRENGTH_IDS):
        for si, sid in enumerate(_GYM_SESSIONS):
            for exercise, base_load in _EXERCISES:
                idx += 1
                load = base_load + pi * 5 + (5 if si == 1 else 0)
                strength.append(
                    {
                        "id": f"str-{idx:02d}",
                        "athlete_id": athlete_id,
                        "session_id": sid,
                        "exercise_name": exercise,
                        "set_count": 4,
                        "reps": 6,
                        "load_kg": load,
                        "rpe": _round1(7 + seeded(idx + 6000) * 2),
                        "estimated_1rm": round(load * 1.25),
                        "source": "manual",
                        "recorded_at": _stamp(session_days[sid], 17),
                    }
                )

    return {
        "athletes": [dict(row) for row in DEMO_ATHLETES],
        "training_sessions": sessions,
        "gps_metrics": gps,
        "jump_metrics": jumps,
        "strength_metrics": strength,
    }


def demo_store(anchor: date | None = None) -> MemoryStore:
    """Fresh in-memory store holding the demo dataset."""
    return MemoryStore(build_demo_tables(anchor))
