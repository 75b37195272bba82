from __future__ import annotations

import math
import unicodedata
import uuid
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Union

__all__ = [
    "AthleteStatus",
    "MetricFamily",
    "AlertCategory",
    "Severity",
    "Provenance",
    "JumpTest",
    "Athlete",
    "TrainingSession",
    "GpsSample",
    "JumpSample",
    "StrengthSample",
    "Sample",
    "Alert",
    "TimeWindow",
    "ValidationError",
    "parse_timestamp",
    "format_timestamp",
    "coerce_optional_float",
    "coerce_optional_int",
    "athlete_from_row",
    "session_from_row",
    "sample_from_row",
    "sample_to_row",
    "gps_from_input",
    "jump_from_input",
    "strength_from_input",
    "fold_text",
]


class ValidationError(ValueError):
    """Raised when caller-supplied input cannot be normalised safely."""


class AthleteStatus(str, Enum):
    ACTIVE = "active"
    INJURED = "injured"
    REHAB = "rehab"
    INACTIVE = "inactive"


class MetricFamily(str, Enum):
    GPS = "gps"
    JUMP = "jump"
    STRENGTH = "strength"

    @property
    def collection(self) -> str:
        return f"{self.value}_metrics"


class AlertCategory(str, Enum):
    LOAD = "load"
    JUMP = "jump"
    STRENGTH = "strength"
    INJURY = "injury"
    FATIGUE = "fatigue"


class Severity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class Provenance(str, Enum):
    MANUAL = "manual"
    CSV = "csv"
    API = "api"


class JumpTest(str, Enum):
    CMJ = "CMJ"
    SJ = "SJ"
    DJ = "DJ"
    OTHER = "other"


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse store timestamps into timezone-aware UTC datetimes.

    Accepts `datetime`, `date` (midnight UTC), or ISO-8601 text. Returns None for
    anything unparseable so a malformed row can be skipped instead of failing a pass.
    """
    if isinstance(value, datetime):
        stamp = value
    elif isinstance(value, date):
        stamp = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            stamp = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if stamp.tzinfo is None:
        return stamp.replace(tzinfo=timezone.utc)
    return stamp.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO text; lexicographic order equals chronological order."""
    stamp = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return stamp.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def coerce_optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def coerce_optional_int(value: Any) -> int | None:
    number = coerce_optional_float(value)
    if number is None:
        return None
    return int(round(number))


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def fold_text(text: str) -> str:
    """Casefold and strip accents so "García" matches "Garcia"."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()


def _coerce_enum(enum_cls: type[Enum], value: Any, fallback: Enum | None) -> Any:
    if isinstance(value, enum_cls):
        return value
    text = str(value or "").strip()
    for member in enum_cls:
        if member.value.lower() == text.lower():
            return member
    return fallback


@dataclass(frozen=True)
class Athlete:
    """Roster entry. Status is owned by roster management and read-only here."""

    id: str
    first_name: str
    last_name: str
    status: AthleteStatus = AthleteStatus.ACTIVE
    position: Optional[str] = None
    club_code: Optional[str] = None
    height_cm: Optional[float] = None
    weight_kg: Optional[float] = None

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or self.id

    def matches(self, needle: str) -> bool:
        """Exact id match or case- and accent-insensitive substring of any name field."""
        if self.id == needle:
            return True
        lowered = fold_text(needle.strip())
        if not lowered:
            return False
        haystacks = (self.first_name, self.last_name, self.display_name, self.club_code or "")
        return any(lowered in fold_text(text) for text in haystacks if text)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        payload["display_name"] = self.display_name
        return payload


@dataclass(frozen=True)
class TrainingSession:
    id: str
    session_date: Optional[date]
    session_name: str
    microcycle_label: Optional[str] = None
    session_type: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class _SampleBase:
    id: str
    athlete_id: str
    recorded_at: datetime
    session_id: Optional[str]
    source: Provenance


@dataclass(frozen=True)
class GpsSample(_SampleBase):
    total_distance_m: Optional[float] = None
    high_speed_distance_m: Optional[float] = None
    sprint_distance_m: Optional[float] = None
    max_speed_kmh: Optional[float] = None
    player_load: Optional[float] = None
    accel_count: Optional[int] = None
    decel_count: Optional[int] = None
    # Display metadata joined from training_sessions.
    session_name: Optional[str] = None
    session_date: Optional[date] = None

    family = MetricFamily.GPS


@dataclass(frozen=True)
class JumpSample(_SampleBase):
    test_type: JumpTest = JumpTest.OTHER
    jump_height_cm: Optional[float] = None
    rsi: Optional[float] = None
    peak_power_w: Optional[float] = None
    asymmetry_pct: Optional[float] = None

    family = MetricFamily.JUMP


@dataclass(frozen=True)
class StrengthSample(_SampleBase):
    exercise_name: str = ""
    set_count: Optional[int] = None
    reps: Optional[int] = None
    load_kg: Optional[float] = None
    rpe: Optional[float] = None
    estimated_1rm: Optional[float] = None

    family = MetricFamily.STRENGTH


Sample = Union[GpsSample, JumpSample, StrengthSample]


@dataclass(frozen=True)
class Alert:
    athlete_id: str
    athlete_name: str
    metric_family: AlertCategory
    severity: Severity
    message: str
    generated_at: datetime
    observed_value: Optional[float] = None
    threshold: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "athlete_id": self.athlete_id,
            "athlete_name": self.athlete_name,
            "metric_family": self.metric_family.value,
            "severity": self.severity.value,
            "message": self.message,
            "observed_value": self.observed_value,
            "threshold": self.threshold,
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass(frozen=True)
class TimeWindow:
    """Closed-open interval ``[since, until)``."""

    since: datetime
    until: datetime

    @classmethod
    def last_days(cls, now: datetime, days: int) -> "TimeWindow":
        end = parse_timestamp(now)
        if end is None:
            raise ValidationError(f"now must be a datetime; received {now!r}.")
        return cls(since=end - timedelta(days=days), until=end)

    def contains(self, moment: datetime) -> bool:
        return self.since <= moment < self.until


def athlete_from_row(row: Mapping[str, Any]) -> Athlete | None:
    athlete_id = _optional_text(row.get("id"))
    if athlete_id is None:
        return None
    return Athlete(
        id=athlete_id,
        first_name=_optional_text(row.get("first_name")) or "",
        last_name=_optional_text(row.get("last_name")) or "",
        status=_coerce_enum(AthleteStatus, row.get("status"), AthleteStatus.ACTIVE),
        position=_optional_text(row.get("position")),
        club_code=_optional_text(row.get("club_code")),
        height_cm=coerce_optional_float(row.get("height_cm")),
        weight_kg=coerce_optional_float(row.get("weight_kg")),
    )


def session_from_row(row: Mapping[str, Any]) -> TrainingSession | None:
    session_id = _optional_text(row.get("id"))
    if session_id is None:
        return None
    stamp = parse_timestamp(row.get("session_date"))
    return TrainingSession(
        id=session_id,
        session_date=stamp.date() if stamp else None,
        session_name=_optional_text(row.get("session_name")) or session_id,
        microcycle_label=_optional_text(row.get("microcycle_label")),
        session_type=_optional_text(row.get("session_type")),
        notes=_optional_text(row.get("notes")),
    )


def sample_from_row(
    family: MetricFamily,
    row: Mapping[str, Any],
    sessions: Mapping[str, TrainingSession] | None = None,
) -> Sample | None:
    """
    Convert a raw store row into a typed sample.

    Rows without an athlete id or a parseable timestamp return None. Missing or
    malformed numeric fields become None rather than failing the conversion.
    """
    athlete_id = _optional_text(row.get("athlete_id"))
    recorded_at = parse_timestamp(row.get("recorded_at"))
    if athlete_id is None or recorded_at is None:
        return None
    base = {
        "id": _optional_text(row.get("id")) or "",
        "athlete_id": athlete_id,
        "recorded_at": recorded_at,
        "session_id": _optional_text(row.get("session_id")),
        "source": _coerce_enum(Provenance, row.get("source"), Provenance.MANUAL),
    }
    if family is MetricFamily.GPS:
        session = (sessions or {}).get(base["session_id"] or "")
        return GpsSample(
            **base,
            total_distance_m=coerce_optional_float(row.get("total_distance_m")),
            high_speed_distance_m=coerce_optional_float(row.get("high_speed_distance_m")),
            sprint_distance_m=coerce_optional_float(row.get("sprint_distance_m")),
            max_speed_kmh=coerce_optional_float(row.get("max_speed_kmh")),
            player_load=coerce_optional_float(row.get("player_load")),
            accel_count=coerce_optional_int(row.get("accel_count")),
            decel_count=coerce_optional_int(row.get("decel_count")),
            session_name=session.session_name if session else None,
            session_date=session.session_date if session else None,
        )
    if family is MetricFamily.JUMP:
        return JumpSample(
            **base,
            test_type=_coerce_enum(JumpTest, row.get("test_type"), JumpTest.OTHER),
            jump_height_cm=coerce_optional_float(row.get("jump_height_cm")),
            rsi=coerce_optional_float(row.get("rsi")),
            peak_power_w=coerce_optional_float(row.get("peak_power_w")),
            asymmetry_pct=coerce_optional_float(row.get("asymmetry_pct")),
        )
    if family is MetricFamily.STRENGTH:
        return StrengthSample(
            **base,
            exercise_name=_optional_text(row.get("exercise_name")) or "",
            set_count=coerce_optional_int(row.get("set_count")),
            reps=coerce_optional_int(row.get("reps")),
            load_kg=coerce_optional_float(row.get("load_kg")),
            rpe=coerce_optional_float(row.get("rpe")),
            estimated_1rm=coerce_optional_float(row.get("estimated_1rm")),
        )
    raise ValueError(f"Unsupported metric family: {family!r}")


def sample_to_row(sample: Sample) -> dict[str, Any]:
    """Storable row for a sample; joined session metadata is dropped."""
    row = asdict(sample)
    row.pop("session_name", None)
    row.pop("session_date", None)
    for key, value in row.items():
        if isinstance(value, Enum):
            row[key] = value.value
    row["recorded_at"] = sample.recorded_at.isoformat()
    return row


def _required_text(payload: Mapping[str, Any], field: str, *, max_length: int = 80) -> str:
    text = _optional_text(payload.get(field))
    if text is None:
        raise ValidationError(f"{field} is required.")
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters.")
    return text


def _bounded(
    payload: Mapping[str, Any],
    field: str,
    upper: float,
    *,
    required: bool = False,
    integer: bool = False,
) -> Any:
    """
    Read a numeric field and enforce ``0 <= value <= upper``.

    Blank or missing optional fields become None; anything present must parse.
    """
    raw = payload.get(field)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if required:
            raise ValidationError(f"{field} is required.")
        return None
    number = coerce_optional_float(raw)
    if number is None:
        raise ValidationError(f"{field} must be a number; received {raw!r}.")
    if integer and not number.is_integer():
        raise ValidationError(f"{field} must be a whole number; received {raw!r}.")
    if number < 0 or number > upper:
        raise ValidationError(f"{field} must be between 0 and {upper:g}; received {number:g}.")
    return int(number) if integer else number


def _strict_enum(enum_cls: type[Enum], payload: Mapping[str, Any], field: str, default: Enum | None = None) -> Any:
    raw = payload.get(field)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if default is None:
            raise ValidationError(f"{field} is required.")
        return default
    member = _coerce_enum(enum_cls, raw, None)
    if member is None:
        allowed = ", ".join(str(m.value) for m in enum_cls)
        raise ValidationError(f"{field} must be one of {allowed}; received {raw!r}.")
    return member


def _base_from_input(payload: Mapping[str, Any], now: datetime | None, *, session_required: bool) -> dict[str, Any]:
    raw_time = payload.get("recorded_at")
    if raw_time is None or (isinstance(raw_time, str) and not raw_time.strip()):
        recorded_at = parse_timestamp(now or datetime.now(timezone.utc))
    else:
        recorded_at = parse_timestamp(raw_time)
        if recorded_at is None:
            raise ValidationError(f"recorded_at must be an ISO timestamp; received {raw_time!r}.")
    session_id = _optional_text(payload.get("session_id"))
    if session_required and session_id is None:
        raise ValidationError("session_id is required.")
    return {
        "id": _optional_text(payload.get("id")) or uuid.uuid4().hex,
        "athlete_id": _required_text(payload, "athlete_id"),
        "recorded_at": recorded_at,
        "session_id": session_id,
        "source": _strict_enum(Provenance, payload, "source", Provenance.MANUAL),
    }


def gps_from_input(payload: Mapping[str, Any], now: datetime | None = None) -> GpsSample:
    """Validate a manually entered GPS record; raises `ValidationError`."""
    return GpsSample(
        **_base_from_input(payload, now, session_required=True),
        total_distance_m=_bounded(payload, "total_distance_m", 15000, required=True),
        high_speed_distance_m=_bounded(payload, "high_speed_distance_m", 5000),
        sprint_distance_m=_bounded(payload, "sprint_distance_m", 3000),
        max_speed_kmh=_bounded(payload, "max_speed_kmh", 45),
        player_load=_bounded(payload, "player_load", 5000),
        accel_count=_bounded(payload, "accel_count", 200, integer=True),
        decel_count=_bounded(payload, "decel_count", 200, integer=True),
    )


def jump_from_input(payload: Mapping[str, Any], now: datetime | None = None) -> JumpSample:
    """Validate a manually entered jump test; raises `ValidationError`."""
    return JumpSample(
        **_base_from_input(payload, now, session_required=False),
        test_type=_strict_enum(JumpTest, payload, "test_type"),
        jump_height_cm=_bounded(payload, "jump_height_cm", 100, required=True),
        rsi=_bounded(payload, "rsi", 5),
        peak_power_w=_bounded(payload, "peak_power_w", 5000),
        asymmetry_pct=_bounded(payload, "asymmetry_pct", 50),
    )


def strength_from_input(payload: Mapping[str, Any], now: datetime | None = None) -> StrengthSample:
    """Validate a manually entered strength set; raises `ValidationError`."""
    return StrengthSample(
        **_base_from_input(payload, now, session_required=False),
        exercise_name=_required_text(payload, "exercise_name"),
        set_count=_bounded(payload, "set_count", 50, integer=True),
        reps=_bounded(payload, "reps", 100, integer=True),
        load_kg=_bounded(payload, "load_kg", 500),
        rpe=_bounded(payload, "rpe", 10),
        estimated_1rm=_bounded(payload, "estimated_1rm", 600),
    )
