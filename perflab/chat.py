from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Sequence

from .adapter import MetricStoreAdapter
from .aggregation import POSITION_ORDER, athlete_rollups, roster_summary
from .models import (
    Athlete,
    AthleteStatus,
    GpsSample,
    JumpSample,
    JumpTest,
    MetricFamily,
    StrengthSample,
    TimeWindow,
    ValidationError,
    fold_text,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7
DEFAULT_ROW_LIMIT = 50
DEFAULT_DETAIL_ROWS = 5
MAX_QUESTION_LENGTH = 1000


class Intent(str, Enum):
    GPS = "gps"
    JUMP = "jump"
    STRENGTH = "strength"
    PLAYER_LIST = "player_list"
    UNKNOWN = "unknown"


# Evaluated top to bottom; the first matching pattern decides the intent.
INTENT_RULES: list[tuple[re.Pattern[str], Intent]] = [
    (
        re.compile(
            r"carga|distancia|velocidad|gps|sprint|high.speed|accel|decel|player.load|\bload|distance|speed"
        ),
        Intent.GPS,
    ),
    (re.compile(r"salto|cmj|\bsj\b|\bdj\b|jump|potencia|power|asimetr|asymmetr"), Intent.JUMP),
    (
        re.compile(r"fuerza|squat|bench|\bhip|1rm|rpe|ejercicio|strength|exercise|gimnasio|\bgym"),
        Intent.STRENGTH,
    ),
    (re.compile(r"plantel|jugadores|lista|activ|herido|lesionad|roster|squad|players|\blist|injur"), Intent.PLAYER_LIST),
]

# Later matches override earlier ones, so "esta semana" always wins.
WINDOW_RULES: list[tuple[re.Pattern[str], int]] = [
    (re.compile(r"14|dos semanas?|2 semanas?|últimas 2|two weeks|2 weeks|fortnight"), 14),
    (re.compile(r"30|\bmes\b|último mes|month"), 30),
    (re.compile(r"esta semana|this week"), 7),
]

_NAME_PATTERN = re.compile(
    r"(?i:\b(?:de|del|sobre|jugador|jugadora|about|of|regarding)\b)\s+(?=([^\W\d_][\w'-]*)(?:\s+([^\W\d_][\w'-]*))?)"
)
_NOT_NAMES = {"CMJ", "SJ", "DJ", "GPS", "RPE", "RSI", "HSD", "RM"}

# Compared after fold_text, so accents and case do not matter.
_STOP_WORDS = frozenset(
    """
    el la los las lo un una unos unas este esta estos estas ese esa esos esas mi mis su sus
    nuestro nuestra nuestros nuestras todo toda todos todas cada en y con para por durante desde hasta
    plantel equipo grupo jugador jugadora jugadores jugadoras semana semanas mes meses hoy ayer
    ultimo ultima ultimos ultimas dia dias trabajo entrenamiento entrenamientos sesion sesiones partido
    carga cargas distancia velocidad salto saltos fuerza datos promedio resumen
    the a an this that these those last past my our their all every each everyone everybody
    team squad group players roster week weeks month months today yesterday day days
    in on for over during since and with please training session sessions match
    load distance speed jump jumps strength data average summary
    """.split()
)

HELP_TEXT = (
    "I could not match that question to the performance data.\n\n"
    "You can ask about:\n"
    "- External load / GPS (distance, speed, sprints, player load)\n"
    "- Jumps (CMJ, SJ, DJ, power, asymmetry)\n"
    "- Strength (squat, bench, hip thrust, 1RM, RPE)\n"
    "- Roster status (active, injured, rehab)\n\n"
    'Add "of <Name>" to focus on one athlete and "14 days" or "month" to widen the window.'
)


class TextRewriter(Protocol):
    def rewrite(self, question: str, grounded_context: str) -> str: ...


@dataclass(frozen=True)
class ChatAnswer:
    text: str
    cited_collections: list[str] = field(default_factory=list)
    intent: Intent = Intent.UNKNOWN
    athlete: Optional[str] = None
    window_days: int = DEFAULT_WINDOW_DAYS
    rewritten: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "cited_collections": list(self.cited_collections),
            "intent": self.intent.value,
            "athlete": self.athlete,
            "window_days": self.window_days,
            "rewritten": self.rewritten,
        }


def classify_intent(question: str) -> Intent:
    lowered = question.lower()
    for pattern, intent in INTENT_RULES:
        if pattern.search(lowered):
            return intent
    return Intent.UNKNOWN


def _is_name_word(word: str) -> bool:
    return word.upper() not in _NOT_NAMES and fold_text(word) not in _STOP_WORDS


def extract_athlete_name(question: str) -> str | None:
    """
    Name following "de/del/sobre/jugador/about/of/regarding".

    Case-insensitive; articles, time words and metric vocabulary are skipped,
    so "la carga del plantel" yields nothing while "cmj de garcía" and
    "load of Juan Cruz" do.
    """
    for match in _NAME_PATTERN.finditer(question):
        first, second = match.group(1), match.group(2)
        if not _is_name_word(first):
            continue
        if second and _is_name_word(second):
            return f"{first} {second}"
        return first
    return None


def extract_window_days(question: str) -> int:
    lowered = question.lower()
    days = DEFAULT_WINDOW_DAYS
    for pattern, value in WINDOW_RULES:
        if pattern.search(lowered):
            days = value
    return days


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _num(value: float | None) -> float:
    return float(value) if value is not None and math.isfinite(value) else 0.0


def _signed(value: float) -> str:
    return f"{'+' if value >= 0 else ''}{value:.1f}%"


def _citation(collection: str, window: TimeWindow) -> str:
    return f"{collection} (since {window.since.date().isoformat()})"


def format_gps(
    samples: Sequence[GpsSample],
    athlete: Athlete | None,
    athletes: Sequence[Athlete] = (),
    detail_rows: int = DEFAULT_DETAIL_ROWS,
) -> str:
    """Samples are expected most recent first."""
    if not samples:
        return "NO DATA for GPS / external load in the requested period."

    if athlete is not None:
        distances = [_num(s.total_distance_m) for s in samples]
        speeds = [_num(s.max_speed_kmh) for s in samples]
        lines = [
            f"ATHLETE: {athlete.display_name}",
            f"PERIOD: {len(samples)} sessions",
            "",
            "GPS METRICS:",
            f"- total_distance_m: avg {_mean(distances):.0f} m, accumulated {sum(distances):.0f} m",
            f"- high_speed_distance_m: avg {_mean([_num(s.high_speed_distance_m) for s in samples]):.0f} m/session",
            f"- sprint_distance_m: avg {_mean([_num(s.sprint_distance_m) for s in samples]):.0f} m/session",
            f"- max_speed_kmh: peak {max(speeds):.1f} km/h, avg {_mean(speeds):.1f} km/h",
            f"- player_load: avg {_mean([_num(s.player_load) for s in samples]):.0f} AU",
            f"- accel_count: avg {_mean([_num(s.accel_count) for s in samples]):.0f}/session",
            f"- decel_count: avg {_mean([_num(s.decel_count) for s in samples]):.0f}/session",
            "",
            "LATEST SESSIONS:",
        ]
        for sample in samples[:detail_rows]:
            day = (sample.session_date or sample.recorded_at.date()).isoformat()
            lines.append(
                f"- {day} ({sample.session_name or 'N/A'}): {_num(sample.total_distance_m):.0f} m, "
                f"HSD {_num(sample.high_speed_distance_m):.0f} m, Vmax {_num(sample.max_speed_kmh):.1f} km/h"
            )
        return "\n".join(lines)

    rollups = athlete_rollups(samples, athletes)
    lines = [
        "SQUAD - GPS EXTERNAL LOAD",
        f"Total records: {len(samples)}",
        f"Athletes with data: {len(rollups)}",
        "",
        "SUMMARY BY ATHLETE:",
    ]
    for rollup in rollups:
        lines.append(
            f"- {rollup.athlete_name}: {rollup.sessions} sessions, {rollup.total_distance_m:.0f} m total, "
            f"{rollup.avg_distance_m:.0f} m/session avg, Vmax {rollup.max_speed_kmh:.1f} km/h"
        )
    return "\n".join(lines)


def format_jumps(
    samples: Sequence[JumpSample],
    athlete: Athlete | None,
    athletes: Sequence[Athlete] = (),
) -> str:
    if not samples:
        return "NO DATA for jumps / force platform in the requested period."

    chronological = sorted(samples, key=lambda s: s.recorded_at)
    if athlete is not None:
        lines = [f"ATHLETE: {athlete.display_name}", f"PERIOD: {len(samples)} jump tests", "", "JUMP METRICS:"]
        cmjs = [s for s in chronological if s.test_type is JumpTest.CMJ and s.jump_height_cm is not None]
        if cmjs:
            heights = [s.jump_height_cm for s in cmjs]
            first, last = heights[0], heights[-1]
            change = (last - first) / first * 100 if len(heights) >= 2 and first else 0.0
            trend = f"- jump_height_cm: first test {first:.1f} cm, latest {last:.1f} cm"
            if len(heights) >= 2:
                trend += f" (delta {_signed(change)})"
            lines += ["", "CMJ (Counter Movement Jump):", f"- Tests: {len(cmjs)}", trend]
            lines.append(f"- Average: {_mean(heights):.1f} cm, Max: {max(heights):.1f} cm")
            powers = [s.peak_power_w for s in cmjs if s.peak_power_w]
            if powers:
                lines.append(f"- peak_power_w: avg {_mean(powers):.0f} W")
            asymmetries = [_num(s.asymmetry_pct) for s in cmjs]
            if any(value > 0 for value in asymmetries):
                lines.append(f"- asymmetry_pct: avg {_mean(asymmetries):.1f}%")
            if change < -10:
                lines += ["", f"ALERT: CMJ down {abs(change):.1f}% -> possible accumulated neuromuscular fatigue"]
            elif change < -5:
                lines += ["", f"WATCH: CMJ down {abs(change):.1f}% -> monitor recovery"]

        squat_jumps = [s for s in chronological if s.test_type is JumpTest.SJ]
        if squat_jumps:
            heights = [_num(s.jump_height_cm) for s in squat_jumps]
            lines += ["", "SJ (Squat Jump):", f"- Tests: {len(squat_jumps)}, Average: {_mean(heights):.1f} cm"]

        drop_jumps = [s for s in chronological if s.test_type is JumpTest.DJ]
        if drop_jumps:
            rsis = [s.rsi for s in drop_jumps if s.rsi]
            detail = f"- Tests: {len(drop_jumps)}"
            if rsis:
                detail += f", RSI avg: {_mean(rsis):.2f}"
            lines += ["", "DJ (Drop Jump):", detail]
        return "\n".join(lines)

    names = {a.id: a.display_name for a in athletes}
    per_athlete: dict[str, list[float]] = {}
    for sample in chronological:
        if sample.test_type is JumpTest.CMJ and sample.jump_height_cm is not None:
            per_athlete.setdefault(sample.athlete_id, []).append(sample.jump_height_cm)

    lines = [
        "SQUAD - JUMP DATA (CMJ)",
        f"Total records: {len(samples)}",
        f"Athletes with CMJ: {len(per_athlete)}",
        "",
        "SUMMARY BY ATHLETE:",
    ]
    flags = []
    for athlete_id, heights in per_athlete.items():
        name = names.get(athlete_id, athlete_id)
        line = f"- {name}: {len(heights)} tests, avg {_mean(heights):.1f} cm"
        if len(heights) >= 2 and heights[0]:
            change = (heights[-1] - heights[0]) / heights[0] * 100
            line += f", trend {heights[0]:.1f} -> {heights[-1]:.1f} cm ({_signed(change)})"
            if change < -10:
                flags.append(f"- {name}: CMJ down {abs(change):.1f}%")
        lines.append(line)
    if flags:
        lines += ["", "NEUROMUSCULAR ALERTS:", *flags]
    return "\n".join(lines)


def format_strength(
    samples: Sequence[StrengthSample],
    athlete: Athlete | None,
    athletes: Sequence[Athlete] = (),
) -> str:
    if not samples:
        return "NO DATA for strength / gym work in the requested period."

    if athlete is not None:
        exercises: dict[str, list[StrengthSample]] = {}
        for sample in samples:
            exercises.setdefault(sample.exercise_name or "Unnamed", []).append(sample)
        lines = [
            f"ATHLETE: {athlete.display_name}",
            f"PERIOD: {len(samples)} strength records",
            "",
            "STRENGTH METRICS BY EXERCISE:",
        ]
        for name, entries in exercises.items():
            loads = [_num(e.load_kg) for e in entries]
            rpes = [e.rpe for e in entries if e.rpe]
            maxes = [e.estimated_1rm for e in entries if e.estimated_1rm]
            sets = round(_mean([_num(e.set_count) for e in entries]))
            reps = round(_mean([_num(e.reps) for e in entries]))
            lines += [
                "",
                f"{name}:",
                f"- Sessions: {len(entries)}",
                f"- load_kg: max {max(loads):.1f} kg, avg {_mean(loads):.1f} kg",
                f"- set_count x reps: typical {sets}x{reps}",
            ]
            if rpes:
                lines.append(f"- rpe: avg {_mean(rpes):.1f}")
            if maxes:
                lines.append(f"- estimated_1rm: max {max(maxes):.0f} kg")
        return "\n".join(lines)

    names = {a.id: a.display_name for a in athletes}
    per_athlete: dict[str, tuple[list[StrengthSample], set[str]]] = {}
    exercise_counts: dict[str, int] = {}
    for sample in samples:
        entries, seen = per_athlete.setdefault(sample.athlete_id, ([], set()))
        entries.append(sample)
        seen.add(sample.exercise_name)
        exercise_counts[sample.exercise_name] = exercise_counts.get(sample.exercise_name, 0) + 1

    lines = [
        "SQUAD - STRENGTH / GYM DATA",
        f"Total records: {len(samples)}",
        f"Athletes with data: {len(per_athlete)}",
        "",
        "SUMMARY BY ATHLETE:",
    ]
    for athlete_id, (entries, seen) in per_athlete.items():
        max_load = max(_num(e.load_kg) for e in entries)
        lines.append(
            f"- {names.get(athlete_id, athlete_id)}: {len(entries)} records, "
            f"{len(seen)} distinct exercises, max load {max_load:.0f} kg"
        )
    lines += ["", "EXERCISES LOGGED:"]
    for name, count in sorted(exercise_counts.items(), key=lambda item: item[1], reverse=True):
        lines.append(f"- {name}: {count} records")
    return "\n".join(lines)


def format_player_list(athletes: Sequence[Athlete]) -> str:
    if not athletes:
        return "NO ATHLETES registered in the system."

    summary = roster_summary(athletes)
    lines = [
        "SQUAD - CURRENT STATUS",
        f"Total: {summary.total} athletes",
        "",
        "STATUS:",
        f"- Active: {summary.by_status[AthleteStatus.ACTIVE.value]}",
        f"- Injured: {summary.by_status[AthleteStatus.INJURED.value]}",
        f"- Rehab: {summary.by_status[AthleteStatus.REHAB.value]}",
        f"- Inactive: {summary.by_status[AthleteStatus.INACTIVE.value]}",
        "",
        "BY POSITION:",
    ]
    by_position: dict[str, list[Athlete]] = {}
    for athlete in athletes:
        by_position.setdefault(athlete.position or "Unassigned", []).append(athlete)
    ordered = [p for p in POSITION_ORDER if p in by_position] + [p for p in by_position if p not in POSITION_ORDER]
    for position in ordered:
        members = by_position[position]
        lines += ["", f"{position.upper()} ({len(members)}):"]
        for athlete in members:
            line = f"- {athlete.display_name}"
            if athlete.status is not AthleteStatus.ACTIVE:
                line += f" [{athlete.status.value.upper()}]"
            if athlete.height_cm:
                line += f", {athlete.height_cm:g}cm"
            if athlete.weight_kg:
                line += f", {athlete.weight_kg:g}kg"
            lines.append(line)

    if summary.special:
        lines += ["", "ATHLETES WITH SPECIAL STATUS:"]
        lines += [f"- {name}: {status}" for name, status in summary.special]
    return "\n".join(lines)


class QueryRouter:
    """
    Single-shot question answering over the metric store.

    The formatted summary is the authoritative answer; a configured rewriter
    may rephrase it, and any failure there falls back to the summary unchanged.
    """

    def __init__(
        self,
        adapter: MetricStoreAdapter,
        rewriter: TextRewriter | None = None,
        *,
        row_limit: int = DEFAULT_ROW_LIMIT,
        detail_rows: int = DEFAULT_DETAIL_ROWS,
    ) -> None:
        self.adapter = adapter
        self.rewriter = rewriter
        self.row_limit = row_limit
        self.detail_rows = detail_rows

    def answer(self, question: str, now: datetime | None = None) -> ChatAnswer:
        text = (question or "").strip()
        if not text:
            raise ValidationError("question must not be empty.")
        if len(text) > MAX_QUESTION_LENGTH:
            raise ValidationError(f"question must be at most {MAX_QUESTION_LENGTH} characters.")

        intent = classify_intent(text)
        window_days = extract_window_days(text)
        name = extract_athlete_name(text)
        moment = now or datetime.now(timezone.utc)
        window = TimeWindow.last_days(moment, window_days)
        LOGGER.info("Chat intent=%s athlete=%s window=%sd", intent.value, name, window_days)

        if intent is Intent.UNKNOWN:
            return ChatAnswer(text=HELP_TEXT, intent=intent, athlete=name, window_days=window_days)

        body, cited, athlete_label = self._dispatch(intent, name, window)
        answer = ChatAnswer(
            text=body,
            cited_collections=cited,
            intent=intent,
            athlete=athlete_label,
            window_days=window_days,
        )
        return self._rewrite(text, answer)

    def _dispatch(
        self, intent: Intent, name: str | None, window: TimeWindow
    ) -> tuple[str, list[str], str | None]:
        if intent is Intent.PLAYER_LIST:
            return format_player_list(self.adapter.fetch_athletes()), ["athletes"], None

        family = {
            Intent.GPS: MetricFamily.GPS,
            Intent.JUMP: MetricFamily.JUMP,
            Intent.STRENGTH: MetricFamily.STRENGTH,
        }[intent]
        cited = [_citation(family.collection, window)]
        formatters: dict[MetricFamily, Callable[..., str]] = {
            MetricFamily.GPS: lambda rows, athlete, roster: format_gps(rows, athlete, roster, self.detail_rows),
            MetricFamily.JUMP: format_jumps,
            MetricFamily.STRENGTH: format_strength,
        }

        athlete: Athlete | None = None
        if name:
            athlete = self.adapter.resolve_athlete(name)
            if athlete is None and " " in name:
                # "garcia rapido": the trailing word was not part of the name.
                athlete = self.adapter.resolve_athlete(name.split()[0])
            if athlete is None:
                return (
                    f"NO DATA: no athlete on the roster matches '{name}'.",
                    cited,
                    name,
                )

        samples = self.adapter.fetch_samples(
            family,
            window,
            athlete.id if athlete else None,
            newest_first=True,
            limit=self.row_limit,
        )
        roster = [] if athlete else self.adapter.fetch_athletes()
        body = formatters[family](samples, athlete, roster)
        return body, cited, athlete.display_name if athlete else None

    def _rewrite(self, question: str, answer: ChatAnswer) -> ChatAnswer:
        if self.rewriter is None:
            return answer
        try:
            rewritten = self.rewriter.rewrite(question, answer.text)
        except Exception as exc:
            LOGGER.warning("Rewrite failed, returning computed answer: %s", exc)
            return answer
        if not isinstance(rewritten, str) or not rewritten.strip():
            LOGGER.warning("Rewrite returned no text, returning computed answer")
            return answer
        return ChatAnswer(
            text=rewritten.strip(),
            cited_collections=answer.cited_collections,
            intent=answer.intent,
            athlete=answer.athlete,
            window_days=answer.window_days,
            rewritten=True,
        )


def answer_question(
    adapter: MetricStoreAdapter,
    question: str,
    now: datetime | None = None,
    rewriter: TextRewriter | None = None,
) -> ChatAnswer:
    return QueryRouter(adapter, rewriter).answer(question, now)
