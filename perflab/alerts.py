from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Iterable, Sequence

from .models import (
    Alert,
    AlertCategory,
    Athlete,
    AthleteStatus,
    GpsSample,
    JumpSample,
    JumpTest,
    Severity,
    StrengthSample,
    TimeWindow,
    ValidationError,
    parse_timestamp,
)

if TYPE_CHECKING:
    from .adapter import MetricStoreAdapter

LOGGER = logging.getLogger(__name__)

ALERT_SPAN_DAYS = 14
RECENT_DAYS = 7

LOAD_SPIKE_WARNING_PCT = 30.0
LOAD_SPIKE_CRITICAL_PCT = 50.0
PLAYER_LOAD_WARNING = 500.0
PLAYER_LOAD_CRITICAL = 600.0
CMJ_DROP_WARNING_PCT = -10.0
CMJ_DROP_CRITICAL_PCT = -15.0
CMJ_RECENT_TESTS = 2
SQUAT_REGRESSION_PCT = -15.0
SQUAT_KEYWORD = "squat"


def _windows(now: datetime) -> tuple[TimeWindow, TimeWindow, TimeWindow]:
    """Prior ``[now-14d, now-7d)``, recent ``[now-7d, now)`` and their union."""
    span = TimeWindow.last_days(now, ALERT_SPAN_DAYS)
    split = span.until - timedelta(days=RECENT_DAYS)
    return TimeWindow(span.since, split), TimeWindow(split, span.until), span


def _pct_change(before: float, after: float) -> float | None:
    if before == 0:
        return None
    return (after - before) / before * 100


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _present(value: float | None) -> bool:
    return value is not None and math.isfinite(value)


class _Context:
    def __init__(self, athletes: Iterable[Athlete], now: datetime) -> None:
        self.names = {athlete.id: athlete.display_name for athlete in athletes}
        self.now = now

    def alert(
        self,
        athlete_id: str,
        category: AlertCategory,
        severity: Severity,
        message: str,
        observed: float | None = None,
        threshold: float | None = None,
    ) -> Alert:
        return Alert(
            athlete_id=athlete_id,
            athlete_name=self.names.get(athlete_id, athlete_id),
            metric_family=category,
            severity=severity,
            message=message,
            generated_at=self.now,
            observed_value=round(observed, 1) if observed is not None else None,
            threshold=threshold,
        )


def injury_alerts(athletes: Sequence[Athlete], ctx: _Context) -> list[Alert]:
    return [
        ctx.alert(
            athlete.id,
            AlertCategory.INJURY,
            Severity.CRITICAL,
            f"{athlete.display_name} is flagged as injured on the roster",
        )
        for athlete in athletes
        if athlete.status is AthleteStatus.INJURED
    ]


def load_spike_alerts(gps: Sequence[GpsSample], ctx: _Context) -> list[Alert]:
    prior_window, recent_window, _ = _windows(ctx.now)
    grouped: dict[str, tuple[list[float], list[float]]] = {}
    for sample in gps:
        if not _present(sample.total_distance_m):
            continue
        prior, recent = grouped.setdefault(sample.athlete_id, ([], []))
        if prior_window.contains(sample.recorded_at):
            prior.append(sample.total_distance_m)
        elif recent_window.contains(sample.recorded_at):
            recent.append(sample.total_distance_m)

    alerts = []
    for athlete_id, (prior, recent) in grouped.items():
        if not prior or not recent:
            continue
        avg_prior, avg_recent = _mean(prior), _mean(recent)
        pct = _pct_change(avg_prior, avg_recent)
        if pct is None or pct <= LOAD_SPIKE_WARNING_PCT:
            continue
        critical = pct > LOAD_SPIKE_CRITICAL_PCT
        alerts.append(
            ctx.alert(
                athlete_id,
                AlertCategory.LOAD,
                Severity.CRITICAL if critical else Severity.WARNING,
                f"External load up {pct:.0f}% vs. previous average "
                f"({avg_prior:.0f} m -> {avg_recent:.0f} m)",
                observed=pct,
                threshold=LOAD_SPIKE_CRITICAL_PCT if critical else LOAD_SPIKE_WARNING_PCT,
            )
        )
    return alerts


def player_load_alerts(gps: Sequence[GpsSample], ctx: _Context) -> list[Alert]:
    _, recent_window, _ = _windows(ctx.now)
    latest: dict[str, GpsSample] = {}
    for sample in gps:
        if not _present(sample.player_load) or not recent_window.contains(sample.recorded_at):
            continue
        current = latest.get(sample.athlete_id)
        if current is None or sample.recorded_at >= current.recorded_at:
            latest[sample.athlete_id] = sample

    alerts = []
    for athlete_id, sample in latest.items():
        value = float(sample.player_load)
        if value <= PLAYER_LOAD_WARNING:
            continue
        critical = value > PLAYER_LOAD_CRITICAL
        alerts.append(
            ctx.alert(
                athlete_id,
                AlertCategory.FATIGUE,
                Severity.CRITICAL if critical else Severity.WARNING,
                f"Latest player load {value:.0f} AU exceeds "
                f"{PLAYER_LOAD_CRITICAL if critical else PLAYER_LOAD_WARNING:.0f} AU",
                observed=value,
                threshold=PLAYER_LOAD_CRITICAL if critical else PLAYER_LOAD_WARNING,
            )
        )
    return alerts


def cmj_drop_alerts(jumps: Sequence[JumpSample], ctx: _Context) -> list[Alert]:
    """
    Baseline is the mean of the first half of the athlete's CMJ tests (rounded
    up); recent is the mean of the last two tests.
    """
    _, _, span = _windows(ctx.now)
    grouped: dict[str, list[JumpSample]] = {}
    for sample in jumps:
        if sample.test_type is not JumpTest.CMJ or not _present(sample.jump_height_cm):
            continue
        if not span.contains(sample.recorded_at):
            continue
        grouped.setdefault(sample.athlete_id, []).append(sample)

    alerts = []
    for athlete_id, samples in grouped.items():
        if len(samples) < 2:
            continue
        heights = [sample.jump_height_cm for sample in sorted(samples, key=lambda s: s.recorded_at)]
        baseline = _mean(heights[: math.ceil(len(heights) / 2)])
        recent = _mean(heights[-CMJ_RECENT_TESTS:])
        pct = _pct_change(baseline, recent)
        if pct is None or pct >= CMJ_DROP_WARNING_PCT:
            continue
        critical = pct < CMJ_DROP_CRITICAL_PCT
        alerts.append(
            ctx.alert(
                athlete_id,
                AlertCategory.JUMP,
                Severity.CRITICAL if critical else Severity.WARNING,
                f"CMJ dropped {abs(pct):.1f}% ({baseline:.1f} -> {recent:.1f} cm)",
                observed=pct,
                threshold=CMJ_DROP_CRITICAL_PCT if critical else CMJ_DROP_WARNING_PCT,
            )
        )
    return alerts


def squat_regression_alerts(strength: Sequence[StrengthSample], ctx: _Context) -> list[Alert]:
    _, _, span = _windows(ctx.now)
    grouped: dict[str, list[StrengthSample]] = {}
    for sample in strength:
        if SQUAT_KEYWORD not in sample.exercise_name.casefold() or not _present(sample.load_kg):
            continue
        if not span.contains(sample.recorded_at):
            continue
        grouped.setdefault(sample.athlete_id, []).append(sample)

    alerts = []
    for athlete_id, samples in grouped.items():
        ordered = sorted(samples, key=lambda s: s.recorded_at)
        first, last = ordered[0].load_kg, ordered[-1].load_kg
        pct = _pct_change(first, last)
        if pct is None or pct >= SQUAT_REGRESSION_PCT:
            continue
        alerts.append(
            ctx.alert(
                athlete_id,
                AlertCategory.STRENGTH,
                Severity.WARNING,
                f"Squat load down {abs(pct):.1f}% ({first:.1f} kg -> {last:.1f} kg)",
                observed=pct,
                threshold=SQUAT_REGRESSION_PCT,
            )
        )
    return alerts


def detect_alerts(
    athletes: Sequence[Athlete],
    gps: Sequence[GpsSample],
    jumps: Sequence[JumpSample],
    strength: Sequence[StrengthSample],
    now: datetime,
) -> list[Alert]:
    """
    Evaluate every rule over the given samples.

    Critical alerts come first; otherwise the order follows the rule sequence
    (injury, load, fatigue, jump, strength) and first-seen athlete order.
    """
    moment = parse_timestamp(now)
    if moment is None:
        raise ValidationError(f"now must be a datetime; received {now!r}.")
    ctx = _Context(athletes, moment)
    alerts = (
        injury_alerts(athletes, ctx)
        + load_spike_alerts(gps, ctx)
        + player_load_alerts(gps, ctx)
        + cmj_drop_alerts(jumps, ctx)
        + squat_regression_alerts(strength, ctx)
    )
    alerts.sort(key=lambda alert: alert.severity is not Severity.CRITICAL)
    LOGGER.debug("Alert pass at %s produced %d alerts", moment.isoformat(), len(alerts))
    return alerts


def run_alert_pass(adapter: "MetricStoreAdapter", now: datetime) -> list[Alert]:
    """Fetch the 14-day alert span through the adapter and evaluate it."""
    _, _, span = _windows(now)
    bundle = adapter.fetch_bundle(span)
    return detect_alerts(bundle.athletes, bundle.gps, bundle.jumps, bundle.strength, span.until)
