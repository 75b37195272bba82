from __future__ import annotations

from datetime import datetime, timezone

import pytest

from perflab.demo import demo_store
from perflab.models import AlertCategory, MetricFamily, TimeWindow, ValidationError
from perflab.services import (
    build_adapter,
    build_athlete_profile,
    build_dashboard,
    build_router,
    open_store,
    record_sample,
    resolve_now,
)
from perflab.store import MemoryStore, SqliteStore

NOW = datetime(2026, 2, 2, tzinfo=timezone.utc)


@pytest.fixture
def adapter():
    return build_adapter(demo_store(NOW.date()))


def test_resolve_now() -> None:
    assert resolve_now("2026-02-02") == NOW
    assert resolve_now(None).tzinfo is not None
    with pytest.raises(ValidationError):
        resolve_now("next tuesday")


def test_open_store_honours_demo_flag(monkeypatch, tmp_path) -> None:
    assert isinstance(open_store(path=tmp_path / "x.db"), SqliteStore)
    assert isinstance(open_store(demo=True), MemoryStore)
    monkeypatch.setenv("PERFLAB_DEMO", "1")
    assert isinstance(open_store(), MemoryStore)


def test_dashboard_snapshot_over_demo_data(adapter) -> None:
    snapshot = build_dashboard(adapter, NOW, window_days=7)
    payload = snapshot.to_dict()

    assert payload["window_days"] == 7
    assert payload["kpis"]["gps_samples"] == 12 * 5
    assert payload["kpis"]["avg_distance_m"] > 0
    assert len(payload["top_distance"]) == 5
    assert len(payload["daily_trend"]) == 5
    assert payload["daily_trend"][-1]["day"] == "2026-02-01"
    assert payload["roster"]["total"] == 15
    assert any(alert["metric_family"] == AlertCategory.INJURY.value for alert in payload["alerts"])
    # Alerts always look at the full two-week span even for a one-week view.
    assert any(alert["metric_family"] == AlertCategory.JUMP.value for alert in payload["alerts"])


def test_dashboard_rejects_non_positive_window(adapter) -> None:
    with pytest.raises(ValidationError):
        build_dashboard(adapter, NOW, window_days=0)


def test_athlete_profile_full_history(adapter) -> None:
    profile = build_athlete_profile(adapter, "mp-006", NOW)
    assert profile is not None
    payload = profile.to_dict()
    assert payload["athlete"]["display_name"] == "Mauro Osores"
    assert payload["kpis"]["gps_sessions"] == 10
    assert payload["kpis"]["cmj_tests"] == 2
    assert payload["kpis"]["strength_records"] == 6
    assert [row["date"] for row in payload["cmj_series"]] == ["2026-01-24", "2026-01-31"]
    families = {alert["metric_family"] for alert in payload["alerts"]}
    assert {"injury", "jump"} <= families


def test_athlete_profile_window_and_missing_athlete(adapter) -> None:
    profile = build_athlete_profile(adapter, "mp-006", NOW, window_days=3)
    assert profile.cmj_tests == 1
    assert build_athlete_profile(adapter, "mp-999", NOW) is None


def test_build_router_uses_configured_rewriter(adapter) -> None:
    router = build_router(adapter)
    assert router.rewriter is None
    assert router.row_limit == 50


def test_record_sample_inserts_validated_row() -> None:
    store = demo_store(NOW.date())
    sample = record_sample(
        store,
        "gps",
        {
            "athlete_id": "mp-031",
            "session_id": "ms-12",
            "total_distance_m": 10450,
            "max_speed_kmh": 31.2,
            "recorded_at": "2026-02-01T20:00:00Z",
        },
        now=NOW,
    )
    rows = store.query("gps_metrics", filters={"id": sample.id})
    assert len(rows) == 1
    assert rows[0]["total_distance_m"] == 10450

    adapter = build_adapter(store)
    fetched = {s.id: s for s in adapter.fetch_samples(MetricFamily.GPS, TimeWindow.last_days(NOW, 1), "mp-031")}
    assert fetched[sample.id].session_name == "MD+0"


def test_record_sample_rejects_unknown_references() -> None:
    store = demo_store(NOW.date())
    with pytest.raises(ValidationError, match="Unknown athlete"):
        record_sample(store, MetricFamily.JUMP, {"athlete_id": "nobody", "test_type": "CMJ", "jump_height_cm": 40}, now=NOW)
    with pytest.raises(ValidationError, match="Unknown session"):
        record_sample(
            store,
            MetricFamily.STRENGTH,
            {"athlete_id": "mp-006", "session_id": "ms-99", "exercise_name": "Squat", "load_kg": 110},
            now=NOW,
        )
    with pytest.raises(ValidationError, match="Unknown metric family"):
        record_sample(store, "wellness", {"athlete_id": "mp-006"}, now=NOW)
    with pytest.raises(ValidationError, match="jump_height_cm"):
        record_sample(store, "jump", {"athlete_id": "mp-006", "test_type": "CMJ", "jump_height_cm": 140}, now=NOW)
    assert len(store.query("jump_metrics")) == 16
