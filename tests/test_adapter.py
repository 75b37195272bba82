from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from perflab.adapter import MetricStoreAdapter
from perflab.models import MetricFamily, TimeWindow
from perflab.store import MemoryStore, StoreError

NOW = datetime(2026, 2, 2, tzinfo=timezone.utc)
WINDOW = TimeWindow.last_days(NOW, 14)

ATHLETES = [
    {"id": "a1", "first_name": "Matias", "last_name": "Garcia", "status": "active"},
    {"id": "a2", "first_name": "Mauro", "last_name": "Osores", "status": "injured"},
    {"id": "a3", "first_name": "Ana", "last_name": "Barrios", "status": "active"},
]


def _store() -> MemoryStore:
    return MemoryStore(
        {
            "athletes": ATHLETES,
            "training_sessions": [{"id": "s1", "session_date": "2026-01-30", "session_name": "MD-2 AM"}],
            "gps_metrics": [
                {"id": "g1", "athlete_id": "a1", "session_id": "s1", "total_distance_m": 9000, "recorded_at": "2026-01-30T10:00:00Z"},
                {"id": "g2", "athlete_id": "a2", "total_distance_m": 9500, "recorded_at": "2026-01-31T10:00:00Z"},
                {"id": "g3", "athlete_id": "a1", "total_distance_m": 8000, "recorded_at": "2025-12-01T10:00:00Z"},
            ],
            "jump_metrics": [
                {"id": "j1", "athlete_id": "a1", "test_type": "CMJ", "jump_height_cm": 40, "recorded_at": "2026-01-29T11:00:00Z"},
            ],
        }
    )


class FailingStore:
    """Delegates to a memory store but raises for the named collections."""

    def __init__(self, inner: MemoryStore, failing: set[str]) -> None:
        self.inner = inner
        self.failing = failing

    def query(self, collection, filters=None, order_by=None, descending=False, limit=None):
        if collection in self.failing:
            raise StoreError(f"{collection} unavailable")
        return self.inner.query(collection, filters=filters, order_by=order_by, descending=descending, limit=limit)

    def insert(self, collection, rows):
        return self.inner.insert(collection, rows)



class SlowStore:
    """Every query sleeps before answering."""

    def __init__(self, inner: MemoryStore, delay: float) -> None:
        self.inner = inner
        self.delay = delay

    def query(self, collection, filters=None, order_by=None, descending=False, limit=None):
        time.sleep(self.delay)
        return self.inner.query(collection, filters=filters, order_by=order_by, descending=descending, limit=limit)

    def insert(self, collection, rows):
        return self.inner.insert(collection, rows)

def test_fetch_athletes_orders_by_last_name_and_filters() -> None:
    adapter = MetricStoreAdapter(_store())
    assert [a.id for a in adapter.fetch_athletes()] == ["a3", "a1", "a2"]
    assert [a.id for a in adapter.fetch_athletes("garcía")] == ["a1"]
    assert [a.id for a in adapter.fetch_athletes("a2")] == ["a2"]
    assert adapter.fetch_athletes("nobody") == []


def test_fetch_samples_respects_window_and_joins_sessions() -> None:
    adapter = MetricStoreAdapter(_store())
    samples = adapter.fetch_samples(MetricFamily.GPS, WINDOW)
    assert [s.id for s in samples] == ["g1", "g2"]
    assert samples[0].session_name == "MD-2 AM"
    assert samples[1].session_name is None

    newest = adapter.fetch_samples(MetricFamily.GPS, WINDOW, newest_first=True, limit=1)
    assert [s.id for s in newest] == ["g2"]

    mine = adapter.fetch_samples(MetricFamily.GPS, WINDOW, "Garcia")
    assert [s.id for s in mine] == ["g1"]
    assert adapter.fetch_samples(MetricFamily.GPS, WINDOW, "nobody") == []


def test_store_failure_yields_empty_list(caplog) -> None:
    adapter = MetricStoreAdapter(FailingStore(_store(), {"gps_metrics", "athletes"}))
    with caplog.at_level(logging.WARNING, logger="perflab.adapter"):
        assert adapter.fetch_samples(MetricFamily.GPS, WINDOW) == []
        assert adapter.fetch_athletes() == []
    assert "gps_metrics" in caplog.text


def test_fetch_bundle_returns_partial_data_when_one_read_fails() -> None:
    adapter = MetricStoreAdapter(FailingStore(_store(), {"gps_metrics"}))
    bundle = adapter.fetch_bundle(WINDOW)
    assert bundle.gps == []
    assert [s.id for s in bundle.jumps] == ["j1"]
    assert len(bundle.athletes) == 3
    assert bundle.samples(MetricFamily.JUMP) is bundle.jumps


def test_fetch_bundle_filters_to_one_athlete() -> None:
    adapter = MetricStoreAdapter(_store())
    bundle = adapter.fetch_bundle(WINDOW, athlete_filter="a1")
    assert [a.id for a in bundle.athletes] == ["a1"]
    assert [s.id for s in bundle.gps] == ["g1"]
    assert [s.id for s in bundle.jumps] == ["j1"]


def test_malformed_rows_are_skipped() -> None:
    store = _store()
    store.insert("gps_metrics", [{"id": "g9", "total_distance_m": 1, "recorded_at": "2026-01-31T12:00:00Z"}])
    adapter = MetricStoreAdapter(store)
    assert "g9" not in [s.id for s in adapter.fetch_samples(MetricFamily.GPS, WINDOW)]


def test_resolve_athlete() -> None:
    adapter = MetricStoreAdapter(_store())
    assert adapter.resolve_athlete("Osores").id == "a2"
    assert adapter.resolve_athlete("  ") is None
    assert adapter.resolve_athlete(None) is None


def test_fetch_bundle_shares_one_deadline_across_reads(caplog) -> None:
    adapter = MetricStoreAdapter(SlowStore(_store(), delay=0.3), timeout=0.2)

    with caplog.at_level(logging.WARNING, logger="perflab.adapter"):
        bundle = adapter.fetch_bundle(WINDOW)

    assert bundle.athletes == []
    assert bundle.sessions == []
    assert bundle.gps == []
    assert bundle.jumps == []
    assert bundle.strength == []
    assert "timed out" in caplog.text
