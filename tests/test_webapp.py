from __future__ import annotations

import pytest

from perflab.demo import demo_store
from perflab.webapp import create_app

NOW = "2026-02-02T00:00:00Z"


class EchoRewriter:
    def rewrite(self, question: str, grounded_context: str) -> str:
        return f"Short version: {grounded_context.splitlines()[0]}"


@pytest.fixture
def client():
    app = create_app(store=demo_store())
    app.config.update(TESTING=True)
    return app.test_client()


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_dashboard_endpoint(client) -> None:
    response = client.get("/api/dashboard", query_string={"days": 7})
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["window_days"] == 7
    assert payload["roster"]["total"] == 15
    assert list(payload)[:3] == ["generated_at", "window_days", "kpis"]


def test_dashboard_rejects_bad_window(client) -> None:
    assert client.get("/api/dashboard", query_string={"days": "abc"}).status_code == 400
    assert client.get("/api/dashboard", query_string={"days": 0}).status_code == 400
    assert client.get("/api/dashboard", query_string={"now": "later"}).status_code == 400


def test_alerts_endpoint(client) -> None:
    response = client.get("/api/alerts")
    assert response.status_code == 200
    alerts = response.get_json()["alerts"]
    assert alerts[0]["severity"] == "critical"
    assert alerts[0]["athlete_name"] == "Mauro Osores"


def test_athletes_search_and_profile(client) -> None:
    search = client.get("/api/athletes", query_string={"q": "gonzalo"})
    assert [a["last_name"] for a in search.get_json()["athletes"]] == ["Gutiérrez", "Rodríguez"]

    profile = client.get("/api/athletes/mp-006/profile")
    assert profile.status_code == 200
    assert profile.get_json()["kpis"]["cmj_tests"] == 2

    missing = client.get("/api/athletes/mp-999/profile")
    assert missing.status_code == 404
    assert missing.get_json() == {"error": "Athlete not found"}


def test_chat_requires_question(client) -> None:
    assert client.post("/api/chat", json={}).status_code == 400
    assert client.post("/api/chat", json={"question": "  "}).status_code == 400
    assert client.post("/api/chat", data="not json").status_code == 400


def test_chat_answers_from_data(client) -> None:
    response = client.post("/api/chat", json={"question": "¿Cómo viene la carga del plantel esta semana?", "now": NOW})
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["intent"] == "gps"
    assert payload["window_days"] == 7
    assert payload["cited_collections"] == ["gps_metrics (since 2026-01-26)"]
    assert payload["rewritten"] is False


def test_chat_uses_injected_rewriter() -> None:
    app = create_app(store=demo_store(), rewriter=EchoRewriter())
    response = app.test_client().post("/api/chat", json={"question": "lista de jugadores"})
    payload = response.get_json()
    assert payload["text"] == "Short version: SQUAD - CURRENT STATUS"
    assert payload["rewritten"] is True


def test_record_metric_endpoint() -> None:
    store = demo_store()
    client = create_app(store=store).test_client()

    response = client.post(
        "/api/metrics/strength",
        json={"athlete_id": "mp-006", "exercise_name": "Squat", "set_count": 4, "reps": 5, "load_kg": 120},
    )
    assert response.status_code == 201
    body = response.get_json()
    assert body["exercise_name"] == "Squat"
    assert body["source"] == "manual"
    assert store.query("strength_metrics", filters={"id": body["id"]})


def test_record_metric_rejects_bad_input(client) -> None:
    out_of_range = client.post(
        "/api/metrics/gps",
        json={"athlete_id": "mp-031", "session_id": "ms-12", "total_distance_m": 9000, "max_speed_kmh": 52},
    )
    assert out_of_range.status_code == 400
    assert "max_speed_kmh must be between 0 and 45" in out_of_range.get_json()["error"]

    missing = client.post("/api/metrics/jump", json={"athlete_id": "mp-006", "test_type": "CMJ"})
    assert missing.status_code == 400
    assert missing.get_json()["error"] == "jump_height_cm is required."

    assert client.post("/api/metrics/wellness", json={"athlete_id": "mp-006"}).status_code == 400
    assert client.post("/api/metrics/jump", data="not json").status_code == 400
