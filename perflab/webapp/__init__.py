from __future__ import annotations

import logging
from typing import Any

from flask import Flask, jsonify, request

from .. import __version__
from ..alerts import run_alert_pass
from ..chat import TextRewriter
from ..config import AppConfig, get_config, log_level
from ..models import ValidationError, sample_to_row
from ..services import (
    build_adapter,
    build_athlete_profile,
    build_dashboard,
    build_router,
    open_store,
    record_sample,
    resolve_now,
)
from ..store import Store

LOGGER = logging.getLogger(__name__)


def create_app(
    store: Store | None = None,
    rewriter: TextRewriter | None = None,
    config: AppConfig | None = None,
) -> Flask:
    logging.basicConfig(level=log_level("INFO"))
    app = Flask(__name__)
    settings = config or get_config()
    app.config.update(
        PERFLAB_STORE=store if store is not None else open_store(config=settings),
        PERFLAB_REWRITER=rewriter,
        PERFLAB_SETTINGS=settings,
    )
    app.json.sort_keys = False

    @app.get("/health")
    def health():
        return jsonify({"status": "ok", "version": __version__})

    register_api(app)
    return app


def _adapter(app: Flask):
    return build_adapter(app.config["PERFLAB_STORE"], app.config["PERFLAB_SETTINGS"])


def _positive_int(name: str, default: int | None) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer.") from None
    if value <= 0:
        raise ValidationError(f"{name} must be positive.")
    return value


def register_api(app: Flask) -> None:
    @app.get("/api/dashboard")
    def api_dashboard():
        settings: AppConfig = app.config["PERFLAB_SETTINGS"]
        try:
            days = _positive_int("days", settings.dashboard_window_days)
            now = resolve_now(request.args.get("now"))
        except ValidationError as exc:
            return jsonify({"error": str(exc)}), 400
        snapshot = build_dashboard(_adapter(app), now, window_days=days, tz=settings.tzinfo)
        return jsonify(snapshot.to_dict())

    @app.get("/api/alerts")
    def api_alerts():
        try:
            now = resolve_now(request.args.get("now"))
        except ValidationError as exc:
            return jsonify({"error": str(exc)}), 400
        alerts = run_alert_pass(_adapter(app), now)
        return jsonify({"alerts": [alert.to_dict() for alert in alerts]})

    @app.get("/api/athletes")
    def api_athletes():
        query = (request.args.get("q") or "").strip() or None
        athletes = _adapter(app).fetch_athletes(query)
        return jsonify({"athletes": [athlete.to_dict() for athlete in athletes]})

    @app.get("/api/athletes/<athlete_id>/profile")
    def api_athlete_profile(athlete_id: str):
        try:
            days = _positive_int("days", None)
            now = resolve_now(request.args.get("now"))
        except ValidationError as exc:
            return jsonify({"error": str(exc)}), 400
        profile = build_athlete_profile(_adapter(app), athlete_id, now, window_days=days)
        if profile is None:
            return jsonify({"error": "Athlete not found"}), 404
        return jsonify(profile.to_dict())

    @app.post("/api/chat")
    def api_chat():
        payload: Any = request.get_json(silent=True) or {}
        question = payload.get("question") if isinstance(payload, dict) else None
        if not isinstance(question, str) or not question.strip():
            return jsonify({"error": "question is required"}), 400
        router = build_router(
            _adapter(app),
            app.config["PERFLAB_SETTINGS"],
            rewriter=app.config["PERFLAB_REWRITER"],
        )
        try:
            now = resolve_now(payload.get("now"))
            answer = router.answer(question, now)
        except ValidationError as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify(answer.to_dict())

    @app.post("/api/metrics/<family>")
    def api_record_metric(family: str):
        payload: Any = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"error": "A JSON object is required"}), 400
        try:
            sample = record_sample(app.config["PERFLAB_STORE"], family, payload)
        except ValidationError as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify(sample_to_row(sample)), 201
