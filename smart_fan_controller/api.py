"""HTTP/JSON front door for hints, overrides, status and history."""

import logging

from flask import Flask, jsonify, request

from smart_fan_controller.config import Config
from smart_fan_controller.controller import FanController
from smart_fan_controller.hints import WorkloadHint
from smart_fan_controller.storage import HistoryStore, StorageError

log = logging.getLogger(__name__)

DEFAULT_HISTORY_DURATION = 3600


def _error(message: str, status: int = 400):
    return jsonify({"error": message}), status


def _int_field(body: dict, name: str, default: int | None = None) -> int | None:
    """Read an integer JSON field. Raises ValueError on anything but an int."""
    value = body.get(name, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{name}' must be an integer")
    return value


def create_app(controller: FanController, store: HistoryStore, config: Config) -> Flask:
    """Build the Flask app serving the controller API under /api."""
    app = Flask(__name__)

    @app.get("/api/status")
    def status():
        return jsonify(controller.get_status().to_dict())

    @app.get("/api/history")
    def history():
        try:
            duration = int(request.args.get("duration", DEFAULT_HISTORY_DURATION))
        except ValueError:
            duration = DEFAULT_HISTORY_DURATION

        try:
            points = store.get_history(duration)
        except StorageError as e:
            log.error("History query failed: %s", e)
            return _error(str(e), 500)

        return jsonify({
            "duration": duration,
            "count": len(points),
            "data": [p.to_dict() for p in points],
        })

    @app.post("/api/hint")
    def add_hint():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return _error("request body must be a JSON object")

        missing = [k for k in ("type", "action", "source") if not body.get(k)]
        if missing:
            return _error(f"missing required fields: {', '.join(missing)}")

        try:
            duration = _int_field(body, "duration_estimate", 0)
        except ValueError as e:
            return _error(str(e))

        source = str(body["source"])
        if body["action"] == "stop":
            controller.remove_hint(source)
            return jsonify({"status": "hint removed", "source": source})

        hint = controller.add_hint(
            WorkloadHint(
                kind=str(body["type"]),
                action=str(body["action"]),
                intensity=str(body.get("intensity") or ""),
                source=source,
            ),
            duration=duration or 0,
        )
        return jsonify({"status": "hint registered", "hint": hint.to_dict()})

    @app.delete("/api/hint/<source>")
    def remove_hint(source: str):
        controller.remove_hint(source)
        return jsonify({"status": "hint removed", "source": source})

    @app.post("/api/override")
    def set_override():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return _error("request body must be a JSON object")

        try:
            speed = _int_field(body, "speed")
            duration = _int_field(body, "duration", 0) or 0
        except ValueError as e:
            return _error(str(e))

        if speed is None:
            return _error("missing required field: speed")
        if not (0 <= speed <= 100):
            return _error("speed must be 0-100")

        controller.set_override(speed, duration, str(body.get("reason") or ""))
        return jsonify({"status": "override set", "speed": speed, "duration": duration})

    @app.delete("/api/override")
    def clear_override():
        controller.clear_override()
        return jsonify({"status": "override cleared"})

    @app.get("/api/config")
    def get_config():
        return jsonify(config.sanitized())

    return app
