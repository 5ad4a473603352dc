"""Tests for the HTTP API using Flask's test client."""

from unittest.mock import MagicMock

import pytest
from flask.testing import FlaskClient

from smart_fan_controller.api import create_app
from smart_fan_controller.config import Config
from smart_fan_controller.controller import FanController
from smart_fan_controller.readings import CpuReading, GpuReading
from smart_fan_controller.storage import MEMORY, HistoryStore, StorageError


class StaticSource:
    def read_cpu(self) -> CpuReading:
        return CpuReading.from_temps([41, 43])

    def read_gpu(self) -> GpuReading:
        return GpuReading.empty()


@pytest.fixture
def store() -> HistoryStore:
    return HistoryStore(MEMORY)


@pytest.fixture
def controller(store: HistoryStore) -> FanController:
    return FanController(Config(), StaticSource(), MagicMock(), store, live=False)


@pytest.fixture
def client(controller: FanController, store: HistoryStore) -> FlaskClient:
    config = Config.from_dict({"idrac": {"host": "idrac.lan", "password": "calvin"}})
    return create_app(controller, store, config).test_client()


class TestStatus:
    def test_status(self, client: FlaskClient, controller: FanController) -> None:
        controller.run_cycle()
        resp = client.get("/api/status")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["cpu"] == {"temps": [41, 43], "max": 43}
        assert data["current_speed"] == 20
        assert data["mode"] == "auto"
        assert "override" not in data


class TestHistory:
    def test_history(self, client: FlaskClient, controller: FanController) -> None:
        controller.run_cycle()
        controller.run_cycle()
        data = client.get("/api/history?duration=600").get_json()
        assert data["duration"] == 600
        assert data["count"] == 2
        assert data["data"][0]["cpu_temp"] == 43

    def test_bad_duration_defaults(self, client: FlaskClient) -> None:
        assert client.get("/api/history?duration=abc").get_json()["duration"] == 3600

    def test_store_failure(self, controller: FanController) -> None:
        broken = MagicMock()
        broken.get_history.side_effect = StorageError("database is locked")
        client = create_app(controller, broken, Config()).test_client()
        resp = client.get("/api/history")
        assert resp.status_code == 500
        assert "locked" in resp.get_json()["error"]


class TestHints:
    def test_register(self, client: FlaskClient, controller: FanController) -> None:
        resp = client.post("/api/hint", json={
            "type": "gpu_load", "action": "start", "intensity": "high",
            "duration_estimate": 300, "source": "whisper",
        })
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "hint registered"
        assert body["hint"]["min_fan_speed"] == 45
        assert body["hint"]["expires_at"] is not None
        assert controller.get_status().mode == "hinted"

    def test_stop_action_removes(self, client: FlaskClient, controller: FanController) -> None:
        client.post("/api/hint", json={"type": "gpu_load", "action": "start", "source": "whisper"})
        resp = client.post("/api/hint", json={"type": "gpu_load", "action": "stop", "source": "whisper"})
        assert resp.get_json() == {"status": "hint removed", "source": "whisper"}
        assert controller.has_active_hints() is False

    def test_missing_fields(self, client: FlaskClient) -> None:
        resp = client.post("/api/hint", json={"type": "gpu_load"})
        assert resp.status_code == 400
        assert "action" in resp.get_json()["error"]
        assert "source" in resp.get_json()["error"]

    def test_not_json(self, client: FlaskClient) -> None:
        resp = client.post("/api/hint", data="start", content_type="text/plain")
        assert resp.status_code == 400

    def test_bad_duration(self, client: FlaskClient) -> None:
        resp = client.post("/api/hint", json={
            "type": "gpu_load", "action": "start", "source": "x", "duration_estimate": "long",
        })
        assert resp.status_code == 400

    def test_delete(self, client: FlaskClient, controller: FanController) -> None:
        client.post("/api/hint", json={"type": "gpu_load", "action": "start", "source": "whisper"})
        resp = client.delete("/api/hint/whisper")
        assert resp.status_code == 200
        assert controller.has_active_hints() is False

    def test_delete_unknown_is_ok(self, client: FlaskClient) -> None:
        assert client.delete("/api/hint/nobody").status_code == 200


class TestOverride:
    def test_set(self, client: FlaskClient, controller: FanController) -> None:
        resp = client.post("/api/override", json={"speed": 60, "duration": 120, "reason": "test"})
        assert resp.get_json() == {"status": "override set", "speed": 60, "duration": 120}
        assert controller.run_cycle() == 60
        assert client.get("/api/status").get_json()["override"]["reason"] == "test"

    @pytest.mark.parametrize("body", [
        {"speed": 101},
        {"speed": -1},
        {"speed": "fast"},
        {"duration": 10},
    ])
    def test_invalid(self, client: FlaskClient, controller: FanController, body: dict) -> None:
        assert client.post("/api/override", json=body).status_code == 400
        assert controller.get_status().override is None

    def test_clear(self, client: FlaskClient, controller: FanController) -> None:
        client.post("/api/override", json={"speed": 60})
        assert client.delete("/api/override").get_json() == {"status": "override cleared"}
        assert controller.get_status().mode == "auto"


class TestConfigEndpoint:
    def test_sanitized(self, client: FlaskClient) -> None:
        data = client.get("/api/config").get_json()
        assert data["idrac_host"] == "idrac.lan"
        assert "calvin" not in str(data)
        assert data["api_port"] == 8086
