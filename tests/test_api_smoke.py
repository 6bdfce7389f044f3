import random

import pytest
from conftest import FakeClock
from fastapi.testclient import TestClient

from brutesim.api.app import create_app
from brutesim.config import EngineSettings
from brutesim.engine.simulation import SimulationEngine


@pytest.fixture
def client():
    engine = SimulationEngine(
        EngineSettings(normal_traffic_rate=0, autostart=False, telemetry_min_recompute_ms=0),
        rng=random.Random(5),
        clock=FakeClock(),
    )
    return TestClient(create_app(engine=engine))


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    j = r.json()
    assert j["ok"] is True
    assert j["running"] is False
    assert j["request_id"] == r.headers["x-request-id"]


def test_request_id_passthrough(client):
    r = client.get("/healthz", headers={"x-request-id": "myid123"})
    assert r.headers["x-request-id"] == "myid123"
    assert r.json()["request_id"] == "myid123"


def test_attack_controls(client):
    r = client.post("/v1/attack", json={"enabled": True})
    assert r.status_code == 200
    assert r.json()["config"]["is_under_attack"] is True

    r = client.post("/v1/attack/intensity", json={"intensity": 50})
    assert r.json()["config"]["attack_intensity"] == 20

    r = client.post("/v1/attack/type", json={"attack_type": "password_spray"})
    assert r.json()["config"]["attack_type"] == "password_spray"

    r = client.post("/v1/attack/type", json={"attack_type": "nope"})
    assert r.json()["config"]["attack_type"] == "dictionary"


def test_tick_and_state(client):
    client.post("/v1/attack", json={"enabled": True})
    r = client.post("/v1/tick", json={"count": 5})
    assert r.status_code == 200
    j = r.json()
    assert j["ticks"] == 5
    assert j["stats"]["total_requests"] >= 5

    state = client.get("/v1/state").json()
    assert state["stats"]["total_requests"] == j["stats"]["total_requests"]
    assert {"logs", "defenses", "alerts", "attack_telemetry", "metrics"} <= set(state)
    assert state["logs"][0]["kind"] == "ATTACK"

    telemetry = client.get("/v1/telemetry").json()
    assert telemetry["total_events"] == j["stats"]["total_requests"]

    metrics = client.get("/v1/metrics").json()
    assert {"current", "threat_level", "threat_label", "aggregates", "chart"} <= set(metrics)


def test_tick_count_is_validated(client):
    r = client.post("/v1/tick", json={"count": 0})
    assert r.status_code == 422


def test_toggle_defense(client):
    r = client.post("/v1/defenses/captcha", json={"enabled": True})
    assert r.status_code == 200
    assert r.json()["defense"]["enabled"] is True

    d = client.get("/v1/defenses").json()
    assert d["defenses"]["captcha"]["enabled"] is True
    assert "rate_limit_blocks" in d["defense_stats"]


def test_unknown_defense_is_404(client):
    r = client.post("/v1/defenses/firewall", json={"enabled": True})
    assert r.status_code == 404
    j = r.json()
    assert j["ok"] is False
    assert j["error"]["code"] == "UNKNOWN_DEFENSE"
    assert "rate_limit" in j["error"]["details"]["allowed"]
    assert j["request_id"] == r.headers["x-request-id"]

    r = client.patch("/v1/defenses/firewall/config", json={"config": {}})
    assert r.status_code == 404


def test_patch_defense_config(client):
    r = client.patch("/v1/defenses/rate_limit/config", json={"config": {"max_requests": -3, "junk": True}})
    assert r.status_code == 200
    assert r.json()["defense"]["config"] == {"max_requests": 1, "window_ms": 60000}


def test_reset(client):
    client.post("/v1/attack", json={"enabled": True})
    client.post("/v1/tick", json={"count": 3})
    r = client.post("/v1/reset")
    assert r.status_code == 200
    assert r.json()["config"]["is_under_attack"] is False
    assert client.get("/v1/stats").json()["total_requests"] == 0


def test_start_stop(client):
    assert client.post("/v1/start").json()["config"]["running"] is True
    assert client.post("/v1/stop").json()["config"]["running"] is False


def test_openapi_lists_control_routes(client):
    paths = client.get("/openapi.json").json()["paths"]
    for p in ("/healthz", "/v1/state", "/v1/tick", "/v1/attack", "/v1/defenses/{defense_id}"):
        assert p in paths


def test_patch_with_non_finite_number_is_ignored(client):
    r = client.patch(
        "/v1/defenses/rate_limit/config",
        content='{"config": {"max_requests": Infinity, "window_ms": 1000}}',
        headers={"content-type": "application/json"},
    )
    assert r.status_code == 200
    assert r.json()["defense"]["config"] == {"max_requests": 50, "window_ms": 1000}


def test_create_app_owns_its_engine():
    import brutesim.api.app as app_module

    assert not hasattr(app_module, "app")
    a = create_app(settings=EngineSettings(autostart=False))
    b = create_app(settings=EngineSettings(autostart=False))
    assert isinstance(a.state.engine, SimulationEngine)
    assert a.state.engine is not b.state.engine
