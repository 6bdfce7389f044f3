import threading

from brutesim.config import EngineSettings
from brutesim.defense.mechanisms import DefenseId
from brutesim.engine.simulation import SimulationEngine


def _run(engine, clock, ticks, step=100):
    state = None
    for _ in range(ticks):
        clock.advance(step)
        state = engine.tick()
    return state


def _titles(engine):
    return [a.title for a in engine.alerts]


def test_idle_engine_generates_nothing(engine, clock):
    state = _run(engine, clock, 10)
    assert state["stats"]["total_requests"] == 0
    assert state["logs"] == []
    assert state["metrics"]["threat_label"] == "MINIMAL"


def test_dictionary_attack_with_defenses_off(engine, clock):
    for d in DefenseId:
        engine.defense_manager.toggle_defense(d, False)
    engine.toggle_attack(True)
    state = _run(engine, clock, 100)

    stats = state["stats"]
    assert stats["total_requests"] > 100
    assert stats["blocked_requests"] == 0
    assert stats["failed_auth"] > 0
    assert stats["failed_auth"] + stats["successful_logins"] == stats["total_requests"]
    assert stats["successful_requests"] == stats["successful_logins"]
    assert stats["peak_rps"] >= stats["rps"]
    assert engine.telemetry.snapshot(clock.now)["origins"][0]["country"] == "RU"


def test_rate_limit_blocks_and_bans_single_ip_attack(engine, clock):
    engine.set_attack_intensity(20)
    engine.toggle_attack(True)
    state = _run(engine, clock, 50)

    assert state["stats"]["blocked_requests"] > 0
    assert state["defense_stats"]["rate_limit_blocks"] > 0
    assert [b["ip"] for b in state["blocked_ips"]] == ["192.168.1.100"]
    assert state["stats"]["blocked_ip_count"] == 1
    assert _titles(engine).count("IP Banned") == 1
    assert {e["status"] for e in state["logs"]} <= {200, 401, 403, 429}


def test_account_lockout_raises_alert(engine, clock):
    engine.defense_manager.toggle_defense("rate_limit", False)
    engine.toggle_defense("account_lockout", True)
    engine.toggle_attack(True)
    state = _run(engine, clock, 60)

    assert "Account Locked" in _titles(engine)
    assert state["locked_accounts"]
    assert state["defense_stats"]["account_lock_blocks"] > 0
    assert any(e["status"] == 423 for e in state["logs"])


def test_attack_toggle_alerts_and_duration(engine, clock):
    engine.toggle_attack(True)
    engine.toggle_attack(True)
    assert _titles(engine) == ["Attack Detected"]
    assert engine.alerts[-1].severity == "critical"

    _run(engine, clock, 50)
    assert engine.get_stats()["attack_duration"] == 5000

    engine.toggle_attack(False)
    assert engine.alerts[-1].title == "Attack Stopped"
    assert engine.get_stats()["attack_duration"] == 5000

    clock.advance(10_000)
    engine.toggle_attack(True)
    _run(engine, clock, 10)
    assert engine.get_stats()["attack_duration"] == 6000


def test_intensity_is_clamped(engine):
    assert engine.set_attack_intensity(0) == 1
    assert engine.set_attack_intensity(99) == 20
    assert engine.set_attack_intensity("nope") == 1
    assert engine.set_attack_intensity(float("inf")) == 20
    assert engine.set_attack_intensity(float("nan")) == 1
    assert engine.set_attack_intensity(7) == 7
    assert engine.get_config()["attack_intensity"] == 7


def test_attack_type_change(engine):
    assert engine.set_attack_type("password_spray") == "password_spray"
    assert len(engine.alerts) == 0

    engine.toggle_attack(True)
    assert engine.set_attack_type("bogus") == "dictionary"
    assert engine.alerts[-1].title == "Attack Pattern Changed"
    assert engine.get_config()["attack_type"] == "dictionary"


def test_toggle_defense_alerts(engine):
    assert engine.toggle_defense("captcha", True) is True
    assert engine.alerts[-1].title == "CAPTCHA Challenge Enabled"
    assert engine.alerts[-1].severity == "success"

    assert engine.toggle_defense("rate_limit", False) is True
    assert engine.alerts[-1].severity == "warning"

    n = len(engine.alerts)
    assert engine.toggle_defense("firewall", True) is False
    assert len(engine.alerts) == n


def test_update_defense_config(engine):
    assert engine.update_defense_config("rate_limit", {"max_requests": 5})
    assert engine.snapshot()["defenses"]["rate_limit"]["config"]["max_requests"] == 5
    assert engine.update_defense_config("nope", {"max_requests": 5}) is False


def test_reset_clears_run_but_keeps_defense_settings(engine, clock):
    engine.toggle_defense("honeypot", True)
    engine.update_defense_config("rate_limit", {"max_requests": 10})
    engine.toggle_attack(True)
    _run(engine, clock, 30)

    engine.reset()
    state = engine.snapshot()
    assert state["stats"]["total_requests"] == 0
    assert state["stats"]["attack_duration"] == 0
    assert state["logs"] == []
    assert state["blocked_ips"] == []
    assert state["attack_telemetry"]["total_events"] == 0
    assert [a["title"] for a in state["alerts"]] == ["Simulation Reset"]
    assert state["config"]["is_under_attack"] is False
    assert state["defenses"]["honeypot"]["enabled"] is True
    assert state["defenses"]["rate_limit"]["config"]["max_requests"] == 10
    assert set(state["defense_stats"].values()) == {0}


def test_snapshot_shape(engine, clock):
    engine.toggle_attack(True)
    state = _run(engine, clock, 3)
    assert set(state) == {
        "logs",
        "stats",
        "config",
        "defenses",
        "defense_stats",
        "blocked_ips",
        "locked_accounts",
        "alerts",
        "attack_type",
        "attack_telemetry",
        "metrics",
    }
    assert state["attack_type"]["id"] == "dictionary"
    assert len(state["logs"]) <= engine.settings.snapshot_log_limit


def test_logs_are_bounded(clock, rng):
    eng = SimulationEngine(EngineSettings(normal_traffic_rate=0, max_logs=20, autostart=False), rng=rng, clock=clock)
    eng.toggle_attack(True)
    _run(eng, clock, 30)
    assert len(eng.logs) == 20
    assert len(eng.snapshot()["logs"]) == 20


def test_alerts_are_bounded_fifo(clock, rng):
    eng = SimulationEngine(EngineSettings(normal_traffic_rate=0, max_alerts=5, autostart=False), rng=rng, clock=clock)
    titles = []
    for d in DefenseId:
        eng.toggle_defense(d, True)
        titles.append(f"{eng.defense_manager.mechanism(d).name} Enabled")

    assert len(eng.alerts) == 5
    assert _titles(eng) == titles[-5:]
    assert titles[0] not in _titles(eng)


def test_normal_traffic_is_not_recorded_as_telemetry(clock, rng):
    eng = SimulationEngine(EngineSettings(normal_traffic_rate=1.0, autostart=False), rng=rng, clock=clock)
    state = _run(eng, clock, 20)
    assert state["stats"]["total_requests"] == 20
    assert all(e["kind"] == "NORMAL" for e in state["logs"])
    assert all(e["ip"].startswith("10.0.") for e in state["logs"])
    assert len(eng.telemetry) == 0


def test_subscribers_in_order_and_unsubscribe(engine, clock):
    calls = []
    unsub_a = engine.subscribe(lambda s: calls.append("a"))
    engine.subscribe(lambda s: calls.append("b"))

    _run(engine, clock, 1)
    assert calls == ["a", "b"]

    unsub_a()
    unsub_a()
    _run(engine, clock, 1)
    assert calls == ["a", "b", "b"]


def test_failing_subscriber_does_not_block_others(engine, clock):
    seen = []

    def boom(state):
        raise RuntimeError("subscriber bug")

    engine.subscribe(boom)
    engine.subscribe(lambda s: seen.append(s["stats"]["total_requests"]))
    _run(engine, clock, 2)
    assert seen == [0, 0]


def test_background_worker_ticks_and_stops(clock, rng):
    eng = SimulationEngine(EngineSettings(tick_interval_ms=5, normal_traffic_rate=0, autostart=False), rng=rng, clock=clock)
    ticked = threading.Event()
    eng.subscribe(lambda s: ticked.set())

    eng.start()
    assert eng.running
    assert ticked.wait(timeout=5)
    eng.stop()
    assert not eng.running
    eng.stop()


def test_restart_gives_each_worker_its_own_stop_event(clock, rng):
    eng = SimulationEngine(EngineSettings(tick_interval_ms=5, normal_traffic_rate=0, autostart=False), rng=rng, clock=clock)
    eng.start()
    first = eng._stop
    eng.stop()
    eng.start()
    try:
        assert eng._stop is not first
        assert first.is_set()
        assert not eng._stop.is_set()
        assert eng.running
    finally:
        eng.stop()
    assert not eng.running
