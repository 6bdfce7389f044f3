from __future__ import annotations

import logging
import random
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional

from brutesim.config import EngineSettings, clamp_intensity
from brutesim.core.alert import Alert, LogEntry, Severity
from brutesim.defense.manager import DefenseResult, DefenseStrategyManager
from brutesim.metrics.collector import MetricsCollector, round_half_up
from brutesim.simulator.generator import AttackPatternGenerator, make_id
from brutesim.simulator.profiles import HOME_ORIGIN, REGULAR_USERS
from brutesim.simulator.schema import LOGIN_PATH, Request, RequestKind
from brutesim.telemetry.aggregator import TelemetryAggregator, TelemetryEvent

log = logging.getLogger("brutesim.engine")

Subscriber = Callable[[Dict[str, Any]], None]

NORMAL_PATHS = ["/home", "/about", "/contact", "/products", LOGIN_PATH, "/api/data"]
NORMAL_METHODS = ["GET", "GET", "GET", "POST"]

# A failed login from an IP banned less than this long ago counts as "just banned"
JUST_BANNED_MS = 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SimulationStats:
    total_requests: int = 0
    blocked_requests: int = 0
    successful_requests: int = 0
    failed_auth: int = 0
    successful_logins: int = 0
    rps: int = 0
    peak_rps: int = 0
    attack_duration: int = 0


class SimulationEngine:
    """
    Tick-driven orchestrator: generator -> defenses -> login outcome ->
    logs/alerts/telemetry -> stats -> subscribers.

    Every public method takes the engine lock, so the worker thread started
    by `start()` and callers on other threads never interleave inside a tick.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        *,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        s = self.settings
        self.rng = rng or random.Random(s.seed)
        self.clock = clock or _now_ms

        self.attack_generator = AttackPatternGenerator(self.rng, pool_size=s.botnet_pool_size, clock=self.clock)
        self.attack_generator.set_type(s.default_attack_type)
        self.defense_manager = DefenseStrategyManager(clock=self.clock)
        self.telemetry = TelemetryAggregator(
            window_ms=s.telemetry_window_ms,
            max_events=s.telemetry_max_events,
            min_recompute_interval_ms=s.telemetry_min_recompute_ms,
        )
        self.metrics = MetricsCollector(
            history_size=s.metrics_history_size,
            min_sample_interval_ms=s.metrics_min_sample_ms,
            clock=self.clock,
        )

        self.logs: Deque[LogEntry] = deque(maxlen=s.max_logs)
        self.alerts: Deque[Alert] = deque(maxlen=s.max_alerts)
        self.stats = SimulationStats()

        self.is_under_attack = False
        self.attack_intensity = s.default_intensity
        self.attack_start: Optional[int] = None
        self._attack_elapsed = 0
        self._announced_bans: Dict[str, int] = {}

        self._subscribers: List[Subscriber] = []
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._worker: Optional[threading.Thread] = None

    # ----------------------------
    # Lifecycle
    # ----------------------------

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            # fresh event per worker
            self._stop = threading.Event()
            self._worker = threading.Thread(target=self._run, args=(self._stop,), name="brutesim-tick", daemon=True)
            self._worker.start()
            log.info("simulation started (tick=%dms)", self.settings.tick_interval_ms)

    def stop(self) -> None:
        with self._lock:
            worker = self._worker
            if worker is None:
                return
            self._stop.set()
            self._worker = None
        # joined outside the lock: the worker may be waiting on it mid-tick
        if worker is not threading.current_thread():
            worker.join()
        log.info("simulation stopped")

    def _run(self, stop: threading.Event) -> None:
        interval = self.settings.tick_interval_ms / 1000
        while not stop.wait(interval):
            self.tick()

    # ----------------------------
    # Subscriptions
    # ----------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, state: Dict[str, Any]) -> None:
        for cb in list(self._subscribers):
            try:
                cb(state)
            except Exception:
                log.exception("subscriber %r failed", cb)

    # ----------------------------
    # Controls
    # ----------------------------

    def toggle_attack(self, enabled: bool) -> None:
        with self._lock:
            enabled = bool(enabled)
            if enabled == self.is_under_attack:
                return
            now = self.clock()
            self.is_under_attack = enabled
            profile = self.attack_generator.get_attack_type()
            if enabled:
                self.attack_start = now
                self.add_alert("critical", "Attack Detected", f"{profile.name} attack initiated", now)
                log.info("attack started: %s x%d", profile.id, self.attack_intensity)
            else:
                if self.attack_start is not None:
                    self._attack_elapsed += now - self.attack_start
                self.attack_start = None
                self.stats.attack_duration = self._attack_elapsed
                self.add_alert("info", "Attack Stopped", "Brute-force attack has ceased", now)
                log.info("attack stopped after %dms total", self._attack_elapsed)

    def set_attack_intensity(self, intensity: int) -> int:
        with self._lock:
            self.attack_intensity = clamp_intensity(intensity)
            return self.attack_intensity

    def set_attack_type(self, type_id: str) -> str:
        with self._lock:
            profile = self.attack_generator.set_type(type_id)
            if self.is_under_attack:
                self.add_alert("warning", "Attack Pattern Changed", f"Now using {profile.name}")
            return profile.id

    def toggle_defense(self, defense_id: str, enabled: bool) -> bool:
        with self._lock:
            if not self.defense_manager.toggle_defense(defense_id, enabled):
                return False
            mech = self.defense_manager.mechanism(defense_id)
            self.add_alert(
                "success" if mech.enabled else "warning",
                f"{mech.name} {'Enabled' if mech.enabled else 'Disabled'}",
                mech.description,
            )
            return True

    def update_defense_config(self, defense_id: str, patch: Mapping[str, Any]) -> bool:
        with self._lock:
            return self.defense_manager.update_config(defense_id, patch)

    def reset(self) -> None:
        with self._lock:
            now = self.clock()
            self.logs.clear()
            self.alerts.clear()
            self.telemetry.clear()
            self.stats = SimulationStats()
            self.is_under_attack = False
            self.attack_start = None
            self._attack_elapsed = 0
            self._announced_bans.clear()
            self.attack_generator.reset()
            self.defense_manager.reset()
            self.metrics.reset(now)
            self.add_alert("info", "Simulation Reset", "All statistics and state have been cleared", now)
            log.info("simulation reset")

    # ----------------------------
    # Tick
    # ----------------------------

    def tick(self, now: Optional[int] = None) -> Dict[str, Any]:
        with self._lock:
            now = self.clock() if now is None else now
            requests: List[Request] = []

            if self.rng.random() < self.settings.normal_traffic_rate:
                requests.append(self.generate_normal_request(now))
            if self.is_under_attack:
                requests.extend(self.attack_generator.generate(self.attack_intensity, now))

            for req in requests:
                self.process_request(req, now)

            self.stats.rps = round_half_up(len(requests) * 1000 / self.settings.tick_interval_ms)
            self.stats.peak_rps = max(self.stats.peak_rps, self.stats.rps)
            if self.is_under_attack and self.attack_start is not None:
                self.stats.attack_duration = self._attack_elapsed + (now - self.attack_start)

            self.telemetry.trim(now)

            state = self.snapshot(now)
            self.metrics.update(state, now)
            state["metrics"] = self.metrics.summary()
            self._notify(state)
            return state

    def generate_normal_request(self, now: int) -> Request:
        rng = self.rng
        path = rng.choice(NORMAL_PATHS)
        return Request(
            id=make_id(rng),
            kind=RequestKind.NORMAL,
            ip=f"10.0.{rng.randrange(255)}.{rng.randrange(255)}",
            origin=HOME_ORIGIN,
            path=path,
            method=rng.choice(NORMAL_METHODS),
            timestamp=now,
            username=rng.choice(REGULAR_USERS) if path == LOGIN_PATH else None,
        )

    def process_request(self, request: Request, now: int) -> int:
        """Run one request end to end; returns the final status code."""
        self.stats.total_requests += 1
        result = self.defense_manager.process(request, now)
        responses = [r.to_dict() for r in result.mechanism_responses]

        if result.has_action("banned"):
            self._announce_ban(request.ip, now)

        if not result.allowed:
            self.stats.blocked_requests += 1
            status = result.status_code
            self._log(request, status, result.message, responses, result.delay)
        elif request.is_login:
            status = self._resolve_login(request, result, responses, now)
        else:
            status = 200
            self.stats.successful_requests += 1
            self._log(request, status, "OK", responses, result.delay)

        if request.is_attack:
            self.telemetry.record(
                TelemetryEvent(
                    timestamp=now,
                    attack_type_id=request.attack_type_id,
                    status_code=status,
                    origin=request.origin,
                )
            )
        return status

    def _resolve_login(
        self,
        request: Request,
        result: DefenseResult,
        responses: List[Dict[str, Any]],
        now: int,
    ) -> int:
        if request.is_attack:
            success = bool(request.will_succeed)
        else:
            success = self.rng.random() < self.settings.normal_login_success_rate

        if success:
            self.stats.successful_logins += 1
            self.stats.successful_requests += 1
            self._log(request, 200, "Login successful", responses, result.delay)
            return 200

        self.stats.failed_auth += 1
        self._log(request, 401, "Invalid credentials", responses, result.delay)

        outcome = self.defense_manager.record_failed_attempt(request, now)
        if outcome.account_locked:
            self.add_alert("warning", "Account Locked", f"{request.username} locked after repeated failures", now)

        st = self.defense_manager.get_ip_state(request.ip)
        if st is not None and st.is_banned(now) and now - (st.banned_at or now) < JUST_BANNED_MS:
            self._announce_ban(request.ip, now)
        return 401

    def _announce_ban(self, ip: str, now: int) -> None:
        st = self.defense_manager.get_ip_state(ip)
        if st is None or not st.is_banned(now):
            return
        if self._announced_bans.get(ip) == st.banned_at:
            return
        self._announced_bans[ip] = st.banned_at
        self.add_alert("success", "IP Banned", f"{ip} has been blocked", now)

    def _log(self, request: Request, status: int, message: str, responses: List[Dict[str, Any]], delayed: int) -> None:
        self.logs.append(LogEntry.from_request(request, status, message, responses, delayed))

    def add_alert(self, severity: Severity, title: str, message: str, now: Optional[int] = None) -> Alert:
        alert = Alert(
            id=make_id(self.rng),
            timestamp=self.clock() if now is None else now,
            severity=severity,
            title=title,
            message=message,
        )
        self.alerts.append(alert)
        return alert

    # ----------------------------
    # Queries
    # ----------------------------

    def get_stats(self, now: Optional[int] = None) -> Dict[str, Any]:
        with self._lock:
            now = self.clock() if now is None else now
            return {
                **asdict(self.stats),
                "blocked_ip_count": len(self.defense_manager.get_blocked_ips(now)),
                "locked_account_count": len(self.defense_manager.get_locked_accounts(now)),
            }

    def get_config(self) -> Dict[str, Any]:
        with self._lock:
            profile = self.attack_generator.get_attack_type()
            return {
                "is_under_attack": self.is_under_attack,
                "attack_intensity": self.attack_intensity,
                "attack_type": profile.id,
                "attack_type_name": profile.name,
                "normal_traffic_rate": self.settings.normal_traffic_rate,
                "tick_interval_ms": self.settings.tick_interval_ms,
                "running": self.running,
            }

    def get_attack_telemetry_snapshot(self, now: Optional[int] = None) -> Dict[str, Any]:
        with self._lock:
            return self.telemetry.snapshot(self.clock() if now is None else now)

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {**self.metrics.summary(), "chart": self.metrics.get_chart_data()}

    def snapshot(self, now: Optional[int] = None) -> Dict[str, Any]:
        with self._lock:
            now = self.clock() if now is None else now
            s = self.settings
            logs = list(self.logs)[-s.snapshot_log_limit:] if s.snapshot_log_limit else []
            alerts = list(self.alerts)[-s.snapshot_alert_limit:] if s.snapshot_alert_limit else []
            return {
                "logs": [e.to_dict() for e in logs],
                "stats": self.get_stats(now),
                "config": self.get_config(),
                "defenses": self.defense_manager.get_defenses(),
                "defense_stats": self.defense_manager.get_stats(),
                "blocked_ips": self.defense_manager.get_blocked_ips(now),
                "locked_accounts": self.defense_manager.get_locked_accounts(now),
                "alerts": [a.to_dict() for a in alerts],
                "attack_type": self.attack_generator.get_attack_type().to_dict(),
                "attack_telemetry": self.get_attack_telemetry_snapshot(now),
                "metrics": self.metrics.summary(),
            }
