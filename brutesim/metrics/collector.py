from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional


def _now_ms() -> int:
    return int(time.time() * 1000)


def round_half_up(x: float) -> int:
    """Half-up rounding for non-negative values; builtin round() rounds halves to even."""
    return int(math.floor(x + 0.5))


def threat_score(rps: float, blocked_per_second: float, failed_auth_per_second: float) -> int:
    """
    Weighted 0-100 composite: traffic 30%, blocks 30%, auth failures 40%.
    Each term saturates at its reference rate before weighting.
    """
    rps_w = min(max(rps, 0) / 100, 1) * 30
    blocked_w = min(max(blocked_per_second, 0) / 50, 1) * 30
    failed_w = min(max(failed_auth_per_second, 0) / 20, 1) * 40
    return round_half_up(rps_w + blocked_w + failed_w)


def threat_label(level: int) -> str:
    if level >= 80:
        return "CRITICAL"
    if level >= 60:
        return "HIGH"
    if level >= 40:
        return "MEDIUM"
    if level >= 20:
        return "LOW"
    return "MINIMAL"


@dataclass(frozen=True)
class MetricsSample:
    timestamp: int
    rps: int = 0
    blocked_per_second: int = 0
    failed_auth_per_second: int = 0
    success_rate: int = 100
    block_rate: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MetricsAggregates:
    total_requests: int = 0
    total_blocked: int = 0
    total_failed: int = 0
    total_success: int = 0
    peak_rps: int = 0
    attack_time: int = 0
    defense_effectiveness: int = 0


class MetricsCollector:
    def __init__(
        self,
        history_size: int = 60,
        min_sample_interval_ms: int = 100,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.clock = clock or _now_ms
        self.history_size = max(1, int(history_size))
        self.min_sample_interval_ms = max(1, int(min_sample_interval_ms))
        self.reset()

    def reset(self, now: Optional[int] = None) -> None:
        now = self.clock() if now is None else now
        self.current = MetricsSample(timestamp=now)
        self.history: Deque[MetricsSample] = deque(maxlen=self.history_size)
        self.aggregates = MetricsAggregates()
        self._last_totals = (0, 0, 0)
        self._last_ts = now

    def update(self, snapshot: Mapping[str, Any], now: Optional[int] = None) -> bool:
        """
        Fold one engine snapshot into the current rates.

        Returns False (and changes nothing) if less than
        `min_sample_interval_ms` elapsed since the last accepted sample.
        """
        now = self.clock() if now is None else now
        elapsed_ms = now - self._last_ts
        if elapsed_ms < self.min_sample_interval_ms:
            return False
        elapsed = elapsed_ms / 1000

        stats = snapshot.get("stats", {})
        config = snapshot.get("config", {})
        total = int(stats.get("total_requests", 0))
        blocked = int(stats.get("blocked_requests", 0))
        failed = int(stats.get("failed_auth", 0))
        success = int(stats.get("successful_requests", 0))

        last_total, last_blocked, last_failed = self._last_totals
        self.current = MetricsSample(
            timestamp=now,
            rps=round_half_up(max(0, total - last_total) / elapsed),
            blocked_per_second=round_half_up(max(0, blocked - last_blocked) / elapsed),
            failed_auth_per_second=round_half_up(max(0, failed - last_failed) / elapsed),
            success_rate=round_half_up(success / total * 100) if total else 100,
            block_rate=round_half_up(blocked / total * 100) if total else 0,
        )
        self.history.append(self.current)

        agg = self.aggregates
        agg.total_requests = total
        agg.total_blocked = blocked
        agg.total_failed = failed
        agg.total_success = success
        agg.peak_rps = max(agg.peak_rps, self.current.rps)
        agg.attack_time = int(stats.get("attack_duration", 0) or 0)
        if config.get("is_under_attack") and total > 0:
            unsuccessful = total - success
            if unsuccessful > 0:
                agg.defense_effectiveness = round_half_up(blocked / unsuccessful * 100)

        self._last_totals = (total, blocked, failed)
        self._last_ts = now
        return True

    def get_current(self) -> Dict[str, Any]:
        return self.current.to_dict()

    def get_history(self) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in self.history]

    def get_chart_data(self) -> Dict[str, Any]:
        return {
            "timestamps": [s.timestamp for s in self.history],
            "datasets": {
                "rps": [s.rps for s in self.history],
                "blocked": [s.blocked_per_second for s in self.history],
                "failed": [s.failed_auth_per_second for s in self.history],
                "success_rate": [s.success_rate for s in self.history],
            },
        }

    def get_aggregates(self) -> Dict[str, int]:
        return asdict(self.aggregates)

    def get_threat_level(self) -> int:
        c = self.current
        return threat_score(c.rps, c.blocked_per_second, c.failed_auth_per_second)

    def get_threat_label(self) -> str:
        return threat_label(self.get_threat_level())

    def summary(self) -> Dict[str, Any]:
        level = self.get_threat_level()
        return {
            "current": self.get_current(),
            "threat_level": level,
            "threat_label": threat_label(level),
            "aggregates": self.get_aggregates(),
        }
