from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Optional

from brutesim.defense.mechanisms import BLOCKED_STATUS_CODES
from brutesim.simulator.schema import Origin

log = logging.getLogger("brutesim.telemetry")

OUTCOMES = ("success", "failed", "blocked", "other")


@dataclass(frozen=True)
class TelemetryEvent:
    timestamp: int
    attack_type_id: Optional[str]
    status_code: int
    origin: Origin


def outcome_bucket(status_code: int) -> str:
    if status_code == 200:
        return "success"
    if status_code == 401:
        return "failed"
    if status_code in BLOCKED_STATUS_CODES:
        return "blocked"
    return "other"


def _empty_outcomes() -> Dict[str, int]:
    return {k: 0 for k in OUTCOMES}


class TelemetryAggregator:
    """
    Time-windowed log of attack events, grouped by origin on demand.

    Events arrive in timestamp order, so trimming only ever pops from the
    oldest end. Snapshots are cached: a new one is computed only when the
    cache is dirty *and* `cache_valid_until` has passed, so callers inside
    the recompute interval may see a slightly stale view.
    """

    def __init__(
        self,
        window_ms: int = 60_000,
        max_events: int = 5000,
        min_recompute_interval_ms: int = 1000,
    ) -> None:
        if window_ms <= 0:
            raise ValueError(f"window_ms must be positive, got {window_ms}")
        if max_events <= 0:
            raise ValueError(f"max_events must be positive, got {max_events}")
        self.window_ms = int(window_ms)
        self.min_recompute_interval_ms = max(0, int(min_recompute_interval_ms))
        self.events: Deque[TelemetryEvent] = deque(maxlen=int(max_events))

        self._cache: Optional[Dict[str, Any]] = None
        self._dirty = True
        self._cache_valid_until = 0

    def __len__(self) -> int:
        return len(self.events)

    def record(self, event: TelemetryEvent) -> None:
        self.events.append(event)
        self._dirty = True

    def trim(self, now: int) -> int:
        cutoff = now - self.window_ms
        dropped = 0
        q = self.events
        while q and q[0].timestamp < cutoff:
            q.popleft()
            dropped += 1
        if dropped:
            self._dirty = True
        return dropped

    def clear(self) -> None:
        self.events.clear()
        self._cache = None
        self._dirty = True
        self._cache_valid_until = 0

    def snapshot(self, now: int) -> Dict[str, Any]:
        stale = now >= self._cache_valid_until
        if self._cache is None or (self._dirty and stale):
            self._cache = self._compute(now)
            self._dirty = False
            self._cache_valid_until = now + self.min_recompute_interval_ms
        return self._cache

    def _compute(self, now: int) -> Dict[str, Any]:
        groups: Dict[str, Dict[str, Any]] = {}

        for ev in self.events:
            o = ev.origin
            row = groups.get(o.country)
            if row is None:
                row = {
                    "country": o.country,
                    "name": o.name,
                    "lat": o.lat,
                    "lon": o.lon,
                    "total": 0,
                    "outcomes": _empty_outcomes(),
                    "by_attack_type": {},
                }
                groups[o.country] = row

            bucket = outcome_bucket(ev.status_code)
            row["total"] += 1
            row["outcomes"][bucket] += 1

            type_id = ev.attack_type_id or "unknown"
            sub = row["by_attack_type"].get(type_id)
            if sub is None:
                sub = {"total": 0, "outcomes": _empty_outcomes()}
                row["by_attack_type"][type_id] = sub
            sub["total"] += 1
            sub["outcomes"][bucket] += 1

        origins = sorted(groups.values(), key=lambda r: (-r["total"], r["country"]))
        log.debug("telemetry recomputed: %d events, %d origins", len(self.events), len(origins))
        return {
            "generated_at": now,
            "window_ms": self.window_ms,
            "total_events": len(self.events),
            "origins": origins,
        }
