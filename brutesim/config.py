from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from brutesim.simulator.profiles import DEFAULT_ATTACK_TYPE

log = logging.getLogger("brutesim.config")

ENV_PREFIX = "BRUTESIM_"

MIN_INTENSITY = 1
MAX_INTENSITY = 20


def clamp_intensity(value: Any) -> int:
    try:
        n = int(value)
    except OverflowError:
        return MAX_INTENSITY if value > 0 else MIN_INTENSITY
    except (TypeError, ValueError):
        return MIN_INTENSITY
    return max(MIN_INTENSITY, min(MAX_INTENSITY, n))


class EngineSettings(BaseSettings):
    """
    Engine knobs, overridable through BRUTESIM_* environment variables
    (e.g. BRUTESIM_TICK_INTERVAL_MS=250).

    Defaults: 100 ms ticks, 30% chance of one normal request per tick,
    90% of normal logins succeed. Values that fail to parse keep their
    default and log a warning; everything else is clamped into range.
    """
    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        extra="ignore",
    )

    tick_interval_ms: int = 100
    max_logs: int = 200
    max_alerts: int = 50
    snapshot_log_limit: int = 50
    snapshot_alert_limit: int = 10

    normal_traffic_rate: float = 0.3
    normal_login_success_rate: float = 0.9

    default_intensity: int = 5
    default_attack_type: str = DEFAULT_ATTACK_TYPE
    botnet_pool_size: int = 50

    telemetry_window_ms: int = 60_000
    telemetry_max_events: int = 5000
    telemetry_min_recompute_ms: int = 1000

    metrics_history_size: int = 60
    metrics_min_sample_ms: int = 100

    seed: Optional[int] = None
    autostart: bool = True
    log_level: str = "INFO"

    @field_validator("*", mode="wrap")
    @classmethod
    def _fallback_to_default(cls, value, handler, info):
        try:
            return handler(value)
        except ValidationError:
            log.warning("ignoring %s%s=%r (not a valid value)", ENV_PREFIX, info.field_name.upper(), value)
            return cls.model_fields[info.field_name].default

    @field_validator(
        "tick_interval_ms",
        "max_logs",
        "max_alerts",
        "botnet_pool_size",
        "telemetry_window_ms",
        "telemetry_max_events",
        "metrics_history_size",
        "metrics_min_sample_ms",
    )
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        return max(1, v)

    @field_validator("snapshot_log_limit", "snapshot_alert_limit", "telemetry_min_recompute_ms")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        return max(0, v)

    @field_validator("normal_traffic_rate", "normal_login_success_rate")
    @classmethod
    def _probability(cls, v: float) -> float:
        return min(1.0, max(0.0, v))

    @field_validator("default_intensity")
    @classmethod
    def _intensity(cls, v: int) -> int:
        return clamp_intensity(v)

    @field_validator("log_level")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def _snapshot_limits_fit_buffers(self) -> "EngineSettings":
        self.snapshot_log_limit = min(self.snapshot_log_limit, self.max_logs)
        self.snapshot_alert_limit = min(self.snapshot_alert_limit, self.max_alerts)
        return self
