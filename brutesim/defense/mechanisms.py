from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

log = logging.getLogger("brutesim.defense")


class DefenseId(str, Enum):
    GEO_BLOCKING = "geo_blocking"
    IP_BLACKLIST = "ip_blacklist"
    HONEYPOT = "honeypot"
    BEHAVIORAL = "behavioral"
    RATE_LIMIT = "rate_limit"
    PROGRESSIVE_DELAY = "progressive_delay"
    ACCOUNT_LOCKOUT = "account_lockout"
    CAPTCHA = "captcha"


def parse_defense_id(value: Union[str, DefenseId]) -> DefenseId:
    """
    Map an external id onto DefenseId.

    Raises ValueError for ids outside the catalog; callers at the public
    boundary catch it and ignore the request.
    """
    if isinstance(value, DefenseId):
        return value
    try:
        return DefenseId(str(value).strip().lower())
    except ValueError:
        raise ValueError(
            f"Unknown defense '{value}'. Allowed: {sorted(d.value for d in DefenseId)}"
        ) from None


# ----------------------------
# Per-mechanism configs
# ----------------------------

def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(v).strip() for v in value if str(v).strip()]


@dataclass
class GeoBlockingConfig:
    blocked_countries: List[str] = field(default_factory=lambda: ["RU", "CN", "NG"])

    def __post_init__(self):
        self.blocked_countries = [c.upper() for c in _as_list(self.blocked_countries)]


@dataclass
class IpBlacklistConfig:
    ban_threshold: int = 100
    ban_duration_ms: int = 300_000

    def __post_init__(self):
        self.ban_threshold = max(1, int(self.ban_threshold))
        self.ban_duration_ms = max(1, int(self.ban_duration_ms))


@dataclass
class HoneypotConfig:
    trap_accounts: List[str] = field(
        default_factory=lambda: ["admin2", "administrator", "root", "superuser"]
    )

    def __post_init__(self):
        self.trap_accounts = [a.lower() for a in _as_list(self.trap_accounts)]


@dataclass
class BehavioralConfig:
    min_request_interval_ms: int = 50
    pattern_threshold: float = 0.8
    sample_size: int = 20
    min_samples: int = 5

    def __post_init__(self):
        self.min_request_interval_ms = max(0, int(self.min_request_interval_ms))
        self.pattern_threshold = min(1.0, max(0.0, float(self.pattern_threshold)))
        self.sample_size = max(1, int(self.sample_size))
        self.min_samples = min(self.sample_size, max(1, int(self.min_samples)))


@dataclass
class RateLimitConfig:
    max_requests: int = 50
    window_ms: int = 60_000

    def __post_init__(self):
        self.max_requests = max(1, int(self.max_requests))
        self.window_ms = max(1, int(self.window_ms))


@dataclass
class ProgressiveDelayConfig:
    base_delay_ms: int = 1000
    multiplier: float = 2.0
    max_delay_ms: int = 60_000

    def __post_init__(self):
        self.base_delay_ms = max(1, int(self.base_delay_ms))
        self.multiplier = max(1.0, float(self.multiplier))
        self.max_delay_ms = max(self.base_delay_ms, int(self.max_delay_ms))


@dataclass
class AccountLockoutConfig:
    max_attempts: int = 5
    lock_duration_ms: int = 900_000

    def __post_init__(self):
        self.max_attempts = max(1, int(self.max_attempts))
        self.lock_duration_ms = max(1, int(self.lock_duration_ms))


@dataclass
class CaptchaConfig:
    trigger_after: int = 3
    difficulty: str = "medium"

    def __post_init__(self):
        self.trigger_after = max(1, int(self.trigger_after))


MechanismConfig = Union[
    GeoBlockingConfig,
    IpBlacklistConfig,
    HoneypotConfig,
    BehavioralConfig,
    RateLimitConfig,
    ProgressiveDelayConfig,
    AccountLockoutConfig,
    CaptchaConfig,
]


@dataclass
class DefenseMechanism:
    id: DefenseId
    name: str
    description: str
    enabled: bool
    config: MechanismConfig

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id.value,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "config": asdict(self.config),
        }


def patch_config(config: MechanismConfig, patch: Optional[Mapping[str, Any]]) -> MechanismConfig:
    """
    Return a copy of `config` with known fields from `patch` applied.

    Unknown keys and values that cannot be coerced to the field's type are
    dropped; everything else is clamped by the config's __post_init__.
    """
    known = {f.name for f in fields(config)}
    out = config
    for key, value in (patch or {}).items():
        if key not in known:
            log.debug("ignoring unknown %s field %r", type(config).__name__, key)
            continue
        try:
            out = replace(out, **{key: value})
        except (TypeError, ValueError, OverflowError):
            log.debug("ignoring bad value for %s.%s: %r", type(config).__name__, key, value)
    return out


def default_defenses() -> Dict[DefenseId, DefenseMechanism]:
    """Fresh, independent copy of the default mechanism table (pipeline order)."""
    return {
        DefenseId.GEO_BLOCKING: DefenseMechanism(
            DefenseId.GEO_BLOCKING, "Geo-Blocking",
            "Blocks requests from specific countries", False, GeoBlockingConfig(),
        ),
        DefenseId.IP_BLACKLIST: DefenseMechanism(
            DefenseId.IP_BLACKLIST, "IP Blacklisting",
            "Blocks IPs after repeated violations", True, IpBlacklistConfig(),
        ),
        DefenseId.HONEYPOT: DefenseMechanism(
            DefenseId.HONEYPOT, "Honeypot Detection",
            "Trap accounts to identify attackers", False, HoneypotConfig(),
        ),
        DefenseId.BEHAVIORAL: DefenseMechanism(
            DefenseId.BEHAVIORAL, "Behavioral Analysis",
            "Detects automation patterns", False, BehavioralConfig(),
        ),
        DefenseId.RATE_LIMIT: DefenseMechanism(
            DefenseId.RATE_LIMIT, "Rate Limiting",
            "Limits requests per IP per time window", True, RateLimitConfig(),
        ),
        DefenseId.PROGRESSIVE_DELAY: DefenseMechanism(
            DefenseId.PROGRESSIVE_DELAY, "Progressive Delay",
            "Increases wait time between attempts", False, ProgressiveDelayConfig(),
        ),
        DefenseId.ACCOUNT_LOCKOUT: DefenseMechanism(
            DefenseId.ACCOUNT_LOCKOUT, "Account Lockout",
            "Locks account after failed login attempts", False, AccountLockoutConfig(),
        ),
        DefenseId.CAPTCHA: DefenseMechanism(
            DefenseId.CAPTCHA, "CAPTCHA Challenge",
            "Requires CAPTCHA after failed attempts", False, CaptchaConfig(),
        ),
    }


# Reject status codes produced by the pipeline
STATUS_FORBIDDEN = 403
STATUS_LOCKED = 423
STATUS_CAPTCHA_REQUIRED = 428
STATUS_RATE_LIMITED = 429

BLOCKED_STATUS_CODES = frozenset(
    {STATUS_FORBIDDEN, STATUS_LOCKED, STATUS_CAPTCHA_REQUIRED, STATUS_RATE_LIMITED}
)

