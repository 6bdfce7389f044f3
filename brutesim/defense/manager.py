from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from brutesim.simulator.schema import Request

from .mechanisms import (
    STATUS_CAPTCHA_REQUIRED,
    STATUS_FORBIDDEN,
    STATUS_LOCKED,
    STATUS_RATE_LIMITED,
    DefenseId,
    DefenseMechanism,
    default_defenses,
    parse_defense_id,
    patch_config,
)
from .state import AccountState, BehaviorState, IpState, get_or_create

log = logging.getLogger("brutesim.defense")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class MechanismResponse:
    mechanism_id: DefenseId
    action: str
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"mechanism_id": self.mechanism_id.value, "action": self.action, **self.detail}


@dataclass
class DefenseResult:
    allowed: bool = True
    status_code: int = 200
    message: str = "OK"
    mechanism_responses: List[MechanismResponse] = field(default_factory=list)
    delay: int = 0

    def reject(self, status_code: int, message: str) -> "DefenseResult":
        self.allowed = False
        self.status_code = status_code
        self.message = message
        return self

    def fire(self, mechanism_id: DefenseId, action: str, **detail: Any) -> None:
        self.mechanism_responses.append(MechanismResponse(mechanism_id, action, detail))

    def has_action(self, action: str) -> bool:
        return any(r.action == action for r in self.mechanism_responses)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "status_code": self.status_code,
            "message": self.message,
            "mechanism_responses": [r.to_dict() for r in self.mechanism_responses],
            "delay": self.delay,
        }


@dataclass(frozen=True)
class FailureOutcome:
    account_locked: bool = False
    delay: int = 0


@dataclass
class DefenseStats:
    rate_limit_blocks: int = 0
    ip_bans: int = 0
    ip_ban_blocks: int = 0
    captcha_challenges: int = 0
    account_lockouts: int = 0
    account_lock_blocks: int = 0
    geo_blocks: int = 0
    honeypot_detections: int = 0
    behavioral_blocks: int = 0
    delayed_requests: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class DefenseStrategyManager:
    """
    Runs a request through the enabled defenses in fixed order:

      geo_blocking -> ip_blacklist -> honeypot -> behavioral ->
      rate_limit -> progressive_delay -> account_lockout -> captcha

    The first stage that rejects short-circuits the rest. Per-IP and
    per-account state is created lazily and kept for the life of the
    manager (or until reset); expired bans/locks are cleared on the next
    check, never in the background.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None) -> None:
        self.clock = clock or _now_ms
        self.defenses: Dict[DefenseId, DefenseMechanism] = default_defenses()
        self.ip_states: Dict[str, IpState] = {}
        self.account_states: Dict[str, AccountState] = {}
        self.ip_delays: Dict[str, int] = {}
        self.honeypot_hits: Dict[str, int] = {}
        self.behavior: Dict[str, BehaviorState] = {}
        self.stats = DefenseStats()

    # ----------------------------
    # Configuration
    # ----------------------------

    def mechanism(self, defense_id: Union[str, DefenseId]) -> DefenseMechanism:
        """Strict lookup; raises ValueError on an unknown id."""
        return self.defenses[parse_defense_id(defense_id)]

    def is_enabled(self, defense_id: DefenseId) -> bool:
        return self.defenses[defense_id].enabled

    def toggle_defense(self, defense_id: Union[str, DefenseId], enabled: bool) -> bool:
        try:
            mech = self.mechanism(defense_id)
        except ValueError as e:
            log.debug("toggle ignored: %s", e)
            return False
        mech.enabled = bool(enabled)
        log.info("defense %s %s", mech.id.value, "enabled" if mech.enabled else "disabled")
        return True

    def update_config(self, defense_id: Union[str, DefenseId], patch: Optional[Mapping[str, Any]]) -> bool:
        try:
            mech = self.mechanism(defense_id)
        except ValueError as e:
            log.debug("config update ignored: %s", e)
            return False
        mech.config = patch_config(mech.config, patch)
        log.info("defense %s config updated: %s", mech.id.value, asdict(mech.config))
        return True

    def get_defenses(self) -> Dict[str, Dict[str, Any]]:
        return {d.value: m.to_dict() for d, m in self.defenses.items()}

    # ----------------------------
    # Pipeline
    # ----------------------------

    def process(self, request: Request, now: Optional[int] = None) -> DefenseResult:
        now = self.clock() if now is None else now
        result = DefenseResult()

        for stage in (
            self._check_geo,
            self._check_blacklist,
            self._check_honeypot,
            self._check_behavior,
            self._check_rate_limit,
            self._check_delay,
            self._check_lockout,
            self._check_captcha,
        ):
            stage(request, now, result)
            if not result.allowed:
                log.debug("request %s from %s rejected: %s", request.id, request.ip, result.message)
                break
        return result

    def _check_geo(self, request: Request, now: int, result: DefenseResult) -> None:
        if not self.is_enabled(DefenseId.GEO_BLOCKING) or request.origin is None:
            return
        cfg = self.defenses[DefenseId.GEO_BLOCKING].config
        country = request.origin.country.upper()
        if country in cfg.blocked_countries:
            result.fire(DefenseId.GEO_BLOCKING, "blocked", country=country)
            result.reject(STATUS_FORBIDDEN, f"Blocked: Country {country} not allowed")
            self.stats.geo_blocks += 1

    def _check_blacklist(self, request: Request, now: int, result: DefenseResult) -> None:
        if not self.is_enabled(DefenseId.IP_BLACKLIST):
            return
        st = self.ip_states.get(request.ip)
        if st is None or not st.banned:
            return
        if st.is_banned(now):
            result.fire(DefenseId.IP_BLACKLIST, "blocked", expires_at=st.ban_expires_at)
            result.reject(STATUS_FORBIDDEN, f"IP {request.ip} is banned")
            self.stats.ip_ban_blocks += 1
        elif st.clear_expired_ban(now):
            log.info("ban on %s expired", request.ip)

    def _check_honeypot(self, request: Request, now: int, result: DefenseResult) -> None:
        if not self.is_enabled(DefenseId.HONEYPOT) or not request.username:
            return
        cfg = self.defenses[DefenseId.HONEYPOT].config
        if request.username.lower() not in cfg.trap_accounts:
            return

        hits = self.honeypot_hits.get(request.ip, 0) + 1
        self.honeypot_hits[request.ip] = hits
        result.fire(DefenseId.HONEYPOT, "detected", hits=hits)
        self.stats.honeypot_detections += 1

        if hits >= 2:
            self.ban_ip(request.ip, now)
            result.fire(DefenseId.IP_BLACKLIST, "banned", reason="honeypot")
            result.reject(STATUS_FORBIDDEN, "Honeypot triggered - IP banned")

    def _check_behavior(self, request: Request, now: int, result: DefenseResult) -> None:
        if not self.is_enabled(DefenseId.BEHAVIORAL):
            return
        cfg = self.defenses[DefenseId.BEHAVIORAL].config
        st = self.behavior.get(request.ip)
        if st is None or st.intervals.maxlen != cfg.sample_size:
            st = BehaviorState(
                intervals=deque(st.intervals if st else (), maxlen=cfg.sample_size),
                last_request=st.last_request if st else None,
            )
            self.behavior[request.ip] = st

        st.observe(now)
        if len(st.intervals) >= cfg.min_samples:
            avg = st.mean_interval()
            if avg < cfg.min_request_interval_ms:
                result.fire(DefenseId.BEHAVIORAL, "blocked", avg_interval=avg)
                result.reject(STATUS_FORBIDDEN, "Bot behavior detected")
                self.stats.behavioral_blocks += 1
                # last_request stays put, so a blocked client's gaps keep widening
                return
        st.last_request = now

    def _check_rate_limit(self, request: Request, now: int, result: DefenseResult) -> None:
        if not self.is_enabled(DefenseId.RATE_LIMIT):
            return
        cfg = self.defenses[DefenseId.RATE_LIMIT].config
        st = get_or_create(self.ip_states, request.ip, IpState)

        st.trim(now, cfg.window_ms)
        st.request_timestamps.append(now)
        if len(st.request_timestamps) <= cfg.max_requests:
            return

        st.violation_count += 1
        result.fire(DefenseId.RATE_LIMIT, "limited", in_window=len(st.request_timestamps))
        result.reject(STATUS_RATE_LIMITED, "Rate limit exceeded")
        self.stats.rate_limit_blocks += 1

        if self.is_enabled(DefenseId.IP_BLACKLIST):
            threshold = self.defenses[DefenseId.IP_BLACKLIST].config.ban_threshold
            if st.violation_count >= threshold and not st.is_banned(now):
                self.ban_ip(request.ip, now)
                result.fire(DefenseId.IP_BLACKLIST, "banned", reason="rate_limit")

    def _check_delay(self, request: Request, now: int, result: DefenseResult) -> None:
        if not self.is_enabled(DefenseId.PROGRESSIVE_DELAY):
            return
        delay = self.ip_delays.get(request.ip, 0)
        if delay > 0:
            result.delay = delay
            result.fire(DefenseId.PROGRESSIVE_DELAY, "delayed", delay=delay)
            self.stats.delayed_requests += 1

    def _check_lockout(self, request: Request, now: int, result: DefenseResult) -> None:
        if not self.is_enabled(DefenseId.ACCOUNT_LOCKOUT) or not request.is_login or not request.username:
            return
        acct = self.account_states.get(request.username)
        if acct is None or not acct.locked:
            return
        if acct.is_locked(now):
            result.fire(DefenseId.ACCOUNT_LOCKOUT, "locked", expires_at=acct.lock_expires_at)
            result.reject(STATUS_LOCKED, f"Account {request.username} is locked")
            self.stats.account_lock_blocks += 1
        else:
            acct.clear_expired_lock(now)

    def _check_captcha(self, request: Request, now: int, result: DefenseResult) -> None:
        if not self.is_enabled(DefenseId.CAPTCHA) or not request.is_login:
            return
        cfg = self.defenses[DefenseId.CAPTCHA].config
        st = self.ip_states.get(request.ip)
        if st is None or st.failed_attempts < cfg.trigger_after:
            return
        if not request.captcha_solved:
            result.fire(DefenseId.CAPTCHA, "required", failed_attempts=st.failed_attempts)
            result.reject(STATUS_CAPTCHA_REQUIRED, "CAPTCHA required")
            self.stats.captcha_challenges += 1

    # ----------------------------
    # Failure feedback
    # ----------------------------

    def record_failed_attempt(self, request: Request, now: Optional[int] = None) -> FailureOutcome:
        now = self.clock() if now is None else now

        st = get_or_create(self.ip_states, request.ip, IpState)
        st.failed_attempts += 1

        locked = False
        if request.username:
            acct = get_or_create(self.account_states, request.username, AccountState)
            acct.failed_count += 1
            lockout = self.defenses[DefenseId.ACCOUNT_LOCKOUT]
            if (
                lockout.enabled
                and not acct.is_locked(now)
                and acct.failed_count >= lockout.config.max_attempts
            ):
                acct.lock(now, lockout.config.lock_duration_ms)
                self.stats.account_lockouts += 1
                locked = True
                log.info("account %s locked until %d", request.username, acct.lock_expires_at)

        delay = 0
        pd = self.defenses[DefenseId.PROGRESSIVE_DELAY]
        if pd.enabled:
            current = self.ip_delays.get(request.ip) or pd.config.base_delay_ms
            delay = int(min(current * pd.config.multiplier, pd.config.max_delay_ms))
            self.ip_delays[request.ip] = delay

        return FailureOutcome(account_locked=locked, delay=delay)

    def ban_ip(self, ip: str, now: int) -> IpState:
        st = get_or_create(self.ip_states, ip, IpState)
        st.ban(now, self.defenses[DefenseId.IP_BLACKLIST].config.ban_duration_ms)
        self.stats.ip_bans += 1
        log.info("banned %s until %d", ip, st.ban_expires_at)
        return st

    # ----------------------------
    # Queries
    # ----------------------------

    def get_ip_state(self, ip: str) -> Optional[IpState]:
        return self.ip_states.get(ip)

    def is_banned(self, ip: str, now: Optional[int] = None) -> bool:
        st = self.ip_states.get(ip)
        return bool(st and st.is_banned(self.clock() if now is None else now))

    def get_blocked_ips(self, now: Optional[int] = None) -> List[Dict[str, Any]]:
        now = self.clock() if now is None else now
        return [
            {
                "ip": ip,
                "banned_at": st.banned_at,
                "unblock_time": st.ban_expires_at,
                "remaining_ms": st.ban_expires_at - now,
            }
            for ip, st in self.ip_states.items()
            if st.is_banned(now)
        ]

    def get_locked_accounts(self, now: Optional[int] = None) -> List[Dict[str, Any]]:
        now = self.clock() if now is None else now
        return [
            {
                "username": name,
                "unlock_time": acct.lock_expires_at,
                "remaining_ms": acct.lock_expires_at - now,
            }
            for name, acct in self.account_states.items()
            if acct.is_locked(now)
        ]

    def get_stats(self) -> Dict[str, int]:
        return self.stats.to_dict()

    def reset(self) -> None:
        """Drop all per-key state and counters; mechanism toggles/configs are kept."""
        self.ip_states.clear()
        self.account_states.clear()
        self.ip_delays.clear()
        self.honeypot_hits.clear()
        self.behavior.clear()
        self.stats = DefenseStats()
