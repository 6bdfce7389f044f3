from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Optional


@dataclass
class IpState:
    request_timestamps: Deque[int] = field(default_factory=deque)
    violation_count: int = 0
    failed_attempts: int = 0
    banned: bool = False
    banned_at: Optional[int] = None
    ban_expires_at: Optional[int] = None

    def ban(self, now: int, duration_ms: int) -> None:
        self.banned = True
        self.banned_at = now
        self.ban_expires_at = now + duration_ms

    def is_banned(self, now: int) -> bool:
        return self.banned and self.ban_expires_at is not None and now < self.ban_expires_at

    def clear_expired_ban(self, now: int) -> bool:
        """Lift a ban whose expiry has passed. Returns True if one was lifted."""
        if self.banned and not self.is_banned(now):
            self.banned = False
            self.banned_at = None
            self.ban_expires_at = None
            self.violation_count = 0
            return True
        return False

    def trim(self, now: int, window_ms: int) -> None:
        q = self.request_timestamps
        while q and now - q[0] >= window_ms:
            q.popleft()


@dataclass
class AccountState:
    failed_count: int = 0
    locked: bool = False
    locked_at: Optional[int] = None
    lock_expires_at: Optional[int] = None

    def lock(self, now: int, duration_ms: int) -> None:
        self.locked = True
        self.locked_at = now
        self.lock_expires_at = now + duration_ms

    def is_locked(self, now: int) -> bool:
        return self.locked and self.lock_expires_at is not None and now < self.lock_expires_at

    def clear_expired_lock(self, now: int) -> bool:
        if self.locked and not self.is_locked(now):
            self.locked = False
            self.locked_at = None
            self.lock_expires_at = None
            self.failed_count = 0
            return True
        return False


@dataclass
class BehaviorState:
    intervals: Deque[int] = field(default_factory=lambda: deque(maxlen=20))
    last_request: Optional[int] = None

    def observe(self, now: int) -> None:
        """Record the gap since the last *allowed* request; `last_request` is left to the caller."""
        if self.last_request is not None:
            self.intervals.append(max(0, now - self.last_request))

    def mean_interval(self) -> float:
        if not self.intervals:
            return 0.0
        return sum(self.intervals) / len(self.intervals)


def get_or_create(store: Dict, key: str, factory):
    item = store.get(key)
    if item is None:
        item = factory()
        store[key] = item
    return item
