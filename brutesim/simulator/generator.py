from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .profiles import (
    ATTACK_ORIGINS,
    COMMON_PASSWORDS,
    COMMON_USERNAMES,
    DEFAULT_ATTACK_TYPE,
    REVERSE_BRUTE_PASSWORD,
    SPRAY_PASSWORD,
    AttackTypeProfile,
    get_profile,
)
from .schema import LOGIN_PATH, Origin, Request, RequestKind, mask_password

log = logging.getLogger("brutesim.generator")

_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def now_ms() -> int:
    return int(time.time() * 1000)


def make_id(rng: random.Random, length: int = 9) -> str:
    return "".join(rng.choice(_ID_ALPHABET) for _ in range(length))


def rand_ip(rng: random.Random) -> str:
    return (
        f"{rng.randint(1, 254)}."
        f"{rng.randint(0, 255)}."
        f"{rng.randint(0, 255)}."
        f"{rng.randint(1, 254)}"
    )


def subnet_ip(rng: random.Random, spread: int) -> str:
    # attacker-controlled /24, first host at .100
    return f"192.168.1.{100 + rng.randrange(max(1, spread))}"


@dataclass(frozen=True)
class BotnetNode:
    ip: str
    origin: Origin


class AttackPatternGenerator:
    """
    Produces attack requests for the active attack profile.

    Per-type cursors (username/password index) are reset by `set_type`;
    the botnet pool survives that and is only rebuilt by `reset`.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        *,
        pool_size: int = 50,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.rng = rng or random.Random()
        self.clock = clock or now_ms
        self.pool_size = max(1, int(pool_size))
        self.profile: AttackTypeProfile = get_profile(DEFAULT_ATTACK_TYPE)
        self.username_index = 0
        self.password_index = 0
        self.generated = 0
        self.botnet: List[BotnetNode] = self._build_botnet(self.pool_size)

    def _build_botnet(self, count: int) -> List[BotnetNode]:
        return [
            BotnetNode(ip=rand_ip(self.rng), origin=self.rng.choice(ATTACK_ORIGINS))
            for _ in range(count)
        ]

    def set_type(self, type_id: str | None) -> AttackTypeProfile:
        self.profile = get_profile(type_id)
        if type_id and self.profile.id != type_id:
            log.debug("unknown attack type %r, falling back to %s", type_id, self.profile.id)
        self.username_index = 0
        self.password_index = 0
        return self.profile

    def get_attack_type(self) -> AttackTypeProfile:
        return self.profile

    def request_count(self, intensity: int) -> int:
        return int(self.rng.random() * intensity * self.profile.avg_rps / 10) + 1

    def generate(self, intensity: int, now: Optional[int] = None) -> List[Request]:
        ts = self.clock() if now is None else now
        n = self.request_count(intensity)
        return [self.create_request(self.profile, ts) for _ in range(n)]

    def _pick_node(self, spread: int) -> BotnetNode:
        upper = max(1, min(spread, len(self.botnet)))
        return self.botnet[self.rng.randrange(upper)]

    def create_request(self, profile: AttackTypeProfile, ts: int) -> Request:
        rng = self.rng

        if profile.id == "credential_stuffing":
            username = f"user{rng.randrange(10000)}@example.com"
            password = f"pass{rng.randrange(1000)}"
            node = self._pick_node(profile.ip_spread)
            ip, origin = node.ip, node.origin

        elif profile.id == "password_spray":
            username = COMMON_USERNAMES[self.username_index % len(COMMON_USERNAMES)]
            self.username_index += 1
            password = SPRAY_PASSWORD
            ip, origin = subnet_ip(rng, profile.ip_spread), ATTACK_ORIGINS[2]

        elif profile.id == "distributed":
            username = rng.choice(COMMON_USERNAMES)
            password = rng.choice(COMMON_PASSWORDS)
            node = self._pick_node(profile.ip_spread)
            ip, origin = node.ip, node.origin

        elif profile.id == "reverse_brute":
            username = f"user{self.username_index}"
            self.username_index += 1
            password = REVERSE_BRUTE_PASSWORD
            ip, origin = subnet_ip(rng, profile.ip_spread), ATTACK_ORIGINS[3]

        else:  # dictionary
            username = rng.choice(COMMON_USERNAMES)
            password = COMMON_PASSWORDS[self.password_index % len(COMMON_PASSWORDS)]
            self.password_index += 1
            ip, origin = subnet_ip(rng, profile.ip_spread), ATTACK_ORIGINS[0]

        self.generated += 1
        return Request(
            id=make_id(rng),
            kind=RequestKind.ATTACK,
            attack_type_id=profile.id,
            ip=ip,
            origin=origin,
            path=LOGIN_PATH,
            method="POST",
            timestamp=ts,
            username=username,
            masked_password=mask_password(password),
            will_succeed=rng.random() < profile.success_rate,
        )

    def get_stats(self) -> Dict:
        return {
            "type": self.profile.to_dict(),
            "requests_generated": self.generated,
            "botnet_size": len(self.botnet),
        }

    def reset(self) -> None:
        self.username_index = 0
        self.password_index = 0
        self.generated = 0
        self.botnet = self._build_botnet(self.pool_size)
