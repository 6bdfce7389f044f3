from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List

from .schema import Origin


@dataclass(frozen=True)
class AttackTypeProfile:
    id: str
    name: str
    description: str
    avg_rps: int
    ip_spread: int
    success_rate: float = 0.02

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DICTIONARY = AttackTypeProfile(
    id="dictionary",
    name="Dictionary Attack",
    description="Uses common passwords from a wordlist",
    avg_rps=15,
    ip_spread=1,
    success_rate=0.02,
)
CREDENTIAL_STUFFING = AttackTypeProfile(
    id="credential_stuffing",
    name="Credential Stuffing",
    description="Uses leaked username:password pairs",
    avg_rps=25,
    ip_spread=3,
    success_rate=0.08,
)
PASSWORD_SPRAY = AttackTypeProfile(
    id="password_spray",
    name="Password Spraying",
    description="One password against many usernames",
    avg_rps=5,
    ip_spread=1,
    success_rate=0.01,
)
DISTRIBUTED = AttackTypeProfile(
    id="distributed",
    name="Distributed Attack",
    description="Botnet attack with rotating IPs",
    avg_rps=50,
    ip_spread=20,
    success_rate=0.03,
)
REVERSE_BRUTE = AttackTypeProfile(
    id="reverse_brute",
    name="Reverse Brute Force",
    description="Fixed password, enumerate usernames",
    avg_rps=10,
    ip_spread=2,
    success_rate=0.005,
)

ATTACK_TYPES: Dict[str, AttackTypeProfile] = {
    p.id: p
    for p in (DICTIONARY, CREDENTIAL_STUFFING, PASSWORD_SPRAY, DISTRIBUTED, REVERSE_BRUTE)
}

DEFAULT_ATTACK_TYPE = DICTIONARY.id


def get_profile(type_id: str | None) -> AttackTypeProfile:
    """Unknown or empty ids fall back to the dictionary profile."""
    return ATTACK_TYPES.get(type_id or "", DICTIONARY)


def default_profiles() -> List[AttackTypeProfile]:
    return list(ATTACK_TYPES.values())


COMMON_PASSWORDS = [
    "password", "123456", "12345678", "qwerty", "abc123",
    "password1", "admin", "letmein", "welcome", "monkey",
    "1234567890", "login", "master", "hello", "freedom",
    "shadow", "sunshine", "princess", "dragon", "passw0rd",
]

COMMON_USERNAMES = [
    "admin", "user", "root", "administrator", "test",
    "guest", "info", "support", "contact", "webmaster",
    "john", "david", "robert", "michael", "william",
]

# Legitimate accounts used by normal traffic
REGULAR_USERS = ["alice", "bob", "carol", "dave", "erin", "frank"]

SPRAY_PASSWORD = "Password123!"
REVERSE_BRUTE_PASSWORD = "Summer2024!"

ATTACK_ORIGINS = [
    Origin("RU", "Russia", 55.75, 37.62),
    Origin("CN", "China", 39.90, 116.40),
    Origin("BR", "Brazil", -23.55, -46.63),
    Origin("IN", "India", 28.61, 77.23),
    Origin("NG", "Nigeria", 6.45, 3.39),
    Origin("US", "USA", 40.71, -74.01),
    Origin("IR", "Iran", 35.69, 51.39),
    Origin("PK", "Pakistan", 24.86, 67.01),
]

HOME_ORIGIN = Origin("US", "USA", 40.71, -74.01)
