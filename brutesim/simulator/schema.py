from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional

LOGIN_PATH = "/login"


class RequestKind(str, Enum):
    NORMAL = "NORMAL"
    ATTACK = "ATTACK"


@dataclass(frozen=True)
class Origin:
    country: str
    name: str
    lat: float = 0.0
    lon: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Request:
    """
    One synthetic HTTP request.

    `will_succeed` is drawn once by the generator; the defense pipeline
    never rewrites it.
    """
    id: str
    kind: RequestKind
    ip: str
    origin: Origin
    path: str
    method: str
    timestamp: int
    attack_type_id: Optional[str] = None
    username: Optional[str] = None
    masked_password: Optional[str] = None
    will_succeed: Optional[bool] = None
    captcha_solved: bool = False

    @property
    def is_attack(self) -> bool:
        return self.kind is RequestKind.ATTACK

    @property
    def is_login(self) -> bool:
        return self.path == LOGIN_PATH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "attack_type_id": self.attack_type_id,
            "ip": self.ip,
            "origin": self.origin.to_dict(),
            "path": self.path,
            "method": self.method,
            "username": self.username,
            "masked_password": self.masked_password,
            "timestamp": self.timestamp,
            "will_succeed": self.will_succeed,
        }


def mask_password(password: str) -> str:
    return password[:3] + "***"
