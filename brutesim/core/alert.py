from __future__ import annotations
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal, Optional

from brutesim.simulator.schema import Request

Severity = Literal["info", "success", "warning", "critical"]


@dataclass(frozen=True)
class Alert:
    id: str
    timestamp: int
    severity: Severity
    title: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LogEntry:
    id: str
    timestamp: int
    kind: str
    ip: str
    origin: Dict[str, Any]
    method: str
    path: str
    status: int
    message: str

    attack_type_id: Optional[str] = None
    username: Optional[str] = None
    defense_responses: List[Dict[str, Any]] = field(default_factory=list)
    delayed: int = 0

    @classmethod
    def from_request(
        cls,
        request: Request,
        status: int,
        message: str,
        defense_responses: Optional[List[Dict[str, Any]]] = None,
        delayed: int = 0,
    ) -> "LogEntry":
        return cls(
            id=request.id,
            timestamp=request.timestamp,
            kind=request.kind.value,
            ip=request.ip,
            origin=request.origin.to_dict(),
            method=request.method,
            path=request.path,
            status=status,
            message=message,
            attack_type_id=request.attack_type_id,
            username=request.username,
            defense_responses=list(defense_responses or []),
            delayed=delayed,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
