from __future__ import annotations

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, ConfigDict


class AttackToggleRequest(BaseModel):
    enabled: bool = Field(..., description="Start (true) or stop (false) the simulated attack")


class IntensityRequest(BaseModel):
    intensity: int = Field(..., description="Attack intensity; clamped to 1..20")


class AttackTypeRequest(BaseModel):
    attack_type: str = Field(..., description="Attack profile id; unknown ids fall back to dictionary")

    model_config = ConfigDict(
        json_schema_extra={"example": {"attack_type": "password_spray"}}
    )


class DefenseToggleRequest(BaseModel):
    enabled: bool


class DefenseConfigPatch(BaseModel):
    config: Dict[str, Any] = Field(default_factory=dict, description="Fields to merge; unknown keys are ignored")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"config": {"max_requests": 20, "window_ms": 10000}}
        }
    )


class TickRequest(BaseModel):
    count: int = Field(1, ge=1, le=1000, description="Number of ticks to run synchronously")


class ControlResponse(BaseModel):
    ok: bool = True
    request_id: str
    config: Dict[str, Any]


class ErrorResponse(BaseModel):
    ok: bool = False
    request_id: str
    error: Dict[str, Any]
    hint: Optional[str] = None
