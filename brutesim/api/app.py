from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from brutesim.api.schemas import (
    AttackToggleRequest,
    AttackTypeRequest,
    ControlResponse,
    DefenseConfigPatch,
    DefenseToggleRequest,
    ErrorResponse,
    IntensityRequest,
    TickRequest,
)
from brutesim.config import EngineSettings
from brutesim.defense.mechanisms import DefenseId
from brutesim.engine.simulation import SimulationEngine

log = logging.getLogger("brutesim.api")


def _request_id() -> str:
    return uuid.uuid4().hex


def _rid(request: Request) -> str:
    return getattr(request.state, "request_id", "") or _request_id()


def _engine(request: Request) -> SimulationEngine:
    return request.app.state.engine


def _error(request_id: str, status: int, code: str, message: str, *, details: Dict[str, Any] | None = None, hint: str | None = None):
    payload = ErrorResponse(
        request_id=request_id,
        error={
            "code": code,
            "message": message,
            "details": details or {},
        },
        hint=hint,
    ).model_dump()
    return JSONResponse(payload, status_code=status)


def _control(request: Request) -> JSONResponse:
    resp = ControlResponse(request_id=_rid(request), config=_engine(request).get_config())
    return JSONResponse(resp.model_dump(), status_code=200)


def _unknown_defense(request: Request, defense_id: str) -> JSONResponse:
    return _error(
        _rid(request),
        404,
        "UNKNOWN_DEFENSE",
        f"No defense mechanism named '{defense_id}'.",
        details={"allowed": [d.value for d in DefenseId]},
    )


def create_app(engine: Optional[SimulationEngine] = None, settings: Optional[EngineSettings] = None) -> FastAPI:
    """
    Build the control API around one engine instance.

    When no engine is given, one is built from `settings` (or BRUTESIM_* env)
    and started/stopped with the app lifespan if `settings.autostart` is set.

    Serve with: uvicorn --factory brutesim.api.app:create_app
    """
    settings = settings or (engine.settings if engine is not None else EngineSettings())
    if not log.handlers:
        logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
    engine = engine or SimulationEngine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        started = False
        if settings.autostart and not engine.running:
            engine.start()
            started = True
        try:
            yield
        finally:
            if started:
                engine.stop()

    app = FastAPI(
        title="brutesim API",
        version="0.1.0",
        description="Control and observe a simulated brute-force attack and its defense stack.",
        lifespan=lifespan,
    )
    app.state.engine = engine

    # -----------------------------
    # Middleware: request_id
    # -----------------------------
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("x-request-id") or _request_id()
        request.state.request_id = rid
        resp = await call_next(request)
        resp.headers["x-request-id"] = rid
        return resp

    # -----------------------------
    # Exception handlers (structured errors)
    # -----------------------------
    @app.exception_handler(Exception)
    async def handle_exception(request: Request, exc: Exception):
        rid = _rid(request)
        log.exception("Unhandled error rid=%s path=%s", rid, request.url.path)
        return _error(
            rid,
            500,
            "INTERNAL_ERROR",
            "Unexpected server error.",
            details={"type": exc.__class__.__name__},
            hint="Check server logs using the request_id header.",
        )

    # -----------------------------
    # Read-only views
    # -----------------------------
    @app.get("/healthz", response_model=dict)
    def healthz(request: Request):
        return {"ok": True, "request_id": _rid(request), "running": _engine(request).running}

    @app.get("/v1/state")
    def state(request: Request):
        return _engine(request).snapshot()

    @app.get("/v1/stats")
    def stats(request: Request):
        return _engine(request).get_stats()

    @app.get("/v1/config")
    def config(request: Request):
        return _engine(request).get_config()

    @app.get("/v1/defenses")
    def defenses(request: Request):
        eng = _engine(request)
        return {
            "defenses": eng.defense_manager.get_defenses(),
            "defense_stats": eng.defense_manager.get_stats(),
        }

    @app.get("/v1/telemetry")
    def telemetry(request: Request):
        return _engine(request).get_attack_telemetry_snapshot()

    @app.get("/v1/metrics")
    def metrics(request: Request):
        return _engine(request).get_metrics()

    # -----------------------------
    # Controls
    # -----------------------------
    @app.post("/v1/start", response_model=ControlResponse)
    def start(request: Request):
        _engine(request).start()
        return _control(request)

    @app.post("/v1/stop", response_model=ControlResponse)
    def stop(request: Request):
        _engine(request).stop()
        return _control(request)

    @app.post("/v1/reset", response_model=ControlResponse)
    def reset(request: Request):
        _engine(request).reset()
        return _control(request)

    @app.post("/v1/tick")
    def tick(req: TickRequest, request: Request):
        eng = _engine(request)
        for _ in range(req.count):
            eng.tick()
        return {"ok": True, "request_id": _rid(request), "ticks": req.count, "stats": eng.get_stats()}

    @app.post("/v1/attack", response_model=ControlResponse)
    def attack(req: AttackToggleRequest, request: Request):
        _engine(request).toggle_attack(req.enabled)
        return _control(request)

    @app.post("/v1/attack/intensity", response_model=ControlResponse)
    def intensity(req: IntensityRequest, request: Request):
        _engine(request).set_attack_intensity(req.intensity)
        return _control(request)

    @app.post("/v1/attack/type", response_model=ControlResponse)
    def attack_type(req: AttackTypeRequest, request: Request):
        _engine(request).set_attack_type(req.attack_type)
        return _control(request)

    @app.post(
        "/v1/defenses/{defense_id}",
        responses={404: {"model": ErrorResponse}},
    )
    def toggle_defense(defense_id: str, req: DefenseToggleRequest, request: Request):
        eng = _engine(request)
        if not eng.toggle_defense(defense_id, req.enabled):
            return _unknown_defense(request, defense_id)
        return {"ok": True, "request_id": _rid(request), "defense": eng.defense_manager.mechanism(defense_id).to_dict()}

    @app.patch(
        "/v1/defenses/{defense_id}/config",
        responses={404: {"model": ErrorResponse}},
    )
    def update_defense_config(defense_id: str, req: DefenseConfigPatch, request: Request):
        eng = _engine(request)
        if not eng.update_defense_config(defense_id, req.config):
            return _unknown_defense(request, defense_id)
        return {"ok": True, "request_id": _rid(request), "defense": eng.defense_manager.mechanism(defense_id).to_dict()}

    return app
