from __future__ import annotations

import random

import pytest

from brutesim.config import EngineSettings
from brutesim.defense.manager import DefenseStrategyManager
from brutesim.engine.simulation import SimulationEngine
from brutesim.simulator.profiles import HOME_ORIGIN
from brutesim.simulator.schema import LOGIN_PATH, Origin, Request, RequestKind


class FakeClock:
    def __init__(self, start: int = 1_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(1337)


@pytest.fixture
def manager(clock):
    return DefenseStrategyManager(clock=clock)


@pytest.fixture
def engine(clock, rng):
    settings = EngineSettings(normal_traffic_rate=0.0, autostart=False)
    return SimulationEngine(settings, rng=rng, clock=clock)


_seq = [0]


def make_request(
    ip: str = "1.2.3.4",
    *,
    username: str | None = "victim",
    path: str = LOGIN_PATH,
    origin: Origin = HOME_ORIGIN,
    ts: int = 0,
    kind: RequestKind = RequestKind.ATTACK,
    will_succeed: bool = False,
    captcha_solved: bool = False,
) -> Request:
    _seq[0] += 1
    return Request(
        id=f"req{_seq[0]}",
        kind=kind,
        ip=ip,
        origin=origin,
        path=path,
        method="POST",
        timestamp=ts,
        attack_type_id="dictionary" if kind is RequestKind.ATTACK else None,
        username=username,
        masked_password="pas***",
        will_succeed=will_succeed,
        captcha_solved=captcha_solved,
    )
