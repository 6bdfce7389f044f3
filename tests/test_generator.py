import dataclasses
import random

import pytest

from brutesim.simulator.generator import AttackPatternGenerator
from brutesim.simulator.profiles import (
    ATTACK_TYPES,
    COMMON_PASSWORDS,
    COMMON_USERNAMES,
    SPRAY_PASSWORD,
)
from brutesim.simulator.schema import LOGIN_PATH, RequestKind, mask_password


def _gen(type_id="dictionary", seed=7):
    g = AttackPatternGenerator(random.Random(seed), clock=lambda: 42)
    g.set_type(type_id)
    return g


@pytest.mark.parametrize("type_id", sorted(ATTACK_TYPES))
def test_request_count_scales_with_intensity_and_is_at_least_one(type_id):
    g = _gen(type_id)
    profile = ATTACK_TYPES[type_id]
    for intensity in (1, 5, 20):
        upper = int(intensity * profile.avg_rps / 10) + 1
        for _ in range(30):
            batch = g.generate(intensity)
            assert 1 <= len(batch) <= upper


def test_attack_requests_shape():
    g = _gen("credential_stuffing")
    for req in g.generate(5, now=123):
        assert req.kind is RequestKind.ATTACK
        assert req.attack_type_id == "credential_stuffing"
        assert req.path == LOGIN_PATH
        assert req.method == "POST"
        assert req.timestamp == 123
        assert req.masked_password.endswith("***")
        assert isinstance(req.will_succeed, bool)


def test_password_spray_cycles_usernames_with_constant_password():
    g = _gen("password_spray")
    seen = []
    while len(seen) < len(COMMON_USERNAMES) + 5:
        seen.extend(g.generate(1))

    expected = [COMMON_USERNAMES[i % len(COMMON_USERNAMES)] for i in range(len(seen))]
    assert [r.username for r in seen] == expected
    assert {r.masked_password for r in seen} == {mask_password(SPRAY_PASSWORD)}


def test_dictionary_walks_password_table_from_single_subnet():
    g = _gen("dictionary")
    reqs = []
    while len(reqs) < len(COMMON_PASSWORDS) + 3:
        reqs.extend(g.generate(3))

    expected = [mask_password(COMMON_PASSWORDS[i % len(COMMON_PASSWORDS)]) for i in range(len(reqs))]
    assert [r.masked_password for r in reqs] == expected
    assert {r.ip for r in reqs} == {"192.168.1.100"}
    assert all(r.username in COMMON_USERNAMES for r in reqs)
    assert {r.origin.country for r in reqs} == {"RU"}


def test_reverse_brute_enumerates_usernames():
    g = _gen("reverse_brute")
    reqs = []
    while len(reqs) < 10:
        reqs.extend(g.generate(1))
    assert [r.username for r in reqs] == [f"user{i}" for i in range(len(reqs))]
    assert len({r.masked_password for r in reqs}) == 1


def test_botnet_profiles_draw_from_pool_prefix():
    g = _gen("credential_stuffing")
    allowed = {n.ip for n in g.botnet[:3]}
    for _ in range(20):
        assert {r.ip for r in g.generate(10)} <= allowed

    g.set_type("distributed")
    allowed = {n.ip for n in g.botnet[:20]}
    for _ in range(20):
        assert {r.ip for r in g.generate(10)} <= allowed


def test_set_type_resets_cursors_but_keeps_pool():
    g = _gen("password_spray")
    g.generate(20)
    pool = list(g.botnet)
    assert g.username_index > 0

    g.set_type("reverse_brute")
    assert g.username_index == 0
    assert g.password_index == 0
    assert g.botnet == pool


def test_reset_regenerates_pool():
    g = _gen("distributed")
    pool = list(g.botnet)
    g.generate(5)
    g.reset()
    assert g.username_index == 0 and g.password_index == 0
    assert g.get_stats()["requests_generated"] == 0
    assert len(g.botnet) == len(pool)
    assert g.botnet != pool


def test_unknown_type_falls_back_to_dictionary():
    g = _gen("definitely_not_real")
    assert g.get_attack_type().id == "dictionary"


def test_will_succeed_is_immutable():
    req = _gen().generate(1)[0]
    with pytest.raises(dataclasses.FrozenInstanceError):
        req.will_succeed = not req.will_succeed


def test_success_rate_roughly_matches_profile():
    g = _gen("credential_stuffing", seed=99)
    reqs = []
    while len(reqs) < 4000:
        reqs.extend(g.generate(20))
    rate = sum(r.will_succeed for r in reqs) / len(reqs)
    assert 0.05 < rate < 0.11
