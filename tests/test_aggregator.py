# tests/test_aggregator.py
import math
import random
import socket

import pytest

from multiping.aggregator import best_result, evaluate
from multiping.models import Address, ProbeFailure, ProbeResult, ProbeSet, Resolution
from multiping.status import Status

WARN = 0.05
CRIT = 0.5


def addr(ip, target=None):
    family = socket.AF_INET6 if ":" in ip else socket.AF_INET
    return Address(target=target or ip, ip=ip, family=family)


def probe_set(data):
    """data: list of (ip, rtt or ProbeFailure) -> (ProbeSet, Resolution)"""
    probes = ProbeSet()
    resolution = Resolution()
    for ip, outcome in data:
        a = addr(ip)
        resolution.addresses.append(a)
        if isinstance(outcome, ProbeFailure):
            probes.record(ProbeResult.failed(a, outcome))
        else:
            probes.record(ProbeResult.ok(a, outcome))
    return probes, resolution


def test_scenario_warning_with_failed_and_unresolved_targets():
    """A answers in 100 ms, B does not resolve, C times out."""
    a = addr("192.0.2.1", "a.example")
    c = addr("192.0.2.3", "c.example")
    resolution = Resolution(addresses=[a, c], errors={"b.example": "Name or service not known"})
    probes = ProbeSet()
    probes.record(ProbeResult.ok(a, 0.1))
    probes.record(ProbeResult.failed(c, ProbeFailure.TIMEOUT))

    verdict = evaluate(probes, resolution, WARN, CRIT)

    assert verdict.status is Status.WARNING
    assert verdict.best_rtt == 0.1
    assert verdict.best.address == a
    assert verdict.table == {a: 0.1, c: None}
    assert verdict.messages == ["b.example: Name or service not known"]


def test_all_timeouts_is_critical():
    probes, resolution = probe_set([("8.8.8.8", ProbeFailure.TIMEOUT), ("4.4.4.4", ProbeFailure.TIMEOUT)])
    verdict = evaluate(probes, resolution, WARN, CRIT)
    assert verdict.status is Status.CRITICAL
    assert verdict.best is None
    assert list(verdict.table.values()) == [None, None]


def test_single_fast_success_is_ok():
    probes, resolution = probe_set([("9.9.9.9", 0.01)])
    verdict = evaluate(probes, resolution, WARN, CRIT)
    assert verdict.status is Status.OK
    assert verdict.best_rtt == 0.01


def test_no_addresses_is_unknown():
    resolution = Resolution(errors={"no.such.host.example": "Name or service not known"})
    verdict = evaluate(ProbeSet(), resolution, WARN, CRIT)
    assert verdict.status is Status.UNKNOWN
    assert verdict.table == {}
    assert verdict.best is None


def test_transport_error_is_unknown_even_with_data():
    probes, resolution = probe_set([("9.9.9.9", 0.01)])
    verdict = evaluate(probes, resolution, WARN, CRIT, error="cannot create ICMP socket")
    assert verdict.status is Status.UNKNOWN
    assert verdict.error == "cannot create ICMP socket"


@pytest.mark.parametrize(
    "rtt, expected",
    [(0.0, Status.OK), (0.049, Status.OK), (0.05, Status.WARNING), (0.499, Status.WARNING), (0.5, Status.CRITICAL), (3.0, Status.CRITICAL)],
)
def test_threshold_boundaries(rtt, expected):
    probes, resolution = probe_set([("9.9.9.9", rtt)])
    assert evaluate(probes, resolution, WARN, CRIT).status is expected


def test_nan_rtt_is_ignored():
    probes, resolution = probe_set([("1.1.1.1", float("nan")), ("2.2.2.2", 0.2)])
    best = best_result(probes, resolution)
    assert best.address.ip == "2.2.2.2"
    assert evaluate(probes, resolution, WARN, CRIT).table[addr("1.1.1.1")] is None


def test_tie_goes_to_first_resolved():
    probes, resolution = probe_set([("1.1.1.1", 0.02), ("2.2.2.2", 0.02)])
    assert best_result(probes, resolution).address.ip == "1.1.1.1"


def test_table_follows_resolution_order():
    probes, resolution = probe_set([("3.3.3.3", 0.3), ("1.1.1.1", 0.1), ("2.2.2.2", ProbeFailure.UNREACHABLE)])
    verdict = evaluate(probes, resolution, WARN, CRIT)
    assert [a.ip for a in verdict.table] == ["3.3.3.3", "1.1.1.1", "2.2.2.2"]


def _random_probe_set(rng):
    failures = list(ProbeFailure)
    data = []
    for i in range(rng.randint(1, 12)):
        ip = f"198.51.100.{i + 1}"
        if rng.random() < 0.4:
            data.append((ip, rng.choice(failures)))
        else:
            data.append((ip, rng.uniform(0.0, 1.0)))
    return data


@pytest.mark.parametrize("seed", range(50))
def test_best_rtt_is_minimum_of_successes(seed):
    rng = random.Random(seed)
    data = _random_probe_set(rng)
    probes, resolution = probe_set(data)
    verdict = evaluate(probes, resolution, WARN, CRIT)

    rtts = [outcome for _, outcome in data if not isinstance(outcome, ProbeFailure)]
    if rtts:
        assert verdict.best_rtt == min(rtts)
        assert verdict.status is Status.check(min(rtts), WARN, CRIT)
    else:
        assert verdict.best is None
        assert verdict.status is Status.CRITICAL
    assert len(verdict.table) == len(data)


@pytest.mark.parametrize("seed", range(10))
def test_evaluate_is_pure(seed):
    rng = random.Random(seed)
    probes, resolution = probe_set(_random_probe_set(rng))
    first = evaluate(probes, resolution, WARN, CRIT)
    second = evaluate(probes, resolution, WARN, CRIT)
    assert first == second
    assert len(probes) == len(resolution.addresses)


def test_status_check():
    assert Status.check(0.1, 0.1, 0.2) is Status.WARNING
    assert Status.check(0.09, 0.1, 0.2) is Status.OK
    assert Status.check(0.2, 0.1, 0.2) is Status.CRITICAL
    assert Status.check(math.nan, 0.1, 0.2) is Status.UNKNOWN
    with pytest.raises(ValueError):
        Status.check(-1.0, 1.0, 2.0)


def test_status_exit_codes():
    assert [int(s) for s in (Status.OK, Status.WARNING, Status.CRITICAL, Status.UNKNOWN)] == [0, 1, 2, 3]
    assert str(Status.CRITICAL) == "CRITICAL"
