# tests/test_engine.py
import socket
import time

from fakes import FakePinger

from multiping.engine import probe_all
from multiping.models import Address, DrainPolicy, ProbeFailure

NEVER = 30.0


def addr(ip, target=None):
    return Address(target=target or ip, ip=ip, family=socket.AF_INET)


def test_collects_one_result_per_address():
    addresses = [addr("192.0.2.1"), addr("192.0.2.2"), addr("192.0.2.3")]
    pinger = FakePinger({
        "192.0.2.1": (0.0, 0.02),
        "192.0.2.2": (0.05, 0.01),
        "192.0.2.3": (0.0, ProbeFailure.UNREACHABLE),
    })
    probes = probe_all(addresses, pinger, time.monotonic() + 5)

    assert len(probes) == 3
    assert probes.get(addresses[0]).rtt == 0.02
    assert probes.get(addresses[1]).rtt == 0.01
    assert probes.get(addresses[2]).failure is ProbeFailure.UNREACHABLE
    assert sorted(a.ip for a in pinger.started) == sorted(a.ip for a in addresses)
    assert pinger.aborted


def test_deadline_bounds_run_when_some_addresses_never_reply():
    """3 of 5 addresses never answer; the run still ends at the deadline."""
    addresses = [addr(f"192.0.2.{i}") for i in range(1, 6)]
    pinger = FakePinger({
        "192.0.2.1": (0.0, 0.01),
        "192.0.2.2": (0.05, 0.03),
        "192.0.2.3": (NEVER, 0.01),
        "192.0.2.4": (NEVER, 0.01),
        "192.0.2.5": (NEVER, 0.01),
    })
    started = time.monotonic()
    probes = probe_all(addresses, pinger, started + 0.5)
    elapsed = time.monotonic() - started

    assert elapsed < 1.5
    assert len(probes) == 5
    assert [a.ip for a in addresses if probes.get(a).success] == ["192.0.2.1", "192.0.2.2"]
    for a in addresses[2:]:
        assert probes.get(a).failure is ProbeFailure.DEADLINE_EXCEEDED


def test_slow_address_does_not_delay_fast_one():
    addresses = [addr("192.0.2.1"), addr("192.0.2.2")]
    pinger = FakePinger({"192.0.2.1": (0.3, 0.3), "192.0.2.2": (0.0, 0.001)})
    started = time.monotonic()
    probes = probe_all(addresses, pinger, started + 2)
    # both run in parallel, so total time is about the slow probe alone
    assert time.monotonic() - started < 1.0
    assert probes.get(addresses[1]).rtt == 0.001


def test_first_policy_abandons_outstanding_probes():
    addresses = [addr("192.0.2.1"), addr("192.0.2.2")]
    pinger = FakePinger({"192.0.2.1": (0.0, 0.01), "192.0.2.2": (NEVER, 0.001)})
    started = time.monotonic()
    probes = probe_all(addresses, pinger, started + 5, policy=DrainPolicy.FIRST)

    assert time.monotonic() - started < 1.5
    assert probes.get(addresses[0]).rtt == 0.01
    assert probes.get(addresses[1]).failure is ProbeFailure.ABANDONED


def test_first_policy_keeps_waiting_after_failures():
    addresses = [addr("192.0.2.1"), addr("192.0.2.2")]
    pinger = FakePinger({"192.0.2.1": (0.0, ProbeFailure.TIMEOUT), "192.0.2.2": (0.1, 0.05)})
    probes = probe_all(addresses, pinger, time.monotonic() + 5, policy=DrainPolicy.FIRST)
    assert probes.get(addresses[0]).failure is ProbeFailure.TIMEOUT
    assert probes.get(addresses[1]).rtt == 0.05


def test_crashing_probe_is_recorded_as_io_error():
    addresses = [addr("192.0.2.1"), addr("192.0.2.2")]
    pinger = FakePinger({"192.0.2.1": (0.0, RuntimeError("boom")), "192.0.2.2": (0.0, 0.02)})
    probes = probe_all(addresses, pinger, time.monotonic() + 5)
    assert probes.get(addresses[0]).failure is ProbeFailure.IO_ERROR
    assert probes.get(addresses[0]).detail == "boom"
    assert probes.get(addresses[1]).rtt == 0.02


def test_same_ip_from_two_targets_is_probed_twice():
    addresses = [addr("192.0.2.1", "a.example"), addr("192.0.2.1", "b.example")]
    pinger = FakePinger({"192.0.2.1": (0.0, 0.02)})
    probes = probe_all(addresses, pinger, time.monotonic() + 5)
    assert len(probes) == 2
    assert len(pinger.started) == 2


def test_no_addresses():
    pinger = FakePinger()
    assert len(probe_all([], pinger, time.monotonic() + 1)) == 0
    assert pinger.started == []


def test_expired_deadline_marks_everything_exceeded():
    addresses = [addr("192.0.2.1")]
    pinger = FakePinger({"192.0.2.1": (NEVER, 0.01)})
    probes = probe_all(addresses, pinger, time.monotonic() - 1)
    assert probes.get(addresses[0]).failure is ProbeFailure.DEADLINE_EXCEEDED
