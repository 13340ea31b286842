from __future__ import annotations

import math
from typing import Dict, Optional

from multiping.models import Address, ProbeResult, ProbeSet, Resolution, Verdict
from multiping.status import Status


def best_result(probes: ProbeSet, resolution: Resolution) -> Optional[ProbeResult]:
    """The successful result with the lowest RTT; NaN RTTs are ignored and
    ties go to the address resolved first."""
    best: Optional[ProbeResult] = None
    for address in _ordered(probes, resolution):
        result = probes.get(address)
        if result is None or not result.success or math.isnan(result.rtt):
            continue
        if best is None or result.rtt < best.rtt:
            best = result
    return best


def evaluate(
    probes: ProbeSet,
    resolution: Resolution,
    warning: float,
    critical: float,
    error: Optional[str] = None,
) -> Verdict:
    """Reduce one run's results to a Verdict. Thresholds are in seconds.

    `error` carries a transport setup failure; such a run is UNKNOWN whatever
    the probe set holds.
    """
    messages = [f"{target}: {message}" for target, message in resolution.errors.items()]
    table: Dict[Address, Optional[float]] = {}
    for address in _ordered(probes, resolution):
        result = probes.get(address)
        rtt = result.rtt if result is not None else None
        table[address] = None if rtt is None or math.isnan(rtt) else rtt

    if error is not None or not table:
        return Verdict(Status.UNKNOWN, None, table, warning, critical, messages, error)

    best = best_result(probes, resolution)
    if best is None:
        status = Status.CRITICAL
    else:
        status = Status.check(best.rtt, warning, critical)
    return Verdict(status, best, table, warning, critical, messages)


def _ordered(probes: ProbeSet, resolution: Resolution):
    # Resolution order first, then anything probed that the resolution does not list.
    seen = set()
    for address in resolution.addresses:
        if address not in seen:
            seen.add(address)
            yield address
    for result in probes:
        if result.address not in seen:
            seen.add(result.address)
            yield result.address
