from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, Sequence

from multiping.models import Address, DrainPolicy, ProbeFailure, ProbeResult, ProbeSet
from multiping.pinger import Pinger


def probe_all(
    addresses: Sequence[Address],
    pinger: Pinger,
    deadline: float,
    attempts: int = 1,
    cutoff: float = 0.0,
    policy: DrainPolicy = DrainPolicy.ALL,
) -> ProbeSet:
    """Probe every address concurrently and collect one result per address.

    `deadline` is an absolute `time.monotonic()` value. Addresses whose probe
    has not finished by then are recorded as DEADLINE_EXCEEDED; with
    DrainPolicy.FIRST, addresses still outstanding when the first success
    arrives are recorded as ABANDONED.
    """
    probes = ProbeSet()
    if not addresses:
        return probes

    cancel = threading.Event()
    executor = ThreadPoolExecutor(max_workers=len(addresses), thread_name_prefix="probe")
    futures: Dict[Future, Address] = {
        executor.submit(pinger.measure, address, attempts, cutoff, deadline, cancel): address
        for address in addresses
    }
    outstanding = set(futures)
    try:
        while outstanding:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            done, outstanding = wait(outstanding, timeout=remaining, return_when=FIRST_COMPLETED)
            for future in done:
                result = _collect(future, futures[future])
                probes.record(result)
            if policy is DrainPolicy.FIRST and probes.successes():
                break
    finally:
        if outstanding:
            failure = ProbeFailure.DEADLINE_EXCEEDED
            if policy is DrainPolicy.FIRST and probes.successes():
                failure = ProbeFailure.ABANDONED
            for future in outstanding:
                address = futures[future]
                logging.debug("%s (%s): %s", address.target, address.ip, failure.value)
                probes.record(ProbeResult.failed(address, failure, attempts=0))
        cancel.set()
        pinger.abort()
        executor.shutdown(wait=False, cancel_futures=True)

    logging.info(
        "Probed %d address(es): %d answered, %d failed",
        len(probes),
        len(probes.successes()),
        len(probes) - len(probes.successes()),
    )
    return probes


def _collect(future: Future, address: Address) -> ProbeResult:
    try:
        result = future.result()
    except Exception as exc:
        logging.exception("Probe of %s (%s) crashed", address.target, address.ip)
        return ProbeResult.failed(address, ProbeFailure.IO_ERROR, detail=str(exc))
    if result.address != address:
        raise RuntimeError(f"probe for {address} returned a result for {result.address}")
    return result
