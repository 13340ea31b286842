from __future__ import annotations

import errno
import logging
import threading
import time
from typing import Optional

from multiping.icmp import UNREACHABLE, IcmpTransport
from multiping.models import Address, ProbeFailure, ProbeResult

_UNREACHABLE_ERRNOS = {errno.ENETUNREACH, errno.EHOSTUNREACH, errno.EADDRNOTAVAIL}
_PERMISSION_ERRNOS = {errno.EACCES, errno.EPERM}


class Pinger:
    def __init__(self, transport: IcmpTransport, timeout: float) -> None:
        self.transport = transport
        self.timeout = timeout

    def ping(
        self,
        address: Address,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ProbeResult:
        """Send a single echo request and wait for the matching reply."""
        timeout = self.timeout if timeout is None else min(timeout, self.timeout)
        if cancel is not None and cancel.is_set():
            return ProbeResult.failed(address, ProbeFailure.ABANDONED)
        try:
            pending = self.transport.send_echo(address)
        except OSError as exc:
            return ProbeResult.failed(address, _classify(exc), detail=exc.strerror or str(exc))

        try:
            pending.wait(timeout)
        finally:
            self.transport.discard(pending)

        if pending.reply is None:
            if pending.aborted:
                return ProbeResult.failed(address, ProbeFailure.ABANDONED)
            return ProbeResult.failed(address, ProbeFailure.TIMEOUT, detail=f"no reply within {timeout:.3f}s")
        if pending.reply.kind == UNREACHABLE:
            return ProbeResult.failed(
                address,
                ProbeFailure.UNREACHABLE,
                detail=f"destination unreachable (code {pending.reply.code})",
            )
        return ProbeResult.ok(address, pending.rtt or 0.0)

    def measure(
        self,
        address: Address,
        attempts: int,
        cutoff: float,
        deadline: float,
        cancel: Optional[threading.Event] = None,
    ) -> ProbeResult:
        """Ping `address` up to `attempts` times and keep the best RTT.

        Stops early once an RTT below `cutoff` is seen. No attempt waits past
        `deadline` (a `time.monotonic()` value).
        """
        best: Optional[ProbeResult] = None
        last: Optional[ProbeResult] = None
        sent = 0
        while sent < attempts:
            remaining = deadline - time.monotonic()
            if remaining <= 0 or (cancel is not None and cancel.is_set()):
                break
            last = self.ping(address, timeout=remaining, cancel=cancel)
            sent += 1
            if last.success:
                if best is None or last.rtt < best.rtt:
                    best = last
                if best.rtt < cutoff:
                    break
            elif last.failure in (ProbeFailure.PERMISSION_DENIED, ProbeFailure.ABANDONED):
                break

        if best is not None:
            logging.debug("%s (%s) best rtt %.1f ms after %d attempt(s)", address.target, address.ip, best.rtt * 1e3, sent)
            return ProbeResult.ok(address, best.rtt, attempts=sent)
        if last is None:
            return ProbeResult.failed(address, ProbeFailure.DEADLINE_EXCEEDED, attempts=0)
        if last.failure is ProbeFailure.ABANDONED:
            return ProbeResult.failed(address, ProbeFailure.ABANDONED, attempts=sent)
        logging.debug("%s (%s) failed: %s", address.target, address.ip, last.failure.value)
        return ProbeResult.failed(address, last.failure, detail=last.detail, attempts=sent)

    def abort(self) -> None:
        self.transport.abort_pending()


def _classify(exc: OSError) -> ProbeFailure:
    if isinstance(exc, PermissionError) or exc.errno in _PERMISSION_ERRNOS:
        return ProbeFailure.PERMISSION_DENIED
    if exc.errno == errno.ECANCELED:
        # transport already aborted for this run
        return ProbeFailure.ABANDONED
    if exc.errno in _UNREACHABLE_ERRNOS:
        return ProbeFailure.UNREACHABLE
    return ProbeFailure.IO_ERROR
