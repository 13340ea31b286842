from __future__ import annotations

import ipaddress
import logging
import socket
import threading
import time
from typing import Dict, Iterable, List, Optional, Union

from multiping.models import Address, AddressFamily, Resolution


def parse_literal(target: str) -> Optional[Address]:
    """Return an Address if `target` is an IPv4/IPv6 literal, else None."""
    try:
        ip = ipaddress.ip_address(target)
    except ValueError:
        return None
    family = socket.AF_INET if ip.version == 4 else socket.AF_INET6
    return Address(target=target, ip=target, family=family)


class Resolver:
    """Turns target specifiers into addresses, all lookups in parallel.

    `getaddrinfo` cannot be interrupted, so each lookup runs on its own daemon
    thread and anything still pending after `timeout` seconds is reported as a
    resolution failure for that target. The thread is left to finish in the
    background and does not hold up interpreter exit.
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout

    def resolve(self, targets: Iterable[str], family: AddressFamily = AddressFamily.ANY) -> Resolution:
        targets = list(dict.fromkeys(targets))
        resolution = Resolution()
        found: Dict[str, Union[List[Address], OSError]] = {}
        lock = threading.Lock()

        def lookup(target: str) -> None:
            try:
                outcome: Union[List[Address], OSError] = self._lookup(target)
            except OSError as exc:
                outcome = exc
            with lock:
                found[target] = outcome

        threads: List[threading.Thread] = []
        for target in targets:
            literal = parse_literal(target)
            if literal is not None:
                found[target] = [literal]
                continue
            thread = threading.Thread(target=lookup, args=(target,), name=f"resolve-{target}", daemon=True)
            thread.start()
            threads.append(thread)

        deadline = time.monotonic() + self.timeout
        for thread in threads:
            thread.join(max(0.0, deadline - time.monotonic()))

        with lock:
            outcomes = dict(found)
        for target in targets:
            outcome = outcomes.get(target)
            if outcome is None:
                resolution.errors[target] = "resolution timed out"
            elif isinstance(outcome, OSError):
                resolution.errors[target] = _describe(outcome)

        for target in targets:
            if target in resolution.errors:
                logging.warning("Cannot resolve %s: %s", target, resolution.errors[target])
                continue
            matching = [addr for addr in outcomes[target] if family.accepts(addr.family)]
            if not matching:
                resolution.errors[target] = f"no {family.value} address"
                logging.warning("%s has no %s address", target, family.value)
                continue
            logging.debug("%s resolved to %s", target, ", ".join(a.ip for a in matching))
            resolution.addresses.extend(matching)
        return resolution

    def _lookup(self, target: str) -> List[Address]:
        infos = socket.getaddrinfo(target, None, type=socket.SOCK_DGRAM)
        addresses: List[Address] = []
        seen = set()
        for fam, _, _, _, sockaddr in infos:
            if fam not in (socket.AF_INET, socket.AF_INET6):
                continue
            ip = sockaddr[0]
            if ip in seen:
                continue
            seen.add(ip)
            addresses.append(Address(target=target, ip=ip, family=fam))
        return addresses


def _describe(exc: OSError) -> str:
    if isinstance(exc, socket.gaierror) and len(exc.args) > 1:
        return str(exc.args[1])
    return exc.strerror or str(exc)
