from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from multiping.aggregator import evaluate
from multiping.engine import probe_all
from multiping.icmp import IcmpTransport
from multiping.models import Config, ProbeSet, Verdict
from multiping.pinger import Pinger
from multiping.resolver import Resolver

TransportFactory = Callable[..., IcmpTransport]


def run_check(
    config: Config,
    transport_factory: TransportFactory = IcmpTransport,
    resolver: Optional[Resolver] = None,
) -> Verdict:
    """One bounded measurement round.

    Raises TransportSetupError if the ICMP sockets cannot be opened; every
    other failure ends up in the Verdict.
    """
    config.validate()
    started = time.monotonic()
    deadline = started + config.deadline

    resolver = resolver or Resolver(min(config.resolve_timeout, config.deadline))
    resolution = resolver.resolve(config.targets, config.family)
    if not resolution.addresses:
        logging.warning("None of %d target(s) resolved", len(config.targets))
        return evaluate(ProbeSet(), resolution, config.warning, config.critical)

    families = {address.family for address in resolution.addresses}
    with transport_factory(families) as transport:
        pinger = Pinger(transport, config.probe_timeout)
        probes = probe_all(
            resolution.addresses,
            pinger,
            deadline,
            attempts=config.attempts,
            cutoff=config.warning,
            policy=config.policy,
        )

    verdict = evaluate(probes, resolution, config.warning, config.critical)
    logging.info("Check finished in %.3fs: %s", time.monotonic() - started, verdict.status)
    return verdict
