"""
Command line entry point: pings several hosts at once to test outside
connectivity and reports the best round-trip time as a monitoring plugin.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from multiping.check import run_check
from multiping.config_loader import load_config
from multiping.errors import ConfigError, MultipingError
from multiping.models import AddressFamily, Config, DrainPolicy
from multiping.output import PLUGIN_NAME, render
from multiping.status import Status


def setup_logging(log_path: Optional[Path], verbose: bool = False) -> None:
    # stdout carries the plugin output line, so log records go to stderr
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    error: Optional[OSError] = None
    if log_path is not None:
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
        except OSError as exc:
            error = exc
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(message)s",
        handlers=handlers,
        force=True,
    )
    if error is not None:
        raise ConfigError(f"cannot open log file {log_path}: {error.strerror or error}") from error


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog=PLUGIN_NAME,
        description="Pings several hosts at once to test outside connectivity.",
    )
    parser.add_argument("targets", nargs="*", metavar="TARGET", help="Ping targets (hostname or IP address)")
    parser.add_argument("-w", "--warning", type=float, metavar="MS", help="WARN if no target's rtt is below (default: 50)")
    parser.add_argument("-c", "--critical", type=float, metavar="MS", help="CRIT if no target's rtt is below (default: 500)")
    family = parser.add_mutually_exclusive_group()
    family.add_argument("-4", "--ipv4", action="store_true", help="Ping only IPv4 addresses")
    family.add_argument("-6", "--ipv6", action="store_true", help="Ping only IPv6 addresses")
    parser.add_argument("-t", "--timeout", type=float, metavar="SEC", help="Per-probe timeout in seconds (default: 1)")
    parser.add_argument("-d", "--deadline", type=float, metavar="SEC", help="Overall time limit in seconds (default: 10)")
    parser.add_argument("-a", "--attempts", type=int, metavar="N", help="Echo requests per address (default: 5)")
    parser.add_argument("--first", action="store_true", help="Stop as soon as any target answers.")
    parser.add_argument("--config", help="Path to config JSON; command line options take precedence")
    parser.add_argument("--log-file", help="Also write log messages to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug messages to stderr")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Config:
    config = load_config(args.config)

    if args.targets:
        config.targets = list(args.targets)
    if args.warning is not None:
        config.warning_ms = args.warning
    if args.critical is not None:
        config.critical_ms = args.critical
    if args.ipv4:
        config.family = AddressFamily.IPV4
    elif args.ipv6:
        config.family = AddressFamily.IPV6
    if args.timeout is not None:
        config.probe_timeout = args.timeout
    if args.deadline is not None:
        config.deadline = args.deadline
    if args.attempts is not None:
        config.attempts = args.attempts
    if args.first:
        config.policy = DrainPolicy.FIRST
    if args.log_file:
        config.log_path = args.log_file

    config.validate()
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(None, verbose=args.verbose)

    try:
        config = build_config(args)
        if config.log_path:
            setup_logging(Path(config.log_path), verbose=args.verbose)
        verdict = run_check(config)
    except MultipingError as exc:
        logging.debug("Check aborted", exc_info=True)
        cause = f" ({exc.__cause__})" if exc.__cause__ is not None else ""
        print(f"{PLUGIN_NAME}: error: {exc}{cause}", file=sys.stderr)
        return int(Status.UNKNOWN)

    print(render(verdict))
    return int(verdict.status)


if __name__ == "__main__":
    sys.exit(main())
