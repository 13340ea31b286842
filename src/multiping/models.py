from __future__ import annotations

import enum
import math
import socket
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from multiping.errors import ConfigError
from multiping.status import Status


class AddressFamily(enum.Enum):
    ANY = "any"
    IPV4 = "ipv4"
    IPV6 = "ipv6"

    def accepts(self, family: int) -> bool:
        if self is AddressFamily.IPV4:
            return family == socket.AF_INET
        if self is AddressFamily.IPV6:
            return family == socket.AF_INET6
        return family in (socket.AF_INET, socket.AF_INET6)


class DrainPolicy(enum.Enum):
    ALL = "all"
    FIRST = "first"


class ProbeFailure(enum.Enum):
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    PERMISSION_DENIED = "permission denied"
    IO_ERROR = "i/o error"
    DEADLINE_EXCEEDED = "deadline exceeded"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class Address:
    target: str
    ip: str
    family: int

    @property
    def is_literal(self) -> bool:
        return self.target == self.ip

    def __str__(self) -> str:
        return self.ip


@dataclass(frozen=True)
class ProbeResult:
    address: Address
    rtt: Optional[float] = None
    failure: Optional[ProbeFailure] = None
    detail: Optional[str] = None
    attempts: int = 1

    def __post_init__(self) -> None:
        if (self.rtt is None) == (self.failure is None):
            raise ValueError("ProbeResult needs exactly one of rtt or failure")
        if self.rtt is not None and self.rtt < 0:
            raise ValueError(f"negative rtt: {self.rtt}")

    @property
    def success(self) -> bool:
        return self.rtt is not None

    @classmethod
    def ok(cls, address: Address, rtt: float, attempts: int = 1) -> "ProbeResult":
        return cls(address=address, rtt=rtt, attempts=attempts)

    @classmethod
    def failed(
        cls,
        address: Address,
        failure: ProbeFailure,
        detail: Optional[str] = None,
        attempts: int = 1,
    ) -> "ProbeResult":
        return cls(address=address, failure=failure, detail=detail, attempts=attempts)


class ProbeSet:
    """Write-once mapping of Address to ProbeResult for one run."""

    def __init__(self) -> None:
        self._results: Dict[Address, ProbeResult] = {}

    def record(self, result: ProbeResult) -> None:
        if result.address in self._results:
            raise ValueError(f"{result.address} already has a result")
        self._results[result.address] = result

    def get(self, address: Address) -> Optional[ProbeResult]:
        return self._results.get(address)

    def successes(self) -> List[ProbeResult]:
        return [r for r in self._results.values() if r.success]

    def __contains__(self, address: object) -> bool:
        return address in self._results

    def __iter__(self) -> Iterator[ProbeResult]:
        return iter(self._results.values())

    def __len__(self) -> int:
        return len(self._results)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProbeSet):
            return NotImplemented
        return self._results == other._results

    def __repr__(self) -> str:
        return f"ProbeSet({list(self._results.values())!r})"


@dataclass
class Resolution:
    addresses: List[Address] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass
class Config:
    targets: List[str] = field(default_factory=list)
    family: AddressFamily = AddressFamily.ANY
    warning_ms: float = 50.0
    critical_ms: float = 500.0
    probe_timeout: float = 1.0
    deadline: float = 10.0
    resolve_timeout: float = 2.0
    attempts: int = 5
    policy: DrainPolicy = DrainPolicy.ALL
    log_path: Optional[str] = None

    @property
    def warning(self) -> float:
        return self.warning_ms * 1e-3

    @property
    def critical(self) -> float:
        return self.critical_ms * 1e-3

    def validate(self) -> None:
        if not self.targets:
            raise ConfigError("no targets given")
        for name in ("warning_ms", "critical_ms", "probe_timeout", "deadline", "resolve_timeout"):
            if not math.isfinite(getattr(self, name)):
                raise ConfigError(f"{name} must be a finite number")
        if self.warning_ms < 0 or self.critical_ms < 0:
            raise ConfigError("thresholds must not be negative")
        if self.critical_ms < self.warning_ms:
            raise ConfigError(
                f"critical threshold ({self.critical_ms:g} ms) is below warning threshold ({self.warning_ms:g} ms)"
            )
        for name in ("probe_timeout", "deadline", "resolve_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.attempts < 1:
            raise ConfigError("attempts must be at least 1")


@dataclass(frozen=True)
class Verdict:
    status: Status
    best: Optional[ProbeResult]
    table: Dict[Address, Optional[float]]
    warning: float
    critical: float
    messages: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def best_rtt(self) -> Optional[float]:
        return self.best.rtt if self.best is not None else None
