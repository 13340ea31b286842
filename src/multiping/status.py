from __future__ import annotations

import enum
import math


class Status(enum.IntEnum):
    """Monitoring plugin states; the value doubles as the process exit code."""

    OK = 0
    WARNING = 1
    CRITICAL = 2
    UNKNOWN = 3

    @classmethod
    def check(cls, value: float, warning: float, critical: float) -> "Status":
        if math.isnan(value):
            return cls.UNKNOWN
        if value < 0:
            raise ValueError(f"cannot classify negative value: {value}")
        if value >= critical:
            return cls.CRITICAL
        if value >= warning:
            return cls.WARNING
        return cls.OK

    def __str__(self) -> str:
        return self.name
