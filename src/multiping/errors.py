from __future__ import annotations


class MultipingError(Exception):
    """Base class for errors that abort a check run."""


class ConfigError(MultipingError):
    pass


class TransportSetupError(MultipingError):
    """The ICMP transport could not be opened (usually missing privileges)."""
