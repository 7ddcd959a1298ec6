"""Exception hierarchy for sidecarctl.

Configuration errors abort startup before anything is served. Listener
errors are contained to one address family. Shutdown errors are collected
across every server and reported together.
"""

from __future__ import annotations


class SidecarError(Exception):
    """Base exception for all sidecarctl errors."""


class ConfigError(SidecarError):
    """Configuration could not be resolved."""


class ConfigIOError(ConfigError):
    """A required configuration file is missing or unreadable."""

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class ConfigParseError(ConfigError):
    """A document, flag or environment value failed to parse."""

    def __init__(self, message: str, *, key: str = "", source: str = "") -> None:
        self.key = key
        self.source = source
        super().__init__(message)


class ConfigValidationError(ConfigError):
    """The configuration is well formed but semantically rejected."""

    def __init__(self, message: str, *, problems: list[str] | None = None) -> None:
        self.problems = problems or []
        super().__init__(message)


class ListenerBindError(SidecarError):
    """A listener failed to bind or serve for a reason other than a requested stop."""

    def __init__(self, message: str, *, family: str = "", address: str = "") -> None:
        self.family = family
        self.address = address
        super().__init__(message)


class ShutdownTimeoutError(SidecarError):
    """A listener did not close gracefully within its timeout."""

    def __init__(self, message: str, *, address: str = "", timeout: float = 0.0) -> None:
        self.address = address
        self.timeout = timeout
        super().__init__(message)


class ShutdownError(SidecarError):
    """One or more servers failed to stop cleanly.

    Raised only after every server had its chance to stop. ``errors`` holds
    each failure in registration order.
    """

    def __init__(self, errors: list[BaseException]) -> None:
        self.errors = list(errors)
        summary = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{len(self.errors)} server(s) failed to stop: {summary}")
