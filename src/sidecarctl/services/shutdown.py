"""ShutdownToken — a process-wide cancellation token fired at most once.

Created once at startup and handed to the lifecycle coordinator. Signal
handlers only ever call :meth:`ShutdownToken.trigger`; duplicate signals
are ignored by the token itself.
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Iterable
from types import FrameType

import structlog

logger = structlog.get_logger(__name__)

SHUTDOWN_SIGNALS: tuple[str, ...] = ("SIGINT", "SIGTERM", "SIGQUIT")


class ShutdownToken:
    """One-shot trigger carrying the reason it fired."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None

    @property
    def reason(self) -> str | None:
        return self._reason

    def is_set(self) -> bool:
        return self._event.is_set()

    def trigger(self, reason: str) -> bool:
        """Fire the token. Returns True only for the call that fired it."""
        with self._lock:
            if self._event.is_set():
                logger.debug("shutdown already triggered", reason=reason, first=self._reason)
                return False
            self._reason = reason
            self._event.set()
        logger.info("shutdown triggered", reason=reason)
        return True

    def wait(self, timeout: float | None = None) -> str | None:
        """Block until fired; return the reason, or None on timeout."""
        if not self._event.wait(timeout):
            return None
        return self._reason


def install_signal_handlers(
    token: ShutdownToken,
    names: Iterable[str] = SHUTDOWN_SIGNALS,
) -> list[signal.Signals]:
    """Make each named signal trigger *token*. Must run on the main thread.

    Signals the platform does not define are skipped. Returns the signals
    that were installed.
    """

    def _handler(signum: int, _frame: FrameType | None) -> None:
        token.trigger(signal.Signals(signum).name)

    installed: list[signal.Signals] = []
    for name in names:
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        signal.signal(signum, _handler)
        installed.append(signal.Signals(signum))
    return installed
