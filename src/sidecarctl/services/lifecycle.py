"""LifecycleCoordinator — fan-out start and coordinated shutdown.

The coordinator exclusively owns its servers. ``run_all`` launches every
server on its own thread; ``shutdown`` runs once, stops every server
concurrently and reports failure only after all of them were given the
chance to stop.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

import structlog

from sidecarctl.errors import ShutdownError
from sidecarctl.infrastructure.http.dualstack import DEFAULT_STOP_TIMEOUT
from sidecarctl.services.shutdown import ShutdownToken

logger = structlog.get_logger(__name__)

LAUNCH_TIMEOUT = 5.0


class ManagedServer(Protocol):
    """What the coordinator needs from a server."""

    name: str

    def start(self) -> None: ...

    def stop(self, timeout: float = ...) -> None: ...

    def wait_running(self, timeout: float | None = None) -> bool: ...


class LifecycleCoordinator:
    """Start every registered server and stop them together once.

    Parameters:
        token: Cancellation token fired by signals or by :meth:`shutdown`.
        stop_timeout: Bound passed to each server's ``stop``.
    """

    def __init__(
        self,
        token: ShutdownToken | None = None,
        *,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
    ) -> None:
        self.token = token or ShutdownToken()
        self.stop_timeout = stop_timeout
        self._servers: list[ManagedServer] = []
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()
        self._shutdown_started = False

    @property
    def servers(self) -> tuple[ManagedServer, ...]:
        return tuple(self._servers)

    def register(self, server: ManagedServer) -> None:
        """Take ownership of *server*.

        Raises:
            RuntimeError: Shutdown was already triggered.
        """
        with self._lock:
            if self._shutdown_started or self.token.is_set():
                msg = f"cannot register {server.name}: shutdown already triggered"
                raise RuntimeError(msg)
            self._servers.append(server)

    def _serve(self, server: ManagedServer) -> None:
        try:
            server.start()
        except Exception as exc:
            logger.error("server exited with error", server=server.name, error=str(exc))

    def run_all(self) -> None:
        """Launch each server's blocking ``start`` on its own thread.

        Returns once every server reports it is running.
        """
        for server in self._servers:
            thread = threading.Thread(
                target=self._serve,
                args=(server,),
                name=f"{server.name}-server",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        for server in self._servers:
            if not server.wait_running(LAUNCH_TIMEOUT):
                logger.warning("server did not report running", server=server.name)
        logger.info("servers launched", count=len(self._servers))

    def shutdown(self, reason: str) -> None:
        """Stop every server concurrently. Later calls are ignored.

        Raises:
            ShutdownError: At least one server failed to stop cleanly. Raised
                only after every stop attempt finished.
        """
        with self._lock:
            if self._shutdown_started:
                logger.debug("shutdown ignored", reason=reason)
                return
            self._shutdown_started = True
        self.token.trigger(reason)

        logger.info("shutting down", reason=reason, servers=len(self._servers))
        errors: list[BaseException] = []
        if self._servers:
            with ThreadPoolExecutor(
                max_workers=len(self._servers), thread_name_prefix="shutdown"
            ) as pool:
                futures = [
                    pool.submit(server.stop, self.stop_timeout) for server in self._servers
                ]
                for server, future in zip(self._servers, futures, strict=True):
                    error = future.exception()
                    if error is not None:
                        logger.error("server failed to stop", server=server.name, error=str(error))
                        errors.append(error)

        if errors:
            raise ShutdownError(errors)
        logger.info("shutdown complete")

    def run_until_shutdown(self) -> None:
        """Block until the token fires, then shut down with its reason.

        Raises:
            ShutdownError: Propagated from :meth:`shutdown`.
        """
        reason = self.token.wait()
        self.shutdown(reason or "shutdown")
