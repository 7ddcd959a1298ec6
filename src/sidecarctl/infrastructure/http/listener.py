"""One address family of a dual-stack server.

:class:`Listener` binds a socket for one :class:`ListenerSpec` and serves the
spec's route table on it with a uvicorn server until closed. Errors are
classified against a stopping intent shared with the sibling listener: a
failure seen after the owner asked to stop is expected and stays quiet; any
other failure is recorded as a :class:`ListenerBindError` and logged without
touching the sibling.
"""

from __future__ import annotations

import socket
import threading

import structlog
import uvicorn

from sidecarctl.config.logging import listener_context
from sidecarctl.errors import ListenerBindError, ShutdownTimeoutError
from sidecarctl.infrastructure.http.routes import AddressFamily, ListenerSpec

logger = structlog.get_logger(__name__)

BACKLOG = 128
KEEP_ALIVE_TIMEOUT = 5
# Time allowed after force_exit for uvicorn to cancel in-flight requests.
FORCE_EXIT_GRACE = 2.0


def bind_socket(spec: ListenerSpec) -> socket.socket:
    """Bind and listen on *spec*'s address; IPv6 sockets never accept IPv4."""
    sock = socket.socket(spec.family.socket_family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if spec.family is AddressFamily.IPV6:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        sock.bind((spec.host, spec.port))
        sock.listen(BACKLOG)
    except OSError:
        sock.close()
        raise
    return sock


def build_server(spec: ListenerSpec) -> uvicorn.Server:
    """A uvicorn server for *spec*'s route table that leaves logging and signals alone."""
    config = uvicorn.Config(
        spec.routes,
        interface="asgi3",
        http="h11",
        loop="asyncio",
        ws="none",
        lifespan="off",
        proxy_headers=False,
        log_config=None,
        access_log=False,
        timeout_keep_alive=KEEP_ALIVE_TIMEOUT,
    )
    return uvicorn.Server(config)


class Listener:
    """Serve one :class:`ListenerSpec`; close it at most once."""

    def __init__(
        self,
        spec: ListenerSpec,
        stopping: threading.Event,
        *,
        server_name: str = "",
    ) -> None:
        self.spec = spec
        self.server_name = server_name
        self.error: ListenerBindError | None = None
        self._stopping = stopping
        self._lock = threading.Lock()
        self._server: uvicorn.Server | None = None
        self._sock: socket.socket | None = None
        self._bound = threading.Event()
        self._done = threading.Event()

    @property
    def family(self) -> AddressFamily:
        return self.spec.family

    def wait_bound(self, timeout: float | None = None) -> bool:
        """Wait until the bind attempt finished, successfully or not."""
        return self._bound.wait(timeout)

    def _bind(self) -> tuple[uvicorn.Server, socket.socket] | None:
        with self._lock:
            if self._stopping.is_set():
                return None
            try:
                sock = bind_socket(self.spec)
            except OSError as exc:
                msg = f"failed to bind {self.family.value} listener on {self.spec.address}: {exc}"
                raise ListenerBindError(
                    msg, family=self.family.value, address=self.spec.address
                ) from exc
            self._server, self._sock = build_server(self.spec), sock
            return self._server, sock

    def _report(self, exc: ListenerBindError) -> None:
        if self._stopping.is_set():
            logger.debug("listener closed during stop", error=str(exc))
            return
        self.error = exc
        logger.error("listener failed", error=str(exc))

    def serve(self) -> None:
        """Bind and serve until closed. Failures are recorded, never raised."""
        with listener_context(
            server=self.server_name, family=self.family.value, address=self.spec.address
        ):
            try:
                self._serve()
            finally:
                self._done.set()

    def _serve(self) -> None:
        try:
            bound = self._bind()
        except ListenerBindError as exc:
            self._bound.set()
            self._report(exc)
            return
        self._bound.set()
        if bound is None:
            return

        server, sock = bound
        try:
            server.run(sockets=[sock])
        except (Exception, SystemExit) as exc:
            # uvicorn exits with SystemExit when startup fails.
            msg = f"{self.family.value} listener on {self.spec.address} stopped serving: {exc}"
            err = ListenerBindError(msg, family=self.family.value, address=self.spec.address)
            err.__cause__ = exc
            self._report(err)
        finally:
            sock.close()

    def close(self, timeout: float) -> None:
        """Stop accepting, let in-flight requests finish, release the socket.

        uvicorn closes the listening socket first and then waits up to
        *timeout* for in-flight requests. When the serving thread is still
        busy at the deadline it is told to force-exit, which cancels those
        requests, and the overrun is raised.

        Raises:
            ShutdownTimeoutError: The listener did not drain within *timeout*.
        """
        with self._lock:
            server, self._server = self._server, None
            sock, self._sock = self._sock, None
        if server is None or sock is None:
            return

        server.config.timeout_graceful_shutdown = timeout
        server.should_exit = True
        drained = self._done.wait(timeout)
        if not drained:
            server.force_exit = True
            self._done.wait(FORCE_EXIT_GRACE)
        sock.close()

        if not drained:
            msg = (
                f"{self.family.value} listener on {self.spec.address} "
                f"did not stop within {timeout:.1f}s"
            )
            raise ShutdownTimeoutError(msg, address=self.spec.address, timeout=timeout)
        logger.debug("listener closed", server=self.server_name, address=self.spec.address)
