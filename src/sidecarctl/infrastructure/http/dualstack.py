"""DualStackServer — one route table served over IPv4 and IPv6.

The two families are independent listeners rather than one dual-stack
socket, so each can fail, be observed and be stopped on its own.

State machine::

    NOT_STARTED --start()--> RUNNING --stop()--> STOPPED

``stop()`` before ``start()`` and any ``stop()`` after the first are
successful no-ops.
"""

from __future__ import annotations

import enum
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

import structlog

from sidecarctl.errors import ListenerBindError
from sidecarctl.infrastructure.http.listener import Listener
from sidecarctl.infrastructure.http.routes import AddressFamily, ListenerSpec, RouteTable

if TYPE_CHECKING:
    from sidecarctl.config.models import ListenerConfig

logger = structlog.get_logger(__name__)

DEFAULT_STOP_TIMEOUT = 5.0


class ServerState(enum.Enum):
    NOT_STARTED = "not-started"
    RUNNING = "running"
    STOPPED = "stopped"


class DualStackServer:
    """Own an IPv4 and an IPv6 listener sharing one route table.

    Parameters:
        name: Role name used in logs (``"metrics"``, ``"pprof"``).
        ipv4: Spec for the IPv4 listener.
        ipv6: Spec for the IPv6 listener; must carry the same route table
            object as *ipv4*.
    """

    def __init__(self, name: str, ipv4: ListenerSpec, ipv6: ListenerSpec) -> None:
        if ipv4.family is not AddressFamily.IPV4 or ipv6.family is not AddressFamily.IPV6:
            msg = "expected one IPv4 listener and one IPv6 listener"
            raise ValueError(msg)
        if ipv4.routes is not ipv6.routes:
            msg = "dual-stack listeners must share one route table"
            raise ValueError(msg)
        ipv4.routes.freeze()

        self.name = name
        self.routes = ipv4.routes
        self._stopping = threading.Event()
        self._listeners = (
            Listener(ipv4, self._stopping, server_name=name),
            Listener(ipv6, self._stopping, server_name=name),
        )
        self._lock = threading.Lock()
        self._state = ServerState.NOT_STARTED
        self._running = threading.Event()

    @classmethod
    def from_config(
        cls, name: str, config: ListenerConfig, routes: RouteTable
    ) -> DualStackServer:
        """Derive both listener specs from a resolved listener section."""
        return cls(
            name,
            ListenerSpec(AddressFamily.IPV4, config.ipv4_host, config.port, routes),
            ListenerSpec(AddressFamily.IPV6, config.ipv6_host, config.port, routes),
        )

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def specs(self) -> tuple[ListenerSpec, ListenerSpec]:
        return self._listeners[0].spec, self._listeners[1].spec

    @property
    def failures(self) -> dict[AddressFamily, ListenerBindError]:
        """Unexpected bind/serve failures, keyed by address family."""
        return {
            listener.family: listener.error
            for listener in self._listeners
            if listener.error is not None
        }

    def wait_running(self, timeout: float | None = None) -> bool:
        """Wait until :meth:`start` has moved the server to RUNNING."""
        return self._running.wait(timeout)

    def wait_ready(self, timeout: float | None = None) -> bool:
        """Wait until both listeners finished their bind attempt."""
        if not self._running.wait(timeout):
            return False
        return all(listener.wait_bound(timeout) for listener in self._listeners)

    def start(self) -> None:
        """Serve both families; block until both listeners exit.

        Raises:
            RuntimeError: The server was already started or stopped.
        """
        with self._lock:
            if self._state is not ServerState.NOT_STARTED:
                msg = f"{self.name} server cannot start from state {self._state.value}"
                raise RuntimeError(msg)
            self._state = ServerState.RUNNING
        self._running.set()

        threads = [
            threading.Thread(
                target=listener.serve,
                name=f"{self.name}-{listener.family.value}",
                daemon=True,
            )
            for listener in self._listeners
        ]
        for thread in threads:
            thread.start()

        ipv4, ipv6 = self.specs
        for listener in self._listeners:
            listener.wait_bound()
        logger.info(
            "server started",
            server=self.name,
            ipv4=ipv4.host,
            ipv6=ipv6.host,
            port=ipv4.port,
            failed=sorted(family.value for family in self.failures),
        )

        for thread in threads:
            thread.join()

    def stop(self, timeout: float = DEFAULT_STOP_TIMEOUT) -> None:
        """Close both listeners concurrently, each bounded by *timeout*.

        The stopping intent is published before any socket is touched so a
        listener failing meanwhile is classified as an expected close. Both
        closes always run; the first error is raised after both finished.

        Raises:
            ShutdownTimeoutError: A listener overran *timeout*.
        """
        with self._lock:
            if self._state is not ServerState.RUNNING:
                logger.debug("stop ignored", server=self.name, state=self._state.value)
                return
            self._state = ServerState.STOPPED
            self._stopping.set()

        logger.info("stopping server", server=self.name, timeout=timeout)
        with ThreadPoolExecutor(
            max_workers=len(self._listeners), thread_name_prefix=f"{self.name}-stop"
        ) as pool:
            futures = [pool.submit(listener.close, timeout) for listener in self._listeners]
            errors = [future.exception() for future in futures]

        first = next((error for error in errors if error is not None), None)
        if first is not None:
            raise first
        logger.info("server stopped", server=self.name)
