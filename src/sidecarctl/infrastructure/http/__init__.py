"""Dual-stack HTTP serving: one uvicorn server per address family."""

from sidecarctl.infrastructure.http.dualstack import (
    DEFAULT_STOP_TIMEOUT,
    DualStackServer,
    ServerState,
)
from sidecarctl.infrastructure.http.routes import AddressFamily, ListenerSpec, RouteTable

__all__ = [
    "DEFAULT_STOP_TIMEOUT",
    "AddressFamily",
    "DualStackServer",
    "ListenerSpec",
    "RouteTable",
    "ServerState",
]
