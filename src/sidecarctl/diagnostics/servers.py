"""Build one dual-stack server per enabled diagnostic role."""

from __future__ import annotations

from prometheus_client import REGISTRY, CollectorRegistry

from sidecarctl.config.settings import SidecarConfig
from sidecarctl.diagnostics.metrics import build_metrics_routes
from sidecarctl.diagnostics.pprof import build_pprof_routes
from sidecarctl.infrastructure.http.dualstack import DualStackServer

METRICS_ROLE = "metrics"
PPROF_ROLE = "pprof"


def build_servers(
    config: SidecarConfig,
    *,
    registry: CollectorRegistry = REGISTRY,
) -> list[DualStackServer]:
    """Servers for the enabled roles, metrics first. No sockets are opened."""
    servers: list[DualStackServer] = []
    if config.metrics.enabled:
        routes = build_metrics_routes(registry)
        servers.append(DualStackServer.from_config(METRICS_ROLE, config.metrics, routes))
    if config.pprof.enabled:
        servers.append(DualStackServer.from_config(PPROF_ROLE, config.pprof, build_pprof_routes()))
    return servers
