"""Diagnostic roles — the Prometheus scrape endpoint and runtime introspection.

Payloads come from prometheus_client and the interpreter's own
introspection modules; this package only wires them into route tables.
"""

from sidecarctl.diagnostics.metrics import METRICS_PATH, build_metrics_routes
from sidecarctl.diagnostics.pprof import PPROF_PREFIX, build_pprof_routes
from sidecarctl.diagnostics.servers import build_servers

__all__ = [
    "METRICS_PATH",
    "PPROF_PREFIX",
    "build_metrics_routes",
    "build_pprof_routes",
    "build_servers",
]
