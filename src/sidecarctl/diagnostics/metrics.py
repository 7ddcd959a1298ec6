"""Prometheus scrape endpoint."""

from __future__ import annotations

from prometheus_client import REGISTRY, CollectorRegistry, make_asgi_app

from sidecarctl.infrastructure.http.routes import RouteTable

METRICS_PATH = "/metrics"


def build_metrics_routes(registry: CollectorRegistry = REGISTRY) -> RouteTable:
    """Route table exposing *registry* in the Prometheus exposition formats."""
    routes = RouteTable()
    routes.add(METRICS_PATH, make_asgi_app(registry))
    return routes
