"""Tests for RouteTable dispatch and ListenerSpec."""

from __future__ import annotations

import asyncio

import pytest
from structlog.testing import capture_logs

from sidecarctl.infrastructure.http.routes import (
    AddressFamily,
    ListenerSpec,
    RouteTable,
    Receive,
    Scope,
    Send,
    send_text,
)
from tests.conftest import asgi_get


def _app(body: str):
    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        await send_text(send, body)

    return app


class TestRouteTable:
    def test_exact_match(self) -> None:
        routes = RouteTable()
        routes.add("/metrics", _app("metrics"))
        assert asgi_get(routes, "/metrics") == (200, "metrics")

    def test_exact_path_does_not_match_children(self) -> None:
        routes = RouteTable()
        routes.add("/metrics", _app("metrics"))
        status, _ = asgi_get(routes, "/metrics/extra")
        assert status == 404

    def test_subtree_longest_prefix_wins(self) -> None:
        routes = RouteTable()
        routes.add("/debug/", _app("debug"))
        routes.add("/debug/pprof/", _app("pprof"))
        assert asgi_get(routes, "/debug/pprof/anything")[1] == "pprof"
        assert asgi_get(routes, "/debug/other")[1] == "debug"

    def test_exact_beats_subtree(self) -> None:
        routes = RouteTable()
        routes.add("/debug/pprof/", _app("index"))
        routes.add("/debug/pprof/heap", _app("heap"))
        assert asgi_get(routes, "/debug/pprof/heap")[1] == "heap"

    def test_unknown_path_is_404(self) -> None:
        status, body = asgi_get(RouteTable(), "/nowhere")
        assert status == 404
        assert "/nowhere" in body

    def test_paths_sorted(self) -> None:
        routes = RouteTable()
        routes.add("/b", _app(""))
        routes.add("/a/", _app(""))
        assert routes.paths() == ["/a/", "/b"]

    def test_duplicate_rejected(self) -> None:
        routes = RouteTable()
        routes.add("/metrics", _app(""))
        with pytest.raises(ValueError, match="duplicate"):
            routes.add("/metrics", _app(""))

    def test_relative_path_rejected(self) -> None:
        with pytest.raises(ValueError):
            RouteTable().add("metrics", _app(""))

    def test_frozen_table_rejects_additions(self) -> None:
        routes = RouteTable()
        routes.freeze()
        assert routes.frozen
        with pytest.raises(RuntimeError, match="frozen"):
            routes.add("/metrics", _app(""))

    def test_request_is_logged_with_status(self) -> None:
        routes = RouteTable()
        routes.add("/metrics", _app("metrics"))
        with capture_logs() as logs:
            asgi_get(routes, "/metrics")
            asgi_get(routes, "/missing")
        requests = [entry for entry in logs if entry["event"] == "request"]
        assert [(r["path"], r["status"]) for r in requests] == [
            ("/metrics", 200),
            ("/missing", 404),
        ]
        assert requests[0]["method"] == "GET"
        assert requests[0]["client"] == "127.0.0.1"
        assert requests[0]["log_level"] == "debug"

    def test_non_http_scope_is_ignored(self) -> None:
        sent: list[object] = []

        async def receive() -> dict[str, object]:
            return {"type": "lifespan.startup"}

        async def send(message: object) -> None:
            sent.append(message)

        asyncio.run(RouteTable()({"type": "lifespan"}, receive, send))
        assert sent == []


class TestListenerSpec:
    def test_ipv4_address(self) -> None:
        spec = ListenerSpec(AddressFamily.IPV4, "127.0.0.1", 8081, RouteTable())
        assert spec.address == "127.0.0.1:8081"

    def test_ipv6_address_is_bracketed(self) -> None:
        spec = ListenerSpec(AddressFamily.IPV6, "::1", 8081, RouteTable())
        assert spec.address == "[::1]:8081"

    def test_socket_families(self) -> None:
        import socket

        assert AddressFamily.IPV4.socket_family == socket.AF_INET
        assert AddressFamily.IPV6.socket_family == socket.AF_INET6
