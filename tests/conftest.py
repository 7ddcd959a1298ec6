"""Shared pytest fixtures and test helpers for sidecarctl tests."""

from __future__ import annotations

import asyncio
import socket
import threading
import time
import urllib.error
import urllib.request
from collections.abc import Callable, Generator
from contextlib import closing
from typing import Any

import pytest
from click.testing import CliRunner

from sidecarctl.infrastructure.http.dualstack import DualStackServer
from sidecarctl.infrastructure.http.routes import ASGIApp


def _ipv6_loopback_available() -> bool:
    if not socket.has_ipv6:
        return False
    try:
        with closing(socket.socket(socket.AF_INET6, socket.SOCK_STREAM)) as sock:
            sock.bind(("::1", 0))
    except OSError:
        return False
    return True


IPV6_AVAILABLE = _ipv6_loopback_available()

requires_ipv6 = pytest.mark.skipif(not IPV6_AVAILABLE, reason="::1 loopback not bindable")


def free_port() -> int:
    """A TCP port currently free on 127.0.0.1 and, when available, ::1."""
    for _ in range(50):
        with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as v4:
            v4.bind(("127.0.0.1", 0))
            port = v4.getsockname()[1]
            if not IPV6_AVAILABLE:
                return port
            try:
                with closing(socket.socket(socket.AF_INET6, socket.SOCK_STREAM)) as v6:
                    v6.bind(("::1", port))
            except OSError:
                continue
            return port
    raise RuntimeError("no port free on both loopback families")


_OPENER = urllib.request.build_opener(urllib.request.ProxyHandler({}))


def http_get(url: str, timeout: float = 5.0) -> tuple[int, str]:
    """GET *url* bypassing any proxy; return status and body, including error statuses."""
    try:
        with _OPENER.open(url, timeout=timeout) as response:
            return response.status, response.read().decode()
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode()


def is_reachable(host: str, port: int, timeout: float = 1.0) -> bool:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    with closing(socket.socket(family, socket.SOCK_STREAM)) as sock:
        sock.settimeout(timeout)
        return sock.connect_ex((host, port)) == 0


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def port() -> int:
    return free_port()


@pytest.fixture
def launch() -> Generator[Callable[[DualStackServer], threading.Thread]]:
    """Start servers on background threads; stop whatever is left at teardown."""
    launched: list[tuple[DualStackServer, threading.Thread]] = []

    def _launch(server: DualStackServer) -> threading.Thread:
        thread = threading.Thread(target=server.start, daemon=True)
        thread.start()
        assert server.wait_ready(5.0)
        launched.append((server, thread))
        return thread

    yield _launch

    for server, thread in launched:
        try:
            server.stop(timeout=1.0)
        except Exception:
            pass
        thread.join(2.0)


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def asgi_get(app: ASGIApp, path: str, query: str = "") -> tuple[int, str]:
    """Run one GET through an ASGI app in-process; return status and body."""
    scope = {
        "type": "http",
        "method": "GET",
        "path": path,
        "query_string": query.encode(),
        "headers": [],
        "client": ("127.0.0.1", 50000),
    }
    messages: list[dict[str, Any]] = []

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"", "more_body": False}

    async def send(message: dict[str, Any]) -> None:
        messages.append(message)

    asyncio.run(app(scope, receive, send))
    status = next(m["status"] for m in messages if m["type"] == "http.response.start")
    body = b"".join(m.get("body", b"") for m in messages if m["type"] == "http.response.body")
    return status, body.decode()
