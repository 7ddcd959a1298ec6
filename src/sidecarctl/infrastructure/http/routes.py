"""Route tables and listener specs.

A :class:`RouteTable` is an ASGI application dispatching on the request
path. Paths ending in ``/`` match their whole subtree (longest prefix wins);
other paths match exactly. Once a server owns the table it is frozen, so
both listeners only ever read it.
"""

from __future__ import annotations

import enum
import socket
import time
from collections.abc import Awaitable, Callable, MutableMapping
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]


class AddressFamily(enum.Enum):
    IPV4 = "ipv4"
    IPV6 = "ipv6"

    @property
    def socket_family(self) -> socket.AddressFamily:
        return socket.AF_INET if self is AddressFamily.IPV4 else socket.AF_INET6


async def send_text(
    send: Send,
    body: str,
    status: int = 200,
    content_type: str = "text/plain; charset=utf-8",
) -> None:
    """Send a complete plain-text response."""
    payload = body.encode("utf-8")
    await send(
        {
            "type": "http.response.start",
            "status": status,
            "headers": [
                (b"content-type", content_type.encode("latin-1")),
                (b"content-length", str(len(payload)).encode("latin-1")),
                (b"x-content-type-options", b"nosniff"),
            ],
        }
    )
    await send({"type": "http.response.body", "body": payload})


async def not_found(scope: Scope, receive: Receive, send: Send) -> None:
    await send_text(send, f"404 page not found: {scope.get('path', '')}\n", status=404)


class RouteTable:
    """Path → ASGI app mapping shared by both listeners of a server.

    Every HTTP request is logged at debug level with its status and
    duration, carrying whatever listener context the serving thread bound.
    """

    def __init__(self) -> None:
        self._exact: dict[str, ASGIApp] = {}
        self._subtrees: dict[str, ASGIApp] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def add(self, path: str, app: ASGIApp) -> None:
        if self._frozen:
            msg = f"route table is frozen; cannot add {path}"
            raise RuntimeError(msg)
        if not path.startswith("/"):
            msg = f"route path must start with '/': {path!r}"
            raise ValueError(msg)
        table = self._subtrees if path.endswith("/") else self._exact
        if path in table:
            msg = f"duplicate route: {path}"
            raise ValueError(msg)
        table[path] = app

    def freeze(self) -> None:
        self._frozen = True

    def paths(self) -> list[str]:
        return sorted([*self._exact, *self._subtrees])

    def match(self, path: str) -> ASGIApp | None:
        app = self._exact.get(path)
        if app is not None:
            return app
        best = ""
        for prefix in self._subtrees:
            if path.startswith(prefix) and len(prefix) > len(best):
                best = prefix
        return self._subtrees.get(best) if best else None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return
        path = scope.get("path") or "/"
        app = self.match(path) or not_found
        status: int | None = None

        async def recording_send(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
            await send(message)

        started = time.perf_counter()
        try:
            await app(scope, receive, recording_send)
        finally:
            client = scope.get("client")
            logger.debug(
                "request",
                method=scope.get("method"),
                path=path,
                status=status,
                client=client[0] if client else None,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )


@dataclass(frozen=True)
class ListenerSpec:
    """Declarative description of one listener of a dual-stack server."""

    family: AddressFamily
    host: str
    port: int
    routes: RouteTable

    @property
    def address(self) -> str:
        if self.family is AddressFamily.IPV6:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"
