"""Runtime introspection endpoint under ``/debug/pprof/``.

Profiles are produced by the interpreter's own facilities: ``sys`` and
``traceback`` for thread stacks and CPU samples, ``tracemalloc`` for
allocation sites and ``gc`` for collector statistics. Heap profiles need
tracemalloc to be tracing (``PYTHONTRACEMALLOC=1`` or ``tracemalloc.start()``).
"""

from __future__ import annotations

import asyncio
import contextlib
import gc
import sys
import threading
import time
import traceback
import tracemalloc
from collections import Counter
from dataclasses import dataclass, field
from types import FrameType
from urllib.parse import parse_qs

from sidecarctl.infrastructure.http.routes import (
    ASGIApp,
    Receive,
    RouteTable,
    Scope,
    Send,
    not_found,
    send_text,
)

PPROF_PREFIX = "/debug/pprof/"
DEFAULT_LIMIT = 25
DEFAULT_PROFILE_SECONDS = 30.0
MAX_PROFILE_SECONDS = 300.0
SAMPLE_INTERVAL = 0.01


def _query(scope: Scope) -> dict[str, list[str]]:
    return parse_qs(scope.get("query_string", b"").decode("latin-1"))


def _limit(scope: Scope) -> int:
    try:
        return max(int(_query(scope).get("limit", [DEFAULT_LIMIT])[0]), 1)
    except ValueError:
        return DEFAULT_LIMIT


async def cmdline(scope: Scope, receive: Receive, send: Send) -> None:
    """Process command line, arguments separated by NUL bytes."""
    await send_text(send, "\x00".join(sys.argv))


async def threads(scope: Scope, receive: Receive, send: Send) -> None:
    """Current stack of every live thread."""
    names = {thread.ident: thread for thread in threading.enumerate()}
    frames = sys._current_frames()
    sections = [f"threads: {len(frames)}\n"]
    for ident, frame in sorted(frames.items()):
        thread = names.get(ident)
        label = thread.name if thread else "<unknown>"
        daemon = " daemon" if thread is not None and thread.daemon else ""
        stack = "".join(traceback.format_stack(frame))
        sections.append(f"thread {ident} [{label}]{daemon}:\n{stack}")
    await send_text(send, "\n".join(sections))


async def heap(scope: Scope, receive: Receive, send: Send) -> None:
    """Top allocation sites by size; ``?limit=N`` bounds the list."""
    if not tracemalloc.is_tracing():
        await send_text(
            send,
            "tracemalloc is not tracing; start the process with PYTHONTRACEMALLOC=1\n",
            status=503,
        )
        return
    limit = _limit(scope)
    snapshot = tracemalloc.take_snapshot()
    stats = snapshot.statistics("lineno")
    current, peak = tracemalloc.get_traced_memory()
    lines = [f"heap profile: current={current} peak={peak} sites={len(stats)}"]
    lines.extend(str(stat) for stat in stats[:limit])
    await send_text(send, "\n".join(lines) + "\n")


async def gc_stats(scope: Scope, receive: Receive, send: Send) -> None:
    """Collector counts, thresholds and per-generation statistics."""
    lines = [
        f"enabled: {gc.isenabled()}",
        f"count: {gc.get_count()}",
        f"threshold: {gc.get_threshold()}",
        f"garbage: {len(gc.garbage)}",
    ]
    for generation, stats in enumerate(gc.get_stats()):
        fields = " ".join(f"{key}={value}" for key, value in sorted(stats.items()))
        lines.append(f"generation {generation}: {fields}")
    await send_text(send, "\n".join(lines) + "\n")


def _label(frame: FrameType) -> str:
    code = frame.f_code
    return f"{code.co_filename}:{code.co_firstlineno}({code.co_name})"


@dataclass
class CPUProfile:
    """Stack samples of every thread except the sampler, taken at a fixed interval."""

    interval: float
    duration: float = 0.0
    ticks: int = 0
    stacks: Counter[tuple[str, ...]] = field(default_factory=Counter)

    @property
    def samples(self) -> int:
        return sum(self.stacks.values())

    def add(self, frame: FrameType | None) -> None:
        stack: list[str] = []
        while frame is not None:
            stack.append(_label(frame))
            frame = frame.f_back
        if stack:
            self.stacks[tuple(reversed(stack))] += 1

    def top(self, limit: int) -> str:
        """Functions ranked by samples on top of the stack, then anywhere in it."""
        flat: Counter[str] = Counter()
        cum: Counter[str] = Counter()
        for stack, count in self.stacks.items():
            flat[stack[-1]] += count
            for label in set(stack):
                cum[label] += count
        total = self.samples or 1
        lines = [
            f"cpu profile: duration={self.duration:.2f}s interval={self.interval * 1000:.0f}ms "
            f"ticks={self.ticks} samples={self.samples}",
            f"{'flat':>8} {'flat%':>7} {'cum':>8} {'cum%':>7}  function",
        ]
        ranked = sorted(cum, key=lambda label: (-flat[label], -cum[label], label))
        for label in ranked[:limit]:
            lines.append(
                f"{flat[label]:>8} {flat[label] / total:>7.1%} "
                f"{cum[label]:>8} {cum[label] / total:>7.1%}  {label}"
            )
        return "\n".join(lines) + "\n"

    def collapsed(self) -> str:
        """Folded stacks, one ``frame;frame;frame count`` line per distinct stack."""
        return "".join(
            f"{';'.join(stack)} {count}\n" for stack, count in sorted(self.stacks.items())
        )


def sample_cpu(
    seconds: float, stop: threading.Event, interval: float = SAMPLE_INTERVAL
) -> CPUProfile:
    """Sample every other thread's stack for *seconds* or until *stop* is set."""
    profile = CPUProfile(interval=interval)
    me = threading.get_ident()
    started = time.monotonic()
    deadline = started + seconds
    while time.monotonic() < deadline and not stop.is_set():
        for ident, frame in sys._current_frames().items():
            if ident != me:
                profile.add(frame)
        profile.ticks += 1
        stop.wait(interval)
    profile.duration = time.monotonic() - started
    return profile


def _profile_seconds(scope: Scope) -> float:
    raw = _query(scope).get("seconds", [str(DEFAULT_PROFILE_SECONDS)])[0]
    seconds = float(raw)
    if not 0 < seconds <= MAX_PROFILE_SECONDS:
        msg = f"seconds must be in (0, {MAX_PROFILE_SECONDS:g}]"
        raise ValueError(msg)
    return seconds


async def profile(scope: Scope, receive: Receive, send: Send) -> None:
    """Sampled CPU profile over ``?seconds=N``; ``?format=collapsed`` for folded stacks."""
    try:
        seconds = _profile_seconds(scope)
    except ValueError as exc:
        await send_text(send, f"bad seconds: {exc}\n", status=400)
        return

    loop = asyncio.get_running_loop()
    done: asyncio.Future[CPUProfile] = loop.create_future()
    stop = threading.Event()

    def settle(result: CPUProfile) -> None:
        if not done.done():
            done.set_result(result)

    def run() -> None:
        result = sample_cpu(seconds, stop)
        # The loop is gone when the request was cancelled by shutdown.
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(settle, result)

    threading.Thread(target=run, name="pprof-cpu-sampler", daemon=True).start()
    try:
        result = await done
    finally:
        stop.set()

    if _query(scope).get("format", [""])[0] == "collapsed":
        await send_text(send, result.collapsed())
    else:
        await send_text(send, result.top(_limit(scope)))


PROFILES: dict[str, tuple[ASGIApp, str]] = {
    "cmdline": (cmdline, "The command line invocation of the current process"),
    "profile": (profile, "Sampled CPU profile; ?seconds=N sets the window (default 30)"),
    "threads": (threads, "Stack traces of all current threads"),
    "heap": (heap, "Top allocation sites sampled by tracemalloc"),
    "gc": (gc_stats, "Garbage collector counts and per-generation statistics"),
}


async def index(scope: Scope, receive: Receive, send: Send) -> None:
    """List the available profiles; unknown names under the prefix are 404."""
    path = scope.get("path", "")
    name = path[len(PPROF_PREFIX) :] if path.startswith(PPROF_PREFIX) else ""
    if name:
        await not_found(scope, receive, send)
        return
    lines = [f"{PPROF_PREFIX}", "", "Profile descriptions:", ""]
    for profile_name, (_handler, description) in PROFILES.items():
        lines.append(f"  {PPROF_PREFIX}{profile_name}: {description}")
    await send_text(send, "\n".join(lines) + "\n")


def build_pprof_routes() -> RouteTable:
    """Route table with the index and every profile under ``/debug/pprof/``."""
    routes = RouteTable()
    routes.add(PPROF_PREFIX, index)
    for profile_name, (handler, _description) in PROFILES.items():
        routes.add(f"{PPROF_PREFIX}{profile_name}", handler)
    return routes
