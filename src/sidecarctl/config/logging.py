"""structlog configuration for sidecarctl.

Two output modes, both on stderr:
- Human (default): colored key/value lines when attached to a terminal
- JSON (--log-json): one JSON object per line, tracebacks as structured data

uvicorn's stdlib loggers share the same handler and renderer. Events logged
while serving carry the ``server``, ``family`` and ``address`` bound by
:func:`listener_context`, including uvicorn's own records.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

PACKAGE_LOGGER = "sidecarctl"

# uvicorn's startup banner and lifecycle chatter are INFO; only surface them
# with --verbose. Access lines come from RouteTable instead.
SERVER_LOGGERS = ("uvicorn", "uvicorn.error")
ACCESS_LOGGER = "uvicorn.access"


def _renderer(log_json: bool) -> structlog.types.Processor:
    if log_json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(
    *,
    verbose: bool = False,
    log_json: bool = False,
) -> None:
    """Route structlog, sidecarctl and uvicorn logging through one stderr handler.

    Args:
        verbose: Emit DEBUG events (per-request lines, layer merges) and
            uvicorn's INFO records. Otherwise the package logs at INFO and
            uvicorn at WARNING.
        log_json: Use the JSON renderer instead of the console renderer.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if log_json:
        shared_processors.append(structlog.processors.dict_tracebacks)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(log_json),
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.WARNING)

    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG if verbose else logging.INFO)
    for name in SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers.clear()
        server_logger.propagate = True
        server_logger.setLevel(logging.INFO if verbose else logging.WARNING)
    access_logger = logging.getLogger(ACCESS_LOGGER)
    access_logger.handlers.clear()
    access_logger.propagate = False


@contextmanager
def listener_context(*, server: str, family: str, address: str) -> Iterator[None]:
    """Bind listener identity to every event logged in this context.

    Used around the lifetime of a serving thread; uvicorn copies the
    context into its event loop, so request and shutdown records inherit it.
    """
    with structlog.contextvars.bound_contextvars(server=server, family=family, address=address):
        yield
