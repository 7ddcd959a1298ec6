"""Infrastructure layer — sockets, uvicorn listeners, dual-stack servers.

This layer depends on stdlib, uvicorn, structlog, the frozen config models
and the logging context helpers. It must never import from diagnostics,
services, or cli.
"""
