"""Pydantic configuration models with code-baked defaults.

Section models shared by the settings object and the listener builders.
Every section is frozen; a resolved section always has concrete values.
"""

from __future__ import annotations

from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, Field, model_validator

DEFAULT_CONFIG_NAME = "config.yaml"
DEFAULT_IPV4_HOST = "127.0.0.1"
DEFAULT_IPV6_HOST = "::1"
DEFAULT_METRICS_PORT = 8081
DEFAULT_PPROF_PORT = 6060
ENV_NESTED_DELIMITER = "__"

Port = Annotated[int, Field(ge=0, le=65535)]


class TracingConfig(BaseModel):
    """[tracing] section."""

    model_config = {"frozen": True}

    enabled: bool = False
    otlp_endpoint: str = ""


class ListenerConfig(BaseModel):
    """Shared shape of a dual-stack HTTP listener section.

    An empty host or a zero port falls back to the section default, so a
    resolved listener always has concrete bind addresses.
    """

    model_config = {"frozen": True}

    _gap_filled: ClassVar[tuple[str, ...]] = ("ipv4_host", "ipv6_host", "port")

    enabled: bool = False
    ipv4_host: str = DEFAULT_IPV4_HOST
    ipv6_host: str = DEFAULT_IPV6_HOST
    port: Port = 0

    @model_validator(mode="before")
    @classmethod
    def _fill_gaps(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        filled = dict(data)
        for name in cls._gap_filled:
            if name in filled and not filled[name]:
                filled[name] = cls.model_fields[name].default
        return filled


class PProfConfig(ListenerConfig):
    """[pprof] section — the profiling/introspection endpoint."""

    port: Port = DEFAULT_PPROF_PORT


class MetricsConfig(ListenerConfig):
    """[metrics] section — the Prometheus scrape endpoint."""

    port: Port = DEFAULT_METRICS_PORT

