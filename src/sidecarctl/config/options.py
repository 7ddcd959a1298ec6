"""Declared configuration options.

Every option is addressed by a dotted key (``metrics.port``). The same key
names the YAML path, the command-line flag (``--metrics.port``) and the
environment variable (``METRICS__PORT``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from pydantic import TypeAdapter, ValidationError

from sidecarctl.config.models import (
    DEFAULT_CONFIG_NAME,
    DEFAULT_IPV4_HOST,
    DEFAULT_IPV6_HOST,
    DEFAULT_METRICS_PORT,
    DEFAULT_PPROF_PORT,
    ENV_NESTED_DELIMITER,
    Port,
)
from sidecarctl.errors import ConfigParseError


def env_var_name(key: str) -> str:
    """Return the environment variable for a dotted *key*: ``a.b`` -> ``A__B``."""
    return key.upper().replace(".", ENV_NESTED_DELIMITER)


@dataclass(frozen=True)
class Option:
    """One declared configuration option."""

    key: str
    type: Any
    default: Any
    help: str
    short: str | None = field(default=None, compare=False)

    @property
    def env_var(self) -> str:
        return env_var_name(self.key)

    @property
    def flag(self) -> str:
        return f"--{self.key}"

    @property
    def param_name(self) -> str:
        return self.key.replace(".", "_")

    @property
    def is_bool(self) -> bool:
        return self.type is bool

    @cached_property
    def _adapter(self) -> TypeAdapter[Any]:
        return TypeAdapter(self.type)

    def parse(self, raw: Any, *, source: str, strict: bool = False) -> Any:
        """Convert *raw* to this option's type.

        Strings from the environment or the command line are coerced. Values
        that arrive already typed, as from a YAML document, are checked with
        *strict* so that ``true`` or ``8081.0`` is not accepted as a port.

        Raises:
            ConfigParseError: *raw* is not a valid value for the option.
        """
        try:
            return self._adapter.validate_python(raw, strict=strict)
        except ValidationError as exc:
            problem = exc.errors()[0]["msg"] if exc.errors() else str(exc)
            msg = f"invalid value {raw!r} for {self.key} from {source}: {problem}"
            raise ConfigParseError(msg, key=self.key, source=source) from exc


CONFIG_OPTION = Option(
    "config",
    str,
    DEFAULT_CONFIG_NAME,
    "Config file path",
    short="-c",
)

OPTIONS: tuple[Option, ...] = (
    Option("tracing.enabled", bool, False, "Enable Open Telemetry tracing"),
    Option("tracing.otlp_endpoint", str, "", "Open Telemetry endpoint"),
    Option("pprof.enabled", bool, False, "Enable the profiling server"),
    Option("pprof.ipv4_host", str, DEFAULT_IPV4_HOST, "Profiling server IPv4 host"),
    Option("pprof.ipv6_host", str, DEFAULT_IPV6_HOST, "Profiling server IPv6 host"),
    Option("pprof.port", Port, DEFAULT_PPROF_PORT, "Profiling server port"),
    Option("metrics.enabled", bool, False, "Enable the metrics server"),
    Option("metrics.ipv4_host", str, DEFAULT_IPV4_HOST, "Metrics server IPv4 host"),
    Option("metrics.ipv6_host", str, DEFAULT_IPV6_HOST, "Metrics server IPv6 host"),
    Option("metrics.port", Port, DEFAULT_METRICS_PORT, "Metrics server port"),
)

OPTIONS_BY_KEY: dict[str, Option] = {option.key: option for option in OPTIONS}
