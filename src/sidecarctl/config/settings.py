"""Unified settings: explicit flags, env overrides and the YAML file in one object.

Priority chain (highest to lowest):
  1. Init kwargs: flags passed explicitly on the command line
  2. Source layers supplied for this resolution, highest rank first
     (environment, YAML file, compiled-in defaults)
  3. Code defaults: baked into the section models

Uses Pydantic Settings v2. The layers are handed in per resolution through
:func:`layered_sources`; without them only init kwargs and code defaults
apply, so constructing :class:`SidecarConfig` never reads ``os.environ``.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from sidecarctl.config.models import (
    ENV_NESTED_DELIMITER,
    MetricsConfig,
    PProfConfig,
    TracingConfig,
)

# Thread-local storage for the layers of the resolution in progress.
_tls = threading.local()


@contextmanager
def layered_sources(sources: Sequence[PydanticBaseSettingsSource]) -> Iterator[None]:
    """Use *sources* (highest priority first) for settings built in this block."""
    _tls.sources = tuple(sources)
    try:
        yield
    finally:
        _tls.sources = ()


class SidecarConfig(BaseSettings):
    """Root configuration composing all sections.

    Frozen once built. Environment variables follow the section nesting:
    ``metrics.port`` is ``METRICS__PORT``.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "",
        "env_nested_delimiter": ENV_NESTED_DELIMITER,
    }

    tracing: TracingConfig = Field(default_factory=TracingConfig)
    pprof: PProfConfig = Field(default_factory=PProfConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Replace the implicit env, dotenv and secrets sources with the active layers."""
        return (init_settings, *getattr(_tls, "sources", ()))
