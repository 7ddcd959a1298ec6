"""Layered configuration resolution.

Priority chain (highest to lowest):
  1. Flags: only those passed explicitly on the command line
  2. Env vars: ``SECTION__KEY``, skipped for explicitly passed flags
  3. YAML file: ``config.yaml`` unless another path is given
  4. Code defaults: baked into the option table and section models

:func:`resolve` is pure: it merges the layers it is given through
:class:`~sidecarctl.config.settings.SidecarConfig` and never looks at the
process environment. :func:`load_config` is the composition helper that
builds the layers for a CLI invocation.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from sidecarctl.config.layers import (
    LayerKind,
    SourceLayer,
    defaults_layer,
    env_layer,
    file_layer,
    flag_layer,
    nest,
)
from sidecarctl.config.options import CONFIG_OPTION
from sidecarctl.config.settings import SidecarConfig, layered_sources
from sidecarctl.errors import ConfigParseError, ConfigValidationError

logger = structlog.get_logger(__name__)

Constraint = Callable[[SidecarConfig], str | None]

# Semantic checks run after merging. Each returns a problem description or None.
CONSTRAINTS: tuple[Constraint, ...] = ()


def validate_config(
    config: SidecarConfig,
    constraints: Iterable[Constraint] | None = None,
) -> None:
    """Reject structurally valid but semantically invalid configurations.

    Raises:
        ConfigValidationError: At least one constraint reported a problem.
    """
    checks = CONSTRAINTS if constraints is None else tuple(constraints)
    problems = [problem for check in checks if (problem := check(config))]
    if problems:
        raise ConfigValidationError(
            f"invalid config: {'; '.join(problems)}",
            problems=problems,
        )


def resolve(layers: Iterable[SourceLayer]) -> SidecarConfig:
    """Merge *layers* by precedence into one frozen configuration.

    Layers are applied lowest rank first; a layer overrides only the keys it
    supplies. Layers of equal rank keep their given order. Flag layers become
    init kwargs; every other layer is a settings source.

    Raises:
        ConfigParseError: The merged values do not form a valid configuration.
        ConfigValidationError: The configuration failed :func:`validate_config`.
    """
    ordered = sorted(layers, key=lambda layer: layer.kind)
    flags: dict[str, Any] = {}
    sources: list[SourceLayer] = []
    for layer in ordered:
        logger.debug("applied config layer", layer=layer.name, keys=sorted(layer.values))
        if layer.kind is LayerKind.FLAGS:
            flags.update(layer.values)
        else:
            sources.append(layer)

    try:
        with layered_sources(list(reversed(sources))):
            config = SidecarConfig(**nest(flags))
    except ValidationError as exc:
        raise ConfigParseError(f"failed to build config: {exc}", source="merged") from exc

    validate_config(config)
    return config


def select_config_path(flags: Mapping[str, Any], environ: Mapping[str, str]) -> str:
    """Pick the config file path: explicit flag, then ``CONFIG``, then the default."""
    if CONFIG_OPTION.key in flags:
        return str(flags[CONFIG_OPTION.key])
    env_value = environ.get(CONFIG_OPTION.env_var)
    if env_value is not None:
        return env_value
    return str(CONFIG_OPTION.default)


def load_config(
    *,
    flags: Mapping[str, Any],
    environ: Mapping[str, str],
) -> SidecarConfig:
    """Build every layer for one invocation and resolve them.

    *flags* holds only explicitly passed flags keyed by dotted option key,
    optionally including ``config``. *environ* is the environment mapping
    to read overrides from (usually ``os.environ``).

    Raises:
        ConfigIOError: The selected config file is required but unreadable.
        ConfigParseError: A file, flag or environment value is malformed.
        ConfigValidationError: The merged configuration is rejected.
    """
    option_flags = {key: value for key, value in flags.items() if key != CONFIG_OPTION.key}
    path = select_config_path(flags, environ)

    layers = [
        defaults_layer(),
        file_layer(path),
        env_layer(environ, explicit=option_flags.keys()),
        flag_layer(option_flags),
    ]
    return resolve(layers)
