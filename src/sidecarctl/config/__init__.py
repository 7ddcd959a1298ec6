"""Configuration layer — option table, settings sources, resolution, logging.

This layer depends on stdlib, pydantic, pydantic-settings, ruamel.yaml and
structlog. It must never import from infrastructure, diagnostics, services,
or cli.
"""

from sidecarctl.config.layers import (
    EnvironLayer,
    LayerKind,
    SourceLayer,
    YamlFileLayer,
    defaults_layer,
    env_layer,
    file_layer,
    flag_layer,
)
from sidecarctl.config.resolver import load_config, resolve, validate_config
from sidecarctl.config.settings import SidecarConfig

__all__ = [
    "EnvironLayer",
    "LayerKind",
    "SidecarConfig",
    "SourceLayer",
    "YamlFileLayer",
    "defaults_layer",
    "env_layer",
    "file_layer",
    "flag_layer",
    "load_config",
    "resolve",
    "validate_config",
]
