"""Configuration source layers.

A :class:`SourceLayer` is a Pydantic Settings source with a fixed precedence
rank. Builders in this module turn compiled-in defaults, a YAML file, an
environment mapping and explicitly passed flags into layers whose values are
already parsed and keyed by dotted option key. Nothing here reads
process-global state: the caller passes the environment mapping and the set
of explicit flags.
"""

from __future__ import annotations

import enum
from collections.abc import Collection, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

import structlog
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from sidecarctl.config.models import DEFAULT_CONFIG_NAME
from sidecarctl.config.options import OPTIONS, OPTIONS_BY_KEY
from sidecarctl.config.settings import SidecarConfig
from sidecarctl.errors import ConfigIOError, ConfigParseError

logger = structlog.get_logger(__name__)


class LayerKind(enum.IntEnum):
    """Precedence rank, lowest first."""

    DEFAULTS = 0
    FILE = 1
    ENV = 2
    FLAGS = 3


def nest(flat: Mapping[str, Any]) -> dict[str, Any]:
    """Expand dotted keys into nested section mappings."""
    nested: dict[str, Any] = {}
    for key, value in flat.items():
        *sections, leaf = key.split(".")
        target = nested
        for section in sections:
            target = target.setdefault(section, {})
        target[leaf] = value
    return nested


class SourceLayer(PydanticBaseSettingsSource):
    """An ordered, named provider of dotted-key overrides.

    Keys missing from ``values`` are not supplied by this layer; when merged,
    a layer overrides only the keys it supplies.
    """

    def __init__(
        self,
        kind: LayerKind,
        name: str,
        values: Mapping[str, Any] | None = None,
        *,
        settings_cls: type[BaseSettings] = SidecarConfig,
    ) -> None:
        super().__init__(settings_cls)
        self.kind = kind
        self.name = name
        self.values: Mapping[str, Any] = MappingProxyType(dict(values or {}))

    def supplies(self, key: str) -> bool:
        return key in self.values

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        """Return ``(section, field_name, value_is_complex)``."""
        section = nest(self.values).get(field_name)
        return section, field_name, True

    def __call__(self) -> dict[str, Any]:
        """Return the supplied values as nested sections for Pydantic to merge."""
        return nest(self.values)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.name}, name={self.name!r})"


def defaults_layer() -> SourceLayer:
    """Compiled-in defaults for every declared option."""
    return SourceLayer(
        LayerKind.DEFAULTS,
        "defaults",
        {option.key: option.default for option in OPTIONS},
    )


def _flatten(mapping: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for raw_key, value in mapping.items():
        key = f"{prefix}{raw_key}"
        if isinstance(value, Mapping):
            flat.update(_flatten(value, f"{key}."))
        else:
            flat[key] = value
    return flat


class YamlFileLayer(SourceLayer):
    """Read options from a YAML document, flattening sections to dotted keys.

    A missing file is tolerated only when *path* is the conventional
    *default_name*; any other missing path is an error. Values are checked
    strictly against their option types. A ``null`` value, including an
    empty section, counts as absent.

    Raises:
        ConfigIOError: The file is missing (non-default path) or unreadable.
        ConfigParseError: The document or one of its values is malformed.
    """

    def __init__(self, path: str | Path, *, default_name: str = DEFAULT_CONFIG_NAME) -> None:
        self.path = Path(path)
        super().__init__(LayerKind.FILE, f"file:{self.path}", self._load(default_name))

    def _read(self) -> Any:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            msg = f"failed to read config {self.path}: {exc.strerror or exc}"
            raise ConfigIOError(msg, path=str(self.path)) from exc
        try:
            return YAML(typ="safe").load(raw)
        except YAMLError as exc:
            msg = f"failed to parse config {self.path}: {exc}"
            raise ConfigParseError(msg, source=str(self.path)) from exc

    def _load(self, default_name: str) -> dict[str, Any]:
        path = self.path
        if not path.exists():
            if str(path) == default_name:
                logger.debug("default config file absent", path=str(path))
                return {}
            raise ConfigIOError(f"config file not found: {path}", path=str(path))

        document = self._read()
        if document is None:
            return {}
        if not isinstance(document, Mapping):
            msg = f"config {path} must be a mapping, got {type(document).__name__}"
            raise ConfigParseError(msg, source=str(path))

        values: dict[str, Any] = {}
        for key, raw in _flatten(document).items():
            if raw is None:
                continue
            option = OPTIONS_BY_KEY.get(key)
            if option is None:
                logger.warning("ignoring unknown config key", key=key, path=str(path))
                continue
            values[key] = option.parse(raw, source=str(path), strict=True)
        return values


def file_layer(path: str | Path, *, default_name: str = DEFAULT_CONFIG_NAME) -> SourceLayer:
    """Load a YAML config document as a layer. See :class:`YamlFileLayer`."""
    return YamlFileLayer(path, default_name=default_name)


class EnvironLayer(SourceLayer):
    """Environment overrides acting as flag defaults.

    Reads the caller's *environ* mapping, never the process environment.
    Variable names follow the settings' nested delimiter (``METRICS__PORT``).
    Options passed explicitly on the command line (keys in *explicit*) are
    skipped without parsing their variables. The first value that fails to
    parse aborts the whole layer.

    Raises:
        ConfigParseError: An applicable variable holds an invalid value.
    """

    def __init__(self, environ: Mapping[str, str], *, explicit: Collection[str] = ()) -> None:
        values: dict[str, Any] = {}
        for option in OPTIONS:
            if option.key in explicit:
                continue
            raw = environ.get(option.env_var)
            if raw is None:
                continue
            values[option.key] = option.parse(raw, source=f"env {option.env_var}")
        super().__init__(LayerKind.ENV, "env", values)


def env_layer(environ: Mapping[str, str], *, explicit: Collection[str] = ()) -> SourceLayer:
    """Environment overrides as a layer. See :class:`EnvironLayer`."""
    return EnvironLayer(environ, explicit=explicit)


def flag_layer(flags: Mapping[str, Any]) -> SourceLayer:
    """Explicitly passed command-line flags, keyed by dotted option key.

    Callers must pass only flags the user actually set, never flags that
    merely carry their default. At resolution these values become the
    settings' init kwargs.

    Raises:
        ConfigParseError: A key is not a declared option or its value is invalid.
    """
    values: dict[str, Any] = {}
    for key, raw in flags.items():
        option = OPTIONS_BY_KEY.get(key)
        if option is None:
            raise ConfigParseError(f"unknown flag {key}", key=key, source="flags")
        values[key] = option.parse(raw, source=f"flag {option.flag}")
    return SourceLayer(LayerKind.FLAGS, "flags", values)
