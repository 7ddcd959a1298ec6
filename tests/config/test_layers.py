"""Tests for configuration source layers."""

from pathlib import Path

import pytest
from pydantic_settings import PydanticBaseSettingsSource
from structlog.testing import capture_logs

from sidecarctl.config.layers import (
    LayerKind,
    defaults_layer,
    env_layer,
    file_layer,
    flag_layer,
)
from sidecarctl.config.options import OPTIONS
from sidecarctl.errors import ConfigIOError, ConfigParseError


class TestDefaultsLayer:
    def test_supplies_every_key(self) -> None:
        layer = defaults_layer()
        assert layer.kind is LayerKind.DEFAULTS
        assert all(layer.supplies(option.key) for option in OPTIONS)
        assert layer.values["pprof.port"] == 6060


class TestFileLayer:
    def test_loads_nested_sections(self, tmp_path: Path) -> None:
        path = tmp_path / "sidecar.yaml"
        path.write_text(
            "metrics:\n  enabled: true\n  port: 9100\ntracing:\n  otlp_endpoint: otel:4317\n"
        )
        layer = file_layer(path)
        assert layer.kind is LayerKind.FILE
        assert dict(layer.values) == {
            "metrics.enabled": True,
            "metrics.port": 9100,
            "tracing.otlp_endpoint": "otel:4317",
        }

    def test_absent_keys_not_supplied(self, tmp_path: Path) -> None:
        path = tmp_path / "sidecar.yaml"
        path.write_text("pprof:\n  enabled: true\n  port: null\n")
        layer = file_layer(path)
        assert layer.supplies("pprof.enabled")
        assert not layer.supplies("pprof.port")
        assert not layer.supplies("metrics.port")

    def test_default_name_missing_is_empty(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        layer = file_layer("config.yaml")
        assert dict(layer.values) == {}

    def test_default_name_present_is_loaded(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config.yaml").write_text("metrics:\n  port: 9200\n")
        assert file_layer("config.yaml").values["metrics.port"] == 9200

    def test_other_missing_path_is_io_error(self, tmp_path: Path) -> None:
        missing = tmp_path / "nope.yaml"
        with pytest.raises(ConfigIOError) as excinfo:
            file_layer(missing)
        assert excinfo.value.path == str(missing)

    def test_directory_is_io_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigIOError):
            file_layer(tmp_path)

    def test_empty_file_is_empty_layer(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert dict(file_layer(path).values) == {}

    def test_malformed_yaml_is_parse_error(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("metrics: [unclosed\n")
        with pytest.raises(ConfigParseError):
            file_layer(path)

    def test_non_mapping_document_is_parse_error(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigParseError, match="must be a mapping"):
            file_layer(path)

    def test_bad_value_is_parse_error(self, tmp_path: Path) -> None:
        path = tmp_path / "port.yaml"
        path.write_text("metrics:\n  port: eighty\n")
        with pytest.raises(ConfigParseError) as excinfo:
            file_layer(path)
        assert excinfo.value.key == "metrics.port"

    def test_unknown_keys_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "extra.yaml"
        path.write_text("metrics:\n  port: 9100\n  path: /custom\nextra: 1\n")
        assert dict(file_layer(path).values) == {"metrics.port": 9100}

    @pytest.mark.parametrize("value", ["true", "8081.0", '"8081"'])
    def test_typed_values_are_not_coerced(self, tmp_path: Path, value: str) -> None:
        path = tmp_path / "typed.yaml"
        path.write_text(f"metrics:\n  port: {value}\n")
        with pytest.raises(ConfigParseError) as excinfo:
            file_layer(path)
        assert excinfo.value.key == "metrics.port"

    def test_non_bool_enabled_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "flag.yaml"
        path.write_text("pprof:\n  enabled: 1\n")
        with pytest.raises(ConfigParseError):
            file_layer(path)

    def test_empty_section_is_absent(self, tmp_path: Path) -> None:
        path = tmp_path / "sections.yaml"
        path.write_text("pprof:\nmetrics:\n  port: 9100\n")
        with capture_logs() as logs:
            layer = file_layer(path)
        assert dict(layer.values) == {"metrics.port": 9100}
        assert not [entry for entry in logs if entry["event"] == "ignoring unknown config key"]

    def test_unknown_key_is_logged(self, tmp_path: Path) -> None:
        path = tmp_path / "extra.yaml"
        path.write_text("extra: 1\n")
        with capture_logs() as logs:
            file_layer(path)
        assert {"key": "extra", "event": "ignoring unknown config key"}.items() <= logs[0].items()


class TestEnvLayer:
    def test_reads_declared_variables(self) -> None:
        layer = env_layer({"METRICS__PORT": "9300", "PPROF__ENABLED": "true", "HOME": "/root"})
        assert layer.kind is LayerKind.ENV
        assert dict(layer.values) == {"metrics.port": 9300, "pprof.enabled": True}

    def test_skips_explicit_flags(self) -> None:
        layer = env_layer({"METRICS__PORT": "9300"}, explicit={"metrics.port"})
        assert not layer.supplies("metrics.port")

    def test_explicit_flag_shields_malformed_value(self) -> None:
        layer = env_layer({"METRICS__PORT": "garbage"}, explicit={"metrics.port"})
        assert dict(layer.values) == {}

    def test_first_parse_failure_aborts(self) -> None:
        environ = {"PPROF__PORT": "bad", "METRICS__PORT": "also-bad"}
        with pytest.raises(ConfigParseError) as excinfo:
            env_layer(environ)
        # pprof.port is declared before metrics.port
        assert excinfo.value.key == "pprof.port"
        assert excinfo.value.source == "env PPROF__PORT"

    def test_empty_string_is_supplied(self) -> None:
        layer = env_layer({"TRACING__OTLP_ENDPOINT": ""})
        assert layer.values["tracing.otlp_endpoint"] == ""


class TestFlagLayer:
    def test_parses_values(self) -> None:
        layer = flag_layer({"metrics.port": "9400", "metrics.enabled": True})
        assert layer.kind is LayerKind.FLAGS
        assert dict(layer.values) == {"metrics.port": 9400, "metrics.enabled": True}

    def test_unknown_flag(self) -> None:
        with pytest.raises(ConfigParseError, match="unknown flag"):
            flag_layer({"metrics.path": "/x"})


class TestSettingsSource:
    def test_layers_are_settings_sources(self, tmp_path: Path) -> None:
        path = tmp_path / "sidecar.yaml"
        path.write_text("metrics:\n  port: 9100\n")
        for layer in (defaults_layer(), file_layer(path), env_layer({}), flag_layer({})):
            assert isinstance(layer, PydanticBaseSettingsSource)

    def test_call_returns_nested_sections(self) -> None:
        layer = env_layer({"METRICS__PORT": "9300", "TRACING__ENABLED": "1"})
        assert layer() == {"metrics": {"port": 9300}, "tracing": {"enabled": True}}

    def test_field_value_is_the_section(self) -> None:
        layer = env_layer({"PPROF__PORT": "7000"})
        assert layer.get_field_value(None, "pprof") == ({"port": 7000}, "pprof", True)
