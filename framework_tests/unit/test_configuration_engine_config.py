"""Tests for deep merge and the layered engine configuration artifact."""

import json
from pathlib import Path
from unittest.mock import Mock

import pytest

from pangolin.configuration.engine_config import (
    ENGINE_CONFIG_FILE_NAME,
    resolve_engine_configuration,
    write_engine_configuration,
)
from pangolin.configuration.merge import deep_merge
from pangolin.configuration.model import ServerConfiguration
from pangolin.core.errors import ConfigError


class TestDeepMerge:
    """Test structural merge."""

    def test_objects_merge_arrays_replace(self) -> None:
        """Test nested objects merge key by key while arrays are replaced."""
        base = {"a": {"x": 1, "y": [1, 2]}, "b": 1}
        override = {"a": {"y": [3], "z": 2}, "c": 3}
        assert deep_merge(base, override) == {"a": {"x": 1, "y": [3], "z": 2}, "b": 1, "c": 3}

    def test_inputs_not_mutated(self) -> None:
        """Test neither input changes."""
        base = {"a": {"x": [1]}}
        override = {"a": {"x": [2]}}
        deep_merge(base, override)
        assert base == {"a": {"x": [1]}}
        assert override == {"a": {"x": [2]}}

    def test_replaced_array_paths(self) -> None:
        """Test differing replaced arrays are reported by JSON path."""
        replaced = []
        deep_merge(
            {"a": {"list": [1]}, "same": [1], "top": [0]},
            {"a": {"list": [2]}, "same": [1], "top": "scalar"},
            replaced,
        )
        assert sorted(replaced) == ["$.a.list", "$.top"]


class TestResolveEngineConfiguration:
    """Test the three-layer merge."""

    def test_empty(self, temp_dir: Path) -> None:
        """Test no layer yields None."""
        assert resolve_engine_configuration(ServerConfiguration(), temp_dir) is None

    def test_layers_in_order(self, temp_dir: Path) -> None:
        """Test file, then inline, then mappings."""
        (temp_dir / "engine.json").write_text(
            json.dumps({"datasources": {"db": {"host": "${DB_HOST}"}}, "mode": "file"})
        )
        config = ServerConfiguration.from_dict(
            {"configurationFile": "engine.json", "configuration": {"mode": "inline"}},
            variables={"DB_HOST": "db.local"},
        )
        mappings = Mock()
        mappings.mappings_for.return_value = {"/lib": "/deps/lib"}

        merged = resolve_engine_configuration(config, temp_dir, mappings)

        assert merged == {
            "datasources": {"db": {"host": "db.local"}},
            "mode": "inline",
            "mappings": {"/lib": "/deps/lib"},
        }
        mappings.mappings_for.assert_called_once_with(temp_dir)

    def test_missing_file(self, temp_dir: Path) -> None:
        """Test a missing referenced file is a configuration error."""
        config = ServerConfiguration(configuration_file="absent.json")
        with pytest.raises(ConfigError, match="not found"):
            resolve_engine_configuration(config, temp_dir)

    def test_invalid_file(self, temp_dir: Path) -> None:
        """Test a non-object file is a configuration error."""
        (temp_dir / "engine.json").write_text("[1, 2]")
        config = ServerConfiguration(configuration_file="engine.json")
        with pytest.raises(ConfigError, match="JSON object"):
            resolve_engine_configuration(config, temp_dir)


class TestWriteEngineConfiguration:
    """Test writing the artifact into the instance directory."""

    def test_nothing_to_write(self, temp_dir: Path) -> None:
        """Test no artifact without a payload."""
        result = write_engine_configuration(temp_dir, ServerConfiguration(), temp_dir)
        assert not result.written
        assert not (temp_dir / ENGINE_CONFIG_FILE_NAME).exists()

    def test_merges_over_existing_artifact(self, temp_dir: Path) -> None:
        """Test previous content survives and replaced arrays are reported."""
        instance_dir = temp_dir / "instance"
        instance_dir.mkdir()
        (instance_dir / ENGINE_CONFIG_FILE_NAME).write_text(
            json.dumps({"kept": True, "extensions": ["a", "b"]})
        )
        config = ServerConfiguration(configuration={"extensions": ["c"]})

        result = write_engine_configuration(instance_dir, config, temp_dir)

        written = json.loads((instance_dir / ENGINE_CONFIG_FILE_NAME).read_text())
        assert written == {"kept": True, "extensions": ["c"]}
        assert result.replaced_arrays == ["$.extensions"]
        assert result.written
