"""Tests for ConfigResolver loading, environments, secrets and editing."""

import json
from pathlib import Path
from typing import Any, Dict

import pytest

from pangolin.configuration.editor import get_value, parse_value, set_value
from pangolin.configuration.lock_store import LockStore
from pangolin.configuration.resolver import ConfigResolver
from pangolin.configuration.secrets import MappingSecretStore
from pangolin.core.errors import ConfigError, SecretResolutionError
from pangolin.core.types import PangolinSettings
from pangolin.core.value_objects import EnvironmentKey
from pangolin.utils.ports import PortAllocator


def _write(project: Path, data: Dict[str, Any]) -> Path:
    path = project / "pangolin.json"
    path.write_text(json.dumps(data))
    return path


@pytest.fixture
def project(temp_dir: Path) -> Path:
    path = temp_dir / "shop"
    path.mkdir()
    return path


@pytest.fixture
def resolver(settings: PangolinSettings) -> ConfigResolver:
    allocator = PortAllocator(settings.ports, probe=lambda port: True)
    return ConfigResolver(settings, port_allocator=allocator, environ={})


class TestLoad:
    """Test reading and defaulting."""

    def test_default_created_and_persisted(self, resolver: ConfigResolver, project: Path) -> None:
        """Test a missing file is synthesized from the directory and saved."""
        config = resolver.load(project)

        assert config.name == "shop"
        assert config.http_port == 8080
        assert config.shutdown_port is None
        saved = json.loads((project / "pangolin.json").read_text())
        assert saved["name"] == "shop"
        assert saved["httpPort"] == 8080

    def test_default_not_persisted(self, resolver: ConfigResolver, project: Path) -> None:
        """Test sandbox-style loads leave the project untouched."""
        resolver.load(project, persist_default=False)
        assert not (project / "pangolin.json").exists()

    def test_default_avoids_claimed_ports(self, settings: PangolinSettings, project: Path) -> None:
        """Test defaults skip ports claimed by sibling entries."""
        resolver = ConfigResolver(
            settings,
            port_allocator=PortAllocator(settings.ports, probe=lambda port: True),
            avoid_ports=lambda: {8080, 8999},
            environ={},
        )
        config = resolver.load(project)
        assert config.http_port == 8000
        assert config.monitoring.jmx.port not in (8080, 8999, 8000)

    def test_variables_substituted(self, resolver: ConfigResolver, project: Path) -> None:
        """Test ${NAME} tokens come from the project's .env."""
        (project / ".env").write_text("PORT=8181\nHOST=shop.test\n")
        _write(project, {"name": "shop", "httpPort": "${PORT}", "host": "${HOST}"})

        config = resolver.load(project)

        assert config.http_port == 8181
        assert config.host == "shop.test"
        assert config.raw["httpPort"] == "${PORT}"

    def test_name_defaults_to_directory(self, resolver: ConfigResolver, project: Path) -> None:
        """Test a file without a name uses the directory name."""
        _write(project, {"httpPort": 8200})
        assert resolver.load(project).name == "shop"

    def test_invalid_json(self, resolver: ConfigResolver, project: Path) -> None:
        """Test malformed JSON is a configuration error."""
        (project / "pangolin.json").write_text("{not json")
        with pytest.raises(ConfigError):
            resolver.load(project)

    def test_invalid_schema(self, resolver: ConfigResolver, project: Path) -> None:
        """Test schema violations are configuration errors."""
        _write(project, {"httpPort": "${UNSET}"})
        with pytest.raises(ConfigError, match="Invalid pangolin.json"):
            resolver.load(project)

    def test_save_round_trip(self, resolver: ConfigResolver, project: Path) -> None:
        """Test save then load reproduces the configuration."""
        _write(project, {"name": "shop", "httpPort": 8300, "jvm": {"maxMemory": "2g"}})
        config = resolver.load(project)
        resolver.save(config, project / "copy.json")

        again = resolver.load(project, "copy.json")
        assert again.model_dump() == config.model_dump()


class TestApplyEnvironment:
    """Test environment overlays."""

    def test_no_environment_is_noop(self, resolver: ConfigResolver, project: Path) -> None:
        """Test None returns the configuration unchanged."""
        _write(project, {"name": "shop", "httpPort": 8100})
        config = resolver.load(project)
        assert resolver.apply_environment(config, None) is config

    def test_overlay_deep_merges(self, resolver: ConfigResolver, project: Path) -> None:
        """Test objects merge, scalars and arrays replace."""
        _write(
            project,
            {
                "name": "shop",
                "httpPort": 8100,
                "jvm": {"maxMemory": "512m", "additionalArgs": ["-Da=1"]},
                "environments": {
                    "prod": {"httpPort": 80, "jvm": {"additionalArgs": ["-Dprod=1"]}}
                },
            },
        )
        config = resolver.apply_environment(resolver.load(project), "prod")

        assert config.http_port == 80
        assert config.jvm.max_memory == "512m"
        assert config.jvm.additional_args == ["-Dprod=1"]
        assert config.environments is None

    def test_overlay_sees_variables(self, resolver: ConfigResolver, project: Path) -> None:
        """Test overlay values are substituted after merging."""
        (project / ".env").write_text("PROD_PORT=8088\n")
        _write(project, {"name": "shop", "environments": {"prod": {"httpPort": "${PROD_PORT}"}}})
        config = resolver.apply_environment(resolver.load(project), "prod")
        assert config.http_port == 8088

    def test_unknown_environment(self, resolver: ConfigResolver, project: Path) -> None:
        """Test unknown names list the declared environments."""
        _write(project, {"name": "shop", "environments": {"prod": {}, "dev": {}}})
        with pytest.raises(ConfigError, match="declared environments: dev, prod"):
            resolver.apply_environment(resolver.load(project), "staging")

    def test_no_environments_declared(self, resolver: ConfigResolver, project: Path) -> None:
        """Test requesting an environment without any declared fails."""
        _write(project, {"name": "shop"})
        with pytest.raises(ConfigError, match="none"):
            resolver.apply_environment(resolver.load(project), "prod")

    def test_nested_environments_rejected(self, resolver: ConfigResolver, project: Path) -> None:
        """Test an overlay may not declare environments itself."""
        _write(project, {"name": "shop", "environments": {"prod": {"environments": {}}}})
        with pytest.raises(ConfigError, match="nested"):
            resolver.apply_environment(resolver.load(project), "prod")


class TestResolveSecrets:
    """Test secret placeholder resolution."""

    def test_no_placeholders(self, resolver: ConfigResolver, project: Path) -> None:
        """Test configurations without secrets pass through without a store."""
        _write(project, {"name": "shop"})
        config = resolver.load(project)
        assert resolver.resolve_secrets(config, None) is config

    def test_no_store_configured(self, resolver: ConfigResolver, project: Path) -> None:
        """Test placeholders without a store name the setting to enable."""
        _write(project, {"name": "shop", "admin": {"password": "${secret:admin}"}})
        with pytest.raises(SecretResolutionError, match="PANGOLIN_SECRET_STORE") as exc_info:
            resolver.resolve_secrets(resolver.load(project), None)
        assert exc_info.value.missing == ["admin"]

    def test_missing_secret(self, resolver: ConfigResolver, project: Path) -> None:
        """Test unknown secret names are reported."""
        _write(project, {"name": "shop", "envVars": {"A": "${secret:a}", "B": "${secret:b}"}})
        with pytest.raises(SecretResolutionError) as exc_info:
            resolver.resolve_secrets(resolver.load(project), MappingSecretStore({"a": "1"}))
        assert exc_info.value.missing == ["b"]

    def test_resolved(self, resolver: ConfigResolver, project: Path) -> None:
        """Test placeholders are replaced and context kept."""
        _write(
            project,
            {
                "name": "shop",
                "admin": {"password": "${secret:admin}"},
                "environments": {"prod": {"envVars": {"X": "${secret:unused}"}}},
            },
        )
        config = resolver.load(project)
        resolved = resolver.resolve_secrets(config, MappingSecretStore({"admin": "pw"}))

        assert resolved.admin.password == "pw"
        assert resolved.project_dir == config.project_dir
        assert resolved.environments["prod"]["envVars"]["X"] == "${secret:unused}"


class TestEditing:
    """Test dotted-key get and set."""

    def test_get_value(self, resolver: ConfigResolver, project: Path) -> None:
        """Test reading a dotted camelCase key."""
        _write(project, {"name": "shop", "jvm": {"maxMemory": "1g"}})
        assert resolver.get_value(resolver.load(project), "jvm.maxMemory") == "1g"

    def test_update_values_keeps_tokens(self, resolver: ConfigResolver, project: Path) -> None:
        """Test edits preserve untouched ${...} tokens and parse JSON literals."""
        (project / ".env").write_text("PORT=8500\n")
        _write(project, {"name": "shop", "httpPort": "${PORT}"})

        config = resolver.update_values(
            project, [("jvm.maxMemory", "2g"), ("monitoring.enabled", "false")]
        )

        saved = json.loads((project / "pangolin.json").read_text())
        assert saved["httpPort"] == "${PORT}"
        assert saved["jvm"] == {"maxMemory": "2g"}
        assert saved["monitoring"] == {"enabled": False}
        assert config.http_port == 8500

    def test_update_refused_while_locked(self, resolver: ConfigResolver, project: Path) -> None:
        """Test a locked project cannot be edited."""
        _write(project, {"name": "shop"})
        LockStore(project).lock(EnvironmentKey.for_environment("prod"), resolver.load(project),
                                "pangolin.json")
        with pytest.raises(ConfigError, match="locked for prod"):
            resolver.update_values(project, [("httpPort", "8100")])

    def test_update_invalid_result(self, resolver: ConfigResolver, project: Path) -> None:
        """Test an edit producing an invalid file is refused and not written."""
        _write(project, {"name": "shop", "httpPort": 8100})
        with pytest.raises(ConfigError):
            resolver.update_values(project, [("httpPort", "abc")])
        assert json.loads((project / "pangolin.json").read_text())["httpPort"] == 8100


class TestEditorHelpers:
    """Test editor primitives."""

    def test_parse_value(self) -> None:
        """Test JSON literals are parsed and other text kept."""
        assert parse_value("8080") == 8080
        assert parse_value("true") is True
        assert parse_value('["a"]') == ["a"]
        assert parse_value("512m") == "512m"

    def test_get_missing_key(self) -> None:
        """Test missing segments raise."""
        with pytest.raises(ConfigError, match="not found"):
            get_value({"a": {"b": 1}}, "a.c")

    def test_set_creates_intermediates(self) -> None:
        """Test missing objects are created."""
        assert set_value({}, "a.b.c", 1) == {"a": {"b": {"c": 1}}}

    def test_set_through_scalar(self) -> None:
        """Test setting below a scalar is refused."""
        with pytest.raises(ConfigError, match="not an object"):
            set_value({"a": 1}, "a.b", 2)

    @pytest.mark.parametrize("key", ["", "a..b", ".a"])
    def test_invalid_keys(self, key: str) -> None:
        """Test empty segments are rejected."""
        with pytest.raises(ConfigError, match="Invalid"):
            get_value({}, key)
