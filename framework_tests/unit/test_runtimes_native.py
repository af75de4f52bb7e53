"""Tests for the express and tomcat native process backends."""

import os
import stat
from pathlib import Path
from typing import Any, Dict
from unittest.mock import Mock, patch

import pytest

from pangolin.configuration.model import ServerConfiguration
from pangolin.core.enums import RuntimeType
from pangolin.core.errors import AssetError, RuntimeLaunchError
from pangolin.core.types import PangolinSettings, TimeoutConfig
from pangolin.instances.registry import InstanceRegistry
from pangolin.runtimes.base import LaunchRequest
from pangolin.runtimes.native import NativeProcessRuntime


def _executable(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


@pytest.fixture
def fast_settings(temp_dir: Path) -> PangolinSettings:
    return PangolinSettings(
        home_dir=temp_dir / "home",
        timeouts=TimeoutConfig(
            server_startup=0.05, pid_discovery=0.05, poll_interval=0.01,
            server_shutdown=0.05, force_kill=0.05,
        ),
    )


@pytest.fixture
def registry(fast_settings: PangolinSettings) -> InstanceRegistry:
    return InstanceRegistry(fast_settings.servers_dir)


@pytest.fixture
def request_for(temp_dir: Path, registry: InstanceRegistry):
    def make(config_data: Dict[str, Any], install_root: Path = None) -> LaunchRequest:
        project = temp_dir / "project"
        project.mkdir(exist_ok=True)
        config = ServerConfiguration.from_dict({"name": "app", "httpPort": 8100, **config_data})
        instance_dir = registry.create("app", project)
        return LaunchRequest(
            name="app", config=config, project_dir=project,
            instance_dir=instance_dir, install_root=install_root,
        )

    return make


class TestPrepare:
    """Test installation root discovery."""

    def test_express_uses_asset_provider(self, fast_settings, registry, request_for, temp_dir) -> None:
        """Test express asks the asset provider for the configured version."""
        assets = Mock()
        assets.ensure.return_value = temp_dir / "dist"
        runtime = NativeProcessRuntime(registry, fast_settings, asset_provider=assets)

        root = runtime.prepare(request_for({"version": "6.0.0"}))

        assert root == temp_dir / "dist"
        assets.ensure.assert_called_once_with("6.0.0")

    def test_express_without_assets(self, fast_settings, registry, request_for) -> None:
        """Test express needs an asset provider."""
        runtime = NativeProcessRuntime(registry, fast_settings)
        with pytest.raises(AssetError):
            runtime.prepare(request_for({}))

    def test_tomcat_from_catalina_home(self, fast_settings, registry, request_for, temp_dir) -> None:
        """Test tomcat falls back to CATALINA_HOME."""
        home = temp_dir / "tomcat"
        (home / "bin").mkdir(parents=True)
        (home / "lib").mkdir()
        runtime = NativeProcessRuntime(
            registry, fast_settings, RuntimeType.TOMCAT, environ={"CATALINA_HOME": str(home)}
        )
        assert runtime.prepare(request_for({})) == home

    def test_tomcat_incomplete_home(self, fast_settings, registry, request_for, temp_dir) -> None:
        """Test a home without lib is rejected."""
        home = temp_dir / "tomcat"
        (home / "bin").mkdir(parents=True)
        runtime = NativeProcessRuntime(registry, fast_settings, RuntimeType.TOMCAT, environ={})
        with pytest.raises(RuntimeLaunchError, match="missing lib"):
            runtime.prepare(request_for({"runtime": {"type": "tomcat", "installHome": str(home)}}))

    def test_tomcat_without_home(self, fast_settings, registry, request_for) -> None:
        """Test tomcat needs an installation home."""
        runtime = NativeProcessRuntime(registry, fast_settings, RuntimeType.TOMCAT, environ={})
        with pytest.raises(RuntimeLaunchError, match="CATALINA_HOME"):
            runtime.prepare(request_for({}))

    def test_rejects_non_native_type(self, fast_settings, registry) -> None:
        """Test container types are not native."""
        with pytest.raises(ValueError):
            NativeProcessRuntime(registry, fast_settings, RuntimeType.DOCKER)


class TestEnvironment:
    """Test the launch environment."""

    def test_catalina_variables(self, fast_settings, registry, request_for, temp_dir) -> None:
        """Test per-instance base, options, admin password and envVars."""
        runtime = NativeProcessRuntime(registry, fast_settings, environ={"PATH": "/bin"})
        request = request_for(
            {"admin": {"password": "pw"}, "envVars": {"APP_MODE": "dev"},
             "monitoring": {"enabled": False}},
            install_root=temp_dir / "dist",
        )

        env = runtime.build_environment(request)

        assert env["PATH"] == "/bin"
        assert env["CATALINA_HOME"] == str(temp_dir / "dist")
        assert env["CATALINA_BASE"] == str(request.instance_dir)
        assert env["CATALINA_OPTS"] == "-Xms128m -Xmx512m"
        assert env["ENGINE_ADMIN_PASSWORD"] == "pw"
        assert env["APP_MODE"] == "dev"


class TestStart:
    """Test background launch."""

    def test_launcher_missing(self, fast_settings, registry, request_for, temp_dir) -> None:
        """Test a missing launcher fails before spawning anything."""
        runtime = NativeProcessRuntime(registry, fast_settings, environ={})
        with pytest.raises(RuntimeLaunchError, match="Launcher not found"):
            runtime.start(request_for({}, install_root=temp_dir / "dist"))

    def test_launcher_not_executable(self, fast_settings, registry, request_for, temp_dir) -> None:
        """Test a non-executable launcher is rejected."""
        launcher = temp_dir / "dist" / "startup.sh"
        launcher.parent.mkdir()
        launcher.write_text("#!/bin/sh\n")
        os.chmod(launcher, 0o644)
        runtime = NativeProcessRuntime(registry, fast_settings, environ={})
        with pytest.raises(RuntimeLaunchError, match="not executable"):
            runtime.start(request_for({}, install_root=temp_dir / "dist"))

    def test_discovers_worker_pid(
        self, fast_settings, registry, request_for, temp_dir,
        patch_dangerous_operations: Dict[str, Any],
    ) -> None:
        """Test the forked worker pid replaces the launcher pid in the marker."""
        _executable(temp_dir / "dist" / "startup.sh")
        runtime = NativeProcessRuntime(
            registry, fast_settings, environ={}, port_probe=lambda host, port: True
        )
        request = request_for({}, install_root=temp_dir / "dist")

        with patch(
            "pangolin.runtimes.native.find_processes_by_cmdline", return_value=[12345, 777]
        ) as mock_find:
            result = runtime.start(request)

        assert result.pid == 777
        assert result.launcher_pid == 12345
        assert registry.read("app").pid == 777
        mock_find.assert_called_with(f"catalina.base={request.instance_dir}")
        assert patch_dangerous_operations["popen"].call_args.kwargs["start_new_session"]

    def test_pid_file_preferred(self, fast_settings, registry, request_for, temp_dir) -> None:
        """Test catalina.pid is used when the worker writes it."""
        _executable(temp_dir / "dist" / "startup.sh")
        runtime = NativeProcessRuntime(
            registry, fast_settings, environ={}, port_probe=lambda host, port: True
        )
        request = request_for({}, install_root=temp_dir / "dist")

        def write_pid(*args, **kwargs):
            (request.instance_dir / "catalina.pid").write_text("888")
            return []

        with (
            patch("pangolin.runtimes.native.find_processes_by_cmdline", side_effect=write_pid),
            patch("pangolin.runtimes.native.is_pid_alive", return_value=True),
        ):
            assert runtime.start(request).pid == 888

    def test_falls_back_to_launcher_pid(self, fast_settings, registry, request_for, temp_dir) -> None:
        """Test the launcher pid is tracked when no worker is found."""
        _executable(temp_dir / "dist" / "startup.sh")
        runtime = NativeProcessRuntime(
            registry, fast_settings, environ={}, port_probe=lambda host, port: True
        )
        with patch("pangolin.runtimes.native.find_processes_by_cmdline", return_value=[]):
            result = runtime.start(request_for({}, install_root=temp_dir / "dist"))
        assert result.pid == 12345

    def test_not_ready_terminates(self, fast_settings, registry, request_for, temp_dir) -> None:
        """Test a server that never binds is terminated and reported."""
        _executable(temp_dir / "dist" / "startup.sh")
        runtime = NativeProcessRuntime(
            registry, fast_settings, environ={}, port_probe=lambda host, port: False
        )
        with (
            patch("pangolin.runtimes.native.find_processes_by_cmdline", return_value=[]),
            patch("pangolin.runtimes.native.terminate_process") as mock_terminate,
        ):
            with pytest.raises(RuntimeLaunchError, match="did not bind port 8100"):
                runtime.start(request_for({}, install_root=temp_dir / "dist"))
        mock_terminate.assert_called_once()
        assert mock_terminate.call_args.args[0] == 12345


class TestStop:
    """Test shutdown and liveness."""

    def test_stop_terminates_pid(self, fast_settings, registry) -> None:
        """Test stop signals the recorded pid."""
        runtime = NativeProcessRuntime(registry, fast_settings)
        record = Mock(pid=4321)
        with patch("pangolin.runtimes.native.terminate_process", return_value=True) as mock_term:
            assert runtime.stop(record, timeout=3)
        mock_term.assert_called_once_with(4321, 3, fast_settings.timeouts.force_kill)

    def test_stop_without_pid(self, fast_settings, registry) -> None:
        """Test an entry without a pid is already stopped."""
        assert NativeProcessRuntime(registry, fast_settings).stop(Mock(pid=None))

    def test_is_alive(self, fast_settings, registry) -> None:
        """Test liveness is pid based."""
        runtime = NativeProcessRuntime(registry, fast_settings)
        with patch("pangolin.runtimes.native.is_pid_alive", return_value=False):
            assert not runtime.is_alive(Mock(pid=4321))


class TestForeground:
    """Test attached runs."""

    def test_run_foreground(
        self, fast_settings, registry, request_for, temp_dir,
        patch_dangerous_operations: Dict[str, Any],
    ) -> None:
        """Test catalina.sh run is used and the marker removed afterwards."""
        _executable(temp_dir / "dist" / "bin" / "catalina.sh")
        patch_dangerous_operations["popen"].return_value.poll.return_value = None
        runtime = NativeProcessRuntime(
            registry, fast_settings, environ={}, port_probe=lambda host, port: True
        )
        request = request_for({}, install_root=temp_dir / "dist")
        started = []

        code = runtime.run_foreground(request, on_started=started.append)

        assert code == 0
        command = patch_dangerous_operations["popen"].call_args.args[0]
        assert command == [str(temp_dir / "dist" / "bin" / "catalina.sh"), "run"]
        assert started[0].port == 8100
        assert registry.read("app").pid is None

    def test_interrupt_stops_server(
        self, fast_settings, registry, request_for, temp_dir,
        patch_dangerous_operations: Dict[str, Any],
    ) -> None:
        """Test Ctrl+C terminates the server and returns 130."""
        _executable(temp_dir / "dist" / "startup.sh")
        process = patch_dangerous_operations["popen"].return_value
        process.wait.side_effect = [KeyboardInterrupt(), 0]
        runtime = NativeProcessRuntime(registry, fast_settings, environ={})

        with patch("pangolin.runtimes.native.terminate_process") as mock_terminate:
            code = runtime.run_foreground(request_for({}, install_root=temp_dir / "dist"))

        assert code == 130
        mock_terminate.assert_called_once()
        assert registry.read("app").pid is None
