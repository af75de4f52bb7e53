"""Runtime provider abstraction.

An instance moves ``absent -> starting -> running -> stopping`` and ends up
either absent (sandbox) or stopped on disk. Providers implement the
backend-specific mechanics behind one start/stop/liveness contract.
"""

import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..configuration.model import ServerConfiguration
from ..core.enums import RuntimeType
from ..core.errors import RuntimeLaunchError
from ..core.log import get_logger, log_process_event, log_server_event
from ..core.types import PangolinSettings
from ..utils.ports import is_port_bound
from .options import AgentOverrides, build_jvm_options, resolve_active_agents

logger = get_logger(__name__)

PortProbe = Callable[[str, int], bool]


@dataclass
class LaunchRequest:
    """Everything a provider needs to launch one instance."""

    name: str
    config: ServerConfiguration
    project_dir: Path
    instance_dir: Path
    install_root: Optional[Path] = None
    environment: Optional[str] = None
    agents: AgentOverrides = field(default_factory=AgentOverrides)

    @property
    def port(self) -> int:
        return self.config.http_port

    @property
    def log_dir(self) -> Path:
        return self.instance_dir / "logs"

    def jvm_options(self) -> List[str]:
        return build_jvm_options(self.config, resolve_active_agents(self.config, self.agents))


@dataclass
class LaunchResult:
    pid: int
    port: int
    launcher_pid: Optional[int] = None


class RuntimeProvider(ABC):
    """Uniform lifecycle contract over one backend."""

    runtime_type: RuntimeType = RuntimeType.EXPRESS

    def __init__(
        self,
        registry,
        settings: PangolinSettings,
        port_probe: Optional[PortProbe] = None,
    ) -> None:
        self.registry = registry
        self.settings = settings
        self.timeouts = settings.timeouts
        self._port_probe = port_probe or is_port_bound

    def prepare(self, request: LaunchRequest) -> Optional[Path]:
        """Locate the installation root; None when the backend needs none."""
        return request.install_root

    @abstractmethod
    def start(self, request: LaunchRequest) -> LaunchResult:
        """Launch in the background and wait until the primary port is bound."""

    @abstractmethod
    def stop(self, record, timeout: Optional[float] = None) -> bool:
        """Shut the instance down; True when it is confirmed gone."""

    @abstractmethod
    def is_alive(self, record) -> Optional[bool]:
        """Backend-specific liveness of a registry entry.

        Returns False only when the backend is confirmed dead and None when
        its state cannot be determined.
        """

    @abstractmethod
    def run_foreground(
        self, request: LaunchRequest, on_started: Optional[Callable[[LaunchResult], None]] = None
    ) -> int:
        """Run attached to the console until the server exits; returns its exit code."""

    def wait_until_ready(
        self,
        request: LaunchRequest,
        port: Optional[int] = None,
        running: Optional[Callable[[], bool]] = None,
    ) -> bool:
        """Poll until the primary port accepts connections.

        When ``running`` is given, polling ends early with False once it
        reports the child gone.

        Raises:
            RuntimeLaunchError: If the port is not bound within ``server_startup``
        """
        port = port or request.port
        host = self.settings.ports.bind_host
        timeout = self.timeouts.server_startup
        deadline = time.monotonic() + timeout
        while True:
            if self._port_probe(host, port):
                log_server_event(logger, "ready", request.name, port=port)
                return True
            if running is not None and not running():
                return False
            if time.monotonic() >= deadline:
                break
            time.sleep(self.timeouts.poll_interval)
        raise RuntimeLaunchError(
            f"Server '{request.name}' did not bind port {port} within {timeout}s; "
            f"see {request.log_dir}",
            details={"port": port, "timeout": timeout},
        )

    def _run_attached(
        self,
        request: LaunchRequest,
        command: List[str],
        env: Optional[Dict[str, str]],
        stop: Callable[[int], object],
        on_started: Optional[Callable[[LaunchResult], None]] = None,
        marker_pid: Optional[int] = None,
    ) -> int:
        """Run ``command`` in the foreground with the registry marker held.

        ``on_started`` fires once the primary port is bound; a child that
        exits first never triggers it. An operator interrupt runs ``stop``
        and the marker is removed however the child ends.

        Raises:
            RuntimeLaunchError: If the child cannot be spawned or never binds its port
        """
        try:
            process = subprocess.Popen(
                command,
                cwd=request.instance_dir,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            raise RuntimeLaunchError(f"Failed to launch {command[0]}: {e}") from e

        pid = process.pid if marker_pid is None else marker_pid
        self.registry.write_marker(request.name, pid, request.port)
        log_process_event(logger, "foreground", process.pid, instance_name=request.name)
        try:
            try:
                ready = self.wait_until_ready(
                    request, running=lambda: process.poll() is None
                )
            except RuntimeLaunchError:
                self._stop_attached(process, stop)
                raise
            if ready and on_started is not None:
                on_started(LaunchResult(pid=pid, port=request.port, launcher_pid=process.pid))
            return process.wait()
        except KeyboardInterrupt:
            log_server_event(logger, "interrupted", request.name)
            self._stop_attached(process, stop)
            return 130
        finally:
            self.registry.clear_marker(request.name)

    def _stop_attached(self, process: subprocess.Popen, stop: Callable[[int], object]) -> None:
        stop(process.pid)
        try:
            process.wait(timeout=self.timeouts.force_kill)
        except subprocess.TimeoutExpired:
            process.kill()
