"""Jetty backend with stop-port handshake shutdown.

Jetty listens on ``STOP.PORT`` for the shared ``STOP.KEY`` followed by a
``stop`` command. When the handshake cannot be delivered, or the server does
not exit after it, the process is terminated with signals instead.
"""

import os
import socket
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from ..configuration.effective import effective_shutdown_port
from ..core.enums import PortRole, RuntimeType
from ..core.errors import RuntimeLaunchError
from ..core.log import get_logger, log_process_event
from ..core.process import is_pid_alive, terminate_process, wait_for_exit
from ..core.types import PangolinSettings
from ..instances.registry import STOP_KEY_FILE
from ..utils.crypto import random_id
from ..utils.filesystem import ensure_dir
from .base import LaunchRequest, LaunchResult, PortProbe, RuntimeProvider

logger = get_logger(__name__)

STOP_HOST = "127.0.0.1"


def new_stop_key() -> str:
    return f"pangolin-{random_id(8)}"


class AlternateProtocolRuntime(RuntimeProvider):
    """Runs Jetty via ``java -jar start.jar``."""

    runtime_type = RuntimeType.JETTY

    def __init__(
        self,
        registry,
        settings: PangolinSettings,
        port_probe: Optional[PortProbe] = None,
        environ: Optional[Mapping[str, str]] = None,
        java_binary: str = "java",
    ) -> None:
        super().__init__(registry, settings, port_probe)
        self._environ = environ
        self.java_binary = java_binary

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def prepare(self, request: LaunchRequest) -> Path:
        home = request.config.runtime.install_home or self.environ.get("JETTY_HOME")
        if not home:
            raise RuntimeLaunchError(
                "The jetty runtime needs runtime.installHome or the JETTY_HOME variable"
            )
        root = Path(home).expanduser()
        if not (root / "start.jar").is_file():
            raise RuntimeLaunchError(f"{root} is not a Jetty installation (missing start.jar)")
        return root

    def command(self, request: LaunchRequest, stop_key: str) -> List[str]:
        root = request.install_root
        return [
            self.java_binary,
            *request.jvm_options(),
            "-jar", str(root / "start.jar"),
            f"jetty.home={root}",
            f"jetty.base={request.instance_dir}",
            f"jetty.http.port={request.port}",
            f"STOP.PORT={effective_shutdown_port(request.config)}",
            f"STOP.KEY={stop_key}",
        ]

    def build_environment(self, request: LaunchRequest) -> Dict[str, str]:
        env = dict(self.environ)
        env.update(request.config.env_vars)
        return env

    def start(self, request: LaunchRequest) -> LaunchResult:
        stop_key = new_stop_key()
        self.registry.write_value(request.name, STOP_KEY_FILE, stop_key)
        ensure_dir(request.log_dir)

        with open(request.log_dir / "server.out", "ab") as output:
            try:
                process = subprocess.Popen(
                    self.command(request, stop_key),
                    cwd=request.instance_dir,
                    env=self.build_environment(request),
                    stdin=subprocess.DEVNULL,
                    stdout=output,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
            except OSError as e:
                raise RuntimeLaunchError(f"Failed to run {self.java_binary}: {e}") from e

        log_process_event(logger, "launched", process.pid, instance_name=request.name)
        self.registry.write_marker(request.name, process.pid, request.port)
        try:
            self.wait_until_ready(request)
        except RuntimeLaunchError:
            terminate_process(process.pid, self.timeouts.server_shutdown, self.timeouts.force_kill)
            raise
        return LaunchResult(pid=process.pid, port=request.port)

    def send_stop(self, stop_port: int, stop_key: str) -> bool:
        """Deliver the stop handshake; False when nothing is listening."""
        try:
            with socket.create_connection(
                (STOP_HOST, stop_port), timeout=self.timeouts.stop_handshake
            ) as sock:
                sock.sendall(f"{stop_key}\r\nstop\r\n".encode("ascii"))
            return True
        except OSError as e:
            logger.debug("Stop handshake on port %s failed: %s", stop_port, e)
            return False

    def _stop_pid(
        self, pid: int, stop_port: Optional[int], stop_key: Optional[str], timeout: float
    ) -> bool:
        if stop_port and stop_key and self.send_stop(stop_port, stop_key):
            if wait_for_exit([pid], timeout):
                return True
            logger.warning("PID %s ignored the stop handshake, terminating", pid)
        else:
            logger.warning("Stop handshake unavailable for PID %s, terminating", pid)
        return terminate_process(pid, timeout, self.timeouts.force_kill)

    def stop(self, record, timeout: Optional[float] = None) -> bool:
        if record.pid is None or record.pid <= 0:
            return True
        timeout = self.timeouts.server_shutdown if timeout is None else timeout
        stop_key = self.registry.read_value(record.name, STOP_KEY_FILE)
        stop_port = record.ports.get(PortRole.SHUTDOWN.value)
        return self._stop_pid(record.pid, stop_port, stop_key, timeout)

    def is_alive(self, record) -> bool:
        return is_pid_alive(record.pid)

    def run_foreground(
        self, request: LaunchRequest, on_started: Optional[Callable[[LaunchResult], None]] = None
    ) -> int:
        stop_key = new_stop_key()
        self.registry.write_value(request.name, STOP_KEY_FILE, stop_key)
        ensure_dir(request.log_dir)
        stop_port = effective_shutdown_port(request.config)
        return self._run_attached(
            request,
            self.command(request, stop_key),
            self.build_environment(request),
            stop=lambda pid: self._stop_pid(
                pid, stop_port, stop_key, self.timeouts.server_shutdown
            ),
            on_started=on_started,
        )
