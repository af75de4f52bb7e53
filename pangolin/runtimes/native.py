"""Native process backends: the bundled express distribution and vendor Tomcat.

The installation root is shared and read-only; each instance gets its own
working base (``CATALINA_BASE``) in its registry directory. Launcher scripts
fork the real JVM, so the worker pid is discovered after launch.
"""

import os
import subprocess
import time
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from ..core.enums import RuntimeType
from ..core.errors import AssetError, RuntimeLaunchError
from ..core.log import get_logger, log_process_event
from ..core.process import find_processes_by_cmdline, is_pid_alive, terminate_process
from ..core.types import PangolinSettings
from ..utils.filesystem import ensure_dir, read_text_if_exists, safe_remove
from .base import LaunchRequest, LaunchResult, PortProbe, RuntimeProvider

logger = get_logger(__name__)

CATALINA_PID_FILE = "catalina.pid"
LAUNCH_OUTPUT_FILE = "server.out"


class NativeProcessRuntime(RuntimeProvider):
    """Runs a vendor start script as a detached OS process."""

    def __init__(
        self,
        registry,
        settings: PangolinSettings,
        runtime_type: RuntimeType = RuntimeType.EXPRESS,
        asset_provider=None,
        port_probe: Optional[PortProbe] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(registry, settings, port_probe)
        if runtime_type not in (RuntimeType.EXPRESS, RuntimeType.TOMCAT):
            raise ValueError(f"Not a native runtime: {runtime_type}")
        self.runtime_type = runtime_type
        self.asset_provider = asset_provider
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def prepare(self, request: LaunchRequest) -> Path:
        """Resolve the installation root.

        Raises:
            AssetError: If no express distribution can be provided
            RuntimeLaunchError: If the Tomcat home is unset or incomplete
        """
        if self.runtime_type is RuntimeType.EXPRESS:
            if self.asset_provider is None:
                raise AssetError("No asset provider configured for the express runtime")
            return Path(self.asset_provider.ensure(request.config.version))

        home = request.config.runtime.install_home or self.environ.get("CATALINA_HOME")
        if not home:
            raise RuntimeLaunchError(
                "The tomcat runtime needs runtime.installHome or the CATALINA_HOME variable"
            )
        root = Path(home).expanduser()
        missing = [part for part in ("bin", "lib") if not (root / part).is_dir()]
        if missing:
            raise RuntimeLaunchError(
                f"{root} is not a Tomcat installation (missing {', '.join(missing)})"
            )
        return root

    def launcher_path(self, install_root: Path) -> Path:
        if self.runtime_type is RuntimeType.EXPRESS:
            return install_root / "startup.sh"
        return install_root / "bin" / "startup.sh"

    def foreground_command(self, install_root: Path) -> List[str]:
        catalina = install_root / "bin" / "catalina.sh"
        if self.runtime_type is RuntimeType.EXPRESS and not catalina.is_file():
            return [str(self.launcher_path(install_root))]
        return [str(catalina), "run"]

    def build_environment(self, request: LaunchRequest) -> Dict[str, str]:
        env = dict(self.environ)
        env.update(
            {
                "CATALINA_HOME": str(request.install_root),
                "CATALINA_BASE": str(request.instance_dir),
                "CATALINA_OPTS": " ".join(request.jvm_options()),
                "CATALINA_PID": str(request.instance_dir / CATALINA_PID_FILE),
                "CATALINA_OUT": str(request.log_dir / "catalina.out"),
            }
        )
        if request.config.admin.password:
            env["ENGINE_ADMIN_PASSWORD"] = request.config.admin.password
        env.update(request.config.env_vars)
        return env

    def _check_launcher(self, launcher: Path) -> None:
        if not launcher.is_file():
            raise RuntimeLaunchError(f"Launcher not found: {launcher}")
        if not os.access(launcher, os.X_OK):
            raise RuntimeLaunchError(f"Launcher is not executable: {launcher}")

    def start(self, request: LaunchRequest) -> LaunchResult:
        launcher = self.launcher_path(request.install_root)
        self._check_launcher(launcher)
        ensure_dir(request.log_dir)
        safe_remove(request.instance_dir / CATALINA_PID_FILE)

        env = self.build_environment(request)
        with open(request.log_dir / LAUNCH_OUTPUT_FILE, "ab") as output:
            try:
                process = subprocess.Popen(
                    [str(launcher)],
                    cwd=request.instance_dir,
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=output,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
            except OSError as e:
                raise RuntimeLaunchError(f"Failed to run {launcher}: {e}") from e

        log_process_event(logger, "launched", process.pid, instance_name=request.name)
        self.registry.write_marker(request.name, process.pid, request.port)

        pid = self.discover_pid(request, process.pid)
        if pid != process.pid:
            self.registry.update_pid(request.name, pid)

        try:
            self.wait_until_ready(request)
        except RuntimeLaunchError:
            terminate_process(pid, self.timeouts.server_shutdown, self.timeouts.force_kill)
            raise
        return LaunchResult(pid=pid, port=request.port, launcher_pid=process.pid)

    def discover_pid(self, request: LaunchRequest, launcher_pid: int) -> int:
        """Find the forked worker's pid.

        Polls ``catalina.pid`` first, then scans command lines for this
        instance's ``catalina.base``. Falls back to the launcher's pid.
        """
        pid_file = request.instance_dir / CATALINA_PID_FILE
        fragment = f"catalina.base={request.instance_dir}"
        deadline = time.monotonic() + self.timeouts.pid_discovery
        while True:
            text = read_text_if_exists(pid_file)
            if text is not None and text.isdigit() and is_pid_alive(int(text)):
                return int(text)
            matches = [pid for pid in find_processes_by_cmdline(fragment) if pid != launcher_pid]
            if matches:
                return matches[0]
            if time.monotonic() >= deadline:
                break
            time.sleep(self.timeouts.poll_interval)

        logger.warning(
            "Worker pid of %s not found within %ss; tracking launcher pid %s",
            request.name,
            self.timeouts.pid_discovery,
            launcher_pid,
        )
        return launcher_pid

    def stop(self, record, timeout: Optional[float] = None) -> bool:
        if record.pid is None or record.pid <= 0:
            return True
        return terminate_process(
            record.pid,
            self.timeouts.server_shutdown if timeout is None else timeout,
            self.timeouts.force_kill,
        )

    def is_alive(self, record) -> bool:
        return is_pid_alive(record.pid)

    def run_foreground(
        self, request: LaunchRequest, on_started: Optional[Callable[[LaunchResult], None]] = None
    ) -> int:
        command = self.foreground_command(request.install_root)
        self._check_launcher(Path(command[0]))
        ensure_dir(request.log_dir)
        return self._run_attached(
            request,
            command,
            self.build_environment(request),
            stop=lambda pid: terminate_process(
                pid, self.timeouts.server_shutdown, self.timeouts.force_kill
            ),
            on_started=on_started,
        )
