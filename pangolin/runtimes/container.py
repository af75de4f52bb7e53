"""Container backend driving the docker CLI.

Containers have no OS process to track; the registry records the
``CONTAINER_PID`` sentinel and liveness comes from ``docker inspect``.
"""

from typing import Callable, List, Optional

from ..core.enums import RuntimeType
from ..core.errors import ProcessError, RuntimeLaunchError
from ..core.log import get_logger, log_server_event
from ..core.process import ProcessExecutor, ProcessResult
from ..core.types import PangolinSettings
from ..instances.registry import CONTAINER_NAME_FILE, CONTAINER_PID
from ..utils.filesystem import ensure_dir
from .base import LaunchRequest, LaunchResult, PortProbe, RuntimeProvider

logger = get_logger(__name__)

DEFAULT_IMAGE = "lucee/lucee"
DEFAULT_TAG = "latest"
CONTAINER_HTTP_PORT = 8080
CONTAINER_APP_DIR = "/app"
CONTAINER_LOG_DIR = "/opt/engine/logs"
MISSING_CONTAINER_MARKERS = ("No such object", "No such container")


def default_container_name(name: str) -> str:
    return f"pangolin-{name}"


class ContainerRuntime(RuntimeProvider):
    """Runs the server in a docker container."""

    runtime_type = RuntimeType.DOCKER

    def __init__(
        self,
        registry,
        settings: PangolinSettings,
        executor: Optional[ProcessExecutor] = None,
        port_probe: Optional[PortProbe] = None,
        docker_binary: str = "docker",
    ) -> None:
        super().__init__(registry, settings, port_probe)
        self.executor = executor or ProcessExecutor()
        self.docker_binary = docker_binary

    def container_name(self, request: LaunchRequest) -> str:
        return request.config.runtime.container_name or default_container_name(request.name)

    def image(self, request: LaunchRequest) -> str:
        runtime = request.config.runtime
        return f"{runtime.image or DEFAULT_IMAGE}:{runtime.tag or DEFAULT_TAG}"

    def run_arguments(self, request: LaunchRequest, detach: bool = True) -> List[str]:
        command = [self.docker_binary, "run"]
        command.append("-d" if detach else "--rm")
        command += [
            "--name", self.container_name(request),
            "-p", f"{request.port}:{CONTAINER_HTTP_PORT}",
            "-v", f"{request.project_dir}:{CONTAINER_APP_DIR}",
            "-v", f"{request.log_dir}:{CONTAINER_LOG_DIR}",
        ]
        env = dict(request.config.env_vars)
        if request.config.admin.password:
            env["ENGINE_ADMIN_PASSWORD"] = request.config.admin.password
        for key, value in env.items():
            command += ["-e", f"{key}={value}"]
        command.append(self.image(request))
        return command

    def _docker(self, *args: str) -> ProcessResult:
        return self.executor.run(
            [self.docker_binary, *args], timeout=self.timeouts.container_command
        )

    def _container_running(self, container: str) -> Optional[bool]:
        """True/False from ``docker inspect``; None when the container does not exist.

        Raises:
            ProcessError: If docker answers without saying whether the container exists
        """
        result = self._docker("inspect", "-f", "{{.State.Running}}", container)
        if result.ok:
            return result.stdout.strip() == "true"
        message = result.stderr.strip() or result.stdout.strip()
        if any(marker in message for marker in MISSING_CONTAINER_MARKERS):
            return None
        detail = message or f"exit code {result.returncode}"
        raise ProcessError(f"docker inspect {container} failed: {detail}")

    def _remove(self, container: str) -> None:
        try:
            self._docker("rm", "-f", container)
        except ProcessError as e:
            logger.warning("Could not remove container %s: %s", container, e)

    def start(self, request: LaunchRequest) -> LaunchResult:
        container = self.container_name(request)
        ensure_dir(request.log_dir)
        try:
            if self._container_running(container) is not None:
                logger.info("Removing stale container %s", container)
                self._docker("rm", "-f", container)
            result = self.executor.run(
                self.run_arguments(request), timeout=self.timeouts.container_command
            )
        except ProcessError as e:
            raise RuntimeLaunchError(f"Could not run docker: {e.message}") from e
        if not result.ok:
            raise RuntimeLaunchError(
                f"docker run failed for {container}: {result.stderr.strip() or result.stdout.strip()}"
            )

        self.registry.write_value(request.name, CONTAINER_NAME_FILE, container)
        self.registry.write_marker(request.name, CONTAINER_PID, request.port)
        log_server_event(logger, "container_started", request.name, container=container)

        try:
            self.wait_until_ready(request)
        except RuntimeLaunchError:
            self._remove(container)
            raise
        return LaunchResult(pid=CONTAINER_PID, port=request.port)

    def _record_container(self, record) -> str:
        return (
            self.registry.read_value(record.name, CONTAINER_NAME_FILE)
            or default_container_name(record.name)
        )

    def stop_container(self, container: str, timeout: Optional[float] = None) -> bool:
        grace = int(self.timeouts.server_shutdown if timeout is None else timeout)
        try:
            stopped = self._docker("stop", "-t", str(grace), container)
            self._docker("rm", container)
        except ProcessError as e:
            logger.warning("Could not stop container %s: %s", container, e.message)
            return False
        if not stopped.ok:
            logger.warning("docker stop %s failed: %s", container, stopped.stderr.strip())
        return stopped.ok

    def stop(self, record, timeout: Optional[float] = None) -> bool:
        return self.stop_container(self._record_container(record), timeout)

    def is_alive(self, record) -> Optional[bool]:
        """Whether the container runs; None when docker cannot tell."""
        try:
            return bool(self._container_running(self._record_container(record)))
        except ProcessError as e:
            logger.warning("Container status of %s unavailable: %s", record.name, e.message)
            return None

    def run_foreground(
        self, request: LaunchRequest, on_started: Optional[Callable[[LaunchResult], None]] = None
    ) -> int:
        container = self.container_name(request)
        ensure_dir(request.log_dir)
        self.registry.write_value(request.name, CONTAINER_NAME_FILE, container)
        return self._run_attached(
            request,
            self.run_arguments(request, detach=False),
            None,
            stop=lambda pid: self.stop_container(container),
            on_started=on_started,
            marker_pid=CONTAINER_PID,
        )
