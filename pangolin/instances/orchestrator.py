"""Server lifecycle orchestration.

``ServerOrchestrator`` resolves a project's configuration, applies the name
and project collision rules, validates ports, launches through the selected
runtime provider and commits the result to the registry. Every call starts
from what is on disk; nothing is remembered between invocations.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..configuration.effective import role_ports, serialize_role_ports
from ..configuration.engine_config import write_engine_configuration
from ..configuration.lock_store import DriftReport, EnvironmentLock, LockStore
from ..configuration.model import ServerConfiguration
from ..core.context import ApplicationContext
from ..core.enums import PortResolutionMode
from ..core.errors import (
    AlreadyRunningError,
    ConfigError,
    InstanceNotFoundError,
    NameConflictError,
    ServerShutdownError,
)
from ..core.log import log_context, log_server_event
from ..core.types import HealthStatus
from ..core.value_objects import EnvironmentKey, InstanceName
from ..runtimes.base import LaunchRequest, LaunchResult, RuntimeProvider
from ..runtimes.options import AgentOverrides
from ..utils.locking import registry_lock
from ..utils.ports import PortConflictReport
from .registry import InstanceRecord


@dataclass
class StartOptions:
    """Per-invocation overrides for start and run."""

    environment: Optional[str] = None
    name: Optional[str] = None
    version: Optional[str] = None
    http_port: Optional[int] = None
    force: bool = False
    sandbox: bool = False
    reassign_ports: bool = False
    agents: AgentOverrides = field(default_factory=AgentOverrides)
    config_file: Optional[str] = None


@dataclass
class StartResult:
    record: InstanceRecord
    config: ServerConfiguration
    drift: Optional[DriftReport] = None
    replaced_arrays: List[str] = field(default_factory=list)
    port_report: Optional[PortConflictReport] = None

    @property
    def warnings(self) -> List[str]:
        messages = []
        if self.drift is not None and self.drift.drifted:
            messages.append(self.drift.describe())
        for json_path in self.replaced_arrays:
            messages.append(f"Engine configuration array {json_path} was replaced")
        if self.port_report is not None:
            for conflict in self.port_report.reassigned:
                messages.append(
                    f"{conflict.role.value} port {conflict.port} was busy; "
                    f"using {conflict.reassigned_to}"
                )
        return messages


@dataclass
class PruneResult:
    name: str
    removed: bool
    reason: Optional[str] = None


@dataclass
class PruneAllResult:
    removed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


@dataclass
class ServerInfo:
    """Effective configuration of a project, read without starting anything."""

    project_dir: Path
    config_path: Path
    config: ServerConfiguration
    instance_dir: Path
    environment: Optional[str] = None
    locked: bool = False
    drift: Optional[DriftReport] = None
    record: Optional[InstanceRecord] = None

    @property
    def ports(self) -> Dict[str, int]:
        return serialize_role_ports(role_ports(self.config))


@dataclass
class _PreparedStart:
    project_dir: Path
    config: ServerConfiguration
    drift: Optional[DriftReport]
    provider: RuntimeProvider


class ServerOrchestrator:
    """Start/stop/status facade over the registry and runtime providers."""

    def __init__(self, app_context: ApplicationContext) -> None:
        self.context = app_context
        self.settings = app_context.settings
        self.registry = app_context.registry
        self.resolver = app_context.resolver
        self.runtimes = app_context.runtimes
        self.port_allocator = app_context.port_allocator
        self._logger = app_context.logger

    def lock_store(self, project_dir: Path) -> LockStore:
        return LockStore(Path(project_dir).resolve(), self.settings.lock_file_name)

    # Configuration

    def resolve_configuration(
        self, project_dir: Path, options: StartOptions
    ) -> Tuple[ServerConfiguration, Optional[DriftReport]]:
        """Effective configuration for a start, with drift against a lock snapshot.

        A locked environment uses its snapshot; otherwise the source file is
        loaded and the environment overlay applied. Overrides and secrets are
        applied last.
        """
        env_key = EnvironmentKey.for_environment(options.environment)
        store = self.lock_store(project_dir)
        drift = None

        config = store.snapshot_configuration(env_key)
        if config is not None:
            drift = store.check_drift(env_key)
            if drift is not None and drift.drifted:
                self._logger.warning(drift.describe())
        else:
            config = self.resolver.load(
                project_dir, options.config_file, persist_default=not options.sandbox
            )
            config = self.resolver.apply_environment(config, options.environment)

        self._apply_overrides(config, options)
        config = self.resolver.resolve_secrets(config, self.context.secret_store)
        return config, drift

    def _apply_overrides(self, config: ServerConfiguration, options: StartOptions) -> None:
        if options.name:
            config.name = options.name
        if options.version:
            config.version = options.version
        if options.http_port is not None:
            config.http_port = options.http_port
        try:
            InstanceName(config.name)
        except ValueError as e:
            raise ConfigError(f"{e}; set a valid 'name' in the configuration or pass --name") from e

    # Collision policy

    def _check_name_collision(self, name: str, project_dir: Path, force: bool) -> None:
        record = self.registry.get(name)
        if record is None:
            return
        if record.running:
            raise AlreadyRunningError(
                f"Server '{name}' is already running on port {record.port}; "
                f"stop it with 'pangolin server stop --name {name}' or choose another name",
                name=name,
            )
        if record.project_dir is not None and record.project_dir == project_dir:
            self._logger.debug("Restarting stopped server %s", name)
            return
        if force:
            self._logger.warning(
                "Replacing registry entry '%s' of %s", name, record.project_dir or "unknown project"
            )
            self.registry.delete(name)
            return
        suggested = self.registry.suggest_name(name)
        raise NameConflictError(
            f"Server name '{name}' is already used by {record.project_dir or 'another project'}; "
            f"start with --name {suggested} or pass --force to replace it",
            name=name,
            suggested_name=suggested,
        )

    def _check_project_affinity(self, project_dir: Path) -> None:
        running = self.registry.find_running_for_project(project_dir)
        if running is not None:
            raise AlreadyRunningError(
                f"Project {project_dir} already has a running server '{running.name}'; "
                f"stop it with 'pangolin server stop --name {running.name}'",
                name=running.name,
            )

    # Start

    def _prepare(self, project_dir: Path, options: StartOptions) -> _PreparedStart:
        project_dir = Path(project_dir).resolve()
        if not project_dir.is_dir():
            raise ConfigError(f"Project directory does not exist: {project_dir}")

        config, drift = self.resolve_configuration(project_dir, options)
        provider = self.runtimes.provider_for(config.runtime.type)
        return _PreparedStart(project_dir, config, drift, provider)

    def _claim(self, prepared: _PreparedStart, options: StartOptions) -> PortConflictReport:
        """Collision checks, default ports and port validation.

        Must run under the registry lock so that no other start can claim
        the name, the project or a port between the checks and the launch.
        """
        config = prepared.config
        self._check_name_collision(config.name, prepared.project_dir, options.force)
        self._check_project_affinity(prepared.project_dir)
        if config.http_port == 0:
            self.port_allocator.assign_defaults(
                config, self.registry.claimed_ports(exclude=config.name)
            )
        return self._resolve_ports(config.name, config, options.reassign_ports)

    def _resolve_ports(self, name: str, config: ServerConfiguration, reassign: bool) -> PortConflictReport:
        mode = PortResolutionMode.REASSIGN if reassign else PortResolutionMode.STRICT
        report = self.port_allocator.resolve_conflicts(
            config,
            mode,
            owner_lookup=lambda port: self.registry.find_owner_of_port(port, exclude=name),
            avoid=self.registry.claimed_ports(exclude=name),
        )
        report.raise_for_conflicts()
        return report

    def _materialize(
        self, prepared: _PreparedStart, options: StartOptions
    ) -> Tuple[LaunchRequest, List[str]]:
        """Prepare the install root and the instance directory; safe to repeat."""
        config = prepared.config
        name = config.name
        request = LaunchRequest(
            name=name,
            config=config,
            project_dir=prepared.project_dir,
            instance_dir=self.registry.instance_dir(name),
            environment=options.environment,
            agents=options.agents,
        )
        # Unknown agents fail before anything is written
        request.jvm_options()
        request.install_root = prepared.provider.prepare(request)

        self.registry.create(
            name,
            prepared.project_dir,
            environment=options.environment,
            runtime_type=prepared.provider.runtime_type,
            sandbox=options.sandbox,
            ports=serialize_role_ports(role_ports(config)),
        )
        written = write_engine_configuration(
            request.instance_dir, config, prepared.project_dir, self.context.mapping_provider
        )
        self.context.artifact_generator.generate(
            request.instance_dir, config, prepared.project_dir, request.install_root
        )
        return request, written.replaced_arrays

    def _abandon(self, name: str, sandbox: bool) -> None:
        self.registry.clear_marker(name)
        if sandbox:
            self.registry.delete(name)

    def start(self, project_dir: Path, options: Optional[StartOptions] = None) -> StartResult:
        """Start the project's server in the background.

        Raises:
            ConfigError: Invalid configuration or unknown environment
            SecretResolutionError: Secrets referenced but not resolvable
            NameConflictError: Name taken by a stopped entry of another project
            AlreadyRunningError: Name or project already has a running server
            PortConflictError: A configured port is unavailable
            RuntimeLaunchError: The server could not be launched or did not bind
        """
        options = options or StartOptions()
        prepared = self._prepare(project_dir, options)
        config = prepared.config
        name = config.name

        with log_context(server=name), registry_lock(
            self.registry.root, timeout=self.settings.timeouts.registry_lock
        ):
            report = self._claim(prepared, options)
            try:
                request, replaced = self._materialize(prepared, options)
                result = prepared.provider.start(request)
                self.registry.write_marker(name, result.pid, result.port)
            except BaseException:
                self._abandon(name, options.sandbox)
                raise

        log_server_event(
            self._logger, "started", name, port=result.port, pid=result.pid,
            runtime=prepared.provider.runtime_type.value, sandbox=options.sandbox,
        )
        record = self.registry.read(name)
        record.running = True
        return StartResult(
            record=record,
            config=config,
            drift=prepared.drift,
            replaced_arrays=replaced,
            port_report=report,
        )

    def run(
        self,
        project_dir: Path,
        options: Optional[StartOptions] = None,
        on_started: Optional[Callable[[LaunchResult], None]] = None,
    ) -> int:
        """Run the project's server in the foreground until it exits.

        The registry lock covers the collision checks, port validation and
        materialization only; it is released before blocking on the server.
        """
        options = options or StartOptions()
        prepared = self._prepare(project_dir, options)
        name = prepared.config.name

        with registry_lock(self.registry.root, timeout=self.settings.timeouts.registry_lock):
            self._claim(prepared, options)
            try:
                request, _ = self._materialize(prepared, options)
            except BaseException:
                self._abandon(name, options.sandbox)
                raise

        log_server_event(self._logger, "foreground", name, port=request.port)
        try:
            return prepared.provider.run_foreground(request, on_started)
        finally:
            if options.sandbox:
                self.registry.delete(name)

    # Stop and inspection

    def stop(self, name: str, timeout: Optional[float] = None) -> bool:
        """Stop a server; returns whether a running server was shut down.

        The marker is removed and a sandbox entry deleted whatever the
        outcome of the shutdown.

        Raises:
            InstanceNotFoundError: If no entry has this name
        """
        record = self.registry.get(name)
        if record is None:
            raise InstanceNotFoundError(f"No server named '{name}'")

        if not record.running:
            self._logger.info("Server %s is not running", name)
            if record.sandbox:
                self.registry.delete(name)
            return False

        provider = self.runtimes.provider_for(record.runtime_type)
        stopped = False
        try:
            stopped = provider.stop(record, timeout)
        finally:
            self.registry.clear_marker(name)
            if record.sandbox:
                self.registry.delete(name)

        if stopped:
            log_server_event(self._logger, "stopped", name)
        else:
            self._logger.warning("Server %s may still be running (pid %s)", name, record.pid)
        return stopped

    def stop_project(self, project_dir: Path, timeout: Optional[float] = None) -> bool:
        record = self.registry.find_running_for_project(project_dir)
        if record is None:
            raise InstanceNotFoundError(f"No running server for {Path(project_dir).resolve()}")
        return self.stop(record.name, timeout)

    def restart(
        self, name: str, timeout: Optional[float] = None, reassign_ports: bool = False
    ) -> StartResult:
        """Stop a server if it runs, then start it again from its recorded project.

        The entry's environment and sandbox flag carry over; the configuration
        is read fresh from the project.

        Raises:
            InstanceNotFoundError: If no entry has this name
            ConfigError: If the entry has no recorded project directory
            ServerShutdownError: If the running server did not stop
        """
        record = self.status(name)
        if record.project_dir is None:
            raise ConfigError(f"Server '{name}' has no recorded project directory")

        if record.running and not self.stop(name, timeout):
            raise ServerShutdownError(
                f"Server '{name}' did not stop; not starting it again",
                details={"pid": record.pid},
            )
        log_server_event(self._logger, "restarting", name, project=str(record.project_dir))
        return self.start(
            record.project_dir,
            StartOptions(
                environment=record.environment,
                name=name,
                sandbox=record.sandbox,
                reassign_ports=reassign_ports,
            ),
        )

    def status(self, name: str) -> InstanceRecord:
        record = self.registry.get(name)
        if record is None:
            raise InstanceNotFoundError(f"No server named '{name}'")
        return record

    def status_for_project(self, project_dir: Path) -> Optional[InstanceRecord]:
        """The project's running entry, else any stopped entry recorded for it."""
        project_dir = Path(project_dir).resolve()
        running = self.registry.find_running_for_project(project_dir)
        if running is not None:
            return running
        for record in self.registry.list():
            if record.project_dir == project_dir:
                return record
        return None

    def list(self) -> List[InstanceRecord]:
        return self.registry.list()

    def info(
        self,
        project_dir: Path,
        environment: Optional[str] = None,
        config_file: Optional[str] = None,
    ) -> ServerInfo:
        """Effective configuration a start would use; nothing is written.

        A locked environment reports its snapshot; otherwise secrets are
        left unresolved.

        Raises:
            ConfigError: If the project has no configuration file or the
                environment is unknown
        """
        project_dir = Path(project_dir).resolve()
        config_path = project_dir / (config_file or self.settings.config_file_name)
        if not config_path.is_file():
            raise ConfigError(
                f"Configuration file not found: {config_path}; "
                f"'pangolin server start' creates a default one"
            )

        env_key = EnvironmentKey.for_environment(environment)
        store = self.lock_store(project_dir)
        drift = None
        config = store.snapshot_configuration(env_key)
        locked = config is not None
        if locked:
            drift = store.check_drift(env_key)
        else:
            config = self.resolver.load(project_dir, config_file, persist_default=False)
            config = self.resolver.apply_environment(config, environment)

        return ServerInfo(
            project_dir=project_dir,
            config_path=config_path,
            config=config,
            instance_dir=self.registry.instance_dir(config.name),
            environment=environment,
            locked=locked,
            drift=drift,
            record=self.registry.get(config.name),
        )

    def prune(self, name: str) -> PruneResult:
        """Delete a stopped entry; running entries are refused."""
        record = self.registry.get(name)
        if record is None:
            return PruneResult(name, removed=False, reason="not found")
        if record.running:
            return PruneResult(name, removed=False, reason="running")
        self.registry.delete(name)
        log_server_event(self._logger, "pruned", name)
        return PruneResult(name, removed=True)

    def prune_all(self) -> PruneAllResult:
        result = PruneAllResult()
        for record in self.registry.list():
            if record.running:
                result.skipped.append(record.name)
                continue
            self.registry.delete(record.name)
            result.removed.append(record.name)
        return result

    def health(self, name: str) -> HealthStatus:
        record = self.status(name)
        if not record.running or record.port is None:
            return HealthStatus(
                is_healthy=False, response_time=0.0, error_message=f"Server '{name}' is not running"
            )
        url = f"http://{self.settings.ports.bind_host}:{record.port}/"
        return self.context.health_checker.check_health(url)

    # Locks and editing

    def lock(
        self, project_dir: Path, environment: Optional[str] = None, update: bool = False
    ) -> EnvironmentLock:
        """Pin the fully resolved configuration, secrets included."""
        project_dir = Path(project_dir).resolve()
        config = self.resolver.load(project_dir)
        config = self.resolver.apply_environment(config, environment)
        config = self.resolver.resolve_secrets(config, self.context.secret_store)
        return self.lock_store(project_dir).lock(
            EnvironmentKey.for_environment(environment),
            config,
            source_file=config.source_file or self.settings.config_file_name,
            update=update,
        )

    def unlock(self, project_dir: Path, environment: Optional[str] = None) -> bool:
        return self.lock_store(project_dir).unlock(EnvironmentKey.for_environment(environment))

    def get_value(self, project_dir: Path, key: str, environment: Optional[str] = None) -> Any:
        config = self.resolver.load(project_dir)
        config = self.resolver.apply_environment(config, environment)
        return self.resolver.get_value(config, key)

    def set_values(
        self, project_dir: Path, assignments: Iterable[Tuple[str, Any]]
    ) -> ServerConfiguration:
        return self.resolver.update_values(project_dir, assignments)
