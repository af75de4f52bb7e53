"""Filesystem registry of server instances.

One directory per instance under ``<home>/servers``. Single-value marker
files record the project, environment, backend and sandbox flag; the
liveness marker ``server.pid`` holds ``<pid>:<port>``. An entry is running
only while that marker exists and its backend reports it alive; dead
markers are removed as they are read.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from ..core.enums import RuntimeType
from ..core.log import get_logger, log_server_event
from ..core.process import is_pid_alive
from ..utils.filesystem import atomic_write, ensure_dir, read_text_if_exists, safe_remove

logger = get_logger(__name__)

PID_FILE = "server.pid"
PROJECT_PATH_FILE = ".project-path"
ENVIRONMENT_FILE = ".environment"
SANDBOX_FILE = ".sandbox"
RUNTIME_TYPE_FILE = ".runtime-type"
PORTS_FILE = ".ports"
CONTAINER_NAME_FILE = ".container-name"
STOP_KEY_FILE = ".stop-key"

# pid recorded for backends without an OS process to track
CONTAINER_PID = -1


@dataclass
class InstanceRecord:
    """Snapshot of one registry entry."""

    name: str
    directory: Path
    pid: Optional[int] = None
    port: Optional[int] = None
    project_dir: Optional[Path] = None
    environment: Optional[str] = None
    runtime_type: RuntimeType = RuntimeType.EXPRESS
    sandbox: bool = False
    ports: Dict[str, int] = field(default_factory=dict)
    running: bool = False

    @property
    def pid_marker(self) -> bool:
        return self.pid is not None

    @property
    def is_container(self) -> bool:
        return self.pid == CONTAINER_PID


# True alive, False confirmed dead, None unknown
LivenessChecker = Callable[[InstanceRecord], Optional[bool]]


def _default_liveness(record: InstanceRecord) -> bool:
    return is_pid_alive(record.pid)


def _parse_marker(text: str) -> Optional[tuple]:
    pid_text, sep, port_text = text.partition(":")
    if not sep:
        return None
    try:
        return int(pid_text), int(port_text)
    except ValueError:
        return None


class InstanceRegistry:
    """Directory-per-instance registry with self-healing reads."""

    def __init__(self, root: Path, liveness_checker: Optional[LivenessChecker] = None) -> None:
        self.root = Path(root)
        self._liveness = liveness_checker or _default_liveness

    def set_liveness_checker(self, liveness_checker: LivenessChecker) -> None:
        self._liveness = liveness_checker

    def instance_dir(self, name: str) -> Path:
        return self.root / name

    def exists(self, name: str) -> bool:
        return self.instance_dir(name).is_dir()

    def names(self) -> List[str]:
        if not self.root.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.root.iterdir()
            if entry.is_dir() and not entry.name.startswith(".")
        )

    def read(self, name: str) -> Optional[InstanceRecord]:
        """Read an entry without checking liveness.

        A malformed liveness marker is deleted.
        """
        directory = self.instance_dir(name)
        if not directory.is_dir():
            return None

        record = InstanceRecord(name=name, directory=directory)

        marker = read_text_if_exists(directory / PID_FILE)
        if marker is not None:
            parsed = _parse_marker(marker)
            if parsed is None:
                logger.debug("Removing malformed marker of %s: %r", name, marker)
                safe_remove(directory / PID_FILE)
            else:
                record.pid, record.port = parsed

        project = read_text_if_exists(directory / PROJECT_PATH_FILE)
        record.project_dir = Path(project) if project else None
        record.environment = read_text_if_exists(directory / ENVIRONMENT_FILE)
        record.sandbox = (directory / SANDBOX_FILE).exists()
        record.runtime_type = RuntimeType.parse(read_text_if_exists(directory / RUNTIME_TYPE_FILE))

        ports_text = read_text_if_exists(directory / PORTS_FILE)
        if ports_text:
            try:
                ports = json.loads(ports_text)
                record.ports = {str(k): int(v) for k, v in ports.items()}
            except (ValueError, TypeError, AttributeError):
                logger.debug("Ignoring unreadable ports marker of %s", name)
        if record.port is None and "http" in record.ports:
            record.port = record.ports["http"]
        return record

    def get(self, name: str) -> Optional[InstanceRecord]:
        """Read an entry and check liveness, healing stale state.

        A marker whose backend is confirmed dead is removed; a dead sandbox
        entry is deleted entirely and reported as absent. When the backend
        cannot report its state the marker is kept and the entry counts as
        running.
        """
        record = self.read(name)
        if record is None:
            return None
        if not record.pid_marker:
            return record

        alive = self._liveness(record)
        if alive is None:
            logger.warning("State of %s is unknown; keeping its marker", name)
            record.running = True
            return record
        if alive:
            record.running = True
            return record

        logger.debug("Clearing stale marker of %s (pid %s)", name, record.pid)
        self.clear_marker(name)
        if record.sandbox:
            log_server_event(logger, "sandbox_removed", name)
            self.delete(name)
            return None
        record.pid = None
        return record

    def list(self) -> List[InstanceRecord]:
        records = []
        for name in self.names():
            record = self.get(name)
            if record is not None:
                records.append(record)
        return records

    def is_running(self, name: str) -> bool:
        record = self.get(name)
        return record is not None and record.running

    def create(
        self,
        name: str,
        project_dir: Path,
        environment: Optional[str] = None,
        runtime_type: RuntimeType = RuntimeType.EXPRESS,
        sandbox: bool = False,
        ports: Optional[Dict[str, int]] = None,
    ) -> Path:
        """Materialize the entry's directory and markers; safe to repeat."""
        directory = ensure_dir(self.instance_dir(name))
        ensure_dir(directory / "logs")
        atomic_write(directory / PROJECT_PATH_FILE, str(Path(project_dir).resolve()))
        atomic_write(directory / RUNTIME_TYPE_FILE, runtime_type.value)

        if environment:
            atomic_write(directory / ENVIRONMENT_FILE, environment)
        else:
            safe_remove(directory / ENVIRONMENT_FILE)

        if sandbox:
            atomic_write(directory / SANDBOX_FILE, "1")
        else:
            safe_remove(directory / SANDBOX_FILE)

        if ports is not None:
            atomic_write(directory / PORTS_FILE, json.dumps(ports, sort_keys=True))
        return directory

    def write_marker(self, name: str, pid: int, port: int) -> None:
        atomic_write(self.instance_dir(name) / PID_FILE, f"{pid}:{port}")

    def update_pid(self, name: str, pid: int) -> None:
        """Rewrite the marker's pid, keeping its port."""
        record = self.read(name)
        if record is None or record.port is None:
            return
        self.write_marker(name, pid, record.port)

    def clear_marker(self, name: str) -> None:
        safe_remove(self.instance_dir(name) / PID_FILE)

    def delete(self, name: str) -> bool:
        return safe_remove(self.instance_dir(name))

    def write_value(self, name: str, file_name: str, value: str) -> None:
        atomic_write(self.instance_dir(name) / file_name, value)

    def read_value(self, name: str, file_name: str) -> Optional[str]:
        return read_text_if_exists(self.instance_dir(name) / file_name)

    def find_running_for_project(
        self, project_dir: Path, exclude: Optional[str] = None
    ) -> Optional[InstanceRecord]:
        """First running entry recorded for ``project_dir``."""
        target = Path(project_dir).resolve()
        for record in self.list():
            if record.name == exclude or not record.running:
                continue
            if record.project_dir is not None and record.project_dir == target:
                return record
        return None

    def find_owner_of_port(self, port: int, exclude: Optional[str] = None) -> Optional[str]:
        """Name of the running entry claiming ``port``, if any."""
        for record in self.list():
            if record.name == exclude or not record.running:
                continue
            if record.port == port or port in record.ports.values():
                return record.name
        return None

    def claimed_ports(self, exclude: Optional[str] = None) -> Set[int]:
        """Every port recorded by readable sibling entries."""
        ports: Set[int] = set()
        for name in self.names():
            if name == exclude:
                continue
            record = self.read(name)
            if record is None:
                continue
            ports.update(record.ports.values())
            if record.port is not None:
                ports.add(record.port)
        return ports

    def suggest_name(self, base: str) -> str:
        """First of ``base-1``, ``base-2``, ... without a registry entry."""
        index = 1
        while self.exists(f"{base}-{index}"):
            index += 1
        return f"{base}-{index}"
