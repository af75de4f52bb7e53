"""Test configuration and fixtures for framework unit tests."""

import pytest
import tempfile
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set
from unittest.mock import patch

from pangolin.core.context import ApplicationContext
from pangolin.core.enums import RuntimeType
from pangolin.core.types import PangolinSettings
from pangolin.instances.registry import InstanceRegistry
from pangolin.runtimes.base import LaunchRequest, LaunchResult, RuntimeProvider
from pangolin.runtimes.factory import RuntimeProviderFactory
from pangolin.utils.ports import PortAllocator


class FakeRuntimeProvider(RuntimeProvider):
    """In-memory backend: pids are numbers in a set, nothing is spawned."""

    def __init__(self, registry, settings, runtime_type=RuntimeType.EXPRESS):
        super().__init__(registry, settings, port_probe=lambda host, port: True)
        self.runtime_type = runtime_type
        self.alive: Set[int] = set()
        self.started: List[LaunchRequest] = []
        self.stopped: List[str] = []
        self.next_pid = 40000
        self.fail_with: Optional[BaseException] = None

    def start(self, request: LaunchRequest) -> LaunchResult:
        if self.fail_with is not None:
            raise self.fail_with
        self.next_pid += 1
        pid = self.next_pid
        self.registry.write_marker(request.name, pid, request.port)
        self.alive.add(pid)
        self.started.append(request)
        return LaunchResult(pid=pid, port=request.port)

    def stop(self, record, timeout=None) -> bool:
        self.stopped.append(record.name)
        self.alive.discard(record.pid)
        return True

    def is_alive(self, record) -> bool:
        return record.pid in self.alive

    def run_foreground(self, request, on_started=None) -> int:
        if self.fail_with is not None:
            raise self.fail_with
        self.started.append(request)
        if on_started is not None:
            on_started(LaunchResult(pid=self.next_pid + 1, port=request.port))
        return 0


@dataclass
class OrchestratorEnvironment:
    """Everything an orchestrator test needs to arrange and inspect."""

    root: Path
    settings: PangolinSettings
    registry: InstanceRegistry
    runtimes: RuntimeProviderFactory
    provider: FakeRuntimeProvider
    context: ApplicationContext
    busy: Set[int] = field(default_factory=set)

    def project(self, *parts: str) -> Path:
        """Create and return a project directory below the test root."""
        path = self.root.joinpath("projects", *parts)
        path.mkdir(parents=True, exist_ok=True)
        return path


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp(prefix="pangolin_test_"))
    try:
        yield temp_path
    finally:
        if temp_path.exists():
            shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def isolated_environment(temp_dir):
    """Provide an isolated environment for tests."""
    with patch.dict("os.environ", {}, clear=True):
        yield temp_dir


@pytest.fixture
def settings(temp_dir) -> PangolinSettings:
    """Settings rooted in a private home directory."""
    return PangolinSettings(home_dir=temp_dir / "home")


@pytest.fixture
def orchestrator_env(temp_dir) -> OrchestratorEnvironment:
    """Application context wired to a fake runtime backend and a fake port probe.

    Ports listed in ``env.busy`` are reported as bound by another process.
    """
    settings = PangolinSettings(home_dir=temp_dir / "home")
    registry = InstanceRegistry(settings.servers_dir)
    busy: Set[int] = set()
    allocator = PortAllocator(settings.ports, probe=lambda port: port not in busy)

    runtimes = RuntimeProviderFactory(registry, settings)
    provider = FakeRuntimeProvider(registry, settings)
    for runtime_type in RuntimeType:
        runtimes.register(runtime_type, provider)
    registry.set_liveness_checker(runtimes.is_alive)

    context = ApplicationContext.create(
        settings,
        registry=registry,
        runtimes=runtimes,
        port_allocator=allocator,
        environ={},
    )
    return OrchestratorEnvironment(
        root=temp_dir,
        settings=settings,
        registry=registry,
        runtimes=runtimes,
        provider=provider,
        context=context,
        busy=busy,
    )

