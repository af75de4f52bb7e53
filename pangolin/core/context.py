"""Application context for explicit dependency management.

This module provides the ApplicationContext - the single immutable container
for all framework dependencies. This eliminates global mutable singletons and
makes dependencies explicit.

Usage:
    settings = load_settings()
    app_context = ApplicationContext.create(settings)
    orchestrator = ServerOrchestrator(app_context)

    # For testing
    test_context = ApplicationContext.for_testing(home_dir=tmp_path)
"""

import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional

from .log import Logger
from .process import ProcessExecutor
from .protocols import (
    AssetProvider,
    ConfigArtifactGenerator,
    DependencyMappingProvider,
    SecretStore,
)
from .types import PangolinSettings

if TYPE_CHECKING:
    from ..configuration.resolver import ConfigResolver
    from ..instances.health_checker import ServerHealthChecker
    from ..instances.registry import InstanceRegistry
    from ..runtimes.factory import RuntimeProviderFactory
    from ..utils.ports import PortAllocator


@dataclass(frozen=True)
class ApplicationContext:
    """Immutable application-wide context containing all dependencies.

    Attributes:
        settings: Framework settings
        logger: Logging instance
        port_allocator: Port allocation service
        registry: Instance registry under ``<home>/servers``
        resolver: Configuration resolver
        runtimes: Runtime provider factory, also the registry's liveness checker
        asset_provider: Source of runtime distributions
        artifact_generator: Writer of the runtime's derived configuration
        mapping_provider: Source of engine path mappings
        secret_store: Secret store, or None when secrets are disabled
        health_checker: HTTP health checker
        executor: One-shot command executor
    """

    settings: PangolinSettings
    logger: Logger
    port_allocator: "PortAllocator"
    registry: "InstanceRegistry"
    resolver: "ConfigResolver"
    runtimes: "RuntimeProviderFactory"
    asset_provider: AssetProvider
    artifact_generator: ConfigArtifactGenerator
    mapping_provider: DependencyMappingProvider
    secret_store: Optional[SecretStore]
    health_checker: "ServerHealthChecker"
    executor: ProcessExecutor

    @classmethod
    def create(
        cls,
        settings: PangolinSettings,
        *,
        logger: Optional[Logger] = None,
        port_allocator: Optional["PortAllocator"] = None,
        registry: Optional["InstanceRegistry"] = None,
        runtimes: Optional["RuntimeProviderFactory"] = None,
        asset_provider: Optional[AssetProvider] = None,
        artifact_generator: Optional[ConfigArtifactGenerator] = None,
        mapping_provider: Optional[DependencyMappingProvider] = None,
        secret_store: Optional[SecretStore] = None,
        health_checker: Optional["ServerHealthChecker"] = None,
        executor: Optional[ProcessExecutor] = None,
        port_probe: Any = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ApplicationContext":
        """Create application context with default implementations.

        Args:
            settings: Framework settings (required)
            logger: Optional custom logger
            port_allocator: Optional custom port allocator
            registry: Optional registry; when omitted, its liveness checks
                are dispatched through ``runtimes``
            runtimes: Optional runtime provider factory
            asset_provider: Optional runtime distribution provider
            artifact_generator: Optional derived configuration writer
            mapping_provider: Optional dependency mapping provider
            secret_store: Optional secret store (default from ``settings.secret_store``)
            health_checker: Optional HTTP health checker
            executor: Optional command executor
            port_probe: Optional readiness probe passed to runtime providers
            environ: Optional environment mapping used instead of ``os.environ``

        Returns:
            Immutable ApplicationContext with all dependencies initialized
        """
        # Import here to avoid circular dependencies at module level
        from .log import get_logger
        from ..configuration.resolver import ConfigResolver
        from ..configuration.secrets import create_secret_store
        from ..instances.collaborators import (
            LocalAssetProvider,
            NoDependencyMappings,
            NoopArtifactGenerator,
        )
        from ..instances.health_checker import ServerHealthChecker
        from ..instances.registry import InstanceRegistry
        from ..runtimes.factory import RuntimeProviderFactory
        from ..utils.ports import PortAllocator

        if logger is None:
            logger = get_logger("pangolin")

        if port_allocator is None:
            port_allocator = PortAllocator(settings.ports)

        owns_registry = registry is None
        if registry is None:
            registry = InstanceRegistry(settings.servers_dir)

        if asset_provider is None:
            asset_provider = LocalAssetProvider(settings.distributions_dir)

        if executor is None:
            executor = ProcessExecutor()

        if runtimes is None:
            runtimes = RuntimeProviderFactory(
                registry,
                settings,
                asset_provider=asset_provider,
                executor=executor,
                port_probe=port_probe,
                environ=environ,
            )
        if owns_registry:
            registry.set_liveness_checker(runtimes.is_alive)

        if secret_store is None:
            secret_store = create_secret_store(settings.secret_store)

        resolver = ConfigResolver(
            settings,
            port_allocator=port_allocator,
            avoid_ports=registry.claimed_ports,
            environ=environ,
        )

        return cls(
            settings=settings,
            logger=logger,
            port_allocator=port_allocator,
            registry=registry,
            resolver=resolver,
            runtimes=runtimes,
            asset_provider=asset_provider,
            artifact_generator=artifact_generator or NoopArtifactGenerator(),
            mapping_provider=mapping_provider or NoDependencyMappings(),
            secret_store=secret_store,
            health_checker=health_checker
            or ServerHealthChecker(logger=logger, timeout_config=settings.timeouts),
            executor=executor,
        )

    @classmethod
    def for_testing(
        cls,
        settings: Optional[PangolinSettings] = None,
        home_dir: Optional[Path] = None,
        **overrides,
    ) -> "ApplicationContext":
        """Create application context for testing.

        Args:
            settings: Optional settings (defaults to a private home directory)
            home_dir: Home directory used when ``settings`` is not given
            **overrides: Override specific dependencies (e.g., registry=fake)

        Returns:
            ApplicationContext configured for testing
        """
        if settings is None:
            if home_dir is None:
                home_dir = Path(tempfile.mkdtemp(prefix="pangolin-test-"))
            settings = PangolinSettings(home_dir=home_dir)
        return cls.create(settings, **overrides)
