"""Selects the runtime provider for a configured backend type."""

from typing import Dict, Mapping, Optional, Union

from ..core.enums import RuntimeType
from ..core.log import get_logger
from ..core.process import ProcessExecutor
from ..core.types import PangolinSettings
from .alternate import AlternateProtocolRuntime
from .base import PortProbe, RuntimeProvider
from .container import ContainerRuntime
from .native import NativeProcessRuntime

logger = get_logger(__name__)


class RuntimeProviderFactory:
    """Creates and caches one provider per backend type.

    Unknown type names fall back to the express backend with a warning.
    """

    def __init__(
        self,
        registry,
        settings: PangolinSettings,
        asset_provider=None,
        executor: Optional[ProcessExecutor] = None,
        port_probe: Optional[PortProbe] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.registry = registry
        self.settings = settings
        self.asset_provider = asset_provider
        self.executor = executor or ProcessExecutor()
        self.port_probe = port_probe
        self.environ = environ
        self._providers: Dict[RuntimeType, RuntimeProvider] = {}

    def resolve_type(self, runtime_type: Union[str, RuntimeType, None]) -> RuntimeType:
        if isinstance(runtime_type, RuntimeType):
            return runtime_type
        if not RuntimeType.is_known(runtime_type):
            logger.warning(
                "Unknown runtime type '%s', using %s", runtime_type, RuntimeType.EXPRESS.value
            )
        return RuntimeType.parse(runtime_type)

    def register(self, runtime_type: RuntimeType, provider: RuntimeProvider) -> None:
        self._providers[runtime_type] = provider

    def provider_for(self, runtime_type: Union[str, RuntimeType, None]) -> RuntimeProvider:
        resolved = self.resolve_type(runtime_type)
        if resolved not in self._providers:
            self._providers[resolved] = self._create(resolved)
        return self._providers[resolved]

    def _create(self, runtime_type: RuntimeType) -> RuntimeProvider:
        if runtime_type is RuntimeType.DOCKER:
            return ContainerRuntime(
                self.registry, self.settings, executor=self.executor, port_probe=self.port_probe
            )
        if runtime_type is RuntimeType.JETTY:
            return AlternateProtocolRuntime(
                self.registry, self.settings, port_probe=self.port_probe, environ=self.environ
            )
        return NativeProcessRuntime(
            self.registry,
            self.settings,
            runtime_type=runtime_type,
            asset_provider=self.asset_provider,
            port_probe=self.port_probe,
            environ=self.environ,
        )

    def is_alive(self, record) -> Optional[bool]:
        """Liveness of a registry entry, checked by its own backend."""
        return self.provider_for(record.runtime_type).is_alive(record)


def create_runtime_provider(
    runtime_type: Union[str, RuntimeType, None],
    registry,
    settings: PangolinSettings,
    **kwargs,
) -> RuntimeProvider:
    return RuntimeProviderFactory(registry, settings, **kwargs).provider_for(runtime_type)
