"""Runtime backends hosting server instances."""

from .base import LaunchRequest, LaunchResult, RuntimeProvider
from .factory import RuntimeProviderFactory, create_runtime_provider
from .options import AgentOverrides

__all__ = [
    "AgentOverrides",
    "LaunchRequest",
    "LaunchResult",
    "RuntimeProvider",
    "RuntimeProviderFactory",
    "create_runtime_provider",
]
