"""
Pangolin: local server lifecycle manager

Starts, stops and tracks independently configured web-application server
instances on one host. Each project's ``pangolin.json`` is resolved with
environment overlays, variable substitution and optional pinned lock
snapshots; ports are allocated without colliding with sibling instances and
the server is launched on a native, container or alternate-protocol runtime.
"""

__version__ = "1.0.0"

# Core exports
from .core.enums import PortRole, RuntimeType
from .core.types import PangolinSettings, PortRangeConfig, TimeoutConfig

__all__ = [
    "__version__",
    "PortRole",
    "RuntimeType",
    "PangolinSettings",
    "PortRangeConfig",
    "TimeoutConfig",
]
