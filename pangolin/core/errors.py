"""Error hierarchy for the pangolin server lifecycle manager."""

from typing import Optional, Dict, Any


class PangolinError(Exception):
    """Base exception for all pangolin errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Configuration Errors
class ConfigError(PangolinError):
    """Malformed configuration file, unknown environment or invalid setting."""


class SecretResolutionError(ConfigError):
    """A ${secret:NAME} placeholder could not be resolved."""

    def __init__(self, message: str, missing: Optional[list] = None,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.missing = missing or []


# Port Errors
class PortError(PangolinError):
    """Base class for port-related errors."""


class PortConflictError(PortError):
    """A configured port is already in use or used twice."""

    def __init__(self, message: str, role: Optional[str] = None, port: Optional[int] = None,
                 owner: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.role = role
        self.port = port
        self.owner = owner


class PortAllocationError(PortError):
    """No free port could be found."""


# Instance Errors
class InstanceError(PangolinError):
    """Base class for registry and instance errors."""


class NameConflictError(InstanceError):
    """Instance name is taken by a different project."""

    def __init__(self, message: str, name: str, suggested_name: str,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.name = name
        self.suggested_name = suggested_name


class AlreadyRunningError(InstanceError):
    """Instance (or another instance of the same project) is already running."""

    def __init__(self, message: str, name: str,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.name = name


class InstanceNotFoundError(InstanceError):
    """No registry entry exists for the requested instance."""


class RegistryLockTimeoutError(InstanceError):
    """The cross-process registry lock could not be acquired in time."""


# Runtime Errors
class RuntimeLaunchError(PangolinError):
    """Launcher missing or not executable, or server failed to bind in time."""


class AssetError(RuntimeLaunchError):
    """Runtime distribution is not available locally."""


class ServerShutdownError(PangolinError):
    """Error shutting down a server instance."""


# Process Errors
class ProcessError(PangolinError):
    """Base class for process-related errors."""


class ProcessStartupError(ProcessError):
    """Error during process startup."""


class ProcessTimeoutError(ProcessError):
    """Process operation timed out."""

    def __init__(self, message: str, timeout: float, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.timeout = timeout


# Data and Codec Errors
class CodecError(PangolinError):
    """Data encoding/decoding error."""


class SerializationError(CodecError):
    """Data serialization error."""


class DeserializationError(CodecError):
    """Data deserialization error."""


# Filesystem and IO Errors
class FilesystemError(PangolinError):
    """Filesystem operation error."""


class PathError(FilesystemError):
    """Path resolution or validation error."""


class AtomicWriteError(FilesystemError):
    """Atomic write operation failed."""
