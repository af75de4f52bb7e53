"""Core enumerations for pangolin.

Separated from types.py to break circular dependencies. This module contains
only enum definitions with no dependencies on other core modules.
"""

from enum import Enum
from typing import Optional


class PortRole(Enum):
    """Network role a server port is used for."""

    HTTP = "http"
    SHUTDOWN = "shutdown"
    MANAGEMENT = "management"
    HTTPS = "https"


class ConflictKind(Enum):
    """Classification of a port conflict."""

    INTERNAL = "internal"
    EXTERNAL_UNOWNED = "external_unowned"
    EXTERNAL_OWNED = "external_owned"


class PortResolutionMode(Enum):
    """How detected port conflicts are handled."""

    STRICT = "strict"
    REASSIGN = "reassign"


class RuntimeType(Enum):
    """Runtime backend used to host a server instance."""

    EXPRESS = "express"
    TOMCAT = "tomcat"
    DOCKER = "docker"
    JETTY = "jetty"

    @classmethod
    def parse(cls, value: Optional[str]) -> "RuntimeType":
        """Map a configured type name to a backend, defaulting to EXPRESS."""
        if value is None or not value.strip():
            return cls.EXPRESS
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.EXPRESS

    @classmethod
    def is_known(cls, value: Optional[str]) -> bool:
        if value is None or not value.strip():
            return True
        return value.strip().lower() in {member.value for member in cls}
