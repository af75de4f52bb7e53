"""Core framework components."""

from .value_objects import EnvironmentKey, InstanceName

__all__ = ["EnvironmentKey", "InstanceName"]
