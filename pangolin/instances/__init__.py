"""Server instance registry and lifecycle orchestration."""

from .registry import CONTAINER_PID, InstanceRecord, InstanceRegistry

__all__ = ["CONTAINER_PID", "InstanceRecord", "InstanceRegistry"]
