"""Per-project server configuration: model, resolution, lock snapshots."""

from .model import ServerConfiguration

__all__ = ["ServerConfiguration"]
