"""Protocol definitions for external collaborators.

Protocols define the "what" (interfaces) without depending on "how" (implementations).
The orchestrator consumes these; :mod:`pangolin.instances.collaborators`
provides minimal local implementations.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Protocol


class AssetProvider(Protocol):
    """Provides a local installation of a versioned runtime distribution."""

    def ensure(self, version: str) -> Path:
        """Return the install root for ``version``, fetching it if needed.

        Must be idempotent.
        """


class ConfigArtifactGenerator(Protocol):
    """Writes the runtime's own derived configuration files."""

    def generate(
        self, instance_dir: Path, config: Any, project_dir: Path, install_root: Optional[Path]
    ) -> None:
        """Generate derived files into ``instance_dir``."""


class SecretStore(Protocol):
    """Source of ``${secret:NAME}`` values."""

    def get(self, name: str) -> Optional[str]:
        """Return the secret, or None when unknown."""


class DependencyMappingProvider(Protocol):
    """Computes engine path mappings from a project's dependencies."""

    def mappings_for(self, project_dir: Path) -> Dict[str, Any]:
        """Return mapping entries keyed by virtual path."""
