"""Minimal local implementations of the external collaborator protocols."""

from pathlib import Path
from typing import Any, Dict, Optional

from ..core.errors import AssetError
from ..core.log import get_logger

logger = get_logger(__name__)


class LocalAssetProvider:
    """Serves express distributions already unpacked under ``<home>/express/<version>``.

    Downloading distributions is left to external tooling.
    """

    def __init__(self, distributions_dir: Path) -> None:
        self.distributions_dir = Path(distributions_dir)

    def ensure(self, version: str) -> Path:
        root = self.distributions_dir / version
        if not (root / "startup.sh").is_file():
            raise AssetError(
                f"Runtime distribution {version} is not installed; "
                f"unpack it into {root}",
                details={"version": version, "path": str(root)},
            )
        return root


class NoopArtifactGenerator:
    """Writes no derived runtime configuration files."""

    def generate(
        self, instance_dir: Path, config: Any, project_dir: Path, install_root: Optional[Path]
    ) -> None:
        logger.debug("No derived configuration generated for %s", instance_dir)


class NoDependencyMappings:
    """Contributes no engine path mappings."""

    def mappings_for(self, project_dir: Path) -> Dict[str, Any]:
        return {}
