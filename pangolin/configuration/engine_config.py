"""Layered engine-configuration payload.

Three layers in ascending precedence: a file referenced by
``configurationFile`` (relative to the project), the inline
``configuration`` payload and the dependency path mappings. Objects
deep-merge; arrays and scalars are replaced wholesale.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.errors import ConfigError, DeserializationError, PathError
from ..core.log import get_logger
from ..utils.codec import read_json_file, write_json_file
from .merge import deep_merge
from .model import ServerConfiguration
from .substitution import substitute_tree

logger = get_logger(__name__)

ENGINE_CONFIG_FILE_NAME = "engine-config.json"


@dataclass
class EngineConfigWriteResult:
    """Outcome of writing the merged engine configuration."""

    path: Optional[Path]
    replaced_arrays: List[str] = field(default_factory=list)
    written: bool = False


def resolve_engine_configuration(
    config: ServerConfiguration,
    project_dir: Path,
    mapping_provider: Any = None,
) -> Optional[Dict[str, Any]]:
    """Merge the three layers; None when no layer contributes anything.

    Raises:
        ConfigError: If the referenced file is missing or not a JSON object
    """
    merged: Optional[Dict[str, Any]] = None

    if config.configuration_file:
        file_path = Path(project_dir) / config.configuration_file
        try:
            payload = read_json_file(file_path)
        except PathError as e:
            raise ConfigError(f"Engine configuration file not found: {file_path}") from e
        except DeserializationError as e:
            raise ConfigError(str(e.message)) from e
        if not isinstance(payload, dict):
            raise ConfigError(f"Engine configuration file {file_path} must contain a JSON object")
        merged = substitute_tree(payload, config.variables)

    if config.configuration:
        merged = deep_merge(merged or {}, config.configuration)

    if mapping_provider is not None:
        mappings = mapping_provider.mappings_for(Path(project_dir))
        if mappings:
            merged = deep_merge(merged or {}, {"mappings": mappings})

    return merged


def write_engine_configuration(
    instance_dir: Path,
    config: ServerConfiguration,
    project_dir: Path,
    mapping_provider: Any = None,
    file_name: str = ENGINE_CONFIG_FILE_NAME,
) -> EngineConfigWriteResult:
    """Merge the resolved payload over any previously written artifact.

    Every JSON path where an existing array is replaced by a differing value
    is returned and logged.
    """
    payload = resolve_engine_configuration(config, project_dir, mapping_provider)
    if payload is None:
        return EngineConfigWriteResult(path=None)

    target = Path(instance_dir) / file_name
    existing: Dict[str, Any] = {}
    if target.is_file():
        try:
            loaded = read_json_file(target)
        except DeserializationError as e:
            logger.warning("Replacing unreadable engine configuration %s: %s", target, e.message)
            loaded = {}
        if isinstance(loaded, dict):
            existing = loaded

    replaced: List[str] = []
    merged = deep_merge(existing, payload, replaced)
    for json_path in replaced:
        logger.warning("Engine configuration array %s in %s was replaced", json_path, target)

    write_json_file(target, merged)
    return EngineConfigWriteResult(path=target, replaced_arrays=replaced, written=True)
