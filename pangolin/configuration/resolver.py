"""Configuration resolution for one project.

A resolve reads ``pangolin.json`` (synthesizing and persisting a default
when absent), substitutes ``${NAME}`` variables from the project's dotenv
overlay and the process environment, and validates the result. Environment
overlays and secret placeholders are applied by separate, explicit calls.
"""

from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Mapping, Optional, Set, Tuple

from pydantic import ValidationError

from ..core.errors import ConfigError, DeserializationError, SecretResolutionError
from ..core.log import get_logger
from ..core.types import PangolinSettings
from ..utils.codec import read_json_file, write_json_file
from . import editor
from .lock_store import LockStore
from .merge import deep_merge
from .model import ServerConfiguration
from .substitution import find_secret_names, load_dotenv, resolve_secret_tree, substitute_tree

if TYPE_CHECKING:
    from ..utils.ports import PortAllocator

logger = get_logger(__name__)


class ConfigResolver:
    """Loads, defaults, overlays and saves server configurations."""

    def __init__(
        self,
        settings: PangolinSettings,
        port_allocator: Optional["PortAllocator"] = None,
        avoid_ports: Optional[Callable[[], Set[int]]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.settings = settings
        self.port_allocator = port_allocator
        self._avoid_ports = avoid_ports
        self._environ = environ

    def config_path(self, project_dir: Path, file_name: Optional[str] = None) -> Path:
        return Path(project_dir) / (file_name or self.settings.config_file_name)

    def load_variables(self, project_dir: Path) -> Dict[str, str]:
        """The dotenv overlay for one resolve call."""
        return load_dotenv(Path(project_dir) / self.settings.dotenv_file_name)

    def load(
        self,
        project_dir: Path,
        file_name: Optional[str] = None,
        persist_default: bool = True,
    ) -> ServerConfiguration:
        """Read the project's configuration, creating a default when absent.

        Raises:
            ConfigError: If the file is not valid JSON or does not validate
        """
        project_dir = Path(project_dir).resolve()
        path = self.config_path(project_dir, file_name)
        variables = self.load_variables(project_dir)

        if not path.exists():
            config = self.create_default(project_dir, variables, source_file=path.name)
            if persist_default:
                self.save(config, path)
                logger.info("Created default configuration %s", path)
            return config

        try:
            raw = read_json_file(path)
        except DeserializationError as e:
            raise ConfigError(e.message) from e
        if not isinstance(raw, dict):
            raise ConfigError(f"Configuration {path} must contain a JSON object")

        return self.parse(raw, project_dir, variables, source_file=path.name)

    def parse(
        self,
        raw: Dict[str, Any],
        project_dir: Optional[Path] = None,
        variables: Optional[Dict[str, str]] = None,
        source_file: Optional[str] = None,
    ) -> ServerConfiguration:
        """Substitute variables in ``raw`` and validate it.

        Raises:
            ConfigError: If the substituted mapping does not validate
        """
        data = substitute_tree(raw, variables or {}, self._environ)
        if not data.get("name") and project_dir is not None:
            data["name"] = Path(project_dir).name
        try:
            return ServerConfiguration.from_dict(
                data,
                project_dir=project_dir,
                raw=raw,
                variables=variables,
                source_file=source_file,
            )
        except ValidationError as e:
            where = source_file or "configuration"
            raise ConfigError(f"Invalid {where}: {e}") from e

    def create_default(
        self,
        project_dir: Path,
        variables: Optional[Dict[str, str]] = None,
        source_file: Optional[str] = None,
    ) -> ServerConfiguration:
        """Default configuration named after the directory, with free ports."""
        project_dir = Path(project_dir)
        data: Dict[str, Any] = {
            "name": project_dir.name,
            "version": self.settings.default_version,
        }
        if self.settings.default_runtime != "express":
            data["runtime"] = {"type": self.settings.default_runtime}
        config = ServerConfiguration.from_dict(
            data,
            project_dir=project_dir,
            variables=variables,
            source_file=source_file or self.settings.config_file_name,
        )
        if self.port_allocator is not None:
            avoid = self._avoid_ports() if self._avoid_ports is not None else set()
            self.port_allocator.assign_defaults(config, avoid)
            config._raw = config.to_json_dict()
        return config

    def save(self, config: ServerConfiguration, path: Path) -> None:
        """Write camelCase JSON atomically, omitting unset optional fields."""
        write_json_file(Path(path), config.to_json_dict())

    def apply_environment(
        self, config: ServerConfiguration, env_name: Optional[str]
    ) -> ServerConfiguration:
        """Merge ``environments[env_name]`` from the raw source onto the raw base.

        Raises:
            ConfigError: If the environment is unknown or itself declares
                ``environments``
        """
        if not env_name:
            return config

        raw = config.raw
        environments = raw.get("environments") or {}
        if env_name not in environments:
            declared = ", ".join(sorted(environments)) or "none"
            raise ConfigError(
                f"Unknown environment '{env_name}'; declared environments: {declared}"
            )

        overlay = environments[env_name] or {}
        if not isinstance(overlay, dict):
            raise ConfigError(f"Environment '{env_name}' must be a JSON object")
        if "environments" in overlay:
            raise ConfigError(f"Environment '{env_name}' may not declare nested environments")

        base = {key: value for key, value in raw.items() if key != "environments"}
        merged = deep_merge(base, overlay)
        logger.debug("Applied environment %s", env_name)
        return self.parse(merged, config.project_dir, config.variables, config.source_file)

    def resolve_secrets(self, config: ServerConfiguration, secret_store: Any) -> ServerConfiguration:
        """Replace ``${secret:NAME}`` placeholders with values from the store.

        Raises:
            SecretResolutionError: If placeholders exist and no store is
                configured, or a named secret is unknown to the store
        """
        data = config.to_json_dict()
        environments = data.pop("environments", None)
        names = find_secret_names(data)
        if not names:
            return config

        if secret_store is None:
            raise SecretResolutionError(
                f"Configuration references secrets ({', '.join(names)}) but no secret "
                "store is configured; set secret_store (PANGOLIN_SECRET_STORE=env)",
                missing=names,
            )

        values: Dict[str, str] = {}
        missing = []
        for name in names:
            value = secret_store.get(name)
            if value is None:
                missing.append(name)
            else:
                values[name] = value
        if missing:
            raise SecretResolutionError(
                f"Secret store has no value for: {', '.join(missing)}", missing=missing
            )

        resolved = resolve_secret_tree(data, values)
        if environments is not None:
            resolved["environments"] = environments
        return ServerConfiguration.model_validate(resolved).with_context_of(config)

    def get_value(self, config: ServerConfiguration, key: str) -> Any:
        """Read a dotted camelCase key from the effective configuration."""
        return editor.get_value(config.to_json_dict(), key)

    def update_values(
        self,
        project_dir: Path,
        assignments: Iterable[Tuple[str, Any]],
        file_name: Optional[str] = None,
    ) -> ServerConfiguration:
        """Set dotted keys in the source file, keeping its ``${...}`` tokens.

        String values are read as JSON literals where possible.

        Raises:
            ConfigError: If any environment of the project is locked, or the
                edited file no longer validates
        """
        project_dir = Path(project_dir).resolve()
        locked = LockStore(project_dir, self.settings.lock_file_name).locked_environments()
        if locked:
            raise ConfigError(
                f"Configuration is locked for {', '.join(locked)}; "
                "run 'pangolin server unlock' before editing it"
            )

        path = self.config_path(project_dir, file_name)
        if not path.exists():
            self.load(project_dir, file_name)
        try:
            raw = read_json_file(path)
        except DeserializationError as e:
            raise ConfigError(e.message) from e
        if not isinstance(raw, dict):
            raise ConfigError(f"Configuration {path} must contain a JSON object")

        for key, value in assignments:
            if isinstance(value, str):
                value = editor.parse_value(value)
            editor.set_value(raw, key, value)

        config = self.parse(raw, project_dir, self.load_variables(project_dir), path.name)
        write_json_file(path, raw)
        logger.info("Updated %s", path)
        return config
