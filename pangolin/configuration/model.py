"""Declarative per-project server configuration.

The JSON file uses camelCase keys (``httpPort``, ``envVars``); the model
exposes snake_case attributes. Older files missing whole sections, or
carrying ``null`` for them, are back-filled with defaults.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_HTTP_PORT = 8080
DEFAULT_JMX_PORT = 8999
DEFAULT_VERSION = "6.2.2.91"


class ConfigSection(BaseModel):
    """Base for camelCase JSON sections; unknown keys are ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def _none_to_empty_dict(value: Any) -> Any:
    return {} if value is None else value


def _none_to_empty_list(value: Any) -> Any:
    return [] if value is None else value


class HttpsConfig(ConfigSection):
    enabled: bool = False
    port: Optional[int] = None
    redirect: Optional[bool] = None


class JmxConfig(ConfigSection):
    port: int = DEFAULT_JMX_PORT


class MonitoringConfig(ConfigSection):
    enabled: bool = True
    jmx: JmxConfig = Field(default_factory=JmxConfig)

    @field_validator("jmx", mode="before")
    @classmethod
    def fill_missing_jmx(cls, value: Any) -> Any:
        return _none_to_empty_dict(value)


class JvmConfig(ConfigSection):
    max_memory: str = "512m"
    min_memory: str = "128m"
    additional_args: List[str] = Field(default_factory=list)

    @field_validator("additional_args", mode="before")
    @classmethod
    def fill_missing_args(cls, value: Any) -> Any:
        return _none_to_empty_list(value)


class UrlRewriteConfig(ConfigSection):
    enabled: bool = True
    router_file: str = "index.cfm"


class AdminConfig(ConfigSection):
    enabled: bool = True
    password: Optional[str] = None


class AgentConfig(ConfigSection):
    """A named bundle of extra JVM flags that can be switched on per start."""

    enabled: bool = False
    jvm_args: List[str] = Field(default_factory=list)
    description: Optional[str] = None

    @field_validator("jvm_args", mode="before")
    @classmethod
    def fill_missing_args(cls, value: Any) -> Any:
        return _none_to_empty_list(value)


class RuntimeConfig(ConfigSection):
    """Backend descriptor. ``type`` is one of express, tomcat, docker, jetty."""

    type: Optional[str] = None
    install_home: Optional[str] = None
    image: Optional[str] = None
    tag: Optional[str] = None
    container_name: Optional[str] = None


class ServerConfiguration(ConfigSection):
    """One server's configuration, read fresh from the project on every invocation."""

    name: str = ""
    host: Optional[str] = None
    version: str = DEFAULT_VERSION
    http_port: int = DEFAULT_HTTP_PORT
    shutdown_port: Optional[int] = None
    https: Optional[HttpsConfig] = None
    webroot: str = "./"
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    jvm: JvmConfig = Field(default_factory=JvmConfig)
    url_rewrite: UrlRewriteConfig = Field(default_factory=UrlRewriteConfig)
    admin: AdminConfig = Field(default_factory=AdminConfig)
    enable_engine: bool = True
    agents: Dict[str, AgentConfig] = Field(default_factory=dict)
    environments: Optional[Dict[str, Dict[str, Any]]] = None
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    configuration: Optional[Dict[str, Any]] = None
    configuration_file: Optional[str] = None
    env_vars: Dict[str, str] = Field(default_factory=dict)

    # Resolution context; never serialized
    _raw: Dict[str, Any] = PrivateAttr(default_factory=dict)
    _variables: Dict[str, str] = PrivateAttr(default_factory=dict)
    _project_dir: Optional[Path] = PrivateAttr(default=None)
    _source_file: Optional[str] = PrivateAttr(default=None)

    @field_validator(
        "monitoring", "jvm", "url_rewrite", "admin", "runtime", "agents", mode="before"
    )
    @classmethod
    def fill_missing_sections(cls, value: Any) -> Any:
        return _none_to_empty_dict(value)

    @field_validator("env_vars", mode="before")
    @classmethod
    def stringify_env_values(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {
                str(k): ("" if v is None else str(v))
                for k, v in value.items()
                if k is not None and str(k).strip()
            }
        return value

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        project_dir: Optional[Path] = None,
        raw: Optional[Dict[str, Any]] = None,
        variables: Optional[Dict[str, str]] = None,
        source_file: Optional[str] = None,
    ) -> "ServerConfiguration":
        """Validate ``data`` and attach its resolution context.

        Raises:
            pydantic.ValidationError: If the data does not fit the schema
        """
        config = cls.model_validate(data)
        config._raw = dict(raw if raw is not None else data)
        config._variables = dict(variables or {})
        config._project_dir = Path(project_dir) if project_dir is not None else None
        config._source_file = source_file
        return config

    @property
    def raw(self) -> Dict[str, Any]:
        return self._raw

    @property
    def variables(self) -> Dict[str, str]:
        return self._variables

    @property
    def project_dir(self) -> Optional[Path]:
        return self._project_dir

    @property
    def source_file(self) -> Optional[str]:
        return self._source_file

    def with_context_of(self, other: "ServerConfiguration") -> "ServerConfiguration":
        """Copy another configuration's resolution context onto this one."""
        self._raw = other._raw
        self._variables = other._variables
        self._project_dir = other._project_dir
        self._source_file = other._source_file
        return self

    def to_json_dict(self) -> Dict[str, Any]:
        """camelCase representation as written to disk."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
