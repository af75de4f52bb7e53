"""Core type definitions for pangolin framework settings."""

from typing import Dict, Optional, Any
from pathlib import Path

from pydantic import BaseModel, Field, model_validator


class TimeoutConfig(BaseModel):
    """Centralized timeout configuration to eliminate magical constants."""

    # Server lifecycle timeouts
    server_startup: float = 30.0
    server_shutdown: float = 10.0
    force_kill: float = 5.0

    # Native launcher scripts fork the real worker
    pid_discovery: float = 10.0

    # External tooling
    container_command: float = 60.0
    stop_handshake: float = 5.0
    health_check: float = 5.0

    # Cross-process registry lock
    registry_lock: float = 30.0

    poll_interval: float = 0.5


class PortRangeConfig(BaseModel):
    """Port defaults and scan ranges per role."""

    bind_host: str = "127.0.0.1"

    http_preferred: int = 8080
    http_range_start: int = 8000
    http_range_end: int = 8999

    shutdown_offset: int = 1000
    shutdown_range_start: int = 9000
    shutdown_range_end: int = 9999

    management_preferred: int = 8999
    https_default: int = 8443

    ephemeral_attempts: int = 20


class PangolinSettings(BaseModel):
    """Main framework settings."""

    home_dir: Optional[Path] = None
    config_file_name: str = "pangolin.json"
    dotenv_file_name: str = ".env"
    lock_file_name: str = "pangolin-lock.json"
    default_runtime: str = "express"
    default_version: str = "6.2.2.91"

    # None disables ${secret:NAME} resolution; "env" reads PANGOLIN_SECRETS_<NAME>
    secret_store: Optional[str] = None

    ports: PortRangeConfig = Field(default_factory=PortRangeConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)

    log_level: str = "INFO"
    verbose: int = 0

    @model_validator(mode="after")
    def validate_settings(self) -> "PangolinSettings":
        """Validate settings - NO SIDE EFFECTS.

        Directories are not created here; see ``servers_dir`` consumers.
        """
        from .errors import ConfigError

        ports = self.ports
        if not 0 < ports.http_range_start <= ports.http_range_end <= 65535:
            raise ConfigError(
                f"Invalid http port range {ports.http_range_start}-{ports.http_range_end}"
            )
        if not 0 < ports.shutdown_range_start <= ports.shutdown_range_end <= 65535:
            raise ConfigError(
                f"Invalid shutdown port range {ports.shutdown_range_start}-{ports.shutdown_range_end}"
            )

        for name, value in self.timeouts.model_dump().items():
            if value <= 0:
                raise ConfigError(f"Timeout {name} must be positive")

        if self.secret_store not in (None, "env"):
            raise ConfigError(f"Unknown secret store: {self.secret_store}")

        return self

    @property
    def effective_home_dir(self) -> Path:
        return self.home_dir if self.home_dir is not None else Path.home() / ".pangolin"

    @property
    def servers_dir(self) -> Path:
        return self.effective_home_dir / "servers"

    @property
    def distributions_dir(self) -> Path:
        return self.effective_home_dir / "express"


# Health and status types
class HealthStatus(BaseModel):
    """Server health status."""

    is_healthy: bool
    response_time: float
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class ProcessStats(BaseModel):
    """Process statistics."""

    pid: int
    memory_rss: int
    memory_vms: int
    cpu_percent: float
    num_threads: int
    status: str
