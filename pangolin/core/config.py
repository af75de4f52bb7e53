"""Framework settings management with environment variable integration and validation."""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional

from pydantic import ValidationError

from .types import PangolinSettings
from .errors import ConfigError


def load_env_overrides(prefix: str = "PANGOLIN_") -> Dict[str, Any]:
    """Load environment variables with the given prefix and convert to appropriate types."""
    overrides: Dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        field_name = key[len(prefix) :].lower()

        # Secret values share the prefix but are not settings
        if field_name.startswith("secrets_"):
            continue

        # Handle nested configuration (e.g., PANGOLIN_TIMEOUTS__SERVER_STARTUP)
        if "__" in field_name:
            parts = field_name.split("__")
            if len(parts) == 2:
                section, sub_field = parts
                overrides.setdefault(section, {})
                overrides[section][sub_field] = _convert_env_value(value)
            continue

        overrides[field_name] = _convert_env_value(value)

    return overrides


def _convert_env_value(value: str) -> Any:
    """Convert string environment value to appropriate Python type."""
    if not value:
        return None

    # Try to convert to int first (before boolean check)
    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if value.lower() in ("true", "yes", "on"):
        return True
    elif value.lower() in ("false", "no", "off"):
        return False

    return value


def _merge_sections(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


class SettingsManager:
    """Central settings management."""

    def __init__(self) -> None:
        self._settings: Optional[PangolinSettings] = None

    def load_settings(
        self, config_file: Optional[Path] = None, **overrides: Any
    ) -> PangolinSettings:
        """Load settings from file and environment with CLI overrides."""

        # Order of precedence:
        # 1. CLI overrides (highest priority)
        # 2. Environment variables
        # 3. Settings file data
        # 4. Model defaults (lowest priority)

        settings_data: Dict[str, Any] = {}

        if config_file and config_file.exists():
            settings_data = _merge_sections(settings_data, self._load_from_file(config_file))

        settings_data = _merge_sections(settings_data, load_env_overrides())
        settings_data = _merge_sections(
            settings_data, {k: v for k, v in overrides.items() if v is not None}
        )

        try:
            self._settings = PangolinSettings(**settings_data)
        except ValidationError as e:
            raise ConfigError(f"Invalid pangolin settings: {e}") from e

        return self._settings

    def get_settings(self) -> PangolinSettings:
        """Get current settings."""
        if self._settings is None:
            self._settings = self.load_settings()
        return self._settings

    def _load_from_file(self, config_file: Path) -> Dict[str, Any]:
        """Load settings from YAML file."""
        if config_file.suffix.lower() not in (".yml", ".yaml"):
            raise ConfigError(f"Unsupported settings file format: {config_file.suffix}")
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load settings file {config_file}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Settings file {config_file} must contain a mapping")
        return data


# Global settings manager instance
_settings_manager = SettingsManager()


def load_settings(config_file: Optional[Path] = None, **kwargs: Any) -> PangolinSettings:
    """Load global settings."""
    return _settings_manager.load_settings(config_file, **kwargs)


def get_settings() -> PangolinSettings:
    """Get current global settings."""
    return _settings_manager.get_settings()
