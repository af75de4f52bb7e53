"""Secret stores consulted when resolving ``${secret:NAME}`` placeholders."""

import os
from typing import Mapping, Optional

DEFAULT_SECRET_ENV_PREFIX = "PANGOLIN_SECRETS_"


class EnvironmentSecretStore:
    """Reads secrets from ``PANGOLIN_SECRETS_<NAME>`` environment variables."""

    def __init__(self, prefix: str = DEFAULT_SECRET_ENV_PREFIX,
                 environ: Optional[Mapping[str, str]] = None) -> None:
        self.prefix = prefix
        self._environ = environ

    def get(self, name: str) -> Optional[str]:
        env = os.environ if self._environ is None else self._environ
        key = self.prefix + name.upper().replace("-", "_").replace(".", "_")
        return env.get(key)


class MappingSecretStore:
    """In-memory secret store."""

    def __init__(self, secrets: Mapping[str, str]) -> None:
        self._secrets = dict(secrets)

    def get(self, name: str) -> Optional[str]:
        return self._secrets.get(name)


def create_secret_store(kind: Optional[str]) -> Optional[EnvironmentSecretStore]:
    """Build the store named by the ``secret_store`` setting, or None when unset."""
    if kind is None:
        return None
    if kind == "env":
        return EnvironmentSecretStore()
    from ..core.errors import ConfigError

    raise ConfigError(f"Unknown secret store: {kind}")
