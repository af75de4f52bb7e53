"""Pinned configuration snapshots per environment.

``pangolin-lock.json`` sits beside the project's configuration file and
holds, per environment key, the resolved configuration and the sha256 of
the source file at lock time. A start against a locked environment uses the
snapshot and reports drift when the source file has changed since.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from ..core.errors import ConfigError, DeserializationError
from ..core.log import get_logger
from ..core.value_objects import EnvironmentKey
from ..utils.codec import read_json_file, write_json_file
from ..utils.crypto import sha256_file
from .model import ServerConfiguration

logger = get_logger(__name__)

LOCKFILE_VERSION = 1
DEFAULT_LOCK_FILE_NAME = "pangolin-lock.json"


class EnvironmentLock(BaseModel):
    """One environment's pinned snapshot."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    locked: bool = False
    source_file: Optional[str] = None
    source_hash: Optional[str] = None
    snapshot: Optional[Dict[str, Any]] = None
    locked_at: Optional[str] = None

    @model_validator(mode="after")
    def validate_snapshot(self) -> "EnvironmentLock":
        if self.locked and self.snapshot is None:
            raise ValueError("a locked environment must carry a snapshot")
        return self


class LockFile(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    lockfile_version: int = LOCKFILE_VERSION
    server_locks: Dict[str, EnvironmentLock] = Field(default_factory=dict)


@dataclass
class DriftReport:
    """Comparison of the stored source hash with the file on disk."""

    env_key: str
    source_file: Optional[str]
    stored_hash: Optional[str]
    current_hash: Optional[str]
    drifted: bool

    def describe(self) -> str:
        return (
            f"Configuration {self.source_file} changed since environment "
            f"'{self.env_key}' was locked; using the locked snapshot. "
            "Run 'pangolin server lock --update' to refresh it."
        )


class LockStore:
    """Reads and writes the lock file of one project."""

    def __init__(self, project_dir: Path, file_name: str = DEFAULT_LOCK_FILE_NAME) -> None:
        self.project_dir = Path(project_dir)
        self.path = self.project_dir / file_name

    def read(self) -> LockFile:
        if not self.path.is_file():
            return LockFile()
        try:
            return LockFile.model_validate(read_json_file(self.path))
        except DeserializationError as e:
            raise ConfigError(e.message) from e
        except ValidationError as e:
            raise ConfigError(f"Invalid lock file {self.path}: {e}") from e

    def write(self, lock_file: LockFile) -> None:
        write_json_file(self.path, lock_file.model_dump(by_alias=True, mode="json"))

    def get(self, env_key: EnvironmentKey) -> Optional[EnvironmentLock]:
        return self.read().server_locks.get(str(env_key))

    def is_locked(self, env_key: EnvironmentKey) -> bool:
        entry = self.get(env_key)
        return entry is not None and entry.locked

    def locked_environments(self) -> List[str]:
        return sorted(key for key, entry in self.read().server_locks.items() if entry.locked)

    def lock(
        self,
        env_key: EnvironmentKey,
        config: ServerConfiguration,
        source_file: str,
        update: bool = False,
    ) -> EnvironmentLock:
        """Pin ``config`` for ``env_key``.

        Raises:
            ConfigError: If the key is already locked and ``update`` is False
        """
        lock_file = self.read()
        key = str(env_key)
        current = lock_file.server_locks.get(key)
        if current is not None and current.locked and not update:
            raise ConfigError(
                f"Environment '{key}' is already locked; pass update to refresh the snapshot"
            )

        entry = EnvironmentLock(
            locked=True,
            source_file=source_file,
            source_hash=sha256_file(self.project_dir / source_file),
            snapshot=config.to_json_dict(),
            locked_at=datetime.now(timezone.utc).isoformat(),
        )
        lock_file.server_locks[key] = entry
        self.write(lock_file)
        logger.info("Locked environment %s of %s", key, self.project_dir)
        return entry

    def unlock(self, env_key: EnvironmentKey) -> bool:
        """Clear the locked flag; returns whether anything changed."""
        lock_file = self.read()
        key = str(env_key)
        entry = lock_file.server_locks.get(key)
        if entry is None or not entry.locked:
            return False
        entry.locked = False
        self.write(lock_file)
        logger.info("Unlocked environment %s of %s", key, self.project_dir)
        return True

    def check_drift(self, env_key: EnvironmentKey) -> Optional[DriftReport]:
        entry = self.get(env_key)
        if entry is None or not entry.locked:
            return None
        current_hash = (
            sha256_file(self.project_dir / entry.source_file) if entry.source_file else None
        )
        return DriftReport(
            env_key=str(env_key),
            source_file=entry.source_file,
            stored_hash=entry.source_hash,
            current_hash=current_hash,
            drifted=current_hash != entry.source_hash,
        )

    def snapshot_configuration(self, env_key: EnvironmentKey) -> Optional[ServerConfiguration]:
        """The locked snapshot as a configuration, or None when not locked.

        Raises:
            ConfigError: If the stored snapshot no longer validates
        """
        entry = self.get(env_key)
        if entry is None or not entry.locked:
            return None
        try:
            return ServerConfiguration.from_dict(
                entry.snapshot,
                project_dir=self.project_dir,
                source_file=entry.source_file,
            )
        except ValidationError as e:
            raise ConfigError(f"Locked snapshot for '{env_key}' is invalid: {e}") from e
