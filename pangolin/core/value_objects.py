"""Domain primitives for instance identification."""

from dataclasses import dataclass
from typing import Optional

_EXTRA_NAME_CHARS = ("_", "-", ".")


@dataclass(frozen=True)
class InstanceName:
    """Validated registry instance name. Hashable for use as dictionary key.

    Names become directory names under the registry root, so path
    separators and parent references are rejected.
    """

    value: str

    def __post_init__(self) -> None:
        if not self.value or not self.value.strip():
            raise ValueError("InstanceName cannot be empty")

        if self.value in (".", "..") or self.value.startswith("."):
            raise ValueError(f"InstanceName cannot start with '.': {self.value}")

        normalized = self.value
        for char in _EXTRA_NAME_CHARS:
            normalized = normalized.replace(char, "")
        if not normalized.isalnum():
            raise ValueError(
                f"InstanceName must be alphanumeric with _, - or .: {self.value}"
            )

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class EnvironmentKey:
    """Lock-store key for an environment; blank names map to the default key."""

    value: str

    DEFAULT = "_default"

    @classmethod
    def for_environment(cls, environment: Optional[str]) -> "EnvironmentKey":
        if environment is None or not environment.strip():
            return cls(cls.DEFAULT)
        return cls(environment.strip())

    @property
    def is_default(self) -> bool:
        return self.value == self.DEFAULT

    def __str__(self) -> str:
        return self.value
