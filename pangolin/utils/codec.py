"""Simple JSON utilities for data serialization."""

import json
from typing import Any
from datetime import datetime
from pathlib import Path
from ..core.errors import SerializationError, DeserializationError
from .filesystem import atomic_write, read_text


def to_json_string(obj: Any, sort_keys: bool = False) -> str:
    """Convert object to JSON string with custom serialization support."""
    try:
        return json.dumps(
            obj,
            indent=2,
            sort_keys=sort_keys,
            default=_json_serializer,
            ensure_ascii=False,
        )
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Failed to encode object to JSON: {e}") from e


def from_json_string(json_str: str) -> Any:
    """Parse JSON string to object."""
    try:
        return json.loads(json_str)
    except json.JSONDecodeError as e:
        raise DeserializationError(f"Failed to decode JSON string: {e}") from e


def read_json_file(path: Path) -> Any:
    """Read and parse a JSON file."""
    try:
        return from_json_string(read_text(path))
    except DeserializationError as e:
        raise DeserializationError(f"Invalid JSON in {path}: {e.message}") from e


def write_json_file(path: Path, obj: Any) -> None:
    """Atomically write an object as pretty-printed JSON."""
    atomic_write(path, to_json_string(obj) + "\n")


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for special types."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, Path):
        return str(obj)
    elif hasattr(obj, "model_dump"):
        # Pydantic v2 BaseModel
        return obj.model_dump(by_alias=True, exclude_none=True)
    elif hasattr(obj, "_asdict"):
        return obj._asdict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
