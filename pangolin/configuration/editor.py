"""Dotted-key access to the raw camelCase configuration mapping."""

import json
from typing import Any, Dict, List

from ..core.errors import ConfigError


def _split(key: str) -> List[str]:
    parts = [part for part in key.split(".")]
    if not key or any(not part for part in parts):
        raise ConfigError(f"Invalid configuration key: '{key}'")
    return parts


def parse_value(text: str) -> Any:
    """Interpret a command-line value as a JSON literal, else a plain string."""
    try:
        return json.loads(text)
    except ValueError:
        return text


def get_value(data: Dict[str, Any], key: str) -> Any:
    """Look up ``a.b.c``.

    Raises:
        ConfigError: If any segment is missing
    """
    node: Any = data
    for part in _split(key):
        if not isinstance(node, dict) or part not in node:
            raise ConfigError(f"Configuration key not found: '{key}'")
        node = node[part]
    return node


def set_value(data: Dict[str, Any], key: str, value: Any) -> Dict[str, Any]:
    """Assign ``a.b.c`` in place, creating intermediate objects as needed."""
    parts = _split(key)
    node = data
    for part in parts[:-1]:
        child = node.get(part)
        if child is None:
            child = node[part] = {}
        elif not isinstance(child, dict):
            raise ConfigError(f"Cannot set '{key}': '{part}' is not an object")
        node = child
    node[parts[-1]] = value
    return data
