"""Structural deep merge of JSON-like trees."""

import copy
from typing import Any, Dict, List, Optional


def deep_merge(
    base: Dict[str, Any],
    override: Dict[str, Any],
    replaced_arrays: Optional[List[str]] = None,
    path: str = "$",
) -> Dict[str, Any]:
    """Merge ``override`` onto ``base`` without mutating either.

    Nested objects combine key by key; arrays and scalars from ``override``
    replace the base value wholesale. When ``replaced_arrays`` is given, the
    JSON path (``$.a.b``) of every base array replaced by a differing value
    is appended to it.
    """
    result = copy.deepcopy(base)
    for key, value in override.items():
        child_path = f"{path}.{key}"
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value, replaced_arrays, child_path)
            continue
        if replaced_arrays is not None and isinstance(current, list) and current != value:
            replaced_arrays.append(child_path)
        result[key] = copy.deepcopy(value)
    return result
