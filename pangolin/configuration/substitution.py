"""Variable substitution for configuration values.

``${NAME}`` and ``${NAME:-default}`` tokens are resolved against a dotenv
overlay first, then the process environment. Unresolved tokens without a
default are left as written, so applying substitution twice changes nothing.
``${secret:NAME}`` tokens are reserved for secret resolution and never
touched here.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set

from ..core.log import get_logger

logger = get_logger(__name__)

SECRET_PREFIX = "secret:"
DEFAULT_SEPARATOR = ":-"

_TOKEN_PATTERN = re.compile(r"\$\{([^}]+)\}")


def parse_dotenv(text: str) -> Dict[str, str]:
    """Parse ``KEY=VALUE`` lines.

    Blank lines and ``#`` comments are skipped, an ``export`` prefix is
    tolerated and a single pair of matching surrounding quotes is stripped.
    Lines without ``=`` are ignored.
    """
    values: Dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        values[key] = value
    return values


def load_dotenv(path: Path) -> Dict[str, str]:
    """Read a dotenv file into an overlay; a missing file yields an empty one."""
    path = Path(path)
    if not path.is_file():
        return {}
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Ignoring unreadable dotenv file %s: %s", path, e)
        return {}
    overlay = parse_dotenv(text)
    logger.debug("Loaded %d variables from %s", len(overlay), path)
    return overlay


def substitute(
    value: str,
    overlay: Optional[Mapping[str, str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Replace ``${NAME}`` / ``${NAME:-default}`` tokens in one string."""
    overlay = overlay or {}
    env = os.environ if environ is None else environ

    def replace(match: "re.Match[str]") -> str:
        expression = match.group(1)
        if expression.startswith(SECRET_PREFIX):
            return match.group(0)
        name, separator, default = expression.partition(DEFAULT_SEPARATOR)
        name = name.strip()
        if name in overlay:
            return overlay[name]
        if name in env:
            return env[name]
        if separator:
            return default
        return match.group(0)

    return _TOKEN_PATTERN.sub(replace, value)


def substitute_tree(
    obj: Any,
    overlay: Optional[Mapping[str, str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Any:
    """Apply :func:`substitute` to every string inside nested dicts and lists."""
    if isinstance(obj, str):
        return substitute(obj, overlay, environ)
    if isinstance(obj, dict):
        return {key: substitute_tree(item, overlay, environ) for key, item in obj.items()}
    if isinstance(obj, list):
        return [substitute_tree(item, overlay, environ) for item in obj]
    return obj


def find_secret_names(obj: Any) -> List[str]:
    """Sorted names of every ``${secret:NAME}`` placeholder in a tree."""
    names: Set[str] = set()

    def walk(node: Any) -> None:
        if isinstance(node, str):
            for match in _TOKEN_PATTERN.finditer(node):
                expression = match.group(1)
                if expression.startswith(SECRET_PREFIX):
                    names.add(expression[len(SECRET_PREFIX):].strip())
        elif isinstance(node, dict):
            for item in node.values():
                walk(item)
        elif isinstance(node, list):
            for item in node:
                walk(item)

    walk(obj)
    return sorted(names)


def resolve_secret_tree(obj: Any, secrets: Mapping[str, str]) -> Any:
    """Replace ``${secret:NAME}`` placeholders with values from ``secrets``.

    Placeholders whose name is absent from ``secrets`` are left verbatim.
    """

    def replace(match: "re.Match[str]") -> str:
        expression = match.group(1)
        if not expression.startswith(SECRET_PREFIX):
            return match.group(0)
        name = expression[len(SECRET_PREFIX):].strip()
        return secrets.get(name, match.group(0))

    if isinstance(obj, str):
        return _TOKEN_PATTERN.sub(replace, obj)
    if isinstance(obj, dict):
        return {key: resolve_secret_tree(item, secrets) for key, item in obj.items()}
    if isinstance(obj, list):
        return [resolve_secret_tree(item, secrets) for item in obj]
    return obj
