"""Simple utilities for random identifiers and content hashing."""

import hashlib
import secrets
import string
from pathlib import Path
from typing import Optional


def random_id(length: int = 16) -> str:
    """Generate a cryptographically secure random ID."""
    if length <= 0:
        raise ValueError("Length must be positive")
    alphabet = string.ascii_lowercase + string.digits
    return "".join((secrets.choice(alphabet) for _ in range(length)))


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> Optional[str]:
    """Hex sha256 of a file's contents, or None when the file does not exist."""
    path = Path(path)
    if not path.is_file():
        return None
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()
