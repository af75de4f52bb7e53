"""Cross-process advisory lock over the instance registry."""

import fcntl
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ..core.errors import RegistryLockTimeoutError
from ..core.log import get_logger

logger = get_logger(__name__)

LOCK_FILE_NAME = ".registry.lock"


@contextmanager
def registry_lock(
    registry_root: Path, timeout: float = 30.0, poll_interval: float = 0.1
) -> Iterator[Path]:
    """Hold an exclusive ``flock`` on ``<registry_root>/.registry.lock``.

    Serializes port validation and launch between concurrent invocations
    sharing one registry. The lock file itself is left in place; the kernel
    releases the lock when the descriptor closes, including on crash.

    Raises:
        RegistryLockTimeoutError: If the lock is not acquired within ``timeout``
    """
    if timeout <= 0:
        raise ValueError(f"timeout must be positive (got {timeout})")

    registry_root = Path(registry_root)
    registry_root.mkdir(parents=True, exist_ok=True)
    lock_path = registry_root / LOCK_FILE_NAME

    start = time.monotonic()
    with open(lock_path, "a+") as fh:
        while True:
            try:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except OSError:
                if time.monotonic() - start >= timeout:
                    raise RegistryLockTimeoutError(
                        f"Could not acquire registry lock {lock_path} within {timeout}s; "
                        "another pangolin invocation may be starting a server"
                    )
                time.sleep(poll_interval)

        logger.debug("Acquired registry lock %s", lock_path)
        try:
            yield lock_path
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
            logger.debug("Released registry lock %s", lock_path)
