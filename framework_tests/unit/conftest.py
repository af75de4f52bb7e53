"""
Pytest configuration and fixtures for framework unit tests.
Provides comprehensive cleanup to prevent resource accumulation and state leakage.
"""

import pytest
import logging
from typing import Any, Dict, Generator, Tuple
from unittest.mock import patch


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Drop handlers installed by CLI tests so the next test configures afresh."""
    yield

    from pangolin.core.log import reset_logging

    reset_logging()


@pytest.fixture(autouse=True)
def patch_dangerous_operations() -> Generator[Dict[str, Any], None, None]:
    """Patch potentially dangerous operations during unit tests."""

    with (
        patch("subprocess.Popen") as mock_popen,
        patch("socket.socket") as mock_socket,
        patch("os.kill") as mock_kill,
        patch("os.killpg") as mock_killpg,
        patch("psutil.Process") as mock_psutil_process,
        patch("threading.Thread") as mock_thread,
    ):

        # Configure safe defaults for Popen mock
        mock_subprocess = mock_popen.return_value
        mock_subprocess.pid = 12345
        mock_subprocess.poll.return_value = 0  # Process finished successfully
        mock_subprocess.terminate.return_value = None
        mock_subprocess.kill.return_value = None
        mock_subprocess.wait.return_value = 0
        mock_subprocess.returncode = 0

        # Configure stdout/stderr to prevent infinite loops
        # Set to None to simulate console inheritance (no streaming)
        mock_subprocess.stdout = None
        mock_subprocess.stderr = None

        # Configure socket mock
        mock_socket_instance = mock_socket.return_value.__enter__.return_value

        def mock_bind(addr: Tuple[str, int]) -> None:
            host, port = addr
            # Reject invalid ports
            if port < 1 or port > 65535:
                raise OSError(f"Invalid port: {port}")
            return None

        mock_socket_instance.bind.side_effect = mock_bind
        mock_socket_instance.connect_ex.return_value = (
            1  # Connection failed (port free)
        )
        mock_socket_instance.settimeout.return_value = None

        # Configure process killing mocks
        mock_kill.return_value = None
        mock_killpg.return_value = None

        # Configure psutil process mock
        mock_psutil_instance = mock_psutil_process.return_value
        mock_psutil_instance.children.return_value = []
        mock_psutil_instance.terminate.return_value = None
        mock_psutil_instance.kill.return_value = None
        mock_psutil_instance.pid = 12345

        # Configure threading mock to prevent background threads
        mock_thread_instance = mock_thread.return_value
        mock_thread_instance.start.return_value = None
        mock_thread_instance.join.return_value = None
        mock_thread_instance.is_alive.return_value = False
        mock_thread_instance.daemon = True

        yield {
            "popen": mock_popen,
            "socket": mock_socket,
            "kill": mock_kill,
            "killpg": mock_killpg,
            "psutil_process": mock_psutil_process,
            "thread": mock_thread,
        }


@pytest.fixture
def isolated_log_manager() -> Generator[Any, None, None]:
    """Provide an isolated LogManager for testing."""
    from pangolin.core.log import LogManager

    manager = LogManager()
    yield manager

    # Cleanup
    try:
        manager.shutdown()
    except Exception:
        pass


# Session-level cleanup
@pytest.fixture(scope="session", autouse=True)
def session_cleanup() -> Generator[None, None, None]:
    """Perform session-wide cleanup."""
    yield

    # For unit tests, skip expensive session cleanup
    # Unit tests should not create persistent resources


def pytest_runtest_setup(item: Any) -> None:
    """Setup for each test."""
    # Ensure clean start
    pass


def pytest_runtest_teardown(item: Any, nextitem: Any) -> None:
    """Teardown after each test."""
    # Unit tests are fully mocked and don't create real resources (processes, files, sockets)
    # so we don't need delays or aggressive GC between tests. This significantly speeds up
    # the test suite (~5s saved on 500 tests by removing the 10ms sleep per test).

    # Force garbage collection only when needed for tests that create heavy objects
    if "needs_gc" in item.keywords:
        import gc
        gc.collect()


def pytest_sessionstart(session: Any) -> None:
    """Called after the Session object has been created."""
    # Set up session-wide test isolation
    pass


def pytest_sessionfinish(session: Any, exitstatus: int) -> None:
    """Called after whole test run finished."""
    # Final cleanup
    logging.shutdown()

    # Unit tests don't create real threads, so no need to wait
    # Integration tests (if they exist separately) may need thread cleanup

    # Force final garbage collection
    import gc
    gc.collect()
