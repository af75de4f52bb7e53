"""Process execution, liveness checks and signal-based termination."""

import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import psutil

from .errors import ProcessStartupError, ProcessTimeoutError
from .log import get_logger, log_process_event
from .types import ProcessStats

logger = get_logger(__name__)


@dataclass
class ProcessResult:
    """Result of process execution."""

    returncode: int
    stdout: str
    stderr: str
    duration: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessExecutor:
    """Executes one-shot commands with timeout enforcement."""

    def run(
        self,
        command: List[str],
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        capture_output: bool = True,
    ) -> ProcessResult:
        """Execute a command and wait for it.

        Raises:
            ProcessTimeoutError: If the command does not finish within ``timeout``
            ProcessStartupError: If the command cannot be executed at all
        """
        start_time = time.time()
        log_process_event(logger, "exec.start", command=command, timeout=timeout)
        logger.debug("Command: %s", " ".join(command))
        try:
            process = subprocess.Popen(
                command,
                cwd=cwd,
                env=env,
                stdout=subprocess.PIPE if capture_output else None,
                stderr=subprocess.PIPE if capture_output else None,
                text=True,
            )
        except (OSError, subprocess.SubprocessError, ValueError) as e:
            log_process_event(logger, "exec.error", error=str(e))
            raise ProcessStartupError(f"Failed to execute command {command[0]}: {e}") from e

        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            duration = time.time() - start_time
            log_process_event(logger, "exec.timeout", process.pid, duration=duration)
            process.kill()
            process.communicate()
            raise ProcessTimeoutError(
                f"Command {command[0]} timed out after {timeout}s",
                timeout=timeout or 0.0,
                details={"command": command, "duration": duration},
            ) from e

        duration = time.time() - start_time
        result = ProcessResult(
            returncode=process.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration=duration,
        )
        if result.ok:
            log_process_event(logger, "exec.ok", process.pid, duration=duration)
        else:
            log_process_event(
                logger, "exec.failed", process.pid,
                return_code=process.returncode, duration=duration,
            )
        return result


def is_pid_alive(pid: Optional[int]) -> bool:
    """True when ``pid`` exists and is not a zombie."""
    if pid is None or pid <= 0:
        return False
    try:
        process = psutil.Process(pid)
        return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # Exists, owned by someone else
        return True


def get_child_pids(parent_pid: int) -> List[int]:
    """Get all child process PIDs for a given parent PID.

    This function recursively finds all descendants of the given process.

    Args:
        parent_pid: The parent process PID

    Returns:
        List of all child/descendant PIDs
    """
    child_pids = []
    try:
        parent = psutil.Process(parent_pid)
        children = parent.children(recursive=True)
        child_pids = [child.pid for child in children if child.is_running()]
        logger.debug(
            "Found %s child processes for PID %s: %s",
            len(child_pids),
            parent_pid,
            child_pids,
        )
    except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
        logger.debug("Could not get children for PID %s: %s", parent_pid, e)
    except (psutil.Error, OSError) as e:
        logger.warning("Error getting child PIDs for %s: %s", parent_pid, e)
    return child_pids


def signal_pids(pids: Iterable[int], signal_num: int) -> int:
    """Send ``signal_num`` to each pid; returns how many were signalled."""
    sent = 0
    for pid in pids:
        try:
            os.kill(pid, signal_num)
            sent += 1
            logger.debug("Sent signal %s to PID %s", signal_num, pid)
        except (OSError, ProcessLookupError):
            logger.debug("PID %s already dead or inaccessible", pid)
    return sent


def wait_for_exit(pids: Iterable[int], timeout: float, poll_interval: float = 0.1) -> bool:
    """Wait until none of ``pids`` is alive; False on timeout."""
    pids = list(pids)
    deadline = time.monotonic() + timeout
    while True:
        if not any(is_pid_alive(pid) for pid in pids):
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(poll_interval)


def terminate_process(pid: int, timeout: float = 10.0, kill_timeout: float = 5.0) -> bool:
    """SIGTERM the process tree, wait, then SIGKILL whatever is left.

    Args:
        pid: Root of the process tree
        timeout: Grace period after SIGTERM
        kill_timeout: Time to wait after SIGKILL

    Returns:
        True if every process in the tree is gone
    """
    if not is_pid_alive(pid):
        return True

    pids = [pid] + get_child_pids(pid)
    log_process_event(logger, "terminate", pid, tree=pids)
    signal_pids(pids, signal.SIGTERM)
    if wait_for_exit(pids, timeout):
        log_process_event(logger, "terminated", pid)
        return True

    logger.warning("PID %s did not exit within %ss, sending SIGKILL", pid, timeout)
    signal_pids([p for p in pids if is_pid_alive(p)], signal.SIGKILL)
    if wait_for_exit(pids, kill_timeout):
        log_process_event(logger, "killed", pid)
        return True

    logger.error("PID %s still exists after SIGKILL and %ss wait", pid, kill_timeout)
    return False


def find_processes_by_cmdline(fragment: str) -> List[int]:
    """PIDs whose command line contains ``fragment``."""
    matches = []
    for process in psutil.process_iter(["pid", "cmdline"]):
        try:
            cmdline = process.info.get("cmdline") or []
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if fragment in " ".join(cmdline):
            matches.append(process.info["pid"])
    return matches


def process_stats(pid: int) -> Optional[ProcessStats]:
    """Resource usage of a live process, or None when it is gone."""
    try:
        ps_process = psutil.Process(pid)
        memory_info = ps_process.memory_info()
        return ProcessStats(
            pid=pid,
            memory_rss=memory_info.rss,
            memory_vms=memory_info.vms,
            cpu_percent=ps_process.cpu_percent(),
            num_threads=ps_process.num_threads(),
            status=ps_process.status(),
        )
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None
