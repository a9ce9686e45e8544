"""
Host interaction helpers.

Thin wrappers over subprocess, privilege detection and TCP probing so the
service and firewall managers can be exercised with fakes in tests.
"""

import ctypes
import logging
import os
import platform
import socket
import subprocess
from typing import Callable, Sequence

logger = logging.getLogger(__name__)

CommandRunner = Callable[..., subprocess.CompletedProcess]
PortProbe = Callable[[str, int], bool]

DEFAULT_COMMAND_TIMEOUT = 60


def run_command(
    args: Sequence[str],
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
    input: str = None,
) -> subprocess.CompletedProcess:
    """Run a command and capture its output.

    Launch failures and timeouts are reported as a failed CompletedProcess
    (127 missing executable, 126 not executable, 124 timeout) rather than
    raised, so callers can treat "tool not installed" like any other
    command failure.

    Args:
        args: Command and arguments
        timeout: Seconds before the command is abandoned
        input: Optional text written to stdin

    Returns:
        The completed process with text stdout/stderr
    """
    logger.debug("Running: %s", " ".join(args))
    try:
        return subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input,
        )
    except FileNotFoundError:
        return subprocess.CompletedProcess(
            list(args), 127, stdout="", stderr=f"{args[0]}: command not found"
        )
    except subprocess.TimeoutExpired:
        return subprocess.CompletedProcess(
            list(args), 124, stdout="", stderr=f"{args[0]}: timed out after {timeout}s"
        )
    except OSError as e:
        # Exec format error or a noexec mount
        return subprocess.CompletedProcess(list(args), 126, stdout="", stderr=f"{args[0]}: {e}")


def is_admin() -> bool:
    """Check whether the current process has administrative rights."""
    if os.name == "nt":
        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


def is_port_open(host: str, port: int, timeout: float = 1.0) -> bool:
    """Check whether a TCP port accepts connections."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def os_family() -> str:
    """Return the normalized OS family: windows, linux or darwin."""
    return platform.system().lower()
