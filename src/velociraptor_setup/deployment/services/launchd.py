"""
launchd backend for macOS hosts.

The daemon plist stays in place while the service is stopped; "running"
means the job is loaded and has a PID.
"""

import plistlib
import re
from pathlib import Path
from typing import Optional, Sequence

from ...error_handling import PrivilegeError, ServiceError
from ...system import CommandRunner, run_command
from .base import ServiceBackend, ServiceState, ServiceStatus

LAUNCHCTL = "launchctl"
DEFAULT_DAEMON_DIR = Path("/Library/LaunchDaemons")
LABEL_PREFIX = "com.velocidex."

_PID_RE = re.compile(r'"PID"\s*=\s*(\d+);')
_EXIT_RE = re.compile(r'"LastExitStatus"\s*=\s*(-?\d+);')


class LaunchdServiceBackend(ServiceBackend):
    """Manage Velociraptor as a launchd daemon."""

    def __init__(self, runner: CommandRunner = run_command, daemon_dir: Path = DEFAULT_DAEMON_DIR):
        super().__init__(runner)
        self.daemon_dir = Path(daemon_dir)

    @property
    def name(self) -> str:
        return "launchd"

    def label(self, service_name: str) -> str:
        return LABEL_PREFIX + service_name.lower()

    def plist_path(self, service_name: str) -> Path:
        return self.daemon_dir / f"{self.label(service_name)}.plist"

    def query(self, service_name: str) -> ServiceState:
        if not self.plist_path(service_name).exists():
            return ServiceState(ServiceStatus.NOT_INSTALLED)

        result = self.runner([LAUNCHCTL, "list", self.label(service_name)])
        if result.returncode != 0:
            # Plist present but job not loaded
            return ServiceState(ServiceStatus.STOPPED)

        output = result.stdout or ""
        pid_match = _PID_RE.search(output)
        if pid_match:
            return ServiceState(ServiceStatus.RUNNING, int(pid_match.group(1)))

        exit_match = _EXIT_RE.search(output)
        if exit_match and int(exit_match.group(1)) != 0:
            return ServiceState(ServiceStatus.FAILED)
        return ServiceState(ServiceStatus.STOPPED)

    def create(
        self,
        service_name: str,
        binary_path: Path,
        launch_args: Sequence[str],
        description: str,
        log_directory: Optional[Path] = None,
    ) -> None:
        plist = generate_plist(self.label(service_name), binary_path, launch_args, log_directory)
        path = self.plist_path(service_name)
        try:
            path.write_bytes(plist)
        except PermissionError as e:
            raise PrivilegeError(f"Cannot write launchd plist {path}: {e}") from e
        except OSError as e:
            raise ServiceError(f"Cannot write launchd plist {path}: {e}") from e

    def delete(self, service_name: str) -> None:
        path = self.plist_path(service_name)
        self.runner([LAUNCHCTL, "unload", "-w", str(path)])
        try:
            path.unlink(missing_ok=True)
        except PermissionError as e:
            raise PrivilegeError(f"Cannot remove launchd plist {path}: {e}") from e

    def start(self, service_name: str) -> None:
        self._run(
            [LAUNCHCTL, "load", "-w", str(self.plist_path(service_name))],
            f"load {service_name}",
        )

    def stop(self, service_name: str) -> None:
        self._run(
            [LAUNCHCTL, "unload", "-w", str(self.plist_path(service_name))],
            f"unload {service_name}",
        )

    def kill(self, service_name: str, process_id: Optional[int]) -> None:
        self._run(
            [LAUNCHCTL, "kill", "SIGKILL", f"system/{self.label(service_name)}"],
            f"kill {service_name} (PID {process_id})",
        )


def generate_plist(
    label: str,
    binary_path: Path,
    launch_args: Sequence[str],
    log_directory: Optional[Path] = None,
) -> bytes:
    """Generate a launchd daemon plist."""
    job = {
        "Label": label,
        "ProgramArguments": [str(binary_path), *launch_args],
        "RunAtLoad": True,
        "KeepAlive": True,
        "WorkingDirectory": str(Path(binary_path).parent),
    }
    if log_directory:
        job["StandardOutPath"] = str(Path(log_directory) / "velociraptor.log")
        job["StandardErrorPath"] = str(Path(log_directory) / "velociraptor.error.log")
    return plistlib.dumps(job)
