"""
Windows Service Control Manager backend (sc.exe).
"""

import re
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from .base import ServiceBackend, ServiceState, ServiceStatus

SC = "sc.exe"

# sc.exe exit codes
ERROR_SERVICE_DOES_NOT_EXIST = 1060
ERROR_SERVICE_ALREADY_RUNNING = 1056
ERROR_SERVICE_NOT_ACTIVE = 1062
ERROR_SERVICE_MARKED_FOR_DELETE = 1072
ERROR_SERVICE_NEVER_STARTED = 1077

_STATE_RE = re.compile(r"^\s*STATE\s*:\s*(\d+)", re.MULTILINE)
_PID_RE = re.compile(r"^\s*PID\s*:\s*(\d+)", re.MULTILINE)
_EXIT_RE = re.compile(r"^\s*WIN32_EXIT_CODE\s*:\s*(\d+)", re.MULTILINE)
# "[SC] OpenService FAILED 1060:" when the service is not registered
_MISSING_RE = re.compile(r"FAILED\s+%d\b" % ERROR_SERVICE_DOES_NOT_EXIST)

# SERVICE_STATUS dwCurrentState values
_RUNNING_STATES = {2, 4, 5, 6, 7}  # start pending, running, continue/pause pending, paused
_STOPPED_STATES = {1, 3}  # stopped, stop pending


class WindowsServiceBackend(ServiceBackend):
    """Manage Velociraptor through the Windows Service Control Manager."""

    @property
    def name(self) -> str:
        return "windows-scm"

    def query(self, service_name: str) -> ServiceState:
        result = self.runner([SC, "queryex", service_name])
        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode == ERROR_SERVICE_DOES_NOT_EXIST or _MISSING_RE.search(output):
            return ServiceState(ServiceStatus.NOT_INSTALLED)
        if result.returncode != 0:
            self._raise_for(result, f"query service {service_name}")
        return parse_queryex(result.stdout or "")

    def create(
        self,
        service_name: str,
        binary_path: Path,
        launch_args: Sequence[str],
        description: str,
        log_directory: Optional[Path] = None,
    ) -> None:
        command_line = subprocess.list2cmdline([str(binary_path), *launch_args])
        self._run(
            [
                SC, "create", service_name,
                "binPath=", command_line,
                "start=", "auto",
                "DisplayName=", service_name,
            ],
            f"register service {service_name}",
        )
        self._run(
            [SC, "description", service_name, description],
            f"set description of {service_name}",
        )
        # Restart after 60 seconds on crash, reset the failure count daily
        self._run(
            [SC, "failure", service_name, "reset=", "86400", "actions=", "restart/60000"],
            f"set recovery actions of {service_name}",
        )

    def delete(self, service_name: str) -> None:
        self._run(
            [SC, "delete", service_name],
            f"delete service {service_name}",
            ok_codes=(0, ERROR_SERVICE_DOES_NOT_EXIST, ERROR_SERVICE_MARKED_FOR_DELETE),
        )

    def start(self, service_name: str) -> None:
        self._run(
            [SC, "start", service_name],
            f"start service {service_name}",
            ok_codes=(0, ERROR_SERVICE_ALREADY_RUNNING),
        )

    def stop(self, service_name: str) -> None:
        self._run(
            [SC, "stop", service_name],
            f"stop service {service_name}",
            ok_codes=(0, ERROR_SERVICE_NOT_ACTIVE),
        )

    def kill(self, service_name: str, process_id: Optional[int]) -> None:
        if not process_id:
            return
        self._run(
            ["taskkill", "/F", "/PID", str(process_id)],
            f"terminate {service_name} (PID {process_id})",
            ok_codes=(0, 128),
        )


def parse_queryex(output: str) -> ServiceState:
    """Parse `sc.exe queryex` output into a ServiceState."""
    state_match = _STATE_RE.search(output)
    if not state_match:
        return ServiceState(ServiceStatus.FAILED)

    state = int(state_match.group(1))
    pid_match = _PID_RE.search(output)
    pid = int(pid_match.group(1)) if pid_match else 0

    if state in _RUNNING_STATES:
        return ServiceState(ServiceStatus.RUNNING, pid or None)

    exit_match = _EXIT_RE.search(output)
    exit_code = int(exit_match.group(1)) if exit_match else 0
    if state in _STOPPED_STATES and exit_code not in (0, ERROR_SERVICE_NEVER_STARTED):
        return ServiceState(ServiceStatus.FAILED)
    return ServiceState(ServiceStatus.STOPPED)
