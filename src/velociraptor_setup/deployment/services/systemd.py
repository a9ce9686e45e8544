"""
systemd backend for Linux hosts.
"""

import shlex
from pathlib import Path
from typing import Optional, Sequence

from ...error_handling import PrivilegeError, ServiceError
from ...system import CommandRunner, run_command
from .base import ServiceBackend, ServiceState, ServiceStatus

SYSTEMCTL = "systemctl"
DEFAULT_UNIT_DIR = Path("/etc/systemd/system")

_RUNNING_STATES = {"active", "activating", "reloading", "deactivating"}


class SystemdServiceBackend(ServiceBackend):
    """Manage Velociraptor as a systemd unit."""

    def __init__(self, runner: CommandRunner = run_command, unit_dir: Path = DEFAULT_UNIT_DIR):
        super().__init__(runner)
        self.unit_dir = Path(unit_dir)

    @property
    def name(self) -> str:
        return "systemd"

    def unit_name(self, service_name: str) -> str:
        return f"{service_name}.service"

    def unit_path(self, service_name: str) -> Path:
        return self.unit_dir / self.unit_name(service_name)

    def query(self, service_name: str) -> ServiceState:
        result = self._run(
            [
                SYSTEMCTL, "show", self.unit_name(service_name),
                "--property=LoadState,ActiveState,MainPID", "--no-pager",
            ],
            f"query service {service_name}",
        )
        return parse_show(result.stdout or "")

    def create(
        self,
        service_name: str,
        binary_path: Path,
        launch_args: Sequence[str],
        description: str,
        log_directory: Optional[Path] = None,
    ) -> None:
        unit = generate_unit(binary_path, launch_args, description)
        path = self.unit_path(service_name)
        try:
            path.write_text(unit)
        except PermissionError as e:
            raise PrivilegeError(f"Cannot write unit file {path}: {e}") from e
        except OSError as e:
            raise ServiceError(f"Cannot write unit file {path}: {e}") from e

        self._run([SYSTEMCTL, "daemon-reload"], "reload systemd")
        self._run([SYSTEMCTL, "enable", self.unit_name(service_name)], f"enable {service_name}")

    def delete(self, service_name: str) -> None:
        unit = self.unit_name(service_name)
        self._run([SYSTEMCTL, "disable", unit], f"disable {service_name}", ok_codes=(0, 1, 5))
        try:
            self.unit_path(service_name).unlink(missing_ok=True)
        except PermissionError as e:
            raise PrivilegeError(f"Cannot remove unit file: {e}") from e
        self._run([SYSTEMCTL, "daemon-reload"], "reload systemd")
        self.runner([SYSTEMCTL, "reset-failed", unit])

    def start(self, service_name: str) -> None:
        self._run([SYSTEMCTL, "start", self.unit_name(service_name)], f"start {service_name}")

    def stop(self, service_name: str) -> None:
        # Queue the stop job only; ServiceManager polls and escalates to kill
        self._run(
            [SYSTEMCTL, "stop", "--no-block", self.unit_name(service_name)],
            f"stop {service_name}",
        )

    def kill(self, service_name: str, process_id: Optional[int]) -> None:
        self._run(
            [SYSTEMCTL, "kill", "--signal=SIGKILL", self.unit_name(service_name)],
            f"kill {service_name}",
        )


def parse_show(output: str) -> ServiceState:
    """Parse `systemctl show` key=value output into a ServiceState."""
    props = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            props[key.strip()] = value.strip()

    if props.get("LoadState") in (None, "not-found", "masked"):
        return ServiceState(ServiceStatus.NOT_INSTALLED)

    active = props.get("ActiveState", "inactive")
    pid = int(props.get("MainPID") or 0) or None
    if active in _RUNNING_STATES:
        return ServiceState(ServiceStatus.RUNNING, pid)
    if active == "failed":
        return ServiceState(ServiceStatus.FAILED)
    return ServiceState(ServiceStatus.STOPPED)


def generate_unit(binary_path: Path, launch_args: Sequence[str], description: str) -> str:
    """Generate a systemd unit file."""
    exec_start = shlex.join([str(binary_path), *launch_args])
    return f"""[Unit]
Description={description}
After=network-online.target
Wants=network-online.target

[Service]
Type=simple
ExecStart={exec_start}
Restart=always
RestartSec=10
User=root
LimitNOFILE=65535

[Install]
WantedBy=multi-user.target
"""
