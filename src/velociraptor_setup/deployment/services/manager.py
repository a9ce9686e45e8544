"""
Service lifecycle management for the installed Velociraptor binary.

Wraps a native service backend with the register/start/stop/restart/remove
state machine, privilege checks and a bounded readiness poll. Status is
always re-read from the OS service manager, since operators, crashes and
reboots change it outside this process.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from ...error_handling import PrivilegeError, ServiceError
from ...system import PortProbe, is_admin, is_port_open, os_family
from .base import ServiceBackend, ServiceRecord, ServiceStatus
from .launchd import LaunchdServiceBackend
from .systemd import SystemdServiceBackend
from .windows import WindowsServiceBackend

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Velociraptor DFIR endpoint visibility and collection service"


def default_backend() -> ServiceBackend:
    """Select the service backend for the running OS."""
    family = os_family()
    if family == "windows":
        return WindowsServiceBackend()
    if family == "darwin":
        return LaunchdServiceBackend()
    return SystemdServiceBackend()


@dataclass
class ReadinessResult:
    """Outcome of the post-start readiness poll.

    Attributes:
        confirmed: True if the port accepted a connection, False if the poll
            timed out, None if there was no port to poll
        port: Port that was polled
        attempts: Number of probes made
    """
    confirmed: Optional[bool]
    port: Optional[int] = None
    attempts: int = 0

    @property
    def message(self) -> str:
        if self.confirmed is None:
            return "started (no listening port to confirm)"
        if self.confirmed:
            return f"started, port {self.port} listening after {self.attempts} check(s)"
        return (
            f"started but unconfirmed: port {self.port} not listening after "
            f"{self.attempts} check(s); the service may still be initializing"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "confirmed": self.confirmed,
            "port": self.port,
            "attempts": self.attempts,
            "message": self.message,
        }


class ServiceManager:
    """Register and control the Velociraptor OS service."""

    def __init__(
        self,
        service_name: str = "Velociraptor",
        binary_path: Optional[Path] = None,
        config_path: Optional[Path] = None,
        backend: Optional[ServiceBackend] = None,
        admin_check: Callable[[], bool] = is_admin,
        port_probe: PortProbe = is_port_open,
        readiness_attempts: int = 15,
        readiness_interval: float = 1.0,
        stop_timeout: int = 30,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the service manager.

        Args:
            service_name: OS service name
            binary_path: Binary the service launches (for records)
            config_path: Config the service uses (for records)
            backend: Native service backend; chosen by OS when omitted
            admin_check: Returns True when the process has admin rights
            port_probe: Returns True when (host, port) accepts connections
            readiness_attempts: Port polls after a start
            readiness_interval: Seconds between polls
            stop_timeout: Seconds to wait for a graceful stop before killing
            sleep: Sleep function (tests pass a no-op)
        """
        self.service_name = service_name
        self.binary_path = Path(binary_path) if binary_path else None
        self.config_path = Path(config_path) if config_path else None
        self.backend = backend or default_backend()
        self._admin_check = admin_check
        self._port_probe = port_probe
        self.readiness_attempts = readiness_attempts
        self.readiness_interval = readiness_interval
        self.stop_timeout = stop_timeout
        self._sleep = sleep

    def _require_admin(self, action: str) -> None:
        if not self._admin_check():
            raise PrivilegeError(
                f"Administrative rights are required to {action} service '{self.service_name}'"
            )

    def get_status(self) -> ServiceRecord:
        """Re-query the OS service manager for the current state."""
        state = self.backend.query(self.service_name)
        return ServiceRecord(
            service_name=self.service_name,
            binary_path=str(self.binary_path) if self.binary_path else None,
            config_path=str(self.config_path) if self.config_path else None,
            status=state.status,
            process_id=state.process_id,
        )

    def register(
        self,
        binary_path: Path,
        config_path: Path,
        launch_args: Sequence[str],
        description: str = DEFAULT_DESCRIPTION,
        log_directory: Optional[Path] = None,
    ) -> ServiceRecord:
        """Register the binary as a service (NotInstalled -> Stopped).

        An existing registration with the same name is removed first.

        Raises:
            PrivilegeError: If the caller lacks administrative rights
            ServiceError: If the service manager rejects the registration
        """
        self._require_admin("register")

        if self.get_status().status != ServiceStatus.NOT_INSTALLED:
            logger.info("Service %s already registered; replacing it", self.service_name)
            self.remove()

        self.binary_path = Path(binary_path)
        self.config_path = Path(config_path)
        logger.info(
            "Registering service %s via %s: %s %s",
            self.service_name,
            self.backend.name,
            self.binary_path,
            " ".join(launch_args),
        )
        self.backend.create(
            self.service_name,
            self.binary_path,
            launch_args,
            description,
            log_directory=log_directory,
        )
        return self.get_status()

    def start(self, readiness_port: Optional[int] = None, host: str = "127.0.0.1") -> ReadinessResult:
        """Start the service (Stopped -> Running) and poll for readiness.

        A poll timeout is reported as unconfirmed, not raised.

        Raises:
            ServiceError: If the service is not registered or fails to start
        """
        record = self.get_status()
        if record.status == ServiceStatus.NOT_INSTALLED:
            raise ServiceError(
                f"Service '{self.service_name}' is not registered",
                hint="Run the deployment (or register the service) before starting it",
            )

        if record.status != ServiceStatus.RUNNING:
            logger.info("Starting service %s", self.service_name)
            self.backend.start(self.service_name)

        if readiness_port is None:
            return ReadinessResult(confirmed=None)
        return self.wait_until_ready(readiness_port, host)

    def wait_until_ready(self, port: int, host: str = "127.0.0.1") -> ReadinessResult:
        """Poll a port until it accepts connections or attempts run out."""
        for attempt in range(1, self.readiness_attempts + 1):
            if self._port_probe(host, port):
                logger.info("Port %d is listening", port)
                return ReadinessResult(confirmed=True, port=port, attempts=attempt)
            if attempt < self.readiness_attempts:
                self._sleep(self.readiness_interval)

        logger.warning(
            "Port %d did not start listening within %d attempts",
            port,
            self.readiness_attempts,
        )
        return ReadinessResult(confirmed=False, port=port, attempts=self.readiness_attempts)

    def stop(self) -> ServiceRecord:
        """Stop the service (Running -> Stopped), killing it if needed.

        Stopping a stopped or absent service is a no-op.
        """
        record = self.get_status()
        if record.status != ServiceStatus.RUNNING:
            return record

        logger.info("Stopping service %s", self.service_name)
        self.backend.stop(self.service_name)

        for _ in range(self.stop_timeout):
            record = self.get_status()
            if record.status != ServiceStatus.RUNNING:
                return record
            self._sleep(1)

        logger.warning(
            "Service %s did not stop within %ds; terminating PID %s",
            self.service_name,
            self.stop_timeout,
            record.process_id,
        )
        self.backend.kill(self.service_name, record.process_id)
        return self.get_status()

    def restart(self, readiness_port: Optional[int] = None, host: str = "127.0.0.1") -> ReadinessResult:
        """Stop then start the service."""
        self.stop()
        return self.start(readiness_port, host)

    def remove(self) -> ServiceRecord:
        """Stop and deregister the service (any state -> NotInstalled).

        Raises:
            PrivilegeError: If the caller lacks administrative rights
        """
        if self.get_status().status == ServiceStatus.NOT_INSTALLED:
            return self.get_status()

        self._require_admin("remove")
        self.stop()
        logger.info("Removing service %s", self.service_name)
        self.backend.delete(self.service_name)
        return self.get_status()
