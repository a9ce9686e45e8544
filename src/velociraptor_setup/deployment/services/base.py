"""
Abstract base class for OS service backends.

Defines the service record model and the interface every native service
manager integration (Windows SCM, systemd, launchd) implements.
"""

import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Sequence

from ...error_handling import PrivilegeError, ServiceError
from ...system import CommandRunner, run_command

logger = logging.getLogger(__name__)

# Output fragments service managers print when the caller lacks rights
_ACCESS_DENIED_MARKERS = (
    "access is denied",
    "access denied",
    "permission denied",
    "interactive authentication required",
    "operation not permitted",
    "must be run as root",
)


class ServiceStatus(Enum):
    """Service lifecycle states."""
    NOT_INSTALLED = "NotInstalled"
    STOPPED = "Stopped"
    RUNNING = "Running"
    FAILED = "Failed"


@dataclass
class ServiceState:
    """State reported by the OS service manager.

    Attributes:
        status: Current lifecycle state
        process_id: Main process ID while running
    """
    status: ServiceStatus
    process_id: Optional[int] = None


@dataclass
class ServiceRecord:
    """A registered (or absent) Velociraptor service.

    Attributes:
        service_name: OS service name
        binary_path: Binary the service launches
        config_path: Configuration passed to the binary
        status: Status as last re-read from the OS
        process_id: Main process ID while running
    """
    service_name: str
    binary_path: Optional[str]
    config_path: Optional[str]
    status: ServiceStatus
    process_id: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "service_name": self.service_name,
            "binary_path": self.binary_path,
            "config_path": self.config_path,
            "status": self.status.value,
            "process_id": self.process_id,
        }


class ServiceBackend(ABC):
    """Abstract base class for native service manager integrations.

    Backends are stateless: every query goes to the OS service manager.
    """

    def __init__(self, runner: CommandRunner = run_command):
        """Initialize the backend.

        Args:
            runner: Command runner (tests inject a recording fake)
        """
        self.runner = runner

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the backend name."""
        pass

    @abstractmethod
    def query(self, service_name: str) -> ServiceState:
        """Query the current state of a service."""
        pass

    @abstractmethod
    def create(
        self,
        service_name: str,
        binary_path: Path,
        launch_args: Sequence[str],
        description: str,
        log_directory: Optional[Path] = None,
    ) -> None:
        """Register a service that launches binary_path with launch_args."""
        pass

    @abstractmethod
    def delete(self, service_name: str) -> None:
        """Deregister a stopped service."""
        pass

    @abstractmethod
    def start(self, service_name: str) -> None:
        """Ask the service manager to start a service."""
        pass

    @abstractmethod
    def stop(self, service_name: str) -> None:
        """Ask the service manager to stop a service gracefully."""
        pass

    @abstractmethod
    def kill(self, service_name: str, process_id: Optional[int]) -> None:
        """Forcibly terminate a service that did not stop gracefully."""
        pass

    def _run(
        self,
        args: Sequence[str],
        action: str,
        ok_codes: Sequence[int] = (0,),
    ) -> subprocess.CompletedProcess:
        """Run a service manager command, mapping failures to exceptions.

        Raises:
            PrivilegeError: If the output indicates missing rights
            ServiceError: For any other non-accepted exit code
        """
        result = self.runner(list(args))
        if result.returncode not in ok_codes:
            self._raise_for(result, action)
        return result

    @staticmethod
    def _raise_for(result: subprocess.CompletedProcess, action: str) -> None:
        output = f"{result.stdout or ''}\n{result.stderr or ''}".strip()
        if any(marker in output.lower() for marker in _ACCESS_DENIED_MARKERS):
            raise PrivilegeError(
                f"Insufficient rights to {action}: {output[:200]}"
            )
        raise ServiceError(
            f"Failed to {action} (exit {result.returncode}): {output[:300]}"
        )
