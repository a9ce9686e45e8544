"""
OS service management for the Velociraptor binary.

Provides Windows SCM, systemd and launchd backends behind a common
ServiceManager state machine.
"""

from .base import ServiceBackend, ServiceRecord, ServiceState, ServiceStatus
from .launchd import LaunchdServiceBackend
from .manager import ReadinessResult, ServiceManager, default_backend
from .systemd import SystemdServiceBackend
from .windows import WindowsServiceBackend

__all__ = [
    "ServiceBackend",
    "ServiceRecord",
    "ServiceState",
    "ServiceStatus",
    "ServiceManager",
    "ReadinessResult",
    "default_backend",
    "WindowsServiceBackend",
    "SystemdServiceBackend",
    "LaunchdServiceBackend",
]
