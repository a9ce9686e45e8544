"""
Exception taxonomy for the deployment pipeline.

Every error carries the pipeline step it belongs to and an actionable hint,
so the presentation layer can show what failed, why, and what to do next.
"""

from typing import Any, Optional


class SetupError(Exception):
    """Base exception for velociraptor-setup.

    Attributes:
        step: Pipeline step the error belongs to (resolve, install, ...)
        hint: Suggested remediation for the operator
    """

    default_step = "setup"
    default_hint = "Check the log output for details."

    def __init__(
        self,
        message: str,
        hint: Optional[str] = None,
        step: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint or self.default_hint
        self.step = step or self.default_step

    def __str__(self) -> str:
        return self.message

    def describe(self) -> str:
        """Return the message followed by the remediation hint."""
        return f"{self.message}. Hint: {self.hint}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": type(self).__name__,
            "step": self.step,
            "error": self.message,
            "hint": self.hint,
        }


class NetworkError(SetupError):
    """Release index unreachable or returned a non-success status."""

    default_step = "resolve"
    default_hint = (
        "Check network connectivity and proxy settings, "
        "or retry later if GitHub is rate limiting requests"
    )


class NotFoundError(SetupError):
    """No release asset matches the requested platform."""

    default_step = "resolve"
    default_hint = (
        "Pass an explicit platform (e.g. linux-amd64) or pin a version "
        "that ships a binary for this platform"
    )


class DownloadError(SetupError):
    """Binary transfer failed or was interrupted."""

    default_step = "install"
    default_hint = "Check network connectivity and free disk space, then retry the deployment"


class VerificationError(SetupError):
    """Downloaded binary failed verification."""

    default_step = "install"
    default_hint = "The download is empty or corrupt; retry with --force"


class FilesystemError(SetupError):
    """Filesystem permission or path problem."""

    default_step = "install"
    default_hint = (
        "Check that the directory exists and is writable "
        "(run as Administrator/root for system locations)"
    )


class ValidationError(SetupError):
    """Invalid deployment parameter.

    Attributes:
        field: Name of the offending parameter
    """

    default_step = "generate"
    default_hint = "Correct the parameter and run the deployment again"

    def __init__(self, field: str, message: str, hint: Optional[str] = None):
        super().__init__(message, hint=hint)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["field"] = self.field
        return result


class PrivilegeError(SetupError):
    """Caller lacks the rights to manage services or firewall rules."""

    default_step = "register_start"
    default_hint = "Run as Administrator (Windows) or root/sudo (Linux, macOS)"


class ServiceError(SetupError):
    """Service control command failed."""

    default_step = "register_start"
    default_hint = "Inspect the service manager output and the Velociraptor logs"


class FirewallWarning(SetupError):
    """Non-fatal firewall configuration failure."""

    default_step = "open_ports"
    default_hint = "Open the port manually or allow the Velociraptor binary in the host firewall"
