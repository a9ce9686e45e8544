"""
Error handling utilities for velociraptor-setup.

Provides the exception taxonomy, parameter validators, and secret redaction.
"""

from .errors import (
    SetupError,
    NetworkError,
    NotFoundError,
    DownloadError,
    VerificationError,
    FilesystemError,
    ValidationError,
    PrivilegeError,
    ServiceError,
    FirewallWarning,
)
from .validators import (
    validate_port,
    validate_distinct_ports,
    validate_bind_address,
    validate_absolute_path,
    validate_non_empty,
    validate_service_name,
    is_absolute_path,
    is_valid_hostname,
)
from .redaction import redact, REDACTED

__all__ = [
    # Errors
    "SetupError",
    "NetworkError",
    "NotFoundError",
    "DownloadError",
    "VerificationError",
    "FilesystemError",
    "ValidationError",
    "PrivilegeError",
    "ServiceError",
    "FirewallWarning",
    # Validators
    "validate_port",
    "validate_distinct_ports",
    "validate_bind_address",
    "validate_absolute_path",
    "validate_non_empty",
    "validate_service_name",
    "is_absolute_path",
    "is_valid_hostname",
    # Redaction
    "redact",
    "REDACTED",
]
