"""
Input validation functions for deployment parameters.

Provides validation for ports, bind addresses, directories and names.
Each validator returns the validated value or raises a field-level
ValidationError carrying a hint.
"""

import ipaddress
import re
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Union

from .errors import ValidationError

MIN_PORT = 1
MAX_PORT = 65535

_HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")
_SERVICE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,79}$")


def validate_port(field: str, port: int) -> int:
    """Validate a TCP port number.

    Args:
        field: Parameter name used in the error
        port: The port to validate

    Returns:
        The validated port

    Raises:
        ValidationError: If the port is not an integer in 1-65535
    """
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValidationError(
            field,
            f"{field} must be an integer, got {port!r}",
            hint=f"Use a port number between {MIN_PORT} and {MAX_PORT}",
        )

    if port < MIN_PORT or port > MAX_PORT:
        raise ValidationError(
            field,
            f"{field} must be between {MIN_PORT} and {MAX_PORT}, got {port}",
            hint="Choose a free port such as 8000 (frontend) or 8889 (GUI)",
        )

    return port


def validate_distinct_ports(bind_port: int, gui_bind_port: int) -> None:
    """Ensure the frontend and GUI ports differ.

    Raises:
        ValidationError: If both ports are the same
    """
    if bind_port == gui_bind_port:
        raise ValidationError(
            "gui_bind_port",
            f"bind_port and gui_bind_port are both {bind_port}",
            hint="Port already in use by the frontend; choose a different GUI port (default 8889)",
        )


def validate_bind_address(field: str, address: str) -> str:
    """Validate a bind address (IP literal or hostname).

    Raises:
        ValidationError: If the address is empty or malformed
    """
    if not address or not address.strip():
        raise ValidationError(
            field,
            f"{field} cannot be empty",
            hint="Use 0.0.0.0 to listen on all interfaces or 127.0.0.1 for local only",
        )

    try:
        ipaddress.ip_address(address)
        return address
    except ValueError:
        pass

    if not is_valid_hostname(address):
        raise ValidationError(
            field,
            f"Invalid bind address: '{address}'",
            hint="Use an IPv4/IPv6 literal or a resolvable hostname",
        )

    return address


def is_valid_hostname(name: str) -> bool:
    """Check whether a string is a syntactically valid DNS name."""
    if not name or len(name) > 253:
        return False
    labels = name.rstrip(".").split(".")
    return all(_HOSTNAME_LABEL.match(label) for label in labels)


def is_absolute_path(path: Union[str, Path]) -> bool:
    """Check for an absolute path in either POSIX or Windows form.

    Windows paths (C:\\Program Files\\Velociraptor) are accepted on every
    host so that parameter files can be validated before they are shipped.
    """
    text = str(path)
    return PurePosixPath(text).is_absolute() or PureWindowsPath(text).is_absolute()


def validate_absolute_path(field: str, path: Union[str, Path, None]) -> Path:
    """Validate that a directory parameter is an absolute path.

    Raises:
        ValidationError: If the path is empty or relative
    """
    if path is None or not str(path).strip():
        raise ValidationError(
            field,
            f"{field} cannot be empty",
            hint="Provide an absolute directory such as /opt/velociraptor",
        )

    if not is_absolute_path(path):
        raise ValidationError(
            field,
            f"{field} must be an absolute path, got '{path}'",
            hint="Relative paths depend on the service working directory; use a full path",
        )

    return Path(path)


def validate_non_empty(field: str, value: str) -> str:
    """Validate that a string parameter is present.

    Raises:
        ValidationError: If the value is empty or whitespace
    """
    if value is None or not str(value).strip():
        raise ValidationError(field, f"{field} cannot be empty")
    return value


def validate_service_name(name: str) -> str:
    """Validate an OS service name.

    Raises:
        ValidationError: If the name contains characters service managers reject
    """
    if not name or not _SERVICE_NAME.match(name):
        raise ValidationError(
            "service_name",
            f"Invalid service name: '{name}'",
            hint="Use letters, digits, '.', '_' or '-' (e.g. 'Velociraptor')",
        )
    return name
