"""
Runtime settings for velociraptor-setup.

Settings cover the tunables that are not part of a deployment's parameters:
the release index endpoint, HTTP timeout, download verification tolerance and
readiness polling. They can be loaded from a YAML file or from environment
variables.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

DEFAULT_RELEASE_API_URL = "https://api.github.com/repos/Velocidex/velociraptor/releases"

ENV_PREFIX = "VELOCIRAPTOR_SETUP_"
ENV_CONFIG_PATH = "VELOCIRAPTOR_SETUP_CONFIG"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class SetupSettings:
    """Tunable settings for the deployment pipeline.

    Attributes:
        release_api_url: Base URL of the GitHub releases API for Velociraptor
        http_timeout: Timeout in seconds for release index and download requests
        size_tolerance: Allowed relative size difference before a download warning
        readiness_attempts: Number of port polls after a service start
        readiness_interval: Seconds between port polls
        network_attempts: Attempts for resolve/install (1 = no retries)
        smoke_test: Run `velociraptor version` after installing the binary
    """
    release_api_url: str = DEFAULT_RELEASE_API_URL
    http_timeout: float = 30.0
    size_tolerance: float = 0.05
    readiness_attempts: int = 15
    readiness_interval: float = 1.0
    network_attempts: int = 1
    smoke_test: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SetupSettings":
        """Create settings from a mapping, ignoring None values.

        Raises:
            ValueError: If the mapping contains unknown keys
        """
        known = {f.name: f for f in fields(cls)}
        unknown = set(data) - set(known)
        if unknown:
            raise ValueError(
                f"Unknown setting(s): {', '.join(sorted(unknown))}. "
                f"Valid settings: {', '.join(sorted(known))}"
            )

        values = {}
        for name, value in data.items():
            if value is None:
                continue
            values[name] = _coerce(known[name].type, value)
        return cls(**values)

    @classmethod
    def from_config_file(cls, path: str) -> "SetupSettings":
        """Load settings from a YAML file.

        Args:
            path: Path to the YAML settings file

        Returns:
            SetupSettings instance

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is not a mapping
        """
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Settings file not found: {path}")

        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Settings file must contain a mapping: {path}")

        return cls.from_dict(data)

    @classmethod
    def from_env(cls) -> "SetupSettings":
        """Load settings from VELOCIRAPTOR_SETUP_* environment variables."""
        data = {}
        for f in fields(cls):
            value = os.environ.get(ENV_PREFIX + f.name.upper())
            if value is not None and value != "":
                data[f.name] = value
        return cls.from_dict(data)

    def validate(self) -> None:
        """Validate that the settings are usable.

        Raises:
            ValueError: If a setting is out of range
        """
        if not self.release_api_url:
            raise ValueError("Release API URL is required")
        if self.http_timeout <= 0:
            raise ValueError(f"http_timeout must be positive, got {self.http_timeout}")
        if not 0 <= self.size_tolerance < 1:
            raise ValueError(
                f"size_tolerance must be in [0, 1), got {self.size_tolerance}"
            )
        if self.readiness_attempts < 1:
            raise ValueError(
                f"readiness_attempts must be at least 1, got {self.readiness_attempts}"
            )
        if self.readiness_interval < 0:
            raise ValueError(
                f"readiness_interval cannot be negative, got {self.readiness_interval}"
            )
        if self.network_attempts < 1:
            raise ValueError(
                f"network_attempts must be at least 1, got {self.network_attempts}"
            )


def _coerce(type_name: Any, value: Any) -> Any:
    """Convert a raw (string) value to the declared field type."""
    # Annotations are plain builtins here; dataclass stores them as types or strings
    name = getattr(type_name, "__name__", str(type_name))
    if name == "bool":
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUE_VALUES
    if name == "int":
        return int(value)
    if name == "float":
        return float(value)
    return str(value)


def load_settings(config_path: Optional[str] = None) -> SetupSettings:
    """Load settings from a file or environment.

    Priority:
    1. Explicit config_path argument
    2. VELOCIRAPTOR_SETUP_CONFIG environment variable
    3. VELOCIRAPTOR_SETUP_* environment variables (with defaults)

    Returns:
        Validated SetupSettings
    """
    path = config_path or os.environ.get(ENV_CONFIG_PATH)
    if path:
        settings = SetupSettings.from_config_file(path)
    else:
        settings = SetupSettings.from_env()

    settings.validate()
    return settings
