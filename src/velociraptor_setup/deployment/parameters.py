"""
Deployment parameters for a Velociraptor installation.

Parameters are supplied wholesale by the presentation layer (CLI flags, a
YAML file, or an MCP tool call) and validated once before use.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ..error_handling import (
    ValidationError,
    is_valid_hostname,
    validate_absolute_path,
    validate_bind_address,
    validate_distinct_ports,
    validate_non_empty,
    validate_port,
    validate_service_name,
)


class DeploymentType(Enum):
    """Deployment topologies."""
    STANDALONE = "Standalone"
    SERVER = "Server"
    CLIENT = "Client"


class CertificateType(Enum):
    """Certificate sources for TLS endpoints."""
    SELF_SIGNED = "SelfSigned"
    CUSTOM = "Custom"
    LETS_ENCRYPT = "LetsEncrypt"


# Subcommand the binary is launched with for each topology
SERVICE_SUBCOMMANDS = {
    DeploymentType.STANDALONE: "gui",
    DeploymentType.SERVER: "frontend",
    DeploymentType.CLIENT: "client",
}

MAX_CERTIFICATE_YEARS = 10


def _parse_enum(enum_cls: type, field_name: str, value: Any) -> Enum:
    """Parse an enum member from its value or name, case-insensitively."""
    if isinstance(value, enum_cls):
        return value
    text = str(value).strip().lower()
    for member in enum_cls:
        if text in (member.value.lower(), member.name.lower()):
            return member
    choices = ", ".join(m.value for m in enum_cls)
    raise ValidationError(
        field_name,
        f"Invalid {field_name}: '{value}'",
        hint=f"Choose one of: {choices}",
    )


@dataclass
class DeploymentParameters:
    """Complete parameter set for one deployment.

    Attributes:
        deployment_type: Topology (Standalone, Server, Client)
        install_directory: Directory receiving the binary and config
        data_directory: Datastore/filestore root
        bind_address: Frontend bind address
        bind_port: Frontend port for client connections
        gui_bind_address: GUI bind address (None = topology default)
        gui_bind_port: GUI/API port
        organization_name: Organization shown in certificates and config
        admin_username: Initial GUI administrator
        admin_password: Initial administrator password (never logged)
        certificate_type: Certificate source
        certificate_duration_years: Validity of self-signed certificates
        public_hostname: Public DNS name (required for LetsEncrypt)
        custom_certificate_path: PEM certificate for Custom certificates
        custom_private_key_path: PEM key for Custom certificates
        server_url: Frontend URL a Client deployment connects to
        service_name: OS service name
        config_path: Where the generated config is written
        binary_name: File name of the installed binary
        log_directory: Log output directory (None = <data_directory>/logs)
    """
    deployment_type: DeploymentType = DeploymentType.STANDALONE
    install_directory: Path = None
    data_directory: Path = None
    bind_address: str = "0.0.0.0"
    bind_port: int = 8000
    gui_bind_address: Optional[str] = None
    gui_bind_port: int = 8889
    organization_name: str = "VelociraptorOrg"
    admin_username: str = "admin"
    admin_password: Optional[str] = field(default=None, repr=False)
    certificate_type: CertificateType = CertificateType.SELF_SIGNED
    certificate_duration_years: int = 1
    public_hostname: Optional[str] = None
    custom_certificate_path: Optional[Path] = None
    custom_private_key_path: Optional[Path] = None
    server_url: Optional[str] = None
    service_name: str = "Velociraptor"
    config_path: Optional[Path] = None
    binary_name: Optional[str] = None
    log_directory: Optional[Path] = None

    def __post_init__(self):
        self.deployment_type = _parse_enum(DeploymentType, "deployment_type", self.deployment_type)
        self.certificate_type = _parse_enum(CertificateType, "certificate_type", self.certificate_type)
        for name in (
            "install_directory",
            "data_directory",
            "custom_certificate_path",
            "custom_private_key_path",
            "config_path",
            "log_directory",
        ):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                setattr(self, name, Path(value))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeploymentParameters":
        """Build parameters from a mapping (e.g. a parsed YAML file).

        Raises:
            ValidationError: If the mapping contains unknown keys
        """
        known = {f.name for f in fields(cls)}
        for key in data:
            if key not in known:
                raise ValidationError(
                    key,
                    f"Unknown deployment parameter: '{key}'",
                    hint=f"Valid parameters: {', '.join(sorted(known))}",
                )
        return cls(**{k: v for k, v in data.items() if v is not None})

    @property
    def effective_gui_bind_address(self) -> str:
        """GUI bind address, defaulting to localhost for standalone installs."""
        if self.gui_bind_address:
            return self.gui_bind_address
        if self.deployment_type == DeploymentType.STANDALONE:
            return "127.0.0.1"
        return "0.0.0.0"

    @property
    def effective_binary_name(self) -> str:
        """Binary file name, with .exe on Windows install paths."""
        if self.binary_name:
            return self.binary_name
        if "\\" in str(self.install_directory) or ":" in str(self.install_directory)[:3]:
            return "velociraptor.exe"
        return "velociraptor"

    @property
    def binary_path(self) -> Path:
        return self.install_directory / self.effective_binary_name

    @property
    def effective_config_path(self) -> Path:
        if self.config_path:
            return self.config_path
        name = "client.config.yaml" if self.deployment_type == DeploymentType.CLIENT else "server.config.yaml"
        return self.install_directory / name

    @property
    def effective_log_directory(self) -> Path:
        return self.log_directory or self.data_directory / "logs"

    @property
    def filestore_directory(self) -> Path:
        return self.data_directory / "filestore"

    @property
    def service_subcommand(self) -> str:
        return SERVICE_SUBCOMMANDS[self.deployment_type]

    @property
    def launch_args(self) -> list[str]:
        """Arguments the service passes to the binary."""
        return ["--config", str(self.effective_config_path), self.service_subcommand]

    @property
    def readiness_port(self) -> Optional[int]:
        """Port that accepts connections once the service is up."""
        if self.deployment_type == DeploymentType.STANDALONE:
            return self.gui_bind_port
        if self.deployment_type == DeploymentType.SERVER:
            return self.bind_port
        return None

    @property
    def readiness_host(self) -> str:
        address = (
            self.effective_gui_bind_address
            if self.deployment_type == DeploymentType.STANDALONE
            else self.bind_address
        )
        if address in ("0.0.0.0", "::", ""):
            return "127.0.0.1"
        return address

    @property
    def firewall_ports(self) -> list[tuple[str, int]]:
        """(label, port) pairs that need inbound rules."""
        if self.deployment_type == DeploymentType.SERVER:
            return [("Frontend", self.bind_port), ("GUI", self.gui_bind_port)]
        if self.deployment_type == DeploymentType.STANDALONE:
            return [("GUI", self.gui_bind_port)]
        return []

    @property
    def secrets(self) -> list[str]:
        """Secret values that must never appear in output."""
        return [self.admin_password] if self.admin_password else []

    def validate(self) -> "DeploymentParameters":
        """Validate parameter invariants.

        Returns:
            self, to allow chaining

        Raises:
            ValidationError: On the first invalid field
        """
        validate_absolute_path("install_directory", self.install_directory)
        validate_absolute_path("data_directory", self.data_directory)
        if self.config_path is not None:
            validate_absolute_path("config_path", self.config_path)
        if self.log_directory is not None:
            validate_absolute_path("log_directory", self.log_directory)

        validate_port("bind_port", self.bind_port)
        validate_port("gui_bind_port", self.gui_bind_port)
        validate_distinct_ports(self.bind_port, self.gui_bind_port)
        validate_bind_address("bind_address", self.bind_address)
        if self.gui_bind_address is not None:
            validate_bind_address("gui_bind_address", self.gui_bind_address)

        validate_service_name(self.service_name)
        validate_non_empty("organization_name", self.organization_name)

        if self.deployment_type != DeploymentType.CLIENT:
            validate_non_empty("admin_username", self.admin_username)

        if isinstance(self.certificate_duration_years, bool) or not isinstance(
            self.certificate_duration_years, int
        ) or not 1 <= self.certificate_duration_years <= MAX_CERTIFICATE_YEARS:
            raise ValidationError(
                "certificate_duration_years",
                f"certificate_duration_years must be between 1 and {MAX_CERTIFICATE_YEARS}, "
                f"got {self.certificate_duration_years!r}",
            )

        self._validate_certificates()

        if self.deployment_type == DeploymentType.CLIENT and not (
            self.server_url or self.public_hostname
        ):
            raise ValidationError(
                "server_url",
                "Client deployments need the frontend URL to connect to",
                hint="Pass server_url (e.g. https://vr.example.com:8000/) or public_hostname",
            )

        return self

    def _validate_certificates(self) -> None:
        if self.certificate_type == CertificateType.LETS_ENCRYPT:
            if not self.public_hostname or not is_valid_hostname(self.public_hostname):
                raise ValidationError(
                    "public_hostname",
                    "LetsEncrypt certificates require a public DNS name",
                    hint="Pass public_hostname resolving to this host, with port 443 reachable",
                )

        elif self.certificate_type == CertificateType.CUSTOM:
            for name in ("custom_certificate_path", "custom_private_key_path"):
                path = getattr(self, name)
                if path is None:
                    raise ValidationError(
                        name,
                        f"Custom certificates require {name}",
                        hint="Provide PEM certificate and private key files",
                    )
                if not path.is_file():
                    raise ValidationError(
                        name,
                        f"{name} does not exist: {path}",
                        hint="Check the path, or use certificate_type SelfSigned",
                    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a display dictionary with the password redacted."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, Path):
                value = str(value)
            result[f.name] = value
        if self.admin_password:
            result["admin_password"] = "*** REDACTED ***"
        return result
