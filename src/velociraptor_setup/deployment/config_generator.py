"""
Velociraptor configuration generation.

Builds the YAML configuration document consumed by the Velociraptor binary
from validated deployment parameters. Generation is deterministic for
identical inputs apart from the client nonce and the administrator password
salt, which are freshly random on every call.
"""

import hashlib
import logging
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from ..error_handling import FilesystemError
from .installer import InstalledArtifact
from .parameters import CertificateType, DeploymentParameters, DeploymentType
from .security import CertificateBundle, hash_password

logger = logging.getLogger(__name__)

CONFIG_NAME = "velociraptor-setup"


def _placeholder(kind: str, years: int) -> str:
    return (
        f"PLACEHOLDER: self-signed {kind} valid for {years} year(s), "
        "issued at deployment time"
    )


@dataclass
class GeneratedConfig:
    """A generated configuration document.

    Attributes:
        path: Where the document is (or would be) written
        deployment_type: Topology the document was generated for
        raw_content: The full YAML document
        checksum: SHA256 of raw_content
        persisted: Whether the document was written to path
        summary: Review summary for display (no secrets)
    """
    path: Path
    deployment_type: DeploymentType
    raw_content: str = field(repr=False)
    checksum: str
    persisted: bool = False
    summary: dict[str, Any] = field(default_factory=dict)

    def to_dict(self, include_content: bool = False) -> dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "path": str(self.path),
            "deployment_type": self.deployment_type.value,
            "checksum": self.checksum,
            "persisted": self.persisted,
            "summary": self.summary,
        }
        if include_content:
            result["raw_content"] = self.raw_content
        return result


class ConfigGenerator:
    """Generate Velociraptor configuration documents."""

    def __init__(self, hostname_lookup=socket.getfqdn):
        """Initialize the generator.

        Args:
            hostname_lookup: Returns this host's name for client URLs when
                neither public_hostname nor a concrete bind address is given
        """
        self._hostname_lookup = hostname_lookup

    def server_hostname(self, params: DeploymentParameters) -> str:
        """Hostname clients and browsers use to reach this deployment."""
        if params.public_hostname:
            return params.public_hostname
        if params.deployment_type == DeploymentType.STANDALONE:
            return "localhost"
        if params.bind_address not in ("0.0.0.0", "::"):
            return params.bind_address
        return self._hostname_lookup()

    def generate(
        self,
        params: DeploymentParameters,
        persist: bool = False,
        certificates: Optional[CertificateBundle] = None,
        artifact: Optional[InstalledArtifact] = None,
    ) -> GeneratedConfig:
        """Generate the configuration for a deployment.

        Args:
            params: Deployment parameters (validated here)
            persist: Write the document to the config path
            certificates: Certificate material to embed; without it a
                SelfSigned document carries placeholder blocks (preview mode)
            artifact: Installed binary, recorded in the version section

        Returns:
            The generated configuration

        Raises:
            ValidationError: If a parameter is invalid
            FilesystemError: If persisting fails
        """
        params.validate()

        document = self.build_document(params, certificates, artifact)
        content = yaml.safe_dump(document, default_flow_style=False, sort_keys=False)
        generated = GeneratedConfig(
            path=params.effective_config_path,
            deployment_type=params.deployment_type,
            raw_content=content,
            checksum=hashlib.sha256(content.encode()).hexdigest(),
            summary=self._summary(params, certificates),
        )

        if persist:
            self._write(generated)
            generated.persisted = True
            logger.info("Configuration written to %s", generated.path)

        return generated

    def build_document(
        self,
        params: DeploymentParameters,
        certificates: Optional[CertificateBundle] = None,
        artifact: Optional[InstalledArtifact] = None,
    ) -> dict[str, Any]:
        """Build the configuration as a dictionary."""
        document: dict[str, Any] = {
            "version": {
                "name": CONFIG_NAME,
                "version": artifact.version if artifact else "unknown",
                "build_time": artifact.installed_at if artifact else "",
            },
            "Client": self._client_section(params, certificates),
        }

        if params.deployment_type == DeploymentType.CLIENT:
            return document

        if params.deployment_type == DeploymentType.SERVER:
            document["Frontend"] = self._frontend_section(params, certificates)

        document["GUI"] = self._gui_section(params, certificates)
        document["Datastore"] = {
            "implementation": "FileBaseDataStore",
            "location": str(params.data_directory),
            "filestore_directory": str(params.filestore_directory),
        }
        document["Logging"] = {
            "output_directory": str(params.effective_log_directory),
            "separate_logs_per_component": True,
        }
        return document

    def _client_section(
        self,
        params: DeploymentParameters,
        certificates: Optional[CertificateBundle],
    ) -> dict[str, Any]:
        if params.server_url:
            server_url = params.server_url
        else:
            server_url = f"https://{self.server_hostname(params)}:{params.bind_port}/"

        section = {"server_urls": [server_url]}
        if certificates is not None:
            section["ca_certificate"] = certificates.ca_cert
        elif params.certificate_type != CertificateType.LETS_ENCRYPT:
            section["ca_certificate"] = _placeholder("CA certificate", params.certificate_duration_years)

        section.update({
            "nonce": os.urandom(8).hex(),
            "writeback_darwin": "/etc/velociraptor.writeback.yaml",
            "writeback_linux": "/etc/velociraptor.writeback.yaml",
            "writeback_windows": "$ProgramFiles\\Velociraptor\\velociraptor.writeback.yaml",
        })
        if params.certificate_type == CertificateType.SELF_SIGNED:
            section["use_self_signed_ssl"] = True
        return section

    def _tls_fields(
        self,
        params: DeploymentParameters,
        certificates: Optional[CertificateBundle],
    ) -> dict[str, Any]:
        if certificates is not None:
            return {
                "certificate": certificates.server_cert,
                "private_key": certificates.server_key,
            }
        return {
            "certificate": _placeholder("certificate", params.certificate_duration_years),
            "private_key": _placeholder("private key", params.certificate_duration_years),
        }

    def _frontend_section(
        self,
        params: DeploymentParameters,
        certificates: Optional[CertificateBundle],
    ) -> dict[str, Any]:
        section = {
            "hostname": self.server_hostname(params),
            "bind_address": params.bind_address,
            "bind_port": params.bind_port,
        }
        if params.certificate_type == CertificateType.LETS_ENCRYPT:
            section["autocert_domain"] = params.public_hostname
            section["autocert_cert_cache"] = str(params.data_directory / "acme")
        else:
            section.update(self._tls_fields(params, certificates))
        return section

    def _gui_section(
        self,
        params: DeploymentParameters,
        certificates: Optional[CertificateBundle],
    ) -> dict[str, Any]:
        hostname = self.server_hostname(params)
        section = {
            "bind_address": params.effective_gui_bind_address,
            "bind_port": params.gui_bind_port,
            "public_url": f"https://{hostname}:{params.gui_bind_port}/app/index.html",
        }
        if params.certificate_type != CertificateType.LETS_ENCRYPT:
            section.update(self._tls_fields(params, certificates))

        user = {"name": params.admin_username}
        if params.admin_password:
            password_hash, salt = hash_password(params.admin_password)
            user["password_hash"] = password_hash
            user["password_salt"] = salt
        section["initial_users"] = [user]
        return section

    def _summary(
        self,
        params: DeploymentParameters,
        certificates: Optional[CertificateBundle],
    ) -> dict[str, Any]:
        summary = {
            "deployment_type": params.deployment_type.value,
            "config_path": str(params.effective_config_path),
            "certificate_type": params.certificate_type.value,
            "certificate_duration_years": params.certificate_duration_years,
            "certificates_embedded": certificates is not None,
        }
        if params.deployment_type == DeploymentType.CLIENT:
            return summary

        summary.update({
            "gui_url": f"https://{self.server_hostname(params)}:{params.gui_bind_port}/",
            "gui_bind": f"{params.effective_gui_bind_address}:{params.gui_bind_port}",
            "data_directory": str(params.data_directory),
            "admin_username": params.admin_username,
        })
        if params.deployment_type == DeploymentType.SERVER:
            summary["frontend_bind"] = f"{params.bind_address}:{params.bind_port}"
        if certificates is not None:
            summary.update(certificates.public_summary())
        return summary

    @staticmethod
    def _write(generated: GeneratedConfig) -> None:
        path = Path(generated.path)
        temp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(generated.raw_content)
            if os.name != "nt":
                # Document embeds private keys
                os.chmod(temp_path, 0o600)
            os.replace(temp_path, path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise FilesystemError(
                f"Cannot write configuration to {path}: {e}",
                step="generate",
            ) from e
