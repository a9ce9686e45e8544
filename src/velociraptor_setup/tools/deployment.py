"""
Deployment tools for Velociraptor Setup MCP.

Provides tools to deploy Velociraptor on this host, preview the generated
configuration, and check the health of a deployment.
"""

import asyncio
import json
import logging
from typing import Any, Optional

from mcp.types import TextContent

from ..config import load_settings
from ..deployment import (
    ConfigGenerator,
    DeploymentParameters,
    HealthChecker,
    OrchestrationDriver,
)
from ..error_handling import SetupError, redact
from ..server import mcp

logger = logging.getLogger(__name__)


def _text(payload: dict[str, Any]) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2))]


def _error(error: SetupError, secrets: list[str]) -> list[TextContent]:
    info = {
        key: redact(value, secrets) if isinstance(value, str) else value
        for key, value in error.to_dict().items()
    }
    return _text(info)


def _parameters(
    deployment_type: str,
    install_directory: str,
    data_directory: str,
    **options: Any,
) -> DeploymentParameters:
    return DeploymentParameters.from_dict({
        "deployment_type": deployment_type,
        "install_directory": install_directory,
        "data_directory": data_directory,
        **options,
    })


@mcp.tool()
async def deploy_velociraptor(
    install_directory: str,
    data_directory: str,
    deployment_type: str = "Standalone",
    bind_address: str = "0.0.0.0",
    bind_port: int = 8000,
    gui_bind_port: int = 8889,
    organization_name: str = "VelociraptorOrg",
    admin_username: str = "admin",
    admin_password: Optional[str] = None,
    certificate_type: str = "SelfSigned",
    certificate_duration_years: int = 1,
    public_hostname: Optional[str] = None,
    server_url: Optional[str] = None,
    service_name: str = "Velociraptor",
    version: Optional[str] = None,
    force: bool = False,
) -> list[TextContent]:
    """Deploy Velociraptor on this host.

    Downloads the binary, writes its configuration, registers and starts the
    OS service, and opens firewall ports. Requires administrative rights.

    Args:
        install_directory: Absolute directory for the binary and config
        data_directory: Absolute directory for the datastore and logs
        deployment_type: 'Standalone', 'Server', or 'Client'
        bind_address: Frontend bind address
        bind_port: Frontend port for client connections (default 8000)
        gui_bind_port: GUI/API port (default 8889)
        organization_name: Organization name for certificates
        admin_username: Initial GUI administrator
        admin_password: Initial administrator password (never echoed back)
        certificate_type: 'SelfSigned', 'Custom', or 'LetsEncrypt'
        certificate_duration_years: Self-signed certificate validity (1-10)
        public_hostname: Public DNS name (required for LetsEncrypt)
        server_url: Frontend URL for Client deployments
        service_name: OS service name
        version: Release version to install (default latest)
        force: Reinstall the binary even if present

    Returns:
        Ordered step results, the final service state and any error.
    """
    secrets = [admin_password] if admin_password else []
    try:
        params = _parameters(
            deployment_type,
            install_directory,
            data_directory,
            bind_address=bind_address,
            bind_port=bind_port,
            gui_bind_port=gui_bind_port,
            organization_name=organization_name,
            admin_username=admin_username,
            admin_password=admin_password,
            certificate_type=certificate_type,
            certificate_duration_years=certificate_duration_years,
            public_hostname=public_hostname,
            server_url=server_url,
            service_name=service_name,
        )
        driver = OrchestrationDriver(settings=load_settings())
        result = await asyncio.to_thread(driver.deploy, params, force=force, version=version)
        return _text(result.to_dict())

    except SetupError as e:
        return _error(e, secrets)

    except ValueError as e:
        return _text({
            "error": redact(str(e), secrets),
            "hint": "Check the settings file and VELOCIRAPTOR_SETUP_* environment variables",
        })

    except Exception:
        logger.exception("deploy_velociraptor failed")
        return _text({
            "error": "Failed to deploy Velociraptor",
            "hint": "Check the server log for details and try again",
        })


@mcp.tool()
async def preview_config(
    install_directory: str,
    data_directory: str,
    deployment_type: str = "Standalone",
    bind_address: str = "0.0.0.0",
    bind_port: int = 8000,
    gui_bind_port: int = 8889,
    organization_name: str = "VelociraptorOrg",
    admin_username: str = "admin",
    certificate_type: str = "SelfSigned",
    certificate_duration_years: int = 1,
    public_hostname: Optional[str] = None,
    server_url: Optional[str] = None,
) -> list[TextContent]:
    """Preview the Velociraptor configuration without writing anything.

    Certificates appear as placeholder blocks; they are issued at deployment.

    Returns:
        The configuration document, its checksum and a review summary.
    """
    try:
        params = _parameters(
            deployment_type,
            install_directory,
            data_directory,
            bind_address=bind_address,
            bind_port=bind_port,
            gui_bind_port=gui_bind_port,
            organization_name=organization_name,
            admin_username=admin_username,
            certificate_type=certificate_type,
            certificate_duration_years=certificate_duration_years,
            public_hostname=public_hostname,
            server_url=server_url,
        )
        generated = ConfigGenerator().generate(params, persist=False)
        return _text(generated.to_dict(include_content=True))

    except SetupError as e:
        return _error(e, [])

    except Exception:
        logger.exception("preview_config failed")
        return _text({
            "error": "Failed to generate configuration preview",
            "hint": "Check the deployment parameters and try again",
        })


@mcp.tool()
async def health_check(
    install_directory: str,
    data_directory: str,
    deployment_type: str = "Standalone",
    gui_bind_port: int = 8889,
    log_directory: Optional[str] = None,
) -> list[TextContent]:
    """Check the health of a Velociraptor deployment on this host.

    Args:
        install_directory: Directory the deployment was installed to
        data_directory: Data directory of the deployment
        deployment_type: 'Standalone', 'Server', or 'Client'
        gui_bind_port: GUI port to probe
        log_directory: Log directory, if not <data_directory>/logs

    Returns:
        Overall health and the individual checks.
    """
    try:
        params = _parameters(
            deployment_type,
            install_directory,
            data_directory,
            gui_bind_port=gui_bind_port,
            log_directory=log_directory,
        )
        health = await asyncio.to_thread(HealthChecker().check, params)
        return _text(health)

    except SetupError as e:
        return _error(e, [])

    except Exception:
        logger.exception("health_check failed")
        return _text({
            "error": "Failed to check deployment health",
            "hint": "Check the deployment paths and try again",
        })
