"""
Service lifecycle tools for Velociraptor Setup MCP.
"""

import asyncio
import json
import logging
from typing import Optional

from mcp.types import TextContent

from ..config import load_settings
from ..deployment.services import ServiceManager
from ..error_handling import SetupError, validate_port, validate_service_name
from ..server import mcp

logger = logging.getLogger(__name__)

SERVICE_ACTIONS = ("start", "stop", "restart", "remove")


def _manager(service_name: str) -> ServiceManager:
    settings = load_settings()
    return ServiceManager(
        service_name=validate_service_name(service_name),
        readiness_attempts=settings.readiness_attempts,
        readiness_interval=settings.readiness_interval,
    )


@mcp.tool()
async def service_status(service_name: str = "Velociraptor") -> list[TextContent]:
    """Get the current state of the Velociraptor OS service.

    Args:
        service_name: OS service name (default 'Velociraptor')

    Returns:
        Service record with status (NotInstalled, Stopped, Running, Failed)
        and process ID.
    """
    try:
        record = await asyncio.to_thread(_manager(service_name).get_status)
        return [TextContent(type="text", text=json.dumps(record.to_dict(), indent=2))]

    except SetupError as e:
        return [TextContent(type="text", text=json.dumps(e.to_dict(), indent=2))]

    except Exception:
        logger.exception("service_status failed")
        return [TextContent(
            type="text",
            text=json.dumps({
                "error": "Failed to query service status",
                "hint": "Check that the service manager is reachable",
            })
        )]


@mcp.tool()
async def service_control(
    action: str,
    service_name: str = "Velociraptor",
    readiness_port: Optional[int] = None,
) -> list[TextContent]:
    """Start, stop, restart or remove the Velociraptor OS service.

    Args:
        action: 'start', 'stop', 'restart', or 'remove'
        service_name: OS service name (default 'Velociraptor')
        readiness_port: Port to poll after start/restart (e.g. 8889)

    Returns:
        The resulting service record, plus readiness for start/restart.
    """
    if action not in SERVICE_ACTIONS:
        return [TextContent(
            type="text",
            text=json.dumps({
                "error": f"Unknown action: {action}",
                "hint": f"Valid actions: {', '.join(SERVICE_ACTIONS)}",
            })
        )]

    try:
        if readiness_port is not None:
            validate_port("readiness_port", readiness_port)

        manager = _manager(service_name)
        response = {"action": action}
        if action in ("start", "restart"):
            operation = manager.start if action == "start" else manager.restart
            readiness = await asyncio.to_thread(operation, readiness_port)
            response["readiness"] = readiness.to_dict()
            record = await asyncio.to_thread(manager.get_status)
        else:
            operation = manager.stop if action == "stop" else manager.remove
            record = await asyncio.to_thread(operation)

        response["service_record"] = record.to_dict()
        return [TextContent(type="text", text=json.dumps(response, indent=2))]

    except SetupError as e:
        return [TextContent(type="text", text=json.dumps(e.to_dict(), indent=2))]

    except Exception:
        logger.exception("service_control failed")
        return [TextContent(
            type="text",
            text=json.dumps({
                "error": f"Failed to {action} service",
                "hint": "Check that the service manager is reachable",
            })
        )]
