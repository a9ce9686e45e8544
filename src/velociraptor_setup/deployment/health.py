"""
Post-deployment health checks.
"""

import logging
import os
from pathlib import Path
from typing import Any, Optional

import httpx

from ..error_handling import validate_absolute_path
from .parameters import DeploymentParameters, DeploymentType

logger = logging.getLogger(__name__)


class HealthChecker:
    """Check that a deployed instance is serving and its storage is usable."""

    def __init__(self, http_client: Optional[httpx.Client] = None, timeout: float = 5.0):
        self._client = http_client
        self.timeout = timeout

    def check(self, params: DeploymentParameters) -> dict[str, Any]:
        """Perform a health check on a deployment.

        Args:
            params: Parameters the deployment was made with

        Returns:
            Dictionary with overall health and the individual checks

        Raises:
            ValidationError: If the data directory is not an absolute path
        """
        validate_absolute_path("data_directory", params.data_directory)

        health = {
            "healthy": False,
            "gui_responsive": False,
            "checks": [],
        }

        if params.deployment_type != DeploymentType.CLIENT:
            health["gui_responsive"] = self._check_gui(params, health["checks"])

        self._check_directory("data_directory", params.data_directory, health["checks"])
        self._check_directory("log_directory", params.effective_log_directory, health["checks"])

        health["healthy"] = all(c["status"] != "fail" for c in health["checks"])
        return health

    def _check_gui(self, params: DeploymentParameters, checks: list[dict]) -> bool:
        host = params.effective_gui_bind_address
        if host in ("0.0.0.0", "::"):
            host = "127.0.0.1"
        url = f"https://{host}:{params.gui_bind_port}/"

        client = self._client or httpx.Client(verify=False, timeout=self.timeout)
        try:
            response = client.get(url)
            responsive = response.status_code < 500
            checks.append({
                "name": "gui_health",
                "status": "pass" if responsive else "fail",
                "message": f"GUI responded with status {response.status_code}",
            })
            return responsive
        except httpx.HTTPError as e:
            logger.info("GUI health check against %s failed: %s", url, e)
            checks.append({
                "name": "gui_health",
                "status": "fail",
                "message": f"GUI check failed: {e}",
            })
            return False
        finally:
            if self._client is None:
                client.close()

    def _check_directory(self, name: str, path: Path, checks: list[dict]) -> None:
        if not path.is_dir():
            checks.append({
                "name": name,
                "status": "fail",
                "message": f"{path} does not exist",
            })
        elif not os.access(path, os.W_OK):
            checks.append({
                "name": name,
                "status": "fail",
                "message": f"{path} is not writable",
            })
        else:
            checks.append({
                "name": name,
                "status": "pass",
                "message": f"{path} is writable",
            })
