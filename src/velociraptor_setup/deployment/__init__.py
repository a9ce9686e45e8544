"""
Velociraptor deployment infrastructure.

Resolves and installs the Velociraptor binary, generates its configuration,
and manages the resulting OS service and firewall rules.
"""

from .config_generator import ConfigGenerator, GeneratedConfig
from .driver import DeploymentResult, OrchestrationDriver, StepResult, StepStatus
from .firewall import FirewallManager, FirewallResult
from .health import HealthChecker
from .installer import ArtifactInstaller, InstalledArtifact
from .parameters import CertificateType, DeploymentParameters, DeploymentType
from .release import Platform, ReleaseAsset, ReleaseResolver, detect_platform

__all__ = [
    "ConfigGenerator",
    "GeneratedConfig",
    "DeploymentResult",
    "OrchestrationDriver",
    "StepResult",
    "StepStatus",
    "FirewallManager",
    "FirewallResult",
    "HealthChecker",
    "ArtifactInstaller",
    "InstalledArtifact",
    "CertificateType",
    "DeploymentParameters",
    "DeploymentType",
    "Platform",
    "ReleaseAsset",
    "ReleaseResolver",
    "detect_platform",
]
