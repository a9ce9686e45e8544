"""
Deployment orchestration.

Sequences release resolution, binary installation, configuration generation,
service registration and firewall rules into one DeploymentResult. The first
three steps are prerequisites and abort the pipeline on failure; firewall
problems are recorded but never fail the deployment.
"""

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import SetupSettings
from ..error_handling import (
    DownloadError,
    FilesystemError,
    NetworkError,
    SetupError,
    ValidationError,
    redact,
    validate_absolute_path,
)
from .config_generator import ConfigGenerator, GeneratedConfig
from .firewall import FirewallManager
from .installer import ArtifactInstaller, InstalledArtifact
from .parameters import CertificateType, DeploymentParameters, DeploymentType
from .release import ReleaseAsset, ReleaseResolver
from .security import CertificateBundle, CertificateManager
from .services import ReadinessResult, ServiceManager, ServiceRecord, ServiceStatus

logger = logging.getLogger(__name__)

DEPLOY_STEPS = ("resolve", "install", "generate", "register_start", "open_ports")
PREREQUISITE_STEPS = ("resolve", "install", "generate")


class StepStatus(Enum):
    """Outcome of a pipeline step."""
    PASS = "Pass"
    FAIL = "Fail"
    SKIPPED = "Skipped"


@dataclass
class StepResult:
    """One recorded pipeline step."""
    name: str
    status: StepStatus
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
        }


@dataclass
class DeploymentResult:
    """Result of a deploy or teardown.

    Attributes:
        success: True when the service ended up running (deploy) or every
            cleanup step succeeded (teardown)
        steps: Ordered step results
        service_record: Final service state, when it could be queried
        error: Actionable description of the first failure
        artifact: Installed binary
        config: Generated configuration metadata (no content)
        readiness: Outcome of the post-start readiness poll
    """
    success: bool
    steps: list[StepResult] = field(default_factory=list)
    service_record: Optional[ServiceRecord] = None
    error: Optional[str] = None
    artifact: Optional[InstalledArtifact] = None
    config: Optional[GeneratedConfig] = None
    readiness: Optional[ReadinessResult] = None

    def step(self, name: str) -> Optional[StepResult]:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "steps": [s.to_dict() for s in self.steps],
            "service_record": self.service_record.to_dict() if self.service_record else None,
            "error": self.error,
            "artifact": self.artifact.to_dict() if self.artifact else None,
            "config": self.config.to_dict() if self.config else None,
            "readiness": self.readiness.to_dict() if self.readiness else None,
        }


class _StepFailed(Exception):
    """Internal signal carrying a failed step's description."""


class OrchestrationDriver:
    """Run the deployment pipeline for a set of parameters."""

    def __init__(
        self,
        settings: Optional[SetupSettings] = None,
        resolver: Optional[ReleaseResolver] = None,
        installer: Optional[ArtifactInstaller] = None,
        generator: Optional[ConfigGenerator] = None,
        cert_manager: Optional[CertificateManager] = None,
        service_manager_factory: Optional[Callable[[DeploymentParameters], ServiceManager]] = None,
        firewall_factory: Optional[Callable[[DeploymentParameters], FirewallManager]] = None,
        retry_sleep: Optional[Callable[[float], None]] = None,
    ):
        """Initialize the driver.

        Components default to ones built from settings; tests inject fakes.

        Args:
            settings: Runtime settings (defaults when omitted)
            resolver: Release resolver
            installer: Artifact installer
            generator: Config generator
            cert_manager: Certificate issuer for SelfSigned/Custom deployments
            service_manager_factory: Builds the ServiceManager for a deployment
            firewall_factory: Builds the FirewallManager for a deployment
            retry_sleep: Sleep used between network retries
        """
        self.settings = settings or SetupSettings()
        self.resolver = resolver or ReleaseResolver(
            api_url=self.settings.release_api_url,
            timeout=self.settings.http_timeout,
        )
        self.installer = installer or ArtifactInstaller(
            size_tolerance=self.settings.size_tolerance,
            timeout=self.settings.http_timeout,
            smoke_test=self.settings.smoke_test,
        )
        self.generator = generator or ConfigGenerator()
        self.cert_manager = cert_manager or CertificateManager()
        self._service_manager_factory = service_manager_factory or self._default_service_manager
        self._firewall_factory = firewall_factory or self._default_firewall
        self._retry_sleep = retry_sleep

    def _default_service_manager(self, params: DeploymentParameters) -> ServiceManager:
        return ServiceManager(
            service_name=params.service_name,
            binary_path=params.binary_path,
            config_path=params.effective_config_path,
            readiness_attempts=self.settings.readiness_attempts,
            readiness_interval=self.settings.readiness_interval,
        )

    @staticmethod
    def _default_firewall(params: DeploymentParameters) -> FirewallManager:
        return FirewallManager(binary_path=params.binary_path)

    def service_manager(self, params: DeploymentParameters) -> ServiceManager:
        """ServiceManager for the deployment described by params."""
        return self._service_manager_factory(params)

    def _with_retries(self, func: Callable, *args, **kwargs):
        """Call func, retrying transient network failures when configured."""
        attempts = self.settings.network_attempts
        if attempts <= 1:
            return func(*args, **kwargs)

        options = {
            "stop": stop_after_attempt(attempts),
            "wait": wait_exponential(multiplier=1, min=1, max=10),
            "retry": retry_if_exception_type((NetworkError, DownloadError)),
            "reraise": True,
        }
        if self._retry_sleep is not None:
            options["sleep"] = self._retry_sleep
        return Retrying(**options)(func, *args, **kwargs)

    def deploy(
        self,
        params: DeploymentParameters,
        progress: Optional[Callable[[StepResult], None]] = None,
        should_continue: Optional[Callable[[], bool]] = None,
        force: bool = False,
        platform_hint: Optional[str] = None,
        version: Optional[str] = None,
    ) -> DeploymentResult:
        """Deploy Velociraptor.

        Args:
            params: Deployment parameters
            progress: Called with each StepResult as it is recorded
            should_continue: Checked between steps; returning False abandons
                the remaining steps
            force: Reinstall the binary even if one is present
            platform_hint: Platform override for the release asset
            version: Release version to pin (default latest)

        Returns:
            DeploymentResult; errors are recorded, never raised
        """
        secrets = params.secrets
        result = DeploymentResult(success=False)

        def record(name: str, status: StepStatus, message: str) -> StepResult:
            step = StepResult(name, status, redact(message, secrets))
            result.steps.append(step)
            log = logger.warning if status == StepStatus.FAIL else logger.info
            log("[%s] %s: %s", name, status.value, step.message)
            if progress:
                progress(step)
            return step

        def skip_rest(start: str, reason: str) -> None:
            for name in DEPLOY_STEPS[DEPLOY_STEPS.index(start):]:
                record(name, StepStatus.SKIPPED, reason)

        try:
            params.validate()
        except ValidationError as e:
            result.error = redact(e.describe(), secrets)
            record("validate", StepStatus.FAIL, result.error)
            skip_rest("resolve", "not run: invalid parameters")
            return result

        logger.info(
            "Deploying Velociraptor (%s) to %s",
            params.deployment_type.value,
            params.install_directory,
        )

        state: dict[str, Any] = {}
        steps = {
            "resolve": lambda: self._resolve(state, platform_hint, version),
            "install": lambda: self._install(state, params, force),
            "generate": lambda: self._generate(state, params, result),
            "register_start": lambda: self._register_start(params, result),
            "open_ports": lambda: self._open_ports(params),
        }

        for name in DEPLOY_STEPS:
            if should_continue is not None and name != DEPLOY_STEPS[0] and not should_continue():
                result.error = f"Deployment abandoned before step '{name}'"
                skip_rest(name, "abandoned by caller")
                return result

            try:
                status, message = steps[name]()
            except _StepFailed as e:
                status, message = StepStatus.FAIL, str(e)

            record(name, status, message)
            if status == StepStatus.FAIL and result.error is None and name != "open_ports":
                result.error = redact(message, secrets)
                if name in PREREQUISITE_STEPS:
                    index = DEPLOY_STEPS.index(name)
                    skip_rest(DEPLOY_STEPS[index + 1], f"not run: step '{name}' failed")
                    return result

        record_status = result.service_record.status if result.service_record else None
        result.success = record_status == ServiceStatus.RUNNING
        if result.success:
            logger.info("Deployment complete: service %s is running", params.service_name)
        return result

    def _run_step(self, func: Callable, *args, **kwargs):
        """Call func, converting setup and filesystem errors to a step failure."""
        try:
            return func(*args, **kwargs)
        except SetupError as e:
            raise _StepFailed(e.describe()) from e
        except OSError as e:
            raise _StepFailed(FilesystemError(str(e)).describe()) from e

    def _resolve(self, state: dict, platform_hint: Optional[str], version: Optional[str]):
        asset: ReleaseAsset = self._run_step(
            self._with_retries, self.resolver.resolve, platform_hint=platform_hint, version=version
        )
        state["asset"] = asset
        return StepStatus.PASS, f"resolved {asset.name or asset.download_url} (version {asset.version})"

    def _install(self, state: dict, params: DeploymentParameters, force: bool):
        artifact: InstalledArtifact = self._run_step(
            self._with_retries, self.installer.install, state["asset"], params.binary_path, force=force
        )
        state["artifact"] = artifact
        message = f"installed version {artifact.version} at {artifact.binary_path}"
        if not artifact.verified:
            message += " (size not verified against release metadata)"
        return StepStatus.PASS, message

    def _generate(self, state: dict, params: DeploymentParameters, result: DeploymentResult):
        certificates = self._run_step(self._certificates, params)
        self._run_step(self._prepare_directories, params)
        generated = self._run_step(
            self.generator.generate,
            params,
            persist=True,
            certificates=certificates,
            artifact=state.get("artifact"),
        )
        result.artifact = state.get("artifact")
        result.config = generated
        message = f"configuration written to {generated.path}"
        if certificates is None and params.certificate_type != CertificateType.LETS_ENCRYPT:
            message += "; CA certificate must be copied from the server configuration"
        return StepStatus.PASS, message

    def _certificates(self, params: DeploymentParameters) -> Optional[CertificateBundle]:
        """Issue or load the certificate material embedded in the config."""
        if params.certificate_type == CertificateType.CUSTOM:
            return self.cert_manager.load_custom(
                params.custom_certificate_path, params.custom_private_key_path
            )
        if params.certificate_type == CertificateType.LETS_ENCRYPT:
            return None
        if params.deployment_type == DeploymentType.CLIENT:
            # A client pins the server's CA; it cannot issue its own
            return None

        logger.info(
            "Issuing self-signed certificates valid for %d year(s)",
            params.certificate_duration_years,
        )
        return self.cert_manager.generate_bundle(
            server_hostname=self.generator.server_hostname(params),
            organization=params.organization_name,
            duration_years=params.certificate_duration_years,
            san_ips=[params.bind_address, params.effective_gui_bind_address],
        )

    @staticmethod
    def _prepare_directories(params: DeploymentParameters) -> None:
        directories = [params.data_directory, params.effective_log_directory]
        if params.deployment_type != DeploymentType.CLIENT:
            directories.append(params.filestore_directory)
        for directory in directories:
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise FilesystemError(
                    f"Cannot create directory {directory}: {e}",
                    step="generate",
                ) from e

    def _register_start(self, params: DeploymentParameters, result: DeploymentResult):
        manager = self.service_manager(params)
        try:
            manager.register(
                params.binary_path,
                params.effective_config_path,
                params.launch_args,
                log_directory=params.effective_log_directory,
            )
            readiness = manager.start(params.readiness_port, params.readiness_host)
        except SetupError as e:
            result.service_record = self._query_quietly(manager)
            raise _StepFailed(e.describe()) from e

        result.readiness = readiness
        result.service_record = manager.get_status()
        if result.service_record.status != ServiceStatus.RUNNING:
            return StepStatus.FAIL, (
                f"service '{params.service_name}' is {result.service_record.status.value} after start. "
                "Hint: check the Velociraptor logs in "
                f"{params.effective_log_directory}; the port may already be in use, "
                "choose a different port or stop the conflicting process"
            )
        return StepStatus.PASS, f"service '{params.service_name}' {readiness.message}"

    @staticmethod
    def _query_quietly(manager: ServiceManager) -> Optional[ServiceRecord]:
        try:
            return manager.get_status()
        except SetupError as e:
            logger.info("Could not query service state: %s", e)
            return None

    def _open_ports(self, params: DeploymentParameters):
        ports = params.firewall_ports
        if not ports:
            return StepStatus.SKIPPED, "no inbound ports needed for this deployment type"

        firewall = self._firewall_factory(params)
        messages = []
        failed = False
        for label, port in ports:
            outcome = firewall.open_port(port, f"{params.service_name} {label}")
            messages.append(outcome.message)
            failed = failed or not outcome.success

        return (StepStatus.FAIL if failed else StepStatus.PASS), "; ".join(messages)

    def teardown(self, params: DeploymentParameters, remove_data: bool = False) -> DeploymentResult:
        """Remove a deployment.

        Stops and deregisters the service, closes firewall rules and removes
        the binary and configuration. The data directory is preserved unless
        remove_data is set. Each step runs regardless of earlier failures.

        Raises:
            ValidationError: If the install or data directory is not absolute
        """
        validate_absolute_path("install_directory", params.install_directory)
        validate_absolute_path("data_directory", params.data_directory)

        secrets = params.secrets
        result = DeploymentResult(success=False)

        def record(name: str, status: StepStatus, message: str) -> None:
            step = StepResult(name, status, redact(message, secrets))
            result.steps.append(step)
            logger.info("[%s] %s: %s", name, status.value, step.message)

        manager = self.service_manager(params)
        try:
            result.service_record = manager.remove()
            record("remove_service", StepStatus.PASS, f"service '{params.service_name}' removed")
        except SetupError as e:
            record("remove_service", StepStatus.FAIL, e.describe())

        if params.firewall_ports:
            firewall = self._firewall_factory(params)
            outcomes = [firewall.close_port(f"{params.service_name} {label}") for label, _ in params.firewall_ports]
            record(
                "close_ports",
                StepStatus.PASS if all(o.success for o in outcomes) else StepStatus.FAIL,
                "; ".join(o.message for o in outcomes),
            )
        else:
            record("close_ports", StepStatus.SKIPPED, "no inbound ports for this deployment type")

        try:
            removed = self.installer.uninstall(params.binary_path)
            record(
                "uninstall",
                StepStatus.PASS,
                f"removed {params.binary_path}" if removed else f"{params.binary_path} not present",
            )
        except SetupError as e:
            record("uninstall", StepStatus.FAIL, e.describe())

        config_path = params.effective_config_path
        try:
            config_path.unlink(missing_ok=True)
            record("remove_config", StepStatus.PASS, f"removed {config_path}")
        except OSError as e:
            record("remove_config", StepStatus.FAIL, FilesystemError(f"Cannot remove {config_path}: {e}").describe())

        if remove_data:
            try:
                self._remove_tree(params.data_directory)
                record("remove_data", StepStatus.PASS, f"removed {params.data_directory}")
            except OSError as e:
                record(
                    "remove_data",
                    StepStatus.FAIL,
                    FilesystemError(f"Cannot remove {params.data_directory}: {e}").describe(),
                )
        else:
            record("remove_data", StepStatus.SKIPPED, f"data directory preserved at {params.data_directory}")

        failures = [s for s in result.steps if s.status == StepStatus.FAIL]
        result.success = not failures
        if failures:
            result.error = failures[0].message
        return result

    @staticmethod
    def _remove_tree(path: Path) -> None:
        if path.exists():
            shutil.rmtree(path)
