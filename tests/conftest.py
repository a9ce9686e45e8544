"""Shared pytest fixtures for velociraptor-setup tests.

Every fixture here is host-independent: the release index and downloads are
served by httpx.MockTransport, and the service manager, firewall and
privilege checks are in-memory fakes.
"""

import os
from pathlib import Path
from typing import Generator

import pytest

from velociraptor_setup.config import SetupSettings
from velociraptor_setup.deployment import (
    ArtifactInstaller,
    ConfigGenerator,
    DeploymentParameters,
    FirewallManager,
    OrchestrationDriver,
    ReleaseResolver,
)
from velociraptor_setup.deployment.security import CertificateManager
from velociraptor_setup.deployment.services import ServiceManager

from tests.mocks import (
    ADMIN_PASSWORD,
    API_URL,
    FakeFirewallMechanism,
    FakeRunner,
    FakeServiceBackend,
    ReleaseServer,
    make_service_manager,
)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Requires a real host service manager")
    config.addinivalue_line("markers", "slow: Long-running tests")


@pytest.fixture
def clean_env(monkeypatch):
    """Remove velociraptor-setup environment variables for isolated tests."""
    for var in list(os.environ):
        if var.startswith("VELOCIRAPTOR_SETUP_") or var == "VELOCIRAPTOR_ADMIN_PASSWORD":
            monkeypatch.delenv(var, raising=False)


# Autouse fixture for test isolation
@pytest.fixture(autouse=True)
def isolate_test_artifacts(tmp_path: Path, monkeypatch, clean_env) -> Generator[None, None, None]:
    """Keep tests from touching the real user data directories."""
    test_data_home = tmp_path / "xdg_data"
    test_data_home.mkdir()
    monkeypatch.setenv("XDG_DATA_HOME", str(test_data_home))
    if os.name == "nt":
        monkeypatch.setenv("LOCALAPPDATA", str(test_data_home))
    yield


@pytest.fixture
def release_server() -> ReleaseServer:
    """Serve a canned release index and binary downloads."""
    return ReleaseServer()


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Record commands instead of running them."""
    return FakeRunner()


@pytest.fixture
def fake_backend() -> FakeServiceBackend:
    """In-memory OS service manager."""
    return FakeServiceBackend()


@pytest.fixture(scope="session")
def cert_manager() -> CertificateManager:
    """Certificate manager with small keys to keep tests fast."""
    return CertificateManager(key_size=2048)


@pytest.fixture
def standalone_params(tmp_path: Path) -> DeploymentParameters:
    """Standalone deployment rooted in the test's temp directory."""
    return DeploymentParameters(
        deployment_type="Standalone",
        install_directory=tmp_path / "opt" / "vr",
        data_directory=tmp_path / "var" / "vr",
        bind_port=8000,
        gui_bind_port=8889,
        admin_username="admin",
        admin_password=ADMIN_PASSWORD,
    )


@pytest.fixture
def server_params(tmp_path: Path) -> DeploymentParameters:
    """Server deployment rooted in the test's temp directory."""
    return DeploymentParameters(
        deployment_type="Server",
        install_directory=tmp_path / "opt" / "vr",
        data_directory=tmp_path / "var" / "vr",
        public_hostname="vr.example.com",
        admin_password=ADMIN_PASSWORD,
    )


@pytest.fixture
def service_manager(fake_backend: FakeServiceBackend) -> ServiceManager:
    """ServiceManager over the in-memory backend, running as admin."""
    return make_service_manager(fake_backend)


@pytest.fixture
def firewall_mechanisms() -> list[FakeFirewallMechanism]:
    """Primary and fallback firewall mechanisms, both working."""
    return [FakeFirewallMechanism("primary"), FakeFirewallMechanism("fallback")]


@pytest.fixture
def make_driver(release_server, fake_backend, firewall_mechanisms, cert_manager, fake_runner):
    """Build an OrchestrationDriver wired to fakes.

    Keyword overrides replace individual components.
    """
    def _make(**overrides) -> OrchestrationDriver:
        settings = overrides.pop("settings", SetupSettings(release_api_url=API_URL, smoke_test=False))
        client = release_server.client()
        options = {
            "settings": settings,
            "resolver": ReleaseResolver(api_url=settings.release_api_url, http_client=client),
            "installer": ArtifactInstaller(
                size_tolerance=settings.size_tolerance,
                smoke_test=settings.smoke_test,
                http_client=client,
                runner=fake_runner,
            ),
            "generator": ConfigGenerator(hostname_lookup=lambda: "vr-host.example.com"),
            "cert_manager": cert_manager,
            "service_manager_factory": lambda params: make_service_manager(
                fake_backend,
                service_name=params.service_name,
                binary_path=params.binary_path,
                config_path=params.effective_config_path,
            ),
            "firewall_factory": lambda params: FirewallManager(
                mechanisms=firewall_mechanisms,
                admin_check=lambda: True,
            ),
            "retry_sleep": lambda seconds: None,
        }
        options.update(overrides)
        return OrchestrationDriver(**options)

    return _make
