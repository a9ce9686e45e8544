"""Tests for the velociraptor-setup command line interface."""

import json
import logging

import httpx
import pytest
import yaml
from click.testing import CliRunner

from velociraptor_setup import __version__, cli as cli_module
from velociraptor_setup.cli import build_parameters, cli
from velociraptor_setup.deployment import HealthChecker
from velociraptor_setup.deployment.services import ServiceStatus

from tests.mocks import ADMIN_PASSWORD, make_service_manager


@pytest.fixture(autouse=True)
def restore_logging():
    """The CLI reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def dirs(tmp_path):
    return ["--install-dir", str(tmp_path / "opt" / "vr"), "--data-dir", str(tmp_path / "var" / "vr")]


@pytest.fixture
def patched_driver(monkeypatch, make_driver):
    monkeypatch.setattr(cli_module, "OrchestrationDriver", lambda settings=None: make_driver())


@pytest.mark.unit
class TestGeneral:
    """Group-level options."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_settings_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["--settings", str(tmp_path / "missing.yaml"), "status"])

        assert result.exit_code == 2
        assert "Invalid settings" in result.output

    def test_invalid_settings_from_env(self, runner, monkeypatch):
        monkeypatch.setenv("VELOCIRAPTOR_SETUP_HTTP_TIMEOUT", "-1")

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 2
        assert "http_timeout" in result.output


@pytest.mark.unit
class TestGenerateConfig:
    """Tests for the generate-config command."""

    def test_yaml_preview(self, runner, dirs):
        result = runner.invoke(cli, ["generate-config", *dirs, "--gui-bind-port", "9999"])

        assert result.exit_code == 0
        document = yaml.safe_load(result.output)
        assert document["GUI"]["bind_port"] == 9999
        assert document["GUI"]["certificate"].startswith("PLACEHOLDER")

    def test_json_preview(self, runner, dirs, tmp_path):
        result = runner.invoke(cli, ["generate-config", *dirs, "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["persisted"] is False
        assert "raw_content" in data
        assert not (tmp_path / "opt" / "vr" / "server.config.yaml").exists()

    def test_invalid_parameters(self, runner):
        result = runner.invoke(cli, ["generate-config", "--install-dir", "opt/vr", "--data-dir", "/var/vr"])

        assert result.exit_code == 1
        assert "Error (generate)" in result.output
        assert "absolute path" in result.output


@pytest.mark.unit
class TestDeploy:
    """Tests for the deploy command with a driver wired to fakes."""

    def test_deploy(self, runner, dirs, patched_driver):
        result = runner.invoke(cli, [
            "deploy", *dirs, "--platform", "linux-amd64", "--admin-password", ADMIN_PASSWORD,
        ])

        assert result.exit_code == 0, result.output
        assert "register_start" in result.output
        assert "Success" in result.output
        assert ADMIN_PASSWORD not in result.output

    def test_deploy_json(self, runner, dirs, patched_driver):
        result = runner.invoke(cli, [
            "deploy", *dirs, "--platform", "linux-amd64", "--admin-password", ADMIN_PASSWORD, "--json",
        ])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["success"] is True
        assert [step["status"] for step in data["steps"]] == ["Pass"] * 5

    def test_password_prompt(self, runner, dirs, patched_driver, tmp_path):
        result = runner.invoke(
            cli,
            ["deploy", *dirs, "--platform", "linux-amd64"],
            input=f"{ADMIN_PASSWORD}\n{ADMIN_PASSWORD}\n",
        )

        assert result.exit_code == 0, result.output
        config = (tmp_path / "opt" / "vr" / "server.config.yaml").read_text()
        assert "password_hash" in config

    def test_silent_without_password(self, runner, dirs, patched_driver):
        result = runner.invoke(cli, ["deploy", *dirs, "--platform", "linux-amd64", "--silent"])

        assert result.exit_code == 0, result.output
        assert "no admin password set" in result.output

    def test_password_from_environment(self, runner, dirs, patched_driver, monkeypatch):
        monkeypatch.setenv("VELOCIRAPTOR_ADMIN_PASSWORD", ADMIN_PASSWORD)

        result = runner.invoke(cli, ["deploy", *dirs, "--platform", "linux-amd64"])

        assert result.exit_code == 0, result.output
        assert "Password for" not in result.output

    def test_failed_deploy_exits_nonzero(self, runner, dirs, patched_driver, release_server):
        release_server.index_status = 500

        result = runner.invoke(cli, [
            "deploy", *dirs, "--platform", "linux-amd64", "--admin-password", ADMIN_PASSWORD,
        ])

        assert result.exit_code == 1
        assert "Failed:" in result.output
        assert "HTTP 500" in result.output


@pytest.mark.unit
class TestServiceCommands:
    """status/start/stop/remove against the in-memory backend."""

    @pytest.fixture(autouse=True)
    def patched_manager(self, monkeypatch, fake_backend):
        monkeypatch.setattr(
            cli_module,
            "_service_manager",
            lambda ctx, service_name: make_service_manager(fake_backend, service_name=service_name),
        )

    def test_status_not_installed(self, runner):
        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert json.loads(result.output)["status"] == ServiceStatus.NOT_INSTALLED.value

    def test_start_unregistered(self, runner):
        result = runner.invoke(cli, ["start"])

        assert result.exit_code == 1
        assert "Error (register_start)" in result.output

    def test_start_stop_remove(self, runner, fake_backend):
        make_service_manager(fake_backend).register("/opt/vr/velociraptor", "/opt/vr/server.config.yaml", [])

        started = runner.invoke(cli, ["start", "--port", "8889"])
        stopped = runner.invoke(cli, ["stop"])
        removed = runner.invoke(cli, ["remove"])

        assert "port 8889 listening" in started.output
        assert stopped.output.strip() == "Velociraptor: Stopped"
        assert removed.output.strip() == "Velociraptor: NotInstalled"
        assert fake_backend.services == {}


@pytest.mark.unit
class TestTeardown:
    """Tests for the teardown command."""

    def test_teardown_with_yes(self, runner, dirs, patched_driver):
        result = runner.invoke(cli, ["teardown", *dirs, "--yes"])

        assert result.exit_code == 0, result.output
        assert "remove_data" in result.output

    def test_teardown_aborted(self, runner, dirs, patched_driver):
        result = runner.invoke(cli, ["teardown", *dirs], input="n\n")

        assert result.exit_code == 1
        assert "Aborted" in result.output


@pytest.mark.unit
def test_health_json(runner, dirs, tmp_path, monkeypatch):
    logs = tmp_path / "var" / "vr" / "logs"
    logs.mkdir(parents=True)
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    monkeypatch.setattr(cli_module, "HealthChecker", lambda: HealthChecker(http_client=client))

    result = runner.invoke(cli, ["health", *dirs, "--json"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["healthy"] is True


@pytest.mark.unit
def test_build_parameters_merges_file(tmp_path):
    params_file = tmp_path / "params.yaml"
    params_file.write_text(yaml.safe_dump({
        "deployment_type": "Server",
        "install_directory": "/opt/vr",
        "data_directory": "/var/vr",
        "bind_port": 8000,
    }))

    params = build_parameters(
        {"params_file": str(params_file), "bind_port": 9000, "gui_bind_port": None},
        admin_password=ADMIN_PASSWORD,
    )

    assert params.deployment_type.value == "Server"
    assert params.bind_port == 9000
    assert params.gui_bind_port == 8889
    assert params.admin_password == ADMIN_PASSWORD
