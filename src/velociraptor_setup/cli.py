"""Command line interface for velociraptor-setup."""

import functools
import json
import logging
import sys
from typing import Any, Optional

import click
import yaml

from . import __version__
from .config import SetupSettings, load_settings
from .deployment import (
    ConfigGenerator,
    DeploymentParameters,
    DeploymentResult,
    DeploymentType,
    HealthChecker,
    OrchestrationDriver,
    ReleaseResolver,
    StepResult,
    StepStatus,
)
from .deployment.services import ServiceManager
from .error_handling import SetupError, ValidationError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

STATUS_COLORS = {
    StepStatus.PASS: "green",
    StepStatus.FAIL: "red",
    StepStatus.SKIPPED: "yellow",
}

# click option name -> DeploymentParameters field
PARAMETER_OPTIONS = {
    "deployment_type": "deployment_type",
    "install_dir": "install_directory",
    "data_dir": "data_directory",
    "bind_address": "bind_address",
    "bind_port": "bind_port",
    "gui_bind_address": "gui_bind_address",
    "gui_bind_port": "gui_bind_port",
    "organization": "organization_name",
    "admin_username": "admin_username",
    "certificate_type": "certificate_type",
    "certificate_years": "certificate_duration_years",
    "public_hostname": "public_hostname",
    "custom_cert": "custom_certificate_path",
    "custom_key": "custom_private_key_path",
    "server_url": "server_url",
    "service_name": "service_name",
    "log_dir": "log_directory",
}


def setup_logging(verbose: bool = False, debug: bool = False, log_file: Optional[str] = None) -> None:
    """Setup logging configuration

    Args:
        verbose: Enable verbose output (INFO level)
        debug: Enable debug output (DEBUG level)
        log_file: Also write the log to this file
    """
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if debug else logging.INFO)
        handlers.append(file_handler)

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    if log_file:
        # The file captures INFO even when the console is quiet
        logging.getLogger().setLevel(logging.DEBUG if debug else logging.INFO)
        handlers[0].setLevel(level)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def deployment_options(func):
    """Add the deployment parameter options to a command."""
    options = [
        click.option("--params-file", type=click.Path(exists=True, dir_okay=False),
                     help="YAML/JSON file with deployment parameters (flags override it)"),
        click.option("--type", "deployment_type",
                     type=click.Choice([t.value for t in DeploymentType], case_sensitive=False),
                     help="Deployment topology (default Standalone)"),
        click.option("--install-dir", help="Absolute directory for the binary and config"),
        click.option("--data-dir", help="Absolute directory for the datastore"),
        click.option("--bind-address", help="Frontend bind address"),
        click.option("--bind-port", type=int, help="Frontend port (default 8000)"),
        click.option("--gui-bind-address", help="GUI bind address"),
        click.option("--gui-bind-port", type=int, help="GUI port (default 8889)"),
        click.option("--organization", help="Organization name"),
        click.option("--admin-username", help="Initial GUI administrator (default admin)"),
        click.option("--certificate-type",
                     type=click.Choice(["SelfSigned", "Custom", "LetsEncrypt"], case_sensitive=False),
                     help="Certificate source (default SelfSigned)"),
        click.option("--certificate-years", type=int, help="Self-signed certificate validity"),
        click.option("--public-hostname", help="Public DNS name (LetsEncrypt)"),
        click.option("--custom-cert", help="PEM certificate (Custom)"),
        click.option("--custom-key", help="PEM private key (Custom)"),
        click.option("--server-url", help="Frontend URL (Client deployments)"),
        click.option("--service-name", help="OS service name (default Velociraptor)"),
        click.option("--log-dir", help="Log directory (default <data-dir>/logs)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_parameters(options: dict[str, Any], admin_password: Optional[str] = None) -> DeploymentParameters:
    """Merge a parameters file with command line flags."""
    data: dict[str, Any] = {}
    params_file = options.get("params_file")
    if params_file:
        with open(params_file, "r") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValidationError("params_file", f"{params_file} must contain a mapping")
        data.update(loaded)

    for option, field_name in PARAMETER_OPTIONS.items():
        value = options.get(option)
        if value is not None:
            data[field_name] = value
    if admin_password is not None:
        data["admin_password"] = admin_password
    return DeploymentParameters.from_dict(data)


def handle_errors(func):
    """Report SetupError as a one-line failure and exit 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SetupError as e:
            click.echo(click.style(f"Error ({e.step}): {e.describe()}", fg="red"), err=True)
            sys.exit(1)
    return wrapper


def echo_step(step: StepResult) -> None:
    label = click.style(f"[{step.status.value:>7}]", fg=STATUS_COLORS[step.status])
    click.echo(f"{label} {step.name}: {step.message}")


def echo_result(result: DeploymentResult, as_json: bool, steps_shown: bool) -> None:
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if not steps_shown:
        for step in result.steps:
            echo_step(step)
    if result.service_record:
        click.echo(f"Service {result.service_record.service_name}: {result.service_record.status.value}")
    if result.success:
        click.echo(click.style("Success", fg="green"))
    else:
        click.echo(click.style(f"Failed: {result.error or 'see step results'}", fg="red"), err=True)


@click.group(name="velociraptor-setup")
@click.version_option(__version__, prog_name="velociraptor-setup")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("-d", "--debug", is_flag=True, help="Enable debug output")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write the log to this file")
@click.option("--settings", "settings_path", type=click.Path(dir_okay=False),
              help="YAML settings file (default: VELOCIRAPTOR_SETUP_CONFIG or environment)")
@click.pass_context
def cli(ctx, verbose, debug, log_file, settings_path):
    """Velociraptor Setup - deploy and manage Velociraptor on this host

    Downloads the Velociraptor binary, generates its configuration,
    registers it as an OS service and opens firewall ports.
    """
    setup_logging(verbose=verbose, debug=debug, log_file=log_file)
    try:
        settings = load_settings(settings_path)
    except (FileNotFoundError, ValueError) as e:
        raise click.UsageError(f"Invalid settings: {e}")
    ctx.obj = {"settings": settings}


def _settings(ctx) -> SetupSettings:
    return ctx.obj["settings"]


@cli.command()
@deployment_options
@click.option("--admin-password", envvar="VELOCIRAPTOR_ADMIN_PASSWORD",
              help="Initial administrator password (prompted when omitted)")
@click.option("--force", is_flag=True, help="Reinstall the binary even if present")
@click.option("--version", "release_version", help="Release version to install (default latest)")
@click.option("--platform", "platform_hint", help="Platform override, e.g. linux-amd64")
@click.option("--silent", is_flag=True, help="Non-interactive: never prompt")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
@handle_errors
def deploy(ctx, admin_password, force, release_version, platform_hint, silent, as_json, **options):
    """Deploy Velociraptor on this host

    Examples:

        velociraptor-setup deploy --install-dir /opt/vr --data-dir /var/lib/vr

        velociraptor-setup deploy --type Server --install-dir /opt/vr \\
            --data-dir /var/lib/vr --public-hostname vr.example.com
    """
    params = build_parameters(options, admin_password)
    if (
        params.admin_password is None
        and params.deployment_type != DeploymentType.CLIENT
        and not silent
    ):
        params.admin_password = click.prompt(
            f"Password for {params.admin_username}",
            hide_input=True,
            confirmation_prompt=True,
        )
    elif params.admin_password is None and params.deployment_type != DeploymentType.CLIENT:
        click.echo(
            "Warning: no admin password set; add a user later with `velociraptor user add`",
            err=True,
        )

    driver = OrchestrationDriver(settings=_settings(ctx))
    result = driver.deploy(
        params,
        progress=None if as_json else echo_step,
        force=force,
        platform_hint=platform_hint,
        version=release_version,
    )
    echo_result(result, as_json, steps_shown=not as_json)
    sys.exit(0 if result.success else 1)


@cli.command("generate-config")
@deployment_options
@click.option("--json", "as_json", is_flag=True, help="Print content, checksum and summary as JSON")
@handle_errors
def generate_config(as_json, **options):
    """Preview the configuration without writing it

    Certificates are shown as placeholders; they are issued by `deploy`.
    """
    params = build_parameters(options)
    generated = ConfigGenerator().generate(params, persist=False)
    if as_json:
        click.echo(json.dumps(generated.to_dict(include_content=True), indent=2))
    else:
        click.echo(generated.raw_content, nl=False)


@cli.command()
@click.option("--platform", "platform_hint", help="Platform, e.g. windows-amd64 (default: this host)")
@click.option("--version", "release_version", help="Release version (default latest)")
@click.pass_context
@handle_errors
def resolve(ctx, platform_hint, release_version):
    """Show the release asset that would be installed"""
    settings = _settings(ctx)
    resolver = ReleaseResolver(api_url=settings.release_api_url, timeout=settings.http_timeout)
    asset = resolver.resolve(platform_hint=platform_hint, version=release_version)
    click.echo(json.dumps(asset.to_dict(), indent=2))


def _service_manager(ctx, service_name: str) -> ServiceManager:
    settings = _settings(ctx)
    return ServiceManager(
        service_name=service_name,
        readiness_attempts=settings.readiness_attempts,
        readiness_interval=settings.readiness_interval,
    )


service_name_option = click.option(
    "--service-name", default="Velociraptor", show_default=True, help="OS service name"
)
port_option = click.option("--port", type=int, help="Port to poll for readiness after starting")


@cli.command()
@service_name_option
@click.pass_context
@handle_errors
def status(ctx, service_name):
    """Show the service state"""
    record = _service_manager(ctx, service_name).get_status()
    click.echo(json.dumps(record.to_dict(), indent=2))


@cli.command()
@service_name_option
@port_option
@click.pass_context
@handle_errors
def start(ctx, service_name, port):
    """Start the service"""
    readiness = _service_manager(ctx, service_name).start(readiness_port=port)
    click.echo(f"{service_name}: {readiness.message}")


@cli.command()
@service_name_option
@click.pass_context
@handle_errors
def stop(ctx, service_name):
    """Stop the service"""
    record = _service_manager(ctx, service_name).stop()
    click.echo(f"{service_name}: {record.status.value}")


@cli.command()
@service_name_option
@port_option
@click.pass_context
@handle_errors
def restart(ctx, service_name, port):
    """Restart the service"""
    readiness = _service_manager(ctx, service_name).restart(readiness_port=port)
    click.echo(f"{service_name}: {readiness.message}")


@cli.command()
@service_name_option
@click.pass_context
@handle_errors
def remove(ctx, service_name):
    """Stop and deregister the service"""
    record = _service_manager(ctx, service_name).remove()
    click.echo(f"{service_name}: {record.status.value}")


@cli.command()
@deployment_options
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@handle_errors
def health(as_json, **options):
    """Check that a deployment is serving and its directories are writable"""
    params = build_parameters(options)
    result = HealthChecker().check(params)
    if as_json:
        click.echo(json.dumps(result, indent=2))
    else:
        for check in result["checks"]:
            color = "green" if check["status"] == "pass" else "red"
            click.echo(f"{click.style(check['status'].upper(), fg=color)} {check['name']}: {check['message']}")
    sys.exit(0 if result["healthy"] else 1)


@cli.command()
@deployment_options
@click.option("--remove-data", is_flag=True, help="Also delete the data directory")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
@handle_errors
def teardown(ctx, remove_data, yes, as_json, **options):
    """Remove the service, firewall rules, binary and config

    The data directory is kept unless --remove-data is given.
    """
    params = build_parameters(options)
    if not yes:
        what = "including the data directory" if remove_data else "keeping the data directory"
        click.confirm(f"Remove Velociraptor from {params.install_directory} ({what})?", abort=True)

    result = OrchestrationDriver(settings=_settings(ctx)).teardown(params, remove_data=remove_data)
    echo_result(result, as_json, steps_shown=False)
    sys.exit(0 if result.success else 1)


def main():
    """Main entry point for the CLI application"""
    try:
        cli(prog_name="velociraptor-setup")
    except KeyboardInterrupt:
        click.echo("\nOperation cancelled by user", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
