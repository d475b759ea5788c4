#!/usr/bin/env python3
"""
LXC provisioning CLI.

    lxc-provision provision -c config/unifi.yaml   # Create and bootstrap the container
    lxc-provision validate -c config/unifi.yaml    # Check configuration only
    lxc-provision status 901                       # Show pct status

Without --config the container is read from LXC_* environment variables.
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from lxc_provisioner.config import (
    ProvisionerSettings,
    load_request_from_env,
    load_request_from_yaml,
    parse_failure_mode,
)
from lxc_provisioner.models import ConfigurationError, ProvisioningError, ProvisioningRequest
from lxc_provisioner.pct import PctClient
from lxc_provisioner.pipeline import ProvisioningPipeline
from lxc_provisioner.report import render_report, request_table
from lxc_provisioner.runner import create_runner

# Initialize CLI app and console
app = typer.Typer(
    name="lxc-provision",
    help="Proxmox LXC provisioning CLI",
    add_completion=False
)
console = Console()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)8s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


def load_request(config_file: Optional[Path]) -> ProvisioningRequest:
    """Load the request from a YAML file, or the environment if none given."""
    if config_file is not None:
        return load_request_from_yaml(config_file)
    return load_request_from_env()


def load_settings(host: Optional[str] = None, mode: Optional[str] = None) -> ProvisionerSettings:
    settings = ProvisionerSettings.from_environment()
    if host is not None:
        settings.pve_host = host
    if mode is not None:
        settings.failure_mode = parse_failure_mode(mode)
    settings.validate()
    return settings


@app.command("provision")
def provision(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="YAML file describing the container (default: LXC_* environment variables)"
    ),
    mode: Optional[str] = typer.Option(
        None,
        "--mode",
        help="Post-creation failure handling: strict or best-effort"
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Run read-only checks and show what would be done"
    ),
    skip_install: bool = typer.Option(
        False,
        "--skip-install",
        help="Do not install the application inside the container"
    ),
    host: Optional[str] = typer.Option(
        None,
        "--host",
        help="Proxmox host to drive over SSH (default: this machine)"
    )
) -> None:
    """
    Create, configure and start the container, then install the application.
    """
    try:
        request = load_request(config_file)
        settings = load_settings(host, mode)
    except ConfigurationError as e:
        console.print(f"❌ {e}")
        raise typer.Exit(1)

    if skip_install:
        settings.install_app = False

    console.print(f"🚀 Provisioning container {request.instance_id} ({request.hostname})")
    if dry_run:
        console.print("🔍 DRY RUN MODE - No changes will be made\n")

    try:
        with create_runner(settings.pve_host, settings.ssh_user, settings.ssh_key_path) as runner:
            pipeline = ProvisioningPipeline(request, runner, settings)
            result = pipeline.run(dry_run=dry_run)
    except ProvisioningError as e:
        console.print(f"❌ {e}")
        raise typer.Exit(1)

    render_report(result, console, app_port=settings.app_port)
    if not result.success:
        raise typer.Exit(result.exit_code)


@app.command("validate")
def validate(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="YAML file describing the container (default: LXC_* environment variables)"
    )
) -> None:
    """Validate the container configuration without touching the host."""
    console.print("🔍 Validating configuration...")
    try:
        request = load_request(config_file)
        settings = load_settings()
    except ConfigurationError as e:
        console.print(f"❌ {e}")
        raise typer.Exit(1)

    console.print(request_table(request))
    console.print(f"Failure mode: {settings.failure_mode.value}")
    console.print("✅ Configuration is valid")


@app.command("status")
def status(
    instance_id: int = typer.Argument(..., help="Container ID"),
    host: Optional[str] = typer.Option(None, "--host", help="Proxmox host to query over SSH")
) -> None:
    """Show the lifecycle status of a container."""
    try:
        settings = ProvisionerSettings.from_environment()
        target = host if host is not None else settings.pve_host
        with create_runner(target, settings.ssh_user, settings.ssh_key_path) as runner:
            current = PctClient(runner).status(instance_id)
    except ProvisioningError as e:
        console.print(f"❌ {e}")
        raise typer.Exit(1)

    if current is None:
        console.print(f"❌ Container {instance_id} does not exist")
        raise typer.Exit(1)
    console.print(f"Container {instance_id}: {current}")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging")
) -> None:
    """
    Proxmox LXC Provisioning

    Creates a container from a template and bootstraps the UniFi Network Application.
    """
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
    elif verbose:
        logging.getLogger().setLevel(logging.INFO)


if __name__ == "__main__":
    app()
