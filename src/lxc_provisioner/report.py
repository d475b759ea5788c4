"""Operator-facing status report."""

from typing import Optional

from rich.console import Console
from rich.table import Table

from lxc_provisioner.models import ProvisioningRequest, ProvisioningResult


def request_table(request: ProvisioningRequest) -> Table:
    """Summary of a request with the credential masked."""
    table = Table(title=f"Container {request.instance_id}")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in request.to_dict().items():
        table.add_row(key, "" if value is None else str(value))
    return table


def stage_table(result: ProvisioningResult) -> Table:
    table = Table(title="Provisioning Stages")
    table.add_column("Stage", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("Details", style="yellow")
    for stage in result.stages:
        table.add_row(stage.stage.value, "✅" if stage.success else "❌", stage.message)
    return table


def render_report(result: ProvisioningResult, console: Optional[Console] = None, app_port: int = 8443) -> None:
    """Print the stage table, final status and next steps."""
    console = console or Console()
    request = result.request
    handle = result.handle

    if result.stages:
        console.print(stage_table(result))

    console.print("-" * 56)
    if result.error is not None:
        console.print(f"❌ Provisioning failed: {result.error}")
        if result.error.diagnostic:
            console.print(f"[dim]{result.error.diagnostic}[/dim]")
        console.print("-" * 56)
        return

    if result.dry_run:
        console.print("✅ Dry run complete - no changes made")
        console.print("-" * 56)
        return

    console.print("✅ Deployment Complete!")
    console.print(f"Container Status: {handle.status or 'unknown'}")
    console.print(f"Hostname: {request.hostname}")
    console.print(f"Assigned IP: {request.static_ip_cidr} (Attempting to verify: {handle.address or 'unknown'})")

    if result.warnings:
        console.print("\n[bold yellow]Warnings:[/bold yellow]")
        for warning in result.warnings:
            console.print(f"  ⚠️  {warning}")

    console.print(f"\nTo access the container via console, run: pct enter {request.instance_id}")
    console.print(f"To view the container configuration, run: pct config {request.instance_id}")
    if result.install_ran:
        console.print(f"Controller UI: https://{request.static_ip}:{app_port}")
    console.print("-" * 56)
