"""Thin client over the Proxmox container tools (pct, pvesm)."""

import logging
from typing import List, Optional, Sequence

from lxc_provisioner.models import ProvisioningRequest
from lxc_provisioner.runner import CommandResult

logger = logging.getLogger(__name__)


class PctClient:
    """Issues pct/pvesm commands through a runner."""

    def __init__(self, runner) -> None:
        self.runner = runner

    def status(self, instance_id: int) -> Optional[str]:
        """
        Get container status.

        Returns:
            "running", "stopped", etc., or None if the container does not exist
        """
        result = self.runner.run(["pct", "status", str(instance_id)])
        if not result.ok:
            return None
        # Output looks like "status: running"
        for line in result.stdout.splitlines():
            if line.strip().startswith("status:"):
                return line.split(":", 1)[1].strip()
        return result.stdout.strip() or None

    def exists(self, instance_id: int) -> bool:
        return self.status(instance_id) is not None

    def storage_supports(self, storage: str, content: str = "vztmpl") -> bool:
        """Check whether a storage is configured for a content type."""
        result = self.runner.run(["pvesm", "status", "-storage", storage, "-content", content])
        if not result.ok:
            return False
        return any(line.split()[0] == storage for line in result.stdout.splitlines()[1:] if line.split())

    def storages_with_content(self, content: str = "vztmpl") -> List[str]:
        """List storage IDs accepting a content type, in pvesm order."""
        result = self.runner.run(["pvesm", "status", "-content", content])
        if not result.ok:
            logger.warning(f"pvesm status failed: {result.diagnostic}")
            return []
        return [line.split()[0] for line in result.stdout.splitlines()[1:] if line.split()]

    def create(self, request: ProvisioningRequest, template_ref: str) -> CommandResult:
        """Create a stopped container from a template."""
        command = [
            "pct", "create", str(request.instance_id), template_ref,
            "--hostname", request.hostname,
            "--cores", str(request.cpu_cores),
            "--memory", str(request.memory_mb),
            "--swap", str(request.swap_mb),
            "--ostype", request.ostype,
            "--unprivileged", "1" if request.unprivileged else "0",
            "--start", "0",
            "--password", request.root_credential,
            "--rootfs", request.rootfs_spec,
        ]
        if request.ssh_public_key_path is not None:
            command += ["--ssh-public-keys", str(request.ssh_public_key_path)]
        return self.runner.run(command)

    def set_network(self, request: ProvisioningRequest) -> CommandResult:
        """Apply bridge, static address, gateway and nameservers."""
        net0 = f"name=eth0,bridge={request.network_bridge},ip={request.static_ip_cidr},gw={request.gateway_ip}"
        command = ["pct", "set", str(request.instance_id), "--net0", net0]
        if request.dns_servers:
            command += ["--nameserver", " ".join(request.dns_servers)]
        return self.runner.run(command)

    def set_options(self, instance_id: int, cpu_units: int, features: str, onboot: bool = True) -> CommandResult:
        """Set autostart, CPU weight and kernel feature flags."""
        return self.runner.run([
            "pct", "set", str(instance_id),
            "--onboot", "1" if onboot else "0",
            "--cpuunits", str(cpu_units),
            "--features", features,
        ])

    def start(self, instance_id: int) -> CommandResult:
        return self.runner.run(["pct", "start", str(instance_id)])

    def exec(self, instance_id: int, command: Sequence[str], timeout: Optional[int] = None) -> CommandResult:
        """Run a command inside the container."""
        return self.runner.run(["pct", "exec", str(instance_id), "--", *command], timeout=timeout)

    def exec_shell(self, instance_id: int, script: str, timeout: Optional[int] = None) -> CommandResult:
        """Run a shell snippet inside the container."""
        return self.exec(instance_id, ["bash", "-c", script], timeout=timeout)
