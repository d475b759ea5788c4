"""Shared test fixtures for lxc_provisioner tests."""

from typing import Dict, List, Optional

import pytest

from lxc_provisioner.config import ProvisionerSettings
from lxc_provisioner.models import FailureMode, ProvisioningRequest
from lxc_provisioner.runner import CommandResult

PVESM_HEADER = "Name             Type     Status           Total            Used       Available        %"

IP_OUTPUT_WITH_ADDRESS = (
    "1: lo    inet 127.0.0.1/8 scope host lo\\       valid_lft forever preferred_lft forever\n"
    "2: eth0    inet 10.0.0.5/24 brd 10.0.0.255 scope global eth0\\       valid_lft forever\n"
)
IP_OUTPUT_LOOPBACK_ONLY = "1: lo    inet 127.0.0.1/8 scope host lo\\       valid_lft forever preferred_lft forever\n"

MUTATING = (("pct", "create"), ("pct", "set"), ("pct", "start"), ("pveam", "download"))


class FakeHost:
    """In-memory stand-in for a Proxmox host answering pct/pvesm/pveam/ping."""

    def __init__(self) -> None:
        self.instances: Dict[str, str] = {}
        self.template_storages: List[str] = ["local"]
        self.cached: List[str] = []
        self.volumes: Dict[str, List[str]] = {}
        self.reachable = True
        self.fetch_ok = True
        self.create_ok = True
        self.set_network_ok = True
        self.set_options_ok = True
        self.start_ok = True
        self.address_outputs: List[str] = []
        self.failing_guest_snippet: Optional[str] = None
        self.commands: List[List[str]] = []

    def run(self, command, timeout=None) -> CommandResult:
        argv = list(command)
        self.commands.append(argv)
        return self._dispatch(argv)

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def calls(self, *prefix: str) -> List[List[str]]:
        return [c for c in self.commands if tuple(c[: len(prefix)]) == prefix]

    def mutating_calls(self) -> List[List[str]]:
        return [c for c in self.commands if tuple(c[:2]) in MUTATING]

    def _dispatch(self, argv: List[str]) -> CommandResult:
        ok = CommandResult(argv, 0, "", "")
        fail = CommandResult(argv, 1, "", "simulated failure")

        if argv[:2] == ["pct", "status"]:
            state = self.instances.get(argv[2])
            if state is None:
                return CommandResult(argv, 2, "", f"Configuration file 'nodes/pve/lxc/{argv[2]}.conf' does not exist")
            return CommandResult(argv, 0, f"status: {state}\n", "")

        if argv[:2] == ["pvesm", "status"]:
            if "-storage" in argv:
                storage = argv[argv.index("-storage") + 1]
                rows = [storage] if storage in self.template_storages else []
            else:
                rows = self.template_storages
            lines = [PVESM_HEADER] + [f"{s:<16} dir      active   100 10 90 10.00%" for s in rows]
            return CommandResult(argv, 0, "\n".join(lines) + "\n", "")

        if argv[0] == "ping":
            return ok if self.reachable else CommandResult(argv, 1, "", "Network is unreachable")

        if argv[:2] == ["test", "-f"]:
            return ok if any(argv[2].endswith("/" + name) for name in self.cached) else fail

        if argv[:2] == ["pveam", "download"]:
            if not self.fetch_ok:
                return CommandResult(argv, 255, "", "400 Parameter verification failed.")
            self.cached.append(argv[3])
            self.volumes.setdefault(argv[2], []).append(argv[3])
            return ok

        if argv[:2] == ["pveam", "list"]:
            lines = ["NAME                                                   SIZE"]
            lines += [f"{argv[2]}:vztmpl/{name}   120.29MB" for name in self.volumes.get(argv[2], [])]
            return CommandResult(argv, 0, "\n".join(lines) + "\n", "")

        if argv[:2] == ["pct", "create"]:
            if not self.create_ok:
                return CommandResult(argv, 255, "", "unable to create CT - storage full")
            self.instances[argv[2]] = "stopped"
            return ok

        if argv[:2] == ["pct", "set"]:
            if "--net0" in argv:
                return ok if self.set_network_ok else fail
            return ok if self.set_options_ok else fail

        if argv[:2] == ["pct", "start"]:
            if not self.start_ok:
                return fail
            self.instances[argv[2]] = "running"
            return ok

        if argv[:2] == ["pct", "exec"]:
            guest = argv[4:]
            if guest[:1] == ["ip"]:
                output = self.address_outputs.pop(0) if self.address_outputs else ""
                return CommandResult(argv, 0, output, "")
            if self.failing_guest_snippet and self.failing_guest_snippet in guest[-1]:
                return CommandResult(argv, 100, "", "E: Unable to locate package")
            return ok

        return CommandResult(argv, 127, "", f"unexpected command {argv}")


@pytest.fixture
def fake_host():
    """Fake Proxmox host with one template-capable storage and a guest that gets an address."""
    host = FakeHost()
    host.template_storages = ["pool-a", "local"]
    host.address_outputs = [IP_OUTPUT_WITH_ADDRESS]
    return host


@pytest.fixture
def request_obj():
    """Provisioning request used across pipeline tests."""
    return ProvisioningRequest(
        instance_id=901,
        hostname="test-node",
        static_ip_cidr="10.0.0.5/24",
        gateway_ip="10.0.0.1",
        root_credential="s3cret-pass",
        root_storage_target="local-zfs",
        template_cache_target="pool-a",
        template_image_name="img-1.tar",
        network_bridge="br0",
        dns_servers=("10.0.0.1", "1.1.1.1"),
    )


@pytest.fixture
def settings():
    """Settings with no delays."""
    return ProvisionerSettings(
        settle_delay=0,
        address_poll_interval=0,
        address_poll_attempts=3,
        failure_mode=FailureMode.STRICT,
    )


@pytest.fixture
def clean_env(monkeypatch):
    """Remove LXC_* and tunable variables that a local .env could inject."""
    names = [
        "INSTANCE_ID", "HOSTNAME", "ROOT_STORAGE_TARGET", "TEMPLATE_CACHE_TARGET",
        "TEMPLATE_IMAGE_NAME", "TEMPLATE_IMAGE_FILENAME", "CPU_CORES", "MEMORY_MB", "SWAP_MB",
        "DISK_GB", "NETWORK_BRIDGE", "STATIC_IP_CIDR", "GATEWAY_IP", "DNS_SERVERS",
        "ROOT_CREDENTIAL", "SSH_PUBLIC_KEY_PATH", "OSTYPE", "UNPRIVILEGED",
    ]
    for name in names:
        monkeypatch.delenv(f"LXC_{name}", raising=False)
    for name in ["PVE_HOST", "FAILURE_MODE", "ADDRESS_POLL_ATTEMPTS", "SETTLE_DELAY", "INSTALL_APP"]:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("lxc_provisioner.config.load_dotenv", lambda *a, **k: False)
    return monkeypatch
