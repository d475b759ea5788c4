"""
Configuration for LXC provisioning.

Pipeline tunables come from environment variables (and a .env file);
the container request comes from LXC_* environment variables or a YAML file.
"""

import ipaddress
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

from lxc_provisioner.models import ConfigurationError, FailureMode, ProvisioningRequest

# Alternate spellings accepted for request keys
KEY_ALIASES = {
    "template_image_filename": "template_image_name",
}

INT_FIELDS = ("instance_id", "cpu_cores", "memory_mb", "swap_mb", "disk_gb")
REQUIRED_FIELDS = ("instance_id", "hostname", "static_ip_cidr", "gateway_ip", "root_credential")


@dataclass
class ProvisionerSettings:
    """Pipeline tunables and guest application constants."""

    # Remote execution (empty host = run on this machine)
    pve_host: str = ""
    ssh_user: str = "root"
    ssh_key_path: str = "~/.ssh/id_rsa"

    # Stage behaviour
    probe_target: str = "1.1.1.1"
    settle_delay: float = 5.0
    address_poll_interval: float = 2.0
    address_poll_attempts: int = 10
    template_cache_dir: str = "/var/lib/vz/template/cache"
    cpu_units: int = 1024
    features: str = "nesting=1,keyctl=1"
    failure_mode: FailureMode = FailureMode.STRICT
    install_app: bool = True
    command_timeout: int = 900

    # UniFi Network Application repository
    runtime_packages: str = "ca-certificates apt-transport-https curl gnupg openjdk-17-jre-headless"
    repo_key_url: str = "https://dl.ui.com/unifi/unifi-repo.gpg"
    repo_key_path: str = "/usr/share/keyrings/unifi-repo.gpg"
    repo_url: str = "https://www.ui.com/downloads/unifi/debian"
    repo_suite: str = "stable ubiquiti"
    repo_source_file: str = "/etc/apt/sources.list.d/100-ubnt-unifi.list"
    app_package: str = "unifi"
    app_port: int = 8443

    @property
    def repo_source_line(self) -> str:
        return f"deb [arch=amd64 signed-by={self.repo_key_path}] {self.repo_url} {self.repo_suite}"

    @classmethod
    def from_environment(cls) -> "ProvisionerSettings":
        """Load settings from environment variables."""
        load_dotenv()

        try:
            return cls(
                pve_host=os.getenv("PVE_HOST", ""),
                ssh_user=os.getenv("SSH_USER", "root"),
                ssh_key_path=os.getenv("SSH_KEY_PATH", "~/.ssh/id_rsa"),
                probe_target=os.getenv("PROBE_TARGET", "1.1.1.1"),
                settle_delay=float(os.getenv("SETTLE_DELAY", "5")),
                address_poll_interval=float(os.getenv("ADDRESS_POLL_INTERVAL", "2")),
                address_poll_attempts=int(os.getenv("ADDRESS_POLL_ATTEMPTS", "10")),
                template_cache_dir=os.getenv("TEMPLATE_CACHE_DIR", "/var/lib/vz/template/cache"),
                cpu_units=int(os.getenv("CPU_UNITS", "1024")),
                features=os.getenv("FEATURES", "nesting=1,keyctl=1"),
                failure_mode=parse_failure_mode(os.getenv("FAILURE_MODE", "strict")),
                install_app=os.getenv("INSTALL_APP", "true").lower() == "true",
                command_timeout=int(os.getenv("COMMAND_TIMEOUT", "900")),
                app_package=os.getenv("APP_PACKAGE", "unifi"),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid provisioner setting: {e}") from e

    def validate(self) -> None:
        """Validate settings."""
        if self.address_poll_attempts < 1:
            raise ConfigurationError("ADDRESS_POLL_ATTEMPTS must be at least 1")
        if self.address_poll_interval < 0 or self.settle_delay < 0:
            raise ConfigurationError("Delays must not be negative")
        if not self.probe_target:
            raise ConfigurationError("PROBE_TARGET must not be empty")


def parse_failure_mode(value: str) -> FailureMode:
    """Parse 'strict' / 'best-effort' (underscores accepted)."""
    normalized = value.strip().lower().replace("_", "-")
    try:
        return FailureMode(normalized)
    except ValueError:
        raise ConfigurationError(f"Unknown failure mode {value!r}, expected 'strict' or 'best-effort'")


def _split_list(raw: Any) -> List[str]:
    if isinstance(raw, (list, tuple)):
        return [str(item).strip() for item in raw if str(item).strip()]
    return [part for part in str(raw).replace(",", " ").split() if part]


def _to_int(raw: Any) -> Optional[int]:
    """Convert to int, refusing booleans and fractional numbers."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() else None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def build_request(data: Mapping[str, Any]) -> ProvisioningRequest:
    """
    Build a validated ProvisioningRequest from a flat mapping.

    Args:
        data: Option names mapped to values (aliases accepted)

    Returns:
        Validated ProvisioningRequest

    Raises:
        ConfigurationError: Listing every problem found
    """
    known = {f.name for f in fields(ProvisioningRequest)}
    values: Dict[str, Any] = {}
    errors: List[str] = []

    for key, value in data.items():
        name = KEY_ALIASES.get(key, key)
        if name not in known:
            errors.append(f"Unknown option: {key}")
            continue
        if value is None or value == "":
            continue
        values[name] = value

    for name in REQUIRED_FIELDS:
        if name not in values:
            errors.append(f"Missing required option: {name}")

    for name in INT_FIELDS:
        if name not in values:
            continue
        number = _to_int(values[name])
        if number is None:
            errors.append(f"{name} must be an integer, got {values[name]!r}")
            continue
        if number <= 0:
            errors.append(f"{name} must be positive, got {number}")
        values[name] = number

    for name in (
        "hostname", "root_storage_target", "template_cache_target",
        "template_image_name", "network_bridge", "ostype",
    ):
        if name in values:
            values[name] = str(values[name]).strip()
            if not values[name]:
                errors.append(f"{name} must not be empty")

    # YAML loads all-digit passwords as ints
    if "root_credential" in values:
        values["root_credential"] = str(values["root_credential"])

    if "static_ip_cidr" in values:
        try:
            ipaddress.ip_interface(str(values["static_ip_cidr"]))
            if "/" not in str(values["static_ip_cidr"]):
                errors.append("static_ip_cidr must include a prefix length (e.g. 10.0.0.5/24)")
        except ValueError:
            errors.append(f"static_ip_cidr is not an address with prefix: {values['static_ip_cidr']!r}")

    if "gateway_ip" in values:
        try:
            ipaddress.ip_address(str(values["gateway_ip"]))
        except ValueError:
            errors.append(f"gateway_ip is not an IP address: {values['gateway_ip']!r}")

    if "dns_servers" in values:
        servers = _split_list(values["dns_servers"])
        for server in servers:
            try:
                ipaddress.ip_address(server)
            except ValueError:
                errors.append(f"dns_servers entry is not an IP address: {server!r}")
        values["dns_servers"] = tuple(servers)

    if "ssh_public_key_path" in values:
        values["ssh_public_key_path"] = Path(os.path.expanduser(str(values["ssh_public_key_path"])))

    if "unprivileged" in values and isinstance(values["unprivileged"], str):
        values["unprivileged"] = values["unprivileged"].lower() in ("1", "true", "yes")

    if errors:
        raise ConfigurationError("Invalid provisioning configuration: " + "; ".join(errors))

    return ProvisioningRequest(**values)


def load_request_from_env(prefix: str = "LXC_") -> ProvisioningRequest:
    """Load the request from LXC_* environment variables."""
    load_dotenv()

    names = [f.name for f in fields(ProvisioningRequest)] + list(KEY_ALIASES)
    data = {}
    for name in names:
        value = os.getenv(f"{prefix}{name.upper()}")
        if value is not None:
            data[name] = value
    return build_request(data)


def load_request_from_yaml(path: Path) -> ProvisioningRequest:
    """
    Load the request from a YAML file.

    Keys may sit at the top level or under a 'container' mapping.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Config file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Config file {path} is not valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    container: Optional[Any] = data.get("container")
    if isinstance(container, dict):
        data = container

    return build_request(data)
