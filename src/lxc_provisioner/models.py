"""Data models for LXC container provisioning."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


class InstanceState(Enum):
    """Lifecycle state of the container being provisioned."""

    ABSENT = "absent"
    CREATED = "created"
    NETWORK_CONFIGURED = "network_configured"
    CONFIGURED = "configured"
    RUNNING = "running"
    PROVISIONED = "provisioned"


class FailureMode(Enum):
    """How failures after container creation are treated."""

    STRICT = "strict"  # Abort the run with a non-zero exit
    BEST_EFFORT = "best-effort"  # Record a warning and carry on


class Stage(Enum):
    """Pipeline stages in execution order."""

    UNIQUENESS = "uniqueness_check"
    TEMPLATE_STORAGE = "template_storage"
    NETWORK_PRECHECK = "network_precheck"
    TEMPLATE = "template_acquisition"
    CREATE = "create"
    NETWORK_CONFIG = "network_config"
    OPTIONS = "options"
    START = "start"
    ADDRESS_DISCOVERY = "address_discovery"
    GUEST_INSTALL = "guest_install"
    STATUS = "status"


@dataclass(frozen=True)
class ProvisioningRequest:
    """Immutable description of the container to provision."""

    instance_id: int
    hostname: str
    static_ip_cidr: str
    gateway_ip: str
    root_credential: str = field(repr=False)
    root_storage_target: str = "local-zfs"
    template_cache_target: str = "local"
    template_image_name: str = "debian-12-standard_12.12-1_amd64.tar.zst"
    cpu_cores: int = 2
    memory_mb: int = 1024
    swap_mb: int = 512
    disk_gb: int = 8
    network_bridge: str = "vmbr0"
    dns_servers: Tuple[str, ...] = ("1.1.1.1", "8.8.8.8")
    ssh_public_key_path: Optional[Path] = None
    ostype: str = "debian"
    unprivileged: bool = True

    @property
    def static_ip(self) -> str:
        """Configured address without the prefix length."""
        return self.static_ip_cidr.split("/", 1)[0]

    @property
    def rootfs_spec(self) -> str:
        return f"{self.root_storage_target}:{self.disk_gb}"

    def template_ref(self, cache_storage: str) -> str:
        """Volume id of the template on the given cache storage."""
        return f"{cache_storage}:vztmpl/{self.template_image_name}"

    def to_dict(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for display."""
        return {
            "instance_id": self.instance_id,
            "hostname": self.hostname,
            "root_storage_target": self.root_storage_target,
            "template_cache_target": self.template_cache_target,
            "template_image_name": self.template_image_name,
            "cpu_cores": self.cpu_cores,
            "memory_mb": self.memory_mb,
            "swap_mb": self.swap_mb,
            "disk_gb": self.disk_gb,
            "network_bridge": self.network_bridge,
            "static_ip_cidr": self.static_ip_cidr,
            "gateway_ip": self.gateway_ip,
            "dns_servers": " ".join(self.dns_servers),
            "root_credential": "********" if mask_secrets else self.root_credential,
            "ssh_public_key_path": str(self.ssh_public_key_path) if self.ssh_public_key_path else None,
        }


@dataclass
class InstanceHandle:
    """Observed state of the container while the pipeline runs."""

    instance_id: int
    state: InstanceState = InstanceState.ABSENT
    template_storage: Optional[str] = None
    address: Optional[str] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class StageResult:
    """Outcome of a single pipeline stage or sub-step."""

    stage: Stage
    success: bool
    message: str = ""
    details: Optional[str] = None


@dataclass
class ProvisioningResult:
    """Everything the status report needs after a run."""

    request: ProvisioningRequest
    handle: InstanceHandle
    stages: List[StageResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    install_ran: bool = False
    dry_run: bool = False
    error: Optional["ProvisioningError"] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1


class ProvisioningError(Exception):
    """Base exception for provisioning errors."""

    def __init__(self, message: str, diagnostic: Optional[str] = None):
        super().__init__(message)
        self.diagnostic = diagnostic


class ConfigurationError(ProvisioningError):
    """Raised when the provisioning configuration is invalid."""

    pass


class CommandError(ProvisioningError):
    """Raised when a host command cannot be executed at all."""

    pass


class DuplicateIdentifierError(ProvisioningError):
    """Raised when the container ID is already in use."""

    pass


class NoCacheTargetAvailableError(ProvisioningError):
    """Raised when no storage can hold container templates."""

    pass


class NetworkUnreachableError(ProvisioningError):
    """Raised when the host has no outbound connectivity."""

    pass


class TemplateFetchFailedError(ProvisioningError):
    """Raised when pveam fails to download the template."""

    pass


class CreationFailedError(ProvisioningError):
    """Raised when pct create fails."""

    pass


class StageFailedError(ProvisioningError):
    """Raised in strict mode when a post-creation stage fails."""

    def __init__(
        self,
        stage: Stage,
        message: str,
        diagnostic: Optional[str] = None,
        results: Optional[List["StageResult"]] = None,
    ):
        super().__init__(message, diagnostic)
        self.stage = stage
        # Step results recorded before the failure, the failed step last
        self.results = results or []
