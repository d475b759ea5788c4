"""Host reachability check and guest address discovery."""

import ipaddress
import logging
import re
import time
from typing import Callable, Optional

from lxc_provisioner.models import NetworkUnreachableError
from lxc_provisioner.pct import PctClient
from lxc_provisioner.retry import PollOutcome, poll

logger = logging.getLogger(__name__)

INET_PATTERN = re.compile(r"\binet\s+(\d{1,3}(?:\.\d{1,3}){3})(?:/\d+)?")


def check_host_connectivity(runner, target: str = "1.1.1.1") -> None:
    """
    Ping an external address once from the Proxmox host.

    Raises:
        NetworkUnreachableError: If the ping fails
    """
    logger.info(f"Validating host network connectivity ({target})...")
    result = runner.run(["ping", "-c", "1", "-W", "5", target])
    if not result.ok:
        raise NetworkUnreachableError(
            f"Proxmox host cannot reach external network ({target}). "
            "Fix the host network configuration (e.g. /etc/network/interfaces) before trying again.",
            diagnostic=result.diagnostic,
        )
    logger.info("✅ Host network connectivity verified")


def first_non_loopback_address(ip_output: str) -> Optional[str]:
    """
    Return the first non-loopback IPv4 address in 'ip addr' output.

    The prefix length is stripped.
    """
    for match in INET_PATTERN.finditer(ip_output):
        candidate = match.group(1)
        try:
            if ipaddress.ip_address(candidate).is_loopback:
                continue
        except ValueError:
            continue
        return candidate
    return None


def discover_guest_address(
    pct: PctClient,
    instance_id: int,
    interval: float = 2.0,
    max_attempts: int = 10,
    sleep: Callable[[float], None] = time.sleep,
) -> PollOutcome[Optional[str]]:
    """Poll the guest's interface listing until it reports an address."""

    def _probe() -> Optional[str]:
        result = pct.exec(instance_id, ["ip", "-4", "-o", "addr", "show"])
        if not result.ok:
            logger.debug(f"ip addr failed in {instance_id}: {result.diagnostic}")
            return None
        return first_non_loopback_address(result.stdout)

    outcome = poll(_probe, interval=interval, max_attempts=max_attempts, sleep=sleep)
    if outcome.satisfied:
        logger.info(f"✅ Guest reports address {outcome.value} (attempt {outcome.attempts})")
    else:
        logger.warning(f"⚠️  No guest address after {outcome.attempts} attempts, continuing")
    return outcome
