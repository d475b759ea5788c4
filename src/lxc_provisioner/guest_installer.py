"""Installs the UniFi Network Application inside the container."""

import logging
import shlex
from typing import List, Tuple

from lxc_provisioner.config import ProvisionerSettings
from lxc_provisioner.models import FailureMode, Stage, StageFailedError, StageResult
from lxc_provisioner.pct import PctClient

logger = logging.getLogger(__name__)

APT_ENV = "DEBIAN_FRONTEND=noninteractive"


class GuestInstaller:
    """Runs the package installation steps via pct exec."""

    def __init__(self, pct: PctClient, settings: ProvisionerSettings) -> None:
        self.pct = pct
        self.settings = settings

    def build_steps(self) -> List[Tuple[str, str]]:
        """Return (description, shell snippet) pairs in execution order."""
        s = self.settings
        return [
            ("refresh package index", f"{APT_ENV} apt-get update"),
            ("install runtime dependencies", f"{APT_ENV} apt-get install -y {s.runtime_packages}"),
            (
                "install repository signing key",
                f"curl -fsSL {shlex.quote(s.repo_key_url)} -o {shlex.quote(s.repo_key_path)}",
            ),
            (
                "register package repository",
                f"echo {shlex.quote(s.repo_source_line)} > {shlex.quote(s.repo_source_file)}",
            ),
            ("refresh package index", f"{APT_ENV} apt-get update"),
            (f"install {s.app_package}", f"{APT_ENV} apt-get install -y {s.app_package}"),
            ("remove unused dependencies", f"{APT_ENV} apt-get autoremove -y"),
        ]

    def install(self, instance_id: int, mode: FailureMode = FailureMode.STRICT) -> List[StageResult]:
        """
        Run every installation step in order.

        Nothing is rolled back when a step fails.

        Args:
            instance_id: Container to install into
            mode: STRICT stops at the first failure, BEST_EFFORT runs all steps

        Returns:
            One StageResult per step that ran

        Raises:
            StageFailedError: On the first failed step in STRICT mode
        """
        results: List[StageResult] = []
        steps = self.build_steps()

        for index, (description, script) in enumerate(steps, start=1):
            logger.info(f"📦 [{index}/{len(steps)}] {description}")
            result = self.pct.exec_shell(instance_id, script, timeout=self.settings.command_timeout)

            if result.ok:
                results.append(StageResult(Stage.GUEST_INSTALL, True, description))
                continue

            logger.error(f"❌ Guest step failed ({description}): {result.diagnostic}")
            results.append(StageResult(Stage.GUEST_INSTALL, False, description, result.diagnostic))
            if mode == FailureMode.STRICT:
                raise StageFailedError(
                    Stage.GUEST_INSTALL,
                    f"Guest installation step failed: {description}",
                    diagnostic=result.diagnostic,
                    results=results,
                )

        return results
