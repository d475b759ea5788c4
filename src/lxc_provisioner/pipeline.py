"""
Provisioning pipeline for a single LXC container.

Stages run strictly in order and each one's postcondition is the next one's
precondition. Failures before creation always abort the run. Failures after
creation abort in STRICT mode and are recorded as warnings in BEST_EFFORT mode.
Nothing is rolled back: a half-configured container stays in place and a
re-run with the same ID is refused at the uniqueness check.
"""

import logging
import time
from typing import Callable, Optional

from lxc_provisioner.config import ProvisionerSettings
from lxc_provisioner.guest_installer import GuestInstaller
from lxc_provisioner.models import (
    CreationFailedError,
    DuplicateIdentifierError,
    FailureMode,
    InstanceHandle,
    InstanceState,
    ProvisioningError,
    ProvisioningRequest,
    ProvisioningResult,
    Stage,
    StageFailedError,
    StageResult,
)
from lxc_provisioner.network import check_host_connectivity, discover_guest_address
from lxc_provisioner.pct import PctClient
from lxc_provisioner.runner import CommandResult, redact
from lxc_provisioner.templates import ImageCache, PathImageCache, PveamImageCache, TemplateManager

logger = logging.getLogger(__name__)


class ProvisioningPipeline:
    """Creates, configures, starts and bootstraps one container."""

    def __init__(
        self,
        request: ProvisioningRequest,
        runner,
        settings: Optional[ProvisionerSettings] = None,
        pct: Optional[PctClient] = None,
        templates: Optional[TemplateManager] = None,
        installer: Optional[GuestInstaller] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Args:
            request: Container to provision
            runner: Command runner for the Proxmox host
            settings: Pipeline tunables (defaults if None)
            pct: Lifecycle tool client (built from runner if None)
            templates: Template manager (see _image_cache if None)
            installer: Guest installer (built from pct if None)
            sleep: Sleep function for the settle delay and address polling
        """
        self.request = request
        self.runner = runner
        self.settings = settings or ProvisionerSettings()
        self.pct = pct or PctClient(runner)
        self.templates = templates or TemplateManager(runner, self.pct, cache_factory=self._image_cache)
        self.installer = installer or GuestInstaller(self.pct, self.settings)
        self.sleep = sleep

    def _image_cache(self, storage: str) -> ImageCache:
        """Probe the cache directory for the configured storage, ask pveam for any other."""
        if storage == self.request.template_cache_target:
            return PathImageCache(self.runner, self.settings.template_cache_dir)
        return PveamImageCache(self.runner, storage)

    @property
    def mode(self) -> FailureMode:
        return self.settings.failure_mode

    def run(self, dry_run: bool = False) -> ProvisioningResult:
        """
        Run every stage and collect the outcome.

        Provisioning errors are captured on the result rather than raised so the
        caller can always render a report.

        Args:
            dry_run: Only run read-only checks and log the mutating commands

        Returns:
            ProvisioningResult (check .success / .exit_code)
        """
        handle = InstanceHandle(instance_id=self.request.instance_id)
        result = ProvisioningResult(request=self.request, handle=handle, dry_run=dry_run)

        logger.info("=== LXC provisioning started ===")
        logger.info(f"Container ID: {self.request.instance_id}")
        logger.info(f"Hostname: {self.request.hostname}")
        logger.info(f"Root disk storage: {self.request.root_storage_target}")

        try:
            self._check_unique(result)
            self._resolve_template_storage(result)
            self._check_network(result)

            if dry_run:
                self._plan(result)
                return result

            self._acquire_template(result)
            self._create(result)
            self._configure_network(result)
            self._configure_options(result)
            self._start(result)
            self._discover_address(result)
            self._install(result)
            self._final_status(result)
        except ProvisioningError as e:
            logger.error(f"❌ {e}")
            if e.diagnostic:
                logger.error(e.diagnostic)
            result.error = e
            return result

        logger.info("=== LXC provisioning complete ===")
        return result

    # Stages 1-5: any failure aborts the run

    def _check_unique(self, result: ProvisioningResult) -> None:
        instance_id = self.request.instance_id
        status = self.pct.status(instance_id)
        if status is not None:
            result.stages.append(StageResult(Stage.UNIQUENESS, False, f"ID {instance_id} in use ({status})"))
            raise DuplicateIdentifierError(
                f"Container ID {instance_id} is already in use. Please choose a different ID."
            )
        result.stages.append(StageResult(Stage.UNIQUENESS, True, f"ID {instance_id} is free"))

    def _resolve_template_storage(self, result: ProvisioningResult) -> None:
        try:
            storage = self.templates.resolve_cache_storage(self.request.template_cache_target)
        except ProvisioningError:
            result.stages.append(StageResult(Stage.TEMPLATE_STORAGE, False, "no template storage"))
            raise
        result.handle.template_storage = storage
        result.stages.append(StageResult(Stage.TEMPLATE_STORAGE, True, storage))

    def _check_network(self, result: ProvisioningResult) -> None:
        try:
            check_host_connectivity(self.runner, self.settings.probe_target)
        except ProvisioningError:
            result.stages.append(StageResult(Stage.NETWORK_PRECHECK, False, self.settings.probe_target))
            raise
        result.stages.append(StageResult(Stage.NETWORK_PRECHECK, True, self.settings.probe_target))

    def _acquire_template(self, result: ProvisioningResult) -> None:
        storage = result.handle.template_storage
        name = self.request.template_image_name
        try:
            downloaded = self.templates.ensure_template(storage, name)
        except ProvisioningError as e:
            result.stages.append(StageResult(Stage.TEMPLATE, False, name, e.diagnostic))
            raise
        result.stages.append(StageResult(Stage.TEMPLATE, True, "downloaded" if downloaded else "cached"))

    def _create(self, result: ProvisioningResult) -> None:
        request = self.request
        template_ref = request.template_ref(result.handle.template_storage)
        logger.info(
            f"🆕 Creating container {request.instance_id} ({request.hostname}) "
            f"on disk storage {request.root_storage_target}..."
        )
        outcome = self.pct.create(request, template_ref)
        if not outcome.ok:
            result.stages.append(StageResult(Stage.CREATE, False, template_ref, outcome.diagnostic))
            raise CreationFailedError(
                f"Failed to create container {request.instance_id}", diagnostic=outcome.diagnostic
            )
        result.handle.state = InstanceState.CREATED
        result.stages.append(StageResult(Stage.CREATE, True, template_ref))

    # Stages 6-11: the container exists, failures follow the failure mode

    def _post_creation(
        self, result: ProvisioningResult, stage: Stage, outcome: CommandResult, success_state: InstanceState
    ) -> bool:
        """Record a post-creation command outcome; raise in strict mode."""
        if outcome.ok:
            result.handle.state = success_state
            result.stages.append(StageResult(stage, True))
            return True

        message = f"{stage.value} failed for container {self.request.instance_id}"
        result.stages.append(StageResult(stage, False, message, outcome.diagnostic))
        if self.mode == FailureMode.STRICT:
            raise StageFailedError(stage, message, diagnostic=outcome.diagnostic)

        logger.warning(f"⚠️  {message} (continuing in best-effort mode): {outcome.diagnostic}")
        result.warnings.append(f"{message}: {outcome.diagnostic}" if outcome.diagnostic else message)
        return False

    def _configure_network(self, result: ProvisioningResult) -> None:
        logger.info("🌐 Setting static network configuration...")
        outcome = self.pct.set_network(self.request)
        self._post_creation(result, Stage.NETWORK_CONFIG, outcome, InstanceState.NETWORK_CONFIGURED)

    def _configure_options(self, result: ProvisioningResult) -> None:
        logger.info("🔧 Setting autostart, CPU limits, and security features...")
        outcome = self.pct.set_options(self.request.instance_id, self.settings.cpu_units, self.settings.features)
        self._post_creation(result, Stage.OPTIONS, outcome, InstanceState.CONFIGURED)

    def _start(self, result: ProvisioningResult) -> None:
        logger.info(f"▶️  Starting container {self.request.instance_id}...")
        outcome = self.pct.start(self.request.instance_id)
        if self._post_creation(result, Stage.START, outcome, InstanceState.RUNNING):
            # Give the guest network time to come up
            self.sleep(self.settings.settle_delay)

    def _discover_address(self, result: ProvisioningResult) -> None:
        outcome = discover_guest_address(
            self.pct,
            self.request.instance_id,
            interval=self.settings.address_poll_interval,
            max_attempts=self.settings.address_poll_attempts,
            sleep=self.sleep,
        )
        result.handle.address = outcome.value if outcome.satisfied else None
        message = f"{outcome.value} after {outcome.attempts} attempt(s)" if outcome.satisfied else "unknown"
        # An unknown address never fails the run
        result.stages.append(StageResult(Stage.ADDRESS_DISCOVERY, True, message))

    def _install(self, result: ProvisioningResult) -> None:
        if not self.settings.install_app:
            logger.info("Skipping guest software installation")
            return
        if not result.handle.address:
            logger.warning("⚠️  Skipping guest software installation: container has no network address")
            result.warnings.append("Guest software not installed: no address discovered")
            return

        logger.info(f"📦 Installing {self.settings.app_package} in container {self.request.instance_id}...")
        result.install_ran = True
        try:
            steps = self.installer.install(self.request.instance_id, self.mode)
        except StageFailedError as e:
            result.stages.extend(e.results or [StageResult(Stage.GUEST_INSTALL, False, str(e), e.diagnostic)])
            raise

        result.stages.extend(steps)
        failed = [step for step in steps if not step.success]
        for step in failed:
            result.warnings.append(f"Guest step failed: {step.message}")
        if not failed:
            result.handle.state = InstanceState.PROVISIONED

    def _final_status(self, result: ProvisioningResult) -> None:
        status = self.pct.status(self.request.instance_id)
        result.handle.status = status or "unknown"
        result.stages.append(StageResult(Stage.STATUS, True, result.handle.status))

    # Dry run

    def _plan(self, result: ProvisioningResult) -> None:
        """Log the commands the mutating stages would run."""
        request = self.request
        storage = result.handle.template_storage
        name = request.template_image_name

        if self.templates.is_cached(storage, name):
            logger.info(f"DRY RUN: template {name} already cached")
        else:
            logger.info(f"DRY RUN: would run {redact(['pveam', 'download', storage, name])}")

        planned = [
            ["pct", "create", str(request.instance_id), request.template_ref(storage),
             "--hostname", request.hostname, "--password", request.root_credential,
             "--rootfs", request.rootfs_spec],
            ["pct", "set", str(request.instance_id), "--net0",
             f"name=eth0,bridge={request.network_bridge},ip={request.static_ip_cidr},gw={request.gateway_ip}"],
            ["pct", "set", str(request.instance_id), "--onboot", "1",
             "--cpuunits", str(self.settings.cpu_units), "--features", self.settings.features],
            ["pct", "start", str(request.instance_id)],
        ]
        for command in planned:
            logger.info(f"DRY RUN: would run {redact(command)}")
        if self.settings.install_app:
            for description, _ in self.installer.build_steps():
                logger.info(f"DRY RUN: would run in guest: {description}")

        result.stages.append(StageResult(Stage.TEMPLATE, True, "planned (dry run)"))
