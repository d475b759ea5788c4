"""Template storage resolution and template download."""

import logging
import posixpath
from typing import Callable, Optional, Protocol

from lxc_provisioner.models import NoCacheTargetAvailableError, TemplateFetchFailedError
from lxc_provisioner.pct import PctClient

logger = logging.getLogger(__name__)

TEMPLATE_CONTENT = "vztmpl"


class ImageCache(Protocol):
    """Answers whether a template file is already cached."""

    def contains(self, name: str) -> bool:
        ...


class PathImageCache:
    """Checks the cache directory on the host for the template file."""

    def __init__(self, runner, cache_dir: str = "/var/lib/vz/template/cache") -> None:
        self.runner = runner
        self.cache_dir = cache_dir

    def contains(self, name: str) -> bool:
        path = posixpath.join(self.cache_dir, name)
        return self.runner.run(["test", "-f", path]).ok


class PveamImageCache:
    """Asks pveam which templates a storage holds."""

    def __init__(self, runner, storage: str) -> None:
        self.runner = runner
        self.storage = storage

    def contains(self, name: str) -> bool:
        result = self.runner.run(["pveam", "list", self.storage])
        if not result.ok:
            logger.warning(f"pveam list {self.storage} failed: {result.diagnostic}")
            return False
        volid = f"{self.storage}:{TEMPLATE_CONTENT}/{name}"
        return any(line.split()[0] == volid for line in result.stdout.splitlines() if line.split())


class TemplateManager:
    """Resolves the template storage and makes sure the template is cached."""

    def __init__(
        self,
        runner,
        pct: PctClient,
        cache_factory: Optional[Callable[[str], ImageCache]] = None,
    ) -> None:
        """
        Args:
            runner: Command runner for pveam
            pct: Client used for storage queries
            cache_factory: Builds an ImageCache for a storage ID
                           (defaults to pveam lookup)
        """
        self.runner = runner
        self.pct = pct
        self.cache_factory = cache_factory or (lambda storage: PveamImageCache(runner, storage))

    def resolve_cache_storage(self, preferred: str) -> str:
        """
        Return preferred if it holds templates, else the first storage that does.

        Raises:
            NoCacheTargetAvailableError: If no storage accepts templates
        """
        logger.info("Validating template cache storage...")
        if self.pct.storage_supports(preferred, TEMPLATE_CONTENT):
            logger.info(f"Using configured template cache storage '{preferred}'")
            return preferred

        logger.warning(f"⚠️  Configured template cache storage '{preferred}' does not support container templates")
        candidates = self.pct.storages_with_content(TEMPLATE_CONTENT)
        if not candidates:
            raise NoCacheTargetAvailableError(
                "No storage pool is configured to hold container templates (vztmpl). "
                "Check the storage settings in the Proxmox UI."
            )

        fallback = candidates[0]
        logger.info(f"Falling back to storage '{fallback}' for template download")
        return fallback

    def is_cached(self, storage: str, name: str) -> bool:
        return self.cache_factory(storage).contains(name)

    def ensure_template(self, storage: str, name: str) -> bool:
        """
        Download the template unless it is already cached.

        Returns:
            True if a download happened

        Raises:
            TemplateFetchFailedError: If pveam download exits non-zero
        """
        if self.is_cached(storage, name):
            logger.info(f"Template {name} already exists")
            return False

        logger.info(f"📥 Template {name} not found. Downloading to storage '{storage}'...")
        result = self.runner.run(["pveam", "download", storage, name])
        if not result.ok:
            raise TemplateFetchFailedError(
                f"Failed to download template {name} to '{storage}'. "
                f"Possible causes: the Proxmox repository is down, storage '{storage}' is full, "
                f"or the template name is incorrect.",
                diagnostic=result.diagnostic,
            )

        logger.info("✅ Template downloaded successfully")
        return True
