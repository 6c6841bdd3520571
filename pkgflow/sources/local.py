"""Local package folder source."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from urllib.parse import urlparse

from pkgflow.config.parser import ConfigError, load_package_manifest
from pkgflow.config.schemas import PackageManifest
from pkgflow.core.identity import PackageIdentity
from pkgflow.sources.base import (
    LocalSourceError,
    PackageMetadata,
    PackageSource,
    SourceCacheContext,
)

logger = logging.getLogger(__name__)


def manifest_to_metadata(manifest: PackageManifest, identity: PackageIdentity) -> PackageMetadata:
    """Convert a validated package.json document to PackageMetadata."""
    return PackageMetadata(
        identity=PackageIdentity.create(manifest.id, manifest.version)
        if manifest.version
        else identity,
        requires_license_acceptance=manifest.require_license_acceptance,
        authors=list(manifest.authors),
        license_url=manifest.license_url,
        license_expression=manifest.license,
        project_url=manifest.project_url,
        description=manifest.description,
    )


class LocalPackageSource(PackageSource):
    """Package source backed by a package folder on disk.

    Layout::

        <root>/
            <id-lower>/
                <normalized-version>/
                    package.json

    URL format:
    - file:///path/to/packages (absolute)
    - file:../relative/path (relative)
    - /plain/path or ~/path
    """

    def __init__(self, url: str, name: str | None = None):
        """Initialize the local package source.

        Args:
            url: Local file URL (file:// or file:) or a plain path
            name: Display name (defaults to the URL)
        """
        super().__init__(name or url, url)
        self._path = self._parse_url(url)

        logger.debug("Initializing local package source %s at %s", self.name, self._path)

    def _parse_url(self, url: str) -> Path:
        """Parse a file URL to a Path."""
        if url.startswith("file://"):
            # Absolute path
            parsed = urlparse(url)
            return Path(parsed.path)
        elif url.startswith("file:"):
            # Relative path (file:../path or file:./path)
            return Path(url[5:]).expanduser().resolve()
        else:
            return Path(url).expanduser().resolve()

    @property
    def is_local(self) -> bool:
        return True

    @property
    def path(self) -> Path:
        """Get the local path this source points to."""
        return self._path

    def package_directory(self, identity: PackageIdentity) -> Path:
        """Directory holding one package version."""
        return self._path / identity.id.lower() / identity.normalized_version

    async def get_metadata(
        self,
        identity: PackageIdentity,
        cache: SourceCacheContext,
    ) -> PackageMetadata | None:
        """Read package.json for ``identity`` from the package folder.

        Returns:
            PackageMetadata if the package version exists, None otherwise

        Raises:
            LocalSourceError: If package.json exists but cannot be read
        """
        if not identity.has_version:
            return None

        package_dir = self.package_directory(identity)
        key = f"file://{package_dir}"
        manifest = await cache.get_or_fetch(key, lambda: asyncio.to_thread(self._read, package_dir))
        if manifest is None:
            logger.debug("Package %s not found in %s", identity, self.name)
            return None

        return manifest_to_metadata(manifest, identity)

    def _read(self, package_dir: Path) -> PackageManifest | None:
        if not (package_dir / "package.json").exists():
            return None

        try:
            return load_package_manifest(package_dir)
        except ConfigError as e:
            raise LocalSourceError(str(e), source=self.name, path=str(package_dir)) from e

    def list_versions(self, package_id: str) -> list[str]:
        """List the versions of a package present in the folder."""
        package_root = self._path / package_id.lower()
        if not package_root.is_dir():
            return []
        return sorted(
            child.name for child in package_root.iterdir() if (child / "package.json").exists()
        )
