"""Package source factory."""

import logging
from pathlib import Path
from urllib.parse import urlparse

from pkgflow.config.schemas import SourceConfig, WorkspaceConfig
from pkgflow.sources.base import PackageSource
from pkgflow.sources.local import LocalPackageSource

logger = logging.getLogger(__name__)


class UnsupportedProtocolError(Exception):
    """Error when a source URL uses an unsupported protocol."""

    def __init__(self, protocol: str, url: str):
        self.protocol = protocol
        self.url = url
        super().__init__(f"Unsupported source protocol: {protocol} (in {url})")


def create_package_source(
    url: str,
    name: str | None = None,
    headers: dict[str, str] | None = None,
    timeout: int | None = None,
) -> PackageSource:
    """Create a package source for the given URL.

    Args:
        url: Source URL (file://, file:, a plain path, or https://)
        name: Display name for the source
        headers: Optional HTTP headers for remote sources
        timeout: Optional request timeout for remote sources

    Returns:
        Appropriate PackageSource instance

    Raises:
        UnsupportedProtocolError: If the protocol is not supported
    """
    logger.debug("Creating package source for URL: %s", url)

    if url.startswith("file:") or is_local_source(url):
        return LocalPackageSource(url, name=name)

    parsed = urlparse(url)
    protocol = parsed.scheme.lower()

    if protocol == "":
        return LocalPackageSource(url, name=name)
    elif protocol == "https":
        from pkgflow.sources.https import HttpsPackageSource

        return HttpsPackageSource(url, name=name, headers=headers, timeout=timeout)
    else:
        logger.error("Unsupported protocol: %s in URL %s", protocol, url)
        raise UnsupportedProtocolError(protocol, url)


def is_local_source(source: str) -> bool:
    """Check if a source string is a local file source.

    Args:
        source: Source URL or path

    Returns:
        True if the source is local (file:, relative, absolute or home path)
    """
    if source.startswith("file:"):
        return True
    if source.startswith(("./", "../", "/", "~")):
        return True
    # Check if it's a Windows absolute path
    return len(source) > 2 and source[1] == ":" and source[2] in ("/", "\\")


def create_local_sources(
    config: WorkspaceConfig,
    base_dir: Path | None = None,
) -> list[PackageSource]:
    """Local tier: the user's package cache, then any fallback folders."""
    sources: list[PackageSource] = [
        LocalPackageSource(_resolve_path(config.packages_folder, base_dir), name="packages-folder")
    ]
    for index, folder in enumerate(config.fallback_folders):
        sources.append(
            LocalPackageSource(
                _resolve_path(folder, base_dir), name=f"fallback-folder-{index + 1}"
            )
        )
    return sources


def create_remote_sources(
    config: WorkspaceConfig,
    base_dir: Path | None = None,
) -> list[PackageSource]:
    """Remote tier: every enabled source in configured order.

    Relative local paths are resolved against ``base_dir`` when given.
    """
    return [_create_from_config(source, config, base_dir) for source in config.enabled_sources]


def _create_from_config(
    source: SourceConfig,
    config: WorkspaceConfig,
    base_dir: Path | None,
) -> PackageSource:
    return create_package_source(
        _resolve_path(source.url, base_dir),
        name=source.name,
        headers=source.headers,
        timeout=config.request_timeout,
    )


def _resolve_path(url: str, base_dir: Path | None) -> str:
    """Resolve a relative local path against the workspace root."""
    if base_dir is not None and url.startswith(("./", "../")):
        return str((base_dir / url).resolve())
    return url
