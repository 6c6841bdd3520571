"""HTTPS package source for remote feeds."""

from __future__ import annotations

import asyncio
import json
import logging
import ssl
from http.client import HTTPException
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlparse
from urllib.request import Request, urlopen

from pkgflow.config.parser import ConfigError, parse_package_manifest
from pkgflow.core.identity import PackageIdentity
from pkgflow.sources.base import (
    PackageMetadata,
    PackageSource,
    SourceCacheContext,
    SourceError,
    TransportError,
)
from pkgflow.sources.local import manifest_to_metadata

logger = logging.getLogger(__name__)


class HttpsPackageSource(PackageSource):
    """Package source for an HTTPS-hosted feed.

    Metadata for each package version lives at::

        <base>/<id-lower>/<normalized-version>/package.json

    A 404 means the feed does not have the package. Any other HTTP error,
    connection failure or timeout is raised as ``TransportError`` so the
    caller can fall through to the next source.

    Supports optional authentication via headers (Bearer tokens, Basic auth, etc.).
    """

    DEFAULT_TIMEOUT = 30  # seconds

    def __init__(
        self,
        url: str,
        name: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: int | None = None,
    ):
        """Initialize the HTTPS package source.

        Args:
            url: HTTPS URL (https://example.com/feed/)
            name: Display name (defaults to the URL)
            headers: Optional HTTP headers (for authentication, etc.)
            timeout: Request timeout in seconds (default: 30)

        Raises:
            TransportError: If the URL is not an https URL
        """
        super().__init__(name or url, url)
        self._headers = headers or {}
        self._timeout = timeout or self.DEFAULT_TIMEOUT

        parsed = urlparse(url)
        if parsed.scheme != "https":
            raise TransportError(
                f"Invalid URL scheme: {parsed.scheme} (expected https)",
                source=self.name,
                url=url,
            )

        self._base_url = url.rstrip("/") + "/"
        self._ssl_context = ssl.create_default_context()

        logger.debug("Initializing HTTPS package source %s for %s", self.name, self._base_url)

    @property
    def is_local(self) -> bool:
        return False

    @property
    def base_url(self) -> str:
        """Get the base URL."""
        return self._base_url

    def metadata_url(self, identity: PackageIdentity) -> str:
        package_id = quote(identity.id.lower(), safe="")
        version = quote(identity.normalized_version, safe="")
        return f"{self._base_url}{package_id}/{version}/package.json"

    def _make_request(self, url: str) -> bytes | None:
        """Make a blocking GET request.

        Returns:
            Response body, or None on 404

        Raises:
            TransportError: If the request fails
        """
        logger.debug("Making GET request to %s", url)
        try:
            request = Request(url, method="GET")
            for key, value in self._headers.items():
                request.add_header(key, value)

            with urlopen(request, timeout=self._timeout, context=self._ssl_context) as response:
                result: bytes = response.read()
                logger.debug("Request successful, received %d bytes", len(result))
                return result
        except HTTPError as e:
            if e.code == 404:
                logger.debug("Not found: %s", url)
                return None
            logger.debug("HTTP error %d: %s for %s", e.code, e.reason, url)
            raise TransportError(
                f"HTTP {e.code}: {e.reason} for {url}",
                source=self.name,
                url=url,
                status_code=e.code,
            ) from e
        except URLError as e:
            logger.debug("Failed to connect to %s: %s", url, e.reason)
            raise TransportError(
                f"Failed to connect to {url}: {e.reason}",
                source=self.name,
                url=url,
            ) from e
        except TimeoutError as e:
            logger.debug("Request timed out for %s", url)
            raise TransportError(
                f"Request timed out for {url}",
                source=self.name,
                url=url,
            ) from e
        except (OSError, HTTPException) as e:
            # dropped connections and truncated responses while reading
            logger.debug("Connection failed for %s: %s", url, e)
            raise TransportError(
                f"Connection failed for {url}: {e!r}",
                source=self.name,
                url=url,
            ) from e

    def _fetch_document(self, url: str) -> dict[str, Any] | None:
        content = self._make_request(url)
        if content is None:
            return None

        try:
            data = json.loads(content.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SourceError(f"Invalid JSON in {url}: {e}", source=self.name) from e

        if not isinstance(data, dict):
            raise SourceError(f"Expected a JSON object from {url}", source=self.name)
        return data

    async def get_metadata(
        self,
        identity: PackageIdentity,
        cache: SourceCacheContext,
    ) -> PackageMetadata | None:
        """Fetch package.json for ``identity`` from the feed.

        Raises:
            TransportError: On network failures
            SourceError: If the feed returns an invalid document
        """
        if not identity.has_version:
            return None

        url = self.metadata_url(identity)
        data = await cache.get_or_fetch(url, lambda: asyncio.to_thread(self._fetch_document, url))
        if data is None:
            return None

        try:
            manifest = parse_package_manifest(data)
        except ConfigError as e:
            raise SourceError(f"{e} ({url})", source=self.name) from e

        return manifest_to_metadata(manifest, identity)
