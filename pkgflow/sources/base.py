"""Abstract base class for package sources."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pkgflow.core.identity import PackageIdentity

SPDX_LICENSE_URL = "https://licenses.nuget.org/{expression}"


class SourceError(Exception):
    """A recoverable error while querying a package source."""

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(message)


class TransportError(SourceError):
    """A network-level failure talking to a remote source.

    The underlying cause is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        source: str | None = None,
        url: str | None = None,
        status_code: int | None = None,
    ):
        self.url = url
        self.status_code = status_code
        super().__init__(message, source)


class LocalSourceError(SourceError):
    """Error reading a local package folder."""

    def __init__(self, message: str, source: str | None = None, path: str | None = None):
        self.path = path
        super().__init__(message, source)


@dataclass
class PackageMetadata:
    """Metadata about one package version."""

    identity: PackageIdentity
    requires_license_acceptance: bool = False
    authors: list[str] = field(default_factory=list)
    license_url: str | None = None
    license_expression: str | None = None
    project_url: str | None = None
    description: str = ""

    @property
    def license_links(self) -> list[str]:
        """Links the user can follow to read the package license."""
        if self.license_url:
            return [self.license_url]
        if self.license_expression:
            identifiers = [
                token
                for token in self.license_expression.replace("(", " ").replace(")", " ").split()
                if token.upper() not in ("AND", "OR", "WITH")
            ]
            return [SPDX_LICENSE_URL.format(expression=identifier) for identifier in identifiers]
        return []


class SourceCacheContext:
    """Per-call cache shared by every lookup of one metadata resolution.

    Documents are cached by key (usually a URL), including misses stored as
    None. Concurrent requests for the same key share a single fetch.
    """

    def __init__(self) -> None:
        self._documents: dict[str, Any] = {}
        self._pending: dict[str, asyncio.Task[Any]] = {}
        self.hits = 0
        self.misses = 0

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached document for ``key``, fetching it at most once."""
        if key in self._documents:
            self.hits += 1
            return self._documents[key]

        task = self._pending.get(key)
        if task is None:
            self.misses += 1
            task = asyncio.ensure_future(fetch())
            self._pending[key] = task
            task.add_done_callback(lambda done: self._store(key, done))
        else:
            self.hits += 1

        return await asyncio.shield(task)

    def _store(self, key: str, task: asyncio.Task[Any]) -> None:
        self._pending.pop(key, None)
        # Failed fetches are not cached; the next lookup retries
        if not task.cancelled() and task.exception() is None:
            self._documents[key] = task.result()

    def clear(self) -> None:
        self._documents.clear()


class PackageSource(ABC):
    """A queryable package source.

    ``get_metadata`` returns None when the source does not know the package
    (the caller moves on to the next source) and raises ``SourceError`` on
    a transient failure.
    """

    def __init__(self, name: str, url: str):
        self._name = name
        self._url = url

    @property
    def name(self) -> str:
        return self._name

    @property
    def url(self) -> str:
        return self._url

    @property
    @abstractmethod
    def is_local(self) -> bool:
        """Whether the source lives on the local file system."""
        ...

    @abstractmethod
    async def get_metadata(
        self,
        identity: PackageIdentity,
        cache: SourceCacheContext,
    ) -> PackageMetadata | None:
        """Look up metadata for one package version.

        Args:
            identity: Package to look up (must carry a version)
            cache: Cache shared by all lookups of the current resolution

        Returns:
            PackageMetadata if the source has the package, None otherwise

        Raises:
            SourceError: On a transient failure
        """
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r}, url={self._url!r})"
