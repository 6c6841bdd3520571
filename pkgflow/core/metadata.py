"""Package metadata resolution across local and remote sources.

Resolution runs in two tiers. The local tier (the user's package folder,
then any fallback folders) is tried first for every package; only the
packages it cannot answer are looked up in the remote tier. Each tier fans
out over the requested packages with a fixed worker limit, and every lookup
in one ``resolve`` call shares a single ``SourceCacheContext``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from pkgflow.core.cancellation import CancellationToken, run_cancellable
from pkgflow.core.identity import PackageIdentity
from pkgflow.sources.base import PackageMetadata, PackageSource, SourceCacheContext, SourceError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_MAX_CONCURRENCY = 16


class MetadataResolutionError(Exception):
    """Error resolving package metadata."""

    def __init__(self, message: str, package: PackageIdentity):
        self.package = package
        super().__init__(message)


class PackageMetadataNotFoundError(MetadataResolutionError):
    """No source had metadata for a package."""

    def __init__(self, package: PackageIdentity):
        super().__init__(f"Unable to find metadata of {package}", package)


class MetadataSourceError(MetadataResolutionError):
    """Every source of the final tier failed for a package."""

    def __init__(self, package: PackageIdentity, errors: Sequence[SourceError]):
        self.errors = list(errors)
        causes = "; ".join(str(e) for e in self.errors)
        super().__init__(
            f"Unable to retrieve metadata of {package} ({len(self.errors)} source error(s)): "
            f"{causes}",
            package,
        )


@dataclass
class LookupResult:
    """Outcome of looking one package up in one tier."""

    metadata: PackageMetadata | None = None
    errors: list[SourceError] = field(default_factory=list)


async def throttled(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    max_concurrency: int,
    token: CancellationToken,
) -> list[R]:
    """Run ``worker`` over ``items`` with at most ``max_concurrency`` in flight.

    Results keep input order. If the token fires, every outstanding worker
    is cancelled and ``OperationCancelledError`` is raised.
    """
    semaphore = asyncio.Semaphore(max_concurrency)

    async def _run(item: T) -> R:
        async with semaphore:
            token.raise_if_cancellation_requested()
            return await worker(item)

    async def _run_all() -> list[R]:
        tasks = [asyncio.ensure_future(_run(item)) for item in items]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    return await run_cancellable(_run_all(), token)


class MetadataResolver:
    """Resolves PackageMetadata for a set of package identities."""

    def __init__(
        self,
        local_sources: Sequence[PackageSource],
        remote_sources: Sequence[PackageSource],
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        """Initialize the resolver.

        Args:
            local_sources: Local tier, in priority order
            remote_sources: Remote tier, in priority order
            max_concurrency: Worker limit for each tier's fan-out
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self._local_sources = list(local_sources)
        self._remote_sources = list(remote_sources)
        self._max_concurrency = max_concurrency

    @property
    def local_sources(self) -> list[PackageSource]:
        return list(self._local_sources)

    @property
    def remote_sources(self) -> list[PackageSource]:
        return list(self._remote_sources)

    async def resolve(
        self,
        packages: Iterable[PackageIdentity],
        token: CancellationToken,
    ) -> dict[PackageIdentity, PackageMetadata]:
        """Resolve metadata for every package.

        Args:
            packages: Identities to resolve (duplicates are ignored)
            token: Cancellation token

        Returns:
            Mapping from each requested identity to its metadata

        Raises:
            MetadataSourceError: If every remote source failed for a package
            PackageMetadataNotFoundError: If a package has no metadata anywhere
            OperationCancelledError: If cancellation was requested
        """
        requested = list(dict.fromkeys(packages))
        results: dict[PackageIdentity, PackageMetadata] = {}
        if not requested:
            return results

        cache = SourceCacheContext()

        local = await self._resolve_tier(requested, self._local_sources, cache, token)
        for package, lookup in zip(requested, local, strict=True):
            if lookup.metadata is not None:
                results[package] = lookup.metadata
            elif lookup.errors:
                logger.debug(
                    "Ignoring %d local source error(s) for %s", len(lookup.errors), package
                )

        remaining = [p for p in requested if p not in results]
        logger.debug(
            "Resolved %d of %d package(s) from local sources",
            len(results),
            len(requested),
        )

        if remaining:
            remote = await self._resolve_tier(remaining, self._remote_sources, cache, token)
            failures: dict[PackageIdentity, list[SourceError]] = {}
            for package, lookup in zip(remaining, remote, strict=True):
                if lookup.metadata is not None:
                    results[package] = lookup.metadata
                elif lookup.errors:
                    failures[package] = lookup.errors

            for package in remaining:
                if package in failures:
                    raise MetadataSourceError(package, failures[package])

        for package in requested:
            if package not in results:
                raise PackageMetadataNotFoundError(package)

        return results

    async def _resolve_tier(
        self,
        packages: Sequence[PackageIdentity],
        sources: Sequence[PackageSource],
        cache: SourceCacheContext,
        token: CancellationToken,
    ) -> list[LookupResult]:
        if not sources:
            return [LookupResult() for _ in packages]

        return await throttled(
            packages,
            lambda package: self._lookup(package, sources, cache),
            self._max_concurrency,
            token,
        )

    async def _lookup(
        self,
        package: PackageIdentity,
        sources: Sequence[PackageSource],
        cache: SourceCacheContext,
    ) -> LookupResult:
        """Try each source in order; the first non-None answer wins."""
        result = LookupResult()

        for source in sources:
            try:
                metadata = await source.get_metadata(package, cache)
            except SourceError as e:
                logger.debug("Source %s failed for %s: %s", source.name, package, e)
                result.errors.append(e)
                continue

            if metadata is not None:
                logger.debug("Found %s in %s", package, source.name)
                result.metadata = metadata
                return result

        return result
