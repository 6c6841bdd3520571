"""Tests for pkgflow.core.metadata module."""

import asyncio

import pytest
from fakes import FakeSource

from pkgflow.core.cancellation import CancellationToken, OperationCancelledError
from pkgflow.core.identity import PackageIdentity
from pkgflow.core.metadata import (
    MetadataResolver,
    MetadataSourceError,
    PackageMetadataNotFoundError,
    throttled,
)
from pkgflow.sources.base import PackageMetadata, SourceCacheContext, SourceError, TransportError

FOO = PackageIdentity.create("Foo", "1.0.0")
BAR = PackageIdentity.create("Bar", "2.0.0")


def meta(identity: PackageIdentity, **kwargs) -> PackageMetadata:
    return PackageMetadata(identity=identity, **kwargs)


def resolve(resolver: MetadataResolver, packages, token: CancellationToken | None = None):
    return asyncio.run(resolver.resolve(packages, token or CancellationToken.none()))


class TestMetadataResolverTiers:
    """Tests for the two-tier lookup."""

    def test_local_hit_skips_remote(self):
        """A package found locally is never requested remotely."""
        local = FakeSource("local", {FOO: meta(FOO)}, local=True)
        remote = FakeSource("remote", {FOO: meta(FOO), BAR: meta(BAR)})
        resolver = MetadataResolver([local], [remote])

        results = resolve(resolver, [FOO, BAR])

        assert set(results) == {FOO, BAR}
        assert remote.requests == [BAR]

    def test_remote_used_for_local_misses(self):
        """Packages missing locally are resolved from the remote tier."""
        local = FakeSource("local", {}, local=True)
        remote = FakeSource("remote", {FOO: meta(FOO, description="remote")})
        resolver = MetadataResolver([local], [remote])

        results = resolve(resolver, [FOO])

        assert results[FOO].description == "remote"

    def test_duplicate_requests_resolved_once(self):
        """Equal identities are looked up once."""
        local = FakeSource("local", {FOO: meta(FOO)}, local=True)
        resolver = MetadataResolver([local], [])

        results = resolve(resolver, [FOO, PackageIdentity.create("foo", "1.0")])

        assert len(results) == 1
        assert local.requests == [FOO]

    def test_empty_request(self):
        """Nothing requested, nothing queried."""
        remote = FakeSource("remote")
        resolver = MetadataResolver([], [remote])

        assert resolve(resolver, []) == {}
        assert remote.requests == []


class TestMetadataResolverSourceOrder:
    """Tests for per-tier source ordering and error handling."""

    def test_first_non_null_wins(self):
        """Given [A(null), B(meta)], the result is B's metadata."""
        a = FakeSource("a", {FOO: None})
        b = FakeSource("b", {FOO: meta(FOO, description="from b")})
        resolver = MetadataResolver([], [a, b])

        assert resolve(resolver, [FOO])[FOO].description == "from b"

    def test_error_then_success_suppresses_error(self):
        """Given [A(error), B(meta)], the error from A is not raised."""
        a = FakeSource("a", {FOO: TransportError("down", source="a")})
        b = FakeSource("b", {FOO: meta(FOO, description="from b")})
        resolver = MetadataResolver([], [a, b])

        assert resolve(resolver, [FOO])[FOO].description == "from b"

    def test_later_sources_not_queried_after_hit(self):
        """Sources after the first hit are skipped."""
        a = FakeSource("a", {FOO: meta(FOO)})
        b = FakeSource("b", {FOO: meta(FOO)})
        resolver = MetadataResolver([], [a, b])

        resolve(resolver, [FOO])

        assert b.requests == []

    def test_all_remote_errors_are_aggregated(self):
        """When every remote source fails, all causes are raised together."""
        a = FakeSource("a", {FOO: TransportError("a down", source="a")})
        b = FakeSource("b", {FOO: SourceError("b broken", source="b")})
        resolver = MetadataResolver([], [a, b])

        with pytest.raises(MetadataSourceError) as exc_info:
            resolve(resolver, [FOO])

        assert exc_info.value.package == FOO
        assert [str(e) for e in exc_info.value.errors] == ["a down", "b broken"]
        assert "a down" in str(exc_info.value)

    def test_local_errors_are_not_raised(self):
        """Local tier errors fall through to the remote tier."""
        local = FakeSource("local", {FOO: SourceError("corrupt")}, local=True)
        remote = FakeSource("remote", {FOO: meta(FOO)})
        resolver = MetadataResolver([local], [remote])

        assert FOO in resolve(resolver, [FOO])

    def test_unresolved_package_names_package(self):
        """A package with no metadata anywhere raises a not-found error."""
        resolver = MetadataResolver([FakeSource("local", local=True)], [FakeSource("remote")])

        with pytest.raises(PackageMetadataNotFoundError, match="Unable to find metadata of Foo@1.0.0"):
            resolve(resolver, [FOO])

    def test_no_sources_at_all(self):
        """Without sources every package is unresolved."""
        resolver = MetadataResolver([], [])

        with pytest.raises(PackageMetadataNotFoundError):
            resolve(resolver, [FOO])

    def test_invalid_max_concurrency(self):
        """The worker limit must be positive."""
        with pytest.raises(ValueError):
            MetadataResolver([], [], max_concurrency=0)


class TestMetadataResolverCancellation:
    """Tests for cancellation during resolution."""

    def test_cancelled_token_aborts(self):
        """A cancelled token aborts the whole call."""
        token = CancellationToken()
        token.cancel()
        resolver = MetadataResolver([], [FakeSource("remote", {FOO: meta(FOO)})])

        with pytest.raises(OperationCancelledError):
            resolve(resolver, [FOO], token)

    def test_cancel_during_lookup_cancels_outstanding_work(self):
        """Cancelling mid-flight stops every pending lookup."""
        token = CancellationToken()
        started = []
        finished = []

        class SlowSource(FakeSource):
            async def get_metadata(self, identity: PackageIdentity, cache: SourceCacheContext):
                started.append(identity)
                if len(started) == 1:
                    token.cancel()
                await asyncio.sleep(10)
                finished.append(identity)
                return None

        resolver = MetadataResolver([], [SlowSource("slow")])

        with pytest.raises(OperationCancelledError):
            resolve(resolver, [FOO, BAR], token)

        assert finished == []


class TestThrottled:
    """Tests for throttled()."""

    def test_respects_limit_and_order(self):
        """At most max_concurrency workers run at once; results keep input order."""
        running = 0
        peak = 0

        async def worker(item: int) -> int:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return item * 2

        results = asyncio.run(throttled(range(10), worker, 3, CancellationToken.none()))

        assert results == [i * 2 for i in range(10)]
        assert peak <= 3

    def test_worker_error_propagates(self):
        """The first worker error is raised."""

        async def worker(item: int) -> int:
            if item == 2:
                raise RuntimeError("bad item")
            return item

        with pytest.raises(RuntimeError, match="bad item"):
            asyncio.run(throttled(range(5), worker, 2, CancellationToken.none()))
