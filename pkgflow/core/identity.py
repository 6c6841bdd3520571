"""Package identity value type."""

from __future__ import annotations

from dataclasses import dataclass

from pkgflow.utils.version import SemVer, parse_version


@dataclass(frozen=True, eq=False)
class PackageIdentity:
    """A package id with an optional version.

    Ids compare case-insensitively; versions compare by their normalized
    form, so ``Foo@1.0`` and ``foo@1.0.0`` are the same identity.
    """

    id: str
    version: SemVer | None = None

    @classmethod
    def create(cls, package_id: str, version: str | SemVer | None = None) -> PackageIdentity:
        """Build an identity from a raw version string.

        Raises:
            ValueError: If the version string is not a valid version
        """
        return cls(package_id, parse_version(version))

    @classmethod
    def parse(cls, specifier: str) -> PackageIdentity:
        """Parse an ``id@version`` (or bare ``id``) specifier."""
        if "@" in specifier:
            package_id, version = specifier.rsplit("@", 1)
            return cls.create(package_id, version)
        return cls(specifier)

    @property
    def has_version(self) -> bool:
        return self.version is not None

    @property
    def normalized_version(self) -> str:
        """Normalized version string, or "" when there is no version."""
        return self.version.to_normalized_string() if self.version is not None else ""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageIdentity):
            return NotImplemented
        return self.id.lower() == other.id.lower() and self.version == other.version

    def __hash__(self) -> int:
        return hash((self.id.lower(), self.version))

    def __str__(self) -> str:
        if self.version is None:
            return self.id
        return f"{self.id}@{self.normalized_version}"
