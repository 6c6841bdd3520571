"""Semantic versioning utilities."""

import re
from dataclasses import dataclass
from functools import total_ordering


@total_ordering
@dataclass(frozen=True)
class SemVer:
    """Semantic version representation.

    Missing minor and patch components are accepted when parsing and
    default to zero, so "1.0" and "1.0.0" are the same version.
    """

    major: int
    minor: int
    patch: int
    prerelease: str | None = None
    build: str | None = None

    _SEMVER_PATTERN = re.compile(
        r"^v?(?P<major>0|[1-9]\d*)(?:\.(?P<minor>0|[1-9]\d*))?(?:\.(?P<patch>0|[1-9]\d*))?"
        r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
        r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
        r"(?:\+(?P<build>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
    )

    @classmethod
    def parse(cls, version_str: str) -> "SemVer":
        """Parse a version string.

        Args:
            version_str: Version string (e.g., "1.2.3", "2.0.0-beta.1+build.123", "1.0")

        Returns:
            SemVer instance

        Raises:
            ValueError: If the string is not a valid version
        """
        match = cls._SEMVER_PATTERN.match(version_str.strip())
        if not match:
            raise ValueError(f"Invalid semver: {version_str}")

        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor") or 0),
            patch=int(match.group("patch") or 0),
            prerelease=match.group("prerelease"),
            build=match.group("build"),
        )

    @property
    def is_prerelease(self) -> bool:
        """Whether this version carries a prerelease label."""
        return bool(self.prerelease)

    def to_normalized_string(self) -> str:
        """Render the version without build metadata."""
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            version += f"-{self.prerelease}"
        return version

    def __str__(self) -> str:
        version = self.to_normalized_string()
        if self.build:
            version += f"+{self.build}"
        return version

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return (
            self.major == other.major
            and self.minor == other.minor
            and self.patch == other.patch
            and (self.prerelease or "").lower() == (other.prerelease or "").lower()
        )

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented

        # Compare major.minor.patch
        if (self.major, self.minor, self.patch) != (other.major, other.minor, other.patch):
            return (self.major, self.minor, self.patch) < (other.major, other.minor, other.patch)

        # Prerelease versions have lower precedence
        if self.prerelease and not other.prerelease:
            return True
        if not self.prerelease and other.prerelease:
            return False
        if self.prerelease and other.prerelease:
            return self._compare_prerelease(self.prerelease, other.prerelease) < 0

        return False

    @staticmethod
    def _compare_prerelease(a: str, b: str) -> int:
        """Compare two prerelease strings."""
        parts_a = a.lower().split(".")
        parts_b = b.lower().split(".")

        for pa, pb in zip(parts_a, parts_b, strict=False):
            # Numeric identifiers are compared as integers
            try:
                na, nb = int(pa), int(pb)
                if na != nb:
                    return na - nb
            except ValueError:
                # Alphanumeric identifiers are compared lexically
                if pa != pb:
                    return -1 if pa < pb else 1

        # Longer prerelease has higher precedence
        return len(parts_a) - len(parts_b)

    def __hash__(self) -> int:
        return hash((self.major, self.minor, self.patch, (self.prerelease or "").lower()))


def parse_version(version: "str | SemVer | None") -> SemVer | None:
    """Parse an optional version value.

    Empty strings and None map to None; SemVer instances pass through.

    Raises:
        ValueError: If a non-empty string is not a valid version
    """
    if version is None or isinstance(version, SemVer):
        return version
    if not version.strip():
        return None
    return SemVer.parse(version)


def normalize_version(version: "str | SemVer | None") -> str:
    """Return the normalized string of a version, or "" when absent."""
    parsed = parse_version(version)
    return parsed.to_normalized_string() if parsed is not None else ""
