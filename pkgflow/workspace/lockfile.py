"""Lock file management for pkgflow."""

from collections.abc import Iterable
from pathlib import Path

from pkgflow.config.parser import load_lockfile, save_lockfile
from pkgflow.config.schemas import LockedProject, LockFile
from pkgflow.core.identity import PackageIdentity


class LockFileManager:
    """Manages the pkgflow.lock file holding installed packages per project."""

    def __init__(self, workspace_root: Path):
        """Initialize the lock file manager.

        Args:
            workspace_root: Path to the workspace root
        """
        self._workspace_root = workspace_root
        self._lockfile: LockFile | None = None
        self._modified = False

    def load(self) -> LockFile:
        """Load the lock file from disk.

        Creates a new empty lock file if one doesn't exist.

        Returns:
            The loaded or new lock file
        """
        self._lockfile = load_lockfile(self._workspace_root)
        if self._lockfile is None:
            self._lockfile = LockFile()
            self._modified = True
        return self._lockfile

    def save(self) -> None:
        """Save the lock file to disk if modified."""
        if self._lockfile is not None and self._modified:
            save_lockfile(self._workspace_root, self._lockfile)
            self._modified = False

    @property
    def lockfile(self) -> LockFile:
        """Get the current lock file, loading if necessary."""
        if self._lockfile is None:
            self.load()
        assert self._lockfile is not None
        return self._lockfile

    def _project(self, project_id: str) -> LockedProject | None:
        return self.lockfile.projects.get(project_id)

    def _find_key(self, project: LockedProject, package_id: str) -> str | None:
        """Stored key for a package id, matched case-insensitively."""
        for key in project.packages:
            if key.lower() == package_id.lower():
                return key
        return None

    def get_installed(self, project_id: str) -> list[PackageIdentity]:
        """Installed packages of a project, in lock file order.

        Raises:
            ValueError: If the lock file holds an invalid version
        """
        project = self._project(project_id)
        if project is None:
            return []
        return [
            PackageIdentity.create(package_id, version)
            for package_id, version in project.packages.items()
        ]

    def get_installed_version(self, project_id: str, package_id: str) -> str | None:
        """Installed version of a package, or None if not installed."""
        project = self._project(project_id)
        if project is None:
            return None
        key = self._find_key(project, package_id)
        return project.packages[key] if key is not None else None

    def add_package(self, project_id: str, package: PackageIdentity) -> None:
        """Record a package as installed, replacing any other version."""
        project = self.lockfile.projects.setdefault(project_id, LockedProject())
        key = self._find_key(project, package.id)
        if key is not None:
            del project.packages[key]
        project.packages[package.id] = package.normalized_version
        self._modified = True

    def remove_package(self, project_id: str, package_id: str) -> bool:
        """Remove a package from a project.

        Returns:
            True if the package was removed, False if it wasn't installed
        """
        project = self._project(project_id)
        if project is None:
            return False
        key = self._find_key(project, package_id)
        if key is None:
            return False
        del project.packages[key]
        self._modified = True
        return True

    def replace_packages(self, project_id: str, packages: Iterable[PackageIdentity]) -> None:
        """Rewrite every entry of a project with normalized versions."""
        project = self.lockfile.projects.setdefault(project_id, LockedProject())
        project.packages = {p.id: p.normalized_version for p in packages}
        self._modified = True

    def list_projects(self) -> list[str]:
        """Ids of projects with a lock entry."""
        return list(self.lockfile.projects.keys())

    def clear(self) -> None:
        """Clear all lock entries."""
        self.lockfile.projects.clear()
        self._modified = True
