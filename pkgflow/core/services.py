"""Interfaces of the collaborators the action engine drives.

The engine never touches projects, prompts or telemetry storage directly.
It talks to three collaborators:

- ``ProjectManagerService``: reads project state, resolves actions and
  executes them. Not safe under concurrent mutation; the engine serializes
  calls to it with the operation lock.
- ``UserInterfaceService``: prompts and error display.
- ``TelemetrySink`` (see ``pkgflow.core.telemetry``): receives one record per
  operation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pkgflow.core.actions import ProjectAction
from pkgflow.core.cancellation import CancellationToken
from pkgflow.core.identity import PackageIdentity

if TYPE_CHECKING:
    from pkgflow.config.schemas import DependencyBehavior, PackageFormat
    from pkgflow.core.preview import PreviewResult


class ProjectMetadataKeys:
    """Metadata keys understood by ``ProjectManagerService.try_get_metadata``."""

    PROJECT_ID = "ProjectId"
    NAME = "Name"
    UNIQUE_NAME = "UniqueName"
    TARGET_FRAMEWORK = "TargetFramework"


@dataclass
class PackageLicenseInfo:
    """A package whose license must be accepted before installation."""

    package_id: str
    license_links: list[str] = field(default_factory=list)
    authors: list[str] = field(default_factory=list)


@dataclass
class PackageManagementFormat:
    """State shown by the package format prompt.

    The prompt may change ``selected_format`` and ``prompt_enabled``.
    """

    selected_format: PackageFormat = "packages-config"
    prompt_enabled: bool = True
    project_names: list[str] = field(default_factory=list)


class ProjectManagerService(ABC):
    """Project and package-manager collaborator."""

    # =========================================================================
    # Operation markers
    # =========================================================================

    @abstractmethod
    async def begin_operation(self) -> None:
        """Mark the start of a logical package operation."""
        ...

    @abstractmethod
    async def end_operation(self) -> None:
        """Mark the end of the operation started by ``begin_operation``."""
        ...

    # =========================================================================
    # Project state
    # =========================================================================

    @abstractmethod
    async def get_installed_packages(
        self,
        project_id: str,
        token: CancellationToken,
    ) -> list[PackageIdentity]:
        """Packages currently installed in a project."""
        ...

    @abstractmethod
    async def try_get_metadata(
        self,
        project_id: str,
        key: str,
        token: CancellationToken,
    ) -> tuple[bool, Any]:
        """Look up a project metadata value.

        Returns:
            ``(True, value)`` if the key is known, ``(False, None)`` otherwise
        """
        ...

    @abstractmethod
    async def get_upgradeable_projects(
        self,
        project_ids: Sequence[str],
        token: CancellationToken,
    ) -> list[str]:
        """Projects among ``project_ids`` that could switch package format.

        Only new projects with no installed packages qualify.
        """
        ...

    @abstractmethod
    async def upgrade_projects_to_package_reference(
        self,
        project_ids: Sequence[str],
        token: CancellationToken,
    ) -> None:
        """Switch projects to the package-reference format."""
        ...

    @abstractmethod
    async def get_projects_with_deprecated_framework(
        self,
        project_ids: Sequence[str],
        token: CancellationToken,
    ) -> list[str]:
        """Projects among ``project_ids`` that target a deprecated framework."""
        ...

    @abstractmethod
    async def get_migration_items(
        self,
        project_id: str,
        token: CancellationToken,
    ) -> list[PackageIdentity]:
        """Packages that move over when the project migrates to package-reference.

        Raises if the project cannot be migrated.
        """
        ...

    @abstractmethod
    async def migrate_to_package_reference(
        self,
        project_id: str,
        token: CancellationToken,
    ) -> str:
        """Back up and migrate a packages-config project to package-reference.

        Returns:
            Location of the backup
        """
        ...

    async def get_target_frameworks(
        self,
        project_ids: Sequence[str],
        token: CancellationToken,
    ) -> list[str]:
        """Distinct target frameworks of the given projects.

        Default implementation reads the ``TargetFramework`` metadata key.
        """
        frameworks: list[str] = []
        for project_id in project_ids:
            found, value = await self.try_get_metadata(
                project_id, ProjectMetadataKeys.TARGET_FRAMEWORK, token
            )
            if found and value and value not in frameworks:
                frameworks.append(value)
        return frameworks

    # =========================================================================
    # Resolution and execution
    # =========================================================================

    @abstractmethod
    async def get_install_actions(
        self,
        project_id: str,
        package: PackageIdentity,
        include_prerelease: bool,
        dependency_behavior: DependencyBehavior,
        source_names: Sequence[str],
        token: CancellationToken,
    ) -> list[ProjectAction]:
        """Actions that install ``package`` into one project."""
        ...

    @abstractmethod
    async def get_uninstall_actions(
        self,
        project_id: str,
        package_id: str,
        remove_dependencies: bool,
        force_remove: bool,
        token: CancellationToken,
    ) -> list[ProjectAction]:
        """Actions that remove ``package_id`` from one project."""
        ...

    @abstractmethod
    async def get_update_actions(
        self,
        project_ids: Sequence[str],
        packages: Sequence[PackageIdentity],
        include_prerelease: bool,
        dependency_behavior: DependencyBehavior,
        source_names: Sequence[str],
        token: CancellationToken,
    ) -> list[ProjectAction]:
        """Actions that update ``packages`` across all given projects."""
        ...

    @abstractmethod
    async def execute_actions(
        self,
        actions: Sequence[ProjectAction],
        token: CancellationToken,
    ) -> None:
        """Apply actions. Irrevocable once started."""
        ...


class UserInterfaceService(ABC):
    """Presentation collaborator: prompts, progress markers and errors."""

    def begin_operation(self) -> None:
        """Called once the operation lock is held."""

    def end_operation(self) -> None:
        """Called during finalization."""

    @abstractmethod
    async def prompt_for_preview_acceptance(self, results: Sequence[PreviewResult]) -> bool:
        """Show the change preview. Returns False to abort."""
        ...

    @abstractmethod
    async def prompt_for_license_acceptance(self, items: Sequence[PackageLicenseInfo]) -> bool:
        """Ask the user to accept package licenses. Returns False to abort."""
        ...

    @abstractmethod
    async def prompt_for_package_management_format(
        self,
        package_format: PackageManagementFormat,
    ) -> bool:
        """Ask which package format new projects should use. Returns False to abort."""
        ...

    @abstractmethod
    async def warn_about_deprecated_framework(self, project_names: Sequence[str]) -> bool:
        """Warn that projects target a deprecated framework. Returns False to abort."""
        ...

    @abstractmethod
    async def prompt_for_migration(
        self,
        project_name: str,
        packages: Sequence[PackageIdentity],
    ) -> bool:
        """Show the packages a migration moves over. Returns False to abort."""
        ...

    @abstractmethod
    def show_error(self, error: BaseException) -> None:
        """Report an error to the user."""
        ...
