"""File-backed project manager for a pkgflow workspace.

Projects are declared in pkgflow.yaml; installed packages are tracked per
project in pkgflow.lock. The manager resolves requests against the lock
file only: it installs exactly the requested package and does not walk
dependencies.
"""

import logging
import shutil
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from pkgflow.config.parser import LOCK_FILE, WORKSPACE_FILE
from pkgflow.config.schemas import DependencyBehavior, ProjectConfig
from pkgflow.core.actions import ActionType, ImplicitAction, ProjectAction, expand_actions
from pkgflow.core.cancellation import CancellationToken
from pkgflow.core.identity import PackageIdentity
from pkgflow.core.services import ProjectManagerService, ProjectMetadataKeys
from pkgflow.utils.version import parse_version
from pkgflow.workspace.lockfile import LockFileManager
from pkgflow.workspace.workspace import Workspace

logger = logging.getLogger(__name__)

BACKUP_DIR = ".pkgflow/backup"


class WorkspaceError(Exception):
    """Error when a request refers to something the workspace doesn't have."""

    def __init__(self, message: str, project_id: str | None = None):
        self.project_id = project_id
        super().__init__(message)


class WorkspaceProjectManager(ProjectManagerService):
    """ProjectManagerService over pkgflow.yaml and pkgflow.lock."""

    def __init__(self, workspace: Workspace, lockfile: LockFileManager | None = None):
        self.workspace = workspace
        self.lockfile = lockfile or LockFileManager(workspace.root)
        self._depth = 0

    # =========================================================================
    # Operation markers
    # =========================================================================

    async def begin_operation(self) -> None:
        if self._depth == 0:
            # pick up changes made by other processes since the last operation
            self.lockfile.load()
        self._depth += 1
        logger.debug("Begin operation (depth %d)", self._depth)

    async def end_operation(self) -> None:
        if self._depth == 0:
            logger.warning("end_operation called without a matching begin_operation")
            return
        self._depth -= 1
        logger.debug("End operation (depth %d)", self._depth)

    @property
    def backup_root(self) -> Path:
        return self.workspace.root / BACKUP_DIR

    @property
    def in_operation(self) -> bool:
        return self._depth > 0

    # =========================================================================
    # Project state
    # =========================================================================

    def _get_project(self, project_id: str) -> ProjectConfig:
        project = self.workspace.config.get_project(project_id)
        if project is None:
            raise WorkspaceError(f"Unknown project: {project_id}", project_id)
        return project

    async def get_installed_packages(
        self,
        project_id: str,
        token: CancellationToken,
    ) -> list[PackageIdentity]:
        token.raise_if_cancellation_requested()
        project = self._get_project(project_id)
        return self.lockfile.get_installed(project.id)

    async def try_get_metadata(
        self,
        project_id: str,
        key: str,
        token: CancellationToken,
    ) -> tuple[bool, Any]:
        token.raise_if_cancellation_requested()
        project = self.workspace.config.get_project(project_id)
        if project is None:
            return False, None

        if key == ProjectMetadataKeys.PROJECT_ID:
            return True, project.id
        elif key == ProjectMetadataKeys.NAME:
            return True, project.name
        elif key == ProjectMetadataKeys.UNIQUE_NAME:
            return True, project.unique_name or project.name
        elif key == ProjectMetadataKeys.TARGET_FRAMEWORK:
            return bool(project.target_framework), project.target_framework or None
        return False, None

    async def get_upgradeable_projects(
        self,
        project_ids: Sequence[str],
        token: CancellationToken,
    ) -> list[str]:
        token.raise_if_cancellation_requested()
        upgradeable = []
        for project_id in project_ids:
            project = self._get_project(project_id)
            if project.format == "packages-config" and not self.lockfile.get_installed(project.id):
                upgradeable.append(project.id)
        return upgradeable

    async def upgrade_projects_to_package_reference(
        self,
        project_ids: Sequence[str],
        token: CancellationToken,
    ) -> None:
        token.raise_if_cancellation_requested()
        for project_id in project_ids:
            project = self._get_project(project_id)
            project.format = "package-reference"
            logger.info("Project %s now uses package-reference format", project.name)
        self.workspace.save()

    async def get_projects_with_deprecated_framework(
        self,
        project_ids: Sequence[str],
        token: CancellationToken,
    ) -> list[str]:
        token.raise_if_cancellation_requested()
        deprecated = {f.lower() for f in self.workspace.config.deprecated_frameworks}
        return [
            project.id
            for project in (self._get_project(p) for p in project_ids)
            if project.target_framework.lower() in deprecated
        ]

    async def get_migration_items(
        self,
        project_id: str,
        token: CancellationToken,
    ) -> list[PackageIdentity]:
        token.raise_if_cancellation_requested()
        project = self._get_project(project_id)
        if project.format == "package-reference":
            raise WorkspaceError(
                f"Project {project.name} already uses package-reference format", project.id
            )
        return self.lockfile.get_installed(project.id)

    async def migrate_to_package_reference(
        self,
        project_id: str,
        token: CancellationToken,
    ) -> str:
        token.raise_if_cancellation_requested()
        project = self._get_project(project_id)
        if project.format == "package-reference":
            raise WorkspaceError(
                f"Project {project.name} already uses package-reference format", project.id
            )

        backup_dir = self.backup_root / f"{project.id}-{datetime.now():%Y%m%d-%H%M%S-%f}"
        backup_dir.mkdir(parents=True)
        for file_name in (WORKSPACE_FILE, LOCK_FILE):
            source = self.workspace.root / file_name
            if source.exists():
                shutil.copy2(source, backup_dir / file_name)
        logger.info("Backed up %s to %s", project.name, backup_dir)

        packages = self.lockfile.get_installed(project.id)
        project.format = "package-reference"
        self.workspace.save()
        self.lockfile.replace_packages(project.id, packages)
        self.lockfile.save()
        logger.info(
            "Migrated %d package(s) in %s to package-reference", len(packages), project.name
        )
        return str(backup_dir)

    # =========================================================================
    # Resolution and execution
    # =========================================================================

    async def get_install_actions(
        self,
        project_id: str,
        package: PackageIdentity,
        include_prerelease: bool,
        dependency_behavior: DependencyBehavior,
        source_names: Sequence[str],
        token: CancellationToken,
    ) -> list[ProjectAction]:
        token.raise_if_cancellation_requested()
        if package.version is None:
            raise WorkspaceError(f"Install of {package.id} requires a version", project_id)

        project = self._get_project(project_id)
        logger.debug(
            "Resolving install of %s into %s (prerelease=%s, dependencies=%s, sources=%s)",
            package,
            project.id,
            include_prerelease,
            dependency_behavior,
            ", ".join(source_names) or "-",
        )

        installed = self.lockfile.get_installed_version(project.id, package.id)
        steps: list[tuple[str, str, ActionType]] = []
        if installed is not None:
            if parse_version(installed) == package.version:
                logger.info("%s is already installed in %s", package, project.name)
                return []
            steps.append((package.id, installed, ActionType.UNINSTALL))
        steps.append((package.id, package.normalized_version, ActionType.INSTALL))

        if project.format == "package-reference":
            # the whole resolution is rolled up into one action
            return [
                ProjectAction(
                    project_id=project.id,
                    package_id=package.id,
                    package_version=package.normalized_version,
                    action_type=ActionType.INSTALL,
                    implicit_actions=tuple(
                        ImplicitAction(package_id, version, action_type)
                        for package_id, version, action_type in steps
                    ),
                )
            ]

        return [
            ProjectAction(project.id, package_id, version, action_type)
            for package_id, version, action_type in steps
        ]

    async def get_uninstall_actions(
        self,
        project_id: str,
        package_id: str,
        remove_dependencies: bool,
        force_remove: bool,
        token: CancellationToken,
    ) -> list[ProjectAction]:
        token.raise_if_cancellation_requested()
        project = self._get_project(project_id)
        logger.debug(
            "Resolving uninstall of %s from %s (remove_dependencies=%s, force=%s)",
            package_id,
            project.id,
            remove_dependencies,
            force_remove,
        )

        installed = self.lockfile.get_installed_version(project.id, package_id)
        if installed is None:
            logger.info("%s is not installed in %s", package_id, project.name)
            return []
        return [ProjectAction(project.id, package_id, installed, ActionType.UNINSTALL)]

    async def get_update_actions(
        self,
        project_ids: Sequence[str],
        packages: Sequence[PackageIdentity],
        include_prerelease: bool,
        dependency_behavior: DependencyBehavior,
        source_names: Sequence[str],
        token: CancellationToken,
    ) -> list[ProjectAction]:
        token.raise_if_cancellation_requested()
        logger.debug(
            "Resolving update of %d package(s) in %d project(s) (prerelease=%s, dependencies=%s)",
            len(packages),
            len(project_ids),
            include_prerelease,
            dependency_behavior,
        )

        actions: list[ProjectAction] = []
        for project_id in project_ids:
            project = self._get_project(project_id)
            for package in packages:
                if package.version is None:
                    raise WorkspaceError(f"Update of {package.id} requires a version", project.id)

                installed = self.lockfile.get_installed_version(project.id, package.id)
                if installed is None or parse_version(installed) == package.version:
                    continue
                actions.append(
                    ProjectAction(project.id, package.id, installed, ActionType.UNINSTALL)
                )
                actions.append(
                    ProjectAction(
                        project.id, package.id, package.normalized_version, ActionType.INSTALL
                    )
                )
        return actions

    async def execute_actions(
        self,
        actions: Sequence[ProjectAction],
        token: CancellationToken,
    ) -> None:
        for action in expand_actions(actions):
            project = self._get_project(action.project_id)
            package = action.package_identity

            if action.action_type is ActionType.INSTALL:
                self.lockfile.add_package(project.id, package)
                logger.info("Installed %s in %s", package, project.name)
            elif action.action_type is ActionType.UNINSTALL:
                installed = self.lockfile.get_installed_version(project.id, package.id)
                if installed is not None and parse_version(installed) == package.version:
                    self.lockfile.remove_package(project.id, package.id)
                    logger.info("Removed %s from %s", package, project.name)
            else:
                raise ValueError(f"Unknown action type: {action.action_type}")

        self.lockfile.save()
