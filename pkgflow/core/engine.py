"""Entry points for package operations.

``ActionEngine`` turns a user request into project actions and hands them to
the single ``OperationCoordinator``. Install/uninstall and bulk update only
differ in how actions are resolved; gating, execution and telemetry are
shared. Project migrations run through ``ProjectMigrator`` under the same
lock.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from pkgflow.config.schemas import WorkspaceConfig
from pkgflow.core.actions import ActionType, ProjectAction
from pkgflow.core.cancellation import CancellationToken
from pkgflow.core.coordinator import OperationCoordinator, OperationLock, OperationResult
from pkgflow.core.gate import OperationGate
from pkgflow.core.identity import PackageIdentity
from pkgflow.core.metadata import MetadataResolver
from pkgflow.core.migration import MigrationResult, ProjectMigrator
from pkgflow.core.operation import OperationType
from pkgflow.core.services import ProjectManagerService, UserInterfaceService
from pkgflow.core.telemetry import TelemetrySink
from pkgflow.sources.factory import create_local_sources, create_remote_sources
from pkgflow.utils.version import SemVer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserAction:
    """A package the user asked to install or uninstall."""

    action_type: ActionType
    package_id: str
    version: SemVer | None = None

    @classmethod
    def install(cls, package: PackageIdentity) -> UserAction:
        if package.version is None:
            raise ValueError(f"Install of {package.id} requires a version")
        return cls(ActionType.INSTALL, package.id, package.version)

    @classmethod
    def uninstall(cls, package_id: str) -> UserAction:
        return cls(ActionType.UNINSTALL, package_id)

    @property
    def package_identity(self) -> PackageIdentity:
        return PackageIdentity(self.package_id, self.version)


class ActionEngine:
    """Facade over action resolution and the operation coordinator."""

    def __init__(
        self,
        project_manager: ProjectManagerService,
        ui: UserInterfaceService,
        telemetry_sink: TelemetrySink,
        metadata_resolver: MetadataResolver,
        lock: OperationLock,
        config: WorkspaceConfig,
    ):
        self._project_manager = project_manager
        self._config = config
        gate = OperationGate(project_manager, ui, metadata_resolver, config)
        self._coordinator = OperationCoordinator(
            project_manager, ui, telemetry_sink, gate, lock
        )
        self._migrator = ProjectMigrator(project_manager, ui, telemetry_sink, lock)

    @classmethod
    def from_config(
        cls,
        config: WorkspaceConfig,
        project_manager: ProjectManagerService,
        ui: UserInterfaceService,
        telemetry_sink: TelemetrySink,
        lock: OperationLock | None = None,
        base_dir: Path | None = None,
    ) -> ActionEngine:
        """Build an engine whose metadata sources come from the workspace config."""
        resolver = MetadataResolver(
            create_local_sources(config, base_dir),
            create_remote_sources(config, base_dir),
            max_concurrency=config.max_concurrency,
        )
        return cls(
            project_manager,
            ui,
            telemetry_sink,
            resolver,
            lock or OperationLock.process_lock(),
            config,
        )

    @property
    def source_names(self) -> list[str]:
        return [source.name for source in self._config.enabled_sources]

    async def perform_install_or_uninstall(
        self,
        user_action: UserAction,
        project_ids: Sequence[str],
        token: CancellationToken,
    ) -> OperationResult:
        """Install or uninstall one package in each target project."""
        if user_action.action_type is ActionType.INSTALL:
            operation_type = OperationType.INSTALL
            if user_action.version is None:
                raise ValueError(f"Install of {user_action.package_id} requires a version")
            # prerelease dependencies only when the target itself is one
            include_prerelease = user_action.version.is_prerelease
        elif user_action.action_type is ActionType.UNINSTALL:
            operation_type = OperationType.UNINSTALL
            include_prerelease = True
        else:
            raise ValueError(f"Unknown action type: {user_action.action_type}")

        async def resolve(token: CancellationToken) -> list[ProjectAction]:
            actions: list[ProjectAction] = []
            for project_id in project_ids:
                if user_action.action_type is ActionType.INSTALL:
                    actions.extend(
                        await self._project_manager.get_install_actions(
                            project_id,
                            user_action.package_identity,
                            include_prerelease,
                            self._config.dependency_behavior,
                            self.source_names,
                            token,
                        )
                    )
                else:
                    actions.extend(
                        await self._project_manager.get_uninstall_actions(
                            project_id,
                            user_action.package_id,
                            self._config.remove_dependencies,
                            self._config.force_remove,
                            token,
                        )
                    )
            logger.debug("Resolved %d action(s) for %s", len(actions), user_action.package_id)
            return actions

        return await self._coordinator.run(
            operation_type, resolve, project_ids, token, user_action=user_action
        )

    async def perform_update(
        self,
        packages: Sequence[PackageIdentity],
        project_ids: Sequence[str],
        token: CancellationToken,
    ) -> OperationResult:
        """Update packages across every target project in one resolution."""
        include_prerelease = any(
            package.version is not None and package.version.is_prerelease
            for package in packages
        )

        async def resolve(token: CancellationToken) -> list[ProjectAction]:
            return await self._project_manager.get_update_actions(
                project_ids,
                packages,
                include_prerelease,
                self._config.dependency_behavior,
                self.source_names,
                token,
            )

        return await self._coordinator.run(OperationType.UPDATE, resolve, project_ids, token)

    async def perform_migration(
        self,
        project_id: str,
        token: CancellationToken,
    ) -> MigrationResult:
        """Migrate a packages-config project to package-reference."""
        return await self._migrator.migrate(project_id, token)
