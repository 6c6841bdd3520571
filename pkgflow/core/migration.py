"""Migration of packages-config projects to package-reference.

A migration is a package operation like any other: it runs under the
operation lock, brackets its work with the begin/end markers and emits one
telemetry record, with the package count, whether it completes, is declined
or fails.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pkgflow.core.cancellation import CancellationToken, OperationCancelledError
from pkgflow.core.coordinator import OperationLock
from pkgflow.core.identity import PackageIdentity
from pkgflow.core.operation import OperationContext, OperationStatus, OperationType
from pkgflow.core.services import ProjectManagerService, ProjectMetadataKeys, UserInterfaceService
from pkgflow.core.telemetry import ActionsTelemetryEvent, TelemetrySink, to_telemetry_package

logger = logging.getLogger(__name__)


@dataclass
class MigrationResult:
    """Outcome of one project migration."""

    operation_id: str
    project_id: str
    status: OperationStatus
    packages: list[PackageIdentity] = field(default_factory=list)
    backup_path: str | None = None
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is OperationStatus.SUCCEEDED


class ProjectMigrator:
    """Moves one project from packages-config to package-reference."""

    def __init__(
        self,
        project_manager: ProjectManagerService,
        ui: UserInterfaceService,
        telemetry_sink: TelemetrySink,
        lock: OperationLock,
    ):
        self._project_manager = project_manager
        self._ui = ui
        self._telemetry_sink = telemetry_sink
        self._lock = lock

    async def migrate(self, project_id: str, token: CancellationToken) -> MigrationResult:
        """Migrate ``project_id`` after the user reviewed the packages it holds.

        Returns:
            MigrationResult; failures are reported through the UI and the
            status, not raised
        """
        context = OperationContext(operation_type=OperationType.MIGRATE, project_ids=[project_id])
        result = MigrationResult(context.operation_id, project_id, context.status)

        acquired = False
        try:
            async with self._lock.hold(token):
                acquired = True
                try:
                    await self._migrate_locked(context, result, token)
                finally:
                    self._finalize(context, result, began=True)
        except OperationCancelledError as e:
            if acquired:
                raise
            logger.info("Migration of %s cancelled before it started", project_id)
            context.status = OperationStatus.CANCELLED
            context.error = e
            self._finalize(context, result, began=False)

        return result

    async def _migrate_locked(
        self,
        context: OperationContext,
        result: MigrationResult,
        token: CancellationToken,
    ) -> None:
        began = False
        try:
            self._ui.begin_operation()
            await self._project_manager.begin_operation()
            began = True

            result.packages = await self._project_manager.get_migration_items(
                result.project_id, token
            )
            context.package_count = len(result.packages)

            found, name = await self._project_manager.try_get_metadata(
                result.project_id, ProjectMetadataKeys.NAME, token
            )
            project_name = name if found and name else result.project_id

            if not await self._ui.prompt_for_migration(project_name, result.packages):
                logger.info("Migration of %s declined", project_name)
                return

            if token.is_cancellation_requested:
                context.status = OperationStatus.CANCELLED
                return

            result.backup_path = await self._project_manager.migrate_to_package_reference(
                result.project_id, token
            )
            context.executed = True
            logger.info("Migrated %s, backup at %s", project_name, result.backup_path)
        except OperationCancelledError as e:
            context.status = OperationStatus.CANCELLED
            context.error = e
        except asyncio.CancelledError:
            context.status = OperationStatus.CANCELLED
            raise
        except Exception as e:
            context.status = OperationStatus.FAILED
            context.error = e
            logger.debug("Migration failed", exc_info=True)
            self._ui.show_error(e)
        finally:
            if began:
                await self._project_manager.end_operation()

    def _finalize(
        self,
        context: OperationContext,
        result: MigrationResult,
        began: bool,
    ) -> None:
        if began:
            self._ui.end_operation()

        if context.status is OperationStatus.SUCCEEDED and not context.executed:
            context.status = OperationStatus.CANCELLED
        result.status = context.status
        result.error = context.error

        event = ActionsTelemetryEvent(
            operation_id=context.operation_id,
            project_ids=list(context.project_ids),
            operation_type=context.operation_type,
            start_time=context.start_time,
            end_time=datetime.now(timezone.utc),
            duration_seconds=context.elapsed_seconds(),
            status=context.status.value,
            package_count=context.package_count,
        )
        if result.backup_path is not None:
            event.properties["backup_path"] = result.backup_path
        if result.packages:
            event.complex_data["migrated_packages"] = [
                to_telemetry_package(p.id, p.normalized_version) for p in result.packages
            ]

        try:
            self._telemetry_sink.emit(event)
        except Exception as e:
            logger.warning("Failed to emit telemetry for %s: %s", context.operation_id, e)
