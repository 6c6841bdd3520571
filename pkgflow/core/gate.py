"""Pre-execution checks that may veto a package operation.

Checks run in a fixed order and stop at the first veto:

1. package format (before actions are resolved)
2. preview acceptance
3. license acceptance
4. deprecated target framework warning
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from pkgflow.config.schemas import WorkspaceConfig
from pkgflow.core.cancellation import CancellationToken
from pkgflow.core.identity import PackageIdentity
from pkgflow.core.metadata import MetadataResolver
from pkgflow.core.preview import PreviewResult
from pkgflow.core.services import (
    PackageLicenseInfo,
    PackageManagementFormat,
    ProjectManagerService,
    ProjectMetadataKeys,
    UserInterfaceService,
)

logger = logging.getLogger(__name__)


class GateStage(str, Enum):
    PACKAGE_FORMAT = "package-format"
    PREVIEW = "preview"
    LICENSE = "license"
    DEPRECATED_FRAMEWORK = "deprecated-framework"


@dataclass(frozen=True)
class GateResult:
    """Outcome of a gate run; ``vetoed_by`` is None when every check passed."""

    vetoed_by: GateStage | None = None

    @property
    def accepted(self) -> bool:
        return self.vetoed_by is None


ACCEPTED = GateResult()


def packages_needing_license_check(results: Sequence[PreviewResult]) -> list[PackageIdentity]:
    """Distinct packages present after the operation: added, and new side of updates."""
    packages: dict[PackageIdentity, None] = {}
    for result in results:
        for package in result.added:
            packages.setdefault(package, None)
        for update in result.updated:
            packages.setdefault(update.new, None)
    return list(packages)


class OperationGate:
    """Runs the pre-execution checks of one operation."""

    def __init__(
        self,
        project_manager: ProjectManagerService,
        ui: UserInterfaceService,
        metadata_resolver: MetadataResolver,
        config: WorkspaceConfig,
    ):
        self._project_manager = project_manager
        self._ui = ui
        self._metadata_resolver = metadata_resolver
        self._config = config

    async def check_package_format(
        self,
        project_ids: Sequence[str],
        token: CancellationToken,
    ) -> GateResult:
        """Settle the package format of new projects with no packages yet."""
        upgradeable = await self._project_manager.get_upgradeable_projects(project_ids, token)
        if not upgradeable:
            return ACCEPTED

        settings = self._config.package_management_format

        if not settings.prompt_enabled:
            # The standing preference answers the question without a prompt
            if settings.default_format == "package-reference":
                logger.info(
                    "Switching %d project(s) to package-reference format", len(upgradeable)
                )
                await self._project_manager.upgrade_projects_to_package_reference(
                    upgradeable, token
                )
            return ACCEPTED

        names = await asyncio.gather(
            *(self._project_name(project_id, token) for project_id in upgradeable)
        )
        package_format = PackageManagementFormat(
            selected_format=settings.default_format,
            prompt_enabled=settings.prompt_enabled,
            project_names=sorted(names, key=str.lower),
        )

        accepted = await self._ui.prompt_for_package_management_format(package_format)
        if not accepted:
            return GateResult(GateStage.PACKAGE_FORMAT)

        if package_format.selected_format == "package-reference":
            await self._project_manager.upgrade_projects_to_package_reference(upgradeable, token)
        return ACCEPTED

    async def review(
        self,
        project_ids: Sequence[str],
        results: Sequence[PreviewResult],
        token: CancellationToken,
    ) -> GateResult:
        """Run the preview, license and deprecated framework checks in order."""
        if self._config.display_preview_window:
            if not await self._ui.prompt_for_preview_acceptance(results):
                return GateResult(GateStage.PREVIEW)

        if not await self.check_license_acceptance(results, token):
            return GateResult(GateStage.LICENSE)

        if self._config.display_deprecated_framework_window:
            if not await self.check_deprecated_framework(project_ids, token):
                return GateResult(GateStage.DEPRECATED_FRAMEWORK)

        return ACCEPTED

    async def check_license_acceptance(
        self,
        results: Sequence[PreviewResult],
        token: CancellationToken,
    ) -> bool:
        """Prompt for the licenses of packages that require acceptance.

        Packages that are only removed are never checked.

        Returns:
            False if the user declined
        """
        packages = packages_needing_license_check(results)
        if not packages:
            return True

        metadata = await self._metadata_resolver.resolve(packages, token)

        items: list[PackageLicenseInfo] = []
        for package in packages:
            entry = metadata[package]
            if entry.requires_license_acceptance:
                items.append(
                    PackageLicenseInfo(
                        package_id=entry.identity.id,
                        license_links=entry.license_links,
                        authors=list(entry.authors),
                    )
                )

        if not items:
            return True

        logger.debug("%d package(s) require license acceptance", len(items))
        return await self._ui.prompt_for_license_acceptance(items)

    async def check_deprecated_framework(
        self,
        project_ids: Sequence[str],
        token: CancellationToken,
    ) -> bool:
        """Warn about projects targeting a deprecated framework.

        Returns:
            False if the user chose not to continue
        """
        projects = await self._project_manager.get_projects_with_deprecated_framework(
            project_ids, token
        )
        if not projects:
            return True

        names = [await self._project_name(project_id, token) for project_id in projects]
        return await self._ui.warn_about_deprecated_framework(names)

    async def _project_name(self, project_id: str, token: CancellationToken) -> str:
        found, value = await self._project_manager.try_get_metadata(
            project_id, ProjectMetadataKeys.NAME, token
        )
        return str(value) if found and value else project_id
