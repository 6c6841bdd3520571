"""Per-project change sets computed from atomic actions."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from pkgflow.core.actions import ActionType, ProjectAction
from pkgflow.core.cancellation import CancellationToken, OperationCancelledError
from pkgflow.core.identity import PackageIdentity
from pkgflow.core.services import ProjectManagerService, ProjectMetadataKeys

logger = logging.getLogger(__name__)

UNKNOWN_PROJECT_NAME = "Unknown Project"


@dataclass(frozen=True)
class UpdatePreviewResult:
    """A package moving from one version to another."""

    old: PackageIdentity
    new: PackageIdentity

    def __str__(self) -> str:
        return f"{self.old} -> {self.new.normalized_version}"


@dataclass
class PreviewResult:
    """Packages added, removed and updated in one project.

    A package id appears in at most one of the three lists.
    """

    project_name: str
    added: list[PackageIdentity] = field(default_factory=list)
    deleted: list[PackageIdentity] = field(default_factory=list)
    updated: list[UpdatePreviewResult] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.deleted or self.updated)


class PreviewDiffEngine:
    """Classifies atomic actions into per-project Added/Removed/Updated sets.

    Actions must already be expanded (see ``expand_actions``).
    """

    def __init__(self, project_manager: ProjectManagerService):
        self._project_manager = project_manager

    async def diff(
        self,
        actions: Sequence[ProjectAction],
        token: CancellationToken,
    ) -> list[PreviewResult]:
        """Compute one PreviewResult per project, in first-seen project order.

        Within a project, an id that is both installed and uninstalled is an
        update (even when both versions are equal). Repeated actions of the
        same type for the same id collapse, last one wins.
        """
        results: list[PreviewResult] = []

        for project_id, project_actions in group_by_project(actions).items():
            token.raise_if_cancellation_requested()

            installed: dict[str, PackageIdentity] = {}
            uninstalled: dict[str, PackageIdentity] = {}
            package_ids: dict[str, None] = {}

            for action in project_actions:
                if action.is_composite:
                    raise ValueError(
                        f"Composite action {action.action_id} must be expanded before diffing"
                    )

                identity = action.package_identity
                key = identity.id.lower()
                package_ids.setdefault(key, None)

                if action.action_type is ActionType.INSTALL:
                    installed[key] = identity
                elif action.action_type is ActionType.UNINSTALL:
                    uninstalled[key] = identity
                else:
                    raise ValueError(f"Unknown action type: {action.action_type}")

            result = PreviewResult(project_name=await self._get_project_name(project_id, token))

            for key in package_ids:
                is_installed = key in installed
                is_uninstalled = key in uninstalled

                if is_installed and is_uninstalled:
                    result.updated.append(UpdatePreviewResult(uninstalled[key], installed[key]))
                    del installed[key]
                elif is_installed:
                    result.added.append(installed[key])
                elif is_uninstalled:
                    result.deleted.append(uninstalled[key])

            logger.debug(
                "Preview for %s: %d added, %d removed, %d updated",
                result.project_name,
                len(result.added),
                len(result.deleted),
                len(result.updated),
            )
            results.append(result)

        return results

    async def _get_project_name(self, project_id: str, token: CancellationToken) -> str:
        """Unique name of a project, or a placeholder if it cannot be looked up."""
        try:
            found, value = await self._project_manager.try_get_metadata(
                project_id, ProjectMetadataKeys.UNIQUE_NAME, token
            )
        except OperationCancelledError:
            raise
        except Exception:
            logger.debug("Could not look up the name of project %s", project_id, exc_info=True)
            return UNKNOWN_PROJECT_NAME

        if found and value:
            return str(value)
        return UNKNOWN_PROJECT_NAME


def group_by_project(actions: Sequence[ProjectAction]) -> dict[str, list[ProjectAction]]:
    """Group actions by exact project id, keeping first-seen order."""
    groups: dict[str, list[ProjectAction]] = {}
    for action in actions:
        groups.setdefault(action.project_id, []).append(action)
    return groups
