"""Project actions and their expansion.

A resolver answers an install, uninstall or update request with an ordered
list of ``ProjectAction``. Most actions are atomic: one package added to or
removed from one project. Some resolvers roll a whole sub-resolution into a
single composite action whose ``implicit_actions`` carry the real changes.
Composite actions must be expanded with ``expand_actions`` before anything
downstream (preview, license checks, execution) looks at them.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from pkgflow.core.identity import PackageIdentity


class ActionType(str, Enum):
    """The kind of change an action applies to a project."""

    INSTALL = "install"
    UNINSTALL = "uninstall"


def _new_action_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class ImplicitAction:
    """An atomic change carried inside a composite action."""

    package_id: str
    package_version: str
    action_type: ActionType
    action_id: str = field(default_factory=_new_action_id)


@dataclass(frozen=True)
class ProjectAction:
    """A change to the packages of one project.

    An action with a non-empty ``implicit_actions`` tuple is composite.
    """

    project_id: str
    package_id: str
    package_version: str
    action_type: ActionType
    implicit_actions: tuple[ImplicitAction, ...] = ()
    action_id: str = field(default_factory=_new_action_id)

    @property
    def is_composite(self) -> bool:
        return bool(self.implicit_actions)

    @property
    def package_identity(self) -> PackageIdentity:
        """Identity of the package this action touches.

        Raises:
            ValueError: If the action carries an invalid version string
        """
        return PackageIdentity.create(self.package_id, self.package_version)


def expand_actions(actions: Iterable[ProjectAction] | None) -> list[ProjectAction]:
    """Flatten composite actions into atomic ones.

    Each composite action is replaced by one atomic action per implicit
    entry, keeping the parent's project and taking the package and action
    type from the implicit entry. Atomic actions pass through unchanged.
    Relative order is preserved.

    Args:
        actions: Actions as returned by a resolver (None is treated as empty)

    Returns:
        List of atomic actions
    """
    expanded: list[ProjectAction] = []
    if not actions:
        return expanded

    for action in actions:
        if action.is_composite:
            for implicit in action.implicit_actions:
                expanded.append(
                    ProjectAction(
                        project_id=action.project_id,
                        package_id=implicit.package_id,
                        package_version=implicit.package_version,
                        action_type=implicit.action_type,
                        action_id=implicit.action_id,
                    )
                )
        else:
            expanded.append(action)

    return expanded
