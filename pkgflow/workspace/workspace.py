"""Workspace model representing a pkgflow-managed set of projects."""

from collections.abc import Sequence
from pathlib import Path

from pkgflow.config.parser import (
    WORKSPACE_FILE,
    find_workspace_root,
    load_workspace_config,
    save_workspace_config,
)
from pkgflow.config.schemas import ProjectConfig, WorkspaceConfig


class Workspace:
    """Represents a pkgflow workspace.

    A workspace is defined by its pkgflow.yaml configuration file.
    """

    def __init__(self, root: Path, config: WorkspaceConfig):
        """Initialize a Workspace.

        Args:
            root: Path to the workspace root directory
            config: Parsed workspace configuration
        """
        self._root = root.resolve()
        self._config = config

    @classmethod
    def load(cls, path: Path | None = None) -> "Workspace":
        """Load a workspace from disk.

        Args:
            path: Path to the workspace root, or None to search from cwd

        Returns:
            Loaded Workspace instance

        Raises:
            FileNotFoundError: If no workspace is found
        """
        if path is None:
            path = find_workspace_root()
            if path is None:
                raise FileNotFoundError(
                    f"No {WORKSPACE_FILE} found in current directory or any parent directory"
                )
        else:
            path = path.resolve()
            if not (path / WORKSPACE_FILE).exists():
                raise FileNotFoundError(f"No {WORKSPACE_FILE} found in {path}")

        config = load_workspace_config(path)
        return cls(path, config)

    @classmethod
    def init(cls, path: Path, project_name: str | None = None) -> "Workspace":
        """Initialize a new workspace with a single project.

        Args:
            path: Path to the workspace root directory
            project_name: Optional project name (defaults to directory name)

        Returns:
            New Workspace instance

        Raises:
            FileExistsError: If pkgflow.yaml already exists
        """
        path = path.resolve()
        config_path = path / WORKSPACE_FILE

        if config_path.exists():
            raise FileExistsError(f"Workspace already initialized: {config_path}")

        if project_name is None:
            project_name = path.name

        config = WorkspaceConfig(
            projects=[ProjectConfig(id=project_name.lower(), name=project_name)],
        )

        workspace = cls(path, config)
        workspace.save()
        return workspace

    def save(self) -> None:
        """Save the workspace configuration to disk."""
        save_workspace_config(self._root, self._config)

    @property
    def root(self) -> Path:
        """Get the workspace root directory."""
        return self._root

    @property
    def config(self) -> WorkspaceConfig:
        """Get the underlying configuration."""
        return self._config

    @property
    def project_ids(self) -> list[str]:
        return [p.id for p in self._config.projects]

    def resolve_project_ids(self, names: Sequence[str] | None) -> list[str]:
        """Map project ids or names to project ids; all projects when empty.

        Raises:
            KeyError: If a name matches no project
        """
        if not names:
            return self.project_ids

        project_ids = []
        for name in names:
            project = self._config.get_project(name)
            if project is None:
                raise KeyError(name)
            project_ids.append(project.id)
        return project_ids

    def __repr__(self) -> str:
        return f"Workspace(root={self._root!r})"
