"""Pydantic schemas for pkgflow configuration files.

This module defines the data models for:
- pkgflow.yaml (workspace configuration)
- pkgflow.lock (installed package state)
- package.json (package metadata in a package folder or feed)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

# =============================================================================
# Common Types
# =============================================================================

PackageFormat = Literal["packages-config", "package-reference"]
DependencyBehavior = Literal["lowest", "highest-patch", "highest-minor", "highest", "ignore"]

DEFAULT_PACKAGES_FOLDER = "~/.pkgflow/packages"


# =============================================================================
# Package Metadata (package.json)
# =============================================================================


class PackageManifest(BaseModel):
    """Metadata document stored next to each package version."""

    id: str
    version: str
    description: str = ""
    authors: list[str] = Field(default_factory=list)
    require_license_acceptance: bool = Field(default=False, alias="requireLicenseAcceptance")
    license_url: str | None = Field(default=None, alias="licenseUrl")
    license: str | None = None
    project_url: str | None = Field(default=None, alias="projectUrl")

    model_config = {"populate_by_name": True}

    @field_validator("authors", mode="before")
    @classmethod
    def split_authors(cls, value: object) -> object:
        """Accept a comma separated author string."""
        if isinstance(value, str):
            return [a.strip() for a in value.split(",") if a.strip()]
        return value


# =============================================================================
# Workspace Configuration (pkgflow.yaml)
# =============================================================================


class SourceConfig(BaseModel):
    """A remote package source."""

    name: str
    url: str
    enabled: bool = True
    headers: dict[str, str] = Field(default_factory=dict)


class PackageManagementFormatConfig(BaseModel):
    """Standing preference for the format of newly-touched projects."""

    prompt_enabled: bool = True
    default_format: PackageFormat = "packages-config"


class ProjectConfig(BaseModel):
    """A project in the workspace."""

    id: str
    name: str
    unique_name: str | None = None
    target_framework: str = ""
    format: PackageFormat = "packages-config"


class WorkspaceConfig(BaseModel):
    """Workspace configuration (pkgflow.yaml) schema."""

    sources: list[SourceConfig] = Field(default_factory=list)
    packages_folder: str = DEFAULT_PACKAGES_FOLDER
    fallback_folders: list[str] = Field(default_factory=list)
    display_preview_window: bool = True
    display_deprecated_framework_window: bool = True
    package_management_format: PackageManagementFormatConfig = Field(
        default_factory=PackageManagementFormatConfig
    )
    dependency_behavior: DependencyBehavior = "lowest"
    remove_dependencies: bool = False
    force_remove: bool = False
    max_concurrency: int = Field(default=16, ge=1)
    request_timeout: int = Field(default=30, ge=1)
    deprecated_frameworks: list[str] = Field(default_factory=lambda: ["dotnet"])
    projects: list[ProjectConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_ids(self) -> "WorkspaceConfig":
        """Project ids and source names must be unique."""
        project_ids = [p.id.lower() for p in self.projects]
        if len(project_ids) != len(set(project_ids)):
            raise ValueError("Duplicate project id in projects")
        source_names = [s.name for s in self.sources]
        if len(source_names) != len(set(source_names)):
            raise ValueError("Duplicate source name in sources")
        return self

    @property
    def enabled_sources(self) -> list[SourceConfig]:
        return [s for s in self.sources if s.enabled]

    def get_project(self, project_id: str) -> ProjectConfig | None:
        """Find a project by id (case-insensitive) or by name."""
        for project in self.projects:
            if project.id.lower() == project_id.lower() or project.name == project_id:
                return project
        return None


# =============================================================================
# Lock File (pkgflow.lock)
# =============================================================================


class LockedProject(BaseModel):
    """Installed packages of one project."""

    packages: dict[str, str] = Field(default_factory=dict)  # package id -> version


class LockFile(BaseModel):
    """Lock file (pkgflow.lock) schema."""

    version: str = "1.0"
    projects: dict[str, LockedProject] = Field(default_factory=dict)
