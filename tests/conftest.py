"""Shared fixtures for pkgflow tests."""

import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
import yaml
from fakes import FakeProjectManager, FakeUserInterface, write_package

from pkgflow.config.schemas import WorkspaceConfig
from pkgflow.core.telemetry import InMemoryTelemetrySink


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory."""
    path = Path(tempfile.mkdtemp(prefix="pkgflow_test_"))
    yield path
    if path.exists():
        shutil.rmtree(path)


@pytest.fixture
def project_manager() -> FakeProjectManager:
    """Project manager with one project, ``proj-a``."""
    manager = FakeProjectManager()
    manager.add_project("proj-a", name="ProjectA", unique_name="src/ProjectA")
    return manager


@pytest.fixture
def ui() -> FakeUserInterface:
    """User interface that accepts every prompt."""
    return FakeUserInterface()


@pytest.fixture
def telemetry_sink() -> InMemoryTelemetrySink:
    """Telemetry sink keeping events in memory."""
    return InMemoryTelemetrySink()


@pytest.fixture
def config() -> WorkspaceConfig:
    """Default workspace configuration."""
    return WorkspaceConfig()


@pytest.fixture
def workspace_dir(temp_dir: Path) -> Path:
    """Workspace with two projects and a local package folder.

    The package folder holds Alpha 1.0.0 and 2.0.0, and Beta 1.0.0 which
    requires license acceptance.
    """
    packages = temp_dir / "packages"
    write_package(packages, "Alpha", "1.0.0", authors=["Alice"])
    write_package(packages, "Alpha", "2.0.0", authors=["Alice"])
    write_package(
        packages,
        "Beta",
        "1.0.0",
        authors="Bob, Carol",
        requireLicenseAcceptance=True,
        license="MIT",
    )

    workspace = temp_dir / "workspace"
    workspace.mkdir()
    config = {
        "packages_folder": str(packages),
        "package_management_format": {"prompt_enabled": False},
        "projects": [
            {"id": "app", "name": "App", "target_framework": "net8.0"},
            {"id": "lib", "name": "Lib", "target_framework": "netstandard2.0"},
        ],
    }
    (workspace / "pkgflow.yaml").write_text(yaml.safe_dump(config))
    return workspace
