"""Main CLI application for pkgflow."""

import asyncio
import logging
from collections.abc import Coroutine
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from pkgflow import __version__
from pkgflow.cli.console import ConsoleUserInterface
from pkgflow.config.parser import WORKSPACE_FILE, ConfigError
from pkgflow.config.schemas import WorkspaceConfig
from pkgflow.core.cancellation import CancellationToken
from pkgflow.core.coordinator import OperationResult
from pkgflow.core.engine import ActionEngine, UserAction
from pkgflow.core.identity import PackageIdentity
from pkgflow.core.operation import OperationStatus
from pkgflow.core.telemetry import LoggingTelemetrySink
from pkgflow.sources.factory import UnsupportedProtocolError
from pkgflow.workspace.project_manager import WorkspaceProjectManager
from pkgflow.workspace.workspace import Workspace

# Create the main Typer app
app = typer.Typer(
    name="pkgflow",
    help="Preview, gate and apply package operations across workspace projects",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

# Set up logger for the pkgflow package
logger = logging.getLogger("pkgflow")

EXIT_FAILED = 1
EXIT_CANCELLED = 2

ResultT = TypeVar("ResultT")


def setup_logging(verbosity: int) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbosity: 0=WARNING, 1=INFO, 2=DEBUG, 3+=DEBUG with source paths
    """
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logger.setLevel(level)

    # Only add handler if not already configured
    if not logger.handlers:
        handler = RichHandler(
            console=error_console,
            show_time=verbosity >= 2,
            show_path=verbosity >= 3,
            rich_tracebacks=True,
        )
        handler.setLevel(level)
        logger.addHandler(handler)
    else:
        for h in logger.handlers:
            h.setLevel(level)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def get_workspace(path: Path | None = None) -> Workspace:
    """Get the current workspace, raising an error if not found."""
    try:
        return Workspace.load(path)
    except FileNotFoundError as e:
        print_error(str(e))
        print_error("Run 'pkgflow init' to create a new workspace")
        raise typer.Exit(EXIT_FAILED) from e
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(EXIT_FAILED) from e


def get_project_ids(workspace: Workspace, projects: list[str] | None) -> list[str]:
    """Resolve --project options, defaulting to every project."""
    try:
        project_ids = workspace.resolve_project_ids(projects)
    except KeyError as e:
        print_error(f"Unknown project: {e.args[0]}")
        raise typer.Exit(EXIT_FAILED) from e

    if not project_ids:
        print_error(f"No projects defined in {WORKSPACE_FILE}")
        raise typer.Exit(EXIT_FAILED)
    return project_ids


def parse_package(specifier: str, require_version: bool = True) -> PackageIdentity:
    """Parse an ``id@version`` argument."""
    try:
        package = PackageIdentity.parse(specifier)
    except ValueError as e:
        print_error(f"Invalid package specifier '{specifier}': {e}")
        raise typer.Exit(EXIT_FAILED) from e

    if not package.id:
        print_error(f"Invalid package specifier '{specifier}': missing package id")
        raise typer.Exit(EXIT_FAILED)
    if require_version and package.version is None:
        print_error(f"A version is required: {package.id}@<version>")
        raise typer.Exit(EXIT_FAILED)
    return package


def build_engine(workspace: Workspace, config: WorkspaceConfig, assume_yes: bool) -> ActionEngine:
    """Wire an ActionEngine to the workspace, the console and telemetry logging."""
    ui = ConsoleUserInterface(console=console, error_console=error_console, assume_yes=assume_yes)
    try:
        return ActionEngine.from_config(
            config,
            WorkspaceProjectManager(workspace),
            ui,
            LoggingTelemetrySink(),
            base_dir=workspace.root,
        )
    except UnsupportedProtocolError as e:
        print_error(str(e))
        raise typer.Exit(EXIT_FAILED) from e


def run_operation(operation: Coroutine[Any, Any, ResultT]) -> ResultT:
    """Run an engine coroutine to completion on a fresh event loop.

    Ctrl+C cancels the running task; the loop is closed by the time
    KeyboardInterrupt reaches us.
    """
    try:
        return asyncio.run(operation)
    except KeyboardInterrupt as e:
        print_warning("Operation cancelled")
        raise typer.Exit(EXIT_CANCELLED) from e


def report_result(result: OperationResult, verb: str) -> None:
    """Print the outcome and exit with the matching status code."""
    if result.status is OperationStatus.SUCCEEDED:
        changes = sum(
            len(r.added) + len(r.deleted) + len(r.updated) for r in result.results
        )
        if changes:
            print_success(f"{verb}: {changes} change(s) applied")
        else:
            console.print("Nothing to do")
        return

    if result.status is OperationStatus.CANCELLED:
        if result.vetoed_by is not None:
            print_warning(f"Operation cancelled at {result.vetoed_by.value} check")
        else:
            print_warning("Operation cancelled")
        raise typer.Exit(EXIT_CANCELLED)

    # the UI already showed the error
    raise typer.Exit(EXIT_FAILED)


ProjectOption = Annotated[
    list[str] | None,
    typer.Option(
        "--project",
        "-P",
        help="Target project id or name (repeatable, defaults to all projects)",
    ),
]
YesOption = Annotated[
    bool,
    typer.Option(
        "--yes",
        "-y",
        help="Answer yes to every prompt",
    ),
]
PathOption = Annotated[
    Path | None,
    typer.Option(
        "--path",
        "-p",
        help="Workspace directory",
    ),
]


@app.callback()
def callback(
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase verbosity (-v info, -vv debug, -vvv debug with paths)",
        ),
    ] = 0,
) -> None:
    """pkgflow - preview, gate and apply package operations."""
    setup_logging(verbose)


@app.command()
def version() -> None:
    """Show the pkgflow version."""
    console.print(f"pkgflow {__version__}")


@app.command()
def init(
    project_name: Annotated[
        str | None,
        typer.Option(
            "--name",
            "-n",
            help="Name of the first project (defaults to directory name)",
        ),
    ] = None,
    path: PathOption = None,
) -> None:
    """Initialize a new pkgflow workspace.

    Creates a pkgflow.yaml configuration file in the specified directory.
    """
    path = Path.cwd() if path is None else path.resolve()

    if not path.exists():
        print_error(f"Directory does not exist: {path}")
        raise typer.Exit(EXIT_FAILED)

    if (path / WORKSPACE_FILE).exists():
        print_error(f"Workspace already initialized in {path}")
        print_error(f"To reinitialize, delete {WORKSPACE_FILE} first")
        raise typer.Exit(EXIT_FAILED)

    try:
        Workspace.init(path, project_name)
    except Exception as e:
        print_error(f"Failed to initialize workspace: {e}")
        raise typer.Exit(EXIT_FAILED) from e

    print_success("Initialized pkgflow workspace")
    console.print(f"  Created: {path / WORKSPACE_FILE}")


@app.command()
def install(
    package: Annotated[
        str,
        typer.Argument(help="Package to install (e.g., 'Newtonsoft.Json@13.0.1')"),
    ],
    projects: ProjectOption = None,
    yes: YesOption = False,
    no_preview: Annotated[
        bool,
        typer.Option(
            "--no-preview",
            help="Skip the change preview",
        ),
    ] = False,
    path: PathOption = None,
) -> None:
    """Install a package into workspace projects."""
    workspace = get_workspace(path)
    project_ids = get_project_ids(workspace, projects)
    identity = parse_package(package)

    config = workspace.config
    if no_preview:
        config = config.model_copy(update={"display_preview_window": False})

    engine = build_engine(workspace, config, yes)
    token = CancellationToken()
    result = run_operation(
        engine.perform_install_or_uninstall(UserAction.install(identity), project_ids, token),
    )
    report_result(result, f"Installed {identity}")


@app.command()
def uninstall(
    package: Annotated[
        str,
        typer.Argument(help="Id of the package to uninstall"),
    ],
    projects: ProjectOption = None,
    remove_dependencies: Annotated[
        bool,
        typer.Option(
            "--remove-dependencies",
            help="Also remove dependencies no longer needed",
        ),
    ] = False,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            "-f",
            help="Remove even if other packages depend on it",
        ),
    ] = False,
    yes: YesOption = False,
    path: PathOption = None,
) -> None:
    """Uninstall a package from workspace projects."""
    workspace = get_workspace(path)
    project_ids = get_project_ids(workspace, projects)
    identity = parse_package(package, require_version=False)

    config = workspace.config.model_copy(
        update={
            "remove_dependencies": remove_dependencies or workspace.config.remove_dependencies,
            "force_remove": force or workspace.config.force_remove,
        }
    )

    engine = build_engine(workspace, config, yes)
    token = CancellationToken()
    result = run_operation(
        engine.perform_install_or_uninstall(UserAction.uninstall(identity.id), project_ids, token),
    )
    report_result(result, f"Uninstalled {identity.id}")


@app.command()
def update(
    packages: Annotated[
        list[str],
        typer.Argument(help="Packages to update, each as id@version"),
    ],
    projects: ProjectOption = None,
    yes: YesOption = False,
    path: PathOption = None,
) -> None:
    """Update packages across workspace projects."""
    workspace = get_workspace(path)
    project_ids = get_project_ids(workspace, projects)
    identities = [parse_package(p) for p in packages]

    engine = build_engine(workspace, workspace.config, yes)
    token = CancellationToken()
    result = run_operation(engine.perform_update(identities, project_ids, token))
    report_result(result, f"Updated {len(identities)} package(s)")


@app.command()
def migrate(
    project: Annotated[
        str,
        typer.Argument(help="Id or name of the packages-config project to migrate"),
    ],
    yes: YesOption = False,
    path: PathOption = None,
) -> None:
    """Migrate a project from packages-config to package-reference.

    pkgflow.yaml and pkgflow.lock are backed up under .pkgflow/backup first.
    """
    workspace = get_workspace(path)
    [project_id] = get_project_ids(workspace, [project])

    engine = build_engine(workspace, workspace.config, yes)
    token = CancellationToken()
    result = run_operation(engine.perform_migration(project_id, token))

    if result.status is OperationStatus.SUCCEEDED:
        print_success(f"Migrated {len(result.packages)} package(s) to package-reference")
        console.print(f"  Backup: {result.backup_path}")
        return

    if result.status is OperationStatus.CANCELLED:
        print_warning("Migration cancelled")
        raise typer.Exit(EXIT_CANCELLED)

    # the UI already showed the error
    raise typer.Exit(EXIT_FAILED)


@app.command("list")
def list_packages(path: PathOption = None) -> None:
    """List installed packages per project."""
    workspace = get_workspace(path)

    try:
        manager = WorkspaceProjectManager(workspace)
        rows = [
            (project.name, package)
            for project in workspace.config.projects
            for package in manager.lockfile.get_installed(project.id)
        ]
    except (ConfigError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(EXIT_FAILED) from e

    if not rows:
        console.print("No packages installed")
        return

    table = Table(title="Installed Packages")
    table.add_column("Project", style="bold")
    table.add_column("Package", style="cyan")
    table.add_column("Version", style="green")
    for project_name, package in rows:
        table.add_row(project_name, package.id, package.normalized_version)

    console.print(table)


if __name__ == "__main__":
    app()
