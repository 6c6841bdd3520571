"""Terminal presentation of previews, prompts and errors."""

import asyncio
from collections.abc import Sequence

from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table

from pkgflow.core.identity import PackageIdentity
from pkgflow.core.preview import PreviewResult
from pkgflow.core.services import (
    PackageLicenseInfo,
    PackageManagementFormat,
    UserInterfaceService,
)

CANCEL_CHOICE = "cancel"


class ConsoleUserInterface(UserInterfaceService):
    """UserInterfaceService backed by rich.

    With ``assume_yes`` every prompt is answered with its default
    acceptance and nothing is read from stdin.
    """

    def __init__(
        self,
        console: Console | None = None,
        error_console: Console | None = None,
        assume_yes: bool = False,
    ):
        self.console = console or Console()
        self.error_console = error_console or Console(stderr=True)
        self.assume_yes = assume_yes

    async def _confirm(self, question: str, default: bool = True) -> bool:
        if self.assume_yes:
            return True
        # Confirm.ask blocks on stdin
        return await asyncio.to_thread(Confirm.ask, question, console=self.console, default=default)

    async def prompt_for_preview_acceptance(self, results: Sequence[PreviewResult]) -> bool:
        changed = [r for r in results if not r.is_empty]
        if not changed:
            self.console.print("No changes to apply")
            return await self._confirm("Continue?")

        for result in changed:
            table = Table(title=result.project_name)
            table.add_column("Change", style="bold")
            table.add_column("Package", style="cyan")
            table.add_column("Version", style="green")

            for package in result.deleted:
                table.add_row("[red]Remove[/red]", package.id, package.normalized_version)
            for package in result.added:
                table.add_row("[green]Add[/green]", package.id, package.normalized_version)
            for update in result.updated:
                table.add_row(
                    "[yellow]Update[/yellow]",
                    update.new.id,
                    f"{update.old.normalized_version} -> {update.new.normalized_version}",
                )
            self.console.print(table)

        return await self._confirm("Apply these changes?")

    async def prompt_for_license_acceptance(self, items: Sequence[PackageLicenseInfo]) -> bool:
        table = Table(title="License Acceptance")
        table.add_column("Package", style="cyan")
        table.add_column("Authors")
        table.add_column("License", style="dim")
        for item in items:
            table.add_row(item.package_id, ", ".join(item.authors), "\n".join(item.license_links))

        self.console.print(table)
        self.console.print(
            "The packages above each come with their own license terms. "
            "Accepting installs them under those terms."
        )
        return await self._confirm("Do you accept these licenses?", default=False)

    async def prompt_for_package_management_format(
        self,
        package_format: PackageManagementFormat,
    ) -> bool:
        self.console.print("[bold]Choose a package format for:[/bold]")
        for name in package_format.project_names:
            self.console.print(f"  {name}")

        if self.assume_yes:
            return True

        choice = await asyncio.to_thread(
            Prompt.ask,
            "Package format",
            console=self.console,
            choices=["packages-config", "package-reference", CANCEL_CHOICE],
            default=package_format.selected_format,
        )
        if choice == CANCEL_CHOICE:
            return False
        package_format.selected_format = choice
        return True

    async def warn_about_deprecated_framework(self, project_names: Sequence[str]) -> bool:
        self.console.print(
            "[yellow]⚠[/yellow] The following project(s) target a deprecated framework:"
        )
        for name in project_names:
            self.console.print(f"  {name}")
        return await self._confirm("Continue anyway?")

    async def prompt_for_migration(
        self,
        project_name: str,
        packages: Sequence[PackageIdentity],
    ) -> bool:
        self.console.print(f"[bold]Migrate {project_name} to package-reference[/bold]")
        if packages:
            table = Table(title="Packages")
            table.add_column("Package", style="cyan")
            table.add_column("Version", style="green")
            for package in packages:
                table.add_row(package.id, package.normalized_version)
            self.console.print(table)
        else:
            self.console.print("No packages installed")
        self.console.print("pkgflow.yaml and pkgflow.lock are backed up before migrating.")
        return await self._confirm("Migrate this project?")

    def show_error(self, error: BaseException) -> None:
        self.error_console.print(f"[red]Error:[/red] {error}")
