"""Tests for pkgflow.cli.console module."""

import asyncio
import io
from unittest.mock import patch

import pytest
from rich.console import Console
from rich.prompt import Confirm, Prompt

from pkgflow.cli.console import ConsoleUserInterface
from pkgflow.core.identity import PackageIdentity
from pkgflow.core.preview import PreviewResult, UpdatePreviewResult
from pkgflow.core.services import PackageLicenseInfo, PackageManagementFormat


@pytest.fixture
def output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def errors() -> io.StringIO:
    return io.StringIO()


def make_ui(output: io.StringIO, errors: io.StringIO, assume_yes: bool = False):
    return ConsoleUserInterface(
        console=Console(file=output, width=120),
        error_console=Console(file=errors, width=120),
        assume_yes=assume_yes,
    )


class TestPreviewPrompt:
    """Tests for prompt_for_preview_acceptance()."""

    def test_renders_changes(self, output: io.StringIO, errors: io.StringIO):
        """Each changed project gets a table of its changes."""
        ui = make_ui(output, errors, assume_yes=True)
        results = [
            PreviewResult(
                "App",
                added=[PackageIdentity.create("Beta", "1.0.0")],
                updated=[
                    UpdatePreviewResult(
                        PackageIdentity.create("Alpha", "1.0.0"),
                        PackageIdentity.create("Alpha", "2.0.0"),
                    )
                ],
            ),
            PreviewResult("Empty"),
        ]

        assert asyncio.run(ui.prompt_for_preview_acceptance(results)) is True

        text = output.getvalue()
        assert "App" in text
        assert "Beta" in text
        assert "1.0.0 -> 2.0.0" in text
        assert "Empty" not in text

    def test_no_changes(self, output: io.StringIO, errors: io.StringIO):
        """An empty preview says so."""
        ui = make_ui(output, errors, assume_yes=True)

        asyncio.run(ui.prompt_for_preview_acceptance([PreviewResult("App")]))

        assert "No changes to apply" in output.getvalue()

    def test_decline(self, output: io.StringIO, errors: io.StringIO):
        """The answer to the confirm prompt is returned."""
        ui = make_ui(output, errors)
        results = [PreviewResult("App", added=[PackageIdentity.create("Beta", "1.0.0")])]

        with patch.object(Confirm, "ask", return_value=False) as ask:
            accepted = asyncio.run(ui.prompt_for_preview_acceptance(results))

        assert accepted is False
        ask.assert_called_once()


class TestLicensePrompt:
    """Tests for prompt_for_license_acceptance()."""

    def test_lists_packages_and_defaults_to_no(self, output: io.StringIO, errors: io.StringIO):
        """Licenses are listed and the prompt defaults to declining."""
        ui = make_ui(output, errors)
        items = [
            PackageLicenseInfo(
                "Beta", ["https://licenses.nuget.org/MIT"], ["Bob", "Carol"]
            )
        ]

        with patch.object(Confirm, "ask", return_value=True) as ask:
            accepted = asyncio.run(ui.prompt_for_license_acceptance(items))

        assert accepted is True
        assert ask.call_args.kwargs["default"] is False
        text = output.getvalue()
        assert "Beta" in text
        assert "Bob, Carol" in text


class TestFormatPrompt:
    """Tests for prompt_for_package_management_format()."""

    def test_selection_updates_format(self, output: io.StringIO, errors: io.StringIO):
        """The chosen format is written back."""
        ui = make_ui(output, errors)
        package_format = PackageManagementFormat(project_names=["App"])

        with patch.object(Prompt, "ask", return_value="package-reference"):
            accepted = asyncio.run(ui.prompt_for_package_management_format(package_format))

        assert accepted is True
        assert package_format.selected_format == "package-reference"
        assert "App" in output.getvalue()

    def test_cancel(self, output: io.StringIO, errors: io.StringIO):
        """Choosing cancel declines and keeps the format."""
        ui = make_ui(output, errors)
        package_format = PackageManagementFormat(project_names=["App"])

        with patch.object(Prompt, "ask", return_value="cancel"):
            accepted = asyncio.run(ui.prompt_for_package_management_format(package_format))

        assert accepted is False
        assert package_format.selected_format == "packages-config"

    def test_assume_yes_keeps_default(self, output: io.StringIO, errors: io.StringIO):
        """With assume_yes the default format is accepted without asking."""
        ui = make_ui(output, errors, assume_yes=True)
        package_format = PackageManagementFormat(project_names=["App"])

        with patch.object(Prompt, "ask") as ask:
            accepted = asyncio.run(ui.prompt_for_package_management_format(package_format))

        assert accepted is True
        ask.assert_not_called()


class TestMigrationPrompt:
    """Tests for prompt_for_migration()."""

    def test_lists_packages(self, output: io.StringIO, errors: io.StringIO):
        """Packages that move over are shown before the confirm."""
        ui = make_ui(output, errors)
        packages = [PackageIdentity.create("Newtonsoft.Json", "13.0.1")]

        with patch.object(Confirm, "ask", return_value=True) as ask:
            accepted = asyncio.run(ui.prompt_for_migration("App", packages))

        assert accepted is True
        text = output.getvalue()
        assert "Migrate App to package-reference" in text
        assert "Newtonsoft.Json" in text
        assert "13.0.1" in text
        ask.assert_called_once()

    def test_empty_project_with_assume_yes(self, output: io.StringIO, errors: io.StringIO):
        """assume_yes accepts without asking."""
        ui = make_ui(output, errors, assume_yes=True)

        with patch.object(Confirm, "ask") as ask:
            accepted = asyncio.run(ui.prompt_for_migration("Lib", []))

        assert accepted is True
        assert "No packages installed" in output.getvalue()
        ask.assert_not_called()


class TestWarningsAndErrors:
    """Tests for the deprecated framework warning and error display."""

    def test_deprecated_framework_warning(self, output: io.StringIO, errors: io.StringIO):
        """Affected projects are listed before the confirm."""
        ui = make_ui(output, errors)

        with patch.object(Confirm, "ask", return_value=False):
            accepted = asyncio.run(ui.warn_about_deprecated_framework(["Legacy"]))

        assert accepted is False
        assert "Legacy" in output.getvalue()

    def test_show_error(self, output: io.StringIO, errors: io.StringIO):
        """Errors go to the error console."""
        ui = make_ui(output, errors)

        ui.show_error(RuntimeError("boom"))

        assert "Error: boom" in errors.getvalue()
        assert output.getvalue() == ""
