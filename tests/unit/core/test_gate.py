"""Tests for pkgflow.core.gate module."""

import asyncio

import pytest
from fakes import FakeProjectManager, FakeSource, FakeUserInterface

from pkgflow.config.schemas import PackageManagementFormatConfig, WorkspaceConfig
from pkgflow.core.cancellation import CancellationToken
from pkgflow.core.gate import GateStage, OperationGate, packages_needing_license_check
from pkgflow.core.identity import PackageIdentity
from pkgflow.core.metadata import MetadataResolver
from pkgflow.core.preview import PreviewResult, UpdatePreviewResult
from pkgflow.sources.base import PackageMetadata

A1 = PackageIdentity.create("A", "1.0.0")
A2 = PackageIdentity.create("A", "2.0.0")
B1 = PackageIdentity.create("B", "1.0.0")
C1 = PackageIdentity.create("C", "1.0.0")


def make_gate(
    project_manager: FakeProjectManager,
    ui: FakeUserInterface,
    config: WorkspaceConfig,
    source: FakeSource | None = None,
) -> OperationGate:
    resolver = MetadataResolver([], [source] if source else [])
    return OperationGate(project_manager, ui, resolver, config)


@pytest.fixture
def license_source() -> FakeSource:
    """A requires no license acceptance, B does."""
    return FakeSource(
        "feed",
        {
            A1: PackageMetadata(A1),
            A2: PackageMetadata(A2),
            B1: PackageMetadata(
                B1, requires_license_acceptance=True, authors=["Bob"], license_expression="MIT"
            ),
        },
    )


class TestPackagesNeedingLicenseCheck:
    """Tests for packages_needing_license_check()."""

    def test_added_and_new_side_of_updates(self):
        """Added packages and new update versions are checked; removals are not."""
        results = [
            PreviewResult("p", added=[B1], deleted=[C1], updated=[UpdatePreviewResult(A1, A2)]),
            PreviewResult("q", added=[B1]),
        ]

        assert packages_needing_license_check(results) == [B1, A2]


class TestPackageFormatCheck:
    """Tests for OperationGate.check_package_format()."""

    def test_no_upgradeable_projects_passes(self, project_manager, ui, config):
        """Without upgradeable projects nothing is asked."""
        gate = make_gate(project_manager, ui, config)

        result = asyncio.run(gate.check_package_format(["proj-a"], CancellationToken.none()))

        assert result.accepted
        assert ui.format_prompts == []

    def test_standing_preference_auto_upgrades(self, project_manager, ui):
        """With the prompt disabled and package-reference preferred, upgrade silently."""
        project_manager.upgradeable = ["proj-a"]
        config = WorkspaceConfig(
            package_management_format=PackageManagementFormatConfig(
                prompt_enabled=False, default_format="package-reference"
            )
        )
        gate = make_gate(project_manager, ui, config)

        result = asyncio.run(gate.check_package_format(["proj-a"], CancellationToken.none()))

        assert result.accepted
        assert ui.format_prompts == []
        assert project_manager.upgraded == ["proj-a"]

    def test_standing_packages_config_keeps_format(self, project_manager, ui):
        """With the prompt disabled and packages-config preferred, nothing changes."""
        project_manager.upgradeable = ["proj-a"]
        config = WorkspaceConfig(
            package_management_format=PackageManagementFormatConfig(prompt_enabled=False)
        )
        gate = make_gate(project_manager, ui, config)

        result = asyncio.run(gate.check_package_format(["proj-a"], CancellationToken.none()))

        assert result.accepted
        assert project_manager.upgraded == []

    def test_prompt_lists_sorted_project_names(self, project_manager, ui, config):
        """The prompt shows project names sorted case-insensitively."""
        project_manager.add_project("proj-b", name="alpha")
        project_manager.upgradeable = ["proj-a", "proj-b"]
        gate = make_gate(project_manager, ui, config)

        asyncio.run(gate.check_package_format(["proj-a", "proj-b"], CancellationToken.none()))

        assert ui.format_prompts[0].project_names == ["alpha", "ProjectA"]

    def test_selecting_package_reference_upgrades(self, project_manager, ui, config):
        """Choosing package-reference in the prompt upgrades the projects."""
        project_manager.upgradeable = ["proj-a"]
        ui.select_format = "package-reference"
        gate = make_gate(project_manager, ui, config)

        result = asyncio.run(gate.check_package_format(["proj-a"], CancellationToken.none()))

        assert result.accepted
        assert project_manager.upgraded == ["proj-a"]

    def test_declined_prompt_vetoes(self, project_manager, ui, config):
        """Declining the format prompt vetoes the operation."""
        project_manager.upgradeable = ["proj-a"]
        ui.accept_format = False
        gate = make_gate(project_manager, ui, config)

        result = asyncio.run(gate.check_package_format(["proj-a"], CancellationToken.none()))

        assert result.vetoed_by is GateStage.PACKAGE_FORMAT
        assert project_manager.upgraded == []


class TestReview:
    """Tests for OperationGate.review()."""

    def test_all_checks_pass(self, project_manager, ui, config, license_source):
        """Accepting every prompt passes the review."""
        gate = make_gate(project_manager, ui, config, license_source)
        results = [PreviewResult("p", added=[A1])]

        result = asyncio.run(gate.review(["proj-a"], results, CancellationToken.none()))

        assert result.accepted
        assert ui.previews == [results]

    def test_preview_declined(self, project_manager, ui, config, license_source):
        """Declining the preview stops before the license check."""
        ui.accept_preview = False
        gate = make_gate(project_manager, ui, config, license_source)

        result = asyncio.run(
            gate.review(["proj-a"], [PreviewResult("p", added=[B1])], CancellationToken.none())
        )

        assert result.vetoed_by is GateStage.PREVIEW
        assert ui.license_items == []
        assert license_source.requests == []

    def test_preview_disabled(self, project_manager, ui, license_source):
        """With the preview window disabled no preview is shown."""
        config = WorkspaceConfig(display_preview_window=False)
        gate = make_gate(project_manager, ui, config, license_source)

        result = asyncio.run(
            gate.review(["proj-a"], [PreviewResult("p", added=[A1])], CancellationToken.none())
        )

        assert result.accepted
        assert ui.previews == []

    def test_only_packages_requiring_acceptance_are_prompted(
        self, project_manager, ui, config, license_source
    ):
        """Given A (no license) and B (license), only B is prompted."""
        gate = make_gate(project_manager, ui, config, license_source)

        asyncio.run(
            gate.review(
                ["proj-a"], [PreviewResult("p", added=[A1, B1])], CancellationToken.none()
            )
        )

        [items] = ui.license_items
        assert [i.package_id for i in items] == ["B"]
        assert items[0].authors == ["Bob"]
        assert items[0].license_links == ["https://licenses.nuget.org/MIT"]

    def test_license_declined(self, project_manager, ui, config, license_source):
        """Declining licenses vetoes at the license stage."""
        ui.accept_license = False
        gate = make_gate(project_manager, ui, config, license_source)

        result = asyncio.run(
            gate.review(["proj-a"], [PreviewResult("p", added=[B1])], CancellationToken.none())
        )

        assert result.vetoed_by is GateStage.LICENSE

    def test_no_license_prompt_when_nothing_requires_it(
        self, project_manager, ui, config, license_source
    ):
        """No prompt when no package requires acceptance."""
        gate = make_gate(project_manager, ui, config, license_source)

        asyncio.run(
            gate.review(
                ["proj-a"],
                [PreviewResult("p", updated=[UpdatePreviewResult(A1, A2)])],
                CancellationToken.none(),
            )
        )

        assert ui.license_items == []

    def test_removed_packages_skip_license_lookup(
        self, project_manager, ui, config, license_source
    ):
        """Purely removed packages never reach the metadata resolver."""
        gate = make_gate(project_manager, ui, config, license_source)

        result = asyncio.run(
            gate.review(["proj-a"], [PreviewResult("p", deleted=[C1])], CancellationToken.none())
        )

        assert result.accepted
        assert license_source.requests == []

    def test_deprecated_framework_warning(self, project_manager, ui, config):
        """Projects on a deprecated framework trigger a warning by name."""
        project_manager.deprecated = ["proj-a"]
        ui.accept_deprecated = False
        gate = make_gate(project_manager, ui, config)

        result = asyncio.run(gate.review(["proj-a"], [], CancellationToken.none()))

        assert result.vetoed_by is GateStage.DEPRECATED_FRAMEWORK
        assert ui.deprecated_prompts == [["ProjectA"]]

    def test_deprecated_framework_window_disabled(self, project_manager, ui):
        """With the warning disabled deprecated projects are not reported."""
        project_manager.deprecated = ["proj-a"]
        config = WorkspaceConfig(display_deprecated_framework_window=False)
        gate = make_gate(project_manager, ui, config)

        result = asyncio.run(gate.review(["proj-a"], [], CancellationToken.none()))

        assert result.accepted
        assert ui.deprecated_prompts == []
