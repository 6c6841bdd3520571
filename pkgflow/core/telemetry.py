"""Operation telemetry: the completion record and the sinks that receive it.

One ``ActionsTelemetryEvent`` is emitted per operation, at finalization.
Optional fields are collected on an ``ActionsTelemetryBuilder`` while the
operation runs and attached only when they carry data.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pkgflow.core.identity import PackageIdentity
from pkgflow.core.operation import OperationContext, OperationType
from pkgflow.core.preview import PreviewResult

if TYPE_CHECKING:
    from pkgflow.core.engine import UserAction

logger = logging.getLogger(__name__)

EMPTY_PACKAGE_ID = "(empty package id)"

# (lower-cased id, normalized version)
TelemetryPackage = tuple[str, str]


def to_telemetry_package(package_id: str | None, version: str = "") -> dict[str, str]:
    return {"id": package_id.lower() if package_id else EMPTY_PACKAGE_ID, "version": version}


def _identity_pair(identity: PackageIdentity) -> TelemetryPackage:
    return (identity.id, identity.normalized_version)


def _distinct(items: Iterable[Any]) -> list[Any]:
    return list(dict.fromkeys(items))


@dataclass
class ActionsTelemetryEvent:
    """Completion record of one package operation."""

    operation_id: str
    project_ids: list[str]
    operation_type: OperationType
    start_time: datetime
    end_time: datetime
    duration_seconds: float
    status: str
    package_count: int
    properties: dict[str, Any] = field(default_factory=dict)
    complex_data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "project_ids": list(self.project_ids),
            "operation_type": self.operation_type.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_seconds": self.duration_seconds,
            "status": self.status,
            "package_count": self.package_count,
            "properties": dict(self.properties),
            "complex_data": dict(self.complex_data),
        }


class ActionsTelemetryBuilder:
    """Collects the optional parts of an ActionsTelemetryEvent."""

    def __init__(self) -> None:
        self.continue_after_preview = True
        self.accepted_license = True
        self.user_action: UserAction | None = None
        self.existing_packages: list[TelemetryPackage] = []
        self.added_packages: list[TelemetryPackage] = []
        self.removed_packages: list[str] = []
        self.updated_packages_old: list[TelemetryPackage] = []
        self.updated_packages_new: list[TelemetryPackage] = []
        self.target_frameworks: list[str] = []
        self.package_enumeration_ms: float | None = None

    def add_existing_packages(self, packages: Iterable[PackageIdentity]) -> None:
        self.existing_packages = _distinct(
            [*self.existing_packages, *(_identity_pair(p) for p in packages)]
        )

    def record_results(
        self,
        results: Sequence[PreviewResult],
        operation_type: OperationType,
    ) -> tuple[int, OperationType]:
        """Record the preview outcome.

        Returns:
            The package count and the operation type to report; an install
            that updates any package is reported as an update.
        """
        if operation_type is OperationType.UNINSTALL:
            # removed packages are reported without version info
            self.removed_packages = _distinct(
                package.id for result in results for package in result.deleted
            )
            return len(self.removed_packages), operation_type

        self.added_packages = _distinct(
            _identity_pair(package) for result in results for package in result.added
        )
        self.updated_packages_old = _distinct(
            _identity_pair(update.old) for result in results for update in result.updated
        )
        self.updated_packages_new = _distinct(
            _identity_pair(update.new) for result in results for update in result.updated
        )

        update_count = len(self.updated_packages_new)
        if update_count > 0:
            operation_type = OperationType.UPDATE
        return len(self.added_packages) + update_count, operation_type

    def build(self, context: OperationContext, end_time: datetime) -> ActionsTelemetryEvent:
        """Assemble the final event. Called once, at finalization."""
        event = ActionsTelemetryEvent(
            operation_id=context.operation_id,
            project_ids=list(context.project_ids),
            operation_type=context.operation_type,
            start_time=context.start_time,
            end_time=end_time,
            duration_seconds=context.elapsed_seconds(),
            status=context.status.value,
            package_count=context.package_count,
        )

        # possible cancel reasons
        if not self.continue_after_preview:
            event.properties["cancel_after_preview"] = True
        if not self.accepted_license:
            event.properties["accepted_license"] = False

        if self.user_action is not None:
            event.complex_data["selected_package"] = to_telemetry_package(
                self.user_action.package_id,
                self.user_action.version.to_normalized_string()
                if self.user_action.version is not None
                else "",
            )

        if self.existing_packages:
            event.complex_data["existing_packages"] = [
                to_telemetry_package(*p) for p in self.existing_packages
            ]
        if self.added_packages:
            event.complex_data["added_packages"] = [
                to_telemetry_package(*p) for p in self.added_packages
            ]
        if self.removed_packages:
            event.complex_data["removed_packages"] = [
                package_id.lower() if package_id else EMPTY_PACKAGE_ID
                for package_id in self.removed_packages
            ]
        if self.updated_packages_new:
            event.complex_data["updated_packages_new"] = [
                to_telemetry_package(*p) for p in self.updated_packages_new
            ]
        if self.updated_packages_old:
            event.complex_data["updated_packages_old"] = [
                to_telemetry_package(*p) for p in self.updated_packages_old
            ]

        if self.target_frameworks:
            event.properties["target_frameworks"] = ";".join(self.target_frameworks)
        if self.package_enumeration_ms is not None:
            event.properties["installed_package_enumeration_ms"] = self.package_enumeration_ms

        return event


class TelemetrySink(ABC):
    """Receives completion records."""

    @abstractmethod
    def emit(self, event: ActionsTelemetryEvent) -> None:
        ...


class LoggingTelemetrySink(TelemetrySink):
    """Writes each record to the ``pkgflow.telemetry`` logger."""

    def __init__(self, level: int = logging.DEBUG):
        self._logger = logging.getLogger("pkgflow.telemetry")
        self._level = level

    def emit(self, event: ActionsTelemetryEvent) -> None:
        self._logger.log(self._level, "%s", json.dumps(event.to_dict(), sort_keys=True))


class JsonlTelemetrySink(TelemetrySink):
    """Appends one JSON line per record to a file."""

    def __init__(self, path: Path):
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def emit(self, event: ActionsTelemetryEvent) -> None:
        line = json.dumps(event.to_dict(), sort_keys=True)
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "a", encoding="utf-8") as f:
                f.write(line + "\n")


class InMemoryTelemetrySink(TelemetrySink):
    """Keeps records in a list."""

    def __init__(self) -> None:
        self.events: list[ActionsTelemetryEvent] = []

    def emit(self, event: ActionsTelemetryEvent) -> None:
        self.events.append(event)
