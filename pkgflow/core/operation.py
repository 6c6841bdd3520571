"""State of a single package operation."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pkgflow.core.gate import GateStage
from pkgflow.core.preview import PreviewResult


class OperationType(str, Enum):
    INSTALL = "install"
    UNINSTALL = "uninstall"
    UPDATE = "update"
    MIGRATE = "migrate"


class OperationStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class OperationContext:
    """Mutable state of one coordinator run.

    Created when the run starts and discarded when it ends; only the
    telemetry record built from it survives.
    """

    operation_type: OperationType
    project_ids: list[str]
    operation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: OperationStatus = OperationStatus.SUCCEEDED
    package_count: int = 0
    executed: bool = False
    results: list[PreviewResult] = field(default_factory=list)
    vetoed_by: GateStage | None = None
    error: BaseException | None = None
    _started: float = field(default_factory=time.monotonic, repr=False)

    def elapsed_seconds(self) -> float:
        return time.monotonic() - self._started
