"""Single-flight coordination of package operations.

Every install, uninstall and update runs through ``OperationCoordinator.run``:

    Idle -> LockAcquired -> GateRunning -> Executing -> Finalizing -> Idle
                                       \\-> Aborted ---/

The operation lock is held from acquisition through finalization, so at most
one operation touches projects at a time. Finalization runs exactly once per
call and always emits one telemetry record.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from pkgflow.core.actions import ProjectAction, expand_actions
from pkgflow.core.cancellation import CancellationToken, OperationCancelledError
from pkgflow.core.gate import GateStage, OperationGate
from pkgflow.core.operation import OperationContext, OperationStatus, OperationType
from pkgflow.core.preview import PreviewDiffEngine, PreviewResult
from pkgflow.core.services import ProjectManagerService, UserInterfaceService
from pkgflow.core.telemetry import ActionsTelemetryBuilder, TelemetrySink
from pkgflow.sources.base import TransportError

if TYPE_CHECKING:
    from pkgflow.core.engine import UserAction

logger = logging.getLogger(__name__)

ActionResolver = Callable[[CancellationToken], Awaitable[list[ProjectAction]]]


class OperationLock:
    """Mutual exclusion between package operations.

    Waiting for the lock honours the operation's cancellation token. One
    instance is shared by every engine that works on the same projects;
    ``process_lock()`` is the instance engines use by default.

    asyncio locks belong to one event loop, so the instance keeps one
    underlying lock per running loop.
    """

    _process_lock: OperationLock | None = None

    def __init__(self) -> None:
        self._locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock] = (
            weakref.WeakKeyDictionary()
        )

    @classmethod
    def process_lock(cls) -> OperationLock:
        """The lock shared by every engine in this process."""
        if cls._process_lock is None:
            cls._process_lock = cls()
        return cls._process_lock

    @property
    def locked(self) -> bool:
        return any(lock.locked() for lock in self._locks.values())

    def _loop_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        lock = self._locks.get(loop)
        if lock is None:
            lock = self._locks[loop] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, token: CancellationToken) -> AsyncIterator[None]:
        """Hold the lock for the duration of the block.

        Raises:
            OperationCancelledError: If the token fired before the lock was acquired
        """
        lock = self._loop_lock()
        await self._acquire(lock, token)
        try:
            yield
        finally:
            lock.release()

    async def _acquire(self, lock: asyncio.Lock, token: CancellationToken) -> None:
        token.raise_if_cancellation_requested()

        loop = asyncio.get_running_loop()
        cancelled = asyncio.Event()
        acquire = asyncio.ensure_future(lock.acquire())
        watcher = asyncio.ensure_future(cancelled.wait())
        unregister = token.register(lambda: loop.call_soon_threadsafe(cancelled.set))

        acquired = False
        try:
            await asyncio.wait({acquire, watcher}, return_when=asyncio.FIRST_COMPLETED)
            acquired = acquire.done() and not acquire.cancelled()
        finally:
            unregister()
            watcher.cancel()
            if not acquired:
                if acquire.done() and not acquire.cancelled():
                    # granted while we were being cancelled
                    lock.release()
                else:
                    acquire.cancel()

        if not acquired:
            raise OperationCancelledError()


@dataclass
class OperationResult:
    """What the caller learns about a finished operation."""

    operation_id: str
    operation_type: OperationType
    status: OperationStatus
    results: list[PreviewResult] = field(default_factory=list)
    vetoed_by: GateStage | None = None
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is OperationStatus.SUCCEEDED


class OperationCoordinator:
    """Runs one package operation from lock acquisition to telemetry."""

    def __init__(
        self,
        project_manager: ProjectManagerService,
        ui: UserInterfaceService,
        telemetry_sink: TelemetrySink,
        gate: OperationGate,
        lock: OperationLock,
    ):
        self._project_manager = project_manager
        self._ui = ui
        self._telemetry_sink = telemetry_sink
        self._gate = gate
        self._lock = lock
        self._diff_engine = PreviewDiffEngine(project_manager)

    async def run(
        self,
        operation_type: OperationType,
        resolve_actions: ActionResolver,
        project_ids: Sequence[str],
        token: CancellationToken,
        user_action: UserAction | None = None,
    ) -> OperationResult:
        """Run an operation.

        Args:
            operation_type: Kind of operation, as requested
            resolve_actions: Produces the actions once the format check passed
            project_ids: Target projects
            token: Cancellation token
            user_action: The package the user selected, for telemetry

        Returns:
            OperationResult; failures are reported through the UI and the
            status, not raised
        """
        context = OperationContext(operation_type=operation_type, project_ids=list(project_ids))
        telemetry = ActionsTelemetryBuilder()
        telemetry.user_action = user_action

        acquired = False
        try:
            async with self._lock.hold(token):
                acquired = True
                try:
                    await self._run_locked(context, telemetry, resolve_actions, token)
                finally:
                    await self._finalize(context, telemetry, began=True)
        except OperationCancelledError as e:
            if acquired:
                raise
            # cancelled while waiting for the lock; nothing ran
            logger.info("Operation %s cancelled before it started", context.operation_id)
            context.status = OperationStatus.CANCELLED
            context.error = e
            await self._finalize(context, telemetry, began=False)

        return OperationResult(
            operation_id=context.operation_id,
            operation_type=context.operation_type,
            status=context.status,
            results=context.results,
            vetoed_by=context.vetoed_by,
            error=context.error,
        )

    async def _run_locked(
        self,
        context: OperationContext,
        telemetry: ActionsTelemetryBuilder,
        resolve_actions: ActionResolver,
        token: CancellationToken,
    ) -> None:
        logger.debug(
            "Starting %s operation %s on %d project(s)",
            context.operation_type.value,
            context.operation_id,
            len(context.project_ids),
        )
        began = False
        try:
            self._ui.begin_operation()
            await self._project_manager.begin_operation()
            began = True

            await self._collect_existing_packages(context, telemetry, token)

            gate_result = await self._gate.check_package_format(context.project_ids, token)
            if not gate_result.accepted:
                context.vetoed_by = gate_result.vetoed_by
                return

            actions = expand_actions(await resolve_actions(token))
            context.results = await self._diff_engine.diff(actions, token)
            context.package_count, context.operation_type = telemetry.record_results(
                context.results, context.operation_type
            )

            gate_result = await self._gate.review(context.project_ids, context.results, token)
            if not gate_result.accepted:
                context.vetoed_by = gate_result.vetoed_by
                if gate_result.vetoed_by is GateStage.PREVIEW:
                    telemetry.continue_after_preview = False
                elif gate_result.vetoed_by is GateStage.LICENSE:
                    telemetry.accepted_license = False
                logger.info("Operation vetoed at %s", gate_result.vetoed_by.value)
                return

            # last check before the irrevocable part
            if token.is_cancellation_requested:
                context.status = OperationStatus.CANCELLED
                return

            logger.info("Executing %d action(s)", len(actions))
            await self._project_manager.execute_actions(actions, token)
            context.executed = True
        except OperationCancelledError as e:
            context.status = OperationStatus.CANCELLED
            context.error = e
        except TransportError as e:
            context.status = OperationStatus.FAILED
            context.error = e
            logger.debug("Transport failure", exc_info=True)
            self._ui.show_error(e.__cause__ or e)
        except asyncio.CancelledError:
            context.status = OperationStatus.CANCELLED
            raise
        except Exception as e:
            context.status = OperationStatus.FAILED
            context.error = e
            logger.debug("Operation failed", exc_info=True)
            self._ui.show_error(e)
        finally:
            if began:
                await self._project_manager.end_operation()

    async def _collect_existing_packages(
        self,
        context: OperationContext,
        telemetry: ActionsTelemetryBuilder,
        token: CancellationToken,
    ) -> None:
        """Record the packages installed before the operation. Best-effort."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            for project_id in context.project_ids:
                telemetry.add_existing_packages(
                    await self._project_manager.get_installed_packages(project_id, token)
                )
        except OperationCancelledError:
            raise
        except Exception:
            logger.debug("Could not enumerate installed packages", exc_info=True)
            return
        telemetry.package_enumeration_ms = round((loop.time() - started) * 1000, 3)

    async def _finalize(
        self,
        context: OperationContext,
        telemetry: ActionsTelemetryBuilder,
        began: bool,
    ) -> None:
        """Close out the operation. Never raises for telemetry problems."""
        logger.info("Total time: %.2f s", context.elapsed_seconds())
        if began:
            self._ui.end_operation()

        if context.status is OperationStatus.SUCCEEDED and not context.executed:
            context.status = OperationStatus.CANCELLED

        try:
            telemetry.target_frameworks = await self._project_manager.get_target_frameworks(
                context.project_ids, CancellationToken.none()
            )
        except Exception:
            logger.debug("Could not read target frameworks", exc_info=True)

        event = telemetry.build(context, datetime.now(timezone.utc))
        try:
            self._telemetry_sink.emit(event)
        except Exception as e:
            logger.warning("Failed to emit telemetry for %s: %s", context.operation_id, e)

        logger.debug(
            "Operation %s finished: %s", context.operation_id, context.status.value
        )
