"""Cooperative cancellation for package operations."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationCancelledError(Exception):
    """Raised when work is abandoned because cancellation was requested."""

    def __init__(self, message: str = "The operation was cancelled"):
        super().__init__(message)


class CancellationToken:
    """A cancellation signal shared by every suspension point of an operation.

    ``cancel()`` may be called from any thread. Callbacks registered before
    cancellation run once, on the cancelling thread; callbacks registered
    afterwards run immediately.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @classmethod
    def none(cls) -> CancellationToken:
        """A token nobody holds a reference to cancel."""
        return cls()

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks, self._callbacks = self._callbacks, []

        logger.debug("Cancellation requested")
        for callback in callbacks:
            callback()

    def raise_if_cancellation_requested(self) -> None:
        if self._cancelled:
            raise OperationCancelledError()

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback to run on cancellation.

        Returns:
            A function that unregisters the callback
        """
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return lambda: self._unregister(callback)

        callback()
        return lambda: None

    def _unregister(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)


async def run_cancellable(awaitable: Awaitable[T], token: CancellationToken) -> T:
    """Await ``awaitable``, abandoning it as soon as ``token`` is cancelled.

    Raises:
        OperationCancelledError: If the token was or becomes cancelled
    """
    token.raise_if_cancellation_requested()

    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(awaitable)

    def _cancel_task() -> None:
        loop.call_soon_threadsafe(task.cancel)

    unregister = token.register(_cancel_task)
    try:
        return await task
    except asyncio.CancelledError:
        if token.is_cancellation_requested and not _current_task_cancelling():
            raise OperationCancelledError() from None
        raise
    finally:
        unregister()
        if not task.done():
            task.cancel()


def _current_task_cancelling() -> bool:
    """Whether the running task itself (not only the inner one) was cancelled."""
    current = asyncio.current_task()
    return current is not None and current.cancelling() > 0
