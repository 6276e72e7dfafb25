"""
Background execution for knowledge-base sync runs.

Runs are submitted to a dedicated single-worker thread pool so a detached
sync never blocks the event loop, and at most one run executes at a time.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

logger = logging.getLogger(__name__)

# Thread pool for background sync runs (embedding calls are blocking I/O)
_sync_executor: ThreadPoolExecutor | None = None


def _get_executor() -> ThreadPoolExecutor:
    global _sync_executor
    if _sync_executor is None:
        _sync_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="kb_sync")
    return _sync_executor


class SyncTaskHandle:
    """Handle to a detached sync run.

    ``cancel()`` is cooperative: the run stops before its next file.
    """

    def __init__(self, future: Future, cancel_event: threading.Event):
        self._future = future
        self._cancel_event = cancel_event

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None):
        """Block until the run finishes and return its final status."""
        return self._future.result(timeout=timeout)


def submit_sync(run: Callable, cancel_event: threading.Event) -> SyncTaskHandle:
    future = _get_executor().submit(run)
    future.add_done_callback(_log_crash)
    return SyncTaskHandle(future, cancel_event)


def _log_crash(future: Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error(f"❌ Background sync crashed: {error}")


def shutdown_sync_executor(wait: bool = False) -> None:
    global _sync_executor
    if _sync_executor is not None:
        _sync_executor.shutdown(wait=wait, cancel_futures=True)
        _sync_executor = None
