"""
Background task runners for snapshot generation.

Generation never runs on the caller's path in the service; the runner
decides where it does run. ``ThreadedTaskRunner`` uses a thread pool,
``InlineTaskRunner`` runs the task immediately and is meant for scripts
and tests that want deterministic completion.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Protocol

from intel_graph.utils.logging import get_logger

logger = get_logger(__name__)


class TaskRunner(Protocol):
    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        ...

    def shutdown(self, wait: bool = True) -> None:
        ...


class ThreadedTaskRunner:
    """Runs tasks on a bounded pool of worker threads."""

    def __init__(self, max_workers: int = 2) -> None:
        self.max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix="intel-graph-snapshot",
                )
            return self._executor.submit(fn, *args)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None
                logger.debug("Snapshot worker pool shut down")


class InlineTaskRunner:
    """Runs each task in the submitting thread before returning."""

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait: bool = True) -> None:
        pass
