"""
Bounded fan-out with shared cancellation.

A ``TaskGroup`` runs units of work on a thread pool of at most ``limit``
workers. Every unit receives the group's child context. The first unit to
fail cancels that context, so units that have not started yet are skipped
and units about to make an upstream call stop at their next context check.
``wait()`` blocks until every submitted unit has finished or been skipped,
then raises the first error.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, List, Optional

from ..context import FetchContext

logger = logging.getLogger(__name__)


class TaskGroup:
    """
    Structured task group over a ``ThreadPoolExecutor``.

    Args:
        ctx: Parent context; cancelling it cancels every unit in the group
        limit: Maximum number of units running at once
        name: Thread name prefix, for logs

    Example:
        >>> with TaskGroup(ctx, limit=8, name="servers") as group:
        ...     for vg in groups:
        ...         group.submit(list_servers, vg)
        ... # leaving the block waits and raises the first failure
    """

    def __init__(self, ctx: FetchContext, limit: int, name: str = "fetch"):
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.ctx = ctx.child()
        self.name = name
        self._executor = ThreadPoolExecutor(
            max_workers=limit, thread_name_prefix=f"cls-{name}"
        )
        self._futures: List[Future] = []
        self._lock = threading.Lock()
        self._error: Optional[BaseException] = None
        self._skipped = False
        self._closed = False

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        """
        Schedule ``fn(ctx, *args)`` on the group.
        """
        if self._closed:
            raise RuntimeError(f"task group {self.name!r} already waited")
        self._futures.append(self._executor.submit(self._run, fn, args))

    def _run(self, fn: Callable[..., Any], args: tuple) -> None:
        if self.ctx.cancelled:
            self._skipped = True
            return
        try:
            fn(self.ctx, *args)
        except Exception as e:
            self._fail(e)

    def _fail(self, error: BaseException) -> None:
        with self._lock:
            first = self._error is None
            if first:
                self._error = error
        if first:
            logger.debug(f"Task group '{self.name}' cancelled after failure: {error}")
            self.ctx.cancel(f"{self.name} task failed: {error}")

    def wait(self) -> None:
        """
        Wait for every unit, then raise the first failure, if any.
        """
        self._closed = True
        try:
            wait(self._futures)
        finally:
            self._executor.shutdown(wait=True)
        if self._error is not None:
            raise self._error
        if self._skipped:
            # cancelled from the parent context
            self.ctx.check()

    def __enter__(self) -> "TaskGroup":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.ctx.cancel("task group body raised")
            self._closed = True
            self._executor.shutdown(wait=True)
            return
        self.wait()
