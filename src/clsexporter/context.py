"""
Deadline and cancellation shared by all units of work in one fetch call.

A ``FetchContext`` is checked right before every upstream request, which is
the only place the pipeline blocks. Child contexts inherit the parent's
deadline and cancellation but can be cancelled on their own, so one failing
fan-out phase never cancels the caller's context.
"""

import threading
import time
from typing import Callable, Optional

from .errors import FetchCancelledError


class FetchContext:
    """
    Cancellable context with an optional absolute deadline.

    Args:
        timeout: Seconds from now until the deadline, or None for no deadline
        parent: Context whose cancellation and deadline this one inherits
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        parent: Optional["FetchContext"] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._parent = parent
        self._cancelled = threading.Event()
        self._reason: Optional[str] = None

        deadline = None
        if timeout is not None:
            deadline = clock() + timeout
        if parent is not None and parent.deadline is not None:
            deadline = (
                parent.deadline if deadline is None else min(deadline, parent.deadline)
            )
        self.deadline = deadline

    def child(self) -> "FetchContext":
        """Create a context cancelled together with this one."""
        return FetchContext(parent=self, clock=self._clock)

    def cancel(self, reason: str = "context cancelled") -> None:
        if self._reason is None:
            self._reason = reason
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline, or None when unbounded."""
        if self.deadline is None:
            return None
        return self.deadline - self._clock()

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self) -> None:
        """
        Raise FetchCancelledError if the context is cancelled or expired.
        """
        if self.cancelled:
            raise FetchCancelledError(self._cancel_reason())
        if self.expired():
            raise FetchCancelledError("context deadline exceeded")

    def _cancel_reason(self) -> str:
        if self._cancelled.is_set():
            return self._reason or "context cancelled"
        return self._parent._cancel_reason()
