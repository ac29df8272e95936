"""
Single-flight refresh coalescer.

The first caller installs a pending ``Future`` and starts the work on a
dedicated thread; callers arriving while it is in flight wait on the same
future instead of starting a second upstream fetch. The holder is cleared
when the work settles, so the next call after that starts a new window.

The work runs detached from every caller: a caller that stops waiting
(``timeout``) does not cancel it, and it still completes for everyone else.
"""

import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Generic, Optional, TypeVar

from ..errors import RefreshTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RefreshCoalescer(Generic[T]):
    """
    Mutex-guarded in-flight future for a single logical resource.
    """

    def __init__(self, name: str = "refresh"):
        self.name = name
        self._lock = threading.Lock()
        self._in_flight: Optional[Future] = None
        self._waiters = 0

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._in_flight is not None

    @property
    def waiters(self) -> int:
        """Callers currently waiting on the in-flight work."""
        with self._lock:
            return self._waiters

    def do(self, fn: Callable[[], T], timeout: Optional[float] = None) -> T:
        """
        Run ``fn`` unless a run is already in flight, and return its result.

        Args:
            fn: Work to run; only called by the caller that opens a window
            timeout: Seconds this caller is willing to wait, None to wait
                until the work settles

        Returns:
            The value returned by the shared run of ``fn``

        Raises:
            RefreshTimeoutError: If ``timeout`` elapses first
            Exception: Whatever the shared run of ``fn`` raised
        """
        with self._lock:
            future = self._in_flight
            if future is None:
                future = Future()
                self._in_flight = future
                owner = True
            else:
                owner = False
            self._waiters += 1

        if owner:
            worker = threading.Thread(
                target=self._run, args=(future, fn), name=f"{self.name}-worker",
                daemon=True,
            )
            worker.start()
        else:
            logger.debug(f"Joining in-flight {self.name}")

        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            raise RefreshTimeoutError(
                f"gave up waiting for {self.name} after {timeout:g}s"
            ) from None
        finally:
            with self._lock:
                self._waiters -= 1

    def _run(self, future: Future, fn: Callable[[], T]) -> None:
        try:
            result = fn()
        except BaseException as e:
            self._settle(future)
            future.set_exception(e)
        else:
            self._settle(future)
            future.set_result(result)

    def _settle(self, future: Future) -> None:
        with self._lock:
            if self._in_flight is future:
                self._in_flight = None
