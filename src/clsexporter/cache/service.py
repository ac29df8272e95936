"""
Snapshot cache shared by the pull and push adapters.

``SnapshotService`` owns the last snapshot, its ``Meta`` and the time it was
cached. It is constructed once at startup and passed to every consumer.

Lifecycle of the cached state:

* ``get`` serves the cached snapshot while it is younger than the TTL and
  otherwise refreshes.
* ``refresh`` coalesces concurrent callers onto one fetch. A successful
  fetch replaces the snapshot (``up=1``). A failed fetch keeps the previous
  snapshot and marks it stale (``up=0``, timestamp of the stale snapshot)
  without raising; only when there is no previous snapshot does the error
  reach the caller.
* ``latest`` and ``meta`` are non-blocking reads.

The fetch runs outside the data lock, so reads never wait on a refresh.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional, Tuple

from ..context import FetchContext
from ..errors import RefreshTimeoutError
from ..fetch.fetcher_base import BaseFetcher
from ..fetch.snapshot import Snapshot
from ..settings import Settings
from .coalescer import RefreshCoalescer

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 60.0
DEFAULT_REFRESH_TIMEOUT = 20.0


@dataclass(frozen=True)
class Meta:
    """
    Bookkeeping describing the snapshot a call returned.

    Attributes:
        up: 1.0 when the last refresh succeeded, 0.0 otherwise
        duration_seconds: Latency of the fetch behind this result, 0 on a
            cache hit
        timestamp: Collection time of the returned snapshot, or the time of
            the failed attempt when there is no snapshot
        cache_hit: Whether the result was served from cache
    """

    up: float = 0.0
    duration_seconds: float = 0.0
    timestamp: Optional[datetime] = None
    cache_hit: bool = False


class ReadWriteLock:
    """
    Many readers or one writer. Writers waiting block new readers.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SnapshotService:
    """
    TTL-bounded snapshot cache with coalesced refreshes and stale fallback.

    Args:
        fetcher: Snapshot source
        cache_ttl: Seconds a successful snapshot is served without refetching
        refresh_timeout: Deadline in seconds for the shared fetch; it is
            independent of how long individual callers are willing to wait
        clock: Monotonic clock for TTL and latency measurement
        now: Wall clock for the timestamp of failures without a snapshot
    """

    def __init__(
        self,
        fetcher: BaseFetcher,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        refresh_timeout: float = DEFAULT_REFRESH_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.fetcher = fetcher
        self.cache_ttl = cache_ttl if cache_ttl > 0 else DEFAULT_CACHE_TTL
        self.refresh_timeout = (
            refresh_timeout if refresh_timeout and refresh_timeout > 0
            else DEFAULT_REFRESH_TIMEOUT
        )
        self._clock = clock
        self._now = now

        self._lock = ReadWriteLock()
        self._snapshot: Optional[Snapshot] = None
        self._meta = Meta()
        self._cached_at: Optional[float] = None

        self._coalescer: RefreshCoalescer[Tuple[Snapshot, Meta]] = RefreshCoalescer(
            name="snapshot-refresh"
        )

    @classmethod
    def from_settings(cls, settings: Settings, fetcher: BaseFetcher) -> "SnapshotService":
        return cls(
            fetcher,
            cache_ttl=settings.cache_ttl,
            refresh_timeout=settings.scrape_timeout,
        )

    def get(self, timeout: Optional[float] = None) -> Tuple[Snapshot, Meta]:
        """
        Return the cached snapshot if it is fresh, otherwise refresh.

        Args:
            timeout: Seconds to wait for a refresh, None to wait until it settles

        Raises:
            ClsExporterError: If a refresh was needed, failed, and there is
                no previous snapshot to fall back to
            RefreshTimeoutError: If ``timeout`` elapsed while waiting and
                there is no previous snapshot
        """
        with self._lock.read():
            snapshot = self._snapshot
            meta = self._meta
            cached_at = self._cached_at

        if (
            snapshot is not None
            and cached_at is not None
            and self._clock() - cached_at < self.cache_ttl
        ):
            return snapshot, replace(meta, cache_hit=True, duration_seconds=0.0)

        return self.refresh(timeout=timeout)

    def refresh(self, timeout: Optional[float] = None) -> Tuple[Snapshot, Meta]:
        """
        Fetch a new snapshot, coalescing with any refresh already in flight.

        Every caller joined to one refresh gets the same (snapshot, meta)
        pair or the same error. A caller whose ``timeout`` elapses while a
        previous snapshot exists gets that snapshot marked stale (``up=0``)
        instead; the shared refresh keeps running.

        Raises:
            ClsExporterError: If the fetch failed and there is no previous
                snapshot to fall back to
            RefreshTimeoutError: If ``timeout`` elapsed while waiting and
                there is no previous snapshot
        """
        start = self._clock()
        try:
            return self._coalescer.do(self._refresh_once, timeout=timeout)
        except RefreshTimeoutError as e:
            with self._lock.read():
                stale = self._snapshot
            if stale is None:
                raise
            waited = self._clock() - start
            logger.warning(
                f"CLS refresh still running after {waited:.3f}s, serving snapshot "
                f"from {stale.collected_at.isoformat()}: {e}"
            )
            return stale, Meta(
                up=0.0,
                duration_seconds=waited,
                timestamp=stale.collected_at,
                cache_hit=False,
            )

    def latest(self) -> Tuple[Optional[Snapshot], Meta, bool]:
        """
        Non-blocking read of the cached state.

        Returns:
            (snapshot, meta, ok); ``ok`` is False until a snapshot exists
        """
        with self._lock.read():
            if self._snapshot is None:
                return None, Meta(), False
            return self._snapshot, self._meta, True

    def meta(self) -> Meta:
        with self._lock.read():
            return self._meta

    def _refresh_once(self) -> Tuple[Snapshot, Meta]:
        ctx = FetchContext(timeout=self.refresh_timeout, clock=self._clock)
        start = self._clock()
        try:
            snapshot = self.fetcher.fetch_snapshot(ctx)
        except Exception as e:
            duration = self._clock() - start
            return self._commit_failure(e, duration)

        duration = self._clock() - start
        meta = Meta(
            up=1.0,
            duration_seconds=duration,
            timestamp=snapshot.collected_at,
            cache_hit=False,
        )
        with self._lock.write():
            self._snapshot = snapshot
            self._meta = meta
            self._cached_at = self._clock()

        logger.info(
            f"Refreshed CLS snapshot in {duration:.3f}s "
            f"({len(snapshot.server_usage)} servers, "
            f"{snapshot.active_lease_total:g} active leases)"
        )
        return snapshot, meta

    def _commit_failure(
        self, error: Exception, duration: float
    ) -> Tuple[Snapshot, Meta]:
        with self._lock.write():
            stale = self._snapshot
            if stale is not None:
                meta = Meta(
                    up=0.0,
                    duration_seconds=duration,
                    timestamp=stale.collected_at,
                    cache_hit=False,
                )
                self._meta = meta
            else:
                self._meta = Meta(
                    up=0.0,
                    duration_seconds=duration,
                    timestamp=self._now(),
                    cache_hit=False,
                )

        if stale is None:
            logger.error(f"CLS refresh failed with no cached snapshot: {error}")
            raise error

        logger.warning(
            f"CLS refresh failed after {duration:.3f}s, serving snapshot from "
            f"{stale.collected_at.isoformat()}: {error}"
        )
        return stale, meta
