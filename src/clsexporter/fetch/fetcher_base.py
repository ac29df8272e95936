"""
Abstract base class for snapshot fetchers.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from ..context import FetchContext
from .snapshot import Snapshot

logger = logging.getLogger(__name__)


class BaseFetcher(ABC):
    """
    Capability consumed by the snapshot cache: produce one complete
    ``Snapshot`` per call or raise. Implementations keep no state between
    calls and have no side effects beyond network I/O.
    """

    def __init__(self):
        self.logger = logging.getLogger(
            f"{self.__class__.__module__}.{self.__class__.__name__}"
        )

    @abstractmethod
    def fetch_snapshot(self, ctx: FetchContext) -> Snapshot:
        """
        Fetch and aggregate a new snapshot.

        Raises:
            ClsExporterError: If any part of the fetch fails; no partial
                snapshot is ever returned
        """
        pass

    def __str__(self) -> str:
        return f"{self.__class__.__name__}()"
