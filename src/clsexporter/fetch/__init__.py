"""
Concurrent fetch-and-aggregate pipeline producing license snapshots.
"""

from .fetcher import ClsSnapshotFetcher, LeaseTally
from .fetcher_base import BaseFetcher
from .snapshot import (
    EntitlementFeatureRow,
    PoolUsageRow,
    ServerActiveLeaseRow,
    ServerFeatureActiveLeaseRow,
    ServerFeatureCapacityRow,
    ServerUsageRow,
    Snapshot,
)
from .taskgroup import TaskGroup

__all__ = [
    "BaseFetcher",
    "ClsSnapshotFetcher",
    "EntitlementFeatureRow",
    "LeaseTally",
    "PoolUsageRow",
    "ServerActiveLeaseRow",
    "ServerFeatureActiveLeaseRow",
    "ServerFeatureCapacityRow",
    "ServerUsageRow",
    "Snapshot",
    "TaskGroup",
]
