"""
Snapshot cache with TTL, refresh coalescing and stale fallback.
"""

from .coalescer import RefreshCoalescer
from .service import Meta, SnapshotService

__all__ = ["Meta", "RefreshCoalescer", "SnapshotService"]
