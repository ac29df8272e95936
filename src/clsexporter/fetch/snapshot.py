"""
Snapshot value produced by one fetch cycle.

All rows are frozen dataclasses and row sets are tuples: a refresh builds a
new ``Snapshot`` and never mutates a published one. Row order inside a row
set follows task completion order and carries no meaning.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Tuple


@dataclass(frozen=True)
class EntitlementFeatureRow:
    """
    Contracted capacity for one feature under a virtual group.
    """

    virtual_group_id: int
    virtual_group_name: str
    feature_name: str
    feature_version: str
    product_name: str
    license_type: str
    total_quantity: float
    in_use_quantity: float
    unassigned_quantity: float


@dataclass(frozen=True)
class ServerFeatureCapacityRow:
    """
    Capacity a license server declares for one feature.
    """

    virtual_group_id: int
    virtual_group_name: str
    server_id: str
    server_name: str
    server_status: str
    deployed_on: str
    leasing_mode: str
    feature_name: str
    product_name: str
    license_type: str
    total_quantity: float


@dataclass(frozen=True)
class ServerUsageRow:
    """
    Allocation rollup for one license server.

    ``in_use`` is the active-lease total when lease data exists for the
    server, otherwise the sum of its pools' in-use figures.
    """

    virtual_group_id: int
    virtual_group_name: str
    server_id: str
    server_name: str
    server_status: str
    deployed_on: str
    leasing_mode: str
    allocated: float
    in_use: float
    available: float


@dataclass(frozen=True)
class ServerActiveLeaseRow:
    virtual_group_id: int
    virtual_group_name: str
    server_id: str
    server_name: str
    active_leases: float


@dataclass(frozen=True)
class ServerFeatureActiveLeaseRow:
    virtual_group_id: int
    virtual_group_name: str
    server_id: str
    server_name: str
    feature_name: str
    product_name: str
    license_type: str
    active_leases: float


@dataclass(frozen=True)
class PoolUsageRow:
    virtual_group_id: int
    virtual_group_name: str
    server_id: str
    server_name: str
    pool_id: str
    pool_name: str
    feature_name: str
    product_name: str
    license_type: str
    allocated: float
    in_use: float
    available: float


def available_quantity(allocated: float, in_use: float) -> float:
    """Remaining quantity, clamped at zero."""
    return max(0.0, allocated - in_use)


@dataclass(frozen=True)
class Snapshot:
    """
    Aggregate result of one fetch cycle.
    """

    collected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    entitlement_features: Tuple[EntitlementFeatureRow, ...] = ()
    server_feature_capacity: Tuple[ServerFeatureCapacityRow, ...] = ()
    server_usage: Tuple[ServerUsageRow, ...] = ()
    server_active_leases: Tuple[ServerActiveLeaseRow, ...] = ()
    server_feature_active_leases: Tuple[ServerFeatureActiveLeaseRow, ...] = ()
    pool_usage: Tuple[PoolUsageRow, ...] = ()
    active_lease_total: float = 0.0

    def row_counts(self) -> dict:
        """Number of rows per row set, for logging and the snapshot command."""
        return {
            "entitlement_features": len(self.entitlement_features),
            "server_feature_capacity": len(self.server_feature_capacity),
            "server_usage": len(self.server_usage),
            "server_active_leases": len(self.server_active_leases),
            "server_feature_active_leases": len(self.server_feature_active_leases),
            "pool_usage": len(self.pool_usage),
        }
