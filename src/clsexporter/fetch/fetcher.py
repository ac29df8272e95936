"""
Hierarchical fetch-and-aggregate pipeline for the CLS API.

One call walks the API in four phases and returns a complete ``Snapshot``
or raises:

1. Virtual groups (single request); entitlement rows come straight from
   the nested entitlement payload.
2. License servers per group (fan-out). Servers inherit their group's id
   and name when the payload omits them.
3. Active leases per (group, service instance) (fan-out). Leases are
   attributed to a server, deduplicated by lease id across every query and
   totalled per server, per server feature and overall.
4. License pools per (group, server) (fan-out). Produces server feature
   capacity, pool usage and a per-server usage rollup whose in-use figure is
   replaced by the phase 3 total when lease data exists for the server.

Phase 3 completes before phase 4 starts. Each fan-out phase runs in a
``TaskGroup`` bounded by the configured parallelism; the first failure
cancels the phase and aborts the call.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..cls.client import ClsClient
from ..cls.models import (
    ActiveLeaseClient,
    LicenseServer,
    LicenseServerFeature,
    VirtualGroup,
)
from ..context import FetchContext
from ..errors import ClsExporterError, FetchError
from ..settings import Settings
from .fetcher_base import BaseFetcher
from .snapshot import (
    EntitlementFeatureRow,
    PoolUsageRow,
    ServerActiveLeaseRow,
    ServerFeatureActiveLeaseRow,
    ServerFeatureCapacityRow,
    ServerUsageRow,
    Snapshot,
    available_quantity,
)
from .taskgroup import TaskGroup

logger = logging.getLogger(__name__)

DEFAULT_PARALLELISM = 8
UNKNOWN = "unknown"


def first_non_blank(*values: Optional[str]) -> str:
    """Return the first value that is not empty after stripping, else ``""``."""
    for value in values:
        trimmed = (value or "").strip()
        if trimmed:
            return trimmed
    return ""


def extract_entitlement_rows(groups: List[VirtualGroup]) -> List[EntitlementFeatureRow]:
    """
    Build entitlement rows from the virtual groups' nested entitlement data.
    """
    return [
        EntitlementFeatureRow(
            virtual_group_id=group.id,
            virtual_group_name=group.name,
            feature_name=feature.feature_name,
            feature_version=feature.feature_version,
            product_name=feature.product_name,
            license_type=feature.license_type,
            total_quantity=feature.total_quantity,
            in_use_quantity=feature.in_use_quantity,
            unassigned_quantity=feature.unassigned_quantity,
        )
        for group in groups
        for feature in group.entitlement_features()
    ]


@dataclass(frozen=True)
class _FeatureKey:
    virtual_group_id: int
    virtual_group_name: str
    server_id: str
    server_name: str
    feature_name: str
    product_name: str
    license_type: str


class LeaseTally:
    """
    Running active-lease aggregates shared by the phase 3 tasks.

    A lease with a non-empty id is counted once no matter how many
    service-instance queries return it; leases without an id are always
    counted. Non-positive lease counts count as 1.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._seen_lease_ids: Set[str] = set()
        self.server_totals: Dict[str, float] = {}
        self.feature_totals: Dict[_FeatureKey, float] = {}
        self.total = 0.0

    def add(self, lease_id: str, count: float, key: _FeatureKey) -> bool:
        """
        Record one lease. Returns False when the lease id was already seen.
        """
        lease_id = (lease_id or "").strip()
        if count <= 0:
            count = 1.0
        with self._lock:
            if lease_id:
                if lease_id in self._seen_lease_ids:
                    return False
                self._seen_lease_ids.add(lease_id)
            self.server_totals[key.server_id] = (
                self.server_totals.get(key.server_id, 0.0) + count
            )
            self.feature_totals[key] = self.feature_totals.get(key, 0.0) + count
            self.total += count
        return True


@dataclass
class _PoolResults:
    capacity: List[ServerFeatureCapacityRow]
    usage: List[ServerUsageRow]
    pools: List[PoolUsageRow]


class ClsSnapshotFetcher(BaseFetcher):
    """
    Fetcher producing snapshots from the CLS API.

    Args:
        client: CLS API client
        parallelism: Maximum concurrent API calls per fan-out phase
        now: Wall clock used for the snapshot collection time
    """

    def __init__(
        self,
        client: ClsClient,
        parallelism: int = DEFAULT_PARALLELISM,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        super().__init__()
        self.client = client
        self.parallelism = parallelism if parallelism > 0 else DEFAULT_PARALLELISM
        self._now = now

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClsSnapshotFetcher":
        return cls(ClsClient.from_settings(settings), parallelism=settings.parallelism)

    def fetch_snapshot(self, ctx: FetchContext) -> Snapshot:
        try:
            groups = self.client.list_virtual_groups(ctx)
        except ClsExporterError as e:
            raise FetchError(f"list virtual groups: {e}") from e

        collected_at = self._now()
        entitlement_rows = extract_entitlement_rows(groups)
        self.logger.debug(
            f"Fetched {len(groups)} virtual groups, {len(entitlement_rows)} entitlement features"
        )

        servers_by_group = self._fetch_servers(ctx, groups)
        tally = self._fetch_active_leases(ctx, servers_by_group)
        pool_results = self._fetch_pools(ctx, groups, servers_by_group, tally)

        return Snapshot(
            collected_at=collected_at,
            entitlement_features=tuple(entitlement_rows),
            server_feature_capacity=tuple(pool_results.capacity),
            server_usage=tuple(pool_results.usage),
            server_active_leases=tuple(
                self._server_active_lease_rows(servers_by_group, tally)
            ),
            server_feature_active_leases=tuple(self._feature_active_lease_rows(tally)),
            pool_usage=tuple(pool_results.pools),
            active_lease_total=tally.total,
        )

    # -- phase 2 -----------------------------------------------------------

    def _fetch_servers(
        self, ctx: FetchContext, groups: List[VirtualGroup]
    ) -> Dict[int, List[LicenseServer]]:
        servers_by_group: Dict[int, List[LicenseServer]] = {}
        lock = threading.Lock()

        def list_servers(task_ctx: FetchContext, group: VirtualGroup) -> None:
            try:
                servers = self.client.list_license_servers(task_ctx, group.id)
            except ClsExporterError as e:
                raise FetchError(
                    f"list license servers for virtual-group {group.id}: {e}"
                ) from e
            servers = [server.with_group(group) for server in servers]
            with lock:
                servers_by_group[group.id] = servers

        with TaskGroup(ctx, self.parallelism, name="servers") as task_group:
            for group in groups:
                task_group.submit(list_servers, group)

        self.logger.debug(
            f"Fetched {sum(len(s) for s in servers_by_group.values())} license servers"
        )
        return servers_by_group

    # -- phase 3 -----------------------------------------------------------

    def _fetch_active_leases(
        self, ctx: FetchContext, servers_by_group: Dict[int, List[LicenseServer]]
    ) -> LeaseTally:
        tally = LeaseTally()

        with TaskGroup(ctx, self.parallelism, name="leases") as task_group:
            for group_id, servers in servers_by_group.items():
                if not servers:
                    continue

                servers_by_id = {server.id: server for server in servers}
                features_by_id: Dict[str, LicenseServerFeature] = {}
                service_instance_ids: Set[str] = set()
                for server in servers:
                    for feature in server.license_server_features:
                        features_by_id[feature.id] = feature
                    if server.service_instance_id.strip():
                        service_instance_ids.add(server.service_instance_id)

                for service_instance_id in sorted(service_instance_ids):
                    task_group.submit(
                        self._collect_leases,
                        group_id,
                        servers[0].virtual_group_name,
                        service_instance_id,
                        servers_by_id,
                        features_by_id,
                        tally,
                    )

        self.logger.debug(
            f"Counted {tally.total:g} active leases on {len(tally.server_totals)} servers"
        )
        return tally

    def _collect_leases(
        self,
        ctx: FetchContext,
        group_id: int,
        group_name: str,
        service_instance_id: str,
        servers_by_id: Dict[str, LicenseServer],
        features_by_id: Dict[str, LicenseServerFeature],
        tally: LeaseTally,
    ) -> None:
        try:
            clients = self.client.list_active_leases(ctx, group_id, service_instance_id)
        except ClsExporterError as e:
            raise FetchError(
                f"list active leases for virtual-group {group_id} "
                f"service-instance {service_instance_id}: {e}"
            ) from e

        for client in clients:
            server_id = self._resolve_server_id(client, servers_by_id)
            if not server_id:
                self.logger.debug(
                    f"Skipping {len(client.leases)} leases without a license server "
                    f"in virtual-group {group_id}"
                )
                continue

            server = servers_by_id.get(server_id)
            server_name = first_non_blank(
                client.additional_properties.license_server_name,
                server.name if server else "",
            ) or UNKNOWN
            virtual_group_name = first_non_blank(
                server.virtual_group_name if server else "", group_name
            )

            for lease in client.leases:
                feature = features_by_id.get(lease.license_allotment_feature_id)
                key = _FeatureKey(
                    virtual_group_id=group_id,
                    virtual_group_name=virtual_group_name,
                    server_id=server_id,
                    server_name=server_name,
                    feature_name=first_non_blank(
                        lease.feature_name, feature.feature_name if feature else ""
                    ) or UNKNOWN,
                    product_name=first_non_blank(
                        feature.product_name if feature else ""
                    ) or UNKNOWN,
                    license_type=first_non_blank(
                        feature.license_type if feature else ""
                    ) or UNKNOWN,
                )
                tally.add(lease.lease_id, lease.lease_count, key)

    @staticmethod
    def _resolve_server_id(
        client: ActiveLeaseClient, servers_by_id: Dict[str, LicenseServer]
    ) -> str:
        server_id = client.additional_properties.license_server_id.strip()
        if not server_id and len(servers_by_id) == 1:
            server_id = next(iter(servers_by_id))
        return server_id

    @staticmethod
    def _server_active_lease_rows(
        servers_by_group: Dict[int, List[LicenseServer]], tally: LeaseTally
    ) -> List[ServerActiveLeaseRow]:
        rows = []
        for group_id, servers in servers_by_group.items():
            for server in servers:
                if server.id not in tally.server_totals:
                    continue
                rows.append(
                    ServerActiveLeaseRow(
                        virtual_group_id=group_id,
                        virtual_group_name=server.virtual_group_name,
                        server_id=server.id,
                        server_name=server.name,
                        active_leases=tally.server_totals[server.id],
                    )
                )
        return rows

    @staticmethod
    def _feature_active_lease_rows(tally: LeaseTally) -> List[ServerFeatureActiveLeaseRow]:
        return [
            ServerFeatureActiveLeaseRow(
                virtual_group_id=key.virtual_group_id,
                virtual_group_name=key.virtual_group_name,
                server_id=key.server_id,
                server_name=key.server_name,
                feature_name=key.feature_name,
                product_name=key.product_name,
                license_type=key.license_type,
                active_leases=count,
            )
            for key, count in tally.feature_totals.items()
        ]

    # -- phase 4 -----------------------------------------------------------

    def _fetch_pools(
        self,
        ctx: FetchContext,
        groups: List[VirtualGroup],
        servers_by_group: Dict[int, List[LicenseServer]],
        tally: LeaseTally,
    ) -> _PoolResults:
        results = _PoolResults(capacity=[], usage=[], pools=[])
        lock = threading.Lock()
        active_by_server = dict(tally.server_totals)

        def collect_pools(task_ctx: FetchContext, group_id: int, server: LicenseServer):
            capacity, usage, pools = self._server_rows(
                task_ctx, group_id, server, active_by_server.get(server.id)
            )
            with lock:
                results.capacity.extend(capacity)
                results.usage.append(usage)
                results.pools.extend(pools)

        with TaskGroup(ctx, self.parallelism, name="pools") as task_group:
            for group in groups:
                for server in servers_by_group.get(group.id, []):
                    task_group.submit(collect_pools, group.id, server)

        self.logger.debug(
            f"Fetched {len(results.pools)} pool features across {len(results.usage)} servers"
        )
        return results

    def _server_rows(
        self,
        ctx: FetchContext,
        group_id: int,
        server: LicenseServer,
        active_leases: Optional[float],
    ) -> Tuple[List[ServerFeatureCapacityRow], ServerUsageRow, List[PoolUsageRow]]:
        """
        Fetch one server's pools and derive its capacity, usage and pool rows.
        """
        try:
            pools = self.client.list_license_pools(ctx, group_id, server.id)
        except ClsExporterError as e:
            raise FetchError(
                f"list license pools for server {server.id} in virtual-group {group_id}: {e}"
            ) from e

        features_by_id: Dict[str, LicenseServerFeature] = {}
        capacity = []
        for feature in server.license_server_features:
            features_by_id[feature.id] = feature
            capacity.append(
                ServerFeatureCapacityRow(
                    virtual_group_id=server.virtual_group_id,
                    virtual_group_name=server.virtual_group_name,
                    server_id=server.id,
                    server_name=server.name,
                    server_status=server.status,
                    deployed_on=server.deployed_on,
                    leasing_mode=server.leasing_mode,
                    feature_name=feature.feature_name,
                    product_name=feature.product_name,
                    license_type=feature.license_type,
                    total_quantity=feature.total_quantity,
                )
            )

        pool_rows = []
        allocated_total = 0.0
        in_use_total = 0.0
        for pool in pools:
            for pool_feature in pool.license_pool_features:
                feature = features_by_id.get(
                    pool_feature.license_server_feature_id, LicenseServerFeature()
                )
                allocated = pool_feature.total_allotment
                in_use = pool_feature.in_use
                allocated_total += allocated
                in_use_total += in_use
                pool_rows.append(
                    PoolUsageRow(
                        virtual_group_id=server.virtual_group_id,
                        virtual_group_name=server.virtual_group_name,
                        server_id=server.id,
                        server_name=server.name,
                        pool_id=pool.id,
                        pool_name=pool.name,
                        feature_name=feature.feature_name,
                        product_name=feature.product_name,
                        license_type=feature.license_type,
                        allocated=allocated,
                        in_use=in_use,
                        available=available_quantity(allocated, in_use),
                    )
                )

        # active-lease totals replace the pool-derived in-use figure
        if active_leases is not None:
            in_use_total = active_leases

        usage = ServerUsageRow(
            virtual_group_id=server.virtual_group_id,
            virtual_group_name=server.virtual_group_name,
            server_id=server.id,
            server_name=server.name,
            server_status=server.status,
            deployed_on=server.deployed_on,
            leasing_mode=server.leasing_mode,
            allocated=allocated_total,
            in_use=in_use_total,
            available=available_quantity(allocated_total, in_use_total),
        )
        return capacity, usage, pool_rows
