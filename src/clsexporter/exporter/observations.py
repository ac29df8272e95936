"""
Metric catalogue and snapshot rendering shared by the Prometheus and
OpenTelemetry adapters, so both protocols publish identical series.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..cache.service import Meta
from ..fetch.snapshot import Snapshot

METRIC_UP = "nvidia_cls_up"
METRIC_SCRAPE_DURATION = "nvidia_cls_scrape_duration_seconds"
METRIC_SCRAPE_TIMESTAMP = "nvidia_cls_scrape_timestamp_seconds"
METRIC_ACTIVE_LEASES_TOTAL = "nvidia_cls_active_leases_total"
METRIC_ENTITLEMENT_TOTAL = "nvidia_cls_entitlement_total_quantity"
METRIC_ENTITLEMENT_IN_USE = "nvidia_cls_entitlement_in_use_quantity"
METRIC_ENTITLEMENT_UNASSIGNED = "nvidia_cls_entitlement_unassigned_quantity"
METRIC_SERVER_INFO = "nvidia_cls_license_server_info"
METRIC_SERVER_ALLOCATED = "nvidia_cls_license_server_allocated_quantity"
METRIC_SERVER_IN_USE = "nvidia_cls_license_server_in_use_quantity"
METRIC_SERVER_AVAILABLE = "nvidia_cls_license_server_available_quantity"
METRIC_SERVER_ACTIVE_LEASES = "nvidia_cls_license_server_active_leases"
METRIC_SERVER_FEATURE_TOTAL = "nvidia_cls_license_server_feature_total_quantity"
METRIC_SERVER_FEATURE_ACTIVE = "nvidia_cls_license_server_feature_active_leases"
METRIC_POOL_ALLOCATED = "nvidia_cls_license_pool_allocated_quantity"
METRIC_POOL_IN_USE = "nvidia_cls_license_pool_in_use_quantity"
METRIC_POOL_AVAILABLE = "nvidia_cls_license_pool_available_quantity"

_ENTITLEMENT_LABELS = (
    "virtual_group_id", "virtual_group_name", "feature_name", "feature_version",
    "product_name", "license_type",
)
_SERVER_LABELS = ("virtual_group_id", "virtual_group_name", "server_id", "server_name")
_SERVER_INFO_LABELS = _SERVER_LABELS + ("status", "deployed_on", "leasing_mode")
_SERVER_FEATURE_LABELS = _SERVER_LABELS + ("feature_name", "product_name", "license_type")
_POOL_LABELS = _SERVER_LABELS + (
    "pool_id", "pool_name", "feature_name", "product_name", "license_type",
)


@dataclass(frozen=True)
class MetricSpec:
    name: str
    description: str
    labels: Tuple[str, ...] = ()


METRICS: Tuple[MetricSpec, ...] = (
    MetricSpec(METRIC_UP, "Whether the NVIDIA CLS scrape is successful (1 = up, 0 = down)."),
    MetricSpec(METRIC_SCRAPE_DURATION, "Time spent querying NVIDIA CLS APIs."),
    MetricSpec(
        METRIC_SCRAPE_TIMESTAMP,
        "Unix timestamp for when the scrape snapshot was collected.",
    ),
    MetricSpec(
        METRIC_ACTIVE_LEASES_TOTAL,
        "Total active leases across all license servers, deduplicated by lease id.",
    ),
    MetricSpec(
        METRIC_ENTITLEMENT_TOTAL,
        "Total entitlement quantity by virtual group and feature (contract capacity).",
        _ENTITLEMENT_LABELS,
    ),
    MetricSpec(
        METRIC_ENTITLEMENT_IN_USE,
        "In-use entitlement quantity by virtual group and feature.",
        _ENTITLEMENT_LABELS,
    ),
    MetricSpec(
        METRIC_ENTITLEMENT_UNASSIGNED,
        "Unassigned entitlement quantity by virtual group and feature.",
        _ENTITLEMENT_LABELS,
    ),
    MetricSpec(
        METRIC_SERVER_INFO, "Static information about a license server.", _SERVER_INFO_LABELS
    ),
    MetricSpec(
        METRIC_SERVER_ALLOCATED,
        "Quantity allotted to a license server's pools.",
        _SERVER_LABELS,
    ),
    MetricSpec(
        METRIC_SERVER_IN_USE,
        "Quantity in use on a license server (active leases when available).",
        _SERVER_LABELS,
    ),
    MetricSpec(
        METRIC_SERVER_AVAILABLE,
        "Allotted quantity still available on a license server.",
        _SERVER_LABELS,
    ),
    MetricSpec(
        METRIC_SERVER_ACTIVE_LEASES,
        "Active lease count by license server from CLS active-lease data.",
        _SERVER_LABELS,
    ),
    MetricSpec(
        METRIC_SERVER_FEATURE_TOTAL,
        "Total server feature capacity from license-server features.",
        _SERVER_FEATURE_LABELS,
    ),
    MetricSpec(
        METRIC_SERVER_FEATURE_ACTIVE,
        "Active lease count by server feature from CLS active-lease data.",
        _SERVER_FEATURE_LABELS,
    ),
    MetricSpec(
        METRIC_POOL_ALLOCATED, "Quantity allotted to a license pool feature.", _POOL_LABELS
    ),
    MetricSpec(
        METRIC_POOL_IN_USE, "Quantity in use in a license pool feature.", _POOL_LABELS
    ),
    MetricSpec(
        METRIC_POOL_AVAILABLE,
        "Allotted quantity still available in a license pool feature.",
        _POOL_LABELS,
    ),
)

METRICS_BY_NAME: Dict[str, MetricSpec] = {spec.name: spec for spec in METRICS}


@dataclass(frozen=True)
class Observation:
    """
    One value of one series. ``labels`` excludes ``org_name``.
    """

    name: str
    value: float
    labels: Tuple[Tuple[str, str], ...] = ()

    def attributes(self, org_name: str) -> Dict[str, str]:
        attrs = {"org_name": org_name}
        attrs.update(self.labels)
        return attrs


def safe_label(value: Optional[str]) -> str:
    value = (value or "").strip()
    return value or "unknown"


def _labels(names: Tuple[str, ...], *values) -> Tuple[Tuple[str, str], ...]:
    return tuple(
        (name, str(value) if isinstance(value, int) else safe_label(value))
        for name, value in zip(names, values)
    )


def build_meta_observations(meta: Meta) -> List[Observation]:
    """
    Status series rendered from cache metadata alone.
    """
    observations = [
        Observation(METRIC_UP, meta.up),
        Observation(METRIC_SCRAPE_DURATION, meta.duration_seconds),
    ]
    if meta.timestamp is not None:
        observations.append(
            Observation(METRIC_SCRAPE_TIMESTAMP, float(int(meta.timestamp.timestamp())))
        )
    return observations


def build_observations(snapshot: Optional[Snapshot], meta: Meta) -> List[Observation]:
    """
    Render a snapshot and its metadata into observations.

    With no snapshot only the status series are produced.
    """
    observations = build_meta_observations(meta)
    if snapshot is None:
        return observations

    observations.append(Observation(METRIC_ACTIVE_LEASES_TOTAL, snapshot.active_lease_total))

    for item in snapshot.entitlement_features:
        labels = _labels(
            _ENTITLEMENT_LABELS,
            item.virtual_group_id, item.virtual_group_name, item.feature_name,
            item.feature_version, item.product_name, item.license_type,
        )
        observations.append(Observation(METRIC_ENTITLEMENT_TOTAL, item.total_quantity, labels))
        observations.append(Observation(METRIC_ENTITLEMENT_IN_USE, item.in_use_quantity, labels))
        observations.append(
            Observation(METRIC_ENTITLEMENT_UNASSIGNED, item.unassigned_quantity, labels)
        )

    for item in snapshot.server_feature_capacity:
        labels = _labels(
            _SERVER_FEATURE_LABELS,
            item.virtual_group_id, item.virtual_group_name, item.server_id,
            item.server_name, item.feature_name, item.product_name, item.license_type,
        )
        observations.append(Observation(METRIC_SERVER_FEATURE_TOTAL, item.total_quantity, labels))

    for item in snapshot.server_feature_active_leases:
        labels = _labels(
            _SERVER_FEATURE_LABELS,
            item.virtual_group_id, item.virtual_group_name, item.server_id,
            item.server_name, item.feature_name, item.product_name, item.license_type,
        )
        observations.append(Observation(METRIC_SERVER_FEATURE_ACTIVE, item.active_leases, labels))

    for item in snapshot.server_usage:
        info_labels = _labels(
            _SERVER_INFO_LABELS,
            item.virtual_group_id, item.virtual_group_name, item.server_id,
            item.server_name, item.server_status, item.deployed_on, item.leasing_mode,
        )
        observations.append(Observation(METRIC_SERVER_INFO, 1.0, info_labels))

        labels = _labels(
            _SERVER_LABELS,
            item.virtual_group_id, item.virtual_group_name, item.server_id, item.server_name,
        )
        observations.append(Observation(METRIC_SERVER_ALLOCATED, item.allocated, labels))
        observations.append(Observation(METRIC_SERVER_IN_USE, item.in_use, labels))
        observations.append(Observation(METRIC_SERVER_AVAILABLE, item.available, labels))

    for item in snapshot.server_active_leases:
        labels = _labels(
            _SERVER_LABELS,
            item.virtual_group_id, item.virtual_group_name, item.server_id, item.server_name,
        )
        observations.append(Observation(METRIC_SERVER_ACTIVE_LEASES, item.active_leases, labels))

    for item in snapshot.pool_usage:
        labels = _labels(
            _POOL_LABELS,
            item.virtual_group_id, item.virtual_group_name, item.server_id,
            item.server_name, item.pool_id, item.pool_name, item.feature_name,
            item.product_name, item.license_type,
        )
        observations.append(Observation(METRIC_POOL_ALLOCATED, item.allocated, labels))
        observations.append(Observation(METRIC_POOL_IN_USE, item.in_use, labels))
        observations.append(Observation(METRIC_POOL_AVAILABLE, item.available, labels))

    return observations
