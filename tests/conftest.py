"""
Fixtures and test configuration for the cls-exporter test suite.
"""

import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from clsexporter.cls.models import (
    ActiveLeaseClient,
    LicensePool,
    LicenseServer,
    VirtualGroup,
)
from clsexporter.context import FetchContext
from clsexporter.fetch.fetcher_base import BaseFetcher
from clsexporter.fetch.snapshot import Snapshot

ORG = "lic-test"

CONFIG_ENV_VARS = [
    "LISTEN_ADDRESS", "PORT", "METRICS_PATH", "NVIDIA_API_BASE_URL",
    "NVIDIA_ORG_NAME", "NLS_ORG_NAME", "NVIDIA_API_KEY", "NLS_API_KEY",
    "NVIDIA_SERVICE_INSTANCE_ID", "SCRAPE_TIMEOUT", "CACHE_TTL", "PARALLELISM",
    "REQUEST_TIMEOUT", "OTEL_ENABLED", "OTEL_ENDPOINT", "OTEL_SERVICE_NAME",
    "OTEL_SERVICE_INSTANCE_ID", "OTEL_PUSH_INTERVAL", "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host environment variables out of Settings."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class FakeClsClient:
    """
    In-memory stand-in for ClsClient serving decoded payload models.

    ``errors`` maps a call key to the exception that call raises:
    ``("groups",)``, ``("servers", vg_id)``, ``("pools", vg_id, server_id)``
    or ``("leases", vg_id, service_instance_id)``. ``delays`` maps a call key
    to seconds the call sleeps; calls are recorded in ``calls`` when they
    complete.
    """

    def __init__(
        self,
        groups: List[Dict[str, Any]],
        servers: Optional[Dict[int, List[Dict[str, Any]]]] = None,
        pools: Optional[Dict[Tuple[int, str], List[Dict[str, Any]]]] = None,
        leases: Optional[Dict[Tuple[int, str], List[Dict[str, Any]]]] = None,
        errors: Optional[Dict[tuple, Exception]] = None,
        delays: Optional[Dict[tuple, float]] = None,
    ):
        self.groups = [VirtualGroup.model_validate(g) for g in groups]
        self.servers = {
            key: [LicenseServer.model_validate(s) for s in value]
            for key, value in (servers or {}).items()
        }
        self.pools = {
            key: [LicensePool.model_validate(p) for p in value]
            for key, value in (pools or {}).items()
        }
        self.leases = {
            key: [ActiveLeaseClient.model_validate(c) for c in value]
            for key, value in (leases or {}).items()
        }
        self.errors = errors or {}
        self.delays = delays or {}
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def _call(self, ctx: FetchContext, key: tuple) -> None:
        ctx.check()
        if key in self.delays:
            time.sleep(self.delays[key])
        with self._lock:
            self.calls.append(key)
        if key in self.errors:
            raise self.errors[key]

    def list_virtual_groups(self, ctx):
        self._call(ctx, ("groups",))
        return list(self.groups)

    def list_license_servers(self, ctx, virtual_group_id):
        self._call(ctx, ("servers", virtual_group_id))
        return list(self.servers.get(virtual_group_id, []))

    def list_license_pools(self, ctx, virtual_group_id, server_id):
        self._call(ctx, ("pools", virtual_group_id, server_id))
        return list(self.pools.get((virtual_group_id, server_id), []))

    def list_active_leases(self, ctx, virtual_group_id, service_instance_id):
        self._call(ctx, ("leases", virtual_group_id, service_instance_id))
        return list(self.leases.get((virtual_group_id, service_instance_id), []))

    def close(self):
        pass


class StaticFetcher(BaseFetcher):
    """
    Fetcher returning (or raising) queued outcomes in order; the last
    outcome repeats once the queue is exhausted.
    """

    def __init__(self, *outcomes):
        super().__init__()
        self.outcomes = list(outcomes)
        self.calls = 0
        self._lock = threading.Lock()

    def fetch_snapshot(self, ctx):
        with self._lock:
            index = min(self.calls, len(self.outcomes) - 1)
            self.calls += 1
        outcome = self.outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class BlockingFetcher(BaseFetcher):
    """Fetcher that blocks until released, counting calls."""

    def __init__(self, snapshot: Snapshot):
        super().__init__()
        self.snapshot = snapshot
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def fetch_snapshot(self, ctx):
        self.calls += 1
        self.started.set()
        self.release.wait(5)
        return self.snapshot


def group(group_id: int = 1, name: str = "VG One", features=None) -> Dict[str, Any]:
    return {
        "id": group_id,
        "name": name,
        "entitlements": [
            {"entitlementProductKeys": [{"entitlementFeatures": features or []}]}
        ],
    }


def server(
    server_id: str,
    service_instance_id: str = "",
    features=None,
    **extra,
) -> Dict[str, Any]:
    payload = {
        "id": server_id,
        "name": f"server-{server_id}",
        "status": "ENABLED",
        "deployedOn": "CLOUD",
        "leasingMode": "STANDARD",
        "serviceInstanceId": service_instance_id,
        "licenseServerFeatures": features or [],
    }
    payload.update(extra)
    return payload


def pool(pool_id: str, *features) -> Dict[str, Any]:
    return {"id": pool_id, "name": f"pool-{pool_id}", "licensePoolFeatures": list(features)}


def pool_feature(feature_id: str, allotment: float, in_use: float) -> Dict[str, Any]:
    return {
        "licenseServerFeatureId": feature_id,
        "totalAllotment": allotment,
        "inUse": in_use,
    }


def lease_client(server_id: str = "", server_name: str = "", *leases) -> Dict[str, Any]:
    return {
        "additionalProperties": {
            "license_server_id": server_id,
            "license_server_name": server_name,
        },
        "leases": list(leases),
    }


def lease(lease_id: str, count: float = 1, feature_id: str = "", feature_name: str = ""):
    return {
        "leaseId": lease_id,
        "leaseCount": count,
        "licenseAllotmentFeatureId": feature_id,
        "featureName": feature_name,
    }


@pytest.fixture
def collected_at():
    return datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_snapshot(collected_at):
    """A small hand-built snapshot covering every row set."""
    from clsexporter.fetch.snapshot import (
        EntitlementFeatureRow,
        PoolUsageRow,
        ServerActiveLeaseRow,
        ServerFeatureActiveLeaseRow,
        ServerFeatureCapacityRow,
        ServerUsageRow,
    )

    return Snapshot(
        collected_at=collected_at,
        entitlement_features=(
            EntitlementFeatureRow(1, "VG One", "vGPU", "16.0", "NVIDIA vGPU", "CONCURRENT", 100, 40, 10),
        ),
        server_feature_capacity=(
            ServerFeatureCapacityRow(
                1, "VG One", "s1", "server-s1", "ENABLED", "CLOUD", "STANDARD",
                "vGPU", "NVIDIA vGPU", "CONCURRENT", 90,
            ),
        ),
        server_usage=(
            ServerUsageRow(
                1, "VG One", "s1", "server-s1", "ENABLED", "CLOUD", "STANDARD", 100, 3, 97,
            ),
        ),
        server_active_leases=(ServerActiveLeaseRow(1, "VG One", "s1", "server-s1", 3),),
        server_feature_active_leases=(
            ServerFeatureActiveLeaseRow(
                1, "VG One", "s1", "server-s1", "vGPU", "NVIDIA vGPU", "CONCURRENT", 3
            ),
        ),
        pool_usage=(
            PoolUsageRow(
                1, "VG One", "s1", "server-s1", "p1", "pool-p1", "vGPU", "NVIDIA vGPU",
                "CONCURRENT", 100, 10, 90,
            ),
        ),
        active_lease_total=3,
    )
