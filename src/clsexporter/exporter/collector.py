"""
Prometheus pull adapter.

``SnapshotCollector`` is a custom ``prometheus_client`` collector: every
scrape calls ``SnapshotService.get`` (which serves the cache while it is
fresh) and renders the result. A refresh that fails with nothing cached
produces only the status series with ``up=0``; a stale snapshot is still
rendered in full alongside ``up=0``.
"""

import logging
from dataclasses import replace
from typing import Dict, Iterator, Optional

from prometheus_client import CollectorRegistry
from prometheus_client.core import GaugeMetricFamily
from prometheus_client.gc_collector import GCCollector
from prometheus_client.platform_collector import PlatformCollector
from prometheus_client.process_collector import ProcessCollector
from prometheus_client.registry import Collector

from ..cache.service import SnapshotService
from .observations import METRICS, build_meta_observations, build_observations

logger = logging.getLogger(__name__)


class SnapshotCollector(Collector):
    """
    Collector rendering the cached CLS snapshot on each scrape.

    Args:
        service: Shared snapshot service
        org_name: Value of the ``org_name`` label on every series
        scrape_timeout: Seconds a scrape waits for a refresh
    """

    def __init__(
        self,
        service: SnapshotService,
        org_name: str,
        scrape_timeout: Optional[float] = None,
    ):
        self.service = service
        self.org_name = org_name
        self.scrape_timeout = scrape_timeout

    def describe(self) -> Iterator[GaugeMetricFamily]:
        # Registration must not trigger a CLS fetch.
        for family in self._families().values():
            yield family

    def collect(self) -> Iterator[GaugeMetricFamily]:
        try:
            snapshot, meta = self.service.get(timeout=self.scrape_timeout)
        except Exception as e:
            logger.error(f"CLS scrape failed: {e}")
            observations = build_meta_observations(replace(self.service.meta(), up=0.0))
        else:
            observations = build_observations(snapshot, meta)

        families = self._families()

        for observation in observations:
            family = families[observation.name]
            label_values = [self.org_name] + [value for _, value in observation.labels]
            family.add_metric(label_values, observation.value)

        for family in families.values():
            if family.samples:
                yield family

    @staticmethod
    def _families() -> Dict[str, GaugeMetricFamily]:
        return {
            spec.name: GaugeMetricFamily(
                spec.name, spec.description, labels=["org_name", *spec.labels]
            )
            for spec in METRICS
        }


def build_registry(collector: SnapshotCollector) -> CollectorRegistry:
    """
    Registry holding the snapshot collector plus process, platform and GC
    metrics of the exporter itself.
    """
    registry = CollectorRegistry(auto_describe=False)
    ProcessCollector(registry=registry)
    PlatformCollector(registry=registry)
    GCCollector(registry=registry)
    registry.register(collector)
    return registry
