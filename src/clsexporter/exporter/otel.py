"""
OpenTelemetry push adapter.

``MetricsPusher`` registers one observable gauge per catalogued metric on an
SDK ``MeterProvider`` whose periodic reader exports over OTLP/HTTP. Gauge
callbacks only read ``SnapshotService.latest()``; a background thread
refreshes the shared service right away and then on every push interval, so
metric export never waits on a live CLS fetch.
"""

import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.metrics import CallbackOptions, Meter
from opentelemetry.metrics import Observation as OtelObservation
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    MetricExporter,
    MetricExportResult,
    MetricReader,
    MetricsData,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import SERVICE_NAME, Resource

from ..cache.service import Meta, SnapshotService
from ..errors import ConfigurationError
from ..fetch.snapshot import Snapshot
from ..settings import Settings
from .observations import METRICS, Observation, build_observations

logger = logging.getLogger(__name__)

DEFAULT_PUSH_INTERVAL = 60.0
SERVICE_INSTANCE_ID = "service.instance.id"


class LoggingMetricExporter(MetricExporter):
    """
    Wraps a metric exporter and logs the outcome of every export.
    """

    def __init__(self, exporter: MetricExporter, endpoint: str):
        super().__init__()
        self.exporter = exporter
        self.endpoint = endpoint

    def export(
        self, metrics_data: MetricsData, timeout_millis: float = 10_000, **kwargs
    ) -> MetricExportResult:
        result = self.exporter.export(metrics_data, timeout_millis=timeout_millis, **kwargs)
        if result != MetricExportResult.SUCCESS:
            logger.error(f"OTLP export failed endpoint={self.endpoint}")
            return result

        scopes = 0
        metric_count = 0
        for resource_metrics in metrics_data.resource_metrics:
            for scope_metrics in resource_metrics.scope_metrics:
                scopes += 1
                metric_count += len(scope_metrics.metrics)
        logger.info(
            f"OTLP export succeeded endpoint={self.endpoint} "
            f"scopes={scopes} metrics={metric_count}"
        )
        return result

    def force_flush(self, timeout_millis: float = 10_000) -> bool:
        return self.exporter.force_flush(timeout_millis=timeout_millis)

    def shutdown(self, timeout_millis: float = 30_000, **kwargs) -> None:
        self.exporter.shutdown(timeout_millis=timeout_millis, **kwargs)


class MetricsPusher:
    """
    Periodic OTLP exporter for the shared snapshot service.

    Args:
        service: Shared snapshot service
        org_name: Value of the ``org_name`` attribute on every series
        service_name: OTEL ``service.name`` and meter name
        service_instance_id: OTEL ``service.instance.id``
        push_interval: Seconds between refreshes and between exports
        endpoint: OTLP/HTTP metrics endpoint, used when no reader is given
        reader: Metric reader to use instead of the periodic OTLP reader
    """

    def __init__(
        self,
        service: SnapshotService,
        org_name: str,
        service_name: str,
        service_instance_id: str = "unknown",
        push_interval: float = DEFAULT_PUSH_INTERVAL,
        endpoint: Optional[str] = None,
        reader: Optional[MetricReader] = None,
    ):
        if not (service_name or "").strip():
            raise ConfigurationError("otel service name is required")
        if reader is None and not (endpoint or "").strip():
            raise ConfigurationError("otel endpoint is required")

        self.service = service
        self.org_name = org_name
        self.push_interval = push_interval if push_interval > 0 else DEFAULT_PUSH_INTERVAL

        if reader is None:
            exporter = LoggingMetricExporter(OTLPMetricExporter(endpoint=endpoint), endpoint)
            reader = PeriodicExportingMetricReader(
                exporter, export_interval_millis=self.push_interval * 1000
            )
        self.reader = reader

        resource = Resource.create(
            {SERVICE_NAME: service_name, SERVICE_INSTANCE_ID: service_instance_id}
        )
        self.meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
        self._register_gauges(self.meter_provider.get_meter(service_name))

        self._render_lock = threading.Lock()
        self._rendered: Optional[Tuple[Snapshot, Meta, Dict[str, List[Observation]]]] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_settings(cls, settings: Settings, service: SnapshotService) -> "MetricsPusher":
        return cls(
            service,
            org_name=settings.nvidia_org_name,
            service_name=settings.otel_service_name,
            service_instance_id=settings.otel_service_instance_id,
            push_interval=settings.otel_push_interval,
            endpoint=settings.otel_endpoint,
        )

    def _register_gauges(self, meter: Meter) -> None:
        for spec in METRICS:
            meter.create_observable_gauge(
                spec.name, callbacks=[self._callback(spec.name)], description=spec.description
            )

    def _callback(self, name: str) -> Callable[[CallbackOptions], Iterable[OtelObservation]]:
        def observe(options: CallbackOptions) -> Iterable[OtelObservation]:
            return [
                OtelObservation(item.value, item.attributes(self.org_name))
                for item in self._observations().get(name, [])
            ]

        return observe

    def _observations(self) -> Dict[str, List[Observation]]:
        """
        Observations of the latest snapshot grouped by metric name, rendered
        once per (snapshot, meta) pair.
        """
        snapshot, meta, ok = self.service.latest()
        if not ok:
            return {}
        with self._render_lock:
            rendered = self._rendered
            if rendered is not None and rendered[0] is snapshot and rendered[1] == meta:
                return rendered[2]
            grouped: Dict[str, List[Observation]] = {}
            for item in build_observations(snapshot, meta):
                grouped.setdefault(item.name, []).append(item)
            self._rendered = (snapshot, meta, grouped)
            return grouped

    def refresh_once(self) -> None:
        try:
            self.service.refresh()
        except Exception:
            logger.exception("OTEL refresh failed")

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name="otel-refresh", daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        self.refresh_once()
        while not self._stop.wait(self.push_interval):
            self.refresh_once()

    def shutdown(self, timeout: float = 10.0) -> None:
        """
        Stop the refresh loop and flush pending metrics.
        """
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("OTEL refresh loop still running at shutdown")
        self.meter_provider.shutdown(timeout_millis=timeout * 1000)
