"""
Metric adapters publishing CLS snapshots over Prometheus and OTLP.
"""

from .collector import SnapshotCollector, build_registry
from .observations import METRICS, MetricSpec, Observation, build_observations
from .otel import MetricsPusher

__all__ = [
    "METRICS",
    "MetricSpec",
    "MetricsPusher",
    "Observation",
    "SnapshotCollector",
    "build_observations",
    "build_registry",
]
