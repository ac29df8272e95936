"""
cls-exporter: license utilization metrics for the NVIDIA Cloud License Service.

Subpackages
-----------
- cls:       CLS REST API client and payload models
- fetch:     Concurrent fetch-and-aggregate pipeline producing snapshots
- cache:     TTL snapshot cache with refresh coalescing
- exporter:  Prometheus (pull) and OpenTelemetry (push) adapters
- api:       HTTP server exposing the scrape endpoint
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__: str = version("cls-exporter")
except PackageNotFoundError:  # local editable install
    __version__ = "0.0.0-dev"

__all__ = [
    "api",
    "cache",
    "cls",
    "exporter",
    "fetch",
]
