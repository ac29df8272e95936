"""
Tests for the FastAPI exporter server.
"""

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry, Gauge
from prometheus_client.registry import Collector

from clsexporter.api.server import create_app


@pytest.fixture
def registry():
    registry = CollectorRegistry()
    gauge = Gauge("nvidia_cls_up", "Scrape status", ["org_name"], registry=registry)
    gauge.labels(org_name="lic-test").set(1)
    return registry


class BrokenCollector(Collector):
    def collect(self):
        raise RuntimeError("collector exploded")


class TestServer:
    """Test cases for the HTTP endpoints."""

    def test_metrics_endpoint(self, registry):
        """Test that the metrics path serves the Prometheus text format."""
        client = TestClient(create_app(registry, "/metrics"))

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert 'nvidia_cls_up{org_name="lic-test"} 1.0' in response.text

    def test_custom_metrics_path(self, registry):
        """Test that a path without a leading slash is normalized."""
        client = TestClient(create_app(registry, "cls"))

        assert client.get("/cls").status_code == 200
        assert client.get("/metrics").status_code == 404

    def test_healthz(self, registry):
        """Test the liveness endpoint."""
        client = TestClient(create_app(registry))

        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.text == "ok\n"

    def test_root_banner_names_metrics_path(self, registry):
        """Test that the banner points at the metrics path."""
        client = TestClient(create_app(registry, "/cls-metrics"))

        response = client.get("/")

        assert response.status_code == 200
        assert "/cls-metrics" in response.text

    def test_unhandled_error_becomes_500(self):
        """Test that a failing collector yields a logged 500 response."""
        registry = CollectorRegistry(auto_describe=False)
        registry.register(BrokenCollector())
        client = TestClient(create_app(registry), raise_server_exceptions=False)

        response = client.get("/metrics")

        assert response.status_code == 500
