"""
CLI command: serve

Runs the exporter: Prometheus endpoint over HTTP and, when enabled, the
periodic OTLP push, both backed by one shared snapshot cache.
"""

import logging
from typing import Optional

import click
import uvicorn

from clsexporter.api.server import create_app
from clsexporter.cache.service import SnapshotService
from clsexporter.errors import ConfigurationError
from clsexporter.exporter.collector import SnapshotCollector, build_registry
from clsexporter.exporter.otel import MetricsPusher
from clsexporter.fetch.fetcher import ClsSnapshotFetcher
from clsexporter.settings import Settings

logger = logging.getLogger("clsexporter.cli.serve")


@click.command("serve")
@click.option("--listen-address", default=None, help="Address to listen on (host:port or :port)")
@click.option("--metrics-path", default=None, help="Path where metrics are exposed")
@click.option("--nvidia-org-name", default=None, help="NVIDIA org name / ID")
@click.option("--nvidia-api-key", default=None, help="NVIDIA Licensing State API key")
@click.option("--nvidia-api-base-url", default=None, help="NVIDIA CLS API base URL")
@click.option(
    "--nvidia-service-instance-id", default=None,
    help="Service instance ID sent as x-nv-service-instance-id",
)
@click.option("--cache-ttl", default=None, help="Snapshot cache TTL (e.g. 60s)")
@click.option("--scrape-timeout", default=None, help="Timeout for each CLS refresh (e.g. 20s)")
@click.option("--parallelism", type=int, default=None, help="Max concurrent CLS API calls")
@click.option("--request-timeout", default=None, help="Timeout for a single CLS API call (e.g. 15s)")
@click.option("--otel/--no-otel", "otel_enabled", default=None, help="Toggle OTLP metrics export")
@click.option("--otel-endpoint", default=None, help="OTLP/HTTP metrics endpoint")
@click.option("--otel-service-name", default=None, help="OTEL service.name")
@click.option("--otel-service-instance-id", default=None, help="OTEL service.instance.id")
@click.option("--otel-push-interval", default=None, help="OTEL push interval (e.g. 60s)")
@click.pass_context
def cli(
    ctx,
    listen_address: Optional[str],
    metrics_path: Optional[str],
    nvidia_org_name: Optional[str],
    nvidia_api_key: Optional[str],
    nvidia_api_base_url: Optional[str],
    nvidia_service_instance_id: Optional[str],
    cache_ttl: Optional[str],
    scrape_timeout: Optional[str],
    parallelism: Optional[int],
    request_timeout: Optional[str],
    otel_enabled: Optional[bool],
    otel_endpoint: Optional[str],
    otel_service_name: Optional[str],
    otel_service_instance_id: Optional[str],
    otel_push_interval: Optional[str],
) -> None:
    """
    Serve NVIDIA CLS metrics.
    """
    base: Settings = (ctx.obj or {}).get("settings") or Settings()
    try:
        settings = base.with_overrides(
            listen_address=listen_address,
            metrics_path=metrics_path,
            nvidia_org_name=nvidia_org_name,
            nvidia_api_key=nvidia_api_key,
            nvidia_api_base_url=nvidia_api_base_url,
            nvidia_service_instance_id=nvidia_service_instance_id,
            cache_ttl=cache_ttl,
            scrape_timeout=scrape_timeout,
            parallelism=parallelism,
            request_timeout=request_timeout,
            otel_enabled=otel_enabled,
            otel_endpoint=otel_endpoint,
            otel_service_name=otel_service_name,
            otel_service_instance_id=otel_service_instance_id,
            otel_push_interval=otel_push_interval,
        )
        settings.require_credentials()
        host, port = settings.listen_host_port()
    except (ConfigurationError, ValueError) as e:
        raise click.UsageError(str(e))

    fetcher = ClsSnapshotFetcher.from_settings(settings)
    service = SnapshotService.from_settings(settings, fetcher)
    collector = SnapshotCollector(
        service, settings.nvidia_org_name, scrape_timeout=settings.scrape_timeout
    )
    app = create_app(build_registry(collector), settings.metrics_path)

    pusher = None
    if settings.otel_enabled:
        pusher = MetricsPusher.from_settings(settings, service)
        pusher.start()
        logger.info(
            f"OTLP export enabled endpoint={settings.otel_endpoint} "
            f"interval={settings.otel_push_interval:g}s"
        )

    logger.info(
        f"Starting exporter on {settings.effective_listen_address} "
        f"path={settings.metrics_path} org={settings.nvidia_org_name} "
        f"cache_ttl={settings.cache_ttl:g}s scrape_timeout={settings.scrape_timeout:g}s "
        f"parallelism={settings.parallelism}"
    )
    try:
        uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())
    finally:
        if pusher is not None:
            pusher.shutdown()
        fetcher.client.close()
        logger.info("Exporter stopped")
