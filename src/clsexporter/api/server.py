"""
FastAPI server for cls-exporter.

This module builds the HTTP application serving the Prometheus exposition
at the configured metrics path, a plain-text liveness probe at `/healthz`
and a short banner at `/`. Every request is logged with its latency; an
unhandled exception becomes a logged 500 response.
"""

import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from clsexporter import __version__

logger = logging.getLogger(__name__)


def create_app(registry: CollectorRegistry, metrics_path: str = "/metrics") -> FastAPI:
    """
    Build the exporter application.

    Args:
        registry: Registry rendered on every metrics request
        metrics_path: Path of the Prometheus endpoint

    Returns:
        Configured FastAPI application
    """
    if not metrics_path.startswith("/"):
        metrics_path = f"/{metrics_path}"

    app = FastAPI(title="NVIDIA CLS Exporter", version=__version__)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"Unhandled error serving {request.method} {request.url.path}")
            response = PlainTextResponse("internal server error\n", status_code=500)
        duration = time.perf_counter() - start
        client = request.client.host if request.client else "-"
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} "
            f"{duration * 1000:.1f}ms client={client} "
            f"user_agent={request.headers.get('user-agent', '-')!r}"
        )
        return response

    # Sync handler: collection may block on a CLS refresh, so it runs in
    # the threadpool rather than on the event loop.
    @app.get(metrics_path, summary="Prometheus metrics", tags=["metrics"])
    def metrics() -> Response:
        return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz", summary="Health check", tags=["system"])
    async def healthz() -> PlainTextResponse:
        """Return a plain liveness marker."""
        return PlainTextResponse("ok\n")

    @app.get("/", summary="Banner", tags=["system"])
    async def root() -> PlainTextResponse:
        return PlainTextResponse(
            f"NVIDIA CLS exporter\nMetrics are exposed at {metrics_path}\n"
        )

    return app
