"""
CLI command: snapshot

Runs a single CLS fetch and prints the result as JSON.
"""

import json
import logging
from dataclasses import asdict

import click

from clsexporter.context import FetchContext
from clsexporter.errors import ClsExporterError, ConfigurationError
from clsexporter.fetch.fetcher import ClsSnapshotFetcher
from clsexporter.fetch.snapshot import Snapshot
from clsexporter.settings import Settings

logger = logging.getLogger("clsexporter.cli.snapshot")


def summarize(snapshot: Snapshot, rows: bool = False) -> dict:
    """JSON-ready view of a snapshot: counts and totals, optionally every row."""
    summary = {
        "collected_at": snapshot.collected_at.isoformat(),
        "active_lease_total": snapshot.active_lease_total,
        "row_counts": snapshot.row_counts(),
    }
    if rows:
        data = asdict(snapshot)
        data.pop("collected_at")
        data.pop("active_lease_total")
        summary["rows"] = data
    return summary


@click.command("snapshot")
@click.option("--nvidia-org-name", default=None, help="NVIDIA org name / ID")
@click.option("--nvidia-api-key", default=None, help="NVIDIA Licensing State API key")
@click.option("--rows", is_flag=True, help="Print every row, not only the counts")
@click.pass_context
def cli(ctx, nvidia_org_name, nvidia_api_key, rows: bool) -> None:
    """
    Fetch one snapshot from CLS and print it as JSON.
    """
    base: Settings = (ctx.obj or {}).get("settings") or Settings()
    try:
        settings = base.with_overrides(
            nvidia_org_name=nvidia_org_name, nvidia_api_key=nvidia_api_key
        )
        settings.require_credentials()
    except (ConfigurationError, ValueError) as e:
        raise click.UsageError(str(e))

    fetcher = ClsSnapshotFetcher.from_settings(settings)
    try:
        snapshot = fetcher.fetch_snapshot(FetchContext(timeout=settings.scrape_timeout))
    except ClsExporterError as e:
        logger.error(f"Snapshot fetch failed: {e}")
        click.echo(f"Error: {e}", err=True)
        raise click.Abort()
    finally:
        fetcher.client.close()

    click.echo(json.dumps(summarize(snapshot, rows=rows), indent=2, default=str))
