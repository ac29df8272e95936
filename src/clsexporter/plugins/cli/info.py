"""
CLI command: info

Displays the cls-exporter version, the effective configuration and the
metrics it publishes.
"""

import logging

import click

from clsexporter import __version__
from clsexporter.exporter.observations import METRICS
from clsexporter.settings import Settings

logger = logging.getLogger("clsexporter.cli.info")


@click.command("info")
@click.pass_context
def cli(ctx) -> None:
    """
    Show package version, configuration and exported metrics.
    """
    settings: Settings = (ctx.obj or {}).get("settings") or Settings()

    click.echo(f"cls-exporter version: {__version__}")

    click.echo("\nConfiguration:")
    for key, value in sorted(settings.redacted().items()):
        click.echo(f"  {key}: {value}")

    click.echo("\nExported metrics:")
    for spec in METRICS:
        click.echo(f"  - {spec.name}")
