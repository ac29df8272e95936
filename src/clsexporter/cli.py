"""
Core cls-exporter CLI: dynamically loads commands from plugins/cli.
"""

import importlib
import logging
import pathlib
import pkgutil

import click

from clsexporter.settings import Settings

# Package-wide logging; module loggers propagate here.
logger = logging.getLogger("clsexporter")
handler = logging.StreamHandler()
formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
handler.setFormatter(formatter)
logger.addHandler(handler)

# Load global settings
settings = Settings()
logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))


@click.group()
@click.option("--log-level", default=settings.log_level, help="Set logging level")
@click.pass_context
def main(ctx, log_level):
    """
    NVIDIA Cloud License Service exporter
    """
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings

    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise click.BadParameter(f"unknown log level {log_level!r}", param_hint="--log-level")
    logger.setLevel(level)
    settings.log_level = log_level.upper()


def load_commands():
    """
    Auto-discover and register click commands from src/clsexporter/plugins/cli/*.py
    Each plugin module must define a top-level `cli` click.Command.
    """
    plugins_path = pathlib.Path(__file__).parent / "plugins" / "cli"
    package = "clsexporter.plugins.cli"
    for _, module_name, _ in pkgutil.iter_modules([str(plugins_path)]):
        full_name = f"{package}.{module_name}"
        try:
            module = importlib.import_module(full_name)
        except ImportError as e:
            logger.error(f"Failed to load plugin {full_name}: {e}")
            continue
        cmd = getattr(module, "cli", None)
        if isinstance(cmd, click.Command):
            main.add_command(cmd)


# Load all plugin commands
load_commands()

if __name__ == "__main__":
    main()
