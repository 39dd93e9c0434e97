"""Command-line interface for mirrorsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- watch: Mirror a source directory to a target and keep it updated
- check: Validate configuration and show the rsync command lines
"""

from __future__ import annotations

import click

from mirrorsync import __version__
from mirrorsync.cli.config import (
    build_config,
    get_config_dir,
    get_config_file,
    load_config,
)
from mirrorsync.cli.watch import check, watch


@click.group()
@click.version_option(version=__version__, prog_name="mirrorsync")
def cli() -> None:
    """mirrorsync - low-latency one-way directory mirroring over rsync."""


cli.add_command(watch)
cli.add_command(check)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "build_config",
    "check",
    "cli",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "main",
    "watch",
]
