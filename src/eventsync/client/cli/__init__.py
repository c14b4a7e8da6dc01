"""Command-line interface for eventsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- fetch: Fetch all events of one collection
- fetch-parallel: Fetch several collections concurrently
- fast: List new current events in fast mode
- watermark: Inspect and reset high-water marks
- maintain: Purge and refresh the cache
- config: Manage settings
"""

from __future__ import annotations

import logging
import sys

import click

from eventsync.client.cli.config import (
    get_cache_path,
    get_config_dir,
    get_config_file,
    get_records_path,
    load_config,
    save_config,
)
from eventsync.client.cli.fetch import fast, fetch, fetch_parallel
from eventsync.client.cli.maintenance import maintain
from eventsync.client.cli.settings import config_cmd
from eventsync.client.cli.watermark import watermark

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool) -> None:
    """Send eventsync logs to stderr.

    Args:
        verbose: Show debug messages instead of warnings and errors only.
    """
    eventsync_logger = logging.getLogger("eventsync")
    # Remove any existing handlers
    for handler in eventsync_logger.handlers[:]:
        eventsync_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    eventsync_logger.addHandler(handler)
    eventsync_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    eventsync_logger.propagate = False


@click.group()
@click.version_option(package_name="eventsync")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs.")
def cli(verbose: bool) -> None:
    """eventsync - Fetch and synchronize events from a remote catalog."""
    setup_logging(verbose)


# Fetch commands
cli.add_command(fetch)
cli.add_command(fetch_parallel)
cli.add_command(fast)

# Cache commands
cli.add_command(watermark)
cli.add_command(maintain)

# Settings
cli.add_command(config_cmd)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    "setup_logging",
    # Config utilities
    "get_cache_path",
    "get_config_dir",
    "get_config_file",
    "get_records_path",
    "load_config",
    "save_config",
]
