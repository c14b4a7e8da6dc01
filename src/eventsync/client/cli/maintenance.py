"""Cache maintenance command for the eventsync CLI.

Commands:
- maintain: Purge the cache if due and refresh upcoming events

This command can be run manually or via cron for scheduled maintenance.
"""

from __future__ import annotations

import click

from eventsync.client.cli.config import (
    load_catalog_config,
    load_fetch_configuration,
    open_cache,
)


@click.command()
@click.option(
    "--purge-interval-days",
    "-d",
    type=int,
    default=7,
    show_default=True,
    help="Purge the whole cache if the last purge is older than N days.",
)
def maintain(purge_interval_days: int) -> None:
    """Purge the cache if due and refresh upcoming events.

    Force-refreshes the next year of events for every active collection
    and records fetch statistics.
    """
    from eventsync.client.api import CatalogClient
    from eventsync.client.sync.fetcher import AdaptiveFetcher
    from eventsync.client.sync.maintenance import CacheMaintenance

    config = load_fetch_configuration(enable_incremental=True)
    cache = open_cache(config)

    with CatalogClient(load_catalog_config()) as client:
        maintenance = CacheMaintenance(
            cache,
            AdaptiveFetcher(client, cache, config),
            client,
            full_purge_interval=purge_interval_days * 24 * 60 * 60,
        )
        report = maintenance.run()

    if report.purged:
        click.echo("Cache purged.")
    for key, count in report.refreshed.items():
        click.echo(f"  {key}: {count} events")
    for key, message in report.failed.items():
        click.echo(f"  {key}: FAILED ({message})")
    click.echo(f"Refreshed {len(report.refreshed)} collections, {len(report.failed)} failed.")
