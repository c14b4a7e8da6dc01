"""Fetch commands for the eventsync CLI.

Commands:
- fetch: Fetch all events of one collection
- fetch-parallel: Fetch several collections concurrently
- fast: List new current events using locally synchronized records
"""

from __future__ import annotations

import json
import sys
from datetime import datetime

import click

from eventsync.client.cli.config import (
    get_records_path,
    load_catalog_config,
    load_fetch_configuration,
    open_cache,
)


def _print_events(events: list, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps([event.to_dict() for event in events], indent=2))
        return
    for event in sorted(events, key=lambda e: e.id):
        start = event.start_date.date().isoformat() if event.start_date else "?"
        end = event.end_date.date().isoformat() if event.end_date else "?"
        click.echo(f"  {event.id:>8}  {event.number:<20} {start} .. {end}  {event.title}")


@click.command()
@click.argument("collection")
@click.option("--from", "from_date", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Start of the date window (default: one year ago).")
@click.option("--to", "to_date", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="End of the date window (default: two years ahead).")
@click.option("--force", is_flag=True, help="Ignore cached results.")
@click.option("--batch-size", type=int, default=None, help="Override the initial batch size.")
@click.option("--json", "as_json", is_flag=True, help="Print events as JSON.")
def fetch(
    collection: str,
    from_date: datetime | None,
    to_date: datetime | None,
    force: bool,
    batch_size: int | None,
    as_json: bool,
) -> None:
    """Fetch all events of COLLECTION.

    Uses cached results when available, the incremental strategy when a
    high-water mark exists, and adaptive pagination otherwise.
    """
    from eventsync.client.api import CatalogClient, CatalogError
    from eventsync.client.sync.fetcher import AdaptiveFetcher
    from eventsync.core.types import FetchError

    config = load_fetch_configuration(batch_size=batch_size)
    cache = open_cache(config)

    with CatalogClient(load_catalog_config()) as client:
        fetcher = AdaptiveFetcher(client, cache, config)
        try:
            result = fetcher.fetch_all_events(collection, from_date, to_date, force_refresh=force)
        except (FetchError, CatalogError, ValueError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    if as_json:
        _print_events(result.events, as_json=True)
        return

    stats = result.stats
    click.echo(f"Fetched {len(result)} events for {collection}")
    _print_events(result.events, as_json=False)
    click.echo(
        f"API calls: {stats.api_calls}, errors: {stats.errors}, "
        f"cache hits: {stats.cache_hits}, time: {stats.execution_time:.2f}s"
    )


@click.command("fetch-parallel")
@click.argument("collections", nargs=-1, required=True)
@click.option("--from", "from_date", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Start of the date window (default: one year ago).")
@click.option("--to", "to_date", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="End of the date window (default: two years ahead).")
@click.option("--threads", "-t", type=int, default=None, help="Number of worker threads.")
@click.option("--no-recovery", is_flag=True, help="Do not retry failed collections serially.")
def fetch_parallel(
    collections: tuple[str, ...],
    from_date: datetime | None,
    to_date: datetime | None,
    threads: int | None,
    no_recovery: bool,
) -> None:
    """Fetch events for several COLLECTIONS concurrently.

    Exits with status 1 if any collection could not be fetched.
    """
    from eventsync.client.api import CatalogClient
    from eventsync.client.sync.workers import ParallelCoordinator
    from eventsync.core.types import (
        ConfigurationError,
        FetchFailure,
        ParallelFetchError,
    )

    config = load_fetch_configuration(
        num_threads=threads,
        enable_recovery=False if no_recovery else None,
    )
    cache = open_cache(config)

    with CatalogClient(load_catalog_config()) as client:
        coordinator = ParallelCoordinator(client, cache, config)
        try:
            results = coordinator.fetch_for_collections(collections, from_date, to_date)
        except (ConfigurationError, ParallelFetchError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    failures = 0
    for key, outcome in results.items():
        if isinstance(outcome, FetchFailure):
            failures += 1
            click.echo(f"  {key}: FAILED ({outcome.message})")
        else:
            click.echo(f"  {key}: {len(outcome)} events ({outcome.stats.api_calls} API calls)")

    if coordinator.restarts:
        click.echo(f"Restarted {coordinator.restarts} stalled workers")
    if failures:
        click.echo(f"Error: {failures} of {len(results)} collections failed", err=True)
        sys.exit(1)


@click.command()
@click.argument("collection")
@click.option("--init-mark", is_flag=True, help="Initialize the fast-mode high-water mark first.")
@click.option("--record", is_flag=True, help="Record the listed events as synchronized.")
@click.option("--json", "as_json", is_flag=True, help="Print events as JSON.")
def fast(collection: str, init_mark: bool, record: bool, as_json: bool) -> None:
    """List new current events of COLLECTION in fast mode.

    Looks at records already synchronized locally and fetches one batch of
    events around the highest known id.
    """
    from eventsync.client.api import CatalogClient
    from eventsync.client.store import SyncedRecordStore
    from eventsync.client.sync.fast_mode import FastModeSynchronizer

    config = load_fetch_configuration()
    cache = open_cache(config)

    with CatalogClient(load_catalog_config()) as client, \
            SyncedRecordStore(get_records_path()) as store:
        synchronizer = FastModeSynchronizer(client, cache, store, config)
        if init_mark:
            mark = synchronizer.initialize_high_water_mark(collection)
            click.echo(f"High water mark for {collection}: {mark or 'not set'}")
        events = synchronizer.get_new_events(collection)
        if record:
            for event in events:
                store.record_synced(collection, event.id)

    if as_json:
        _print_events(events, as_json=True)
        return
    click.echo(f"Found {len(events)} current events for {collection}")
    _print_events(events, as_json=False)
