"""High-water mark commands for the eventsync CLI.

Commands:
- watermark show: Show the high-water mark of collections
- watermark reset: Clear the high-water mark of a collection
"""

from __future__ import annotations

import click

from eventsync.client.cli.config import get_records_path, load_fetch_configuration, open_cache


@click.group()
def watermark() -> None:
    """Inspect and reset high-water marks.

    The high-water mark is the highest event id seen for a collection. It
    enables incremental fetches.
    """


@watermark.command("show")
@click.argument("collections", nargs=-1, required=True)
@click.option("--derive", is_flag=True,
              help="Also show the highest id among locally synchronized records.")
def show_cmd(collections: tuple[str, ...], derive: bool) -> None:
    """Show the high-water mark of COLLECTIONS."""
    from eventsync.client.store import SyncedRecordStore
    from eventsync.client.sync.watermark import HighWaterMarkTracker

    tracker = HighWaterMarkTracker(open_cache(load_fetch_configuration()))

    store = SyncedRecordStore(get_records_path()) if derive else None
    try:
        for key in collections:
            mark = tracker.get(key)
            line = f"{key}: {mark if mark is not None else 'not set'}"
            if store is not None:
                derived = tracker.derive_from_store(key, store)
                line += f" (local records: {derived if derived is not None else 'none'})"
            click.echo(line)
    finally:
        if store is not None:
            store.close()


@watermark.command("reset")
@click.argument("collection")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
def reset_cmd(collection: str, yes: bool) -> None:
    """Clear the high-water mark of COLLECTION.

    The next fetch of the collection uses full pagination again.
    """
    from eventsync.client.sync.watermark import HighWaterMarkTracker

    if not yes and not click.confirm(f"Reset the high-water mark of {collection}?"):
        click.echo("Aborted.")
        return

    tracker = HighWaterMarkTracker(open_cache(load_fetch_configuration()))
    tracker.reset(collection)
    click.echo(f"High-water mark of {collection} reset.")
