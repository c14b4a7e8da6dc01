"""Fast-mode synchronization.

Fast mode skips the full fetch strategies. It looks at the records that
were already synchronized locally, re-fetches one batch of events starting
a safety margin below the highest known id, and keeps only events that
are still running and start in the current or next calendar year.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from eventsync.client.sync.watermark import HighWaterMarkTracker
from eventsync.core.cache import ApiCache
from eventsync.core.config import FetchConfiguration
from eventsync.core.types import CatalogQuery, Event, EventFilter, Pagination, RecordStore

logger = logging.getLogger(__name__)

FAST_MODE_KEY_TEMPLATE = "fast_mode_high_water_mark_{}"


def filter_current_events(
    events: Iterable[Event], now: datetime | None = None
) -> list[Event]:
    """Keep events that have not ended and start this year or next year.

    Events without a start or end date are dropped.

    Args:
        events: Events to filter.
        now: Reference time (defaults to current UTC time).

    Returns:
        The matching events, in their original order.
    """
    now = now or datetime.now(UTC)
    years = (now.year, now.year + 1)
    return [
        event
        for event in events
        if event.is_current(now) and event.start_date.year in years
    ]


class FastModeSynchronizer:
    """Finds new events of a collection from the locally synchronized records."""

    def __init__(
        self,
        catalog: CatalogQuery,
        cache: ApiCache,
        store: RecordStore,
        config: FetchConfiguration | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        """Initialize the synchronizer.

        Args:
            catalog: Remote catalog to query.
            cache: Cache holding the fast-mode watermarks.
            store: Local store of synchronized records.
            config: Fetch settings (defaults when None).
            clock: Returns the current time (injectable for tests).
        """
        self._catalog = catalog
        self._store = store
        self._config = config or FetchConfiguration()
        self._clock = clock
        self._watermarks = HighWaterMarkTracker(cache, key_template=FAST_MODE_KEY_TEMPLATE)

    @property
    def watermarks(self) -> HighWaterMarkTracker:
        return self._watermarks

    def get_new_events(self, collection_key: str) -> list[Event]:
        """Fetch events that are likely not synchronized yet.

        Args:
            collection_key: Collection to inspect.

        Returns:
            Current and upcoming events (empty on remote errors).
        """
        highest = self._watermarks.derive_from_store(collection_key, self._store)

        if highest is None:
            events = self._fetch_events(
                collection_key, 0, self._config.fast_mode_initial_batch
            )
        else:
            from_key = max(highest - self._config.fast_mode_safety_margin, 0)
            events = self._fetch_events(
                collection_key, from_key, self._config.fast_mode_batch_size
            )
            logger.info(
                f"Events around highest synchronized id {highest} "
                f"for {collection_key}: {len(events)}"
            )

        current = filter_current_events(events, self._clock())
        logger.info(
            "Fast mode found %d current events for %s (%d fetched)",
            len(current),
            collection_key,
            len(events),
        )
        return current

    def initialize_high_water_mark(self, collection_key: str) -> int:
        """Fetch one batch and store its highest id as the watermark.

        Args:
            collection_key: Collection to initialize.

        Returns:
            The stored mark, or 0 if no events were found or the fetch
            failed (the mark then stays absent).
        """
        logger.info(f"Initializing high water mark for {collection_key}...")

        try:
            events = self._catalog.query(
                EventFilter(collection_key=collection_key),
                Pagination(
                    from_date=None,
                    to_date=None,
                    max_results=self._config.fast_mode_batch_size,
                ),
            )
        except Exception as e:
            logger.error(f"Error initializing high water mark for {collection_key}: {e}")
            return 0

        highest = max((event.id for event in events or []), default=0)
        if highest <= 0:
            logger.info(f"No events found for {collection_key}, leaving high water mark unset")
            return 0

        self._watermarks.set(collection_key, highest)
        return highest

    def _fetch_events(self, collection_key: str, from_key: int, batch_size: int) -> list[Event]:
        """Fetch one batch by id cursor. Errors are logged and yield []."""
        try:
            events = self._catalog.query(
                EventFilter(collection_key=collection_key),
                Pagination(
                    from_date=None,
                    to_date=None,
                    max_results=batch_size,
                    from_key=from_key,
                ),
            )
        except Exception as e:
            logger.error(f"Error fetching events for {collection_key}: {e}")
            return []
        return list(events or [])
