"""Adaptive event fetcher for a single collection.

This module provides:
- AdaptiveFetcher: Picks a fetch strategy, degrades between strategies on
  failure, de-duplicates and caches results
- merge_events: First-seen-wins merge by event id

Strategies:
- Incremental: only events above the collection's high-water mark,
  merged into the cached full list
- Adaptive pagination: id-cursor paging with a batch size that grows on
  success and shrinks on error
- Date-range chunking: sequential date windows with small pages, used
  when pagination keeps failing
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta
from typing import Any

from eventsync.client.sync.retry import (
    RATE_LIMIT_EXCEPTIONS,
    backoff_delay,
    retry_with_backoff,
)
from eventsync.client.sync.watermark import HighWaterMarkTracker
from eventsync.core.cache import ApiCache
from eventsync.core.config import FetchConfiguration
from eventsync.core.locks import LockFactory
from eventsync.core.types import (
    CatalogQuery,
    Event,
    EventFilter,
    FetchError,
    FetchRequest,
    FetchResult,
    FetchStats,
    Pagination,
    as_date,
)

logger = logging.getLogger(__name__)

FULL_LIST_KEY_TEMPLATE = "all_events_{}"


def merge_events(existing: Iterable[Event], incoming: Iterable[Event]) -> list[Event]:
    """Merge two event sequences by id. The first occurrence of an id wins.

    Args:
        existing: Events already known (kept as they are).
        incoming: New events (appended when their id is unseen).

    Returns:
        New list with each id exactly once.
    """
    merged: list[Event] = []
    seen: set[int] = set()
    for event in (*existing, *incoming):
        if event.id in seen:
            continue
        seen.add(event.id)
        merged.append(event)
    return merged


def highest_event_id(events: Iterable[Event]) -> int | None:
    """Highest event id in events, or None for an empty sequence."""
    return max((event.id for event in events), default=None)


class AdaptiveFetcher:
    """Fetches all events of one collection within a date window.

    Usage:
        fetcher = AdaptiveFetcher(catalog, cache, config)
        result = fetcher.fetch_all_events("V1", date(2024, 1, 1), date(2024, 12, 31))
        print(len(result), fetcher.stats.api_calls)

    The fetcher is synchronous and not thread-safe; parallel fetches use
    one fetcher per worker. Fetchers that share a cache should share a
    LockFactory, which guards the watermark and full-list entries.
    """

    def __init__(
        self,
        catalog: CatalogQuery,
        cache: ApiCache,
        config: FetchConfiguration | None = None,
        watermarks: HighWaterMarkTracker | None = None,
        sleep: Callable[[float], None] = time.sleep,
        locks: LockFactory | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            catalog: Remote catalog to query.
            cache: Cache for results, full lists and watermarks.
            config: Fetch settings (defaults when None).
            watermarks: Watermark tracker (built on cache and locks when None).
            sleep: Sleep function used for backoff (injectable for tests).
            locks: Named locks shared with other fetchers on the same cache.
        """
        self._catalog = catalog
        self._cache = cache
        self._config = config or FetchConfiguration()
        self._locks = locks or LockFactory()
        self._watermarks = watermarks or HighWaterMarkTracker(
            cache,
            locks=self._locks,
            lock_timeout=self._config.lock_timeout,
            lock_retries=self._config.lock_max_retries,
        )
        self._sleep = sleep
        self._stats = FetchStats()

    @property
    def config(self) -> FetchConfiguration:
        return self._config

    @property
    def watermarks(self) -> HighWaterMarkTracker:
        return self._watermarks

    @property
    def stats(self) -> FetchStats:
        """Statistics of the last fetch_all_events() call."""
        return self._stats

    # === Dispatcher ===

    def fetch_all_events(
        self,
        collection_key: str,
        from_date: date | datetime | None = None,
        to_date: date | datetime | None = None,
        force_refresh: bool = False,
    ) -> FetchResult:
        """Fetch all events of a collection within [from_date, to_date].

        Args:
            collection_key: Collection to fetch.
            from_date: Start of the window (default: one year ago).
            to_date: End of the window (default: two years ahead).
            force_refresh: Skip the result cache.

        Returns:
            De-duplicated events with the statistics of this call.

        Raises:
            FetchError: If pagination failed and date chunking is disabled.
            ValueError: If from_date is after to_date.
        """
        self._stats = FetchStats()
        started = time.monotonic()
        request = self._build_request(collection_key, from_date, to_date, force_refresh)

        logger.info(
            f"Starting event fetch for {collection_key} "
            f"({request.from_date} to {request.to_date})"
        )

        if not request.force_refresh:
            cached = self._load_events(request.cache_key)
            if cached is not None:
                self._stats.cache_hits += 1
                self._stats.total_events = len(cached)
                self._stats.execution_time = time.monotonic() - started
                logger.info(f"Using cached events: found {len(cached)} events")
                return FetchResult(events=cached, stats=self._stats)

        if self._can_use_incremental(collection_key):
            events = self._fetch_using_incremental_strategy(request)
        else:
            events = self._fetch_using_adaptive_pagination(request)

        self._store_events(request.cache_key, events)

        self._stats.total_events = len(events)
        self._stats.execution_time = time.monotonic() - started
        logger.info(
            "Fetch complete. Retrieved %d events in %.2f seconds (%d API calls, %d errors)",
            self._stats.total_events,
            self._stats.execution_time,
            self._stats.api_calls,
            self._stats.errors,
        )
        return FetchResult(events=events, stats=self._stats)

    def _build_request(
        self,
        collection_key: str,
        from_date: date | datetime | None,
        to_date: date | datetime | None,
        force_refresh: bool,
    ) -> FetchRequest:
        today = date.today()
        start = as_date(from_date) if from_date is not None else (
            today - timedelta(days=self._config.default_lookback_days)
        )
        end = as_date(to_date) if to_date is not None else (
            today + timedelta(days=self._config.default_lookahead_days)
        )
        if start > end:
            raise ValueError(f"from_date {start} is after to_date {end}")
        return FetchRequest(collection_key, start, end, force_refresh)

    def _can_use_incremental(self, collection_key: str) -> bool:
        """Check if the incremental strategy is enabled and has a watermark."""
        if not self._config.enable_incremental:
            return False
        return self._watermarks.get(collection_key) is not None

    # === Strategies ===

    def _fetch_using_incremental_strategy(self, request: FetchRequest) -> list[Event]:
        """Fetch only events above the watermark and merge into the full list.

        Falls back to adaptive pagination on error, or when the cached full
        list has expired and there is nothing to merge into.
        """
        key = request.collection_key
        mark = self._watermarks.get(key)
        previous = self._load_events(self._full_list_key(key))

        if mark is None or previous is None:
            logger.info(f"No cached full list for {key}, using pagination instead")
            return self._fetch_using_adaptive_pagination(request)

        logger.info(f"Using incremental strategy, fetching events after ID: {mark}")

        try:
            batch = self._query(
                request,
                Pagination(
                    from_date=request.from_date,
                    to_date=request.to_date,
                    max_results=self._config.batch_size,
                    from_key=mark + 1,
                ),
            )
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Incremental strategy failed: {e}")
            return self._fetch_using_adaptive_pagination(request)

        if not batch:
            logger.info(f"No new events found for {key}")
            return previous

        full_list_key = self._full_list_key(key)
        with self._locks.guard(
            full_list_key, self._config.lock_timeout, self._config.lock_max_retries
        ):
            # Another fetcher may have stored a newer list since the first read
            latest = self._load_events(full_list_key)
            if latest is not None:
                previous = latest
            merged = merge_events(previous, batch)
            self._watermarks.advance(key, highest_event_id(batch))
            self._store_events(full_list_key, merged)

        logger.info(
            "Incremental fetch successful: %d new events, %d total events",
            len(merged) - len(previous),
            len(merged),
        )
        return merged

    def _fetch_using_adaptive_pagination(self, request: FetchRequest) -> list[Event]:
        """Page through the collection by ascending id.

        Raises:
            FetchError: If the error threshold is reached and date chunking
                is disabled.
        """
        config = self._config
        key = request.collection_key
        logger.info(f"Using adaptive pagination strategy for {key}")

        events: list[Event] = []
        seen: set[int] = set()
        from_key = 0
        batch_size = config.batch_size
        consecutive_errors = 0

        while True:
            logger.debug(f"Fetching batch with from_key={from_key}, batch_size={batch_size}")
            try:
                batch = self._query(
                    request,
                    Pagination(
                        from_date=request.from_date,
                        to_date=request.to_date,
                        max_results=batch_size,
                        from_key=from_key,
                    ),
                )
            except Exception as e:
                self._stats.errors += 1
                consecutive_errors += 1
                logger.error(f"Error in pagination batch: {e}")

                if consecutive_errors >= config.error_threshold:
                    if not config.date_chunk_fallback:
                        raise FetchError(
                            f"Pagination for {key} failed {consecutive_errors} times "
                            "and date chunking is disabled"
                        ) from e
                    logger.warning("Error threshold reached, switching to date chunking")
                    events = merge_events(events, self._fetch_using_date_chunking(request))
                    break

                if config.adaptive_batch_sizing and batch_size > config.min_batch_size:
                    smaller = max(batch_size // 2, config.min_batch_size)
                    logger.info(f"Reducing batch size from {batch_size} to {smaller} after error")
                    batch_size = smaller

                delay = backoff_delay(config.retry_delay_base, consecutive_errors)
                logger.info(f"Retrying after {delay:.1f}s delay")
                self._sleep(delay)
                continue

            if not batch:
                break

            consecutive_errors = 0
            requested = batch_size

            if config.adaptive_batch_sizing and batch_size < config.max_batch_size:
                batch_size = min(batch_size * 2, config.max_batch_size)

            for event in batch:
                if event.id not in seen:
                    seen.add(event.id)
                    events.append(event)

            highest = highest_event_id(batch)
            if highest is None or highest < from_key:
                logger.info("No progress made in pagination, ending fetch")
                break
            from_key = highest + 1

            if len(batch) < requested:
                # Might be the last page; the next request confirms it
                logger.debug("Received fewer than batch size, checking for more data")

        if events:
            full_list_key = self._full_list_key(key)
            with self._locks.guard(
                full_list_key, self._config.lock_timeout, self._config.lock_max_retries
            ):
                self._watermarks.advance(key, highest_event_id(events))
                self._store_events(full_list_key, events)

        logger.info(f"Pagination complete, retrieved {len(events)} events")
        return events

    def _fetch_using_date_chunking(self, request: FetchRequest) -> list[Event]:
        """Fetch the window in sequential date chunks. Never raises.

        A failed chunk halves the chunk length for the rest of the window
        and the cursor skips one day past the failed chunk's start.
        """
        config = self._config
        logger.info(f"Using date chunking strategy for {request.collection_key}")

        events: list[Event] = []
        chunk_days = config.date_chunk_days
        current = request.from_date

        while current <= request.to_date:
            chunk_end = min(current + timedelta(days=chunk_days), request.to_date)
            logger.info(f"Fetching chunk from {current} to {chunk_end}")

            try:
                chunk = self._fetch_chunk(request, current, chunk_end)
            except Exception as e:
                self._stats.errors += 1
                logger.error(f"Error in date chunk {current} to {chunk_end}: {e}")
                chunk_days = max(config.min_chunk_days, chunk_days // 2)
                logger.info(f"Reducing chunk size to {chunk_days} days")
                current += timedelta(days=1)
                continue

            events = merge_events(events, chunk)
            current = chunk_end + timedelta(days=1)

        logger.info(f"Date chunking complete, retrieved {len(events)} events")
        return events

    def _fetch_chunk(self, request: FetchRequest, start: date, end: date) -> list[Event]:
        """Fetch one date chunk with small pages, following the id cursor."""
        page_size = self._config.min_batch_size
        events: list[Event] = []
        from_key: int | None = None

        while True:
            batch = self._query(
                request,
                Pagination(
                    from_date=start,
                    to_date=end,
                    max_results=page_size,
                    from_key=from_key,
                ),
            )
            if not batch:
                return events
            events = merge_events(events, batch)

            highest = highest_event_id(batch)
            if len(batch) < page_size or highest is None:
                return events
            if from_key is not None and highest < from_key:
                return events
            from_key = highest + 1

    # === Helpers ===

    def _query(self, request: FetchRequest, pagination: Pagination) -> list[Event]:
        """Run one catalog query, retrying when rate limited.

        Every attempt counts as an API call. An absent payload is returned
        as an empty list.
        """
        event_filter = EventFilter(collection_key=request.collection_key)

        def attempt() -> list[Event] | None:
            self._stats.api_calls += 1
            return self._catalog.query(event_filter, pagination)

        result = retry_with_backoff(
            attempt,
            max_retries=self._config.max_api_retries,
            initial_backoff=self._config.retry_delay_base,
            retryable_exceptions=RATE_LIMIT_EXCEPTIONS,
            sleep=self._sleep,
        )
        return list(result or [])

    @staticmethod
    def _full_list_key(collection_key: str) -> str:
        return FULL_LIST_KEY_TEMPLATE.format(collection_key)

    def _load_events(self, cache_key: str) -> list[Event] | None:
        data: Any = self._cache.get(cache_key)
        if data is None:
            return None
        return [Event.from_dict(item) for item in data]

    def _store_events(self, cache_key: str, events: list[Event]) -> None:
        self._cache.set(
            cache_key,
            [event.to_dict() for event in events],
            self._config.cache_ttl,
        )
