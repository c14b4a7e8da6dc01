"""Shared test helpers: event factory, stub catalogs and a slow cache."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime, timedelta
from typing import Any

from eventsync.client.api import CatalogError
from eventsync.core.cache import MemoryCacheBackend
from eventsync.core.types import Event, EventFilter, Pagination


def make_event(
    event_id: int,
    start: date = date(2024, 3, 1),
    days: int = 30,
    key: str = "V1",
    title: str | None = None,
    **kwargs: object,
) -> Event:
    """Create an event starting at midnight UTC on start, lasting days."""
    start_dt = datetime(start.year, start.month, start.day, tzinfo=UTC)
    return Event(
        id=event_id,
        number=f"EV-{event_id}",
        title=title if title is not None else f"Event {event_id}",
        start_date=start_dt,
        end_date=start_dt + timedelta(days=days),
        organizer_id=key,
        **kwargs,  # type: ignore[arg-type]
    )


class StubCatalog:
    """In-memory catalog honoring the id cursor, date window and result cap.

    Attributes:
        calls: (filter, pagination) of every query, in order.
        pending_errors: Exceptions raised (and consumed) by the next queries.
        fail_keys: Collection keys whose queries always fail.
        fail_when: Predicate on (filter, pagination) making a query fail.
    """

    def __init__(
        self,
        events: Iterable[Event] = (),
        fail_keys: Iterable[str] = (),
        fail_when: Callable[[EventFilter, Pagination], bool] | None = None,
    ) -> None:
        self.events = list(events)
        self.calls: list[tuple[EventFilter, Pagination]] = []
        self.pending_errors: list[Exception] = []
        self.fail_keys = set(fail_keys)
        self.fail_when = fail_when
        self._lock = threading.Lock()

    @property
    def paginations(self) -> list[Pagination]:
        with self._lock:
            return [pagination for _, pagination in self.calls]

    def calls_for(self, collection_key: str) -> list[Pagination]:
        with self._lock:
            return [p for f, p in self.calls if f.collection_key == collection_key]

    def query(
        self, event_filter: EventFilter, pagination: Pagination
    ) -> list[Event] | None:
        with self._lock:
            self.calls.append((event_filter, pagination))
            if self.pending_errors:
                raise self.pending_errors.pop(0)

        if event_filter.collection_key in self.fail_keys:
            raise CatalogError(f"Catalog failure for {event_filter.collection_key}", 500)
        if self.fail_when is not None and self.fail_when(event_filter, pagination):
            raise CatalogError("Catalog failure", 500)

        matching = sorted(
            (e for e in self.events if self._matches(e, event_filter, pagination)),
            key=lambda e: e.id,
        )[: pagination.max_results]
        return matching or None

    @staticmethod
    def _matches(event: Event, event_filter: EventFilter, pagination: Pagination) -> bool:
        if event.organizer_id != event_filter.collection_key:
            return False
        if pagination.from_key is not None and event.id < pagination.from_key:
            return False
        if event.start_date is not None:
            start = event.start_date.date()
            if pagination.from_date is not None and start < pagination.from_date:
                return False
            if pagination.to_date is not None and start > pagination.to_date:
                return False
        return True


class FailingCatalog(StubCatalog):
    """Catalog whose every query fails."""

    def query(
        self, event_filter: EventFilter, pagination: Pagination
    ) -> list[Event] | None:
        with self._lock:
            self.calls.append((event_filter, pagination))
        raise CatalogError("Catalog unavailable", 503)


class FixedBatchCatalog(StubCatalog):
    """Catalog that ignores the cursor and always returns the same batch."""

    def __init__(self, batch: list[Event]) -> None:
        super().__init__(batch)

    def query(
        self, event_filter: EventFilter, pagination: Pagination
    ) -> list[Event] | None:
        with self._lock:
            self.calls.append((event_filter, pagination))
        return list(self.events)


class SlowReadBackend(MemoryCacheBackend):
    """Memory backend that delays reads of keys containing a marker.

    Widens the window between reading and writing a shared entry, so
    unguarded read-modify-write updates reliably interleave.
    """

    def __init__(self, marker: str, delay: float = 0.2) -> None:
        super().__init__()
        self.marker = marker
        self.delay = delay

    def get(self, key: str) -> Any | None:
        if self.marker in key:
            time.sleep(self.delay)
        return super().get(key)
