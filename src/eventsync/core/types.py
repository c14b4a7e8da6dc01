"""Shared types and dataclasses for event fetching.

This module provides:
- EventSyncError, FetchError, ConfigurationError, ParallelFetchError: Exceptions
- Event: A remote catalog event
- EventFilter, Pagination: Query value objects for the remote catalog
- FetchRequest, FetchStats, FetchResult, FetchFailure: Fetch operation types
- WorkItem, JobStatus: Parallel fetch job types
- CatalogQuery, RecordStore: Protocols for external collaborators
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, date, datetime
from typing import Any, Protocol


class EventSyncError(Exception):
    """Base exception for event sync errors."""


class FetchError(EventSyncError):
    """All fetch strategies failed and no fallback was allowed."""


class ConfigurationError(EventSyncError):
    """Invalid configuration or missing execution capability."""


class ParallelFetchError(EventSyncError):
    """The parallel coordinator could not run the job at all."""


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO timestamp from the wire.

    Naive values are interpreted as UTC so that comparisons never mix
    naive and aware datetimes.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def as_date(value: date | datetime | str) -> date:
    """Normalize a date-like value to a plain date (day granularity)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


@dataclass(frozen=True)
class Event:
    """An event (time-bounded offering) from the remote catalog.

    Attributes:
        id: Remote identifier, increasing over time but not contiguous.
        number: Event code encoding category and period.
        title: Display title.
        start_date: Start of the event (None if unknown).
        end_date: End of the event (None if unknown).
        organizer_id: Collection key the event belongs to.
        parent_event_id: Parent event id for sub-events, None otherwise.
        status: Remote status string.
    """

    id: int
    number: str = ""
    title: str = ""
    start_date: datetime | None = None
    end_date: datetime | None = None
    organizer_id: str = ""
    parent_event_id: int | None = None
    status: str | None = None

    def __post_init__(self) -> None:
        # A parent reference pointing at itself means "not a sub-event"
        if self.parent_event_id is not None and self.parent_event_id == self.id:
            object.__setattr__(self, "parent_event_id", None)

    @property
    def is_sub_event(self) -> bool:
        """Check if this event belongs to another event."""
        return self.parent_event_id is not None

    @property
    def is_valid(self) -> bool:
        """Check if both start and end dates are known."""
        return self.start_date is not None and self.end_date is not None

    def is_current(self, now: datetime | None = None) -> bool:
        """Check if the event is valid and has not ended yet.

        Args:
            now: Reference time (defaults to current UTC time).

        Returns:
            True if the event is still running or in the future.
        """
        if self.start_date is None or self.end_date is None:
            return False
        return self.end_date >= (now or datetime.now(UTC))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        """Create from API response dictionary."""
        parent = data.get("parentEventId")
        return cls(
            id=int(data["id"]),
            number=str(data.get("number") or ""),
            title=str(data.get("title") or ""),
            start_date=parse_datetime(data.get("startDate")),
            end_date=parse_datetime(data.get("endDate")),
            organizer_id=str(data.get("organizerId") or ""),
            parent_event_id=int(parent) if parent not in (None, "") else None,
            status=data.get("status"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary (wire format)."""
        return {
            "id": self.id,
            "number": self.number,
            "title": self.title,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "organizerId": self.organizer_id,
            "parentEventId": self.parent_event_id,
            "status": self.status,
        }


@dataclass(frozen=True)
class EventFilter:
    """Filter part of a catalog query."""

    collection_key: str
    number_prefix: str | None = None


@dataclass(frozen=True)
class Pagination:
    """Limitation part of a catalog query.

    Attributes:
        from_date: Start of the date window (None for no lower bound).
        to_date: End of the date window (None for no upper bound).
        max_results: Maximum number of events to return.
        from_key: Lowest event id to return (inclusive cursor).
    """

    from_date: date | None
    to_date: date | None
    max_results: int
    from_key: int | None = None


@dataclass(frozen=True)
class FetchRequest:
    """A request for all events of a collection within a date window."""

    collection_key: str
    from_date: date
    to_date: date
    force_refresh: bool = False

    @property
    def cache_key(self) -> str:
        """Result cache key at day granularity."""
        return (
            f"events_{self.collection_key}_"
            f"{self.from_date:%Y%m%d}_{self.to_date:%Y%m%d}"
        )


@dataclass
class FetchStats:
    """Statistics for a single fetch invocation."""

    api_calls: int = 0
    total_events: int = 0
    errors: int = 0
    cache_hits: int = 0
    execution_time: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FetchStats:
        return cls(
            api_calls=int(data.get("api_calls", 0)),
            total_events=int(data.get("total_events", 0)),
            errors=int(data.get("errors", 0)),
            cache_hits=int(data.get("cache_hits", 0)),
            execution_time=float(data.get("execution_time", 0.0)),
        )


@dataclass
class FetchResult:
    """Result of a fetch: de-duplicated events plus statistics."""

    events: list[Event]
    stats: FetchStats = field(default_factory=FetchStats)

    def __len__(self) -> int:
        return len(self.events)

    @property
    def event_ids(self) -> set[int]:
        """Ids of all events in the result."""
        return {event.id for event in self.events}


@dataclass
class FetchFailure:
    """Error marker for a collection that could not be fetched."""

    collection_key: str
    message: str
    worker_index: int | None = None


@dataclass(frozen=True)
class WorkItem:
    """One collection's fetch task in a parallel job."""

    collection_key: str
    from_date: date
    to_date: date

    def to_dict(self) -> dict[str, str]:
        return {
            "collection_key": self.collection_key,
            "from_date": self.from_date.isoformat(),
            "to_date": self.to_date.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> WorkItem:
        return cls(
            collection_key=data["collection_key"],
            from_date=as_date(data["from_date"]),
            to_date=as_date(data["to_date"]),
        )


@dataclass
class JobStatus:
    """Progress counters of a parallel job."""

    total: int
    completed: int = 0
    errors: int = 0
    start_time: float = field(default_factory=time.time)

    @property
    def is_done(self) -> bool:
        """Check if every work item has been accounted for."""
        return self.completed >= self.total

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobStatus:
        return cls(
            total=int(data["total"]),
            completed=int(data.get("completed", 0)),
            errors=int(data.get("errors", 0)),
            start_time=float(data.get("start_time", 0.0)),
        )


class CatalogQuery(Protocol):
    """Protocol for the remote catalog.

    Returning None means the catalog sent no payload (no data), which is
    distinct from raising an error.
    """

    def query(
        self, event_filter: EventFilter, pagination: Pagination
    ) -> list[Event] | None:
        ...


class RecordStore(Protocol):
    """Protocol for the local store of synchronized records."""

    def list_synchronized_ids(self, collection_key: str) -> list[str]:
        ...
