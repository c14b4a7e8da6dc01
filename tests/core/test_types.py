"""Tests for shared types."""

from datetime import UTC, date, datetime, timedelta

import pytest

from eventsync.core.types import (
    Event,
    FetchRequest,
    FetchStats,
    JobStatus,
    WorkItem,
    as_date,
    parse_datetime,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


class TestParsing:
    """Tests for date helpers."""

    def test_parse_zulu(self) -> None:
        """Should parse a Z suffix as UTC."""
        assert parse_datetime("2024-03-01T09:00:00Z") == datetime(2024, 3, 1, 9, tzinfo=UTC)

    def test_naive_is_utc(self) -> None:
        """Should treat naive timestamps as UTC."""
        assert parse_datetime("2024-03-01T09:00:00").tzinfo is UTC  # type: ignore[union-attr]

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty(self, value: object) -> None:
        """Should return None for missing values."""
        assert parse_datetime(value) is None

    def test_as_date(self) -> None:
        """Should reduce datetimes and strings to dates."""
        assert as_date(NOW) == date(2024, 6, 1)
        assert as_date("2024-06-01T10:00:00") == date(2024, 6, 1)
        assert as_date(date(2024, 6, 1)) == date(2024, 6, 1)


class TestEvent:
    """Tests for the Event dataclass."""

    def test_from_dict(self) -> None:
        """Should create an Event from the wire format."""
        event = Event.from_dict(
            {
                "id": "42",
                "number": "LANG-24",
                "title": "Spanish A1",
                "startDate": "2024-03-01T00:00:00Z",
                "endDate": "2024-06-30T00:00:00Z",
                "organizerId": "V1",
                "parentEventId": 40,
                "status": "published",
            }
        )

        assert event.id == 42
        assert event.organizer_id == "V1"
        assert event.parent_event_id == 40
        assert event.is_sub_event
        assert event.is_valid

    def test_to_dict_round_trip(self) -> None:
        """Should read back what it writes."""
        event = Event(id=1, title="A", start_date=NOW, end_date=NOW + timedelta(days=1))
        assert Event.from_dict(event.to_dict()) == event

    def test_self_parent_is_not_sub_event(self) -> None:
        """Should treat a parent id equal to the own id as no parent."""
        event = Event(id=9, parent_event_id=9)
        assert event.parent_event_id is None
        assert not event.is_sub_event

    def test_is_current(self) -> None:
        """Should be current until the end date passes."""
        running = Event(id=1, start_date=NOW - timedelta(days=5), end_date=NOW)
        ended = Event(id=2, start_date=NOW - timedelta(days=5), end_date=NOW - timedelta(seconds=1))

        assert running.is_current(NOW)
        assert not ended.is_current(NOW)
        assert not Event(id=3, end_date=NOW).is_current(NOW)


class TestFetchTypes:
    """Tests for fetch request and status types."""

    def test_cache_key_uses_days(self) -> None:
        """Should build the result cache key at day granularity."""
        request = FetchRequest("V1", date(2024, 1, 5), date(2025, 12, 31))
        assert request.cache_key == "events_V1_20240105_20251231"

    def test_stats_from_dict(self) -> None:
        """Should rebuild stats from a stored dictionary."""
        stats = FetchStats(api_calls=3, errors=1, total_events=10)
        assert FetchStats.from_dict(stats.to_dict()) == stats

    def test_work_item_from_dict(self) -> None:
        """Should rebuild a work item from its stored form."""
        item = WorkItem("V1", date(2024, 1, 1), date(2024, 12, 31))
        assert WorkItem.from_dict(item.to_dict()) == item

    def test_job_status_done(self) -> None:
        """Should be done once every item is accounted for."""
        status = JobStatus(total=2, completed=1)
        assert not status.is_done
        status.completed = 2
        assert status.is_done
