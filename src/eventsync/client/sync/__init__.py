"""Event fetching and incremental synchronization.

Architecture:
    AdaptiveFetcher ← ParallelCoordinator → FetchWorker (one per thread)

Components:
- **AdaptiveFetcher**: Fetches one collection, choosing between incremental,
  adaptive pagination and date-range chunking strategies
- **HighWaterMarkTracker**: Highest event id seen per collection
- **ParallelCoordinator**: Fetches many collections with worker threads,
  replaces stalled workers and recovers failures serially
- **FastModeSynchronizer**: Finds new events from local records
- **CacheMaintenance**: Scheduled purge and refresh of the cache

All public symbols are re-exported here.
"""

from eventsync.client.sync.fast_mode import FastModeSynchronizer, filter_current_events
from eventsync.client.sync.fetcher import AdaptiveFetcher, highest_event_id, merge_events
from eventsync.client.sync.maintenance import CacheMaintenance, MaintenanceReport
from eventsync.client.sync.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_MAX_RETRIES,
    RATE_LIMIT_EXCEPTIONS,
    backoff_delay,
    retry_with_backoff,
)
from eventsync.client.sync.watermark import HighWaterMarkTracker
from eventsync.client.sync.workers import (
    FetchWorker,
    LockFactory,
    LockUnavailableError,
    ParallelCoordinator,
    ParallelJob,
    WorkerState,
)

__all__ = [
    # Retry functions and constants
    "DEFAULT_BACKOFF_MULTIPLIER",
    "DEFAULT_INITIAL_BACKOFF",
    "DEFAULT_MAX_BACKOFF",
    "DEFAULT_MAX_RETRIES",
    "RATE_LIMIT_EXCEPTIONS",
    "backoff_delay",
    "retry_with_backoff",
    # Fetching
    "AdaptiveFetcher",
    "HighWaterMarkTracker",
    "highest_event_id",
    "merge_events",
    # Fast mode & maintenance
    "CacheMaintenance",
    "FastModeSynchronizer",
    "MaintenanceReport",
    "filter_current_events",
    # Workers
    "FetchWorker",
    "LockFactory",
    "LockUnavailableError",
    "ParallelCoordinator",
    "ParallelJob",
    "WorkerState",
]
