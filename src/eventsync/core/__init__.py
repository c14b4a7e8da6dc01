"""Core module - Shared configuration, cache, locks and types."""

from eventsync.core.cache import (
    ApiCache,
    CacheBackend,
    MemoryCacheBackend,
    SqliteCacheBackend,
)
from eventsync.core.config import CatalogConfig, FetchConfiguration
from eventsync.core.locks import LockFactory, LockUnavailableError
from eventsync.core.types import (
    CatalogQuery,
    ConfigurationError,
    Event,
    EventFilter,
    EventSyncError,
    FetchError,
    FetchFailure,
    FetchRequest,
    FetchResult,
    FetchStats,
    JobStatus,
    Pagination,
    ParallelFetchError,
    RecordStore,
    WorkItem,
)

__all__ = [
    # Cache
    "ApiCache",
    "CacheBackend",
    "MemoryCacheBackend",
    "SqliteCacheBackend",
    # Config
    "CatalogConfig",
    "FetchConfiguration",
    # Locks
    "LockFactory",
    "LockUnavailableError",
    # Types
    "CatalogQuery",
    "Event",
    "EventFilter",
    "FetchFailure",
    "FetchRequest",
    "FetchResult",
    "FetchStats",
    "JobStatus",
    "Pagination",
    "RecordStore",
    "WorkItem",
    # Errors
    "ConfigurationError",
    "EventSyncError",
    "FetchError",
    "ParallelFetchError",
]
