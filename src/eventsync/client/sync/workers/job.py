"""Cache-backed shared state of one parallel fetch job.

This module provides:
- ParallelJob: Work queue, results, errors, status and heartbeats of a job

All state lives in the ApiCache under per-job keys. Each entry is only
modified in a read-modify-write section guarded by its own named lock.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import Any

from eventsync.core.cache import ApiCache
from eventsync.core.config import FetchConfiguration
from eventsync.core.locks import LockFactory
from eventsync.core.types import (
    Event,
    FetchFailure,
    FetchResult,
    FetchStats,
    JobStatus,
    WorkItem,
)

logger = logging.getLogger(__name__)


class ParallelJob:
    """Shared state of a parallel job, stored in the cache.

    Heartbeat entries map a worker slot (its index) to the identity of the
    worker currently owning the slot, the time it was last seen and the
    collection key it is working on. Only the owner of a slot may write
    results for the item it holds.
    """

    def __init__(
        self,
        job_id: str,
        cache: ApiCache,
        locks: LockFactory,
        config: FetchConfiguration,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.job_id = job_id
        self._cache = cache
        self._locks = locks
        self._config = config
        self._clock = clock

        self.queue_key = f"work_queue_{job_id}"
        self.results_key = f"work_results_{job_id}"
        self.errors_key = f"work_errors_{job_id}"
        self.status_key = f"work_status_{job_id}"
        self.heartbeat_key = f"worker_status_{job_id}"

        # Transient entries must outlive the job itself
        self._ttl = int(max(config.task_timeout * 2, config.results_ttl))

    def _guard(self, name: str) -> AbstractContextManager[None]:
        """Hold a named lock with the configured timeout and retries.

        Raises:
            LockUnavailableError: If every attempt timed out.
        """
        return self._locks.guard(
            name, self._config.lock_timeout, self._config.lock_max_retries
        )

    def create(self, items: list[WorkItem]) -> None:
        """Store the initial queue and counters."""
        self._cache.set(self.queue_key, [item.to_dict() for item in items], self._ttl)
        self._cache.set(self.status_key, JobStatus(total=len(items), start_time=self._clock()).to_dict(), self._ttl)
        self._cache.set(self.results_key, {}, self._ttl)
        self._cache.set(self.errors_key, {}, self._ttl)
        self._cache.set(self.heartbeat_key, {}, self._ttl)
        logger.info(f"Created job {self.job_id} with {len(items)} work items")

    # === Queue ===

    def pop_item(self) -> WorkItem | None:
        """Take the next work item, or None if the queue is empty.

        Raises:
            LockUnavailableError: If the queue lock could not be acquired.
        """
        with self._guard(self.queue_key):
            queue = self._cache.get(self.queue_key) or []
            if not queue:
                return None
            data = queue.pop(0)
            self._cache.set(self.queue_key, queue, self._ttl)
        return WorkItem.from_dict(data)

    def pending_count(self) -> int:
        return len(self._cache.get(self.queue_key) or [])

    # === Heartbeats ===

    def register_worker(self, index: int, worker_id: str) -> str | None:
        """Give a worker slot to a new worker identity.

        If the previous owner of the slot was holding an item, that item is
        recorded as failed so the job can still complete.

        Returns:
            Collection key the previous owner was holding, if any.
        """
        with self._guard(self.heartbeat_key):
            beats = self._cache.get(self.heartbeat_key) or {}
            previous = beats.get(str(index)) or {}
            held = previous.get("current")
            beats[str(index)] = {
                "worker_id": worker_id,
                "last_seen": self._clock(),
                "current": None,
            }
            self._cache.set(self.heartbeat_key, beats, self._ttl)

            if held:
                self._store_error(
                    held,
                    f"Worker {index} stalled while fetching {held}",
                    index,
                )
                self._increment_status(error=True)
        return held

    def heartbeat(self, index: int, worker_id: str, current: str | None = None) -> bool:
        """Record that a worker is alive.

        Returns:
            False if the slot now belongs to another worker (the caller has
            been replaced and must stop).
        """
        with self._guard(self.heartbeat_key):
            beats = self._cache.get(self.heartbeat_key) or {}
            entry = beats.get(str(index))
            if entry is None or entry["worker_id"] != worker_id:
                return False
            entry["last_seen"] = self._clock()
            entry["current"] = current
            self._cache.set(self.heartbeat_key, beats, self._ttl)
        return True

    def heartbeats(self) -> dict[int, dict[str, Any]]:
        """Heartbeat entries by worker index."""
        beats = self._cache.get(self.heartbeat_key) or {}
        return {int(index): entry for index, entry in beats.items()}

    # === Results ===

    def finish_item(
        self,
        index: int,
        worker_id: str,
        collection_key: str,
        result: FetchResult | None = None,
        error: str | None = None,
    ) -> bool:
        """Record the outcome of an item, if the worker still owns its slot.

        Returns:
            False if the worker was replaced; the outcome is discarded.
        """
        with self._guard(self.heartbeat_key):
            beats = self._cache.get(self.heartbeat_key) or {}
            entry = beats.get(str(index))
            if entry is None or entry["worker_id"] != worker_id:
                return False

            if result is not None:
                self._store_result(collection_key, result)
            else:
                self._store_error(collection_key, error or "Unknown error", index)
            self._increment_status(error=result is None)

            entry["current"] = None
            entry["last_seen"] = self._clock()
            self._cache.set(self.heartbeat_key, beats, self._ttl)
        return True

    def _store_result(self, collection_key: str, result: FetchResult) -> None:
        with self._guard(self.results_key):
            results = self._cache.get(self.results_key) or {}
            results[collection_key] = {
                "events": [event.to_dict() for event in result.events],
                "stats": result.stats.to_dict(),
            }
            self._cache.set(self.results_key, results, self._ttl)

    def _store_error(self, collection_key: str, message: str, index: int | None) -> None:
        with self._guard(self.errors_key):
            errors = self._cache.get(self.errors_key) or {}
            errors[collection_key] = {"message": message, "worker_index": index}
            self._cache.set(self.errors_key, errors, self._ttl)

    def _increment_status(self, error: bool) -> None:
        with self._guard(self.status_key):
            status = self.status()
            status.completed += 1
            if error:
                status.errors += 1
            self._cache.set(self.status_key, status.to_dict(), self._ttl)

    def status(self) -> JobStatus:
        data = self._cache.get(self.status_key)
        if data is None:
            return JobStatus(total=0)
        return JobStatus.from_dict(data)

    def results(self) -> dict[str, FetchResult]:
        stored = self._cache.get(self.results_key) or {}
        return {
            key: FetchResult(
                events=[Event.from_dict(item) for item in entry["events"]],
                stats=FetchStats.from_dict(entry["stats"]),
            )
            for key, entry in stored.items()
        }

    def errors(self) -> dict[str, FetchFailure]:
        stored = self._cache.get(self.errors_key) or {}
        return {
            key: FetchFailure(
                collection_key=key,
                message=entry["message"],
                worker_index=entry.get("worker_index"),
            )
            for key, entry in stored.items()
        }

    # === Cleanup ===

    def cleanup(self) -> None:
        """Delete transient entries and keep results/errors for diagnostics."""
        for key in (self.queue_key, self.status_key, self.heartbeat_key):
            self._cache.delete(key)

        ttl = self._config.results_ttl
        for key in (self.results_key, self.errors_key):
            value = self._cache.get(key)
            if value is not None:
                self._cache.set(key, value, ttl)

        self._locks.discard(
            self.queue_key,
            self.results_key,
            self.errors_key,
            self.status_key,
            self.heartbeat_key,
        )
        logger.debug(f"Cleaned up job {self.job_id}")
