"""Parallel fetching of many collections.

This module provides:
- ParallelCoordinator: Fans collection fetches out to worker threads,
  watches their heartbeats, replaces stalled workers and recovers failed
  collections serially
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from eventsync.client.sync.fetcher import AdaptiveFetcher
from eventsync.client.sync.workers.fetch_worker import FetchWorker
from eventsync.client.sync.workers.job import ParallelJob
from eventsync.core.cache import ApiCache
from eventsync.core.config import FetchConfiguration
from eventsync.core.locks import LockFactory, LockUnavailableError
from eventsync.core.types import (
    CatalogQuery,
    ConfigurationError,
    FetchFailure,
    FetchResult,
    ParallelFetchError,
    WorkItem,
    as_date,
)

logger = logging.getLogger(__name__)

FetcherFactory = Callable[[FetchConfiguration], AdaptiveFetcher]


@dataclass
class _WorkerHandle:
    worker: FetchWorker
    thread: threading.Thread


class ParallelCoordinator:
    """Fetches events for many collections concurrently.

    Usage:
        coordinator = ParallelCoordinator(catalog, cache, config)
        results = coordinator.fetch_for_collections(["V1", "V2", "V3"])
        for key, outcome in results.items():
            if isinstance(outcome, FetchFailure):
                print(key, outcome.message)
    """

    def __init__(
        self,
        catalog: CatalogQuery,
        cache: ApiCache,
        config: FetchConfiguration | None = None,
        fetcher_factory: FetcherFactory | None = None,
        locks: LockFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the coordinator.

        Args:
            catalog: Remote catalog to query.
            cache: Shared cache for job state and fetch results.
            config: Fetch settings (defaults when None).
            fetcher_factory: Builds a fetcher for a configuration
                (defaults to an AdaptiveFetcher on catalog and cache).
            locks: Named locks for job state, shared with the default fetchers.
            sleep: Sleep function for polling and backoff.
            clock: Time source for timeouts and heartbeats.
        """
        self._catalog = catalog
        self._cache = cache
        self._config = config or FetchConfiguration()
        self._fetcher_factory = fetcher_factory or self._default_fetcher
        self._locks = locks or LockFactory()
        self._sleep = sleep
        self._clock = clock
        self._restarts = 0

    @property
    def restarts(self) -> int:
        """Number of stalled workers replaced so far."""
        return self._restarts

    def _default_fetcher(self, config: FetchConfiguration) -> AdaptiveFetcher:
        return AdaptiveFetcher(
            self._catalog, self._cache, config, sleep=self._sleep, locks=self._locks
        )

    def fetch_for_collections(
        self,
        collection_keys: Iterable[str],
        from_date: date | datetime | None = None,
        to_date: date | datetime | None = None,
    ) -> dict[str, FetchResult | FetchFailure]:
        """Fetch all events for every collection key.

        Args:
            collection_keys: Collections to fetch (duplicates are ignored).
            from_date: Start of the window (default: one year ago).
            to_date: End of the window (default: two years ahead).

        Returns:
            Result or failure marker for every requested key.

        Raises:
            ConfigurationError: If no worker threads are configured.
            ParallelFetchError: If no worker could be started.
        """
        config = self._config
        if config.num_threads < 1:
            raise ConfigurationError("Parallel fetching needs at least one worker thread")

        keys = list(dict.fromkeys(collection_keys))
        if not keys:
            return {}

        today = date.today()
        start = as_date(from_date) if from_date is not None else (
            today - timedelta(days=config.default_lookback_days)
        )
        end = as_date(to_date) if to_date is not None else (
            today + timedelta(days=config.default_lookahead_days)
        )

        job = ParallelJob(uuid.uuid4().hex, self._cache, self._locks, config, self._clock)
        job.create([WorkItem(key, start, end) for key in keys])

        workers: dict[int, _WorkerHandle] = {}
        try:
            for index in range(min(config.num_threads, len(keys))):
                handle = self._start_worker(job, index)
                if handle is not None:
                    workers[index] = handle

            if not workers:
                raise ParallelFetchError(f"No worker could be started for job {job.job_id}")

            logger.info(f"Started {len(workers)} workers for {len(keys)} collections")
            self._wait(job, workers)
        except Exception:
            job.cleanup()
            raise
        finally:
            for handle in workers.values():
                handle.worker.cancel()

        results = self._collect(job, keys, start, end)
        job.cleanup()

        failed = sum(1 for outcome in results.values() if isinstance(outcome, FetchFailure))
        logger.info(
            "Parallel fetch complete: %d collections, %d failed, %d workers restarted",
            len(results),
            failed,
            self._restarts,
        )
        return results

    def _start_worker(self, job: ParallelJob, index: int) -> _WorkerHandle | None:
        """Start a worker with a fresh identity in the given slot.

        Returns None if the slot could not be registered or the thread
        could not be started.
        """
        worker_id = uuid.uuid4().hex
        try:
            held = job.register_worker(index, worker_id)
        except LockUnavailableError as e:
            logger.error(f"Failed to register worker {index}: {e}")
            return None
        if held:
            logger.warning(f"Recorded {held} as failed after worker {index} stalled")

        worker_config = self._config.worker_config()
        worker = FetchWorker(
            job,
            index,
            worker_id,
            lambda: self._fetcher_factory(worker_config),
            pause=self._config.worker_pause,
        )
        thread = threading.Thread(
            target=worker.run,
            name=f"FetchWorker-{index}",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError as e:
            logger.error(f"Failed to start worker {index}: {e}")
            return None
        return _WorkerHandle(worker=worker, thread=thread)

    def _wait(self, job: ParallelJob, workers: dict[int, _WorkerHandle]) -> None:
        """Poll job status until done, timed out or out of live workers."""
        config = self._config
        started = self._clock()

        while True:
            status = job.status()
            if status.is_done:
                logger.info(f"All {status.total} work items completed ({status.errors} errors)")
                return

            now = self._clock()
            if now - started > config.task_timeout:
                logger.warning(
                    f"Job {job.job_id} timed out after {config.task_timeout:.0f}s "
                    f"({status.completed}/{status.total} completed)"
                )
                return

            beats = job.heartbeats()
            for index, handle in list(workers.items()):
                if not handle.thread.is_alive():
                    continue
                entry = beats.get(index)
                if entry is None or entry["worker_id"] != handle.worker.worker_id:
                    continue
                silent_for = now - entry["last_seen"]
                if silent_for <= config.stall_threshold:
                    continue

                logger.warning(
                    f"Worker {index} silent for {silent_for:.0f}s, restarting it"
                )
                handle.worker.cancel()
                replacement = self._start_worker(job, index)
                if replacement is None:
                    continue
                workers[index] = replacement
                self._restarts += 1

            if not any(handle.thread.is_alive() for handle in workers.values()):
                if not job.status().is_done:
                    logger.warning(
                        f"All workers exited with {job.pending_count()} items still queued"
                    )
                return

            self._sleep(config.poll_interval)

    def _collect(
        self,
        job: ParallelJob,
        keys: list[str],
        from_date: date,
        to_date: date,
    ) -> dict[str, FetchResult | FetchFailure]:
        """Build the final map, recovering failed keys serially if enabled."""
        stored_results = job.results()
        stored_errors = job.errors()

        outcomes: dict[str, FetchResult | FetchFailure] = {}
        for key in keys:
            if key in stored_errors:
                outcomes[key] = stored_errors[key]
            elif key in stored_results:
                outcomes[key] = stored_results[key]
            else:
                outcomes[key] = FetchFailure(key, "No result from workers")

        failed = [key for key, outcome in outcomes.items() if isinstance(outcome, FetchFailure)]
        if not failed or not self._config.enable_recovery:
            return outcomes

        logger.info(f"Recovering {len(failed)} collections serially: {', '.join(failed)}")
        recovery = self._fetcher_factory(self._config.recovery_config())
        for key in failed:
            try:
                outcomes[key] = recovery.fetch_all_events(key, from_date, to_date)
                logger.info(f"Recovered {key}: {len(outcomes[key])} events")
            except Exception as e:
                logger.error(f"Recovery failed for {key}: {e}")
                outcomes[key] = FetchFailure(key, f"Recovery failed: {e}")
        return outcomes
