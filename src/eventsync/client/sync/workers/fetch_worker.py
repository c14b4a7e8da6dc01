"""Worker that fetches collections from a parallel job's queue.

This module provides:
- WorkerState: Enum for worker lifecycle states
- FetchWorker: Pops work items and fetches them with an AdaptiveFetcher
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum, auto
from typing import TYPE_CHECKING

from eventsync.core.locks import LockUnavailableError

if TYPE_CHECKING:
    from eventsync.client.sync.fetcher import AdaptiveFetcher
    from eventsync.client.sync.workers.job import ParallelJob
    from eventsync.core.types import WorkItem

logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """State of a worker."""

    IDLE = auto()
    RUNNING = auto()
    COMPLETED = auto()
    CANCELLED = auto()
    FAILED = auto()


class FetchWorker:
    """Processes work items until the queue is empty or it is cancelled.

    A worker owns one slot of the job (its index). When the coordinator
    replaces a stalled worker, the slot gets a new identity and the old
    worker's late results are discarded.

    Usage:
        worker = FetchWorker(job, 0, "f3a1...", make_fetcher, pause=0.5)
        thread = threading.Thread(target=worker.run, daemon=True)
        thread.start()
        ...
        worker.cancel()
    """

    def __init__(
        self,
        job: ParallelJob,
        index: int,
        worker_id: str,
        fetcher_factory: Callable[[], AdaptiveFetcher],
        pause: float = 0.5,
    ) -> None:
        """Initialize the worker.

        Args:
            job: Shared job state.
            index: Worker slot index.
            worker_id: Identity of this worker within the slot.
            fetcher_factory: Builds the fetcher used for each item.
            pause: Seconds to wait between items.
        """
        self._job = job
        self.index = index
        self.worker_id = worker_id
        self._fetcher_factory = fetcher_factory
        self._pause = pause
        self._cancel_event = threading.Event()
        self._worker_state = WorkerState.IDLE
        self.processed = 0
        self._prefix = f"[job {job.job_id[:8]} worker {index}]"

    @property
    def state(self) -> WorkerState:
        """Get current worker state."""
        return self._worker_state

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Ask the worker to stop after the current item."""
        self._cancel_event.set()

    def run(self) -> None:
        """Main loop (thread target)."""
        self._worker_state = WorkerState.RUNNING
        logger.info(f"{self._prefix} Started")

        try:
            while not self.is_cancelled:
                if not self._job.heartbeat(self.index, self.worker_id):
                    logger.warning(f"{self._prefix} Replaced by another worker, exiting")
                    self._worker_state = WorkerState.CANCELLED
                    return

                try:
                    item = self._job.pop_item()
                except LockUnavailableError as e:
                    logger.error(f"{self._prefix} {e}, giving up")
                    self._worker_state = WorkerState.FAILED
                    return

                if item is None:
                    logger.info(f"{self._prefix} Queue empty after {self.processed} items")
                    break

                self._process(item)

                # Interruptible pause between items
                self._cancel_event.wait(self._pause)
        except Exception:
            logger.exception(f"{self._prefix} Unexpected error in worker loop")
            self._worker_state = WorkerState.FAILED
            return

        self._worker_state = (
            WorkerState.CANCELLED if self.is_cancelled else WorkerState.COMPLETED
        )

    def _process(self, item: WorkItem) -> None:
        key = item.collection_key
        self._job.heartbeat(self.index, self.worker_id, current=key)
        logger.info(f"{self._prefix} Fetching {key}")

        try:
            result = self._fetcher_factory().fetch_all_events(
                key, item.from_date, item.to_date
            )
        except Exception as e:
            logger.error(f"{self._prefix} Fetch for {key} failed: {e}")
            recorded = self._job.finish_item(self.index, self.worker_id, key, error=str(e))
        else:
            recorded = self._job.finish_item(self.index, self.worker_id, key, result=result)
            if recorded:
                logger.info(f"{self._prefix} Fetched {len(result)} events for {key}")

        if not recorded:
            logger.warning(f"{self._prefix} Discarding late result for {key}")
            self._cancel_event.set()
            return
        self.processed += 1
