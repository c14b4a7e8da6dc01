"""Workers for parallel fetching.

This package provides thread-based fetching of many collections:
- LockFactory: Named locks with bounded acquisition
- ParallelJob: Cache-backed queue, results and heartbeats of a job
- FetchWorker: Pops work items and fetches them
- ParallelCoordinator: Runs a job and recovers failed collections

Usage:
    from eventsync.client.sync.workers import ParallelCoordinator

    coordinator = ParallelCoordinator(catalog, cache, config)
    results = coordinator.fetch_for_collections(["V1", "V2"])
"""

from eventsync.client.sync.workers.fetch_worker import FetchWorker, WorkerState
from eventsync.client.sync.workers.job import ParallelJob
from eventsync.client.sync.workers.pool import ParallelCoordinator
from eventsync.core.locks import LockFactory, LockUnavailableError

__all__ = [
    # Locks
    "LockFactory",
    "LockUnavailableError",
    # Job & workers
    "FetchWorker",
    "ParallelJob",
    "WorkerState",
    # Coordinator
    "ParallelCoordinator",
]
