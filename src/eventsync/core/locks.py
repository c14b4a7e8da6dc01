"""Named locks for shared cache entries.

Every cache entry that is updated read-modify-write (job queues, results,
heartbeats, watermarks, full event lists) has its own named lock, named
after the entry. Acquisition is always bounded by a timeout so that a
wedged worker can never deadlock the batch.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from eventsync.core.types import EventSyncError

logger = logging.getLogger(__name__)


class LockUnavailableError(EventSyncError):
    """A named lock could not be acquired within the allowed retries."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Could not acquire lock {name!r}")
        self.name = name


class LockFactory:
    """Creates and hands out named locks.

    Usage:
        locks = LockFactory()
        with locks.hold("work_queue_abc", timeout=5.0) as acquired:
            if acquired:
                ...  # read-modify-write
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _get(self, name: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    def acquire(self, name: str, timeout: float) -> bool:
        """Acquire a named lock, waiting at most timeout seconds.

        Returns:
            True if the lock was acquired.
        """
        acquired = self._get(name).acquire(timeout=max(timeout, 0.0))
        if not acquired:
            logger.debug(f"Timed out waiting for lock {name}")
        return acquired

    def release(self, name: str) -> None:
        self._get(name).release()

    def is_locked(self, name: str) -> bool:
        return self._get(name).locked()

    @contextmanager
    def hold(self, name: str, timeout: float) -> Iterator[bool]:
        """Context manager form of acquire(); yields whether it succeeded."""
        acquired = self.acquire(name, timeout)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(name)

    @contextmanager
    def guard(self, name: str, timeout: float, retries: int = 0) -> Iterator[None]:
        """Hold a named lock, retrying a bounded number of times.

        Raises:
            LockUnavailableError: If every attempt timed out.
        """
        attempts = retries + 1
        for attempt in range(1, attempts + 1):
            if self.acquire(name, timeout):
                break
            logger.warning(f"Lock {name} busy (attempt {attempt}/{attempts})")
        else:
            raise LockUnavailableError(name)
        try:
            yield
        finally:
            self.release(name)

    def discard(self, *names: str) -> None:
        """Forget locks that are no longer needed."""
        with self._guard:
            for name in names:
                self._locks.pop(name, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
