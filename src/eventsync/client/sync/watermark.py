"""High-water mark tracking for incremental fetches.

The high-water mark of a collection is the highest remote event id seen so
far. It bounds incremental fetches and is stored through the ApiCache.
A mark of 0 is never meaningful: stored zeros, empty strings and
non-numeric values all read back as "no mark yet".

Trackers that share a LockFactory serialize their advance() calls per
collection, so concurrent fetchers never move a mark downwards.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from eventsync.core.locks import LockFactory

if TYPE_CHECKING:
    from eventsync.core.cache import ApiCache
    from eventsync.core.types import RecordStore

logger = logging.getLogger(__name__)

KEY_TEMPLATE = "last_id_{}"


def _as_mark(value: Any) -> int | None:
    """Interpret a stored or derived value as a mark (None if not usable)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        mark = int(value)
    except (TypeError, ValueError):
        return None
    return mark if mark > 0 else None


class HighWaterMarkTracker:
    """Reads and writes per-collection high-water marks.

    Usage:
        tracker = HighWaterMarkTracker(cache)
        tracker.advance("V1", 502)   # only ever moves upwards
        tracker.get("V1")            # -> 502
        tracker.reset("V1")          # -> absent again
    """

    def __init__(
        self,
        cache: ApiCache,
        ttl: int | None = None,
        key_template: str = KEY_TEMPLATE,
        locks: LockFactory | None = None,
        lock_timeout: float = 5.0,
        lock_retries: int = 3,
    ) -> None:
        """Initialize the tracker.

        Args:
            cache: Cache holding the marks.
            ttl: Lifetime of a stored mark (None for the cache default).
            key_template: Cache key template, formatted with the collection key.
            locks: Named locks shared with other users of the cache.
            lock_timeout: Seconds to wait for a mark's lock per attempt.
            lock_retries: Extra attempts before giving up on a lock.
        """
        self._cache = cache
        self._ttl = ttl
        self._key_template = key_template
        self._locks = locks or LockFactory()
        self._lock_timeout = lock_timeout
        self._lock_retries = lock_retries

    def key_for(self, collection_key: str) -> str:
        return self._key_template.format(collection_key)

    def get(self, collection_key: str) -> int | None:
        """Get the current mark, or None if there is none."""
        value = self._cache.get(self.key_for(collection_key))
        mark = _as_mark(value)
        logger.debug("High water mark for %s: %r", collection_key, mark)
        return mark

    def set(self, collection_key: str, value: int) -> None:
        """Store a mark unconditionally. Values <= 0 clear the mark."""
        if _as_mark(value) is None:
            self.reset(collection_key)
            return
        self._cache.set(self.key_for(collection_key), int(value), self._ttl)
        logger.debug("Set high water mark for %s to %d", collection_key, value)

    def advance(self, collection_key: str, candidate: int | None) -> int | None:
        """Raise the mark to candidate if it is higher than the current one.

        Args:
            collection_key: Collection to update.
            candidate: Highest id just observed.

        Returns:
            The mark after the update (None if still absent).

        Raises:
            LockUnavailableError: If the mark's lock could not be acquired.
        """
        candidate = _as_mark(candidate)
        with self._locks.guard(
            self.key_for(collection_key), self._lock_timeout, self._lock_retries
        ):
            current = self.get(collection_key)
            if candidate is None or (current is not None and candidate <= current):
                return current
            self.set(collection_key, candidate)
        logger.info(
            "High water mark for %s advanced from %s to %d",
            collection_key,
            current,
            candidate,
        )
        return candidate

    def reset(self, collection_key: str) -> None:
        """Clear the mark (for recovery or testing)."""
        self._cache.delete(self.key_for(collection_key))
        logger.info("High water mark for %s reset", collection_key)

    @staticmethod
    def highest_id(identifiers: Iterable[Any]) -> int | None:
        """Highest numeric id among identifiers; non-numeric ones are skipped."""
        highest: int | None = None
        for identifier in identifiers:
            if isinstance(identifier, str):
                identifier = identifier.strip()
                if not identifier.isdigit():
                    continue
            mark = _as_mark(identifier)
            if mark is not None and (highest is None or mark > highest):
                highest = mark
        return highest

    def derive_from_store(self, collection_key: str, store: RecordStore) -> int | None:
        """Compute a mark from records already synchronized locally.

        Args:
            collection_key: Collection to inspect.
            store: Local store of synchronized records.

        Returns:
            Highest numeric identifier among the records, or None.
        """
        highest = self.highest_id(store.list_synchronized_ids(collection_key))
        logger.info(f"Highest synchronized id for {collection_key}: {highest}")
        return highest
