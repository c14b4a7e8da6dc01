"""Cache layer for catalog data and fetch engine state.

This module provides:
- CacheBackend: Protocol for key/value stores with per-entry expiry
- MemoryCacheBackend: Thread-safe in-process backend
- SqliteCacheBackend: SQLite-backed backend that survives restarts
- ApiCache: Namespaced wrapper with default TTL and compute-if-absent

Values must be JSON-serializable (dicts, lists, numbers, strings) so that
every backend can store them.
"""

from __future__ import annotations

import copy
import json
import logging
import sqlite3
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600  # seconds
DEFAULT_PREFIX = "eventsync_"


class CacheBackend(Protocol):
    """Protocol for cache backends.

    get() returns None for missing or expired entries.
    """

    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any, ttl: float) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def purge(self) -> None:
        ...


class MemoryCacheBackend:
    """In-process cache backend with per-entry expiry.

    Values are deep-copied on set and get, so callers can never mutate a
    cached value through a reference they hold.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """Initialize the backend.

        Args:
            clock: Time source returning seconds (injectable for tests).
        """
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[Any, float]] = {}

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires = entry
            if expires < self._clock():
                del self._entries[key]
                return None
            return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            self._entries[key] = (copy.deepcopy(value), self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SqliteCacheBackend:
    """SQLite-backed cache backend.

    Entries are stored as JSON with an absolute expiry timestamp. Expired
    entries are removed lazily on read, or in bulk with purge_expired().
    """

    def __init__(
        self,
        db_path: Path,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache database.

        Args:
            db_path: Path to SQLite database file.
            clock: Time source returning seconds.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS cache_entries (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires REAL NOT NULL,
                created REAL NOT NULL
            )
        """)
        logger.debug("Initialized cache database at %s", self._db_path)

    def get(self, key: str) -> Any | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT value, expires FROM cache_entries WHERE key = ?", (key,)
            ).fetchone()
            if row is None:
                return None
            value, expires = row
            if expires < self._clock():
                self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                return None
            return json.loads(value)

    def set(self, key: str, value: Any, ttl: float) -> None:
        now = self._clock()
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO cache_entries (key, value, expires, created)
                VALUES (?, ?, ?, ?)
                """,
                (key, json.dumps(value), now + ttl, now),
            )

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))

    def purge(self) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM cache_entries")

    def purge_expired(self) -> int:
        """Delete all expired entries.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM cache_entries WHERE expires < ?", (self._clock(),)
            )
            return cursor.rowcount

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()


class ApiCache:
    """Namespaced cache with a default TTL.

    Usage:
        cache = ApiCache(MemoryCacheBackend())
        cache.set("last_id_V1", 42)
        events = cache.get_or_compute("events_V1", load_events, ttl=600)
    """

    def __init__(
        self,
        backend: CacheBackend,
        prefix: str = DEFAULT_PREFIX,
        default_ttl: int = DEFAULT_TTL,
    ) -> None:
        self._backend = backend
        self._prefix = prefix
        self._default_ttl = default_ttl

    @property
    def default_ttl(self) -> int:
        return self._default_ttl

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Any | None:
        """Get a value, or None if missing or expired."""
        return self._backend.get(self._key(key))

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store a value.

        Args:
            key: Cache key (without prefix).
            value: JSON-serializable value.
            ttl: Time to live in seconds (None for the default TTL).
        """
        self._backend.set(self._key(key), value, self._default_ttl if ttl is None else ttl)

    def delete(self, key: str) -> None:
        self._backend.delete(self._key(key))

    def has(self, key: str) -> bool:
        """Check if a key exists and is not expired."""
        return self.get(key) is not None

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        """Get several values; missing keys are left out of the result."""
        found = {}
        for key in keys:
            value = self.get(key)
            if value is not None:
                found[key] = value
        return found

    def set_many(self, items: Mapping[str, Any], ttl: int | None = None) -> None:
        for key, value in items.items():
            self.set(key, value, ttl)

    def clear(self) -> None:
        """Remove every entry of the underlying backend."""
        self._backend.purge()

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Any],
        ttl: int | None = None,
    ) -> Any:
        """Return the cached value, computing and caching it on a miss."""
        value = self.get(key)
        if value is not None:
            return value
        value = compute()
        self.set(key, value, ttl)
        return value
