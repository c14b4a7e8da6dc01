"""Scheduled cache maintenance.

Purges the whole cache at most once per purge interval, then
force-refreshes upcoming events of every active collection and records
fetch statistics under the "api_stats" cache entry.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Protocol

from eventsync.client.api import Organizer
from eventsync.client.sync.fetcher import AdaptiveFetcher
from eventsync.core.cache import ApiCache
from eventsync.core.types import FetchStats

logger = logging.getLogger(__name__)

FULL_PURGE_INTERVAL = 7 * 24 * 60 * 60  # seconds
LAST_PURGE_KEY = "last_full_cache_purge"
STATS_KEY = "api_stats"
TOTALS_KEY = "totals"
REFRESH_DAYS = 365


class ActiveCollections(Protocol):
    """Source of collections that currently have events."""

    def list_active_collections(self) -> list[Organizer]:
        ...


@dataclass
class MaintenanceReport:
    """Outcome of one maintenance run.

    Attributes:
        purged: Whether the full cache purge ran.
        refreshed: Event counts per refreshed collection key.
        failed: Error messages per collection key that could not be refreshed.
    """

    purged: bool = False
    refreshed: dict[str, int] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)


class CacheMaintenance:
    """Keeps the cache fresh for upcoming events."""

    def __init__(
        self,
        cache: ApiCache,
        fetcher: AdaptiveFetcher,
        collections: ActiveCollections,
        full_purge_interval: float = FULL_PURGE_INTERVAL,
        clock: Callable[[], float] = time.time,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._cache = cache
        self._fetcher = fetcher
        self._collections = collections
        self._full_purge_interval = full_purge_interval
        self._clock = clock
        self._today = today

    def run(self) -> MaintenanceReport:
        """Run the purge check and refresh all active collections.

        Failures of single collections are logged and reported, never raised.
        """
        report = MaintenanceReport()
        report.purged = self.purge_if_due()

        logger.info("Refreshing cache for upcoming events...")
        try:
            organizers = self._collections.list_active_collections()
        except Exception as e:
            logger.error(f"Failed to list active collections: {e}")
            return report

        if not organizers:
            logger.info("No active collections found")
            return report

        start = self._today()
        end = start + timedelta(days=REFRESH_DAYS)
        for organizer in organizers:
            if not organizer.id:
                continue
            logger.info(f"Refreshing cache for {organizer.name}...")
            try:
                result = self._fetcher.fetch_all_events(
                    organizer.id, start, end, force_refresh=True
                )
            except Exception as e:
                logger.error(f"Error refreshing cache for {organizer.name}: {e}")
                report.failed[organizer.id] = str(e)
                continue

            report.refreshed[organizer.id] = len(result)
            logger.info(
                f"Updated cache with {organizer.name} ({organizer.id}): "
                f"{len(result)} events"
            )
            self.save_stats(organizer.id, result.stats)

        logger.info("Cache maintenance completed")
        return report

    def purge_if_due(self) -> bool:
        """Purge the whole cache if the last purge is older than the interval.

        Returns:
            True if the cache was purged.
        """
        now = self._clock()
        last_purge = self._cache.get(LAST_PURGE_KEY)
        if last_purge is not None and now - float(last_purge) <= self._full_purge_interval:
            logger.info("Full cache purge not needed yet")
            return False

        logger.info("Performing full cache purge...")
        self._cache.clear()
        # Outlive the interval so the next run can see it
        self._cache.set(LAST_PURGE_KEY, now, int(self._full_purge_interval * 2))
        logger.info("Cache purged successfully")
        return True

    def save_stats(self, collection_key: str, stats: FetchStats) -> dict[str, Any]:
        """Store per-collection stats and recompute the totals.

        Returns:
            The updated "api_stats" mapping.
        """
        now = self._clock()
        all_stats: dict[str, Any] = self._cache.get(STATS_KEY) or {}
        all_stats[collection_key] = {**stats.to_dict(), "last_run": now}

        totals = {"api_calls": 0, "errors": 0, "cache_hits": 0, "last_run": now}
        for key, entry in all_stats.items():
            if key == TOTALS_KEY:
                continue
            totals["api_calls"] += entry.get("api_calls", 0)
            totals["errors"] += entry.get("errors", 0)
            totals["cache_hits"] += entry.get("cache_hits", 0)
        all_stats[TOTALS_KEY] = totals

        self._cache.set(STATS_KEY, all_stats)
        return all_stats
