"""Tests for parallel fetching: locks, job state, workers and coordinator."""

import threading
import time
from datetime import date
from unittest.mock import patch

import pytest
from helpers import StubCatalog, make_event

from eventsync.client.sync.fetcher import AdaptiveFetcher
from eventsync.client.sync.workers import (
    FetchWorker,
    LockFactory,
    LockUnavailableError,
    ParallelCoordinator,
    ParallelJob,
    WorkerState,
)
from eventsync.core.cache import ApiCache, MemoryCacheBackend
from eventsync.core.config import FetchConfiguration
from eventsync.core.types import (
    ConfigurationError,
    FetchFailure,
    FetchResult,
    ParallelFetchError,
    WorkItem,
)

FROM = date(2024, 1, 1)
TO = date(2024, 12, 31)


@pytest.fixture
def cache() -> ApiCache:
    """Create an in-memory cache."""
    return ApiCache(MemoryCacheBackend())


@pytest.fixture
def locks() -> LockFactory:
    return LockFactory()


def fast_config(**settings: object) -> FetchConfiguration:
    """Configuration with no waiting anywhere."""
    values: dict[str, object] = {
        "num_threads": 3,
        "worker_pause": 0.0,
        "poll_interval": 0.01,
        "retry_delay_base": 0.0,
        "lock_timeout": 1.0,
    }
    values.update(settings)
    return FetchConfiguration(**values)  # type: ignore[arg-type]


def short_sleep(_: float) -> None:
    time.sleep(0.005)


class TestLockFactory:
    """Tests for LockFactory."""

    def test_acquire_and_release(self, locks: LockFactory) -> None:
        """Should lock and unlock a named lock."""
        assert locks.acquire("queue", timeout=0.1) is True
        assert locks.is_locked("queue")
        locks.release("queue")
        assert not locks.is_locked("queue")

    def test_acquire_times_out(self, locks: LockFactory) -> None:
        """Should give up after the timeout when the lock is held."""
        locks.acquire("queue", timeout=0.1)
        assert locks.acquire("queue", timeout=0.01) is False

    def test_names_are_independent(self, locks: LockFactory) -> None:
        """Should not block one name while another is held."""
        locks.acquire("queue", timeout=0.1)
        assert locks.acquire("results", timeout=0.01) is True

    def test_hold_releases_on_exit(self, locks: LockFactory) -> None:
        """Should release the lock when leaving the context."""
        with locks.hold("status", timeout=0.1) as acquired:
            assert acquired is True
            assert locks.is_locked("status")
        assert not locks.is_locked("status")

    def test_guard_raises_after_retries(self, locks: LockFactory) -> None:
        """Should raise once every bounded attempt has timed out."""
        locks.acquire("heartbeats", timeout=0.1)

        with pytest.raises(LockUnavailableError) as exc_info:
            with locks.guard("heartbeats", timeout=0.01, retries=2):
                pass
        assert exc_info.value.name == "heartbeats"

    def test_guard_releases_on_error(self, locks: LockFactory) -> None:
        """Should release the lock when the guarded block raises."""
        with pytest.raises(ValueError):
            with locks.guard("results", timeout=0.1):
                raise ValueError("boom")
        assert not locks.is_locked("results")

    def test_discard(self, locks: LockFactory) -> None:
        """Should forget discarded locks."""
        locks.acquire("a", timeout=0.1)
        locks.release("a")
        locks.acquire("b", timeout=0.1)
        locks.release("b")

        locks.discard("a", "b", "missing")

        assert len(locks) == 0


class Clock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def job(cache: ApiCache, locks: LockFactory) -> ParallelJob:
    """Create a job with two queued collections."""
    job = ParallelJob("job1", cache, locks, fast_config(), clock=Clock())
    job.create([WorkItem("V1", FROM, TO), WorkItem("V2", FROM, TO)])
    return job


class TestParallelJob:
    """Tests for the cache-backed job state."""

    def test_create_stores_queue_and_status(self, cache: ApiCache, job: ParallelJob) -> None:
        """Should store the queue and zeroed counters under per-job keys."""
        assert len(cache.get("work_queue_job1")) == 2
        status = job.status()
        assert status.total == 2
        assert status.completed == 0
        assert status.start_time == 1000.0
        assert job.results() == {}
        assert job.errors() == {}

    def test_pop_in_queue_order(self, job: ParallelJob) -> None:
        """Should hand out items first-in first-out until empty."""
        first = job.pop_item()
        second = job.pop_item()

        assert first == WorkItem("V1", FROM, TO)
        assert second is not None and second.collection_key == "V2"
        assert job.pop_item() is None
        assert job.pending_count() == 0

    def test_pop_fails_when_lock_is_stuck(self, cache: ApiCache, locks: LockFactory) -> None:
        """Should raise after the bounded lock retries."""
        config = fast_config(lock_timeout=0.01, lock_max_retries=1)
        job = ParallelJob("job2", cache, locks, config)
        job.create([WorkItem("V1", FROM, TO)])
        locks.acquire(job.queue_key, timeout=0.1)

        with pytest.raises(LockUnavailableError) as exc_info:
            job.pop_item()
        assert exc_info.value.name == "work_queue_job2"

    def test_finish_item_records_result(self, job: ParallelJob) -> None:
        """Should store the result and count the item as completed."""
        job.register_worker(0, "w-a")
        result = FetchResult(events=[make_event(7)])

        assert job.finish_item(0, "w-a", "V1", result=result) is True

        assert job.results()["V1"].event_ids == {7}
        assert job.status().completed == 1
        assert job.status().errors == 0

    def test_finish_item_records_error(self, job: ParallelJob) -> None:
        """Should store an error marker and count it."""
        job.register_worker(1, "w-b")

        job.finish_item(1, "w-b", "V2", error="Catalog unavailable")

        failure = job.errors()["V2"]
        assert failure == FetchFailure("V2", "Catalog unavailable", 1)
        assert job.status().errors == 1

    def test_heartbeat_updates_slot(self, job: ParallelJob) -> None:
        """Should record when the worker was last seen and what it holds."""
        job.register_worker(0, "w-a")
        job._clock.now = 1005.0  # type: ignore[attr-defined]

        assert job.heartbeat(0, "w-a", current="V1") is True

        entry = job.heartbeats()[0]
        assert entry == {"worker_id": "w-a", "last_seen": 1005.0, "current": "V1"}

    def test_replaced_worker_is_rejected(self, job: ParallelJob) -> None:
        """Should refuse heartbeats and results from a replaced worker."""
        job.register_worker(0, "w-old")
        job.heartbeat(0, "w-old", current="V1")

        held = job.register_worker(0, "w-new")

        assert held == "V1"
        assert job.heartbeat(0, "w-old") is False
        late = FetchResult(events=[make_event(1)])
        assert job.finish_item(0, "w-old", "V1", result=late) is False
        assert "V1" not in job.results()

    def test_stalled_item_counts_as_failed(self, job: ParallelJob) -> None:
        """Should record the held item as failed when its worker is replaced."""
        job.register_worker(0, "w-old")
        job.heartbeat(0, "w-old", current="V1")

        job.register_worker(0, "w-new")

        assert "stalled" in job.errors()["V1"].message
        assert job.status().completed == 1
        assert job.status().errors == 1

    def test_cleanup_keeps_results(
        self, cache: ApiCache, locks: LockFactory, job: ParallelJob
    ) -> None:
        """Should drop queue, status and heartbeats but keep results and errors."""
        job.register_worker(0, "w-a")
        job.pop_item()
        job.finish_item(0, "w-a", "V1", result=FetchResult(events=[]))

        job.cleanup()

        assert cache.get("work_queue_job1") is None
        assert cache.get("work_status_job1") is None
        assert cache.get("worker_status_job1") is None
        assert "V1" in cache.get("work_results_job1")
        assert cache.get("work_errors_job1") == {}
        assert len(locks) == 0


def make_fetcher_factory(catalog: StubCatalog, cache: ApiCache):  # type: ignore[no-untyped-def]
    def factory(config: FetchConfiguration) -> AdaptiveFetcher:
        return AdaptiveFetcher(catalog, cache, config, sleep=lambda _: None)

    return factory


class BlockingFetcher:
    """Fetcher that blocks on the SLOW collection until released."""

    def __init__(
        self,
        catalog: StubCatalog,
        cache: ApiCache,
        config: FetchConfiguration,
        release: threading.Event,
        blocked: list[threading.Thread],
    ) -> None:
        self._inner = AdaptiveFetcher(catalog, cache, config, sleep=lambda _: None)
        self._release = release
        self._blocked = blocked

    def fetch_all_events(self, key, *args, **kwargs):  # type: ignore[no-untyped-def]
        if key == "SLOW":
            self._blocked.append(threading.current_thread())
            self._release.wait(5)
        return self._inner.fetch_all_events(key, *args, **kwargs)


class TestFetchWorker:
    """Tests for FetchWorker run loop."""

    def test_processes_queue_until_empty(self, cache: ApiCache, job: ParallelJob) -> None:
        """Should fetch every queued item and complete."""
        catalog = StubCatalog([make_event(1, key="V1"), make_event(2, key="V2")])
        factory = make_fetcher_factory(catalog, cache)
        job.register_worker(0, "w-a")
        worker = FetchWorker(job, 0, "w-a", lambda: factory(fast_config()), pause=0)

        worker.run()

        assert worker.state == WorkerState.COMPLETED
        assert worker.processed == 2
        assert set(job.results()) == {"V1", "V2"}
        assert job.status().is_done

    def test_records_fetch_errors(self, cache: ApiCache, job: ParallelJob) -> None:
        """Should record a failing collection and keep going."""
        catalog = StubCatalog([make_event(2, key="V2")], fail_keys=["V1"])
        config = fast_config(error_threshold=1, date_chunk_fallback=False)
        factory = make_fetcher_factory(catalog, cache)
        job.register_worker(0, "w-a")
        worker = FetchWorker(job, 0, "w-a", lambda: factory(config), pause=0)

        worker.run()

        assert worker.state == WorkerState.COMPLETED
        assert set(job.errors()) == {"V1"}
        assert set(job.results()) == {"V2"}

    def test_replaced_worker_exits(self, cache: ApiCache, job: ParallelJob) -> None:
        """Should stop without touching the queue once replaced."""
        job.register_worker(0, "w-a")
        job.register_worker(0, "w-b")
        worker = FetchWorker(job, 0, "w-a", lambda: None, pause=0)  # type: ignore[arg-type,return-value]

        worker.run()

        assert worker.state == WorkerState.CANCELLED
        assert job.pending_count() == 2

    def test_cancel_before_run(self, cache: ApiCache, job: ParallelJob) -> None:
        """Should not process anything when cancelled up front."""
        job.register_worker(0, "w-a")
        worker = FetchWorker(job, 0, "w-a", lambda: None, pause=0)  # type: ignore[arg-type,return-value]
        worker.cancel()

        worker.run()

        assert worker.is_cancelled
        assert worker.state == WorkerState.CANCELLED
        assert worker.processed == 0


class TestParallelCoordinator:
    """Tests for ParallelCoordinator.fetch_for_collections."""

    def test_every_key_gets_an_outcome(self, cache: ApiCache) -> None:
        """Should return a result for every distinct requested key."""
        catalog = StubCatalog(
            [make_event(i, key=f"V{i % 4}") for i in range(1, 13)]
        )
        coordinator = ParallelCoordinator(
            catalog, cache, fast_config(), sleep=short_sleep
        )

        results = coordinator.fetch_for_collections(
            ["V0", "V1", "V2", "V3", "V1"], FROM, TO
        )

        assert list(results) == ["V0", "V1", "V2", "V3"]
        assert all(isinstance(outcome, FetchResult) for outcome in results.values())
        assert results["V1"].event_ids == {1, 5, 9}  # type: ignore[union-attr]

    def test_empty_input(self, cache: ApiCache) -> None:
        """Should return an empty map for no keys."""
        coordinator = ParallelCoordinator(StubCatalog(), cache, fast_config())
        assert coordinator.fetch_for_collections([]) == {}

    def test_no_threads_is_a_configuration_error(self, cache: ApiCache) -> None:
        """Should refuse to run without worker threads."""
        coordinator = ParallelCoordinator(StubCatalog(), cache, fast_config(num_threads=0))

        with pytest.raises(ConfigurationError):
            coordinator.fetch_for_collections(["V1"], FROM, TO)

    def test_failure_is_isolated(self, cache: ApiCache) -> None:
        """Should return a failure marker for one key and results for the rest."""
        catalog = StubCatalog(
            [make_event(1, key="V1"), make_event(2, key="V2"), make_event(3, key="V3")],
            fail_keys=["V2"],
        )
        config = fast_config(
            error_threshold=1, date_chunk_fallback=False, enable_recovery=False
        )
        coordinator = ParallelCoordinator(catalog, cache, config, sleep=short_sleep)

        results = coordinator.fetch_for_collections(["V1", "V2", "V3"], FROM, TO)

        assert isinstance(results["V1"], FetchResult)
        assert isinstance(results["V3"], FetchResult)
        failure = results["V2"]
        assert isinstance(failure, FetchFailure)
        assert "V2" in failure.message

    def test_failed_key_is_recovered_serially(self, cache: ApiCache) -> None:
        """Should refetch a failed key with the recovery settings."""
        v2_calls = []

        def fail_first_v2_call(event_filter, pagination):  # type: ignore[no-untyped-def]
            if event_filter.collection_key != "V2":
                return False
            v2_calls.append(pagination)
            return len(v2_calls) == 1

        catalog = StubCatalog(
            [make_event(1, key="V1"), make_event(2, key="V2")],
            fail_when=fail_first_v2_call,
        )
        config = fast_config(error_threshold=1, date_chunk_fallback=False)
        coordinator = ParallelCoordinator(catalog, cache, config, sleep=short_sleep)

        results = coordinator.fetch_for_collections(["V1", "V2"], FROM, TO)

        recovered = results["V2"]
        assert isinstance(recovered, FetchResult)
        assert recovered.event_ids == {2}
        # Recovery pages are capped by the recovery batch size
        assert v2_calls[1].max_results == 50

    def test_stalled_worker_is_replaced(self, cache: ApiCache) -> None:
        """Should restart a silent worker and record its item as failed."""
        release = threading.Event()
        catalog = StubCatalog([make_event(2, key="V2")])
        config = fast_config(num_threads=1, stall_threshold=0.2, enable_recovery=False)
        coordinator = ParallelCoordinator(
            catalog,
            cache,
            config,
            fetcher_factory=lambda c: BlockingFetcher(catalog, cache, c, release, []),  # type: ignore[arg-type,return-value]
            sleep=short_sleep,
        )

        try:
            results = coordinator.fetch_for_collections(["SLOW", "V2"], FROM, TO)
        finally:
            release.set()

        assert coordinator.restarts == 1
        stalled = results["SLOW"]
        assert isinstance(stalled, FetchFailure)
        assert "stalled" in stalled.message
        assert isinstance(results["V2"], FetchResult)
        assert results["V2"].event_ids == {2}  # type: ignore[union-attr]

    def test_batch_timeout_stops_waiting(self, cache: ApiCache) -> None:
        """Should stop at the task timeout, mark the unfinished key and stop its worker."""
        release = threading.Event()
        blocked: list[threading.Thread] = []
        catalog = StubCatalog([make_event(2, key="V2"), make_event(3, key="V3")])
        config = fast_config(num_threads=2, task_timeout=0.5, enable_recovery=False)
        coordinator = ParallelCoordinator(
            catalog,
            cache,
            config,
            fetcher_factory=lambda c: BlockingFetcher(catalog, cache, c, release, blocked),  # type: ignore[arg-type,return-value]
            sleep=short_sleep,
        )

        started = time.monotonic()
        try:
            results = coordinator.fetch_for_collections(["SLOW", "V2", "V3"], FROM, TO)
        finally:
            release.set()
        elapsed = time.monotonic() - started

        assert elapsed < 3
        unfinished = results["SLOW"]
        assert isinstance(unfinished, FetchFailure)
        assert unfinished.message == "No result from workers"
        assert results["V2"].event_ids == {2}  # type: ignore[union-attr]
        assert results["V3"].event_ids == {3}  # type: ignore[union-attr]
        assert coordinator.restarts == 0

        # The cancelled worker exits once its fetch returns
        assert len(blocked) == 1
        blocked[0].join(timeout=2)
        assert not blocked[0].is_alive()

    def test_no_worker_started_raises(self) -> None:
        """Should raise and clean up the job when no thread can be started."""
        backend = MemoryCacheBackend()
        locks = LockFactory()
        coordinator = ParallelCoordinator(
            StubCatalog(), ApiCache(backend), fast_config(), locks=locks
        )

        with patch(
            "threading.Thread.start",
            side_effect=RuntimeError("can't start new thread"),
        ):
            with pytest.raises(ParallelFetchError):
                coordinator.fetch_for_collections(["V1", "V2"], FROM, TO)

        # Only the (empty) results and errors entries are kept
        assert len(backend) == 2
        assert len(locks) == 0

    def test_failed_restart_still_returns_every_key(self, cache: ApiCache) -> None:
        """Should keep going when a stalled slot cannot be re-registered."""
        release = threading.Event()
        catalog = StubCatalog([make_event(2, key="V2")])
        config = fast_config(
            num_threads=1, stall_threshold=0.2, task_timeout=1.0, enable_recovery=False
        )
        coordinator = ParallelCoordinator(
            catalog,
            cache,
            config,
            fetcher_factory=lambda c: BlockingFetcher(catalog, cache, c, release, []),  # type: ignore[arg-type,return-value]
            sleep=short_sleep,
        )
        real_register = ParallelJob.register_worker

        def register_first_worker_only(job, index, worker_id):  # type: ignore[no-untyped-def]
            if job.heartbeats():
                raise LockUnavailableError(job.heartbeat_key)
            return real_register(job, index, worker_id)

        with patch.object(ParallelJob, "register_worker", register_first_worker_only):
            try:
                results = coordinator.fetch_for_collections(["SLOW", "V2"], FROM, TO)
            finally:
                release.set()

        assert set(results) == {"SLOW", "V2"}
        assert all(isinstance(outcome, FetchFailure) for outcome in results.values())
        assert coordinator.restarts == 0
