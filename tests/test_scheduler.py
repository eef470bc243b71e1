"""Tests for the ingestion scheduler."""

import threading

import pytest

from roundstats.core.errors import RunInProgressError
from roundstats.ingest.pipeline import IngestionSummary
from roundstats.ingest.scheduler import IngestionScheduler


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class StubPipeline:
    """Records runs; optionally blocks until released."""

    def __init__(self, inserted=1, success=True):
        self.runs = []
        self.inserted = inserted
        self.success = success
        self.entered = threading.Event()
        self.release = threading.Event()
        self.release.set()

    def run(self, server_id):
        self.runs.append(server_id)
        self.entered.set()
        self.release.wait(timeout=5)
        return IngestionSummary(
            server_id=server_id,
            success=self.success,
            inserted=self.inserted,
            error=None if self.success else "boom",
        )


class TestTrigger:
    def test_runs_pipeline(self):
        pipeline = StubPipeline()
        scheduler = IngestionScheduler(pipeline, server_ids=[1])

        summary = scheduler.trigger(1)

        assert summary.success is True
        assert pipeline.runs == [1]
        assert scheduler.is_running(1) is False

    def test_in_flight_guard(self):
        pipeline = StubPipeline()
        pipeline.release.clear()
        scheduler = IngestionScheduler(pipeline, server_ids=[1])

        worker = threading.Thread(target=scheduler.trigger, args=(1,))
        worker.start()
        try:
            assert pipeline.entered.wait(timeout=5)
            assert scheduler.is_running(1) is True
            assert scheduler.in_flight() == [1]
            with pytest.raises(RunInProgressError):
                scheduler.trigger(1)
        finally:
            pipeline.release.set()
            worker.join(timeout=5)

        assert pipeline.runs == [1]
        assert scheduler.is_running(1) is False

    def test_other_servers_not_blocked(self):
        pipeline = StubPipeline()
        pipeline.release.clear()
        scheduler = IngestionScheduler(pipeline, server_ids=[1, 2])

        worker = threading.Thread(target=scheduler.trigger, args=(1,))
        worker.start()
        try:
            assert pipeline.entered.wait(timeout=5)
            assert scheduler.is_running(1) is True
            assert scheduler.is_running(2) is False
            lock = scheduler._acquire(2, "manual")
            assert lock is not None
            scheduler._release(lock)
        finally:
            pipeline.release.set()
            worker.join(timeout=5)

    def test_stale_lock_reclaimed(self):
        clock = FakeClock()
        scheduler = IngestionScheduler(StubPipeline(), run_timeout_seconds=120, clock=clock)
        stale = scheduler._acquire(1, "interval")
        assert stale is not None

        clock.now += 60
        assert scheduler._acquire(1, "manual") is None

        clock.now += 61
        assert scheduler.is_running(1) is False
        summary = scheduler.trigger(1)
        assert summary.success is True

        # Releasing the reclaimed lock afterwards is harmless
        scheduler._release(stale)
        assert scheduler.in_flight() == []

    def test_listeners_called(self):
        scheduler = IngestionScheduler(StubPipeline(inserted=3))
        seen = []
        scheduler.add_listener(lambda summary: seen.append(summary.inserted))

        scheduler.trigger(1)
        assert seen == [3]

    def test_listener_errors_do_not_fail_run(self):
        scheduler = IngestionScheduler(StubPipeline())

        def broken(summary):
            raise RuntimeError("listener bug")

        scheduler.add_listener(broken)
        assert scheduler.trigger(1).success is True


class TestCycle:
    def test_run_cycle_visits_every_server(self):
        pipeline = StubPipeline()
        scheduler = IngestionScheduler(pipeline, server_ids=[1, 2, 3], inter_run_delay_seconds=0)

        summaries = scheduler.run_cycle()

        assert [s.server_id for s in summaries] == [1, 2, 3]
        assert pipeline.runs == [1, 2, 3]

    def test_busy_server_skipped(self):
        pipeline = StubPipeline()
        scheduler = IngestionScheduler(pipeline, server_ids=[1, 2], inter_run_delay_seconds=0)
        scheduler._acquire(1, "upload")

        summaries = scheduler.run_cycle()

        assert [s.server_id for s in summaries] == [2]

    def test_start_and_stop(self):
        pipeline = StubPipeline()
        scheduler = IngestionScheduler(
            pipeline, server_ids=[1], interval_seconds=60, inter_run_delay_seconds=0
        )
        scheduler.start()
        try:
            assert pipeline.entered.wait(timeout=5)
            assert scheduler.is_started is True
        finally:
            scheduler.stop()
        assert scheduler.is_started is False


class TestStats:
    def test_counts(self):
        pipeline = StubPipeline(inserted=2)
        scheduler = IngestionScheduler(pipeline, server_ids=[1])
        scheduler.trigger(1)
        pipeline.success = False
        scheduler.trigger(1)

        stats = scheduler.get_stats()

        assert stats["total_runs"] == 2
        assert stats["successful_runs"] == 1
        assert stats["failed_runs"] == 1
        assert stats["total_inserted"] == 4
        assert stats["last_summaries"][1]["error"] == "boom"
        assert stats["in_flight"] == []
        assert stats["server_ids"] == [1]

    def test_counts_from_concurrent_runs(self):
        scheduler = IngestionScheduler(StubPipeline(inserted=1), server_ids=list(range(1, 9)))

        def run_many(server_id):
            for _ in range(25):
                scheduler.trigger(server_id)

        workers = [threading.Thread(target=run_many, args=(sid,)) for sid in range(1, 9)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=10)

        stats = scheduler.get_stats()
        assert stats["total_runs"] == 200
        assert stats["successful_runs"] == 200
        assert stats["total_inserted"] == 200
        assert sorted(stats["last_summaries"]) == list(range(1, 9))
