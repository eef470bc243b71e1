"""
Ingestion Scheduler

Triggers ingestion runs per server id, either on a fixed interval or on
demand (after an upload, from the CLI, from the log watcher).

Runs for the same server id never overlap: each run holds a per-server lock
for its duration. A lock older than the run timeout is considered stale and
may be taken over, so one stuck run cannot block a server forever. Runs for
different servers are independent; the interval loop walks servers in order
with a short pause between them.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from roundstats.core.errors import RunInProgressError
from roundstats.ingest.pipeline import IngestionPipeline, IngestionSummary

logger = logging.getLogger(__name__)


@dataclass
class RunLock:
    server_id: int
    trigger: str
    started_at: float  # scheduler clock (monotonic)


@dataclass
class SchedulerStats:
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    total_inserted: int = 0
    total_skipped: int = 0
    last_run_at: str | None = None
    last_summaries: dict[int, dict] = field(default_factory=dict)

    def record(self, summary: IngestionSummary) -> None:
        self.total_runs += 1
        if summary.success:
            self.successful_runs += 1
        else:
            self.failed_runs += 1
        self.total_inserted += summary.inserted
        self.total_skipped += summary.skipped
        self.last_run_at = datetime.now(UTC).isoformat()
        self.last_summaries[summary.server_id] = summary.to_dict()

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_runs": self.total_runs,
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
            "total_inserted": self.total_inserted,
            "total_skipped": self.total_skipped,
            "last_run_at": self.last_run_at,
            "last_summaries": dict(self.last_summaries),
        }


class IngestionScheduler:
    """
    Serializes ingestion runs per server id.

    Example usage:
        scheduler = IngestionScheduler(pipeline, server_ids=[1, 2])
        scheduler.add_listener(lambda summary: print(summary.inserted))
        scheduler.start()      # interval loop in a daemon thread
        scheduler.trigger(1)   # on-demand run, raises RunInProgressError if busy
        scheduler.stop()
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        server_ids: list[int] | None = None,
        interval_seconds: float = 300.0,
        run_timeout_seconds: float = 120.0,
        inter_run_delay_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pipeline = pipeline
        self.server_ids = list(server_ids or [1])
        self.interval_seconds = interval_seconds
        self.run_timeout_seconds = run_timeout_seconds
        self.inter_run_delay_seconds = inter_run_delay_seconds
        self.clock = clock

        self._locks: dict[int, RunLock] = {}
        self._guard = threading.Lock()
        self._listeners: list[Callable[[IngestionSummary], None]] = []
        self._stats = SchedulerStats()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # =========================================================================
    # Run Locking
    # =========================================================================

    def _acquire(self, server_id: int, trigger: str) -> RunLock | None:
        with self._guard:
            held = self._locks.get(server_id)
            if held is not None:
                age = self.clock() - held.started_at
                if age < self.run_timeout_seconds:
                    return None
                logger.warning(
                    f"Reclaiming stale {held.trigger} run lock for server {server_id} "
                    f"(held {age:.0f}s, timeout {self.run_timeout_seconds:.0f}s)"
                )
            lock = RunLock(server_id=server_id, trigger=trigger, started_at=self.clock())
            self._locks[server_id] = lock
            return lock

    def _release(self, lock: RunLock) -> None:
        with self._guard:
            # A reclaimed lock belongs to the newer run now
            if self._locks.get(lock.server_id) is lock:
                del self._locks[lock.server_id]

    def is_running(self, server_id: int) -> bool:
        with self._guard:
            held = self._locks.get(server_id)
            return held is not None and self.clock() - held.started_at < self.run_timeout_seconds

    def in_flight(self) -> list[int]:
        with self._guard:
            now = self.clock()
            return sorted(
                sid for sid, held in self._locks.items()
                if now - held.started_at < self.run_timeout_seconds
            )

    # =========================================================================
    # Triggers
    # =========================================================================

    def add_listener(self, callback: Callable[[IngestionSummary], None]) -> None:
        """Register a callback invoked with every run summary."""
        self._listeners.append(callback)

    def trigger(self, server_id: int, trigger: str = "manual") -> IngestionSummary:
        """
        Run ingestion for one server now.

        Raises:
            RunInProgressError: a run for this server id is still in flight
        """
        lock = self._acquire(server_id, trigger)
        if lock is None:
            raise RunInProgressError(server_id)

        try:
            logger.info(f"Starting {trigger} ingestion run for server {server_id}")
            summary = self.pipeline.run(server_id)
        finally:
            self._release(lock)

        with self._guard:
            self._stats.record(summary)
        if summary.success:
            logger.info(
                f"Server {server_id} run finished: inserted {summary.inserted}, "
                f"skipped {summary.skipped}, lines {summary.processed_lines}"
            )
        else:
            logger.error(f"Server {server_id} run failed: {summary.error}")

        for callback in self._listeners:
            try:
                callback(summary)
            except Exception as e:
                logger.error(f"Error in run listener: {e}")

        return summary

    def run_cycle(self) -> list[IngestionSummary]:
        """Run every configured server once, skipping busy ones."""
        summaries = []
        for index, server_id in enumerate(self.server_ids):
            if index and self.inter_run_delay_seconds > 0:
                if self._stop_event.wait(self.inter_run_delay_seconds):
                    break
            try:
                summaries.append(self.trigger(server_id, trigger="interval"))
            except RunInProgressError:
                logger.warning(f"Skipping server {server_id}: previous run still in progress")
        return summaries

    # =========================================================================
    # Interval Loop
    # =========================================================================

    def start(self, blocking: bool = False) -> None:
        """Start the interval loop (first cycle runs immediately)."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Scheduler is already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="roundstats-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            f"Ingestion scheduler started for servers {self.server_ids} "
            f"every {self.interval_seconds:.0f}s"
        )

        if blocking:
            try:
                while self._thread.is_alive():
                    self._thread.join(timeout=1)
            except KeyboardInterrupt:
                self.stop()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Ingestion scheduler stopped")

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_cycle()
            if self._stop_event.wait(self.interval_seconds):
                break

    @property
    def is_started(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def get_stats(self) -> dict[str, Any]:
        with self._guard:
            stats = self._stats.to_dict()
        stats["in_flight"] = self.in_flight()
        stats["is_started"] = self.is_started
        stats["server_ids"] = list(self.server_ids)
        stats["interval_seconds"] = self.interval_seconds
        return stats
