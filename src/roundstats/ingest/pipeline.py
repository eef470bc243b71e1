"""
One ingestion run for one server.

    checkpoint read -> restart check -> parse new lines -> atomic insert
    -> checkpoint write

The checkpoint only advances after every insert of the run committed. A
storage failure or a timeout leaves it untouched so the next trigger
retries the same lines; the whole batch was rolled back, so no match ids
from the failed attempt survive.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from roundstats.core.errors import RunTimeoutError, StorageError
from roundstats.infra.database import DatabaseManager
from roundstats.ingest.checkpoint import CheckpointStore
from roundstats.ingest.logfiles import log_file_path, read_log_lines
from roundstats.ingest.parser import LogParser, OpenMatch
from roundstats.ingest.sequencer import (
    MatchIdentity,
    MatchIdentitySequencer,
    MatchNumberAllocator,
)

logger = logging.getLogger(__name__)


@dataclass
class IngestionSummary:
    """Outcome of one run, returned to every trigger."""

    server_id: int
    success: bool
    inserted: int = 0
    skipped: int = 0
    processed_lines: int = 0
    total_lines: int = 0
    map_name: str | None = None
    matches_started: int = 0
    restart_detected: bool = False
    malformed_rows: int = 0
    message: str | None = None
    error: str | None = None
    started_at: str | None = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["map"] = data.pop("map_name")
        return data


class IngestionPipeline:
    """Wires the checkpoint store, parser and database for ingestion runs."""

    def __init__(
        self,
        db: DatabaseManager,
        checkpoints: CheckpointStore,
        logs_dir: Path | str,
        allocator: MatchNumberAllocator | None = None,
        resume_open_match: bool = True,
        run_timeout_seconds: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.db = db
        self.checkpoints = checkpoints
        self.logs_dir = Path(logs_dir)
        self.allocator = allocator or MatchNumberAllocator(db.get_max_match_number)
        self.resume_open_match = resume_open_match
        self.run_timeout_seconds = run_timeout_seconds
        self.clock = clock or (lambda: datetime.now(UTC))

    def log_path(self, server_id: int) -> Path:
        return log_file_path(self.logs_dir, server_id)

    def run(self, server_id: int) -> IngestionSummary:
        """
        Process every new line of a server's log.

        Never raises for expected failures: a missing log, a storage error or
        a timeout come back as an unsuccessful summary with ``error`` set.
        """
        start = time.monotonic()
        deadline = start + self.run_timeout_seconds if self.run_timeout_seconds else None
        summary = IngestionSummary(
            server_id=server_id,
            success=False,
            started_at=self.clock().isoformat(),
        )

        log_path = self.log_path(server_id)
        if not log_path.exists():
            logger.info(f"No log file for server {server_id}: {log_path.name}")
            summary.error = f"Log file not found: {log_path.name}"
            return summary

        try:
            self._run(server_id, log_path, summary, deadline)
        except (StorageError, RunTimeoutError) as e:
            logger.error(f"Ingestion for server {server_id} aborted, checkpoint not advanced: {e}")
            summary.success = False
            summary.error = str(e)
            summary.inserted = 0
            summary.skipped = 0
        except OSError as e:
            logger.error(f"Could not read log for server {server_id}: {e}")
            summary.success = False
            summary.error = f"Could not read log file: {e}"
        finally:
            summary.duration_seconds = round(time.monotonic() - start, 3)

        return summary

    def _run(
        self,
        server_id: int,
        log_path: Path,
        summary: IngestionSummary,
        deadline: float | None,
    ) -> None:
        lines = read_log_lines(log_path)
        total_lines = len(lines)
        summary.total_lines = total_lines

        offset, restarted = self.checkpoints.reconcile(server_id, total_lines)
        summary.restart_detected = restarted
        logger.info(
            f"Server {server_id} log status: total lines {total_lines}, last processed {offset}"
        )

        if offset >= total_lines:
            summary.success = True
            summary.message = "No new data to process"
            return

        new_lines = lines[offset:]
        # A pass from line 1 (new file, restart or checkpoint reset) never
        # continues a stored match
        resume = None if restarted or offset == 0 else self._open_match(server_id)

        sequencer = MatchIdentitySequencer(self.allocator, clock=self.clock)
        parser = LogParser(server_id, sequencer, clock=self.clock)
        result = parser.parse(new_lines, resume=resume, deadline=deadline)

        inserted, skipped = self.db.insert_many(result.records, deadline=deadline)

        self.checkpoints.write(server_id, total_lines)

        summary.success = True
        summary.inserted = inserted
        summary.skipped = skipped + result.duplicates_in_run
        summary.processed_lines = len(new_lines)
        summary.map_name = result.map_name
        summary.matches_started = len(result.matches_started)
        summary.malformed_rows = result.malformed_rows

        logger.info(
            f"Server {server_id} processed lines {offset + 1}-{total_lines}: "
            f"inserted {inserted}, skipped {summary.skipped}, map {result.map_name}"
        )

    def _open_match(self, server_id: int) -> OpenMatch | None:
        if not self.resume_open_match:
            return None
        latest = self.db.get_latest_match(server_id)
        if latest is None:
            return None
        identity = MatchIdentity(
            match_id=latest["match_id"],
            match_number=latest["match_number"],
            map_name=latest["map_name"],
        )
        return OpenMatch(identity=identity, round_number=latest["round_number"])
