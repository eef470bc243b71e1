"""
Per-server line offsets for incremental log processing.

A checkpoint is the number of non-blank log lines already consumed for one
server. Stores are passed into each ingestion run explicitly so tests can
use the in-memory variant and the scheduler can guard runs around them.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from roundstats.ingest.logfiles import checkpoint_file_path

logger = logging.getLogger(__name__)


class CheckpointStore(ABC):
    """Abstract base class for checkpoint persistence."""

    @abstractmethod
    def read(self, server_id: int) -> int:
        """Return the stored offset, or 0 when missing or unparsable."""
        pass

    @abstractmethod
    def write(self, server_id: int, offset: int) -> None:
        """Durably store the offset, replacing any previous value."""
        pass

    @abstractmethod
    def delete(self, server_id: int) -> bool:
        """Remove the checkpoint. Returns False if there was none."""
        pass

    @abstractmethod
    def exists(self, server_id: int) -> bool:
        pass

    def reconcile(self, server_id: int, total_lines: int) -> tuple[int, bool]:
        """
        Read the offset and heal it against the current log length.

        If the stored offset is past the end of the log, the file was
        replaced by a shorter one (server restart). The offset is reset to 0
        and persisted so the new file is processed in full.

        Returns:
            (offset, restarted)
        """
        offset = self.read(server_id)
        if offset > total_lines:
            logger.warning(
                f"Server restart detected for server {server_id}: checkpoint {offset} "
                f"> log lines {total_lines}, resetting checkpoint to 0"
            )
            self.write(server_id, 0)
            return 0, True
        return offset, False


class FileCheckpointStore(CheckpointStore):
    """Plain-text checkpoint files beside the server logs."""

    def __init__(self, logs_dir: Path | str):
        self.logs_dir = Path(logs_dir)

    def path_for(self, server_id: int) -> Path:
        return checkpoint_file_path(self.logs_dir, server_id)

    def read(self, server_id: int) -> int:
        path = self.path_for(server_id)
        if not path.exists():
            return 0
        try:
            content = path.read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.error(f"Error reading checkpoint for server {server_id}: {e}")
            return 0
        try:
            offset = int(content)
        except ValueError:
            logger.warning(f"Unparsable checkpoint for server {server_id}: {content!r}")
            return 0
        return max(offset, 0)

    def write(self, server_id: int, offset: int) -> None:
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(server_id)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(str(int(offset)), encoding="utf-8")
        os.replace(tmp_path, path)
        logger.debug(f"Checkpoint for server {server_id} saved at line {offset}")

    def delete(self, server_id: int) -> bool:
        path = self.path_for(server_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Checkpoint for server {server_id} deleted")
        return True

    def exists(self, server_id: int) -> bool:
        return self.path_for(server_id).exists()


class MemoryCheckpointStore(CheckpointStore):
    """Dictionary-backed store for tests and one-off runs."""

    def __init__(self, initial: dict[int, int] | None = None):
        self._offsets: dict[int, int] = dict(initial or {})
        self._lock = threading.Lock()

    def read(self, server_id: int) -> int:
        with self._lock:
            return max(self._offsets.get(server_id, 0), 0)

    def write(self, server_id: int, offset: int) -> None:
        with self._lock:
            self._offsets[server_id] = int(offset)

    def delete(self, server_id: int) -> bool:
        with self._lock:
            return self._offsets.pop(server_id, None) is not None

    def exists(self, server_id: int) -> bool:
        with self._lock:
            return server_id in self._offsets
