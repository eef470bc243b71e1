"""
Server Log Directory Watcher

Monitors the logs directory and triggers an ingestion run when a
``latest_server<N>.log`` file is written. Servers append continuously, so
events are debounced: a run starts once the file has been quiet for the
debounce period.

Runs go through the IngestionScheduler so the per-server in-flight guard
applies to watcher triggers too.
"""

import logging
import queue
import threading
import time
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from roundstats.core.errors import RunInProgressError
from roundstats.ingest.logfiles import server_id_from_filename
from roundstats.ingest.scheduler import IngestionScheduler

logger = logging.getLogger(__name__)


class ServerLogHandler(FileSystemEventHandler):
    """
    Handler for server log events with debouncing.

    Puts the server id on the queue after the debounce period elapsed
    without further writes to that log.
    """

    def __init__(
        self,
        event_queue: queue.Queue,
        debounce_seconds: float = 2.0,
        server_ids: list[int] | None = None,
    ):
        super().__init__()
        self.event_queue = event_queue
        self.debounce_seconds = debounce_seconds
        self.server_ids = set(server_ids) if server_ids else None
        self._pending: dict[int, tuple[float, int]] = {}  # server_id -> (last_event_time, count)
        self._lock = threading.Lock()

    def _server_id_for(self, path: str) -> int | None:
        server_id = server_id_from_filename(Path(path).name)
        if server_id is None:
            return None
        if self.server_ids is not None and server_id not in self.server_ids:
            return None
        return server_id

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle(event, getattr(event, "src_path", ""))

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle(event, getattr(event, "src_path", ""))

    def on_moved(self, event: FileSystemEvent) -> None:
        # Servers that rotate logs rename a temp file into place
        self._handle(event, getattr(event, "dest_path", ""))

    def _handle(self, event: FileSystemEvent, path: str) -> None:
        if event.is_directory or not path:
            return

        server_id = self._server_id_for(str(path))
        if server_id is None:
            return

        with self._lock:
            if server_id in self._pending:
                _last_time, event_count = self._pending[server_id]
                self._pending[server_id] = (time.time(), event_count + 1)
                logger.debug(f"Coalesced event #{event_count + 1} for server {server_id}")
                return
            self._pending[server_id] = (time.time(), 1)

        self._schedule(server_id)

    def _schedule(self, server_id: int) -> None:
        def process_after_debounce():
            time.sleep(self.debounce_seconds)

            with self._lock:
                pending = self._pending.get(server_id)
                if pending is None:
                    return
                last_event, event_count = pending

                if time.time() - last_event < self.debounce_seconds:
                    # Still being written
                    threading.Thread(target=process_after_debounce, daemon=True).start()
                    return

                del self._pending[server_id]

            logger.info(f"Log for server {server_id} settled ({event_count} events)")
            self.event_queue.put(server_id)

        threading.Thread(target=process_after_debounce, daemon=True).start()


class LogDirectoryWatcher:
    """
    Watches the logs directory and feeds settled server logs to the scheduler.

    Example usage:
        watcher = LogDirectoryWatcher(logs_dir, scheduler)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        logs_dir: Path | str,
        scheduler: IngestionScheduler,
        debounce_seconds: float = 2.0,
        server_ids: list[int] | None = None,
    ):
        self.logs_dir = Path(logs_dir)
        self.scheduler = scheduler
        self.debounce_seconds = debounce_seconds
        self.server_ids = server_ids

        self._event_queue: queue.Queue[int] = queue.Queue()
        self._observer: Observer | None = None
        self._running = False
        self._processor_thread: threading.Thread | None = None

    def start(self) -> None:
        if self._running:
            logger.warning("Watcher is already running")
            return

        if not self.logs_dir.exists():
            logger.info(f"Creating logs directory: {self.logs_dir}")
            self.logs_dir.mkdir(parents=True, exist_ok=True)

        self._running = True

        handler = ServerLogHandler(
            self._event_queue,
            debounce_seconds=self.debounce_seconds,
            server_ids=self.server_ids,
        )
        self._observer = Observer()
        self._observer.schedule(handler, str(self.logs_dir), recursive=False)

        self._processor_thread = threading.Thread(target=self._process_events, daemon=True)
        self._processor_thread.start()

        self._observer.start()
        logger.info(f"Watching for server logs in: {self.logs_dir}")

    def stop(self) -> None:
        self._running = False

        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

        logger.info("Log watcher stopped")

    def _process_events(self) -> None:
        while self._running:
            try:
                server_id = self._event_queue.get(timeout=1)
            except queue.Empty:
                continue
            self.handle_server(server_id)

    def handle_server(self, server_id: int) -> None:
        """Trigger a run for a settled log; busy servers are skipped."""
        try:
            self.scheduler.trigger(server_id, trigger="watcher")
        except RunInProgressError:
            logger.warning(f"Watcher skipped server {server_id}: run already in progress")

    @property
    def is_running(self) -> bool:
        return self._running
