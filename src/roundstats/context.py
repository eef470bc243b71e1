"""
Application wiring.

Builds the database, checkpoint store, pipeline, scheduler and query
services from a RoundStatsConfig. The web app and the CLI share one lazily
built context per process; tests install their own with set_context().
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from roundstats.analysis.leaderboard import IdentityResolver, LeaderboardService
from roundstats.core.config import RoundStatsConfig, get_config
from roundstats.infra.cache import QueryCache
from roundstats.infra.database import DatabaseManager
from roundstats.ingest.checkpoint import CheckpointStore, FileCheckpointStore
from roundstats.ingest.pipeline import IngestionPipeline, IngestionSummary
from roundstats.ingest.scheduler import IngestionScheduler
from roundstats.ingest.sequencer import MatchNumberAllocator
from roundstats.ingest.watcher import LogDirectoryWatcher
from roundstats.integrations.steam import SteamProfileClient

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    config: RoundStatsConfig
    db: DatabaseManager
    checkpoints: CheckpointStore
    pipeline: IngestionPipeline
    scheduler: IngestionScheduler
    cache: QueryCache
    steam: SteamProfileClient
    resolver: IdentityResolver
    leaderboard: LeaderboardService
    watcher: LogDirectoryWatcher | None = None

    @property
    def logs_dir(self) -> Path:
        return Path(self.config.ingestion.logs_dir)

    def start_background(self) -> None:
        """Start the interval scheduler and log watcher if configured."""
        if self.config.ingestion.schedule_on_startup:
            self.scheduler.start()
        if self.config.watcher.enabled:
            self.watcher = LogDirectoryWatcher(
                self.logs_dir,
                self.scheduler,
                debounce_seconds=self.config.watcher.debounce_seconds,
                server_ids=self.config.ingestion.server_ids,
            )
            self.watcher.start()

    def stop_background(self) -> None:
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        if self.scheduler.is_started:
            self.scheduler.stop()

    def close(self) -> None:
        self.stop_background()
        self.steam.close()
        self.db.dispose()


def build_context(
    config: RoundStatsConfig,
    db: DatabaseManager | None = None,
    checkpoints: CheckpointStore | None = None,
    steam: SteamProfileClient | None = None,
) -> AppContext:
    ingestion = config.ingestion
    db = db or DatabaseManager(config.storage.database_url, echo=config.storage.echo)
    checkpoints = checkpoints or FileCheckpointStore(ingestion.logs_dir)

    pipeline = IngestionPipeline(
        db,
        checkpoints,
        ingestion.logs_dir,
        allocator=MatchNumberAllocator(db.get_max_match_number),
        resume_open_match=ingestion.resume_open_match,
        run_timeout_seconds=ingestion.run_timeout_seconds,
    )
    scheduler = IngestionScheduler(
        pipeline,
        server_ids=ingestion.server_ids,
        interval_seconds=ingestion.interval_seconds,
        run_timeout_seconds=ingestion.run_timeout_seconds,
        inter_run_delay_seconds=ingestion.inter_run_delay_seconds,
    )

    cache = QueryCache(
        maxsize=config.cache.maxsize,
        ttl_seconds=config.cache.leaderboard_ttl_seconds,
    )

    def _invalidate_on_insert(summary: IngestionSummary) -> None:
        if summary.inserted:
            cache.clear()

    scheduler.add_listener(_invalidate_on_insert)

    steam = steam or SteamProfileClient(
        api_key=config.steam.api_key,
        api_base=config.steam.api_base,
        timeout=config.steam.timeout_seconds,
        batch_size=config.steam.batch_size,
    )
    resolver = IdentityResolver(db, steam_client=steam, overrides=config.identity.overrides)
    leaderboard = LeaderboardService(db, resolver, cache=cache)

    return AppContext(
        config=config,
        db=db,
        checkpoints=checkpoints,
        pipeline=pipeline,
        scheduler=scheduler,
        cache=cache,
        steam=steam,
        resolver=resolver,
        leaderboard=leaderboard,
    )


_context: AppContext | None = None


def get_context() -> AppContext:
    """Get the process-wide context, building it from the global config."""
    global _context
    if _context is None:
        _context = build_context(get_config())
    return _context


def set_context(context: AppContext | None) -> None:
    global _context
    _context = context


def reset_context() -> None:
    global _context
    if _context is not None:
        _context.close()
    _context = None
