"""
RoundStats - CS2 Server Log Ingestion and Leaderboards

Reads the per-round player stat blocks a CS2 dedicated server writes to its
log, stores one row per player per round, and ranks players by their
final-round totals across matches.

Usage:
    from roundstats import DatabaseManager, IngestionPipeline, MemoryCheckpointStore

    db = DatabaseManager("sqlite:///roundstats.db")
    pipeline = IngestionPipeline(db, MemoryCheckpointStore(), "./logs")
    summary = pipeline.run(server_id=1)
    print(f"Inserted {summary.inserted} rows")
"""

__version__ = "0.3.0"
__author__ = "RoundStats Contributors"


def __getattr__(name):
    """Lazy import so the CLI and API only load what they use."""
    # Ingestion
    if name == "IngestionPipeline":
        from roundstats.ingest.pipeline import IngestionPipeline
        return IngestionPipeline
    elif name == "IngestionScheduler":
        from roundstats.ingest.scheduler import IngestionScheduler
        return IngestionScheduler
    elif name == "LogParser":
        from roundstats.ingest.parser import LogParser
        return LogParser
    elif name == "FileCheckpointStore":
        from roundstats.ingest.checkpoint import FileCheckpointStore
        return FileCheckpointStore
    elif name == "MemoryCheckpointStore":
        from roundstats.ingest.checkpoint import MemoryCheckpointStore
        return MemoryCheckpointStore
    # Storage
    elif name == "DatabaseManager":
        from roundstats.infra.database import DatabaseManager
        return DatabaseManager
    # Queries
    elif name == "LeaderboardService":
        from roundstats.analysis.leaderboard import LeaderboardService
        return LeaderboardService
    elif name == "aggregate":
        from roundstats.analysis.leaderboard import aggregate
        return aggregate
    # Identity
    elif name == "to_account_id":
        from roundstats.core.identity import to_account_id
        return to_account_id
    elif name == "RoundRecord":
        from roundstats.core.models import RoundRecord
        return RoundRecord
    raise AttributeError(f"module 'roundstats' has no attribute '{name}'")


__all__ = [
    # Version
    "__version__",
    # Ingestion
    "IngestionPipeline",
    "IngestionScheduler",
    "LogParser",
    "FileCheckpointStore",
    "MemoryCheckpointStore",
    # Storage
    "DatabaseManager",
    # Queries
    "LeaderboardService",
    "aggregate",
    # Identity
    "to_account_id",
    "RoundRecord",
]
