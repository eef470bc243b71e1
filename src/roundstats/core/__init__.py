"""
RoundStats Core - Foundation modules shared by ingestion and queries.

This module contains:
- models: RoundRecord, teams and insert outcomes
- identity: Player id conversion between steam64, legacy and account ids
- config: Application configuration management
- errors: Exception hierarchy
"""

from roundstats.core.errors import (
    PlayerRowError,
    RoundStatsError,
    RunInProgressError,
    RunTimeoutError,
    StorageError,
)
from roundstats.core.identity import (
    PlayerIdentity,
    account_id_to_legacy_id,
    account_id_to_steam64,
    to_account_id,
)
from roundstats.core.models import InsertOutcome, RoundRecord, Team

__all__: list[str] = [
    "RoundStatsError",
    "StorageError",
    "RunTimeoutError",
    "RunInProgressError",
    "PlayerRowError",
    "PlayerIdentity",
    "account_id_to_legacy_id",
    "account_id_to_steam64",
    "to_account_id",
    "InsertOutcome",
    "RoundRecord",
    "Team",
]
