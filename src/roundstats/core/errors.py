"""
Exception types shared across ingestion, storage and the web layer.

Duplicate inserts are not errors: the store reports them through
InsertOutcome.SKIPPED_DUPLICATE and the run keeps going.
"""

from __future__ import annotations


class RoundStatsError(Exception):
    """Base class for all roundstats errors."""


class StorageError(RoundStatsError):
    """Persistence failure not attributable to the uniqueness constraint.

    Fatal to the current ingestion run: the transaction is rolled back and
    the checkpoint is left where it was so the next run retries the same lines.
    """

    def __init__(self, message: str, original: Exception | None = None):
        super().__init__(message)
        self.original = original


class RunTimeoutError(RoundStatsError):
    """An ingestion run exceeded its deadline."""


class RunInProgressError(RoundStatsError):
    """A run for the same server id is still in flight."""

    def __init__(self, server_id: int):
        super().__init__(f"Ingestion already running for server {server_id}")
        self.server_id = server_id


class PlayerRowError(RoundStatsError):
    """A structured player row could not be split into its positional fields."""
