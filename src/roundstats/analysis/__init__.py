"""
RoundStats Analysis - Leaderboard aggregation and player queries.

This module contains:
- leaderboard: Final-round collapse, ranking and identity resolution
"""

from roundstats.analysis.leaderboard import (
    LeaderboardService,
    MatchLine,
    PlayerTotals,
    aggregate,
    collapse_final_rounds,
    rank_rows,
    sum_across_matches,
)

__all__: list[str] = [
    "LeaderboardService",
    "MatchLine",
    "PlayerTotals",
    "aggregate",
    "collapse_final_rounds",
    "rank_rows",
    "sum_across_matches",
]
