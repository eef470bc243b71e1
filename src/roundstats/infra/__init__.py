"""
RoundStats Infrastructure - System infrastructure components.

This module contains:
- database: SQLAlchemy storage for round records and platform users
- cache: TTL cache for leaderboard queries
"""

__all__: list[str] = []
