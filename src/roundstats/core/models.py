"""
Core data types for per-round player statistics.

A RoundRecord is one player's stat line as logged at the end of one round.
Every stat on it is the match-to-date total, not the delta for that round,
so the highest round of a match already holds the player's final numbers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Any


class Team(IntEnum):
    """Side codes as written by the game server."""

    TERRORIST = 2
    COUNTER_TERRORIST = 3

    @property
    def label(self) -> str:
        return "Terrorist" if self is Team.TERRORIST else "Counter-Terrorist"


class InsertOutcome(Enum):
    INSERTED = "inserted"
    SKIPPED_DUPLICATE = "skipped_duplicate"


RoundKey = tuple[int, str, int]


@dataclass(frozen=True)
class RoundRecord:
    """One player's cumulative stats at the end of one round."""

    account_id: int
    team: Team
    kills: int
    deaths: int
    assists: int
    damage: float
    kdr: float
    mvp: int
    map_name: str
    round_number: int
    match_id: str
    match_number: int
    match_date: date
    match_datetime: datetime
    server_id: int

    @property
    def key(self) -> RoundKey:
        """The (account, match, round) identity enforced unique by storage."""
        return (self.account_id, self.match_id, self.round_number)

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "team": int(self.team),
            "team_name": self.team.label,
            "kills": self.kills,
            "deaths": self.deaths,
            "assists": self.assists,
            "damage": self.damage,
            "kdr": self.kdr,
            "mvp": self.mvp,
            "map": self.map_name,
            "round_number": self.round_number,
            "match_id": self.match_id,
            "match_number": self.match_number,
            "match_date": self.match_date.isoformat(),
            "match_datetime": self.match_datetime.isoformat(),
            "server_id": self.server_id,
        }


def kill_death_ratio(kills: int | float, deaths: int | float) -> float:
    """Kills over deaths rounded to 2 places; kills alone when deaths is zero."""
    if not deaths:
        return float(kills)
    return round(kills / deaths, 2)
