"""
Leaderboard Aggregation

Every round record carries match-to-date totals, so a player's stats for a
match are the ones logged in their highest round of that match. Summing all
rounds would count early kills once per later round.

Aggregation is therefore two named reductions:

1. collapse_final_rounds: per (account, match) keep only the highest round.
2. sum_across_matches: per account, sum those final lines.

naive_totals sums every round instead. It is wrong on purpose and exists
for the diagnostic endpoints, so the difference stays visible.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from roundstats.core.identity import (
    PlayerIdentity,
    account_id_to_steam64,
    to_account_id,
)
from roundstats.core.models import RoundRecord, kill_death_ratio
from roundstats.infra.cache import QueryCache
from roundstats.infra.database import DatabaseManager
from roundstats.integrations.steam import SteamProfileClient

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MATCH_HISTORY_LIMIT = 10
DEBUG_RAW_LIMIT = 100


# ============================================================================
# Reductions
# ============================================================================


@dataclass
class MatchLine:
    """A player's final stat line for one match."""

    account_id: int
    match_id: str
    match_number: int
    map_name: str
    server_id: int
    match_date: date
    final_round: int
    kills: int
    deaths: int
    assists: int
    damage: float
    mvp: int
    last_played: datetime | None = None

    @property
    def kdr(self) -> float:
        return kill_death_ratio(self.kills, self.deaths)

    def to_dict(self) -> dict[str, Any]:
        return {
            "match_id": self.match_id,
            "match_number": self.match_number,
            "map": self.map_name,
            "server_id": self.server_id,
            "match_date": self.match_date.isoformat() if self.match_date else None,
            "match_datetime": self.last_played.isoformat() if self.last_played else None,
            "rounds_played": self.final_round,
            "kills": self.kills,
            "deaths": self.deaths,
            "assists": self.assists,
            "damage": self.damage,
            "mvp": self.mvp,
            "kdr": self.kdr,
        }


@dataclass
class PlayerTotals:
    """Cross-match totals for one account."""

    account_id: int
    kills: int = 0
    deaths: int = 0
    assists: int = 0
    damage: float = 0.0
    mvp: int = 0
    rounds_played: int = 0
    match_ids: set[str] = field(default_factory=set)
    server_ids: set[int] = field(default_factory=set)
    maps: set[str] = field(default_factory=set)
    last_played: datetime | None = None

    @property
    def matches_played(self) -> int:
        return len(self.match_ids)

    @property
    def kdr(self) -> float:
        return kill_death_ratio(self.kills, self.deaths)

    @property
    def avg_kills_per_round(self) -> float:
        return round(self.kills / self.rounds_played, 2) if self.rounds_played else 0.0

    @property
    def avg_deaths_per_round(self) -> float:
        return round(self.deaths / self.rounds_played, 2) if self.rounds_played else 0.0

    def add_match(self, match_id: str, server_id: int, map_name: str, played: datetime | None):
        self.match_ids.add(match_id)
        self.server_ids.add(server_id)
        self.maps.add(map_name)
        if played is not None and (self.last_played is None or played > self.last_played):
            self.last_played = played

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_kills": self.kills,
            "total_deaths": self.deaths,
            "total_assists": self.assists,
            "total_damage": self.damage,
            "total_mvp": self.mvp,
            "rounds_played": self.rounds_played,
            "matches_played": self.matches_played,
            "servers_played": sorted(self.server_ids),
            "maps_played": len(self.maps),
            "avg_kills_per_round": self.avg_kills_per_round,
            "avg_deaths_per_round": self.avg_deaths_per_round,
            "kdr": self.kdr,
            "last_played": self.last_played.isoformat() if self.last_played else None,
        }


def collapse_final_rounds(records: Iterable[RoundRecord]) -> list[MatchLine]:
    """Keep each player's highest-round record per match."""
    final: dict[tuple[int, str], RoundRecord] = {}
    last_played: dict[tuple[int, str], datetime] = {}

    for record in records:
        key = (record.account_id, record.match_id)
        current = final.get(key)
        if current is None or record.round_number > current.round_number:
            final[key] = record
        played = record.match_datetime
        if played is not None and (key not in last_played or played > last_played[key]):
            last_played[key] = played

    lines = [
        MatchLine(
            account_id=r.account_id,
            match_id=r.match_id,
            match_number=r.match_number,
            map_name=r.map_name,
            server_id=r.server_id,
            match_date=r.match_date,
            final_round=r.round_number,
            kills=r.kills,
            deaths=r.deaths,
            assists=r.assists,
            damage=r.damage,
            mvp=r.mvp,
            last_played=last_played.get(key),
        )
        for key, r in final.items()
    ]
    lines.sort(key=lambda line: (line.match_number, line.account_id))
    return lines


def sum_across_matches(lines: Iterable[MatchLine]) -> list[PlayerTotals]:
    """Sum final match lines per account; rounds played is the sum of final rounds."""
    totals: dict[int, PlayerTotals] = {}
    for line in lines:
        t = totals.setdefault(line.account_id, PlayerTotals(account_id=line.account_id))
        t.kills += line.kills
        t.deaths += line.deaths
        t.assists += line.assists
        t.damage += line.damage
        t.mvp += line.mvp
        t.rounds_played += line.final_round
        t.add_match(line.match_id, line.server_id, line.map_name, line.last_played)
    return list(totals.values())


def naive_totals(records: Iterable[RoundRecord]) -> list[PlayerTotals]:
    """Sum every round record per account (diagnostic; double counts)."""
    totals: dict[int, PlayerTotals] = {}
    for r in records:
        t = totals.setdefault(r.account_id, PlayerTotals(account_id=r.account_id))
        t.kills += r.kills
        t.deaths += r.deaths
        t.assists += r.assists
        t.damage += r.damage
        t.mvp += r.mvp
        t.rounds_played += 1
        t.add_match(r.match_id, r.server_id, r.map_name, r.match_datetime)
    return list(totals.values())


def rank_rows(totals: Iterable[PlayerTotals]) -> list[PlayerTotals]:
    """Order by kills descending, ties broken by kill/death ratio descending."""
    return sorted(totals, key=lambda t: (-t.kills, -t.kdr, t.account_id))


def aggregate(records: Iterable[RoundRecord], naive: bool = False) -> list[PlayerTotals]:
    """Ranked per-player totals for a set of round records."""
    if naive:
        return rank_rows(naive_totals(records))
    return rank_rows(sum_across_matches(collapse_final_rounds(records)))


# ============================================================================
# Identity Resolution
# ============================================================================


class IdentityResolver:
    """
    Puts names on account ids.

    Priority: linked platform user, then Steam profile, then a placeholder
    built from the account id. Steam failures only cost the names.
    """

    def __init__(
        self,
        db: DatabaseManager,
        steam_client: SteamProfileClient | None = None,
        overrides: Mapping[str, int] | None = None,
    ):
        self.db = db
        self.steam_client = steam_client
        self.overrides = overrides

    def linked_users_by_account(self) -> dict[int, dict]:
        """Linked platform users keyed by the account id their external id denotes."""
        by_account: dict[int, dict] = {}
        for user in self.db.get_linked_platform_users():
            account_id = to_account_id(user.get("external_id"), self.overrides)
            if account_id is None:
                logger.debug(
                    f"Platform user {user['id']} has unrecognized external id "
                    f"{user.get('external_id')!r}"
                )
                continue
            if account_id in by_account:
                logger.warning(
                    f"Account {account_id} is linked by platform users "
                    f"{by_account[account_id]['id']} and {user['id']}, using the first"
                )
                continue
            by_account[account_id] = user
        return by_account

    def resolve(
        self,
        account_ids: Iterable[int],
        fetch_external: bool = True,
        linked: dict[int, dict] | None = None,
    ) -> dict[int, PlayerIdentity]:
        account_ids = list(dict.fromkeys(account_ids))
        if linked is None:
            linked = self.linked_users_by_account()

        identities: dict[int, PlayerIdentity] = {}
        for account_id in account_ids:
            identity = PlayerIdentity.bare(account_id)
            user = linked.get(account_id)
            if user is not None:
                identity.platform_user_id = user["id"]
                identity.username = user.get("username")
                identity.external_id = user.get("external_id")
                identity.display_name = user.get("display_name") or user.get("username")
                identity.avatar_url = user.get("avatar_url") or ""
                identity.is_registered = True
            identities[account_id] = identity

        unmatched = [aid for aid, ident in identities.items() if not ident.is_registered]
        if fetch_external and unmatched and self.steam_client is not None:
            self._apply_steam_profiles(identities, unmatched)

        return identities

    def _apply_steam_profiles(
        self, identities: dict[int, PlayerIdentity], account_ids: list[int]
    ) -> None:
        by_steam64 = {account_id_to_steam64(aid): aid for aid in account_ids}
        try:
            profiles = self.steam_client.get_player_summaries(list(by_steam64))
        except Exception as e:
            logger.warning(f"Steam profile lookup failed, using placeholder names: {e}")
            return
        for steam64, profile in profiles.items():
            account_id = by_steam64.get(steam64)
            if account_id is None:
                continue
            identity = identities[account_id]
            identity.display_name = profile.display_name or None
            identity.avatar_url = profile.avatar_url
            identity.profile_url = profile.profile_url or None
            identity.has_steam_data = True
        if profiles:
            logger.debug(f"Fetched Steam data for {len(profiles)} players")


# ============================================================================
# Query Service
# ============================================================================


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


class LeaderboardService:
    """Read-side queries used by the web API and the CLI."""

    def __init__(
        self,
        db: DatabaseManager,
        resolver: IdentityResolver,
        cache: QueryCache | None = None,
    ):
        self.db = db
        self.resolver = resolver
        self.cache = cache

    def _cached(self, key: tuple, compute):
        if self.cache is None:
            return compute()
        return self.cache.get_or_compute(key, compute)

    def invalidate(self) -> None:
        if self.cache is not None:
            self.cache.clear()

    def leaderboard(
        self,
        server_id: int | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int = DEFAULT_LIMIT,
        registered_only: bool = False,
        naive: bool = False,
    ) -> dict[str, Any]:
        """
        Ranked players with resolved identities.

        Args:
            server_id: Only rounds from this server
            start_date: Inclusive lower bound on match date
            end_date: Inclusive upper bound on match date
            limit: Maximum rows
            registered_only: Only accounts linked to a platform user
            naive: Sum every round instead of final rounds (diagnostic)
        """
        key = (
            "leaderboard",
            server_id,
            _iso(start_date),
            _iso(end_date),
            limit,
            registered_only,
            naive,
        )
        return self._cached(
            key,
            lambda: self._leaderboard(server_id, start_date, end_date, limit, registered_only, naive),
        )

    def _leaderboard(self, server_id, start_date, end_date, limit, registered_only, naive):
        filters = {
            "server_id": server_id if server_id is not None else "all",
            "start_date": _iso(start_date) or "all",
            "end_date": _iso(end_date) or "all",
            "limit": limit,
            "registered_only": registered_only,
        }

        linked = self.resolver.linked_users_by_account()
        account_filter = None
        if registered_only:
            if not linked:
                return {
                    "leaderboard": [],
                    "total_players": 0,
                    "filters": filters,
                    "aggregation": "naive" if naive else "final_round",
                    "message": "No registered players found",
                }
            account_filter = list(linked)

        records = self.db.fetch_records(
            server_id=server_id,
            start_date=start_date,
            end_date=end_date,
            account_ids=account_filter,
        )
        ranked = aggregate(records, naive=naive)[:limit]

        identities = self.resolver.resolve(
            [t.account_id for t in ranked],
            fetch_external=not registered_only,
            linked=linked,
        )

        rows = []
        for index, totals in enumerate(ranked):
            identity = identities[totals.account_id]
            rows.append({"rank": index + 1, **identity.to_dict(), "stats": totals.to_dict()})

        return {
            "leaderboard": rows,
            "total_players": len(rows),
            "filters": filters,
            "aggregation": "naive" if naive else "final_round",
        }

    def player_detail(self, user_id: int, history_limit: int = MATCH_HISTORY_LIMIT) -> dict | None:
        """
        Aggregate stats and recent matches for a platform user.

        Returns None when the user does not exist.
        """
        user = self.db.get_platform_user(user_id)
        if user is None:
            return None

        player = {
            "user_id": user["id"],
            "username": user["username"],
            "steam_id": user["external_id"],
            "avatar": user["avatar_url"],
            "display_name": user["display_name"] or user["username"],
        }

        if not user["is_connected"] or not user["external_id"]:
            return {
                "player": player,
                "stats": None,
                "match_history": [],
                "message": "User has not linked a game profile",
            }

        account_id = to_account_id(user["external_id"], self.resolver.overrides)
        if account_id is None:
            return {
                "player": player,
                "stats": None,
                "match_history": [],
                "message": "Unrecognized external id format",
            }
        player["account_id"] = account_id
        player["steam64_id"] = account_id_to_steam64(account_id)

        lines = collapse_final_rounds(self.db.fetch_records(account_ids=[account_id]))
        totals = sum_across_matches(lines)
        if not totals:
            return {"player": player, "stats": None, "match_history": [], "servers": []}

        per_server = []
        for server_id in sorted({line.server_id for line in lines}):
            server_totals = sum_across_matches(line for line in lines if line.server_id == server_id)[0]
            per_server.append({"server_id": server_id, **server_totals.to_dict()})

        history = sorted(
            lines,
            key=lambda line: (line.last_played or datetime.min, line.match_number),
            reverse=True,
        )[:history_limit]

        return {
            "player": player,
            "stats": totals[0].to_dict(),
            "match_history": [line.to_dict() for line in history],
            "servers": per_server,
        }

    def global_stats(self) -> dict[str, Any]:
        def compute():
            stats = self.db.get_global_stats()
            return {
                "stats": stats,
                "registered_players_count": self.db.count_linked_platform_users(),
            }

        return self._cached(("global_stats",), compute)

    def match_summary(self, match_id: str) -> dict | None:
        return self.db.get_match_summary(match_id)

    def debug_player(self, account_id: int, limit: int = DEBUG_RAW_LIMIT) -> dict[str, Any]:
        """Raw rows per match next to final-round and naive totals."""
        records = self.db.fetch_records(account_ids=[account_id])
        recent = sorted(records, key=lambda r: (-r.match_number, r.round_number))[:limit]

        match_groups: dict[str, list[dict]] = {}
        for r in recent:
            match_groups.setdefault(r.match_id, []).append(
                {
                    "round": r.round_number,
                    "kills": r.kills,
                    "deaths": r.deaths,
                    "match_number": r.match_number,
                    "date": r.match_datetime.isoformat() if r.match_datetime else None,
                }
            )

        lines = collapse_final_rounds(records)
        final = sum_across_matches(lines)
        naive = naive_totals(records)

        return {
            "account_id": account_id,
            "total_matches": len({r.match_id for r in records}),
            "total_raw_entries": len(records),
            "final_round_totals": final[0].to_dict() if final else None,
            "naive_totals": naive[0].to_dict() if naive else None,
            "recent_matches": match_groups,
            "aggregation_breakdown": [
                line.to_dict()
                for line in sorted(lines, key=lambda line: line.match_number, reverse=True)
            ],
        }
