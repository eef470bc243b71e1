"""
Leaderboard and player route handlers.

Endpoints:
- GET /api/leaderboard: ranked players from final-round totals
- GET /api/leaderboard/registered: ranked players linked to a platform account
- GET /api/leaderboard/player/{user_id}: stats and match history for a user
- GET /api/leaderboard/stats: global totals
- GET /api/leaderboard/match/{match_id}: final-round scoreboard of one match
- GET /api/leaderboard/debug/naive: leaderboard summing every round
- GET /api/leaderboard/debug/{account_id}: raw rows vs aggregated totals
"""

import logging
from datetime import date
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from roundstats.analysis.leaderboard import DEBUG_RAW_LIMIT, DEFAULT_LIMIT
from roundstats.api.shared import (
    MAX_LEADERBOARD_LIMIT,
    _get_context,
    validate_date_range,
    validate_match_id,
    validate_server_id,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/leaderboard", tags=["leaderboard"])


def _query_leaderboard(
    server_id: int | None,
    start_date: date | None,
    end_date: date | None,
    limit: int,
    registered_only: bool = False,
    naive: bool = False,
) -> dict[str, Any]:
    if server_id is not None:
        validate_server_id(server_id)
    validate_date_range(start_date, end_date)
    return _get_context().leaderboard.leaderboard(
        server_id=server_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        registered_only=registered_only,
        naive=naive,
    )


@router.get("")
def get_leaderboard(
    server_id: int | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LEADERBOARD_LIMIT),
) -> dict[str, Any]:
    """Every player with recorded rounds, ranked by kills then K/D."""
    return _query_leaderboard(server_id, start_date, end_date, limit)


@router.get("/registered")
def get_registered_leaderboard(
    server_id: int | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LEADERBOARD_LIMIT),
) -> dict[str, Any]:
    """Only players whose account is linked to a platform user."""
    return _query_leaderboard(server_id, start_date, end_date, limit, registered_only=True)


@router.get("/player/{user_id}")
def get_player(user_id: int) -> dict[str, Any]:
    detail = _get_context().leaderboard.player_detail(user_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="User not found")
    return detail


@router.get("/stats")
def get_global_stats() -> dict[str, Any]:
    return _get_context().leaderboard.global_stats()


@router.get("/match/{match_id}")
def get_match(match_id: str) -> dict[str, Any]:
    validate_match_id(match_id)
    summary = _get_context().leaderboard.match_summary(match_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="Match not found")
    return summary


@router.get("/debug/naive")
def get_naive_leaderboard(
    server_id: int | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LEADERBOARD_LIMIT),
) -> dict[str, Any]:
    """
    Leaderboard that sums every stored round.

    Cumulative counters make this overcount; it exists to compare against
    the final-round leaderboard when checking ingested data.
    """
    return _query_leaderboard(server_id, start_date, end_date, limit, naive=True)


@router.get("/debug/{account_id}")
def get_player_debug(
    account_id: int,
    limit: int = Query(DEBUG_RAW_LIMIT, ge=1, le=1000),
) -> dict[str, Any]:
    if account_id <= 0:
        raise HTTPException(status_code=400, detail="Invalid account id")
    return _get_context().leaderboard.debug_player(account_id, limit=limit)
