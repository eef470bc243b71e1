"""
Shared utilities for the RoundStats API.

Contains validation helpers, request/response models and the accessors
route modules use to reach the application context.
"""

import logging
import re
from datetime import date

from fastapi import HTTPException
from pydantic import AliasChoices, BaseModel, Field

from roundstats import __version__  # noqa: F401
from roundstats.context import AppContext, get_context

logger = logging.getLogger(__name__)

# =============================================================================
# Input Validation
# =============================================================================

MATCH_ID_PATTERN = re.compile(r"^[a-f0-9]{32}$")
MAX_SERVER_ID = 10_000
MAX_LEADERBOARD_LIMIT = 500


def validate_server_id(server_id: int | None) -> int:
    """Validate a server id. Raises HTTPException if missing or out of range."""
    if server_id is None:
        raise HTTPException(status_code=400, detail="Server ID is required")
    if server_id < 1 or server_id > MAX_SERVER_ID:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid server ID: must be between 1 and {MAX_SERVER_ID}",
        )
    return server_id


def validate_match_id(match_id: str) -> str:
    """Validate match_id format. Raises HTTPException if invalid."""
    if not match_id or not MATCH_ID_PATTERN.match(match_id):
        raise HTTPException(status_code=400, detail="Invalid match_id: must be 32 hex characters")
    return match_id


def validate_date_range(start_date: date | None, end_date: date | None) -> None:
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")


# =============================================================================
# Request / Response Models
# =============================================================================


class ProcessRequest(BaseModel):
    server_id: int | None = Field(
        default=None,
        validation_alias=AliasChoices("server_id", "serverId"),
    )


class UploadInfo(BaseModel):
    filename: str
    size: int
    path: str
    server_id: int


class ServerStatus(BaseModel):
    server_id: int
    log_file_exists: bool
    log_file_size: int = 0
    total_lines: int = 0
    checkpoint: int = 0
    pending_lines: int = 0
    status: str
    is_running: bool = False


# =============================================================================
# Context Access
# =============================================================================


def _get_context() -> AppContext:
    return get_context()
