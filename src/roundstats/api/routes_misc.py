"""
Miscellaneous route handlers.

Endpoints:
- GET /health: health check
- GET /cache/stats: query cache statistics
- POST /cache/clear: clear the query cache
"""

import logging
from typing import Any

from fastapi import APIRouter

from roundstats.api.shared import __version__, _get_context

logger = logging.getLogger(__name__)

router = APIRouter(tags=["misc"])


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "version": __version__}


@router.get("/cache/stats")
def cache_stats() -> dict[str, Any]:
    return _get_context().cache.stats()


@router.post("/cache/clear")
def clear_cache() -> dict[str, Any]:
    context = _get_context()
    cleared = context.cache.stats()["total_entries"]
    context.cache.clear()
    logger.info(f"Query cache cleared ({cleared} entries)")
    return {"success": True, "cleared": cleared}
