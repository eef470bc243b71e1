"""
RoundStats Web API

FastAPI application for server log ingestion and leaderboard queries.

This package exposes:
- app: The FastAPI application (used by uvicorn and server.py)
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from roundstats.api.shared import __version__, _get_context

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the scheduler and log watcher when configured to."""
    context = _get_context()
    context.start_background()
    try:
        yield
    finally:
        context.stop_background()


# =============================================================================
# FastAPI App Creation
# =============================================================================

app = FastAPI(
    title="RoundStats API",
    description=(
        "CS2 server log ingestion with per-round player stats, "
        "final-round leaderboards and player profiles"
    ),
    version=__version__,
    lifespan=lifespan,
)

# =============================================================================
# CORS Configuration
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# GZip Middleware
# =============================================================================

app.add_middleware(GZipMiddleware, minimum_size=1000)

# =============================================================================
# Global Exception Handler
# =============================================================================


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler to prevent information disclosure."""
    logger.exception(f"Unhandled exception for {request.method} {request.url.path}")

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred. Please try again later.",
        },
    )


# =============================================================================
# Include Route Modules
# =============================================================================

from roundstats.api.routes_ingest import router as ingest_router  # noqa: E402
from roundstats.api.routes_leaderboard import router as leaderboard_router  # noqa: E402
from roundstats.api.routes_misc import router as misc_router  # noqa: E402

app.include_router(ingest_router)
app.include_router(leaderboard_router)
app.include_router(misc_router)
