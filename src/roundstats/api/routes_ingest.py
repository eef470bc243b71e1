"""
Log ingestion route handlers.

Endpoints:
- POST /api/ingest/upload?server_id=N: store an uploaded server log and process it
- POST /api/ingest/process: process the log already on disk for a server
- GET /api/ingest/status/{server_id}: log file and checkpoint status
- DELETE /api/ingest/checkpoint/{server_id}: force full reprocessing
- GET /api/ingest/scheduler: scheduler run statistics
"""

import logging
import os
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any

from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from starlette.concurrency import run_in_threadpool

from roundstats.api.shared import (
    ProcessRequest,
    ServerStatus,
    UploadInfo,
    _get_context,
    validate_server_id,
)
from roundstats.core.errors import RunInProgressError
from roundstats.ingest.logfiles import read_log_lines
from roundstats.ingest.pipeline import IngestionSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ingest", tags=["ingest"])

CHUNK_SIZE = 1024 * 1024  # 1MB


def _run_now(server_id: int, trigger: str) -> IngestionSummary:
    context = _get_context()
    try:
        return context.scheduler.trigger(server_id, trigger=trigger)
    except RunInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.post("/upload")
async def upload_log(
    server_id: int | None = Query(None),
    logfile: UploadFile | None = File(None),
) -> dict[str, Any]:
    """
    Upload a server log and process it immediately.

    The file replaces latest_server<N>.log; already-consumed lines are
    skipped via the checkpoint, and a shorter file is treated as a restart.
    """
    server_id = validate_server_id(server_id)
    if logfile is None or not logfile.filename:
        raise HTTPException(status_code=400, detail="No log file uploaded")

    context = _get_context()
    if context.scheduler.is_running(server_id):
        raise HTTPException(status_code=409, detail=f"Ingestion already running for server {server_id}")

    max_bytes = context.config.ingestion.max_upload_bytes
    target = context.pipeline.log_path(server_id)
    target.parent.mkdir(parents=True, exist_ok=True)

    size = 0
    tmp = NamedTemporaryFile(dir=target.parent, suffix=".upload", delete=False)
    tmp_path = Path(tmp.name)
    try:
        try:
            while chunk := await logfile.read(CHUNK_SIZE):
                size += len(chunk)
                if size > max_bytes:
                    raise HTTPException(
                        status_code=413,
                        detail=f"File too large: {size / (1024 * 1024):.1f}MB",
                    )
                tmp.write(chunk)
            tmp.flush()
        finally:
            tmp.close()

        if size == 0:
            raise HTTPException(status_code=400, detail="Empty file uploaded")

        os.replace(tmp_path, target)
    finally:
        tmp_path.unlink(missing_ok=True)

    logger.info(f"Stored upload {logfile.filename} ({size} bytes) as {target.name}")

    summary = await run_in_threadpool(_run_now, server_id, "upload")

    upload_info = UploadInfo(
        filename=logfile.filename,
        size=size,
        path=str(target),
        server_id=server_id,
    )
    return {
        "success": summary.success,
        "upload_info": upload_info.model_dump(),
        "processing_result": summary.to_dict(),
    }


@router.post("/process")
def process_log(request: ProcessRequest) -> dict[str, Any]:
    """Process new lines of the log already on disk for a server."""
    server_id = validate_server_id(request.server_id)
    summary = _run_now(server_id, "manual")
    return {"success": summary.success, "processing_result": summary.to_dict()}


@router.get("/status/{server_id}")
def server_status(server_id: int) -> dict[str, Any]:
    """Report log size, checkpoint and pending line count for a server."""
    server_id = validate_server_id(server_id)
    context = _get_context()
    log_path = context.pipeline.log_path(server_id)
    checkpoint = context.checkpoints.read(server_id)
    is_running = context.scheduler.is_running(server_id)

    if not log_path.exists():
        return ServerStatus(
            server_id=server_id,
            log_file_exists=False,
            checkpoint=checkpoint,
            status="no-log-file",
            is_running=is_running,
        ).model_dump()

    total_lines = len(read_log_lines(log_path))
    if checkpoint > total_lines:
        # Next run will detect the restart and start over
        pending = total_lines
    else:
        pending = total_lines - checkpoint

    return ServerStatus(
        server_id=server_id,
        log_file_exists=True,
        log_file_size=log_path.stat().st_size,
        total_lines=total_lines,
        checkpoint=checkpoint,
        pending_lines=pending,
        status="pending-processing" if pending > 0 else "up-to-date",
        is_running=is_running,
    ).model_dump()


@router.delete("/checkpoint/{server_id}")
def reset_checkpoint(server_id: int) -> dict[str, Any]:
    """Delete a server's checkpoint so the next run starts from line 1."""
    server_id = validate_server_id(server_id)
    context = _get_context()
    if context.scheduler.is_running(server_id):
        raise HTTPException(status_code=409, detail=f"Ingestion already running for server {server_id}")

    deleted = context.checkpoints.delete(server_id)
    return {
        "success": True,
        "server_id": server_id,
        "deleted": deleted,
        "message": "Checkpoint reset" if deleted else "No checkpoint to reset",
    }


@router.get("/scheduler")
def scheduler_stats() -> dict[str, Any]:
    """Run counters and in-flight servers."""
    return _get_context().scheduler.get_stats()
