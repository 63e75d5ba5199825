import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError

from productsync.auth_deps import require_admin
from productsync.schemas.sync import (
    ChunkResult,
    MessageResponse,
    StartSyncResponse,
    SyncReport,
    SyncStatus,
)
from productsync.services.job_controller import SyncAlreadyRunningError
from productsync.services.sync_engine import DeleteReplicas, ReplicateOne, RunChunk, SyncEngine

logger = logging.getLogger(__name__)
router = APIRouter()


def get_sync_engine(request: Request) -> SyncEngine:
    return request.app.state.sync_engine


# ---------------------------------------------------------------------------
# Scheduler entry point
# ---------------------------------------------------------------------------

async def scheduled_sync_chunk(engine: SyncEngine) -> None:
    """Periodic trigger: advances a running job by one chunk, does nothing otherwise."""
    try:
        result = await engine.dispatch(RunChunk())
    except Exception as e:
        logger.error("Scheduled sync chunk failed: %s", e)
        return
    if result.status != SyncStatus.idle:
        logger.info("Scheduled sync chunk: %s", result.message)


async def _dispatch_in_background(engine: SyncEngine, command) -> None:
    try:
        await engine.dispatch(command)
    except Exception as e:
        logger.error("Background %s failed: %s", type(command).__name__, e)


# ---------------------------------------------------------------------------
# Polling API
# ---------------------------------------------------------------------------

@router.post("/sync/start", response_model=StartSyncResponse)
async def start_sync(
    limit: Optional[int] = Query(None, ge=1),
    force: bool = False,
    engine: SyncEngine = Depends(get_sync_engine),
    _=Depends(require_admin),
) -> StartSyncResponse:
    try:
        job = await engine.jobs.start(limit=limit, force=force)
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return StartSyncResponse(total=job.total, message=f"Sync started for {job.total} products")


@router.get("/sync/progress", response_model=SyncReport)
async def get_progress(
    engine: SyncEngine = Depends(get_sync_engine),
    _=Depends(require_admin),
) -> SyncReport:
    return await engine.jobs.status()


@router.post("/sync/chunk", response_model=ChunkResult)
async def process_chunk(
    engine: SyncEngine = Depends(get_sync_engine),
    _=Depends(require_admin),
) -> ChunkResult:
    try:
        result = await engine.dispatch(RunChunk())
    except SQLAlchemyError as e:
        logger.error("Sync chunk failed, job left at its cursor: %s", e)
        raise HTTPException(status_code=503, detail="Sync backend unavailable, try again later")
    if result.status == SyncStatus.idle:
        raise HTTPException(status_code=409, detail=result.message)
    return result


@router.post("/sync/cancel", response_model=MessageResponse)
async def cancel_sync(
    engine: SyncEngine = Depends(get_sync_engine),
    _=Depends(require_admin),
) -> MessageResponse:
    await engine.jobs.cancel()
    return MessageResponse(message="Sync cancelled")


# ---------------------------------------------------------------------------
# On-write triggers
# ---------------------------------------------------------------------------

@router.post("/sync/products/{product_id}", status_code=202, response_model=MessageResponse)
async def product_saved(
    product_id: int,
    background_tasks: BackgroundTasks,
    engine: SyncEngine = Depends(get_sync_engine),
    _=Depends(require_admin),
) -> MessageResponse:
    background_tasks.add_task(_dispatch_in_background, engine, ReplicateOne(product_id))
    return MessageResponse(message=f"Replication of product {product_id} queued")


@router.delete("/sync/products/{product_id}/replicas", status_code=202, response_model=MessageResponse)
async def product_deleted(
    product_id: int,
    background_tasks: BackgroundTasks,
    engine: SyncEngine = Depends(get_sync_engine),
    _=Depends(require_admin),
) -> MessageResponse:
    background_tasks.add_task(_dispatch_in_background, engine, DeleteReplicas(product_id))
    return MessageResponse(message=f"Removal of product {product_id} replicas queued")
