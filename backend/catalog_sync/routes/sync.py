"""
Sync management routes.

Endpoints for triggering supplier syncs, cancelling the run in flight and
reviewing sync history.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query
from pydantic import BaseModel

from ..errors import SyncAlreadyRunningError
from ..models import SyncLogEntry, SyncType
from ..services.orchestrator import sync_orchestrator


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


class SyncLogError(BaseModel):
    """Error recorded against a sync run."""
    sku: Optional[str] = None
    message: str


class SyncLog(BaseModel):
    """Sync run log entry."""
    id: str
    sync_type: str
    status: str
    products_processed: int
    products_updated: int
    products_created: int
    products_skipped: int
    errors: List[SyncLogError]
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None


class SyncProgress(BaseModel):
    """Live counters of the sync in flight."""
    log_id: str
    sync_type: str
    started_at: datetime
    processed: int
    created: int
    updated: int
    skipped: int
    errors: int
    cancelling: bool


class SyncStatusResponse(BaseModel):
    """Current sync state and recent history."""
    is_running: bool
    current: Optional[SyncProgress] = None
    logs: List[SyncLog]


class TriggerSyncRequest(BaseModel):
    """Optional parameters for a full sync."""
    max_products: Optional[int] = None


class TriggerSyncResponse(BaseModel):
    """Response after queueing a sync."""
    message: str
    sync_type: str


class CancelResponse(BaseModel):
    message: str
    cancelled: bool


def log_to_model(entry: SyncLogEntry) -> SyncLog:
    return SyncLog(
        id=entry.id,
        sync_type=entry.sync_type.value,
        status=entry.status.value,
        products_processed=entry.products_processed,
        products_updated=entry.products_updated,
        products_created=entry.products_created,
        products_skipped=entry.products_skipped,
        errors=[SyncLogError(**e) for e in entry.errors],
        started_at=entry.started_at,
        completed_at=entry.completed_at,
        duration_seconds=entry.duration_seconds,
    )


def _run_in_background(sync_type: SyncType, kwargs: Dict) -> None:
    try:
        sync_orchestrator.run_sync(sync_type, **kwargs)
    except SyncAlreadyRunningError:
        logger.warning("%s sync not started: another sync is running", sync_type.value)


def _queue_sync(sync_type: SyncType, background_tasks: BackgroundTasks, **kwargs) -> TriggerSyncResponse:
    if sync_orchestrator.is_running():
        raise HTTPException(status_code=409, detail="A sync is already running")
    background_tasks.add_task(_run_in_background, sync_type, kwargs)
    return TriggerSyncResponse(
        message=f"{sync_type.value.replace('_', ' ').capitalize()} sync started",
        sync_type=sync_type.value,
    )


@router.post("/full", response_model=TriggerSyncResponse, status_code=202)
def trigger_full_sync(background_tasks: BackgroundTasks, request: TriggerSyncRequest = None):
    """
    Start a full catalog sync in the background.

    Raises:
        HTTPException: 409 if a sync is already running
    """
    kwargs = {}
    if request is not None and request.max_products is not None:
        kwargs['max_products'] = request.max_products
    return _queue_sync(SyncType.FULL, background_tasks, **kwargs)


@router.post("/incremental", response_model=TriggerSyncResponse, status_code=202)
def trigger_incremental_sync(background_tasks: BackgroundTasks):
    """Re-fetch records not synced in the last 24 hours."""
    return _queue_sync(SyncType.INCREMENTAL, background_tasks)


@router.post("/stock-check", response_model=TriggerSyncResponse, status_code=202)
def trigger_stock_check(background_tasks: BackgroundTasks):
    """Re-check stock for every catalog record."""
    return _queue_sync(SyncType.STOCK_CHECK, background_tasks)


@router.post("/cancel", response_model=CancelResponse)
def cancel_sync():
    """Ask the running sync to stop after the current item."""
    cancelled = sync_orchestrator.cancel()
    message = "Cancellation requested" if cancelled else "No sync is running"
    return CancelResponse(message=message, cancelled=cancelled)


@router.get("/status", response_model=SyncStatusResponse)
def get_sync_status(limit: int = Query(10, ge=1, le=100, description="Number of recent logs")):
    """
    Get the current sync state and the most recent sync logs.
    """
    try:
        logs = sync_orchestrator.store.recent_sync_logs(limit)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")

    progress = sync_orchestrator.current_progress()
    return SyncStatusResponse(
        is_running=sync_orchestrator.is_running(),
        current=SyncProgress(**progress) if progress else None,
        logs=[log_to_model(entry) for entry in logs],
    )


@router.get("/logs/{log_id}", response_model=SyncLog)
def get_sync_log(log_id: str):
    """Get a single sync log by id."""
    entry = sync_orchestrator.store.get_sync_log(log_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Sync log {log_id} not found")
    return log_to_model(entry)
