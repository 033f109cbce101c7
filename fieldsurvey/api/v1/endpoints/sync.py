"""Sync API — trigger push/pull passes and inspect per-table sync status."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from fieldsurvey.api.deps import get_context
from fieldsurvey.core.exceptions import PersistenceError
from fieldsurvey.services.records import TABLES
from fieldsurvey.services.sessions import AppContext
from fieldsurvey.services.sync import PullResult, RemoteError, SyncCycleResult, SyncReport

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/", response_model=SyncCycleResult)
async def sync_all(context: AppContext = Depends(get_context)):
    return await context.sync.sync_all()


@router.post("/push", response_model=SyncReport)
async def push(context: AppContext = Depends(get_context)):
    report = await context.sync.sync_pending_forms()
    return report.merge(await context.sync.sync_pending_entities())


@router.post("/pull", response_model=PullResult)
async def pull(context: AppContext = Depends(get_context)):
    try:
        return await context.sync.pull_changes()
    except RemoteError as exc:
        raise HTTPException(status_code=502, detail=f"Pull failed: {exc}")
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=f"Pulled changes could not be stored: {exc}")


@router.post("/retry", response_model=SyncReport)
async def retry_failed(context: AppContext = Depends(get_context)):
    return await context.sync.retry_failed()


@router.get("/status")
def sync_status(context: AppContext = Depends(get_context)):
    """Record counts per sync status for every local table."""
    return {table: context.store.count_by_sync_status(table) for table in TABLES}
