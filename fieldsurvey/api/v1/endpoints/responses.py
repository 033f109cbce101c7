"""Stored survey responses API — inspect local records and their sync status."""

from fastapi import APIRouter, Depends, HTTPException, Query

from fieldsurvey.api.deps import get_context
from fieldsurvey.core.exceptions import RecordDeserializationError, RecordNotFound
from fieldsurvey.schemas.api import ResponseList, ResponseSummary
from fieldsurvey.schemas.responses import ResponseStatus, StoredResponse, SyncStatus
from fieldsurvey.services.sessions import AppContext

router = APIRouter()


@router.get("/", response_model=ResponseList)
def list_responses(
    sync_status: SyncStatus | None = Query(None),
    status: ResponseStatus | None = Query(None),
    form_id: str | None = Query(None),
    context: AppContext = Depends(get_context),
):
    records = context.store.list_responses(sync_status=sync_status, status=status, survey_id=form_id)
    items = [
        ResponseSummary(
            id=record.id,
            form_id=record.response.form_id,
            entity_type=record.response.entity_type,
            entity_id=record.response.entity_id,
            status=record.response.status,
            sync_status=record.sync_status,
            version=record.version,
            updated_at=record.updated_at,
        )
        for record in records
    ]
    return ResponseList(items=items, total=len(items))


@router.get("/{response_id}", response_model=StoredResponse)
def get_response(response_id: str, context: AppContext = Depends(get_context)):
    try:
        return context.store.get_response(response_id)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Response not found")
    except RecordDeserializationError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
